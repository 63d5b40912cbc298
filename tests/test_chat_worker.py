"""ChatWorker 수명 / 재연결 테스트 (실제 네트워크 없이)

가짜 API, 가짜 웹소켓, 가짜 dial 함수로 세션 상태 머신을 검증한다.
"""

import asyncio
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from bilidanmu.chat_worker import ChatWorker, SessionState
from bilidanmu.cmd_type import Operation, ProtoVer
from bilidanmu.config import DEFAULT_HOST
from bilidanmu.errors import ConfigurationError, DiscoveryError
from bilidanmu.packet import HEADER_LENGTH, Packet, encode_heartbeat

COOKIE = 'buvid3=abc; _uuid=DEVICE-1234; SESSDATA=sess; bili_jct=jct;'


def notification(cmd, data=None) -> bytes:
    body = json.dumps({'cmd': cmd, 'data': data or {}}).encode('utf-8')
    return Packet(version=ProtoVer.JSON, operation=Operation.NOTIFICATION, body=body).build()


def enter_body(frame: bytes) -> dict:
    packet = Packet.from_bytes(frame)
    assert packet.operation == Operation.ENTER_ROOM
    return json.loads(packet.body)


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError('condition not met in time')
        await asyncio.sleep(0.005)


class FakeWebSocket:
    def __init__(self, frames=(), fail_send=False):
        self.queue = asyncio.Queue()
        for frame in frames:
            self.queue.put_nowait(frame)
        self.sent = []
        self.closed = False
        self.fail_send = fail_send

    def feed(self, item):
        self.queue.put_nowait(item)

    async def send(self, data):
        if self.fail_send:
            raise ConnectionResetError('send failed')
        self.sent.append(data)

    async def recv(self):
        item = await self.queue.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True
        self.queue.put_nowait(ConnectionResetError('closed'))


class SlowCloseWebSocket(FakeWebSocket):
    """close() 가 끝나기까지 시간이 걸리는 소켓"""

    async def close(self):
        await asyncio.sleep(0.05)
        await super().close()


class FakeDialer:
    def __init__(self, sockets=(), failures=0):
        self.sockets = list(sockets)
        self.failures = failures
        self.urls = []
        self.headers = None

    async def __call__(self, url, headers):
        self.urls.append(url)
        self.headers = headers
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError('refused')
        if not self.sockets:
            raise ConnectionRefusedError('no more sockets')
        return self.sockets.pop(0)


class FakeApi:
    def __init__(self, real_room_id=21452505, hosts=('a.example', 'b.example', 'c.example'),
                 token='token-abc', uid=42, room_code=0, danmu_code=0, broken=False):
        self.real_room_id = real_room_id
        self.hosts = hosts
        self.token = token
        self.uid = uid
        self.room_code = room_code
        self.danmu_code = danmu_code
        self.broken = broken

    def get_room_info(self, room_id):
        if self.broken:
            raise ConnectionError('api down')
        return {'code': self.room_code, 'data': {'room_id': self.real_room_id}}

    def get_danmu_info(self, room_id):
        if self.broken:
            raise ConnectionError('api down')
        return self.uid, {
            'code': self.danmu_code,
            'data': {'token': self.token, 'host_list': [{'host': h, 'wss_port': 443} for h in self.hosts]},
        }


def make_worker(dialer, api=None, cookie='', **kwargs):
    kwargs.setdefault('connect_retry_delay', 0)
    kwargs.setdefault('read_retry_delay', 0)
    kwargs.setdefault('heartbeat_interval', 60)
    return ChatWorker(5440, cookie=cookie, api=api or FakeApi(), dial=dialer, **kwargs)


# ── 초기화 ──

class TestInit:

    async def test_start_sends_enter_packet(self):
        ws = FakeWebSocket()
        dialer = FakeDialer([ws])
        worker = make_worker(dialer, cookie=COOKIE)
        await worker.start()
        try:
            assert worker.state is SessionState.CONNECTED
            assert worker.room_id == 21452505
            assert worker.buvid == 'DEVICE-1234'
            assert dialer.urls == ['wss://a.example/sub']
            assert 'User-Agent' in dialer.headers

            body = enter_body(ws.sent[0])
            assert body['uid'] == 42
            assert body['buvid'] == 'DEVICE-1234'
            assert body['roomid'] == 21452505
            assert body['key'] == 'token-abc'
        finally:
            await worker.stop()

    @pytest.mark.parametrize('cookie', ['SESSDATA=x;', 'bili_jct=y;', 'foo=bar;'])
    async def test_cookie_without_markers(self, cookie):
        dialer = FakeDialer([FakeWebSocket()])
        worker = make_worker(dialer, cookie=cookie)
        with pytest.raises(ConfigurationError):
            await worker.start()
        assert dialer.urls == []

    async def test_anonymous_without_cookie(self):
        ws = FakeWebSocket()
        worker = make_worker(FakeDialer([ws]), api=FakeApi(uid=0))
        await worker.start()
        try:
            body = enter_body(ws.sent[0])
            assert body['uid'] == 0
            assert body['buvid'] == ''
        finally:
            await worker.stop()

    async def test_cookie_without_uuid(self):
        worker = make_worker(FakeDialer([FakeWebSocket()]), cookie='SESSDATA=s; bili_jct=j;')
        await worker.start()
        try:
            assert worker.buvid == ''
        finally:
            await worker.stop()

    async def test_discovery_failure_falls_back_to_default_host(self):
        dialer = FakeDialer([FakeWebSocket()])
        worker = make_worker(dialer, api=FakeApi(broken=True))
        await worker.start()
        try:
            assert worker.room_id == 5440
            assert worker.host_list == [DEFAULT_HOST]
            assert worker.token == ''
            assert dialer.urls == [f'wss://{DEFAULT_HOST}/sub']
        finally:
            await worker.stop()

    async def test_nonzero_code_falls_back(self):
        dialer = FakeDialer([FakeWebSocket()])
        worker = make_worker(dialer, api=FakeApi(room_code=-1, danmu_code=-400))
        await worker.start()
        try:
            assert worker.room_id == 5440
            assert worker.host_list == [DEFAULT_HOST]
        finally:
            await worker.stop()

    async def test_no_usable_room_id(self):
        dialer = FakeDialer([FakeWebSocket()])
        worker = ChatWorker(0, api=FakeApi(broken=True), dial=dialer)
        with pytest.raises(DiscoveryError):
            await worker.start()
        assert dialer.urls == []

    async def test_set_host_overrides_discovery(self):
        dialer = FakeDialer([FakeWebSocket()])
        worker = make_worker(dialer)
        worker.set_host('custom.example')
        await worker.start()
        try:
            assert dialer.urls == ['wss://custom.example/sub']
            assert worker.token == 'token-abc'
        finally:
            await worker.stop()

    async def test_use_default_host(self):
        dialer = FakeDialer([FakeWebSocket()])
        worker = make_worker(dialer)
        worker.use_default_host()
        await worker.start()
        try:
            assert dialer.urls == [f'wss://{DEFAULT_HOST}/sub']
        finally:
            await worker.stop()

    async def test_reset_host_returns_to_discovery(self):
        dialer = FakeDialer([FakeWebSocket()])
        worker = make_worker(dialer)
        worker.use_default_host()
        worker.reset_host()
        await worker.start()
        try:
            assert dialer.urls == ['wss://a.example/sub']
            assert worker.host_list == ['a.example', 'b.example', 'c.example']
        finally:
            await worker.stop()

    async def test_default_host_kept_across_restart(self):
        dialer = FakeDialer([FakeWebSocket(), FakeWebSocket()])
        worker = make_worker(dialer)
        worker.use_default_host()
        await worker.start()
        await worker.start()
        try:
            assert dialer.urls == [f'wss://{DEFAULT_HOST}/sub'] * 2
        finally:
            await worker.stop()


# ── 연결 / 재시도 ──

class TestConnect:

    async def test_host_rotation(self):
        """N번 실패 → host 0..N-1 순서, N+1번째는 다시 host 0"""
        dialer = FakeDialer([FakeWebSocket()], failures=3)
        worker = make_worker(dialer)
        await worker.start()
        try:
            assert dialer.urls == [
                'wss://a.example/sub',
                'wss://b.example/sub',
                'wss://c.example/sub',
                'wss://a.example/sub',
            ]
            assert worker.retry_count == 4
            assert worker.host == 'a.example'
        finally:
            await worker.stop()

    async def test_enter_send_failure_retries_next_host(self):
        bad = FakeWebSocket(fail_send=True)
        good = FakeWebSocket()
        dialer = FakeDialer([bad, good])
        worker = make_worker(dialer)
        await worker.start()
        try:
            assert dialer.urls == ['wss://a.example/sub', 'wss://b.example/sub']
            assert bad.closed
            assert worker.ws is good
            assert enter_body(good.sent[0])['roomid'] == 21452505
        finally:
            await worker.stop()

    async def test_stop_during_retry(self):
        dialer = FakeDialer(failures=10 ** 6)
        worker = make_worker(dialer, connect_retry_delay=0.01)
        start = asyncio.create_task(worker.start())
        await wait_until(lambda: len(dialer.urls) >= 3)
        await worker.stop()
        await asyncio.wait_for(start, timeout=1)

        assert worker.state is SessionState.CLOSED
        attempts = len(dialer.urls)
        await asyncio.sleep(0.05)
        assert len(dialer.urls) == attempts


# ── 수신 / 하트비트 ──

class TestLoops:

    async def test_reconnect_after_read_error(self):
        """두 번째 읽기에서 오류 → 새 연결 → 이후 수신 계속"""
        first = FakeWebSocket([notification('BEFORE'), ConnectionResetError('reset')])
        second = FakeWebSocket([notification('AFTER')])
        dialer = FakeDialer([first, second])
        states = []
        received = []

        worker = make_worker(dialer, on_status_callback=states.append)
        worker.add_custom_handler('BEFORE', received.append)
        worker.add_custom_handler('AFTER', received.append)
        await worker.start()
        try:
            await wait_until(lambda: len(received) == 2)
            assert sorted(e.cmd for e in received) == ['AFTER', 'BEFORE']
            assert dialer.urls == ['wss://a.example/sub', 'wss://b.example/sub']
            assert first.closed
            assert worker.ws is second
            assert enter_body(second.sent[0])['key'] == 'token-abc'
            assert SessionState.RECONNECTING in states
            assert worker.state is SessionState.CONNECTED
            assert worker.running
        finally:
            await worker.stop()

    async def test_status_callback_error_does_not_stop_reconnect(self):
        first = FakeWebSocket([notification('BEFORE'), ConnectionResetError('reset')])
        second = FakeWebSocket([notification('AFTER')])
        dialer = FakeDialer([first, second])
        received = []

        def on_status(state):
            if state is SessionState.RECONNECTING:
                raise RuntimeError('callback failed')

        worker = make_worker(dialer, on_status_callback=on_status)
        worker.add_custom_handler('BEFORE', received.append)
        worker.add_custom_handler('AFTER', received.append)
        await worker.start()
        try:
            await wait_until(lambda: len(received) == 2)
            assert dialer.urls == ['wss://a.example/sub', 'wss://b.example/sub']
            assert worker.ws is second
            assert worker.state is SessionState.CONNECTED
            assert worker.running
        finally:
            await worker.stop()

    async def test_enter_is_first_frame_after_reconnect(self):
        """이전 소켓 종료가 늦어도 새 소켓에는 입장 패킷이 하트비트보다 먼저 간다"""
        first = SlowCloseWebSocket([ConnectionResetError('reset')])
        second = FakeWebSocket()
        worker = make_worker(FakeDialer([first, second]), heartbeat_interval=0.01)
        await worker.start()
        try:
            await wait_until(lambda: first.closed and len(second.sent) >= 2)
            assert Packet.from_bytes(second.sent[0]).operation == Operation.ENTER_ROOM
            assert second.sent[1] == encode_heartbeat()
        finally:
            await worker.stop()

    async def test_text_frame_ignored(self):
        ws = FakeWebSocket(['plain text', notification('OK')])
        received = []
        worker = make_worker(FakeDialer([ws]))
        worker.add_custom_handler('OK', received.append)
        await worker.start()
        try:
            await wait_until(lambda: len(received) == 1)
            await worker.dispatcher.join()
            assert len(received) == 1
        finally:
            await worker.stop()

    async def test_handler_error_does_not_stop_loop(self):
        ws = FakeWebSocket([notification('BOOM'), notification('OK')])
        received = []

        def broken(event):
            raise RuntimeError('handler failed')

        worker = make_worker(FakeDialer([ws]))
        worker.add_custom_handler('BOOM', broken)
        worker.add_custom_handler('OK', received.append)
        await worker.start()
        try:
            await wait_until(lambda: len(received) == 1)
            assert worker.running
        finally:
            await worker.stop()

    async def test_heartbeat_sent(self):
        ws = FakeWebSocket()
        worker = make_worker(FakeDialer([ws]), heartbeat_interval=0.01)
        await worker.start()
        try:
            await wait_until(lambda: ws.sent.count(encode_heartbeat()) >= 2)
            for frame in ws.sent:
                assert len(frame) >= HEADER_LENGTH
        finally:
            await worker.stop()


# ── 종료 ──

class TestStop:

    async def test_stop_closes_everything(self):
        ws = FakeWebSocket()
        states = []
        worker = make_worker(FakeDialer([ws]), on_status_callback=states.append)
        await worker.start()
        await worker.stop()

        assert ws.closed
        assert worker.ws is None
        assert not worker.running
        assert worker.state is SessionState.CLOSED
        assert states[-1] is SessionState.CLOSED

    async def test_stop_does_not_wait_for_handlers(self):
        ws = FakeWebSocket([notification('SLOW')])
        never = asyncio.Event()

        async def slow(event):
            await never.wait()

        worker = make_worker(FakeDialer([ws]))
        worker.add_custom_handler('SLOW', slow)
        await worker.start()
        await wait_until(lambda: worker.dispatcher.pending == 1)

        await asyncio.wait_for(worker.stop(), 0.5)
        assert worker.state is SessionState.CLOSED
        assert worker.dispatcher.pending == 1

        never.set()
        await worker.dispatcher.join()
        assert worker.dispatcher.pending == 0

    async def test_stop_is_idempotent(self):
        worker = make_worker(FakeDialer([FakeWebSocket()]))
        await worker.start()
        await worker.stop()
        await worker.stop()
        assert worker.state is SessionState.CLOSED

    async def test_no_heartbeat_after_stop(self):
        ws = FakeWebSocket()
        worker = make_worker(FakeDialer([ws]), heartbeat_interval=0.01)
        await worker.start()
        await worker.stop()
        sent = len(ws.sent)
        await asyncio.sleep(0.05)
        assert len(ws.sent) == sent

    async def test_restart_replaces_connection(self):
        first = FakeWebSocket()
        second = FakeWebSocket()
        dialer = FakeDialer([first, second])
        worker = make_worker(dialer)
        await worker.start()
        await worker.start()
        try:
            assert first.closed
            assert worker.ws is second
            assert worker.running
        finally:
            await worker.stop()
