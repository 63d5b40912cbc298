"""탄막(danmu) 수신 워커 (async)

방 하나에 대한 연결 수명을 담당한다.

- start(): 방 번호 / 서버 목록 / 토큰 조회 → 연결 → 입장 패킷 → 읽기 루프 + 하트비트 루프
- 연결 실패: CONNECT_RETRY_DELAY 후 다음 host 로 재시도 (횟수 제한 없음, stop() 으로만 중단)
- 읽기 실패: READ_RETRY_DELAY 후 같은 루프 안에서 재연결
- stop(): 취소 신호 → 연결 종료 → 두 루프 종료 대기 (디스패치된 핸들러는 기다리지 않음)

api.py 의 동기 HTTP 호출은 asyncio.to_thread() 로 감싸서 이벤트 루프를 막지 않는다.
모든 전송과 연결 교체는 하나의 asyncio.Lock 아래에서만 일어난다.
"""
import asyncio
import logging
import re
from enum import Enum

import websockets

from .api import BiliApi
from .config import (
    CONNECT_RETRY_DELAY,
    DEFAULT_HOST,
    HEARTBEAT_INTERVAL,
    READ_RETRY_DELAY,
    USER_AGENT,
)
from .errors import ConfigurationError, ConnectError, DiscoveryError, TransportError
from .handler import EventDispatcher
from .packet import decode_frame, encode_enter, encode_heartbeat

logger = logging.getLogger(__name__)

BUVID_PATTERN = re.compile(r'_uuid=(.+?);')

TRANSPORT_ERRORS = (websockets.WebSocketException, OSError, asyncio.TimeoutError)


class SessionState(Enum):
    UNINITIALIZED = 'uninitialized'
    DISCOVERING = 'discovering'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    RECONNECTING = 'reconnecting'
    CLOSED = 'closed'


async def connect_websocket(url: str, headers: dict):
    return await websockets.connect(url, additional_headers=headers)


class ChatWorker:
    """탄막 수신을 담당하는 비동기 워커

    사용법:
        worker = ChatWorker(21452505, cookie=cookie)

        @worker.on(EventType.DANMAKU)
        def on_danmaku(event):
            print(event.data.uname, event.data.content)

        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(self, room_id: int, cookie: str = '', *, api=None, dispatcher=None,
                 dial=None, on_status_callback=None, max_concurrency: int | None = None,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL,
                 connect_retry_delay: float = CONNECT_RETRY_DELAY,
                 read_retry_delay: float = READ_RETRY_DELAY,
                 log=None):
        self.room_id = room_id
        self.uid = 0
        self.buvid = ''
        self.cookie = cookie
        self.token = ''
        self.host = None
        self.host_list = []
        self.retry_count = 0
        self.ws = None

        self.api = api
        self.log = log or logger
        self.dispatcher = dispatcher or EventDispatcher(max_concurrency, log=self.log)
        self.on_status_callback = on_status_callback
        self.heartbeat_interval = heartbeat_interval
        self.connect_retry_delay = connect_retry_delay
        self.read_retry_delay = read_retry_delay
        self._dial = dial or connect_websocket

        self.state = SessionState.UNINITIALIZED
        self._fixed_host = False
        self._closed = False
        self._lock = asyncio.Lock()
        self._done = asyncio.Event()
        self._tasks = []

    # ── 설정 ──

    def set_cookie(self, cookie: str):
        """start() 전에 호출해야 한다"""
        self.cookie = cookie

    def set_host(self, host: str):
        """지정한 host 하나만 사용 (서버 목록 조회 결과 무시)"""
        self.host_list = [host]
        self._fixed_host = True

    def use_default_host(self):
        """기본 host broadcastlv.chat.bilibili.com 으로 고정

        set_host() 와 같이 이후 start() 에서도 계속 유지된다.
        서버 목록 조회로 돌아가려면 reset_host() 호출
        """
        self.set_host(DEFAULT_HOST)

    def reset_host(self):
        """고정 host 해제. 다음 start() 부터 서버 목록 조회 결과 사용"""
        self.host_list = []
        self._fixed_host = False

    # ── 핸들러 등록 (dispatcher 위임) ──

    def on(self, event_type):
        return self.dispatcher.on(event_type)

    def on_custom_cmd(self, cmd: str):
        return self.dispatcher.on_custom_cmd(cmd)

    def add_handler(self, event_type, handler):
        self.dispatcher.add_handler(event_type, handler)

    def add_custom_handler(self, cmd: str, handler):
        self.dispatcher.add_custom_handler(cmd, handler)

    # ── 수명 ──

    @property
    def running(self) -> bool:
        return not self._closed and any(not t.done() for t in self._tasks)

    async def start(self):
        """초기화 후 연결하고 읽기 / 하트비트 루프 시작

        쿠키 형식 오류(ConfigurationError), 사용할 방 번호가 없는 경우(DiscoveryError)만 예외.
        연결 실패는 성공하거나 stop() 될 때까지 재시도한다.
        """
        await self._close_generation()
        done = self._done = asyncio.Event()
        self._closed = False

        try:
            await self._init()
        except (ConfigurationError, DiscoveryError):
            self._set_state(SessionState.UNINITIALIZED)
            raise

        if not await self._connect(done):
            return

        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._read_loop(done)),
            loop.create_task(self._heartbeat_loop(done)),
        ]

    async def stop(self):
        """취소 신호를 보내고 루프 종료. 이미 멈춘 경우 아무것도 하지 않음"""
        if self._closed:
            return
        self._closed = True
        await self._close_generation()
        self._set_state(SessionState.CLOSED)
        self.log.debug('room=%d 클라이언트 종료', self.room_id)

    async def _close_generation(self):
        """현재 세대의 루프를 멈추고 연결을 닫는다"""
        self._done.set()
        tasks, self._tasks = self._tasks, []
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)

        async with self._lock:
            ws, self.ws = self.ws, None
        if ws is not None:
            await self._close_quietly(ws)

    # ── 초기화 ──

    async def _init(self):
        """실제 방 번호, 서버 목록, 토큰, uid 조회. 실패하면 기본 host 로 강등"""
        self._set_state(SessionState.DISCOVERING)
        if self.api is None:
            self.api = BiliApi(self.cookie)

        if self.cookie:
            if 'bili_jct' not in self.cookie or 'SESSDATA' not in self.cookie:
                self.log.error('쿠키에 로그인 정보(bili_jct, SESSDATA)가 없습니다')
                raise ConfigurationError('cookie must contain bili_jct and SESSDATA')
            match = BUVID_PATTERN.search(self.cookie)
            if match:
                self.buvid = match.group(1)

        try:
            room_info = await asyncio.to_thread(self.api.get_room_info, self.room_id)
            if room_info.get('code') != 0:
                raise DiscoveryError(f"room_init code={room_info.get('code')}")
            self.room_id = int(room_info['data']['room_id'])
        except Exception:
            self.log.error('room=%d 방 정보 조회 실패, 입력한 방 번호 사용', self.room_id, exc_info=True)

        if not isinstance(self.room_id, int) or self.room_id <= 0:
            raise DiscoveryError(f'no usable room id: {self.room_id!r}')

        hosts = []
        try:
            self.uid, info = await asyncio.to_thread(self.api.get_danmu_info, self.room_id)
            if info.get('code') != 0:
                raise DiscoveryError(f"getDanmuInfo code={info.get('code')}")
            hosts = [h['host'] for h in info['data']['host_list']]
            self.token = info['data']['token']
        except Exception:
            self.log.error('room=%d 채팅 서버 조회 실패, 기본 host 사용', self.room_id, exc_info=True)
            self.token = ''

        if not self._fixed_host:
            self.host_list = hosts or [DEFAULT_HOST]

    # ── 연결 ──

    async def _connect(self, done: asyncio.Event) -> bool:
        """연결 + 입장 패킷 전송. 성공하면 True, 도중에 stop() 되면 False"""
        if not self.host_list:
            raise ConnectError('no host found when connecting')
        headers = {'User-Agent': USER_AGENT}

        while not done.is_set():
            self._set_state(SessionState.CONNECTING)
            self.host = self.host_list[self.retry_count % len(self.host_list)]
            self.retry_count += 1

            try:
                ws = await self._dial(f'wss://{self.host}/sub', headers)
            except TRANSPORT_ERRORS:
                self.log.error('연결 실패 host=%s, 재시도 %d회', self.host, self.retry_count, exc_info=True)
                await self._wait(done, self.connect_retry_delay)
                continue

            if done.is_set():
                await self._close_quietly(ws)
                break

            old = None
            try:
                # 새 연결의 첫 패킷은 반드시 입장 패킷 (교체와 같은 lock 안에서 전송)
                async with self._lock:
                    old, self.ws = self.ws, ws
                    await ws.send(encode_enter(self.uid, self.buvid, self.room_id, self.token))
                self.log.debug('send: EnterPacket')
            except TRANSPORT_ERRORS:
                self.log.error('입장 패킷 전송 실패, 재시도 %d회', self.retry_count, exc_info=True)
                await self._wait(done, self.connect_retry_delay)
                continue
            finally:
                if old is not None:
                    await self._close_quietly(old)

            self._set_state(SessionState.CONNECTED)
            self.log.info('room=%d %s 연결 완료', self.room_id, self.host)
            return True

        # stop() 과 엇갈려 들어온 연결 정리
        async with self._lock:
            ws, self.ws = self.ws, None
        if ws is not None:
            await self._close_quietly(ws)
        return False

    async def _send(self, data: bytes):
        async with self._lock:
            if self.ws is None:
                raise TransportError('not connected')
            await self.ws.send(data)

    # ── 루프 ──

    async def _read_loop(self, done: asyncio.Event):
        while not done.is_set():
            try:
                if self.ws is None:
                    raise TransportError('not connected')
                message = await self.ws.recv()
            except (TransportError, *TRANSPORT_ERRORS):
                if done.is_set():
                    break
                self.log.error('메시지 수신 실패, 재연결 중', exc_info=True)
                self._set_state(SessionState.RECONNECTING)
                await self._wait(done, self.read_retry_delay)
                await self._connect(done)
                continue

            if not isinstance(message, (bytes, bytearray)):
                self.log.warning('바이너리가 아닌 프레임 무시: %.50r', message)
                continue

            for packet in decode_frame(message):
                self.dispatcher.dispatch(packet)

        self.log.debug('읽기 루프 종료')

    async def _heartbeat_loop(self, done: asyncio.Event):
        packet = encode_heartbeat()
        while not await self._wait(done, self.heartbeat_interval):
            try:
                await self._send(packet)
            except (TransportError, *TRANSPORT_ERRORS):
                self.log.error('하트비트 전송 실패', exc_info=True)
                continue
            self.log.debug('send: HeartBeat')

    # ── 유틸 ──

    @staticmethod
    async def _wait(done: asyncio.Event, delay: float) -> bool:
        """delay 만큼 대기. 도중에 취소 신호가 오면 바로 True"""
        try:
            await asyncio.wait_for(done.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _close_quietly(self, ws):
        try:
            await ws.close()
        except TRANSPORT_ERRORS:
            self.log.debug('웹소켓 종료 중 오류', exc_info=True)

    def _set_state(self, state: SessionState):
        if self.state is state:
            return
        self.state = state
        self.log.debug('room=%d state=%s', self.room_id, state.value)
        if self.on_status_callback:
            try:
                self.on_status_callback(state)
            except Exception:
                self.log.error('상태 콜백 실행 실패: state=%s', state.value, exc_info=True)
