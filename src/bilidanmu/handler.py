"""이벤트 디스패처

leaf 패킷 하나당 asyncio task 하나를 만들어, 패킷을 Event 로 변환하고
등록된 핸들러들을 동시에 실행한다.

- 내장 핸들러: EventType 으로 등록
- 커스텀 핸들러: cmd 문자열 정확히 일치로 등록
- 핸들러 예외는 로그만 남기고 다른 핸들러 / 읽기 루프에 영향 없음
- 핸들러 간 실행 순서는 보장하지 않음
"""
import asyncio
import inspect
import logging
from collections import defaultdict

from .cmd_type import BUILTIN_CMDS, EventType, Operation
from .models import AuthReply, Event, Online, PAYLOAD_PARSERS
from .packet import Packet

logger = logging.getLogger(__name__)


class EventDispatcher:
    """패킷 → 핸들러 라우팅

    사용법:
        dispatcher = EventDispatcher()

        @dispatcher.on(EventType.DANMAKU)
        async def on_danmaku(event):
            print(event.data.uname, event.data.content)

        dispatcher.add_custom_handler('WATCHED_CHANGE', lambda e: print(e.data))
        dispatcher.dispatch(packet)
    """

    def __init__(self, max_concurrency: int | None = None, log=None):
        self._handlers = defaultdict(list)
        self._custom_handlers = defaultdict(list)
        self._tasks = set()
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self.log = log or logger

    # ── 등록 ──

    def add_handler(self, event_type: EventType, handler):
        if event_type is EventType.CUSTOM:
            raise ValueError('custom commands are registered by name, use add_custom_handler()')
        self._handlers[event_type].append(handler)

    def add_custom_handler(self, cmd: str, handler):
        self._custom_handlers[cmd].append(handler)

    def on(self, event_type: EventType):
        """내장 이벤트 핸들러 등록 데코레이터"""
        def decorator(func):
            self.add_handler(event_type, func)
            return func
        return decorator

    def on_custom_cmd(self, cmd: str):
        def decorator(func):
            self.add_custom_handler(cmd, func)
            return func
        return decorator

    # ── 디스패치 ──

    def dispatch(self, packet: Packet) -> asyncio.Task:
        """패킷 하나를 독립 task 로 처리. 실행 중인 이벤트 루프 안에서 호출해야 한다."""
        task = asyncio.get_running_loop().create_task(self._handle(packet))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def join(self):
        """현재 진행 중인 디스패치 task 가 모두 끝날 때까지 대기"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _handle(self, packet: Packet):
        if self._semaphore is None:
            await self._handle_packet(packet)
            return
        async with self._semaphore:
            await self._handle_packet(packet)

    async def _handle_packet(self, packet: Packet):
        try:
            event = self.to_event(packet)
        except Exception:
            self.log.warning('패킷 파싱 실패: operation=%d', packet.operation, exc_info=True)
            return
        if event is None:
            return

        handlers = self.handlers_for(event)
        if not handlers:
            return
        await asyncio.gather(*(self._run_handler(h, event) for h in handlers))

    def to_event(self, packet: Packet) -> Event | None:
        """leaf 패킷을 Event 로 변환. 처리 대상이 아니면 None"""
        if packet.operation == Operation.HEARTBEAT_REPLY:
            return Event(EventType.ONLINE, EventType.ONLINE.value, Online(packet.online_count()))

        if packet.operation == Operation.ENTER_ROOM_REPLY:
            body = packet.parse_json()
            return Event(EventType.AUTH, EventType.AUTH.value, AuthReply.from_body(body), body)

        if packet.operation == Operation.NOTIFICATION:
            message = packet.parse_json()
            cmd = message.get('cmd', '')
            # DANMU_MSG:4:0:2:2:2:0 처럼 접미사가 붙는 경우가 있음
            event_type = BUILTIN_CMDS.get(cmd.split(':', 1)[0], EventType.CUSTOM)
            parser = PAYLOAD_PARSERS.get(event_type)
            data = None
            if parser is not None:
                try:
                    data = parser(message)
                except Exception:
                    # 형식이 바뀐 메시지도 custom 핸들러에는 원본 그대로 전달
                    self.log.warning('payload 파싱 실패, custom 으로 전달: cmd=%s', cmd, exc_info=True)
                    event_type = EventType.CUSTOM
                    parser = None
            if parser is None:
                data = message.get('data', message)
            return Event(event_type, cmd, data, message)

        self.log.debug('처리하지 않는 operation: %d', packet.operation)
        return None

    def handlers_for(self, event: Event) -> list:
        handlers = []
        if event.type is not EventType.CUSTOM:
            handlers.extend(self._handlers.get(event.type, ()))
        handlers.extend(self._custom_handlers.get(event.cmd, ()))
        return handlers

    async def _run_handler(self, handler, event: Event):
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.log.error('핸들러 실행 실패: cmd=%s handler=%r', event.cmd, handler, exc_info=True)
