"""프로토콜 상수 및 이벤트 종류 정의

패킷 헤더의 operation / version 코드와, 디스패처가 내장 핸들러를 찾을 때 쓰는
이벤트 종류(닫힌 집합)를 모아둔다.
"""
from enum import Enum, IntEnum


class Operation(IntEnum):
    HEARTBEAT = 2
    HEARTBEAT_REPLY = 3
    NOTIFICATION = 5
    ENTER_ROOM = 7
    ENTER_ROOM_REPLY = 8


class ProtoVer(IntEnum):
    JSON = 0
    PLAIN = 1       # 입장/하트비트 패킷, 하트비트 응답
    ZLIB = 2        # zlib 압축된 중첩 프레임
    BROTLI = 3      # brotli 압축된 중첩 프레임


class EventType(Enum):
    """내장 이벤트 종류

    값은 NOTIFICATION 본문의 cmd 문자열과 같다.
    ONLINE / AUTH 는 cmd 가 없는 패킷(하트비트 응답, 입장 응답)용.
    """
    ONLINE = 'ONLINE'
    AUTH = 'AUTH'
    DANMAKU = 'DANMU_MSG'
    SUPER_CHAT = 'SUPER_CHAT_MESSAGE'
    GIFT = 'SEND_GIFT'
    GUARD_BUY = 'GUARD_BUY'
    USER_TOAST = 'USER_TOAST_MSG'
    LIVE = 'LIVE'
    PREPARING = 'PREPARING'
    CUSTOM = 'CUSTOM'


# cmd 문자열 → 내장 이벤트 종류
BUILTIN_CMDS = {
    t.value: t for t in EventType
    if t not in (EventType.ONLINE, EventType.AUTH, EventType.CUSTOM)
}


''' Notification 본문 예시 (operation=5, version=0)
{
    "cmd": "DANMU_MSG:4:0:2:2:2:0",
    "info": [
        [0, 1, 25, 16777215, 1700000000000, 1700000000, 0, "3aa48643", 0, 0, 0, "", 0, "{}", "{}", {...}],
        "2333",
        [12345, "uname", 0, 0, 0, 10000, 1, ""],
        [21, "medal", "anchor", 5440, 1725515, "", 0],
        ...
    ]
}
'''
