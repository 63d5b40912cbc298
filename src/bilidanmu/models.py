"""이벤트 데이터 모델

디스패처가 핸들러에 넘기는 Event 와, 내장 이벤트의 구조화된 payload.
payload 가 정의되지 않은 이벤트(LIVE, PREPARING, 커스텀 cmd 등)는 원본 dict 를 그대로 넘긴다.
"""
from dataclasses import dataclass
from typing import Any

from .cmd_type import EventType


@dataclass
class Event:
    type: EventType
    cmd: str
    data: Any = None
    raw: dict | None = None


@dataclass
class Online:
    count: int


@dataclass
class AuthReply:
    code: int

    @property
    def ok(self) -> bool:
        return self.code == 0

    @classmethod
    def from_body(cls, body: dict):
        return cls(code=int(body.get('code', -1)))


@dataclass
class Medal:
    level: int
    name: str
    up_name: str
    room_id: int


@dataclass
class Danmaku:
    uid: int
    uname: str
    content: str
    timestamp: int
    medal: Medal | None = None

    @classmethod
    def from_message(cls, message: dict):
        """DANMU_MSG 는 data 가 아니라 info 배열에 내용이 있다"""
        info = message['info']
        user = info[2]
        medal = None
        if len(info) > 3 and info[3]:
            m = info[3]
            medal = Medal(level=m[0], name=m[1], up_name=m[2], room_id=m[3])
        return cls(
            uid=int(user[0]),
            uname=user[1],
            content=info[1],
            timestamp=int(info[0][4]),
            medal=medal,
        )


@dataclass
class Gift:
    uid: int
    uname: str
    gift_id: int
    gift_name: str
    num: int
    price: int
    coin_type: str

    @classmethod
    def from_message(cls, message: dict):
        data = message['data']
        return cls(
            uid=int(data['uid']),
            uname=data['uname'],
            gift_id=int(data.get('giftId', 0)),
            gift_name=data['giftName'],
            num=int(data.get('num', 1)),
            price=int(data.get('price', 0)),
            coin_type=data.get('coin_type', ''),
        )


@dataclass
class SuperChat:
    id: int
    uid: int
    uname: str
    message: str
    price: int

    @classmethod
    def from_message(cls, message: dict):
        data = message['data']
        return cls(
            id=int(data.get('id', 0)),
            uid=int(data['uid']),
            uname=data.get('user_info', {}).get('uname', ''),
            message=data['message'],
            price=int(data.get('price', 0)),
        )


@dataclass
class GuardBuy:
    uid: int
    username: str
    guard_level: int
    num: int
    price: int
    gift_name: str = ''

    @classmethod
    def from_message(cls, message: dict):
        data = message['data']
        return cls(
            uid=int(data['uid']),
            username=data['username'],
            guard_level=int(data['guard_level']),
            num=int(data.get('num', 1)),
            price=int(data.get('price', 0)),
            gift_name=data.get('gift_name', ''),
        )


# 구조화 payload 가 있는 notification 이벤트
PAYLOAD_PARSERS = {
    EventType.DANMAKU: Danmaku.from_message,
    EventType.GIFT: Gift.from_message,
    EventType.SUPER_CHAT: SuperChat.from_message,
    EventType.GUARD_BUY: GuardBuy.from_message,
}
