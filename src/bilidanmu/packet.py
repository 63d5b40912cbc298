"""패킷 인코딩 / 디코딩

패킷 구조 (big-endian):
    total length  4B  헤더 포함 전체 길이
    header length 2B  항상 16
    version       2B  cmd_type.ProtoVer
    operation     4B  cmd_type.Operation
    sequence      4B
    body          가변

하나의 웹소켓 프레임에 여러 패킷이 이어 붙어 올 수 있고,
version 2/3 패킷의 body 는 다시 패킷들이 이어 붙은 프레임을 압축한 것이다.
decode_frame() 은 압축을 모두 풀어 leaf 패킷 목록으로 평탄화한다.
"""
import json
import logging
import struct
import zlib
from dataclasses import dataclass

import brotli

from .cmd_type import Operation, ProtoVer
from .errors import ProtocolError

logger = logging.getLogger(__name__)

HEADER = struct.Struct('>IHHII')
HEADER_LENGTH = HEADER.size  # 16

HEARTBEAT_BODY = b'[object Object]'


@dataclass
class Packet:
    version: int
    operation: int
    body: bytes = b''
    sequence: int = 1
    header_length: int = HEADER_LENGTH
    total_length: int | None = None

    def __post_init__(self):
        if self.total_length is None:
            self.total_length = self.header_length + len(self.body)

    @property
    def header(self) -> bytes:
        return HEADER.pack(self.total_length, self.header_length,
                           self.version, self.operation, self.sequence)

    def build(self) -> bytes:
        return self.header + self.body

    @property
    def is_compressed(self) -> bool:
        return self.version in (ProtoVer.ZLIB, ProtoVer.BROTLI)

    def parse_json(self):
        return json.loads(self.body.decode('utf-8'))

    def online_count(self) -> int:
        """하트비트 응답 body 의 시청자 수 (4B big-endian)"""
        if len(self.body) < 4:
            raise ProtocolError(f'heartbeat reply body too short: {len(self.body)}')
        return struct.unpack('>I', self.body[:4])[0]

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Packet':
        """패킷 하나만 엄격하게 파싱 (남는 바이트가 있으면 오류)"""
        if len(data) < HEADER_LENGTH:
            raise ProtocolError(f'packet too short: {len(data)}')
        total, header_len, ver, op, seq = HEADER.unpack_from(data)
        if total != len(data) or total < header_len or header_len < HEADER_LENGTH:
            raise ProtocolError(f'bad length fields: total={total} header={header_len} size={len(data)}')
        return cls(version=ver, operation=op, body=bytes(data[header_len:total]),
                   sequence=seq, header_length=header_len, total_length=total)


def _decompress(version: int, body: bytes) -> bytes:
    if version == ProtoVer.ZLIB:
        return zlib.decompress(body)
    return brotli.decompress(body)


def decode_frame(data: bytes) -> list[Packet]:
    """프레임을 leaf 패킷 목록으로 디코딩

    - 압축 해제 실패: 해당 패킷만 버리고 다음 패킷 계속
    - 길이 필드 이상: 다음 패킷 경계를 알 수 없으므로 나머지 버림
    """
    packets = []
    offset = 0
    size = len(data)

    while offset < size:
        if size - offset < HEADER_LENGTH:
            logger.warning('패킷 헤더 잘림: offset=%d size=%d', offset, size)
            break

        total, header_len, ver, op, seq = HEADER.unpack_from(data, offset)
        if total < header_len or header_len < HEADER_LENGTH or offset + total > size:
            logger.warning('잘못된 패킷 길이: total=%d header=%d offset=%d size=%d',
                           total, header_len, offset, size)
            break

        body = bytes(data[offset + header_len:offset + total])
        offset += total

        if ver in (ProtoVer.ZLIB, ProtoVer.BROTLI):
            try:
                inner = _decompress(ver, body)
            except (zlib.error, brotli.error):
                logger.warning('압축 해제 실패: version=%d operation=%d', ver, op, exc_info=True)
                continue
            packets.extend(decode_frame(inner))
            continue

        packets.append(Packet(version=ver, operation=op, body=body, sequence=seq,
                              header_length=header_len, total_length=total))

    return packets


def encode_enter(uid: int, buvid: str, room_id: int, token: str) -> bytes:
    """입장(인증) 패킷"""
    body = {
        'uid': uid,
        'buvid': buvid,
        'roomid': room_id,
        'protover': ProtoVer.BROTLI.value,
        'platform': 'web',
        'type': 2,
        'key': token,
    }
    return Packet(version=ProtoVer.PLAIN, operation=Operation.ENTER_ROOM,
                  body=json.dumps(body).encode('utf-8')).build()


def encode_heartbeat() -> bytes:
    return Packet(version=ProtoVer.PLAIN, operation=Operation.HEARTBEAT,
                  body=HEARTBEAT_BODY).build()
