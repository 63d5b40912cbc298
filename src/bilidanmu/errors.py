"""예외 정의"""


class BiliDanmuError(Exception):
    pass


class ConfigurationError(BiliDanmuError):
    """쿠키 등 설정 값이 잘못됨 (재시도하지 않음)"""


class DiscoveryError(BiliDanmuError):
    """방 번호 / 서버 목록 조회 실패"""


class ConnectError(BiliDanmuError):
    """웹소켓 연결 또는 입장 패킷 전송 실패"""


class TransportError(BiliDanmuError):
    """연결 중 읽기/쓰기 실패"""


class ProtocolError(BiliDanmuError):
    """패킷 형식 오류"""
