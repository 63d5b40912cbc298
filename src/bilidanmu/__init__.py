from .chat_worker import ChatWorker, SessionState
from .cmd_type import EventType, Operation, ProtoVer
from .errors import (
    BiliDanmuError,
    ConfigurationError,
    ConnectError,
    DiscoveryError,
    ProtocolError,
    TransportError,
)
from .handler import EventDispatcher
from .models import Event
from .packet import Packet, decode_frame, encode_enter, encode_heartbeat

__version__ = '0.1.0'
