"""ZK binary protocol device client.

Layers, leaf first:
    - packets / commkey: framing, checksums, packed time, auth tokens
    - records / transliteration: layout-detecting record codec
    - transport: TCP and UDP sockets, local UDP port pool
    - session: handshake, buffered transfer, device operations
    - client: leased sessions, packet-size cache
"""
from .client import DeviceLeases, PacketSizeCache, ZKClient
from .commkey import derive_auth_token
from .records import (
    DecodeAmbiguity,
    DecodeResult,
    RawAttendanceRecord,
    RawUserRecord,
    RecordLayout,
    decode_attendances,
    decode_users,
    encode_user,
    score_layout,
)
from .session import (
    DeviceInfo,
    DeviceSession,
    Session,
    SessionState,
    TcpSession,
    UdpSession,
    connect,
)
from .transport import PortPool, TransportKind

__all__ = [
    "ZKClient",
    "DeviceLeases",
    "PacketSizeCache",
    "PortPool",
    "TransportKind",
    "derive_auth_token",
    "RecordLayout",
    "RawUserRecord",
    "RawAttendanceRecord",
    "DecodeAmbiguity",
    "DecodeResult",
    "decode_users",
    "decode_attendances",
    "encode_user",
    "score_layout",
    "DeviceInfo",
    "DeviceSession",
    "TcpSession",
    "UdpSession",
    "Session",
    "SessionState",
    "connect",
]
