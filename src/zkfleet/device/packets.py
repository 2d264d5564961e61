"""Packet framing for the ZK binary protocol.

Every command and reply starts with an 8-byte little-endian header::

    command:u16  checksum:u16  session_id:u16  reply_id:u16  payload...

Over TCP the packet is additionally prefixed with a "top" header carrying
two magic words and the packet length. UDP datagrams carry the bare packet.
"""
import struct
from dataclasses import dataclass
from datetime import datetime

from ..exceptions import ProtocolError
from .constants import (
    CMD_ACK_OK,
    HEADER_SIZE,
    TCP_MAGIC_1,
    TCP_MAGIC_2,
    TCP_TOP_SIZE,
    USHRT_MAX,
)

_HEADER = struct.Struct("<4H")
_TCP_TOP = struct.Struct("<HHI")


@dataclass(frozen=True)
class Packet:
    """A decoded protocol packet."""

    command: int
    checksum: int
    session_id: int
    reply_id: int
    payload: bytes = b""

    @property
    def is_ack(self) -> bool:
        return self.command == CMD_ACK_OK


def checksum(buf: bytes) -> int:
    """16-bit ZK checksum over a header (with zeroed checksum) and payload."""
    total = 0
    length = len(buf)
    for i in range(0, length, 2):
        if i == length - 1:
            total += buf[i]
        else:
            total += buf[i] | (buf[i + 1] << 8)
        total %= USHRT_MAX
    return USHRT_MAX - total - 1


def build_packet(command: int, session_id: int, reply_id: int, payload: bytes = b"") -> bytes:
    """Frame a command with a valid checksum."""
    unsigned = _HEADER.pack(command, 0, session_id, reply_id) + payload
    chk = checksum(unsigned)
    return _HEADER.pack(command, chk, session_id, reply_id) + payload


def parse_packet(raw: bytes) -> Packet:
    """Decode a bare packet.

    Raises:
        ProtocolError: If the buffer is shorter than a header
    """
    if len(raw) < HEADER_SIZE:
        raise ProtocolError(
            f"Malformed header: expected {HEADER_SIZE} bytes, got {len(raw)}",
        )
    command, chk, session_id, reply_id = _HEADER.unpack_from(raw)
    return Packet(command, chk, session_id, reply_id, bytes(raw[HEADER_SIZE:]))


def wrap_tcp(packet: bytes) -> bytes:
    return _TCP_TOP.pack(TCP_MAGIC_1, TCP_MAGIC_2, len(packet)) + packet


def parse_tcp_top(top: bytes) -> int:
    """Return the packet length announced by a TCP top header."""
    if len(top) < TCP_TOP_SIZE:
        raise ProtocolError(f"Truncated TCP header ({len(top)} bytes)")
    magic1, magic2, length = _TCP_TOP.unpack_from(top)
    if (magic1, magic2) != (TCP_MAGIC_1, TCP_MAGIC_2):
        raise ProtocolError(
            "Bad TCP magic",
            details={"magic": f"{magic1:#06x}/{magic2:#06x}"},
        )
    return length


# ============================================
# Packed device timestamps
# ============================================

def encode_time(value: datetime) -> int:
    """Pack a naive device-local datetime into the device's u32 format."""
    days = (value.year % 100) * 12 * 31 + (value.month - 1) * 31 + value.day - 1
    return days * 86400 + (value.hour * 60 + value.minute) * 60 + value.second


def decode_time(packed: int) -> datetime:
    """Unpack a device u32 timestamp.

    Raises:
        ValueError: If the packed value does not form a real calendar date
            (the format allows 31 days in every month)
    """
    second = packed % 60
    packed //= 60
    minute = packed % 60
    packed //= 60
    hour = packed % 24
    packed //= 24
    day = packed % 31 + 1
    packed //= 31
    month = packed % 12 + 1
    packed //= 12
    year = packed + 2000
    return datetime(year, month, day, hour, minute, second)


def decode_time_bytes(raw: bytes) -> datetime:
    return decode_time(struct.unpack("<I", raw[:4])[0])
