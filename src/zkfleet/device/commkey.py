"""Comm key challenge-response token derivation.

The device mixes the shared secret with the session id it handed out on
CMD_CONNECT. The token has to match the firmware's scheme bit for bit; a
wrong token is answered with a bare non-ACK reply and nothing else.
"""
import struct
from typing import Optional, Union

from .constants import AUTH_TICKS

_MASK32 = 0xFFFFFFFF
_SALT = b"ZKSO"


def parse_secret(secret: Optional[Union[str, int]]) -> int:
    """Parse a numeric comm key as u32; anything unparsable is 0."""
    if secret is None:
        return 0
    try:
        return int(str(secret).strip(), 10) & _MASK32
    except ValueError:
        return 0


def _reverse_bits32(value: int) -> int:
    result = 0
    for i in range(32):
        result = (result << 1) | ((value >> i) & 1)
    return result


def derive_auth_token(
    secret: Optional[Union[str, int]],
    session_id: int,
    ticks: int = AUTH_TICKS,
) -> bytes:
    """Derive the 4-byte CMD_AUTH payload.

    Args:
        secret: Shared comm key (numeric string)
        session_id: Session id assigned by the device
        ticks: Salt byte; only the low 8 bits are used

    Returns:
        4-byte token
    """
    key = (_reverse_bits32(parse_secret(secret)) + session_id) & _MASK32
    salted = bytes(b ^ s for b, s in zip(struct.pack("<I", key), _SALT))

    low, high = struct.unpack("<HH", salted)
    swapped = struct.pack("<HH", high, low)

    tick = ticks & 0xFF
    return bytes((
        swapped[0] ^ tick,
        swapped[1] ^ tick,
        tick,
        swapped[3] ^ tick,
    ))
