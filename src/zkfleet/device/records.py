"""Record codec for user and attendance dumps.

Firmware generations disagree on record layout: users come as 72-byte or
legacy 28-byte records, attendance as 40-byte or 16-byte records, and the
device never says which. Each layout is a member of ``RecordLayout``; a dump
is decoded under every layout of its kind, each candidate is scored by
``score_layout`` and a deterministic policy picks the winner.

Selection policy:
    1. Exactly one layout size divides the payload -> use it.
    2. Several divide -> highest score wins.
    3. Tie, or nothing divides -> highest score among all layouts,
       trailing bytes that do not fill a record are dropped.
    4. Remaining tie -> cached size hint for the device, then enum order.
"""
import logging
import math
import struct
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

from ..exceptions import ValidationError
from .constants import KNOWN_ROLES, MAX_UID, MIN_UID, USER_ADMIN
from .packets import decode_time_bytes
from .transliteration import encode_name

logger = logging.getLogger(__name__)

R = TypeVar("R")

MIN_PLAUSIBLE_YEAR = 2000
MAX_PLAUSIBLE_YEAR = 2100


class RecordKind(str, Enum):
    USER = "user"
    ATTENDANCE = "attendance"


class RecordLayout(Enum):
    """Known fixed-size record layouts."""

    USER_72 = (RecordKind.USER, "<HB8s24sIx7sx24s")
    USER_28 = (RecordKind.USER, "<HB5s8sIxBhI")
    ATT_40 = (RecordKind.ATTENDANCE, "<H24sB4sB8s")
    ATT_16 = (RecordKind.ATTENDANCE, "<I4sBB2sI")

    def __init__(self, kind: RecordKind, fmt: str):
        self.kind = kind
        self.codec = struct.Struct(fmt)

    @property
    def size(self) -> int:
        return self.codec.size

    @classmethod
    def for_kind(cls, kind: RecordKind) -> list["RecordLayout"]:
        return [layout for layout in cls if layout.kind is kind]

    @classmethod
    def from_size(cls, kind: RecordKind, size: int) -> Optional["RecordLayout"]:
        for layout in cls.for_kind(kind):
            if layout.size == size:
                return layout
        return None

    def alternate(self) -> "RecordLayout":
        """The other layout of the same kind."""
        return next(l for l in self.for_kind(self.kind) if l is not self)


# ============================================
# Records
# ============================================

@dataclass
class RawUserRecord:
    """A user enrollment slot as stored on the device."""

    uid: int
    role: int = 0
    name: str = ""
    card: int = 0
    user_id: str = ""
    password: str = ""
    group_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "role": self.role,
            "name": self.name,
            "card": self.card,
            "user_id": self.user_id,
            "group_id": self.group_id,
        }


@dataclass
class RawAttendanceRecord:
    """A punch in the device's own clock domain.

    ``timestamp`` is naive device-local time, or None when the packed value
    is not a calendar date.
    """

    user_id: str
    timestamp: Optional[datetime]
    status: int = 0
    punch: int = 0
    device_ip: Optional[str] = None
    uid: Optional[int] = None

    @property
    def has_plausible_time(self) -> bool:
        return (
            self.timestamp is not None
            and MIN_PLAUSIBLE_YEAR <= self.timestamp.year <= MAX_PLAUSIBLE_YEAR
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "record_time": self.timestamp.isoformat() if self.timestamp else None,
            "status": self.status,
            "punch": self.punch,
            "device_ip": self.device_ip,
            "uid": self.uid,
        }


@dataclass
class DecodeAmbiguity:
    """Diagnostic emitted when no layout fits a dump cleanly."""

    kind: RecordKind
    payload_length: int
    scores: dict[int, float]
    chosen_size: int
    reason: str


@dataclass
class DecodeResult(Generic[R]):
    records: list[R]
    layout: RecordLayout
    score: float
    ambiguity: Optional[DecodeAmbiguity] = None
    discarded_bytes: int = 0

    @property
    def ambiguous(self) -> bool:
        return self.ambiguity is not None


# ============================================
# Field helpers
# ============================================

def _cstr(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")


def _safe_time(raw: bytes) -> Optional[datetime]:
    try:
        return decode_time_bytes(raw)
    except (ValueError, OverflowError):
        return None


def _is_clean_text(value: str) -> bool:
    return bool(value) and value.isprintable() and "�" not in value


# ============================================
# Decoding
# ============================================

def decode_user(chunk: bytes, layout: RecordLayout) -> RawUserRecord:
    if layout is RecordLayout.USER_72:
        uid, role, password, name, card, group_id, user_id = layout.codec.unpack(chunk)
        return RawUserRecord(
            uid=uid,
            role=role,
            name=_cstr(name),
            card=card,
            user_id=_cstr(user_id),
            password=_cstr(password),
            group_id=_cstr(group_id),
        )
    if layout is RecordLayout.USER_28:
        uid, role, password, name, card, group_id, _tz, user_id = layout.codec.unpack(chunk)
        return RawUserRecord(
            uid=uid,
            role=role,
            name=_cstr(name),
            card=card,
            user_id=str(user_id),
            password=_cstr(password),
            group_id=str(group_id),
        )
    raise ValueError(f"{layout.name} is not a user layout")


def decode_attendance(
    chunk: bytes,
    layout: RecordLayout,
    device_ip: Optional[str] = None,
) -> RawAttendanceRecord:
    if layout is RecordLayout.ATT_40:
        uid, user_id, status, packed_time, punch, _space = layout.codec.unpack(chunk)
        return RawAttendanceRecord(
            user_id=_cstr(user_id),
            timestamp=_safe_time(packed_time),
            status=status,
            punch=punch,
            device_ip=device_ip,
            uid=uid,
        )
    if layout is RecordLayout.ATT_16:
        user_id, packed_time, status, punch, _reserved, _workcode = layout.codec.unpack(chunk)
        return RawAttendanceRecord(
            user_id=str(user_id),
            timestamp=_safe_time(packed_time),
            status=status,
            punch=punch,
            device_ip=device_ip,
        )
    raise ValueError(f"{layout.name} is not an attendance layout")


def _split(payload: bytes, layout: RecordLayout) -> list[bytes]:
    size = layout.size
    return [payload[i:i + size] for i in range(0, len(payload) - size + 1, size)]


# ============================================
# Scoring
# ============================================

def _score_user(record: RawUserRecord) -> float:
    score = 1.0 if MIN_UID <= record.uid <= MAX_UID else -1.0

    if record.role in KNOWN_ROLES:
        score += 1.0
    elif record.role > USER_ADMIN:
        score -= 2.0
    else:
        score -= 0.5

    if _is_clean_text(record.name):
        score += 1.0
    elif record.name:
        score -= 1.0
    return score


def _score_attendance(record: RawAttendanceRecord) -> float:
    score = 1.0 if record.has_plausible_time else -1.0
    score += 0.5 if _is_clean_text(record.user_id) else -0.5
    return score


_SCORERS: dict[RecordKind, Callable[[Any], float]] = {
    RecordKind.USER: _score_user,
    RecordKind.ATTENDANCE: _score_attendance,
}


def score_layout(layout: RecordLayout, records: list) -> float:
    """Mean per-record plausibility of a candidate decoding (0.0 if empty)."""
    if not records:
        return 0.0
    scorer = _SCORERS[layout.kind]
    return sum(scorer(r) for r in records) / len(records)


# ============================================
# Selection
# ============================================

def _pick_best(
    layouts: list[RecordLayout],
    scores: dict[RecordLayout, float],
    decoded: dict[RecordLayout, list],
    hint: Optional[RecordLayout],
) -> tuple[RecordLayout, bool]:
    """Return the best layout and whether the top score was tied."""

    def rank(layout: RecordLayout) -> tuple[bool, float]:
        return (bool(decoded[layout]), scores[layout])

    top = max(rank(l) for l in layouts)
    tied = [l for l in layouts if math.isclose(rank(l)[1], top[1]) and rank(l)[0] == top[0]]
    if hint in tied:
        return hint, len(tied) > 1
    return tied[0], len(tied) > 1


def _select(
    kind: RecordKind,
    payload: bytes,
    decode: Callable[[bytes, RecordLayout], R],
    hint: Optional[RecordLayout] = None,
) -> DecodeResult[R]:
    layouts = RecordLayout.for_kind(kind)
    if hint is not None and hint.kind is not kind:
        hint = None

    if not payload:
        return DecodeResult(records=[], layout=hint or layouts[0], score=0.0)

    decoded = {l: [decode(c, l) for c in _split(payload, l)] for l in layouts}
    scores = {l: score_layout(l, decoded[l]) for l in layouts}
    dividing = [l for l in layouts if len(payload) % l.size == 0]

    ambiguity_reason: Optional[str] = None
    if len(dividing) == 1:
        chosen = dividing[0]
    elif len(dividing) > 1:
        chosen, tied = _pick_best(dividing, scores, decoded, hint)
        ambiguity_reason = "multiple layouts divide payload"
        if tied:
            chosen, _ = _pick_best(layouts, scores, decoded, hint)
            ambiguity_reason = "multiple layouts divide payload with tied scores"
    else:
        chosen, _ = _pick_best(layouts, scores, decoded, hint)
        ambiguity_reason = "no layout divides payload"

    discarded = len(payload) % chosen.size
    ambiguity = None
    if ambiguity_reason:
        ambiguity = DecodeAmbiguity(
            kind=kind,
            payload_length=len(payload),
            scores={l.size: round(scores[l], 3) for l in layouts},
            chosen_size=chosen.size,
            reason=ambiguity_reason,
        )
        log = logger.debug if len(dividing) > 1 and "tied" not in ambiguity_reason else logger.warning
        log(
            f"Ambiguous {kind.value} dump ({len(payload)} bytes): {ambiguity_reason}; "
            f"scores={ambiguity.scores}, chose {chosen.size}-byte records, "
            f"discarding {discarded} trailing bytes"
        )

    return DecodeResult(
        records=decoded[chosen],
        layout=chosen,
        score=scores[chosen],
        ambiguity=ambiguity,
        discarded_bytes=discarded,
    )


def strip_size_prefix(dump: bytes) -> bytes:
    """Drop the u32 total-size prefix that leads every bulk dump."""
    if len(dump) < 4:
        return b""
    return dump[4:]


def decode_users(
    payload: bytes,
    hint: Optional[RecordLayout] = None,
) -> DecodeResult[RawUserRecord]:
    """Decode user records (size prefix already stripped)."""
    return _select(RecordKind.USER, payload, decode_user, hint)


def decode_attendances(
    payload: bytes,
    device_ip: Optional[str] = None,
    hint: Optional[RecordLayout] = None,
) -> DecodeResult[RawAttendanceRecord]:
    """Decode attendance records (size prefix already stripped)."""
    return _select(
        RecordKind.ATTENDANCE,
        payload,
        lambda chunk, layout: decode_attendance(chunk, layout, device_ip),
        hint,
    )


# ============================================
# Encoding (write path)
# ============================================

def validate_user(user: RawUserRecord) -> None:
    """Reject a user record before anything touches the network.

    Raises:
        ValidationError: On an out-of-range uid or missing fields
    """
    if not isinstance(user.uid, int) or not MIN_UID <= user.uid <= MAX_UID:
        raise ValidationError(
            f"uid must be between {MIN_UID} and {MAX_UID}, got {user.uid!r}",
            field="uid",
        )
    if not user.user_id:
        raise ValidationError("user_id is required", field="user_id")
    if not user.name or not user.name.strip():
        raise ValidationError("name is required", field="name")
    if not 0 <= user.role <= 255:
        raise ValidationError(f"role out of range: {user.role}", field="role")
    if not 0 <= user.card <= 0xFFFFFFFF:
        raise ValidationError(f"card number out of range: {user.card}", field="card")


def encode_user(user: RawUserRecord, layout: RecordLayout) -> bytes:
    """Pack a user record for CMD_USER_WRQ.

    Names are transliterated here; the read path keeps device bytes as-is.

    Raises:
        ValidationError: If the record cannot be expressed in ``layout``
    """
    validate_user(user)
    if layout is RecordLayout.USER_72:
        return layout.codec.pack(
            user.uid,
            user.role,
            user.password.encode("utf-8")[:8],
            encode_name(user.name, 24),
            user.card,
            user.group_id.encode("utf-8")[:7],
            user.user_id.encode("utf-8")[:24],
        )
    if layout is RecordLayout.USER_28:
        if not user.user_id.isdigit() or int(user.user_id) > 0xFFFFFFFF:
            raise ValidationError(
                "28-byte layout requires a numeric user_id",
                field="user_id",
            )
        group = int(user.group_id) if user.group_id.isdigit() else 0
        return layout.codec.pack(
            user.uid,
            user.role,
            user.password.encode("utf-8")[:5],
            encode_name(user.name, 8),
            user.card,
            group & 0xFF,
            0,
            int(user.user_id),
        )
    raise ValueError(f"{layout.name} is not a user layout")


__all__ = [
    "RecordKind",
    "RecordLayout",
    "RawUserRecord",
    "RawAttendanceRecord",
    "DecodeAmbiguity",
    "DecodeResult",
    "decode_user",
    "decode_attendance",
    "decode_users",
    "decode_attendances",
    "score_layout",
    "strip_size_prefix",
    "validate_user",
    "encode_user",
]
