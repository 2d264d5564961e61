"""Domain entities for fleet sync operations.

These are pure data structures with no infrastructure dependencies.
They represent the core business objects used in sync operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

MIN_VALID_YEAR = 2000
MAX_VALID_YEAR = 2100
EVENT_SOURCE_SYNC = "sync"


class DeviceDirection(str, Enum):
    """Which way a terminal's door faces."""

    IN = "in"
    OUT = "out"
    BOTH = "both"

    @property
    def event_direction(self) -> str | None:
        """Direction stamped on access events (unknown for two-way doors)."""
        return None if self is DeviceDirection.BOTH else self.value


@dataclass
class DeviceEndpoint:
    """A registered access-control terminal.

    Owned by the device registry; the sync engine only writes status fields
    back through the registry port.
    """

    id: UUID
    name: str
    ip: str
    port: int = 4370
    comm_key: str | None = None
    direction: DeviceDirection = DeviceDirection.BOTH
    location_id: UUID | None = None
    is_active: bool = True
    utc_offset_hours: float | None = None

    # Status fields
    is_online: bool = False
    last_online_at: datetime | None = None
    last_sync_at: datetime | None = None

    def offset_hours(self, default: float) -> float:
        """Clock offset to use for this device."""
        return default if self.utc_offset_hours is None else self.utc_offset_hours


@dataclass
class AttendanceLog:
    """A punch as read from a device, still in the device's clock domain.

    ``timestamp`` is naive device-local time, or None when the device
    returned an undecodable value.
    """

    device_user_id: str | None
    timestamp: datetime | None
    status: int = 0
    punch: int = 0
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def has_valid_year(self) -> bool:
        """Business rule: years outside 2000..2100 are device garbage."""
        return (
            self.timestamp is not None
            and MIN_VALID_YEAR <= self.timestamp.year <= MAX_VALID_YEAR
        )


@dataclass
class Person:
    """Someone enrolled on the terminals under a device user id."""

    id: UUID
    device_user_id: str
    full_name: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class DedupKey:
    """Identity of an access event for idempotent ingestion."""

    device_id: UUID
    device_user_id: str | None
    event_time: datetime


@dataclass
class AccessEvent:
    """A persisted access event. ``event_time`` is timezone-aware UTC."""

    device_id: UUID
    event_time: datetime
    device_user_id: str | None = None
    person_id: UUID | None = None
    direction: str | None = None
    location_id: UUID | None = None
    status: int = 0
    verify_method: int = 0
    source: str = EVENT_SOURCE_SYNC
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> DedupKey:
        return DedupKey(self.device_id, self.device_user_id, self.event_time)


class SyncStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncRun:
    """History row for one device sync attempt."""

    device_id: UUID | None
    started_at: datetime
    id: UUID | None = None
    completed_at: datetime | None = None
    status: SyncStatus = SyncStatus.IN_PROGRESS
    records_synced: int = 0
    error_message: str | None = None

    def complete(self, records_synced: int, at: datetime) -> None:
        self.status = SyncStatus.COMPLETED
        self.records_synced = records_synced
        self.completed_at = at

    def fail(self, error_message: str, at: datetime) -> None:
        self.status = SyncStatus.FAILED
        self.error_message = error_message
        self.completed_at = at

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class DeviceSyncResult:
    """Outcome of syncing a single device."""

    device_id: UUID
    device_name: str
    success: bool = False
    records_fetched: int = 0
    records_inserted: int = 0
    records_duplicate: int = 0
    records_invalid: int = 0
    drift_seconds: float | None = None
    clock_corrected: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": str(self.device_id),
            "device_name": self.device_name,
            "success": self.success,
            "records_fetched": self.records_fetched,
            "records_inserted": self.records_inserted,
            "records_duplicate": self.records_duplicate,
            "records_invalid": self.records_invalid,
            "drift_seconds": self.drift_seconds,
            "clock_corrected": self.clock_corrected,
            "error": self.error,
        }


@dataclass
class FleetSyncResult:
    """Outcome of one fleet sync cycle.

    ``skipped`` is set when the cycle was dropped because another one was
    still running.
    """

    started_at: datetime
    completed_at: datetime | None = None
    skipped: bool = False
    error: str | None = None
    devices: list[DeviceSyncResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for d in self.devices if d.success)

    @property
    def failed(self) -> int:
        return sum(1 for d in self.devices if not d.success)

    @property
    def records_inserted(self) -> int:
        return sum(d.records_inserted for d in self.devices)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "skipped": self.skipped,
            "error": self.error,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "records_inserted": self.records_inserted,
            "devices": [d.to_dict() for d in self.devices],
        }


@dataclass
class ErrorNotification:
    """Payload for a device failure notification."""

    device_id: UUID
    device_name: str
    device_ip: str
    error_message: str
    occurred_at: datetime
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": str(self.device_id),
            "device_name": self.device_name,
            "device_ip": self.device_ip,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "occurred_at": self.occurred_at.isoformat(),
        }
