"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Pure data structures representing business objects
- Ports: Abstract interfaces defining contracts for adapters
- Timezones: Device-local <-> UTC conversion rules

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    AccessEvent,
    AttendanceLog,
    DedupKey,
    DeviceDirection,
    DeviceEndpoint,
    DeviceSyncResult,
    ErrorNotification,
    FleetSyncResult,
    Person,
    SyncRun,
    SyncStatus,
)
from .ports import (
    IAccessEventStore,
    IDeviceGateway,
    IDeviceRegistry,
    IDeviceSession,
    IErrorNotifier,
    IPersonDirectory,
    ISyncHistoryStore,
)

__all__ = [
    # Device Entities
    "DeviceDirection",
    "DeviceEndpoint",
    # Attendance Entities
    "AttendanceLog",
    "AccessEvent",
    "DedupKey",
    "Person",
    # Run Entities
    "SyncRun",
    "SyncStatus",
    "DeviceSyncResult",
    "FleetSyncResult",
    "ErrorNotification",
    # Ports
    "IAccessEventStore",
    "IDeviceGateway",
    "IDeviceRegistry",
    "IDeviceSession",
    "IErrorNotifier",
    "IPersonDirectory",
    "ISyncHistoryStore",
]
