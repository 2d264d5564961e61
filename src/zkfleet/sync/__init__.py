"""Sync module - Clean Architecture implementation of the fleet attendance sync.

Architecture:
    domain/     - Pure domain entities, port interfaces, timezone rules
    use_cases/  - Business logic orchestration (fleet sync, drift, connections)
    adapters/   - Infrastructure implementations (PostgreSQL, ZK devices, webhooks)
"""

from .domain.entities import (
    AccessEvent,
    AttendanceLog,
    DeviceEndpoint,
    DeviceSyncResult,
    FleetSyncResult,
    SyncRun,
)
from .use_cases import ConnectionManager, FleetSyncUseCase

__all__ = [
    "AccessEvent",
    "AttendanceLog",
    "DeviceEndpoint",
    "DeviceSyncResult",
    "FleetSyncResult",
    "SyncRun",
    "ConnectionManager",
    "FleetSyncUseCase",
]
