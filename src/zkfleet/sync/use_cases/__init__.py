"""Use cases layer - Business logic orchestration for fleet sync.

This layer contains:
- FleetSyncUseCase: scheduled and manual attendance harvesting
- ClockDriftCorrector: device clock checks and corrections
- ConnectionManager: long-lived device sessions for manual operations

Use cases depend only on ports, not concrete implementations.
"""

from .clock_drift import ClockDriftCorrector, DriftCheck
from .connection_manager import ConnectionManager
from .sync_fleet import FleetSyncUseCase, NotificationThrottle

__all__ = [
    "ClockDriftCorrector",
    "DriftCheck",
    "ConnectionManager",
    "FleetSyncUseCase",
    "NotificationThrottle",
]
