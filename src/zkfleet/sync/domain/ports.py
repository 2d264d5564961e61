"""Port interfaces for fleet sync operations.

Ports define the contracts between the domain/use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any
from uuid import UUID

from .entities import (
    AccessEvent,
    AttendanceLog,
    DedupKey,
    DeviceEndpoint,
    ErrorNotification,
    Person,
    SyncRun,
)


class IDeviceRegistry(ABC):
    """Port for the device registry.

    The registry owns device configuration; the sync engine reads it and
    writes back status fields only.
    """

    @abstractmethod
    async def list_active_devices(self) -> list[DeviceEndpoint]:
        """Return all devices flagged active, in a stable order."""
        ...

    @abstractmethod
    async def get_device(self, device_id: UUID) -> DeviceEndpoint | None:
        ...

    @abstractmethod
    async def mark_online(self, device_id: UUID, at: datetime) -> None:
        ...

    @abstractmethod
    async def mark_offline(self, device_id: UUID) -> None:
        ...

    @abstractmethod
    async def mark_synced(self, device_id: UUID, at: datetime) -> None:
        ...


class IPersonDirectory(ABC):
    """Port for resolving device user ids to people."""

    @abstractmethod
    async def find_by_device_user_id(self, device_user_id: str) -> Person | None:
        ...


class IAccessEventStore(ABC):
    """Port for access event persistence.

    Implementations must make ``insert`` safe against concurrent duplicates
    on the (device_id, device_user_id, event_time) key.
    """

    @abstractmethod
    async def exists(self, key: DedupKey) -> bool:
        ...

    @abstractmethod
    async def insert(self, event: AccessEvent) -> bool:
        """Insert an event.

        Returns:
            True if a row was written, False if the key already existed
        """
        ...


class ISyncHistoryStore(ABC):
    """Port for per-device sync run history."""

    @abstractmethod
    async def begin(self, run: SyncRun) -> SyncRun:
        """Persist a new in-progress run and return it with its id set."""
        ...

    @abstractmethod
    async def finish(self, run: SyncRun) -> None:
        """Persist the final status of a run."""
        ...


class IErrorNotifier(ABC):
    """Port for delivering failure notifications.

    Throttling is the caller's job; every call is expected to deliver.
    """

    @abstractmethod
    async def notify(self, notification: ErrorNotification) -> None:
        ...


class IDeviceSession(ABC):
    """The orchestrator's view of one open device session."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    async def get_time(self) -> datetime:
        """Read the device clock as naive device-local time."""
        ...

    @abstractmethod
    async def set_time(self, local_time: datetime) -> None:
        """Set the device clock from naive device-local time."""
        ...

    @abstractmethod
    async def get_attendances(self) -> list[AttendanceLog]:
        ...

    @abstractmethod
    async def get_info(self) -> Any:
        """Storage counters for connection tests."""
        ...


class IDeviceGateway(ABC):
    """Port for opening device sessions.

    ``session`` returns an async context manager that connects on enter and
    always disconnects on exit, holding the device lease in between.
    """

    @abstractmethod
    def session(self, device: DeviceEndpoint) -> AbstractAsyncContextManager[IDeviceSession]:
        ...
