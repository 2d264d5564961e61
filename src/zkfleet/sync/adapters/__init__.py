"""Adapters layer - Infrastructure implementations for fleet sync.

This layer contains concrete implementations of the ports defined in the domain layer:
- PostgresDeviceRegistry: PostgreSQL implementation of IDeviceRegistry
- PostgresPersonDirectory: PostgreSQL implementation of IPersonDirectory
- PostgresAccessEventStore: PostgreSQL implementation of IAccessEventStore
- PostgresSyncHistoryStore: PostgreSQL implementation of ISyncHistoryStore
- ZKDeviceGateway: ZK protocol implementation of IDeviceGateway
- WebhookErrorNotifier / LoggingErrorNotifier: IErrorNotifier implementations
"""

from .notifiers import LoggingErrorNotifier, WebhookErrorNotifier
from .postgres_access_event_store import PostgresAccessEventStore
from .postgres_device_registry import PostgresDeviceRegistry
from .postgres_person_directory import PostgresPersonDirectory
from .postgres_sync_history import PostgresSyncHistoryStore
from .zk_device_gateway import ZKDeviceGateway, ZKDeviceSession, map_attendance

__all__ = [
    # Persistence adapters
    "PostgresAccessEventStore",
    "PostgresDeviceRegistry",
    "PostgresPersonDirectory",
    "PostgresSyncHistoryStore",
    # Device adapters
    "ZKDeviceGateway",
    "ZKDeviceSession",
    "map_attendance",
    # Notification adapters
    "LoggingErrorNotifier",
    "WebhookErrorNotifier",
]
