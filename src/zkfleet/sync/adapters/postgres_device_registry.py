"""PostgreSQL adapter for the device registry.

Reads device configuration from the ``devices`` table and writes back only
the status columns (is_online, last_online_at, last_sync_at).
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from ...database import database_connection
from ..domain.entities import DeviceDirection, DeviceEndpoint
from ..domain.ports import IDeviceRegistry

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_DEVICE_COLUMNS = """
    id, name, ip_address, port, comm_key, direction, location_id,
    is_active, utc_offset_hours, is_online, last_online_at, last_sync_at
"""


class PostgresDeviceRegistry(IDeviceRegistry):
    """PostgreSQL implementation of IDeviceRegistry."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def list_active_devices(self) -> list[DeviceEndpoint]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"SELECT {_DEVICE_COLUMNS} FROM devices "
                "WHERE is_active = true ORDER BY name, id"
            )
        return [self._row_to_device(row) for row in rows]

    async def get_device(self, device_id: UUID) -> DeviceEndpoint | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {_DEVICE_COLUMNS} FROM devices WHERE id = $1",
                device_id,
            )
        return self._row_to_device(row) if row else None

    async def mark_online(self, device_id: UUID, at: datetime) -> None:
        async with database_connection(self.pool) as conn:
            await conn.execute(
                "UPDATE devices SET is_online = true, last_online_at = $2, "
                "updated_at = NOW() WHERE id = $1",
                device_id,
                at,
            )

    async def mark_offline(self, device_id: UUID) -> None:
        async with database_connection(self.pool) as conn:
            await conn.execute(
                "UPDATE devices SET is_online = false, updated_at = NOW() WHERE id = $1",
                device_id,
            )

    async def mark_synced(self, device_id: UUID, at: datetime) -> None:
        async with database_connection(self.pool) as conn:
            await conn.execute(
                "UPDATE devices SET last_sync_at = $2, updated_at = NOW() WHERE id = $1",
                device_id,
                at,
            )

    @staticmethod
    def _row_to_device(row: Any) -> DeviceEndpoint:
        try:
            direction = DeviceDirection(row["direction"] or DeviceDirection.BOTH.value)
        except ValueError:
            logger.warning(f"Unknown direction {row['direction']!r} on device {row['id']}")
            direction = DeviceDirection.BOTH

        offset = row["utc_offset_hours"]
        return DeviceEndpoint(
            id=row["id"],
            name=row["name"],
            ip=row["ip_address"],
            port=row["port"],
            comm_key=row["comm_key"],
            direction=direction,
            location_id=row["location_id"],
            is_active=row["is_active"],
            utc_offset_hours=float(offset) if offset is not None else None,
            is_online=row["is_online"],
            last_online_at=row["last_online_at"],
            last_sync_at=row["last_sync_at"],
        )
