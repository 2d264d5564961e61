"""PostgreSQL adapter for access event persistence.

The unique key on (device_id, device_user_id, event_time) is the only guard
against duplicate events, so inserts use ON CONFLICT DO NOTHING and report
whether a row was actually written.
"""

import json
from typing import TYPE_CHECKING, Any

from ...database import database_connection
from ..domain.entities import AccessEvent, DedupKey
from ..domain.ports import IAccessEventStore

if TYPE_CHECKING:
    import asyncpg


class PostgresAccessEventStore(IAccessEventStore):
    """PostgreSQL implementation of IAccessEventStore."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def exists(self, key: DedupKey) -> bool:
        async with database_connection(self.pool) as conn:
            return bool(await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM access_logs
                    WHERE device_id = $1
                      AND device_user_id IS NOT DISTINCT FROM $2
                      AND event_time = $3
                )
                """,
                key.device_id,
                key.device_user_id,
                key.event_time,
            ))

    async def insert(self, event: AccessEvent) -> bool:
        async with database_connection(self.pool) as conn:
            inserted_id = await conn.fetchval(
                """
                INSERT INTO access_logs (
                    device_id, event_time, device_user_id, personnel_id,
                    direction, location_id, status, verify_method,
                    source, raw_data
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb)
                ON CONFLICT (device_id, device_user_id, event_time) DO NOTHING
                RETURNING id
                """,
                *self._event_to_record(event),
            )
        return inserted_id is not None

    @staticmethod
    def _event_to_record(event: AccessEvent) -> tuple[Any, ...]:
        return (
            event.device_id,
            event.event_time,
            event.device_user_id,
            event.person_id,
            event.direction,
            event.location_id,
            event.status,
            event.verify_method,
            event.source,
            json.dumps(event.raw_data),
        )
