"""PostgreSQL adapter for resolving device user ids to personnel."""

from typing import TYPE_CHECKING

from ...database import database_connection
from ..domain.entities import Person
from ..domain.ports import IPersonDirectory

if TYPE_CHECKING:
    import asyncpg


class PostgresPersonDirectory(IPersonDirectory):
    """PostgreSQL implementation of IPersonDirectory."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def find_by_device_user_id(self, device_user_id: str) -> Person | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT id, device_user_id, full_name, is_active
                FROM personnel
                WHERE device_user_id = $1
                ORDER BY is_active DESC
                LIMIT 1
                """,
                device_user_id,
            )
        if row is None:
            return None
        return Person(
            id=row["id"],
            device_user_id=row["device_user_id"],
            full_name=row["full_name"],
            is_active=row["is_active"],
        )
