"""PostgreSQL adapter for per-device sync history."""

from typing import TYPE_CHECKING, Any

from ...database import database_connection, database_transaction
from ..domain.entities import SyncRun
from ..domain.ports import ISyncHistoryStore

if TYPE_CHECKING:
    import asyncpg

SYNC_TYPE_ATTENDANCE = "attendance"

_INSERT_RUN = """
    INSERT INTO sync_history (device_id, sync_type, status, started_at)
    VALUES ($1, $2, $3, $4)
    RETURNING id
"""

_UPDATE_RUN = """
    UPDATE sync_history
    SET status = $2, records_synced = $3, error_message = $4, completed_at = $5
    WHERE id = $1
"""


class PostgresSyncHistoryStore(ISyncHistoryStore):
    """PostgreSQL implementation of ISyncHistoryStore."""

    def __init__(self, pool: "asyncpg.Pool", sync_type: str = SYNC_TYPE_ATTENDANCE):
        self.pool = pool
        self.sync_type = sync_type

    async def begin(self, run: SyncRun) -> SyncRun:
        async with database_connection(self.pool) as conn:
            run.id = await self._insert(conn, run)
        return run

    async def finish(self, run: SyncRun) -> None:
        """Write the run outcome.

        A run whose start was never recorded (history unavailable at the
        time) gets its row inserted and updated in one transaction.
        """
        if run.id is not None:
            async with database_connection(self.pool) as conn:
                await self._update(conn, run)
            return

        async with database_transaction(self.pool) as conn:
            run.id = await self._insert(conn, run)
            await self._update(conn, run)

    async def _insert(self, conn: Any, run: SyncRun) -> Any:
        return await conn.fetchval(
            _INSERT_RUN,
            run.device_id,
            self.sync_type,
            run.status.value,
            run.started_at,
        )

    @staticmethod
    async def _update(conn: Any, run: SyncRun) -> None:
        await conn.execute(
            _UPDATE_RUN,
            run.id,
            run.status.value,
            run.records_synced,
            run.error_message,
            run.completed_at,
        )
