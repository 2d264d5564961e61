"""ZK device gateway adapter.

This adapter implements IDeviceGateway on top of ZKClient and maps raw
codec records to domain AttendanceLog entities. Timestamps are passed
through untouched: converting device-local time is the use case's job.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from ...device.client import ZKClient
from ...device.records import RawAttendanceRecord
from ...device.session import DeviceInfo, Session
from ..domain.entities import AttendanceLog, DeviceEndpoint
from ..domain.ports import IDeviceGateway, IDeviceSession

logger = logging.getLogger(__name__)


def map_attendance(record: RawAttendanceRecord) -> AttendanceLog:
    """Map a raw device record to a domain log entry."""
    return AttendanceLog(
        device_user_id=record.user_id.strip() or None,
        timestamp=record.timestamp,
        status=record.status,
        punch=record.punch,
        raw_data=record.to_dict(),
    )


class ZKDeviceSession(IDeviceSession):
    """IDeviceSession backed by an open TCP or UDP session."""

    def __init__(self, session: Session):
        self._session = session

    @property
    def is_open(self) -> bool:
        return self._session.is_open

    @property
    def raw(self) -> Session:
        """The underlying protocol session, for operations outside the port."""
        return self._session

    async def get_time(self) -> datetime:
        return await self._session.get_time()

    async def set_time(self, local_time: datetime) -> None:
        await self._session.set_time(local_time)

    async def get_attendances(self) -> list[AttendanceLog]:
        records = await self._session.get_attendances()
        return [map_attendance(r) for r in records]

    async def get_info(self) -> DeviceInfo:
        return await self._session.get_info()


class ZKDeviceGateway(IDeviceGateway):
    """Opens leased ZK sessions for registered devices."""

    def __init__(self, client: ZKClient):
        self.client = client

    @asynccontextmanager
    async def session(self, device: DeviceEndpoint) -> AsyncIterator[ZKDeviceSession]:
        async with self.client.session(device.ip, device.port, device.comm_key) as raw:
            yield ZKDeviceSession(raw)
