"""Connection Manager - long-lived device sessions for manual operations.

Operators sometimes keep a terminal connected (enrolment, door tests). The
manager opens those sessions through the same gateway as the fleet sync,
so a kept-open session holds the device lease and a fleet sync that reaches
the device waits for it (and eventually fails that device with
DeviceBusyError) instead of talking over it.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from ..domain.entities import DeviceEndpoint
from ..domain.ports import IDeviceGateway, IDeviceRegistry, IDeviceSession
from ..domain.timezones import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ManagedConnection:
    device: DeviceEndpoint
    session: IDeviceSession
    stack: AsyncExitStack
    connected_at: datetime


class ConnectionManager:
    """Keeps named device sessions open until told otherwise.

    Example:
        manager = ConnectionManager(gateway, registry)
        session = await manager.connect(device)
        ...
        await manager.disconnect(device.id)
    """

    def __init__(
        self,
        gateway: IDeviceGateway,
        registry: IDeviceRegistry,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.gateway = gateway
        self.registry = registry
        self._clock = clock
        self._connections: dict[UUID, ManagedConnection] = {}
        self._lock = asyncio.Lock()

    def get(self, device_id: UUID) -> IDeviceSession | None:
        connection = self._connections.get(device_id)
        return connection.session if connection else None

    def is_connected(self, device_id: UUID) -> bool:
        connection = self._connections.get(device_id)
        return connection is not None and connection.session.is_open

    @property
    def connected_device_ids(self) -> list[UUID]:
        return [device_id for device_id in self._connections if self.is_connected(device_id)]

    async def connect(self, device: DeviceEndpoint) -> IDeviceSession:
        """Open (or reuse) a session and mark the device online.

        Raises:
            DeviceBusyError: If another session holds the device
            TransportError: If the device is unreachable
        """
        async with self._lock:
            existing = self._connections.get(device.id)
            if existing is not None:
                if existing.session.is_open:
                    return existing.session
                await self._close(device.id)

            stack = AsyncExitStack()
            try:
                session = await stack.enter_async_context(self.gateway.session(device))
            except Exception:
                await stack.aclose()
                await self.registry.mark_offline(device.id)
                raise

            self._connections[device.id] = ManagedConnection(
                device=device,
                session=session,
                stack=stack,
                connected_at=self._clock(),
            )

        await self.registry.mark_online(device.id, self._clock())
        logger.info(f"Holding connection to {device.name} ({device.ip})")
        return session

    async def disconnect(self, device_id: UUID) -> bool:
        """Close a managed session and mark the device offline.

        Returns:
            False if the device was not connected
        """
        async with self._lock:
            closed = await self._close(device_id)
        if closed:
            await self.registry.mark_offline(device_id)
        return closed

    async def test_connection(self, device: DeviceEndpoint) -> Any:
        """Connect, read storage counters and disconnect.

        Reuses the managed session when the device is already held.
        """
        held = self.get(device.id)
        if held is not None and held.is_open:
            return await held.get_info()
        async with self.gateway.session(device) as session:
            return await session.get_info()

    async def close_all(self) -> None:
        """Close every managed session (shutdown)."""
        async with self._lock:
            device_ids = list(self._connections)
            for device_id in device_ids:
                await self._close(device_id)
        for device_id in device_ids:
            try:
                await self.registry.mark_offline(device_id)
            except Exception as e:
                logger.warning(f"Could not mark device {device_id} offline: {e}")

    async def _close(self, device_id: UUID) -> bool:
        connection = self._connections.pop(device_id, None)
        if connection is None:
            return False
        try:
            await connection.stack.aclose()
        except Exception as e:
            logger.warning(f"Error closing connection to {connection.device.name}: {e}")
        logger.info(f"Released connection to {connection.device.name} ({connection.device.ip})")
        return True
