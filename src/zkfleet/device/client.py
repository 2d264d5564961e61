"""ZK device client.

``ZKClient`` is the entry point for everything that talks to a terminal. It
owns the process-wide resources that outlive a single session:

    - ``PortPool``: local UDP ports leased round-robin to UDP sessions
    - ``PacketSizeCache``: last user-record layout that worked per device IP
    - ``DeviceLeases``: one lock per device IP so that only one session at a
      time talks to a terminal (fleet sync, manual operations and long-lived
      connections all go through it)

Example:
    client = ZKClient(DeviceClientConfig.from_env())
    async with client.session("10.0.0.20", comm_key="1234") as device:
        records = await device.get_attendances()

Author: ZK Fleet Team
"""
import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from ..config import DeviceClientConfig
from ..exceptions import DeviceBusyError
from .constants import DEFAULT_DEVICE_PORT
from .session import Session, connect
from .transport import PortPool

logger = logging.getLogger(__name__)


class PacketSizeCache:
    """Per-IP preferred user record size. A hint, last writer wins."""

    def __init__(self):
        self._sizes: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, ip: str) -> Optional[int]:
        with self._lock:
            return self._sizes.get(ip)

    def set(self, ip: str, size: int) -> None:
        with self._lock:
            previous = self._sizes.get(ip)
            self._sizes[ip] = size
        if previous != size:
            logger.debug(f"User record size for {ip}: {previous} -> {size}")

    def forget(self, ip: str) -> None:
        with self._lock:
            self._sizes.pop(ip, None)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._sizes)


class DeviceLeases:
    """One ``asyncio.Lock`` per device key."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        """Hold the lease for ``key``.

        Raises:
            DeviceBusyError: If the lease is not free within ``timeout``
        """
        lock = self._lock_for(key)
        try:
            async with asyncio.timeout(timeout):
                await lock.acquire()
        except TimeoutError as e:
            raise DeviceBusyError(key, waited_seconds=timeout) from e
        try:
            yield
        finally:
            lock.release()


class ZKClient:
    """Factory for leased device sessions."""

    def __init__(
        self,
        config: Optional[DeviceClientConfig] = None,
        port_pool: Optional[PortPool] = None,
        packet_sizes: Optional[PacketSizeCache] = None,
        leases: Optional[DeviceLeases] = None,
    ):
        self.config = config or DeviceClientConfig()
        self.port_pool = port_pool or PortPool(
            self.config.udp_port_start, self.config.udp_port_end
        )
        self.packet_sizes = packet_sizes or PacketSizeCache()
        self.leases = leases or DeviceLeases()

    async def connect(
        self,
        ip: str,
        port: int = DEFAULT_DEVICE_PORT,
        comm_key: Optional[Union[str, int]] = None,
    ) -> Session:
        """Open a session without taking the device lease.

        Callers are responsible for ``disconnect()``; prefer ``session()``.
        """
        return await connect(
            ip,
            port,
            comm_key,
            config=self.config,
            port_pool=self.port_pool,
            packet_sizes=self.packet_sizes,
        )

    @asynccontextmanager
    async def session(
        self,
        ip: str,
        port: int = DEFAULT_DEVICE_PORT,
        comm_key: Optional[Union[str, int]] = None,
    ) -> AsyncIterator[Session]:
        """Leased connect -> operate -> disconnect.

        The lease is held from before connect until after disconnect, and
        the session is released on every exit path.

        Raises:
            DeviceBusyError: If another session holds the device
            TransportError: If the device is unreachable
            AuthError: If the comm key is rejected
        """
        async with self.leases.hold(ip, self.config.lease_timeout):
            device = await self.connect(ip, port, comm_key)
            try:
                yield device
            finally:
                await device.disconnect()


__all__ = ["PacketSizeCache", "DeviceLeases", "ZKClient"]
