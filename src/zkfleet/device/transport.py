"""Socket transports for the ZK protocol.

Two transports share one interface: ``TcpTransport`` (stream, framed with
the TCP top header) and ``UdpTransport`` (one packet per datagram, bound to
a local port leased from ``PortPool``). Both hand back parsed ``Packet``
objects from ``recv`` and convert socket failures into ``TransportError``.
"""
import asyncio
import errno
import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from ..exceptions import (
    DeviceTimeoutError,
    PortPoolExhaustedError,
    TransportError,
)
from .constants import (
    DEFAULT_REQUEST_TIMEOUT,
    TCP_TOP_SIZE,
    UDP_BIND_ATTEMPTS,
    UDP_PORT_RANGE,
)
from .packets import Packet, parse_packet, parse_tcp_top, wrap_tcp

logger = logging.getLogger(__name__)


class TransportKind(str, Enum):
    TCP = "tcp"
    UDP = "udp"


# ============================================
# Local UDP port pool
# ============================================

class PortPool:
    """Round-robin pool of local inbound UDP ports.

    A port handed out by ``acquire`` is owned exclusively until ``release``.
    """

    def __init__(self, start: int = UDP_PORT_RANGE[0], end: int = UDP_PORT_RANGE[1]):
        if start > end:
            raise ValueError(f"Invalid port range {start}-{end}")
        self._ports = list(range(start, end + 1))
        self._cursor = 0
        self._in_use: set[int] = set()
        self._lock = threading.Lock()

    @property
    def in_use(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._in_use)

    def acquire(self) -> int:
        with self._lock:
            for _ in range(len(self._ports)):
                port = self._ports[self._cursor]
                self._cursor = (self._cursor + 1) % len(self._ports)
                if port not in self._in_use:
                    self._in_use.add(port)
                    return port
        raise PortPoolExhaustedError(
            f"All {len(self._ports)} local UDP ports are leased",
            attempts=len(self._ports),
        )

    def release(self, port: Optional[int]) -> None:
        if port is None:
            return
        with self._lock:
            self._in_use.discard(port)


# ============================================
# Transport interface
# ============================================

class Transport(ABC):
    """Packet-level transport to one device."""

    kind: TransportKind

    def __init__(self, host: str, port: int, connect_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the underlying socket is usable."""
        pass

    @abstractmethod
    async def open(self) -> None:
        """Open the socket.

        Raises:
            TransportError: If the socket cannot be opened
        """
        pass

    @abstractmethod
    async def send(self, packet: bytes) -> None:
        """Send one framed packet (header + payload, no TCP top)."""
        pass

    @abstractmethod
    async def recv(self, timeout: float) -> Packet:
        """Receive the next packet.

        Raises:
            DeviceTimeoutError: If nothing arrives within ``timeout``
            TransportError: If the socket fails
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        pass

    def _timeout(self, timeout: float) -> DeviceTimeoutError:
        return DeviceTimeoutError(
            f"No reply from {self.host}:{self.port} ({self.kind.value}) within {timeout:.1f}s",
            timeout_seconds=timeout,
            host=self.host,
            port=self.port,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.host}:{self.port})"


class TcpTransport(Transport):
    kind = TransportKind.TCP

    def __init__(self, host: str, port: int, connect_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        super().__init__(host, port, connect_timeout)
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self) -> None:
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise self._timeout(self.connect_timeout) from e
        except OSError as e:
            raise TransportError(
                f"TCP connect to {self.host}:{self.port} failed: {e}",
                host=self.host,
                port=self.port,
                cause=e,
            ) from e

    async def send(self, packet: bytes) -> None:
        if not self.is_open:
            raise TransportError("TCP transport is not open", host=self.host, port=self.port)
        try:
            self._writer.write(wrap_tcp(packet))
            await self._writer.drain()
        except OSError as e:
            raise TransportError(
                f"TCP send to {self.host} failed: {e}",
                host=self.host,
                port=self.port,
                cause=e,
            ) from e

    async def recv(self, timeout: float) -> Packet:
        if self._reader is None:
            raise TransportError("TCP transport is not open", host=self.host, port=self.port)
        try:
            top = await asyncio.wait_for(self._reader.readexactly(TCP_TOP_SIZE), timeout)
            length = parse_tcp_top(top)
            body = await asyncio.wait_for(self._reader.readexactly(length), timeout)
        except asyncio.TimeoutError as e:
            raise self._timeout(timeout) from e
        except (asyncio.IncompleteReadError, OSError) as e:
            raise TransportError(
                f"TCP connection to {self.host} closed mid-read",
                host=self.host,
                port=self.port,
                cause=e,
            ) from e
        return parse_packet(body)

    async def close(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Ignoring error while closing TCP socket to {self.host}: {e}")


class _DatagramQueue(asyncio.DatagramProtocol):
    """Collects inbound datagrams into a queue."""

    def __init__(self):
        self.queue: asyncio.Queue[bytes] = asyncio.Queue()

    def datagram_received(self, data: bytes, addr) -> None:
        self.queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        logger.debug(f"UDP socket error: {exc}")


class UdpTransport(Transport):
    kind = TransportKind.UDP

    def __init__(
        self,
        host: str,
        port: int,
        port_pool: PortPool,
        connect_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        bind_attempts: int = UDP_BIND_ATTEMPTS,
    ):
        super().__init__(host, port, connect_timeout)
        self.port_pool = port_pool
        self.bind_attempts = bind_attempts
        self.local_port: Optional[int] = None
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._protocol: Optional[_DatagramQueue] = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def _bind(self, local_port: int):
        loop = asyncio.get_running_loop()
        return await loop.create_datagram_endpoint(
            _DatagramQueue,
            local_addr=("0.0.0.0", local_port),
            remote_addr=(self.host, self.port),
        )

    async def open(self) -> None:
        for attempt in range(1, self.bind_attempts + 1):
            local_port = self.port_pool.acquire()
            try:
                self._transport, self._protocol = await self._bind(local_port)
            except OSError as e:
                self.port_pool.release(local_port)
                if e.errno == errno.EADDRINUSE:
                    logger.debug(
                        f"Local UDP port {local_port} in use "
                        f"(attempt {attempt}/{self.bind_attempts})"
                    )
                    continue
                raise TransportError(
                    f"UDP bind for {self.host}:{self.port} failed: {e}",
                    host=self.host,
                    port=self.port,
                    cause=e,
                ) from e
            self.local_port = local_port
            return

        raise PortPoolExhaustedError(
            f"No local UDP port could be bound after {self.bind_attempts} attempts",
            attempts=self.bind_attempts,
            host=self.host,
            port=self.port,
        )

    async def send(self, packet: bytes) -> None:
        if not self.is_open:
            raise TransportError("UDP transport is not open", host=self.host, port=self.port)
        try:
            self._transport.sendto(packet)
        except OSError as e:
            raise TransportError(
                f"UDP send to {self.host} failed: {e}",
                host=self.host,
                port=self.port,
                cause=e,
            ) from e

    async def recv(self, timeout: float) -> Packet:
        if self._protocol is None:
            raise TransportError("UDP transport is not open", host=self.host, port=self.port)
        try:
            data = await asyncio.wait_for(self._protocol.queue.get(), timeout)
        except asyncio.TimeoutError as e:
            raise self._timeout(timeout) from e
        return parse_packet(data)

    async def close(self) -> None:
        transport, self._transport, self._protocol = self._transport, None, None
        if transport is not None:
            transport.close()
        self.port_pool.release(self.local_port)
        self.local_port = None


__all__ = [
    "TransportKind",
    "PortPool",
    "Transport",
    "TcpTransport",
    "UdpTransport",
]
