"""Tests for the UDP port pool and socket transports."""

import asyncio
import errno
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.zkfleet.device.constants import CMD_ACK_OK, CMD_CONNECT, TCP_TOP_SIZE
from src.zkfleet.device.packets import build_packet, parse_packet, parse_tcp_top, wrap_tcp
from src.zkfleet.device.transport import PortPool, TcpTransport, UdpTransport
from src.zkfleet.exceptions import DeviceTimeoutError, PortPoolExhaustedError, TransportError


class TestPortPool:
    """Tests for round-robin port leasing."""

    def test_acquire_is_round_robin(self):
        pool = PortPool(5200, 5202)
        first = pool.acquire()
        pool.release(first)
        assert pool.acquire() == 5201

    def test_acquired_ports_are_exclusive(self):
        pool = PortPool(5200, 5202)
        ports = {pool.acquire(), pool.acquire(), pool.acquire()}
        assert ports == {5200, 5201, 5202}
        assert pool.in_use == frozenset(ports)

    def test_exhaustion(self):
        pool = PortPool(5200, 5201)
        pool.acquire()
        pool.acquire()
        with pytest.raises(PortPoolExhaustedError):
            pool.acquire()

    def test_release_makes_port_available(self):
        pool = PortPool(5200, 5200)
        port = pool.acquire()
        pool.release(port)
        assert pool.acquire() == port

    def test_release_none_is_noop(self):
        pool = PortPool(5200, 5201)
        pool.release(None)
        assert pool.in_use == frozenset()

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            PortPool(5300, 5200)


class TestUdpTransport:
    """Tests for UDP binding against the port pool."""

    @pytest.fixture
    def pool(self):
        return PortPool(5200, 5210)

    @pytest.mark.asyncio
    async def test_retries_next_port_when_in_use(self, pool):
        transport = UdpTransport("10.0.0.5", 4370, pool, bind_attempts=3)
        endpoint = (MagicMock(), MagicMock())
        with patch.object(
            transport,
            "_bind",
            AsyncMock(side_effect=[OSError(errno.EADDRINUSE, "Address in use"), endpoint]),
        ):
            await transport.open()

        assert transport.local_port == 5201
        assert pool.in_use == frozenset({5201})

        await transport.close()
        endpoint[0].close.assert_called_once()
        assert pool.in_use == frozenset()
        assert transport.local_port is None

    @pytest.mark.asyncio
    async def test_gives_up_after_bind_attempts(self, pool):
        transport = UdpTransport("10.0.0.5", 4370, pool, bind_attempts=3)
        busy = OSError(errno.EADDRINUSE, "Address in use")
        bind = AsyncMock(side_effect=[busy, busy, busy])
        with patch.object(transport, "_bind", bind):
            with pytest.raises(PortPoolExhaustedError) as exc_info:
                await transport.open()

        assert bind.await_count == 3
        assert exc_info.value.attempts == 3
        assert pool.in_use == frozenset()

    @pytest.mark.asyncio
    async def test_other_bind_errors_fail_fast(self, pool):
        transport = UdpTransport("10.0.0.5", 4370, pool, bind_attempts=3)
        bind = AsyncMock(side_effect=OSError(errno.EACCES, "Permission denied"))
        with patch.object(transport, "_bind", bind):
            with pytest.raises(TransportError) as exc_info:
                await transport.open()

        assert not isinstance(exc_info.value, PortPoolExhaustedError)
        assert bind.await_count == 1
        assert pool.in_use == frozenset()

    @pytest.mark.asyncio
    async def test_recv_times_out(self, pool):
        transport = UdpTransport("10.0.0.5", 4370, pool)
        endpoint = (MagicMock(), MagicMock(queue=asyncio.Queue()))
        with patch.object(transport, "_bind", AsyncMock(return_value=endpoint)):
            await transport.open()

        with pytest.raises(DeviceTimeoutError):
            await transport.recv(0.01)
        await transport.close()

    @pytest.mark.asyncio
    async def test_recv_parses_datagram(self, pool):
        transport = UdpTransport("10.0.0.5", 4370, pool)
        queue = asyncio.Queue()
        queue.put_nowait(build_packet(CMD_ACK_OK, 9, 0))
        with patch.object(transport, "_bind", AsyncMock(return_value=(MagicMock(), MagicMock(queue=queue)))):
            await transport.open()

        packet = await transport.recv(1.0)
        assert packet.command == CMD_ACK_OK
        assert packet.session_id == 9
        await transport.close()

    @pytest.mark.asyncio
    async def test_send_when_closed_raises(self, pool):
        transport = UdpTransport("10.0.0.5", 4370, pool)
        with pytest.raises(TransportError):
            await transport.send(b"\x00" * 8)


class TestTcpTransport:
    """Tests for TCP framing against a loopback server."""

    @pytest.mark.asyncio
    async def test_request_reply_over_loopback(self):
        received = []

        async def handle(reader, writer):
            top = await reader.readexactly(TCP_TOP_SIZE)
            received.append(parse_packet(await reader.readexactly(parse_tcp_top(top))))
            writer.write(wrap_tcp(build_packet(CMD_ACK_OK, 77, 0)))
            await writer.drain()
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            transport = TcpTransport("127.0.0.1", port, connect_timeout=2.0)
            await transport.open()
            await transport.send(build_packet(CMD_CONNECT, 0, 0))
            reply = await transport.recv(2.0)
            await transport.close()
        finally:
            server.close()
            await server.wait_closed()

        assert received[0].command == CMD_CONNECT
        assert reply.command == CMD_ACK_OK
        assert reply.session_id == 77
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_refused_connection_is_transport_error(self):
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        transport = TcpTransport("127.0.0.1", port, connect_timeout=2.0)
        with pytest.raises(TransportError):
            await transport.open()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        transport = TcpTransport("127.0.0.1", 4370)
        await transport.close()
        await transport.close()
        assert not transport.is_open
