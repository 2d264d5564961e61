"""Tests for ConnectionManager."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest

from src.zkfleet.exceptions import DeviceBusyError, TransportError
from src.zkfleet.sync.domain.entities import DeviceEndpoint
from src.zkfleet.sync.use_cases.connection_manager import ConnectionManager

NOW = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


class FakeSession:
    def __init__(self):
        self.is_open = True
        self.get_info = AsyncMock(return_value={"users": 3})


class FakeGateway:
    """Gateway that counts opened and closed sessions."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.opened: list[FakeSession] = []
        self.closed = 0

    @asynccontextmanager
    async def session(self, device):
        if self.error:
            raise self.error
        session = FakeSession()
        self.opened.append(session)
        try:
            yield session
        finally:
            session.is_open = False
            self.closed += 1


@pytest.fixture
def device():
    return DeviceEndpoint(id=UUID(int=7), name="Lobby", ip="10.0.0.7")


@pytest.fixture
def registry():
    registry = MagicMock()
    registry.mark_online = AsyncMock()
    registry.mark_offline = AsyncMock()
    return registry


def make_manager(gateway, registry):
    return ConnectionManager(gateway, registry, clock=lambda: NOW)


class TestConnect:
    """Tests for ConnectionManager.connect."""

    @pytest.mark.asyncio
    async def test_connect_holds_session(self, device, registry):
        gateway = FakeGateway()
        manager = make_manager(gateway, registry)

        session = await manager.connect(device)

        assert manager.is_connected(device.id)
        assert manager.get(device.id) is session
        assert manager.connected_device_ids == [device.id]
        assert gateway.closed == 0
        registry.mark_online.assert_awaited_once_with(device.id, NOW)

    @pytest.mark.asyncio
    async def test_connect_twice_reuses_session(self, device, registry):
        gateway = FakeGateway()
        manager = make_manager(gateway, registry)

        first = await manager.connect(device)
        second = await manager.connect(device)

        assert first is second
        assert len(gateway.opened) == 1

    @pytest.mark.asyncio
    async def test_dead_session_is_replaced(self, device, registry):
        gateway = FakeGateway()
        manager = make_manager(gateway, registry)

        first = await manager.connect(device)
        first.is_open = False
        second = await manager.connect(device)

        assert second is not first
        assert gateway.closed == 1

    @pytest.mark.asyncio
    async def test_failed_connect_marks_offline(self, device, registry):
        manager = make_manager(FakeGateway(TransportError("unreachable")), registry)

        with pytest.raises(TransportError):
            await manager.connect(device)

        assert not manager.is_connected(device.id)
        registry.mark_offline.assert_awaited_once_with(device.id)
        registry.mark_online.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_busy_device_propagates(self, device, registry):
        manager = make_manager(FakeGateway(DeviceBusyError("10.0.0.7:4370")), registry)
        with pytest.raises(DeviceBusyError):
            await manager.connect(device)


class TestDisconnect:
    """Tests for disconnect and close_all."""

    @pytest.mark.asyncio
    async def test_disconnect_closes_session(self, device, registry):
        gateway = FakeGateway()
        manager = make_manager(gateway, registry)
        await manager.connect(device)

        assert await manager.disconnect(device.id) is True

        assert gateway.closed == 1
        assert manager.get(device.id) is None
        registry.mark_offline.assert_awaited_once_with(device.id)

    @pytest.mark.asyncio
    async def test_disconnect_unknown_device(self, device, registry):
        manager = make_manager(FakeGateway(), registry)
        assert await manager.disconnect(device.id) is False
        registry.mark_offline.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_all(self, registry):
        gateway = FakeGateway()
        manager = make_manager(gateway, registry)
        devices = [DeviceEndpoint(id=UUID(int=i), name=f"D{i}", ip=f"10.0.0.{i}") for i in (1, 2)]
        for d in devices:
            await manager.connect(d)

        await manager.close_all()

        assert gateway.closed == 2
        assert manager.connected_device_ids == []
        assert registry.mark_offline.await_count == 2

    @pytest.mark.asyncio
    async def test_close_all_survives_registry_failure(self, device, registry):
        manager = make_manager(FakeGateway(), registry)
        await manager.connect(device)
        registry.mark_offline.side_effect = RuntimeError("db down")

        await manager.close_all()

        assert manager.get(device.id) is None


class TestTestConnection:
    @pytest.mark.asyncio
    async def test_uses_held_session(self, device, registry):
        gateway = FakeGateway()
        manager = make_manager(gateway, registry)
        session = await manager.connect(device)

        assert await manager.test_connection(device) == {"users": 3}

        session.get_info.assert_awaited_once()
        assert len(gateway.opened) == 1

    @pytest.mark.asyncio
    async def test_opens_short_session(self, device, registry):
        gateway = FakeGateway()
        manager = make_manager(gateway, registry)

        assert await manager.test_connection(device) == {"users": 3}

        assert gateway.closed == 1
        assert not manager.is_connected(device.id)
