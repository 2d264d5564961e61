"""Tests for fleet sync domain entities."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from src.zkfleet.sync.domain.entities import (
    AccessEvent,
    AttendanceLog,
    DedupKey,
    DeviceDirection,
    DeviceEndpoint,
    DeviceSyncResult,
    ErrorNotification,
    FleetSyncResult,
    SyncRun,
    SyncStatus,
)

DEVICE_ID = UUID("12345678-1234-1234-1234-123456789012")
STARTED = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


class TestDeviceEndpoint:
    """Tests for DeviceEndpoint entity."""

    def test_defaults(self):
        device = DeviceEndpoint(id=DEVICE_ID, name="Gate", ip="10.0.0.5")
        assert device.port == 4370
        assert device.direction is DeviceDirection.BOTH
        assert device.is_active is True
        assert device.is_online is False

    def test_offset_falls_back_to_default(self):
        device = DeviceEndpoint(id=DEVICE_ID, name="Gate", ip="10.0.0.5")
        assert device.offset_hours(3.0) == 3.0

    def test_own_offset_wins(self):
        device = DeviceEndpoint(id=DEVICE_ID, name="Gate", ip="10.0.0.5", utc_offset_hours=0.0)
        assert device.offset_hours(3.0) == 0.0


class TestDeviceDirection:
    """Tests for DeviceDirection."""

    @pytest.mark.parametrize(
        "direction,expected",
        [(DeviceDirection.IN, "in"), (DeviceDirection.OUT, "out"), (DeviceDirection.BOTH, None)],
    )
    def test_event_direction(self, direction, expected):
        assert direction.event_direction == expected


class TestAttendanceLog:
    """Tests for the year plausibility rule."""

    @pytest.mark.parametrize(
        "timestamp,valid",
        [
            (datetime(2000, 1, 1), True),
            (datetime(2100, 12, 31, 23, 59, 59), True),
            (datetime(1999, 12, 31, 23, 59, 59), False),
            (datetime(2101, 1, 1), False),
            (None, False),
        ],
    )
    def test_has_valid_year(self, timestamp, valid):
        assert AttendanceLog(device_user_id="1", timestamp=timestamp).has_valid_year is valid


class TestAccessEvent:
    """Tests for AccessEvent and its dedup key."""

    def test_key(self):
        event = AccessEvent(device_id=DEVICE_ID, event_time=STARTED, device_user_id="42")
        assert event.key == DedupKey(DEVICE_ID, "42", STARTED)
        assert event.source == "sync"

    def test_key_is_hashable(self):
        keys = {DedupKey(DEVICE_ID, "42", STARTED), DedupKey(DEVICE_ID, "42", STARTED)}
        assert len(keys) == 1


class TestSyncRun:
    """Tests for SyncRun lifecycle."""

    def test_complete(self):
        run = SyncRun(device_id=DEVICE_ID, started_at=STARTED)
        assert run.status is SyncStatus.IN_PROGRESS
        assert run.duration_seconds is None

        run.complete(12, STARTED + timedelta(seconds=3))

        assert run.status is SyncStatus.COMPLETED
        assert run.records_synced == 12
        assert run.duration_seconds == 3.0

    def test_fail(self):
        run = SyncRun(device_id=DEVICE_ID, started_at=STARTED)
        run.fail("unreachable", STARTED)
        assert run.status is SyncStatus.FAILED
        assert run.error_message == "unreachable"


class TestFleetSyncResult:
    """Tests for FleetSyncResult aggregation."""

    def test_counts(self):
        result = FleetSyncResult(started_at=STARTED, completed_at=STARTED + timedelta(seconds=5))
        result.devices = [
            DeviceSyncResult(device_id=DEVICE_ID, device_name="A", success=True, records_inserted=3),
            DeviceSyncResult(device_id=DEVICE_ID, device_name="B", success=False, error="down"),
            DeviceSyncResult(device_id=DEVICE_ID, device_name="C", success=True, records_inserted=2),
        ]

        assert result.succeeded == 2
        assert result.failed == 1
        assert result.records_inserted == 5
        assert result.duration_seconds == 5.0

    def test_to_dict(self):
        result = FleetSyncResult(started_at=STARTED)
        result.devices = [DeviceSyncResult(device_id=DEVICE_ID, device_name="A", success=True)]

        data = result.to_dict()

        assert data["started_at"] == STARTED.isoformat()
        assert data["completed_at"] is None
        assert data["devices"][0]["device_id"] == str(DEVICE_ID)


class TestErrorNotification:
    def test_to_dict(self):
        notification = ErrorNotification(
            device_id=DEVICE_ID,
            device_name="Gate",
            device_ip="10.0.0.5",
            error_message="down",
            occurred_at=STARTED,
            error_code="TRANSPORT_ERROR",
        )
        data = notification.to_dict()
        assert data["device_id"] == str(DEVICE_ID)
        assert data["occurred_at"] == STARTED.isoformat()
        assert data["error_code"] == "TRANSPORT_ERROR"
