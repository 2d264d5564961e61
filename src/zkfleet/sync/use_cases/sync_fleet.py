"""Fleet Sync Use Case - Orchestrates attendance harvesting across terminals.

This use case implements the business logic for pulling attendance records
from every active terminal into the access event store. It depends on ports
(interfaces) for all external operations, making it fully testable without
devices or a database.

Workflow (per device, strictly one device at a time):
1. Begin a sync run in the history store
2. Open a device session (marks the device online, or offline on failure)
3. Check and correct the device clock (failures never abort the harvest)
4. Fetch attendance records and close the session
5. Drop records with implausible years, convert the rest to UTC
6. Skip records already stored, insert the rest with the resolved person
7. Mark the device synced and complete the run

A failure on one device fails that device's run, sends a throttled
notification and moves on to the next device.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AsyncExitStack
from datetime import datetime, timedelta
from uuid import UUID

from ...config import FleetSyncConfig
from ...error_sanitizer import sanitize_error_message
from ...exceptions import ValidationError, ZKError
from ...resilience import retry_async
from ..domain.entities import (
    AccessEvent,
    AttendanceLog,
    DedupKey,
    DeviceEndpoint,
    DeviceSyncResult,
    ErrorNotification,
    FleetSyncResult,
    SyncRun,
)
from ..domain.ports import (
    IAccessEventStore,
    IDeviceGateway,
    IDeviceRegistry,
    IDeviceSession,
    IErrorNotifier,
    IPersonDirectory,
    ISyncHistoryStore,
)
from ..domain.timezones import to_utc, utc_now
from .clock_drift import ClockDriftCorrector

logger = logging.getLogger(__name__)


class NotificationThrottle:
    """Allows at most one notification per device per cooldown window."""

    def __init__(
        self,
        cooldown: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cooldown = cooldown
        self._clock = clock
        self._last_sent: dict[UUID, datetime] = {}

    def should_notify(self, device_id: UUID) -> bool:
        """Return True and start a new window if the device is not throttled."""
        now = self._clock()
        last = self._last_sent.get(device_id)
        if last is not None and now - last < self.cooldown:
            return False
        self._last_sent[device_id] = now
        return True

    def reset(self, device_id: UUID) -> None:
        self._last_sent.pop(device_id, None)


class FleetSyncUseCase:
    """Orchestrates the fleet attendance sync workflow.

    Only one fleet sync runs at a time: a call that arrives while another
    is in flight returns immediately with ``skipped=True``.

    Example:
        use_case = FleetSyncUseCase(
            registry=PostgresDeviceRegistry(pool),
            people=PostgresPersonDirectory(pool),
            events=PostgresAccessEventStore(pool),
            history=PostgresSyncHistoryStore(pool),
            gateway=ZKDeviceGateway(ZKClient()),
            notifier=LoggingErrorNotifier(),
        )
        result = await use_case.run_fleet_sync()
    """

    def __init__(
        self,
        registry: IDeviceRegistry,
        people: IPersonDirectory,
        events: IAccessEventStore,
        history: ISyncHistoryStore,
        gateway: IDeviceGateway,
        notifier: IErrorNotifier | None = None,
        config: FleetSyncConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        drift_corrector: ClockDriftCorrector | None = None,
        throttle: NotificationThrottle | None = None,
    ):
        """Initialize the use case with its dependencies.

        Args:
            registry: Port for reading devices and writing their status
            people: Port for resolving device user ids
            events: Port for storing access events
            history: Port for sync run history
            gateway: Port for opening device sessions
            notifier: Optional port for failure notifications
            config: Sync policy (defaults to FleetSyncConfig())
            clock: Source of aware UTC "now"
        """
        self.registry = registry
        self.people = people
        self.events = events
        self.history = history
        self.gateway = gateway
        self.notifier = notifier
        self.config = config or FleetSyncConfig()
        self._clock = clock
        self.drift = drift_corrector or ClockDriftCorrector(
            threshold_seconds=self.config.drift_threshold_seconds,
            clock=clock,
        )
        self.throttle = throttle or NotificationThrottle(
            cooldown=timedelta(minutes=self.config.notify_cooldown_minutes),
            clock=clock,
        )
        self._sync_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._sync_lock.locked()

    # ============================================
    # Entry points
    # ============================================

    async def run_fleet_sync(self) -> FleetSyncResult:
        """Sync every active device, one after another.

        Returns:
            FleetSyncResult; ``skipped`` is True if another run was in flight
        """
        if self._sync_lock.locked():
            logger.info("Fleet sync already running, skipping this trigger")
            return FleetSyncResult(started_at=self._clock(), skipped=True)

        async with self._sync_lock:
            result = FleetSyncResult(started_at=self._clock())
            logger.info(f"Starting fleet sync at {result.started_at.isoformat()}")

            try:
                devices = await self.registry.list_active_devices()
            except Exception as e:
                logger.error(f"Failed to load active devices: {e}", exc_info=True)
                result.error = self._sanitize(e)
                result.completed_at = self._clock()
                return result

            for device in devices:
                result.devices.append(await self._sync_one(device, reraise=False))

            result.completed_at = self._clock()
            logger.info(
                f"Fleet sync completed in {result.duration_seconds:.2f}s: "
                f"{result.succeeded}/{len(result.devices)} devices ok, "
                f"{result.records_inserted} new events"
            )
            return result

    async def sync_device(self, device_id: UUID) -> DeviceSyncResult:
        """Manually sync a single device.

        Same flow as the fleet sync, but failures propagate to the caller.

        Raises:
            ValidationError: If the device does not exist
            ZKError: Whatever made the sync fail
        """
        device = await self.registry.get_device(device_id)
        if device is None:
            raise ValidationError(f"Unknown device {device_id}", field="device_id")
        return await self._sync_one(device, reraise=True)

    # ============================================
    # Per-device flow
    # ============================================

    async def _sync_one(self, device: DeviceEndpoint, reraise: bool) -> DeviceSyncResult:
        outcome = DeviceSyncResult(device_id=device.id, device_name=device.name)
        run = await self._begin_run(SyncRun(device_id=device.id, started_at=self._clock()))

        try:
            await self._harvest(device, outcome)
        except Exception as e:
            message = self._sanitize(e)
            outcome.error = message
            run.fail(message, self._clock())
            logger.error(
                f"Sync failed for device {device.name} ({device.ip}): {e}",
                exc_info=True,
            )
            await self._finish_run(run)
            await self._notify_failure(device, e, message)
            if reraise:
                raise
            return outcome

        outcome.success = True
        run.complete(outcome.records_inserted, self._clock())
        await self._finish_run(run)
        logger.info(
            f"Synced {device.name} ({device.ip}): {outcome.records_fetched} fetched, "
            f"{outcome.records_inserted} new, {outcome.records_duplicate} duplicate, "
            f"{outcome.records_invalid} dropped"
        )
        return outcome

    async def _harvest(self, device: DeviceEndpoint, outcome: DeviceSyncResult) -> None:
        offset = device.offset_hours(self.config.default_utc_offset_hours)

        async with AsyncExitStack() as stack:
            session = await self._open_session(device, stack)
            await self.registry.mark_online(device.id, self._clock())

            check = await self.drift.check_and_correct(session, device, offset)
            if check is not None:
                outcome.drift_seconds = check.drift_seconds
                outcome.clock_corrected = check.corrected

            logs = await session.get_attendances()

        outcome.records_fetched = len(logs)
        for log in logs:
            await self._ingest(device, log, offset, outcome)

        await self.registry.mark_synced(device.id, self._clock())

    async def _open_session(self, device: DeviceEndpoint, stack: AsyncExitStack) -> IDeviceSession:
        try:
            return await retry_async(
                lambda: stack.enter_async_context(self.gateway.session(device)),
                max_attempts=self.config.connect_attempts,
            )
        except Exception:
            try:
                await self.registry.mark_offline(device.id)
            except Exception as e:
                logger.warning(f"Could not mark device {device.id} offline: {e}")
            raise

    async def _ingest(
        self,
        device: DeviceEndpoint,
        log: AttendanceLog,
        offset: float,
        outcome: DeviceSyncResult,
    ) -> None:
        if not log.has_valid_year:
            outcome.records_invalid += 1
            logger.debug(f"Dropping record with invalid time from {device.name}: {log.raw_data}")
            return

        event_time = to_utc(log.timestamp, offset)
        key = DedupKey(device.id, log.device_user_id, event_time)
        if await self.events.exists(key):
            outcome.records_duplicate += 1
            return

        person = None
        if log.device_user_id:
            person = await self.people.find_by_device_user_id(log.device_user_id)

        event = AccessEvent(
            device_id=device.id,
            event_time=event_time,
            device_user_id=log.device_user_id,
            person_id=person.id if person else None,
            direction=device.direction.event_direction,
            location_id=device.location_id,
            status=log.status,
            verify_method=log.punch,
            raw_data=log.raw_data,
        )
        if await self.events.insert(event):
            outcome.records_inserted += 1
        else:
            outcome.records_duplicate += 1

    # ============================================
    # History and notifications
    # ============================================

    async def _begin_run(self, run: SyncRun) -> SyncRun:
        try:
            return await self.history.begin(run)
        except Exception as e:
            logger.warning(f"Could not record sync run start for device {run.device_id}: {e}")
            return run

    async def _finish_run(self, run: SyncRun) -> None:
        try:
            await self.history.finish(run)
        except Exception as e:
            logger.warning(f"Could not record sync run result for device {run.device_id}: {e}")

    async def _notify_failure(self, device: DeviceEndpoint, error: Exception, message: str) -> None:
        if self.notifier is None:
            return
        if not self.throttle.should_notify(device.id):
            logger.debug(f"Notification for {device.name} suppressed (cooldown)")
            return

        notification = ErrorNotification(
            device_id=device.id,
            device_name=device.name,
            device_ip=device.ip,
            error_message=message,
            occurred_at=self._clock(),
            error_code=error.code if isinstance(error, ZKError) else type(error).__name__,
        )
        try:
            await self.notifier.notify(notification)
        except Exception as e:
            logger.warning(f"Failed to send failure notification for {device.name}: {e}")

    def _sanitize(self, error: Exception) -> str:
        return sanitize_error_message(
            str(error),
            max_length=self.config.max_error_message_length,
        )
