#!/usr/bin/env python3
"""Automated Scheduler for ZK attendance device fleet sync.

This module provides a long-running scheduler that harvests attendance
logs from every active ZK device at a fixed interval. Designed to run
as the main process in a Docker container.

Architecture:
    - Simple asyncio loop with wait/timeout (no external scheduler)
    - Each tick fires a fleet sync as a task; a tick that arrives while
      a run is still in flight is dropped by the use case
    - Graceful shutdown on SIGTERM/SIGINT
    - Configurable via environment variables
    - Health check endpoint via optional HTTP server

Environment Variables:
    SYNC_INTERVAL_SECONDS: Seconds between sync fires (default: 120)
    SYNC_ON_STARTUP: Run sync immediately on startup (default: true)
    HEALTH_CHECK_PORT: Port for health check endpoint (default: 8080, 0 to disable)

    Database:
        DATABASE_URL (required)

    Device client / sync policy:
        see src/zkfleet/config.py (ZK_*, DEVICE_UTC_OFFSET_HOURS, ERROR_WEBHOOK_URL, ...)

Example:
    # Harvest every 5 minutes
    SYNC_INTERVAL_SECONDS=300 python scheduler.py

    # No initial run, no health endpoint
    SYNC_ON_STARTUP=false HEALTH_CHECK_PORT=0 python scheduler.py

Docker Usage:
    docker run -e SYNC_INTERVAL_SECONDS=120 -e DATABASE_URL=... zk-fleet-sync

Author: ZK Fleet Team
"""
import asyncio
import json
import logging
import os
import signal
import sys
from datetime import UTC, datetime, timedelta
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.zkfleet.config import DeviceClientConfig, FleetSyncConfig
from src.zkfleet.database import check_database_health, close_pool, create_pool
from src.zkfleet.device import ZKClient
from src.zkfleet.exceptions import ConfigurationError, ZKError
from src.zkfleet.sync.adapters import (
    LoggingErrorNotifier,
    PostgresAccessEventStore,
    PostgresDeviceRegistry,
    PostgresPersonDirectory,
    PostgresSyncHistoryStore,
    WebhookErrorNotifier,
    ZKDeviceGateway,
)
from src.zkfleet.sync.domain.entities import FleetSyncResult
from src.zkfleet.sync.use_cases import FleetSyncUseCase

# Initialize logger
logger = logging.getLogger(__name__)

# ============================================
# Configuration
# ============================================

class SchedulerConfig:
    """Configuration loaded from environment variables.

    Raises:
        ConfigurationError: If DATABASE_URL is missing or a number is malformed
    """

    def __init__(self):
        try:
            self.interval_seconds = int(os.getenv("SYNC_INTERVAL_SECONDS", "120"))
            self.health_check_port = int(os.getenv("HEALTH_CHECK_PORT", "8080"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid scheduler setting: {e}", cause=e) from e
        self.sync_on_startup = os.getenv("SYNC_ON_STARTUP", "true").lower() == "true"
        self.database_url = os.getenv("DATABASE_URL")

        if not self.database_url:
            raise ConfigurationError(
                "DATABASE_URL is required",
                missing_keys=["DATABASE_URL"],
            )
        if self.interval_seconds <= 0:
            raise ConfigurationError("SYNC_INTERVAL_SECONDS must be positive")

    def __repr__(self):
        # DATABASE_URL carries credentials, keep it out of the repr
        return (
            f"SchedulerConfig("
            f"interval={self.interval_seconds}s, "
            f"startup={self.sync_on_startup}, "
            f"health_port={self.health_check_port})"
        )


# ============================================
# Wiring
# ============================================

def build_notifier(fleet_config: FleetSyncConfig):
    """Webhook notifier when ERROR_WEBHOOK_URL is set, logging otherwise."""
    if fleet_config.error_webhook_url:
        print("[Scheduler] Failure notifications go to the configured webhook")
        return WebhookErrorNotifier(fleet_config.error_webhook_url)
    return LoggingErrorNotifier()


def build_use_case(db_pool, fleet_config: FleetSyncConfig, client_config: DeviceClientConfig, notifier):
    """Wire the PostgreSQL adapters and the device gateway into the use case."""
    client = ZKClient(config=client_config)
    return FleetSyncUseCase(
        registry=PostgresDeviceRegistry(db_pool),
        people=PostgresPersonDirectory(db_pool),
        events=PostgresAccessEventStore(db_pool),
        history=PostgresSyncHistoryStore(db_pool),
        gateway=ZKDeviceGateway(client),
        notifier=notifier,
        config=fleet_config,
    )


# ============================================
# Health Check Server
# ============================================

class HealthState:
    """Shared state for health checks."""

    def __init__(self):
        self.last_sync_at: Optional[datetime] = None
        self.last_sync_success: bool = False
        self.last_result: Optional[dict] = None
        self.total_syncs: int = 0
        self.failed_syncs: int = 0
        self.skipped_syncs: int = 0
        self.started_at: datetime = datetime.now(UTC)

    def record(self, result: FleetSyncResult) -> None:
        """Fold a finished fleet run into the counters."""
        if result.skipped:
            self.skipped_syncs += 1
            return

        success = result.error is None and result.failed == 0
        self.total_syncs += 1
        self.last_sync_at = result.completed_at or datetime.now(UTC)
        self.last_sync_success = success
        self.last_result = {
            "succeeded": result.succeeded,
            "failed": result.failed,
            "records_inserted": result.records_inserted,
            "error": result.error,
        }
        if not success:
            self.failed_syncs += 1

    def snapshot(self) -> dict:
        uptime = (datetime.now(UTC) - self.started_at).total_seconds()
        return {
            "status": "healthy" if self.last_sync_success or self.total_syncs == 0 else "degraded",
            "uptime_seconds": round(uptime),
            "total_syncs": self.total_syncs,
            "failed_syncs": self.failed_syncs,
            "skipped_syncs": self.skipped_syncs,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else "never",
            "last_result": self.last_result,
        }


async def health_check_handler(reader, writer, state: HealthState, db_pool=None):
    """Handle HTTP health check requests.

    Device failures only degrade the status; the endpoint answers 503
    only when the database is unreachable.
    """
    # Read request (we don't care about the content)
    await reader.read(1024)

    payload = state.snapshot()
    payload["database"] = await check_database_health(db_pool)
    if not payload["database"].get("healthy"):
        payload["status"] = "unhealthy"

    body = json.dumps(payload)
    http_status = 503 if payload["status"] == "unhealthy" else 200
    response = (
        f"HTTP/1.1 {http_status} {'OK' if http_status == 200 else 'Service Unavailable'}\r\n"
        f"Content-Type: application/json\r\n"
        f"Content-Length: {len(body.encode())}\r\n"
        f"Connection: close\r\n"
        f"\r\n"
        f"{body}"
    )

    writer.write(response.encode())
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def start_health_server(port: int, state: HealthState, db_pool=None):
    """Start the health check HTTP server."""
    if port <= 0:
        return None

    async def handler(reader, writer):
        await health_check_handler(reader, writer, state, db_pool)

    server = await asyncio.start_server(handler, "0.0.0.0", port)
    print(f"[Scheduler] Health check server listening on port {port}")
    return server


# ============================================
# Main Scheduler Loop
# ============================================

async def run_and_record(use_case: FleetSyncUseCase, health_state: HealthState) -> FleetSyncResult:
    """Run one fleet sync and fold the outcome into the health state."""
    result = await use_case.run_fleet_sync()
    health_state.record(result)

    if result.skipped:
        print("[Scheduler] Previous sync still running, tick dropped")
    else:
        print(
            f"[Scheduler] Sync complete: succeeded={result.succeeded}, failed={result.failed}, "
            f"inserted={result.records_inserted}, duration={result.duration_seconds or 0:.1f}s"
        )
    return result


async def scheduler_loop(
    config: SchedulerConfig,
    use_case: FleetSyncUseCase,
    health_state: HealthState,
    shutdown_event: asyncio.Event,
) -> set:
    """Main scheduling loop.

    Fires a sync task per tick without waiting for it, so a slow fleet
    never delays the schedule.

    Returns:
        The set of sync tasks still running when shutdown was requested
    """
    in_flight: set[asyncio.Task] = set()

    def log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Fleet sync task failed: {error}", exc_info=error)

    def fire():
        task = asyncio.create_task(run_and_record(use_case, health_state))
        in_flight.add(task)
        task.add_done_callback(in_flight.discard)
        task.add_done_callback(log_failure)

    if config.sync_on_startup:
        print("[Scheduler] Running initial sync on startup...")
        fire()

    while not shutdown_event.is_set():
        next_run = datetime.now(UTC) + timedelta(seconds=config.interval_seconds)
        print(f"[Scheduler] Next sync at {next_run.isoformat()} (in {config.interval_seconds} seconds)")

        try:
            # Wait for either the interval or shutdown
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=config.interval_seconds,
            )
            # If we get here, shutdown was requested
            break
        except asyncio.TimeoutError:
            # Timeout means it's time to sync
            pass

        print(f"[Scheduler] Scheduled sync at {datetime.now(UTC).isoformat()}")
        fire()

    print("[Scheduler] Shutdown requested, exiting loop")
    return in_flight


# ============================================
# Main Entry Point
# ============================================

async def main():
    """Main entry point for the scheduler."""
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    print("=" * 60)
    print("ZK Fleet Attendance Sync Scheduler")
    print("=" * 60)

    # Load configuration
    try:
        config = SchedulerConfig()
        fleet_config = FleetSyncConfig.from_env()
        client_config = DeviceClientConfig.from_env()
    except ConfigurationError as e:
        print(f"[Scheduler] ERROR: {e}")
        sys.exit(1)
    print(f"[Scheduler] Config: {config}")

    try:
        db_pool = await create_pool(config.database_url)
    except ZKError as e:
        print(f"[Scheduler] ERROR: {e}")
        sys.exit(1)
    print("[Scheduler] Connected to PostgreSQL")

    notifier = build_notifier(fleet_config)
    use_case = build_use_case(db_pool, fleet_config, client_config, notifier)

    # Health state
    health_state = HealthState()

    # Shutdown event
    shutdown_event = asyncio.Event()

    # Signal handlers
    def handle_shutdown(signum, frame):
        print(f"\n[Scheduler] Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    # Start health server
    health_server = await start_health_server(config.health_check_port, health_state, db_pool)

    in_flight: set = set()
    try:
        in_flight = await scheduler_loop(
            config=config,
            use_case=use_case,
            health_state=health_state,
            shutdown_event=shutdown_event,
        )
    finally:
        # Cleanup
        print("[Scheduler] Cleaning up...")

        if in_flight:
            print(f"[Scheduler] Waiting for {len(in_flight)} in-flight sync(s) to finish...")
            results = await asyncio.gather(*in_flight, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"In-flight sync failed during shutdown: {result}", exc_info=result)

        if health_server:
            health_server.close()
            await health_server.wait_closed()

        if isinstance(notifier, WebhookErrorNotifier):
            await notifier.close()

        await close_pool(db_pool)

        print("[Scheduler] Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
