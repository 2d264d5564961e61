"""Runtime configuration for the device client and fleet sync.

Values come from environment variables (a ``.env`` file is honoured via
python-dotenv). Every setting has a default; malformed values raise
``ConfigurationError`` at load time rather than at first use.

Environment Variables:
    ZK_REQUEST_TIMEOUT: Seconds to wait for a reply (default: 10)
    ZK_CHUNK_TIMEOUT: Seconds of chunk inactivity before giving up (default: 10)
    ZK_GRACE_PERIOD_MS: Trailing-ACK grace read in ms (default: 100)
    ZK_UDP_PORT_START / ZK_UDP_PORT_END: Local UDP port pool (default: 5200-5500)
    ZK_BIND_ATTEMPTS: UDP bind attempts before failing (default: 10)
    ZK_LEASE_TIMEOUT: Seconds to wait for a busy device (default: 30)

    DEVICE_UTC_OFFSET_HOURS: Default device clock offset (default: 0)
    CLOCK_DRIFT_THRESHOLD_SECONDS: Drift tolerated before correcting (default: 60)
    ERROR_NOTIFY_COOLDOWN_MINUTES: Per-device notification throttle (default: 30)
    MAX_ERROR_MESSAGE_LENGTH: Sanitized error length cap (default: 1000)
    SYNC_CONNECT_ATTEMPTS: Connect attempts per device per run (default: 1)
    ERROR_WEBHOOK_URL: Optional webhook for failure notifications

Author: ZK Fleet Team
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError


def _env_number(name: str, default: str, cast=float):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            details={"variable": name},
            cause=e,
        ) from e


@dataclass
class DeviceClientConfig:
    """Timeouts and resource limits for device sessions."""

    request_timeout: float = 10.0
    chunk_timeout: float = 10.0
    grace_period: float = 0.1
    udp_port_start: int = 5200
    udp_port_end: int = 5500
    bind_attempts: int = 10
    lease_timeout: float = 30.0

    def __post_init__(self):
        if self.request_timeout <= 0 or self.chunk_timeout <= 0:
            raise ConfigurationError("Timeouts must be positive")
        if self.grace_period < 0:
            raise ConfigurationError("Grace period cannot be negative")
        if not 0 < self.udp_port_start <= self.udp_port_end <= 65535:
            raise ConfigurationError(
                f"Invalid UDP port range {self.udp_port_start}-{self.udp_port_end}"
            )
        if self.bind_attempts < 1:
            raise ConfigurationError("ZK_BIND_ATTEMPTS must be at least 1")

    @classmethod
    def from_env(cls) -> "DeviceClientConfig":
        load_dotenv()
        return cls(
            request_timeout=_env_number("ZK_REQUEST_TIMEOUT", "10"),
            chunk_timeout=_env_number("ZK_CHUNK_TIMEOUT", "10"),
            grace_period=_env_number("ZK_GRACE_PERIOD_MS", "100") / 1000.0,
            udp_port_start=_env_number("ZK_UDP_PORT_START", "5200", int),
            udp_port_end=_env_number("ZK_UDP_PORT_END", "5500", int),
            bind_attempts=_env_number("ZK_BIND_ATTEMPTS", "10", int),
            lease_timeout=_env_number("ZK_LEASE_TIMEOUT", "30"),
        )


@dataclass
class FleetSyncConfig:
    """Policy knobs for the fleet sync orchestrator."""

    default_utc_offset_hours: float = 0.0
    drift_threshold_seconds: float = 60.0
    notify_cooldown_minutes: float = 30.0
    max_error_message_length: int = 1000
    connect_attempts: int = 1
    error_webhook_url: Optional[str] = None

    def __post_init__(self):
        if not -14 <= self.default_utc_offset_hours <= 14:
            raise ConfigurationError(
                f"DEVICE_UTC_OFFSET_HOURS out of range: {self.default_utc_offset_hours}"
            )
        if self.drift_threshold_seconds < 0:
            raise ConfigurationError("CLOCK_DRIFT_THRESHOLD_SECONDS cannot be negative")
        if self.connect_attempts < 1:
            raise ConfigurationError("SYNC_CONNECT_ATTEMPTS must be at least 1")

    @classmethod
    def from_env(cls) -> "FleetSyncConfig":
        load_dotenv()
        return cls(
            default_utc_offset_hours=_env_number("DEVICE_UTC_OFFSET_HOURS", "0"),
            drift_threshold_seconds=_env_number("CLOCK_DRIFT_THRESHOLD_SECONDS", "60"),
            notify_cooldown_minutes=_env_number("ERROR_NOTIFY_COOLDOWN_MINUTES", "30"),
            max_error_message_length=_env_number("MAX_ERROR_MESSAGE_LENGTH", "1000", int),
            connect_attempts=_env_number("SYNC_CONNECT_ATTEMPTS", "1", int),
            error_webhook_url=os.getenv("ERROR_WEBHOOK_URL") or None,
        )


__all__ = ["DeviceClientConfig", "FleetSyncConfig"]
