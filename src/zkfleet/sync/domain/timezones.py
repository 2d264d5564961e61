"""Conversions between device-local clocks and UTC.

Terminals keep naive local time with no zone information; the offset comes
from the device registry (or the fleet default).
"""

from datetime import datetime, timedelta, timezone


def device_timezone(offset_hours: float) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(local: datetime, offset_hours: float) -> datetime:
    """Interpret a naive device-local datetime and return aware UTC."""
    if local.tzinfo is not None:
        return local.astimezone(timezone.utc)
    return local.replace(tzinfo=device_timezone(offset_hours)).astimezone(timezone.utc)


def to_device_local(moment: datetime, offset_hours: float) -> datetime:
    """Convert an aware datetime to the naive local time a device expects."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(device_timezone(offset_hours)).replace(tzinfo=None, microsecond=0)
