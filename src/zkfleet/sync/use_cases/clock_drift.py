"""Clock Drift Correction - keeps terminal clocks close to server time.

Terminals have cheap RTCs and no NTP. Every sync reads the device clock,
converts it to UTC with the device's offset and pushes the corrected local
time back when the difference exceeds the threshold. A failed check is
logged and never stops the attendance harvest that follows it.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from ..domain.entities import DeviceEndpoint
from ..domain.ports import IDeviceSession
from ..domain.timezones import to_device_local, to_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class DriftCheck:
    device_time: datetime
    server_time: datetime
    drift_seconds: float
    corrected: bool = False


class ClockDriftCorrector:
    """Reads a device clock and corrects it when it drifted too far.

    Example:
        corrector = ClockDriftCorrector(threshold_seconds=60)
        check = await corrector.check_and_correct(session, device, offset_hours=3)
    """

    def __init__(
        self,
        threshold_seconds: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.threshold_seconds = threshold_seconds
        self._clock = clock

    def needs_correction(self, drift_seconds: float) -> bool:
        return abs(drift_seconds) > self.threshold_seconds

    async def check_and_correct(
        self,
        session: IDeviceSession,
        device: DeviceEndpoint,
        offset_hours: float,
    ) -> DriftCheck | None:
        """Check the clock and correct it if needed.

        Returns:
            The check result, or None if the check itself failed
        """
        try:
            device_local = await session.get_time()
            server_time = self._clock()
            device_time = to_utc(device_local, offset_hours)
            drift = (device_time - server_time).total_seconds()
            check = DriftCheck(
                device_time=device_time,
                server_time=server_time,
                drift_seconds=drift,
            )

            if self.needs_correction(drift):
                await session.set_time(to_device_local(self._clock(), offset_hours))
                check.corrected = True
                logger.info(
                    f"Corrected clock on {device.name} ({device.ip}): "
                    f"drift was {drift:+.0f}s"
                )
            else:
                logger.debug(f"Clock on {device.name} within tolerance ({drift:+.0f}s)")

            return check

        except Exception as e:
            logger.warning(f"Clock drift check failed for {device.name} ({device.ip}): {e}")
            return None
