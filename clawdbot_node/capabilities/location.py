"""Location capability with a short-lived fix cache."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from ..config import NodeConfig
from ..errors import NodeError
from ..host import HostState
from ..protocol import ErrorCode

logger = logging.getLogger(__name__)

ACCURACY_LEVELS = ("coarse", "balanced", "precise")

# Target horizontal accuracy in metres.
ACCURACY_BEST = 5.0
ACCURACY_TEN_METERS = 10.0
ACCURACY_HUNDRED_METERS = 100.0
ACCURACY_KILOMETER = 1000.0

GPS_ACCURACY_THRESHOLD = 10.0

# Time to let a permission prompt settle before asking for a fix.
AUTHORIZATION_SETTLE_S = 0.5


class LocationAuthorization(enum.Enum):
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    WHEN_IN_USE = "when_in_use"
    ALWAYS = "always"


@dataclass
class LocationFix:
    lat: float
    lon: float
    accuracy_m: float
    altitude_m: float = 0.0
    speed_mps: float = -1.0
    heading_deg: float = -1.0
    timestamp: Optional[datetime] = None


class LocationBackend(ABC):
    """Platform location provider."""

    @abstractmethod
    def authorization(self) -> LocationAuthorization:
        """Current system authorization status."""

    @abstractmethod
    async def request_authorization(self, always: bool) -> None:
        """Prompt the user for access."""

    @abstractmethod
    async def request_fix(self, accuracy_m: float) -> LocationFix:
        """Acquire one fix at (roughly) *accuracy_m* metres."""


class NullLocationBackend(LocationBackend):
    """Backend for hosts without location services."""

    def authorization(self) -> LocationAuthorization:
        return LocationAuthorization.DENIED

    async def request_authorization(self, always: bool) -> None:
        pass

    async def request_fix(self, accuracy_m: float) -> LocationFix:
        raise NodeError(ErrorCode.LOCATION_UNAVAILABLE, "Location unavailable")


class LocationCapability:
    """``location.get``."""

    def __init__(
        self,
        backend: LocationBackend,
        config: NodeConfig,
        host: HostState,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.config = config
        self.host = host
        self._clock = clock
        self._sleep = sleep
        self._last_fix: Optional[LocationFix] = None
        self._last_fix_at: Optional[float] = None

    async def get_location(
        self,
        timeout_ms: int = 10000,
        max_age_ms: int = 15000,
        desired_accuracy: str = "balanced",
    ) -> dict:
        if self.config.location_mode == "off":
            raise NodeError(ErrorCode.LOCATION_DISABLED, "Location is disabled in app settings")

        await self._check_authorization()

        if self._last_fix is not None and self._last_fix_at is not None:
            age_ms = (self._clock() - self._last_fix_at) * 1000
            if age_ms < max_age_ms:
                logger.debug("Serving cached location fix (%.0f ms old)", age_ms)
                return self._format(self._last_fix)

        accuracy = self._target_accuracy(desired_accuracy)
        try:
            fix = await asyncio.wait_for(self.backend.request_fix(accuracy), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise NodeError(ErrorCode.LOCATION_TIMEOUT, "Location request timed out") from None
        except NodeError:
            raise
        except Exception as exc:
            raise NodeError(ErrorCode.LOCATION_UNAVAILABLE, str(exc) or "Location unavailable") from exc

        self._last_fix = fix
        self._last_fix_at = self._clock()
        return self._format(fix)

    async def _check_authorization(self) -> None:
        status = self.backend.authorization()
        if status is LocationAuthorization.NOT_DETERMINED:
            await self.backend.request_authorization(always=self.config.location_mode == "always")
            await self._sleep(AUTHORIZATION_SETTLE_S)
        elif status is LocationAuthorization.DENIED:
            raise NodeError(ErrorCode.LOCATION_PERMISSION_REQUIRED, "Location permission not granted")
        elif status is LocationAuthorization.WHEN_IN_USE and not self.host.is_foreground():
            raise NodeError(
                ErrorCode.LOCATION_BACKGROUND_UNAVAILABLE,
                "App must be in foreground for 'when in use' location permission",
            )

    def _target_accuracy(self, desired: str) -> float:
        precise = self.config.precise_location
        if desired == "coarse":
            return ACCURACY_KILOMETER
        if desired == "precise":
            return ACCURACY_BEST if precise else ACCURACY_HUNDRED_METERS
        return ACCURACY_TEN_METERS if precise else ACCURACY_HUNDRED_METERS

    def _format(self, fix: LocationFix) -> dict:
        ts = fix.timestamp or datetime.now(timezone.utc)
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return {
            "lat": fix.lat,
            "lon": fix.lon,
            "accuracyMeters": fix.accuracy_m,
            "altitudeMeters": fix.altitude_m,
            "speedMps": max(0.0, fix.speed_mps),
            "headingDeg": max(0.0, fix.heading_deg),
            "timestamp": ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "isPrecise": self.config.precise_location,
            "source": "gps" if fix.accuracy_m < GPS_ACCURACY_THRESHOLD else "network",
        }
