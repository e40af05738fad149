"""Location services: platform abstraction, request coordination and state.

- LocationPlatform: what the host device (or a test double) must provide.
- LocationRequestCoordinator: at most one platform fetch in flight, with a
  freshness window so repeated callers reuse a recent fix.
- LocationProvider: observable location state consumed by the fee cache.

The coordinator never retries; retry policy belongs to its callers.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Optional

from fee_engine.models import LocationFailureKind, LocationFix, LocationUnavailable
from fee_engine.utils import ChangeNotifier, haversine_meters

logger = logging.getLogger(__name__)


class LocationPlatform(ABC):
    """Abstract device location API."""

    @abstractmethod
    async def is_service_enabled(self) -> bool:
        pass

    @abstractmethod
    async def check_permission(self) -> bool:
        pass

    @abstractmethod
    async def request_permission(self) -> bool:
        pass

    @abstractmethod
    async def get_current_position(self) -> Optional[LocationFix]:
        """Return the current position, or None if the platform has none."""
        pass

    def watch_position(self) -> AsyncIterator[LocationFix]:
        """Stream of position updates. Platforms without one raise."""
        raise NotImplementedError(f"{type(self).__name__} does not stream positions")


class StaticLocationPlatform(LocationPlatform):
    """Platform whose position is set explicitly (e.g. by a client over HTTP).

    Reports permission granted and services enabled; has no position until
    ``set_position`` is called.
    """

    def __init__(self, fix: Optional[LocationFix] = None) -> None:
        self._fix = fix

    def set_position(self, fix: Optional[LocationFix]) -> None:
        self._fix = fix

    async def is_service_enabled(self) -> bool:
        return True

    async def check_permission(self) -> bool:
        return True

    async def request_permission(self) -> bool:
        return True

    async def get_current_position(self) -> Optional[LocationFix]:
        return self._fix


class LocationRequestCoordinator:
    """Deduplicates concurrent "get current location" requests.

    State machine: Idle -> Fetching -> Idle (with cached fix or error).
    Only one fetch may be in flight; every caller arriving meanwhile awaits
    the same outcome, including its failure.
    """

    def __init__(
        self,
        platform: LocationPlatform,
        freshness_seconds: float = 300.0,
        timeout_seconds: float = 15.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._platform = platform
        self._freshness = freshness_seconds
        self._timeout = timeout_seconds
        self._clock = clock
        self._last_location: Optional[LocationFix] = None
        self._last_updated_at: Optional[float] = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def last_known_location(self) -> Optional[LocationFix]:
        return self._last_location

    @property
    def last_updated_at(self) -> Optional[float]:
        return self._last_updated_at

    @property
    def is_fetching(self) -> bool:
        return self._pending is not None

    def has_fresh_location(self) -> bool:
        if self._last_location is None or self._last_updated_at is None:
            return False
        return self._clock() - self._last_updated_at < self._freshness

    async def get_current_location(self) -> LocationFix:
        """Return a fresh fix, joining an in-flight fetch when there is one.

        Raises:
            LocationUnavailable: the platform could not produce a location.
        """
        if self.has_fresh_location():
            return self._last_location  # type: ignore[return-value]

        if self._pending is None:
            self._pending = asyncio.get_running_loop().create_task(self._fetch())
        else:
            logger.debug("[LOCATION] Request already in flight, joining it")
        # Shield: a cancelled caller must not cancel the fetch others await
        return await asyncio.shield(self._pending)

    def remember(self, fix: LocationFix) -> None:
        """Record a fix obtained outside the coordinator as the freshest one."""
        self._last_location = fix
        self._last_updated_at = self._clock()

    def invalidate(self) -> None:
        """Forget the cached fix so the next request queries the platform."""
        self._last_updated_at = None

    async def _fetch(self) -> LocationFix:
        try:
            if not await self._platform.is_service_enabled():
                raise LocationUnavailable(LocationFailureKind.SERVICES_DISABLED)
            if not await self._platform.check_permission():
                raise LocationUnavailable(LocationFailureKind.PERMISSION_DENIED)
            try:
                fix = await asyncio.wait_for(
                    self._platform.get_current_position(), timeout=self._timeout
                )
            except asyncio.TimeoutError as e:
                raise LocationUnavailable(
                    LocationFailureKind.TIMEOUT,
                    f"No position within {self._timeout:.0f}s",
                ) from e
            except LocationUnavailable:
                raise
            except Exception as e:
                raise LocationUnavailable(
                    LocationFailureKind.UNAVAILABLE, f"{type(e).__name__}: {e}"
                ) from e
            if fix is None:
                raise LocationUnavailable(
                    LocationFailureKind.UNAVAILABLE, "Platform returned no position"
                )
            self.remember(fix)
            logger.info(f"[LOCATION] Fix acquired: ({fix.lat:.5f}, {fix.lng:.5f})")
            return fix
        except LocationUnavailable as e:
            logger.info(f"[LOCATION] Fetch failed: {e.kind.value}: {e}")
            raise
        finally:
            self._pending = None


class LocationProvider(ChangeNotifier):
    """Observable location state.

    Exposes ``current_location``, ``is_loading`` and ``has_permission`` to
    listeners such as the delivery fee cache. Listeners are notified after
    every state change.
    """

    def __init__(self, platform: LocationPlatform, coordinator: LocationRequestCoordinator) -> None:
        super().__init__()
        self._platform = platform
        self._coordinator = coordinator
        self._current_location: Optional[LocationFix] = None
        self._is_loading = False
        self._has_permission = False
        self._is_location_enabled = False
        self._error_message: Optional[str] = None
        self._updates_task: Optional[asyncio.Task] = None

    @property
    def current_location(self) -> Optional[LocationFix]:
        return self._current_location

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def has_permission(self) -> bool:
        return self._has_permission

    @property
    def is_location_enabled(self) -> bool:
        return self._is_location_enabled

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def is_streaming(self) -> bool:
        return self._updates_task is not None and not self._updates_task.done()

    async def check_location_status(self) -> None:
        """Refresh the service-enabled and permission flags from the platform."""
        try:
            self._is_location_enabled = await self._platform.is_service_enabled()
            self._has_permission = await self._platform.check_permission()
        except Exception as e:
            self._error_message = f"Failed to check location status: {e}"
        self.notify_listeners()

    async def request_permission(self) -> bool:
        try:
            self._has_permission = await self._platform.request_permission()
            if self._has_permission:
                self._is_location_enabled = await self._platform.is_service_enabled()
        except Exception as e:
            self._error_message = f"Failed to request permission: {e}"
            self._has_permission = False
        self.notify_listeners()
        return self._has_permission

    async def get_current_location(self) -> LocationFix:
        """Fetch a location through the coordinator, updating observable state.

        Raises:
            LocationUnavailable: propagated from the coordinator.
        """
        if self._coordinator.has_fresh_location():
            fix = await self._coordinator.get_current_location()
            self._apply_fix(fix)
            return fix

        self._is_loading = True
        self._error_message = None
        self.notify_listeners()
        try:
            fix = await self._coordinator.get_current_location()
        except LocationUnavailable as e:
            self._error_message = e.user_message
            if e.kind == LocationFailureKind.PERMISSION_DENIED:
                self._has_permission = False
            elif e.kind == LocationFailureKind.SERVICES_DISABLED:
                self._is_location_enabled = False
            self._is_loading = False
            self.notify_listeners()
            raise
        finally:
            self._is_loading = False
        self._has_permission = True
        self._is_location_enabled = True
        self._apply_fix(fix)
        return fix

    async def refresh_location(self) -> bool:
        """Like ``get_current_location`` but reports failure as ``False``."""
        try:
            await self.get_current_location()
            return True
        except LocationUnavailable:
            return False

    def update_location(self, fix: LocationFix) -> None:
        """Set a manually chosen location (address search, map pick)."""
        self._coordinator.remember(fix)
        self._error_message = None
        self._apply_fix(fix)

    def _apply_fix(self, fix: LocationFix) -> None:
        self._current_location = fix
        self.notify_listeners()

    def start_location_updates(self) -> bool:
        """Consume the platform position stream in a background task."""
        if self.is_streaming:
            return True
        try:
            stream = self._platform.watch_position()
        except NotImplementedError as e:
            self._error_message = f"Failed to start location updates: {e}"
            self.notify_listeners()
            return False
        self._updates_task = asyncio.get_running_loop().create_task(
            self._consume_updates(stream), name="location-updates"
        )
        return True

    async def stop_location_updates(self) -> None:
        task, self._updates_task = self._updates_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _consume_updates(self, stream: AsyncIterator[LocationFix]) -> None:
        try:
            async for fix in stream:
                self._coordinator.remember(fix)
                self._apply_fix(fix)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info(f"[LOCATION] Update stream error: {type(e).__name__}: {e}")
            self._error_message = f"Location update error: {e}"
            self.notify_listeners()

    def distance_to(self, lat: float, lng: float) -> Optional[float]:
        """Meters between the current location and a point, if location is known."""
        if self._current_location is None:
            return None
        return haversine_meters(self._current_location.lat, self._current_location.lng, lat, lng)

    def clear_error(self) -> None:
        self._error_message = None
        self.notify_listeners()

    async def close(self) -> None:
        await self.stop_location_updates()
        self.dispose()
