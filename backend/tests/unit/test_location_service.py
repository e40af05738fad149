"""Unit tests for the location request coordinator and location provider."""

import asyncio

import pytest

from fee_engine.models import LocationFailureKind, LocationFix, LocationUnavailable
from fee_engine.services import LocationProvider, LocationRequestCoordinator, StaticLocationPlatform

from tests.unit.fakes import FakeClock, FakeLocationPlatform

ALGIERS = LocationFix(lat=36.75, lng=3.05)


class TestLocationRequestCoordinator:
    """Tests for single-flight location fetching."""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.platform = FakeLocationPlatform(fix=ALGIERS)
        self.coordinator = LocationRequestCoordinator(
            self.platform, freshness_seconds=300, timeout_seconds=1.0, clock=self.clock
        )

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_platform_call(self) -> None:
        self.platform.gate = asyncio.Event()
        callers = [asyncio.create_task(self.coordinator.get_current_location()) for _ in range(4)]
        await asyncio.sleep(0)
        assert self.coordinator.is_fetching is True

        self.platform.gate.set()
        results = await asyncio.gather(*callers)

        assert self.platform.position_calls == 1
        assert all(result == ALGIERS for result in results)
        assert self.coordinator.is_fetching is False

    @pytest.mark.asyncio
    async def test_fresh_location_is_served_from_cache(self) -> None:
        await self.coordinator.get_current_location()
        self.clock.advance(299)
        fix = await self.coordinator.get_current_location()
        assert fix == ALGIERS
        assert self.platform.position_calls == 1

    @pytest.mark.asyncio
    async def test_stale_location_triggers_new_fetch(self) -> None:
        await self.coordinator.get_current_location()
        self.clock.advance(301)
        await self.coordinator.get_current_location()
        assert self.platform.position_calls == 2

    @pytest.mark.asyncio
    async def test_success_updates_last_known_location(self) -> None:
        assert self.coordinator.last_known_location is None
        await self.coordinator.get_current_location()
        assert self.coordinator.last_known_location == ALGIERS
        assert self.coordinator.last_updated_at == self.clock.now

    @pytest.mark.asyncio
    async def test_failure_propagates_to_all_joined_callers(self) -> None:
        self.platform.gate = asyncio.Event()
        self.platform.error = OSError("gps chip asleep")
        callers = [asyncio.create_task(self.coordinator.get_current_location()) for _ in range(3)]
        await asyncio.sleep(0)
        self.platform.gate.set()

        results = await asyncio.gather(*callers, return_exceptions=True)

        assert self.platform.position_calls == 1
        for result in results:
            assert isinstance(result, LocationUnavailable)
            assert result.kind == LocationFailureKind.UNAVAILABLE
        assert self.coordinator.last_known_location is None

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self) -> None:
        self.platform.fix = None
        with pytest.raises(LocationUnavailable):
            await self.coordinator.get_current_location()

        self.platform.fix = ALGIERS
        assert await self.coordinator.get_current_location() == ALGIERS
        assert self.platform.position_calls == 2

    @pytest.mark.asyncio
    async def test_permission_denied(self) -> None:
        self.platform.permission = False
        with pytest.raises(LocationUnavailable) as exc_info:
            await self.coordinator.get_current_location()
        assert exc_info.value.kind == LocationFailureKind.PERMISSION_DENIED
        assert self.platform.position_calls == 0

    @pytest.mark.asyncio
    async def test_services_disabled(self) -> None:
        self.platform.enabled = False
        with pytest.raises(LocationUnavailable) as exc_info:
            await self.coordinator.get_current_location()
        assert exc_info.value.kind == LocationFailureKind.SERVICES_DISABLED
        assert "GPS" in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_platform_timeout(self) -> None:
        coordinator = LocationRequestCoordinator(self.platform, timeout_seconds=0.01, clock=self.clock)
        self.platform.delay = 0.5
        with pytest.raises(LocationUnavailable) as exc_info:
            await coordinator.get_current_location()
        assert exc_info.value.kind == LocationFailureKind.TIMEOUT
        assert coordinator.is_fetching is False

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_fetch(self) -> None:
        self.platform.gate = asyncio.Event()
        first = asyncio.create_task(self.coordinator.get_current_location())
        second = asyncio.create_task(self.coordinator.get_current_location())
        await asyncio.sleep(0)

        first.cancel()
        await asyncio.sleep(0)
        self.platform.gate.set()

        assert await second == ALGIERS
        assert first.cancelled()

    @pytest.mark.asyncio
    async def test_remember_and_invalidate(self) -> None:
        manual = LocationFix(lat=35.0, lng=-0.6)
        self.coordinator.remember(manual)
        assert await self.coordinator.get_current_location() == manual
        assert self.platform.position_calls == 0

        self.coordinator.invalidate()
        assert await self.coordinator.get_current_location() == ALGIERS
        assert self.platform.position_calls == 1


class TestLocationProvider:
    """Tests for observable location state."""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.platform = FakeLocationPlatform(fix=ALGIERS)
        self.coordinator = LocationRequestCoordinator(self.platform, clock=self.clock)
        self.provider = LocationProvider(self.platform, self.coordinator)
        self.snapshots: list[tuple[bool, object]] = []
        self.provider.add_listener(
            lambda: self.snapshots.append((self.provider.is_loading, self.provider.current_location))
        )

    @pytest.mark.asyncio
    async def test_get_current_location_reports_loading_then_fix(self) -> None:
        fix = await self.provider.get_current_location()

        assert fix == ALGIERS
        assert self.snapshots[0] == (True, None)
        assert self.snapshots[-1] == (False, ALGIERS)
        assert self.provider.has_permission is True
        assert self.provider.error_message is None

    @pytest.mark.asyncio
    async def test_failure_sets_user_message_and_propagates(self) -> None:
        self.platform.permission = False
        with pytest.raises(LocationUnavailable):
            await self.provider.get_current_location()

        assert self.provider.is_loading is False
        assert self.provider.has_permission is False
        assert "permission" in self.provider.error_message
        assert self.snapshots[-1] == (False, None)

    @pytest.mark.asyncio
    async def test_refresh_location_returns_bool(self) -> None:
        assert await self.provider.refresh_location() is True
        self.coordinator.invalidate()
        self.platform.enabled = False
        assert await self.provider.refresh_location() is False
        assert self.provider.is_location_enabled is False

    @pytest.mark.asyncio
    async def test_check_location_status(self) -> None:
        self.platform.permission = False
        await self.provider.check_location_status()
        assert self.provider.is_location_enabled is True
        assert self.provider.has_permission is False

    @pytest.mark.asyncio
    async def test_request_permission(self) -> None:
        self.platform.permission = False
        assert await self.provider.request_permission() is True
        assert self.provider.has_permission is True

        self.platform.grant_on_request = False
        assert await self.provider.request_permission() is False

    def test_update_location_notifies_and_feeds_coordinator(self) -> None:
        manual = LocationFix(lat=36.7, lng=3.2)
        self.provider.update_location(manual)
        assert self.provider.current_location == manual
        assert self.coordinator.last_known_location == manual
        assert self.snapshots == [(False, manual)]

    @pytest.mark.asyncio
    async def test_location_updates_stream(self) -> None:
        assert self.provider.start_location_updates() is True
        await asyncio.sleep(0.01)
        queue = self.platform.updates
        await queue.put(LocationFix(lat=36.76, lng=3.05))
        await queue.put(LocationFix(lat=36.77, lng=3.05))
        await asyncio.sleep(0.01)

        assert self.provider.current_location.lat == 36.77
        assert self.coordinator.last_known_location.lat == 36.77
        await self.provider.stop_location_updates()
        assert self.provider.is_streaming is False

    @pytest.mark.asyncio
    async def test_stream_error_is_recorded(self) -> None:
        self.provider.start_location_updates()
        await asyncio.sleep(0.01)
        await self.platform.updates.put(RuntimeError("signal lost"))
        await asyncio.sleep(0.01)
        assert "signal lost" in self.provider.error_message
        assert self.provider.is_streaming is False

    @pytest.mark.asyncio
    async def test_platform_without_stream(self) -> None:
        provider = LocationProvider(StaticLocationPlatform(), self.coordinator)
        assert provider.start_location_updates() is False
        assert "does not stream" in provider.error_message

    def test_distance_to(self) -> None:
        assert self.provider.distance_to(36.76, 3.05) is None
        self.provider.update_location(ALGIERS)
        assert self.provider.distance_to(36.751, 3.05) == pytest.approx(111.19, abs=0.5)
