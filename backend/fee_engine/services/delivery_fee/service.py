"""Location-aware delivery fee cache.

Shared by every consumer that displays a delivery fee. Responsibilities:
- Keyed cache of computed fees with a 30 minute TTL and a location
  fingerprint; entries computed for another location cell are dropped
- At most one computation in flight per restaurant; late callers join it
- Batch warm-up in fixed-size chunks to bound concurrent backend calls
- Fallback to the restaurant's base fee whenever computation fails
- Debounced reaction to location changes, ignoring sub-threshold moves
- Periodic expiry cleanup that follows the host app's foreground state

All state is mutated from one event loop. Each computation claims its
restaurant's "computing" slot and handle before its first await.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, Optional, Protocol

from fee_engine.config import Settings
from fee_engine.models import (
    CachedFee,
    CacheStats,
    LifecycleState,
    LocationFix,
    LocationPending,
    RestaurantFeeInput,
)
from fee_engine.services.fee_calculator import FeeCalculatorService
from fee_engine.utils import (
    ChangeNotifier,
    Debouncer,
    PeriodicTimer,
    is_significant_move,
    location_fingerprint,
)

logger = logging.getLogger(__name__)


class LocationSource(Protocol):
    """Observable location state the cache can follow."""

    @property
    def current_location(self) -> Optional[LocationFix]: ...

    @property
    def is_loading(self) -> bool: ...

    @property
    def has_permission(self) -> bool: ...

    def add_listener(self, listener: Callable[[], None]) -> None: ...

    def remove_listener(self, listener: Callable[[], None]) -> None: ...


class DeliveryFeeCache(ChangeNotifier):
    """Central fee caching and recalculation engine.

    Listeners are notified after every state change: computation started or
    finished, batch chunk finished, invalidation, cleanup. A batch notifies
    once per chunk rather than once per restaurant.
    """

    def __init__(
        self,
        calculator: FeeCalculatorService,
        settings: Optional[Settings] = None,
        location_source: Optional[LocationSource] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self._calculator = calculator
        self._settings = settings or Settings()
        self._clock = clock

        self._cache: dict[str, CachedFee] = {}
        self._computing: set[str] = set()
        self._pending: dict[str, asyncio.Future] = {}
        self._failed: set[str] = set()
        self._fingerprint: Optional[str] = None

        self._hits = 0
        self._misses = 0
        self._location_changes = 0
        self._recalculation_advised = False

        self._location_source: Optional[LocationSource] = None
        self._debouncer = Debouncer(self._settings.location_debounce_seconds)
        self._refresh_timer = PeriodicTimer(
            self._settings.refresh_interval_seconds,
            self._on_refresh_tick,
            name="fee-cache-refresh",
        )
        self._last_resume_at: Optional[float] = None
        self._background_tasks: set[asyncio.Task] = set()

        if location_source is not None:
            self.attach_location_source(location_source)

    # ─── Read-only state ───

    @property
    def current_fingerprint(self) -> Optional[str]:
        return self._fingerprint

    @property
    def recalculation_advised(self) -> bool:
        """True after an accepted location change until the next batch warm-up."""
        return self._recalculation_advised

    @property
    def is_refresh_running(self) -> bool:
        return self._refresh_timer.is_running

    @property
    def is_location_loading(self) -> bool:
        return self._location_source is not None and self._location_source.is_loading

    @property
    def is_location_available(self) -> bool:
        source = self._location_source
        if source is None:
            return False
        return source.current_location is not None and not source.is_loading and source.has_permission

    def __len__(self) -> int:
        return len(self._cache)

    def get_cached_fee(self, restaurant_id: str) -> Optional[float]:
        """Return a valid cached fee, dropping the entry if it went stale."""
        entry = self._cache.get(restaurant_id)
        if entry is None:
            return None
        if entry.is_expired(self._clock(), self._settings.cache_ttl_seconds):
            del self._cache[restaurant_id]
            return None
        if self._fingerprint is not None and entry.location_fingerprint != self._fingerprint:
            del self._cache[restaurant_id]
            return None
        return entry.fee

    def is_computing(self, restaurant_id: str) -> bool:
        return restaurant_id in self._computing

    def has_failed(self, restaurant_id: str) -> bool:
        return restaurant_id in self._failed

    def get_cache_stats(self) -> CacheStats:
        now = self._clock()
        ttl = self._settings.cache_ttl_seconds
        valid = sum(
            1
            for entry in self._cache.values()
            if not entry.is_expired(now, ttl)
            and (self._fingerprint is None or entry.location_fingerprint == self._fingerprint)
        )
        return CacheStats(
            total_cached=len(self._cache),
            valid_cached=valid,
            expired_cached=len(self._cache) - valid,
            hits=self._hits,
            misses=self._misses,
            pending=len(self._computing),
            failed=len(self._failed),
            location_changes=self._location_changes,
            current_fingerprint=self._fingerprint,
        )

    # ─── Single lookup ───

    async def get_fee(
        self,
        restaurant_id: str,
        base_fee: float,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> float:
        """Return the delivery fee for a restaurant, computing it if needed.

        Never fails because of the fee backend: any computation error
        resolves to ``base_fee``.

        Raises:
            LocationPending: no coordinates were given while the location
                source is still resolving. Retry once it settles.
        """
        self._apply_location(lat, lng)

        cached = self.get_cached_fee(restaurant_id)
        if cached is not None:
            self._hits += 1
            logger.debug(f"[FEE] Cache hit for {restaurant_id}: {cached}")
            return cached
        self._misses += 1

        if lat is None or lng is None:
            if self.is_location_loading:
                raise LocationPending(f"Location is being resolved for {restaurant_id}")
            logger.debug(f"[FEE] No location for {restaurant_id}, using base fee {base_fee}")
            return base_fee

        pending = self._pending.get(restaurant_id)
        if pending is not None:
            logger.debug(f"[FEE] Joining in-flight computation for {restaurant_id}")
            return await asyncio.shield(pending)

        return await asyncio.shield(self._start_computation(restaurant_id, base_fee, lat, lng))

    def _start_computation(
        self, restaurant_id: str, base_fee: float, lat: float, lng: float
    ) -> asyncio.Future:
        fingerprint = self._fingerprint or location_fingerprint(lat, lng)
        self._computing.add(restaurant_id)
        task = asyncio.get_running_loop().create_task(
            self._compute(restaurant_id, base_fee, lat, lng, fingerprint),
            name=f"fee:{restaurant_id}",
        )
        self._pending[restaurant_id] = task
        self.notify_listeners()
        return task

    async def _compute(
        self, restaurant_id: str, base_fee: float, lat: float, lng: float, fingerprint: str
    ) -> float:
        handle = asyncio.current_task()
        try:
            fee = float(await self._calculator.compute(restaurant_id, lat, lng))
        except Exception as e:
            logger.warning(
                f"[FEE] Computation failed for {restaurant_id}: {type(e).__name__}: {e}; "
                f"using base fee {base_fee}"
            )
            self._failed.add(restaurant_id)
            fee = base_fee
        else:
            self._cache[restaurant_id] = CachedFee(
                fee=fee, computed_at=self._clock(), location_fingerprint=fingerprint
            )
            self._failed.discard(restaurant_id)
            logger.info(f"[FEE] Computed fee for {restaurant_id}: {fee}")
        finally:
            self._computing.discard(restaurant_id)
            if self._pending.get(restaurant_id) is handle:
                del self._pending[restaurant_id]

        self.notify_listeners()
        return fee

    # ─── Batch warm-up ───

    async def precalculate(
        self,
        restaurants: Iterable[RestaurantFeeInput],
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> None:
        """Warm the cache for a list of restaurants.

        Restaurants already cached or being computed are skipped. The rest
        are computed in chunks of ``batch_chunk_size``: members of a chunk
        run concurrently, chunks run one after another. A failing
        restaurant falls back to its base fee without affecting the batch.
        """
        restaurants = list(restaurants)
        if not restaurants:
            return

        self._apply_location(lat, lng)
        if lat is None or lng is None:
            logger.info("[FEE] No location for batch calculation, skipping")
            return

        self._recalculation_advised = False
        fingerprint = self._fingerprint or location_fingerprint(lat, lng)

        seen: set[str] = set()
        to_calculate: list[RestaurantFeeInput] = []
        for restaurant in restaurants:
            if restaurant.id in seen:
                continue
            seen.add(restaurant.id)
            if self._needs_computation(restaurant.id):
                to_calculate.append(restaurant)

        if not to_calculate:
            logger.debug(f"[FEE] All {len(restaurants)} restaurants already cached")
            return

        logger.info(
            f"[FEE] Batch calculating {len(to_calculate)}/{len(restaurants)} restaurants"
        )
        size = self._settings.batch_chunk_size
        for start in range(0, len(to_calculate), size):
            if self._fingerprint != fingerprint:
                logger.info("[FEE] Location changed during batch, abandoning remaining chunks")
                return
            # Single lookups may have claimed some of these since filtering
            chunk = [r for r in to_calculate[start:start + size] if self._needs_computation(r.id)]
            if chunk:
                await self._run_chunk(chunk, lat, lng, fingerprint)

        logger.info(f"[FEE] Batch calculation complete for {len(to_calculate)} restaurants")

    def _needs_computation(self, restaurant_id: str) -> bool:
        return restaurant_id not in self._computing and self.get_cached_fee(restaurant_id) is None

    async def _run_chunk(
        self, chunk: list[RestaurantFeeInput], lat: float, lng: float, fingerprint: str
    ) -> None:
        loop = asyncio.get_running_loop()
        handles: dict[str, asyncio.Future] = {}
        for restaurant in chunk:
            self._computing.add(restaurant.id)
            handle = loop.create_future()
            self._pending[restaurant.id] = handle
            handles[restaurant.id] = handle
        self.notify_listeners()

        results: dict[str, float] = {}
        try:
            outcomes = await asyncio.gather(
                *(self._compute_for_batch(restaurant, lat, lng) for restaurant in chunk)
            )
            now = self._clock()
            for restaurant, (fee, succeeded) in zip(chunk, outcomes):
                self._cache[restaurant.id] = CachedFee(
                    fee=fee, computed_at=now, location_fingerprint=fingerprint
                )
                if succeeded:
                    self._failed.discard(restaurant.id)
                else:
                    self._failed.add(restaurant.id)
                results[restaurant.id] = fee
        finally:
            for restaurant in chunk:
                self._computing.discard(restaurant.id)
                handle = handles[restaurant.id]
                if self._pending.get(restaurant.id) is handle:
                    del self._pending[restaurant.id]
                if not handle.done():
                    handle.set_result(results.get(restaurant.id, restaurant.base_delivery_fee))
            self.notify_listeners()

    async def _compute_for_batch(
        self, restaurant: RestaurantFeeInput, lat: float, lng: float
    ) -> tuple[float, bool]:
        try:
            return float(await self._calculator.compute(restaurant.id, lat, lng)), True
        except Exception as e:
            logger.warning(
                f"[FEE] Batch computation failed for {restaurant.id}: {type(e).__name__}: {e}"
            )
            return restaurant.base_delivery_fee, False

    # ─── Invalidation ───

    def invalidate(self, restaurant_id: str) -> None:
        """Drop one restaurant's cached fee and failure marker.

        An in-flight computation keeps running and still resolves its callers.
        """
        self._cache.pop(restaurant_id, None)
        self._failed.discard(restaurant_id)
        self.notify_listeners()
        logger.info(f"[FEE] Cache cleared for {restaurant_id}")

    def clear_all(self) -> None:
        """Drop every cached fee, failure marker, statistic and the fingerprint."""
        self._cache.clear()
        self._failed.clear()
        self._fingerprint = None
        self._hits = 0
        self._misses = 0
        self._location_changes = 0
        self._recalculation_advised = False
        self.notify_listeners()
        logger.info("[FEE] Cache cleared")

    def cleanup_expired(self) -> int:
        """Remove entries whose TTL has elapsed. Returns how many were removed."""
        now = self._clock()
        ttl = self._settings.cache_ttl_seconds
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now, ttl)]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.info(f"[FEE] Cleaned up {len(expired)} expired cache entries")
            self.notify_listeners()
        return len(expired)

    def optimize(self, max_size: Optional[int] = None) -> int:
        """Evict the oldest entries until at most ``max_size`` remain."""
        limit = self._settings.max_cache_size if max_size is None else max_size
        overflow = len(self._cache) - limit
        if overflow <= 0:
            return 0
        oldest = sorted(self._cache.items(), key=lambda item: item[1].computed_at)[:overflow]
        for key, _ in oldest:
            del self._cache[key]
        logger.info(f"[FEE] Optimized memory, removed {overflow} old entries")
        self.notify_listeners()
        return overflow

    def _apply_location(self, lat: Optional[float], lng: Optional[float]) -> None:
        fingerprint = location_fingerprint(lat, lng)
        current = self._fingerprint
        if fingerprint == current:
            return
        if current is not None and not is_significant_move(
            current, fingerprint, self._settings.significant_move_meters
        ):
            logger.debug(f"[FEE] Move {current} -> {fingerprint} below threshold, keeping cache")
            return
        self._adopt_fingerprint(fingerprint)

    def _adopt_fingerprint(self, fingerprint: str) -> int:
        self._fingerprint = fingerprint
        stale = [
            key for key, entry in self._cache.items() if entry.location_fingerprint != fingerprint
        ]
        for key in stale:
            del self._cache[key]
        if stale:
            logger.info(f"[FEE] Location changed, invalidated {len(stale)} cached fees")
            self.notify_listeners()
        return len(stale)

    # ─── Reactive location updates ───

    def attach_location_source(self, source: LocationSource) -> None:
        """Follow a location source; replaces any previously attached one."""
        self.detach_location_source()
        self._location_source = source
        source.add_listener(self._on_location_changed)
        logger.info("[LOCATION] Fee cache attached to location source")

    def detach_location_source(self) -> None:
        self._debouncer.cancel()
        if self._location_source is not None:
            self._location_source.remove_listener(self._on_location_changed)
            self._location_source = None

    def _on_location_changed(self) -> None:
        source = self._location_source
        if source is None:
            return
        self._debouncer.cancel()
        if source.is_loading or not source.has_permission:
            logger.debug("[LOCATION] Loading or no permission, skipping recalculation")
            return
        try:
            self._debouncer.call(self._handle_location_change, source.current_location)
        except RuntimeError:
            # No running loop to debounce on
            self._handle_location_change(source.current_location)

    def _handle_location_change(self, location: Optional[LocationFix]) -> None:
        if location is None:
            logger.debug("[LOCATION] Location is empty after debounce, skipping")
            return

        fingerprint = location_fingerprint(location.lat, location.lng)
        current = self._fingerprint
        if current is not None and not is_significant_move(
            current, fingerprint, self._settings.significant_move_meters
        ):
            logger.debug("[LOCATION] Location change too small, skipping recalculation")
            return

        logger.info(f"[LOCATION] Location changed significantly: {current} -> {fingerprint}")
        self._location_changes += 1
        self._adopt_fingerprint(fingerprint)
        self._recalculation_advised = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.notify_listeners()
            return
        task = loop.create_task(self._announce_recalculation())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _announce_recalculation(self) -> None:
        # Let the current UI frame settle before asking for a batch warm-up
        await asyncio.sleep(self._settings.recalculation_delay_seconds)
        self.notify_listeners()

    # ─── App lifecycle ───

    def start(self) -> None:
        """Begin periodic expiry cleanup. Requires a running event loop."""
        self._refresh_timer.start()
        logger.info("[LIFECYCLE] Periodic refresh timer started")

    def handle_lifecycle(self, state: LifecycleState) -> None:
        if state == LifecycleState.RESUMED:
            self.on_foreground()
        elif state == LifecycleState.PAUSED:
            self.on_background()

    def on_foreground(self) -> bool:
        """Clean up stale entries and restart the timer, at most once per interval.

        Returns whether the refresh actually ran.
        """
        now = self._clock()
        if (
            self._last_resume_at is not None
            and now - self._last_resume_at < self._settings.min_resume_interval_seconds
        ):
            logger.debug("[LIFECYCLE] Skipping refresh, too soon since last resume")
            return False
        self._last_resume_at = now
        logger.info("[LIFECYCLE] App resumed, refreshing stale cache")
        self.cleanup_expired()
        self._refresh_timer.start()
        return True

    def on_background(self) -> None:
        self._refresh_timer.stop()
        logger.info("[LIFECYCLE] App paused, periodic refresh stopped")

    def _on_refresh_tick(self) -> None:
        logger.debug("[LIFECYCLE] Periodic refresh triggered")
        self.cleanup_expired()

    async def close(self) -> None:
        """Stop timers, detach from the location source and drop all state."""
        self._refresh_timer.stop()
        self.detach_location_source()
        tasks = list(self._background_tasks)
        tasks.extend(p for p in self._pending.values() if isinstance(p, asyncio.Task))
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._cache.clear()
        self._computing.clear()
        self._pending.clear()
        self._failed.clear()
        self.dispose()
        logger.info("[LIFECYCLE] Fee cache closed")
