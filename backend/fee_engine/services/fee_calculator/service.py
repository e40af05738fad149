"""Delivery fee calculators.

A calculator turns (restaurant, customer location) into a fee. The
production implementation reads restaurant coordinates from Supabase
(PostgREST over httpx) and prices the haversine distance with a tiered
schedule:

- Distance within a tier -> that tier's flat fee
- Beyond the last tier -> last tier fee + extra fee per additional 100 m
- Restaurant without coordinates -> its base delivery fee

Calculators raise FeeComputationError on failure; callers decide the fallback.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from fee_engine.models import DeliveryFeeRange, FeeComputationError
from fee_engine.utils import haversine_distance

logger = logging.getLogger(__name__)

DEFAULT_FEE_RANGES = [
    DeliveryFeeRange(max_distance_km=2.0, fee=30.0),
    DeliveryFeeRange(max_distance_km=5.0, fee=50.0),
    DeliveryFeeRange(max_distance_km=10.0, fee=80.0),
]
DEFAULT_EXTRA_RANGE_FEE = 5.0  # per 100 m beyond the last range

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class DeliveryFeeSchedule:
    """Distance-tiered fee table."""

    def __init__(
        self,
        ranges: Optional[list[DeliveryFeeRange]] = None,
        extra_range_fee: float = DEFAULT_EXTRA_RANGE_FEE,
    ) -> None:
        source = DEFAULT_FEE_RANGES if ranges is None else ranges
        self._ranges = sorted(source, key=lambda r: r.max_distance_km)
        self._extra_range_fee = extra_range_fee

    @property
    def ranges(self) -> list[DeliveryFeeRange]:
        return list(self._ranges)

    @property
    def extra_range_fee(self) -> float:
        return self._extra_range_fee

    def fee_for_distance(self, distance_km: float) -> float:
        if distance_km <= 0:
            logger.debug(f"[FEE] Non-positive distance {distance_km} km, fee is 0")
            return 0.0
        if not self._ranges:
            logger.warning("[FEE] No delivery fee ranges configured")
            return 0.0

        for fee_range in self._ranges:
            if distance_km <= fee_range.max_distance_km:
                return fee_range.fee

        last = self._ranges[-1]
        extra_distance = distance_km - last.max_distance_km
        # extra_range_fee is per 100 m, so 10 units per km
        return last.fee + extra_distance * 10 * self._extra_range_fee


class FeeCalculatorService(ABC):
    """Abstract base class for fee computation collaborators.

    Implementations must be safe to call concurrently for different
    restaurant identifiers.
    """

    @abstractmethod
    async def compute(self, restaurant_id: str, lat: float, lng: float) -> float:
        """Compute the delivery fee for a customer at (lat, lng).

        Raises:
            FeeComputationError: the fee could not be computed.
        """
        pass

    async def close(self) -> None:
        pass


class SupabaseFeeCalculatorService(FeeCalculatorService):
    """Supabase-backed calculator.

    Fetches ``latitude, longitude, delivery_fee`` for the restaurant from the
    PostgREST ``restaurants`` table and prices the straight-line distance.
    Transient network failures are retried with exponential backoff.
    """

    TABLE = "restaurants"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        schedule: Optional[DeliveryFeeSchedule] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        initial_delay: float = 0.5,
        max_delay: float = 5.0,
        multiplier: float = 2.0,
        jitter: float = 0.2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._schedule = schedule or DeliveryFeeSchedule()
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._multiplier = multiplier
        self._jitter = jitter
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def schedule(self) -> DeliveryFeeSchedule:
        return self._schedule

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={
                    "apikey": self._api_key,
                    "Authorization": f"Bearer {self._api_key}",
                    "Accept": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _backoff(self, attempt: int) -> float:
        delay = min(self._initial_delay * (self._multiplier ** attempt), self._max_delay)
        spread = delay * self._jitter
        return max(0.0, delay + random.uniform(-spread, spread))

    async def _fetch_restaurant(self, restaurant_id: str) -> dict[str, Any]:
        if not self._base_url:
            raise FeeComputationError(restaurant_id, "Supabase URL is not configured")

        client = self._get_client()
        params = {
            "select": "latitude,longitude,delivery_fee",
            "id": f"eq.{restaurant_id}",
            "limit": "1",
        }
        last_error = "no attempt made"

        for attempt in range(self._max_attempts):
            try:
                response = await client.get(f"/rest/v1/{self.TABLE}", params=params)
                response.raise_for_status()
                rows = response.json()
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = f"{type(e).__name__}: {e}"
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status not in RETRYABLE_STATUS:
                    raise FeeComputationError(restaurant_id, f"HTTP {status}") from e
                last_error = f"HTTP {status}"
            except ValueError as e:
                raise FeeComputationError(restaurant_id, "Invalid JSON response") from e
            else:
                if not rows:
                    raise FeeComputationError(restaurant_id, "Restaurant not found")
                return rows[0]

            if attempt + 1 < self._max_attempts:
                wait = self._backoff(attempt)
                logger.info(
                    f"[SUPABASE] Retry {attempt + 1}/{self._max_attempts - 1} "
                    f"for {restaurant_id} in {wait:.2f}s: {last_error}"
                )
                await asyncio.sleep(wait)

        raise FeeComputationError(
            restaurant_id, f"Failed after {self._max_attempts} attempts: {last_error}"
        )

    async def compute(self, restaurant_id: str, lat: float, lng: float) -> float:
        data = await self._fetch_restaurant(restaurant_id)

        base_fee = float(data.get("delivery_fee") or 0.0)
        rest_lat = data.get("latitude")
        rest_lng = data.get("longitude")

        if rest_lat is None or rest_lng is None or (rest_lat == 0 and rest_lng == 0):
            logger.info(f"[FEE] Missing coordinates for {restaurant_id}, using base fee {base_fee}")
            return base_fee

        if abs(lat) > 90 or abs(lng) > 180:
            logger.warning(
                f"[FEE] Invalid customer coordinates ({lat}, {lng}) for {restaurant_id}, "
                f"using base fee {base_fee}"
            )
            return base_fee

        distance_km = haversine_distance(float(rest_lat), float(rest_lng), lat, lng)
        fee = self._schedule.fee_for_distance(distance_km)
        logger.info(f"[FEE] {restaurant_id}: {distance_km:.2f} km -> {fee}")
        return fee
