"""API routes for the delivery fee engine.

- /delivery-fee: single lookups, batch warm-up, cache maintenance and stats
- /location: current customer location (fetch or manual update)
- /lifecycle: host app foreground/background transitions

Fee lookups never fail because of the pricing backend; they degrade to the
restaurant's base fee. Location problems are reported as error payloads.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from fee_engine.engine import FeeEngine
from fee_engine.models import (
    AppError,
    CacheStats,
    Coordinates,
    ErrorCode,
    LifecycleState,
    LocationFix,
    LocationPending,
    LocationUnavailable,
    RestaurantFeeInput,
)
from fee_engine.services import StaticLocationPlatform

logger = logging.getLogger(__name__)

router = APIRouter()


def get_engine(request: Request) -> FeeEngine:
    return request.app.state.engine


# Request/Response models
class DeliveryFeeResponse(BaseModel):
    """Response model for a single fee lookup."""
    success: bool
    restaurant_id: str
    fee: Optional[float] = None
    failed: bool = False
    error: Optional[AppError] = None


class PrecalculateRequest(BaseModel):
    """Request model for batch warm-up."""
    restaurants: list[RestaurantFeeInput] = Field(..., description="Restaurants to warm")
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class PrecalculateResponse(BaseModel):
    """Response model for batch warm-up."""
    success: bool
    fees: dict[str, float] = Field(default_factory=dict, description="Cached fees after warm-up")
    failed: list[str] = Field(default_factory=list, description="Restaurants that fell back to base fee")
    stats: CacheStats


class CacheActionResponse(BaseModel):
    """Response model for cache maintenance actions."""
    success: bool
    removed: int = 0
    stats: CacheStats


class LocationResponse(BaseModel):
    """Response model for location queries."""
    success: bool
    location: Optional[LocationFix] = None
    error: Optional[AppError] = None


class LifecycleResponse(BaseModel):
    """Response model for lifecycle transitions."""
    success: bool
    state: LifecycleState
    refresh_running: bool


@router.get("/delivery-fee/stats", response_model=CacheStats)
async def get_cache_stats(engine: FeeEngine = Depends(get_engine)) -> CacheStats:
    """Hit/miss/pending/failed counters and cache occupancy."""
    return engine.fees.get_cache_stats()


@router.get("/delivery-fee/{restaurant_id}", response_model=DeliveryFeeResponse)
async def get_delivery_fee(
    restaurant_id: str,
    base_fee: float = Query(..., ge=0),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    engine: FeeEngine = Depends(get_engine),
) -> DeliveryFeeResponse:
    """Get the delivery fee for one restaurant.

    Returns the cached fee when valid, joins an in-flight computation, or
    computes a new one. Falls back to ``base_fee`` without coordinates.
    """
    try:
        fee = await engine.fees.get_fee(restaurant_id, base_fee, lat, lng)
    except LocationPending as e:
        return DeliveryFeeResponse(
            success=False,
            restaurant_id=restaurant_id,
            error=AppError(
                code=ErrorCode.LOCATION_PENDING,
                message=str(e),
                user_message="Finding your location...",
            ),
        )
    return DeliveryFeeResponse(
        success=True,
        restaurant_id=restaurant_id,
        fee=fee,
        failed=engine.fees.has_failed(restaurant_id),
    )


@router.post("/delivery-fee/precalculate", response_model=PrecalculateResponse)
async def precalculate_fees(
    request: PrecalculateRequest, engine: FeeEngine = Depends(get_engine)
) -> PrecalculateResponse:
    """Warm the cache for a list of restaurants (e.g. a rendered listing)."""
    fees = engine.fees
    await fees.precalculate(request.restaurants, request.lat, request.lng)

    cached: dict[str, float] = {}
    for restaurant in request.restaurants:
        fee = fees.get_cached_fee(restaurant.id)
        if fee is not None:
            cached[restaurant.id] = fee
    return PrecalculateResponse(
        success=True,
        fees=cached,
        failed=[r.id for r in request.restaurants if fees.has_failed(r.id)],
        stats=fees.get_cache_stats(),
    )


@router.post("/delivery-fee/cleanup", response_model=CacheActionResponse)
async def cleanup_expired(engine: FeeEngine = Depends(get_engine)) -> CacheActionResponse:
    removed = engine.fees.cleanup_expired()
    return CacheActionResponse(success=True, removed=removed, stats=engine.fees.get_cache_stats())


@router.post("/delivery-fee/optimize", response_model=CacheActionResponse)
async def optimize_cache(
    max_size: Optional[int] = Query(None, ge=0),
    engine: FeeEngine = Depends(get_engine),
) -> CacheActionResponse:
    """Evict the oldest entries beyond ``max_size`` (defaults to the configured limit)."""
    removed = engine.fees.optimize(max_size)
    return CacheActionResponse(success=True, removed=removed, stats=engine.fees.get_cache_stats())


@router.delete("/delivery-fee/{restaurant_id}", response_model=CacheActionResponse)
async def invalidate_fee(
    restaurant_id: str, engine: FeeEngine = Depends(get_engine)
) -> CacheActionResponse:
    had_entry = engine.fees.get_cached_fee(restaurant_id) is not None
    engine.fees.invalidate(restaurant_id)
    return CacheActionResponse(
        success=True, removed=int(had_entry), stats=engine.fees.get_cache_stats()
    )


@router.delete("/delivery-fee", response_model=CacheActionResponse)
async def clear_fees(engine: FeeEngine = Depends(get_engine)) -> CacheActionResponse:
    removed = len(engine.fees)
    engine.fees.clear_all()
    return CacheActionResponse(success=True, removed=removed, stats=engine.fees.get_cache_stats())


@router.get("/location", response_model=LocationResponse)
async def get_location(engine: FeeEngine = Depends(get_engine)) -> LocationResponse:
    """Current customer location, fetched at most once concurrently."""
    try:
        fix = await engine.location.get_current_location()
    except LocationUnavailable as e:
        return LocationResponse(
            success=False,
            error=AppError(code=e.error_code, message=str(e), user_message=e.user_message),
        )
    return LocationResponse(success=True, location=fix)


@router.put("/location", response_model=LocationResponse)
async def update_location(
    coordinates: Coordinates, engine: FeeEngine = Depends(get_engine)
) -> LocationResponse:
    """Set the customer location manually (address search or map pick)."""
    fix = LocationFix(lat=coordinates.lat, lng=coordinates.lng)
    if isinstance(engine.platform, StaticLocationPlatform):
        engine.platform.set_position(fix)
    engine.location.update_location(fix)
    return LocationResponse(success=True, location=fix)


@router.post("/lifecycle/{state}", response_model=LifecycleResponse)
async def lifecycle_transition(
    state: LifecycleState, engine: FeeEngine = Depends(get_engine)
) -> LifecycleResponse:
    """Forward a host app foreground/background transition to the cache."""
    engine.fees.handle_lifecycle(state)
    return LifecycleResponse(
        success=True, state=state, refresh_running=engine.fees.is_refresh_running
    )
