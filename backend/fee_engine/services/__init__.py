"""Delivery Fee Engine Services.

Service layer components:
- Location: platform abstraction, single-flight request coordinator, observable provider
- Fee Calculator: Supabase restaurant lookup + distance-tiered fee schedule
- Delivery Fee: location-aware fee cache with batching and lifecycle hooks
"""

from .location import (
    LocationPlatform,
    LocationProvider,
    LocationRequestCoordinator,
    StaticLocationPlatform,
)
from .fee_calculator import (
    DeliveryFeeSchedule,
    FeeCalculatorService,
    SupabaseFeeCalculatorService,
)
from .delivery_fee import DeliveryFeeCache, LocationSource

__all__ = [
    # Location
    "LocationPlatform",
    "LocationProvider",
    "LocationRequestCoordinator",
    "StaticLocationPlatform",
    # Fee calculator
    "DeliveryFeeSchedule",
    "FeeCalculatorService",
    "SupabaseFeeCalculatorService",
    # Delivery fee cache
    "DeliveryFeeCache",
    "LocationSource",
]
