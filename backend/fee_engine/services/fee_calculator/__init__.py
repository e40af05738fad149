"""Fee calculator service module.

Provides the fee computation interface, the distance-tiered fee schedule
and the Supabase-backed implementation.
"""

from .service import (
    DEFAULT_EXTRA_RANGE_FEE,
    DEFAULT_FEE_RANGES,
    DeliveryFeeSchedule,
    FeeCalculatorService,
    SupabaseFeeCalculatorService,
)

__all__ = [
    "DEFAULT_EXTRA_RANGE_FEE",
    "DEFAULT_FEE_RANGES",
    "DeliveryFeeSchedule",
    "FeeCalculatorService",
    "SupabaseFeeCalculatorService",
]
