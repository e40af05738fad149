"""Data models and error types for the delivery fee engine."""

from .core import (
    AppError,
    CachedFee,
    CacheStats,
    Coordinates,
    DeliveryFeeRange,
    ErrorCode,
    LifecycleState,
    LocationFix,
    RestaurantFeeInput,
)
from .errors import (
    FeeComputationError,
    FeeEngineError,
    LocationFailureKind,
    LocationPending,
    LocationUnavailable,
)

__all__ = [
    "AppError",
    "CachedFee",
    "CacheStats",
    "Coordinates",
    "DeliveryFeeRange",
    "ErrorCode",
    "LifecycleState",
    "LocationFix",
    "RestaurantFeeInput",
    "FeeComputationError",
    "FeeEngineError",
    "LocationFailureKind",
    "LocationPending",
    "LocationUnavailable",
]
