"""Core data models for the delivery fee engine.

This module contains the Pydantic models shared by the location subsystem,
the fee cache and the HTTP layer, plus the in-memory cache entry type.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Error codes returned in API error payloads."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    API_ERROR = "API_ERROR"
    LOCATION_PENDING = "LOCATION_PENDING"
    LOCATION_UNAVAILABLE = "LOCATION_UNAVAILABLE"
    LOCATION_PERMISSION_DENIED = "LOCATION_PERMISSION_DENIED"
    LOCATION_SERVICES_DISABLED = "LOCATION_SERVICES_DISABLED"
    LOCATION_TIMEOUT = "LOCATION_TIMEOUT"


class AppError(BaseModel):
    """Error payload with a technical message and a user-facing one."""

    code: ErrorCode
    message: str
    user_message: str


class LifecycleState(str, Enum):
    """Host application lifecycle transitions the engine reacts to."""

    RESUMED = "resumed"
    PAUSED = "paused"


class Coordinates(BaseModel):
    """Geographic coordinates with validation.

    Latitude must be between -90 and 90 degrees.
    Longitude must be between -180 and 180 degrees.
    """

    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")


class LocationFix(BaseModel):
    """A single position reported by the location platform."""

    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")
    accuracy: Optional[float] = Field(None, ge=0, description="Accuracy radius in meters")
    recorded_at: float = Field(
        default_factory=time.time, description="Unix timestamp of the fix"
    )


class RestaurantFeeInput(BaseModel):
    """Restaurant identity and its flat delivery fee, used for batch warm-up."""

    id: str = Field(..., min_length=1, description="Stable restaurant identifier")
    base_delivery_fee: float = Field(
        ..., ge=0, description="Fee shown when distance pricing is unavailable"
    )


class DeliveryFeeRange(BaseModel):
    """One tier of the distance-based fee schedule."""

    max_distance_km: float = Field(..., gt=0, description="Upper bound of the tier in km")
    fee: float = Field(..., ge=0, description="Fee charged inside this tier")


class CacheStats(BaseModel):
    """Read-only snapshot of the fee cache."""

    total_cached: int = 0
    valid_cached: int = 0
    expired_cached: int = 0
    hits: int = 0
    misses: int = 0
    pending: int = 0
    failed: int = 0
    location_changes: int = 0
    current_fingerprint: Optional[str] = None


@dataclass
class CachedFee:
    """Computed delivery fee with the time and location it was computed for."""

    fee: float
    computed_at: float
    location_fingerprint: str

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.computed_at >= ttl_seconds

    def is_valid_for(self, fingerprint: str, now: float, ttl_seconds: float) -> bool:
        """Valid only while within TTL and computed for the same location cell."""
        return (
            not self.is_expired(now, ttl_seconds)
            and self.location_fingerprint == fingerprint
        )
