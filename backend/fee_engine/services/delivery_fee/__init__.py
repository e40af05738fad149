"""Delivery fee cache module."""

from .service import DeliveryFeeCache, LocationSource

__all__ = [
    "DeliveryFeeCache",
    "LocationSource",
]
