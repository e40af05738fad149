"""Shared helpers: geo math, observable state and event-loop timers."""

from .geo import (
    NO_LOCATION,
    haversine_distance,
    haversine_meters,
    is_significant_move,
    location_fingerprint,
    parse_fingerprint,
)
from .notifier import ChangeNotifier
from .scheduling import Debouncer, PeriodicTimer

__all__ = [
    "NO_LOCATION",
    "haversine_distance",
    "haversine_meters",
    "is_significant_move",
    "location_fingerprint",
    "parse_fingerprint",
    "ChangeNotifier",
    "Debouncer",
    "PeriodicTimer",
]
