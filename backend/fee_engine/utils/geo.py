"""Geographic helpers: great-circle distance and location fingerprints.

A location fingerprint is a coarse string key built from coordinates rounded
to 3 decimal places (roughly a 110 m grid cell). It partitions the fee cache
and is the unit of change detection for location updates.
"""

import math

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_M = 6371000.0

NO_LOCATION = "no_location"


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    return haversine_meters(lat1, lng1, lat2, lng2) / 1000.0


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in meters (spherical earth)."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.asin(min(1.0, math.sqrt(a)))


def _round3(value: float) -> float:
    # Half away from zero, and never "-0.0"
    return math.copysign(math.floor(abs(value) * 1000 + 0.5), value) / 1000 + 0.0


def location_fingerprint(lat: float | None, lng: float | None) -> str:
    """Build the cache fingerprint for a location.

    Example:
        >>> location_fingerprint(36.75, 3.05)
        '36.75_3.05'
        >>> location_fingerprint(None, 3.05)
        'no_location'
    """
    if lat is None or lng is None:
        return NO_LOCATION
    return f"{_round3(lat)}_{_round3(lng)}"


def parse_fingerprint(fingerprint: str) -> tuple[float, float] | None:
    """Recover the rounded coordinates of a fingerprint, or None if it has none."""
    if fingerprint == NO_LOCATION:
        return None
    parts = fingerprint.split("_")
    if len(parts) != 2:
        return None
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        return None


def is_significant_move(old: str, new: str, threshold_meters: float) -> bool:
    """Whether moving between two fingerprints should invalidate cached fees.

    Transitions to or from "no location" and unparsable fingerprints always
    count as significant.
    """
    if old == new:
        return False
    old_coords = parse_fingerprint(old)
    new_coords = parse_fingerprint(new)
    if old_coords is None or new_coords is None:
        return True
    return haversine_meters(*old_coords, *new_coords) > threshold_meters
