"""Location service module.

Provides the platform abstraction, the request coordinator that keeps a
single location fetch in flight, and the observable location provider.
"""

from .service import (
    LocationPlatform,
    LocationProvider,
    LocationRequestCoordinator,
    StaticLocationPlatform,
)

__all__ = [
    "LocationPlatform",
    "LocationProvider",
    "LocationRequestCoordinator",
    "StaticLocationPlatform",
]
