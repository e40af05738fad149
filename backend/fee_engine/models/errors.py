"""Exception types raised by the delivery fee engine.

Only location failures propagate to callers. ``FeeComputationError`` is
raised by fee calculators and is always converted into a base-fee fallback
inside the cache.
"""

from enum import Enum

from .core import ErrorCode


class LocationFailureKind(str, Enum):
    """Why the platform could not produce a location."""

    PERMISSION_DENIED = "permission_denied"
    SERVICES_DISABLED = "services_disabled"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


USER_MESSAGES = {
    LocationFailureKind.PERMISSION_DENIED: (
        "Location permission denied. Please grant access in app settings."
    ),
    LocationFailureKind.SERVICES_DISABLED: (
        "Location services disabled. Please enable GPS in device settings."
    ),
    LocationFailureKind.TIMEOUT: (
        "Location detection timed out. Please try again in a better signal area."
    ),
    LocationFailureKind.UNAVAILABLE: (
        "Location detection failed. Please try again or select location manually."
    ),
}

ERROR_CODES = {
    LocationFailureKind.PERMISSION_DENIED: ErrorCode.LOCATION_PERMISSION_DENIED,
    LocationFailureKind.SERVICES_DISABLED: ErrorCode.LOCATION_SERVICES_DISABLED,
    LocationFailureKind.TIMEOUT: ErrorCode.LOCATION_TIMEOUT,
    LocationFailureKind.UNAVAILABLE: ErrorCode.LOCATION_UNAVAILABLE,
}


class FeeEngineError(Exception):
    """Base class for engine errors."""


class LocationUnavailable(FeeEngineError):
    """The platform could not produce a location."""

    def __init__(self, kind: LocationFailureKind, message: str | None = None) -> None:
        self.kind = kind
        super().__init__(message or f"Location unavailable: {kind.value}")

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]

    @property
    def error_code(self) -> ErrorCode:
        return ERROR_CODES[self.kind]


class LocationPending(FeeEngineError):
    """Location is still resolving; retry the fee lookup shortly."""


class FeeComputationError(FeeEngineError):
    """A fee calculator could not produce a fee for a restaurant."""

    def __init__(self, restaurant_id: str, message: str) -> None:
        self.restaurant_id = restaurant_id
        super().__init__(f"{restaurant_id}: {message}")
