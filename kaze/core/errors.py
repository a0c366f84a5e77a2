from enum import Enum


class KazeError(Exception):
    """Base class for failures raised by Kaze collaborators."""


class LocationErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"


_LOCATION_MESSAGES = {
    LocationErrorKind.PERMISSION_DENIED: "Location access was not permitted.",
    LocationErrorKind.UNAVAILABLE: "Location information is unavailable.",
    LocationErrorKind.TIMEOUT: "Timed out while getting your location.",
    LocationErrorKind.UNSUPPORTED: "Location is not supported on this device.",
}


class LocationError(KazeError):
    """Location lookup failed; ``kind`` classifies the reason."""

    def __init__(self, kind: LocationErrorKind, message: str | None = None):
        self.kind = kind
        self.message = message or _LOCATION_MESSAGES[kind]
        super().__init__(self.message)


class WeatherErrorKind(str, Enum):
    NETWORK = "network"
    UNAUTHORIZED = "unauthorized"
    UNKNOWN = "unknown"


class WeatherError(KazeError):
    def __init__(self, kind: WeatherErrorKind, message: str = "Failed to fetch weather information."):
        self.kind = kind
        self.message = message
        super().__init__(message)


class GenerationError(KazeError):
    """Raised by text backends. Never crosses the advice generator."""
