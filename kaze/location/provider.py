from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
from loguru import logger

from core.config import LocationConfig
from core.errors import LocationError, LocationErrorKind


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


class LocationProvider(ABC):
    """One-shot device location query."""

    @abstractmethod
    async def get_location(self) -> Coordinates:
        """Resolve the current coordinates.

        Raises:
            LocationError: classified as permission denied, unavailable,
                timeout or unsupported.
        """
        ...


class StaticLocationProvider(LocationProvider):
    """Fixed coordinates taken from the configuration."""

    def __init__(self, latitude: float, longitude: float):
        self._coords = Coordinates(latitude, longitude)

    async def get_location(self) -> Coordinates:
        return self._coords


class UnsupportedLocationProvider(LocationProvider):
    async def get_location(self) -> Coordinates:
        raise LocationError(LocationErrorKind.UNSUPPORTED)


class IPLocationProvider(LocationProvider):
    """Approximate location from the public IP address (ipapi.co style JSON)."""

    def __init__(
        self,
        url: str = "https://ipapi.co/json/",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def get_location(self) -> Coordinates:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.url)
                resp.raise_for_status()
                data = resp.json()
            lat, lon = data.get("latitude"), data.get("longitude")
            if lat is None or lon is None:
                logger.error("IP location response had no coordinates: {}", data.get("reason") or data)
                raise LocationError(LocationErrorKind.UNAVAILABLE)
            coords = Coordinates(float(lat), float(lon))
        except httpx.TimeoutException as e:
            logger.error("IP location lookup timed out: {}", e)
            raise LocationError(LocationErrorKind.TIMEOUT) from e
        except httpx.HTTPStatusError as e:
            logger.error("IP location lookup failed: HTTP {}", e.response.status_code)
            if e.response.status_code in (401, 403):
                raise LocationError(LocationErrorKind.PERMISSION_DENIED) from e
            raise LocationError(LocationErrorKind.UNAVAILABLE) from e
        except (httpx.RequestError, ValueError) as e:
            logger.error("IP location lookup failed: {}", e)
            raise LocationError(LocationErrorKind.UNAVAILABLE) from e
        except (AttributeError, TypeError) as e:
            logger.error("IP location response was malformed: {}", e)
            raise LocationError(LocationErrorKind.UNAVAILABLE) from e

        logger.info("Location resolved: ({:.2f}, {:.2f})", coords.latitude, coords.longitude)
        return coords


def build_location_provider(config: LocationConfig) -> LocationProvider:
    if config.source == "static":
        if config.latitude is None or config.longitude is None:
            logger.warning("Static location selected but coordinates are missing.")
            return UnsupportedLocationProvider()
        return StaticLocationProvider(config.latitude, config.longitude)
    if config.source == "ip":
        return IPLocationProvider(url=config.lookup_url, timeout=config.timeout)
    return UnsupportedLocationProvider()
