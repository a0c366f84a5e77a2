from abc import ABC, abstractmethod

import httpx
from loguru import logger

from core.errors import WeatherError, WeatherErrorKind
from weather.snapshot import WeatherSnapshot


class WeatherProvider(ABC):
    """Fetches current conditions for a pair of coordinates."""

    @abstractmethod
    async def get_current_conditions(self, latitude: float, longitude: float) -> WeatherSnapshot:
        ...


class OpenWeatherClient(WeatherProvider):
    """OpenWeatherMap current-weather client.

    One request per call, no retries. Failures are raised as WeatherError
    with the kind set from the transport or HTTP status.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org/data/2.5",
        units: str = "metric",
        language: str = "en",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.units = units
        self.language = language
        self.timeout = timeout
        self._transport = transport

    async def get_current_conditions(self, latitude: float, longitude: float) -> WeatherSnapshot:
        payload = await self._get("weather", latitude, longitude)
        snapshot = WeatherSnapshot.from_openweather(payload)
        logger.info(
            "Weather for {}: {}°, {}", snapshot.place_name, snapshot.temperature, snapshot.description
        )
        return snapshot

    async def _get(self, endpoint: str, latitude: float, longitude: float) -> dict:
        if not self.api_key:
            logger.error("OpenWeatherMap API key not configured.")
            raise WeatherError(WeatherErrorKind.UNAUTHORIZED)

        params = {
            "lat": latitude,
            "lon": longitude,
            "appid": self.api_key,
            "units": self.units,
            "lang": self.language,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}/{endpoint}", params=params)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Weather API error: HTTP {}", status)
            kind = WeatherErrorKind.UNAUTHORIZED if status in (401, 403) else WeatherErrorKind.UNKNOWN
            raise WeatherError(kind) from e
        except httpx.RequestError as e:
            logger.error("Weather API request failed: {}", e)
            raise WeatherError(WeatherErrorKind.NETWORK) from e
        except ValueError as e:
            logger.error("Weather API returned invalid JSON: {}", e)
            raise WeatherError(WeatherErrorKind.UNKNOWN) from e
