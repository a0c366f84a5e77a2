from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel


class WeatherSnapshot(BaseModel):
    """Point-in-time weather reading used as generation context."""

    model_config = {"frozen": True}

    place_name: Optional[str] = None
    temperature: Optional[float] = None
    feels_like: Optional[float] = None
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    wind_speed: Optional[float] = None
    visibility: Optional[float] = None  # metres
    description: Optional[str] = None
    category: Optional[str] = None
    sunrise: Optional[datetime] = None
    sunset: Optional[datetime] = None
    uv_index: Optional[float] = None

    @classmethod
    def from_openweather(cls, payload: dict) -> "WeatherSnapshot":
        """Build a snapshot from an OpenWeatherMap ``/weather`` response.

        Every field is optional; partial payloads produce partial snapshots.
        """
        main = payload.get("main") or {}
        conditions = payload.get("weather") or [{}]
        wind = payload.get("wind") or {}
        sys = payload.get("sys") or {}

        return cls(
            place_name=payload.get("name"),
            temperature=main.get("temp"),
            feels_like=main.get("feels_like"),
            humidity=main.get("humidity"),
            pressure=main.get("pressure"),
            wind_speed=wind.get("speed"),
            visibility=payload.get("visibility"),
            description=conditions[0].get("description"),
            category=conditions[0].get("main"),
            sunrise=_from_epoch(sys.get("sunrise")),
            sunset=_from_epoch(sys.get("sunset")),
            uv_index=payload.get("uvi"),
        )


def _from_epoch(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)
