from typing import Optional, Sequence

from core.state import Message
from weather.snapshot import WeatherSnapshot

NO_DATA = "No data"


def _value(value, suffix: str = "") -> str:
    return f"{value}{suffix}" if value is not None else NO_DATA


def _clock(instant) -> str:
    return instant.astimezone().strftime("%I:%M:%S %p") if instant else NO_DATA


def format_weather_for_prompt(snapshot: Optional[WeatherSnapshot]) -> str:
    """Render a snapshot as the weather context block of a prompt."""
    if snapshot is None:
        return "Weather information not available"

    visibility = f"{snapshot.visibility / 1000:g}km" if snapshot.visibility else NO_DATA
    uv_index = snapshot.uv_index if snapshot.uv_index else NO_DATA

    return f"""Location: {_value(snapshot.place_name)}
Temperature: {_value(snapshot.temperature, "°C")} (feels like: {_value(snapshot.feels_like, "°C")})
Weather: {_value(snapshot.description)} ({_value(snapshot.category)})
Humidity: {_value(snapshot.humidity, "%")}
Pressure: {_value(snapshot.pressure, "hPa")}
Wind speed: {_value(snapshot.wind_speed, "m/s")}
Visibility: {visibility}
UV Index: {uv_index}
Sunrise: {_clock(snapshot.sunrise)}
Sunset: {_clock(snapshot.sunset)}"""


def build_welcome_prompt(snapshot: Optional[WeatherSnapshot], user_message: str = "") -> str:
    """Prompt for the opening weather summary and topic suggestions."""

    return f"""You are an English-speaking wellness assistant. Provide a short welcome message with current weather summary, followed by topics the user can ask about.

Current weather information:
{format_weather_for_prompt(snapshot)}

User message: {user_message or "Please give me today's weather summary"}

Structure your response as follows:
1. Brief current weather summary (2-3 sentences)
2. Then say "You can ask me about:" followed by 4-5 weather-related topics they can inquire about

Keep the entire response under 100 words. Write naturally without formatting symbols. Be conversational and helpful.

Example: "It's currently 20°C with clear skies in your area. The humidity is moderate at 65%. You can ask me about clothing recommendations for today's weather, health tips for this temperature, outdoor activity suggestions, food choices that suit today's conditions, or mental wellness advice for sunny days."
"""


def format_history(history: Sequence[Message]) -> str:
    return "\n".join(f"{m.sender.value}: {m.text}" for m in history)


def build_reply_prompt(
    user_text: str, snapshot: Optional[WeatherSnapshot], history: Sequence[Message] = ()
) -> str:
    """Prompt for answering a user question in the context of the weather."""
    history_block = f"Recent conversation:\n{format_history(history)}\n" if history else ""

    return f"""You are an English-speaking wellness assistant. Answer the user's question concisely and naturally.

Current weather information:
{format_weather_for_prompt(snapshot)}

{history_block}
User question: {user_text}

Provide a helpful, concise answer related to their question and the current weather. Keep it under 80 words, be conversational, and avoid any formatting symbols. Focus on practical advice.
"""
