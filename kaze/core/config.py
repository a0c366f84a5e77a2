import json
import os
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field


class APIKeysConfig(BaseModel):
    gemini: str = ""
    openai: str = ""
    claude: str = ""
    openweather: str = ""


class LocationConfig(BaseModel):
    source: str = "ip"  # "ip", "static" or "none"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    lookup_url: str = "https://ipapi.co/json/"
    timeout: float = 10.0


class WeatherConfig(BaseModel):
    base_url: str = "https://api.openweathermap.org/data/2.5"
    units: str = "metric"
    language: str = "en"
    timeout: float = 10.0


class SpeechConfig(BaseModel):
    language: str = "en-US"
    preferred_voices: list[str] = Field(
        default_factory=lambda: ["female", "samantha", "zira", "jenny", "kyoko"]
    )
    rate: float = 0.9
    pitch: float = 1.0
    volume: float = 1.0
    voice_enabled: bool = True
    settle_delay: float = 0.05
    initial_speak_delay: float = 0.5
    reply_speak_delay: float = 0.1
    speak_delay: float = 0.2
    auto_send_transcript: bool = False
    piper_voices_dir: str = "models/tts"
    whisper_model: str = "base"


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080


class AppConfig(BaseModel):
    provider: str = "gemini"  # "gemini", "openai" or "claude"
    api_keys: APIKeysConfig = Field(default_factory=APIKeysConfig)
    location: LocationConfig = Field(default_factory=LocationConfig)
    weather: WeatherConfig = Field(default_factory=WeatherConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


# Environment variables that fill in API keys left empty in config.json
ENV_API_KEYS = {
    "gemini": "KAZE_GEMINI_API_KEY",
    "openai": "KAZE_OPENAI_API_KEY",
    "claude": "KAZE_CLAUDE_API_KEY",
    "openweather": "KAZE_OPENWEATHER_API_KEY",
}


class ConfigManager:
    """Manages application configuration persisted as JSON."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.config_path = data_dir / "config.json"
        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self._apply_env(self._load())
        return self._config

    def _load(self) -> AppConfig:
        """Load config from disk. Returns defaults if no config exists."""
        if self.config_path.exists():
            try:
                data = json.loads(self.config_path.read_text())
                logger.info("Configuration loaded from {}", self.config_path)
                return AppConfig(**data)
            except Exception as e:
                logger.error("Failed to load config: {}. Using defaults.", e)
        logger.info("No existing config found. Using defaults.")
        return AppConfig()

    @staticmethod
    def _apply_env(config: AppConfig) -> AppConfig:
        for name, var in ENV_API_KEYS.items():
            value = os.environ.get(var, "")
            if value and not getattr(config.api_keys, name):
                setattr(config.api_keys, name, value)
                logger.debug("API key '{}' taken from {}", name, var)
        return config

    def save(self) -> None:
        """Persist current config to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(self.config.model_dump_json(indent=2))
        logger.debug("Configuration saved to {}", self.config_path)

    def update(self, **kwargs) -> AppConfig:
        """Update top-level config fields and save."""
        current = self.config.model_dump()
        for key, value in kwargs.items():
            if key in current:
                if isinstance(current[key], dict) and isinstance(value, dict):
                    current[key].update(value)
                else:
                    current[key] = value
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def update_nested(self, section: str, **kwargs) -> AppConfig:
        """Update fields within a nested config section."""
        current = self.config.model_dump()
        if section in current and isinstance(current[section], dict):
            current[section].update(kwargs)
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def reset(self) -> None:
        """Reset config to defaults."""
        self._config = AppConfig()
        if self.config_path.exists():
            self.config_path.unlink()
        logger.info("Configuration reset to defaults.")
