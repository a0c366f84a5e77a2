from abc import ABC, abstractmethod

from loguru import logger

from core.config import AppConfig


class TextBackend(ABC):
    """Abstract base class for generative-text providers."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Generate a complete response for a single prompt.

        Raises:
            GenerationError: on any provider failure, including a missing key.
        """
        ...


def build_backend(config: AppConfig) -> TextBackend:
    """Create the text backend selected by ``config.provider``."""
    name = config.provider
    api_key = getattr(config.api_keys, name, "")

    if name == "openai":
        from llm.providers.openai_provider import OpenAIBackend
        backend = OpenAIBackend(api_key=api_key)
    elif name == "claude":
        from llm.providers.claude_provider import ClaudeBackend
        backend = ClaudeBackend(api_key=api_key)
    else:
        if name != "gemini":
            logger.warning("Unknown provider '{}', falling back to gemini.", name)
        from llm.providers.gemini_provider import GeminiBackend
        backend = GeminiBackend(api_key=config.api_keys.gemini)

    logger.info("Text backend '{}' initialized.", type(backend).__name__)
    return backend
