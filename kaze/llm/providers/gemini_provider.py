import asyncio
from typing import Optional

from loguru import logger

from core.errors import GenerationError
from llm.base import TextBackend

# Tried in order against the models the key can see
MODEL_PREFERENCE = [
    "gemini-1.5-flash-latest",
    "gemini-1.5-flash",
    "gemini-1.5-flash-8b",
    "gemini-1.5-pro-latest",
    "gemini-1.5-pro",
    "gemini-pro",
]
DEFAULT_MODEL = "gemini-1.5-flash"


def pick_model(models) -> Optional[str]:
    """Choose a model id from a ``list_models()`` result.

    Only models supporting ``generateContent`` are considered. Preference
    order wins; otherwise the first supported model.
    """
    supported = [
        m for m in models
        if "generateContent" in (getattr(m, "supported_generation_methods", None) or [])
    ]
    for pref in MODEL_PREFERENCE:
        for m in supported:
            name = getattr(m, "name", "") or ""
            display = (getattr(m, "display_name", "") or "").lower()
            if name.endswith(pref) or pref in display:
                return name.replace("models/", "")
    if supported:
        return supported[0].name.replace("models/", "")
    return None


class GeminiBackend(TextBackend):
    """Google Gemini backend.

    The model id is discovered once per instance and cached on it. The cache
    is never invalidated; a new session builds a new backend.
    """

    def __init__(self, api_key: str, model: Optional[str] = None):
        self.api_key = api_key
        self._model_id = model
        self._configured = False

    def _ensure_configured(self):
        if not self._configured:
            import google.generativeai as genai
            genai.configure(api_key=self.api_key)
            self._configured = True

    async def resolve_model_id(self) -> str:
        if self._model_id:
            return self._model_id

        self._ensure_configured()
        import google.generativeai as genai

        try:
            loop = asyncio.get_event_loop()
            models = await loop.run_in_executor(None, lambda: list(genai.list_models()))
            self._model_id = pick_model(models)
        except Exception as e:
            logger.warning("Model discovery failed, using default model: {}", e)

        if not self._model_id:
            self._model_id = DEFAULT_MODEL
        logger.info("Gemini model resolved: {}", self._model_id)
        return self._model_id

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise GenerationError("Gemini API key not configured.")

        model_id = await self.resolve_model_id()
        import google.generativeai as genai

        try:
            model = genai.GenerativeModel(model_id)
            response = await model.generate_content_async(prompt)
            text = response.text
        except Exception as e:
            raise GenerationError(f"Gemini request failed: {e}") from e

        if not text or not text.strip():
            raise GenerationError("Gemini returned an empty response.")
        return text.strip()
