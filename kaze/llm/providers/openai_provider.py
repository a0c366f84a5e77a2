from core.errors import GenerationError
from llm.base import TextBackend


class OpenAIBackend(TextBackend):
    """OpenAI chat completions backend."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key)

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise GenerationError("OpenAI API key not configured.")

        self._ensure_client()

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=300,
                temperature=0.7,
            )
        except Exception as e:
            raise GenerationError(f"OpenAI request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GenerationError("OpenAI returned an empty response.")
        return content.strip()
