from core.errors import GenerationError
from llm.base import TextBackend


class ClaudeBackend(TextBackend):
    """Anthropic Claude backend."""

    def __init__(self, api_key: str, model: str = "claude-haiku-4-5-20251001"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self.api_key)

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise GenerationError("Claude API key not configured.")

        self._ensure_client()

        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=300,
                temperature=0.7,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            raise GenerationError(f"Claude request failed: {e}") from e

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        if not text:
            raise GenerationError("Claude returned an empty response.")
        return text.strip()
