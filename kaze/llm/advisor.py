from typing import Optional, Sequence

from loguru import logger

from core.state import Message
from llm.base import TextBackend
from llm.prompts import build_reply_prompt, build_welcome_prompt
from weather.snapshot import WeatherSnapshot

INITIAL_FALLBACK = "Sorry, an error occurred while generating wellness advice. Please try again."
REPLY_FALLBACK = "Sorry, an error occurred while generating a response. Please try again."

# Prior messages passed as conversational context
HISTORY_LIMIT = 4


class AdviceGenerator:
    """Turns weather context into advice through a text backend.

    Both operations are total: any backend failure is logged and replaced
    by a fixed apology string.
    """

    def __init__(self, backend: TextBackend):
        self.backend = backend

    async def generate_initial(self, snapshot: Optional[WeatherSnapshot]) -> str:
        try:
            return await self.backend.generate(build_welcome_prompt(snapshot))
        except Exception as e:
            logger.error("Advice generation failed: {}", e)
            return INITIAL_FALLBACK

    async def generate_reply(
        self,
        user_text: str,
        snapshot: Optional[WeatherSnapshot],
        recent_messages: Sequence[Message] = (),
    ) -> str:
        history = list(recent_messages)[-HISTORY_LIMIT:]
        try:
            return await self.backend.generate(build_reply_prompt(user_text, snapshot, history))
        except Exception as e:
            logger.error("Reply generation failed: {}", e)
            return REPLY_FALLBACK
