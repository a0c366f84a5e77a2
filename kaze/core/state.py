from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from core.errors import LocationError
from weather.snapshot import WeatherSnapshot


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    id: int
    text: str
    sender: Sender
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NoticeLevel(str, Enum):
    BLOCKING = "blocking"    # Needs the user's attention (e.g. mic permission)
    TRANSIENT = "transient"  # Small toast, goes away on its own


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    text: str


@dataclass
class ConversationState:
    """Session-scoped conversation state owned by the orchestrator."""

    messages: list[Message] = field(default_factory=list)
    pending_input_text: str = ""
    is_loading: bool = False
    is_voice_enabled: bool = True

    # Pointer into `messages` by id, resolved through the log
    latest_assistant_message_id: Optional[int] = None
    has_spoken_current_message: bool = False

    location_error: Optional[LocationError] = None
    weather_snapshot: Optional[WeatherSnapshot] = None

    notices: list[Notice] = field(default_factory=list)

    @property
    def latest_assistant_message(self) -> Optional[Message]:
        if self.latest_assistant_message_id is None:
            return None
        for message in reversed(self.messages):
            if message.id == self.latest_assistant_message_id:
                return message
        return None

    def point_at(self, message: Message) -> None:
        """Move the latest-assistant pointer; the spoken guard resets with it."""
        self.latest_assistant_message_id = message.id
        self.has_spoken_current_message = False

    def drain_notices(self) -> list[Notice]:
        notices, self.notices = self.notices, []
        return notices
