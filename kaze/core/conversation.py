import asyncio
import itertools
from typing import Optional

from loguru import logger

from core.config import SpeechConfig
from core.errors import LocationError
from core.state import ConversationState, Message, Notice, Sender
from llm.advisor import HISTORY_LIMIT, AdviceGenerator
from location.provider import LocationProvider
from speech.input import SpeechInputController
from speech.output import SpeechOutputController
from weather.client import WeatherProvider

INIT_FAILURE_TEMPLATE = (
    "I'm sorry. {error} Please set your location manually or check your location permission settings."
)
REPLY_FAILURE_TEXT = "Sorry, something went wrong while generating a response. Please try again."
VOICE_ON_TEXT = "Voice output is now on."


class ConversationOrchestrator:
    """Owns the conversation state and sequences the external calls.

    Everything runs on one event loop. Flows set ``is_loading`` before their
    first await, so a second send is rejected rather than cancelled. Every
    mutating operation ends with ``reconcile_voice_output()``, which also
    runs on each speech-output state change.
    """

    def __init__(
        self,
        location: LocationProvider,
        weather: WeatherProvider,
        advisor: AdviceGenerator,
        speech_output: SpeechOutputController,
        speech_input: SpeechInputController,
        speech_config: Optional[SpeechConfig] = None,
    ):
        self.location = location
        self.weather = weather
        self.advisor = advisor
        self.speech_output = speech_output
        self.speech_input = speech_input
        self.speech_config = speech_config or SpeechConfig()

        self.state = ConversationState(is_voice_enabled=self.speech_config.voice_enabled)

        self._ids = itertools.count(1)
        self._initialized = False
        self._was_listening = False
        self._speech_tasks: set[asyncio.Task] = set()
        self._tasks: set[asyncio.Task] = set()

        speech_output.add_listener(self.reconcile_voice_output)
        speech_input.add_listener(self._on_speech_input_changed)
        speech_input.add_notice_listener(self._on_notice)

    # Flows

    async def initialize(self) -> None:
        """Location → weather → opening advice. Runs once per session."""
        if self._initialized:
            logger.warning("Conversation already initialized.")
            return
        self._initialized = True

        self.state.is_loading = True
        try:
            coords = await self.location.get_location()
            snapshot = await self.weather.get_current_conditions(coords.latitude, coords.longitude)
            self.state.weather_snapshot = snapshot

            advice = await self.advisor.generate_initial(snapshot)
            message = self._append_assistant(advice)
            logger.info("Initial advice ready: {}", advice[:50])
        except Exception as e:
            logger.error("Initialization error: {}", e)
            if isinstance(e, LocationError):
                self.state.location_error = e
            message = self._append_assistant(INIT_FAILURE_TEMPLATE.format(error=e))
        finally:
            self.state.is_loading = False

        self._announce(message, self.speech_config.initial_speak_delay)
        self.reconcile_voice_output()

    async def send_message(self, text: Optional[str] = None) -> Optional[Message]:
        """Submit ``text`` (or the pending input) and append the reply.

        Returns the assistant message, or None when the send was rejected.
        """
        if text is None:
            text = self.state.pending_input_text
        if not text.strip() or self.state.is_loading:
            logger.debug("Send ignored (empty input or turn in progress).")
            return None

        history = self.state.messages[-HISTORY_LIMIT:]
        self._append(text, Sender.USER)
        self.state.pending_input_text = ""
        self.speech_input.reset_transcript()
        self.state.is_loading = True

        try:
            reply = await self.advisor.generate_reply(text, self.state.weather_snapshot, history)
            message = self._append_assistant(reply)
        except Exception as e:
            logger.error("Error generating response: {}", e)
            message = self._append_assistant(REPLY_FAILURE_TEXT)
        finally:
            self.state.is_loading = False

        self._announce(message, self.speech_config.reply_speak_delay)
        self.reconcile_voice_output()
        return message

    def toggle_voice(self) -> bool:
        """Flip voice output. Returns the new setting."""
        enabled = not self.state.is_voice_enabled
        self.state.is_voice_enabled = enabled
        self.speech_output.stop()
        logger.info("Voice output {}", "enabled" if enabled else "disabled")

        if not enabled:
            self._cancel_scheduled_speech()
        elif self._output_available():
            latest = self.state.latest_assistant_message
            if latest is not None:
                self.state.has_spoken_current_message = True
                self._schedule_speech(latest, self.speech_config.speak_delay)
            else:
                self._schedule_speech(None, self.speech_config.speak_delay)

        self.reconcile_voice_output()
        return enabled

    def set_input_text(self, text: str) -> None:
        self.state.pending_input_text = text

    def start_listening(self) -> None:
        if self.speech_output.speaking:
            self.speech_output.stop()
        self.speech_input.start_listening()
        self.reconcile_voice_output()

    def stop_listening(self) -> None:
        self.speech_input.stop_listening()

    def stop_speaking(self) -> None:
        self.speech_output.stop()

    # Voice output

    def reconcile_voice_output(self) -> None:
        """Speak the latest assistant message once every precondition holds."""
        latest = self.state.latest_assistant_message
        if (
            self._output_available()
            and self.state.is_voice_enabled
            and latest is not None
            and not self.speech_output.speaking
            and not self.state.has_spoken_current_message
        ):
            logger.info("Auto-speaking latest message: {}", latest.text[:50])
            self.state.has_spoken_current_message = True
            self._schedule_speech(latest, self.speech_config.speak_delay)

    def _output_available(self) -> bool:
        return self.speech_output.supported and self.speech_output.ready

    def _announce(self, message: Message, delay: float) -> None:
        if self.state.is_voice_enabled and self._output_available():
            self.state.has_spoken_current_message = True
            self._schedule_speech(message, delay)
        else:
            logger.debug(
                "Speech not ready. voice={} supported={} ready={}",
                self.state.is_voice_enabled, self.speech_output.supported, self.speech_output.ready,
            )

    def _schedule_speech(self, message: Optional[Message], delay: float) -> None:
        """Speak ``message`` after ``delay``; None speaks the voice-on notice."""
        message_id = message.id if message is not None else None
        text = message.text if message is not None else VOICE_ON_TEXT
        task = asyncio.get_running_loop().create_task(self._speak_later(message_id, text, delay))
        self._speech_tasks.add(task)
        task.add_done_callback(self._speech_tasks.discard)

    async def _speak_later(self, message_id: Optional[int], text: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self.state.is_voice_enabled:
            logger.debug("Voice disabled before scheduled speech; skipping.")
            return
        # Only the latest assistant message is spoken; the notice only while there is none
        if message_id != self.state.latest_assistant_message_id:
            logger.debug("Scheduled speech superseded by message {}; skipping.",
                         self.state.latest_assistant_message_id)
            return
        self.speech_output.speak(text)

    def _cancel_scheduled_speech(self) -> None:
        for task in list(self._speech_tasks):
            task.cancel()

    # Speech input

    def _on_speech_input_changed(self) -> None:
        transcript = self.speech_input.transcript
        if transcript:
            self.state.pending_input_text = transcript

        listening = self.speech_input.listening
        session_ended = self._was_listening and not listening
        self._was_listening = listening

        if session_ended and self.speech_config.auto_send_transcript and transcript.strip():
            logger.info("Sending transcript: {}", transcript[:50])
            task = asyncio.get_running_loop().create_task(self.send_message(transcript))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _on_notice(self, notice: Notice) -> None:
        self.state.notices.append(notice)

    # Messages

    def _append(self, text: str, sender: Sender) -> Message:
        message = Message(id=next(self._ids), text=text, sender=sender)
        self.state.messages.append(message)
        return message

    def _append_assistant(self, text: str) -> Message:
        message = self._append(text, Sender.ASSISTANT)
        self.state.point_at(message)
        return message

    # Lifecycle

    async def wait_idle(self) -> None:
        """Wait for background sends, scheduled speech and speech settling."""
        while self._tasks or self._speech_tasks:
            await asyncio.wait(self._tasks | self._speech_tasks)
        await self.speech_output.wait_settled()

    async def shutdown(self) -> None:
        self._cancel_scheduled_speech()
        for task in list(self._tasks):
            task.cancel()
        self.speech_input.stop_listening()
        self.speech_output.stop()
        self.speech_output.detach()
