"""Shared fakes for the conversation, speech and provider tests."""
import asyncio

import pytest

from core.config import SpeechConfig
from core.conversation import ConversationOrchestrator
from location.provider import Coordinates, LocationProvider
from speech.input import RecognitionEngine, SpeechInputController
from speech.output import SpeechOutputController, SynthesisEngine, Voice
from weather.client import WeatherProvider
from weather.snapshot import WeatherSnapshot

TOKYO = WeatherSnapshot.from_openweather(
    {"name": "Tokyo", "main": {"temp": 22}, "weather": [{"description": "clear"}]}
)


class FakeSynthesisEngine(SynthesisEngine):
    def __init__(self, voices=None, supported=True):
        super().__init__()
        self.supported = supported
        self.voices = [Voice("Samantha", "en-US")] if voices is None else voices
        self.spoken = []
        self.cancels = 0

    def get_voices(self):
        return list(self.voices)

    def speak(self, utterance):
        self.spoken.append(utterance)

    def cancel(self):
        self.cancels += 1

    @property
    def texts(self):
        return [u.text for u in self.spoken]


class FakeRecognitionEngine(RecognitionEngine):
    def __init__(self, supported=True):
        self.supported = supported
        self.listener = None
        self.options = None
        self.starts = 0
        self.stops = 0

    def start(self, listener, options):
        self.listener = listener
        self.options = options
        self.starts += 1

    def stop(self):
        self.stops += 1
        self.listener.handle_end()


class FakeLocation(LocationProvider):
    def __init__(self, coords=Coordinates(35.0, 139.0), error=None, gate=None):
        self.coords = coords
        self.error = error
        self.gate = gate
        self.calls = 0

    async def get_location(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.coords


class FakeWeather(WeatherProvider):
    def __init__(self, snapshot=TOKYO, error=None):
        self.snapshot = snapshot
        self.error = error
        self.calls = []

    async def get_current_conditions(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        if self.error is not None:
            raise self.error
        return self.snapshot


class FakeAdvisor:
    def __init__(self, initial="It's 22°C and clear in Tokyo...", reply="Wear a light jacket.", error=None):
        self.initial = initial
        self.reply = reply
        self.error = error
        self.gate = None
        self.initial_calls = []
        self.reply_calls = []

    async def generate_initial(self, snapshot):
        self.initial_calls.append(snapshot)
        return self.initial

    async def generate_reply(self, user_text, snapshot, recent_messages=()):
        self.reply_calls.append((user_text, snapshot, list(recent_messages)))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def speech_config():
    return SpeechConfig(
        settle_delay=0, initial_speak_delay=0, reply_speak_delay=0, speak_delay=0
    )


@pytest.fixture
def synthesis():
    return FakeSynthesisEngine()


@pytest.fixture
def recognition():
    return FakeRecognitionEngine()


@pytest.fixture
def make_orchestrator(speech_config, synthesis, recognition):
    """Factory: build an orchestrator over fakes, overriding any collaborator."""

    def _make(location=None, weather=None, advisor=None, attach=True, **speech_overrides):
        config = speech_config.model_copy(update=speech_overrides)
        output = SpeechOutputController(synthesis, language="en-US", settle_delay=0)
        if attach:
            output.attach()
        orchestrator = ConversationOrchestrator(
            location=location or FakeLocation(),
            weather=weather or FakeWeather(),
            advisor=advisor or FakeAdvisor(),
            speech_output=output,
            speech_input=SpeechInputController(recognition),
            speech_config=config,
        )
        return orchestrator

    return _make


async def settle(orchestrator: ConversationOrchestrator) -> None:
    """Let scheduled speech and background sends run to completion."""
    await orchestrator.wait_idle()
    await asyncio.sleep(0)
