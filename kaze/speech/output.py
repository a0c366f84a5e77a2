import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from loguru import logger


@dataclass(frozen=True)
class Voice:
    name: str
    lang: str
    gender: Optional[str] = None


def _noop(*_args) -> None:
    pass


@dataclass(eq=False)
class Utterance:
    """One playback request. Engines report progress through the callbacks."""

    text: str
    lang: str
    voice: Optional[Voice] = None
    rate: float = 0.9
    pitch: float = 1.0
    volume: float = 1.0
    on_start: Callable[[], None] = field(default=_noop, repr=False)
    on_end: Callable[[], None] = field(default=_noop, repr=False)
    on_error: Callable[[str], None] = field(default=_noop, repr=False)


class SynthesisEngine(ABC):
    """Text-to-speech backend driven by SpeechOutputController.

    Callbacks on an utterance must be invoked on the event loop thread.
    """

    supported: bool = True

    def __init__(self):
        self._voices_changed: Optional[Callable[[], None]] = None

    @abstractmethod
    def get_voices(self) -> list[Voice]:
        ...

    def set_voices_changed_callback(self, callback: Optional[Callable[[], None]]) -> None:
        """Register a hook fired whenever the voice list changes."""
        self._voices_changed = callback

    def notify_voices_changed(self) -> None:
        if self._voices_changed is not None:
            self._voices_changed()

    @abstractmethod
    def speak(self, utterance: Utterance) -> None:
        """Begin playback; must return without waiting for it to finish."""
        ...

    @abstractmethod
    def cancel(self) -> None:
        ...


class NullSynthesisEngine(SynthesisEngine):
    """Engine for hosts without speech output."""

    supported = False

    def get_voices(self) -> list[Voice]:
        return []

    def speak(self, utterance: Utterance) -> None:
        pass

    def cancel(self) -> None:
        pass


def matches_language(voice_lang: str, target: str) -> bool:
    """True when the voice shares the target's primary language or region."""
    parts = voice_lang.replace("_", "-").lower().split("-")
    primary, _, region = target.replace("_", "-").lower().partition("-")
    return parts[0] == primary or (bool(region) and region in parts[1:])


def select_voice(
    voices: Sequence[Voice], language: str, preferred: Iterable[str] = ()
) -> Optional[Voice]:
    """Pick the voice to speak with.

    Order: a target-language voice whose name or gender matches a preferred
    persona, then the first target-language voice, then the first voice of
    any language. None means the platform default.
    """
    preferred = [p.lower() for p in preferred]
    matching = [v for v in voices if matches_language(v.lang, language)]

    for voice in matching:
        name = voice.name.lower()
        gender = (voice.gender or "").lower()
        if any(p in name for p in preferred) or (gender and gender in preferred):
            return voice
    if matching:
        return matching[0]
    if voices:
        return voices[0]
    return None


class SpeechOutputController:
    """Speaking / not-speaking state on top of a SynthesisEngine.

    States: unsupported (terminal), or supported and not ready, then ready
    and idle or speaking. Readiness never reverts. Overlapping speak() calls
    are last-writer-wins: each cancels whatever is in flight first.
    """

    def __init__(
        self,
        engine: SynthesisEngine,
        language: str = "en-US",
        preferred_voices: Iterable[str] = (),
        rate: float = 0.9,
        pitch: float = 1.0,
        volume: float = 1.0,
        settle_delay: float = 0.05,
    ):
        self._engine = engine
        self.language = language
        self.preferred_voices = list(preferred_voices)
        self.rate = rate
        self.pitch = pitch
        self.volume = volume
        self.settle_delay = settle_delay

        self.supported = engine.supported
        self.ready = False
        self.speaking = False
        self.selected_voice: Optional[Voice] = None
        self.available_voices: list[Voice] = []

        self._attached = False
        self._current: Optional[Utterance] = None
        self._pending: Optional[asyncio.Task] = None
        self._listeners: list[Callable[[], None]] = []

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Called after every change to ready or speaking."""
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback()

    def attach(self) -> None:
        """Enumerate voices and follow later changes. Safe to call twice."""
        if self._attached:
            return
        self._attached = True

        if not self.supported:
            logger.warning("Speech synthesis not supported on this host.")
            self.ready = True
            self._notify()
            return

        self.load_voices()
        self._engine.set_voices_changed_callback(self.load_voices)

    def detach(self) -> None:
        if self._attached and self.supported:
            self._engine.set_voices_changed_callback(None)

    def load_voices(self) -> None:
        """Recompute the voice list and selection. May run many times."""
        voices = list(self._engine.get_voices())
        self.available_voices = voices
        self.selected_voice = select_voice(voices, self.language, self.preferred_voices)

        if self.selected_voice is not None:
            logger.info(
                "Voices available: {}, selected: {} ({})",
                len(voices), self.selected_voice.name, self.selected_voice.lang,
            )
        else:
            logger.info("No voices available, using engine default.")

        was_ready, self.ready = self.ready, True
        if not was_ready:
            self._notify()

    def speak(self, text: str) -> None:
        if not self.supported or not text:
            logger.debug("Speech not supported or no text provided.")
            return

        self.attach()
        logger.info("Starting speech synthesis for: {}", text[:50])

        self._cancel_in_flight()

        utterance = Utterance(
            text=text,
            lang=self.language,
            voice=self.selected_voice,
            rate=self.rate,
            pitch=self.pitch,
            volume=self.volume,
        )
        utterance.on_start = lambda: self._handle_start(utterance)
        utterance.on_end = lambda: self._handle_end(utterance)
        utterance.on_error = lambda error: self._handle_error(utterance, error)

        self._current = utterance
        self._pending = asyncio.get_running_loop().create_task(self._play_after_settle(utterance))

    async def _play_after_settle(self, utterance: Utterance) -> None:
        # Give the engine time to finish the cancel before starting over
        await asyncio.sleep(self.settle_delay)
        if utterance is not self._current:
            return
        try:
            self._engine.speak(utterance)
        except Exception as e:
            self._handle_error(utterance, str(e))

    def stop(self) -> None:
        """Cancel playback. speaking is False when this returns."""
        if not self.supported:
            return
        self._cancel_in_flight()

    def _cancel_in_flight(self) -> None:
        self._current = None
        self._engine.cancel()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        if self.speaking:
            self.speaking = False
            self._notify()

    def _handle_start(self, utterance: Utterance) -> None:
        if utterance is not self._current:
            return
        logger.debug("Speech started: {}", utterance.text[:50])
        self.speaking = True
        self._notify()

    def _handle_end(self, utterance: Utterance) -> None:
        if utterance is not self._current:
            return
        logger.debug("Speech ended.")
        self._finish()

    def _handle_error(self, utterance: Utterance, error: str) -> None:
        if utterance is not self._current:
            return
        logger.error("Speech synthesis error: {}", error)
        self._finish()

    def _finish(self) -> None:
        self._current = None
        self._pending = None
        if self.speaking:
            self.speaking = False
            self._notify()

    async def wait_settled(self) -> None:
        """Wait until a pending speak() has been handed to the engine."""
        pending = self._pending
        if pending is not None and not pending.done():
            await asyncio.wait({pending})
