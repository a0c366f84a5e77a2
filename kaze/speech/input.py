from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from loguru import logger

from core.state import Notice, NoticeLevel


@dataclass(frozen=True)
class RecognitionSegment:
    text: str
    is_final: bool = False


@dataclass(frozen=True)
class RecognitionOptions:
    language: str = "en-US"
    continuous: bool = False
    interim_results: bool = True
    max_alternatives: int = 1


class SpeechInputFailure(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NO_SPEECH = "no_speech"
    OTHER = "other"


def classify_recognition_error(code: str) -> SpeechInputFailure:
    if code in ("not-allowed", "service-not-allowed", "permission_denied"):
        return SpeechInputFailure.PERMISSION_DENIED
    if code in ("no-speech", "no_speech"):
        return SpeechInputFailure.NO_SPEECH
    return SpeechInputFailure.OTHER


class RecognitionEngine(ABC):
    """Speech-to-text backend driven by SpeechInputController.

    During a session the engine calls, on the event loop thread:
    ``handle_start()``, ``handle_result(segments)`` with every segment
    recognised so far in the session, ``handle_error(code)`` and finally
    ``handle_end()``.
    """

    supported: bool = True

    @abstractmethod
    def start(self, listener: "SpeechInputController", options: RecognitionOptions) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...


class NullRecognitionEngine(RecognitionEngine):
    supported = False

    def start(self, listener, options) -> None:
        pass

    def stop(self) -> None:
        pass


PERMISSION_NOTICE = "Microphone access is not permitted. Please check your settings."


class SpeechInputController:
    """Listening / idle state with a transcript for the current session."""

    def __init__(self, engine: RecognitionEngine, language: str = "en-US"):
        self._engine = engine
        self.options = RecognitionOptions(language=language)
        self.supported = engine.supported
        self.listening = False
        self.transcript = ""
        self._listeners: list[Callable[[], None]] = []
        self._notice_listeners: list[Callable[[Notice], None]] = []

        if not self.supported:
            logger.warning("Speech recognition not supported on this host.")

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Called after every change to listening or transcript."""
        self._listeners.append(callback)

    def add_notice_listener(self, callback: Callable[[Notice], None]) -> None:
        self._notice_listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback()

    def _post_notice(self, level: NoticeLevel, text: str) -> None:
        notice = Notice(level=level, text=text)
        for callback in list(self._notice_listeners):
            callback(notice)

    def start_listening(self) -> None:
        if not self.supported or self.listening:
            return

        self.transcript = ""
        self.listening = True
        try:
            self._engine.start(self, self.options)
        except Exception as e:
            logger.error("Error starting speech recognition: {}", e)
            self.listening = False
        self._notify()

    def stop_listening(self) -> None:
        if self.supported and self.listening:
            self._engine.stop()

    def reset_transcript(self) -> None:
        if self.transcript:
            self.transcript = ""
            self._notify()

    # Engine callbacks

    def handle_start(self) -> None:
        if not self.listening:
            self.listening = True
            self._notify()

    def handle_result(self, segments: Sequence[RecognitionSegment]) -> None:
        final = "".join(s.text for s in segments if s.is_final)
        interim = "".join(s.text for s in segments if not s.is_final)
        self.transcript = final or interim
        logger.debug("Transcript: '{}'", self.transcript)
        self._notify()

    def handle_error(self, code: str) -> None:
        failure = classify_recognition_error(code)
        self.listening = False

        if failure == SpeechInputFailure.NO_SPEECH:
            logger.debug("No speech detected.")
        else:
            logger.error("Speech recognition error: {}", code)
            if failure == SpeechInputFailure.PERMISSION_DENIED:
                self._post_notice(NoticeLevel.BLOCKING, PERMISSION_NOTICE)
            else:
                self._post_notice(NoticeLevel.TRANSIENT, f"Speech recognition error: {code}")
        self._notify()

    def handle_end(self) -> None:
        if self.listening:
            self.listening = False
            self._notify()
