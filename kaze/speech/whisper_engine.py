import asyncio
import threading
from pathlib import Path
from typing import Optional

import numpy as np
from loguru import logger

from speech.input import RecognitionEngine, RecognitionOptions, RecognitionSegment

SAMPLE_RATE = 16000
CHUNK_SIZE = 1280  # 80ms at 16kHz


class WhisperRecognitionEngine(RecognitionEngine):
    """Single-utterance recognition: microphone capture, then whisper.cpp.

    Capture ends after ``silence_duration`` below the RMS gate once speech
    started, on ``stop()``, or at ``max_duration``. Whisper produces no
    interim hypotheses, so each session reports one final segment.
    """

    def __init__(
        self,
        model_dir: Path,
        model_name: str = "base",
        speech_rms: float = 300.0,
        silence_duration: float = 0.8,
        initial_wait: float = 5.0,
        max_duration: float = 15.0,
        n_threads: int = 4,
    ):
        self.model_dir = model_dir
        self.model_name = model_name
        self.speech_rms = speech_rms
        self.silence_duration = silence_duration
        self.initial_wait = initial_wait
        self.max_duration = max_duration
        self.n_threads = n_threads
        self._model = None
        self._stop = threading.Event()
        self._task: Optional[asyncio.Task] = None

    def start(self, listener, options: RecognitionOptions) -> None:
        self._stop.clear()
        self._task = asyncio.get_running_loop().create_task(self._session(listener, options))

    def stop(self) -> None:
        self._stop.set()

    async def _session(self, listener, options: RecognitionOptions) -> None:
        loop = asyncio.get_running_loop()
        listener.handle_start()
        try:
            try:
                audio = await loop.run_in_executor(None, self._capture_sync)
            except OSError as e:
                logger.error("Could not open microphone: {}", e)
                listener.handle_error("not-allowed")
                return

            if audio is None:
                listener.handle_error("no-speech")
                return

            language = options.language.split("-")[0]
            text = await loop.run_in_executor(None, self._transcribe_sync, audio, language)
            if text:
                listener.handle_result([RecognitionSegment(text=text, is_final=True)])
            else:
                listener.handle_error("no-speech")
        except Exception as e:
            logger.error("Recognition session failed: {}", e)
            listener.handle_error("audio-capture")
        finally:
            listener.handle_end()

    def _capture_sync(self) -> Optional[np.ndarray]:
        """Record until the speaker goes quiet. None when nobody spoke."""
        import pyaudio

        pa = pyaudio.PyAudio()
        stream = None
        try:
            stream = pa.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=SAMPLE_RATE,
                input=True,
                frames_per_buffer=CHUNK_SIZE,
            )
            frames = []
            speech_started = False
            silence_time = 0.0
            total_time = 0.0
            chunk_time = CHUNK_SIZE / SAMPLE_RATE

            while total_time < self.max_duration and not self._stop.is_set():
                raw = stream.read(CHUNK_SIZE, exception_on_overflow=False)
                chunk = np.frombuffer(raw, dtype=np.int16)
                frames.append(chunk)
                total_time += chunk_time

                rms = np.sqrt(np.mean(chunk.astype(np.float32) ** 2))
                if rms >= self.speech_rms:
                    speech_started = True
                    silence_time = 0.0
                elif speech_started:
                    silence_time += chunk_time
                    if silence_time >= self.silence_duration:
                        break

                if not speech_started and total_time >= self.initial_wait:
                    logger.debug("No speech within {:.1f}s.", self.initial_wait)
                    return None

            if not speech_started:
                return None
            audio = np.concatenate(frames)
            logger.debug("Captured {:.1f}s of audio.", len(audio) / SAMPLE_RATE)
            return audio
        finally:
            if stream is not None:
                stream.stop_stream()
                stream.close()
            pa.terminate()

    def _transcribe_sync(self, audio: np.ndarray, language: str) -> str:
        if self._model is None:
            from pywhispercpp.model import Model

            model_path = self.model_dir / f"ggml-{self.model_name}.bin"
            if model_path.exists():
                self._model = Model(str(model_path), n_threads=self.n_threads)
            else:
                logger.info("Whisper model not found at {}. Downloading.", model_path)
                self._model = Model(
                    self.model_name, models_dir=str(self.model_dir), n_threads=self.n_threads
                )
            logger.info("Whisper STT loaded: {}", self.model_name)

        # Whisper expects float32 audio normalized to [-1, 1]
        audio_float = audio.astype(np.float32) / 32768.0
        segments = self._model.transcribe(audio_float, language=language)
        text = " ".join(seg.text.strip() for seg in segments).strip()
        logger.debug("STT result: '{}'", text)
        return text
