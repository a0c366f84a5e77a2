import asyncio
import io
import json
import subprocess
import tempfile
import threading
import wave
from pathlib import Path
from typing import Optional

import numpy as np
from loguru import logger

from speech.output import SynthesisEngine, Utterance, Voice


class PiperSynthesisEngine(SynthesisEngine):
    """Text-to-speech with Piper voices, played through PipeWire/PulseAudio.

    Every ``<name>.onnx`` in ``voices_dir`` is a voice; its language comes
    from the ``<name>.onnx.json`` model config. Synthesis and playback run in
    the default executor, callbacks fire on the event loop.
    """

    def __init__(self, voices_dir: Path, player: str = "paplay"):
        super().__init__()
        self.voices_dir = voices_dir
        self.player = player
        self._voices: Optional[list[Voice]] = None
        self._models: dict = {}
        self._task: Optional[asyncio.Task] = None
        self._process: Optional[subprocess.Popen] = None
        self._cancelled: Optional[threading.Event] = None

    def get_voices(self) -> list[Voice]:
        if self._voices is None:
            self._voices = self._scan()
        return list(self._voices)

    def _scan(self) -> list[Voice]:
        if not self.voices_dir.exists():
            logger.warning("Piper voices directory not found: {}", self.voices_dir)
            return []

        voices = []
        for model_path in sorted(self.voices_dir.glob("*.onnx")):
            lang = ""
            config_path = model_path.with_suffix(".onnx.json")
            if config_path.exists():
                try:
                    data = json.loads(config_path.read_text())
                    lang = (data.get("language") or {}).get("code", "")
                except (OSError, ValueError) as e:
                    logger.warning("Unreadable Piper config {}: {}", config_path, e)
            if not lang:
                # Piper names voices like en_US-lessac-medium
                lang = model_path.stem.split("-")[0]
            voices.append(Voice(name=model_path.stem, lang=lang.replace("_", "-")))
        logger.debug("Piper voices found: {}", [v.name for v in voices])
        return voices

    def speak(self, utterance: Utterance) -> None:
        cancelled = threading.Event()
        self._cancelled = cancelled
        self._task = asyncio.get_running_loop().create_task(self._run(utterance, cancelled))

    def cancel(self) -> None:
        # The flag reaches a playback thread that has not started the player yet
        if self._cancelled is not None:
            self._cancelled.set()
            self._cancelled = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        proc = self._process
        if proc is not None:
            self._kill(proc)
            self._process = None

    def _kill(self, proc: subprocess.Popen) -> None:
        try:
            proc.kill()
            logger.debug("Playback stopped (killed {}).", self.player)
        except OSError as e:
            logger.debug("Error killing {}: {}", self.player, e)

    async def _run(self, utterance: Utterance, cancelled: threading.Event) -> None:
        loop = asyncio.get_running_loop()
        try:
            wav_bytes = await loop.run_in_executor(None, self._synthesize_sync, utterance)
            if not wav_bytes:
                utterance.on_error("synthesis produced no audio")
                return
            utterance.on_start()
            returncode = await loop.run_in_executor(None, self._play_sync, wav_bytes, cancelled)
        except Exception as e:
            utterance.on_error(str(e))
            return

        # -9: killed by cancel()
        if returncode in (0, -9):
            utterance.on_end()
        else:
            utterance.on_error(f"{self.player} exited with code {returncode}")

    def _load_model(self, name: str):
        if name not in self._models:
            from piper import PiperVoice

            model_path = self.voices_dir / f"{name}.onnx"
            self._models[name] = PiperVoice.load(
                str(model_path), config_path=str(model_path.with_suffix(".onnx.json"))
            )
            logger.info("Piper voice loaded: {}", name)
        return self._models[name]

    def _synthesize_sync(self, utterance: Utterance) -> bytes:
        voice = utterance.voice
        if voice is None:
            voices = self.get_voices()
            if not voices:
                raise RuntimeError("no Piper voice installed")
            voice = voices[0]

        from piper import SynthesisConfig

        model = self._load_model(voice.name)
        syn_config = SynthesisConfig(
            length_scale=1.0 / utterance.rate,
            volume=utterance.volume,
        )

        chunks = []
        for chunk in model.synthesize(utterance.text, syn_config=syn_config):
            chunks.append((chunk.audio_float_array * 32767).astype(np.int16))
        if not chunks:
            logger.warning("TTS produced no audio for: '{}'", utterance.text[:50])
            return b""

        wav_buffer = io.BytesIO()
        with wave.open(wav_buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)  # 16-bit
            wav.setframerate(model.config.sample_rate)
            wav.writeframes(np.concatenate(chunks).tobytes())
        return wav_buffer.getvalue()

    def _play_sync(self, wav_bytes: bytes, cancelled: threading.Event) -> int:
        if cancelled.is_set():
            return -9
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=True) as tmp:
            tmp.write(wav_bytes)
            tmp.flush()
            proc = subprocess.Popen(
                [self.player, tmp.name],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
            self._process = proc
            # cancel() may have run between the check above and Popen
            if cancelled.is_set():
                self._kill(proc)
            try:
                proc.wait(timeout=120)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
                logger.error("Audio playback timed out (120s)")
            finally:
                if self._process is proc:
                    self._process = None
            if proc.returncode not in (0, -9):
                logger.error("{} error: {}", self.player, proc.stderr.read().decode().strip())
            return proc.returncode
