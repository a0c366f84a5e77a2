import asyncio
from pathlib import Path

from loguru import logger

from core.config import ConfigManager
from core.conversation import ConversationOrchestrator

# Base directory for the kaze package
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
MODELS_DIR = BASE_DIR / "models"


class KazeApp:
    """Wires providers, speech and the orchestrator, then serves the API."""

    def __init__(self, data_dir: Path = DATA_DIR):
        self.config_manager = ConfigManager(data_dir)
        self.orchestrator = self._build_orchestrator()
        self._server_task = None

    def _build_orchestrator(self) -> ConversationOrchestrator:
        from llm.advisor import AdviceGenerator
        from llm.base import build_backend
        from location.provider import build_location_provider
        from speech.input import SpeechInputController
        from speech.output import SpeechOutputController
        from weather.client import OpenWeatherClient

        config = self.config_manager.config
        speech = config.speech

        weather = OpenWeatherClient(
            api_key=config.api_keys.openweather,
            base_url=config.weather.base_url,
            units=config.weather.units,
            language=config.weather.language,
            timeout=config.weather.timeout,
        )
        speech_output = SpeechOutputController(
            self._build_synthesis_engine(),
            language=speech.language,
            preferred_voices=speech.preferred_voices,
            rate=speech.rate,
            pitch=speech.pitch,
            volume=speech.volume,
            settle_delay=speech.settle_delay,
        )
        speech_input = SpeechInputController(
            self._build_recognition_engine(), language=speech.language
        )

        return ConversationOrchestrator(
            location=build_location_provider(config.location),
            weather=weather,
            advisor=AdviceGenerator(build_backend(config)),
            speech_output=speech_output,
            speech_input=speech_input,
            speech_config=speech,
        )

    def _build_synthesis_engine(self):
        from speech.output import NullSynthesisEngine

        voices_dir = self._resolve(self.config_manager.config.speech.piper_voices_dir)
        try:
            import piper  # noqa: F401
        except ImportError:
            logger.warning("piper-tts not installed. Speech output disabled.")
            return NullSynthesisEngine()

        from speech.piper_engine import PiperSynthesisEngine
        return PiperSynthesisEngine(voices_dir)

    def _build_recognition_engine(self):
        from speech.input import NullRecognitionEngine

        try:
            import pyaudio  # noqa: F401
            import pywhispercpp  # noqa: F401
        except ImportError:
            logger.warning("pyaudio/pywhispercpp not installed. Speech input disabled.")
            return NullRecognitionEngine()

        from speech.whisper_engine import WhisperRecognitionEngine
        return WhisperRecognitionEngine(
            model_dir=MODELS_DIR / "stt",
            model_name=self.config_manager.config.speech.whisper_model,
        )

    @staticmethod
    def _resolve(path: str) -> Path:
        p = Path(path)
        return p if p.is_absolute() else BASE_DIR / p

    async def start(self):
        """Start the API server, attach speech output, run the opening turn."""
        logger.info("=== Kaze starting ===")
        await self._start_api_server()

        self.orchestrator.speech_output.attach()
        await self.orchestrator.initialize()
        logger.info("=== Kaze is ready ===")

        await self._server_task

    async def _start_api_server(self):
        from api.server import create_app

        import uvicorn

        app = create_app(self.config_manager, self.orchestrator)
        server_config = self.config_manager.config.server
        server = uvicorn.Server(
            uvicorn.Config(app, host=server_config.host, port=server_config.port, log_level="warning")
        )
        self._server_task = asyncio.create_task(server.serve())
        logger.info("API server started on port {}", server_config.port)

    async def shutdown(self):
        logger.info("Shutting down...")
        await self.orchestrator.shutdown()
        if self._server_task is not None:
            self._server_task.cancel()
        logger.info("Shutdown complete.")


def main():
    """Entry point."""
    import sys
    from loguru import logger as log

    DATA_DIR.mkdir(parents=True, exist_ok=True)
    log.remove()
    log.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")
    log.add(DATA_DIR / "kaze.log", rotation="10 MB", retention="7 days", level="DEBUG")

    app = KazeApp()

    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        loop.run_until_complete(app.shutdown())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
