from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from core.config import ConfigManager
from core.conversation import ConversationOrchestrator


def create_app(config_manager: ConfigManager, orchestrator: ConversationOrchestrator) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(title="Kaze", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store references for route handlers
    app.state.config_manager = config_manager
    app.state.orchestrator = orchestrator

    from api.routes.chat import router as chat_router
    from api.routes.voice import router as voice_router

    app.include_router(chat_router, prefix="/api/chat", tags=["chat"])
    app.include_router(voice_router, prefix="/api/voice", tags=["voice"])

    @app.get("/api/health")
    async def health():
        state = orchestrator.state
        return {
            "status": "ok",
            "loading": state.is_loading,
            "messages": len(state.messages),
            "voice_enabled": state.is_voice_enabled,
            "speech_output": orchestrator.speech_output.supported,
            "speech_input": orchestrator.speech_input.supported,
            "location_error": state.location_error.message if state.location_error else None,
        }

    @app.get("/api/weather")
    async def weather():
        snapshot = orchestrator.state.weather_snapshot
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Weather not available")
        return snapshot.model_dump(mode="json")

    # Built frontend, if present. Mounted last: "/" catches everything.
    static_dir = Path(__file__).resolve().parent.parent / "static"
    if static_dir.exists():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    return app
