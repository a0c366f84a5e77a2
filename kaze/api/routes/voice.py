from dataclasses import asdict

from fastapi import APIRouter, Request

router = APIRouter()


def _voice_state(orchestrator) -> dict:
    output = orchestrator.speech_output
    speech_input = orchestrator.speech_input
    return {
        "enabled": orchestrator.state.is_voice_enabled,
        "output": {
            "supported": output.supported,
            "ready": output.ready,
            "speaking": output.speaking,
            "voice": output.selected_voice.name if output.selected_voice else None,
        },
        "input": {
            "supported": speech_input.supported,
            "listening": speech_input.listening,
            "transcript": speech_input.transcript,
        },
    }


@router.get("/")
async def get_voice_state(request: Request):
    return _voice_state(request.app.state.orchestrator)


@router.post("/toggle")
async def toggle_voice(request: Request):
    """Turn spoken replies on or off."""
    orchestrator = request.app.state.orchestrator
    orchestrator.toggle_voice()
    return _voice_state(orchestrator)


@router.post("/stop")
async def stop_speaking(request: Request):
    orchestrator = request.app.state.orchestrator
    orchestrator.stop_speaking()
    return _voice_state(orchestrator)


@router.post("/listen/start")
async def start_listening(request: Request):
    orchestrator = request.app.state.orchestrator
    orchestrator.start_listening()
    return _voice_state(orchestrator)


@router.post("/listen/stop")
async def stop_listening(request: Request):
    orchestrator = request.app.state.orchestrator
    orchestrator.stop_listening()
    return _voice_state(orchestrator)


@router.get("/notices")
async def drain_notices(request: Request):
    """Notices raised since the last call (mic permission, recognition errors)."""
    notices = request.app.state.orchestrator.state.drain_notices()
    return {"notices": [asdict(n) for n in notices]}
