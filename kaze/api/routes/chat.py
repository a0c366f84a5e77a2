from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from core.state import Message

router = APIRouter()


class SendBody(BaseModel):
    text: Optional[str] = None  # None sends the pending input


class InputBody(BaseModel):
    text: str


def message_to_dict(message: Message) -> dict:
    return {
        "id": message.id,
        "text": message.text,
        "sender": message.sender.value,
        "timestamp": message.timestamp.isoformat(),
    }


@router.get("/messages")
async def get_messages(request: Request):
    """Full message log plus the turn state."""
    state = request.app.state.orchestrator.state
    return {
        "messages": [message_to_dict(m) for m in state.messages],
        "loading": state.is_loading,
        "latest_assistant_message_id": state.latest_assistant_message_id,
        "pending_input": state.pending_input_text,
    }


@router.post("/send")
async def send_message(body: SendBody, request: Request):
    """Submit a message and wait for the assistant's reply."""
    orchestrator = request.app.state.orchestrator
    reply = await orchestrator.send_message(body.text)
    if reply is None:
        return {"accepted": False}
    return {"accepted": True, "reply": message_to_dict(reply)}


@router.put("/input")
async def set_input(body: InputBody, request: Request):
    request.app.state.orchestrator.set_input_text(body.text)
    return {"pending_input": body.text}
