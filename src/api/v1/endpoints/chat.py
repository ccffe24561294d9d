from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from api.dependencies import require_user
from core.logger import app_logger
from models.conversations import ChatRequest
from services.chat_service import chat_service

router = APIRouter()


@router.post("/chat")
async def chat(body: ChatRequest, user: dict = Depends(require_user)):
    """
    Stream the assistant reply as plain text.

    Validation, the user-turn save and the quota check happen before the
    response starts, so their failures are regular JSON errors. After that
    the status is always 200 and failures show up as the fallback reply.
    """
    prepared = await chat_service.prepare(body, user_email=user.get("email"))
    app_logger.info(
        f"Streaming reply for {user.get('email')}",
        extra={"structured_data": {"conversation_id": prepared.conversation_id, "history": len(prepared.history)}},
    )
    return StreamingResponse(
        chat_service.relay(prepared),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache"},
    )
