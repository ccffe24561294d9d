from typing import List, Optional

from fastapi import APIRouter

from core.errors import InvalidInput, NotFound
from models.conversations import (
    ConversationCreate,
    ConversationDetail,
    ConversationRead,
    ConversationUpdate,
    Role,
    TurnCreate,
    TurnRead,
)
from services.conversation_store import conversation_store

router = APIRouter()


@router.post("", response_model=ConversationRead, status_code=201)
async def create_conversation(body: Optional[ConversationCreate] = None):
    conversation = await conversation_store.create_conversation(body.title if body else None)
    return ConversationRead.model_validate(conversation)


@router.get("", response_model=List[ConversationRead])
async def list_conversations():
    """List conversations, most recently updated first."""
    conversations = await conversation_store.list_conversations()
    return [ConversationRead.model_validate(c) for c in conversations]


@router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(conversation_id: str):
    detail = await conversation_store.get_conversation(conversation_id)
    if detail is None:
        raise NotFound("Conversation not found")
    return detail


@router.patch("/{conversation_id}")
async def rename_conversation(conversation_id: str, body: ConversationUpdate):
    title = (body.title or "").strip()
    if not title:
        raise InvalidInput("Title is required")
    if not await conversation_store.set_title(conversation_id, title, touch=True):
        raise NotFound("Conversation not found")
    return {"success": True}


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str):
    if not await conversation_store.delete_conversation(conversation_id):
        raise NotFound("Conversation not found")
    return {"success": True}


@router.post("/{conversation_id}/turns", response_model=TurnRead, status_code=201)
async def append_turn(conversation_id: str, body: TurnCreate):
    """Append a turn without generating a reply (used to save history written elsewhere)."""
    if body.role is None or not body.content:
        raise InvalidInput("Role and content are required")

    turn = await conversation_store.append_turn(conversation_id, body.role, body.content)
    if turn is None:
        raise NotFound("Conversation not found")

    if turn.sequence == 0 and body.role == Role.USER:
        await conversation_store.set_provisional_title(conversation_id, body.content)

    return TurnRead.model_validate(turn)
