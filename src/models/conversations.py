from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from pydantic.alias_generators import to_camel
from sqlalchemy import Column, ForeignKey, String, UniqueConstraint
from sqlmodel import Field, SQLModel

PLACEHOLDER_TITLE = "New Chat"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Speaker of a turn."""

    USER = "user"
    ASSISTANT = "assistant"


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str = PLACEHOLDER_TITLE
    turn_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow, index=True)


class Turn(SQLModel, table=True):
    __tablename__ = "turns"
    __table_args__ = (UniqueConstraint("conversation_id", "sequence", name="uq_turns_conversation_sequence"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    conversation_id: str = Field(
        sa_column=Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    role: str = Field(max_length=16)  # Role value
    content: str
    sequence: int
    created_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# API schemas (camelCase on the wire)
# =============================================================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ChatMessage(CamelModel):
    role: Role
    content: str = ""


class ChatRequest(CamelModel):
    messages: Optional[List[ChatMessage]] = None
    conversation_id: Optional[str] = None


class TurnCreate(CamelModel):
    role: Optional[Role] = None
    content: Optional[str] = None


class TurnRead(CamelModel):
    id: str
    conversation_id: str
    role: Role
    content: str
    sequence: int
    created_at: datetime


class ConversationCreate(CamelModel):
    title: Optional[str] = None


class ConversationUpdate(CamelModel):
    title: Optional[str] = None


class ConversationRead(CamelModel):
    id: str
    title: str
    turn_count: int
    created_at: datetime
    updated_at: datetime


class ConversationDetail(ConversationRead):
    turns: List[TurnRead] = PydanticField(default_factory=list)
