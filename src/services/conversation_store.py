"""
Data access for conversations and their turns.

Writes go through the psycopg pool as single transactions; reads use SQLModel
sessions. Turn sequence numbers come from an atomic increment of
``conversations.turn_count``, so two writers on the same conversation can
never receive the same index.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlmodel import select

from core.database import async_session_maker, pool
from models.conversations import PLACEHOLDER_TITLE, Conversation, ConversationDetail, Role, Turn, TurnRead

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50


def provisional_title(text: str) -> str:
    """Title shown until a generated one replaces it: the first 50 characters."""
    return text[:TITLE_MAX_LENGTH].strip()


class ConversationStore:
    async def create_conversation(self, title: Optional[str] = None) -> Conversation:
        conversation = Conversation(title=title or PLACEHOLDER_TITLE)
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO conversations (id, title, turn_count, created_at, updated_at)
                    VALUES (%s, %s, 0, %s, %s)
                    """,
                    (
                        conversation.id,
                        conversation.title,
                        conversation.created_at,
                        conversation.updated_at,
                    ),
                )
            await conn.commit()
        return conversation

    async def list_conversations(self) -> List[Conversation]:
        async with async_session_maker() as session:
            result = await session.exec(select(Conversation).order_by(Conversation.updated_at.desc()))
            return list(result.all())

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationDetail]:
        async with async_session_maker() as session:
            result = await session.exec(select(Conversation).where(Conversation.id == conversation_id))
            conversation = result.first()
            if conversation is None:
                return None

            turns = await session.exec(
                select(Turn).where(Turn.conversation_id == conversation_id).order_by(Turn.sequence)
            )
            detail = ConversationDetail.model_validate(conversation)
            detail.turns = [TurnRead.model_validate(turn) for turn in turns.all()]
            return detail

    async def append_turn(self, conversation_id: str, role: Role, content: str) -> Optional[Turn]:
        """Append a turn and bump the conversation counters. Returns None if the conversation is gone."""
        now = datetime.now(timezone.utc)
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    UPDATE conversations
                    SET turn_count = turn_count + 1, updated_at = %s
                    WHERE id = %s
                    RETURNING turn_count - 1
                    """,
                    (now, conversation_id),
                )
                row = await cur.fetchone()
                if row is None:
                    await conn.rollback()
                    return None

                turn = Turn(
                    id=str(uuid4()),
                    conversation_id=conversation_id,
                    role=Role(role).value,
                    content=content,
                    sequence=row[0],
                    created_at=now,
                )
                await cur.execute(
                    """
                    INSERT INTO turns (id, conversation_id, role, content, sequence, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (turn.id, turn.conversation_id, turn.role, turn.content, turn.sequence, turn.created_at),
                )
            await conn.commit()
        return turn

    async def set_provisional_title(self, conversation_id: str, text: str) -> bool:
        """Replace the placeholder title with a truncation of ``text``. False if already titled."""
        title = provisional_title(text)
        if not title:
            return False
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    "UPDATE conversations SET title = %s WHERE id = %s AND title = %s RETURNING id",
                    (title, conversation_id, PLACEHOLDER_TITLE),
                )
                row = await cur.fetchone()
            await conn.commit()
        return row is not None

    async def set_title(self, conversation_id: str, title: str, touch: bool = False) -> bool:
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                if touch:
                    await cur.execute(
                        "UPDATE conversations SET title = %s, updated_at = %s WHERE id = %s RETURNING id",
                        (title, datetime.now(timezone.utc), conversation_id),
                    )
                else:
                    await cur.execute(
                        "UPDATE conversations SET title = %s WHERE id = %s RETURNING id",
                        (title, conversation_id),
                    )
                row = await cur.fetchone()
            await conn.commit()
        return row is not None

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("DELETE FROM turns WHERE conversation_id = %s", (conversation_id,))
                await cur.execute("DELETE FROM conversations WHERE id = %s RETURNING id", (conversation_id,))
                row = await cur.fetchone()
            await conn.commit()
        if row is not None:
            logger.info(f"Deleted conversation {conversation_id}")
        return row is not None


conversation_store = ConversationStore()
