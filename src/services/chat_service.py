"""
Request pipeline behind ``POST /chat``.

``prepare`` runs everything that can still fail with a structured HTTP error
(validation, persisting the user turn, quota admission). ``relay`` is the
body of the streaming response: it composes the prompt, relays provider
fragments in order while accumulating them, and persists the assistant turn
at the end. Once ``relay`` has started, errors only ever surface as the
fallback reply inside the stream.
"""

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Tuple

from core.config import settings
from core.errors import InvalidInput, RateLimited
from core.observability import get_observability_callbacks
from models.conversations import ChatMessage, ChatRequest, Role
from services.affection import detect_affection
from services.background import BackgroundTaskRegistry
from services.conversation_store import conversation_store
from services.llm import chat_model
from services.quota import chat_limits, quota_ledger
from services.title_service import title_summarizer

logger = logging.getLogger(__name__)


@dataclass
class PreparedChat:
    user_text: str
    history: List[ChatMessage] = field(default_factory=list)
    conversation_id: Optional[str] = None
    user_email: Optional[str] = None


class ChatService:
    def __init__(
        self,
        ledger=quota_ledger,
        model=chat_model,
        store=conversation_store,
        summarizer=title_summarizer,
        tasks: Optional[BackgroundTaskRegistry] = None,
    ):
        self.ledger = ledger
        self.model = model
        self.store = store
        self.summarizer = summarizer
        self.tasks = tasks or BackgroundTaskRegistry.get_instance()

    # -------------------------------------------------------------------------
    # Before streaming
    # -------------------------------------------------------------------------

    @staticmethod
    def validate(request: ChatRequest) -> ChatMessage:
        """Return the newest turn or raise InvalidInput."""
        if not request.messages:
            raise InvalidInput("No messages provided")

        last = request.messages[-1]
        if not last.content or not last.content.strip():
            raise InvalidInput("Empty message")

        if len(last.content) > settings.MAX_MESSAGE_LENGTH:
            raise InvalidInput(f"Message too long. Maximum length is {settings.MAX_MESSAGE_LENGTH} characters.")

        return last

    async def persist_user_turn(self, conversation_id: str, text: str) -> None:
        """Best effort: a storage failure here must not block the reply."""
        try:
            turn = await self.store.append_turn(conversation_id, Role.USER, text)
            if turn is None:
                logger.warning(f"Conversation {conversation_id} not found, user turn not saved")
                return

            if turn.sequence == 0 and await self.store.set_provisional_title(conversation_id, text):
                self.tasks.spawn(f"title:{conversation_id}", self.summarizer.apply(conversation_id, text))
        except Exception as e:
            logger.warning(f"Failed to save user turn for {conversation_id}: {e}")

    async def admit(self) -> None:
        """Quota check for the chat model. Counts the call as soon as it is allowed."""
        model_name = self.model.model_name
        admission = await self.ledger.check_admission(model_name, chat_limits())
        if not admission.allowed:
            raise RateLimited(retry_after=admission.retry_after or 1, reason=admission.reason)
        await self.ledger.record_request(model_name)

    async def prepare(self, request: ChatRequest, user_email: Optional[str] = None) -> PreparedChat:
        last = self.validate(request)

        if request.conversation_id:
            await self.persist_user_turn(request.conversation_id, last.content)

        await self.admit()

        return PreparedChat(
            user_text=last.content,
            history=list(request.messages[:-1]),
            conversation_id=request.conversation_id,
            user_email=user_email,
        )

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    def compose_system_prompt(self, user_text: str) -> Tuple[str, Optional[str]]:
        """Base prompt, plus the mirroring clause when the user is affectionate toward the assistant."""
        name = settings.ASSISTANT_NAME.lower()
        phrase = detect_affection(user_text, assistant_names=(f"ask-{name}", name))
        if phrase is None:
            return settings.SYSTEM_PROMPT, None

        clause = settings.AFFECTION_MIRRORING_INSTRUCTION.replace("{phrase}", phrase)
        return f"{settings.SYSTEM_PROMPT}\n\n{clause}", phrase

    async def relay(self, prepared: PreparedChat) -> AsyncIterator[str]:
        fragments: List[str] = []
        try:
            system_prompt, phrase = self.compose_system_prompt(prepared.user_text)
            if phrase:
                logger.info(f"Affection detected: {phrase!r}")

            callbacks = get_observability_callbacks(
                session_id=prepared.conversation_id, user_id=prepared.user_email, tags=["chat"]
            )
            async for fragment in self.model.stream_reply(
                system_prompt, prepared.history, prepared.user_text, callbacks=callbacks
            ):
                if not fragment:
                    continue
                fragments.append(fragment)
                yield fragment
        except Exception:
            logger.exception("Reply generation failed")
            yield settings.FALLBACK_REPLY
            return

        reply = "".join(fragments)
        if not reply:
            logger.warning("Provider returned an empty reply")
            yield settings.FALLBACK_REPLY
            return

        if prepared.conversation_id:
            await self.persist_assistant_turn(prepared.conversation_id, reply)

    async def persist_assistant_turn(self, conversation_id: str, reply: str) -> None:
        try:
            turn = await self.store.append_turn(conversation_id, Role.ASSISTANT, reply)
            if turn is None:
                logger.warning(f"Conversation {conversation_id} not found, assistant turn not saved")
        except Exception as e:
            # The user already has the streamed text
            logger.error(f"Failed to save assistant turn for {conversation_id}: {e}")


chat_service = ChatService()
