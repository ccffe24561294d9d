import logging
import string
from typing import Optional

from core.config import settings
from core.observability import get_observability_callbacks
from services.conversation_store import TITLE_MAX_LENGTH, conversation_store
from services.llm import title_model
from services.quota import quota_ledger, title_limits

logger = logging.getLogger(__name__)

QUOTE_CHARS = "\"'`“”‘’"
_STRIP_CHARS = QUOTE_CHARS + string.whitespace


def clean_title(raw: str) -> str:
    """Strip wrapping quotes and whitespace, cap at 50 characters."""
    title = (raw or "").strip(_STRIP_CHARS)
    return title[:TITLE_MAX_LENGTH].rstrip(_STRIP_CHARS)


class TitleSummarizer:
    """Replaces the provisional title of a new conversation with a short generated one."""

    def __init__(self, ledger=quota_ledger, model=title_model, store=conversation_store):
        self.ledger = ledger
        self.model = model
        self.store = store

    async def summarize(self, first_user_text: str, session_id: Optional[str] = None) -> Optional[str]:
        """Generate a title, or None when the title quota is exhausted."""
        limits = title_limits()
        admission = await self.ledger.check_admission(self.model.model_name, limits)
        if not admission.allowed:
            logger.info(f"Skipping title generation: {admission.reason} quota exhausted")
            return None
        await self.ledger.record_request(self.model.model_name)

        raw = await self.model.complete(
            settings.TITLE_GENERATOR_SYSTEM_PROMPT,
            first_user_text,
            callbacks=get_observability_callbacks(session_id=session_id, tags=["title"]),
        )
        return clean_title(raw)

    async def apply(self, conversation_id: str, first_user_text: str) -> None:
        """Summarize and store the title. Never raises."""
        try:
            title = await self.summarize(first_user_text, session_id=conversation_id)
            if title:
                await self.store.set_title(conversation_id, title)
                logger.info(f"Generated title for conversation {conversation_id}: {title!r}")
        except Exception:
            logger.exception(f"Title generation failed for conversation {conversation_id}")


title_summarizer = TitleSummarizer()
