import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

# Langfuse v3 imports
from langfuse import Langfuse
from langfuse.langchain import CallbackHandler

from core.config import settings

logger = logging.getLogger(__name__)


class ChatCallbackHandler(CallbackHandler):
    """
    Langfuse CallbackHandler that tags root runs with session, user and tags.

    Langfuse v3 takes these through ``langfuse_*`` metadata keys on each
    callback event rather than constructor arguments.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        **kwargs,
    ):
        self._session_id = session_id
        self._user_id = user_id
        self._tags = tags or []
        super().__init__(**kwargs)

    def _inject_metadata(self, metadata: Optional[Dict[str, Any]], parent_run_id: Optional[UUID]) -> Dict[str, Any]:
        if parent_run_id is not None:
            return metadata or {}

        metadata = metadata or {}
        if self._session_id:
            metadata["langfuse_session_id"] = self._session_id
        if self._user_id:
            metadata["langfuse_user_id"] = self._user_id
        if self._tags:
            metadata["langfuse_tags"] = list(set(metadata.get("langfuse_tags", []) + self._tags))
        return metadata

    def on_chat_model_start(
        self,
        serialized: Optional[Dict[str, Any]],
        messages: List[List[Any]],
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Any:
        metadata = self._inject_metadata(metadata, parent_run_id)
        return super().on_chat_model_start(
            serialized, messages, run_id=run_id, parent_run_id=parent_run_id, tags=tags, metadata=metadata, **kwargs
        )


def get_observability_callbacks(
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> List[CallbackHandler]:
    """Callbacks for one provider call. Empty when Langfuse is not configured."""
    if not settings.langfuse_enabled:
        return []
    get_langfuse_client()
    return [
        ChatCallbackHandler(
            session_id=session_id,
            user_id=user_id,
            tags=tags,
            public_key=settings.LANGFUSE_PUBLIC_KEY,
        )
    ]


# --- GLOBAL SHUTDOWN HANDLING ---

_langfuse_client: Optional[Langfuse] = None


def get_langfuse_client() -> Langfuse:
    """Singleton accessor for the Langfuse client instance."""
    global _langfuse_client
    if _langfuse_client is None:
        _langfuse_client = Langfuse(
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
            host=settings.LANGFUSE_HOST,
        )
        logger.info(f"Langfuse client initialized with host: {settings.LANGFUSE_HOST or 'default'}")
    return _langfuse_client


def shutdown_langfuse():
    """Flush buffered traces. Called on application shutdown."""
    if _langfuse_client:
        logger.info("Flushing Langfuse traces...")
        _langfuse_client.flush()
