import logging
from typing import Any, AsyncIterator, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from core.config import settings
from models.conversations import ChatMessage, Role

logger = logging.getLogger(__name__)


def to_provider_message(role: Role, content: str) -> BaseMessage:
    """Map an internal speaker role onto the provider's message type."""
    if role == Role.USER:
        return HumanMessage(content=content)
    if role == Role.ASSISTANT:
        return AIMessage(content=content)
    raise ValueError(f"Unknown role: {role!r}")


def _chunk_text(chunk: Any) -> str:
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    # Some providers stream content blocks instead of plain strings
    if isinstance(content, list):
        return "".join(block.get("text", "") if isinstance(block, dict) else str(block) for block in content)
    return ""


class ChatModelClient:
    """Thin wrapper over an OpenAI-compatible chat model."""

    def __init__(self, model: str, temperature: float = 0.7, max_tokens: Optional[int] = None):
        self.model_name = model
        self.client = ChatOpenAI(
            model=model,
            base_url=settings.OPENAI_API_BASE,
            api_key=settings.OPENAI_API_KEY,
            temperature=temperature,
            max_tokens=max_tokens,
            streaming=True,
        )

    @staticmethod
    def build_messages(system_prompt: str, history: Sequence[ChatMessage], user_text: str) -> List[BaseMessage]:
        messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
        messages.extend(to_provider_message(turn.role, turn.content) for turn in history)
        messages.append(HumanMessage(content=user_text))
        return messages

    async def stream_reply(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        user_text: str,
        callbacks: Optional[List[Any]] = None,
    ) -> AsyncIterator[str]:
        """Yield reply fragments in generation order."""
        messages = self.build_messages(system_prompt, history, user_text)
        config = {"callbacks": callbacks} if callbacks else None
        async for chunk in self.client.astream(messages, config=config):
            yield _chunk_text(chunk)

    async def complete(self, system_prompt: str, user_text: str, callbacks: Optional[List[Any]] = None) -> str:
        messages = self.build_messages(system_prompt, [], user_text)
        config = {"callbacks": callbacks} if callbacks else None
        response = await self.client.ainvoke(messages, config=config)
        return _chunk_text(response)


chat_model = ChatModelClient(settings.OPENAI_MODEL_NAME)
title_model = ChatModelClient(settings.OPENAI_TITLE_MODEL_NAME, temperature=0.2, max_tokens=32)
