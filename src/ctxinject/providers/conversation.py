"""Conversation and inline-memory providers.

Conversations are owned by the persistence layer; this module only depends
on the ConversationStore interface and ships an in-memory store for
development and tests.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

from ctxinject.context.models import Source, SourceMetadata, SourceType
from ctxinject.context.tokens import estimate_tokens

from .base import (
    ConversationNotFoundError,
    FetchResult,
    SourceNotFoundError,
    SourceProvider,
)

logger = structlog.get_logger(__name__)


@dataclass
class Conversation:
    """A stored conversation."""

    id: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    title: str | None = None


class ConversationStore(ABC):
    """Read access to persisted conversations."""

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Return the conversation, or None if it does not exist."""
        pass


class InMemoryConversationStore(ConversationStore):
    """Dict-backed conversation store."""

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    def add(self, conversation: Conversation) -> None:
        """Insert or replace a conversation."""
        self._conversations[conversation.id] = conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)


class ConversationProvider(SourceProvider):
    """Render a stored conversation's messages as JSON text."""

    source_type = SourceType.CONVERSATION

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    async def fetch(self, source: Source) -> FetchResult:
        """Load a conversation source.

        Raises:
            SourceNotFoundError: If the source has no conversation id
            ConversationNotFoundError: If the store has no such conversation
        """
        if not source.conversation_id:
            raise SourceNotFoundError(
                f"Conversation source '{source.name}' has no conversation_id"
            )

        conversation = await self._store.get_conversation(source.conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(
                f"Conversation not found: {source.conversation_id}"
            )

        content = json.dumps(conversation.messages, default=str)
        logger.debug(
            "conversation_loaded",
            conversation_id=source.conversation_id,
            messages=len(conversation.messages),
        )
        return FetchResult(
            content=content,
            metadata=SourceMetadata(
                mime_type="application/json",
                tokens=estimate_tokens(content),
            ),
        )


class MemoryProvider(SourceProvider):
    """Serve the inline content a memory source was registered with."""

    source_type = SourceType.MEMORY

    async def fetch(self, source: Source) -> FetchResult:
        content = source.content or ""
        return FetchResult(
            content=content,
            metadata=SourceMetadata(tokens=estimate_tokens(content)),
        )
