"""Lookup of the provider responsible for each source type."""

from ctxinject.context.models import SourceType

from .base import SourceProvider, UnsupportedSourceError
from .conversation import (
    ConversationProvider,
    ConversationStore,
    InMemoryConversationStore,
    MemoryProvider,
)
from .file import FileProvider
from .git import GitProvider
from .web import WebProvider


class ProviderRegistry:
    """Maps source types to providers."""

    def __init__(self, providers: list[SourceProvider] | None = None) -> None:
        self._providers: dict[SourceType, SourceProvider] = {}
        for provider in providers or []:
            self.register(provider)

    @classmethod
    def default(
        cls,
        conversation_store: ConversationStore | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> "ProviderRegistry":
        """
        Build a registry with one provider per source type.

        Args:
            conversation_store: Where conversations are read from; an empty
                in-memory store is used when omitted
            exclude_patterns: Glob patterns the file provider refuses
                (default: settings.context.exclude_patterns)
        """
        return cls([
            FileProvider(exclude_patterns=exclude_patterns),
            WebProvider(),
            GitProvider(),
            ConversationProvider(conversation_store or InMemoryConversationStore()),
            MemoryProvider(),
        ])

    def register(self, provider: SourceProvider) -> None:
        """Register (or replace) the provider for its source type."""
        self._providers[provider.source_type] = provider

    def get(self, source_type: SourceType) -> SourceProvider:
        """
        Return the provider for a source type.

        Raises:
            UnsupportedSourceError: If no provider handles the type
        """
        provider = self._providers.get(source_type)
        if provider is None:
            raise UnsupportedSourceError(
                f"No provider registered for source type '{source_type.value}'"
            )
        return provider
