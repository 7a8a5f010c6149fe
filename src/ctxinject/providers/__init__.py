"""Source providers: adapters from a locator to text plus metadata."""

from .base import (
    ConversationNotFoundError,
    ExcludedPathError,
    FetchResult,
    FileTooLargeError,
    RepositoryNotFoundError,
    SourceFetchError,
    SourceNotFoundError,
    SourceProvider,
    UnsupportedFileTypeError,
    UnsupportedSourceError,
    WebFetchError,
)
from .conversation import (
    Conversation,
    ConversationProvider,
    ConversationStore,
    InMemoryConversationStore,
    MemoryProvider,
)
from .file import FileProvider
from .git import GitProvider
from .registry import ProviderRegistry
from .web import WebProvider

__all__ = [
    "Conversation",
    "ConversationNotFoundError",
    "ConversationProvider",
    "ConversationStore",
    "ExcludedPathError",
    "FetchResult",
    "FileProvider",
    "FileTooLargeError",
    "GitProvider",
    "InMemoryConversationStore",
    "MemoryProvider",
    "ProviderRegistry",
    "RepositoryNotFoundError",
    "SourceFetchError",
    "SourceNotFoundError",
    "SourceProvider",
    "UnsupportedFileTypeError",
    "UnsupportedSourceError",
    "WebFetchError",
    "WebProvider",
]
