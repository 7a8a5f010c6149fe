"""Base classes, result type and errors for source providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ctxinject.context.models import Source, SourceMetadata, SourceType

# Error classes


class SourceFetchError(Exception):
    """Base exception for failures fetching a source's content."""

    pass


class UnsupportedSourceError(SourceFetchError):
    """No provider is registered for the source type."""

    pass


class SourceNotFoundError(SourceFetchError):
    """The locator does not point at readable content."""

    pass


class FileTooLargeError(SourceFetchError):
    """File exceeds the provider's size cap."""

    def __init__(self, path: str, size: int, limit: int) -> None:
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(f"File too large: {path} ({size} bytes, limit {limit})")


class UnsupportedFileTypeError(SourceFetchError):
    """File extension is not one the provider can read."""

    pass


class ExcludedPathError(SourceFetchError):
    """File path matches one of the configured exclude patterns."""

    pass


class WebFetchError(SourceFetchError):
    """Network error, timeout or non-success HTTP status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RepositoryNotFoundError(SourceFetchError):
    """Repository path is not a valid git repository."""

    pass


class ConversationNotFoundError(SourceFetchError):
    """No stored conversation has the requested id."""

    pass


# Data classes


@dataclass
class FetchResult:
    """Raw text and partial metadata produced by a provider."""

    content: str
    metadata: SourceMetadata = field(default_factory=SourceMetadata)


# Abstract interfaces


class SourceProvider(ABC):
    """Adapter turning a source's locator into text plus metadata.

    Each implementation owns its own limits (size caps, timeouts, caching).
    """

    source_type: SourceType

    @abstractmethod
    async def fetch(self, source: Source) -> FetchResult:
        """Fetch the current content of a source.

        Args:
            source: Registered source; the provider reads its locator

        Returns:
            FetchResult with the processed content and metadata

        Raises:
            SourceFetchError: If the content cannot be fetched
        """
        pass
