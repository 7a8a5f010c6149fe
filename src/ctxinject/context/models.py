"""Data models for context injection."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ctxinject.utils.datetime import serialize_datetime


class SourceType(str, Enum):
    """Kind of origin a source's content is fetched from."""

    FILE = "file"
    WEB = "web"
    GIT = "git"
    CONVERSATION = "conversation"
    MEMORY = "memory"


class CompressionMethod(str, Enum):
    """Strategy that produced a compression result."""

    EXTRACTION = "extraction"
    SUMMARY = "summary"
    TRUNCATION = "truncation"


@dataclass
class SourceMetadata:
    """Metadata gathered while fetching a source.

    Every field is optional; providers fill in what they know and the
    manager merges the non-empty fields into the source's metadata.
    """

    mime_type: str | None = None
    language: str | None = None  # Programming language for code files
    encoding: str | None = None
    size: int | None = None  # Bytes
    hash: str | None = None  # sha256 of the raw content
    git_branch: str | None = None
    git_commit: str | None = None
    web_last_crawled: datetime | None = None
    tokens: int | None = None
    summary: str | None = None

    def merged(self, update: "SourceMetadata") -> "SourceMetadata":
        """Return a copy with every field set in ``update`` overriding ours."""
        values = {
            name: value
            for name, value in update.__dict__.items()
            if value is not None
        }
        return SourceMetadata(**{**self.__dict__, **values})

    def to_dict(self) -> dict[str, Any]:
        """Serialize the fields that are set."""
        result: dict[str, Any] = {}
        for name, value in self.__dict__.items():
            if value is None:
                continue
            if isinstance(value, datetime):
                value = serialize_datetime(value)
            result[name] = value
        return result


@dataclass
class SourceSpec:
    """Registration payload for a new source.

    Exactly one locator is used depending on ``type``: ``path`` for file and
    git sources, ``url`` for web sources, ``conversation_id`` for
    conversations. Memory sources carry their text inline in ``content``.
    """

    type: SourceType
    name: str
    path: str | None = None
    url: str | None = None
    conversation_id: str | None = None
    content: str | None = None
    is_active: bool = True
    priority: int = 50  # 0-100, higher = more important

    @property
    def locator(self) -> str:
        """The locator string identifying where content comes from."""
        return self.path or self.url or self.conversation_id or ""


@dataclass
class Source:
    """A registered origin of content."""

    id: str
    type: SourceType
    name: str
    path: str | None = None
    url: str | None = None
    conversation_id: str | None = None
    content: str | None = None
    metadata: SourceMetadata = field(default_factory=SourceMetadata)
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_active: bool = True
    priority: int = 50

    @property
    def has_content(self) -> bool:
        """True once a fetch has produced content for this source."""
        return bool(self.content)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for callers that exchange sources as plain data."""
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "path": self.path,
            "url": self.url,
            "conversation_id": self.conversation_id,
            "metadata": self.metadata.to_dict(),
            "last_updated": serialize_datetime(self.last_updated),
            "is_active": self.is_active,
            "priority": self.priority,
        }


@dataclass
class Chunk:
    """A bounded slice of a source's content; the unit scored and selected."""

    id: str
    source_id: str
    content: str
    score: float = 0.0  # Last computed relevance (0-100)
    tokens: int = 0  # Estimated token count of content
    start_line: int | None = None
    end_line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the prompt-assembly caller."""
        return {
            "id": self.id,
            "source_id": self.source_id,
            "content": self.content,
            "score": self.score,
            "tokens": self.tokens,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


@dataclass
class TokenBudget:
    """Token accounting for one prompt context block.

    Invariant: ``used == sum(allocation.values())`` and ``used <= available``.
    """

    total: int
    reserved: int
    available: int
    used: int = 0
    allocation: dict[str, int] = field(default_factory=dict)  # source id -> tokens

    @property
    def remaining(self) -> int:
        """Tokens still allocatable."""
        return self.available - self.used

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the shape returned to the LLM orchestrator."""
        return {
            "total": self.total,
            "used": self.used,
            "reserved": self.reserved,
            "available": self.available,
            "allocation": dict(self.allocation),
        }


@dataclass
class TokenCounts:
    """Token estimates before and after compression."""

    before: int
    after: int


@dataclass
class CompressionResult:
    """Outcome of compressing a piece of text towards a token target."""

    original: str
    compressed: str
    ratio: float  # len(compressed) / len(original)
    tokens: TokenCounts
    method: CompressionMethod


@dataclass
class SearchQuery:
    """Chunk search request."""

    query: str
    sources: list[str] | None = None  # Source ids to restrict to
    types: list[SourceType] | None = None
    limit: int | None = None
    min_score: float | None = None


@dataclass
class PromptContext:
    """Formatted context block ready for injection into a prompt."""

    context: str  # Markdown, grouped by source
    chunks: list[Chunk]  # Accepted chunks (possibly compressed)
    budget: TokenBudget

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the shape returned to the LLM orchestrator."""
        return {
            "context": self.context,
            "chunks": [chunk.to_dict() for chunk in self.chunks],
            "budget": self.budget.to_dict(),
        }


class ContextError(Exception):
    """Base exception for context injection."""

    pass


class InvalidSourceError(ContextError):
    """Raised when a source registration payload cannot be accepted."""

    def __init__(self, name: str, reason: str):
        """
        Initialize error with the offending source name and the reason.

        Args:
            name: Name given in the registration payload
            reason: Why the payload was rejected
        """
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid source '{name}': {reason}")
