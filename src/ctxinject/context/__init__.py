"""Context retrieval, scoring, compression and token budgeting."""

from .compression import ContextCompressor
from .events import ChangeType, ContextEvent, EventBus, EventKind
from .manager import ContextManager, generate_source_id
from .models import (
    Chunk,
    CompressionMethod,
    CompressionResult,
    ContextError,
    InvalidSourceError,
    PromptContext,
    SearchQuery,
    Source,
    SourceMetadata,
    SourceSpec,
    SourceType,
    TokenBudget,
    TokenCounts,
)
from .scoring import ContextScorer
from .watcher import FileWatcher, WatchdogFileWatcher, WatchHandle

__all__ = [
    "ChangeType",
    "Chunk",
    "CompressionMethod",
    "CompressionResult",
    "ContextCompressor",
    "ContextError",
    "ContextEvent",
    "ContextManager",
    "ContextScorer",
    "EventBus",
    "EventKind",
    "FileWatcher",
    "InvalidSourceError",
    "PromptContext",
    "SearchQuery",
    "Source",
    "SourceMetadata",
    "SourceSpec",
    "SourceType",
    "TokenBudget",
    "TokenCounts",
    "WatchHandle",
    "WatchdogFileWatcher",
    "generate_source_id",
]
