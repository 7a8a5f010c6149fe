"""ctxinject - token-budgeted context assembly for LLM prompts."""

from ctxinject.context import (
    Chunk,
    ContextManager,
    PromptContext,
    SearchQuery,
    Source,
    SourceSpec,
    SourceType,
    TokenBudget,
)

__version__ = "0.1.0"

__all__ = [
    "Chunk",
    "ContextManager",
    "PromptContext",
    "SearchQuery",
    "Source",
    "SourceSpec",
    "SourceType",
    "TokenBudget",
    "__version__",
]
