"""ctxinject Configuration Module.

This module provides centralized configuration for all ctxinject components.
All settings support environment variable overrides with CTXINJECT_ prefix.

Sections:
- context: injection behaviour (token budget, compression, auto-update,
  chunking and budgeting constants)
- providers: limits owned by the source providers (file size cap, web
  timeout and cache lifetime, git listing sizes)
- log: structlog output level and format

Usage:
    from ctxinject.config import settings

    # Access context settings
    print(settings.context.max_tokens)

    # Access provider settings
    print(settings.providers.web_timeout)
"""

from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ctxinject.context.models import SourceType

__all__ = [
    "Settings",
    "ContextSettings",
    "ProviderSettings",
    "LoggingSettings",
    "settings",
]

ScoringStrategy = Literal["similarity", "recency", "hybrid"]


class ContextSettings(BaseSettings):
    """Configuration for context injection.

    Fixed for the lifetime of a ContextManager once it is constructed.
    """

    model_config = SettingsConfigDict(env_prefix="CTXINJECT_CONTEXT__")

    enabled: bool = Field(
        default=True,
        description="When false, get_context_for_prompt returns an empty context",
    )
    max_tokens: int = Field(
        default=8000,
        description="Default total token budget for a prompt context block",
    )
    scoring_strategy: ScoringStrategy = Field(
        default="hybrid",
        description="Weighting preset used by the relevance scorer",
    )
    compression_enabled: bool = Field(
        default=True,
        description="Compress chunks that do not fit the remaining budget",
    )
    auto_update: bool = Field(
        default=True,
        description="Watch file sources and periodically refresh web sources",
    )
    update_interval: float = Field(
        default=30.0,
        description="Seconds between periodic refreshes of web sources",
    )
    include_sources: list[SourceType] = Field(
        default_factory=lambda: list(SourceType),
        description="Source types accepted at registration",
    )
    exclude_patterns: list[str] = Field(
        default_factory=lambda: ["node_modules/**", "*.log", ".git/**"],
        description="Glob patterns of file paths the file provider refuses",
    )

    # Budgeting
    reserved_tokens: int = Field(
        default=500,
        description="Headroom kept out of the budget for the system prompt",
    )
    search_limit: int = Field(
        default=50,
        description="Number of candidate chunks considered per prompt",
    )
    min_compress_tokens: int = Field(
        default=100,
        description="Chunks at or below this size are skipped, not compressed",
    )
    low_water_tokens: int = Field(
        default=50,
        description="Stop allocating once fewer tokens than this remain",
    )

    # Chunking
    chunk_size: int = Field(
        default=1000,
        description="Characters per chunk",
    )
    chunk_overlap: int = Field(
        default=100,
        description="Characters shared by consecutive chunks",
    )


class ProviderSettings(BaseSettings):
    """Limits enforced by the source providers."""

    model_config = SettingsConfigDict(env_prefix="CTXINJECT_PROVIDERS__")

    max_file_size: int = Field(
        default=1024 * 1024,
        description="Largest file (bytes) the file provider will load",
    )
    web_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for web fetches",
    )
    web_cache_ttl: float = Field(
        default=3600.0,
        description="Seconds a fetched page is served from cache",
    )
    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; ctxinject/0.1)",
        description="User-Agent header sent with web fetches",
    )
    git_tree_max_files: int = Field(
        default=100,
        description="Tracked files listed in a repository structure",
    )
    git_recent_commits: int = Field(
        default=10,
        description="Commits listed in a repository summary",
    )
    readme_max_chars: int = Field(
        default=1000,
        description="Characters of README included in a repository summary",
    )


class LoggingSettings(BaseSettings):
    """structlog output configuration."""

    model_config = SettingsConfigDict(env_prefix="CTXINJECT_LOG__")

    level: str = Field(default="INFO", description="Log level name")
    format: Literal["json", "console"] = Field(
        default="json",
        description="json for JSON lines, console for human-readable output",
    )


class Settings(BaseSettings):
    """Root settings class that composes all configuration sections.

    Example:
        from ctxinject.config import settings

        settings.context.max_tokens
        settings.providers.max_file_size
        settings.log.level
    """

    model_config = SettingsConfigDict(env_prefix="CTXINJECT_")

    context: ContextSettings = Field(default_factory=ContextSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    log: LoggingSettings = Field(default_factory=LoggingSettings)

    def model_post_init(self, context: Any) -> None:
        """Validate settings after initialization."""
        validate_context_settings(self.context)
        if self.providers.web_timeout <= 0:
            raise ValueError(
                f"web_timeout must be positive, got {self.providers.web_timeout}"
            )


def validate_context_settings(config: ContextSettings) -> None:
    """Check the invariants a ContextManager relies on.

    Raises:
        ValueError: If chunking, budgeting or refresh values are inconsistent
    """
    if config.chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {config.chunk_size}")
    if not 0 <= config.chunk_overlap < config.chunk_size:
        raise ValueError(
            f"chunk_overlap must be in [0, chunk_size), got {config.chunk_overlap}"
        )
    if config.reserved_tokens < 0:
        raise ValueError(
            f"reserved_tokens must not be negative, got {config.reserved_tokens}"
        )
    if config.update_interval <= 0:
        raise ValueError(
            f"update_interval must be positive, got {config.update_interval}"
        )


# Module-level singleton instance
settings = Settings()
