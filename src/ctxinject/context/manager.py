"""Context manager: source registry, chunk index, search and prompt budgeting."""

import asyncio
import hashlib
from types import TracebackType

import structlog

from ctxinject.config import ContextSettings, settings, validate_context_settings
from ctxinject.providers import ProviderRegistry, SourceFetchError
from ctxinject.utils.datetime import utc_now

from .budget import allocate_tokens, create_budget
from .chunking import generate_chunks
from .compression import ContextCompressor
from .events import ChangeType, ContextEvent, EventBus, EventKind
from .formatting import format_context
from .models import (
    Chunk,
    InvalidSourceError,
    PromptContext,
    SearchQuery,
    Source,
    SourceSpec,
    SourceType,
)
from .scoring import ContextScorer
from .watcher import FileWatcher, WatchdogFileWatcher, WatchHandle

logger = structlog.get_logger(__name__)

# Locator attribute each source type must provide (memory carries content)
_REQUIRED_LOCATOR = {
    SourceType.FILE: "path",
    SourceType.WEB: "url",
    SourceType.CONVERSATION: "conversation_id",
}


def generate_source_id(spec: SourceSpec) -> str:
    """Stable id derived from a source's type, name and locator."""
    digest = hashlib.sha256()
    digest.update(spec.type.value.encode())
    digest.update(spec.name.encode())
    digest.update(spec.locator.encode())
    return digest.hexdigest()[:16]


class ContextManager:
    """Assemble token-budgeted context blocks from registered sources.

    Owns the sources, their chunks and the file watches, all keyed by source
    id. All mutation happens on the event loop that drives the manager; the
    only suspension points are provider fetches.

    Usage:
        async with ContextManager() as manager:
            await manager.add_source(SourceSpec(type=SourceType.FILE, ...))
            result = manager.get_context_for_prompt("how is auth handled?")
    """

    def __init__(
        self,
        config: ContextSettings | None = None,
        providers: ProviderRegistry | None = None,
        watcher: FileWatcher | None = None,
    ) -> None:
        """
        Initialize manager.

        Args:
            config: Injection settings, fixed for the manager's lifetime
                (default: settings.context)
            providers: Provider per source type (default: ProviderRegistry.default())
            watcher: File change notifier (default: watchdog-based)
        """
        self._config = config if config is not None else settings.context
        validate_context_settings(self._config)

        self._providers = (
            providers
            if providers is not None
            else ProviderRegistry.default(
                exclude_patterns=list(self._config.exclude_patterns)
            )
        )
        self._watcher = watcher if watcher is not None else WatchdogFileWatcher()
        self._scorer = ContextScorer(self._config.scoring_strategy)
        self._compressor = ContextCompressor()
        self.events = EventBus()

        self._sources: dict[str, Source] = {}
        self._chunks: dict[str, list[Chunk]] = {}
        self._watches: dict[str, WatchHandle] = {}

        self._updates: dict[str, asyncio.Task[None]] = {}
        self._watch_tasks: set[asyncio.Task[None]] = set()
        self._auto_update_task: asyncio.Task[None] | None = None
        self._logger = logger.bind(component="context_manager")

    @property
    def config(self) -> ContextSettings:
        return self._config

    async def __aenter__(self) -> "ContextManager":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.cleanup()

    def start(self) -> None:
        """Start the periodic web refresh when auto-update is enabled.

        Must be called from a running event loop. Calling it again while
        the refresh is running has no effect.
        """
        if not self._config.auto_update:
            return
        if self._auto_update_task is not None and not self._auto_update_task.done():
            return
        self._auto_update_task = asyncio.create_task(self._auto_update_loop())
        self._logger.info(
            "auto_update_started", interval_seconds=self._config.update_interval
        )

    # ------------------------------------------------------------------
    # Source registry
    # ------------------------------------------------------------------

    async def add_source(self, spec: SourceSpec) -> Source:
        """
        Register a source and process its content.

        The source is registered before its first fetch. If the fetch fails
        the error propagates and the source stays registered without
        content, chunks, watch or ``source:added`` event; ``update_source``
        can retry it later. Registering the same type, name and locator
        again replaces the record under the existing id, dropping its
        previous chunks before the new fetch.

        Args:
            spec: Registration payload

        Returns:
            The registered source

        Raises:
            InvalidSourceError: If the payload is missing its locator, has
                an out-of-range priority or its type is not included
            SourceFetchError: If the provider cannot fetch the content
        """
        self._validate_spec(spec)
        source_id = generate_source_id(spec)

        self._close_watch(source_id)
        self._chunks.pop(source_id, None)
        # An update still running for a replaced record is discarded when done
        self._updates.pop(source_id, None)
        source = Source(
            id=source_id,
            type=spec.type,
            name=spec.name,
            path=spec.path,
            url=spec.url,
            conversation_id=spec.conversation_id,
            content=spec.content,
            last_updated=utc_now(),
            is_active=spec.is_active,
            priority=spec.priority,
        )
        self._sources[source_id] = source

        if not await self._process_source(source):
            return source

        self._ensure_watch(source)
        self._publish(EventKind.SOURCE_ADDED, source, ChangeType.ADD)
        self._logger.info(
            "source_added",
            source_id=source_id,
            source_type=source.type.value,
            name=source.name,
            chunks=len(self._chunks.get(source_id, [])),
        )
        return source

    async def remove_source(self, source_id: str) -> None:
        """Unregister a source, closing its watch and dropping its chunks.

        Unknown ids are ignored.
        """
        source = self._sources.get(source_id)
        if source is None:
            return

        self._close_watch(source_id)
        del self._sources[source_id]
        self._chunks.pop(source_id, None)

        self._publish(EventKind.SOURCE_REMOVED, source, ChangeType.REMOVE)
        self._logger.info("source_removed", source_id=source_id)

    async def update_source(self, source_id: str) -> None:
        """
        Re-fetch a source and regenerate its chunks.

        Unknown ids are ignored. A call made while an update of the same
        source is still in flight waits for that update instead of starting
        another one.

        Raises:
            SourceFetchError: If the provider cannot fetch the content
        """
        source = self._sources.get(source_id)
        if source is None:
            return

        task = self._updates.get(source_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh_source(source))
            self._updates[source_id] = task

            def _forget(done: asyncio.Task[None]) -> None:
                if self._updates.get(source_id) is done:
                    del self._updates[source_id]

            task.add_done_callback(_forget)
        else:
            self._logger.debug("source_update_joined", source_id=source_id)

        await asyncio.shield(task)

    def get_source(self, source_id: str) -> Source | None:
        """Return a registered source, or None."""
        return self._sources.get(source_id)

    def list_sources(self) -> list[Source]:
        """Registered sources in registration order."""
        return list(self._sources.values())

    def get_chunks(self, source_id: str) -> list[Chunk]:
        """Current chunks of a source (empty if unprocessed or unknown)."""
        return list(self._chunks.get(source_id, []))

    def _validate_spec(self, spec: SourceSpec) -> None:
        if spec.type not in self._config.include_sources:
            raise InvalidSourceError(
                spec.name, f"source type '{spec.type.value}' is not included"
            )
        if not 0 <= spec.priority <= 100:
            raise InvalidSourceError(
                spec.name, f"priority must be in [0, 100], got {spec.priority}"
            )
        locator = _REQUIRED_LOCATOR.get(spec.type)
        if locator is not None and not getattr(spec, locator):
            raise InvalidSourceError(
                spec.name, f"{spec.type.value} sources require '{locator}'"
            )

    async def _refresh_source(self, source: Source) -> None:
        if not await self._process_source(source):
            return
        self._ensure_watch(source)
        source.last_updated = utc_now()
        self._publish(EventKind.SOURCE_UPDATED, source, ChangeType.UPDATE)
        self._logger.debug("source_updated", source_id=source.id)

    async def _process_source(self, source: Source) -> bool:
        """Fetch content and regenerate chunks.

        Returns:
            False if the source was removed or replaced during the fetch
        """
        provider = self._providers.get(source.type)
        result = await provider.fetch(source)

        if self._sources.get(source.id) is not source:
            self._logger.debug("source_fetch_discarded", source_id=source.id)
            return False

        if not result.content:
            self._logger.debug("source_empty", source_id=source.id)
            return True

        source.content = result.content
        source.metadata = source.metadata.merged(result.metadata)
        self._chunks[source.id] = generate_chunks(
            source.id,
            result.content,
            chunk_size=self._config.chunk_size,
            overlap=self._config.chunk_overlap,
        )
        return True

    # ------------------------------------------------------------------
    # Watching and periodic refresh
    # ------------------------------------------------------------------

    def _ensure_watch(self, source: Source) -> None:
        """Watch a file source once it has been fetched, if auto-update is on."""
        if (
            source.type is SourceType.FILE
            and source.path
            and self._config.auto_update
            and source.id not in self._watches
        ):
            self._watch_file(source.id, source.path)

    def _watch_file(self, source_id: str, path: str) -> None:
        def on_change() -> None:
            task = asyncio.ensure_future(self._on_file_change(source_id))
            self._watch_tasks.add(task)
            task.add_done_callback(self._watch_tasks.discard)

        self._watches[source_id] = self._watcher.watch(path, on_change)

    async def _on_file_change(self, source_id: str) -> None:
        try:
            await self.update_source(source_id)
        except Exception:
            self._logger.exception("file_change_update_failed", source_id=source_id)
            return

        source = self._sources.get(source_id)
        if source is not None:
            self._publish(EventKind.CONTEXT_UPDATE, source, ChangeType.UPDATE)

    def _close_watch(self, source_id: str) -> None:
        handle = self._watches.pop(source_id, None)
        if handle is not None:
            handle.close()

    async def _auto_update_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.update_interval)
            await self.refresh_web_sources()

    async def refresh_web_sources(self) -> None:
        """Re-fetch every active web source.

        Failures are logged per source and do not stop the others.
        """
        for source in list(self._sources.values()):
            if source.type is not SourceType.WEB or not source.is_active:
                continue
            try:
                await self.update_source(source.id)
            except SourceFetchError as e:
                self._logger.warning(
                    "source_refresh_failed", source_id=source.id, error=str(e)
                )
            except Exception:
                self._logger.exception("source_refresh_failed", source_id=source.id)

    # ------------------------------------------------------------------
    # Search and budgeting
    # ------------------------------------------------------------------

    def search(self, query: SearchQuery | str) -> list[Chunk]:
        """
        Score chunks of active sources against a query.

        Args:
            query: SearchQuery, or a bare query string with no filters

        Returns:
            Scored chunk copies, highest score first, after the optional
            source/type filters, minimum score and limit
        """
        if isinstance(query, str):
            query = SearchQuery(query=query)

        candidates: list[Chunk] = []
        for source_id, source_chunks in self._chunks.items():
            source = self._sources.get(source_id)
            if source is None or not source.is_active:
                continue
            if query.sources and source_id not in query.sources:
                continue
            if query.types and source.type not in query.types:
                continue
            candidates.extend(source_chunks)

        scored = self._scorer.score_chunks(candidates, query.query)

        if query.min_score:
            scored = [chunk for chunk in scored if chunk.score >= query.min_score]

        results = sorted(scored, key=lambda chunk: chunk.score, reverse=True)
        if query.limit:
            results = results[: query.limit]

        self._logger.debug(
            "search_complete",
            candidates=len(candidates),
            results=len(results),
        )
        return results

    def get_context_for_prompt(
        self,
        query: str,
        max_tokens: int | None = None,
    ) -> PromptContext:
        """
        Build a context block for a prompt within a token budget.

        Reserves headroom for the system prompt, ranks up to ``search_limit``
        candidate chunks, greedily accepts those that fit (compressing
        oversized ones when enabled) and formats the result grouped by
        source.

        Args:
            query: Free-text query describing the needed context
            max_tokens: Total budget (default: config.max_tokens)

        Returns:
            PromptContext with formatted text, accepted chunks and budget
        """
        total = max_tokens or self._config.max_tokens
        budget = create_budget(total, self._config.reserved_tokens)

        if not self._config.enabled:
            return PromptContext(context="", chunks=[], budget=budget)

        candidates = self.search(
            SearchQuery(query=query, limit=self._config.search_limit)
        )
        selected = allocate_tokens(
            candidates,
            budget,
            compressor=self._compressor if self._config.compression_enabled else None,
            min_compress_tokens=self._config.min_compress_tokens,
            low_water_mark=self._config.low_water_tokens,
        )
        context = format_context(selected, self._sources)

        self._logger.info(
            "context_assembled",
            candidates=len(candidates),
            selected=len(selected),
            budget_total=budget.total,
            budget_used=budget.used,
            sources=len(budget.allocation),
        )
        return PromptContext(context=context, chunks=selected, budget=budget)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def cleanup(self) -> None:
        """Stop the refresh task, close all watches and clear all state.

        Intended to be called once at shutdown.
        """
        if self._auto_update_task is not None:
            self._auto_update_task.cancel()
            try:
                await self._auto_update_task
            except asyncio.CancelledError:
                pass
            except Exception:
                self._logger.exception("auto_update_task_failed")
            self._auto_update_task = None

        for task in [*self._watch_tasks, *self._updates.values()]:
            task.cancel()
        self._watch_tasks.clear()
        self._updates.clear()

        for handle in self._watches.values():
            handle.close()

        self._watches.clear()
        self._sources.clear()
        self._chunks.clear()
        self._logger.info("context_manager_cleaned_up")

    def _publish(self, kind: EventKind, source: Source, change: ChangeType) -> None:
        self.events.publish(
            ContextEvent(
                kind=kind,
                source_id=source.id,
                source_type=source.type,
                change=change,
            )
        )
