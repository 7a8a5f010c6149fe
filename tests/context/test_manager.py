"""Tests for ContextManager."""

import asyncio

import pytest

from ctxinject.config import ContextSettings
from ctxinject.context.events import ContextEvent, EventKind
from ctxinject.context.manager import ContextManager, generate_source_id
from ctxinject.context.models import (
    InvalidSourceError,
    SearchQuery,
    Source,
    SourceMetadata,
    SourceSpec,
    SourceType,
)
from ctxinject.context.tokens import estimate_tokens
from ctxinject.context.watcher import ChangeCallback, FileWatcher, WatchHandle
from ctxinject.providers import (
    FetchResult,
    MemoryProvider,
    ProviderRegistry,
    SourceFetchError,
    SourceProvider,
)

PASSAGE = (
    "Caching layers reduce latency by storing recent responses in memory. "
    "Each cache entry records the time it was created and its size. "
    "Entries older than the configured lifetime are evicted on access. "
    "Large responses are compressed before they are written to the store. "
    "The eviction policy prefers removing entries that are rarely read. "
    "Metrics about hits and misses are exported every minute. "
    "Operators can tune the lifetime through environment variables. "
    "A warm cache usually serves most requests without touching the database. "
    "Cold starts are slower because the cache begins empty. "
    "Careful sizing keeps memory usage predictable under heavy load. "
)


class FakeProvider(SourceProvider):
    """Provider serving canned content per locator.

    ``failing`` locators raise SourceFetchError and ``crashing`` locators raise
    ValueError; setting ``gate`` holds every fetch until the event is set.
    """

    def __init__(self, source_type: SourceType, default_content: str = "") -> None:
        self.source_type = source_type
        self.default_content = default_content
        self.contents: dict[str, str] = {}
        self.failing: set[str] = set()
        self.crashing: set[str] = set()
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None

    async def fetch(self, source: Source) -> FetchResult:
        locator = source.path or source.url or ""
        self.calls.append(locator)
        if self.gate is not None:
            await self.gate.wait()
        if locator in self.failing:
            raise SourceFetchError(f"Cannot fetch {locator}")
        if locator in self.crashing:
            raise ValueError(f"Invalid URL {locator}")
        content = self.contents.get(locator, self.default_content)
        return FetchResult(
            content=content,
            metadata=SourceMetadata(tokens=estimate_tokens(content)),
        )


class ManualWatchHandle(WatchHandle):
    """Handle recording whether it was closed."""

    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class ManualFileWatcher(FileWatcher):
    """Watcher whose change notifications are triggered by the test."""

    def __init__(self) -> None:
        self.watches: dict[str, tuple[ChangeCallback, ManualWatchHandle]] = {}

    def watch(self, path: str, on_change: ChangeCallback) -> WatchHandle:
        handle = ManualWatchHandle()
        self.watches[path] = (on_change, handle)
        return handle

    def trigger(self, path: str) -> None:
        on_change, handle = self.watches[path]
        if not handle.closed:
            on_change()


@pytest.fixture
def file_provider() -> FakeProvider:
    """Fake provider for file sources."""
    return FakeProvider(SourceType.FILE, default_content="File content about caching.")


@pytest.fixture
def web_provider() -> FakeProvider:
    """Fake provider for web sources."""
    return FakeProvider(SourceType.WEB, default_content="Web page about caching.")


@pytest.fixture
def watcher() -> ManualFileWatcher:
    """Manually triggered file watcher."""
    return ManualFileWatcher()


@pytest.fixture
def providers(
    file_provider: FakeProvider,
    web_provider: FakeProvider,
) -> ProviderRegistry:
    """Registry with fake file and web providers and the real memory provider."""
    return ProviderRegistry([file_provider, web_provider, MemoryProvider()])


@pytest.fixture
def manager(
    context_config: ContextSettings,
    providers: ProviderRegistry,
    watcher: ManualFileWatcher,
) -> ContextManager:
    """Manager without periodic refresh."""
    return ContextManager(config=context_config, providers=providers, watcher=watcher)


@pytest.fixture
def watching_manager(
    context_config: ContextSettings,
    providers: ProviderRegistry,
    watcher: ManualFileWatcher,
) -> ContextManager:
    """Manager that watches file sources."""
    config = context_config.model_copy(update={"auto_update": True})
    return ContextManager(config=config, providers=providers, watcher=watcher)


def record_events(manager: ContextManager) -> list[ContextEvent]:
    """Collect every event the manager publishes."""
    events: list[ContextEvent] = []
    for kind in EventKind:
        manager.events.subscribe(kind, events.append)
    return events


def memory_spec(name: str, content: str, **kwargs: object) -> SourceSpec:
    """Registration payload for an inline memory source."""
    return SourceSpec(type=SourceType.MEMORY, name=name, content=content, **kwargs)


def manager_chunk_contents(manager: ContextManager, source_id: str) -> list[str]:
    """Content of each chunk of a source."""
    return [chunk.content for chunk in manager.get_chunks(source_id)]


def test_generate_source_id_is_stable() -> None:
    """Test ids depend only on type, name and locator."""
    spec = SourceSpec(type=SourceType.FILE, name="notes", path="/tmp/notes.md")
    same = SourceSpec(type=SourceType.FILE, name="notes", path="/tmp/notes.md")
    other = SourceSpec(type=SourceType.FILE, name="other", path="/tmp/notes.md")

    assert generate_source_id(spec) == generate_source_id(same)
    assert generate_source_id(spec) != generate_source_id(other)
    assert len(generate_source_id(spec)) == 16


def test_invalid_config_rejected(providers: ProviderRegistry) -> None:
    """Test inconsistent chunking settings are rejected at construction."""
    config = ContextSettings(chunk_size=100, chunk_overlap=100, auto_update=False)

    with pytest.raises(ValueError, match="chunk_overlap"):
        ContextManager(config=config, providers=providers)


@pytest.mark.asyncio
async def test_add_memory_source(manager: ContextManager) -> None:
    """Test adding a source fetches content, chunks it and notifies."""
    events = record_events(manager)
    spec = memory_spec("notes", "Caching layers reduce latency.")

    source = await manager.add_source(spec)

    assert source.id == generate_source_id(spec)
    assert manager.get_source(source.id) is source
    assert source.has_content
    assert source.metadata.tokens == estimate_tokens("Caching layers reduce latency.")

    chunks = manager.get_chunks(source.id)
    assert len(chunks) == 1
    assert chunks[0].id == f"{source.id}-0"
    assert chunks[0].content == "Caching layers reduce latency."

    assert [event.kind for event in events] == [EventKind.SOURCE_ADDED]
    assert events[0].source_id == source.id
    assert events[0].to_dict()["type"] == "add"


@pytest.mark.asyncio
async def test_add_source_chunks_long_content(manager: ContextManager) -> None:
    """Test long content is split into overlapping chunks."""
    source = await manager.add_source(memory_spec("long", "x" * 2500))

    chunks = manager.get_chunks(source.id)
    assert [chunk.id for chunk in chunks] == [
        f"{source.id}-0",
        f"{source.id}-900",
        f"{source.id}-1800",
    ]


@pytest.mark.asyncio
async def test_add_source_twice_reuses_id(
    watching_manager: ContextManager,
    file_provider: FakeProvider,
    watcher: ManualFileWatcher,
) -> None:
    """Test re-registering a source replaces it under the same id."""
    spec = SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
    first = await watching_manager.add_source(spec)
    _, first_handle = watcher.watches["/repo/notes.md"]

    file_provider.contents["/repo/notes.md"] = "Changed content."
    second = await watching_manager.add_source(spec)

    assert second.id == first.id
    assert len(watching_manager.list_sources()) == 1
    assert second.content == "Changed content."
    assert first_handle.closed
    _, second_handle = watcher.watches["/repo/notes.md"]
    assert not second_handle.closed


@pytest.mark.asyncio
async def test_add_source_rejects_excluded_type(
    context_config: ContextSettings,
    providers: ProviderRegistry,
) -> None:
    """Test source types outside include_sources are refused."""
    config = context_config.model_copy(update={"include_sources": [SourceType.MEMORY]})
    manager = ContextManager(config=config, providers=providers)

    with pytest.raises(InvalidSourceError, match="not included"):
        await manager.add_source(
            SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
        )
    assert manager.list_sources() == []


@pytest.mark.asyncio
async def test_add_source_requires_locator(manager: ContextManager) -> None:
    """Test file, web and conversation sources need their locator."""
    for source_type in (SourceType.FILE, SourceType.WEB, SourceType.CONVERSATION):
        with pytest.raises(InvalidSourceError):
            await manager.add_source(SourceSpec(type=source_type, name="missing"))
    assert manager.list_sources() == []


@pytest.mark.asyncio
async def test_add_source_rejects_out_of_range_priority(
    manager: ContextManager,
) -> None:
    """Test priority must be within 0-100."""
    with pytest.raises(InvalidSourceError, match="priority"):
        await manager.add_source(memory_spec("notes", "text", priority=101))


@pytest.mark.asyncio
async def test_failed_fetch_leaves_source_registered(
    manager: ContextManager,
    file_provider: FakeProvider,
    watcher: ManualFileWatcher,
) -> None:
    """Test a failed first fetch propagates and can be retried with update."""
    events = record_events(manager)
    file_provider.failing.add("/repo/broken.md")
    spec = SourceSpec(type=SourceType.FILE, name="broken", path="/repo/broken.md")

    with pytest.raises(SourceFetchError):
        await manager.add_source(spec)

    source_id = generate_source_id(spec)
    source = manager.get_source(source_id)
    assert source is not None
    assert not source.has_content
    assert manager.get_chunks(source_id) == []
    assert events == []
    assert watcher.watches == {}

    file_provider.failing.clear()
    await manager.update_source(source_id)

    assert source.has_content
    assert len(manager.get_chunks(source_id)) == 1


@pytest.mark.asyncio
async def test_retried_file_source_is_watched(
    watching_manager: ContextManager,
    file_provider: FakeProvider,
    watcher: ManualFileWatcher,
) -> None:
    """Test a file source is watched once a retry after a failed add succeeds."""
    file_provider.failing.add("/repo/broken.md")
    spec = SourceSpec(type=SourceType.FILE, name="broken", path="/repo/broken.md")

    with pytest.raises(SourceFetchError):
        await watching_manager.add_source(spec)
    assert watcher.watches == {}

    file_provider.failing.clear()
    await watching_manager.update_source(generate_source_id(spec))
    _, handle = watcher.watches["/repo/broken.md"]

    await watching_manager.update_source(generate_source_id(spec))

    assert watcher.watches["/repo/broken.md"][1] is handle
    assert not handle.closed


@pytest.mark.asyncio
async def test_failed_re_add_drops_previous_chunks(
    manager: ContextManager,
    file_provider: FakeProvider,
) -> None:
    """Test re-adding a source whose fetch now fails leaves no stale chunks."""
    spec = SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
    source = await manager.add_source(spec)
    assert manager.search("caching")

    file_provider.failing.add("/repo/notes.md")
    with pytest.raises(SourceFetchError):
        await manager.add_source(spec)

    replaced = manager.get_source(source.id)
    assert replaced is not None
    assert not replaced.has_content
    assert manager.get_chunks(source.id) == []
    assert manager.search("caching") == []


@pytest.mark.asyncio
async def test_remove_source(
    watching_manager: ContextManager,
    watcher: ManualFileWatcher,
) -> None:
    """Test removal closes the watch, drops chunks and notifies."""
    source = await watching_manager.add_source(
        SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
    )
    events = record_events(watching_manager)

    await watching_manager.remove_source(source.id)

    assert watching_manager.get_source(source.id) is None
    assert watching_manager.get_chunks(source.id) == []
    _, handle = watcher.watches["/repo/notes.md"]
    assert handle.closed
    assert [event.kind for event in events] == [EventKind.SOURCE_REMOVED]


@pytest.mark.asyncio
async def test_update_after_re_add_does_not_join_stale_update(
    manager: ContextManager,
    web_provider: FakeProvider,
) -> None:
    """Test an update of a replaced record is not shared with the new record."""
    spec = SourceSpec(type=SourceType.WEB, name="docs", url="https://docs.test")
    source_id = (await manager.add_source(spec)).id
    web_provider.gate = asyncio.Event()
    web_provider.contents["https://docs.test"] = "Second revision."

    stale_update = asyncio.create_task(manager.update_source(source_id))
    await asyncio.sleep(0)
    re_adding = asyncio.create_task(manager.add_source(spec))
    await asyncio.sleep(0)
    fresh_update = asyncio.create_task(manager.update_source(source_id))
    await asyncio.sleep(0)
    web_provider.gate.set()
    await asyncio.gather(stale_update, re_adding, fresh_update)

    # add, stale update, re-add and an update of its own for the new record
    assert web_provider.calls.count("https://docs.test") == 4
    source = manager.get_source(source_id)
    assert source is not None
    assert source.content == "Second revision."


@pytest.mark.asyncio
async def test_remove_unknown_source_is_ignored(manager: ContextManager) -> None:
    """Test removing an unknown id does nothing."""
    events = record_events(manager)

    await manager.remove_source("does-not-exist")

    assert events == []


@pytest.mark.asyncio
async def test_update_source_refetches(
    manager: ContextManager,
    web_provider: FakeProvider,
) -> None:
    """Test update regenerates chunks from fresh content."""
    source = await manager.add_source(
        SourceSpec(type=SourceType.WEB, name="docs", url="https://docs.test")
    )
    before = source.last_updated
    events = record_events(manager)
    web_provider.contents["https://docs.test"] = "Fresh page content."

    await manager.update_source(source.id)

    assert source.content == "Fresh page content."
    assert manager.get_chunks(source.id)[0].content == "Fresh page content."
    assert source.last_updated >= before
    assert [event.kind for event in events] == [EventKind.SOURCE_UPDATED]


@pytest.mark.asyncio
async def test_update_unknown_source_is_ignored(manager: ContextManager) -> None:
    """Test updating an unknown id does nothing."""
    await manager.update_source("does-not-exist")


@pytest.mark.asyncio
async def test_concurrent_updates_share_one_fetch(
    manager: ContextManager,
    web_provider: FakeProvider,
) -> None:
    """Test an update requested while one is in flight joins it."""
    source = await manager.add_source(
        SourceSpec(type=SourceType.WEB, name="docs", url="https://docs.test")
    )
    events = record_events(manager)
    web_provider.gate = asyncio.Event()

    first = asyncio.create_task(manager.update_source(source.id))
    second = asyncio.create_task(manager.update_source(source.id))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    web_provider.gate.set()
    await asyncio.gather(first, second)

    assert len(web_provider.calls) == 2  # add + one shared update
    assert [event.kind for event in events] == [EventKind.SOURCE_UPDATED]


@pytest.mark.asyncio
async def test_source_removed_during_fetch_is_discarded(
    manager: ContextManager,
    web_provider: FakeProvider,
) -> None:
    """Test a fetch finishing after removal does not resurrect the source."""
    events = record_events(manager)
    web_provider.gate = asyncio.Event()
    spec = SourceSpec(type=SourceType.WEB, name="docs", url="https://docs.test")

    adding = asyncio.create_task(manager.add_source(spec))
    await asyncio.sleep(0)
    await manager.remove_source(generate_source_id(spec))
    web_provider.gate.set()
    await adding

    assert manager.list_sources() == []
    assert manager.get_chunks(generate_source_id(spec)) == []
    assert [event.kind for event in events] == [EventKind.SOURCE_REMOVED]


@pytest.mark.asyncio
async def test_file_change_triggers_update(
    watching_manager: ContextManager,
    file_provider: FakeProvider,
    watcher: ManualFileWatcher,
) -> None:
    """Test a file change re-fetches the source and signals a context update."""
    source = await watching_manager.add_source(
        SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
    )
    updated = asyncio.Event()
    watching_manager.events.subscribe(
        EventKind.CONTEXT_UPDATE, lambda event: updated.set()
    )
    file_provider.contents["/repo/notes.md"] = "Edited on disk."

    watcher.trigger("/repo/notes.md")
    await asyncio.wait_for(updated.wait(), timeout=1.0)

    assert source.content == "Edited on disk."
    assert manager_chunk_contents(watching_manager, source.id) == ["Edited on disk."]


@pytest.mark.asyncio
async def test_failed_file_change_update_is_logged(
    watching_manager: ContextManager,
    file_provider: FakeProvider,
    watcher: ManualFileWatcher,
) -> None:
    """Test a failing re-fetch after a change keeps the previous content."""
    source = await watching_manager.add_source(
        SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
    )
    events = record_events(watching_manager)
    file_provider.failing.add("/repo/notes.md")

    watcher.trigger("/repo/notes.md")
    await asyncio.gather(*list(watching_manager._watch_tasks))

    assert source.content == "File content about caching."
    assert events == []


@pytest.mark.asyncio
async def test_file_source_not_watched_when_auto_update_off(
    manager: ContextManager,
    watcher: ManualFileWatcher,
) -> None:
    """Test file sources are only watched with auto-update enabled."""
    await manager.add_source(
        SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
    )

    assert watcher.watches == {}


@pytest.mark.asyncio
async def test_refresh_web_sources_continues_after_failure(
    manager: ContextManager,
    web_provider: FakeProvider,
) -> None:
    """Test one failing web source does not stop the others refreshing."""
    bad = await manager.add_source(
        SourceSpec(type=SourceType.WEB, name="bad", url="https://bad.test")
    )
    good = await manager.add_source(
        SourceSpec(type=SourceType.WEB, name="good", url="https://good.test")
    )
    web_provider.failing.add("https://bad.test")
    web_provider.contents["https://good.test"] = "Refreshed."

    await manager.refresh_web_sources()

    assert good.content == "Refreshed."
    assert bad.content == "Web page about caching."
    assert web_provider.calls.count("https://good.test") == 2


@pytest.mark.asyncio
async def test_refresh_web_sources_survives_unexpected_error(
    manager: ContextManager,
    web_provider: FakeProvider,
) -> None:
    """Test an error outside the fetch error family stays local to its source."""
    bad = await manager.add_source(
        SourceSpec(type=SourceType.WEB, name="bad", url="http://[::1")
    )
    good = await manager.add_source(
        SourceSpec(type=SourceType.WEB, name="good", url="https://good.test")
    )
    web_provider.crashing.add("http://[::1")
    web_provider.contents["https://good.test"] = "Refreshed."

    await manager.refresh_web_sources()

    assert good.content == "Refreshed."
    assert bad.content == "Web page about caching."


@pytest.mark.asyncio
async def test_refresh_skips_inactive_web_sources(
    manager: ContextManager,
    web_provider: FakeProvider,
) -> None:
    """Test inactive web sources are not refreshed."""
    await manager.add_source(
        SourceSpec(
            type=SourceType.WEB, name="off", url="https://off.test", is_active=False
        )
    )

    await manager.refresh_web_sources()

    assert web_provider.calls == ["https://off.test"]


@pytest.mark.asyncio
async def test_periodic_refresh(
    context_config: ContextSettings,
    providers: ProviderRegistry,
    watcher: ManualFileWatcher,
    web_provider: FakeProvider,
) -> None:
    """Test the auto-update loop refreshes web sources on its interval."""
    config = context_config.model_copy(
        update={"auto_update": True, "update_interval": 0.01}
    )

    async with ContextManager(
        config=config, providers=providers, watcher=watcher
    ) as manager:
        await manager.add_source(
            SourceSpec(type=SourceType.WEB, name="docs", url="https://docs.test")
        )
        await asyncio.sleep(0.1)

    assert len(web_provider.calls) >= 2


@pytest.mark.asyncio
async def test_periodic_refresh_survives_unexpected_error(
    context_config: ContextSettings,
    providers: ProviderRegistry,
    watcher: ManualFileWatcher,
    web_provider: FakeProvider,
) -> None:
    """Test the auto-update loop keeps running when a refresh errors."""
    config = context_config.model_copy(
        update={"auto_update": True, "update_interval": 0.01}
    )
    manager = ContextManager(config=config, providers=providers, watcher=watcher)
    manager.start()
    await manager.add_source(
        SourceSpec(type=SourceType.WEB, name="bad", url="http://[::1")
    )
    web_provider.crashing.add("http://[::1")

    await asyncio.sleep(0.1)

    assert manager._auto_update_task is not None
    assert not manager._auto_update_task.done()
    assert web_provider.calls.count("http://[::1") >= 3
    await manager.cleanup()


async def _add_js_and_python(manager: ContextManager) -> tuple[str, str]:
    js = await manager.add_source(
        memory_spec("js-notes", "JavaScript function implementation")
    )
    py = await manager.add_source(memory_spec("py-notes", "Python data analysis"))
    return js.id, py.id


@pytest.mark.asyncio
async def test_search_ranks_relevant_chunks_first(manager: ContextManager) -> None:
    """Test search returns chunks sorted by relevance."""
    await _add_js_and_python(manager)

    results = manager.search("JavaScript function")

    assert len(results) == 2
    assert results[0].content == "JavaScript function implementation"
    assert results[0].score > results[1].score


@pytest.mark.asyncio
async def test_search_filters(manager: ContextManager) -> None:
    """Test source, type, score and limit filters."""
    js_id, py_id = await _add_js_and_python(manager)
    query = "JavaScript function"

    only_py = manager.search(SearchQuery(query=query, sources=[py_id]))
    assert [chunk.source_id for chunk in only_py] == [py_id]

    assert manager.search(SearchQuery(query=query, types=[SourceType.WEB])) == []

    # Relevant chunk scores 45, the unrelated one 35
    above = manager.search(SearchQuery(query=query, min_score=40))
    assert [chunk.source_id for chunk in above] == [js_id]

    limited = manager.search(SearchQuery(query=query, limit=1))
    assert [chunk.source_id for chunk in limited] == [js_id]


@pytest.mark.asyncio
async def test_search_excludes_inactive_sources(manager: ContextManager) -> None:
    """Test chunks of inactive sources are not searched."""
    await manager.add_source(
        memory_spec("hidden", "JavaScript function notes", is_active=False)
    )

    assert manager.search("JavaScript function") == []


@pytest.mark.asyncio
async def test_search_blank_query_keeps_chunks(manager: ContextManager) -> None:
    """Test a blank query returns unscored chunks."""
    await _add_js_and_python(manager)

    results = manager.search("  ")

    assert len(results) == 2
    assert all(chunk.score == 0.0 for chunk in results)


@pytest.mark.asyncio
async def test_get_context_for_prompt(manager: ContextManager) -> None:
    """Test context is formatted by source within the default budget."""
    js_id, py_id = await _add_js_and_python(manager)

    result = manager.get_context_for_prompt("JavaScript function")

    assert result.context.startswith("## Context from js-notes (memory)")
    assert "Lines 1-1:\nJavaScript function implementation" in result.context
    assert "## Context from py-notes (memory)" in result.context
    assert [chunk.source_id for chunk in result.chunks] == [js_id, py_id]

    budget = result.budget
    assert budget.total == 8000
    assert budget.reserved == 500
    assert budget.available == 7500
    assert budget.used == sum(chunk.tokens for chunk in result.chunks)
    assert budget.used == sum(budget.allocation.values())
    assert set(budget.allocation) == {js_id, py_id}

    payload = result.to_dict()
    assert set(payload) == {"context", "chunks", "budget"}
    assert payload["budget"]["used"] == budget.used


@pytest.mark.asyncio
async def test_get_context_for_prompt_max_tokens(manager: ContextManager) -> None:
    """Test an explicit total overrides the configured budget."""
    await _add_js_and_python(manager)

    result = manager.get_context_for_prompt("JavaScript", max_tokens=1000)

    assert result.budget.total == 1000
    assert result.budget.available == 500


@pytest.mark.asyncio
async def test_get_context_for_prompt_compresses(manager: ContextManager) -> None:
    """Test oversized chunks are compressed into a small budget."""
    source = await manager.add_source(memory_spec("cache-notes", PASSAGE * 3))
    originals = manager_chunk_contents(manager, source.id)

    result = manager.get_context_for_prompt("cache eviction", max_tokens=600)

    assert result.budget.available == 100
    assert result.chunks
    assert any(chunk.content not in originals for chunk in result.chunks)
    assert all(chunk.tokens <= 100 for chunk in result.chunks)
    assert result.budget.used <= result.budget.available
    assert result.budget.used == sum(result.budget.allocation.values())


@pytest.mark.asyncio
async def test_get_context_for_prompt_without_compression(
    context_config: ContextSettings,
    providers: ProviderRegistry,
) -> None:
    """Test oversized chunks are skipped when compression is disabled."""
    config = context_config.model_copy(update={"compression_enabled": False})
    manager = ContextManager(config=config, providers=providers)
    source = await manager.add_source(memory_spec("cache-notes", PASSAGE * 3))
    originals = manager_chunk_contents(manager, source.id)

    result = manager.get_context_for_prompt("cache eviction", max_tokens=600)

    assert all(chunk.content in originals for chunk in result.chunks)
    assert result.budget.used <= result.budget.available


@pytest.mark.asyncio
async def test_get_context_for_prompt_disabled(
    context_config: ContextSettings,
    providers: ProviderRegistry,
) -> None:
    """Test a disabled manager returns an empty context."""
    config = context_config.model_copy(update={"enabled": False})
    manager = ContextManager(config=config, providers=providers)
    await manager.add_source(memory_spec("notes", "JavaScript function"))

    result = manager.get_context_for_prompt("JavaScript")

    assert result.context == ""
    assert result.chunks == []
    assert result.budget.used == 0
    assert result.budget.available == 7500


@pytest.mark.asyncio
async def test_get_context_for_prompt_no_sources(manager: ContextManager) -> None:
    """Test an empty manager yields an empty context and unused budget."""
    result = manager.get_context_for_prompt("anything")

    assert result.context == ""
    assert result.chunks == []
    assert result.budget.used == 0


@pytest.mark.asyncio
async def test_cleanup(
    watching_manager: ContextManager,
    watcher: ManualFileWatcher,
) -> None:
    """Test cleanup stops refresh, closes watches and clears state."""
    watching_manager.start()
    await watching_manager.add_source(
        SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
    )

    await watching_manager.cleanup()

    _, handle = watcher.watches["/repo/notes.md"]
    assert handle.closed
    assert watching_manager.list_sources() == []
    assert watching_manager._auto_update_task is None


@pytest.mark.asyncio
async def test_cleanup_after_refresh_task_failed(
    watching_manager: ContextManager,
    watcher: ManualFileWatcher,
) -> None:
    """Test a refresh task that died with an error does not stop cleanup."""

    async def crashed_refresh() -> None:
        raise ValueError("Invalid port: ':1'")

    await watching_manager.add_source(
        SourceSpec(type=SourceType.FILE, name="notes", path="/repo/notes.md")
    )
    task = asyncio.create_task(crashed_refresh())
    await asyncio.wait([task])
    watching_manager._auto_update_task = task

    await watching_manager.cleanup()

    _, handle = watcher.watches["/repo/notes.md"]
    assert handle.closed
    assert watching_manager.list_sources() == []
    assert watching_manager._auto_update_task is None


@pytest.mark.asyncio
async def test_start_without_auto_update_is_noop(manager: ContextManager) -> None:
    """Test start does nothing when auto-update is off."""
    manager.start()

    assert manager._auto_update_task is None
