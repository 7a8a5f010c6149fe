"""Pytest configuration and fixtures."""

import threading
from collections.abc import Generator

import pytest

from ctxinject.config import ContextSettings

# Enable pytest-asyncio for all tests
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def context_config() -> ContextSettings:
    """Context settings with periodic refresh off and default budgeting."""
    return ContextSettings(
        enabled=True,
        max_tokens=8000,
        scoring_strategy="hybrid",
        compression_enabled=True,
        auto_update=False,
        update_interval=30.0,
        exclude_patterns=[],
    )


# Thread names that are expected to be long-running and should be ignored
# by the resource tracker. These are typically from third-party libraries.
_IGNORED_THREAD_PREFIXES = (
    "MainThread",
    "ThreadPoolExecutor",  # Python's ThreadPoolExecutor workers
    "asyncio_",  # asyncio default executor (GitPython and PDF work)
    "concurrent.futures",  # concurrent.futures workers
    "pydevd",  # Debugger threads
)


def _is_tracked_thread(t: threading.Thread) -> bool:
    """Check if a thread should be tracked for leak detection.

    Only non-daemon threads are tracked; watchdog observers run as daemons.
    """
    if t.daemon:
        return False
    if t.name is None:
        return True  # Track unnamed threads
    return not any(t.name.startswith(prefix) for prefix in _IGNORED_THREAD_PREFIXES)


@pytest.fixture(autouse=True)
def thread_leak_tracker(
    request: pytest.FixtureRequest,
) -> Generator[None, None, None]:
    """Fail tests that leave non-daemon threads running.

    To skip this check for a specific test, use:
        @pytest.mark.no_resource_tracking
    """
    if request.node.get_closest_marker("no_resource_tracking"):
        yield
        return

    baseline_threads = {t for t in threading.enumerate() if _is_tracked_thread(t)}

    yield

    current_threads = {t for t in threading.enumerate() if _is_tracked_thread(t)}
    leaked_threads = current_threads - baseline_threads
    if leaked_threads:
        pytest.fail(
            f"Thread leak detected - {len(leaked_threads)} thread(s): "
            f"{[t.name for t in leaked_threads]}. "
            "Tests must join all threads before completion."
        )


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "no_resource_tracking: skip resource leak checking for this test",
    )
