"""Filesystem change notification for file sources.

A ContextManager depends only on the FileWatcher interface; the watchdog
implementation is the default and tests inject their own.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[], None]


class WatchHandle(ABC):
    """An active watch on one path."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivering change notifications."""
        pass


class FileWatcher(ABC):
    """Abstract capability to watch a file for changes."""

    @abstractmethod
    def watch(self, path: str, on_change: ChangeCallback) -> WatchHandle:
        """Start watching ``path``.

        ``on_change`` is invoked on the event loop thread once per change
        event. There is no debouncing: a burst of writes produces a burst of
        callbacks.

        Args:
            path: File to watch
            on_change: Callback invoked after each change

        Returns:
            Handle that stops the watch when closed
        """
        pass


class _FileChangeHandler(FileSystemEventHandler):
    """Forward events concerning a single file."""

    def __init__(self, target: Path, notify: ChangeCallback) -> None:
        self._target = target
        self._notify = notify

    def _concerns_target(self, raw_path: str | bytes) -> bool:
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode()
        return Path(raw_path).resolve() == self._target

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._concerns_target(event.src_path):
            self._notify()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._concerns_target(event.src_path):
            self._notify()

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors commonly save by writing a temp file and renaming it over
        if not event.is_directory and self._concerns_target(event.dest_path):
            self._notify()


class _ObserverHandle(WatchHandle):
    def __init__(self, observer: BaseObserver, path: Path) -> None:
        self._observer = observer
        self._path = path
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._observer.stop()
        self._observer.join(timeout=1.0)
        logger.debug("file_watch_closed", path=str(self._path))


class WatchdogFileWatcher(FileWatcher):
    """FileWatcher backed by a watchdog Observer per watched file.

    The observer watches the file's parent directory (non-recursively) and
    hands matching events to the running event loop with
    ``call_soon_threadsafe``.
    """

    def watch(self, path: str, on_change: ChangeCallback) -> WatchHandle:
        loop = asyncio.get_running_loop()
        target = Path(path).expanduser().resolve()

        def notify() -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(on_change)

        observer = Observer()
        observer.schedule(
            _FileChangeHandler(target, notify), str(target.parent), recursive=False
        )
        observer.daemon = True
        observer.start()

        logger.debug("file_watch_started", path=str(target))
        return _ObserverHandle(observer, target)
