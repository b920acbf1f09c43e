"""File system watcher producing raw events for the HOST tree.

This module provides:
- FileWatcher: Watches a directory using watchdog and exposes the native
  notifications as a lazy, infinite sequence of raw event batches
- coalesce_batch: Drops duplicate notifications inside one batch

The watcher does no semantic interpretation. Directory-level notifications
(created, deleted, moved) and lost notifications (queue overflow, observer
restart) are reported as RESCAN events for the affected subtree so the
normalizer can reconcile the index against the disk.
"""

from __future__ import annotations

import logging
import posixpath
import queue
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from filemirror.mirror.ignore import IgnorePatterns
from filemirror.mirror.index import to_relative
from filemirror.mirror.types import RawEvent, RawKind

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.05
DEFAULT_MAX_PENDING = 10_000
DEFAULT_MAX_BATCH = 1_000


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


def coalesce_batch(events: list[RawEvent]) -> list[RawEvent]:
    """Drop repeated notifications for the same path inside one batch.

    An event is dropped only when the previous event kept for that path
    has the same kind and destination, so kind changes keep their order.
    """
    kept: list[RawEvent] = []
    last: dict[str, RawEvent] = {}
    for event in events:
        previous = last.get(event.path)
        if (
            previous is not None
            and previous.kind == event.kind
            and previous.dest_path == event.dest_path
        ):
            continue
        kept.append(event)
        last[event.path] = event
    return kept


class _QueueingHandler(FileSystemEventHandler):
    """Translates watchdog events into RawEvents on the watcher's queue."""

    def __init__(self, watcher: FileWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        self._watcher._handle(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        self._watcher._handle(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        self._watcher._handle(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event."""
        self._watcher._handle(event)


class FileWatcher:
    """Watches the HOST tree and yields batches of raw events.

    Usage:
        with FileWatcher(root) as watcher:
            for batch in watcher.batches(stop_event):
                ...  # batch may be empty when nothing happened
    """

    def __init__(
        self,
        watch_path: Path,
        ignore: IgnorePatterns | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_pending: int = DEFAULT_MAX_PENDING,
        max_batch: int = DEFAULT_MAX_BATCH,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        """Initialize the file watcher.

        Args:
            watch_path: Directory to watch.
            ignore: Patterns for paths to ignore.
            poll_interval: Longest time a batch waits for the first event.
            max_pending: Capacity of the native event queue; overflowing
                notifications are repaired by a subtree rescan.
            max_batch: Largest number of events handed out at once.
            observer_factory: Creates the watchdog observer.
        """
        self._watch_path = Path(watch_path).resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._ignore = ignore or IgnorePatterns()
        self._poll_interval = poll_interval
        self._max_batch = max_batch
        self._observer_factory = observer_factory

        self._events: queue.Queue[RawEvent] = queue.Queue(maxsize=max_pending)
        self._dirty: set[str] = set()
        self._dirty_lock = threading.Lock()
        self._handler = _QueueingHandler(self)
        self._observer: BaseObserver | None = None
        self._running = False
        self._stopped = threading.Event()
        self._restarts = 0

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    @property
    def restarts(self) -> int:
        """Get how many times the observer had to be restarted."""
        return self._restarts

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return
        self._stopped.clear()
        self._observer = self._start_observer()
        self._running = True
        logger.info("Watching %s", self._watch_path)

    def stop(self) -> None:
        """Stop watching; running batch iterators end after their current wait."""
        self._stopped.set()
        if not self._running:
            return
        self._running = False
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
        logger.info("Stopped watching %s", self._watch_path)

    def __enter__(self) -> FileWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()

    def mark_dirty(self, rel_dir: str) -> None:
        """Request a rescan of a subtree with the next batch."""
        with self._dirty_lock:
            self._dirty.add(rel_dir)

    def batches(self, stop: threading.Event | None = None) -> Iterator[list[RawEvent]]:
        """Yield batches of raw events until stopped.

        Each batch holds everything that arrived since the previous one
        (coalesced), preceded by RESCAN events for subtrees whose
        notifications were lost. Empty batches are yielded every
        poll_interval so consumers can run timers.

        Args:
            stop: Optional external cancellation signal.
        """
        while not self._stopped.is_set() and not (stop is not None and stop.is_set()):
            self._check_observer()
            yield self._next_batch()

    def __iter__(self) -> Iterator[list[RawEvent]]:
        return self.batches()

    def _start_observer(self) -> BaseObserver:
        observer = self._observer_factory()
        observer.schedule(self._handler, str(self._watch_path), recursive=True)
        observer.start()
        return observer

    def _check_observer(self) -> None:
        """Restart a dead observer and schedule a full rescan."""
        if not self._running or self._observer is None:
            return
        if not self._watch_path.is_dir():
            # Native backends may stop reporting once the root is gone
            self.mark_dirty("")
            return
        if self._observer.is_alive():
            return
        logger.warning("Watch observer for %s stopped unexpectedly, restarting", self._watch_path)
        try:
            self._observer = self._start_observer()
        except OSError as e:
            logger.error("Failed to restart watcher: %s", e)
            return
        self._restarts += 1
        self.mark_dirty("")

    def _next_batch(self) -> list[RawEvent]:
        events: list[RawEvent] = []
        try:
            events.append(self._events.get(timeout=self._poll_interval))
            while len(events) < self._max_batch:
                events.append(self._events.get_nowait())
        except queue.Empty:
            pass

        with self._dirty_lock:
            dirty, self._dirty = self._dirty, set()
        rescans = [RawEvent(path=d, kind=RawKind.RESCAN, is_directory=True) for d in _outermost(dirty)]
        return rescans + coalesce_batch(events)

    def _put(self, event: RawEvent) -> None:
        try:
            self._events.put_nowait(event)
        except queue.Full:
            parent = posixpath.dirname(event.path)
            logger.warning("Watcher queue overflow, rescanning %r", parent or "/")
            self.mark_dirty(parent)

    def _relative(self, path: str | bytes) -> str | None:
        return to_relative(Path(_decode(path)), self._watch_path)

    def _handle(self, event: FileSystemEvent) -> None:
        """Translate one watchdog event (runs on the observer thread)."""
        now = time.monotonic()
        rel = self._relative(event.src_path)

        if isinstance(event, DirMovedEvent):
            dest = self._relative(event.dest_path)
            for path in (rel, dest):
                if path is not None and not self._ignore.should_ignore(path, is_dir=True):
                    self._put(RawEvent(path, RawKind.RESCAN, now, is_directory=True))
            return

        if isinstance(event, (DirCreatedEvent, DirDeletedEvent)):
            if rel is not None and not self._ignore.should_ignore(rel, is_dir=True):
                if rel == "" and isinstance(event, DirDeletedEvent):
                    logger.error("HOST root %s was removed", self._watch_path)
                self._put(RawEvent(rel, RawKind.RESCAN, now, is_directory=True))
            return

        if event.is_directory:
            # Directory mtime changes follow their children; nothing to do
            return

        src_ok = rel is not None and rel != "" and not self._ignore.should_ignore(rel)

        if isinstance(event, FileMovedEvent):
            dest = self._relative(event.dest_path)
            dest_ok = dest is not None and dest != "" and not self._ignore.should_ignore(dest)
            if src_ok and dest_ok:
                self._put(RawEvent(rel, RawKind.RENAMED, now, dest_path=dest))
            elif src_ok:
                self._put(RawEvent(rel, RawKind.DELETED, now))
            elif dest_ok:
                # e.g. an editor renaming its ignored temp file over the target
                self._put(RawEvent(dest, RawKind.CREATED, now))
            return

        if not src_ok:
            return

        if isinstance(event, FileCreatedEvent):
            kind = RawKind.CREATED
        elif isinstance(event, FileModifiedEvent):
            kind = RawKind.MODIFIED
        elif isinstance(event, FileDeletedEvent):
            kind = RawKind.DELETED
        else:
            return
        self._put(RawEvent(rel, kind, now))


def _outermost(paths: set[str]) -> list[str]:
    """Reduce a set of subtrees to those not contained in another one."""
    if "" in paths:
        return [""]
    result: list[str] = []
    for path in sorted(paths):
        if not any(path.startswith(kept + "/") for kept in result):
            result.append(path)
    return result
