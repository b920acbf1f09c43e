"""Tests for the watchdog-based file watcher."""

from __future__ import annotations

import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from filemirror.mirror.types import RawEvent, RawKind
from filemirror.mirror.watcher import FileWatcher, coalesce_batch


@pytest.fixture
def watcher(tmp_path: Path) -> FileWatcher:
    """Watcher whose observer is never started."""
    return FileWatcher(tmp_path, observer_factory=MagicMock, poll_interval=0.01)


def next_batch(watcher: FileWatcher) -> list[RawEvent]:
    return next(watcher.batches())


class TestCoalesceBatch:
    """Tests for coalesce_batch."""

    def test_drops_consecutive_duplicates(self) -> None:
        """Repeated notifications of the same kind collapse."""
        events = [
            RawEvent("a.txt", RawKind.MODIFIED),
            RawEvent("a.txt", RawKind.MODIFIED),
            RawEvent("b.txt", RawKind.MODIFIED),
        ]
        assert [(e.path, e.kind) for e in coalesce_batch(events)] == [
            ("a.txt", RawKind.MODIFIED),
            ("b.txt", RawKind.MODIFIED),
        ]

    def test_keeps_kind_changes_in_order(self) -> None:
        """A different kind in between keeps both occurrences."""
        events = [
            RawEvent("a.txt", RawKind.MODIFIED),
            RawEvent("a.txt", RawKind.DELETED),
            RawEvent("a.txt", RawKind.MODIFIED),
        ]
        assert [e.kind for e in coalesce_batch(events)] == [
            RawKind.MODIFIED,
            RawKind.DELETED,
            RawKind.MODIFIED,
        ]


class TestEventTranslation:
    """Tests for translating watchdog events into raw events."""

    def test_file_events(self, tmp_path: Path, watcher: FileWatcher) -> None:
        """File created/modified/deleted map to the matching raw kinds."""
        path = str(tmp_path / "docs" / "a.txt")
        watcher._handle(FileCreatedEvent(path))
        watcher._handle(FileModifiedEvent(path))
        watcher._handle(FileDeletedEvent(path))

        batch = next_batch(watcher)

        assert [(e.path, e.kind) for e in batch] == [
            ("docs/a.txt", RawKind.CREATED),
            ("docs/a.txt", RawKind.MODIFIED),
            ("docs/a.txt", RawKind.DELETED),
        ]

    def test_ignored_files_dropped(self, tmp_path: Path, watcher: FileWatcher) -> None:
        """Ignored paths produce no events."""
        watcher._handle(FileCreatedEvent(str(tmp_path / ".git" / "index")))
        watcher._handle(FileModifiedEvent(str(tmp_path / "notes.swp")))
        assert next_batch(watcher) == []

    def test_file_move(self, tmp_path: Path, watcher: FileWatcher) -> None:
        """A file move is one RENAMED event."""
        watcher._handle(FileMovedEvent(str(tmp_path / "a.txt"), str(tmp_path / "b.txt")))
        batch = next_batch(watcher)
        assert [(e.path, e.kind, e.dest_path) for e in batch] == [
            ("a.txt", RawKind.RENAMED, "b.txt")
        ]

    def test_move_from_ignored_name_is_created(self, tmp_path: Path, watcher: FileWatcher) -> None:
        """Renaming an ignored temp file over a real name creates that name."""
        watcher._handle(
            FileMovedEvent(str(tmp_path / ".a.txt.swp"), str(tmp_path / "a.txt"))
        )
        assert [(e.path, e.kind) for e in next_batch(watcher)] == [("a.txt", RawKind.CREATED)]

    def test_directory_events_request_rescan(self, tmp_path: Path, watcher: FileWatcher) -> None:
        """Directory creation and moves trigger subtree rescans."""
        watcher._handle(DirCreatedEvent(str(tmp_path / "new")))
        watcher._handle(DirMovedEvent(str(tmp_path / "old"), str(tmp_path / "moved")))
        watcher._handle(DirModifiedEvent(str(tmp_path / "new")))

        batch = next_batch(watcher)

        assert [(e.path, e.kind) for e in batch] == [
            ("new", RawKind.RESCAN),
            ("old", RawKind.RESCAN),
            ("moved", RawKind.RESCAN),
        ]

    def test_events_outside_root_ignored(self, tmp_path: Path) -> None:
        """Events for paths outside the root are dropped."""
        root = tmp_path / "root"
        root.mkdir()
        watcher = FileWatcher(root, observer_factory=MagicMock, poll_interval=0.01)
        watcher._handle(FileCreatedEvent(str(tmp_path / "elsewhere.txt")))
        assert next_batch(watcher) == []


class TestLostNotifications:
    """Tests for overflow and observer restarts."""

    def test_overflow_schedules_rescan(self, tmp_path: Path) -> None:
        """Events that do not fit the queue are replaced by a rescan."""
        watcher = FileWatcher(tmp_path, observer_factory=MagicMock, max_pending=1, poll_interval=0.01)
        watcher._handle(FileCreatedEvent(str(tmp_path / "sub" / "a.txt")))
        watcher._handle(FileCreatedEvent(str(tmp_path / "sub" / "b.txt")))

        batch = next_batch(watcher)

        assert [(e.path, e.kind) for e in batch] == [
            ("sub", RawKind.RESCAN),
            ("sub/a.txt", RawKind.CREATED),
        ]

    def test_nested_dirty_paths_collapse(self, watcher: FileWatcher) -> None:
        """Only the outermost dirty subtrees are rescanned."""
        watcher.mark_dirty("a/b")
        watcher.mark_dirty("a")
        watcher.mark_dirty("c")
        assert [e.path for e in next_batch(watcher)] == ["a", "c"]

    def test_dead_observer_is_restarted(self, tmp_path: Path) -> None:
        """A dead observer is replaced and the whole tree rescanned."""
        observers = [MagicMock(), MagicMock()]
        observers[0].is_alive.return_value = False
        observers[1].is_alive.return_value = True
        watcher = FileWatcher(tmp_path, observer_factory=lambda: observers.pop(0), poll_interval=0.01)
        watcher.start()
        try:
            batch = next_batch(watcher)
        finally:
            watcher.stop()

        assert watcher.restarts == 1
        assert [(e.path, e.kind) for e in batch] == [("", RawKind.RESCAN)]

    def test_missing_root_requests_full_rescan(self, tmp_path: Path) -> None:
        """A removed root is rescanned even if the observer stays silent."""
        root = tmp_path / "root"
        root.mkdir()
        observer = MagicMock()
        observer.is_alive.return_value = True
        watcher = FileWatcher(root, observer_factory=lambda: observer, poll_interval=0.01)
        watcher.start()
        try:
            root.rmdir()
            batch = next_batch(watcher)
        finally:
            watcher.stop()

        assert [(e.path, e.kind) for e in batch] == [("", RawKind.RESCAN)]
        assert watcher.restarts == 0


class TestFileWatcher:
    """Tests against a real observer."""

    def test_requires_directory(self, tmp_path: Path) -> None:
        """The watch path must be an existing directory."""
        with pytest.raises(ValueError):
            FileWatcher(tmp_path / "missing")

    def test_detects_new_file(self, tmp_path: Path) -> None:
        """Creating a file should be reported."""
        stop_at = time.monotonic() + 5.0
        seen: list[RawEvent] = []
        with FileWatcher(tmp_path, poll_interval=0.05) as watcher:
            time.sleep(0.1)
            (tmp_path / "hello.txt").write_text("hi")
            for batch in watcher.batches():
                seen.extend(batch)
                if any(e.path == "hello.txt" for e in seen) or time.monotonic() > stop_at:
                    break

        assert any(e.path == "hello.txt" for e in seen)

    def test_batches_end_on_stop(self, tmp_path: Path) -> None:
        """The batch sequence ends once the stop event is set."""
        import threading

        stop = threading.Event()
        watcher = FileWatcher(tmp_path, observer_factory=MagicMock, poll_interval=0.01)
        count = 0
        for _ in watcher.batches(stop):
            count += 1
            if count == 3:
                stop.set()
        assert count == 3
