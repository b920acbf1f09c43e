"""Tests for the event normalizer."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from filemirror.mirror.index import PathIndex
from filemirror.mirror.normalizer import Normalizer
from filemirror.mirror.types import ChangeKind, FatalError, RawEvent, RawKind


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def write(root: Path, rel: str, content: str, mtime: float | None = None) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def index(tmp_path: Path) -> PathIndex:
    return PathIndex(tmp_path)


@pytest.fixture
def normalizer(index: PathIndex, clock: FakeClock) -> Normalizer:
    return Normalizer(index, debounce_ms=300, clock=clock)


def settle(normalizer: Normalizer, clock: FakeClock, *events: RawEvent) -> list:
    """Feed events, let the window close and collect the changes."""
    produced = normalizer.process(list(events))
    clock.now += 1.0
    return produced + normalizer.flush()


class TestClassification:
    """Tests for classifying debounced changes against the index."""

    def test_created_unknown_path_is_add(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """A new file becomes ADD and enters the index before emission."""
        write(tmp_path, "a.txt", "1")

        changes = settle(normalizer, clock, RawEvent("a.txt", RawKind.CREATED))

        assert [(c.path, c.kind) for c in changes] == [("a.txt", ChangeKind.ADD)]
        assert changes[0].record is not None
        assert changes[0].record.size_bytes == 1
        assert "a.txt" in index

    def test_repeated_modifications_are_one_update(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """Modified x3 within the window yields exactly one UPDATE."""
        write(tmp_path, "a.txt", "1", mtime=1_700_000_000)
        index.seed()
        write(tmp_path, "a.txt", "333", mtime=1_700_000_100)

        changes = settle(
            normalizer,
            clock,
            RawEvent("a.txt", RawKind.MODIFIED),
            RawEvent("a.txt", RawKind.MODIFIED),
            RawEvent("a.txt", RawKind.MODIFIED),
        )

        assert [c.kind for c in changes] == [ChangeKind.UPDATE]
        record = index.lookup("a.txt")
        assert record is not None and record.size_bytes == 3

    def test_identical_stamp_is_dropped(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """A spurious notification for an unchanged file is a no-op."""
        write(tmp_path, "a.txt", "1", mtime=1_700_000_000)
        index.seed()

        assert settle(normalizer, clock, RawEvent("a.txt", RawKind.MODIFIED)) == []

    def test_delete_indexed_is_remove(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """Deleting an indexed file yields REMOVE and drops it from the index."""
        path = write(tmp_path, "a.txt", "1")
        index.seed()
        path.unlink()

        changes = settle(normalizer, clock, RawEvent("a.txt", RawKind.DELETED))

        assert [(c.path, c.kind, c.record) for c in changes] == [("a.txt", ChangeKind.REMOVE, None)]
        assert "a.txt" not in index

    def test_delete_unknown_is_dropped(self, normalizer: Normalizer, clock: FakeClock) -> None:
        """Deleting an unindexed path is a no-op."""
        assert settle(normalizer, clock, RawEvent("ghost.txt", RawKind.DELETED)) == []

    def test_delete_then_create_is_update(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """An editor's delete-and-recreate save is one UPDATE, not REMOVE + ADD."""
        write(tmp_path, "a.txt", "1", mtime=1_700_000_000)
        index.seed()

        changes = settle(
            normalizer,
            clock,
            RawEvent("a.txt", RawKind.DELETED),
            RawEvent("a.txt", RawKind.CREATED),
        )

        assert [c.kind for c in changes] == [ChangeKind.UPDATE]

    def test_created_but_gone_is_treated_as_delete(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """A file that vanished before its window closed counts as deleted."""
        write(tmp_path, "a.txt", "1")
        index.seed()
        (tmp_path / "a.txt").unlink()

        changes = settle(normalizer, clock, RawEvent("a.txt", RawKind.MODIFIED))

        assert [c.kind for c in changes] == [ChangeKind.REMOVE]

    def test_rename_is_remove_plus_add(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """A file rename becomes REMOVE of the source and ADD of the destination."""
        write(tmp_path, "old.txt", "1")
        index.seed()
        os.rename(tmp_path / "old.txt", tmp_path / "new.txt")

        changes = settle(
            normalizer, clock, RawEvent("old.txt", RawKind.RENAMED, dest_path="new.txt")
        )

        assert sorted((c.path, c.kind) for c in changes) == [
            ("new.txt", ChangeKind.ADD),
            ("old.txt", ChangeKind.REMOVE),
        ]

    def test_seq_is_strictly_increasing(
        self, tmp_path: Path, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """Every emitted change gets a larger sequence number."""
        for name in ("a.txt", "b.txt", "c.txt"):
            write(tmp_path, name, name)

        changes = settle(
            normalizer,
            clock,
            *(RawEvent(name, RawKind.CREATED) for name in ("a.txt", "b.txt", "c.txt")),
        )

        seqs = [c.seq for c in changes]
        assert seqs == sorted(seqs) and len(set(seqs)) == 3


class TestResync:
    """Tests for subtree rescans."""

    def test_rescan_reconciles_subtree(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer
    ) -> None:
        """RESCAN should emit removals first, then additions, all synthetic."""
        write(tmp_path, "dir/old.txt", "1")
        write(tmp_path, "keep.txt", "1")
        index.seed()
        (tmp_path / "dir" / "old.txt").unlink()
        write(tmp_path, "dir/new.txt", "2")

        changes = normalizer.process([RawEvent("dir", RawKind.RESCAN, is_directory=True)])

        assert [(c.path, c.kind) for c in changes] == [
            ("dir/old.txt", ChangeKind.REMOVE),
            ("dir/new.txt", ChangeKind.ADD),
        ]
        assert all(c.synthetic for c in changes)
        assert "keep.txt" in index

    def test_rescan_of_removed_directory(
        self, tmp_path: Path, index: PathIndex, normalizer: Normalizer
    ) -> None:
        """A deleted directory removes every indexed file below it."""
        write(tmp_path, "dir/a.txt", "1")
        write(tmp_path, "dir/b/c.txt", "1")
        index.seed()
        for path in ("dir/b/c.txt", "dir/a.txt"):
            (tmp_path / path).unlink()
        (tmp_path / "dir" / "b").rmdir()
        (tmp_path / "dir").rmdir()

        changes = normalizer.resync("dir")

        assert {c.path for c in changes} == {"dir/a.txt", "dir/b/c.txt"}
        assert all(c.kind is ChangeKind.REMOVE for c in changes)
        assert len(index) == 0

    def test_lost_root_is_fatal_and_keeps_index(self, tmp_path: Path) -> None:
        """Losing the whole HOST tree stops the run instead of removing everything."""
        root = tmp_path / "INBOX"
        write(root, "a.txt", "1")
        index = PathIndex(root)
        index.seed()
        normalizer = Normalizer(index, debounce_ms=300)
        shutil.rmtree(root)

        with pytest.raises(FatalError) as exc_info:
            normalizer.process([RawEvent("", RawKind.RESCAN, is_directory=True)])

        assert exc_info.value.precondition == FatalError.UNREADABLE_ROOT
        assert "a.txt" in index


class TestChangeSequence:
    """Tests for the lazy change sequence."""

    def test_changes_from_batches(
        self, tmp_path: Path, normalizer: Normalizer, clock: FakeClock
    ) -> None:
        """Empty batches let time pass so pending changes are flushed."""
        write(tmp_path, "a.txt", "1")

        def batches():
            yield [RawEvent("a.txt", RawKind.CREATED)]
            clock.now += 1.0
            yield []

        changes = list(normalizer.changes(batches()))

        assert [(c.path, c.kind) for c in changes] == [("a.txt", ChangeKind.ADD)]

    def test_pending_changes_discarded_at_end(
        self, tmp_path: Path, normalizer: Normalizer
    ) -> None:
        """Changes still inside their window when the source ends are dropped."""
        write(tmp_path, "a.txt", "1")
        changes = list(normalizer.changes(iter([[RawEvent("a.txt", RawKind.CREATED)]])))
        assert changes == []
        assert len(normalizer.debouncer) == 0

    def test_not_restartable(self, normalizer: Normalizer) -> None:
        """Only one live sequence per normalizer."""
        list(normalizer.changes(iter([])))
        with pytest.raises(RuntimeError):
            list(normalizer.changes(iter([])))

    def test_initial_changes(self, tmp_path: Path, index: PathIndex, normalizer: Normalizer) -> None:
        """Seeded records become synthetic ADD events."""
        write(tmp_path, "a.txt", "1")
        write(tmp_path, "b/c.txt", "2")

        changes = normalizer.initial_changes(index.seed())

        assert [(c.path, c.kind, c.synthetic) for c in changes] == [
            ("a.txt", ChangeKind.ADD, True),
            ("b/c.txt", ChangeKind.ADD, True),
        ]
