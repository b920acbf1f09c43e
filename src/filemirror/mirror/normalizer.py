"""Event normalizer: raw watcher batches -> classified ChangeEvents.

This module provides:
- Normalizer: Debounces raw events, classifies them against the HOST path
  index and mutates the index before handing each change downstream

Classification:
    | Merged raw kind    | Index state                | Change     |
    |--------------------|----------------------------|------------|
    | CREATED / MODIFIED | absent                     | ADD        |
    | CREATED / MODIFIED | present, different stamp   | UPDATE     |
    | CREATED / MODIFIED | present, identical stamp   | (dropped)  |
    | RECREATED          | present                    | UPDATE     |
    | RECREATED          | absent                     | ADD        |
    | DELETED            | present                    | REMOVE     |
    | DELETED            | absent                     | (dropped)  |

A CREATED/MODIFIED path that no longer exists on disk by the time its
window closes is treated as DELETED.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable, Iterable, Iterator

from filemirror.mirror.debounce import Debouncer, PendingChange
from filemirror.mirror.index import FileRecord, PathIndex
from filemirror.mirror.types import ChangeEvent, ChangeKind, FatalError, RawEvent, RawKind

logger = logging.getLogger(__name__)


class Normalizer:
    """Turns raw events into ChangeEvents; sole owner of the HOST index.

    Usage:
        normalizer = Normalizer(index, debounce_ms=300)
        for change in normalizer.changes(watcher.batches(stop)):
            engine.submit(change)
    """

    def __init__(
        self,
        index: PathIndex,
        debounce_ms: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the normalizer.

        Args:
            index: HOST path index (already seeded).
            debounce_ms: Debounce window in milliseconds.
            clock: Monotonic time source shared with the debouncer.
        """
        self._index = index
        self._clock = clock
        self._debouncer = Debouncer(debounce_ms / 1000.0, clock=clock)
        self._seq = itertools.count(1)
        self._started = False

    @property
    def index(self) -> PathIndex:
        """Get the HOST index."""
        return self._index

    @property
    def debouncer(self) -> Debouncer:
        """Get the debouncer."""
        return self._debouncer

    def initial_changes(self, records: Iterable[FileRecord]) -> list[ChangeEvent]:
        """Turn seeded records into synthetic ADD events for the initial clone."""
        return [
            ChangeEvent(
                path=record.relative_path,
                kind=ChangeKind.ADD,
                seq=next(self._seq),
                record=_snapshot(record),
                synthetic=True,
            )
            for record in records
        ]

    def changes(self, batches: Iterable[list[RawEvent]]) -> Iterator[ChangeEvent]:
        """Lazily classify raw batches into ChangeEvents.

        One live sequence per normalizer: calling this twice raises.
        The sequence ends when the batch source ends; changes still inside
        their debounce window at that point are discarded.
        """
        if self._started:
            raise RuntimeError("Normalizer.changes() can only be consumed once")
        self._started = True

        for batch in batches:
            yield from self.process(batch)
            yield from self.flush()

        dropped = self._debouncer.discard()
        if dropped:
            logger.info("Discarded %d unclassified changes on shutdown", len(dropped))

    def process(self, batch: Iterable[RawEvent]) -> list[ChangeEvent]:
        """Feed one raw batch; returns changes produced by subtree rescans.

        Single-path events only enter the debouncer here; they come out of
        flush() once their window closes.
        """
        produced: list[ChangeEvent] = []
        for event in batch:
            if event.kind is RawKind.RESCAN:
                produced.extend(self.resync(event.path))
            elif event.kind is RawKind.RENAMED:
                self._debouncer.feed(RawEvent(event.path, RawKind.DELETED, event.timestamp))
                if event.dest_path:
                    self._debouncer.feed(RawEvent(event.dest_path, RawKind.CREATED, event.timestamp))
            elif event.kind is RawKind.RECREATED:
                raise ValueError("RECREATED is produced by the debouncer, not the watcher")
            else:
                self._debouncer.feed(event)
        return produced

    def flush(self, now: float | None = None) -> list[ChangeEvent]:
        """Classify every pending change whose window has closed."""
        produced: list[ChangeEvent] = []
        for pending in self._debouncer.due(now):
            change = self.classify(pending)
            if change is not None:
                produced.append(change)
        return produced

    def classify(self, pending: PendingChange) -> ChangeEvent | None:
        """Classify one debounced change and apply it to the index.

        Returns:
            The ChangeEvent, or None when the change is a no-op.
        """
        path = pending.path
        known = self._index.lookup(path)
        kind = pending.kind

        current: FileRecord | None = None
        if kind is not RawKind.DELETED:
            current = self._index.stat_record(path)
            if current is None:
                kind = RawKind.DELETED

        if kind is RawKind.DELETED:
            if known is None:
                logger.debug("Dropping delete of unindexed %s", path)
                return None
            self._index.remove(path)
            return self._emit(path, ChangeKind.REMOVE, None)

        assert current is not None
        if known is None:
            change_kind = ChangeKind.ADD
        elif kind is RawKind.RECREATED or not known.same_stamp(current):
            change_kind = ChangeKind.UPDATE
        else:
            logger.debug("Dropping spurious %s for unchanged %s", kind.name, path)
            return None

        self._index.upsert(current)
        return self._emit(path, change_kind, current)

    def resync(self, prefix: str) -> list[ChangeEvent]:
        """Reconcile the index for a subtree against the disk.

        Used when notifications may have been lost; only the affected
        subtree is walked.

        Returns:
            Synthetic ADD/UPDATE/REMOVE events, removals first.

        Raises:
            FatalError: If the HOST root itself can no longer be read. The
                index is left untouched so targets are not emptied.
        """
        try:
            on_disk = self._index.walk(prefix)
        except OSError as e:
            logger.error("HOST root %s can no longer be read: %s", self._index.root, e)
            raise FatalError(FatalError.UNREADABLE_ROOT, f"HOST root lost: {e}") from e
        known = self._index.records_under(prefix)
        produced: list[ChangeEvent] = []

        for path in sorted(set(known) - set(on_disk)):
            self._index.remove(path)
            produced.append(self._emit(path, ChangeKind.REMOVE, None, synthetic=True))

        for path in sorted(on_disk):
            record = on_disk[path]
            previous = known.get(path)
            if previous is None:
                kind = ChangeKind.ADD
            elif not previous.same_stamp(record):
                kind = ChangeKind.UPDATE
            else:
                continue
            self._index.upsert(record)
            produced.append(self._emit(path, kind, record, synthetic=True))

        logger.info(
            "Resynced %r: %d changes (%d on disk, %d indexed)",
            prefix or "/",
            len(produced),
            len(on_disk),
            len(known),
        )
        return produced

    def _emit(
        self,
        path: str,
        kind: ChangeKind,
        record: FileRecord | None,
        synthetic: bool = False,
    ) -> ChangeEvent:
        change = ChangeEvent(
            path=path,
            kind=kind,
            seq=next(self._seq),
            record=_snapshot(record) if record is not None else None,
            synthetic=synthetic,
        )
        logger.debug("Classified %r", change)
        return change


def _snapshot(record: FileRecord) -> FileRecord:
    """Copy a record so downstream threads never share the index's objects."""
    return FileRecord(
        relative_path=record.relative_path,
        modified_at=record.modified_at,
        size_bytes=record.size_bytes,
        fingerprint=record.fingerprint,
    )
