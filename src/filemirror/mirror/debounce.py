"""Per-path debouncing of raw filesystem events.

Raw events for the same path that arrive within the debounce window are
merged into one pending change. The window is trailing: every new event
for a path extends that path's deadline.

Merge rules (pending kind + new kind -> merged kind):
    DELETED   + CREATED   -> RECREATED  (editor delete-then-recreate on save)
    DELETED   + MODIFIED  -> RECREATED
    RECREATED + MODIFIED  -> RECREATED
    RECREATED + CREATED   -> RECREATED
    *         + other     -> other      (last kind wins)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from filemirror.mirror.types import RawEvent, RawKind

_MERGES: dict[tuple[RawKind, RawKind], RawKind] = {
    (RawKind.DELETED, RawKind.CREATED): RawKind.RECREATED,
    (RawKind.DELETED, RawKind.MODIFIED): RawKind.RECREATED,
    (RawKind.RECREATED, RawKind.MODIFIED): RawKind.RECREATED,
    (RawKind.RECREATED, RawKind.CREATED): RawKind.RECREATED,
}


def merge_kinds(pending: RawKind, incoming: RawKind) -> RawKind:
    """Merge the kind of a pending change with a newly observed kind."""
    return _MERGES.get((pending, incoming), incoming)


@dataclass
class PendingChange:
    """A debounced change waiting for its window to close."""

    path: str
    kind: RawKind
    first_seen: float
    last_seen: float
    merged: int = 1


class Debouncer:
    """Coalesces bursts of raw events on the same path.

    Not thread-safe: owned by the normalizer.

    Usage:
        debouncer = Debouncer(window_s=0.3)
        debouncer.feed(raw_event)
        for change in debouncer.due():
            ...
    """

    def __init__(
        self,
        window_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the debouncer.

        Args:
            window_s: Debounce window in seconds.
            clock: Monotonic time source.
        """
        self._window = window_s
        self._clock = clock
        self._pending: dict[str, PendingChange] = {}
        self._ready: list[PendingChange] = []

    @property
    def window(self) -> float:
        """Get the debounce window in seconds."""
        return self._window

    def feed(self, event: RawEvent, now: float | None = None) -> None:
        """Add a single-path raw event (CREATED, MODIFIED or DELETED).

        Args:
            event: The raw event.
            now: Current time (defaults to the clock).
        """
        if event.kind not in (RawKind.CREATED, RawKind.MODIFIED, RawKind.DELETED):
            raise ValueError(f"Cannot debounce {event.kind.name} events")

        now = self._clock() if now is None else now
        pending = self._pending.get(event.path)

        if pending is not None and now - pending.last_seen >= self._window:
            # The previous burst is over even though nobody collected it yet
            self._ready.append(self._pending.pop(event.path))
            pending = None

        if pending is None:
            self._pending[event.path] = PendingChange(
                path=event.path,
                kind=event.kind,
                first_seen=now,
                last_seen=now,
            )
            return

        pending.kind = merge_kinds(pending.kind, event.kind)
        pending.last_seen = now
        pending.merged += 1

    def due(self, now: float | None = None) -> list[PendingChange]:
        """Collect changes whose window has closed.

        Returns:
            Changes ordered by when their burst started.
        """
        now = self._clock() if now is None else now
        ready, self._ready = self._ready, []
        for path, pending in list(self._pending.items()):
            if now - pending.last_seen >= self._window:
                ready.append(self._pending.pop(path))
        ready.sort(key=lambda p: p.first_seen)
        return ready

    def next_deadline(self) -> float | None:
        """Get the earliest time at which a pending change becomes due."""
        if self._ready:
            return self._clock()
        if not self._pending:
            return None
        return min(p.last_seen for p in self._pending.values()) + self._window

    def discard(self) -> list[PendingChange]:
        """Drop everything still waiting; used on cancellation."""
        dropped = self._ready + list(self._pending.values())
        self._ready = []
        self._pending.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._pending) + len(self._ready)

    def __contains__(self, path: object) -> bool:
        return path in self._pending or any(p.path == path for p in self._ready)
