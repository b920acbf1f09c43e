"""One worker thread per target.

This module provides:
- TargetWorker: Applies ChangeEvents to a single target in arrival order

The worker thread is the only owner of its target's transport, status,
conflict decisions and queues. Other threads talk to it through its inbox:

- CHANGE messages are bounded by a semaphore; a full inbox blocks submit()
- DECISION, RECOVERED and STOP messages are never blocked

Ordering: a path waiting for a conflict decision is parked, and changes
for that path queue up in a lane behind it while other paths continue.
A target that fails repeatedly (or exhausts retries on a transient error)
becomes DEGRADED: its changes go to a backlog, the worker probes the
connection with capped exponential backoff and replays the backlog in
order once the target is reachable again.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path

from filemirror.mirror.conflict import ConflictDecision, ConflictPolicy, ConflictQuery
from filemirror.mirror.logs import log_outcome
from filemirror.mirror.reporter import RunReporter
from filemirror.mirror.retry import RetryPolicy, backoff_delays, retry_with_backoff
from filemirror.mirror.types import (
    ChangeEvent,
    ErrorKind,
    Outcome,
    PathTraversalError,
    TargetStatus,
)
from filemirror.mirror.workers.transfer import (
    SourceVanished,
    push_file,
    remove_file,
    same_content,
)
from filemirror.transport.base import Transport, TransportError
from filemirror.transport.registry import Target

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 256
DEFAULT_DEGRADE_AFTER = 3

_SLOT_POLL = 0.1


class _MessageKind(Enum):
    CHANGE = auto()
    DECISION = auto()
    RECOVERED = auto()
    STOP = auto()


@dataclass
class _Message:
    kind: _MessageKind
    change: ChangeEvent | None = None
    path: str | None = None
    decision: ConflictDecision | None = None


class _Verdict(Enum):
    """Result of checking a first write against the target."""

    WRITE = auto()
    IDENTICAL = auto()
    SKIP = auto()
    ASKED = auto()


class TargetWorker:
    """Applies changes to one target on a dedicated thread.

    Usage:
        worker = TargetWorker(target, host_root, reporter, policy)
        worker.start()
        worker.submit(change)
        worker.stop()
        worker.join(timeout=10.0)
    """

    def __init__(
        self,
        target: Target,
        host_root: Path,
        reporter: RunReporter,
        policy: ConflictPolicy,
        retry: RetryPolicy | None = None,
        capacity: int = DEFAULT_CAPACITY,
        degrade_after: int = DEFAULT_DEGRADE_AFTER,
        reconnect_delays: Callable[[], Iterator[float]] = backoff_delays,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the worker.

        Args:
            target: Target with an opened (or unreachable) transport.
            host_root: HOST tree root files are read from.
            reporter: Receives one outcome per change.
            policy: Shared conflict policy.
            retry: Retry schedule for transient failures.
            capacity: Changes that may wait in the inbox before submit blocks.
            degrade_after: Consecutive failed changes that degrade the target.
            reconnect_delays: Creates the probe schedule used while degraded.
            clock: Monotonic time source.
        """
        self._target = target
        self._host_root = Path(host_root).resolve()
        self._reporter = reporter
        self._policy = policy
        self._retry = retry or RetryPolicy()
        self._degrade_after = degrade_after
        self._reconnect_delays = reconnect_delays
        self._clock = clock

        self._inbox: queue.Queue[_Message] = queue.Queue()
        self._slots = threading.BoundedSemaphore(capacity)
        self._abandon = threading.Event()
        self._closed = False
        self._thread: threading.Thread | None = None

        self._outstanding = 0
        self._idle = threading.Condition()

        # Worker-thread state
        self._decisions: dict[str, ConflictDecision] = {}
        self._owned: set[str] = set()
        self._parked: dict[str, ChangeEvent] = {}
        self._lanes: dict[str, deque[ChangeEvent]] = {}
        self._backlog: deque[ChangeEvent] = deque()
        self._failures = 0
        self._delays: Iterator[float] | None = None
        self._next_probe: float | None = None
        self._stopping = False

    @property
    def name(self) -> str:
        """Get the target name."""
        return self._target.name

    @property
    def target(self) -> Target:
        """Get the target."""
        return self._target

    @property
    def transport(self) -> Transport:
        """Get the transport of the target."""
        return self._target.transport

    @property
    def is_alive(self) -> bool:
        """Check if the worker thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def outstanding(self) -> int:
        """Get how many submitted changes have no outcome yet."""
        with self._idle:
            return self._outstanding

    # =========================================================================
    # Caller side
    # =========================================================================

    def start(self) -> None:
        """Start the worker thread."""
        if self._thread is not None:
            return
        if self._target.status is not TargetStatus.CONNECTED:
            self._schedule_probe()
        self._thread = threading.Thread(target=self._run, name=f"target-{self.name}", daemon=True)
        self._thread.start()

    def submit(self, change: ChangeEvent, stop: threading.Event | None = None) -> bool:
        """Queue a change, blocking while the inbox is full.

        Args:
            change: Change to apply.
            stop: Ends the wait for a free slot.

        Returns:
            False if the worker is gone or stop was set while waiting; the
            change was recorded as cancelled instead.
        """
        if self._closed:
            raise RuntimeError(f"Worker for {self.name} no longer accepts changes")
        with self._idle:
            self._outstanding += 1
        while not self._slots.acquire(timeout=_SLOT_POLL):
            if stop is not None and stop.is_set():
                self._finish(change, Outcome.failed(ErrorKind.CANCELLED, "stopped while queueing"))
                return False
            if self._abandon.is_set() or not self.is_alive:
                self._finish(change, Outcome.failed(ErrorKind.CANCELLED, "worker stopped"))
                return False
        self._inbox.put(_Message(_MessageKind.CHANGE, change=change))
        return True

    def decide(self, path: str, decision: ConflictDecision) -> None:
        """Deliver a conflict decision for a parked path."""
        self._inbox.put(_Message(_MessageKind.DECISION, path=path, decision=decision))

    def mark_healthy(self) -> None:
        """Tell the worker its target is reachable again."""
        self._inbox.put(_Message(_MessageKind.RECOVERED))

    def stop(self) -> None:
        """Stop accepting changes; the worker exits once drained."""
        self._closed = True
        self._inbox.put(_Message(_MessageKind.STOP))

    def abandon(self) -> None:
        """Give up on remaining work; it is recorded as cancelled."""
        self._closed = True
        self._abandon.set()
        self._inbox.put(_Message(_MessageKind.STOP))

    def cancel_queued(self) -> int:
        """Record changes still waiting in the inbox as cancelled.

        Used when the worker thread is stuck in a transport call and will
        not get to them before the report is produced.

        Returns:
            Number of changes cancelled.
        """
        drained = self._drain_inbox()
        for change in drained:
            self._finish(change, Outcome.failed(ErrorKind.CANCELLED, "target did not respond"))
        return len(drained)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the thread to exit.

        Returns:
            True if the thread has exited.
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until every submitted change has an outcome."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    # =========================================================================
    # Worker thread
    # =========================================================================

    def _run(self) -> None:
        logger.debug("Worker for %s started", self.name)
        try:
            while True:
                if self._probe_due():
                    self._probe()

                message = self._next_message()
                if message is not None:
                    self._handle(message)

                if self._abandon.is_set():
                    self._cancel_remaining()
                    return
                if self._stopping and not self._parked and not self._backlog:
                    return
        except Exception:
            logger.exception("Worker for %s crashed", self.name)
            self._cancel_remaining()
        finally:
            logger.debug("Worker for %s exited", self.name)

    def _next_message(self) -> _Message | None:
        timeout: float | None = None
        if self._next_probe is not None:
            timeout = max(0.0, self._next_probe - self._clock())
        try:
            return self._inbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def _handle(self, message: _Message) -> None:
        if message.kind is _MessageKind.CHANGE:
            self._slots.release()
            assert message.change is not None
            self._accept(message.change)
        elif message.kind is _MessageKind.DECISION:
            assert message.path is not None and message.decision is not None
            self._resume(message.path, message.decision)
        elif message.kind is _MessageKind.RECOVERED:
            self._recover()
        elif message.kind is _MessageKind.STOP:
            self._stopping = True

    def _accept(self, change: ChangeEvent) -> None:
        """Route a change: behind a parked path, to the backlog, or out."""
        lane = self._lanes.get(change.path)
        if lane is not None:
            lane.append(change)
            return
        if self._target.status is not TargetStatus.CONNECTED:
            self._backlog.append(change)
            return
        self._dispatch(change)

    def _dispatch(self, change: ChangeEvent) -> None:
        cached = self._decisions.get(change.path)
        if cached in (ConflictDecision.SKIP, ConflictDecision.ABORT):
            self._finish(change, Outcome.skipped(f"conflict resolved as {cached.value}"))
            return

        if change.kind.writes and cached is None and change.path not in self._owned:
            try:
                verdict = retry_with_backoff(
                    lambda: self._check_conflict(change),
                    self._retry,
                    self._abandon,
                    f"conflict check of {change.path} on {self.name}",
                )
            except Exception as e:
                self._handle_error(change, e)
                return

            if verdict is _Verdict.ASKED:
                self._parked[change.path] = change
                self._lanes[change.path] = deque()
                return
            if verdict is _Verdict.IDENTICAL:
                self._owned.add(change.path)
                self._failures = 0
                self._finish(change, Outcome.applied("already identical"))
                return
            if verdict is _Verdict.SKIP:
                decision = self._decisions[change.path]
                self._finish(change, Outcome.skipped(f"conflict resolved as {decision.value}"))
                return

        self._apply(change)

    def _check_conflict(self, change: ChangeEvent) -> _Verdict:
        existing = self.transport.stat(change.path)
        if existing is None:
            return _Verdict.WRITE

        host_size = change.record.size_bytes if change.record is not None else None
        if same_content(self.transport, self._host_root, change.path, existing, host_size):
            return _Verdict.IDENTICAL

        query = ConflictQuery(change.path, self.name, existing, change.record)
        path = change.path
        decision = self._policy.resolve(query, lambda d: self.decide(path, d))
        if decision is None:
            return _Verdict.ASKED
        self._decisions[change.path] = decision
        if decision is ConflictDecision.OVERWRITE:
            return _Verdict.WRITE
        return _Verdict.SKIP

    def _resume(self, path: str, decision: ConflictDecision) -> None:
        change = self._parked.pop(path, None)
        if change is None:
            logger.debug("Ignoring decision for %s on %s: nothing parked", path, self.name)
            return
        self._decisions[path] = decision
        lane = self._lanes.pop(path, deque())

        if decision is ConflictDecision.ABORT:
            self._finish(change, Outcome.skipped("conflict resolved as abort"))
            for queued in lane:
                self._finish(queued, Outcome.skipped("dropped after abort"))
            return

        self._accept(change)
        for queued in lane:
            self._accept(queued)

    def _apply(self, change: ChangeEvent) -> None:
        description = f"{change.kind.name} {change.path} on {self.name}"
        try:
            if change.kind.writes:
                retry_with_backoff(
                    lambda: push_file(self.transport, self._host_root, change.path),
                    self._retry,
                    self._abandon,
                    description,
                )
                self._owned.add(change.path)
                outcome = Outcome.applied()
            else:
                removed = retry_with_backoff(
                    lambda: remove_file(self.transport, change.path),
                    self._retry,
                    self._abandon,
                    description,
                )
                outcome = Outcome.applied("" if removed else "already absent")
        except SourceVanished:
            outcome = Outcome.skipped("superseded")
        except Exception as e:
            self._handle_error(change, e)
            return

        self._failures = 0
        self._finish(change, outcome)

    def _handle_error(self, change: ChangeEvent, error: Exception) -> None:
        """Turn an exception into a Failed outcome or a degraded target."""
        if isinstance(error, TransportError):
            if error.kind is ErrorKind.CANCELLED:
                self._finish(change, Outcome.failed(ErrorKind.CANCELLED, str(error)))
                return
            if error.transient:
                self._backlog.appendleft(change)
                self._degrade(f"{error.kind.value}: {error}")
                return
            kind = error.kind
        elif isinstance(error, PathTraversalError):
            kind = ErrorKind.PATH_TRAVERSAL
        elif isinstance(error, OSError):
            kind = TransportError.from_os_error(error).kind
        else:
            logger.exception("Unexpected error applying %r to %s", change, self.name)
            kind = ErrorKind.UNKNOWN

        self._finish(change, Outcome.failed(kind, str(error)))
        self._failures += 1
        if self._failures >= self._degrade_after:
            self._degrade(f"{self._failures} consecutive failures")

    def _degrade(self, reason: str) -> None:
        if self._target.status is TargetStatus.CONNECTED:
            self._target.set_status(TargetStatus.DEGRADED, reason)
            self._reporter.set_status(self.name, TargetStatus.DEGRADED)
        self._schedule_probe()

    def _schedule_probe(self) -> None:
        self._delays = self._reconnect_delays()
        self._next_probe = self._clock() + next(self._delays)

    def _probe_due(self) -> bool:
        return self._next_probe is not None and self._clock() >= self._next_probe

    def _probe(self) -> None:
        logger.info("Probing %s", self.name)
        if self.transport.probe() or self.transport.reconnect():
            self._recover()
            return
        assert self._delays is not None
        delay = next(self._delays)
        self._next_probe = self._clock() + delay
        logger.info("%s still unreachable, next probe in %.0fs", self.name, delay)

    def _recover(self) -> None:
        """Mark the target connected and replay its backlog in order."""
        self._next_probe = None
        self._delays = None
        self._failures = 0
        self._target.set_status(TargetStatus.CONNECTED)
        self._reporter.set_status(self.name, TargetStatus.CONNECTED)

        if self._backlog:
            logger.info("Replaying %d queued changes on %s", len(self._backlog), self.name)
        while (
            self._backlog
            and self._target.status is TargetStatus.CONNECTED
            and not self._abandon.is_set()
        ):
            self._accept(self._backlog.popleft())

    def _cancel_remaining(self) -> None:
        remaining: list[ChangeEvent] = list(self._parked.values())
        for lane in self._lanes.values():
            remaining.extend(lane)
        remaining.extend(self._backlog)
        self._parked.clear()
        self._lanes.clear()
        self._backlog.clear()
        remaining.extend(self._drain_inbox())

        for change in sorted(remaining, key=lambda c: c.seq):
            self._finish(change, Outcome.failed(ErrorKind.CANCELLED, "shutdown grace period expired"))

    def _drain_inbox(self) -> list[ChangeEvent]:
        drained: list[ChangeEvent] = []
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                return drained
            if message.kind is _MessageKind.CHANGE and message.change is not None:
                self._slots.release()
                drained.append(message.change)

    def _finish(self, change: ChangeEvent, outcome: Outcome) -> None:
        self._reporter.record(self.name, change.path, change.kind, outcome)
        log_outcome(self.name, change.path, change.kind, outcome)
        with self._idle:
            self._outstanding -= 1
            self._idle.notify_all()
