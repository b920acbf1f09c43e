"""Propagation engine: fans ChangeEvents out to every target.

This module provides:
- EngineState: Lifecycle of the engine
- PropagationEngine: Owns one TargetWorker per target
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from enum import Enum, auto
from pathlib import Path

from filemirror.mirror.conflict import ConflictPolicy
from filemirror.mirror.reporter import RunReporter
from filemirror.mirror.retry import RetryPolicy, backoff_delays
from filemirror.mirror.types import ChangeEvent
from filemirror.mirror.workers.target import DEFAULT_CAPACITY, DEFAULT_DEGRADE_AFTER, TargetWorker
from filemirror.transport.registry import Target

logger = logging.getLogger(__name__)

ABANDON_JOIN_TIMEOUT = 2.0


class EngineState(Enum):
    """State of the propagation engine."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


class PropagationEngine:
    """Applies every ChangeEvent to every target, independently per target.

    Usage:
        engine = PropagationEngine(list(registry), root, reporter, policy)
        engine.start()
        engine.submit(change)
        engine.shutdown(grace_s=10.0)
    """

    def __init__(
        self,
        targets: Iterable[Target],
        host_root: Path,
        reporter: RunReporter,
        policy: ConflictPolicy,
        retry: RetryPolicy | None = None,
        capacity: int = DEFAULT_CAPACITY,
        degrade_after: int = DEFAULT_DEGRADE_AFTER,
        reconnect_delays: Callable[[], Iterator[float]] = backoff_delays,
    ) -> None:
        """Initialize the engine.

        Args:
            targets: Targets in configuration order, including unreachable ones.
            host_root: HOST tree root.
            reporter: Shared run reporter.
            policy: Shared conflict policy.
            retry: Retry schedule for transient failures.
            capacity: Per-target inbox capacity.
            degrade_after: Consecutive failures before a target is degraded.
            reconnect_delays: Probe schedule factory used while degraded.
        """
        self._reporter = reporter
        self._policy = policy
        self._state = EngineState.STOPPED
        self._lock = threading.Lock()
        self._workers: dict[str, TargetWorker] = {}

        for target in targets:
            reporter.register(target.name, target.descriptor.address, target.status)
            self._workers[target.name] = TargetWorker(
                target,
                host_root,
                reporter,
                policy,
                retry=retry,
                capacity=capacity,
                degrade_after=degrade_after,
                reconnect_delays=reconnect_delays,
            )

    @property
    def state(self) -> EngineState:
        """Get current engine state."""
        return self._state

    @property
    def workers(self) -> list[TargetWorker]:
        """Get the workers in target order."""
        return list(self._workers.values())

    def start(self) -> None:
        """Start one worker thread per target."""
        with self._lock:
            if self._state is not EngineState.STOPPED:
                logger.warning("Propagation engine already running")
                return
            self._state = EngineState.RUNNING
        for worker in self._workers.values():
            worker.start()
        logger.info("Propagation engine started for %d targets", len(self._workers))

    def submit(self, change: ChangeEvent, stop: threading.Event | None = None) -> bool:
        """Hand a change to every target; blocks while a target inbox is full.

        Args:
            change: Change to apply.
            stop: Ends the wait for a full inbox; the change is then
                recorded as cancelled on that target.

        Returns:
            False if the engine is not running.
        """
        if self._state is not EngineState.RUNNING:
            logger.warning("Cannot submit %r: engine not running", change)
            return False
        for worker in self._workers.values():
            worker.submit(change, stop)
        return True

    def submit_all(self, changes: Iterable[ChangeEvent], stop: threading.Event | None = None) -> int:
        """Submit several changes in order, until stop is set.

        Returns:
            Number of changes submitted.
        """
        count = 0
        for change in changes:
            if stop is not None and stop.is_set():
                logger.info("Stop requested, not queueing the remaining changes")
                break
            if not self.submit(change, stop):
                break
            count += 1
        return count

    def mark_healthy(self, name: str) -> None:
        """Report that a degraded target is reachable again."""
        worker = self._workers.get(name)
        if worker is None:
            raise KeyError(name)
        worker.mark_healthy()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until every submitted change has an outcome on every target.

        Returns:
            True if idle, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for worker in self._workers.values():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not worker.wait_idle(remaining):
                return False
        return True

    def shutdown(self, grace_s: float) -> None:
        """Stop accepting changes and drain in-flight work.

        Workers get grace_s seconds in total to finish; whatever is left
        afterwards is abandoned and recorded as Failed(cancelled).
        """
        with self._lock:
            if self._state is not EngineState.RUNNING:
                return
            self._state = EngineState.STOPPING
        logger.info("Propagation engine stopping (grace period %.1fs)...", grace_s)

        for worker in self._workers.values():
            worker.stop()

        deadline = time.monotonic() + grace_s
        for worker in self._workers.values():
            worker.join(max(0.0, deadline - time.monotonic()))

        lingering = [w for w in self._workers.values() if w.is_alive]
        for worker in lingering:
            logger.warning("Abandoning remaining work on %s", worker.name)
            worker.abandon()
        for worker in lingering:
            if not worker.join(ABANDON_JOIN_TIMEOUT):
                cancelled = worker.cancel_queued()
                logger.error("Worker for %s did not exit; cancelled %d queued changes", worker.name, cancelled)

        for worker in self._workers.values():
            self._reporter.set_status(worker.name, worker.target.status)
        self._policy.close()

        with self._lock:
            self._state = EngineState.STOPPED
        logger.info("Propagation engine stopped")
