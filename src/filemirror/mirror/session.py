"""One mirroring run from startup checks to the final report.

The session wires the pipeline together:

    FileWatcher -> Normalizer (owns PathIndex) -> PropagationEngine -> targets
                                                          |
                                                     RunReporter

The watcher/normalizer loop runs on the calling thread until the stop
event is set; the engine runs one thread per target.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from filemirror.core.config import MirrorConfig
from filemirror.mirror.conflict import ConflictPolicy, Prompter
from filemirror.mirror.engine import PropagationEngine
from filemirror.mirror.ignore import IGNORE_FILE_NAME, IgnorePatterns
from filemirror.mirror.index import FileRecord, PathIndex, format_record
from filemirror.mirror.normalizer import Normalizer
from filemirror.mirror.reporter import Report, RunReporter
from filemirror.mirror.retry import RetryPolicy
from filemirror.mirror.types import FatalError
from filemirror.mirror.watcher import FileWatcher
from filemirror.transport.registry import TargetRegistry, TransportFactory, open_transport

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


def build_ignore(root: Path, extra: list[str] | None = None) -> IgnorePatterns:
    """Default patterns + the tree's .mirrorignore + configured extras."""
    ignore = IgnorePatterns(extra)
    loaded = ignore.load_from_file(root / IGNORE_FILE_NAME)
    if loaded:
        logger.info("Loaded %d ignore patterns from %s", loaded, IGNORE_FILE_NAME)
    return ignore


def check_root(root: Path) -> Path:
    """Resolve the HOST root and make sure it can be read.

    Raises:
        FatalError: If the root is missing, not a directory or unreadable.
    """
    resolved = Path(root).expanduser().resolve()
    if not resolved.is_dir():
        raise FatalError(FatalError.UNREADABLE_ROOT, f"HOST root is not a directory: {resolved}")
    if not os.access(resolved, os.R_OK | os.X_OK):
        raise FatalError(FatalError.UNREADABLE_ROOT, f"HOST root is not readable: {resolved}")
    return resolved


class MirrorSession:
    """Runs the watch-and-propagate pipeline for one configuration.

    Usage:
        session = MirrorSession(config)
        report = session.run(stop_event)
        print(report.render())
    """

    def __init__(
        self,
        config: MirrorConfig,
        prompter: Prompter | None = None,
        transport_factory: TransportFactory = open_transport,
        retry: RetryPolicy | None = None,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Root, targets and options.
            prompter: Asks about conflicts when interactive_conflicts is set.
            transport_factory: Creates a transport per target.
            retry: Retry schedule for transient transport failures.
            observer_factory: Creates the watchdog observer.
        """
        self._config = config
        self._prompter = prompter
        self._transport_factory = transport_factory
        self._retry = retry
        self._observer_factory = observer_factory
        self._index: PathIndex | None = None
        self._engine: PropagationEngine | None = None
        self._ready = threading.Event()

    @property
    def index(self) -> PathIndex | None:
        """Get the HOST index once the run has seeded it."""
        return self._index

    @property
    def engine(self) -> PropagationEngine | None:
        """Get the engine of the current run."""
        return self._engine

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until the run is watching and the initial clone is queued."""
        return self._ready.wait(timeout)

    def run(self, stop: threading.Event) -> Report:
        """Mirror until stop is set, then drain and report.

        Losing the HOST root mid-run also ends the run; the report then
        carries the reason.

        Raises:
            FatalError: If the HOST root is unreadable, no targets are
                configured, or no target can be reached.
        """
        options = self._config.options
        root = check_root(self._config.root)
        if not self._config.targets:
            raise FatalError(FatalError.NO_TARGETS, "No targets configured")

        policy = ConflictPolicy(options.interactive_conflicts, self._prompter)
        reporter = RunReporter()
        ignore = build_ignore(root, options.ignore)
        index = PathIndex(root, ignore)
        if self._observer_factory is not None:
            watcher = FileWatcher(root, ignore, observer_factory=self._observer_factory)
        else:
            watcher = FileWatcher(root, ignore)

        # Watch before seeding so changes made during the walk are not lost
        watcher.start()
        try:
            try:
                records = index.seed()
            except OSError as e:
                raise FatalError(FatalError.UNREADABLE_ROOT, f"Cannot read HOST root: {e}") from e
            self._index = index
            self._log_index("Index at start")

            registry = TargetRegistry.open(self._config.targets, self._transport_factory)
            try:
                engine = PropagationEngine(registry, root, reporter, policy, retry=self._retry)
                self._engine = engine
                self._propagate(
                    engine, reporter, Normalizer(index, options.debounce_ms), records, watcher, stop
                )
            finally:
                registry.close()
        finally:
            watcher.stop()
            policy.close()

        self._log_index("Index at stop")
        return reporter.summarize()

    def _propagate(
        self,
        engine: PropagationEngine,
        reporter: RunReporter,
        normalizer: Normalizer,
        records: list[FileRecord],
        watcher: FileWatcher,
        stop: threading.Event,
    ) -> None:
        options = self._config.options
        engine.start()
        try:
            if options.clone_on_start:
                queued = engine.submit_all(normalizer.initial_changes(records), stop)
                logger.info("Queued %d files for the initial clone", queued)
            self._ready.set()

            try:
                for change in normalizer.changes(watcher.batches(stop)):
                    engine.submit(change, stop)
            except FatalError as e:
                logger.error("Stopping: %s", e)
                reporter.stopped_early(str(e))
        finally:
            self._ready.set()
            engine.shutdown(options.grace_period_s)

    def _log_index(self, title: str) -> None:
        if self._index is None or not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug("%s (%d files):", title, len(self._index))
        for record in self._index:
            logger.debug("  %s", format_record(record))
