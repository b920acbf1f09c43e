"""Per-target accounting of propagation outcomes.

This module provides:
- RunReporter: Thread-safe accumulator fed by target workers
- Report / TargetReport: Immutable summary produced once at shutdown
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from filemirror.mirror.types import (
    ChangeKind,
    ErrorKind,
    Outcome,
    OutcomeKind,
    TargetStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class TargetReport:
    """Outcomes for one target.

    Applied writes (ADD/UPDATE) and applied removals are counted apart so
    a run summary can say "3 transferred, 1 removed".
    """

    name: str
    address: str = ""
    status: TargetStatus = TargetStatus.CONNECTED
    transferred_paths: list[str] = field(default_factory=list)
    removed_paths: list[str] = field(default_factory=list)
    skipped_paths: list[str] = field(default_factory=list)
    failed_paths: list[tuple[str, ErrorKind]] = field(default_factory=list)

    @property
    def transferred(self) -> int:
        return len(self.transferred_paths)

    @property
    def removed(self) -> int:
        return len(self.removed_paths)

    @property
    def applied(self) -> int:
        return self.transferred + self.removed

    @property
    def skipped(self) -> int:
        return len(self.skipped_paths)

    @property
    def failed(self) -> int:
        return len(self.failed_paths)

    @property
    def completed_ops(self) -> int:
        """Get how many operations reached a final outcome."""
        return self.applied + self.skipped + self.failed

    @property
    def healthy(self) -> bool:
        """Check if nothing failed and the target ended connected."""
        return self.failed == 0 and self.status is TargetStatus.CONNECTED

    def summary_line(self) -> str:
        """Short human-readable summary."""
        return (
            f"{self.name}: {self.transferred} transferred, {self.removed} removed, "
            f"{self.skipped} skipped, {self.failed} failed [{self.status.value}]"
        )


@dataclass(frozen=True)
class Report:
    """Final run report, in target configuration order.

    error is set when the run stopped early because the HOST root was lost.
    """

    targets: tuple[TargetReport, ...]
    error: str = ""

    def target(self, name: str) -> TargetReport:
        """Look up the report of one target."""
        for report in self.targets:
            if report.name == name:
                return report
        raise KeyError(name)

    @property
    def exit_code(self) -> int:
        """0 if every target is healthy and the run was not cut short, 1 otherwise."""
        if self.error:
            return 1
        return 0 if all(t.healthy for t in self.targets) else 1

    def render(self) -> str:
        """Multi-line text for the terminal."""
        lines = ["Mirror report:"]
        if self.error:
            lines.append(f"  run stopped early: {self.error}")
        for report in self.targets:
            lines.append(f"  {report.summary_line()}")
            for path in report.skipped_paths:
                lines.append(f"    skipped  {path}")
            for path, kind in report.failed_paths:
                lines.append(f"    failed   {path} ({kind.value})")
        return "\n".join(lines)


class RunReporter:
    """Collects outcomes from every target worker.

    Usage:
        reporter = RunReporter()
        reporter.register("backup", "alice@backup:/srv")
        reporter.record("backup", change.path, change.kind, Outcome.applied())
        report = reporter.summarize()
    """

    def __init__(self) -> None:
        self._targets: dict[str, TargetReport] = {}
        self._lock = threading.Lock()
        self._summarized = False
        self._error = ""

    def register(self, name: str, address: str = "", status: TargetStatus = TargetStatus.CONNECTED) -> None:
        """Add a target; reports keep registration order."""
        with self._lock:
            if name not in self._targets:
                self._targets[name] = TargetReport(name=name, address=address, status=status)

    def stopped_early(self, reason: str) -> None:
        """Note that the run ended before it was asked to stop."""
        with self._lock:
            self._error = reason

    def set_status(self, name: str, status: TargetStatus) -> None:
        """Record the latest status of a target."""
        with self._lock:
            self._get(name).status = status

    def record(self, target: str, path: str, kind: ChangeKind, outcome: Outcome) -> None:
        """Account for one finished operation."""
        with self._lock:
            if self._summarized:
                logger.warning("Ignoring late outcome for %s on %s: %s", path, target, outcome.kind.name)
                return
            report = self._get(target)
            if outcome.kind is OutcomeKind.APPLIED:
                if kind is ChangeKind.REMOVE:
                    report.removed_paths.append(path)
                else:
                    report.transferred_paths.append(path)
            elif outcome.kind is OutcomeKind.SKIPPED_BY_POLICY:
                report.skipped_paths.append(path)
            else:
                report.failed_paths.append((path, outcome.error or ErrorKind.UNKNOWN))

    def summarize(self) -> Report:
        """Produce the final report; may only be called once."""
        with self._lock:
            if self._summarized:
                raise RuntimeError("summarize() can only be called once")
            self._summarized = True
            return Report(targets=tuple(self._targets.values()), error=self._error)

    def _get(self, name: str) -> TargetReport:
        report = self._targets.get(name)
        if report is None:
            report = self._targets[name] = TargetReport(name=name)
        return report
