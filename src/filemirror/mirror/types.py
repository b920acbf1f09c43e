"""Shared types and dataclasses for mirroring.

This module provides:
- MirrorError, FatalError, PathTraversalError: Exception classes
- ErrorKind: Classification of failed operations
- RawKind, RawEvent: Watcher output (no semantic interpretation)
- ChangeKind, ChangeEvent: Normalizer output (classified against the index)
- OutcomeKind, Outcome: Result of applying one ChangeEvent to one target
- TargetStatus: Connection health of a target
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from filemirror.mirror.index import FileRecord


class MirrorError(Exception):
    """Base exception for mirroring errors."""


class FatalError(MirrorError):
    """A precondition of the run failed.

    Raised before propagation starts, or mid-run when the HOST root can
    no longer be read; the run then stops and reports what it applied.

    Attributes:
        precondition: Which check failed ("unreadable_root", "no_targets",
            "all_targets_unreachable").
    """

    UNREADABLE_ROOT = "unreadable_root"
    NO_TARGETS = "no_targets"
    ALL_TARGETS_UNREACHABLE = "all_targets_unreachable"

    def __init__(self, precondition: str, message: str) -> None:
        self.precondition = precondition
        super().__init__(message)


class PathTraversalError(MirrorError):
    """A relative path resolves outside of its tree root."""


class ErrorKind(Enum):
    """Why an operation failed."""

    TIMEOUT = "timeout"
    CONNECTION_LOST = "connection_lost"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    NO_SPACE = "no_space"
    PATH_TRAVERSAL = "path_traversal"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @property
    def transient(self) -> bool:
        """Check if retrying may succeed."""
        return self in TRANSIENT_ERRORS


TRANSIENT_ERRORS = frozenset({ErrorKind.TIMEOUT, ErrorKind.CONNECTION_LOST})


# =============================================================================
# Watcher Types
# =============================================================================


class RawKind(IntEnum):
    """Canonical kind of a native filesystem notification.

    RECREATED and RESCAN never come from the OS directly: RECREATED is the
    debouncer's merge of Deleted followed by Created, RESCAN asks the
    normalizer to reconcile a whole subtree against the disk.
    """

    CREATED = auto()
    MODIFIED = auto()
    DELETED = auto()
    RENAMED = auto()
    RECREATED = auto()
    RESCAN = auto()


@dataclass(frozen=True)
class RawEvent:
    """A single native notification, relative to the HOST root.

    Attributes:
        path: Forward-slash path relative to HOST ("" is the root itself).
        kind: What the OS reported.
        timestamp: Monotonic time the notification was received.
        dest_path: New path for RENAMED events.
        is_directory: Whether the notification concerns a directory.
    """

    path: str
    kind: RawKind
    timestamp: float = field(default_factory=time.monotonic)
    dest_path: str | None = None
    is_directory: bool = False


# =============================================================================
# Change Types
# =============================================================================


class ChangeKind(Enum):
    """Kind of a classified change."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"

    @property
    def writes(self) -> bool:
        """Check if applying this change writes file content."""
        return self is not ChangeKind.REMOVE


@dataclass(frozen=True)
class ChangeEvent:
    """A normalized, single-path unit of work.

    Attributes:
        path: Forward-slash path relative to HOST.
        kind: ADD, UPDATE or REMOVE.
        observed_at: Wall-clock time the change was classified.
        seq: Classification order; strictly increasing within a run.
        record: Index stamp at classification (None for REMOVE).
        synthetic: True for events made by the initial clone or a resync.
    """

    path: str
    kind: ChangeKind
    seq: int
    observed_at: float = field(default_factory=time.time)
    record: FileRecord | None = None
    synthetic: bool = False

    def __repr__(self) -> str:
        return f"ChangeEvent({self.kind.name}, path={self.path!r}, seq={self.seq})"


# =============================================================================
# Outcome Types
# =============================================================================


class OutcomeKind(Enum):
    """Result category of a propagation task."""

    APPLIED = "applied"
    SKIPPED_BY_POLICY = "skipped_by_policy"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    """Result of applying one ChangeEvent to one target."""

    kind: OutcomeKind
    error: ErrorKind | None = None
    detail: str = ""

    @classmethod
    def applied(cls, detail: str = "") -> Outcome:
        return cls(OutcomeKind.APPLIED, detail=detail)

    @classmethod
    def skipped(cls, detail: str) -> Outcome:
        return cls(OutcomeKind.SKIPPED_BY_POLICY, detail=detail)

    @classmethod
    def failed(cls, error: ErrorKind, detail: str = "") -> Outcome:
        return cls(OutcomeKind.FAILED, error=error, detail=detail)

    @property
    def label(self) -> str:
        """Short text used in log records and the report."""
        if self.kind is OutcomeKind.FAILED and self.error is not None:
            return f"failed({self.error.value})"
        return self.kind.value


class TargetStatus(Enum):
    """Connection health of a target."""

    CONNECTED = "connected"
    DEGRADED = "degraded"
    DISCONNECTED = "disconnected"
