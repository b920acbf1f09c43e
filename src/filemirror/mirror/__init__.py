"""Change detection: path index, watcher, debouncer and normalizer.

Propagation (engine, workers, conflict, reporter, session) lives in the
submodules of this package and is imported from there, since it depends
on filemirror.transport.
"""

from filemirror.mirror.debounce import Debouncer, PendingChange
from filemirror.mirror.ignore import IGNORE_FILE_NAME, IgnorePatterns
from filemirror.mirror.index import FileRecord, PathIndex, format_record
from filemirror.mirror.normalizer import Normalizer
from filemirror.mirror.types import (
    ChangeEvent,
    ChangeKind,
    ErrorKind,
    FatalError,
    MirrorError,
    Outcome,
    OutcomeKind,
    PathTraversalError,
    RawEvent,
    RawKind,
    TargetStatus,
)
from filemirror.mirror.watcher import FileWatcher

__all__ = [
    # Types
    "ChangeEvent",
    "ChangeKind",
    "ErrorKind",
    "FatalError",
    "MirrorError",
    "Outcome",
    "OutcomeKind",
    "PathTraversalError",
    "RawEvent",
    "RawKind",
    "TargetStatus",
    # Detection
    "Debouncer",
    "FileRecord",
    "FileWatcher",
    "IGNORE_FILE_NAME",
    "IgnorePatterns",
    "Normalizer",
    "PathIndex",
    "PendingChange",
    "format_record",
]
