"""In-memory path index.

This module provides:
- FileRecord: Last-known stamp (mtime, size) and lazy fingerprint of a file
- PathIndex: Hash-map backed record of every regular file under one tree
- to_relative: Convert an absolute path to the index key format
- format_record: Render a record as a "[YYYY-MM-DD HH:MM] path" line

The HOST index is only mutated by the normalizer; it is seeded once and
then kept current from normalized events (and subtree resyncs).
"""

from __future__ import annotations

import logging
import os
import stat as stat_mod
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath

from filemirror.core.hashing import compute_file_hash
from filemirror.mirror.ignore import IgnorePatterns
from filemirror.mirror.types import PathTraversalError

logger = logging.getLogger(__name__)


@dataclass
class FileRecord:
    """One entry in the path index.

    Attributes:
        relative_path: Forward-slash path relative to the tree root.
        modified_at: Modification time in seconds since the epoch.
        size_bytes: File size.
        fingerprint: SHA-256 of the content, computed on demand.
    """

    relative_path: str
    modified_at: float
    size_bytes: int
    fingerprint: str | None = None

    @property
    def stamp(self) -> tuple[float, int]:
        """(mtime, size) pair used for change detection."""
        return (self.modified_at, self.size_bytes)

    def same_stamp(self, other: FileRecord) -> bool:
        """Check if two records describe the same file state."""
        return self.stamp == other.stamp


def format_record(record: FileRecord) -> str:
    """Render a record as a listing line, e.g. ``[2024-05-01 09:30] docs/a.txt``."""
    stamp = datetime.fromtimestamp(record.modified_at).strftime("%Y-%m-%d %H:%M")
    return f"[{stamp}] {record.relative_path}"


def to_relative(path: Path, root: Path) -> str | None:
    """Convert an absolute path under root to a forward-slash key.

    Returns:
        The relative key ("" for the root itself), or None if path is
        outside root.
    """
    try:
        rel = path.relative_to(root)
    except ValueError:
        return None
    key = rel.as_posix()
    return "" if key == "." else key


def check_relative(rel_path: str) -> str:
    """Validate that a relative key stays inside its root.

    Raises:
        PathTraversalError: For absolute paths or ".." components.
    """
    pure = PurePosixPath(rel_path)
    if not rel_path or pure.is_absolute() or ".." in pure.parts or "\\" in rel_path:
        raise PathTraversalError(f"Path escapes tree root: {rel_path!r}")
    return rel_path


class PathIndex:
    """Hash-map backed index of regular files under a root.

    Usage:
        index = PathIndex(Path("INBOX"))
        records = index.seed()
        record = index.lookup("docs/readme.txt")
    """

    def __init__(self, root: Path, ignore: IgnorePatterns | None = None) -> None:
        """Initialize an empty index.

        Args:
            root: Tree root.
            ignore: Patterns excluded from walks.
        """
        self._root = Path(root).resolve()
        self._ignore = ignore or IgnorePatterns()
        self._records: dict[str, FileRecord] = {}

    @property
    def root(self) -> Path:
        """Get the tree root."""
        return self._root

    @property
    def ignore(self) -> IgnorePatterns:
        """Get the ignore patterns used by walks."""
        return self._ignore

    def seed(self) -> list[FileRecord]:
        """Replace the index content with a fresh walk of the whole tree.

        Returns:
            Records ordered by relative path.

        Raises:
            OSError: If the root itself cannot be read.
        """
        found = self.walk()
        self._records = dict(found)
        logger.info("Indexed %d files under %s", len(found), self._root)
        return [found[path] for path in sorted(found)]

    def walk(self, prefix: str = "") -> dict[str, FileRecord]:
        """Scan regular files below prefix without touching the index.

        Symlinks are never followed. Unreadable subdirectories are logged
        and skipped; an unreadable starting directory raises unless it is
        missing below the root (a removed subtree yields no records).

        Args:
            prefix: Relative directory to start from ("" for the root).

        Returns:
            Mapping of relative path to FileRecord.
        """
        start = self._root / prefix if prefix else self._root
        found: dict[str, FileRecord] = {}

        if prefix:
            try:
                st = os.lstat(start)
            except FileNotFoundError:
                return found
            if stat_mod.S_ISREG(st.st_mode):
                if not self._ignore.should_ignore(prefix):
                    found[prefix] = FileRecord(prefix, st.st_mtime, st.st_size)
                return found
            if not stat_mod.S_ISDIR(st.st_mode):
                return found

        pending: deque[tuple[Path, str]] = deque([(start, prefix)])
        first = True
        while pending:
            directory, rel_dir = pending.popleft()
            try:
                entries = list(os.scandir(directory))
            except OSError as e:
                if first and not prefix:
                    raise
                logger.warning("Failed to read dir '%s': %s", directory, e)
                continue
            finally:
                first = False

            for entry in entries:
                rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if not self._ignore.should_ignore(rel, is_dir=True):
                            pending.append((Path(entry.path), rel))
                    elif entry.is_file(follow_symlinks=False):
                        if self._ignore.should_ignore(rel):
                            continue
                        st = entry.stat(follow_symlinks=False)
                        found[rel] = FileRecord(rel, st.st_mtime, st.st_size)
                except OSError as e:
                    # Entry vanished or is unreadable between listing and stat
                    logger.debug("Skipping %s: %s", rel, e)
        return found

    def stat_record(self, rel_path: str) -> FileRecord | None:
        """Read the current on-disk stamp of a path.

        Returns:
            A fresh FileRecord, or None if the path is missing, is not a
            regular file, or is ignored.
        """
        if self._ignore.should_ignore(rel_path):
            return None
        try:
            st = os.lstat(self._root / rel_path)
        except OSError:
            return None
        if not stat_mod.S_ISREG(st.st_mode):
            return None
        return FileRecord(rel_path, st.st_mtime, st.st_size)

    def lookup(self, rel_path: str) -> FileRecord | None:
        """Get the record for a path."""
        return self._records.get(rel_path)

    def upsert(self, record: FileRecord) -> None:
        """Insert or replace a record."""
        self._records[record.relative_path] = record

    def remove(self, rel_path: str) -> FileRecord | None:
        """Remove a record.

        Returns:
            The removed record, or None if the path was not indexed.
        """
        return self._records.pop(rel_path, None)

    def records_under(self, prefix: str) -> dict[str, FileRecord]:
        """Get all records at or below a relative directory."""
        if not prefix:
            return dict(self._records)
        below = prefix + "/"
        return {
            path: record
            for path, record in self._records.items()
            if path == prefix or path.startswith(below)
        }

    def fingerprint(self, rel_path: str) -> str | None:
        """Get (and cache) the content fingerprint of an indexed file.

        Returns:
            Hex digest, or None if the path is not indexed or unreadable.
        """
        record = self._records.get(rel_path)
        if record is None:
            return None
        if record.fingerprint is None:
            try:
                record.fingerprint = compute_file_hash(self._root / rel_path)
            except OSError as e:
                logger.debug("Cannot fingerprint %s: %s", rel_path, e)
                return None
        return record.fingerprint

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, rel_path: object) -> bool:
        return rel_path in self._records

    def __iter__(self) -> Iterator[FileRecord]:
        """Iterate over records ordered by path."""
        return iter([self._records[p] for p in sorted(self._records)])
