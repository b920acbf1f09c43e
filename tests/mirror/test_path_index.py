"""Tests for the in-memory path index."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

import pytest

from filemirror.core.hashing import compute_file_hash
from filemirror.mirror.ignore import IgnorePatterns
from filemirror.mirror.index import (
    FileRecord,
    PathIndex,
    check_relative,
    format_record,
    to_relative,
)
from filemirror.mirror.types import PathTraversalError


def make_file(root: Path, rel: str, content: str = "x") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


class TestHelpers:
    """Tests for module-level helpers."""

    def test_to_relative(self, tmp_path: Path) -> None:
        """Should produce forward-slash keys relative to the root."""
        assert to_relative(tmp_path / "a" / "b.txt", tmp_path) == "a/b.txt"
        assert to_relative(tmp_path, tmp_path) == ""
        assert to_relative(tmp_path.parent, tmp_path) is None

    def test_check_relative_accepts_nested(self) -> None:
        """Should accept normal relative keys."""
        assert check_relative("a/b.txt") == "a/b.txt"

    @pytest.mark.parametrize("bad", ["", "/etc/passwd", "../x", "a/../../x", "a\\b"])
    def test_check_relative_rejects_escape(self, bad: str) -> None:
        """Should reject keys that leave the root."""
        with pytest.raises(PathTraversalError):
            check_relative(bad)

    def test_format_record(self) -> None:
        """Should render the listing line with minute precision."""
        stamp = datetime(2024, 5, 1, 9, 30, 42).timestamp()
        record = FileRecord("docs/a.txt", stamp, 3)
        assert format_record(record) == "[2024-05-01 09:30] docs/a.txt"


class TestPathIndex:
    """Tests for PathIndex."""

    def test_seed_finds_nested_files(self, tmp_path: Path) -> None:
        """Seed should index every regular file, sorted by path."""
        make_file(tmp_path, "b/c.txt")
        make_file(tmp_path, "a.txt")
        index = PathIndex(tmp_path)

        records = index.seed()

        assert [r.relative_path for r in records] == ["a.txt", "b/c.txt"]
        assert len(index) == 2
        assert "b/c.txt" in index

    def test_seed_skips_ignored(self, tmp_path: Path) -> None:
        """Seed should skip ignored files and directories."""
        make_file(tmp_path, "keep.txt")
        make_file(tmp_path, ".git/config")
        make_file(tmp_path, "app.log")
        index = PathIndex(tmp_path, IgnorePatterns(["*.log"]))

        records = index.seed()

        assert [r.relative_path for r in records] == ["keep.txt"]

    def test_seed_does_not_follow_symlinks(self, tmp_path: Path) -> None:
        """Symlinks are not indexed."""
        target = make_file(tmp_path, "real.txt")
        os.symlink(target, tmp_path / "link.txt")
        index = PathIndex(tmp_path)

        assert [r.relative_path for r in index.seed()] == ["real.txt"]

    def test_seed_unreadable_root_raises(self, tmp_path: Path) -> None:
        """A missing root cannot be seeded."""
        index = PathIndex(tmp_path / "missing")
        with pytest.raises(OSError):
            index.seed()

    def test_record_stamp(self, tmp_path: Path) -> None:
        """Records should carry mtime and size."""
        path = make_file(tmp_path, "a.txt", "hello")
        os.utime(path, (1_700_000_000, 1_700_000_000))
        index = PathIndex(tmp_path)
        index.seed()

        record = index.lookup("a.txt")
        assert record is not None
        assert record.size_bytes == 5
        assert record.modified_at == 1_700_000_000

    def test_walk_prefix(self, tmp_path: Path) -> None:
        """Walk should only cover the requested subtree."""
        make_file(tmp_path, "a.txt")
        make_file(tmp_path, "sub/b.txt")
        make_file(tmp_path, "sub/deep/c.txt")
        index = PathIndex(tmp_path)

        assert set(index.walk("sub")) == {"sub/b.txt", "sub/deep/c.txt"}
        assert index.walk("missing") == {}
        assert len(index) == 0

    def test_stat_record(self, tmp_path: Path) -> None:
        """stat_record should return None for missing paths and directories."""
        make_file(tmp_path, "sub/b.txt")
        index = PathIndex(tmp_path)

        assert index.stat_record("sub/b.txt") is not None
        assert index.stat_record("sub") is None
        assert index.stat_record("nope.txt") is None

    def test_upsert_remove_records_under(self, tmp_path: Path) -> None:
        """Mutations should be reflected by lookups."""
        index = PathIndex(tmp_path)
        index.upsert(FileRecord("d/a.txt", 1.0, 1))
        index.upsert(FileRecord("d/b.txt", 1.0, 1))
        index.upsert(FileRecord("dx.txt", 1.0, 1))

        assert set(index.records_under("d")) == {"d/a.txt", "d/b.txt"}
        assert index.remove("d/a.txt") is not None
        assert index.remove("d/a.txt") is None
        assert [r.relative_path for r in index] == ["d/b.txt", "dx.txt"]

    def test_fingerprint_is_lazy_and_cached(self, tmp_path: Path) -> None:
        """Fingerprints are computed on demand and cached on the record."""
        path = make_file(tmp_path, "a.txt", "content")
        index = PathIndex(tmp_path)
        index.seed()

        record = index.lookup("a.txt")
        assert record is not None and record.fingerprint is None
        assert index.fingerprint("a.txt") == compute_file_hash(path)
        assert record.fingerprint == compute_file_hash(path)
        assert index.fingerprint("unknown.txt") is None
