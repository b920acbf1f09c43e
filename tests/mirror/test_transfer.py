"""Tests for file operations on a target."""

from __future__ import annotations

from pathlib import Path

import pytest

from filemirror.mirror.types import ErrorKind, PathTraversalError
from filemirror.mirror.workers.transfer import (
    SourceVanished,
    make_temp_name,
    push_file,
    remove_file,
    same_content,
)
from filemirror.transport.base import RemoteStat, TransportError
from filemirror.transport.local import LocalTransport


@pytest.fixture
def host(tmp_path: Path) -> Path:
    root = tmp_path / "host"
    root.mkdir()
    return root


@pytest.fixture
def transport(tmp_path: Path) -> LocalTransport:
    transport = LocalTransport(tmp_path / "clone")
    transport.connect()
    return transport


class FailingRename(LocalTransport):
    """Transport whose rename always fails."""

    def rename(self, remote_src: str, remote_dst: str) -> None:
        raise TransportError(ErrorKind.CONNECTION_LOST, "link dropped", remote_dst)


class TestMakeTempName:
    """Tests for temp names."""

    def test_hidden_sibling(self) -> None:
        """Temp files live next to the final file and are ignored by watchers."""
        name = make_temp_name("docs/report.pdf")
        assert name.startswith("docs/.report.pdf.")
        assert name.endswith(".fmpart")

    def test_unique(self) -> None:
        """Two pushes of the same path never share a temp file."""
        assert make_temp_name("a.txt") != make_temp_name("a.txt")


class TestPushFile:
    """Tests for push_file."""

    def test_creates_parents(self, host: Path, transport: LocalTransport) -> None:
        """Missing target directories are created."""
        (host / "a" / "b").mkdir(parents=True)
        (host / "a" / "b" / "c.txt").write_text("deep")

        push_file(transport, host, "a/b/c.txt")

        assert (transport.root / "a" / "b" / "c.txt").read_text() == "deep"

    def test_replaces_content(self, host: Path, transport: LocalTransport) -> None:
        """An existing file is replaced and no temp file is left behind."""
        (transport.root / "a.txt").write_text("old content")
        (host / "a.txt").write_text("new")

        push_file(transport, host, "a.txt")

        assert (transport.root / "a.txt").read_text() == "new"
        assert sorted(p.name for p in transport.root.iterdir()) == ["a.txt"]

    def test_vanished_source(self, host: Path, transport: LocalTransport) -> None:
        """A file deleted on HOST before the push is reported as vanished."""
        with pytest.raises(SourceVanished):
            push_file(transport, host, "gone.txt")
        assert not (transport.root / "gone.txt").exists()

    def test_failed_rename_cleans_temp(self, tmp_path: Path, host: Path) -> None:
        """The temp file is removed when the final rename fails."""
        transport = FailingRename(tmp_path / "clone")
        transport.connect()
        (host / "a.txt").write_text("data")

        with pytest.raises(TransportError):
            push_file(transport, host, "a.txt")

        assert list(transport.root.iterdir()) == []

    def test_rejects_traversal(self, host: Path, transport: LocalTransport) -> None:
        """Paths leaving the root are refused before anything is written."""
        with pytest.raises(PathTraversalError):
            push_file(transport, host, "../escape.txt")


class TestRemoveFile:
    """Tests for remove_file."""

    def test_removes(self, transport: LocalTransport) -> None:
        """An existing file is deleted."""
        (transport.root / "a.txt").write_text("x")
        assert remove_file(transport, "a.txt") is True
        assert not (transport.root / "a.txt").exists()

    def test_absent_is_success(self, transport: LocalTransport) -> None:
        """Removing a missing file is not an error."""
        assert remove_file(transport, "missing.txt") is False


class TestSameContent:
    """Tests for same_content."""

    def _stat(self, transport: LocalTransport, rel: str) -> RemoteStat:
        stat = transport.stat(rel)
        assert stat is not None
        return stat

    def test_identical(self, host: Path, transport: LocalTransport) -> None:
        """Equal bytes are recognized."""
        (host / "a.txt").write_text("same")
        (transport.root / "a.txt").write_text("same")
        assert same_content(transport, host, "a.txt", self._stat(transport, "a.txt"), 4)

    def test_size_mismatch_short_circuits(self, host: Path) -> None:
        """Different sizes never need a digest."""

        class NoDigest(LocalTransport):
            def digest(self, remote_path: str) -> str | None:
                raise AssertionError("digest should not be called")

        transport = NoDigest(host.parent / "clone")
        transport.connect()
        (host / "a.txt").write_text("longer content")
        (transport.root / "a.txt").write_text("short")

        assert not same_content(transport, host, "a.txt", self._stat(transport, "a.txt"), 14)

    def test_same_size_different_bytes(self, host: Path, transport: LocalTransport) -> None:
        """Same size but different bytes is a real conflict."""
        (host / "a.txt").write_text("aaaa")
        (transport.root / "a.txt").write_text("bbbb")
        assert not same_content(transport, host, "a.txt", self._stat(transport, "a.txt"), 4)

    def test_missing_host_file(self, host: Path, transport: LocalTransport) -> None:
        """A vanished HOST file cannot be identical."""
        (transport.root / "a.txt").write_text("x")
        assert not same_content(transport, host, "a.txt", self._stat(transport, "a.txt"), None)
