"""Transport to a directory on the local filesystem.

Used for local targets (e.g. a mounted backup disk) and by the tests.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO

from filemirror.core.hashing import compute_file_hash
from filemirror.mirror.types import ErrorKind
from filemirror.transport.base import RemoteStat, Transport, TransportError

logger = logging.getLogger(__name__)


class LocalTransport(Transport):
    """Mirror into a local directory.

    Usage:
        transport = LocalTransport(Path("CLONE"))
        transport.connect()
        transport.put(open("a.txt", "rb"), "a.txt")
    """

    def __init__(self, root: Path, create: bool = True) -> None:
        """Initialize the transport.

        Args:
            root: Target root directory.
            create: Create the root on connect if it does not exist.
        """
        self._root = Path(root).expanduser().resolve()
        self._create = create
        self._connected = False

    @property
    def root(self) -> Path:
        """Get the target root."""
        return self._root

    @property
    def description(self) -> str:
        return str(self._root)

    def connect(self) -> None:
        try:
            if self._create:
                self._root.mkdir(parents=True, exist_ok=True)
            if not self._root.is_dir():
                raise TransportError(
                    ErrorKind.NOT_FOUND, f"Target root is not a directory: {self._root}"
                )
        except OSError as e:
            raise TransportError.from_os_error(e, str(self._root)) from e
        self._connected = True

    def close(self) -> None:
        self._connected = False

    def probe(self) -> bool:
        return self._connected and self._root.is_dir()

    def _resolve(self, rel_path: str) -> Path:
        self.check_path(rel_path)
        if not self._connected:
            raise TransportError(ErrorKind.CONNECTION_LOST, "Transport is not connected", rel_path)
        return self._root / rel_path

    def put(self, source: BinaryIO, remote_path: str) -> None:
        target = self._resolve(remote_path)
        try:
            with open(target, "wb") as f:
                shutil.copyfileobj(source, f)
        except OSError as e:
            raise TransportError.from_os_error(e, remote_path) from e

    def rename(self, remote_src: str, remote_dst: str) -> None:
        src = self._resolve(remote_src)
        dst = self._resolve(remote_dst)
        try:
            os.replace(src, dst)
        except OSError as e:
            raise TransportError.from_os_error(e, remote_dst) from e

    def delete(self, remote_path: str) -> None:
        target = self._resolve(remote_path)
        try:
            target.unlink()
        except OSError as e:
            raise TransportError.from_os_error(e, remote_path) from e

    def mkdir_p(self, remote_dir: str) -> None:
        if not remote_dir:
            return
        target = self._resolve(remote_dir)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransportError.from_os_error(e, remote_dir) from e

    def stat(self, remote_path: str) -> RemoteStat | None:
        target = self._resolve(remote_path)
        try:
            st = target.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TransportError.from_os_error(e, remote_path) from e
        return RemoteStat(size=st.st_size, modified_at=st.st_mtime)

    def digest(self, remote_path: str) -> str | None:
        target = self._resolve(remote_path)
        try:
            return compute_file_hash(target)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TransportError.from_os_error(e, remote_path) from e
