"""Transport interface used by target workers.

This module provides:
- TransportError: Failure of a remote operation, classified by ErrorKind
- RemoteStat: Size and mtime of a remote file
- Transport: Abstract base for one authenticated connection to a target
- error_kind_from_errno: Map OSError errnos to ErrorKind

Paths passed to transports are relative, forward-slash keys; each
transport resolves them under its own root and refuses to leave it.
"""

from __future__ import annotations

import errno
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO

from filemirror.mirror.index import check_relative
from filemirror.mirror.types import ErrorKind, MirrorError

_ERRNO_KINDS: dict[int, ErrorKind] = {
    errno.ENOENT: ErrorKind.NOT_FOUND,
    errno.EACCES: ErrorKind.PERMISSION_DENIED,
    errno.EPERM: ErrorKind.PERMISSION_DENIED,
    errno.EROFS: ErrorKind.PERMISSION_DENIED,
    errno.ENOSPC: ErrorKind.NO_SPACE,
    errno.EDQUOT: ErrorKind.NO_SPACE,
    errno.ETIMEDOUT: ErrorKind.TIMEOUT,
    errno.ECONNRESET: ErrorKind.CONNECTION_LOST,
    errno.ECONNABORTED: ErrorKind.CONNECTION_LOST,
    errno.ECONNREFUSED: ErrorKind.CONNECTION_LOST,
    errno.EPIPE: ErrorKind.CONNECTION_LOST,
    errno.ENOTCONN: ErrorKind.CONNECTION_LOST,
    errno.EHOSTUNREACH: ErrorKind.CONNECTION_LOST,
    errno.ENETUNREACH: ErrorKind.CONNECTION_LOST,
}


def error_kind_from_errno(code: int | None) -> ErrorKind:
    """Classify an OSError errno."""
    if code is None:
        return ErrorKind.UNKNOWN
    return _ERRNO_KINDS.get(code, ErrorKind.UNKNOWN)


class TransportError(MirrorError):
    """A remote operation failed.

    Attributes:
        kind: Classification of the failure.
        path: Remote path involved, if any.
    """

    def __init__(self, kind: ErrorKind, message: str, path: str | None = None) -> None:
        self.kind = kind
        self.path = path
        super().__init__(message)

    @property
    def transient(self) -> bool:
        """Check if retrying may succeed."""
        return self.kind.transient

    @classmethod
    def from_os_error(cls, error: OSError, path: str | None = None) -> TransportError:
        """Wrap an OSError, classifying it by errno or exception type."""
        if isinstance(error, TimeoutError):
            kind = ErrorKind.TIMEOUT
        elif isinstance(error, ConnectionError):
            kind = ErrorKind.CONNECTION_LOST
        elif isinstance(error, FileNotFoundError):
            kind = ErrorKind.NOT_FOUND
        elif isinstance(error, PermissionError):
            kind = ErrorKind.PERMISSION_DENIED
        else:
            kind = error_kind_from_errno(error.errno)
        return cls(kind, f"{error.strerror or error}", path=path)


@dataclass(frozen=True)
class RemoteStat:
    """Metadata of a file on a target."""

    size: int
    modified_at: float


def temp_name_for(rel_path: str, token: str, suffix: str) -> str:
    """Build a hidden sibling name for an atomic transfer of rel_path."""
    directory, name = posixpath.split(rel_path)
    temp = f".{name}.{token}{suffix}"
    return posixpath.join(directory, temp) if directory else temp


class Transport(ABC):
    """One authenticated connection to a target tree.

    Every method raises TransportError on failure. Instances are owned by a
    single target worker and are not shared between threads.
    """

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable location of the target root."""
        ...

    @abstractmethod
    def connect(self) -> None:
        """Open the connection (idempotent)."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the connection; never raises."""
        ...

    @abstractmethod
    def probe(self) -> bool:
        """Check that the connection is usable."""
        ...

    def reconnect(self) -> bool:
        """Drop and re-open the connection.

        Returns:
            True if the target is reachable again.
        """
        self.close()
        try:
            self.connect()
        except TransportError:
            return False
        return self.probe()

    @abstractmethod
    def put(self, source: BinaryIO, remote_path: str) -> None:
        """Write the content of source to remote_path (replacing it)."""
        ...

    @abstractmethod
    def rename(self, remote_src: str, remote_dst: str) -> None:
        """Atomically rename, replacing remote_dst if it exists."""
        ...

    @abstractmethod
    def delete(self, remote_path: str) -> None:
        """Delete a file; raises TransportError(NOT_FOUND) if absent."""
        ...

    @abstractmethod
    def mkdir_p(self, remote_dir: str) -> None:
        """Create a directory and its parents if missing."""
        ...

    @abstractmethod
    def stat(self, remote_path: str) -> RemoteStat | None:
        """Get file metadata, or None if the path does not exist."""
        ...

    @abstractmethod
    def digest(self, remote_path: str) -> str | None:
        """Get the SHA-256 of a remote file, or None if unavailable."""
        ...

    @staticmethod
    def check_path(rel_path: str) -> str:
        """Validate a relative path before it is resolved under the root."""
        return check_relative(rel_path)
