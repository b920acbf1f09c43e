"""File operations applied to one target.

This module provides:
- push_file: Atomic ADD/UPDATE (temp name in the same directory, then rename)
- remove_file: Idempotent REMOVE
- same_content: Whether a target file already holds HOST's content
- SourceVanished: The HOST file disappeared before it could be read

Every function is safe to repeat after an ambiguous failure: a retried
push rewrites a fresh temp file, a retried remove accepts absence.
"""

from __future__ import annotations

import logging
import posixpath
import secrets
from pathlib import Path

from filemirror.core.hashing import compute_file_hash
from filemirror.mirror.ignore import TEMP_SUFFIX
from filemirror.mirror.types import ErrorKind, MirrorError
from filemirror.transport.base import RemoteStat, Transport, TransportError, temp_name_for

logger = logging.getLogger(__name__)


class SourceVanished(MirrorError):
    """The HOST file no longer exists; a later REMOVE carries the real effect."""


def make_temp_name(rel_path: str) -> str:
    """Get a unique temporary sibling name for rel_path."""
    return temp_name_for(rel_path, secrets.token_hex(4), TEMP_SUFFIX)


def push_file(transport: Transport, host_root: Path, rel_path: str) -> None:
    """Copy a HOST file to the target without exposing partial content.

    Raises:
        SourceVanished: If the HOST file is gone.
        TransportError: If any remote step fails (the temp file is
            removed best-effort).
    """
    transport.check_path(rel_path)
    parent = posixpath.dirname(rel_path)
    if parent:
        transport.mkdir_p(parent)

    try:
        source = open(host_root / rel_path, "rb")
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
        raise SourceVanished(f"{rel_path} vanished from HOST") from e

    temp = make_temp_name(rel_path)
    with source:
        try:
            transport.put(source, temp)
            transport.rename(temp, rel_path)
        except TransportError:
            _discard(transport, temp)
            raise
    logger.debug("Pushed %s to %s", rel_path, transport.description)


def remove_file(transport: Transport, rel_path: str) -> bool:
    """Delete a file on the target.

    Returns:
        True if a file was deleted, False if it was already absent.
    """
    try:
        transport.delete(rel_path)
    except TransportError as e:
        if e.kind is ErrorKind.NOT_FOUND:
            logger.debug("%s already absent on %s", rel_path, transport.description)
            return False
        raise
    return True


def same_content(
    transport: Transport,
    host_root: Path,
    rel_path: str,
    existing: RemoteStat,
    host_size: int | None,
) -> bool:
    """Check if the target file at rel_path equals the HOST file.

    Sizes are compared first; digests only when the sizes match. An
    unavailable digest on either side counts as "different".
    """
    if host_size is not None and host_size != existing.size:
        return False
    remote = transport.digest(rel_path)
    if remote is None:
        return False
    try:
        local = compute_file_hash(host_root / rel_path)
    except OSError:
        return False
    return local == remote


def _discard(transport: Transport, temp: str) -> None:
    try:
        transport.delete(temp)
    except TransportError as e:
        if e.kind is not ErrorKind.NOT_FOUND:
            logger.warning("Could not remove temporary %s on %s: %s", temp, transport.description, e)
