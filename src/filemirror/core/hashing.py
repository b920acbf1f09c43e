"""Content fingerprints.

Fingerprints are only used to decide whether a TARGET file already holds
the same content as HOST when a conflict check runs; change detection
relies on (mtime, size) alone.
"""

import hashlib
from pathlib import Path
from typing import BinaryIO

BLOCK_SIZE = 64 * 1024


def hash_stream(stream: BinaryIO) -> str:
    """Compute the SHA-256 hex digest of a binary stream.

    Args:
        stream: Readable binary file object, consumed to EOF.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    hasher = hashlib.sha256()
    for block in iter(lambda: stream.read(BLOCK_SIZE), b""):
        hasher.update(block)
    return hasher.hexdigest()


def compute_file_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Reads the file in blocks to handle large files efficiently.

    Args:
        path: Path to the file to hash.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    with open(path, "rb") as f:
        return hash_stream(f)
