"""Ignore patterns for mirroring.

This module provides:
- IgnorePatterns: Handles gitignore-style pattern matching on relative paths
- DEFAULT_IGNORE_PATTERNS: Common patterns to ignore
- IGNORE_FILE_NAME: Per-tree file with extra patterns
"""

from __future__ import annotations

import fnmatch
from pathlib import Path

IGNORE_FILE_NAME = ".mirrorignore"

# Temporary names used for atomic transfers (see workers.transfer)
TEMP_SUFFIX = ".fmpart"

DEFAULT_IGNORE_PATTERNS = [
    ".git/",
    ".DS_Store",
    "Thumbs.db",
    "*.swp",
    "*.swo",
    "*~",
    f".*{TEMP_SUFFIX}",
]


class IgnorePatterns:
    """Handles ignore pattern matching for relative paths."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: Extra gitignore-style patterns added to the defaults.
        """
        self._patterns = list(DEFAULT_IGNORE_PATTERNS)
        if patterns:
            self._patterns.extend(patterns)

    @property
    def patterns(self) -> list[str]:
        """Get a copy of the active patterns."""
        return list(self._patterns)

    def add_pattern(self, pattern: str) -> None:
        """Add an ignore pattern."""
        self._patterns.append(pattern)

    def load_from_file(self, path: Path) -> int:
        """Load patterns from a .mirrorignore file.

        Returns:
            Number of patterns added.
        """
        if not path.is_file():
            return 0
        added = 0
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                # Skip comments and empty lines
                if line and not line.startswith("#"):
                    self._patterns.append(line)
                    added += 1
        return added

    def should_ignore(self, rel_path: str, is_dir: bool = False) -> bool:
        """Check if a relative path should be ignored.

        A path is ignored when it or any of its parent directories matches.

        Args:
            rel_path: Forward-slash path relative to the tree root.
            is_dir: Whether the path itself is a directory.

        Returns:
            True if the path should be ignored.
        """
        if not rel_path:
            return False

        parts = rel_path.split("/")
        for depth in range(1, len(parts) + 1):
            prefix = "/".join(parts[:depth])
            name = parts[depth - 1]
            prefix_is_dir = is_dir or depth < len(parts)
            if self._matches(prefix, name, prefix_is_dir):
                return True
        return False

    def _matches(self, rel_str: str, name: str, is_dir: bool) -> bool:
        for pattern in self._patterns:
            # Directory-only patterns (ending with /)
            if pattern.endswith("/"):
                if is_dir and (
                    fnmatch.fnmatch(rel_str, pattern[:-1]) or fnmatch.fnmatch(name, pattern[:-1])
                ):
                    return True
            # Patterns with a separator are anchored to the root
            elif "/" in pattern:
                if fnmatch.fnmatch(rel_str, pattern.lstrip("/")):
                    return True
            elif fnmatch.fnmatch(name, pattern):
                return True
        return False
