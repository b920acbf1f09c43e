"""Core module - Shared configuration and hashing."""

from filemirror.core.config import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_GRACE_PERIOD_S,
    ConfigError,
    MirrorConfig,
    MirrorOptions,
    TargetDescriptor,
    parse_target_spec,
)
from filemirror.core.hashing import compute_file_hash, hash_stream

__all__ = [
    # Config
    "DEFAULT_DEBOUNCE_MS",
    "DEFAULT_GRACE_PERIOD_S",
    "ConfigError",
    "MirrorConfig",
    "MirrorOptions",
    "TargetDescriptor",
    "parse_target_spec",
    # Hashing
    "compute_file_hash",
    "hash_stream",
]
