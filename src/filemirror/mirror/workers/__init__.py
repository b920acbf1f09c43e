"""Target workers and the file operations they perform."""

from filemirror.mirror.workers.target import DEFAULT_CAPACITY, DEFAULT_DEGRADE_AFTER, TargetWorker
from filemirror.mirror.workers.transfer import (
    SourceVanished,
    make_temp_name,
    push_file,
    remove_file,
    same_content,
)

__all__ = [
    "DEFAULT_CAPACITY",
    "DEFAULT_DEGRADE_AFTER",
    "SourceVanished",
    "TargetWorker",
    "make_temp_name",
    "push_file",
    "remove_file",
    "same_content",
]
