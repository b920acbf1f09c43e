"""Structured outcome records on the standard logging stream.

Every finished operation is logged once through log_outcome() with the
fields path, target, event_kind and outcome attached to the record, so
handlers can render or filter them; MirrorRecordFormatter appends them
to the message.
"""

from __future__ import annotations

import logging

from filemirror.mirror.types import ChangeKind, Outcome, OutcomeKind

logger = logging.getLogger("filemirror.outcome")

_LEVELS = {
    OutcomeKind.APPLIED: logging.INFO,
    OutcomeKind.SKIPPED_BY_POLICY: logging.WARNING,
    OutcomeKind.FAILED: logging.ERROR,
}

OUTCOME_FIELDS = ("path", "target", "event_kind", "outcome")

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def log_outcome(target: str, path: str, kind: ChangeKind, outcome: Outcome) -> None:
    """Emit the record for one finished operation."""
    message = f"{kind.name} {path} -> {target}: {outcome.label}"
    if outcome.detail:
        message += f" ({outcome.detail})"
    logger.log(
        _LEVELS[outcome.kind],
        message,
        extra={
            "path": path,
            "target": target,
            "event_kind": kind.value,
            "outcome": outcome.label,
        },
    )


class MirrorRecordFormatter(logging.Formatter):
    """Formatter that appends outcome fields when a record carries them."""

    def __init__(self, fmt: str | None = DEFAULT_FORMAT, datefmt: str | None = None) -> None:
        super().__init__(fmt, datefmt)

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not hasattr(record, "outcome"):
            return text
        fields = " ".join(f"{name}={getattr(record, name)}" for name in OUTCOME_FIELDS)
        return f"{text} [{fields}]"
