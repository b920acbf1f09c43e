"""Conflict detection and resolution for first writes to a target.

A conflict exists when a target already holds a file at a path we are
about to write for the first time in this run, and its content differs
from HOST's. The decision is one of:

- OVERWRITE: replace the target file
- SKIP: leave the target file untouched for the rest of the run
- ABORT: like SKIP, and drop changes already queued for that path

Non-interactive runs always overwrite. Interactive runs hand the question
to a Prompter; the asking worker parks the path and keeps serving others
until the answer comes back.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from filemirror.mirror.index import FileRecord
from filemirror.transport.base import RemoteStat

logger = logging.getLogger(__name__)


class ConflictDecision(Enum):
    """What to do with a conflicting target file."""

    OVERWRITE = "overwrite"
    SKIP = "skip"
    ABORT = "abort"


class ConflictAnswer(Enum):
    """An interactive reply (yes / no / all / quit-path)."""

    YES = "y"
    NO = "n"
    ALL = "a"
    QUIT = "q"

    @property
    def decision(self) -> ConflictDecision:
        """Translate the reply into a decision."""
        if self in (ConflictAnswer.YES, ConflictAnswer.ALL):
            return ConflictDecision.OVERWRITE
        if self is ConflictAnswer.NO:
            return ConflictDecision.SKIP
        return ConflictDecision.ABORT


@dataclass(frozen=True)
class ConflictQuery:
    """Everything shown to whoever decides a conflict."""

    path: str
    target: str
    existing: RemoteStat
    incoming: FileRecord | None

    def describe(self) -> str:
        """One-line summary for prompts and logs."""
        incoming = f"{self.incoming.size_bytes} bytes" if self.incoming else "unknown size"
        return (
            f"{self.path} on {self.target} differs "
            f"(target: {self.existing.size} bytes, host: {incoming})"
        )


def decide_conflict(
    path: str,
    target: str,
    existing: RemoteStat | None,
    incoming: FileRecord | None,
    interactive_allowed: bool,
) -> ConflictDecision | None:
    """Decide a conflict without side effects.

    Args:
        path: Relative path being written.
        target: Target name.
        existing: Stamp of the file currently on the target.
        incoming: Stamp of the HOST file.
        interactive_allowed: Whether a person may be asked.

    Returns:
        The decision, or None when it has to be asked interactively.
    """
    if existing is None or not interactive_allowed:
        return ConflictDecision.OVERWRITE
    return None


class ConflictRequest:
    """A pending interactive question and the way to answer it."""

    def __init__(
        self,
        query: ConflictQuery,
        deliver: Callable[[ConflictAnswer], None],
        auto_answer: Callable[[], ConflictAnswer | None],
    ) -> None:
        self.query = query
        self._deliver = deliver
        self._auto_answer = auto_answer
        self._answered = False

    def preset(self) -> ConflictAnswer | None:
        """Get an answer given earlier for every conflict, if any."""
        return self._auto_answer()

    def answer(self, answer: ConflictAnswer) -> None:
        """Deliver the answer (only the first call counts)."""
        if self._answered:
            return
        self._answered = True
        self._deliver(answer)


class Prompter(Protocol):
    """Something that can ask a person about a conflict."""

    def submit(self, request: ConflictRequest) -> None:
        """Queue a question; must not block the caller."""
        ...

    def close(self) -> None:
        """Stop asking; unanswered questions are left unanswered."""
        ...


class CallbackPrompter:
    """Asks questions one at a time on a dedicated prompt thread.

    Usage:
        prompter = CallbackPrompter(lambda query: ConflictAnswer.NO)
        policy = ConflictPolicy(interactive=True, prompter=prompter)
    """

    def __init__(self, ask: Callable[[ConflictQuery], ConflictAnswer]) -> None:
        self._ask = ask
        self._requests: queue.Queue[ConflictRequest | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, request: ConflictRequest) -> None:
        with self._lock:
            if self._closed:
                return
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="conflict-prompt", daemon=True
                )
                self._thread.start()
        self._requests.put(request)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            thread = self._thread
        self._requests.put(None)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def _run(self) -> None:
        while True:
            request = self._requests.get()
            if request is None or self._closed:
                return
            answer = request.preset()
            if answer is None:
                try:
                    answer = self._ask(request.query)
                except (EOFError, KeyboardInterrupt):
                    logger.warning("No answer for %s, skipping it", request.query.describe())
                    answer = ConflictAnswer.NO
            request.answer(answer)


class ConflictPolicy:
    """Shared conflict policy for all target workers.

    Thread-safe. Per-(path, target) caching of decisions is done by the
    worker that owns the target; only the "overwrite all" choice is shared.
    """

    def __init__(self, interactive: bool = False, prompter: Prompter | None = None) -> None:
        if interactive and prompter is None:
            raise ValueError("Interactive conflict handling needs a prompter")
        self._interactive = interactive
        self._prompter = prompter
        self._overwrite_all = threading.Event()

    @property
    def interactive(self) -> bool:
        """Check if conflicts are asked rather than overwritten."""
        return self._interactive and not self._overwrite_all.is_set()

    def overwrite_all(self) -> None:
        """Stop asking: overwrite every further conflict."""
        if not self._overwrite_all.is_set():
            logger.info("Overwriting all further conflicts")
        self._overwrite_all.set()

    def resolve(
        self,
        query: ConflictQuery,
        reply: Callable[[ConflictDecision], None],
    ) -> ConflictDecision | None:
        """Decide a conflict, or ask and answer later through reply.

        Returns:
            The decision when it is known now; None when the question was
            handed to the prompter.
        """
        decision = decide_conflict(
            query.path, query.target, query.existing, query.incoming, self.interactive
        )
        if decision is not None:
            return decision

        assert self._prompter is not None

        def deliver(answer: ConflictAnswer) -> None:
            if answer is ConflictAnswer.ALL:
                self.overwrite_all()
            logger.info("Conflict on %s for %s: %s", query.path, query.target, answer.decision.value)
            reply(answer.decision)

        def auto_answer() -> ConflictAnswer | None:
            return ConflictAnswer.YES if self._overwrite_all.is_set() else None

        logger.info("Waiting for a decision: %s", query.describe())
        self._prompter.submit(ConflictRequest(query, deliver, auto_answer))
        return None

    def close(self) -> None:
        """Release the prompter."""
        if self._prompter is not None:
            self._prompter.close()
