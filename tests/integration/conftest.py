"""Pytest fixtures for end-to-end mirroring tests.

A MirrorSession runs on a background thread with a real watchdog
observer, mirroring a temporary HOST tree into local target directories.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from filemirror.core.config import MirrorConfig, MirrorOptions, TargetDescriptor
from filemirror.mirror.reporter import Report
from filemirror.mirror.retry import RetryPolicy
from filemirror.mirror.session import MirrorSession

FAST_DEBOUNCE_MS = 50
WAIT_TIMEOUT = 10.0


@dataclass
class MirrorRun:
    """A session running on a background thread."""

    session: MirrorSession
    stop_event: threading.Event
    thread: threading.Thread
    result: dict[str, object] = field(default_factory=dict)

    @staticmethod
    def wait_until(condition: Callable[[], bool], timeout: float = WAIT_TIMEOUT) -> bool:
        """Poll condition until it holds or the timeout expires."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if condition():
                return True
            time.sleep(0.02)
        return condition()

    def wait_idle(self, timeout: float = WAIT_TIMEOUT) -> bool:
        """Wait until every submitted change has an outcome."""
        engine = self.session.engine
        return engine is not None and engine.wait_idle(timeout)

    def stop(self, timeout: float = WAIT_TIMEOUT) -> Report:
        """Stop the session and return its report."""
        self.stop_event.set()
        self.thread.join(timeout)
        assert not self.thread.is_alive(), "session did not stop"
        error = self.result.get("error")
        if isinstance(error, BaseException):
            raise error
        report = self.result["report"]
        assert isinstance(report, Report)
        return report


@pytest.fixture
def host_dir(tmp_path: Path) -> Path:
    """HOST tree with two files."""
    root = tmp_path / "INBOX"
    (root / "b").mkdir(parents=True)
    (root / "a.txt").write_text("1")
    (root / "b" / "c.txt").write_text("2")
    return root


@pytest.fixture
def start_mirror(tmp_path: Path) -> Iterator[Callable[..., MirrorRun]]:
    """Start a session mirroring a HOST tree into local targets under tmp_path."""
    runs: list[MirrorRun] = []

    def start(root: Path, target_names: list[str], clone: bool = True) -> MirrorRun:
        config = MirrorConfig(
            root=root,
            targets=[TargetDescriptor(name, "local", str(tmp_path / name)) for name in target_names],
            options=MirrorOptions(
                clone_on_start=clone, debounce_ms=FAST_DEBOUNCE_MS, grace_period_s=5.0
            ),
        )
        session = MirrorSession(config, retry=RetryPolicy(max_attempts=2, initial_backoff=0.01))
        stop = threading.Event()
        result: dict[str, object] = {}

        def _run() -> None:
            try:
                result["report"] = session.run(stop)
            except Exception as e:
                result["error"] = e

        thread = threading.Thread(target=_run, name="mirror-session", daemon=True)
        run = MirrorRun(session, stop, thread, result)
        runs.append(run)
        thread.start()
        assert session.wait_ready(WAIT_TIMEOUT), result.get("error")
        return run

    yield start

    for run in runs:
        run.stop_event.set()
        run.thread.join(WAIT_TIMEOUT)
