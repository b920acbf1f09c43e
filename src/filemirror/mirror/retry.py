"""Retry logic with exponential backoff.

This module provides:
- RetryPolicy: Attempts and backoff schedule for one operation
- retry_with_backoff: Run a callable, retrying transient TransportErrors
- backoff_delays: Capped exponential delays for reconnect probing

Sleeps go through an interruptible wait so a cancelled run never sits out
a long backoff.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from filemirror.mirror.types import ErrorKind
from filemirror.transport.base import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_BACKOFF = 0.5  # seconds
DEFAULT_MAX_BACKOFF = 30.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Reconnect probing while a target is degraded
RECONNECT_INTERVAL = 5.0  # seconds
RECONNECT_MAX_INTERVAL = 60.0  # seconds


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a transient failure."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delays(self) -> Iterator[float]:
        """Yield the wait before each retry (max_attempts - 1 values)."""
        backoff = self.initial_backoff
        for _ in range(self.max_attempts - 1):
            yield backoff
            backoff = min(backoff * self.multiplier, self.max_backoff)


def retry_with_backoff(
    func: Callable[[], T],
    policy: RetryPolicy | None = None,
    cancel: threading.Event | None = None,
    description: str = "operation",
) -> T:
    """Execute a function, retrying transient transport failures.

    Permanent TransportErrors are raised immediately.

    Args:
        func: Function to execute.
        policy: Attempts and backoff schedule.
        cancel: Interrupts the backoff sleep when set.
        description: Used in log messages.

    Returns:
        Result of the function.

    Raises:
        TransportError: The last error once attempts are exhausted, a
            permanent error, or CANCELLED if cancel was set while waiting.
    """
    policy = policy or RetryPolicy()
    cancel = cancel or threading.Event()
    delays = policy.delays()
    attempt = 0

    while True:
        attempt += 1
        try:
            return func()
        except TransportError as e:
            if not e.transient:
                raise
            delay = next(delays, None)
            if delay is None:
                logger.error(
                    "%s failed after %d attempts: %s", description, policy.max_attempts, e
                )
                raise

            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
                description,
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            if cancel.wait(delay):
                raise TransportError(
                    ErrorKind.CANCELLED, f"{description} cancelled while retrying", e.path
                ) from e


def backoff_delays(
    initial: float = RECONNECT_INTERVAL,
    maximum: float = RECONNECT_MAX_INTERVAL,
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> Iterator[float]:
    """Yield an endless capped exponential schedule."""
    delay = initial
    while True:
        yield delay
        delay = min(delay * multiplier, maximum)
