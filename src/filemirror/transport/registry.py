"""Registry of configured targets and their connections.

This module provides:
- Target: One configured target, its transport and its status
- TargetRegistry: Opens a connection per target at session start
- open_transport: Build the transport matching a target descriptor
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from filemirror.core.config import TargetDescriptor
from filemirror.mirror.types import FatalError, TargetStatus
from filemirror.transport.base import Transport, TransportError
from filemirror.transport.local import LocalTransport
from filemirror.transport.sftp import SftpTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[TargetDescriptor], Transport]


def open_transport(descriptor: TargetDescriptor) -> Transport:
    """Create (but do not connect) the transport for a descriptor."""
    if descriptor.is_local:
        return LocalTransport(Path(descriptor.remote_root))
    return SftpTransport(descriptor)


class Target:
    """A configured target with its live status.

    Status is written by the target's worker and read by the reporter, so
    access goes through a lock.
    """

    def __init__(self, descriptor: TargetDescriptor, transport: Transport) -> None:
        self.descriptor = descriptor
        self.transport = transport
        self._status = TargetStatus.DISCONNECTED
        self._reason: str | None = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        """Get the target label."""
        return self.descriptor.name

    @property
    def status(self) -> TargetStatus:
        """Get the current connection status."""
        with self._lock:
            return self._status

    @property
    def reason(self) -> str | None:
        """Get why the target is not connected, if known."""
        with self._lock:
            return self._reason

    def set_status(self, status: TargetStatus, reason: str | None = None) -> None:
        """Update the status, logging transitions."""
        with self._lock:
            previous = self._status
            self._status = status
            self._reason = reason if status is not TargetStatus.CONNECTED else None
        if previous is not status:
            if status is TargetStatus.CONNECTED:
                logger.info("Target %s is %s", self.name, status.value)
            else:
                logger.warning("Target %s is %s: %s", self.name, status.value, reason or "unknown")

    def __repr__(self) -> str:
        return f"Target({self.name!r}, {self.descriptor.address!r}, {self.status.value})"


class TargetRegistry:
    """Holds every configured target in configuration order.

    Usage:
        registry = TargetRegistry.open(config.targets)
        for target in registry.connected():
            ...
        registry.close()
    """

    def __init__(self, targets: list[Target]) -> None:
        self._targets = list(targets)

    @classmethod
    def open(
        cls,
        descriptors: Iterable[TargetDescriptor],
        factory: TransportFactory = open_transport,
    ) -> TargetRegistry:
        """Connect to every target.

        Unreachable targets are kept as DISCONNECTED with the reason.

        Raises:
            FatalError: If no targets are configured or none could connect.
        """
        descriptors = list(descriptors)
        if not descriptors:
            raise FatalError(FatalError.NO_TARGETS, "No targets configured")

        targets: list[Target] = []
        for descriptor in descriptors:
            target = Target(descriptor, factory(descriptor))
            try:
                target.transport.connect()
            except TransportError as e:
                target.set_status(TargetStatus.DISCONNECTED, f"{e.kind.value}: {e}")
            else:
                target.set_status(TargetStatus.CONNECTED)
            targets.append(target)

        registry = cls(targets)
        if not registry.connected():
            registry.close()
            raise FatalError(
                FatalError.ALL_TARGETS_UNREACHABLE,
                "No target could be reached: "
                + "; ".join(f"{t.name} ({t.reason})" for t in targets),
            )
        return registry

    def connected(self) -> list[Target]:
        """Get targets that connected at startup."""
        return [t for t in self._targets if t.status is not TargetStatus.DISCONNECTED]

    def get(self, name: str) -> Target:
        """Look up a target by name."""
        for target in self._targets:
            if target.name == name:
                return target
        raise KeyError(name)

    def close(self) -> None:
        """Close every transport."""
        for target in self._targets:
            target.transport.close()

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)
