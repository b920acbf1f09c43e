"""Shared configuration classes for filemirror.

This module defines the typed configuration handed to the mirroring core:
- TargetDescriptor: Immutable identity of one remote TARGET
- MirrorOptions: Behaviour switches for one run
- MirrorConfig: HOST root + ordered targets + options
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

LOCAL_HOSTS = frozenset({"", "local"})

DEFAULT_DEBOUNCE_MS = 300
DEFAULT_GRACE_PERIOD_S = 10.0
DEFAULT_SSH_PORT = 22


class ConfigError(ValueError):
    """Raised when configuration values are missing or invalid."""


@dataclass(frozen=True)
class TargetDescriptor:
    """Connection identity of a TARGET.

    Attributes:
        name: Short unique label used in logs and the report.
        host: Remote host name, or "local" for a directory on this machine.
        remote_root: Root directory of the mirror on the target.
        user: Remote login (None lets the transport pick its default).
        port: SSH port.
        credential_ref: Reference resolved by transport.credentials
            (e.g. "key:~/.ssh/id_ed25519", "keyring:filemirror").
    """

    name: str
    host: str
    remote_root: str
    user: str | None = None
    port: int = DEFAULT_SSH_PORT
    credential_ref: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Target name must not be empty")
        if not self.remote_root:
            raise ConfigError(f"Target {self.name!r} has no remote root")
        if not 0 < self.port < 65536:
            raise ConfigError(f"Target {self.name!r} has invalid port {self.port}")

    @property
    def is_local(self) -> bool:
        """Check if the target is a directory on this machine."""
        return self.host in LOCAL_HOSTS

    @property
    def address(self) -> str:
        """Human-readable location, e.g. ``alice@backup:/srv/mirror``."""
        if self.is_local:
            return self.remote_root
        user = f"{self.user}@" if self.user else ""
        port = f":{self.port}" if self.port != DEFAULT_SSH_PORT else ""
        return f"{user}{self.host}{port}:{self.remote_root}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TargetDescriptor:
        """Build a descriptor from a config mapping."""
        try:
            return cls(
                name=str(data["name"]),
                host=str(data.get("host", "local")),
                remote_root=str(data["remote_root"]),
                user=data.get("user"),
                port=int(data.get("port", DEFAULT_SSH_PORT)),
                credential_ref=data.get("credential_ref"),
            )
        except KeyError as e:
            raise ConfigError(f"Target entry is missing {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigError):
                raise
            raise ConfigError(f"Invalid target entry {data!r}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the JSON config file."""
        return asdict(self)


@dataclass
class MirrorOptions:
    """Options for one mirroring run.

    Attributes:
        clone_on_start: Push every HOST file to every target before watching.
        interactive_conflicts: Ask before overwriting differing target files.
        debounce_ms: Window in which raw events for one path are merged.
        grace_period_s: How long shutdown waits for in-flight work.
        ignore: Extra gitignore-style patterns.
    """

    clone_on_start: bool = False
    interactive_conflicts: bool = False
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    grace_period_s: float = DEFAULT_GRACE_PERIOD_S
    ignore: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.debounce_ms < 0:
            raise ConfigError("debounce_ms must be >= 0")
        if self.grace_period_s < 0:
            raise ConfigError("grace_period_s must be >= 0")


@dataclass
class MirrorConfig:
    """Everything the mirroring core needs for one run."""

    root: Path
    targets: list[TargetDescriptor] = field(default_factory=list)
    options: MirrorOptions = field(default_factory=MirrorOptions)

    def __post_init__(self) -> None:
        self.root = Path(self.root).expanduser()
        names = [t.name for t in self.targets]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ConfigError(f"Duplicate target names: {', '.join(sorted(duplicates))}")

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_root: Path | None = None) -> MirrorConfig:
        """Build a config from the JSON config mapping."""
        root = data.get("root") or default_root
        if root is None:
            raise ConfigError("No HOST root configured")
        try:
            options = MirrorOptions(
                clone_on_start=bool(data.get("clone_on_start", False)),
                interactive_conflicts=bool(data.get("interactive_conflicts", False)),
                debounce_ms=int(data.get("debounce_ms", DEFAULT_DEBOUNCE_MS)),
                grace_period_s=float(data.get("grace_period_s", DEFAULT_GRACE_PERIOD_S)),
                ignore=[str(p) for p in data.get("ignore", [])],
            )
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigError):
                raise
            raise ConfigError(f"Invalid option value: {e}") from e
        targets = [TargetDescriptor.from_dict(t) for t in data.get("targets", [])]
        return cls(root=Path(root), targets=targets, options=options)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the JSON config file."""
        return {
            "root": str(self.root),
            "clone_on_start": self.options.clone_on_start,
            "interactive_conflicts": self.options.interactive_conflicts,
            "debounce_ms": self.options.debounce_ms,
            "grace_period_s": self.options.grace_period_s,
            "ignore": list(self.options.ignore),
            "targets": [t.to_dict() for t in self.targets],
        }


def parse_target_spec(spec: str, name: str | None = None, port: int = DEFAULT_SSH_PORT) -> TargetDescriptor:
    """Parse a ``[user@]host:/path`` or plain local path target spec.

    Args:
        spec: Target specification from the command line.
        name: Optional label; defaults to the host (or path for local targets).
        port: SSH port for remote targets.

    Returns:
        TargetDescriptor for the spec.

    Raises:
        ConfigError: If the spec is empty or has no path part.
    """
    spec = spec.strip()
    if not spec:
        raise ConfigError("Empty target spec")

    # Windows drive letters and paths without a colon are local directories
    host_part, sep, path_part = spec.partition(":")
    if not sep or "/" in host_part or (len(host_part) == 1 and host_part.isalpha()):
        return TargetDescriptor(name=name or spec, host="local", remote_root=spec, port=port)

    if not path_part:
        raise ConfigError(f"Target spec {spec!r} has no remote path")

    user: str | None = None
    host = host_part
    if "@" in host_part:
        user, host = host_part.rsplit("@", 1)
    if not host:
        raise ConfigError(f"Target spec {spec!r} has no host")

    return TargetDescriptor(
        name=name or host,
        host=host,
        remote_root=path_part,
        user=user or None,
        port=port,
    )
