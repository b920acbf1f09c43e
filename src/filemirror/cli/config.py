"""Configuration utilities for the filemirror CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from filemirror.core.config import ConfigError, MirrorConfig

CONFIG_HOME_ENV = "FILEMIRROR_HOME"
DEFAULT_ROOT = Path("INBOX")


def get_config_dir() -> Path:
    """Get the configuration directory for filemirror.

    Returns:
        Path from $FILEMIRROR_HOME, or ~/.filemirror.
    """
    override = os.environ.get(CONFIG_HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".filemirror"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if not config_file.exists():
        return {}
    try:
        data = json.loads(config_file.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid config file {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {config_file}: expected an object")
    return data


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_mirror_config() -> MirrorConfig:
    """Load the config file as a MirrorConfig (root defaults to INBOX/)."""
    return MirrorConfig.from_dict(load_config(), default_root=DEFAULT_ROOT)
