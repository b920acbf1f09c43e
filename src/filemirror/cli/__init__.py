"""Command-line interface for filemirror.

This module provides the main CLI entry point and assembles all commands.

Commands:
- run: Watch the HOST directory and mirror it to the targets
- index: List the HOST directory as the path index sees it
- target add/list/remove: Manage configured targets
"""

from __future__ import annotations

import sys

import click

from filemirror.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from filemirror.cli.index import index
from filemirror.cli.run import run as run_command
from filemirror.cli.targets import target
from filemirror.core.config import ConfigError


@click.group()
@click.version_option(package_name="filemirror")
def cli() -> None:
    """filemirror - one-way mirroring of a directory to SSH targets."""


cli.add_command(run_command)
cli.add_command(index)
cli.add_command(target)


def main() -> None:
    """Entry point for the CLI."""
    try:
        cli()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
