"""Index command: print what would be mirrored.

Commands:
- index: Seed the path index of a HOST directory and list it
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from filemirror.cli.config import DEFAULT_ROOT, load_config
from filemirror.mirror.index import PathIndex, format_record
from filemirror.mirror.session import build_ignore


@click.command()
@click.option(
    "-d",
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="HOST directory (default: configured root or INBOX/).",
)
def index(root: Path | None) -> None:
    """List the files of the HOST directory as the mirror sees them."""
    config = load_config()
    root = root or Path(config.get("root") or DEFAULT_ROOT)
    if not root.is_dir():
        click.echo(f"Error: {root} is not a directory", err=True)
        sys.exit(2)

    path_index = PathIndex(root, build_ignore(root, config.get("ignore", [])))
    try:
        records = path_index.seed()
    except OSError as e:
        click.echo(f"Error: cannot read {root}: {e}", err=True)
        sys.exit(2)

    for record in records:
        click.echo(format_record(record))
    click.echo(f"{len(records)} files")
