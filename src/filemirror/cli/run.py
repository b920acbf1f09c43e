"""Run command for the filemirror CLI.

Commands:
- run: Watch the HOST directory and mirror changes until interrupted
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

import click

from filemirror.cli.config import DEFAULT_ROOT, load_config
from filemirror.cli.prompt import ClickPrompter
from filemirror.core.config import ConfigError, MirrorConfig, parse_target_spec
from filemirror.mirror.logs import MirrorRecordFormatter
from filemirror.mirror.session import MirrorSession
from filemirror.mirror.types import FatalError

EXIT_FATAL = 2


def setup_logging(verbose: bool, log_file: Path | None) -> None:
    """Install console (and optional file) handlers on the filemirror logger."""
    package_logger = logging.getLogger("filemirror")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(MirrorRecordFormatter("%(asctime)s %(levelname)s %(message)s", "%H:%M:%S"))
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    package_logger.addHandler(console)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(MirrorRecordFormatter())
        file_handler.setLevel(logging.DEBUG)
        package_logger.addHandler(file_handler)

    package_logger.setLevel(logging.DEBUG if verbose or log_file else logging.INFO)
    package_logger.propagate = False


def build_run_config(
    root: Path | None,
    target_specs: tuple[str, ...],
    clone: bool | None,
    interactive: bool | None,
    debounce_ms: int | None,
    grace: float | None,
) -> MirrorConfig:
    """Merge the config file with command-line overrides."""
    data = load_config()
    if root is not None:
        data["root"] = str(root)
    if target_specs:
        data["targets"] = [parse_target_spec(spec).to_dict() for spec in target_specs]
    if clone is not None:
        data["clone_on_start"] = clone
    if interactive is not None:
        data["interactive_conflicts"] = interactive
    if debounce_ms is not None:
        data["debounce_ms"] = debounce_ms
    if grace is not None:
        data["grace_period_s"] = grace
    return MirrorConfig.from_dict(data, default_root=DEFAULT_ROOT)


@contextmanager
def stop_on_signals(stop: threading.Event) -> Iterator[None]:
    """Set stop on SIGINT/SIGTERM while the block runs (main thread only)."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        click.echo("\nStopping...", err=True)
        stop.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@click.command()
@click.option(
    "-d",
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="HOST directory to watch (default: configured root or INBOX/).",
)
@click.option(
    "-t",
    "--target",
    "target_specs",
    multiple=True,
    help="Target [user@]host:/path or local directory; replaces configured targets.",
)
@click.option("--clone/--no-clone", default=None, help="Copy every HOST file before watching.")
@click.option(
    "--interactive/--yes",
    "interactive",
    default=None,
    help="Ask before overwriting differing target files (--yes overwrites).",
)
@click.option("--debounce-ms", type=click.IntRange(min=0), default=None, help="Debounce window.")
@click.option("--grace", type=click.FloatRange(min=0), default=None, help="Shutdown grace period in seconds.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the log to this file (e.g. fm.log).",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug messages.")
def run(
    root: Path | None,
    target_specs: tuple[str, ...],
    clone: bool | None,
    interactive: bool | None,
    debounce_ms: int | None,
    grace: float | None,
    log_file: Path | None,
    verbose: bool,
) -> None:
    """Mirror the HOST directory to every target until interrupted.

    Prints a per-target report on exit. Exit status is 0 when everything
    was applied, 1 when something failed or a target ended degraded, and
    2 when the run could not start.
    """
    setup_logging(verbose, log_file)

    try:
        config = build_run_config(root, target_specs, clone, interactive, debounce_ms, grace)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FATAL)

    if config.root == DEFAULT_ROOT and not config.root.exists():
        config.root.mkdir(parents=True)
        click.echo(f"Created HOST folder: {config.root}")

    prompter = ClickPrompter() if config.options.interactive_conflicts else None
    session = MirrorSession(config, prompter=prompter)
    stop = threading.Event()

    click.echo(f"Mirroring {config.root} to {len(config.targets)} target(s). Press Ctrl+C to stop.")
    try:
        with stop_on_signals(stop):
            report = session.run(stop)
    except FatalError as e:
        click.echo(f"Error ({e.precondition}): {e}", err=True)
        sys.exit(EXIT_FATAL)

    click.echo(report.render())
    sys.exit(report.exit_code)
