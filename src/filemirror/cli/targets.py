"""Target management commands.

Commands:
- target add: Add a target to the config file
- target list: Show configured targets
- target remove: Remove a target
"""

from __future__ import annotations

import os
import sys

import click
from keyring.errors import KeyringError

from filemirror.cli.config import load_config, save_config
from filemirror.core.config import DEFAULT_SSH_PORT, ConfigError, TargetDescriptor, parse_target_spec
from filemirror.transport.credentials import store_password


@click.group()
def target() -> None:
    """Manage mirror targets."""


@target.command("add")
@click.argument("name")
@click.argument("spec")
@click.option("--port", type=click.IntRange(1, 65535), default=DEFAULT_SSH_PORT, help="SSH port.")
@click.option(
    "--credential",
    default=None,
    help="Credential reference: key:<path>, keyring:<service> or env:<VAR>.",
)
@click.option(
    "--ask-password",
    is_flag=True,
    help="Prompt for the SSH password and store it in the OS keyring.",
)
def add_target(name: str, spec: str, port: int, credential: str | None, ask_password: bool) -> None:
    """Add target NAME at SPEC ([user@]host:/path or a local directory)."""
    config = load_config()
    targets = config.setdefault("targets", [])
    if any(t.get("name") == name for t in targets):
        click.echo(f"Error: target {name!r} already exists", err=True)
        sys.exit(1)

    try:
        descriptor = parse_target_spec(spec, name=name, port=port)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if ask_password:
        if descriptor.is_local:
            click.echo("Error: local targets do not use passwords", err=True)
            sys.exit(1)
        password = click.prompt(f"Password for {descriptor.address}", hide_input=True)
        account = descriptor.user or os.environ.get("USER", "")
        try:
            credential = store_password(account, password)
        except KeyringError as e:
            click.echo(f"Error: could not store password in keyring: {e}", err=True)
            sys.exit(1)

    if credential:
        descriptor = TargetDescriptor(**{**descriptor.to_dict(), "credential_ref": credential})

    targets.append(descriptor.to_dict())
    save_config(config)
    click.echo(f"Added target {name}: {descriptor.address}")


@target.command("list")
def list_targets() -> None:
    """Show configured targets."""
    config = load_config()
    targets = config.get("targets", [])
    if not targets:
        click.echo("No targets configured.")
        return
    for entry in targets:
        try:
            descriptor = TargetDescriptor.from_dict(entry)
        except ConfigError as e:
            click.echo(f"  (invalid) {entry!r}: {e}")
            continue
        credential = f" [{descriptor.credential_ref}]" if descriptor.credential_ref else ""
        click.echo(f"  {descriptor.name}: {descriptor.address}{credential}")


@target.command("remove")
@click.argument("name")
def remove_target(name: str) -> None:
    """Remove target NAME."""
    config = load_config()
    targets = config.get("targets", [])
    remaining = [t for t in targets if t.get("name") != name]
    if len(remaining) == len(targets):
        click.echo(f"Error: no target named {name!r}", err=True)
        sys.exit(1)
    config["targets"] = remaining
    save_config(config)
    click.echo(f"Removed target {name}")
