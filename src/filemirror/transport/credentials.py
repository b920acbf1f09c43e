"""Credential references for SSH targets.

A target's ``credential_ref`` names where its secret lives instead of
holding the secret itself:

    None                 SSH agent and the default key files
    key:<path>           Private key file
    keyring:<service>    Password stored in the OS keyring under the target user
    env:<VAR>            Password read from an environment variable
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import keyring

from filemirror.mirror.types import MirrorError

KEYRING_SERVICE = "filemirror"


class CredentialError(MirrorError):
    """A credential reference is malformed or cannot be resolved."""


def resolve_credentials(ref: str | None, user: str | None = None) -> dict[str, Any]:
    """Turn a credential reference into paramiko connect() keyword arguments.

    Args:
        ref: Credential reference from the target descriptor.
        user: Remote login, used as the keyring account name.

    Returns:
        Keyword arguments for ``SSHClient.connect``.

    Raises:
        CredentialError: If the reference cannot be resolved.
    """
    if not ref:
        return {"allow_agent": True, "look_for_keys": True}

    scheme, sep, value = ref.partition(":")
    if not sep or not value:
        raise CredentialError(f"Malformed credential reference: {ref!r}")

    if scheme == "key":
        key_path = Path(value).expanduser()
        if not key_path.is_file():
            raise CredentialError(f"Key file not found: {key_path}")
        return {"key_filename": str(key_path), "allow_agent": False, "look_for_keys": False}

    if scheme == "keyring":
        account = user or os.environ.get("USER", "")
        password = keyring.get_password(value, account)
        if password is None:
            raise CredentialError(f"No keyring entry for {account!r} in service {value!r}")
        return {"password": password, "allow_agent": False, "look_for_keys": False}

    if scheme == "env":
        password = os.environ.get(value)
        if password is None:
            raise CredentialError(f"Environment variable {value} is not set")
        return {"password": password, "allow_agent": False, "look_for_keys": False}

    raise CredentialError(f"Unknown credential scheme {scheme!r}")


def store_password(account: str, password: str, service: str = KEYRING_SERVICE) -> str:
    """Save a password in the OS keyring.

    Returns:
        The credential reference to put in the target descriptor.
    """
    keyring.set_password(service, account, password)
    return f"keyring:{service}"
