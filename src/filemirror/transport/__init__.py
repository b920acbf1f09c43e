"""Transports that carry file operations to targets."""

from filemirror.transport.base import RemoteStat, Transport, TransportError
from filemirror.transport.credentials import CredentialError, resolve_credentials
from filemirror.transport.local import LocalTransport
from filemirror.transport.registry import Target, TargetRegistry, open_transport
from filemirror.transport.sftp import SftpTransport

__all__ = [
    "CredentialError",
    "LocalTransport",
    "RemoteStat",
    "SftpTransport",
    "Target",
    "TargetRegistry",
    "Transport",
    "TransportError",
    "open_transport",
    "resolve_credentials",
]
