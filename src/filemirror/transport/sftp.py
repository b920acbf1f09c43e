"""SSH/SFTP transport built on paramiko.

Wraps one paramiko SSHClient and its SFTPClient per target. Keep-alives
are sent so idle connections survive NAT timeouts; every paramiko or socket
failure is converted to a TransportError so workers can decide whether to
retry.
"""

from __future__ import annotations

import logging
import posixpath
import shlex
import socket
import stat as stat_mod
from collections.abc import Callable
from typing import Any, BinaryIO

import paramiko

from filemirror.core.config import TargetDescriptor
from filemirror.mirror.types import ErrorKind
from filemirror.transport.base import RemoteStat, Transport, TransportError
from filemirror.transport.credentials import CredentialError, resolve_credentials

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 20.0
KEEPALIVE_INTERVAL = 30
DIGEST_TIMEOUT = 120.0
OPERATION_TIMEOUT = 60.0


def _translate(error: Exception, path: str | None = None) -> TransportError:
    """Map a paramiko/socket exception to a TransportError."""
    if isinstance(error, TransportError):
        return error
    if isinstance(error, paramiko.AuthenticationException):
        return TransportError(ErrorKind.PERMISSION_DENIED, f"Authentication failed: {error}", path)
    if isinstance(error, (socket.timeout, TimeoutError)):
        return TransportError(ErrorKind.TIMEOUT, f"Timed out: {error}", path)
    if isinstance(error, (paramiko.SSHException, EOFError)):
        return TransportError(ErrorKind.CONNECTION_LOST, f"Connection lost: {error}", path)
    if isinstance(error, OSError):
        return TransportError.from_os_error(error, path)
    return TransportError(ErrorKind.UNKNOWN, str(error), path)


class SftpTransport(Transport):
    """Mirror into a directory on an SSH host.

    Usage:
        transport = SftpTransport(descriptor)
        transport.connect()
        transport.mkdir_p("docs")
    """

    def __init__(
        self,
        descriptor: TargetDescriptor,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        connect_timeout: float = CONNECT_TIMEOUT,
        operation_timeout: float = OPERATION_TIMEOUT,
    ) -> None:
        """Initialize the transport.

        Args:
            descriptor: Target identity (host, port, user, root, credential).
            client_factory: Creates the SSH client.
            connect_timeout: TCP/banner/auth timeout in seconds.
            operation_timeout: Longest wait for one SFTP reply; a stalled
                link then fails with a retryable timeout.
        """
        self._descriptor = descriptor
        self._client_factory = client_factory
        self._connect_timeout = connect_timeout
        self._operation_timeout = operation_timeout
        self._ssh: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    @property
    def description(self) -> str:
        return self._descriptor.address

    def connect(self) -> None:
        if self.probe():
            return
        self.close()

        d = self._descriptor
        try:
            kwargs: dict[str, Any] = resolve_credentials(d.credential_ref, d.user)
        except CredentialError as e:
            raise TransportError(ErrorKind.PERMISSION_DENIED, str(e)) from e

        logger.info("Connecting to %s", d.address)
        client = self._client_factory()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=d.host,
                port=d.port,
                username=d.user,
                timeout=self._connect_timeout,
                banner_timeout=self._connect_timeout,
                auth_timeout=self._connect_timeout,
                **kwargs,
            )
            transport = client.get_transport()
            if transport is not None:
                transport.set_keepalive(KEEPALIVE_INTERVAL)
            sftp = client.open_sftp()
            sftp.get_channel().settimeout(self._operation_timeout)
        except Exception as e:
            client.close()
            raise _translate(e) from e

        self._ssh = client
        self._sftp = sftp
        logger.info("Connected to %s", d.address)

    def close(self) -> None:
        sftp, ssh = self._sftp, self._ssh
        self._sftp = None
        self._ssh = None
        for handle in (sftp, ssh):
            if handle is None:
                continue
            try:
                handle.close()
            except (OSError, paramiko.SSHException, EOFError) as e:
                logger.debug("Ignoring error while closing %s: %s", self.description, e)

    def probe(self) -> bool:
        if self._ssh is None or self._sftp is None:
            return False
        transport = self._ssh.get_transport()
        if transport is None or not transport.is_active():
            return False
        try:
            transport.send_ignore()
        except (OSError, paramiko.SSHException, EOFError):
            return False
        return True

    def _remote(self, rel_path: str) -> str:
        self.check_path(rel_path)
        return posixpath.join(self._descriptor.remote_root, rel_path)

    def _client(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            raise TransportError(ErrorKind.CONNECTION_LOST, f"Not connected to {self.description}")
        return self._sftp

    def put(self, source: BinaryIO, remote_path: str) -> None:
        target = self._remote(remote_path)
        try:
            self._client().putfo(source, target, confirm=True)
        except Exception as e:
            raise _translate(e, remote_path) from e

    def rename(self, remote_src: str, remote_dst: str) -> None:
        src = self._remote(remote_src)
        dst = self._remote(remote_dst)
        try:
            self._client().posix_rename(src, dst)
        except Exception as e:
            raise _translate(e, remote_dst) from e

    def delete(self, remote_path: str) -> None:
        target = self._remote(remote_path)
        try:
            self._client().remove(target)
        except Exception as e:
            raise _translate(e, remote_path) from e

    def mkdir_p(self, remote_dir: str) -> None:
        if not remote_dir:
            return
        sftp = self._client()
        current = self._descriptor.remote_root
        for part in remote_dir.split("/"):
            current = posixpath.join(current, part)
            try:
                attrs = sftp.stat(current)
            except FileNotFoundError:
                try:
                    sftp.mkdir(current)
                except Exception as e:
                    raise _translate(e, remote_dir) from e
                continue
            except Exception as e:
                raise _translate(e, remote_dir) from e
            if attrs.st_mode is not None and not stat_mod.S_ISDIR(attrs.st_mode):
                raise TransportError(
                    ErrorKind.PERMISSION_DENIED,
                    f"{current} exists and is not a directory",
                    remote_dir,
                )

    def stat(self, remote_path: str) -> RemoteStat | None:
        target = self._remote(remote_path)
        try:
            attrs = self._client().stat(target)
        except FileNotFoundError:
            return None
        except Exception as e:
            raise _translate(e, remote_path) from e
        return RemoteStat(size=attrs.st_size or 0, modified_at=float(attrs.st_mtime or 0))

    def digest(self, remote_path: str) -> str | None:
        """Hash the remote file with ``sha256sum`` on the host.

        Returns None when the command is unavailable or fails, which callers
        treat as "content unknown".
        """
        target = self._remote(remote_path)
        if self._ssh is None:
            raise TransportError(ErrorKind.CONNECTION_LOST, f"Not connected to {self.description}")
        command = f"sha256sum -- {shlex.quote(target)}"
        try:
            _, stdout, _ = self._ssh.exec_command(command, timeout=DIGEST_TIMEOUT)
            output = stdout.read().decode("utf-8", errors="replace")
            status = stdout.channel.recv_exit_status()
        except Exception as e:
            raise _translate(e, remote_path) from e
        if status != 0 or not output:
            logger.debug("sha256sum failed on %s (exit %d)", target, status)
            return None
        return output.split()[0].lower()

