"""Remote command session over paramiko.

Output is decoded as UTF-8 with ``surrogateescape`` so bytes that are not
valid UTF-8 survive a read, edit and write cycle unchanged. Content that a
command should consume is sent on stdin rather than in the command line,
which keeps large files clear of the kernel's argument size limit.
"""

from __future__ import annotations

import logging
import shlex
import socket
from dataclasses import dataclass
from typing import Sequence, Union

import paramiko

from fleetguard.errors import CommandTimeout, SessionError

logger = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]

ENCODING = "utf-8"


def as_shell_command(cmd: Command) -> str:
    """Render an argv list as a shell string; pass strings through."""
    if isinstance(cmd, str):
        return cmd
    return shlex.join(list(cmd))


def with_sudo(cmd: str) -> str:
    """Wrap a shell string so it runs as root without prompting."""
    return f"sudo -n sh -c {shlex.quote(cmd)}"


def decode_output(data: bytes) -> str:
    """Decode command output losslessly."""
    return data.decode(ENCODING, errors="surrogateescape")


def encode_input(text: str) -> bytes:
    """Encode text for stdin, restoring bytes kept by decode_output."""
    return text.encode(ENCODING, errors="surrogateescape")


def printable(text: str) -> str:
    """Replace undecodable bytes so text is safe for messages and logs."""
    return text.encode(ENCODING, errors="replace").decode(ENCODING)


@dataclass
class Result:
    """Exit status and trailing-newline-stripped output of one command."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class SSHSession:
    """One paramiko connection to a remote host, reused for every command.

    Attributes:
        hostname: Address to connect to.
        port: SSH port; part of host_id when not 22.
        sudo: Wrap every command in ``sudo -n``.
        timeout: Connect timeout and default per-command timeout.

    """

    def __init__(
        self,
        hostname: str,
        *,
        port: int = 22,
        user: str | None = None,
        key_path: str | None = None,
        password: str | None = None,
        timeout: int = 30,
        sudo: bool = False,
    ):
        self.hostname = hostname
        self.port = port
        self.user = user
        self.key_path = key_path
        self.password = password
        self.timeout = timeout
        self.sudo = sudo
        self._client: paramiko.SSHClient | None = None

    @property
    def host_id(self) -> str:
        return self.hostname if self.port == 22 else f"{self.hostname}:{self.port}"

    def _connect_kwargs(self) -> dict:
        kwargs: dict = {"hostname": self.hostname, "port": self.port, "timeout": self.timeout}
        if self.user:
            kwargs["username"] = self.user
        if self.key_path:
            kwargs["key_filename"] = self.key_path
        if self.password:
            kwargs["password"] = self.password
        # Explicit credentials only; otherwise paramiko tries ~/.ssh keys and the agent.
        if self.key_path or self.password:
            kwargs["look_for_keys"] = False
            kwargs["allow_agent"] = False
        return kwargs

    def connect(self) -> None:
        """Open the connection, trusting known_hosts and warning on new keys."""
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.WarningPolicy())
        logger.debug("Connecting to %s", self.host_id)
        client.connect(**self._connect_kwargs())
        self._client = client

    def run(self, cmd: Command, *, timeout: float | None = None, input: str | None = None) -> Result:
        """Run a command, optionally feeding ``input`` on its stdin.

        Raises:
            CommandTimeout: No output or exit status arrived within timeout.
            SessionError: The connection failed or was never opened.

        """
        if self._client is None:
            raise SessionError(f"Not connected to {self.host_id}")

        cmd = as_shell_command(cmd)
        if self.sudo:
            cmd = with_sudo(cmd)
        t = timeout if timeout is not None else self.timeout

        try:
            stdin_ch, stdout_ch, stderr_ch = self._client.exec_command(cmd, timeout=t)
            if input is not None:
                stdin_ch.write(encode_input(input))
                stdin_ch.flush()
            stdin_ch.channel.shutdown_write()
            out = stdout_ch.read()
            err = stderr_ch.read()
            exit_code = stdout_ch.channel.recv_exit_status()
        except socket.timeout as exc:
            raise CommandTimeout(cmd, t) from exc
        except (paramiko.SSHException, EOFError, OSError) as exc:
            raise SessionError(f"{self.host_id}: {type(exc).__name__}: {exc}") from exc

        return Result(
            exit_code=exit_code,
            stdout=decode_output(out).rstrip("\n"),
            stderr=printable(decode_output(err)).rstrip("\n"),
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> SSHSession:
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
