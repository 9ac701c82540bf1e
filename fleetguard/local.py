"""Local command session, the subprocess counterpart of SSHSession."""

from __future__ import annotations

import logging
import subprocess

from fleetguard.errors import CommandTimeout, SessionError
from fleetguard.ssh import Command, Result, as_shell_command, decode_output, encode_input, printable, with_sudo

logger = logging.getLogger(__name__)

LOCAL_HOST_NAMES = frozenset({"local", "localhost"})


class LocalSession:
    """Runs commands on this machine through /bin/sh.

    Mirrors the SSHSession interface so probes and effect backends do not
    care where the host is.
    """

    def __init__(self, *, timeout: int = 30, sudo: bool = False, shell: str = "/bin/sh"):
        self.timeout = timeout
        self.sudo = sudo
        self.shell = shell

    @property
    def host_id(self) -> str:
        return "localhost"

    def connect(self) -> None:
        pass

    def run(self, cmd: Command, *, timeout: float | None = None, input: str | None = None) -> Result:
        """Execute a command and return the result.

        Raises:
            CommandTimeout: The command did not finish within timeout.
            SessionError: The shell could not be started.

        """
        cmd = as_shell_command(cmd)
        if self.sudo:
            cmd = with_sudo(cmd)

        t = timeout if timeout is not None else self.timeout
        try:
            proc = subprocess.run(
                [self.shell, "-c", cmd],
                input=encode_input(input) if input is not None else None,
                stdin=None if input is not None else subprocess.DEVNULL,
                capture_output=True,
                timeout=t,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeout(cmd, t) from exc
        except OSError as exc:
            raise SessionError(f"localhost: {type(exc).__name__}: {exc}") from exc

        return Result(
            exit_code=proc.returncode,
            stdout=decode_output(proc.stdout).rstrip("\n"),
            stderr=printable(decode_output(proc.stderr)).rstrip("\n"),
        )

    def close(self) -> None:
        pass

    def __enter__(self) -> LocalSession:
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
