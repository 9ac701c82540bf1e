"""
Pytest configuration and fixtures for fleetguard tests.

Two kinds of session are used:

- FakeSession answers commands from a script of regex rules and records
  every command it was asked to run. Used for systemd, sysctl, apt and
  anything else that needs root.
- LocalSession runs real shell commands without sudo. Used against files
  under tmp_path, so atomic writes and rollbacks are exercised for real.
"""

import re
import textwrap
from typing import Callable, List, Optional, Union

import pytest

from fleetguard.config import Settings
from fleetguard.journal import Journal
from fleetguard.local import LocalSession
from fleetguard.ssh import Result, as_shell_command

Response = Union[Result, Callable[[str], Result], BaseException]


class FakeSession:
    """Session whose commands are answered by regex rules.

    Rules are checked newest first, so a test can override a default rule
    by registering a more specific one later. Unmatched commands succeed
    with empty output.
    """

    def __init__(self, host_id: str = "web-01"):
        self.host_id = host_id
        self.commands: List[str] = []
        self.inputs: List[Optional[str]] = []
        self.rules: List[tuple] = []
        self.closed = False

    def on(self, pattern: str, stdout: str = "", exit_code: int = 0, stderr: str = "", *, response: Optional[Response] = None):
        self.rules.append((re.compile(pattern), response or Result(exit_code, stdout, stderr)))
        return self

    def run(self, cmd, *, timeout=None, input=None) -> Result:
        cmd = as_shell_command(cmd)
        self.commands.append(cmd)
        self.inputs.append(input)
        for pattern, response in reversed(self.rules):
            if pattern.search(cmd):
                if isinstance(response, BaseException):
                    raise response
                if callable(response):
                    return response(cmd)
                return response
        return Result(0, "", "")

    def ran(self, pattern: str) -> List[str]:
        """Commands matching a pattern, in order."""
        return [c for c in self.commands if re.search(pattern, c)]

    def connect(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FailingMvSession(LocalSession):
    """LocalSession whose atomic rename step always fails."""

    def run(self, cmd, *, timeout=None, input=None) -> Result:
        if as_shell_command(cmd).startswith("mv -f"):
            return Result(1, "", "mv: cannot move: Read-only file system")
        return super().run(cmd, timeout=timeout, input=input)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def local_session() -> LocalSession:
    return LocalSession(timeout=10)


@pytest.fixture
def journal():
    j = Journal(":memory:")
    yield j
    j.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(timeout_per_action=10, probe_timeout=10, host_concurrency=2)


@pytest.fixture
def sshd_config(tmp_path):
    """An sshd_config that allows root login."""
    path = tmp_path / "sshd_config"
    path.write_text("# Authentication:\n#PermitRootLogin prohibit-password\nPermitRootLogin yes\nPort 22\n")
    return path


def baseline_yaml(body: str, name: str = "test") -> str:
    """Wrap an items block in a minimal baseline document."""
    return f"version: 1\nname: {name}\nitems:\n" + textwrap.indent(textwrap.dedent(body).strip("\n"), "  ") + "\n"
