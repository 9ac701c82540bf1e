"""Command execution backend interface and session factory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from fleetguard.local import LOCAL_HOST_NAMES, LocalSession
from fleetguard.ssh import Command, Result, SSHSession

if TYPE_CHECKING:
    from fleetguard.config import Settings
    from fleetguard.inventory import HostInfo


class Session(Protocol):
    """Anything that can run a command on one host with a bounded timeout."""

    @property
    def host_id(self) -> str: ...

    def run(self, cmd: Command, *, timeout: float | None = None, input: str | None = None) -> Result: ...

    def connect(self) -> None: ...

    def close(self) -> None: ...


def open_session(host: HostInfo, settings: Settings, *, password: str | None = None) -> Session:
    """Create a connected session for a resolved inventory host."""
    if host.hostname in LOCAL_HOST_NAMES:
        session: Session = LocalSession(timeout=settings.probe_timeout, sudo=settings.ssh_sudo)
    else:
        session = SSHSession(
            host.hostname,
            port=host.port,
            user=host.user,
            key_path=host.key_path,
            password=password,
            timeout=settings.probe_timeout,
            sudo=settings.ssh_sudo,
        )
    session.connect()
    return session


__all__ = ["Session", "open_session"]
