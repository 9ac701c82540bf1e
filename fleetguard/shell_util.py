"""Shell command utilities for host access.

Provides safe, consistent helpers for the read and write operations used
across probe and apply handlers. All functions use proper quoting to prevent
shell injection, and all of them take an explicit timeout.

Reads never modify the target. Writes never leave a target half-written:
content goes to a temporary sibling first and is renamed over the target in
a separate step.

Example:
-------
    >>> from fleetguard import shell_util
    >>> from fleetguard.local import LocalSession
    >>>
    >>> with LocalSession() as session:
    ...     read = shell_util.read_file(session, "/etc/ssh/sshd_config")
    ...     if read.exists and read.readable:
    ...         print(read.content)

"""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fleetguard.errors import ActionError, ActionErrorKind, CommandTimeout, ProbeError, SessionError
from fleetguard.ssh import printable

if TYPE_CHECKING:
    from fleetguard.ssh import Command, Result
    from fleetguard.sessions import Session

logger = logging.getLogger(__name__)

_PERMISSION_RE = re.compile(r"permission denied|operation not permitted|a password is required", re.IGNORECASE)

# Exit codes used by read_file's shell snippet
_EXIT_MISSING = 3
_EXIT_UNREADABLE = 4


# ── Quoting utilities ─────────────────────────────────────────────────────


def quote(value: str) -> str:
    r"""Quote a value for safe shell interpolation.

    Example:
    -------
        >>> quote("hello world")
        "'hello world'"

    """
    return shlex.quote(str(value))


# ── Command execution ─────────────────────────────────────────────────────


def run_checked(
    session: Session, cmd: Command, *, timeout: float | None = None, input: str | None = None
) -> Result:
    """Run a mutating command, translating failures into ActionError.

    Raises:
        ActionError: TIMEOUT, SESSION, PERMISSION_DENIED or EXIT_CODE.

    """
    try:
        result = session.run(cmd, timeout=timeout, input=input)
    except CommandTimeout as exc:
        raise ActionError(ActionErrorKind.TIMEOUT, str(exc)) from exc
    except SessionError as exc:
        raise ActionError(ActionErrorKind.SESSION, str(exc)) from exc
    if result.ok:
        return result
    message = printable(result.stderr or result.stdout).strip()
    if _PERMISSION_RE.search(message):
        raise ActionError(ActionErrorKind.PERMISSION_DENIED, message, exit_code=result.exit_code)
    raise ActionError(ActionErrorKind.EXIT_CODE, message, exit_code=result.exit_code)


def run_probe(session: Session, cmd: Command, *, timeout: float | None = None) -> Result:
    """Run a read-only command; a timeout or lost session means the probe mechanism broke."""
    try:
        return session.run(cmd, timeout=timeout)
    except (CommandTimeout, SessionError) as exc:
        raise ProbeError(str(exc)) from exc


# ── File read operations ──────────────────────────────────────────────────


@dataclass
class FileRead:
    """Outcome of reading a file without side effects."""

    exists: bool
    readable: bool
    content: str | None = None


def read_file(session: Session, path: str, *, timeout: float | None = None) -> FileRead:
    """Read a file's exact contents.

    A trailing sentinel character is printed after the content so that
    trailing newlines survive output normalization.

    Raises:
        ProbeError: The read mechanism failed (timeout, sudo failure...).

    """
    p = quote(path)
    cmd = f"test -e {p} || exit {_EXIT_MISSING}; cat -- {p} 2>/dev/null && printf . || exit {_EXIT_UNREADABLE}"
    result = run_probe(session, cmd, timeout=timeout)
    if result.exit_code == _EXIT_MISSING:
        return FileRead(exists=False, readable=True)
    if result.exit_code == _EXIT_UNREADABLE:
        return FileRead(exists=True, readable=False)
    if not result.ok or not result.stdout.endswith("."):
        raise ProbeError(f"Cannot read {path}: exit {result.exit_code}: {result.stderr}")
    return FileRead(exists=True, readable=True, content=result.stdout[:-1])


@dataclass
class FileStat:
    """Ownership and mode of a path."""

    owner: str
    group: str
    mode: str  # octal, no leading zero, as printed by stat %a


def stat_path(session: Session, path: str, *, timeout: float | None = None) -> FileStat | None:
    """Return owner, group and mode of a path, or None if it is missing.

    Raises:
        ProbeError: stat failed for a path that exists.

    """
    p = quote(path)
    result = run_probe(session, f"test -e {p} || exit {_EXIT_MISSING}; stat -c '%U %G %a' -- {p}", timeout=timeout)
    if result.exit_code == _EXIT_MISSING:
        return None
    parts = result.stdout.split()
    if not result.ok or len(parts) != 3:
        raise ProbeError(f"Cannot stat {path}: exit {result.exit_code}: {result.stderr}")
    return FileStat(owner=parts[0], group=parts[1], mode=parts[2])


# ── File write operations ─────────────────────────────────────────────────


def stage_file(session: Session, path: str, content: str, *, mode: str | None = None, timeout: float | None = None) -> str:
    """Write content to a temporary sibling of path and return its name.

    Content travels on stdin, so its size is not bounded by the command line.
    Ownership and mode are copied from the existing target, or set to
    ``mode`` (default 0644) for a new file. The target itself is untouched.

    Raises:
        ActionError: The temporary file could not be written.

    """
    p = quote(path)
    directory, name = posixpath.split(path)
    template = quote(posixpath.join(directory or ".", f".{name}.fleetguard.XXXXXX"))
    new_mode = quote(mode or "0644")
    cmd = (
        f'tmp=$(mktemp {template}) || exit 1; '
        f'{{ cat > "$tmp" && '
        f'if [ -e {p} ]; then chown --reference={p} "$tmp" && chmod --reference={p} "$tmp"; '
        f'else chmod {new_mode} "$tmp"; fi; }} || {{ rm -f -- "$tmp"; exit 1; }}; '
        f'echo "$tmp"'
    )
    result = run_checked(session, cmd, timeout=timeout, input=content)
    tmp = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
    if not tmp:
        raise ActionError(ActionErrorKind.EXIT_CODE, f"mktemp produced no name for {path}", exit_code=result.exit_code)
    return tmp


def commit_file(session: Session, tmp: str, path: str, *, timeout: float | None = None) -> None:
    """Atomically rename a staged file over the target.

    Raises:
        ActionError: The rename failed; the staged file is removed.

    """
    try:
        run_checked(session, f"mv -f -- {quote(tmp)} {quote(path)}", timeout=timeout)
    except ActionError:
        discard_file(session, tmp, timeout=timeout)
        raise


def discard_file(session: Session, tmp: str, *, timeout: float | None = None) -> None:
    """Remove a staged file, logging rather than raising on failure."""
    try:
        result = session.run(f"rm -f -- {quote(tmp)}", timeout=timeout)
    except (CommandTimeout, SessionError) as exc:
        logger.warning("Cannot remove staged file %s: %s", tmp, exc)
        return
    if not result.ok:
        logger.warning("Failed to remove staged file %s: %s", tmp, result.stderr)


def write_file_atomic(
    session: Session,
    path: str,
    content: str,
    *,
    mode: str | None = None,
    timeout: float | None = None,
) -> None:
    """Replace a file's content so readers see either the old or new file.

    Raises:
        ActionError: Staging or renaming failed; the target is unchanged.

    """
    tmp = stage_file(session, path, content, mode=mode, timeout=timeout)
    commit_file(session, tmp, path, timeout=timeout)


def remove_file(session: Session, path: str, *, timeout: float | None = None) -> None:
    """Remove a file if it exists."""
    run_checked(session, f"rm -f -- {quote(path)}", timeout=timeout)


def set_file_owner(
    session: Session,
    path: str,
    owner: str | None = None,
    group: str | None = None,
    *,
    timeout: float | None = None,
) -> None:
    """Set file owner and/or group."""
    if not owner and not group:
        return
    chown_spec = f"{owner or ''}:{group}" if group else owner
    run_checked(session, f"chown {quote(chown_spec)} -- {quote(path)}", timeout=timeout)


def set_file_mode(session: Session, path: str, mode: str, *, timeout: float | None = None) -> None:
    """Set file mode from an octal string (e.g., "0600")."""
    run_checked(session, f"chmod {quote(mode)} -- {quote(path)}", timeout=timeout)


# ── Service operations ────────────────────────────────────────────────────


def systemctl(session: Session, verb: str, unit: str, *, timeout: float | None = None) -> Result:
    """Run a mutating systemctl verb on a unit."""
    return run_checked(session, f"systemctl {verb} {quote(unit)}", timeout=timeout)


def service_action(session: Session, options: dict, *, timeout: float | None = None) -> None:
    """Reload or restart a service named in an item's options.

    Reload falls back to restart for units that do not support it.
    """
    if options.get("reload"):
        unit = quote(options["reload"])
        run_checked(session, f"systemctl reload {unit} 2>/dev/null || systemctl restart {unit}", timeout=timeout)
    elif options.get("restart"):
        run_checked(session, f"systemctl restart {quote(options['restart'])}", timeout=timeout)
