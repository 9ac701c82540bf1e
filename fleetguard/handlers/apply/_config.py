"""Key/value apply handlers.

Handlers for setting or removing a configuration key in a file, and for
writing a kernel parameter through sysctl.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetguard import shell_util, textedit
from fleetguard.errors import ActionError, ActionErrorKind

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem, ProbeResult, Snapshot
    from fleetguard.sessions import Session


def _apply_config_value(
    session: Session,
    item: BaselineItem,
    state: Snapshot,
    probe: ProbeResult,
    *,
    timeout: float | None = None,
) -> str:
    """Bring a config file key to ``state``.

    The file is edited in memory from the content read by ``probe`` and
    written back atomically. Restoring an absent key removes it; restoring a
    file that did not exist removes the file.

    Args:
        session: Open session to the target host.
        item: key_value item with ``key`` and optional ``separator``,
            ``case_insensitive``, ``mode`` and ``reload``/``restart`` options.
        state: Desired state, or the snapshot being restored.
        probe: Fresh probe of the item, carrying the file content.
        timeout: Per-command timeout in seconds.

    Returns:
        Human-readable detail.

    """
    path = item.target
    key = item.option("key")
    sep = item.option("separator", " ")
    nocase = item.option("case_insensitive", False)

    if state.present:
        content = textedit.set_value(probe.raw, key, str(state.value), separator=sep, ignore_case=nocase)
        shell_util.write_file_atomic(session, path, content, mode=item.option("mode"), timeout=timeout)
        detail = f"Set '{key}{sep}{state.value}' in {path}"
    elif state.meta.get("file_exists") is False:
        shell_util.remove_file(session, path, timeout=timeout)
        detail = f"Removed {path}"
    else:
        content = textedit.remove_key(probe.raw, key, separator=sep, ignore_case=nocase)
        shell_util.write_file_atomic(session, path, content, timeout=timeout)
        detail = f"Removed '{key}' from {path}"

    shell_util.service_action(session, item.options, timeout=timeout)
    return detail


def _apply_sysctl_value(
    session: Session,
    item: BaselineItem,
    state: Snapshot,
    probe: ProbeResult,
    *,
    timeout: float | None = None,
) -> str:
    """Set a kernel parameter at runtime with ``sysctl -w``."""
    if not state.present:
        raise ActionError(ActionErrorKind.UNSUPPORTED, f"cannot remove kernel parameter {item.target}")
    assignment = f"{item.target}={state.value}"
    shell_util.run_checked(session, f"sysctl -w {shell_util.quote(assignment)}", timeout=timeout)
    return f"Set {assignment}"


def _apply_key_value(
    session: Session,
    item: BaselineItem,
    state: Snapshot,
    probe: ProbeResult,
    *,
    timeout: float | None = None,
) -> str:
    if item.option("via", "file") == "sysctl":
        return _apply_sysctl_value(session, item, state, probe, timeout=timeout)
    return _apply_config_value(session, item, state, probe, timeout=timeout)
