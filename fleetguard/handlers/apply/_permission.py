"""Permission apply handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetguard import shell_util

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem, ProbeResult, Snapshot
    from fleetguard.sessions import Session


def _apply_file_permission(
    session: Session,
    item: BaselineItem,
    state: Snapshot,
    probe: ProbeResult,
    *,
    timeout: float | None = None,
) -> str:
    path = item.target
    want = state.value or {}
    have = probe.current or {}
    changes = []

    owner = want.get("owner") if want.get("owner") not in (None, have.get("owner")) else None
    group = want.get("group") if want.get("group") not in (None, have.get("group")) else None
    if owner or group:
        shell_util.set_file_owner(session, path, owner, group, timeout=timeout)
        changes.append(f"owner {owner or ''}:{group or ''}".rstrip(":"))

    mode = want.get("mode")
    if mode is not None and int(str(have.get("mode", "0")), 8) != int(mode, 8):
        shell_util.set_file_mode(session, path, mode, timeout=timeout)
        changes.append(f"mode {mode}")

    if not changes:
        return f"{path} already has requested permissions"
    return f"Set {', '.join(changes)} on {path}"
