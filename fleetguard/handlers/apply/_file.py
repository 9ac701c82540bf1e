"""File edit apply handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetguard import shell_util, textedit
from fleetguard.handlers.probe._file import edit_mode

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem, ProbeResult, Snapshot
    from fleetguard.sessions import Session


def _apply_file_edit(
    session: Session,
    item: BaselineItem,
    state: Snapshot,
    probe: ProbeResult,
    *,
    timeout: float | None = None,
) -> str:
    """Bring whole-file content, a managed block or a single line to ``state``.

    ``state.present`` is whether the file exists; ``state.value`` is the
    managed part of it, or None when that part is absent.
    """
    path = item.target
    mode = edit_mode(item)

    if not state.present:
        shell_util.remove_file(session, path, timeout=timeout)
        shell_util.service_action(session, item.options, timeout=timeout)
        return f"Removed {path}"

    if mode == "content":
        content = state.value or ""
        detail = f"Wrote {path}"
    elif mode == "block":
        marker = item.option("marker", textedit.DEFAULT_MARKER)
        if state.value is None:
            content = textedit.remove_block(probe.raw, marker)
            detail = f"Removed block '{marker}' from {path}"
        else:
            content = textedit.set_block(probe.raw, state.value, marker)
            detail = f"Wrote block '{marker}' to {path}"
    else:
        line = item.desired["line"].strip()
        if state.value is None:
            content = textedit.remove_line(probe.raw, line)
            detail = f"Removed line '{line}' from {path}"
        else:
            content = textedit.ensure_line(probe.raw, line)
            detail = f"Added line '{line}' to {path}"

    shell_util.write_file_atomic(session, path, content, mode=item.option("mode"), timeout=timeout)
    shell_util.service_action(session, item.options, timeout=timeout)
    return detail
