"""Permission probes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fleetguard import shell_util
from fleetguard._types import ProbeResult

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem
    from fleetguard.sessions import Session


def _probe_file_permission(session: Session, item: BaselineItem, *, timeout: float | None = None) -> ProbeResult:
    st = shell_util.stat_path(session, item.target, timeout=timeout)
    if st is None:
        return ProbeResult(item.id, None, present=False)
    return ProbeResult(item.id, {"mode": st.mode.zfill(4), "owner": st.owner, "group": st.group}, present=True)


def _matches_file_permission(item: BaselineItem, current: Any) -> bool:
    if not isinstance(current, dict):
        return False
    for name, want in item.desired.items():
        if name == "mode":
            if int(str(current.get("mode", "0")), 8) != int(want, 8):
                return False
        elif current.get(name) != want:
            return False
    return True
