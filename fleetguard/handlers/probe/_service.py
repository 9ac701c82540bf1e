"""Service state probes.

Handlers for reading systemd unit enablement and activity.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fleetguard import shell_util
from fleetguard._types import ProbeResult

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem
    from fleetguard.sessions import Session

_MISSING_STATES = frozenset({"", "not-found"})


def _probe_service_state(session: Session, item: BaselineItem, *, timeout: float | None = None) -> ProbeResult:
    """Report enabled/active/masked for a unit.

    ``systemctl is-enabled`` prints nothing (or ``not-found``) for units that
    do not exist, which is reported as an absent target.
    """
    unit = shell_util.quote(item.target)
    enabled = shell_util.run_probe(session, f"systemctl is-enabled {unit} 2>/dev/null", timeout=timeout).stdout.strip()
    if enabled in _MISSING_STATES:
        return ProbeResult(item.id, None, present=False)

    active = shell_util.run_probe(session, f"systemctl is-active {unit} 2>/dev/null", timeout=timeout).stdout.strip()
    current = {
        "enabled": enabled == "enabled",
        "active": active == "active",
        "masked": enabled.startswith("masked"),
    }
    return ProbeResult(item.id, current, present=True, meta={"unit_file_state": enabled, "active_state": active})


def _matches_service_state(item: BaselineItem, current: Any) -> bool:
    if not isinstance(current, dict):
        return False
    return all(current.get(name) == want for name, want in item.desired.items())
