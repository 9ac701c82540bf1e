"""Service apply handlers.

Handlers for changing systemd unit enablement, activity and masking.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetguard import shell_util

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem, ProbeResult, Snapshot
    from fleetguard.sessions import Session


def _apply_service_state(
    session: Session,
    item: BaselineItem,
    state: Snapshot,
    probe: ProbeResult,
    *,
    timeout: float | None = None,
) -> str:
    """Drive a unit to the requested enabled/active/masked flags.

    Only the flags named in ``state.value`` are touched, in the order
    unmask, enable/disable, start/stop, mask.
    """
    unit = item.target
    want = state.value or {}
    have = probe.current or {}
    steps = []

    def changed(name: str) -> bool:
        return name in want and have.get(name) != want[name]

    if changed("masked") and not want["masked"]:
        shell_util.systemctl(session, "unmask", unit, timeout=timeout)
        steps.append("unmasked")
    if changed("enabled"):
        verb = "enable" if want["enabled"] else "disable"
        shell_util.systemctl(session, verb, unit, timeout=timeout)
        steps.append(f"{verb}d")
    if changed("active"):
        verb = "start" if want["active"] else "stop"
        shell_util.systemctl(session, verb, unit, timeout=timeout)
        steps.append("started" if want["active"] else "stopped")
    if changed("masked") and want["masked"]:
        shell_util.systemctl(session, "mask", unit, timeout=timeout)
        steps.append("masked")

    if not steps:
        return f"{unit} already in requested state"
    return f"{unit}: {', '.join(steps)}"
