"""One-shot command probes.

A command item can only be compared against the host when it carries an
``unless`` guard. The guard must be read-only: exit status 0 means the
command's effect is already in place.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fleetguard import shell_util
from fleetguard._types import ProbeResult

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem
    from fleetguard.sessions import Session

SATISFIED = "satisfied"
UNSATISFIED = "unsatisfied"


def _probe_command(session: Session, item: BaselineItem, *, timeout: float | None = None) -> ProbeResult:
    guard = item.desired.get("unless")
    if not guard:
        return ProbeResult(item.id, None, present=True, comparable=False)
    result = shell_util.run_probe(session, guard, timeout=timeout)
    return ProbeResult(item.id, SATISFIED if result.ok else UNSATISFIED, present=True)


def _matches_command(item: BaselineItem, current: Any) -> bool:
    return current == SATISFIED
