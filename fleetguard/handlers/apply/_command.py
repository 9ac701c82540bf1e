"""One-shot command apply handler."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetguard import shell_util

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem, ProbeResult, Snapshot
    from fleetguard.sessions import Session


def _apply_command(
    session: Session,
    item: BaselineItem,
    state: Snapshot,
    probe: ProbeResult,
    *,
    timeout: float | None = None,
) -> str:
    """Run the item's ``run`` command.

    Commands are not reversible, so ``state`` only matters on the forward
    pass; the executor never restores a command snapshot.
    """
    result = shell_util.run_checked(session, item.desired["run"], timeout=timeout)
    output = result.stdout.strip().splitlines()
    return f"Ran {item.target}" + (f": {shell_util.printable(output[-1])}" if output else "")
