"""Apply handlers package.

Apply handlers mutate a host so that one item's target reaches a given
state. The same handlers serve the forward pass (state built from the
item's desired value) and rollback (state taken from a journal snapshot).

Apply Handler Pattern:
    All apply handlers follow a consistent signature and behavior:
    - Accept a session, the item, the target Snapshot and a fresh ProbeResult
    - Return a human-readable detail string
    - Raise ActionError on failure, never return a failure flag
    - Write files through shell_util.write_file_atomic()
    - Call shell_util.service_action() after changing a service's config

Example:
-------
    >>> from fleetguard.handlers.apply import apply_state, desired_state
    >>> detail = apply_state(session, item, desired_state(item), probe, timeout=60)
    >>> print(detail)  # "Set 'PermitRootLogin no' in /etc/ssh/sshd_config"

"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetguard._types import ItemKind, Snapshot
from fleetguard.errors import ActionError, ActionErrorKind
from fleetguard.handlers.apply._command import _apply_command
from fleetguard.handlers.apply._config import _apply_key_value
from fleetguard.handlers.apply._file import _apply_file_edit
from fleetguard.handlers.apply._permission import _apply_file_permission
from fleetguard.handlers.apply._service import _apply_service_state
from fleetguard.handlers.probe._file import edit_mode

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem, ProbeResult
    from fleetguard.sessions import Session


# Registry mapping item kinds to apply functions
APPLY_HANDLERS = {
    ItemKind.KEY_VALUE: _apply_key_value,
    ItemKind.FILE_EDIT: _apply_file_edit,
    ItemKind.SERVICE: _apply_service_state,
    ItemKind.PERMISSION: _apply_file_permission,
    ItemKind.COMMAND: _apply_command,
}


def desired_state(item: BaselineItem) -> Snapshot:
    """Return the state an item's forward pass drives its target to."""
    if item.kind == ItemKind.FILE_EDIT:
        return Snapshot(present=True, value=item.desired[edit_mode(item)])
    return Snapshot(present=True, value=item.desired, capturable=item.kind != ItemKind.COMMAND)


def state_matches(state: Snapshot, probe: ProbeResult) -> bool:
    """Whether a probed target is already in a snapshot's state."""
    if state.present != probe.present or state.value != probe.current:
        return False
    if "file_exists" in state.meta and "file_exists" in probe.meta:
        return state.meta["file_exists"] == probe.meta["file_exists"]
    return True


def apply_state(
    session: Session,
    item: BaselineItem,
    state: Snapshot,
    probe: ProbeResult,
    *,
    timeout: float | None = None,
) -> str:
    """Dispatch to the apply handler for the item's kind.

    Raises:
        ActionError: The handler failed or no handler exists.

    """
    handler = APPLY_HANDLERS.get(item.kind)
    if handler is None:
        raise ActionError(ActionErrorKind.UNSUPPORTED, f"no apply handler for kind {item.kind}")
    return handler(session, item, state, probe, timeout=timeout)


__all__ = ["APPLY_HANDLERS", "apply_state", "desired_state", "state_matches"]
