"""Probe handlers package.

Probes read the current state of a baseline item's target without creating,
locking or modifying it. A missing or unreadable target is a legitimate
state and is encoded in the ProbeResult; only a broken probe mechanism
raises ProbeError.

Handler Modules:
    - _config: key_value (config file key, sysctl parameter)
    - _file: file_edit (content, block, line)
    - _service: service
    - _permission: permission
    - _command: command (``unless`` guard)

Example:
-------
    >>> from fleetguard.handlers.probe import probe_item
    >>> result = probe_item(session, item, timeout=30)
    >>> print(result.present, result.current)

"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fleetguard._types import ItemKind, ProbeResult
from fleetguard.errors import ProbeError
from fleetguard.handlers.probe._command import _matches_command, _probe_command
from fleetguard.handlers.probe._config import _matches_key_value, _probe_key_value
from fleetguard.handlers.probe._file import _matches_file_edit, _probe_file_edit
from fleetguard.handlers.probe._permission import _matches_file_permission, _probe_file_permission
from fleetguard.handlers.probe._service import _matches_service_state, _probe_service_state

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem
    from fleetguard.sessions import Session

logger = logging.getLogger(__name__)


# ── Handler registry ──────────────────────────────────────────────────────

PROBE_HANDLERS = {
    ItemKind.KEY_VALUE: _probe_key_value,
    ItemKind.FILE_EDIT: _probe_file_edit,
    ItemKind.SERVICE: _probe_service_state,
    ItemKind.PERMISSION: _probe_file_permission,
    ItemKind.COMMAND: _probe_command,
}

COMPARATORS = {
    ItemKind.KEY_VALUE: _matches_key_value,
    ItemKind.FILE_EDIT: _matches_file_edit,
    ItemKind.SERVICE: _matches_service_state,
    ItemKind.PERMISSION: _matches_file_permission,
    ItemKind.COMMAND: _matches_command,
}


def probe_item(session: Session, item: BaselineItem, *, timeout: float | None = None) -> ProbeResult:
    """Read the current state of one item.

    Raises:
        ProbeError: The probe mechanism failed.

    """
    handler = PROBE_HANDLERS.get(item.kind)
    if handler is None:
        raise ProbeError(f"No probe for kind {item.kind}")
    return handler(session, item, timeout=timeout)


def probe_all(session: Session, items: list[BaselineItem], *, timeout: float | None = None) -> dict[str, ProbeResult]:
    """Probe every item, degrading mechanism failures to errored results."""
    results = {}
    for item in items:
        try:
            results[item.id] = probe_item(session, item, timeout=timeout)
        except ProbeError as exc:
            logger.warning("Probe failed for %s: %s", item.id, exc)
            results[item.id] = ProbeResult(item.id, None, present=False, readable=False, error=str(exc))
    return results


def desired_matches(item: BaselineItem, current: Any) -> bool:
    """Whether a probed value already satisfies the item's desired value."""
    return COMPARATORS[item.kind](item, current)


__all__ = ["COMPARATORS", "PROBE_HANDLERS", "desired_matches", "probe_all", "probe_item"]
