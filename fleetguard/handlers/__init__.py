"""Handler packages for probe and apply operations.

This package contains modular handler implementations organized by
operation, then by item kind:

Subpackages:
    probe/: Read-only handlers that report an item's current state
    apply/: Effect backends that move an item to a target state

Rollback reuses the apply handlers with the captured snapshot as target.
"""

from fleetguard.handlers.apply import APPLY_HANDLERS, apply_state
from fleetguard.handlers.probe import PROBE_HANDLERS, desired_matches, probe_all, probe_item

__all__ = [
    "APPLY_HANDLERS",
    "PROBE_HANDLERS",
    "apply_state",
    "desired_matches",
    "probe_all",
    "probe_item",
]
