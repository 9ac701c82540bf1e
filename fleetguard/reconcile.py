"""Desired-versus-actual planning.

``plan`` is a pure function of a baseline and its probe results: it
performs no I/O, so a dry run is simply a plan that is never executed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetguard._types import CREATABLE_KINDS, Action, ActionKind, ItemKind, Snapshot
from fleetguard.handlers.apply import desired_state
from fleetguard.handlers.probe import desired_matches
from fleetguard.ordering import order_items

if TYPE_CHECKING:
    from fleetguard._types import Baseline, BaselineItem, ProbeResult


def can_create(item: BaselineItem) -> bool:
    """Whether an absent target may be created for this item."""
    if item.kind not in CREATABLE_KINDS:
        return False
    return not (item.kind == ItemKind.KEY_VALUE and item.option("via", "file") == "sysctl")


def plan_item(item: BaselineItem, probe: ProbeResult | None) -> Action:
    """Decide what to do with one item given its probe result."""
    new_value = desired_state(item).value
    if probe is None:
        return Action(item.id, ActionKind.UNSUPPORTED, None, new_value, "not probed")

    prior = Snapshot.of(probe, capturable=item.kind != ItemKind.COMMAND)

    def action(kind: ActionKind, reason: str = "") -> Action:
        return Action(item.id, kind, prior, new_value, reason)

    if probe.failed:
        return action(ActionKind.UNSUPPORTED, f"probe failed: {probe.error}")
    if not probe.comparable:
        return action(ActionKind.UNSUPPORTED, "no current-state comparison")
    if not probe.readable:
        return action(ActionKind.UNSUPPORTED, "target unreadable")
    if desired_matches(item, probe.current):
        return action(ActionKind.NOOP)
    if not probe.present:
        if can_create(item):
            return action(ActionKind.CREATE)
        return action(ActionKind.UNSUPPORTED, "target absent")
    return action(ActionKind.MODIFY)


def plan(baseline: Baseline, probe_results: dict[str, ProbeResult]) -> list[Action]:
    """Produce one Action per item, in dependency order.

    An item never appears before any item it depends on; independent items
    keep their declaration order.
    """
    return [plan_item(item, probe_results.get(item.id)) for item in order_items(baseline.items)]
