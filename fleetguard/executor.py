"""Single-action executor.

The executor closes the gap between planning and writing: every mutation is
preceded by a fresh probe, so the snapshot it hands to the journal is the
state the host was really in, and an item that has converged since planning
is reported as NoOp instead of being written again.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fleetguard._types import ActionKind, Execution, ItemKind, Outcome, Snapshot
from fleetguard.errors import ActionError, ActionErrorKind, ProbeError
from fleetguard.handlers.apply import apply_state, desired_state, state_matches
from fleetguard.handlers.probe import desired_matches, probe_item
from fleetguard.reconcile import can_create

if TYPE_CHECKING:
    from fleetguard._types import Action, BaselineItem, ProbeResult
    from fleetguard.sessions import Session

logger = logging.getLogger(__name__)


class Executor:
    """Applies actions to one host through a session.

    Attributes:
        session: Open session to the host.
        timeout: Per-command timeout for mutating commands, in seconds.
        probe_timeout: Per-command timeout for the fresh probe.

    """

    def __init__(self, session: Session, *, timeout: float | None = None, probe_timeout: float | None = None):
        self.session = session
        self.timeout = timeout
        self.probe_timeout = probe_timeout if probe_timeout is not None else timeout

    def _fresh_probe(self, item: BaselineItem) -> tuple[ProbeResult | None, Execution | None]:
        try:
            fresh = probe_item(self.session, item, timeout=self.probe_timeout)
        except ProbeError as exc:
            return None, Execution(Outcome.FAILED, f"probe failed: {exc}")
        if not fresh.readable:
            err = ActionError(ActionErrorKind.PERMISSION_DENIED, f"{item.target} unreadable")
            return None, Execution(Outcome.FAILED, err.reason)
        return fresh, None

    def _dispatch(self, item: BaselineItem, state: Snapshot, fresh: ProbeResult, prior: Snapshot) -> Execution:
        try:
            detail = apply_state(self.session, item, state, fresh, timeout=self.timeout)
        except ActionError as exc:
            logger.warning("%s failed on %s: %s", item.id, self.session.host_id, exc.reason)
            return Execution(Outcome.FAILED, exc.reason, prior)
        logger.info("%s applied on %s: %s", item.id, self.session.host_id, detail)
        return Execution(Outcome.APPLIED, detail, prior)

    def apply(self, item: BaselineItem, action: Action) -> Execution:
        """Apply one planned action.

        Returns exactly one of Applied, NoOp, Failed or Skipped. Failures are
        never retried.
        """
        if action.kind == ActionKind.NOOP:
            return Execution(Outcome.NOOP, action.reason or "already at desired state", action.prior)
        if action.kind == ActionKind.UNSUPPORTED:
            return Execution(Outcome.SKIPPED, f"unsupported: {action.reason}", action.prior)

        fresh, failure = self._fresh_probe(item)
        if failure is not None:
            failure.prior = action.prior
            return failure
        assert fresh is not None

        prior = Snapshot.of(fresh, capturable=item.kind != ItemKind.COMMAND)
        if fresh.comparable and desired_matches(item, fresh.current):
            return Execution(Outcome.NOOP, "already at desired state", prior)
        if not fresh.present and not can_create(item):
            err = ActionError(ActionErrorKind.UNSUPPORTED, "target absent")
            return Execution(Outcome.FAILED, err.reason, prior)

        return self._dispatch(item, desired_state(item), fresh, prior)

    def restore(self, item: BaselineItem, snapshot: Snapshot | None) -> Execution:
        """Bring an item back to a captured snapshot through the same backends."""
        if snapshot is None or not snapshot.capturable:
            return Execution(Outcome.SKIPPED, "not reversible")

        fresh, failure = self._fresh_probe(item)
        if failure is not None:
            return failure
        assert fresh is not None

        prior = Snapshot.of(fresh)
        if state_matches(snapshot, fresh):
            return Execution(Outcome.NOOP, "already at prior state", prior)
        return self._dispatch(item, snapshot, fresh, prior)
