"""Reconciliation pass orchestration.

One :class:`Orchestrator` drives one host through
``IDLE -> LOADING -> PROBING -> PLANNING -> AWAITING_CONFIRMATION ->
APPLYING -> REPORTING -> IDLE``. Actions run strictly in planned order on
that host. Errors are item-scoped: a failed item only takes down the items
that depend on it, which are journaled as Skipped. An item whose dependency
was applied in the same pass is probed and planned again before dispatch.
Only a journal failure or a lost session stops a run mid-way, and the host
is released either way.

:func:`run_fleet` fans a baseline out to many hosts, one worker thread
and one session per host.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import paramiko

from fleetguard._types import (
    Action,
    ActionKind,
    Baseline,
    BaselineItem,
    Execution,
    JournalEntry,
    Outcome,
    RunReport,
    RunStatus,
    derive_status,
)
from fleetguard.baseline import load_baseline
from fleetguard.errors import FleetguardError, JournalWriteError, ParseError, RunNotFoundError
from fleetguard.executor import Executor
from fleetguard.handlers.probe import probe_all
from fleetguard.notify import run_alert
from fleetguard.ordering import should_skip
from fleetguard.reconcile import plan, plan_item
from fleetguard.sessions import open_session

if TYPE_CHECKING:
    from fleetguard.config import Settings
    from fleetguard.inventory import HostInfo
    from fleetguard.journal import Journal
    from fleetguard.notify import MailNotifier, NullNotifier
    from fleetguard.sessions import Session

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str, "list[Action]"], bool]


class State(str, Enum):
    """Orchestrator states."""

    IDLE = "idle"
    LOADING = "loading"
    PROBING = "probing"
    PLANNING = "planning"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    APPLYING = "applying"
    REPORTING = "reporting"


class Orchestrator:
    """Runs reconciliation passes against one host at a time.

    Attributes:
        settings: Runtime settings (timeouts, dry run, confirmation).
        journal: Where every outcome is recorded.
        notifier: Alerted after a run that is not a Success.
        confirm: Asked before mutating when ``confirm_before_apply`` is set.
        cancel_event: When set, no further action is dispatched.
        state: Current state.

    """

    def __init__(
        self,
        settings: Settings,
        journal: Journal,
        *,
        notifier: MailNotifier | NullNotifier | None = None,
        confirm: ConfirmCallback | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.settings = settings
        self.journal = journal
        self.notifier = notifier
        self.confirm = confirm
        self.cancel_event = cancel_event or threading.Event()
        self.state = State.IDLE

    def _enter(self, state: State, host: str) -> None:
        logger.debug("%s: %s -> %s", host, self.state.value, state.value)
        self.state = state

    def cancel(self) -> None:
        """Stop dispatching actions; the action in flight completes."""
        self.cancel_event.set()

    def run(
        self,
        session: Session,
        baseline: Baseline | str | Path,
        *,
        overrides: dict | None = None,
        dry_run: bool | None = None,
    ) -> RunReport:
        """Run one reconciliation pass on the session's host.

        A baseline that fails to load ends the pass before any probing and
        without journal entries. A dry run stops after planning.
        """
        host = session.host_id
        dry_run = self.settings.dry_run if dry_run is None else dry_run
        try:
            return self._run(session, host, baseline, overrides, dry_run)
        finally:
            self._enter(State.IDLE, host)

    def _run(
        self,
        session: Session,
        host: str,
        baseline: Baseline | str | Path,
        overrides: dict | None,
        dry_run: bool,
    ) -> RunReport:
        self._enter(State.LOADING, host)
        if not isinstance(baseline, Baseline):
            try:
                baseline = load_baseline(baseline, overrides=overrides)
            except ParseError as exc:
                logger.error("%s: baseline failed to load: %s", host, exc)
                return RunReport(host=host, status=RunStatus.ABORTED_BEFORE_APPLY, error=str(exc), dry_run=dry_run)

        self._enter(State.PROBING, host)
        probes = probe_all(session, baseline.items, timeout=self.settings.probe_timeout)

        self._enter(State.PLANNING, host)
        actions = plan(baseline, probes)
        report = RunReport(host=host, status=RunStatus.SUCCESS, actions=actions, dry_run=dry_run)
        for action in actions:
            if action.kind == ActionKind.UNSUPPORTED:
                report.warnings.append(f"{action.item_id}: {action.reason}")
                logger.warning("%s: %s unsupported: %s", host, action.item_id, action.reason)

        if dry_run:
            self._enter(State.REPORTING, host)
            return report

        try:
            report.run_id = self.journal.begin_run(host, baseline=baseline.name)
        except JournalWriteError as exc:
            report.status = RunStatus.ABORTED_BEFORE_APPLY
            report.error = str(exc)
            logger.error("%s: %s", host, exc)
            return report

        try:
            aborted = self._apply(session, baseline, actions, probes, report)
        except JournalWriteError as exc:
            logger.error("%s: journal write failed, aborting run: %s", host, exc)
            report.error = str(exc)
            report.status = derive_status([e.outcome for e in report.entries], aborted=True)
            self.journal.release(report.run_id)
            self._enter(State.REPORTING, host)
            self._alert(report)
            return report
        except (FleetguardError, paramiko.SSHException, EOFError, OSError) as exc:
            logger.error("%s: session failed, aborting run: %s: %s", host, type(exc).__name__, exc)
            report.error = str(exc)
            aborted = True

        self._enter(State.REPORTING, host)
        report.status = derive_status([e.outcome for e in report.entries], aborted=aborted)
        self._finish(report)
        logger.info(
            "%s: run %s %s (%d applied, %d noop, %d failed, %d skipped)",
            host,
            report.run_id,
            report.status.value,
            report.count(Outcome.APPLIED),
            report.count(Outcome.NOOP),
            report.count(Outcome.FAILED),
            report.count(Outcome.SKIPPED),
        )
        self._alert(report)
        return report

    def _finish(self, report: RunReport) -> None:
        try:
            self.journal.finish_run(report.run_id, report.status)
        except (JournalWriteError, RunNotFoundError) as exc:
            logger.error("%s: cannot finish run %s: %s", report.host, report.run_id, exc)
            report.error = report.error or str(exc)
            self.journal.release(report.run_id)

    def _apply(self, session: Session, baseline: Baseline, actions: list[Action], probes: dict, report: RunReport) -> bool:
        """Journal one outcome per action; return whether the run was aborted."""
        items_by_id = {item.id: item for item in baseline.items}
        unsatisfied: set[str] = set()
        applied: set[str] = set()

        def record(action: Action, execution: Execution) -> None:
            item = items_by_id[action.item_id]
            entry = JournalEntry(
                run_id=report.run_id,
                host=report.host,
                item_id=action.item_id,
                action=action.kind,
                outcome=execution.outcome,
                reason=execution.reason,
                prior=execution.prior or action.prior,
                new_value=action.new_value,
                item=item.to_dict(),
            )
            self.journal.record(entry)
            report.entries.append(entry)
            if not execution.outcome.satisfied:
                unsatisfied.add(action.item_id)

        if actions and all(probes[a.item_id].failed for a in actions if a.item_id in probes):
            for action in actions:
                record(action, Execution(Outcome.FAILED, action.reason))
            report.error = "every probe failed"
            return True

        if self.settings.confirm_before_apply and any(a.mutating for a in actions):
            self._enter(State.AWAITING_CONFIRMATION, report.host)
            if self.confirm is None or not self.confirm(report.host, actions):
                logger.warning("%s: apply not confirmed", report.host)
                for action in actions:
                    record(action, Execution(Outcome.SKIPPED, "apply not confirmed"))
                return True

        self._enter(State.APPLYING, report.host)
        executor = Executor(session, timeout=self.settings.timeout_per_action, probe_timeout=self.settings.probe_timeout)
        cancelled = False
        for index, action in enumerate(actions):
            if not cancelled and self.cancel_event.is_set():
                logger.warning("%s: run cancelled before %s", report.host, action.item_id)
                cancelled = True
            if cancelled:
                record(action, Execution(Outcome.SKIPPED, "cancelled"))
                continue

            skip, reason = should_skip(action.item_id, items_by_id, unsatisfied)
            if skip:
                record(action, Execution(Outcome.SKIPPED, reason))
                continue

            item = items_by_id[action.item_id]
            if applied.intersection(item.depends_on):
                action = actions[index] = self._replan(session, item, action, report)

            execution = executor.apply(item, action)
            record(action, execution)
            if execution.outcome == Outcome.APPLIED:
                applied.add(item.id)
        return cancelled

    def _replan(self, session: Session, item: BaselineItem, action: Action, report: RunReport) -> Action:
        """Probe and plan an item again after one of its dependencies changed the host."""
        probe = probe_all(session, [item], timeout=self.settings.probe_timeout)[item.id]
        replanned = plan_item(item, probe)
        if replanned.kind == action.kind and replanned.reason == action.reason:
            return action
        logger.info("%s: %s replanned after dependency: %s -> %s", report.host, item.id, action.kind.value, replanned.kind.value)
        stale = f"{item.id}: {action.reason}"
        if action.kind == ActionKind.UNSUPPORTED and stale in report.warnings:
            report.warnings.remove(stale)
        if replanned.kind == ActionKind.UNSUPPORTED:
            report.warnings.append(f"{item.id}: {replanned.reason}")
        return replanned

    def _alert(self, report: RunReport) -> None:
        if self.notifier is None or report.status == RunStatus.SUCCESS:
            return
        subject, body = run_alert(report)
        self.notifier.notify(subject, body)


def run_fleet(
    hosts: list[HostInfo],
    baseline: Baseline,
    settings: Settings,
    journal: Journal,
    *,
    notifier: MailNotifier | NullNotifier | None = None,
    confirm: ConfirmCallback | None = None,
    cancel_event: threading.Event | None = None,
    dry_run: bool | None = None,
    password: str | None = None,
    session_factory: Callable[..., Session] = open_session,
    on_report: Callable[[RunReport], None] | None = None,
) -> list[RunReport]:
    """Reconcile every host in parallel, bounded by ``host_concurrency``.

    Workers share the journal, the notifier and the cancellation flag, and
    nothing else. A host that cannot be reached, or whose session fails
    before applying, gets an AbortedBeforeApply report; other hosts carry
    on. Reports are returned in host order.
    """
    cancel_event = cancel_event or threading.Event()
    confirm_lock = threading.Lock()

    def serialized_confirm(host: str, actions: list[Action]) -> bool:
        with confirm_lock:
            return confirm(host, actions) if confirm else False

    def worker(hi: HostInfo) -> RunReport:
        try:
            session = session_factory(hi, settings, password=password)
        except (paramiko.SSHException, OSError, FleetguardError) as exc:
            logger.error("%s: connection failed: %s", hi.label, exc)
            return RunReport(host=hi.label, status=RunStatus.ABORTED_BEFORE_APPLY, error=f"Connection failed: {exc}")
        try:
            orchestrator = Orchestrator(
                settings,
                journal,
                notifier=notifier,
                confirm=serialized_confirm if confirm else None,
                cancel_event=cancel_event,
            )
            return orchestrator.run(session, baseline, dry_run=dry_run)
        except (paramiko.SSHException, EOFError, OSError, FleetguardError) as exc:
            logger.error("%s: run failed: %s: %s", hi.label, type(exc).__name__, exc)
            return RunReport(host=hi.label, status=RunStatus.ABORTED_BEFORE_APPLY, error=f"Run failed: {exc}")
        finally:
            session.close()

    reports: dict[int, RunReport] = {}
    workers = max(1, min(settings.host_concurrency, len(hosts)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(worker, hi): i for i, hi in enumerate(hosts)}
        for future in as_completed(futures):
            report = future.result()
            reports[futures[future]] = report
            if on_report is not None:
                on_report(report)
    return [reports[i] for i in range(len(hosts))]


def worst_status(reports: list[RunReport]) -> RunStatus:
    """The status with the highest exit code across hosts."""
    if not reports:
        return RunStatus.SUCCESS
    return max((r.status for r in reports), key=lambda s: s.exit_code)
