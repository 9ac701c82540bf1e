"""Journal-driven rollback.

A rollback replays the Applied entries of a finished run in reverse order,
restoring each item's prior snapshot through the same apply handlers that
made the change. It is best-effort: a failure on one item never stops the
remaining items. The rollback is journaled as a run of its own, linked to
the original through ``parent_run_id``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from fleetguard._types import (
    ActionKind,
    BaselineItem,
    Execution,
    JournalEntry,
    Outcome,
    RunKind,
    RunReport,
    RunStatus,
    derive_status,
)
from fleetguard.errors import FleetguardError, JournalWriteError, RunNotFoundError

if TYPE_CHECKING:
    from fleetguard.executor import Executor
    from fleetguard.journal import Journal

logger = logging.getLogger(__name__)


class RollbackManager:
    """Restores hosts to the state captured by an earlier run.

    Attributes:
        journal: Journal holding the run to undo; the rollback run is
            recorded here too.
        executor_factory: Called with the run's host name, returns an
            Executor bound to an open session. The manager closes that
            session when the rollback ends.

    """

    def __init__(self, journal: Journal, executor_factory: Callable[[str], Executor]):
        self.journal = journal
        self.executor_factory = executor_factory

    def rollback(self, run_id: str) -> RunReport:
        """Undo every Applied entry of ``run_id``, newest first.

        Raises:
            RunNotFoundError: No such run.
            FleetguardError: The run is a packages run.
            JournalWriteError: The rollback could not be journaled.

        """
        run = self.journal.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        if run.run_kind == RunKind.PACKAGES:
            raise FleetguardError(f"Run {run_id} is a packages run and cannot be rolled back")
        if run.completed_at is None:
            logger.warning("Run %s never finished; rolling back its recorded entries", run_id)

        applied = [e for e in self.journal.entries(run_id) if e.outcome == Outcome.APPLIED]
        applied.reverse()

        executor = self.executor_factory(run.host)
        try:
            return self._replay(run.host, run.baseline, run_id, applied, executor)
        finally:
            executor.session.close()

    def _replay(
        self,
        host: str,
        baseline: str,
        parent_run_id: str,
        applied: list[JournalEntry],
        executor: Executor,
    ) -> RunReport:
        new_run_id = self.journal.begin_run(
            host,
            run_kind=RunKind.ROLLBACK,
            baseline=baseline,
            parent_run_id=parent_run_id,
        )
        report = RunReport(host=host, status=RunStatus.SUCCESS, run_id=new_run_id)
        try:
            for original in applied:
                if original.item is None:
                    execution = Execution(Outcome.SKIPPED, "no item definition recorded")
                    item_id = original.item_id
                    item_dict = None
                else:
                    item = BaselineItem.from_dict(original.item)
                    execution = executor.restore(item, original.prior)
                    item_id = item.id
                    item_dict = original.item

                logger.info("Rollback %s on %s: %s %s", item_id, host, execution.outcome.value, execution.reason)
                entry = JournalEntry(
                    run_id=new_run_id,
                    host=host,
                    item_id=item_id,
                    action=ActionKind.MODIFY,
                    outcome=execution.outcome,
                    reason=execution.reason,
                    prior=execution.prior,
                    new_value=original.prior.value if original.prior else None,
                    item=item_dict,
                )
                self.journal.record(entry)
                report.entries.append(entry)
        except JournalWriteError:
            self.journal.release(new_run_id)
            raise

        report.status = derive_status([e.outcome for e in report.entries])
        self.journal.finish_run(new_run_id, report.status)
        return report
