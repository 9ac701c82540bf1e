"""Run report formatting: rich tables for terminals, JSON for pipelines.

JSON Structure:
    {
        "run_id": "hex" or null,
        "host": "web-01",
        "run_kind": "apply" | "rollback" | "packages",
        "status": "success" | "partial_failure" | "aborted_before_apply",
        "entries": [...],
        "summary": {"applied": n, "noop": n, "failed": n, "skipped": n}
    }

Every item appears in a report, NoOps included.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from rich.table import Table

from fleetguard._types import ActionKind, Outcome, RunStatus

if TYPE_CHECKING:
    from fleetguard._types import Action, JournalEntry, ReconciliationRun, RunReport, Snapshot

OUTCOME_STYLE = {
    Outcome.APPLIED: "[green]APPLIED[/green]",
    Outcome.NOOP: "[dim]NOOP[/dim]",
    Outcome.FAILED: "[red]FAILED[/red]",
    Outcome.SKIPPED: "[yellow]SKIPPED[/yellow]",
}

ACTION_STYLE = {
    ActionKind.CREATE: "[cyan]create[/cyan]",
    ActionKind.MODIFY: "[cyan]modify[/cyan]",
    ActionKind.NOOP: "[dim]noop[/dim]",
    ActionKind.UNSUPPORTED: "[yellow]unsupported[/yellow]",
}

STATUS_STYLE = {
    RunStatus.SUCCESS: "[green]success[/green]",
    RunStatus.PARTIAL_FAILURE: "[yellow]partial_failure[/yellow]",
    RunStatus.ABORTED_BEFORE_APPLY: "[red]aborted_before_apply[/red]",
}


def render_value(value: Any, width: int = 40) -> str:
    """Short single-line rendering of a desired or captured value."""
    if value is None:
        return "-"
    text = value if isinstance(value, str) else json.dumps(value, sort_keys=True)
    text = text.replace("\n", "\\n")
    return text if len(text) <= width else text[: width - 3] + "..."


def render_snapshot(snapshot: Snapshot | None) -> str:
    if snapshot is None:
        return "-"
    if not snapshot.present:
        return "(absent)"
    return render_value(snapshot.value)


def plan_table(host: str, actions: list[Action]) -> Table:
    """Table of planned actions for one host."""
    table = Table(title=f"Plan for {host}")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Item", style="cyan")
    table.add_column("Action")
    table.add_column("Current", style="white")
    table.add_column("Desired", style="green")
    table.add_column("Reason", style="dim")
    for i, action in enumerate(actions, 1):
        table.add_row(
            str(i),
            action.item_id,
            ACTION_STYLE[action.kind],
            render_snapshot(action.prior),
            render_value(action.new_value),
            action.reason,
        )
    return table


def entries_table(title: str, entries: list[JournalEntry]) -> Table:
    """Table of journal entries in sequence order."""
    table = Table(title=title)
    table.add_column("Seq", style="dim", justify="right")
    table.add_column("Item", style="cyan")
    table.add_column("Action")
    table.add_column("Outcome")
    table.add_column("Prior", style="white")
    table.add_column("Reason", style="dim")
    for e in entries:
        table.add_row(
            str(e.seq or ""),
            e.item_id,
            ACTION_STYLE[e.action],
            OUTCOME_STYLE[e.outcome],
            render_snapshot(e.prior),
            render_value(e.reason, 60),
        )
    return table


def runs_table(runs: list[ReconciliationRun]) -> Table:
    """Table of journal runs, most recent first."""
    table = Table(title="Runs")
    table.add_column("Run ID", style="cyan")
    table.add_column("Host", style="white")
    table.add_column("Kind", style="white")
    table.add_column("Started", style="white")
    table.add_column("Status")
    table.add_column("Baseline / Parent", style="dim")
    for run in runs:
        status = STATUS_STYLE[run.status] if run.status else "[red]open[/red]"
        origin = f"rollback of {run.parent_run_id}" if run.parent_run_id else run.baseline
        table.add_row(
            run.run_id,
            run.host,
            run.run_kind.value,
            run.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            status,
            origin,
        )
    return table


def summary_line(report: RunReport) -> str:
    """One-line rich summary of a host's outcomes."""
    parts = [
        f"[green]{report.count(Outcome.APPLIED)} applied[/green]",
        f"[dim]{report.count(Outcome.NOOP)} noop[/dim]",
        f"[red]{report.count(Outcome.FAILED)} failed[/red]",
        f"[yellow]{report.count(Outcome.SKIPPED)} skipped[/yellow]",
    ]
    return f"  {STATUS_STYLE[report.status]} | " + " | ".join(parts)


# ── JSON ──────────────────────────────────────────────────────────────────


def entry_to_dict(entry: JournalEntry) -> dict[str, Any]:
    return {
        "seq": entry.seq,
        "timestamp": entry.timestamp.isoformat(),
        "host": entry.host,
        "item_id": entry.item_id,
        "action": entry.action.value,
        "outcome": entry.outcome.value,
        "reason": entry.reason,
        "prior": entry.prior.to_dict() if entry.prior else None,
        "new_value": entry.new_value,
    }


def _summary(entries: list[JournalEntry]) -> dict[str, int]:
    return {outcome.value: sum(1 for e in entries if e.outcome == outcome) for outcome in Outcome}


def run_to_dict(run: ReconciliationRun, entries: list[JournalEntry]) -> dict[str, Any]:
    """Serialize a journaled run and its entries."""
    return {
        "run_id": run.run_id,
        "host": run.host,
        "run_kind": run.run_kind.value,
        "baseline": run.baseline,
        "parent_run_id": run.parent_run_id,
        "started_at": run.started_at.isoformat(),
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "status": run.status.value if run.status else None,
        "entries": [entry_to_dict(e) for e in entries],
        "summary": _summary(entries),
    }


def report_to_dict(report: RunReport) -> dict[str, Any]:
    """Serialize an in-memory host report, including planned actions."""
    return {
        "run_id": report.run_id,
        "host": report.host,
        "status": report.status.value,
        "dry_run": report.dry_run,
        "error": report.error,
        "warnings": list(report.warnings),
        "actions": [
            {
                "item_id": a.item_id,
                "action": a.kind.value,
                "prior": a.prior.to_dict() if a.prior else None,
                "new_value": a.new_value,
                "reason": a.reason,
            }
            for a in report.actions
        ],
        "entries": [entry_to_dict(e) for e in report.entries],
        "summary": _summary(report.entries),
    }


def format_json(data: Any) -> str:
    """Pretty-printed JSON (2-space indent)."""
    return json.dumps(data, indent=2, default=str)
