"""fleetguard CLI: plan, apply and roll back configuration baselines over SSH."""

from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from threading import Lock

import click
import paramiko
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from fleetguard import __version__
from fleetguard._types import RunStatus
from fleetguard.baseline import load_baseline
from fleetguard.config import load_settings
from fleetguard.errors import FleetguardError, ParseError
from fleetguard.executor import Executor
from fleetguard.inventory import HostInfo, host_from_label, resolve_targets
from fleetguard.journal import Journal
from fleetguard.monitor import ResourceMonitor, Thresholds
from fleetguard.notify import build_notifier
from fleetguard.orchestrator import run_fleet, worst_status
from fleetguard.ordering import order_items
from fleetguard.packages import run_packages
from fleetguard.report import (
    entries_table,
    format_json,
    plan_table,
    report_to_dict,
    run_to_dict,
    runs_table,
    summary_line,
)
from fleetguard.rollback import RollbackManager
from fleetguard.sessions import open_session

console = Console()
err_console = Console(stderr=True)
print_lock = Lock()  # Ensures atomic host output in parallel mode

logger = logging.getLogger("fleetguard")

EXIT_ERROR = 2


# ── Shared helpers ──────────────────────────────────────────────────────────


def _setup_logging(verbose: int, log_file: str | None, log_level: str = "INFO") -> None:
    """Console logging through rich, plus an optional plain log file."""
    level = logging.WARNING if verbose == 0 else logging.INFO if verbose == 1 else logging.DEBUG
    handlers: list[logging.Handler] = [RichHandler(console=err_console, show_path=False, level=level)]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
        handlers.append(file_handler)
    root = logging.getLogger("fleetguard")
    root.handlers = handlers
    root.setLevel(logging.DEBUG)
    root.propagate = False
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def _fail(message: str, code: int = EXIT_ERROR) -> None:
    err_console.print(f"[red]Error:[/red] {escape(message)}", soft_wrap=True)
    sys.exit(code)


def _parse_var_overrides(var_flags: tuple[str, ...]) -> dict[str, str]:
    """Parse --var KEY=VALUE flags into a dict."""
    result = {}
    for flag in var_flags:
        key, sep, value = flag.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"{flag} (expected KEY=VALUE)", param_hint="--var")
        result[key.strip()] = value
    return result


def _load_baseline_or_exit(path: str, var: tuple[str, ...]):
    try:
        return load_baseline(path, overrides=_parse_var_overrides(var))
    except ParseError as exc:
        err_console.print(f"[red]Invalid baseline:[/red] {escape(exc.args[0])}", soft_wrap=True)
        for issue in exc.issues:
            where = f"{issue.path}: " if issue.path else ""
            err_console.print(f"  [red]✗[/red] {escape(f'[{issue.code}] {where}{issue.message}')}", soft_wrap=True)
        sys.exit(EXIT_ERROR)


def _resolve_hosts(ctx, host, inventory, limit) -> list[HostInfo]:
    """Resolve target hosts from CLI flags."""
    settings = ctx.obj["settings"]
    try:
        return resolve_targets(
            host=host,
            inventory=inventory,
            limit=limit,
            default_user=settings.ssh_user,
            default_key=settings.ssh_key,
            default_port=settings.ssh_port,
        )
    except FleetguardError as exc:
        _fail(str(exc))


def _open_journal(ctx) -> Journal:
    try:
        return Journal(ctx.obj["settings"].journal_path)
    except FleetguardError as exc:
        _fail(str(exc))


def _for_each_host(hosts: list[HostInfo], settings, password, fn):
    """Open a session per host in a bounded pool and call fn(hi, session)."""

    def worker(hi: HostInfo):
        try:
            session = open_session(hi, settings, password=password)
        except (paramiko.SSHException, OSError) as exc:
            return hi, None, f"Connection failed: {exc}"
        try:
            return hi, fn(hi, session), None
        finally:
            session.close()

    results = []
    with ThreadPoolExecutor(max_workers=max(1, min(settings.host_concurrency, len(hosts)))) as pool:
        futures = [pool.submit(worker, hi) for hi in hosts]
        for future in as_completed(futures):
            results.append(future.result())
    return results


def target_options(f):
    """Common target/connection options for host-facing subcommands."""
    f = click.option("--host", "-h", default=None, help="Target host(s), comma-separated (localhost runs locally)")(f)
    f = click.option("--inventory", "-i", default=None, help="Ansible inventory file (INI/YAML) or host list")(f)
    f = click.option("--limit", "-l", default=None, help="Limit to group or host glob pattern")(f)
    f = click.option("--password", "-p", default=None, help="SSH password")(f)
    return f


def _settings_overrides(user, key, port, sudo, workers) -> dict:
    return {
        "ssh_user": user,
        "ssh_key": key,
        "ssh_port": port,
        "ssh_sudo": True if sudo else None,
        "host_concurrency": workers,
    }


# ── CLI group ───────────────────────────────────────────────────────────────

MAIN_HELP_EPILOG = """
\b
Exit codes (apply, rollback):
  0  success
  1  partial failure
  2  aborted before apply, invalid baseline, or usage error

\b
Examples:
  fleetguard validate baselines/cis-debian-l1.yml
  fleetguard plan baselines/cis-debian-l1.yml -i hosts.ini --sudo
  fleetguard apply baselines/cis-debian-l1.yml -h web-01,web-02 -w 4 --sudo
  fleetguard rollback 3f2a... --sudo
  fleetguard report 3f2a... --json
  fleetguard monitor -h localhost --interval 300
"""


@click.group(epilog=MAIN_HELP_EPILOG, context_settings={"max_content_width": 120})
@click.version_option(version=__version__, prog_name="fleetguard")
@click.option("--config", "-c", "config_path", default=None, help="Settings file (YAML)")
@click.option("--journal", "-J", "journal_path", default=None, help="Journal database path")
@click.option("--user", "-u", default=None, help="SSH username")
@click.option("--key", "-k", default=None, help="SSH private key path")
@click.option("--port", "-P", default=None, type=int, help="SSH port (default: 22)")
@click.option("--sudo", is_flag=True, help="Run all host commands via sudo")
@click.option("--workers", "-w", default=None, type=click.IntRange(1, 50), help="Hosts processed in parallel")
@click.option("--log-file", default=None, help="Also write logs to this file")
@click.option("--verbose", "-v", count=True, help="More logging (-v info, -vv debug)")
@click.pass_context
def main(ctx, config_path, journal_path, user, key, port, sudo, workers, log_file, verbose):
    """fleetguard: safe, idempotent, auditable configuration baselines."""
    try:
        settings = load_settings(
            config_path,
            journal_path=journal_path,
            log_file=log_file,
            **_settings_overrides(user, key, port, sudo, workers),
        )
    except FleetguardError as exc:
        _fail(str(exc))
    _setup_logging(verbose, settings.log_file, settings.log_level)
    ctx.obj = {"settings": settings}


# ── validate ────────────────────────────────────────────────────────────────


@main.command()
@click.argument("baseline", type=click.Path(dir_okay=False))
@click.option("--var", "-V", multiple=True, metavar="KEY=VALUE", help="Override baseline variable")
def validate(baseline, var):
    """Validate a baseline and show its apply order."""
    bl = _load_baseline_or_exit(baseline, var)
    table = Table(title=f"{bl.name} (version {bl.version}, {len(bl)} items)")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Item", style="cyan")
    table.add_column("Kind", style="white")
    table.add_column("Target", style="white")
    table.add_column("Depends on", style="dim")
    for i, item in enumerate(order_items(bl.items), 1):
        table.add_row(str(i), item.id, item.kind.value, item.target, ", ".join(item.depends_on))
    console.print(table)
    console.print("[green]✓[/green] Baseline is valid")


# ── plan ────────────────────────────────────────────────────────────────────


@main.command()
@click.argument("baseline", type=click.Path(dir_okay=False))
@target_options
@click.option("--var", "-V", multiple=True, metavar="KEY=VALUE", help="Override baseline variable")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def plan(ctx, baseline, host, inventory, limit, password, var, json_output):
    """Show what apply would change, without changing anything."""
    settings = ctx.obj["settings"]
    bl = _load_baseline_or_exit(baseline, var)
    hosts = _resolve_hosts(ctx, host, inventory, limit)

    journal = Journal(":memory:")
    reports = run_fleet(hosts, bl, settings, journal, dry_run=True, password=password)
    journal.close()

    if json_output:
        click.echo(format_json([report_to_dict(r) for r in reports]))
    else:
        for report in reports:
            if report.error:
                console.print(f"[red]{report.host}:[/red] {report.error}")
                continue
            console.print(plan_table(report.host, report.actions))
            for warning in report.warnings:
                console.print(f"  [yellow]warning:[/yellow] {warning}")
    if any(r.status == RunStatus.ABORTED_BEFORE_APPLY for r in reports):
        sys.exit(EXIT_ERROR)


# ── apply ───────────────────────────────────────────────────────────────────


@main.command()
@click.argument("baseline", type=click.Path(dir_okay=False))
@target_options
@click.option("--var", "-V", multiple=True, metavar="KEY=VALUE", help="Override baseline variable")
@click.option("--dry-run", is_flag=True, default=None, help="Plan only; same as the plan command")
@click.option("--confirm/--no-confirm", default=None, help="Ask before changing each host")
@click.option("--yes", "-y", is_flag=True, help="Answer yes to confirmation prompts")
@click.option("--timeout", "-t", default=None, type=float, help="Per-action timeout in seconds")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def apply(ctx, baseline, host, inventory, limit, password, var, dry_run, confirm, yes, timeout, json_output):
    """Reconcile hosts to a baseline, journaling every outcome.

    Exits with the worst status across hosts.
    """
    settings = ctx.obj["settings"].model_copy(
        update={
            k: v
            for k, v in {"dry_run": dry_run, "confirm_before_apply": confirm, "timeout_per_action": timeout}.items()
            if v is not None
        }
    )
    bl = _load_baseline_or_exit(baseline, var)
    hosts = _resolve_hosts(ctx, host, inventory, limit)
    journal = _open_journal(ctx)
    notifier = build_notifier(settings)

    def ask(host_label, actions):
        if yes:
            return True
        changes = [a for a in actions if a.mutating]
        console.print(plan_table(host_label, changes))
        return click.confirm(f"Apply {len(changes)} change(s) to {host_label}?", default=False)

    def show(report):
        if json_output:
            return
        with print_lock:
            if report.error:
                console.print(f"[red]{report.host}:[/red] {report.error}")
            if report.dry_run:
                console.print(plan_table(report.host, report.actions))
            else:
                console.print(entries_table(f"{report.host} run {report.run_id}", report.entries))
                console.print(summary_line(report))

    cancel_event = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel_event.set())
    try:
        reports = run_fleet(
            hosts,
            bl,
            settings,
            journal,
            notifier=notifier,
            confirm=ask,
            cancel_event=cancel_event,
            password=password,
            on_report=show,
        )
    finally:
        signal.signal(signal.SIGINT, previous)
        journal.close()

    if json_output:
        click.echo(format_json([report_to_dict(r) for r in reports]))
    sys.exit(worst_status(reports).exit_code)


# ── rollback ────────────────────────────────────────────────────────────────


@main.command()
@click.argument("run_id")
@click.option("--password", "-p", default=None, help="SSH password")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def rollback(ctx, run_id, password, json_output):
    """Restore every item a run changed to its captured prior state."""
    settings = ctx.obj["settings"]
    journal = _open_journal(ctx)

    def executor_factory(host_label: str) -> Executor:
        hi = host_from_label(host_label)
        hi.user = hi.user or settings.ssh_user
        hi.key_path = hi.key_path or settings.ssh_key
        session = open_session(hi, settings, password=password)
        return Executor(session, timeout=settings.timeout_per_action, probe_timeout=settings.probe_timeout)

    try:
        report = RollbackManager(journal, executor_factory).rollback(run_id)
    except (paramiko.SSHException, OSError) as exc:
        _fail(f"Connection failed: {exc}")
    except FleetguardError as exc:
        _fail(str(exc))
    finally:
        journal.close()

    if json_output:
        click.echo(format_json(report_to_dict(report)))
    else:
        console.print(entries_table(f"{report.host} rollback {report.run_id} of {run_id}", report.entries))
        console.print(summary_line(report))
    sys.exit(report.status.exit_code)


# ── report ──────────────────────────────────────────────────────────────────


@main.command()
@click.argument("run_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def report(ctx, run_id, json_output):
    """Show a journaled run and every item's outcome."""
    journal = _open_journal(ctx)
    try:
        run = journal.get_run(run_id)
        if run is None:
            _fail(f"Run {run_id} not found")
        entries = journal.entries(run_id)
    finally:
        journal.close()

    if json_output:
        click.echo(format_json(run_to_dict(run, entries)))
        return

    console.print(f"[bold]Run {run.run_id}[/bold]")
    console.print(f"  Host: {run.host}")
    console.print(f"  Kind: {run.run_kind.value}")
    if run.parent_run_id:
        console.print(f"  Rollback of: {run.parent_run_id}")
    elif run.baseline:
        console.print(f"  Baseline: {run.baseline}")
    console.print(f"  Started: {run.started_at}")
    console.print(f"  Completed: {run.completed_at or '[red]never[/red]'}")
    console.print(f"  Status: {run.status.value if run.status else '[red]open[/red]'}")
    console.print()
    if not entries:
        console.print("[yellow]No entries for this run[/yellow]")
        return
    console.print(entries_table("Entries", entries))


# ── history ─────────────────────────────────────────────────────────────────


@main.command()
@click.option("--host", "-h", default=None, help="Filter by host")
@click.option("--limit", "-n", default=20, type=int, help="Max runs to show")
@click.option("--prune", is_flag=True, help="Remove finished runs older than the retention period")
@click.option(
    "--older-than",
    type=click.IntRange(min=1),
    metavar="DAYS",
    default=None,
    help="Retention period for --prune (default: journal_retention_days)",
)
@click.pass_context
def history(ctx, host, limit, prune, older_than):
    """List journaled runs, most recent first."""
    journal = _open_journal(ctx)
    try:
        if prune:
            days = older_than or ctx.obj["settings"].journal_retention_days
            deleted = journal.prune(days)
            console.print(f"Deleted {deleted} runs older than {days} days")
            return
        runs = journal.list_runs(host=host, limit=limit)
    finally:
        journal.close()

    if not runs:
        console.print("[yellow]No runs found[/yellow]")
        return
    console.print(runs_table(runs))


# ── packages ────────────────────────────────────────────────────────────────


@main.command()
@target_options
@click.option("--security-updates/--no-security-updates", default=True, help="Apply pending security updates")
@click.option("--verify/--no-verify", default=True, help="Verify installed files with debsums")
@click.pass_context
def packages(ctx, host, inventory, limit, password, security_updates, verify):
    """Apply security updates and verify package integrity."""
    settings = ctx.obj["settings"]
    hosts = _resolve_hosts(ctx, host, inventory, limit)
    journal = _open_journal(ctx)
    notifier = build_notifier(settings)

    def do_packages(hi, session):
        return run_packages(session, journal, security_updates=security_updates, verify=verify)

    statuses = []
    try:
        for hi, result, error in _for_each_host(hosts, settings, password, do_packages):
            if error:
                console.print(f"[red]{hi.label}:[/red] {error}")
                statuses.append(RunStatus.ABORTED_BEFORE_APPLY)
                continue
            console.print(entries_table(f"{result.host} packages run {result.run_id}", result.entries))
            console.print(summary_line(result))
            statuses.append(result.status)
            if result.status != RunStatus.SUCCESS:
                notifier.notify(
                    f"fleetguard: package operations {result.status.value} on {result.host}",
                    "\n".join(f"{e.item_id}: {e.outcome.value} ({e.reason})" for e in result.entries) + "\n",
                )
    except FleetguardError as exc:
        _fail(str(exc))
    finally:
        journal.close()
    sys.exit(max((s.exit_code for s in statuses), default=0))


# ── monitor ─────────────────────────────────────────────────────────────────


@main.command()
@target_options
@click.option("--interval", default=0, type=int, metavar="SECONDS", help="Repeat every N seconds (0: once)")
@click.option("--count", default=0, type=int, help="Stop after N samples (0: forever when --interval is set)")
@click.option("--json", "json_output", is_flag=True, help="Output each sample round as JSON")
@click.pass_context
def monitor(ctx, host, inventory, limit, password, interval, count, json_output):
    """Sample CPU, memory, disk and failed services; alert on thresholds."""
    settings = ctx.obj["settings"]
    hosts = _resolve_hosts(ctx, host, inventory, limit)
    notifier = build_notifier(settings)
    thresholds = Thresholds.from_settings(settings)

    def sample(hi, session):
        return ResourceMonitor(session, thresholds, notifier, timeout=settings.probe_timeout).sample()

    taken = 0
    while True:
        table = Table(title=f"Resources ({time.strftime('%Y-%m-%d %H:%M:%S')})")
        table.add_column("Host", style="cyan")
        table.add_column("CPU", justify="right")
        table.add_column("Memory", justify="right")
        table.add_column("Disk", justify="right")
        table.add_column("Failed units", justify="right")
        table.add_column("Alerts", style="red")
        alerting = False
        rows = []
        for hi, s, error in _for_each_host(hosts, settings, password, sample):
            if error:
                table.add_row(hi.label, "-", "-", "-", "-", error)
                rows.append({"host": hi.label, "errors": [error]})
                alerting = True
                continue
            rows.append(s.as_dict())

            def pct(v):
                return "-" if v is None else f"{v:.0f}%"

            table.add_row(s.host, pct(s.cpu), pct(s.memory), pct(s.disk), str(len(s.failed_units)), "; ".join(s.alerts))
            alerting = alerting or bool(s.alerts)
        if json_output:
            click.echo(format_json(rows))
        else:
            console.print(table)

        taken += 1
        if interval <= 0 or (count and taken >= count):
            break
        time.sleep(interval)
    sys.exit(1 if alerting else 0)


if __name__ == "__main__":
    main()
