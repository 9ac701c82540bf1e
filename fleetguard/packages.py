"""APT package manager facade.

Narrow wrapper over ``dpkg-query``, ``apt-get`` and ``debsums``. Every
operation tolerates failure at its own layer and returns an enumerated
:class:`PackageOutcome`; the caller only records those outcomes in the
journal as a ``packages`` run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from fleetguard import shell_util
from fleetguard._types import ActionKind, JournalEntry, Outcome, RunKind, RunReport, derive_status
from fleetguard.errors import ActionError, CommandTimeout, JournalWriteError, ProbeError, SessionError

if TYPE_CHECKING:
    from fleetguard.journal import Journal
    from fleetguard.sessions import Session

logger = logging.getLogger(__name__)

APT_ENV = "DEBIAN_FRONTEND=noninteractive"

# "Inst openssl [3.0.11-1] (3.0.13-1~deb12u1 Debian-Security:12/stable-security [amd64])"
_INST_RE = re.compile(r"^Inst\s+(\S+)\s.*security", re.IGNORECASE)


class PackageStatus(str, Enum):
    """Result of one package operation."""

    OK = "ok"  # nothing to do, or verification passed
    CHANGED = "changed"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"  # required tool missing


@dataclass
class PackageOutcome:
    """Outcome of one package-manager operation."""

    operation: str
    status: PackageStatus
    detail: str = ""
    packages: list[str] = field(default_factory=list)

    @property
    def outcome(self) -> Outcome:
        """Journal outcome for this operation."""
        return {
            PackageStatus.OK: Outcome.NOOP,
            PackageStatus.CHANGED: Outcome.APPLIED,
            PackageStatus.FAILED: Outcome.FAILED,
            PackageStatus.UNAVAILABLE: Outcome.SKIPPED,
        }[self.status]


class AptPackageManager:
    """Package operations on one Debian host."""

    def __init__(self, session: Session, *, timeout: float = 900):
        self.session = session
        self.timeout = timeout

    def _apt(self, args: str) -> None:
        shell_util.run_checked(self.session, f"{APT_ENV} apt-get {args}", timeout=self.timeout)

    def query_installed(self) -> dict[str, str]:
        """Return installed package names mapped to versions."""
        cmd = "dpkg-query -W -f='${db:Status-Abbrev}\\t${Package}\\t${Version}\\n'"
        try:
            result = shell_util.run_checked(self.session, cmd, timeout=self.timeout)
        except ActionError as exc:
            logger.warning("Cannot list installed packages on %s: %s", self.session.host_id, exc.reason)
            return {}
        installed = {}
        for line in result.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) == 3 and parts[0].startswith("ii"):
                installed[parts[1]] = parts[2]
        return installed

    def pending_security_updates(self) -> list[str]:
        """Names of packages a simulated upgrade would take from a security suite."""
        result = shell_util.run_checked(self.session, f"{APT_ENV} apt-get -s upgrade", timeout=self.timeout)
        return [m.group(1) for m in map(_INST_RE.match, result.stdout.splitlines()) if m]

    def apply_security_updates(self) -> PackageOutcome:
        """Refresh package lists and upgrade only packages with security updates."""
        op = "security_updates"
        try:
            self._apt("update")
            pending = self.pending_security_updates()
            if not pending:
                return PackageOutcome(op, PackageStatus.OK, "No security updates available")
            logger.info("Applying %d security update(s) on %s", len(pending), self.session.host_id)
            names = " ".join(shell_util.quote(p) for p in pending)
            self._apt(f"-y --only-upgrade install {names}")
            self._apt("-y autoremove")
            self._apt("autoclean")
        except ActionError as exc:
            return PackageOutcome(op, PackageStatus.FAILED, exc.reason)
        installed = self.query_installed()
        upgraded = [f"{name}={installed[name]}" if name in installed else name for name in pending]
        return PackageOutcome(op, PackageStatus.CHANGED, f"Applied {len(pending)} security update(s)", upgraded)

    def verify_integrity(self) -> PackageOutcome:
        """Check installed files against package checksums with debsums."""
        op = "verify_integrity"
        try:
            if not shell_util.run_probe(self.session, "command -v debsums", timeout=self.timeout).ok:
                return PackageOutcome(op, PackageStatus.UNAVAILABLE, "debsums is not installed")
            result = self.session.run("debsums -c 2>/dev/null", timeout=self.timeout)
        except (CommandTimeout, ProbeError, SessionError) as exc:
            return PackageOutcome(op, PackageStatus.FAILED, str(exc))
        changed = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if result.ok and not changed:
            return PackageOutcome(op, PackageStatus.OK, "All package files verified")
        return PackageOutcome(op, PackageStatus.FAILED, f"{len(changed)} changed file(s)", changed)


def run_packages(
    session: Session,
    journal: Journal,
    *,
    security_updates: bool = True,
    verify: bool = True,
    timeout: float = 900,
) -> RunReport:
    """Run the selected package operations and journal them as a packages run."""
    manager = AptPackageManager(session, timeout=timeout)
    host = session.host_id
    run_id = journal.begin_run(host, run_kind=RunKind.PACKAGES)
    report = RunReport(host=host, status=derive_status([]), run_id=run_id)

    operations = []
    if security_updates:
        operations.append(manager.apply_security_updates)
    if verify:
        operations.append(manager.verify_integrity)

    try:
        for operation in operations:
            result = operation()
            logger.info("%s on %s: %s (%s)", result.operation, host, result.status.value, result.detail)
            entry = JournalEntry(
                run_id=run_id,
                host=host,
                item_id=f"packages.{result.operation}",
                action=ActionKind.MODIFY if result.status == PackageStatus.CHANGED else ActionKind.NOOP,
                outcome=result.outcome,
                reason=result.detail,
                new_value=result.packages or None,
            )
            journal.record(entry)
            report.entries.append(entry)
    except JournalWriteError:
        journal.release(run_id)
        raise

    report.status = derive_status([e.outcome for e in report.entries])
    journal.finish_run(run_id, report.status)
    return report
