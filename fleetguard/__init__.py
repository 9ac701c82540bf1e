"""
fleetguard: fleet configuration baselines over SSH

Probes each host, plans the minimal set of changes that brings it to a
declared baseline, applies them atomically and journals every outcome so
any run can be reported on and rolled back.

Usage:
    from fleetguard import Journal, Orchestrator, load_baseline, load_settings
    from fleetguard.inventory import HostInfo
    from fleetguard.sessions import open_session

    settings = load_settings()
    with Journal(settings.journal_path) as journal:
        session = open_session(HostInfo("web-01", user="admin"), settings)
        report = Orchestrator(settings, journal).run(session, load_baseline("cis.yml"))
        print(report.status.value)

Version: 0.1.0
"""

__version__ = "0.1.0"

from fleetguard._types import (
    Action,
    ActionKind,
    Baseline,
    BaselineItem,
    ItemKind,
    JournalEntry,
    Outcome,
    ProbeResult,
    ReconciliationRun,
    RunKind,
    RunReport,
    RunStatus,
    Snapshot,
)
from fleetguard.baseline import load_baseline, parse_baseline
from fleetguard.config import Settings, load_settings
from fleetguard.errors import (
    ActionError,
    FleetguardError,
    JournalWriteError,
    ParseError,
    ProbeError,
    RunNotFoundError,
)
from fleetguard.executor import Executor
from fleetguard.journal import Journal
from fleetguard.orchestrator import Orchestrator, run_fleet
from fleetguard.reconcile import plan
from fleetguard.rollback import RollbackManager

__all__ = [
    # Version
    "__version__",
    # Types
    "Action",
    "ActionKind",
    "Baseline",
    "BaselineItem",
    "ItemKind",
    "JournalEntry",
    "Outcome",
    "ProbeResult",
    "ReconciliationRun",
    "RunKind",
    "RunReport",
    "RunStatus",
    "Snapshot",
    # Errors
    "ActionError",
    "FleetguardError",
    "JournalWriteError",
    "ParseError",
    "ProbeError",
    "RunNotFoundError",
    # Core
    "load_baseline",
    "parse_baseline",
    "plan",
    "Executor",
    "Journal",
    "Orchestrator",
    "RollbackManager",
    "run_fleet",
    # Configuration
    "Settings",
    "load_settings",
]
