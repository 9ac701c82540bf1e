"""Core data types for baselines, probes, actions and journal records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator


class ItemKind(str, Enum):
    """Kinds of desired-state assertions a baseline item can make."""

    KEY_VALUE = "key_value"
    FILE_EDIT = "file_edit"
    SERVICE = "service"
    PERMISSION = "permission"
    COMMAND = "command"


# Kinds whose target may be created when absent
CREATABLE_KINDS = frozenset({ItemKind.KEY_VALUE, ItemKind.FILE_EDIT})


@dataclass
class BaselineItem:
    """One desired-state assertion."""

    id: str
    kind: ItemKind
    target: str
    desired: Any
    depends_on: tuple[str, ...] = ()
    title: str = ""
    options: dict[str, Any] = field(default_factory=dict)

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "target": self.target,
            "desired": self.desired,
            "depends_on": list(self.depends_on),
            "title": self.title,
            "options": dict(self.options),
        }

    @classmethod
    def from_dict(cls, data: dict) -> BaselineItem:
        return cls(
            id=data["id"],
            kind=ItemKind(data["kind"]),
            target=data["target"],
            desired=data.get("desired"),
            depends_on=tuple(data.get("depends_on", ())),
            title=data.get("title", ""),
            options=dict(data.get("options") or {}),
        )


@dataclass
class Baseline:
    """A validated, read-only desired-state document."""

    name: str
    version: int
    items: list[BaselineItem] = field(default_factory=list)
    source: str = ""

    def __iter__(self) -> Iterator[BaselineItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def get(self, item_id: str) -> BaselineItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    @property
    def ids(self) -> list[str]:
        return [item.id for item in self.items]


@dataclass
class ProbeResult:
    """Current state of one baseline item's target."""

    item_id: str
    current: Any
    present: bool
    readable: bool = True
    error: str | None = None  # set when the probe mechanism broke
    comparable: bool = True  # False when the kind has no current-state comparison
    meta: dict[str, Any] = field(default_factory=dict)  # kind-specific facts kept in snapshots
    raw: str | None = None  # file content read by the probe, never persisted

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class Snapshot:
    """Prior state captured before a mutation, restorable by rollback."""

    present: bool
    value: Any
    capturable: bool = True  # False for one-shot commands
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"present": self.present, "value": self.value, "capturable": self.capturable, "meta": dict(self.meta)}

    @classmethod
    def from_dict(cls, data: dict | None) -> Snapshot | None:
        if data is None:
            return None
        return cls(
            present=bool(data.get("present")),
            value=data.get("value"),
            capturable=bool(data.get("capturable", True)),
            meta=dict(data.get("meta") or {}),
        )

    @classmethod
    def of(cls, probe: ProbeResult, *, capturable: bool = True) -> Snapshot:
        return cls(
            present=probe.present,
            value=probe.current,
            capturable=capturable,
            meta=dict(probe.meta),
        )


class ActionKind(str, Enum):
    """What the reconciler decided to do with one item."""

    CREATE = "create"
    MODIFY = "modify"
    NOOP = "noop"
    UNSUPPORTED = "unsupported"


@dataclass
class Action:
    """A planned change for one item, consumed once by the executor."""

    item_id: str
    kind: ActionKind
    prior: Snapshot | None
    new_value: Any
    reason: str = ""

    @property
    def mutating(self) -> bool:
        return self.kind in (ActionKind.CREATE, ActionKind.MODIFY)


class Outcome(str, Enum):
    """Terminal state of one action."""

    APPLIED = "applied"
    NOOP = "noop"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def satisfied(self) -> bool:
        """Whether dependents of an item with this outcome may proceed."""
        return self in (Outcome.APPLIED, Outcome.NOOP)


@dataclass
class Execution:
    """Result of the executor applying one action."""

    outcome: Outcome
    reason: str = ""
    prior: Snapshot | None = None


class RunStatus(str, Enum):
    """Overall status of a reconciliation run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED_BEFORE_APPLY = "aborted_before_apply"

    @property
    def exit_code(self) -> int:
        return {
            RunStatus.SUCCESS: 0,
            RunStatus.PARTIAL_FAILURE: 1,
            RunStatus.ABORTED_BEFORE_APPLY: 2,
        }[self]


class RunKind(str, Enum):
    """What kind of pass produced a journal run."""

    APPLY = "apply"
    ROLLBACK = "rollback"
    PACKAGES = "packages"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JournalEntry:
    """One append-only journal record."""

    run_id: str
    host: str
    item_id: str
    action: ActionKind
    outcome: Outcome
    reason: str = ""
    prior: Snapshot | None = None
    new_value: Any = None
    item: dict | None = None  # serialized BaselineItem, used by rollback
    timestamp: datetime = field(default_factory=utcnow)
    seq: int | None = None


@dataclass
class ReconciliationRun:
    """Metadata for one orchestrator pass on one host."""

    run_id: str
    host: str
    run_kind: RunKind
    started_at: datetime
    completed_at: datetime | None = None
    status: RunStatus | None = None  # None while running or after a crash
    baseline: str = ""
    parent_run_id: str | None = None


def derive_status(outcomes: list[Outcome], *, aborted: bool = False) -> RunStatus:
    """Derive a run's terminal status from its entry outcomes.

    A run that stopped before mutating anything is AbortedBeforeApply. A run
    whose outcomes are all Applied or NoOp is a Success. Anything else is a
    PartialFailure.
    """
    applied = any(o == Outcome.APPLIED for o in outcomes)
    if aborted and not applied:
        return RunStatus.ABORTED_BEFORE_APPLY
    if not aborted and all(o.satisfied for o in outcomes):
        return RunStatus.SUCCESS
    return RunStatus.PARTIAL_FAILURE


@dataclass
class RunReport:
    """Everything an operator needs to know about one host's pass."""

    host: str
    status: RunStatus
    run_id: str | None = None
    actions: list[Action] = field(default_factory=list)
    entries: list[JournalEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    dry_run: bool = False

    def count(self, outcome: Outcome) -> int:
        return sum(1 for e in self.entries if e.outcome == outcome)
