"""Baseline document loading and validation.

A baseline is a versioned YAML document listing desired-state items. Loading
is all-or-nothing: the document is parsed, checked against the JSON Schema,
its variables are resolved, and every business rule is validated before a
:class:`Baseline` is returned. Any problem raises :class:`ParseError`
carrying every issue found, so a malformed baseline never triggers an action.

Variables are resolved with this priority (highest first):
1. ``overrides`` passed by the caller (CLI ``--var KEY=VALUE``)
2. the document's ``variables`` section

Substitution only happens inside ``desired`` values, never in targets,
keys or commands.

Example:
-------
    >>> from fleetguard.baseline import load_baseline
    >>> baseline = load_baseline("baselines/cis-debian-l1.yml")
    >>> print(len(baseline), baseline.ids[0])

"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from fleetguard._types import Baseline, BaselineItem, ItemKind
from fleetguard.errors import ParseError, ValidationIssue
from fleetguard.ordering import detect_cycles

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema" / "baseline.schema.json"

SUPPORTED_VERSIONS = frozenset({1})

# Matches {{ variable_name }} with optional whitespace
VARIABLE_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")

# Item fields that travel in BaselineItem.options
OPTION_FIELDS = ("key", "separator", "case_insensitive", "via", "marker", "mode", "reload", "restart")

SERVICE_SHORTHANDS: dict[str, dict[str, bool]] = {
    "running": {"enabled": True, "active": True},
    "stopped": {"enabled": False, "active": False},
    "enabled": {"enabled": True},
    "disabled": {"enabled": False},
    "masked": {"masked": True, "active": False},
}
SERVICE_FIELDS = frozenset({"enabled", "active", "masked"})
PERMISSION_FIELDS = frozenset({"mode", "owner", "group"})
FILE_EDIT_MODES = ("content", "block", "line")
MODE_PATTERN = re.compile(r"^0?[0-7]{3,4}$")


def load_schema(path: Path = SCHEMA_PATH) -> dict:
    """Load and return the baseline JSON Schema."""
    with open(path) as f:
        return json.load(f)


def load_baseline(path: str | Path, *, overrides: dict[str, Any] | None = None) -> Baseline:
    """Load and validate a baseline file.

    Raises:
        ParseError: The file is missing, unparsable or invalid.

    """
    p = Path(path)
    try:
        text = p.read_text()
    except OSError as exc:
        raise ParseError(f"Cannot read baseline {path}: {exc}") from exc
    return parse_baseline(text, source=str(p), overrides=overrides)


def parse_baseline(text: str, *, source: str = "<string>", overrides: dict[str, Any] | None = None) -> Baseline:
    """Parse and validate baseline YAML text.

    Raises:
        ParseError: The document is invalid; ``issues`` lists every problem.

    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ParseError(f"{source}: failed to parse YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise ParseError(f"{source}: document is not a YAML mapping (got {type(data).__name__})")

    issues = _validate_schema(data)
    if issues:
        raise ParseError(f"{source}: baseline does not match schema", issues)

    if data["version"] not in SUPPORTED_VERSIONS:
        raise ParseError(
            f"{source}: unsupported baseline version {data['version']}",
            [ValidationIssue("version", f"supported versions: {sorted(SUPPORTED_VERSIONS)}", "version")],
        )

    variables = dict(data.get("variables") or {})
    variables.update(overrides or {})

    items: list[BaselineItem] = []
    for raw in data["items"]:
        desired, var_issues = _resolve(raw["desired"], variables, raw["id"])
        issues.extend(var_issues)
        item = BaselineItem(
            id=raw["id"],
            kind=ItemKind(raw["kind"]),
            target=raw["target"],
            desired=desired,
            depends_on=tuple(raw.get("depends_on", ())),
            title=raw.get("title", ""),
            options={name: raw[name] for name in OPTION_FIELDS if name in raw},
        )
        if not var_issues:
            item.desired, kind_issues = _normalize_desired(item)
            issues.extend(kind_issues)
        items.append(item)

    issues.extend(_validate_graph(items))
    if issues:
        raise ParseError(f"{source}: baseline is invalid ({len(issues)} issue(s))", issues)

    name = data.get("name") or Path(source).stem
    logger.debug("Loaded baseline %s with %d item(s)", name, len(items))
    return Baseline(name=name, version=data["version"], items=items, source=source)


# ── Validation stages ─────────────────────────────────────────────────────


def _validate_schema(data: dict) -> list[ValidationIssue]:
    validator = jsonschema.Draft202012Validator(load_schema())
    issues = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        path = "/".join(str(p) for p in error.absolute_path) or "<root>"
        issues.append(ValidationIssue("schema", error.message, path))
    return issues


def _validate_graph(items: list[BaselineItem]) -> list[ValidationIssue]:
    issues = []
    seen: set[str] = set()
    for item in items:
        if item.id in seen:
            issues.append(ValidationIssue("duplicate-id", f"id '{item.id}' is declared more than once", item.id))
        seen.add(item.id)

    for item in items:
        for dep in item.depends_on:
            if dep not in seen:
                issues.append(ValidationIssue("unknown-dependency", f"depends on unknown item '{dep}'", item.id))
            elif dep == item.id:
                issues.append(ValidationIssue("self-dependency", "item depends on itself", item.id))

    ids = list(dict.fromkeys(item.id for item in items))
    deps = {item.id: [d for d in item.depends_on if d in seen and d != item.id] for item in items}
    for cycle in detect_cycles(ids, deps):
        issues.append(ValidationIssue("cycle", f"circular dependency: {' -> '.join(cycle)}", cycle[0]))
    return issues


# ── Variable resolution ───────────────────────────────────────────────────


def _resolve(value: Any, variables: dict[str, Any], item_id: str) -> tuple[Any, list[ValidationIssue]]:
    """Substitute {{ var }} references inside a desired value."""
    issues: list[ValidationIssue] = []

    def sub(v: Any) -> Any:
        if isinstance(v, str):
            whole = VARIABLE_PATTERN.fullmatch(v.strip())
            if whole:
                name = whole.group(1)
                if name not in variables:
                    issues.append(ValidationIssue("undefined-variable", f"variable '{name}' is not defined", item_id))
                    return v
                return variables[name]

            def repl(m: re.Match) -> str:
                name = m.group(1)
                if name not in variables:
                    issues.append(ValidationIssue("undefined-variable", f"variable '{name}' is not defined", item_id))
                    return m.group(0)
                return str(variables[name])

            return VARIABLE_PATTERN.sub(repl, v)
        if isinstance(v, dict):
            return {k: sub(x) for k, x in v.items()}
        if isinstance(v, list):
            return [sub(x) for x in v]
        return v

    return sub(value), issues


# ── Per-kind desired value checks ─────────────────────────────────────────


def _normalize_desired(item: BaselineItem) -> tuple[Any, list[ValidationIssue]]:
    """Check that desired matches the item's kind and return its canonical form."""
    check = {
        ItemKind.KEY_VALUE: _check_key_value,
        ItemKind.FILE_EDIT: _check_file_edit,
        ItemKind.SERVICE: _check_service,
        ItemKind.PERMISSION: _check_permission,
        ItemKind.COMMAND: _check_command,
    }[item.kind]
    problems: list[str] = []
    desired = check(item, problems)
    return desired, [ValidationIssue("desired-type", msg, item.id) for msg in problems]


def _require_absolute(item: BaselineItem, problems: list[str]) -> None:
    if not item.target.startswith("/"):
        problems.append(f"target must be an absolute path for kind {item.kind.value}")


def _check_key_value(item: BaselineItem, problems: list[str]) -> Any:
    d = item.desired
    if isinstance(d, bool) or not isinstance(d, (str, int)):
        problems.append(f"key_value desired must be a string or integer, got {type(d).__name__}")
        return d
    if item.option("via", "file") == "file":
        _require_absolute(item, problems)
        if not item.option("key"):
            problems.append("key_value items edited in a file need a 'key'")
    elif item.option("key"):
        problems.append("sysctl items take the parameter name from 'target', not 'key'")
    return str(d)


def _check_file_edit(item: BaselineItem, problems: list[str]) -> Any:
    _require_absolute(item, problems)
    d = item.desired
    if not isinstance(d, dict):
        problems.append("file_edit desired must be a mapping with one of: content, block, line")
        return d
    present = [m for m in FILE_EDIT_MODES if m in d]
    unknown = set(d) - set(FILE_EDIT_MODES)
    if unknown:
        problems.append(f"unknown file_edit fields: {', '.join(sorted(unknown))}")
    if len(present) != 1:
        problems.append("file_edit desired needs exactly one of: content, block, line")
        return d
    mode = present[0]
    if not isinstance(d[mode], str):
        problems.append(f"file_edit '{mode}' must be a string")
    elif mode == "line" and ("\n" in d[mode].strip() or not d[mode].strip()):
        problems.append("file_edit 'line' must be a single non-empty line")
    if item.option("marker") and mode != "block":
        problems.append("'marker' only applies to block edits")
    return {mode: d[mode]}


def _check_service(item: BaselineItem, problems: list[str]) -> Any:
    d = item.desired
    if isinstance(d, str):
        if d not in SERVICE_SHORTHANDS:
            problems.append(f"unknown service state '{d}' (expected one of: {', '.join(SERVICE_SHORTHANDS)})")
            return d
        return dict(SERVICE_SHORTHANDS[d])
    if not isinstance(d, dict) or not d:
        problems.append("service desired must be a state name or a mapping of enabled/active/masked")
        return d
    unknown = set(d) - SERVICE_FIELDS
    if unknown:
        problems.append(f"unknown service fields: {', '.join(sorted(unknown))}")
    if any(not isinstance(v, bool) for v in d.values()):
        problems.append("service states must be booleans")
    if d.get("masked") and (d.get("enabled") or d.get("active")):
        problems.append("a masked service cannot be enabled or active")
    return dict(d)


def _check_permission(item: BaselineItem, problems: list[str]) -> Any:
    _require_absolute(item, problems)
    d = item.desired
    if not isinstance(d, dict) or not d:
        problems.append("permission desired must be a mapping of mode/owner/group")
        return d
    unknown = set(d) - PERMISSION_FIELDS
    if unknown:
        problems.append(f"unknown permission fields: {', '.join(sorted(unknown))}")
    mode = d.get("mode")
    if mode is not None and not (isinstance(mode, str) and MODE_PATTERN.match(mode)):
        problems.append("permission mode must be a quoted octal string such as \"0600\"")
    for name in ("owner", "group"):
        if name in d and not isinstance(d[name], str):
            problems.append(f"permission {name} must be a string")
    return dict(d)


def _check_command(item: BaselineItem, problems: list[str]) -> Any:
    d = item.desired
    if not isinstance(d, dict) or not isinstance(d.get("run"), str) or not d["run"].strip():
        problems.append("command desired must be a mapping with a non-empty 'run'")
        return d
    unknown = set(d) - {"run", "unless"}
    if unknown:
        problems.append(f"unknown command fields: {', '.join(sorted(unknown))}")
    if "unless" in d and not isinstance(d["unless"], str):
        problems.append("command 'unless' must be a string")
    return dict(d)


__all__ = ["load_baseline", "parse_baseline", "load_schema"]
