"""Key/value setting probes.

Handlers for reading a configuration key from a file, or a kernel
parameter through sysctl.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from fleetguard import shell_util, textedit
from fleetguard._types import ProbeResult
from fleetguard.errors import ProbeError

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem
    from fleetguard.sessions import Session

_SYSCTL_MISSING_RE = re.compile(r"cannot stat|no such file|unknown key", re.IGNORECASE)


def normalize_sysctl(value: Any) -> str:
    """Collapse whitespace so multi-value parameters compare reliably."""
    return " ".join(str(value).split())


def _probe_config_value(session: Session, item: BaselineItem, *, timeout: float | None = None) -> ProbeResult:
    """Read one key from a config file.

    The setting is present when an active line for the key exists. A missing
    file is reported through ``meta["file_exists"]`` so rollback can remove a
    file it created.
    """
    read = shell_util.read_file(session, item.target, timeout=timeout)
    if not read.exists:
        return ProbeResult(item.id, None, present=False, meta={"file_exists": False})
    if not read.readable:
        return ProbeResult(item.id, None, present=True, readable=False, meta={"file_exists": True})

    value = textedit.find_value(
        read.content,
        item.option("key"),
        separator=item.option("separator", " "),
        ignore_case=item.option("case_insensitive", False),
    )
    return ProbeResult(
        item.id,
        value,
        present=value is not None,
        meta={"file_exists": True},
        raw=read.content,
    )


def _probe_sysctl_value(session: Session, item: BaselineItem, *, timeout: float | None = None) -> ProbeResult:
    """Read a kernel parameter with ``sysctl -n``."""
    result = shell_util.run_probe(session, f"sysctl -n {shell_util.quote(item.target)}", timeout=timeout)
    if result.ok:
        return ProbeResult(item.id, normalize_sysctl(result.stdout), present=True)
    if _SYSCTL_MISSING_RE.search(result.stderr):
        return ProbeResult(item.id, None, present=False)
    if "permission denied" in result.stderr.lower():
        return ProbeResult(item.id, None, present=True, readable=False)
    raise ProbeError(f"sysctl {item.target} failed (exit {result.exit_code}): {result.stderr}")


def _probe_key_value(session: Session, item: BaselineItem, *, timeout: float | None = None) -> ProbeResult:
    if item.option("via", "file") == "sysctl":
        return _probe_sysctl_value(session, item, timeout=timeout)
    return _probe_config_value(session, item, timeout=timeout)


def _matches_key_value(item: BaselineItem, current: Any) -> bool:
    if current is None:
        return False
    if item.option("via", "file") == "sysctl":
        return normalize_sysctl(current) == normalize_sysctl(item.desired)
    return str(current) == str(item.desired)
