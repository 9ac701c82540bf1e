"""File edit probes.

A file edit item asserts whole-file content, a managed block, or a single
line. The probe reports the part of the file the item manages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fleetguard import shell_util, textedit
from fleetguard._types import ProbeResult

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem
    from fleetguard.sessions import Session


def edit_mode(item: BaselineItem) -> str:
    """Return which of content/block/line the item manages."""
    return next(iter(item.desired))


def managed_value(item: BaselineItem, content: str | None) -> str | None:
    """Extract the managed part of a file's content."""
    mode = edit_mode(item)
    if content is None:
        return None
    if mode == "content":
        return content
    if mode == "block":
        return textedit.find_block(content, item.option("marker", textedit.DEFAULT_MARKER))
    line = item.desired["line"].strip()
    return line if textedit.has_line(content, line) else None


def _probe_file_edit(session: Session, item: BaselineItem, *, timeout: float | None = None) -> ProbeResult:
    read = shell_util.read_file(session, item.target, timeout=timeout)
    if not read.exists:
        return ProbeResult(item.id, None, present=False)
    if not read.readable:
        return ProbeResult(item.id, None, present=True, readable=False)
    return ProbeResult(item.id, managed_value(item, read.content), present=True, raw=read.content)


def _matches_file_edit(item: BaselineItem, current: Any) -> bool:
    if current is None:
        return False
    mode = edit_mode(item)
    want = item.desired[mode]
    if mode == "content":
        return current == want
    if mode == "block":
        return current == want.rstrip("\n")
    return current == want.strip()
