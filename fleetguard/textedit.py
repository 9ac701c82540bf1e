"""Pure text transformations for configuration files.

Handlers read a file, transform its text here, and write the result back
atomically. Keeping the edits in Python (instead of ``sed -i``) makes them
idempotent and testable without a host.

Example:
-------
    >>> set_value("#PermitRootLogin yes\\nPermitRootLogin yes\\n", "PermitRootLogin", "no")
    '#PermitRootLogin yes\\nPermitRootLogin no\\n'
    >>> find_value("MaxAuthTries=4\\n", "MaxAuthTries", separator="=")
    '4'

"""

from __future__ import annotations

import re

DEFAULT_MARKER = "FLEETGUARD MANAGED BLOCK"


# ── Key/value settings ────────────────────────────────────────────────────


def _key_pattern(key: str, separator: str, ignore_case: bool = False) -> re.Pattern:
    flags = re.IGNORECASE if ignore_case else 0
    sep = separator.strip()
    if sep:
        return re.compile(rf"^\s*{re.escape(key)}\s*{re.escape(sep)}\s*(.*?)\s*$", flags)
    return re.compile(rf"^\s*{re.escape(key)}(?:\s+(.*?))?\s*$", flags)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _split_lines(content: str | None) -> list[str]:
    return content.splitlines() if content else []


def _join_lines(lines: list[str]) -> str:
    return "\n".join(lines) + "\n" if lines else ""


def find_value(content: str | None, key: str, *, separator: str = " ", ignore_case: bool = False) -> str | None:
    """Return the value of the first active (uncommented) occurrence of key.

    sshd_config and similar files match keywords without regard to case;
    pass ``ignore_case`` for those.
    """
    pattern = _key_pattern(key, separator, ignore_case)
    for line in _split_lines(content):
        if line.lstrip().startswith("#"):
            continue
        m = pattern.match(line)
        if m:
            return _unquote(m.group(1) or "")
    return None


def set_value(content: str | None, key: str, value: str, *, separator: str = " ", ignore_case: bool = False) -> str:
    """Set key to value, replacing the first active line and dropping duplicates.

    The line is appended when the key is not set. Commented-out examples are
    left alone. The replacement line uses the spelling of ``key`` given here.
    """
    pattern = _key_pattern(key, separator, ignore_case)
    new_line = f"{key}{separator}{value}"
    out: list[str] = []
    replaced = False
    for line in _split_lines(content):
        if not line.lstrip().startswith("#") and pattern.match(line):
            if not replaced:
                out.append(new_line)
                replaced = True
            continue
        out.append(line)
    if not replaced:
        out.append(new_line)
    return _join_lines(out)


def remove_key(content: str | None, key: str, *, separator: str = " ", ignore_case: bool = False) -> str:
    """Remove every active occurrence of key."""
    pattern = _key_pattern(key, separator, ignore_case)
    kept = [line for line in _split_lines(content) if line.lstrip().startswith("#") or not pattern.match(line)]
    return _join_lines(kept)


# ── Managed blocks ────────────────────────────────────────────────────────


def _markers(marker: str) -> tuple[str, str]:
    return f"# BEGIN {marker}", f"# END {marker}"


def _block_span(lines: list[str], marker: str) -> tuple[int, int] | None:
    begin, end = _markers(marker)
    start = None
    for i, line in enumerate(lines):
        if line.strip() == begin and start is None:
            start = i
        elif line.strip() == end and start is not None:
            return start, i
    return None


def find_block(content: str | None, marker: str = DEFAULT_MARKER) -> str | None:
    """Return the text between the block markers, or None if no block."""
    lines = _split_lines(content)
    span = _block_span(lines, marker)
    if span is None:
        return None
    return "\n".join(lines[span[0] + 1 : span[1]])


def set_block(content: str | None, block: str, marker: str = DEFAULT_MARKER) -> str:
    """Insert or replace the managed block."""
    begin, end = _markers(marker)
    lines = _split_lines(content)
    new_block = [begin, *block.rstrip("\n").splitlines(), end]
    span = _block_span(lines, marker)
    if span is None:
        return _join_lines(lines + new_block)
    return _join_lines(lines[: span[0]] + new_block + lines[span[1] + 1 :])


def remove_block(content: str | None, marker: str = DEFAULT_MARKER) -> str:
    """Remove the managed block, markers included."""
    lines = _split_lines(content)
    span = _block_span(lines, marker)
    if span is None:
        return _join_lines(lines)
    return _join_lines(lines[: span[0]] + lines[span[1] + 1 :])


# ── Single lines ──────────────────────────────────────────────────────────


def has_line(content: str | None, line: str) -> bool:
    want = line.strip()
    return any(existing.strip() == want for existing in _split_lines(content))


def ensure_line(content: str | None, line: str) -> str:
    lines = _split_lines(content)
    if has_line(content, line):
        return _join_lines(lines)
    return _join_lines(lines + [line])


def remove_line(content: str | None, line: str) -> str:
    want = line.strip()
    return _join_lines([existing for existing in _split_lines(content) if existing.strip() != want])
