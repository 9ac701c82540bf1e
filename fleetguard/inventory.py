"""Target host resolution from --host, Ansible inventories, or plain host lists.

Hosts named ``localhost`` or ``local`` are reconciled through a local
session instead of SSH.
"""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from fleetguard.errors import FleetguardError
from fleetguard.local import LOCAL_HOST_NAMES

DEFAULT_PORT = 22

_GROUP_HEADER = re.compile(r"^\[(.+)\]$")


class InventoryError(FleetguardError):
    """No usable hosts could be resolved."""

    pass


@dataclass
class HostInfo:
    """Resolved target host with connection parameters."""

    hostname: str
    port: int = DEFAULT_PORT
    user: str | None = None
    key_path: str | None = None
    groups: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        """Host name as recorded in the journal."""
        if self.is_local:
            return "localhost"
        return self.hostname if self.port == DEFAULT_PORT else f"{self.hostname}:{self.port}"

    @property
    def is_local(self) -> bool:
        return self.hostname in LOCAL_HOST_NAMES


def resolve_targets(
    *,
    host: str | None = None,
    inventory: str | None = None,
    limit: str | None = None,
    default_user: str | None = None,
    default_key: str | None = None,
    default_port: int = DEFAULT_PORT,
) -> list[HostInfo]:
    """Resolve target hosts from all sources and apply defaults.

    Per-host inventory variables win over group variables, which win over
    the CLI defaults. A host listed twice is reconciled once.

    Raises:
        InventoryError: No hosts given, inventory unreadable, or ``limit``
            matched nothing.

    """
    hosts: list[HostInfo] = []
    if host:
        hosts.extend(parse_host_spec(host))
    if inventory:
        hosts.extend(_parse_inventory(inventory))
    if not hosts:
        raise InventoryError("No target hosts specified, use --host or --inventory")

    for h in hosts:
        if h.user is None:
            h.user = default_user
        if h.key_path is None:
            h.key_path = default_key
        if h.port == DEFAULT_PORT and default_port != DEFAULT_PORT:
            h.port = default_port

    hosts = _dedupe(hosts)
    if limit:
        hosts = _apply_limit(hosts, limit)
        if not hosts:
            raise InventoryError(f"--limit '{limit}' matched no hosts")
    return hosts


def parse_host_spec(spec: str) -> list[HostInfo]:
    """Parse a comma-separated ``host[:port]`` list."""
    hosts = []
    for part in spec.split(","):
        part = part.strip()
        if part:
            hostname, port = _split_host_port(part)
            hosts.append(HostInfo(hostname=hostname, port=port))
    return hosts


def host_from_label(label: str) -> HostInfo:
    """Turn a journal host label back into a HostInfo."""
    hostname, port = _split_host_port(label)
    return HostInfo(hostname=hostname, port=port)


def _split_host_port(s: str) -> tuple[str, int]:
    """Extract hostname and port from 'host:port', '[v6]:port' or plain 'host'."""
    m = re.match(r"^\[(.+)\](?::(\d+))?$", s)
    if m:
        return m.group(1), int(m.group(2) or DEFAULT_PORT)
    if s.count(":") == 1:
        hostname, port_s = s.split(":")
        if port_s.isdigit():
            return hostname, int(port_s)
    return s, DEFAULT_PORT


def _dedupe(hosts: list[HostInfo]) -> list[HostInfo]:
    seen: dict[tuple[str, int], HostInfo] = {}
    for h in hosts:
        key = (h.hostname, h.port)
        if key in seen:
            seen[key].groups.extend(g for g in h.groups if g not in seen[key].groups)
        else:
            seen[key] = h
    return list(seen.values())


def _parse_inventory(path_str: str) -> list[HostInfo]:
    """Auto-detect inventory format and parse."""
    p = Path(path_str)
    try:
        text = p.read_text()
    except OSError as exc:
        raise InventoryError(f"Cannot read inventory {path_str}: {exc}") from exc

    if p.suffix in (".yml", ".yaml"):
        return _parse_yaml_inventory(text)
    if re.search(r"^\[.+\]", text, re.MULTILINE):
        return _parse_ini_inventory(text)
    return _parse_plain_hostlist(text)


def _host_from_vars(name: str, hvars: dict, groups: list[str]) -> HostInfo:
    return HostInfo(
        hostname=str(hvars.get("ansible_host", name)),
        port=int(hvars.get("ansible_port", DEFAULT_PORT)),
        user=hvars.get("ansible_user"),
        key_path=hvars.get("ansible_ssh_private_key_file"),
        groups=groups,
    )


def _parse_ini_inventory(text: str) -> list[HostInfo]:
    """Parse Ansible INI-format inventory, including ``[group:vars]`` sections."""
    host_vars: dict[str, dict[str, str]] = {}
    host_groups: dict[str, list[str]] = {}
    group_vars: dict[str, dict[str, str]] = {}
    current_group = "ungrouped"
    section = "hosts"

    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue

        m = _GROUP_HEADER.match(line)
        if m:
            header = m.group(1)
            current_group, _, suffix = header.partition(":")
            section = suffix or "hosts"
            continue

        if section == "vars":
            key, _, value = line.partition("=")
            group_vars.setdefault(current_group, {})[key.strip()] = value.strip()
            continue
        if section == "children":
            continue

        parts = line.split()
        name = parts[0]
        host_vars.setdefault(name, {}).update(_parse_inline_vars(parts[1:]))
        groups = host_groups.setdefault(name, [])
        if current_group not in groups:
            groups.append(current_group)

    hosts = []
    for name, hvars in host_vars.items():
        merged: dict[str, str] = {}
        for group in host_groups[name]:
            merged.update(group_vars.get(group, {}))
        merged.update(hvars)
        hosts.append(_host_from_vars(name, merged, host_groups[name]))
    return hosts


def _parse_inline_vars(parts: list[str]) -> dict[str, str]:
    """Parse key=value pairs from an INI host line."""
    result = {}
    for p in parts:
        if "=" in p:
            k, v = p.split("=", 1)
            result[k] = v
    return result


def _parse_yaml_inventory(text: str) -> list[HostInfo]:
    """Parse Ansible YAML-format inventory."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InventoryError(f"Invalid YAML inventory: {exc}") from exc
    if not isinstance(data, dict):
        raise InventoryError("YAML inventory must be a mapping")

    hosts: list[HostInfo] = []
    root = data.get("all", data)
    _walk_yaml_group(root, "all", {}, hosts)
    return hosts


def _walk_yaml_group(node: dict, group_name: str, inherited: dict, hosts: list[HostInfo]) -> None:
    """Recursively walk YAML inventory groups, passing group vars down."""
    if not isinstance(node, dict):
        return
    gvars = {**inherited, **(node.get("vars") or {})}

    group_hosts = node.get("hosts") or {}
    if isinstance(group_hosts, dict):
        for name, vars_data in group_hosts.items():
            hvars = {**gvars, **(vars_data if isinstance(vars_data, dict) else {})}
            hosts.append(_host_from_vars(name, hvars, [group_name]))

    children = node.get("children") or {}
    if isinstance(children, dict):
        for child_name, child_data in children.items():
            _walk_yaml_group(child_data or {}, child_name, gvars, hosts)


def _parse_plain_hostlist(text: str) -> list[HostInfo]:
    """Parse a plain text file with one host per line."""
    hosts = []
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if line:
            hosts.extend(parse_host_spec(line))
    return hosts


def _apply_limit(hosts: list[HostInfo], limit: str) -> list[HostInfo]:
    """Filter hosts by comma-separated group names or hostname globs."""
    patterns = [p.strip() for p in limit.split(",") if p.strip()]
    return [
        h
        for h in hosts
        if any(p in h.groups or fnmatch.fnmatch(h.hostname, p) for p in patterns)
    ]
