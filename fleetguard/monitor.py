"""Host resource monitoring with threshold alerts.

Samples CPU, memory and root filesystem usage plus failed systemd units
through the same sessions used for reconciliation. A sample crossing a
threshold produces one alert listing every breach.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fleetguard import shell_util
from fleetguard.errors import ProbeError

if TYPE_CHECKING:
    from fleetguard.notify import MailNotifier, NullNotifier
    from fleetguard.sessions import Session

logger = logging.getLogger(__name__)

_CPU_IDLE_RE = re.compile(r"([\d.,]+)\s*id\b")


@dataclass
class Thresholds:
    """Alert thresholds in percent."""

    cpu: float = 80.0
    memory: float = 85.0
    disk: float = 90.0

    @classmethod
    def from_settings(cls, settings) -> Thresholds:
        return cls(cpu=settings.cpu_threshold, memory=settings.memory_threshold, disk=settings.disk_threshold)


@dataclass
class ResourceSample:
    """One monitoring sample for one host."""

    host: str
    cpu: float | None = None
    memory: float | None = None
    disk: float | None = None
    failed_units: list[str] = field(default_factory=list)
    alerts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "host": self.host,
            "cpu": self.cpu,
            "memory": self.memory,
            "disk": self.disk,
            "failed_units": list(self.failed_units),
            "alerts": list(self.alerts),
            "errors": list(self.errors),
        }


# ── Output parsers ────────────────────────────────────────────────────────


def parse_cpu(top_output: str) -> float | None:
    """CPU busy percent from the ``Cpu(s)`` line of ``top -bn1``."""
    for line in top_output.splitlines():
        if "Cpu(s)" in line:
            m = _CPU_IDLE_RE.search(line)
            if m:
                return round(100.0 - float(m.group(1).replace(",", ".")), 1)
    return None


def parse_memory(free_output: str) -> float | None:
    """Used memory percent from ``free`` output."""
    for line in free_output.splitlines():
        parts = line.split()
        if parts and parts[0] == "Mem:" and len(parts) >= 3:
            total, used = int(parts[1]), int(parts[2])
            return round(used * 100.0 / total, 1) if total else None
    return None


def parse_disk(df_output: str) -> float | None:
    """Use percent of the filesystem in ``df -P`` output."""
    lines = df_output.strip().splitlines()
    if len(lines) < 2:
        return None
    parts = lines[1].split()
    if len(parts) < 5 or not parts[4].endswith("%"):
        return None
    return float(parts[4].rstrip("%"))


def parse_failed_units(output: str) -> list[str]:
    """Unit names from ``systemctl --failed --no-legend --plain``."""
    units = []
    for line in output.splitlines():
        parts = line.replace("●", " ").split()
        if parts:
            units.append(parts[0])
    return units


class ResourceMonitor:
    """Samples one host's resources and alerts on threshold breaches."""

    def __init__(
        self,
        session: Session,
        thresholds: Thresholds | None = None,
        notifier: MailNotifier | NullNotifier | None = None,
        *,
        timeout: float = 30,
    ):
        self.session = session
        self.thresholds = thresholds or Thresholds()
        self.notifier = notifier
        self.timeout = timeout

    def _read(self, cmd: str, sample: ResourceSample, what: str) -> str | None:
        try:
            result = shell_util.run_probe(self.session, cmd, timeout=self.timeout)
        except ProbeError as exc:
            sample.errors.append(f"{what}: {exc}")
            return None
        if not result.ok:
            sample.errors.append(f"{what}: exit {result.exit_code}: {result.stderr.strip()}")
            return None
        return result.stdout

    def sample(self) -> ResourceSample:
        """Take one sample and send an alert if any threshold is exceeded."""
        s = ResourceSample(host=self.session.host_id)

        out = self._read("top -bn1 | head -n 5", s, "cpu")
        s.cpu = parse_cpu(out) if out is not None else None
        out = self._read("free", s, "memory")
        s.memory = parse_memory(out) if out is not None else None
        out = self._read("df -P /", s, "disk")
        s.disk = parse_disk(out) if out is not None else None
        out = self._read("systemctl --failed --no-legend --plain", s, "services")
        s.failed_units = parse_failed_units(out) if out else []

        for name, value, limit in (
            ("CPU", s.cpu, self.thresholds.cpu),
            ("Memory", s.memory, self.thresholds.memory),
            ("Disk", s.disk, self.thresholds.disk),
        ):
            if value is not None and value > limit:
                s.alerts.append(f"High {name.lower()} usage: {value:.0f}% (threshold {limit:.0f}%)")
        if s.failed_units:
            s.alerts.append(f"{len(s.failed_units)} failed service(s): {', '.join(s.failed_units)}")

        for error in s.errors:
            logger.warning("%s: %s", s.host, error)
        logger.info("%s: cpu=%s memory=%s disk=%s failed=%d", s.host, s.cpu, s.memory, s.disk, len(s.failed_units))

        if s.alerts:
            for alert in s.alerts:
                logger.warning("ALERT %s: %s", s.host, alert)
            if self.notifier is not None:
                self.notifier.notify(f"fleetguard: resource alert on {s.host}", "\n".join(s.alerts) + "\n")
        return s
