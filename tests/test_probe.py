"""
Unit tests for probe handlers.

File-backed probes run through a LocalSession on tmp_path; systemd,
sysctl and command guards run through a FakeSession.
"""

import os
import pwd

import pytest

from conftest import FakeSession
from fleetguard._types import BaselineItem, ItemKind
from fleetguard.errors import CommandTimeout, ProbeError
from fleetguard.handlers.probe import desired_matches, probe_all, probe_item


def current_user() -> str:
    return pwd.getpwuid(os.getuid()).pw_name


@pytest.mark.unit
class TestKeyValueProbe:
    def test_reads_active_value(self, local_session, sshd_config) -> None:
        item = BaselineItem("r", ItemKind.KEY_VALUE, str(sshd_config), "no", options={"key": "PermitRootLogin"})
        result = probe_item(local_session, item, timeout=10)
        assert result.present
        assert result.current == "yes"
        assert result.meta == {"file_exists": True}
        assert result.raw == sshd_config.read_text()

    def test_lowercase_keyword(self, local_session, tmp_path) -> None:
        path = tmp_path / "sshd_config"
        path.write_text("permitrootlogin yes\n")
        options = {"key": "PermitRootLogin", "case_insensitive": True}
        item = BaselineItem("r", ItemKind.KEY_VALUE, str(path), "no", options=options)

        result = probe_item(local_session, item)

        assert result.current == "yes"
        assert not desired_matches(item, result.current)

    def test_missing_key(self, local_session, sshd_config) -> None:
        item = BaselineItem("r", ItemKind.KEY_VALUE, str(sshd_config), "3", options={"key": "MaxAuthTries"})
        result = probe_item(local_session, item)
        assert not result.present
        assert result.current is None
        assert result.meta == {"file_exists": True}

    def test_missing_file(self, local_session, tmp_path) -> None:
        item = BaselineItem("r", ItemKind.KEY_VALUE, str(tmp_path / "nope.conf"), "1", options={"key": "a"})
        result = probe_item(local_session, item)
        assert not result.present
        assert result.meta == {"file_exists": False}

    def test_trailing_newlines_preserved(self, local_session, tmp_path) -> None:
        path = tmp_path / "login.defs"
        path.write_text("PASS_MAX_DAYS 99999\n\n\n")
        item = BaselineItem("r", ItemKind.KEY_VALUE, str(path), "90", options={"key": "PASS_MAX_DAYS"})
        assert probe_item(local_session, item).raw == "PASS_MAX_DAYS 99999\n\n\n"

    def test_probe_does_not_modify(self, local_session, sshd_config) -> None:
        before = os.stat(sshd_config)
        item = BaselineItem("r", ItemKind.KEY_VALUE, str(sshd_config), "no", options={"key": "PermitRootLogin"})
        probe_item(local_session, item)
        after = os.stat(sshd_config)
        assert (before.st_mtime_ns, before.st_mode) == (after.st_mtime_ns, after.st_mode)


@pytest.mark.unit
class TestSysctlProbe:
    ITEM = BaselineItem("fwd", ItemKind.KEY_VALUE, "net.ipv4.ip_forward", "0", options={"via": "sysctl"})

    def test_value(self, fake_session) -> None:
        fake_session.on(r"^sysctl -n net\.ipv4\.ip_forward$", stdout="1")
        result = probe_item(fake_session, self.ITEM)
        assert result.current == "1"
        assert not desired_matches(self.ITEM, result.current)

    def test_whitespace_normalized(self, fake_session) -> None:
        item = BaselineItem("r", ItemKind.KEY_VALUE, "net.ipv4.ip_local_port_range", "32768 60999", options={"via": "sysctl"})
        fake_session.on(r"sysctl -n", stdout="32768\t60999")
        assert desired_matches(item, probe_item(fake_session, item).current)

    def test_unknown_parameter_is_absent(self, fake_session) -> None:
        fake_session.on(
            r"sysctl -n",
            exit_code=255,
            stderr="sysctl: cannot stat /proc/sys/net/ipv4/ip_forward: No such file or directory",
        )
        assert not probe_item(fake_session, self.ITEM).present

    def test_other_failure_raises(self, fake_session) -> None:
        fake_session.on(r"sysctl -n", exit_code=1, stderr="sysctl: weird")
        with pytest.raises(ProbeError):
            probe_item(fake_session, self.ITEM)


@pytest.mark.unit
class TestFileEditProbe:
    def test_content(self, local_session, tmp_path) -> None:
        path = tmp_path / "issue.net"
        path.write_text("Authorized use only\n")
        item = BaselineItem("b", ItemKind.FILE_EDIT, str(path), {"content": "Authorized use only\n"})
        result = probe_item(local_session, item)
        assert result.current == "Authorized use only\n"
        assert desired_matches(item, result.current)

    def test_block(self, local_session, tmp_path) -> None:
        path = tmp_path / "pwquality.conf"
        path.write_text("minlen = 8\n# BEGIN CIS\ndcredit = -1\n# END CIS\n")
        item = BaselineItem("b", ItemKind.FILE_EDIT, str(path), {"block": "dcredit = -1\n"}, options={"marker": "CIS"})
        result = probe_item(local_session, item)
        assert result.current == "dcredit = -1"
        assert desired_matches(item, result.current)

    def test_line_absent(self, local_session, tmp_path) -> None:
        path = tmp_path / "cis.rules"
        path.write_text("-w /etc/group -p wa -k identity\n")
        item = BaselineItem("l", ItemKind.FILE_EDIT, str(path), {"line": "-w /etc/passwd -p wa -k identity"})
        result = probe_item(local_session, item)
        assert result.present
        assert result.current is None

    def test_missing_file(self, local_session, tmp_path) -> None:
        item = BaselineItem("l", ItemKind.FILE_EDIT, str(tmp_path / "none"), {"content": "x"})
        assert not probe_item(local_session, item).present


@pytest.mark.unit
class TestPermissionProbe:
    def test_reports_mode_and_owner(self, local_session, tmp_path) -> None:
        path = tmp_path / "shadow"
        path.write_text("")
        os.chmod(path, 0o640)
        item = BaselineItem("p", ItemKind.PERMISSION, str(path), {"mode": "0640"})
        result = probe_item(local_session, item)
        assert result.current["mode"] == "0640"
        assert result.current["owner"] == current_user()
        assert desired_matches(item, result.current)

    def test_missing_path(self, local_session, tmp_path) -> None:
        item = BaselineItem("p", ItemKind.PERMISSION, str(tmp_path / "none"), {"mode": "0600"})
        assert not probe_item(local_session, item).present


@pytest.mark.unit
class TestServiceProbe:
    ITEM = BaselineItem("s", ItemKind.SERVICE, "auditd", {"enabled": True, "active": True})

    def test_state(self, fake_session) -> None:
        fake_session.on(r"is-enabled auditd", stdout="enabled").on(r"is-active auditd", stdout="inactive", exit_code=3)
        result = probe_item(fake_session, self.ITEM)
        assert result.current == {"enabled": True, "active": False, "masked": False}
        assert not desired_matches(self.ITEM, result.current)

    def test_masked(self, fake_session) -> None:
        fake_session.on(r"is-enabled", stdout="masked", exit_code=1).on(r"is-active", stdout="inactive", exit_code=3)
        result = probe_item(fake_session, self.ITEM)
        assert result.current["masked"] is True

    def test_unknown_unit_is_absent(self, fake_session) -> None:
        fake_session.on(r"is-enabled", stdout="", exit_code=1)
        assert not probe_item(fake_session, self.ITEM).present


@pytest.mark.unit
class TestCommandProbe:
    def test_guard_satisfied(self, fake_session) -> None:
        item = BaselineItem("c", ItemKind.COMMAND, "auditd", {"run": "apt-get install -y auditd", "unless": "dpkg -s auditd"})
        fake_session.on(r"^dpkg -s auditd$", exit_code=0)
        result = probe_item(fake_session, item)
        assert result.current == "satisfied"
        assert desired_matches(item, result.current)

    def test_no_guard(self, fake_session) -> None:
        item = BaselineItem("c", ItemKind.COMMAND, "x", {"run": "update-grub"})
        result = probe_item(fake_session, item)
        assert not result.comparable
        assert fake_session.commands == []


@pytest.mark.unit
class TestProbeAll:
    def test_mechanism_failure_is_recorded(self) -> None:
        session = FakeSession().on(r"sysctl", response=CommandTimeout("sysctl -n x", 5))
        items = [
            BaselineItem("fwd", ItemKind.KEY_VALUE, "net.ipv4.ip_forward", "0", options={"via": "sysctl"}),
            BaselineItem("c", ItemKind.COMMAND, "x", {"run": "true"}),
        ]
        results = probe_all(session, items, timeout=5)
        assert results["fwd"].failed
        assert "timed out" in results["fwd"].error
        assert not results["c"].failed
