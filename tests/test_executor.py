"""
Unit tests for the Executor.

Covers atomic replacement (including a failing rename), probe-before-write,
idempotence and restoring snapshots through the same backends.
"""

import os

import pytest

from conftest import FailingMvSession, FakeSession
from fleetguard._types import Action, ActionKind, BaselineItem, ItemKind, Outcome, Snapshot
from fleetguard.errors import CommandTimeout, SessionError
from fleetguard.executor import Executor
from fleetguard.handlers.probe import probe_item
from fleetguard.reconcile import plan_item


def root_login(path) -> BaselineItem:
    return BaselineItem("ssh.root-login", ItemKind.KEY_VALUE, str(path), "no", options={"key": "PermitRootLogin"})


def planned(session, item) -> Action:
    return plan_item(item, probe_item(session, item))


def staged_leftovers(directory) -> list:
    return [p.name for p in directory.iterdir() if ".fleetguard." in p.name]


@pytest.mark.unit
class TestApplyFile:
    def test_modify_key(self, local_session, sshd_config) -> None:
        item = root_login(sshd_config)
        action = planned(local_session, item)
        assert action.kind == ActionKind.MODIFY

        execution = Executor(local_session, timeout=10).apply(item, action)

        assert execution.outcome == Outcome.APPLIED
        assert execution.prior.value == "yes"
        assert sshd_config.read_text() == (
            "# Authentication:\n#PermitRootLogin prohibit-password\nPermitRootLogin no\nPort 22\n"
        )
        assert staged_leftovers(sshd_config.parent) == []

    def test_second_pass_is_noop(self, local_session, sshd_config) -> None:
        item = root_login(sshd_config)
        executor = Executor(local_session, timeout=10)
        executor.apply(item, planned(local_session, item))
        content = sshd_config.read_text()

        action = planned(local_session, item)
        assert action.kind == ActionKind.NOOP
        assert executor.apply(item, action).outcome == Outcome.NOOP
        assert sshd_config.read_text() == content

    def test_mode_preserved(self, local_session, sshd_config) -> None:
        os.chmod(sshd_config, 0o600)
        item = root_login(sshd_config)
        Executor(local_session, timeout=10).apply(item, planned(local_session, item))
        assert os.stat(sshd_config).st_mode & 0o777 == 0o600

    def test_create_file(self, local_session, tmp_path) -> None:
        path = tmp_path / "99-cis.conf"
        item = BaselineItem(
            "sysctl.persist",
            ItemKind.FILE_EDIT,
            str(path),
            {"content": "net.ipv4.ip_forward = 0\n"},
            options={"mode": "0640"},
        )
        action = planned(local_session, item)
        assert action.kind == ActionKind.CREATE

        execution = Executor(local_session, timeout=10).apply(item, action)

        assert execution.outcome == Outcome.APPLIED
        assert execution.prior.present is False
        assert path.read_text() == "net.ipv4.ip_forward = 0\n"
        assert os.stat(path).st_mode & 0o777 == 0o640

    def test_failed_rename_leaves_target_untouched(self, sshd_config) -> None:
        session = FailingMvSession(timeout=10)
        item = root_login(sshd_config)
        before = sshd_config.read_text()

        execution = Executor(session, timeout=10).apply(item, planned(session, item))

        assert execution.outcome == Outcome.FAILED
        assert execution.reason.startswith("ExitCode=1")
        assert execution.prior.value == "yes"
        assert sshd_config.read_text() == before
        assert staged_leftovers(sshd_config.parent) == []

    def test_lowercase_keyword_replaced(self, local_session, tmp_path) -> None:
        path = tmp_path / "sshd_config"
        path.write_text("permitrootlogin yes\nPort 22\n")
        item = BaselineItem(
            "ssh.root-login",
            ItemKind.KEY_VALUE,
            str(path),
            "no",
            options={"key": "PermitRootLogin", "case_insensitive": True},
        )
        executor = Executor(local_session, timeout=10)

        assert executor.apply(item, planned(local_session, item)).outcome == Outcome.APPLIED
        assert path.read_text() == "PermitRootLogin no\nPort 22\n"
        assert planned(local_session, item).kind == ActionKind.NOOP

    def test_converged_since_planning(self, local_session, sshd_config) -> None:
        item = root_login(sshd_config)
        action = planned(local_session, item)
        sshd_config.write_text("PermitRootLogin no\n")

        execution = Executor(local_session, timeout=10).apply(item, action)

        assert execution.outcome == Outcome.NOOP
        assert execution.reason == "already at desired state"

    def test_unsupported_is_skipped(self, local_session, sshd_config) -> None:
        item = root_login(sshd_config)
        action = Action(item.id, ActionKind.UNSUPPORTED, None, "no", "target absent")
        execution = Executor(local_session).apply(item, action)
        assert execution.outcome == Outcome.SKIPPED
        assert execution.reason == "unsupported: target absent"

    def test_large_file(self, local_session, tmp_path) -> None:
        path = tmp_path / "sshd_config"
        filler = "".join(f"# padding line {n:05d} to push the file past the argument limit\n" for n in range(4000))
        path.write_text(filler + "PermitRootLogin yes\n")
        assert path.stat().st_size > 128 * 1024
        item = root_login(path)

        execution = Executor(local_session, timeout=10).apply(item, planned(local_session, item))

        assert execution.outcome == Outcome.APPLIED
        assert path.read_text() == filler + "PermitRootLogin no\n"

    def test_non_utf8_bytes_preserved(self, local_session, tmp_path) -> None:
        path = tmp_path / "sshd_config"
        path.write_bytes(b"# Caf\xe9 comment\nPermitRootLogin yes\n")
        item = root_login(path)
        executor = Executor(local_session, timeout=10)

        applied = executor.apply(item, planned(local_session, item))
        assert path.read_bytes() == b"# Caf\xe9 comment\nPermitRootLogin no\n"

        executor.restore(item, applied.prior)
        assert path.read_bytes() == b"# Caf\xe9 comment\nPermitRootLogin yes\n"

    def test_content_sent_on_stdin(self) -> None:
        session = FakeSession().on(r"printf \. ", stdout="PermitRootLogin yes\n.")
        session.on(r"^tmp=\$\(mktemp", stdout="/etc/ssh/.sshd_config.fleetguard.abc123")
        item = root_login("/etc/ssh/sshd_config")

        Executor(session).apply(item, planned(session, item))

        staged = session.commands.index(session.ran(r"^tmp=")[0])
        assert session.inputs[staged] == "PermitRootLogin no\n"
        assert "PermitRootLogin" not in session.commands[staged]


@pytest.mark.unit
class TestApplyViaCommands:
    def test_service_flags_in_order(self) -> None:
        session = (
            FakeSession()
            .on(r"is-enabled", stdout="masked", exit_code=1)
            .on(r"is-active", stdout="inactive", exit_code=3)
        )
        item = BaselineItem("svc", ItemKind.SERVICE, "auditd", {"enabled": True, "active": True, "masked": False})

        execution = Executor(session).apply(item, planned(session, item))

        assert execution.outcome == Outcome.APPLIED
        assert session.ran(r"^systemctl (unmask|enable|start|stop|mask|disable) ") == [
            "systemctl unmask auditd",
            "systemctl enable auditd",
            "systemctl start auditd",
        ]
        assert execution.prior.value == {"enabled": False, "active": False, "masked": True}

    def test_sysctl(self) -> None:
        session = FakeSession().on(r"^sysctl -n", stdout="1")
        item = BaselineItem("fwd", ItemKind.KEY_VALUE, "net.ipv4.ip_forward", "0", options={"via": "sysctl"})

        execution = Executor(session).apply(item, planned(session, item))

        assert execution.outcome == Outcome.APPLIED
        assert session.ran(r"^sysctl -w") == ["sysctl -w net.ipv4.ip_forward=0"]

    def test_permission(self) -> None:
        session = FakeSession().on(r"stat -c", stdout="root root 644")
        item = BaselineItem("p", ItemKind.PERMISSION, "/etc/shadow", {"mode": "0640", "group": "shadow"})

        execution = Executor(session).apply(item, planned(session, item))

        assert execution.outcome == Outcome.APPLIED
        assert session.ran(r"^(chown|chmod)") == ["chown :shadow -- /etc/shadow", "chmod 0640 -- /etc/shadow"]

    def test_permission_denied(self) -> None:
        session = (
            FakeSession()
            .on(r"stat -c", stdout="root root 644")
            .on(r"^chmod", exit_code=1, stderr="chmod: changing permissions of '/etc/shadow': Operation not permitted")
        )
        item = BaselineItem("p", ItemKind.PERMISSION, "/etc/shadow", {"mode": "0640"})

        execution = Executor(session).apply(item, planned(session, item))

        assert execution.outcome == Outcome.FAILED
        assert execution.reason.startswith("PermissionDenied")

    def test_timeout(self) -> None:
        session = (
            FakeSession()
            .on(r"is-enabled", stdout="disabled", exit_code=1)
            .on(r"is-active", stdout="inactive", exit_code=3)
            .on(r"^systemctl enable", response=CommandTimeout("systemctl enable auditd", 10))
        )
        item = BaselineItem("svc", ItemKind.SERVICE, "auditd", {"enabled": True})

        execution = Executor(session, timeout=10).apply(item, planned(session, item))

        assert execution.outcome == Outcome.FAILED
        assert execution.reason.startswith("Timeout")

    def test_lost_connection_fails_item(self) -> None:
        session = (
            FakeSession()
            .on(r"^sysctl -n", stdout="1")
            .on(r"^sysctl -w", response=SessionError("web-01: SSH session not active"))
        )
        item = BaselineItem("fwd", ItemKind.KEY_VALUE, "net.ipv4.ip_forward", "0", options={"via": "sysctl"})

        execution = Executor(session, timeout=10).apply(item, planned(session, item))

        assert execution.outcome == Outcome.FAILED
        assert execution.reason == "SessionError: web-01: SSH session not active"

    def test_command_guard(self) -> None:
        session = FakeSession().on(r"^dpkg -s auditd$", exit_code=1)
        item = BaselineItem("pkg", ItemKind.COMMAND, "auditd", {"run": "apt-get install -y auditd", "unless": "dpkg -s auditd"})

        execution = Executor(session).apply(item, planned(session, item))

        assert execution.outcome == Outcome.APPLIED
        assert session.ran(r"^apt-get") == ["apt-get install -y auditd"]
        assert execution.prior.capturable is False

    def test_reload_after_config_change(self) -> None:
        session = FakeSession().on(r"printf \. ", stdout="PermitRootLogin yes\n.")
        session.on(r"^tmp=\$\(mktemp", stdout="/etc/ssh/.sshd_config.fleetguard.abc123")
        item = BaselineItem(
            "r", ItemKind.KEY_VALUE, "/etc/ssh/sshd_config", "no", options={"key": "PermitRootLogin", "reload": "ssh"}
        )

        Executor(session).apply(item, planned(session, item))

        assert session.ran(r"^mv -f") == ["mv -f -- /etc/ssh/.sshd_config.fleetguard.abc123 /etc/ssh/sshd_config"]
        assert session.ran(r"^systemctl reload") == ["systemctl reload ssh 2>/dev/null || systemctl restart ssh"]


@pytest.mark.unit
class TestRestore:
    def test_restores_prior_value(self, local_session, sshd_config) -> None:
        item = root_login(sshd_config)
        executor = Executor(local_session, timeout=10)
        applied = executor.apply(item, planned(local_session, item))

        execution = executor.restore(item, applied.prior)

        assert execution.outcome == Outcome.APPLIED
        assert execution.prior.value == "no"
        assert "PermitRootLogin yes" in sshd_config.read_text()

    def test_removes_created_key(self, local_session, tmp_path) -> None:
        path = tmp_path / "sshd_config"
        path.write_text("Port 22\n")
        item = BaselineItem("t", ItemKind.KEY_VALUE, str(path), "3", options={"key": "MaxAuthTries"})
        executor = Executor(local_session, timeout=10)
        applied = executor.apply(item, planned(local_session, item))
        assert path.read_text() == "Port 22\nMaxAuthTries 3\n"

        executor.restore(item, applied.prior)

        assert path.read_text() == "Port 22\n"

    def test_removes_created_file(self, local_session, tmp_path) -> None:
        path = tmp_path / "pwquality.conf"
        item = BaselineItem("q", ItemKind.KEY_VALUE, str(path), "12", options={"key": "minlen", "separator": " = "})
        executor = Executor(local_session, timeout=10)
        applied = executor.apply(item, planned(local_session, item))
        assert path.read_text() == "minlen = 12\n"

        assert executor.restore(item, applied.prior).outcome == Outcome.APPLIED
        assert not path.exists()

    def test_already_at_prior(self, local_session, sshd_config) -> None:
        item = root_login(sshd_config)
        prior = Snapshot(present=True, value="yes", meta={"file_exists": True})
        execution = Executor(local_session).restore(item, prior)
        assert execution.outcome == Outcome.NOOP

    def test_not_reversible(self, fake_session) -> None:
        item = BaselineItem("c", ItemKind.COMMAND, "x", {"run": "update-grub"})
        execution = Executor(fake_session).restore(item, Snapshot(present=True, value=None, capturable=False))
        assert execution.outcome == Outcome.SKIPPED
        assert execution.reason == "not reversible"
        assert fake_session.commands == []
