"""
Unit tests for baseline loading and validation.

A baseline either loads completely or raises ParseError listing every
problem; nothing partial is ever returned.
"""

from pathlib import Path

import pytest

from conftest import baseline_yaml
from fleetguard._types import ItemKind
from fleetguard.baseline import load_baseline, parse_baseline
from fleetguard.errors import ParseError

SHIPPED_BASELINE = Path(__file__).resolve().parent.parent / "baselines" / "cis-debian-l1.yml"


def issue_codes(exc: ParseError) -> list:
    return [i.code for i in exc.issues]


@pytest.mark.unit
class TestParseValid:
    """Well-formed documents."""

    def test_items_and_options(self) -> None:
        bl = parse_baseline(
            baseline_yaml(
                """
                - id: ssh.root-login
                  kind: key_value
                  target: /etc/ssh/sshd_config
                  key: PermitRootLogin
                  desired: "no"
                  reload: ssh
                """
            )
        )
        assert bl.name == "test"
        assert bl.version == 1
        assert len(bl) == 1
        item = bl.items[0]
        assert item.kind == ItemKind.KEY_VALUE
        assert item.option("key") == "PermitRootLogin"
        assert item.option("reload") == "ssh"
        assert item.desired == "no"

    def test_integer_key_value_is_string(self) -> None:
        bl = parse_baseline(
            baseline_yaml(
                """
                - id: fwd
                  kind: key_value
                  via: sysctl
                  target: net.ipv4.ip_forward
                  desired: 0
                """
            )
        )
        assert bl.items[0].desired == "0"

    def test_service_shorthand_expanded(self) -> None:
        bl = parse_baseline(
            baseline_yaml(
                """
                - id: svc
                  kind: service
                  target: auditd
                  desired: running
                """
            )
        )
        assert bl.items[0].desired == {"enabled": True, "active": True}

    def test_name_defaults_to_file_stem(self, tmp_path) -> None:
        path = tmp_path / "web-hardening.yml"
        path.write_text("version: 1\nitems: []\n")
        assert load_baseline(path).name == "web-hardening"

    def test_shipped_baseline_loads(self) -> None:
        bl = load_baseline(SHIPPED_BASELINE)
        assert bl.name == "cis-debian-l1"
        assert bl.get("ssh.permit-root-login").desired == "no"
        assert bl.get("ssh.max-auth-tries").desired == "3"
        ssh_items = [i for i in bl.items if i.target == "/etc/ssh/sshd_config" and i.kind.value == "key_value"]
        assert ssh_items and all(i.option("case_insensitive") is True for i in ssh_items)


@pytest.mark.unit
class TestVariables:
    """{{ var }} substitution inside desired values."""

    DOC = baseline_yaml(
        """
        - id: tries
          kind: key_value
          target: /etc/ssh/sshd_config
          key: MaxAuthTries
          desired: "{{ max_tries }}"
        - id: banner
          kind: file_edit
          target: /etc/issue.net
          desired:
            content: "Authorized use only ({{ org }})\\n"
        """
    ).replace("items:", "variables:\n  max_tries: 3\n  org: acme\nitems:")

    def test_document_variables(self) -> None:
        bl = parse_baseline(self.DOC)
        assert bl.get("tries").desired == "3"
        assert bl.get("banner").desired == {"content": "Authorized use only (acme)\n"}

    def test_overrides_win(self) -> None:
        bl = parse_baseline(self.DOC, overrides={"max_tries": "5"})
        assert bl.get("tries").desired == "5"

    def test_undefined_variable(self) -> None:
        doc = baseline_yaml(
            """
            - id: tries
              kind: key_value
              target: /etc/ssh/sshd_config
              key: MaxAuthTries
              desired: "{{ nope }}"
            """
        )
        with pytest.raises(ParseError) as exc_info:
            parse_baseline(doc)
        assert issue_codes(exc_info.value) == ["undefined-variable"]


@pytest.mark.unit
class TestParseInvalid:
    """Every malformed baseline raises ParseError."""

    def test_not_yaml(self) -> None:
        with pytest.raises(ParseError, match="failed to parse YAML"):
            parse_baseline("items: [unclosed")

    def test_not_a_mapping(self) -> None:
        with pytest.raises(ParseError, match="not a YAML mapping"):
            parse_baseline("- just\n- a list\n")

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ParseError, match="Cannot read baseline"):
            load_baseline(tmp_path / "missing.yml")

    def test_schema_violation(self) -> None:
        doc = baseline_yaml(
            """
            - id: a
              kind: teleport
              target: /x
              desired: 1
            """
        )
        with pytest.raises(ParseError) as exc_info:
            parse_baseline(doc)
        assert "schema" in issue_codes(exc_info.value)

    def test_unsupported_version(self) -> None:
        with pytest.raises(ParseError, match="unsupported baseline version"):
            parse_baseline("version: 2\nitems: []\n")

    def test_duplicate_id(self) -> None:
        doc = baseline_yaml(
            """
            - id: a
              kind: service
              target: ssh
              desired: running
            - id: a
              kind: service
              target: cron
              desired: running
            """
        )
        with pytest.raises(ParseError) as exc_info:
            parse_baseline(doc)
        assert issue_codes(exc_info.value) == ["duplicate-id"]

    def test_unknown_dependency(self) -> None:
        doc = baseline_yaml(
            """
            - id: a
              kind: service
              target: ssh
              desired: running
              depends_on: [ghost]
            """
        )
        with pytest.raises(ParseError) as exc_info:
            parse_baseline(doc)
        assert issue_codes(exc_info.value) == ["unknown-dependency"]

    def test_cycle(self) -> None:
        doc = baseline_yaml(
            """
            - id: a
              kind: service
              target: ssh
              desired: running
              depends_on: [b]
            - id: b
              kind: service
              target: cron
              desired: running
              depends_on: [a]
            """
        )
        with pytest.raises(ParseError) as exc_info:
            parse_baseline(doc)
        assert issue_codes(exc_info.value) == ["cycle"]

    def test_every_issue_reported(self) -> None:
        doc = baseline_yaml(
            """
            - id: a
              kind: key_value
              target: relative/path
              desired: "no"
            - id: b
              kind: permission
              target: /etc/shadow
              desired: {mode: 600}
            """
        )
        with pytest.raises(ParseError) as exc_info:
            parse_baseline(doc)
        messages = [i.message for i in exc_info.value.issues]
        assert len(messages) == 3
        assert any("absolute path" in m for m in messages)
        assert any("need a 'key'" in m for m in messages)
        assert any("quoted octal" in m for m in messages)

    def test_file_edit_needs_one_mode(self) -> None:
        doc = baseline_yaml(
            """
            - id: a
              kind: file_edit
              target: /etc/motd
              desired: {content: "x", line: "y"}
            """
        )
        with pytest.raises(ParseError, match="baseline is invalid"):
            parse_baseline(doc)

    def test_masked_service_cannot_be_active(self) -> None:
        doc = baseline_yaml(
            """
            - id: a
              kind: service
              target: telnet
              desired: {masked: true, active: true}
            """
        )
        with pytest.raises(ParseError) as exc_info:
            parse_baseline(doc)
        assert issue_codes(exc_info.value) == ["desired-type"]

    def test_command_needs_run(self) -> None:
        doc = baseline_yaml(
            """
            - id: a
              kind: command
              target: thing
              desired: {unless: "true"}
            """
        )
        with pytest.raises(ParseError):
            parse_baseline(doc)
