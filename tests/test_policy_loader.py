"""Tests for policy file loading."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from imagegate.errors import PolicyError
from imagegate.models.model_policy import RuleAction
from imagegate.models.model_scan import ScanStatus, Severity
from imagegate.policy.loader import load_policy, policy_from_dict

YAML_POLICY = """
name: production
fail_closed: true
allow_list:
  - CVE-2023-0001
rules:
  - name: no-critical
    min_severity: CRITICAL
  - name: stale-fixable
    action: warn
    fixable_only: true
    max_age_days: 30
  - action: ignore
    scanner_status: [timed-out]
"""


class TestLoadPolicy:
    """Tests for load_policy."""

    def test_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_text(YAML_POLICY)

        policy = load_policy(path)

        assert policy.name == "production"
        assert policy.allow_list == ["CVE-2023-0001"]
        assert [r.name for r in policy.rules] == ["no-critical", "stale-fixable", "rule-3"]
        assert policy.rules[0].min_severity == Severity.CRITICAL
        assert policy.rules[1].action == RuleAction.WARN
        assert policy.rules[2].scanner_status == [ScanStatus.TIMED_OUT]

    def test_json(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"rules": [{"name": "ids", "vulnerability_ids": ["CVE-1"]}]}))

        policy = load_policy(path)

        assert policy.name == "default"
        assert policy.rules[0].vulnerability_ids == ["CVE-1"]

    def test_empty_file_is_default_policy(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("")

        policy = load_policy(path)

        assert policy.rules == []
        assert policy.fail_closed

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyError, match="not found"):
            load_policy(tmp_path / "nope.yaml")

    def test_unparseable_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("rules: [unclosed")
        with pytest.raises(PolicyError, match="Cannot parse"):
            load_policy(path)

    def test_not_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_bytes(b"name: \xff\xfe\n")
        with pytest.raises(PolicyError, match="Cannot read") as exc_info:
            load_policy(path)
        assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)

    def test_unreadable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_text("name: x\n")
        with patch.object(Path, "read_text", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(PolicyError, match="Cannot read"):
                load_policy(path)

    def test_invalid_severity(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("rules:\n  - min_severity: apocalyptic\n")
        with pytest.raises(PolicyError, match="Invalid policy"):
            load_policy(path)

    def test_rule_without_condition(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("rules:\n  - name: nothing\n    action: fail\n")
        with pytest.raises(PolicyError):
            load_policy(path)

    def test_error_context_names_source(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("- just a list\n")
        with pytest.raises(PolicyError) as exc_info:
            load_policy(path)
        assert exc_info.value.context["source"] == str(path)


class TestPolicyFromDict:
    """Tests for policy_from_dict."""

    def test_none_is_default(self) -> None:
        assert policy_from_dict(None).name == "default"

    def test_unknown_action(self) -> None:
        with pytest.raises(PolicyError):
            policy_from_dict({"rules": [{"action": "explode", "min_severity": "high"}]})
