"""Tests for the policy file loader."""

import pytest

from saasguard.config.loader import (
    ConfigurationError,
    expand_env_vars,
    load_policies,
    policy_warnings,
    validate_policy_config,
)
from saasguard.core.events.topics import Topic

POLICY_FILE = """
tenant_id: acme
policies:
  - name: Quarantine risky apps
    trigger: app.discovered
    conditions:
      risk_score:
        $gte: 70
    actions:
      - type: notify
        config:
          message: "{app_name} discovered"
          channel: "${ALERT_CHANNEL}"
      - type: block_app
    cooldown_minutes: 60
    max_executions_per_day: 20
  - name: Log SoD
    trigger: sod.violation_detected
    tenant_id: globex
    actions:
      - type: log
"""


@pytest.fixture
def policy_file(tmp_path):
    path = tmp_path / "policies.yaml"
    path.write_text(POLICY_FILE)
    return path


class TestExpandEnvVars:
    """Tests for environment variable expansion."""

    def test_expand_in_nested_values(self, monkeypatch):
        """Test variables inside dicts and lists are expanded."""
        monkeypatch.setenv("CHANNEL", "#security")
        result = expand_env_vars({"actions": [{"channel": "${CHANNEL}"}], "count": 3})
        assert result == {"actions": [{"channel": "#security"}], "count": 3}

    def test_missing_env_var(self, monkeypatch):
        """Test a missing variable expands to an empty string."""
        monkeypatch.delenv("SAASGUARD_MISSING_VAR", raising=False)
        assert expand_env_vars("x${SAASGUARD_MISSING_VAR}y") == "xy"


class TestValidatePolicyConfig:
    """Tests for single policy validation."""

    def valid(self, **overrides):
        config = {"name": "Watch", "trigger": "app.discovered", "actions": [{"type": "log"}]}
        config.update(overrides)
        return config

    def test_valid_policy(self):
        """Test a minimal policy passes."""
        validate_policy_config(self.valid())

    def test_missing_name(self):
        """Test the position is used when the name is missing."""
        with pytest.raises(ConfigurationError, match="Policy #3 is missing a name"):
            validate_policy_config(self.valid(name=None), index=2)

    def test_unknown_trigger(self):
        """Test triggers must be known topics."""
        with pytest.raises(ConfigurationError, match="Watch"):
            validate_policy_config(self.valid(trigger="app.exploded"))

    def test_empty_actions(self):
        """Test at least one action is required."""
        with pytest.raises(ConfigurationError, match="non-empty actions"):
            validate_policy_config(self.valid(actions=[]))

    def test_action_without_type(self):
        """Test every action names a type."""
        with pytest.raises(ConfigurationError, match="action 2 is missing a type"):
            validate_policy_config(self.valid(actions=[{"type": "log"}, {"config": {}}]))

    def test_conditions_must_be_mapping(self):
        """Test list conditions are rejected."""
        with pytest.raises(ConfigurationError, match="Conditions must be a mapping"):
            validate_policy_config(self.valid(conditions=["risk_score"]))

    @pytest.mark.parametrize("limit", ["cooldown_minutes", "max_executions_per_day"])
    def test_negative_limits(self, limit):
        """Test rate limits must be non-negative integers."""
        with pytest.raises(ConfigurationError, match=limit):
            validate_policy_config(self.valid(**{limit: -1}))


class TestLoadPolicies:
    """Tests for loading policy files."""

    def test_load_policy_file(self, policy_file, monkeypatch):
        """Test policies are built with tenants, limits and expanded values."""
        monkeypatch.setenv("ALERT_CHANNEL", "#sec-alerts")

        policies = load_policies(policy_file)

        quarantine, log_sod = policies
        assert quarantine.tenant_id == "acme"
        assert quarantine.trigger_type == Topic.APP_DISCOVERED
        assert quarantine.conditions == {"risk_score": {"$gte": 70}}
        assert [a.type for a in quarantine.actions] == ["notify", "block_app"]
        assert quarantine.actions[0].config["channel"] == "#sec-alerts"
        assert quarantine.cooldown_minutes == 60
        assert quarantine.max_executions_per_day == 20
        assert log_sod.tenant_id == "globex"
        assert log_sod.trigger_type == Topic.SOD_VIOLATION_DETECTED

    def test_tenant_override(self, policy_file):
        """Test an explicit tenant replaces every policy's tenant."""
        policies = load_policies(policy_file, tenant_id="initech")

        assert {p.tenant_id for p in policies} == {"initech"}

    def test_missing_file(self, tmp_path):
        """Test a missing file is reported."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_policies(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Test YAML syntax errors are reported."""
        path = tmp_path / "broken.yaml"
        path.write_text("policies: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_policies(path)

    def test_empty_file(self, tmp_path):
        """Test an empty file is rejected."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        with pytest.raises(ConfigurationError, match="empty"):
            load_policies(path)

    def test_policies_must_be_a_list(self, tmp_path):
        """Test the policies key holds a list."""
        path = tmp_path / "dict.yaml"
        path.write_text("policies:\n  name: Watch\n")

        with pytest.raises(ConfigurationError, match="'policies' list"):
            load_policies(path)

    def test_missing_tenant(self, tmp_path):
        """Test a policy without any tenant is rejected."""
        path = tmp_path / "no_tenant.yaml"
        path.write_text(
            "policies:\n  - name: Watch\n    trigger: app.discovered\n    actions:\n      - type: log\n"
        )

        with pytest.raises(ConfigurationError, match="tenant_id"):
            load_policies(path)


class TestPolicyWarnings:
    """Tests for non-fatal policy warnings."""

    def test_warnings(self, tmp_path):
        """Test unsupported operators and unknown actions are reported."""
        path = tmp_path / "warn.yaml"
        path.write_text(
            "tenant_id: acme\n"
            "policies:\n"
            "  - name: Regex\n"
            "    trigger: app.discovered\n"
            "    conditions:\n"
            "      app_name:\n"
            "        $regex: '^Acme'\n"
            "    actions:\n"
            "      - type: open_ticket\n"
        )
        policies = load_policies(path)

        warnings = policy_warnings(policies, ["log", "notify"])

        assert warnings == [
            "Policy 'Regex' uses unsupported operator '$regex' and will never match",
            "Policy 'Regex' uses unknown action type 'open_ticket'",
        ]

    def test_no_warnings(self, policy_file):
        """Test clean policies produce no warnings."""
        policies = load_policies(policy_file)

        assert policy_warnings(policies, ["notify", "block_app", "log"]) == []
