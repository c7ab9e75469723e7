"""Tests for the persisted alert configuration model."""

import pytest
from pydantic import ValidationError

from src.alerts.config import (
    AgentStaleCondition,
    AlertConfig,
    NotificationSettings,
    RateCondition,
    ThresholdCondition,
    WebhookConfig,
    default_alert_config,
)


class TestDefaultConfig:
    def test_only_log_enabled(self):
        config = default_alert_config()
        assert config.enabled
        assert config.global_cooldown == 60
        assert config.enabled_channels() == ["log"]

    def test_default_rules(self):
        config = default_alert_config()
        assert [r.id for r in config.rules] == [
            "circuit-open",
            "agent-stale",
            "high-failure-rate",
            "stuck-queries",
        ]
        circuit = config.get_rule("circuit-open")
        assert circuit.severity == "critical"
        assert circuit.cooldown_seconds == 300
        assert circuit.actions[0].channels == ["slack", "log"]

        assert isinstance(config.get_rule("agent-stale").condition, AgentStaleCondition)
        rate = config.get_rule("high-failure-rate").condition
        assert isinstance(rate, RateCondition)
        assert rate.threshold == 0.5
        stuck = config.get_rule("stuck-queries").condition
        assert isinstance(stuck, ThresholdCondition)
        assert stuck.threshold == 3

    def test_routing(self):
        routing = default_alert_config().severity_routing
        assert routing["critical"] == ["slack", "webhook", "email", "log"]
        assert routing["info"] == ["log"]

    def test_log_file(self):
        config = default_alert_config(log_file="/var/log/swarm/alerts.log")
        assert config.channels["log"].config["path"] == "/var/log/swarm/alerts.log"
        assert "path" not in default_alert_config().channels["log"].config

    def test_get_rule_missing(self):
        assert default_alert_config().get_rule("nope") is None


class TestSerialization:
    def test_round_trip_camel_case(self):
        config = default_alert_config()
        data = config.to_dict()

        assert "globalCooldown" in data
        assert "severityRouting" in data
        rule = data["rules"][0]
        assert rule["cooldownSeconds"] == 300
        assert rule["actions"][0]["messageTemplate"].startswith("Circuit breaker")
        assert rule["condition"] == {"type": "circuit"}
        assert "lastTriggered" not in rule

        assert AlertConfig.from_dict(data).to_dict() == data

    def test_condition_discriminator(self):
        config = AlertConfig.from_dict({
            "rules": [{
                "id": "errors",
                "name": "Errors",
                "condition": {"type": "pattern", "metric": "last_error", "pattern": "BUSY"},
            }],
        })
        assert config.rules[0].condition.type == "pattern"
        assert config.rules[0].severity == "high"

    def test_unknown_condition_type_rejected(self):
        with pytest.raises(ValidationError):
            AlertConfig.from_dict({
                "rules": [{"id": "x", "name": "X", "condition": {"type": "moon_phase"}}],
            })


class TestValidation:
    def test_channel_key_must_match_type(self):
        with pytest.raises(ValidationError, match="declares type"):
            AlertConfig.from_dict({"channels": {"slack": {"type": "log"}}})

    def test_unknown_channel_key(self):
        with pytest.raises(ValidationError, match="Unknown channel type"):
            AlertConfig.from_dict({"channels": {"pager": {"type": "log"}}})

    def test_unknown_routing_severity(self):
        with pytest.raises(ValidationError, match="Unknown severities"):
            AlertConfig.from_dict({"severityRouting": {"urgent": ["log"]}})

    def test_unknown_routed_channel(self):
        with pytest.raises(ValidationError):
            AlertConfig.from_dict({"severityRouting": {"high": ["pager"]}})

    def test_only_notify_actions_accepted(self):
        rule = {
            "id": "x",
            "name": "X",
            "condition": {"type": "circuit"},
            "actions": [{"type": "terminate", "channels": ["log"]}],
        }
        with pytest.raises(ValidationError):
            AlertConfig.from_dict({"rules": [rule]})

        rule["actions"] = [{"channels": ["log"]}]
        assert AlertConfig.from_dict({"rules": [rule]}).rules[0].actions[0].type == "notify"

    def test_webhook_method_upper_cased(self):
        assert WebhookConfig(url="https://x.test", method="patch").method == "PATCH"
        with pytest.raises(ValidationError):
            WebhookConfig(url="https://x.test", method="DELETE")


class TestNotificationSettings:
    def test_defaults(self):
        settings = NotificationSettings()
        assert settings.channel_timeout_seconds == 5.0
        assert settings.alerts_file is None

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("NOTIFICATIONS_CHANNEL_TIMEOUT_SECONDS", "2.5")
        assert NotificationSettings().channel_timeout_seconds == 2.5
