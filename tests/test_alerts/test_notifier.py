"""Tests for AlertNotifier."""

import asyncio
import json
from datetime import timedelta

import pytest

from src.alerts.config import AlertConfig, ChannelConfig, default_alert_config
from src.alerts.dispatcher import NotificationDispatcher
from src.alerts.notifier import DISABLED_ALERT_ID, AlertNotifier
from src.alerts.repository import AlertStateRepository
from src.storage.json_store import PersistenceError


# ── Fixtures ────────────────────────────────────────────


@pytest.fixture
def repo(tmp_path):
    return AlertStateRepository(tmp_path / "alerts.json")


@pytest.fixture
def log_path(tmp_path):
    return tmp_path / "logs" / "alerts.log"


@pytest.fixture
def config(log_path) -> AlertConfig:
    """Default config with a misconfigured webhook enabled next to the log channel."""
    config = default_alert_config(log_file=str(log_path))
    config.channels["webhook"] = ChannelConfig(type="webhook", enabled=True, config={"url": ""})
    return config


@pytest.fixture
def notifier(repo, config, clock):
    return AlertNotifier(repo, NotificationDispatcher(), config=config, clock=clock)


# ── send_alert ──────────────────────────────────────────


class TestSendAlert:
    async def test_partial_failure_still_sent(self, notifier, log_path):
        """A failing webhook next to a working log channel yields a sent alert."""
        result = await notifier.send_alert("critical", "DB down", "Primary unreachable")

        assert result.success
        by_channel = {r.channel: r for r in result.results}
        assert set(by_channel) == {"webhook", "log"}
        assert by_channel["webhook"].success is False
        assert by_channel["webhook"].error == "Webhook URL is required"
        assert by_channel["log"].success is True

        alert = notifier.get_alert(result.alert_id)
        assert alert.status == "sent"
        assert alert.sent_at is not None
        assert alert.channels == ["webhook", "log"]

        stats = notifier.get_stats()
        assert stats.total == 1
        assert stats.by_status["sent"] == 1
        assert stats.by_severity["critical"] == 1
        assert stats.by_channel["log"] == 1
        assert stats.by_channel["webhook"] == 0
        assert stats.last_alert.id == result.alert_id

        assert "[CRITICAL] DB down: Primary unreachable (monitor)" in log_path.read_text()

    async def test_all_channels_fail(self, repo, clock):
        config = default_alert_config()
        config.channels["log"].enabled = False
        config.channels["webhook"] = ChannelConfig(
            type="webhook", enabled=True, config={"url": "ftp://nope"},
        )
        notifier = AlertNotifier(repo, config=config, clock=clock)

        result = await notifier.send_alert("high", "t", "m")

        assert not result.success
        alert = notifier.get_alert(result.alert_id)
        assert alert.status == "failed"
        assert alert.error == "Invalid webhook URL"
        assert alert.failed_at == clock.now
        assert notifier.get_stats().by_status["failed"] == 1

    async def test_no_routable_channel(self, repo, clock):
        config = default_alert_config()
        config.channels["log"].enabled = False
        notifier = AlertNotifier(repo, config=config, clock=clock)

        result = await notifier.send_alert("low", "t", "m")

        assert not result.success
        assert result.results == []
        alert = notifier.get_alert(result.alert_id)
        assert alert.status == "failed"
        assert alert.error == "No enabled channels for severity 'low'"

    async def test_disabled_is_a_no_op(self, notifier, repo):
        await notifier.set_enabled(False)
        before = json.loads(repo.path.read_text())

        result = await notifier.send_alert("critical", "t", "m")

        assert result.alert_id == DISABLED_ALERT_ID
        assert result.success is False
        assert result.results == []
        assert notifier.get_alerts() == []
        assert notifier.get_stats().total == 0
        assert json.loads(repo.path.read_text())["alerts"] == before["alerts"]

    async def test_invalid_severity(self, notifier):
        with pytest.raises(ValueError, match="Invalid severity"):
            await notifier.send_alert("urgent", "t", "m")

    async def test_metadata_and_source_recorded(self, notifier):
        result = await notifier.send_alert(
            "info", "t", "m", metadata={"host": "db-1"}, source="scheduler",
        )
        alert = notifier.get_alert(result.alert_id)
        assert alert.metadata == {"host": "db-1"}
        assert alert.source == "scheduler"

    async def test_channel_restriction(self, notifier):
        result = await notifier.send_alert("critical", "t", "m", channels=["log"])
        assert [r.channel for r in result.results] == ["log"]

    async def test_persisted(self, notifier, repo, config, clock):
        result = await notifier.send_alert("medium", "t", "m")

        reloaded = AlertNotifier(repo, clock=clock)
        assert reloaded.get_alert(result.alert_id).status == "sent"
        assert reloaded.get_stats().total == 1
        assert reloaded.get_config().to_dict() == config.to_dict()

    async def test_persistence_failure_is_not_fatal(self, notifier, repo, monkeypatch):
        async def failing_save(state):
            raise PersistenceError("read-only filesystem")

        monkeypatch.setattr(repo, "save", failing_save)
        result = await notifier.send_alert("info", "t", "m")
        assert result.success
        assert len(notifier.get_alerts()) == 1


# ── Routing ─────────────────────────────────────────────


class TestResolveChannels:
    def test_routing_intersect_enabled(self, notifier):
        assert notifier.resolve_channels("critical") == ["webhook", "log"]
        assert notifier.resolve_channels("medium") == ["log"]

    def test_email_enabled_but_skipped(self, notifier, config):
        config.channels["email"].enabled = True
        assert notifier.resolve_channels("critical") == ["webhook", "log"]

    def test_missing_routing_defaults_to_log(self, repo, clock):
        config = default_alert_config()
        config.severity_routing.pop("low")
        notifier = AlertNotifier(repo, config=config, clock=clock)
        assert notifier.resolve_channels("low") == ["log"]

    def test_restriction(self, notifier):
        assert notifier.resolve_channels("critical", ["slack", "log"]) == ["log"]


# ── Queries / administration ────────────────────────────


class TestHistory:
    async def test_get_alerts_newest_first(self, notifier, clock):
        ids = []
        for i in range(3):
            ids.append((await notifier.send_alert("info", f"a{i}", "m")).alert_id)
            clock.advance(1)

        assert [a.id for a in notifier.get_alerts()] == list(reversed(ids))
        assert [a.id for a in notifier.get_alerts(limit=2)] == [ids[2], ids[1]]

    async def test_acknowledge(self, notifier):
        result = await notifier.send_alert("high", "t", "m")

        assert await notifier.acknowledge_alert(result.alert_id) is True
        assert notifier.get_alert(result.alert_id).status == "acknowledged"
        stats = notifier.get_stats()
        assert stats.by_status["sent"] == 0
        assert stats.by_status["acknowledged"] == 1

        assert await notifier.acknowledge_alert(result.alert_id) is False
        assert await notifier.acknowledge_alert("alert-unknown") is False

    async def test_clear_old_alerts(self, notifier, clock):
        old = await notifier.send_alert("info", "old", "m")
        clock.advance(timedelta(days=8).total_seconds())
        recent = await notifier.send_alert("info", "recent", "m")

        removed = await notifier.clear_old_alerts(7)

        assert removed == 1
        assert [a.id for a in notifier.get_alerts()] == [recent.alert_id]
        assert notifier.get_alert(old.alert_id) is None
        assert notifier.get_stats().last24h == 1
        # Lifetime counters are not rewritten by purging
        assert notifier.get_stats().total == 2

    async def test_last24h_window(self, notifier, clock):
        await notifier.send_alert("info", "a", "m")
        clock.advance(timedelta(hours=25).total_seconds())
        await notifier.send_alert("info", "b", "m")
        assert notifier.get_stats().last24h == 1

    async def test_returned_alerts_are_copies(self, notifier):
        result = await notifier.send_alert("info", "t", "m")
        notifier.get_alert(result.alert_id).title = "changed"
        assert notifier.get_alert(result.alert_id).title == "t"


class TestConfigUpdates:
    async def test_update_accepts_camel_case(self, notifier):
        config = await notifier.update_config({"globalCooldown": 120})
        assert config.global_cooldown == 120
        assert notifier.get_config().global_cooldown == 120

    async def test_nested_values_replaced_wholesale(self, notifier):
        config = await notifier.update_config({"severity_routing": {"critical": ["log"]}})
        assert config.severity_routing == {"critical": ["log"]}

    async def test_unknown_key(self, notifier):
        with pytest.raises(ValueError, match="Unknown config fields"):
            await notifier.update_config({"volume": 11})

    async def test_invalid_value(self, notifier):
        with pytest.raises(ValueError):
            await notifier.update_config({"severityRouting": {"urgent": ["log"]}})
        assert "urgent" not in notifier.get_config().severity_routing

    async def test_get_config_is_a_copy(self, notifier):
        notifier.get_config().rules.clear()
        assert len(notifier.get_config().rules) == 4

    async def test_mark_rule_triggered(self, notifier, clock):
        assert await notifier.mark_rule_triggered("circuit-open") is True
        assert notifier.get_config().get_rule("circuit-open").last_triggered == clock.now
        assert await notifier.mark_rule_triggered("nope") is False

    async def test_queued_update_keeps_rule_stamp(self, notifier, clock):
        """A config update queued behind a rule stamp merges onto the stamped config."""
        async with notifier._lock:
            stamp = asyncio.create_task(notifier.mark_rule_triggered("circuit-open"))
            update = asyncio.create_task(notifier.update_config({"globalCooldown": 120}))
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        await asyncio.gather(stamp, update)

        config = notifier.get_config()
        assert config.global_cooldown == 120
        assert config.get_rule("circuit-open").last_triggered == clock.now


class TestChannelChecks:
    def test_validate_channels(self, notifier, config):
        config.channels["email"].enabled = True
        results = notifier.validate_channels()

        assert results["log"].valid
        assert not results["webhook"].valid
        assert results["webhook"].error == "Webhook URL is required"
        assert results["email"].error == "Channel 'email' is not implemented"

    async def test_test_alert_uses_enabled_channels(self, notifier):
        result = await notifier.test_alert()
        alert = notifier.get_alert(result.alert_id)

        assert result.success
        assert alert.severity == "info"
        assert alert.title == "Test Alert"
        assert alert.metadata == {"test": True}
        # Routing would only allow log for info; the test alert ignores it
        assert alert.channels == ["webhook", "log"]

    async def test_test_channel(self, notifier):
        assert await notifier.test_channel("log") is True
        assert await notifier.test_channel("webhook") is False
        assert await notifier.test_channel("email") is False
