"""Tests for monitor service wiring and lifecycle."""

import asyncio
import json

import pytest

from src.alerts.config import NotificationSettings
from src.alerts.triggers import MetricsSnapshot
from src.services.monitor_service import MonitorService, build_monitor_services


@pytest.fixture
def services(test_settings, clock):
    return build_monitor_services(
        test_settings,
        notification_settings=NotificationSettings(),
        clock=clock,
    )


class TestBuildServices:
    def test_components_share_state_dir(self, services, state_dir):
        assert services.tracker is services.rule_engine._tracker
        assert services.registry is services.rule_engine._registry
        config = services.notifier.get_config()
        assert config.enabled_channels() == ["log"]
        assert config.channels["log"].config["path"] == str(state_dir / "logs" / "alerts.log")

    async def test_persisted_config_is_authoritative(self, services, test_settings, clock):
        await services.notifier.update_config({"globalCooldown": 5})

        rebuilt = build_monitor_services(
            test_settings, notification_settings=NotificationSettings(), clock=clock,
        )
        assert rebuilt.notifier.get_config().global_cooldown == 5

    def test_alerts_file_override(self, test_settings, tmp_path, clock):
        path = tmp_path / "elsewhere" / "alerts.json"
        built = build_monitor_services(
            test_settings,
            notification_settings=NotificationSettings(alerts_file=path),
            clock=clock,
        )
        assert built.notifier._repository.path == path

    def test_corrupt_config_raises(self, test_settings, state_dir):
        state_dir.mkdir(parents=True)
        test_settings.alerts_state_path.write_text(json.dumps({
            "alerts": [],
            "config": {"severityRouting": {"urgent": ["log"]}},
        }))
        with pytest.raises(ValueError):
            build_monitor_services(test_settings, notification_settings=NotificationSettings())


class TestRunOnce:
    async def test_fires_for_open_circuit(self, services, state_dir):
        breaker = services.registry.get("mcp")
        breaker.force_open("server unreachable")

        firings = await MonitorService(services).run_once()

        assert [f.rule_id for f in firings] == ["circuit-open"]
        log_text = (state_dir / "logs" / "alerts.log").read_text()
        assert "Circuit breaker 'mcp' has opened" in log_text

    async def test_async_metrics_provider(self, services):
        async def provider():
            return MetricsSnapshot(metrics={"stuck_query_count": 7}, context={"timeout": 60})

        firings = await MonitorService(services, metrics_provider=provider).run_once()
        assert firings[0].message == "7 queries have been running longer than 60 seconds"

    async def test_rules_see_stale_agent_before_sweep(self, services, clock):
        tracker = services.tracker
        await tracker.register_agent("a1", "coder", heartbeat_timeout=300)
        await tracker.assign_task("a1", "t-1", "Long task")
        clock.advance(301)

        firings = await MonitorService(services).run_once()

        assert [f.rule_id for f in firings] == ["agent-stale"]
        assert tracker.get_agent("a1").status == "failed"

    async def test_sweep_waits_for_its_interval(self, services, clock):
        service = MonitorService(services, sweep_interval_ms=60_000)
        await service.run_once()

        tracker = services.tracker
        await tracker.register_agent("a1", "coder", heartbeat_timeout=30)
        await tracker.assign_task("a1", "t-1", "Long task")
        clock.advance(31)

        await service.run_once()
        assert tracker.get_agent("a1").status == "active"

    async def test_provider_error_is_swallowed(self, services):
        def provider():
            raise RuntimeError("metrics backend down")

        assert await MonitorService(services, metrics_provider=provider).run_once() == []


class TestLifecycle:
    async def test_start_and_stop(self, services):
        service = MonitorService(services, evaluation_interval=0.01, sweep_interval_ms=100)

        task = asyncio.create_task(service.start())
        await asyncio.sleep(0.05)
        assert service.is_running

        await service.stop()
        await asyncio.wait_for(task, timeout=1)

        assert not service.is_running

    async def test_stale_agent_alerted_before_sweep_fails_it(self, services, clock):
        tracker = services.tracker
        await tracker.register_agent("a1", "coder", heartbeat_timeout=300)
        await tracker.assign_task("a1", "t-1", "Long task")

        service = MonitorService(services, evaluation_interval=0.05, sweep_interval_ms=100)
        task = asyncio.create_task(service.start())
        await asyncio.sleep(0.02)
        clock.advance(301)

        for _ in range(50):
            await asyncio.sleep(0.02)
            if tracker.get_agent("a1").status == "failed":
                break
        await service.stop()
        await asyncio.wait_for(task, timeout=1)

        assert tracker.get_agent("a1").status == "failed"
        titles = [a.title for a in services.notifier.get_alerts()]
        assert "Agent Stale Detection" in titles

    async def test_second_start_is_no_op(self, services):
        service = MonitorService(services, evaluation_interval=0.01)
        task = asyncio.create_task(service.start())
        await asyncio.sleep(0.02)

        await asyncio.wait_for(service.start(), timeout=1)

        await service.stop()
        await asyncio.wait_for(task, timeout=1)
