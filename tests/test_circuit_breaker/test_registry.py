"""Tests for CircuitBreakerRegistry and circuit presets."""

import pytest

from src.circuit_breaker.config import CIRCUIT_PRESETS, CircuitBreakerConfig, get_circuit_config
from src.circuit_breaker.registry import CircuitBreakerRegistry
from src.circuit_breaker.schemas import CircuitState


@pytest.fixture
def registry(clock):
    return CircuitBreakerRegistry(
        default_config=CircuitBreakerConfig(failure_threshold=2, cooldown_seconds=30),
        clock=clock,
    )


class TestRegistry:
    def test_get_creates_lazily(self, registry):
        assert "sqlite" not in registry
        breaker = registry.get("sqlite")
        assert "sqlite" in registry
        assert registry.get("sqlite") is breaker
        assert len(registry) == 1

    def test_explicit_config_only_used_on_creation(self, registry):
        strict = get_circuit_config("strict")
        breaker = registry.get("mcp", config=strict)
        assert breaker.config.failure_threshold == 3

        again = registry.get("mcp", config=CircuitBreakerConfig(failure_threshold=99))
        assert again.config.failure_threshold == 3

    def test_count_by_state_includes_all_states(self, registry, clock):
        registry.get("a")
        b = registry.get("b")
        b.record_failure()
        b.record_failure()

        counts = registry.get_count_by_state()
        assert counts == {
            CircuitState.CLOSED: 1,
            CircuitState.OPEN: 1,
            CircuitState.HALF_OPEN: 0,
        }

        clock.advance(30)
        counts = registry.get_count_by_state()
        assert counts[CircuitState.OPEN] == 0
        assert counts[CircuitState.HALF_OPEN] == 1

    def test_open_circuits(self, registry):
        registry.get("ok")
        registry.get("down").force_open("outage")

        open_circuits = registry.get_open_circuits()
        assert [s.name for s in open_circuits] == ["down"]
        assert open_circuits[0].last_failure_reason == "outage"

    def test_snapshots_are_detached(self, registry):
        registry.get("x").record_failure()
        states = registry.get_all_states()
        registry.get("x").record_failure()
        assert states[0].failure_count == 1

    def test_remove_reset_clear(self, registry):
        registry.get("a").force_open()
        registry.get("b")

        assert registry.remove("b") is True
        assert registry.remove("b") is False

        registry.reset_all()
        assert registry.get("a").state == CircuitState.CLOSED

        registry.clear()
        assert len(registry) == 0
        assert registry.names() == []

    def test_all_stats(self, registry):
        registry.get("a").record_success()
        stats = registry.get_all_stats()
        assert stats[0].name == "a"
        assert stats[0].total_successes == 1


class TestPresets:
    def test_default_values(self):
        config = get_circuit_config()
        assert config.failure_threshold == 5
        assert config.cooldown_seconds == 300
        assert config.success_threshold == 3
        assert config.timeout_seconds == 30

    @pytest.mark.parametrize("name", sorted(CIRCUIT_PRESETS))
    def test_presets_load(self, name):
        config = get_circuit_config(name)
        assert config.failure_threshold == CIRCUIT_PRESETS[name]["failure_threshold"]

    def test_overrides_win(self):
        config = get_circuit_config("lenient", cooldown_seconds=5)
        assert config.failure_threshold == 10
        assert config.cooldown_seconds == 5

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown circuit preset"):
            get_circuit_config("paranoid")

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CIRCUIT_FAILURE_THRESHOLD", "7")
        assert CircuitBreakerConfig().failure_threshold == 7
