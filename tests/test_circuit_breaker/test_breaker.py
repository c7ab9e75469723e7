"""Tests for the CircuitBreaker state machine."""

import asyncio
from datetime import timedelta

import pytest

from src.circuit_breaker.breaker import CircuitBreaker, CircuitOpenError
from src.circuit_breaker.config import CircuitBreakerConfig
from src.circuit_breaker.schemas import CircuitEventType, CircuitState


@pytest.fixture
def config():
    return CircuitBreakerConfig(
        failure_threshold=5,
        cooldown_seconds=60,
        success_threshold=3,
        timeout_seconds=0.5,
    )


@pytest.fixture
def breaker(config, clock):
    return CircuitBreaker("db", config=config, clock=clock)


def _trip(breaker: CircuitBreaker, n: int = 5) -> None:
    for i in range(n):
        breaker.record_failure(f"error {i}")


# ── CLOSED → OPEN ───────────────────────────────────────


class TestOpening:
    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_execute()
        assert breaker.cooldown_until is None

    def test_below_threshold_stays_closed(self, breaker):
        _trip(breaker, 4)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 4

    def test_threshold_opens_with_cooldown(self, breaker, clock):
        """Five failures open the circuit with cooldown_until = now + 60s."""
        _trip(breaker, 5)

        state = breaker.get_state()
        assert state.state == CircuitState.OPEN
        assert state.cooldown_until == clock.now + timedelta(seconds=60)
        assert state.last_failure_reason == "error 4"
        assert not breaker.can_execute()

    def test_opens_exactly_once(self, breaker, clock):
        _trip(breaker, 5)
        cooldown = breaker.cooldown_until

        clock.advance(10)
        _trip(breaker, 3)

        stats = breaker.get_stats()
        assert stats.open_count == 1
        assert breaker.failure_count == 8
        # Failures while OPEN do not extend the cooldown
        assert breaker.cooldown_until == cooldown

    def test_success_while_closed_keeps_failure_count(self, breaker):
        _trip(breaker, 3)
        breaker.record_success()
        assert breaker.failure_count == 3
        assert breaker.consecutive_successes == 0


# ── OPEN → HALF_OPEN ────────────────────────────────────


class TestCooldown:
    def test_open_until_cooldown_elapses(self, breaker, clock):
        _trip(breaker)
        clock.advance(59.9)
        assert breaker.state == CircuitState.OPEN

    def test_half_open_at_cooldown_boundary(self, breaker, clock):
        _trip(breaker)
        clock.advance(60)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_execute()

    def test_success_while_open_has_no_state_effect(self, breaker, clock):
        _trip(breaker)
        breaker.record_success()

        state = breaker.get_state()
        assert state.state == CircuitState.OPEN
        assert state.consecutive_successes == 0
        assert state.success_count == 1
        assert state.last_success_time == clock.now


# ── HALF_OPEN → CLOSED / OPEN ───────────────────────────


class TestRecovery:
    def test_success_threshold_closes(self, breaker, clock):
        _trip(breaker)
        clock.advance(60)

        breaker.record_success()
        breaker.record_success()
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.consecutive_successes == 2

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.consecutive_successes == 0
        assert breaker.cooldown_until is None

    def test_failure_in_half_open_reopens(self, breaker, clock):
        _trip(breaker)
        clock.advance(60)
        breaker.record_success()

        breaker.record_failure("still broken")

        state = breaker.get_state()
        assert state.state == CircuitState.OPEN
        assert state.consecutive_successes == 0
        assert state.cooldown_until == clock.now + timedelta(seconds=60)
        assert state.last_failure_reason == "still broken"
        assert breaker.get_stats().open_count == 2

    def test_recovery_time_recorded(self, breaker, clock):
        _trip(breaker)
        clock.advance(60)
        for _ in range(3):
            breaker.record_success()

        stats = breaker.get_stats()
        assert stats.average_recovery_ms == pytest.approx(60_000)
        assert stats.last_closed_at == clock.now


# ── Administration ──────────────────────────────────────


class TestAdministration:
    @pytest.mark.parametrize("setup", ["closed", "open", "half_open"])
    def test_reset_from_any_state(self, breaker, clock, setup):
        if setup in ("open", "half_open"):
            _trip(breaker)
        if setup == "half_open":
            clock.advance(60)
            breaker.record_success()

        breaker.reset()

        state = breaker.get_state()
        assert state.state == CircuitState.CLOSED
        assert state.failure_count == 0
        assert state.success_count == 0
        assert state.consecutive_successes == 0
        assert state.cooldown_until is None

    def test_reset_keeps_lifetime_totals(self, breaker):
        _trip(breaker)
        breaker.reset()
        stats = breaker.get_stats()
        assert stats.total_failures == 5
        assert stats.open_count == 1

    def test_force_open_restarts_cooldown(self, breaker, clock):
        breaker.force_open("maintenance")
        first = breaker.cooldown_until

        clock.advance(30)
        breaker.force_open("still in maintenance")

        assert breaker.state == CircuitState.OPEN
        assert breaker.cooldown_until == first + timedelta(seconds=30)
        assert breaker.get_state().last_failure_reason == "still in maintenance"


# ── call() wrapper ──────────────────────────────────────


class TestCall:
    async def test_success_recorded(self, breaker):
        async def ok(x):
            return x * 2

        assert await breaker.call(ok, 21) == 42
        assert breaker.get_stats().total_successes == 1

    async def test_exception_recorded_and_reraised(self, breaker):
        async def boom():
            raise RuntimeError("connection refused")

        with pytest.raises(RuntimeError):
            await breaker.call(boom)

        assert breaker.failure_count == 1
        assert breaker.get_state().last_failure_reason == "connection refused"

    async def test_timeout_counts_as_failure(self, breaker):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(asyncio.TimeoutError):
            await breaker.call(slow)

        assert breaker.failure_count == 1
        assert breaker.get_state().last_failure_reason == "Timeout exceeded"

    async def test_rejects_while_open(self, breaker):
        _trip(breaker)

        async def never():
            raise AssertionError("should not be called")

        with pytest.raises(CircuitOpenError):
            await breaker.call(never)


# ── Events ──────────────────────────────────────────────


class TestEvents:
    def test_full_cycle_event_sequence(self, breaker, clock):
        events = []
        breaker.on_event(events.append)

        _trip(breaker)
        clock.advance(60)
        assert breaker.state == CircuitState.HALF_OPEN
        for _ in range(3):
            breaker.record_success()

        assert [e.type for e in events] == [
            *[CircuitEventType.FAILURE_RECORDED] * 5,
            CircuitEventType.CIRCUIT_OPENED,
            CircuitEventType.CIRCUIT_HALF_OPEN,
            *[CircuitEventType.SUCCESS_RECORDED] * 3,
            CircuitEventType.CIRCUIT_CLOSED,
        ]
        opened = events[5]
        assert opened.circuit_name == "db"
        assert opened.previous_state == CircuitState.CLOSED
        assert opened.new_state == CircuitState.OPEN
        assert opened.message == "error 4"
        assert events[4].metadata == {"failureCount": 5, "threshold": 5}
        assert events[-1].previous_state == CircuitState.HALF_OPEN

    def test_half_open_emitted_once(self, breaker, clock):
        events = []
        _trip(breaker)
        breaker.on_event(events.append)

        clock.advance(60)
        breaker.can_execute()
        breaker.get_state()

        assert [e.type for e in events] == [CircuitEventType.CIRCUIT_HALF_OPEN]

    def test_reset_and_force_open(self, breaker):
        events = []
        breaker.on_event(events.append)

        breaker.reset()
        breaker.force_open("maintenance")
        breaker.reset()

        assert [(e.type, e.message) for e in events] == [
            (CircuitEventType.CIRCUIT_OPENED, "maintenance"),
            (CircuitEventType.CIRCUIT_CLOSED, "Circuit manually reset"),
        ]

    async def test_timeout_event_precedes_failure(self, breaker):
        events = []
        breaker.on_event(events.append)

        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(asyncio.TimeoutError):
            await breaker.call(slow)

        assert [e.type for e in events] == [
            CircuitEventType.TIMEOUT_OCCURRED,
            CircuitEventType.FAILURE_RECORDED,
        ]
        assert events[1].message == "Timeout exceeded"

    def test_unsubscribe(self, breaker):
        events = []
        unsubscribe = breaker.on_event(events.append)

        breaker.record_success()
        unsubscribe()
        unsubscribe()
        breaker.record_success()

        assert len(events) == 1

    def test_failing_listener_is_isolated(self, breaker):
        def broken(event):
            raise RuntimeError("listener bug")

        events = []
        breaker.on_event(broken)
        breaker.on_event(events.append)

        _trip(breaker)

        assert breaker.state == CircuitState.OPEN
        assert len(events) == 6

    def test_event_to_dict(self, breaker, clock):
        events = []
        breaker.on_event(events.append)
        breaker.force_open("maintenance")

        data = events[0].to_dict()
        assert data["type"] == "CIRCUIT_OPENED"
        assert data["circuitName"] == "db"
        assert data["timestamp"] == clock.now.isoformat()
        assert data["previousState"] == "CLOSED"
        assert data["newState"] == "OPEN"


class TestSnapshots:
    def test_state_to_dict_is_camel_case(self, breaker, clock):
        _trip(breaker)
        data = breaker.get_state().to_dict()
        assert data["state"] == "OPEN"
        assert data["failureCount"] == 5
        assert data["cooldownUntil"] == (clock.now + timedelta(seconds=60)).isoformat()

    def test_stats_to_dict(self, breaker):
        data = breaker.get_stats().to_dict()
        assert data["totalFailures"] == 0
        assert data["averageRecoveryTime"] is None
