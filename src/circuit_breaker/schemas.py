"""Snapshot types for circuit breaker state and statistics.

Snapshots are plain values: taking one never changes the breaker, and
mutating one never reaches back into the registry.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class CircuitState(str, enum.Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time view of a single breaker.

    Attributes:
        name: Breaker name (the protected resource).
        state: Current state, with the lazy OPEN → HALF_OPEN check applied.
        failure_count: Failures since the circuit last entered CLOSED.
        success_count: Successes recorded since creation or reset.
        consecutive_successes: HALF_OPEN probe successes so far.
        failure_threshold: Failures that trip the circuit.
        success_threshold: Probe successes that close the circuit.
        cooldown_seconds: Length of the OPEN period.
        cooldown_until: When the OPEN period ends (None unless opened).
        opened_at: When the circuit last entered OPEN.
        last_failure_time: Timestamp of the latest failure.
        last_success_time: Timestamp of the latest success.
        last_failure_reason: Error text of the failure (or forced-open
            reason) that last opened the circuit.
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    consecutive_successes: int
    failure_threshold: int
    success_threshold: int
    cooldown_seconds: float
    cooldown_until: datetime | None = None
    opened_at: datetime | None = None
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failureCount": self.failure_count,
            "successCount": self.success_count,
            "consecutiveSuccesses": self.consecutive_successes,
            "failureThreshold": self.failure_threshold,
            "successThreshold": self.success_threshold,
            "cooldownSeconds": self.cooldown_seconds,
            "cooldownUntil": _iso(self.cooldown_until),
            "nextAttemptAt": _iso(self.cooldown_until),
            "openedAt": _iso(self.opened_at),
            "lastFailureTime": _iso(self.last_failure_time),
            "lastSuccessTime": _iso(self.last_success_time),
            "lastFailureReason": self.last_failure_reason,
        }


@dataclass(frozen=True)
class CircuitStats:
    """Lifetime statistics for a single breaker."""

    name: str
    state: CircuitState
    total_failures: int
    total_successes: int
    current_failure_count: int
    consecutive_successes: int
    open_count: int
    last_opened_at: datetime | None = None
    last_closed_at: datetime | None = None
    average_recovery_ms: float | None = None
    last_failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "name": self.name,
            "state": self.state.value,
            "totalFailures": self.total_failures,
            "totalSuccesses": self.total_successes,
            "currentFailureCount": self.current_failure_count,
            "consecutiveSuccesses": self.consecutive_successes,
            "openCount": self.open_count,
            "lastOpenedAt": _iso(self.last_opened_at),
            "lastClosedAt": _iso(self.last_closed_at),
            "averageRecoveryTime": self.average_recovery_ms,
            "lastFailureReason": self.last_failure_reason,
        }


class CircuitEventType(str, enum.Enum):
    """Notifications a breaker sends to its listeners."""

    CIRCUIT_OPENED = "CIRCUIT_OPENED"
    CIRCUIT_CLOSED = "CIRCUIT_CLOSED"
    CIRCUIT_HALF_OPEN = "CIRCUIT_HALF_OPEN"
    FAILURE_RECORDED = "FAILURE_RECORDED"
    SUCCESS_RECORDED = "SUCCESS_RECORDED"
    TIMEOUT_OCCURRED = "TIMEOUT_OCCURRED"


@dataclass(frozen=True)
class CircuitEvent:
    """One breaker event. Transition events carry both states."""

    type: CircuitEventType
    circuit_name: str
    timestamp: datetime
    previous_state: CircuitState | None = None
    new_state: CircuitState | None = None
    message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "type": self.type.value,
            "circuitName": self.circuit_name,
            "timestamp": self.timestamp.isoformat(),
            "previousState": self.previous_state.value if self.previous_state else None,
            "newState": self.new_state.value if self.new_state else None,
            "message": self.message,
            "metadata": dict(self.metadata),
        }
