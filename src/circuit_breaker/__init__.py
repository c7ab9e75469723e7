"""Circuit breakers protecting callers from failing dependencies.

Usage:
    from src.circuit_breaker import CircuitBreakerRegistry

    registry = CircuitBreakerRegistry()
    breaker = registry.get("sqlite")
    breaker.record_failure("database is locked")
    registry.get_count_by_state()
"""

from src.circuit_breaker.breaker import CircuitBreaker, CircuitOpenError
from src.circuit_breaker.config import (
    CIRCUIT_PRESETS,
    CircuitBreakerConfig,
    get_circuit_config,
)
from src.circuit_breaker.registry import CircuitBreakerRegistry
from src.circuit_breaker.schemas import (
    CircuitBreakerState,
    CircuitEvent,
    CircuitEventType,
    CircuitState,
    CircuitStats,
)

__all__ = [
    "CIRCUIT_PRESETS",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitEvent",
    "CircuitEventType",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStats",
    "get_circuit_config",
]
