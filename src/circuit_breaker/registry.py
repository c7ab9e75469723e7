"""Registry owning every named circuit breaker in the process.

Breakers are created lazily on first lookup, so callers never deal with a
"not found" case. Aggregate queries return snapshots; the breaker map itself
is never handed out.
"""

import logging

from src.circuit_breaker.breaker import CircuitBreaker, Clock
from src.circuit_breaker.config import CircuitBreakerConfig
from src.circuit_breaker.schemas import CircuitBreakerState, CircuitState, CircuitStats

logger = logging.getLogger(__name__)


class CircuitBreakerRegistry:
    """Named breaker lifecycle and aggregation.

    Args:
        default_config: Config used for breakers created without one.
        clock: Time source shared by every breaker the registry creates.
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._circuits: dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        """Return the named breaker, creating it on first use.

        Args:
            name: Breaker name.
            config: Config for a newly created breaker. Ignored when the
                breaker already exists.

        Returns:
            The CircuitBreaker registered under ``name``.
        """
        circuit = self._circuits.get(name)
        if circuit is None:
            circuit = CircuitBreaker(
                name,
                config=config or self._default_config,
                clock=self._clock,
            )
            self._circuits[name] = circuit
            logger.debug("Circuit breaker %s created", name)
        return circuit

    def __contains__(self, name: object) -> bool:
        return name in self._circuits

    def __len__(self) -> int:
        return len(self._circuits)

    def names(self) -> list[str]:
        return list(self._circuits)

    def get_all_states(self) -> list[CircuitBreakerState]:
        return [c.get_state() for c in self._circuits.values()]

    def get_all_stats(self) -> list[CircuitStats]:
        return [c.get_stats() for c in self._circuits.values()]

    def get_count_by_state(self) -> dict[CircuitState, int]:
        """Count breakers per state (every state present, zero included)."""
        counts = {state: 0 for state in CircuitState}
        for circuit in self._circuits.values():
            counts[circuit.state] += 1
        return counts

    def get_open_circuits(self) -> list[CircuitBreakerState]:
        """Snapshots of breakers currently OPEN (cooling down)."""
        return [
            s for s in self.get_all_states() if s.state == CircuitState.OPEN
        ]

    def remove(self, name: str) -> bool:
        """Drop a breaker. Returns False if it did not exist."""
        return self._circuits.pop(name, None) is not None

    def reset_all(self) -> None:
        for circuit in self._circuits.values():
            circuit.reset()

    def clear(self) -> None:
        self._circuits.clear()
