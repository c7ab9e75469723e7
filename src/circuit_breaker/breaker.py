"""Named circuit breaker with lazy, time-based recovery.

State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

- CLOSED: Failures accumulate. Reaching ``failure_threshold`` opens the
  circuit.
- OPEN: ``can_execute()`` is False until ``cooldown_until``. The switch to
  HALF_OPEN is evaluated on read; no timer drives it.
- HALF_OPEN: ``success_threshold`` consecutive successes close the circuit.
  Any failure reopens it with a fresh cooldown.

Callers either record outcomes themselves:

    breaker = CircuitBreaker("sqlite")
    if breaker.can_execute():
        try:
            rows = query()
            breaker.record_success()
        except DatabaseError as e:
            breaker.record_failure(str(e))

or wrap an async callable:

    try:
        result = await breaker.call(fetch_metrics, "tasks")
    except CircuitOpenError:
        # Fallback logic

Listeners registered with ``on_event`` receive a CircuitEvent for every
recorded outcome, timeout and state transition.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Coroutine, TypeVar

from src.circuit_breaker.config import CircuitBreakerConfig
from src.circuit_breaker.schemas import (
    CircuitBreakerState,
    CircuitEvent,
    CircuitEventType,
    CircuitState,
    CircuitStats,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]
EventListener = Callable[[CircuitEvent], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""


class CircuitBreaker:
    """Failure/success counter and three-state machine for one resource.

    Every public method is total: recording outcomes and reading state never
    raise. Only ``call()`` raises, and only ``CircuitOpenError`` or the
    wrapped function's own exception.

    Args:
        name: Name of the protected resource.
        config: Thresholds and timing (defaults created if None).
        clock: Source of the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock or _utc_now

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._consecutive_successes = 0

        self._cooldown_until: datetime | None = None
        self._opened_at: datetime | None = None
        self._last_closed_at: datetime | None = None
        self._last_failure_time: datetime | None = None
        self._last_success_time: datetime | None = None
        self._last_failure_reason: str | None = None

        # Lifetime statistics, kept across reset()
        self._total_failures = 0
        self._total_successes = 0
        self._open_count = 0
        self._recovery_times_ms: list[float] = []

        self._listeners: list[EventListener] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        """Current state, with the OPEN → HALF_OPEN check applied."""
        self._refresh(self._clock())
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def consecutive_successes(self) -> int:
        return self._consecutive_successes

    @property
    def cooldown_until(self) -> datetime | None:
        return self._cooldown_until

    # ── Outcome recording ───────────────────────────────────

    def record_success(self) -> None:
        """Record a successful operation.

        Only HALF_OPEN probes move the state machine. Successes while
        CLOSED or OPEN are bookkeeping only.
        """
        now = self._clock()
        self._refresh(now)

        self._last_success_time = now
        self._success_count += 1
        self._total_successes += 1

        if self._state != CircuitState.HALF_OPEN:
            self._emit(CircuitEventType.SUCCESS_RECORDED, now)
            return

        self._consecutive_successes += 1
        logger.debug(
            "Circuit breaker %s: HALF_OPEN success %d/%d",
            self._name,
            self._consecutive_successes,
            self._config.success_threshold,
        )
        self._emit(
            CircuitEventType.SUCCESS_RECORDED,
            now,
            new_state=CircuitState.HALF_OPEN,
            message=(
                f"Success in HALF_OPEN "
                f"({self._consecutive_successes}/{self._config.success_threshold})"
            ),
        )
        if self._consecutive_successes >= self._config.success_threshold:
            if self._opened_at is not None:
                elapsed = (now - self._opened_at).total_seconds() * 1000.0
                self._recovery_times_ms.append(elapsed)
            self._close(now, "Service recovered, circuit closed")
            logger.info(
                "Circuit breaker %s: HALF_OPEN → CLOSED (probes succeeded)",
                self._name,
            )

    def record_failure(self, error: str | None = None) -> None:
        """Record a failed operation.

        Args:
            error: Optional error text, kept as the last failure reason.
        """
        now = self._clock()
        self._refresh(now)

        self._last_failure_time = now
        self._failure_count += 1
        self._total_failures += 1
        self._consecutive_successes = 0
        if error:
            self._last_failure_reason = error

        self._emit(
            CircuitEventType.FAILURE_RECORDED,
            now,
            message=error,
            metadata={
                "failureCount": self._failure_count,
                "threshold": self._config.failure_threshold,
            },
        )

        if self._state == CircuitState.HALF_OPEN:
            self._open(now, error or "Probe failed in HALF_OPEN")
            logger.warning(
                "Circuit breaker %s: HALF_OPEN → OPEN (probe failed)",
                self._name,
            )
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self._config.failure_threshold
        ):
            self._open(
                now,
                error or f"Circuit opened after {self._failure_count} failures",
            )
            logger.warning(
                "Circuit breaker %s: CLOSED → OPEN after %d failures",
                self._name,
                self._failure_count,
            )

    # ── Queries ─────────────────────────────────────────────

    def can_execute(self) -> bool:
        """Whether a call should be let through right now."""
        return self.state != CircuitState.OPEN

    def get_state(self) -> CircuitBreakerState:
        """Snapshot of the breaker's current state."""
        self._refresh(self._clock())
        return CircuitBreakerState(
            name=self._name,
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            consecutive_successes=self._consecutive_successes,
            failure_threshold=self._config.failure_threshold,
            success_threshold=self._config.success_threshold,
            cooldown_seconds=self._config.cooldown_seconds,
            cooldown_until=self._cooldown_until,
            opened_at=self._opened_at,
            last_failure_time=self._last_failure_time,
            last_success_time=self._last_success_time,
            last_failure_reason=self._last_failure_reason,
        )

    def get_stats(self) -> CircuitStats:
        """Lifetime statistics for the breaker."""
        self._refresh(self._clock())
        average = (
            sum(self._recovery_times_ms) / len(self._recovery_times_ms)
            if self._recovery_times_ms
            else None
        )
        return CircuitStats(
            name=self._name,
            state=self._state,
            total_failures=self._total_failures,
            total_successes=self._total_successes,
            current_failure_count=self._failure_count,
            consecutive_successes=self._consecutive_successes,
            open_count=self._open_count,
            last_opened_at=self._opened_at,
            last_closed_at=self._last_closed_at,
            average_recovery_ms=average,
            last_failure_reason=self._last_failure_reason,
        )

    # ── Administration ──────────────────────────────────────

    def reset(self) -> None:
        """Return to CLOSED with all counters zeroed, from any state."""
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._consecutive_successes = 0
        self._cooldown_until = None
        self._opened_at = None

        if previous != CircuitState.CLOSED:
            now = self._clock()
            self._last_closed_at = now
            self._emit(
                CircuitEventType.CIRCUIT_CLOSED,
                now,
                previous_state=previous,
                new_state=CircuitState.CLOSED,
                message="Circuit manually reset",
            )
            logger.info(
                "Circuit breaker %s: %s → CLOSED (manual reset)",
                self._name,
                previous.value,
            )

    def force_open(self, reason: str = "Manually opened") -> None:
        """Open the circuit from any state, restarting the cooldown."""
        previous = self._state
        self._open(self._clock(), reason)
        logger.warning(
            "Circuit breaker %s: %s → OPEN (forced: %s)",
            self._name,
            previous.value,
            reason,
        )

    # ── Call wrapper ────────────────────────────────────────

    async def call(
        self,
        fn: Callable[..., Coroutine[Any, Any, T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Execute an async function through the circuit breaker.

        Args:
            fn: Async callable to execute.
            *args: Positional arguments for fn.
            **kwargs: Keyword arguments for fn.

        Returns:
            Result from fn.

        Raises:
            CircuitOpenError: If the circuit is OPEN and cooling down.
            asyncio.TimeoutError: If fn exceeds ``timeout_seconds`` (also
                recorded as a failure).
        """
        if not self.can_execute():
            raise CircuitOpenError(f"Circuit breaker {self._name} is OPEN")

        try:
            result = await asyncio.wait_for(
                fn(*args, **kwargs), timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._emit(
                CircuitEventType.TIMEOUT_OCCURRED,
                self._clock(),
                message=f"Operation exceeded {self._config.timeout_seconds}s timeout",
            )
            self.record_failure("Timeout exceeded")
            raise
        except Exception as e:
            self.record_failure(str(e) or type(e).__name__)
            raise

        self.record_success()
        return result

    # ── Events ──────────────────────────────────────────────

    def on_event(self, listener: EventListener) -> Callable[[], None]:
        """Subscribe to breaker events.

        Listeners run synchronously, in registration order. A listener that
        raises is logged and skipped; the breaker and the other listeners
        are unaffected.

        Returns:
            A function that removes the listener. Calling it twice is a no-op.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(
        self,
        event_type: CircuitEventType,
        now: datetime,
        previous_state: CircuitState | None = None,
        new_state: CircuitState | None = None,
        message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not self._listeners:
            return
        event = CircuitEvent(
            type=event_type,
            circuit_name=self._name,
            timestamp=now,
            previous_state=previous_state,
            new_state=new_state,
            message=message,
            metadata=metadata or {},
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Circuit breaker %s: event listener failed on %s: %s",
                    self._name,
                    event_type.value,
                    e,
                )

    # ── Transitions ─────────────────────────────────────────

    def _refresh(self, now: datetime) -> None:
        """Apply the lazy OPEN → HALF_OPEN transition."""
        if (
            self._state == CircuitState.OPEN
            and self._cooldown_until is not None
            and now >= self._cooldown_until
        ):
            self._state = CircuitState.HALF_OPEN
            self._consecutive_successes = 0
            logger.info(
                "Circuit breaker %s: OPEN → HALF_OPEN (recovery probe)",
                self._name,
            )
            self._emit(
                CircuitEventType.CIRCUIT_HALF_OPEN,
                now,
                previous_state=CircuitState.OPEN,
                new_state=CircuitState.HALF_OPEN,
                message="Testing if service has recovered",
            )

    def _open(self, now: datetime, reason: str) -> None:
        previous = self._state
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._cooldown_until = now + timedelta(seconds=self._config.cooldown_seconds)
        self._consecutive_successes = 0
        self._last_failure_reason = reason
        self._open_count += 1
        self._emit(
            CircuitEventType.CIRCUIT_OPENED,
            now,
            previous_state=previous,
            new_state=CircuitState.OPEN,
            message=reason,
        )

    def _close(self, now: datetime, reason: str) -> None:
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._consecutive_successes = 0
        self._cooldown_until = None
        self._last_closed_at = now
        self._emit(
            CircuitEventType.CIRCUIT_CLOSED,
            now,
            previous_state=previous,
            new_state=CircuitState.CLOSED,
            message=reason,
        )
