"""Circuit breaker configuration.

Defaults can be overridden via ``CIRCUIT_*`` environment variables
(e.g. ``CIRCUIT_FAILURE_THRESHOLD=3``). Named presets cover the common
trade-offs between fast tripping and long cooldowns.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CircuitBreakerConfig(BaseSettings):
    """Thresholds and timing for a single circuit breaker."""

    model_config = SettingsConfigDict(
        env_prefix="CIRCUIT_",
        case_sensitive=False,
        extra="ignore",
    )

    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Failures recorded while CLOSED before the circuit opens",
    )
    cooldown_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="Seconds in OPEN before the circuit reports HALF_OPEN",
    )
    success_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive HALF_OPEN successes required to close the circuit",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Per-call timeout applied by CircuitBreaker.call()",
    )


CIRCUIT_PRESETS: dict[str, dict[str, float]] = {
    # Opens quickly, long cooldown. Critical operations.
    "strict": {
        "failure_threshold": 3,
        "cooldown_seconds": 600,
        "success_threshold": 5,
        "timeout_seconds": 15,
    },
    # Tolerant, short cooldown. Non-critical operations.
    "lenient": {
        "failure_threshold": 10,
        "cooldown_seconds": 60,
        "success_threshold": 2,
        "timeout_seconds": 60,
    },
    # Very quick to open, very long cooldown. Expensive operations.
    "aggressive": {
        "failure_threshold": 2,
        "cooldown_seconds": 1800,
        "success_threshold": 10,
        "timeout_seconds": 10,
    },
    # Effectively never opens. Development only.
    "testing": {
        "failure_threshold": 1000,
        "cooldown_seconds": 1,
        "success_threshold": 1,
        "timeout_seconds": 120,
    },
}


def get_circuit_config(preset: str = "default", **overrides: float) -> CircuitBreakerConfig:
    """Build a config from a named preset plus explicit overrides.

    Args:
        preset: ``"default"`` or one of ``CIRCUIT_PRESETS``.
        **overrides: Field values that take precedence over the preset.

    Returns:
        CircuitBreakerConfig instance.

    Raises:
        ValueError: If the preset name is unknown.
    """
    if preset == "default":
        base: dict[str, float] = {}
    elif preset in CIRCUIT_PRESETS:
        base = dict(CIRCUIT_PRESETS[preset])
    else:
        raise ValueError(
            f"Unknown circuit preset {preset!r}. "
            f"Must be one of: {sorted(['default', *CIRCUIT_PRESETS])}"
        )
    base.update(overrides)
    return CircuitBreakerConfig(**base)
