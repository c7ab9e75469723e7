"""Heartbeat defaults for tracked agents.

Overridable via ``HEARTBEAT_*`` environment variables
(e.g. ``HEARTBEAT_TIMEOUT_SECONDS=120``).
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HeartbeatConfig(BaseSettings):
    """Default heartbeat cadence and staleness timeout."""

    model_config = SettingsConfigDict(
        env_prefix="HEARTBEAT_",
        case_sensitive=False,
        extra="ignore",
    )

    interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Expected seconds between heartbeats from an agent",
    )
    timeout_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Seconds without a heartbeat before an agent is stale",
    )
    sweep_interval_ms: int = Field(
        default=30_000,
        ge=100,
        description="Default period of the stale-agent sweep",
    )
