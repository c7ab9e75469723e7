"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the swarm-monitor process.

    All settings can be overridden via environment variables.
    Prefix is not used to allow standard env var names (e.g., LOG_LEVEL).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # State documents (agents.json, alerts.json) live here
    state_dir: Path = Field(default=Path(".swarm-monitor"))

    # Background loops
    rule_evaluation_interval_seconds: float = Field(default=30.0, gt=0.0, le=3600.0)
    heartbeat_sweep_interval_ms: int = Field(default=30_000, ge=100)

    # Observability
    metrics_enabled: bool = True
    metrics_port: int = 8000

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def agents_state_path(self) -> Path:
        """Location of the persisted agent state document."""
        return self.state_dir / "agents.json"

    @property
    def alerts_state_path(self) -> Path:
        """Location of the persisted alert history/config document."""
        return self.state_dir / "alerts.json"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
