"""Alerting configuration.

Two kinds of configuration live here:

- ``NotificationSettings``: process settings for delivery (timeouts, file
  locations), overridable via ``NOTIFICATIONS_*`` environment variables.
- ``AlertConfig``: the persisted, user-editable document stored in the
  ``config`` section of ``alerts.json`` (channels, rules, severity routing).
  It is a pydantic model with camelCase aliases so it round-trips the wire
  format unchanged.
"""

from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.alerts.schemas import (
    SEVERITY_ORDER,
    VALID_CHANNEL_TYPES,
    VALID_SEVERITIES,
    AlertSeverity,
    ChannelType,
)

SEVERITY_COLORS: dict[str, str] = {
    "critical": "#DC2626",
    "high": "#EA580C",
    "medium": "#CA8A04",
    "low": "#2563EB",
    "info": "#4B5563",
}

SEVERITY_ICONS: dict[str, str] = {
    "critical": "🚨",
    "high": "⚠️",
    "medium": "⚡",
    "low": "ℹ️",
    "info": "📝",
}


class NotificationSettings(BaseSettings):
    """Configuration for notification delivery."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    channel_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=120.0,
        description="Upper bound on one channel's delivery attempt",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="httpx client timeout for webhook and Slack requests",
    )
    alerts_file: Path | None = Field(
        default=None,
        description="Alert state document (default: <state_dir>/alerts.json)",
    )
    log_file: str | None = Field(
        default=None,
        description="File the default log channel appends to (default: <state_dir>/logs/alerts.log)",
    )


# ── Persisted alert configuration ───────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SlackConfig(_CamelModel):
    webhook_url: str = ""
    channel: str | None = None
    username: str = "Swarm Monitor"
    icon_emoji: str = ":robot_face:"


class WebhookConfig(_CamelModel):
    url: str = ""
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class EmailConfig(_CamelModel):
    address: str = ""
    subject: str = "[Swarm Monitor Alert]"


class LogConfig(_CamelModel):
    level: Literal["debug", "info", "warn", "error"] = "info"
    path: str | None = None


class ChannelConfig(_CamelModel):
    """One entry of ``AlertConfig.channels``.

    ``config`` holds the channel-specific settings as stored; the adapter
    factory parses it into the matching typed config.
    """

    type: ChannelType
    enabled: bool = False
    config: dict[str, Any] = Field(default_factory=dict)


Operator = Literal[">", "<", ">=", "<=", "==", "!="]


class ThresholdCondition(_CamelModel):
    type: Literal["threshold"] = "threshold"
    metric: str
    operator: Operator = ">"
    threshold: float


class RateCondition(_CamelModel):
    type: Literal["rate"] = "rate"
    metric: str
    operator: Operator = ">"
    threshold: float
    window_seconds: float = 300.0


class PatternCondition(_CamelModel):
    type: Literal["pattern"] = "pattern"
    metric: str
    pattern: str
    regex: bool = False


class CircuitCondition(_CamelModel):
    type: Literal["circuit"] = "circuit"


class AgentStaleCondition(_CamelModel):
    type: Literal["agent_stale"] = "agent_stale"


AlertCondition = Annotated[
    Union[
        ThresholdCondition,
        RateCondition,
        PatternCondition,
        CircuitCondition,
        AgentStaleCondition,
    ],
    Field(discriminator="type"),
]


class AlertAction(_CamelModel):
    type: Literal["notify"] = "notify"
    channels: list[ChannelType] = Field(default_factory=list)
    message_template: str | None = None


class AlertRule(_CamelModel):
    """A condition plus the notifications to send when it holds.

    ``cooldown_seconds`` falls back to ``AlertConfig.global_cooldown`` when
    unset. ``last_triggered`` is maintained by the rule engine.
    """

    id: str
    name: str
    enabled: bool = True
    severity: AlertSeverity = "high"
    condition: AlertCondition
    actions: list[AlertAction] = Field(default_factory=list)
    cooldown_seconds: float | None = Field(default=None, ge=0.0)
    last_triggered: datetime | None = None


class AlertConfig(_CamelModel):
    """The user-editable alerting document."""

    enabled: bool = True
    global_cooldown: float = Field(default=60.0, ge=0.0)
    channels: dict[str, ChannelConfig] = Field(default_factory=dict)
    rules: list[AlertRule] = Field(default_factory=list)
    severity_routing: dict[str, list[ChannelType]] = Field(default_factory=dict)

    @field_validator("channels")
    @classmethod
    def _check_channel_keys(cls, v: dict[str, ChannelConfig]) -> dict[str, ChannelConfig]:
        for key, channel in v.items():
            if key not in VALID_CHANNEL_TYPES:
                raise ValueError(
                    f"Unknown channel type {key!r}. "
                    f"Must be one of: {sorted(VALID_CHANNEL_TYPES)}"
                )
            if channel.type != key:
                raise ValueError(f"Channel {key!r} declares type {channel.type!r}")
        return v

    @field_validator("severity_routing")
    @classmethod
    def _check_routing_keys(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        unknown = set(v) - VALID_SEVERITIES
        if unknown:
            raise ValueError(
                f"Unknown severities in routing: {sorted(unknown)}. "
                f"Must be among: {list(SEVERITY_ORDER)}"
            )
        return v

    def to_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertConfig":
        return cls.model_validate(data)

    def get_rule(self, rule_id: str) -> AlertRule | None:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def enabled_channels(self) -> list[str]:
        return [key for key, ch in self.channels.items() if ch.enabled]


def default_alert_config(log_file: str | None = None) -> AlertConfig:
    """Build the configuration a fresh installation starts with.

    Only the log channel is enabled. Slack, webhook and email are present
    but disabled until the user supplies their endpoints.

    Args:
        log_file: File the log channel appends to (None disables file output).
    """
    notify_slack_and_log = ["slack", "log"]
    return AlertConfig(
        enabled=True,
        global_cooldown=60.0,
        channels={
            "slack": ChannelConfig(
                type="slack",
                enabled=False,
                config={
                    "webhookUrl": "",
                    "channel": "#alerts",
                    "username": "Swarm Monitor",
                    "iconEmoji": ":robot_face:",
                },
            ),
            "webhook": ChannelConfig(
                type="webhook",
                enabled=False,
                config={
                    "url": "",
                    "method": "POST",
                    "headers": {"Content-Type": "application/json"},
                },
            ),
            "email": ChannelConfig(
                type="email",
                enabled=False,
                config={"address": "", "subject": "[Swarm Monitor Alert]"},
            ),
            "log": ChannelConfig(
                type="log",
                enabled=True,
                config={"level": "info", "path": log_file} if log_file else {"level": "info"},
            ),
        },
        rules=[
            AlertRule(
                id="circuit-open",
                name="Circuit Breaker Opened",
                severity="critical",
                condition=CircuitCondition(),
                actions=[
                    AlertAction(
                        channels=notify_slack_and_log,
                        message_template=(
                            "Circuit breaker '{circuit}' has opened due to "
                            "{failureCount} failures"
                        ),
                    ),
                ],
                cooldown_seconds=300,
            ),
            AlertRule(
                id="agent-stale",
                name="Agent Stale Detection",
                severity="high",
                condition=AgentStaleCondition(),
                actions=[
                    AlertAction(
                        channels=notify_slack_and_log,
                        message_template=(
                            "Agent '{agentId}' has not sent heartbeat in "
                            "{timeout} seconds"
                        ),
                    ),
                ],
                cooldown_seconds=600,
            ),
            AlertRule(
                id="high-failure-rate",
                name="High Query Failure Rate",
                severity="high",
                condition=RateCondition(
                    metric="query_failure_rate",
                    operator=">",
                    threshold=0.5,
                    window_seconds=300,
                ),
                actions=[
                    AlertAction(
                        channels=notify_slack_and_log,
                        message_template=(
                            "Query failure rate is {rate}% over the last 5 minutes"
                        ),
                    ),
                ],
                cooldown_seconds=300,
            ),
            AlertRule(
                id="stuck-queries",
                name="Stuck Queries Detected",
                severity="medium",
                condition=ThresholdCondition(
                    metric="stuck_query_count",
                    operator=">",
                    threshold=3,
                ),
                actions=[
                    AlertAction(
                        channels=notify_slack_and_log,
                        message_template=(
                            "{count} queries have been running longer than "
                            "{timeout} seconds"
                        ),
                    ),
                ],
                cooldown_seconds=180,
            ),
        ],
        severity_routing={
            "critical": ["slack", "webhook", "email", "log"],
            "high": ["slack", "webhook", "log"],
            "medium": ["slack", "log"],
            "low": ["log"],
            "info": ["log"],
        },
    )
