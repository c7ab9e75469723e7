"""Alerting: rules, notification channels, and the alert notifier.

Components:
- Alert / AlertStats / ChannelResult / AlertResult: Dataclasses mapping to alerts.json
- AlertConfig / AlertRule / ChannelConfig: Pydantic models for the persisted config
- NotificationSettings: Pydantic settings for delivery timeouts
- NotificationChannel / LogChannel / WebhookChannel / SlackChannel: Delivery adapters
- create_channel: Adapter factory keyed by channel type
- NotificationDispatcher: Concurrent fan-out with per-channel timeout
- AlertStateRepository: JSON document persistence
- AlertNotifier: Façade for sending, querying, and administering alerts
- AlertRuleEngine: Condition evaluation with per-rule cooldown
- VALID_SEVERITIES / VALID_STATUSES / VALID_CHANNEL_TYPES: Frozensets for runtime validation
"""

from src.alerts.channels import (
    CHANNEL_FACTORIES,
    IMPLEMENTED_CHANNELS,
    LogChannel,
    NotificationChannel,
    SlackChannel,
    WebhookChannel,
    create_channel,
)
from src.alerts.config import (
    SEVERITY_COLORS,
    SEVERITY_ICONS,
    AlertAction,
    AlertConfig,
    AlertRule,
    ChannelConfig,
    NotificationSettings,
    default_alert_config,
)
from src.alerts.dispatcher import NotificationDispatcher
from src.alerts.notifier import AlertNotifier
from src.alerts.repository import AlertsState, AlertStateRepository
from src.alerts.rule_engine import AlertRuleEngine, RuleFiring
from src.alerts.schemas import (
    SEVERITY_ORDER,
    VALID_CHANNEL_TYPES,
    VALID_SEVERITIES,
    VALID_STATUSES,
    Alert,
    AlertResult,
    AlertSeverity,
    AlertStats,
    AlertStatus,
    ChannelResult,
    ChannelType,
    NotificationPayload,
    ValidationResult,
)
from src.alerts.triggers import MetricsSnapshot

__all__ = [
    "Alert",
    "AlertAction",
    "AlertConfig",
    "AlertNotifier",
    "AlertResult",
    "AlertRule",
    "AlertRuleEngine",
    "AlertSeverity",
    "AlertStateRepository",
    "AlertStats",
    "AlertStatus",
    "AlertsState",
    "CHANNEL_FACTORIES",
    "ChannelConfig",
    "ChannelResult",
    "ChannelType",
    "IMPLEMENTED_CHANNELS",
    "LogChannel",
    "MetricsSnapshot",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationPayload",
    "NotificationSettings",
    "RuleFiring",
    "SEVERITY_COLORS",
    "SEVERITY_ICONS",
    "SEVERITY_ORDER",
    "SlackChannel",
    "VALID_CHANNEL_TYPES",
    "VALID_SEVERITIES",
    "VALID_STATUSES",
    "ValidationResult",
    "WebhookChannel",
    "create_channel",
    "default_alert_config",
]
