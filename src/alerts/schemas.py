"""Schema definitions for alert records and delivery outcomes.

``Alert`` and ``AlertStats`` map 1:1 to the ``alerts`` and ``stats``
sections of the ``alerts.json`` state document. ``NotificationPayload`` is
what channel adapters receive; ``ChannelResult`` is what each of them
reports back.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

AlertSeverity = Literal["critical", "high", "medium", "low", "info"]

# Most to least urgent
SEVERITY_ORDER: tuple[str, ...] = ("critical", "high", "medium", "low", "info")

VALID_SEVERITIES: frozenset[str] = frozenset(SEVERITY_ORDER)

AlertStatus = Literal["pending", "sent", "failed", "acknowledged"]

VALID_STATUSES: frozenset[str] = frozenset({
    "pending",
    "sent",
    "failed",
    "acknowledged",
})

ChannelType = Literal["slack", "webhook", "email", "log"]

VALID_CHANNEL_TYPES: frozenset[str] = frozenset({
    "slack",
    "webhook",
    "email",
    "log",
})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def new_alert_id(now: datetime | None = None) -> str:
    """Build an id of the form ``alert-<epoch-ms>-<random>``."""
    now = now or _utc_now()
    return f"alert-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


def validate_severity(severity: str) -> None:
    if severity not in VALID_SEVERITIES:
        raise ValueError(
            f"Invalid severity {severity!r}. "
            f"Must be one of: {list(SEVERITY_ORDER)}"
        )


@dataclass
class Alert:
    """A notification created by the notifier.

    Attributes:
        severity: critical, high, medium, low, or info.
        title: Short human-readable summary.
        message: Detailed description.
        source: Originating component (defaults to "monitor").
        id: ``alert-<epoch-ms>-<random>`` identifier.
        status: pending until dispatch finishes, then sent or failed;
            acknowledged once a user has reviewed it.
        timestamp: Creation time.
        sent_at: Set when at least one channel succeeded.
        failed_at: Set when every channel failed.
        error: First channel error of a failed alert.
        metadata: Free-form context shown by the channels.
        channels: Channel types the alert was routed to.
    """

    severity: str
    title: str
    message: str
    source: str = "monitor"
    id: str = field(default_factory=new_alert_id)
    status: str = "pending"
    timestamp: datetime = field(default_factory=_utc_now)
    sent_at: datetime | None = None
    failed_at: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None
    channels: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        validate_severity(self.severity)
        if self.status not in VALID_STATUSES:
            raise ValueError(
                f"Invalid status {self.status!r}. "
                f"Must be one of: {sorted(VALID_STATUSES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        data: dict[str, Any] = {
            "id": self.id,
            "severity": self.severity,
            "status": self.status,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "channels": list(self.channels),
        }
        if self.sent_at is not None:
            data["sentAt"] = self.sent_at.isoformat()
        if self.failed_at is not None:
            data["failedAt"] = self.failed_at.isoformat()
        if self.error is not None:
            data["error"] = self.error
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alert":
        """Create an Alert from a dictionary.

        Args:
            data: Dictionary with camelCase alert fields.

        Returns:
            Alert instance.
        """
        return cls(
            id=data["id"],
            severity=data["severity"],
            status=data.get("status", "pending"),
            title=data["title"],
            message=data["message"],
            source=data.get("source") or "monitor",
            timestamp=_parse_dt(data.get("timestamp")) or _utc_now(),
            sent_at=_parse_dt(data.get("sentAt")),
            failed_at=_parse_dt(data.get("failedAt")),
            error=data.get("error"),
            metadata=data.get("metadata"),
            channels=list(data.get("channels") or []),
        )


@dataclass
class NotificationPayload:
    """What a channel adapter is asked to deliver."""

    severity: str
    title: str
    message: str
    timestamp: datetime = field(default_factory=_utc_now)
    metadata: dict[str, Any] | None = None
    source: str | None = None

    @classmethod
    def from_alert(cls, alert: Alert) -> "NotificationPayload":
        return cls(
            severity=alert.severity,
            title=alert.title,
            message=alert.message,
            timestamp=alert.timestamp,
            metadata=copy.deepcopy(alert.metadata),
            source=alert.source,
        )


@dataclass
class ChannelResult:
    """Outcome of one delivery attempt on one channel."""

    channel: str
    success: bool
    error: str | None = None
    sent_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"channel": self.channel, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        if self.sent_at is not None:
            data["sentAt"] = self.sent_at.isoformat()
        return data


@dataclass
class AlertResult:
    """Outcome of ``send_alert``: the alert id plus every channel result."""

    alert_id: str
    success: bool
    results: list[ChannelResult] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ValidationResult:
    """Result of a channel configuration check."""

    valid: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"valid": self.valid}
        if self.error is not None:
            data["error"] = self.error
        return data


def _zero_counts(keys) -> dict[str, int]:
    return {k: 0 for k in keys}


@dataclass
class AlertStats:
    """Aggregate counters over the alert history.

    ``by_channel`` counts successful deliveries only. ``last24h`` is
    recomputed from the retained history whenever an alert is recorded or
    old alerts are cleared.
    """

    total: int = 0
    by_status: dict[str, int] = field(
        default_factory=lambda: _zero_counts(("pending", "sent", "failed", "acknowledged"))
    )
    by_severity: dict[str, int] = field(
        default_factory=lambda: _zero_counts(SEVERITY_ORDER)
    )
    by_channel: dict[str, int] = field(
        default_factory=lambda: _zero_counts(("slack", "webhook", "email", "log"))
    )
    last24h: int = 0
    last_alert: Alert | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total": self.total,
            "byStatus": dict(self.by_status),
            "bySeverity": dict(self.by_severity),
            "byChannel": dict(self.by_channel),
            "last24h": self.last24h,
        }
        if self.last_alert is not None:
            data["lastAlert"] = self.last_alert.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertStats":
        stats = cls(total=data.get("total", 0), last24h=data.get("last24h", 0))
        stats.by_status.update(data.get("byStatus") or {})
        stats.by_severity.update(data.get("bySeverity") or {})
        stats.by_channel.update(data.get("byChannel") or {})
        last = data.get("lastAlert")
        if last:
            stats.last_alert = Alert.from_dict(last)
        return stats
