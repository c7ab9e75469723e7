"""Notification channel implementations for alert delivery.

Provides an ABC for notification channels plus concrete implementations
for console/file logging, generic webhooks and Slack. Channels never raise
from ``send``: every outcome, including misconfiguration and transport
errors, is reported as a ``ChannelResult``.

Adapters are built through ``create_channel``, keyed by channel type.
Email has a configuration type but no adapter yet; its factory entry is
None and callers treat it as disabled.
"""

import asyncio
import json
import logging
import sys
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, ClassVar

import httpx

from src.alerts.config import (
    SEVERITY_COLORS,
    SEVERITY_ICONS,
    LogConfig,
    SlackConfig,
    WebhookConfig,
)
from src.alerts.schemas import ChannelResult, NotificationPayload, ValidationResult

logger = logging.getLogger(__name__)

TEST_TITLE = "Test Alert"
TEST_MESSAGE = "This is a test notification from Swarm Monitor"

SLACK_MAX_FIELDS = 6
SLACK_FOOTER = "Swarm Monitor"

# Console level each severity is written at
_SEVERITY_LEVELS = {
    "critical": "error",
    "high": "error",
    "medium": "warn",
    "low": "info",
    "info": "info",
}
_LEVEL_RANK = {"debug": 0, "info": 1, "warn": 2, "error": 3}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_http_url(url: str, missing: str) -> ValidationResult:
    if not url:
        return ValidationResult(valid=False, error=missing)
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return ValidationResult(valid=False, error="Invalid webhook URL")
    if parsed.scheme not in ("http", "https") or not parsed.host:
        return ValidationResult(valid=False, error="Invalid webhook URL")
    return ValidationResult(valid=True)


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    channel_type: ClassVar[str]

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> ChannelResult:
        """Deliver a payload through this channel.

        Args:
            payload: Notification to deliver.

        Returns:
            ChannelResult describing the attempt. Never raises.
        """

    def validate(self) -> ValidationResult:
        """Check that the channel has everything it needs to send."""
        return ValidationResult(valid=True)

    async def test(self) -> bool:
        """Send an info-level smoke notification.

        Returns:
            True if the channel reported success.
        """
        payload = NotificationPayload(
            severity="info",
            title=TEST_TITLE,
            message=TEST_MESSAGE,
            source="monitor",
        )
        try:
            result = await self.send(payload)
        except Exception as e:
            logger.warning("Test send on %s raised: %s", self.channel_type, e)
            return False
        return result.success

    def _failure(self, error: str) -> ChannelResult:
        return ChannelResult(channel=self.channel_type, success=False, error=error)


class LogChannel(NotificationChannel):
    """Writes alerts to the console and, optionally, a log file.

    Critical, high and medium alerts go to stderr; everything else goes to
    stdout. Console output is suppressed for severities below the configured
    level. A file-write failure is logged and does not fail the delivery.
    """

    channel_type = "log"

    def __init__(self, config: LogConfig | None = None) -> None:
        self._config = config or LogConfig()
        self._path = Path(self._config.path) if self._config.path else None

    @classmethod
    def from_config(cls, config: dict[str, Any], timeout: float = 10.0) -> "LogChannel":
        return cls(LogConfig.model_validate(config))

    @property
    def path(self) -> Path | None:
        return self._path

    @staticmethod
    def format_line(payload: NotificationPayload, timestamp: datetime) -> str:
        """Render ``[ts] [SEVERITY] Title: message (source) | {metadata}``."""
        line = (
            f"[{timestamp.isoformat()}] [{payload.severity.upper()}] "
            f"{payload.title}: {payload.message}"
        )
        if payload.source:
            line += f" ({payload.source})"
        if payload.metadata:
            line += f" | {json.dumps(payload.metadata, default=str)}"
        return line

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        now = _utc_now()
        line = self.format_line(payload, now)

        level = _SEVERITY_LEVELS.get(payload.severity, "info")
        if _LEVEL_RANK[level] >= _LEVEL_RANK[self._config.level]:
            stream = sys.stderr if level in ("error", "warn") else sys.stdout
            icon = SEVERITY_ICONS.get(payload.severity, "📋")
            print(f"{icon} {line}", file=stream)

        if self._path is not None:
            try:
                await asyncio.to_thread(self._append, line)
            except OSError as e:
                logger.warning("Failed to write to log file %s: %s", self._path, e)

        return ChannelResult(channel=self.channel_type, success=True, sent_at=now)

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


class WebhookChannel(NotificationChannel):
    """Delivers alerts as JSON to an arbitrary HTTP endpoint.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling)
    matching the project's HTTP pattern.
    """

    channel_type = "webhook"

    def __init__(self, config: WebhookConfig, timeout: float = 10.0) -> None:
        self._config = config
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: dict[str, Any], timeout: float = 10.0) -> "WebhookChannel":
        return cls(WebhookConfig.model_validate(config), timeout=timeout)

    def validate(self) -> ValidationResult:
        return _validate_http_url(self._config.url, "Webhook URL is required")

    def _build_payload(self, payload: NotificationPayload) -> dict:
        """Build ``{alert: {...}, metadata, sentAt}``."""
        return {
            "alert": {
                "severity": payload.severity,
                "title": payload.title,
                "message": payload.message,
                "timestamp": payload.timestamp.isoformat(),
                "source": payload.source,
            },
            "metadata": payload.metadata,
            "sentAt": _utc_now().isoformat(),
        }

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        check = self.validate()
        if not check.valid:
            return self._failure(check.error)

        headers = {"Content-Type": "application/json", **self._config.headers}
        started = _utc_now()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(
                    self._config.method,
                    self._config.url,
                    json=self._build_payload(payload),
                    headers=headers,
                )
                if not resp.is_success:
                    logger.warning(
                        "Webhook %s returned %d", self._config.url, resp.status_code,
                    )
                    return self._failure(
                        f"Webhook error: {resp.status_code} {resp.reason_phrase} - {resp.text}"
                    )
        except httpx.TimeoutException:
            logger.warning("Webhook %s timed out", self._config.url)
            return self._failure(f"Webhook request timed out after {self._timeout}s")
        except Exception as e:
            logger.warning("Webhook %s failed: %s", self._config.url, e)
            return self._failure(str(e) or type(e).__name__)

        return ChannelResult(channel=self.channel_type, success=True, sent_at=started)


class SlackChannel(NotificationChannel):
    """Delivers alerts to a Slack channel via incoming webhook.

    Formats alerts as a single colored attachment.
    """

    channel_type = "slack"

    def __init__(self, config: SlackConfig, timeout: float = 10.0) -> None:
        self._config = config
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: dict[str, Any], timeout: float = 10.0) -> "SlackChannel":
        return cls(SlackConfig.model_validate(config), timeout=timeout)

    def validate(self) -> ValidationResult:
        return _validate_http_url(self._config.webhook_url, "Webhook URL is required")

    def _format_message(self, payload: NotificationPayload) -> dict:
        """Build the Slack attachment payload."""
        fields = [
            {"title": "Severity", "value": payload.severity.upper(), "short": True},
            {
                "title": "Time",
                "value": payload.timestamp.strftime("%Y-%m-%d %H:%M:%S %Z").strip(),
                "short": True,
            },
        ]
        if payload.source:
            fields.append({"title": "Source", "value": payload.source, "short": True})
        for key, value in (payload.metadata or {}).items():
            if len(fields) >= SLACK_MAX_FIELDS:
                break
            fields.append({"title": key, "value": str(value), "short": True})

        message: dict = {
            "username": self._config.username,
            "icon_emoji": self._config.icon_emoji,
            "attachments": [
                {
                    "color": SEVERITY_COLORS.get(payload.severity, SEVERITY_COLORS["info"]),
                    "title": payload.title,
                    "text": payload.message,
                    "fields": fields,
                    "footer": SLACK_FOOTER,
                    "ts": int(payload.timestamp.timestamp()),
                },
            ],
        }
        if self._config.channel:
            message["channel"] = self._config.channel
        return message

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        check = self.validate()
        if not check.valid:
            return self._failure(check.error)

        started = _utc_now()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._config.webhook_url,
                    json=self._format_message(payload),
                )
                if not resp.is_success:
                    logger.warning("Slack webhook returned %d", resp.status_code)
                    return self._failure(
                        f"Slack API error: {resp.status_code} {resp.reason_phrase} - {resp.text}"
                    )
        except httpx.TimeoutException:
            logger.warning("Slack webhook timed out")
            return self._failure(f"Slack request timed out after {self._timeout}s")
        except Exception as e:
            logger.warning("Slack webhook failed: %s", e)
            return self._failure(str(e) or type(e).__name__)

        return ChannelResult(channel=self.channel_type, success=True, sent_at=started)


ChannelFactory = Callable[[dict[str, Any], float], NotificationChannel]

CHANNEL_FACTORIES: dict[str, ChannelFactory | None] = {
    "log": LogChannel.from_config,
    "webhook": WebhookChannel.from_config,
    "slack": SlackChannel.from_config,
    "email": None,
}

IMPLEMENTED_CHANNELS: frozenset[str] = frozenset(
    name for name, factory in CHANNEL_FACTORIES.items() if factory is not None
)


def create_channel(
    channel_type: str,
    config: dict[str, Any] | None = None,
    timeout: float = 10.0,
) -> NotificationChannel | None:
    """Build the adapter for a channel type.

    Args:
        channel_type: One of the registered channel types.
        config: Channel-specific settings (camelCase or snake_case keys).
        timeout: HTTP timeout for network channels.

    Returns:
        The adapter, or None for a type without an implementation (email).

    Raises:
        ValueError: If the channel type is unknown or the config is invalid.
    """
    if channel_type not in CHANNEL_FACTORIES:
        raise ValueError(
            f"Unknown channel type {channel_type!r}. "
            f"Must be one of: {sorted(CHANNEL_FACTORIES)}"
        )
    factory = CHANNEL_FACTORIES[channel_type]
    if factory is None:
        return None
    return factory(config or {}, timeout)
