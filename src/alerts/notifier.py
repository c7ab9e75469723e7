"""Alert notifier: the façade over alert config, history and delivery.

``send_alert`` is the single entry point for raising a notification. It
records the alert as pending, resolves which channels may receive it
(severity routing ∩ enabled channels ∩ channels with an adapter), fans out
through the dispatcher, then settles the alert as sent (at least one channel
succeeded) or failed and updates the aggregate stats.

State mutations are serialized by an asyncio lock and persisted to
``alerts.json`` after every change. Delivery runs outside the lock, so a
slow channel never blocks acknowledgements or config updates.

Persistence is best-effort: a failed write is logged and the in-memory
state stays authoritative.
"""

import asyncio
import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from src.alerts.channels import IMPLEMENTED_CHANNELS
from src.alerts.config import AlertConfig, default_alert_config
from src.alerts.dispatcher import NotificationDispatcher
from src.alerts.repository import AlertsState, AlertStateRepository
from src.alerts.schemas import (
    Alert,
    AlertResult,
    AlertStats,
    ChannelResult,
    NotificationPayload,
    ValidationResult,
    new_alert_id,
    validate_severity,
)
from src.observability.metrics import get_metrics
from src.storage.json_store import PersistenceError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DISABLED_ALERT_ID = "disabled"
DEFAULT_SOURCE = "monitor"
TEST_ALERT_MESSAGE = (
    "This is a test alert to verify your notification configuration "
    "is working correctly."
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlertNotifier:
    """Creates, delivers and tracks alerts.

    Args:
        repository: Persistence for the alert document. Existing state is
            loaded at construction.
        dispatcher: Channel fan-out (defaults created if None).
        config: Alert configuration to use instead of the persisted one.
        clock: Source of the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        repository: AlertStateRepository,
        dispatcher: NotificationDispatcher | None = None,
        config: AlertConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._clock = clock or _utc_now
        self._lock = asyncio.Lock()

        state = repository.load() or AlertsState()
        self._alerts: list[Alert] = state.alerts
        self._stats: AlertStats = state.stats
        self._config: AlertConfig = config or state.config or default_alert_config()

    # ── Sending ─────────────────────────────────────────────

    async def send_alert(
        self,
        severity: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
        source: str | None = None,
        channels: list[str] | None = None,
    ) -> AlertResult:
        """Create an alert and deliver it to every eligible channel.

        Args:
            severity: critical, high, medium, low, or info.
            title: Short summary.
            message: Detailed description.
            metadata: Extra context shown by the channels.
            source: Originating component (default "monitor").
            channels: Further restrict delivery to these channel types
                (used by rule actions). None means "whatever routing allows".

        Returns:
            AlertResult with one ChannelResult per attempted channel. When
            alerting is disabled the id is "disabled" and nothing is recorded.

        Raises:
            ValueError: If the severity is unknown.
        """
        validate_severity(severity)
        if not self._config.enabled:
            logger.debug("Alerting disabled, dropping alert '%s'", title)
            return AlertResult(
                alert_id=DISABLED_ALERT_ID,
                success=False,
                timestamp=self._clock(),
            )

        return await self._deliver(
            severity,
            title,
            message,
            metadata=metadata,
            source=source,
            channel_types=self.resolve_channels(severity, channels),
        )

    async def test_alert(self) -> AlertResult:
        """Send an info alert through every enabled channel, ignoring routing."""
        if not self._config.enabled:
            return AlertResult(
                alert_id=DISABLED_ALERT_ID,
                success=False,
                timestamp=self._clock(),
            )
        return await self._deliver(
            "info",
            "Test Alert",
            TEST_ALERT_MESSAGE,
            metadata={"test": True},
            source=DEFAULT_SOURCE,
            channel_types=self._deliverable(self._config.enabled_channels()),
        )

    def resolve_channels(self, severity: str, channels: list[str] | None = None) -> list[str]:
        """Channels an alert of this severity would be delivered to.

        Severity routing (``["log"]`` when the severity has no entry),
        filtered to enabled channels that have an adapter, and to
        ``channels`` when given. Order follows the routing list.
        """
        routing = self._config.severity_routing.get(severity, ["log"])
        enabled = set(self._config.enabled_channels())
        candidates = [c for c in routing if c in enabled]
        if channels is not None:
            candidates = [c for c in candidates if c in channels]
        return self._deliverable(candidates)

    def _deliverable(self, channel_types: list[str]) -> list[str]:
        resolved: list[str] = []
        for channel_type in channel_types:
            if channel_type in resolved:
                continue
            if channel_type not in IMPLEMENTED_CHANNELS:
                logger.warning(
                    "Channel %s is enabled but not implemented, skipping",
                    channel_type,
                )
                continue
            resolved.append(channel_type)
        return resolved

    async def _deliver(
        self,
        severity: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None,
        source: str | None,
        channel_types: list[str],
    ) -> AlertResult:
        now = self._clock()
        alert = Alert(
            id=new_alert_id(now),
            severity=severity,
            title=title,
            message=message,
            source=source or DEFAULT_SOURCE,
            timestamp=now,
            metadata=copy.deepcopy(metadata),
            channels=list(channel_types),
        )

        async with self._lock:
            self._alerts.append(alert)
            await self._persist()

        results: list[ChannelResult] = []
        if channel_types:
            results = await self._dispatcher.dispatch(
                NotificationPayload.from_alert(alert),
                channel_types,
                dict(self._config.channels),
            )

        async with self._lock:
            self._settle(alert, results)
            self._update_stats(alert, results)
            await self._persist()

        get_metrics().record_alert(alert.severity, alert.status)
        logger.info(
            "Alert %s (%s) %s: %d/%d channels succeeded",
            alert.id, alert.severity, alert.status,
            sum(1 for r in results if r.success), len(results),
        )

        return AlertResult(
            alert_id=alert.id,
            success=alert.status == "sent",
            results=results,
            timestamp=alert.timestamp,
        )

    def _settle(self, alert: Alert, results: list[ChannelResult]) -> None:
        now = self._clock()
        if any(r.success for r in results):
            alert.status = "sent"
            alert.sent_at = now
            return

        alert.status = "failed"
        alert.failed_at = now
        if not results:
            alert.error = f"No enabled channels for severity '{alert.severity}'"
        else:
            alert.error = next((r.error for r in results if r.error), "Delivery failed")

    def _update_stats(self, alert: Alert, results: list[ChannelResult]) -> None:
        stats = self._stats
        stats.total += 1
        stats.by_status[alert.status] = stats.by_status.get(alert.status, 0) + 1
        stats.by_severity[alert.severity] = stats.by_severity.get(alert.severity, 0) + 1
        for result in results:
            if result.success:
                stats.by_channel[result.channel] = stats.by_channel.get(result.channel, 0) + 1
        stats.last24h = self._count_last_24h()
        if alert.status == "sent":
            stats.last_alert = copy.deepcopy(alert)

    def _count_last_24h(self) -> int:
        cutoff = self._clock() - timedelta(hours=24)
        return sum(1 for a in self._alerts if a.timestamp > cutoff)

    # ── Queries ─────────────────────────────────────────────

    def get_alerts(self, limit: int | None = None) -> list[Alert]:
        """Alerts, most recent first."""
        alerts = list(reversed(self._alerts))
        if limit:
            alerts = alerts[:limit]
        return copy.deepcopy(alerts)

    def get_alert(self, alert_id: str) -> Alert | None:
        alert = self._find(alert_id)
        return copy.deepcopy(alert) if alert is not None else None

    def get_stats(self) -> AlertStats:
        return copy.deepcopy(self._stats)

    def get_config(self) -> AlertConfig:
        return self._config.model_copy(deep=True)

    # ── Administration ──────────────────────────────────────

    async def update_config(self, changes: dict[str, Any]) -> AlertConfig:
        """Shallow top-level merge into the alert config.

        Nested values (``channels``, ``rules``, ``severityRouting``) replace
        the current value for that key wholesale.

        Args:
            changes: Top-level fields, camelCase or snake_case.

        Returns:
            The updated config.

        Raises:
            ValueError: On an unknown key or a value that fails validation.
        """
        names = {}
        for name, info in AlertConfig.model_fields.items():
            names[name] = name
            if info.alias:
                names[info.alias] = name

        unknown = sorted(set(changes) - set(names))
        if unknown:
            raise ValueError(f"Unknown config fields: {unknown}")

        # Read-modify-write under the lock; rule stamps mutate the same document.
        async with self._lock:
            merged = self._config.model_dump()
            for key, value in changes.items():
                merged[names[key]] = value
            self._config = AlertConfig.model_validate(merged)
            await self._persist()

        logger.info("Alert config updated: %s", sorted(names[k] for k in changes))
        return self.get_config()

    async def set_enabled(self, enabled: bool) -> AlertConfig:
        return await self.update_config({"enabled": enabled})

    async def mark_rule_triggered(self, rule_id: str, when: datetime | None = None) -> bool:
        """Record that a rule fired. Returns False for an unknown rule."""
        async with self._lock:
            rule = self._config.get_rule(rule_id)
            if rule is None:
                return False
            rule.last_triggered = when or self._clock()
            await self._persist()
        return True

    async def clear_old_alerts(self, older_than_days: float = 7) -> int:
        """Drop alerts older than the given age.

        Returns:
            Number of alerts removed. Remaining alerts keep their order.
        """
        cutoff = self._clock() - timedelta(days=older_than_days)
        async with self._lock:
            before = len(self._alerts)
            self._alerts = [a for a in self._alerts if a.timestamp >= cutoff]
            removed = before - len(self._alerts)
            if removed:
                self._stats.last24h = self._count_last_24h()
                await self._persist()

        if removed:
            logger.info("Cleared %d alerts older than %s days", removed, older_than_days)
        return removed

    async def acknowledge_alert(self, alert_id: str) -> bool:
        """Move a sent or failed alert to acknowledged.

        Returns:
            False if the alert is unknown, still pending, or already
            acknowledged.
        """
        async with self._lock:
            alert = self._find(alert_id)
            if alert is None or alert.status not in ("sent", "failed"):
                return False

            previous = alert.status
            alert.status = "acknowledged"
            by_status = self._stats.by_status
            by_status[previous] = max(by_status.get(previous, 0) - 1, 0)
            by_status["acknowledged"] = by_status.get("acknowledged", 0) + 1
            await self._persist()

        logger.info("Alert %s acknowledged", alert_id)
        return True

    # ── Channels ────────────────────────────────────────────

    def validate_channels(self) -> dict[str, ValidationResult]:
        """Check the configuration of every enabled channel."""
        results: dict[str, ValidationResult] = {}
        for channel_type in self._config.enabled_channels():
            try:
                channel = self._dispatcher.build_channel(
                    channel_type, self._config.channels[channel_type],
                )
            except ValueError as e:
                results[channel_type] = ValidationResult(valid=False, error=str(e))
                continue
            if channel is None:
                results[channel_type] = ValidationResult(
                    valid=False,
                    error=f"Channel '{channel_type}' is not implemented",
                )
            else:
                results[channel_type] = channel.validate()
        return results

    async def test_channel(self, channel_type: str) -> bool:
        """Send a smoke notification through one configured channel."""
        channel_config = self._config.channels.get(channel_type)
        if channel_config is None:
            return False
        try:
            channel = self._dispatcher.build_channel(channel_type, channel_config)
        except ValueError as e:
            logger.warning("Cannot build channel %s: %s", channel_type, e)
            return False
        if channel is None:
            return False
        return await channel.test()

    # ── Internals ───────────────────────────────────────────

    def _find(self, alert_id: str) -> Alert | None:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    async def _persist(self) -> None:
        """Best-effort write of the alert document (caller holds the lock)."""
        state = AlertsState(config=self._config, alerts=self._alerts, stats=self._stats)
        try:
            await self._repository.save(state)
        except PersistenceError as e:
            logger.error("Failed to persist alert state: %s", e)
