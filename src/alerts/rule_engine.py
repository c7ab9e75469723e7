"""Alert rule engine.

Pull-based: each ``evaluate`` call reads the circuit breaker registry and the
agent tracker, combines them with an externally supplied MetricsSnapshot,
and checks every enabled rule in the notifier's current config. A rule
whose condition holds and whose cooldown has elapsed fires: its
``last_triggered`` is stamped and one notification is sent per distinct
action.

Condition logic is delegated to the stateless functions in ``triggers.py``.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from src.agents.tracker import AgentHeartbeatTracker
from src.alerts.config import (
    AgentStaleCondition,
    AlertAction,
    AlertRule,
    CircuitCondition,
    PatternCondition,
    RateCondition,
    ThresholdCondition,
)
from src.alerts.notifier import AlertNotifier
from src.alerts.schemas import AlertResult
from src.alerts.triggers import (
    ConditionResult,
    MetricsSnapshot,
    check_agent_stale,
    check_circuit,
    check_pattern,
    check_rate,
    check_threshold,
    cooldown_elapsed,
    interpolate_template,
)
from src.circuit_breaker.registry import CircuitBreakerRegistry
from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

RULE_SOURCE = "rule-engine"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RuleFiring:
    """One notification sent on behalf of a rule."""

    rule_id: str
    rule_name: str
    severity: str
    message: str
    channels: list[str] | None
    result: AlertResult
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "severity": self.severity,
            "message": self.message,
            "channels": self.channels,
            "result": self.result.to_dict(),
        }


class AlertRuleEngine:
    """Evaluates configured alert rules and fires notifications.

    Args:
        notifier: Source of the rule config and sink for notifications.
        registry: Circuit breakers read by ``circuit`` conditions.
        tracker: Agents read by ``agent_stale`` conditions.
        clock: Source of the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        notifier: AlertNotifier,
        registry: CircuitBreakerRegistry,
        tracker: AgentHeartbeatTracker,
        clock: Clock | None = None,
    ) -> None:
        self._notifier = notifier
        self._registry = registry
        self._tracker = tracker
        self._clock = clock or _utc_now

    def check_condition(self, rule: AlertRule, snapshot: MetricsSnapshot) -> ConditionResult:
        """Evaluate one rule's condition against the current system state."""
        condition = rule.condition
        if isinstance(condition, ThresholdCondition):
            return check_threshold(condition, snapshot)
        if isinstance(condition, RateCondition):
            return check_rate(condition, snapshot)
        if isinstance(condition, PatternCondition):
            return check_pattern(condition, snapshot)
        if isinstance(condition, CircuitCondition):
            return check_circuit(
                self._registry.get_count_by_state(),
                self._registry.get_open_circuits(),
            )
        if isinstance(condition, AgentStaleCondition):
            return check_agent_stale(self._tracker.get_stale_agents())
        raise ValueError(f"Unsupported condition type {condition.type!r}")

    async def evaluate(self, snapshot: MetricsSnapshot | None = None) -> list[RuleFiring]:
        """Run one evaluation pass over every enabled rule.

        Args:
            snapshot: Metric values and text sources for threshold, rate and
                pattern conditions. Rules whose metric is absent do not fire.

        Returns:
            The notifications sent during this pass.
        """
        snapshot = snapshot or MetricsSnapshot()
        config = self._notifier.get_config()
        if not config.enabled:
            logger.debug("Alerting disabled, skipping rule evaluation")
            return []

        started = time.perf_counter()
        firings: list[RuleFiring] = []
        for rule in config.rules:
            if not rule.enabled:
                continue
            try:
                outcome = self.check_condition(rule, snapshot)
            except (TypeError, ValueError, re.error) as e:
                logger.error("Rule %s could not be evaluated: %s", rule.id, e)
                continue
            if not outcome.triggered:
                continue

            now = self._clock()
            if not cooldown_elapsed(rule, now, config.global_cooldown):
                logger.debug("Rule %s triggered but still cooling down", rule.id)
                continue

            firings.extend(await self._fire(rule, outcome, snapshot, now))

        get_metrics().rule_evaluation_latency.observe(time.perf_counter() - started)
        if firings:
            logger.info(
                "Rule evaluation fired %d notifications from %d rules",
                len(firings), len({f.rule_id for f in firings}),
            )
        return firings

    async def _fire(
        self,
        rule: AlertRule,
        outcome: ConditionResult,
        snapshot: MetricsSnapshot,
        now: datetime,
    ) -> list[RuleFiring]:
        await self._notifier.mark_rule_triggered(rule.id, now)
        get_metrics().record_rule_firing(rule.id)

        context = {
            **snapshot.context,
            **outcome.context,
            "ruleId": rule.id,
            "ruleName": rule.name,
        }
        metadata = {"ruleId": rule.id, "condition": rule.condition.type}

        firings: list[RuleFiring] = []
        for action in _distinct_actions(rule):
            message = interpolate_template(action.message_template or rule.name, context)
            channels = list(action.channels) or None
            result = await self._notifier.send_alert(
                rule.severity,
                rule.name,
                message,
                metadata=metadata,
                source=RULE_SOURCE,
                channels=channels,
            )
            logger.info("Rule %s fired: %s", rule.id, message)
            firings.append(RuleFiring(
                rule_id=rule.id,
                rule_name=rule.name,
                severity=rule.severity,
                message=message,
                channels=channels,
                result=result,
                context=context,
            ))
        return firings


def _distinct_actions(rule: AlertRule) -> list[AlertAction]:
    """Rule actions deduplicated by (channels, template), in order.

    A rule without actions notifies once through severity routing.
    """
    if not rule.actions:
        return [AlertAction()]

    seen: set[tuple[tuple[str, ...], str | None]] = set()
    actions: list[AlertAction] = []
    for action in rule.actions:
        key = (tuple(sorted(action.channels)), action.message_template)
        if key in seen:
            continue
        seen.add(key)
        actions.append(action)
    return actions
