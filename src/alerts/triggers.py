"""Stateless condition functions for alert rules.

Each function checks one condition type against a snapshot of the system
and returns a ``ConditionResult``: whether the condition holds, plus the
placeholder values a message template may reference. No I/O, no state; the
cooldown bookkeeping and notification side effects live in AlertRuleEngine.
"""

import operator
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.agents.schemas import AgentState
from src.alerts.config import (
    AlertRule,
    PatternCondition,
    RateCondition,
    ThresholdCondition,
)
from src.circuit_breaker.schemas import CircuitBreakerState, CircuitState

OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass
class MetricsSnapshot:
    """Externally computed inputs for one evaluation pass.

    Attributes:
        metrics: Numeric values for threshold and rate conditions, keyed by
            metric name (rates are ratios in [0, 1]).
        texts: Text sources for pattern conditions, keyed by metric name.
        context: Extra placeholder values (e.g. ``timeout``) for templates.
    """

    metrics: dict[str, float] = field(default_factory=dict)
    texts: dict[str, str] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class ConditionResult:
    triggered: bool
    context: dict[str, Any] = field(default_factory=dict)


def compare(value: float, op: str, threshold: float) -> bool:
    """Apply a comparison operator.

    Raises:
        ValueError: If the operator is not supported.
    """
    fn = OPERATORS.get(op)
    if fn is None:
        raise ValueError(f"Unsupported operator {op!r}. Must be one of: {list(OPERATORS)}")
    return fn(value, threshold)


def check_threshold(
    condition: ThresholdCondition,
    snapshot: MetricsSnapshot,
) -> ConditionResult:
    """``metric <op> threshold``. A missing metric never triggers."""
    value = snapshot.metrics.get(condition.metric)
    if value is None:
        return ConditionResult(triggered=False)

    return ConditionResult(
        triggered=compare(value, condition.operator, condition.threshold),
        context={
            "metric": condition.metric,
            "value": value,
            "count": value,
            "threshold": condition.threshold,
        },
    )


def check_rate(condition: RateCondition, snapshot: MetricsSnapshot) -> ConditionResult:
    """Compare an externally computed ratio over ``window_seconds``.

    ``{rate}`` renders the ratio as a whole percentage (0.62 -> "62").
    """
    value = snapshot.metrics.get(condition.metric)
    if value is None:
        return ConditionResult(triggered=False)

    return ConditionResult(
        triggered=compare(value, condition.operator, condition.threshold),
        context={
            "metric": condition.metric,
            "value": value,
            "rate": f"{value * 100:.0f}",
            "threshold": condition.threshold,
            "windowSeconds": condition.window_seconds,
        },
    )


def check_pattern(condition: PatternCondition, snapshot: MetricsSnapshot) -> ConditionResult:
    """Substring match, or regex search when ``condition.regex`` is set.

    Raises:
        re.error: If a regex pattern does not compile.
    """
    text = snapshot.texts.get(condition.metric)
    if text is None:
        return ConditionResult(triggered=False)

    if condition.regex:
        match = re.search(condition.pattern, text)
        matched = match.group(0) if match else None
    else:
        matched = condition.pattern if condition.pattern in text else None

    if matched is None:
        return ConditionResult(triggered=False)
    return ConditionResult(
        triggered=True,
        context={
            "metric": condition.metric,
            "pattern": condition.pattern,
            "match": matched,
        },
    )


def check_circuit(
    counts: Mapping[CircuitState, int],
    open_circuits: Sequence[CircuitBreakerState],
) -> ConditionResult:
    """True while any breaker is OPEN.

    Placeholders describe the first open breaker; ``{circuits}`` lists all.
    """
    if counts.get(CircuitState.OPEN, 0) <= 0:
        return ConditionResult(triggered=False)

    context: dict[str, Any] = {"count": counts[CircuitState.OPEN]}
    if open_circuits:
        first = open_circuits[0]
        context.update(
            circuit=first.name,
            failureCount=first.failure_count,
            reason=first.last_failure_reason or "",
            circuits=", ".join(c.name for c in open_circuits),
        )
    return ConditionResult(triggered=True, context=context)


def check_agent_stale(stale_agents: Sequence[AgentState]) -> ConditionResult:
    """True while any active agent has missed its heartbeat timeout."""
    if not stale_agents:
        return ConditionResult(triggered=False)

    first = stale_agents[0]
    return ConditionResult(
        triggered=True,
        context={
            "agentId": first.id,
            "role": first.role,
            "timeout": first.heartbeat_timeout,
            "count": len(stale_agents),
            "agents": ", ".join(a.id for a in stale_agents),
        },
    )


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else f"{value:g}"
    return str(value)


def interpolate_template(template: str, context: Mapping[str, Any]) -> str:
    """Substitute ``{name}`` placeholders. Unknown names are left verbatim."""

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        if key not in context:
            return match.group(0)
        return _render(context[key])

    return _PLACEHOLDER.sub(_sub, template)


def rule_cooldown(rule: AlertRule, global_cooldown: float) -> float:
    if rule.cooldown_seconds is not None:
        return rule.cooldown_seconds
    return global_cooldown


def cooldown_elapsed(rule: AlertRule, now: datetime, global_cooldown: float) -> bool:
    """True if the rule never fired or its cooldown has fully passed."""
    if rule.last_triggered is None:
        return True
    elapsed = (now - rule.last_triggered).total_seconds()
    return elapsed >= rule_cooldown(rule, global_cooldown)
