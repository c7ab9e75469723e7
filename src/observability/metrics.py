"""
Prometheus metrics for the failure-detection and notification core.

Defines and exposes metrics for:
- Alerts created, by severity and final status
- Channel deliveries and delivery latency
- Circuit breaker states
- Agent liveness (stale agents, sweeps marking agents failed)
- Rule firings

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.circuit_breaker.schemas import CircuitState
from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for delivery latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_CIRCUIT_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class MetricsCollector:
    """
    Prometheus metrics collector for swarm-monitor.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.record_alert(severity="critical", status="sent")
        metrics.record_delivery("slack", success=False, latency=0.4)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Alerts
        self.alerts_total = Counter(
            "swarm_monitor_alerts_total",
            "Alerts created by the notifier",
            ["severity", "status"],  # status: sent, failed, disabled
        )

        self.channel_deliveries = Counter(
            "swarm_monitor_channel_deliveries_total",
            "Per-channel delivery attempts",
            ["channel", "result"],  # result: success, failure
        )

        self.channel_latency = Histogram(
            "swarm_monitor_channel_latency_seconds",
            "Time spent delivering an alert to one channel",
            ["channel"],
            buckets=LATENCY_BUCKETS,
        )

        # Circuit breakers
        self.circuit_state = Gauge(
            "swarm_monitor_circuit_state",
            "Circuit state (0=closed, 1=half_open, 2=open)",
            ["circuit"],
        )

        self.circuits_by_state = Gauge(
            "swarm_monitor_circuits",
            "Number of circuit breakers per state",
            ["state"],
        )

        # Agents
        self.stale_agents = Gauge(
            "swarm_monitor_stale_agents",
            "Active agents whose last heartbeat is older than their timeout",
        )

        self.agents_marked_failed = Counter(
            "swarm_monitor_agents_marked_failed_total",
            "Agents marked failed by the heartbeat sweep",
        )

        # Rules
        self.rule_firings = Counter(
            "swarm_monitor_rule_firings_total",
            "Alert rule firings",
            ["rule_id"],
        )

        self.rule_evaluation_latency = Histogram(
            "swarm_monitor_rule_evaluation_seconds",
            "Time to evaluate all enabled rules once",
            buckets=LATENCY_BUCKETS,
        )

        self._server_started = False

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to listen on (default from settings)
        """
        if self._server_started:
            return

        port = port or get_settings().metrics_port
        start_http_server(port, registry=REGISTRY)
        self._server_started = True
        logger.info("Metrics server started on port %d", port)

    def record_alert(self, severity: str, status: str) -> None:
        self.alerts_total.labels(severity=severity, status=status).inc()

    def record_delivery(self, channel: str, success: bool, latency: float) -> None:
        """
        Record one channel delivery attempt.

        Args:
            channel: Channel type (log, webhook, slack)
            success: Whether the channel reported success
            latency: Attempt duration in seconds
        """
        result = "success" if success else "failure"
        self.channel_deliveries.labels(channel=channel, result=result).inc()
        if latency > 0:
            self.channel_latency.labels(channel=channel).observe(latency)

    def set_circuit_state(self, circuit: str, state: CircuitState) -> None:
        self.circuit_state.labels(circuit=circuit).set(_CIRCUIT_STATE_VALUES[state])

    def set_circuit_counts(self, counts: dict[CircuitState, int]) -> None:
        for state, count in counts.items():
            self.circuits_by_state.labels(state=state.value).set(count)

    def set_stale_agents(self, count: int) -> None:
        self.stale_agents.set(count)

    def record_agents_marked_failed(self, count: int) -> None:
        if count > 0:
            self.agents_marked_failed.inc(count)

    def record_rule_firing(self, rule_id: str) -> None:
        self.rule_firings.labels(rule_id=rule_id).inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
