"""
Monitor service - wires the failure-detection core together and runs it.

Builds the circuit breaker registry, agent tracker, alert notifier and rule
engine explicitly at process start and passes them to each other by
reference. While running it:

- Evaluates alert rules on a fixed interval
- Sweeps stale agents to failed, always after the rules have seen them
- Refreshes Prometheus gauges for circuits and stale agents

Usage:
    services = build_monitor_services()
    service = MonitorService(services)
    await service.start()  # Runs until stopped
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Union

import structlog

from src.agents.config import HeartbeatConfig
from src.agents.store import AgentStateStore
from src.agents.tracker import AgentHeartbeatTracker
from src.alerts.config import NotificationSettings, default_alert_config
from src.alerts.dispatcher import NotificationDispatcher
from src.alerts.notifier import AlertNotifier
from src.alerts.repository import AlertStateRepository
from src.alerts.rule_engine import AlertRuleEngine, RuleFiring
from src.alerts.triggers import MetricsSnapshot
from src.circuit_breaker.config import CircuitBreakerConfig
from src.circuit_breaker.registry import CircuitBreakerRegistry
from src.config.settings import Settings, get_settings
from src.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
MetricsProvider = Callable[[], Union[MetricsSnapshot, Awaitable[MetricsSnapshot]]]


@dataclass
class MonitorServices:
    """The explicitly constructed service graph."""

    settings: Settings
    registry: CircuitBreakerRegistry
    tracker: AgentHeartbeatTracker
    dispatcher: NotificationDispatcher
    notifier: AlertNotifier
    rule_engine: AlertRuleEngine


def build_monitor_services(
    settings: Settings | None = None,
    notification_settings: NotificationSettings | None = None,
    circuit_config: CircuitBreakerConfig | None = None,
    heartbeat_config: HeartbeatConfig | None = None,
    clock: Clock | None = None,
) -> MonitorServices:
    """
    Construct every core component from configuration.

    State documents are loaded from ``settings.state_dir`` (the alerts file
    can be relocated with ``NOTIFICATIONS_ALERTS_FILE``).

    Args:
        settings: Process settings (or load from environment)
        notification_settings: Delivery settings (or load from environment)
        circuit_config: Default breaker thresholds (or load from environment)
        heartbeat_config: Default heartbeat timings (or load from environment)
        clock: Shared time source for all components (tests inject one)

    Returns:
        MonitorServices holding the wired components
    """
    settings = settings or get_settings()
    notification_settings = notification_settings or NotificationSettings()

    registry = CircuitBreakerRegistry(default_config=circuit_config, clock=clock)
    tracker = AgentHeartbeatTracker(
        AgentStateStore(settings.agents_state_path),
        config=heartbeat_config,
        clock=clock,
    )

    alerts_path = notification_settings.alerts_file or settings.alerts_state_path
    log_file = notification_settings.log_file or str(settings.state_dir / "logs" / "alerts.log")
    repository = AlertStateRepository(alerts_path)
    dispatcher = NotificationDispatcher(notification_settings)
    notifier = AlertNotifier(
        repository,
        dispatcher=dispatcher,
        # A fresh installation starts from the defaults; afterwards the
        # persisted config is authoritative.
        config=None if repository.path.exists() else default_alert_config(log_file=log_file),
        clock=clock,
    )
    rule_engine = AlertRuleEngine(notifier, registry, tracker, clock=clock)

    logger.debug(
        "Monitor services built",
        state_dir=str(settings.state_dir),
        alerts_file=str(alerts_path),
    )
    return MonitorServices(
        settings=settings,
        registry=registry,
        tracker=tracker,
        dispatcher=dispatcher,
        notifier=notifier,
        rule_engine=rule_engine,
    )


class MonitorService:
    """
    Periodic rule evaluation plus heartbeat sweep lifecycle.

    Rule evaluation is pull-based: every ``evaluation_interval`` seconds the
    service takes a MetricsSnapshot from ``metrics_provider`` (sync or async
    callable) and hands it to the rule engine.

    The heartbeat sweep runs inside the same tick, after evaluation, once
    ``sweep_interval_ms`` has elapsed since the previous sweep. A stale
    agent is therefore visible to the ``agent_stale`` rule before the sweep
    marks it failed.
    """

    def __init__(
        self,
        services: MonitorServices,
        metrics_provider: MetricsProvider | None = None,
        evaluation_interval: float | None = None,
        sweep_interval_ms: int | None = None,
        serve_metrics: bool | None = None,
    ):
        """
        Initialize monitor service.

        Args:
            services: Wired components from build_monitor_services()
            metrics_provider: Source of external metrics (default: empty snapshot)
            evaluation_interval: Seconds between rule evaluations (default from settings)
            sweep_interval_ms: Minimum heartbeat sweep period (default from settings)
            serve_metrics: Start the Prometheus endpoint (default from settings)
        """
        settings = services.settings
        self._services = services
        self._metrics_provider = metrics_provider
        self._interval = evaluation_interval or settings.rule_evaluation_interval_seconds
        self._sweep_interval_ms = sweep_interval_ms or settings.heartbeat_sweep_interval_ms
        self._serve_metrics = (
            settings.metrics_enabled if serve_metrics is None else serve_metrics
        )
        self._metrics = get_metrics()
        self._stop_event = asyncio.Event()
        self._running = False
        self._last_sweep: float | None = None

    @property
    def services(self) -> MonitorServices:
        return self._services

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start the monitor loop.

        Runs until stop() is called. Calling start() on a running service
        is a no-op.
        """
        if self._running:
            logger.warning("Monitor service already running")
            return

        self._running = True
        self._stop_event.clear()

        if self._serve_metrics:
            self._metrics.start_server(self._services.settings.metrics_port)

        logger.info(
            "Starting monitor service",
            evaluation_interval=self._interval,
            sweep_interval_ms=self._sweep_interval_ms,
        )

        try:
            while not self._stop_event.is_set():
                await self.run_once()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Monitor service cancelled")
        finally:
            self._running = False
            logger.info("Monitor service stopped")

    async def stop(self) -> None:
        """Stop the monitor loop gracefully."""
        logger.info("Stopping monitor service")
        self._stop_event.set()

    async def run_once(self) -> list[RuleFiring]:
        """
        One monitor tick: refresh gauges, evaluate rules, then sweep.

        Errors are logged and swallowed so the loop survives a bad tick.

        Returns:
            Notifications fired during this tick
        """
        self.refresh_gauges()
        try:
            snapshot = await self._collect_snapshot()
            firings = await self._services.rule_engine.evaluate(snapshot)
        except Exception as e:
            logger.error("Rule evaluation failed", error=str(e))
            firings = []

        if self._sweep_due():
            try:
                await self._services.tracker.mark_stale_agents()
            except Exception as e:
                logger.error("Heartbeat sweep failed", error=str(e))
        return firings

    def refresh_gauges(self) -> None:
        registry = self._services.registry
        for state in registry.get_all_states():
            self._metrics.set_circuit_state(state.name, state.state)
        self._metrics.set_circuit_counts(registry.get_count_by_state())
        self._metrics.set_stale_agents(len(self._services.tracker.get_stale_agents()))

    def _sweep_due(self) -> bool:
        now = time.monotonic()
        if (
            self._last_sweep is not None
            and (now - self._last_sweep) * 1000.0 < self._sweep_interval_ms
        ):
            return False
        self._last_sweep = now
        return True

    async def _collect_snapshot(self) -> MetricsSnapshot:
        if self._metrics_provider is None:
            return MetricsSnapshot()
        snapshot = self._metrics_provider()
        if inspect.isawaitable(snapshot):
            snapshot = await snapshot
        return snapshot
