"""Agent heartbeat tracker.

Owns the id → AgentState map for every external agent, records heartbeats
and task progress, and runs the periodic sweep that marks silent agents as
failed. Every mutation is persisted to ``agents.json``.

Lookups return copies, so callers can never change tracked state except
through the tracker's own methods. Unknown ids are not errors: mutators
return False and lookups return None.

Usage:
    tracker = AgentHeartbeatTracker(AgentStateStore(path))
    await tracker.register_agent("coder-1", role="coder")
    await tracker.assign_task("coder-1", "task-7", "Fix login flow")
    tracker.start_heartbeat_monitor(sweep_interval_ms=30_000)
    ...
    await tracker.stop_heartbeat_monitor()
"""

import asyncio
import copy
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Callable

from src.agents.config import HeartbeatConfig
from src.agents.schemas import (
    VALID_AGENT_STATUSES,
    AgentHealth,
    AgentState,
    AgentTask,
    get_agent_health,
    is_agent_stale,
)
from src.agents.store import AgentStateStore
from src.observability.metrics import get_metrics
from src.storage.json_store import PersistenceError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_RESOURCE_FIELDS = {
    "tokens_used": "tokens_used",
    "tokensUsed": "tokens_used",
    "api_calls": "api_calls",
    "apiCalls": "api_calls",
    "cpu_percent": "cpu_percent",
    "cpuPercent": "cpu_percent",
    "memory_mb": "memory_mb",
    "memoryMB": "memory_mb",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AgentHeartbeatTracker:
    """Liveness bookkeeping for external agents.

    Args:
        store: Persistence for the agent map. Existing agents are loaded
            at construction.
        config: Default heartbeat interval/timeout (defaults created if None).
        clock: Source of the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        store: AgentStateStore,
        config: HeartbeatConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._config = config or HeartbeatConfig()
        self._clock = clock or _utc_now
        self._agents: dict[str, AgentState] = store.load()
        self._lock = asyncio.Lock()
        self._monitor_task: asyncio.Task | None = None

    # ── Registration ────────────────────────────────────────

    async def register_agent(
        self,
        agent_id: str,
        role: str,
        heartbeat_interval: float | None = None,
        heartbeat_timeout: float | None = None,
    ) -> AgentState:
        """Register (or re-register) an agent with status ``idle``.

        Re-registering an existing id keeps its creation time and task
        counters and replaces everything else.

        Args:
            agent_id: Agent identifier.
            role: Agent role.
            heartbeat_interval: Expected heartbeat period in seconds.
            heartbeat_timeout: Seconds of silence before the agent is stale.

        Returns:
            Copy of the registered agent state.
        """
        now = self._clock()
        async with self._lock:
            agent = AgentState(
                id=agent_id,
                role=role,
                status="idle",
                last_heartbeat=now,
                heartbeat_interval=(
                    self._config.interval_seconds if heartbeat_interval is None
                    else heartbeat_interval
                ),
                heartbeat_timeout=(
                    self._config.timeout_seconds if heartbeat_timeout is None
                    else heartbeat_timeout
                ),
                created_at=now,
                last_update=now,
            )
            existing = self._agents.get(agent_id)
            if existing is not None:
                agent.created_at = existing.created_at
                agent.tasks_completed = existing.tasks_completed
                agent.tasks_failed = existing.tasks_failed
                agent.resource_usage = existing.resource_usage
            self._agents[agent_id] = agent
            await self._persist()

        logger.info("Agent %s registered (role=%s)", agent_id, role)
        return copy.deepcopy(agent)

    async def unregister_agent(self, agent_id: str) -> bool:
        async with self._lock:
            if self._agents.pop(agent_id, None) is None:
                return False
            await self._persist()
        logger.info("Agent %s unregistered", agent_id)
        return True

    # ── Mutations ───────────────────────────────────────────

    async def heartbeat(self, agent_id: str) -> bool:
        """Record a heartbeat. A failed agent recovers to idle.

        Returns:
            False if the agent is unknown.
        """
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return False

            now = self._clock()
            agent.last_heartbeat = now
            agent.last_update = now
            if agent.status == "failed":
                agent.status = "idle"
                logger.info("Agent %s recovered after heartbeat", agent_id)
            await self._persist()
        return True

    async def set_agent_status(self, agent_id: str, status: str) -> bool:
        """Set an agent's status.

        Raises:
            ValueError: If ``status`` is not a valid agent status.
        """
        if status not in VALID_AGENT_STATUSES:
            raise ValueError(
                f"Invalid status {status!r}. "
                f"Must be one of: {sorted(VALID_AGENT_STATUSES)}"
            )
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return False
            agent.status = status
            agent.last_update = self._clock()
            await self._persist()
        return True

    async def assign_task(self, agent_id: str, task_id: str, description: str) -> bool:
        """Record the agent's current task and mark it ``active``."""
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return False
            now = self._clock()
            agent.current_task = AgentTask(id=task_id, description=description, started_at=now)
            agent.status = "active"
            agent.last_update = now
            await self._persist()
        return True

    async def complete_task(self, agent_id: str, success: bool = True) -> bool:
        """Count the current task as completed or failed and return to ``idle``."""
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return False
            if success:
                agent.tasks_completed += 1
            else:
                agent.tasks_failed += 1
            agent.current_task = None
            agent.status = "idle"
            agent.last_update = self._clock()
            await self._persist()
        return True

    async def update_resource_usage(self, agent_id: str, usage: dict[str, Any]) -> bool:
        """Merge reported resource counters into the agent's usage.

        Args:
            agent_id: Agent identifier.
            usage: Partial usage; camelCase or snake_case keys. Unknown keys
                are ignored.
        """
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return False
            for key, value in usage.items():
                attr = _RESOURCE_FIELDS.get(key)
                if attr is None:
                    logger.debug("Ignoring unknown resource field %s", key)
                    continue
                setattr(agent.resource_usage, attr, value)
            agent.last_update = self._clock()
            await self._persist()
        return True

    # ── Queries ─────────────────────────────────────────────

    def get_agent(self, agent_id: str) -> AgentState | None:
        agent = self._agents.get(agent_id)
        return copy.deepcopy(agent) if agent is not None else None

    def get_all_agents(self) -> list[AgentState]:
        return self._copies(self._agents.values())

    def get_agents_by_status(self, status: str) -> list[AgentState]:
        return self._copies(a for a in self._agents.values() if a.status == status)

    def get_agents_by_role(self, role: str) -> list[AgentState]:
        return self._copies(a for a in self._agents.values() if a.role == role)

    def get_agent_health(self, agent_id: str) -> AgentHealth | None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        return get_agent_health(agent, self._clock())

    def get_stale_agents(self) -> list[AgentState]:
        """Active agents whose last heartbeat is older than their timeout."""
        now = self._clock()
        return self._copies(
            a for a in self._agents.values()
            if a.status == "active" and is_agent_stale(a, now)
        )

    def get_stats(self) -> dict[str, int]:
        agents = list(self._agents.values())
        stats = {"total": len(agents)}
        for status in ("active", "idle", "failed", "terminated"):
            stats[status] = sum(1 for a in agents if a.status == status)
        stats["tasksCompleted"] = sum(a.tasks_completed for a in agents)
        stats["tasksFailed"] = sum(a.tasks_failed for a in agents)
        return stats

    # ── Heartbeat sweep ─────────────────────────────────────

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def mark_stale_agents(self, now: datetime | None = None) -> list[AgentState]:
        """One sweep pass: mark stale active agents as failed.

        Each agent is judged against its own ``heartbeat_timeout``.

        Args:
            now: Reference time (default: the tracker clock).

        Returns:
            Copies of the agents that were marked failed.
        """
        now = now or self._clock()
        marked: list[AgentState] = []
        async with self._lock:
            for agent in self._agents.values():
                if agent.status == "active" and is_agent_stale(agent, now):
                    agent.status = "failed"
                    agent.last_update = now
                    marked.append(copy.deepcopy(agent))
            if marked:
                await self._persist()

        if marked:
            logger.warning("Marked %d stale agents as failed", len(marked))
            for agent in marked:
                logger.warning(
                    "  - %s (%s): last heartbeat %s",
                    agent.id, agent.role, agent.last_heartbeat.isoformat(),
                )
            get_metrics().record_agents_marked_failed(len(marked))
        return marked

    def start_heartbeat_monitor(self, sweep_interval_ms: int | None = None) -> bool:
        """Start the recurring sweep on the running event loop.

        Idempotent: a second call while the sweep runs does nothing.

        Args:
            sweep_interval_ms: Sweep period (default from HeartbeatConfig).

        Returns:
            True if a new sweep task was started.
        """
        if self.is_monitoring:
            return False

        interval = (sweep_interval_ms or self._config.sweep_interval_ms) / 1000.0
        self._monitor_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(interval), name="heartbeat_monitor",
        )
        logger.info("Heartbeat monitor started (every %.1fs)", interval)
        return True

    async def stop_heartbeat_monitor(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task = self._monitor_task
        self._monitor_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Heartbeat monitor stopped")

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.mark_stale_agents()
            except Exception as e:
                logger.error("Heartbeat sweep failed: %s", e)

    # ── Internals ───────────────────────────────────────────

    @staticmethod
    def _copies(agents: Iterable[AgentState]) -> list[AgentState]:
        return [copy.deepcopy(a) for a in agents]

    async def _persist(self) -> None:
        """Best-effort write of the agent map (caller holds the lock)."""
        try:
            await self._store.save(self._agents)
        except PersistenceError as e:
            logger.error("Failed to persist agent state: %s", e)
