"""Schema definitions for tracked agent state.

Maps 1:1 to the entries of the ``agents.json`` state document. Liveness is
derived, never stored: staleness is a function of ``last_heartbeat``,
``heartbeat_timeout`` and the current time.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

AgentStatus = Literal["active", "idle", "failed", "terminated"]

VALID_AGENT_STATUSES: frozenset[str] = frozenset({
    "active",
    "idle",
    "failed",
    "terminated",
})

AgentHealth = Literal["healthy", "stale", "failed", "terminated"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return _utc_now()


@dataclass
class ResourceUsage:
    """Resource counters reported by an agent."""

    tokens_used: int = 0
    api_calls: int = 0
    cpu_percent: float | None = None
    memory_mb: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tokensUsed": self.tokens_used,
            "apiCalls": self.api_calls,
        }
        if self.cpu_percent is not None:
            data["cpuPercent"] = self.cpu_percent
        if self.memory_mb is not None:
            data["memoryMB"] = self.memory_mb
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceUsage":
        return cls(
            tokens_used=data.get("tokensUsed", 0),
            api_calls=data.get("apiCalls", 0),
            cpu_percent=data.get("cpuPercent"),
            memory_mb=data.get("memoryMB"),
        )


@dataclass
class AgentTask:
    """The task an agent is currently working on."""

    id: str
    description: str
    started_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "startedAt": self.started_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentTask":
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            started_at=_parse_dt(data.get("startedAt")),
        )


@dataclass
class AgentState:
    """Liveness and workload bookkeeping for one external agent.

    Attributes:
        id: Agent identifier.
        role: Free-form role name (e.g. "coder", "reviewer").
        status: active, idle, failed, or terminated.
        last_heartbeat: When the agent last reported in.
        heartbeat_interval: Expected seconds between heartbeats.
        heartbeat_timeout: Seconds without a heartbeat before stale.
        tasks_completed: Successfully completed tasks.
        tasks_failed: Failed tasks.
        current_task: Task in progress, if any.
        resource_usage: Reported resource counters.
        created_at: First registration time.
        last_update: Time of the latest mutation.
    """

    id: str
    role: str
    status: str = "idle"
    last_heartbeat: datetime = field(default_factory=_utc_now)
    heartbeat_interval: float = 60.0
    heartbeat_timeout: float = 300.0
    tasks_completed: int = 0
    tasks_failed: int = 0
    current_task: AgentTask | None = None
    resource_usage: ResourceUsage = field(default_factory=ResourceUsage)
    created_at: datetime = field(default_factory=_utc_now)
    last_update: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if self.status not in VALID_AGENT_STATUSES:
            raise ValueError(
                f"Invalid status {self.status!r}. "
                f"Must be one of: {sorted(VALID_AGENT_STATUSES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "status": self.status,
            "tasksCompleted": self.tasks_completed,
            "tasksFailed": self.tasks_failed,
            "lastHeartbeat": self.last_heartbeat.isoformat(),
            "heartbeatInterval": self.heartbeat_interval,
            "heartbeatTimeout": self.heartbeat_timeout,
            "resourceUsage": self.resource_usage.to_dict(),
            "createdAt": self.created_at.isoformat(),
            "lastUpdate": self.last_update.isoformat(),
        }
        if self.current_task is not None:
            data["currentTask"] = self.current_task.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentState":
        """Create an AgentState from a dictionary.

        Args:
            data: Dictionary with camelCase agent fields.

        Returns:
            AgentState instance.
        """
        task = data.get("currentTask")
        return cls(
            id=data["id"],
            role=data.get("role", "unknown"),
            status=data.get("status", "idle"),
            last_heartbeat=_parse_dt(data.get("lastHeartbeat")),
            heartbeat_interval=data.get("heartbeatInterval", 60.0),
            heartbeat_timeout=data.get("heartbeatTimeout", 300.0),
            tasks_completed=data.get("tasksCompleted", 0),
            tasks_failed=data.get("tasksFailed", 0),
            current_task=AgentTask.from_dict(task) if task else None,
            resource_usage=ResourceUsage.from_dict(data.get("resourceUsage") or {}),
            created_at=_parse_dt(data.get("createdAt")),
            last_update=_parse_dt(data.get("lastUpdate")),
        )


def is_agent_stale(agent: AgentState, now: datetime | None = None) -> bool:
    """True when the last heartbeat is older than the agent's timeout."""
    now = now or _utc_now()
    elapsed = (now - agent.last_heartbeat).total_seconds()
    return elapsed > agent.heartbeat_timeout


def is_agent_active(agent: AgentState, now: datetime | None = None) -> bool:
    """True for a live agent: not failed/terminated and not stale."""
    if agent.status in ("terminated", "failed"):
        return False
    return not is_agent_stale(agent, now)


def get_agent_health(agent: AgentState, now: datetime | None = None) -> AgentHealth:
    """Classify an agent: terminated, failed, stale, healthy (in that order)."""
    if agent.status == "terminated":
        return "terminated"
    if agent.status == "failed":
        return "failed"
    if is_agent_stale(agent, now):
        return "stale"
    return "healthy"
