"""Agent liveness tracking with heartbeats and a stale-agent sweep.

Components:
- AgentState / AgentTask / ResourceUsage: Dataclasses mapping to agents.json
- HeartbeatConfig: Pydantic settings for heartbeat defaults
- AgentStateStore: JSON document persistence
- AgentHeartbeatTracker: Registration, heartbeats, tasks, sweep
"""

from src.agents.config import HeartbeatConfig
from src.agents.schemas import (
    VALID_AGENT_STATUSES,
    AgentHealth,
    AgentState,
    AgentStatus,
    AgentTask,
    ResourceUsage,
    get_agent_health,
    is_agent_active,
    is_agent_stale,
)
from src.agents.store import AgentStateStore
from src.agents.tracker import AgentHeartbeatTracker

__all__ = [
    "AgentHealth",
    "AgentHeartbeatTracker",
    "AgentState",
    "AgentStateStore",
    "AgentStatus",
    "AgentTask",
    "HeartbeatConfig",
    "ResourceUsage",
    "VALID_AGENT_STATUSES",
    "get_agent_health",
    "is_agent_active",
    "is_agent_stale",
]
