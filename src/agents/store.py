"""Agent state persistence backed by ``agents.json``.

Document shape::

    {"agents": {"<id>": {...AgentState...}}, "lastUpdate": "<iso>", "version": 1}

The tracker owns the in-memory agent map; this store only converts it to and
from the on-disk document.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from src.agents.schemas import AgentState
from src.storage.json_store import JsonDocumentStore

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class AgentStateStore:
    """Loads and saves the agent state document."""

    def __init__(self, path: str | Path) -> None:
        self._doc = JsonDocumentStore(path)

    @property
    def path(self) -> Path:
        return self._doc.path

    def load(self) -> dict[str, AgentState]:
        """Read all persisted agents.

        Entries that fail to parse are logged and skipped.

        Returns:
            Agents keyed by id (empty if no document exists yet).
        """
        data = self._doc.read()
        if data is None:
            return {}

        agents: dict[str, AgentState] = {}
        for agent_id, raw in (data.get("agents") or {}).items():
            try:
                agent = AgentState.from_dict({"id": agent_id, **raw})
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable agent %s: %s", agent_id, e)
                continue
            agents[agent.id] = agent

        logger.debug("Loaded %d agents from %s", len(agents), self.path)
        return agents

    async def save(self, agents: dict[str, AgentState]) -> None:
        """Rewrite the document from the given agent map.

        Raises:
            PersistenceError: If the write fails.
        """
        document = {
            "agents": {agent_id: a.to_dict() for agent_id, a in agents.items()},
            "lastUpdate": datetime.now(timezone.utc).isoformat(),
            "version": STATE_VERSION,
        }
        await self._doc.write(document)
