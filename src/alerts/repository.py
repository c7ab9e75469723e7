"""Alert state persistence backed by ``alerts.json``.

Document shape::

    {"alerts": [...], "stats": {...}, "config": {...}, "lastUpdate": "<iso>"}

The notifier owns the in-memory history, stats and config; this repository
only converts them to and from the on-disk document.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from src.alerts.config import AlertConfig
from src.alerts.schemas import Alert, AlertStats
from src.storage.json_store import JsonDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class AlertsState:
    """Everything the notifier persists.

    ``config`` is None for a document written without a config section; the
    notifier then starts from the default configuration.
    """

    config: AlertConfig | None = None
    alerts: list[Alert] = field(default_factory=list)
    stats: AlertStats = field(default_factory=AlertStats)


class AlertStateRepository:
    """Loads and saves the alert state document."""

    def __init__(self, path: str | Path) -> None:
        self._doc = JsonDocumentStore(path)

    @property
    def path(self) -> Path:
        return self._doc.path

    def load(self) -> AlertsState | None:
        """Read the persisted alert state.

        Alerts that fail to parse are logged and skipped. A config section
        that fails validation is an error, not something to silently replace.

        Returns:
            AlertsState, or None if no document exists yet.

        Raises:
            ValueError: If the stored config is malformed.
        """
        data = self._doc.read()
        if data is None:
            return None

        alerts: list[Alert] = []
        for raw in data.get("alerts") or []:
            try:
                alerts.append(Alert.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable alert %s: %s", raw.get("id"), e)

        config_data = data.get("config")
        state = AlertsState(
            config=AlertConfig.from_dict(config_data) if config_data else None,
            alerts=alerts,
            stats=AlertStats.from_dict(data.get("stats") or {}),
        )
        logger.debug("Loaded %d alerts from %s", len(alerts), self.path)
        return state

    async def save(self, state: AlertsState) -> None:
        """Rewrite the document from the given state.

        Raises:
            PersistenceError: If the write fails.
        """
        document = {
            "alerts": [a.to_dict() for a in state.alerts],
            "stats": state.stats.to_dict(),
            "config": state.config.to_dict(),
            "lastUpdate": datetime.now(timezone.utc).isoformat(),
        }
        await self._doc.write(document)
