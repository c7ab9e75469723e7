"""Notification dispatcher fanning one payload out to several channels.

Every selected channel is attempted concurrently and the dispatcher waits
for all of them. Each attempt is bounded by a per-channel timeout, so a hung
endpoint cannot stall the others. There are no retries: the rule cooldown,
not the channel, is what keeps alert storms in check.

Pattern: Orchestrator, delegates to stateless channels built per dispatch.
"""

import asyncio
import logging
import time
from typing import Callable

from src.alerts.channels import NotificationChannel, create_channel
from src.alerts.config import ChannelConfig, NotificationSettings
from src.alerts.schemas import ChannelResult, NotificationPayload
from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

ChannelBuilder = Callable[..., NotificationChannel | None]


class NotificationDispatcher:
    """Delivers a payload to a list of channel types.

    Args:
        settings: Delivery timeouts (defaults created if None).
        channel_builder: Adapter factory, ``create_channel`` by default.
    """

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        channel_builder: ChannelBuilder = create_channel,
    ) -> None:
        self._settings = settings or NotificationSettings()
        self._build = channel_builder

    @property
    def channel_timeout(self) -> float:
        return self._settings.channel_timeout_seconds

    def build_channel(
        self,
        channel_type: str,
        channel_config: ChannelConfig | None,
    ) -> NotificationChannel | None:
        """Instantiate the adapter for one configured channel.

        Returns:
            The adapter, or None when the type has no implementation.
        """
        config = channel_config.config if channel_config is not None else {}
        return self._build(channel_type, config, self._settings.http_timeout_seconds)

    async def dispatch(
        self,
        payload: NotificationPayload,
        channel_types: list[str],
        channel_configs: dict[str, ChannelConfig],
    ) -> list[ChannelResult]:
        """Send a payload to every listed channel and wait for all of them.

        Args:
            payload: Notification to deliver.
            channel_types: Channels to attempt, in order.
            channel_configs: Configured channels keyed by type.

        Returns:
            One ChannelResult per channel type, in the same order.
        """
        if not channel_types:
            return []

        results = await asyncio.gather(*(
            self._attempt(payload, channel_type, channel_configs.get(channel_type))
            for channel_type in channel_types
        ))
        self._record_delivery(payload, results)
        return list(results)

    async def _attempt(
        self,
        payload: NotificationPayload,
        channel_type: str,
        channel_config: ChannelConfig | None,
    ) -> ChannelResult:
        """One bounded delivery attempt. Never raises."""
        started = time.perf_counter()
        timeout = self._settings.channel_timeout_seconds
        try:
            channel = self.build_channel(channel_type, channel_config)
            if channel is None:
                result = ChannelResult(
                    channel=channel_type,
                    success=False,
                    error=f"Channel '{channel_type}' is not implemented",
                )
            else:
                result = await asyncio.wait_for(channel.send(payload), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Channel %s timed out after %.1fs", channel_type, timeout)
            result = ChannelResult(
                channel=channel_type,
                success=False,
                error=f"Delivery timed out after {timeout}s",
            )
        except Exception as e:
            logger.warning("Channel %s send error: %s", channel_type, e)
            result = ChannelResult(channel=channel_type, success=False, error=str(e))

        get_metrics().record_delivery(
            channel_type, result.success, time.perf_counter() - started,
        )
        return result

    def _record_delivery(
        self,
        payload: NotificationPayload,
        results: list[ChannelResult],
    ) -> None:
        """Log delivery results.

        Args:
            payload: Delivered payload.
            results: Per-channel delivery outcomes.
        """
        successes = [r.channel for r in results if r.success]
        failures = [r.channel for r in results if not r.success]

        if failures and not successes:
            logger.error(
                "Alert '%s' (%s) failed ALL channels: %s",
                payload.title, payload.severity, failures,
            )
        elif failures:
            logger.warning(
                "Alert '%s' partial delivery: ok=%s failed=%s",
                payload.title, successes, failures,
            )
        else:
            logger.debug(
                "Alert '%s' delivered to all channels: %s",
                payload.title, successes,
            )
