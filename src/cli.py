"""
Command-line interface for swarm-monitor.

Runs the monitor loop and operates the persisted alert and agent state.
Every command except ``monitor`` prints a JSON envelope:

    {"success": true, "data": ..., "error": null}

Usage:
    swarm-monitor monitor                 # Run rule evaluation + heartbeat sweep
    swarm-monitor alerts list --limit 20  # Recent alerts
    swarm-monitor alerts send --severity high --title T --message M
    swarm-monitor agents register coder-1 --role coder
    swarm-monitor agents stale --mark     # One sweep pass
"""

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any

import click
import structlog

from src.config.settings import get_settings
from src.observability.logging import bind_context, setup_logging

logger = structlog.get_logger(__name__)


def _emit(data: Any = None, error: str | None = None) -> None:
    """Print the JSON envelope; exit non-zero on error."""
    envelope = {"success": error is None, "data": data, "error": error}
    click.echo(json.dumps(envelope, indent=2, default=str))
    if error is not None:
        sys.exit(1)


def _services(ctx: click.Context):
    from src.services.monitor_service import build_monitor_services

    try:
        return build_monitor_services(ctx.obj["settings"])
    except ValueError as e:
        logger.error("Failed to load monitor state", error=str(e))
        _emit(error=f"Invalid state document: {e}")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding agents.json and alerts.json",
)
@click.pass_context
def main(ctx: click.Context, debug: bool, state_dir: Path | None) -> None:
    """Swarm Monitor - failure detection and alerting for agent swarms."""
    setup_logging(level="DEBUG" if debug else None)

    settings = get_settings()
    if state_dir is not None:
        settings = settings.model_copy(update={"state_dir": state_dir})

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    bind_context(command=ctx.invoked_subcommand)


# ── monitor ─────────────────────────────────────────────────


@main.command()
@click.option("--interval", type=float, default=None, help="Seconds between rule evaluations")
@click.option("--sweep-ms", type=int, default=None, help="Heartbeat sweep interval in ms")
@click.option("--metrics/--no-metrics", default=None, help="Enable metrics server")
@click.option(
    "--once", is_flag=True, help="Run one tick (rules, then heartbeat sweep) and print the firings",
)
@click.pass_context
def monitor(
    ctx: click.Context,
    interval: float | None,
    sweep_ms: int | None,
    metrics: bool | None,
    once: bool,
) -> None:
    """Run the monitor loop (rule evaluation and heartbeat sweep)."""
    from src.services.monitor_service import MonitorService

    async def run():
        service = MonitorService(
            _services(ctx),
            evaluation_interval=interval,
            sweep_interval_ms=sweep_ms,
            serve_metrics=False if once else metrics,
        )

        if once:
            firings = await service.run_once()
            return [f.to_dict() for f in firings]

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

        await service.start()
        return None

    result = asyncio.run(run())
    if once:
        _emit(result)


# ── alerts ──────────────────────────────────────────────────


@main.group()
def alerts() -> None:
    """Alert history, configuration, and delivery commands."""


@alerts.command("list")
@click.option("--limit", type=int, default=None, help="Maximum alerts to show (most recent first)")
@click.pass_context
def alerts_list(ctx: click.Context, limit: int | None) -> None:
    """List recorded alerts."""
    notifier = _services(ctx).notifier
    _emit([a.to_dict() for a in notifier.get_alerts(limit)])


@alerts.command("stats")
@click.pass_context
def alerts_stats(ctx: click.Context) -> None:
    """Show aggregate alert statistics."""
    _emit(_services(ctx).notifier.get_stats().to_dict())


@alerts.command("config")
@click.pass_context
def alerts_config(ctx: click.Context) -> None:
    """Show the alert configuration."""
    _emit(_services(ctx).notifier.get_config().to_dict())


@alerts.command("send")
@click.option(
    "--severity",
    required=True,
    type=click.Choice(["critical", "high", "medium", "low", "info"]),
    help="Alert severity",
)
@click.option("--title", required=True, help="Alert title")
@click.option("--message", required=True, help="Alert message")
@click.option("--source", default=None, help="Originating component (default: monitor)")
@click.option("--meta", multiple=True, help="Metadata entry as key=value (repeatable)")
@click.pass_context
def alerts_send(
    ctx: click.Context,
    severity: str,
    title: str,
    message: str,
    source: str | None,
    meta: tuple[str, ...],
) -> None:
    """Create an alert and deliver it through the routed channels.

    Example:
        swarm-monitor alerts send --severity critical --title "DB down" \\
            --message "Primary unreachable" --meta host=db-1
    """
    metadata: dict[str, str] = {}
    for entry in meta:
        key, sep, value = entry.partition("=")
        if not sep or not key:
            _emit(error=f"Invalid --meta entry {entry!r}, expected key=value")
        metadata[key] = value

    notifier = _services(ctx).notifier
    result = asyncio.run(notifier.send_alert(
        severity, title, message, metadata=metadata or None, source=source,
    ))
    _emit(result.to_dict())


@alerts.command("ack")
@click.argument("alert_id")
@click.pass_context
def alerts_ack(ctx: click.Context, alert_id: str) -> None:
    """Acknowledge a sent or failed alert."""
    notifier = _services(ctx).notifier
    if not asyncio.run(notifier.acknowledge_alert(alert_id)):
        _emit(error=f"Alert '{alert_id}' not found or not acknowledgeable")
    _emit({"alertId": alert_id, "status": "acknowledged"})


@alerts.command("clear-old")
@click.option("--days", type=float, default=7.0, help="Remove alerts older than this many days")
@click.pass_context
def alerts_clear_old(ctx: click.Context, days: float) -> None:
    """Purge alerts by age."""
    notifier = _services(ctx).notifier
    removed = asyncio.run(notifier.clear_old_alerts(days))
    _emit({"removed": removed})


@alerts.command("test")
@click.option("--channel", default=None, help="Test a single channel type instead")
@click.pass_context
def alerts_test(ctx: click.Context, channel: str | None) -> None:
    """Send a test alert through every enabled channel."""
    notifier = _services(ctx).notifier
    if channel:
        ok = asyncio.run(notifier.test_channel(channel))
        _emit({"channel": channel, "success": ok})
        return
    _emit(asyncio.run(notifier.test_alert()).to_dict())


@alerts.command("validate")
@click.pass_context
def alerts_validate(ctx: click.Context) -> None:
    """Validate the configuration of every enabled channel."""
    results = _services(ctx).notifier.validate_channels()
    _emit({channel: r.to_dict() for channel, r in results.items()})


@alerts.command("enable")
@click.pass_context
def alerts_enable(ctx: click.Context) -> None:
    """Turn alerting on."""
    config = asyncio.run(_services(ctx).notifier.set_enabled(True))
    _emit({"enabled": config.enabled})


@alerts.command("disable")
@click.pass_context
def alerts_disable(ctx: click.Context) -> None:
    """Turn alerting off (send_alert becomes a no-op)."""
    config = asyncio.run(_services(ctx).notifier.set_enabled(False))
    _emit({"enabled": config.enabled})


# ── agents ──────────────────────────────────────────────────


@main.group()
def agents() -> None:
    """Agent liveness commands."""


@agents.command("list")
@click.option(
    "--status",
    type=click.Choice(["active", "idle", "failed", "terminated"]),
    default=None,
    help="Only agents with this status",
)
@click.option("--role", default=None, help="Only agents with this role")
@click.pass_context
def agents_list(ctx: click.Context, status: str | None, role: str | None) -> None:
    """List tracked agents."""
    tracker = _services(ctx).tracker
    if status:
        found = tracker.get_agents_by_status(status)
    elif role:
        found = tracker.get_agents_by_role(role)
    else:
        found = tracker.get_all_agents()
    if status and role:
        found = [a for a in found if a.role == role]
    _emit([a.to_dict() for a in found])


@agents.command("show")
@click.argument("agent_id")
@click.pass_context
def agents_show(ctx: click.Context, agent_id: str) -> None:
    """Show one agent with its health."""
    tracker = _services(ctx).tracker
    agent = tracker.get_agent(agent_id)
    if agent is None:
        _emit(error=f"Agent '{agent_id}' not found")
    _emit({**agent.to_dict(), "health": tracker.get_agent_health(agent_id)})


@agents.command("register")
@click.argument("agent_id")
@click.option("--role", required=True, help="Agent role")
@click.option("--interval", type=float, default=None, help="Heartbeat interval in seconds")
@click.option("--timeout", type=float, default=None, help="Heartbeat timeout in seconds")
@click.pass_context
def agents_register(
    ctx: click.Context,
    agent_id: str,
    role: str,
    interval: float | None,
    timeout: float | None,
) -> None:
    """Register (or re-register) an agent."""
    tracker = _services(ctx).tracker
    agent = asyncio.run(tracker.register_agent(
        agent_id, role, heartbeat_interval=interval, heartbeat_timeout=timeout,
    ))
    _emit(agent.to_dict())


@agents.command("heartbeat")
@click.argument("agent_id")
@click.pass_context
def agents_heartbeat(ctx: click.Context, agent_id: str) -> None:
    """Record a heartbeat for an agent."""
    tracker = _services(ctx).tracker
    if not asyncio.run(tracker.heartbeat(agent_id)):
        _emit(error=f"Agent '{agent_id}' not found")
    _emit(tracker.get_agent(agent_id).to_dict())


@agents.command("status")
@click.argument("agent_id")
@click.argument("status", type=click.Choice(["active", "idle", "failed", "terminated"]))
@click.pass_context
def agents_status(ctx: click.Context, agent_id: str, status: str) -> None:
    """Set an agent's status."""
    tracker = _services(ctx).tracker
    if not asyncio.run(tracker.set_agent_status(agent_id, status)):
        _emit(error=f"Agent '{agent_id}' not found")
    _emit(tracker.get_agent(agent_id).to_dict())


@agents.command("stale")
@click.option("--mark", is_flag=True, help="Mark stale agents as failed (one sweep pass)")
@click.pass_context
def agents_stale(ctx: click.Context, mark: bool) -> None:
    """List stale active agents."""
    tracker = _services(ctx).tracker
    if mark:
        marked = asyncio.run(tracker.mark_stale_agents())
        _emit([a.to_dict() for a in marked])
        return
    _emit([a.to_dict() for a in tracker.get_stale_agents()])


@agents.command("stats")
@click.pass_context
def agents_stats(ctx: click.Context) -> None:
    """Show agent counts by status and task totals."""
    _emit(_services(ctx).tracker.get_stats())


if __name__ == "__main__":
    main()
