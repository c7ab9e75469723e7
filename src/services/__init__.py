"""Services that wire and run the monitoring core."""

from src.services.monitor_service import MonitorService, MonitorServices, build_monitor_services

__all__ = ["MonitorService", "MonitorServices", "build_monitor_services"]
