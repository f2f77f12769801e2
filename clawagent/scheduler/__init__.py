"""Background maintenance scheduling."""

from clawagent.scheduler.engine import MaintenanceScheduler, battery_not_low

__all__ = [
    "MaintenanceScheduler",
    "battery_not_low",
]
