"""API monitor: scheduled HTTP(S) endpoint probing with persisted results."""

__version__ = "0.1.0"

from api_monitor.checker import CheckResult, HttpApiChecker, Reason
from api_monitor.config import MonitorConfig, load_config
from api_monitor.scheduler import MonitorWorker

__all__ = [
    "CheckResult",
    "HttpApiChecker",
    "MonitorConfig",
    "MonitorWorker",
    "Reason",
    "load_config",
]
