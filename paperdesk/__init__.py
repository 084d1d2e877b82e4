# paperdesk/__init__.py
"""
Paperdesk - Paper trading engine for funding-rate strategies.

Tracks simulated positions opened from alerts, gates entries with risk
rules, accrues funding P&L and reports performance metrics.
"""

from .config import ConfigError, PaperConfig, PaperMode, PaperSettings
from .lifecycle import LifecycleManager, OpenResult, PositionStatus, StatusReport, TickReport
from .metrics import capture_daily_snapshot, compute_dashboard
from .recording import JsonFileStore, MemoryStore, TradeLedger
from .runner import build_manager, configure_logging, handle_alert, run_ticks
from .types import Direction, ExitReason, StrategyTag, TradeStatus

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigError",
    "Direction",
    "ExitReason",
    "JsonFileStore",
    "LifecycleManager",
    "MemoryStore",
    "OpenResult",
    "PaperConfig",
    "PaperMode",
    "PaperSettings",
    "PositionStatus",
    "StatusReport",
    "StrategyTag",
    "TickReport",
    "TradeLedger",
    "TradeStatus",
    "build_manager",
    "capture_daily_snapshot",
    "compute_dashboard",
    "configure_logging",
    "handle_alert",
    "run_ticks",
]
