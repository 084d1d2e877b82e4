"""
Wiring: logging setup, the alert hook and the periodic tick loop.
"""

import asyncio
import logging
import sys

from paperdesk.config import PaperConfig, PaperMode
from paperdesk.lifecycle import BaselineSource, LifecycleManager, OpenResult, RateSource
from paperdesk.recording.journal import JsonFileStore, Store
from paperdesk.recording.ledger import TradeLedger
from paperdesk.recording.types import Alert


log = logging.getLogger(__name__)


__all__ = [
    "build_manager",
    "configure_logging",
    "handle_alert",
    "run_ticks",
]


def configure_logging(level: str = "INFO", force: bool = False) -> None:
    """
    Configure root logger with console output.

    Non-destructive by default: if the root logger already has handlers,
    the application is assumed to have configured logging and nothing
    changes.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        force: If True, clear existing handlers and force this configuration
    """
    root_logger = logging.getLogger()

    if root_logger.hasHandlers() and not force:
        return

    root_logger.setLevel(level.upper())

    if force:
        root_logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def build_manager(
    config: PaperConfig | None = None,
    *,
    store: Store | None = None,
    strict: bool = False,
) -> LifecycleManager:
    """Assemble a ledger and lifecycle manager for *config* (env defaults when omitted)."""
    config = config or PaperConfig.from_env()
    store = store if store is not None else JsonFileStore(config.data_dir)
    ledger = TradeLedger(store, starting_capital=config.starting_capital, strict=strict)
    return LifecycleManager(ledger, config)


def handle_alert(
    alert: Alert,
    manager: LifecycleManager,
    mode: PaperMode | None = None,
) -> OpenResult | None:
    """
    Entry point for the alerting subsystem.

    Every alert is appended to the alert log (the denominator of the
    signal-to-trade ratio). In AUTO mode a trade is opened as well; in
    MANUAL mode nothing else happens and None is returned.
    """
    mode = mode or manager.config.mode
    manager.ledger.record_alert(alert)
    log.info(
        "Alert received: %s %s (%s), z=%.2f",
        alert.instrument,
        alert.direction.value,
        alert.strategy.value,
        alert.deviation_score,
    )

    if mode != PaperMode.AUTO:
        log.info("Manual mode: alert logged, no trade opened")
        return None

    result = manager.open(alert)
    if not result.opened:
        log.info("Auto mode: trade not opened (%s)", result.reason)
    return result


async def run_ticks(
    manager: LifecycleManager,
    fetch_rate: RateSource,
    load_baseline: BaselineSource | None = None,
    *,
    interval: float = 3600.0,
    iterations: int | None = None,
    timeout: float = 10.0,
) -> None:
    """
    Process open trades every *interval* seconds.

    Runs forever unless *iterations* is given. A tick that raises is
    logged and the loop continues with the next one.
    """
    count = 0
    try:
        while iterations is None or count < iterations:
            try:
                await manager.process_tick(fetch_rate, load_baseline, timeout=timeout)
            except Exception:
                log.exception("Tick failed")
            count += 1
            if iterations is not None and count >= iterations:
                break
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        log.info("Tick loop cancelled after %d tick%s", count, "s" if count != 1 else "")
        raise
