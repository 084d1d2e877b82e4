# examples/paper_session.py
"""Minimal paper trading session: feed alerts, tick hourly, print metrics."""
import asyncio
import logging
import random
from datetime import datetime, timezone

from paperdesk import PaperConfig, PaperMode, build_manager, compute_dashboard, configure_logging, handle_alert
from paperdesk.metrics import capture_daily_snapshot
from paperdesk.recording.types import Alert, Baseline
from paperdesk.types import Direction, StrategyTag, make_instrument

log = logging.getLogger(__name__)


BASELINES = {
    "HYPE": Baseline(mean=0.12, std_dev=0.05),
    "ETH": Baseline(mean=0.08, std_dev=0.03),
}


async def fetch_rate(instrument: str) -> float | None:
    """
    Stand-in for an exchange call returning the current annualised
    funding rate. Returning None skips the instrument for this tick.
    """
    await asyncio.sleep(0.01)
    baseline = BASELINES.get(instrument)
    if baseline is None:
        return None
    return random.gauss(baseline.mean, baseline.std_dev)


def alert_for(instrument: str, rate: float) -> Alert:
    baseline = BASELINES[instrument]
    z = baseline.deviation(rate)
    return Alert(
        strategy=StrategyTag.MEAN_REVERSION,
        instrument=make_instrument(instrument),
        direction=Direction.SHORT if z > 0 else Direction.LONG,
        current_rate=rate,
        implied_rate=rate,
        deviation_score=z,
        mean_rate=baseline.mean,
        std_dev=baseline.std_dev,
        spread=rate - baseline.mean,
        hold_days=StrategyTag.MEAN_REVERSION.default_hold_days,
        timestamp=datetime.now(timezone.utc),
    )


async def main() -> None:
    configure_logging("INFO")
    manager = build_manager(PaperConfig(mode=PaperMode.AUTO))

    handle_alert(alert_for("HYPE", 0.27), manager)
    handle_alert(alert_for("ETH", -0.01), manager)

    await manager.process_tick(fetch_rate, BASELINES.get)
    capture_daily_snapshot(manager.ledger)

    status = await manager.status(fetch_rate, BASELINES.get)
    for pos in status.positions:
        log.info(
            "%s %s z=%s live=%s exit in %.1f days",
            pos.instrument,
            pos.direction.value,
            "n/a" if pos.current_deviation is None else f"{pos.current_deviation:.2f}",
            "n/a" if pos.live_pnl is None else f"{pos.live_pnl:.2f}",
            pos.days_to_exit,
        )

    dashboard = compute_dashboard(manager.ledger)
    log.info(
        "Equity %.2f, open %d, win rate %.1f%%",
        manager.ledger.state.current_equity,
        len(manager.ledger.state.open_positions),
        dashboard.primary.win_rate,
    )


if __name__ == "__main__":
    asyncio.run(main())
