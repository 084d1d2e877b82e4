"""
Performance metrics over the paper trading book.

Three tiers, each independently computable:

  * primary   - win rate, win/loss ratio, Sharpe, max drawdown (daily review)
  * secondary - signal-to-trade ratio, hold duration, P&L by asset and
                strategy (weekly review)
  * meta      - edge decay, capital efficiency (monthly review)

Everything here is read-only over the ledger except
:func:`capture_daily_snapshot`, which upserts the day's snapshot.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Sequence

import numpy as np

from paperdesk.recording.ledger import TradeLedger
from paperdesk.recording.types import AccountState, DailySnapshot, Trade
from paperdesk.time_utils import SECONDS_PER_DAY, utc_date
from paperdesk.types import Instrument, StrategyTag

log = logging.getLogger(__name__)


__all__ = [
    "DashboardMetrics",
    "EdgeDecay",
    "GroupStats",
    "MetaMetrics",
    "PrimaryMetrics",
    "SecondaryMetrics",
    "Trend",
    "capture_daily_snapshot",
    "compute_dashboard",
    "compute_edge_decay",
    "compute_meta",
    "compute_primary",
    "compute_secondary",
    "max_drawdown_pct",
    "sharpe_ratio",
    "win_rate",
]


DAYS_PER_YEAR = 365
TREND_THRESHOLD = 5.0
EDGE_WINDOW_DAYS = 30
ROLLING_WINDOW_DAYS = 7

_STD_EPSILON = 1e-12


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"

    @classmethod
    def classify(cls, delta: float, threshold: float = TREND_THRESHOLD) -> "Trend":
        if delta > threshold:
            return cls.IMPROVING
        if delta < -threshold:
            return cls.DECLINING
        return cls.STABLE


@dataclass(frozen=True)
class PrimaryMetrics:
    win_rate: float  # percent
    avg_win_loss_ratio: float
    sharpe_ratio: float
    max_drawdown: float  # percent
    total_realized_pnl: float
    total_unrealized_pnl: float
    total_trades: int
    wins: int
    losses: int


@dataclass(frozen=True)
class GroupStats:
    pnl: float
    trades: int
    win_rate: float  # percent


@dataclass(frozen=True)
class SecondaryMetrics:
    signal_to_trade_ratio: float
    avg_hold_days: float
    pnl_by_asset: dict[Instrument, GroupStats]
    pnl_by_strategy: dict[StrategyTag, GroupStats]
    avg_exit_z_score: float
    alerts_received: int


@dataclass(frozen=True)
class EdgeDecay:
    """Recent (last 30 days) against prior (30-60 days ago) performance."""
    win_rate_trend: Trend
    sharpe_trend: Trend
    last_30d_win_rate: float
    previous_30d_win_rate: float
    last_30d_sharpe: float
    previous_30d_sharpe: float


@dataclass(frozen=True)
class MetaMetrics:
    edge_decay: EdgeDecay
    # Not computed: needs an external price feed / alert-to-fill rates.
    btc_correlation: float | None
    avg_slippage: float | None
    days_active: int
    total_capital_deployed: float
    capital_efficiency: float


@dataclass(frozen=True)
class DashboardMetrics:
    primary: PrimaryMetrics
    secondary: SecondaryMetrics
    meta: MetaMetrics
    last_calculated: datetime


# ----------------------------------------------------------------------
# Building blocks
# ----------------------------------------------------------------------


def _closed(trades: Iterable[Trade]) -> list[Trade]:
    return [t for t in trades if not t.is_open]


def _is_win(trade: Trade) -> bool:
    return (trade.realized_pnl or 0.0) > 0


def win_rate(closed: Sequence[Trade]) -> float:
    """Percentage of *closed* trades with positive realized P&L (0 when empty)."""
    if not closed:
        return 0.0
    wins = sum(1 for t in closed if _is_win(t))
    return wins / len(closed) * 100.0


def sharpe_ratio(closed: Sequence[Trade]) -> float:
    """
    Annualized Sharpe ratio of daily-aggregated realized P&L.

    P&L is summed per UTC exit date; mean and (population) standard
    deviation are annualized over 365 days with a zero risk-free rate.

    Returns:
        0.0 with fewer than two distinct P&L days or zero dispersion
    """
    daily: dict[str, float] = {}
    for t in closed:
        if t.exit_time is None:
            continue
        key = utc_date(t.exit_time).isoformat()
        daily[key] = daily.get(key, 0.0) + float(t.realized_pnl or 0.0)

    if len(daily) < 2:
        return 0.0

    returns = np.fromiter(daily.values(), dtype=float)
    std = float(np.std(returns))
    if std <= _STD_EPSILON:
        return 0.0
    mean = float(np.mean(returns))
    return (mean * DAYS_PER_YEAR) / (std * math.sqrt(DAYS_PER_YEAR))


def max_drawdown_pct(closed: Sequence[Trade], starting_capital: float) -> float:
    """
    Largest peak-to-trough decline, in percent, of the equity curve built
    by replaying *closed* in exit order from *starting_capital*.
    """
    ordered = sorted((t for t in closed if t.exit_time is not None), key=lambda t: t.exit_time)
    if not ordered:
        return 0.0

    equity = np.cumsum([float(t.realized_pnl or 0.0) for t in ordered]) + float(starting_capital)
    curve = np.concatenate(([float(starting_capital)], equity))
    peaks = np.maximum.accumulate(curve)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - curve) / peaks, 0.0)
    return float(drawdowns.max()) * 100.0


def _group(closed: Sequence[Trade], key) -> dict:
    buckets: dict = {}
    for t in closed:
        buckets.setdefault(key(t), []).append(t)
    return {
        k: GroupStats(
            pnl=sum(float(t.realized_pnl or 0.0) for t in ts),
            trades=len(ts),
            win_rate=win_rate(ts),
        )
        for k, ts in buckets.items()
    }


# ----------------------------------------------------------------------
# Tiers
# ----------------------------------------------------------------------


def compute_primary(trades: Sequence[Trade], state: AccountState) -> PrimaryMetrics:
    closed = _closed(trades)
    wins = [float(t.realized_pnl) for t in closed if _is_win(t)]
    losses = [float(t.realized_pnl) for t in closed if not _is_win(t)]

    avg_win = float(np.mean(wins)) if wins else 0.0
    avg_loss = abs(float(np.mean(losses))) if losses else 1.0
    ratio = avg_win / avg_loss if avg_loss > 0 else avg_win

    open_ids = set(state.open_positions)
    unrealized = sum(t.unrealized_pnl for t in trades if t.id in open_ids)

    return PrimaryMetrics(
        win_rate=win_rate(closed),
        avg_win_loss_ratio=ratio,
        sharpe_ratio=sharpe_ratio(closed),
        max_drawdown=max_drawdown_pct(closed, state.starting_capital),
        total_realized_pnl=sum(wins) + sum(losses),
        total_unrealized_pnl=unrealized,
        total_trades=len(closed),
        wins=len(wins),
        losses=len(losses),
    )


def compute_secondary(trades: Sequence[Trade], alerts_received: int) -> SecondaryMetrics:
    closed = _closed(trades)

    ratio = len(trades) / alerts_received if alerts_received > 0 else 1.0

    holds = [t.hold_days() for t in closed]
    avg_hold = float(np.mean(holds)) if holds else 0.0

    exit_z = [t.exit.deviation_score for t in closed]
    avg_exit_z = float(np.mean(exit_z)) if exit_z else 0.0

    return SecondaryMetrics(
        signal_to_trade_ratio=ratio,
        avg_hold_days=avg_hold,
        pnl_by_asset=_group(closed, lambda t: t.instrument),
        pnl_by_strategy=_group(closed, lambda t: t.strategy),
        avg_exit_z_score=avg_exit_z,
        alerts_received=int(alerts_received),
    )


def compute_edge_decay(closed: Sequence[Trade], *, now: datetime) -> EdgeDecay:
    recent_start = now - timedelta(days=EDGE_WINDOW_DAYS)
    prior_start = now - timedelta(days=2 * EDGE_WINDOW_DAYS)

    recent = [t for t in closed if t.exit_time is not None and t.exit_time >= recent_start]
    prior = [
        t for t in closed
        if t.exit_time is not None and prior_start <= t.exit_time < recent_start
    ]

    recent_wr, prior_wr = win_rate(recent), win_rate(prior)
    recent_sharpe, prior_sharpe = sharpe_ratio(recent), sharpe_ratio(prior)

    return EdgeDecay(
        win_rate_trend=Trend.classify(recent_wr - prior_wr),
        sharpe_trend=Trend.classify(recent_sharpe - prior_sharpe),
        last_30d_win_rate=recent_wr,
        previous_30d_win_rate=prior_wr,
        last_30d_sharpe=recent_sharpe,
        previous_30d_sharpe=prior_sharpe,
    )


def compute_meta(trades: Sequence[Trade], *, now: datetime) -> MetaMetrics:
    closed = _closed(trades)

    if trades:
        first_entry = min(t.entry.time for t in trades)
        days_active = max(0, math.floor((now - first_entry).total_seconds() / SECONDS_PER_DAY))
    else:
        days_active = 0

    deployed = sum(t.notional for t in trades)
    realized = sum(float(t.realized_pnl or 0.0) for t in closed)

    return MetaMetrics(
        edge_decay=compute_edge_decay(closed, now=now),
        btc_correlation=None,
        avg_slippage=None,
        days_active=days_active,
        total_capital_deployed=deployed,
        capital_efficiency=realized / deployed if deployed > 0 else 0.0,
    )


def compute_dashboard(ledger: TradeLedger, *, now: datetime | None = None) -> DashboardMetrics:
    """All three tiers from one consistent view of the ledger."""
    now = now or ledger.clock()
    with ledger.lock:
        trades = list(ledger.trades)
        state = ledger.state
        return DashboardMetrics(
            primary=compute_primary(trades, state),
            secondary=compute_secondary(trades, ledger.alerts_received()),
            meta=compute_meta(trades, now=now),
            last_calculated=now,
        )


# ----------------------------------------------------------------------
# Daily snapshot
# ----------------------------------------------------------------------


def capture_daily_snapshot(ledger: TradeLedger, *, now: datetime | None = None) -> DailySnapshot:
    """
    Record today's (UTC) snapshot, replacing any existing one for the
    same date.
    """
    now = now or ledger.clock()
    today = utc_date(now)
    window_start = now - timedelta(days=ROLLING_WINDOW_DAYS)

    with ledger.lock:
        closed = ledger.closed_trades()
        closed_today = [t for t in closed if utc_date(t.exit_time) == today]
        last_7d = [t for t in closed if t.exit_time >= window_start]

        snapshot = DailySnapshot(
            date=today.isoformat(),
            equity=ledger.state.current_equity,
            daily_pnl=sum(float(t.realized_pnl) for t in closed_today),
            open_positions=len(ledger.state.open_positions),
            rolling_7d_win_rate=win_rate(last_7d),
            rolling_7d_sharpe=sharpe_ratio(last_7d),
        )

        existing = ledger.load_snapshots()
        snapshots = [s for s in existing if s.date != snapshot.date]
        replaced = len(snapshots) != len(existing)
        snapshots.append(snapshot)
        snapshots.sort(key=lambda s: s.date)
        ledger.save_snapshots(snapshots)

    log.info(
        "%s daily snapshot %s: equity=%.2f daily_pnl=%.2f open=%d",
        "Replaced" if replaced else "Captured",
        snapshot.date,
        snapshot.equity,
        snapshot.daily_pnl,
        snapshot.open_positions,
    )
    return snapshot
