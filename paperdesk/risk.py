"""Risk management rules gating new positions."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from paperdesk.recording.types import AccountState, Trade


__all__ = [
    "RiskConfig",
    "RiskDecision",
    "can_open",
    "cooldown_end",
]


@dataclass(frozen=True)
class RiskConfig:
    """
    Risk limits applied before every open.

    Attributes:
        max_position_size: Max collateral per trade as a fraction of equity
        max_concurrent_positions: Max open positions across all instruments
        max_total_exposure: Max summed open notional as a fraction of equity
        stop_loss_threshold: Close when unrealized P&L / notional falls to this (negative)
        max_drawdown: Pause new entries when drawdown from peak reaches this (negative)
        max_leverage: Hard cap applied on top of the leverage policy
        consecutive_loss_limit: Losses in a row on one instrument that trigger a cooldown
        cooldown_days: Length of the cooldown after the last loss
    """
    max_position_size: float = 0.20
    max_concurrent_positions: int = 3
    max_total_exposure: float = 0.50
    stop_loss_threshold: float = -0.05
    max_drawdown: float = -0.15
    max_leverage: float = 3.0
    consecutive_loss_limit: int = 3
    cooldown_days: float = 14


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


def cooldown_end(
    trades: Sequence[Trade], instrument: str, config: RiskConfig
) -> datetime | None:
    """
    End of the loss-streak cooldown for *instrument*, or ``None`` if the
    most recent closed trades do not form a full losing streak.
    """
    limit = int(config.consecutive_loss_limit)
    if limit <= 0:
        return None

    closed = sorted(
        (t for t in trades if t.instrument == instrument and not t.is_open),
        key=lambda t: t.exit_time,
    )
    recent = closed[-limit:]
    if len(recent) < limit:
        return None
    if not all(t.realized_pnl < 0 for t in recent):
        return None
    return recent[-1].exit_time + timedelta(days=float(config.cooldown_days))


def can_open(
    state: AccountState,
    trades: Sequence[Trade],
    instrument: str,
    config: RiskConfig,
    *,
    now: datetime,
) -> RiskDecision:
    """
    Decide whether a new position on *instrument* may open.

    Checks run in order and stop at the first failure:
    concurrency cap, one position per instrument, exposure cap, drawdown
    circuit breaker, loss-streak cooldown.
    """
    if len(state.open_positions) >= config.max_concurrent_positions:
        return RiskDecision(
            False, f"Max concurrent positions ({config.max_concurrent_positions}) reached"
        )

    open_ids = set(state.open_positions)
    open_trades = [t for t in trades if t.id in open_ids]
    if any(t.instrument == instrument for t in open_trades):
        return RiskDecision(False, f"Already have open position in {instrument}")

    exposure = sum(t.notional for t in open_trades)
    if exposure >= state.current_equity * config.max_total_exposure:
        return RiskDecision(
            False, f"Max total exposure ({config.max_total_exposure * 100:.0f}%) reached"
        )

    if state.drawdown >= abs(config.max_drawdown):
        return RiskDecision(
            False, f"Max drawdown ({config.max_drawdown * 100:.0f}%) reached - trading paused"
        )

    end = cooldown_end(trades, instrument, config)
    if end is not None and now < end:
        return RiskDecision(
            False,
            f"{instrument} on cooldown until {end.date().isoformat()} "
            f"({config.consecutive_loss_limit} consecutive losses)",
        )

    return RiskDecision(True)
