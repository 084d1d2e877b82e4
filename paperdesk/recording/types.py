from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from paperdesk.time_utils import parse_optional, parse_timestamp, to_iso
from paperdesk.types import (
    Direction,
    ExitReason,
    Instrument,
    StrategyTag,
    TradeStatus,
    make_instrument,
)


@dataclass(frozen=True)
class Baseline:
    """Historical funding statistics for an instrument."""
    mean: float
    std_dev: float

    def deviation(self, rate: float) -> float:
        """Z-score of *rate* against this baseline (0 when std_dev is not positive)."""
        if self.std_dev <= 0:
            return 0.0
        return (float(rate) - self.mean) / self.std_dev


@dataclass(frozen=True)
class Alert:
    """Signal produced by the alerting subsystem."""
    strategy: StrategyTag
    instrument: Instrument
    direction: Direction
    current_rate: float
    implied_rate: float
    deviation_score: float
    mean_rate: float
    std_dev: float
    spread: float
    hold_days: float
    timestamp: datetime


@dataclass(frozen=True)
class AlertRecord:
    """Compact alert log row, kept for signal-to-trade metrics."""
    timestamp: str
    instrument: str
    direction: str
    strategy: str

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertRecord":
        return cls(
            timestamp=to_iso(alert.timestamp),
            instrument=str(alert.instrument),
            direction=alert.direction.value,
            strategy=alert.strategy.value,
        )


@dataclass(frozen=True)
class TradeEntry:
    """Entry snapshot, fixed when the trade opens."""
    time: datetime
    rate: float
    implied_rate: float
    deviation_score: float
    notional: float
    leverage: float


@dataclass(frozen=True)
class TradeExit:
    """Exit snapshot, set exactly once when the trade closes."""
    time: datetime
    rate: float
    deviation_score: float
    reason: ExitReason
    realized_pnl: float


@dataclass
class Trade:
    """A simulated position from entry to exit.

    ``exit`` is ``None`` while the trade is open; status, exit time and
    realized P&L are all derived from it.
    """

    id: str
    instrument: Instrument
    direction: Direction
    strategy: StrategyTag
    entry: TradeEntry
    target_hold_days: float
    scheduled_exit_time: datetime
    fees: float = 0.0
    unrealized_pnl: float = 0.0
    exit: TradeExit | None = None

    @property
    def status(self) -> TradeStatus:
        return TradeStatus.OPEN if self.exit is None else TradeStatus.CLOSED

    @property
    def is_open(self) -> bool:
        return self.exit is None

    @property
    def notional(self) -> float:
        return self.entry.notional

    @property
    def collateral(self) -> float:
        return self.entry.notional / self.entry.leverage if self.entry.leverage else self.entry.notional

    @property
    def exit_time(self) -> datetime | None:
        return self.exit.time if self.exit is not None else None

    @property
    def realized_pnl(self) -> float | None:
        return self.exit.realized_pnl if self.exit is not None else None

    def hold_days(self) -> float | None:
        """Actual hold duration in days, or ``None`` while open."""
        if self.exit is None:
            return None
        return (self.exit.time - self.entry.time).total_seconds() / 86400.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instrument": str(self.instrument),
            "direction": self.direction.value,
            "strategy": self.strategy.value,
            "status": self.status.value,
            "entry_time": to_iso(self.entry.time),
            "entry_rate": self.entry.rate,
            "entry_implied_rate": self.entry.implied_rate,
            "entry_deviation_score": self.entry.deviation_score,
            "notional": self.entry.notional,
            "leverage": self.entry.leverage,
            "target_hold_days": self.target_hold_days,
            "scheduled_exit_time": to_iso(self.scheduled_exit_time),
            "exit_time": to_iso(self.exit.time) if self.exit else None,
            "exit_rate": self.exit.rate if self.exit else None,
            "exit_deviation_score": self.exit.deviation_score if self.exit else None,
            "exit_reason": self.exit.reason.value if self.exit else None,
            "realized_pnl": self.exit.realized_pnl if self.exit else None,
            "unrealized_pnl": self.unrealized_pnl,
            "fees": self.fees,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Trade":
        """Rebuild a trade from :meth:`to_dict` output.

        A row only counts as closed when both the exit time and realized
        P&L are present.
        """
        exit_time = parse_optional(d.get("exit_time"))
        realized = d.get("realized_pnl")
        trade_exit = None
        if exit_time is not None and realized is not None:
            trade_exit = TradeExit(
                time=exit_time,
                rate=float(d.get("exit_rate") or 0.0),
                deviation_score=float(d.get("exit_deviation_score") or 0.0),
                reason=ExitReason(d.get("exit_reason") or ExitReason.MANUAL.value),
                realized_pnl=float(realized),
            )

        return cls(
            id=str(d["id"]),
            instrument=make_instrument(d["instrument"]),
            direction=Direction(d["direction"]),
            strategy=StrategyTag(d["strategy"]),
            entry=TradeEntry(
                time=parse_timestamp(d["entry_time"]),
                rate=float(d["entry_rate"]),
                implied_rate=float(d.get("entry_implied_rate", d["entry_rate"])),
                deviation_score=float(d.get("entry_deviation_score", 0.0)),
                notional=float(d["notional"]),
                leverage=float(d.get("leverage", 1.0)),
            ),
            target_hold_days=float(d["target_hold_days"]),
            scheduled_exit_time=parse_timestamp(d["scheduled_exit_time"]),
            fees=float(d.get("fees", 0.0)),
            unrealized_pnl=0.0 if trade_exit else float(d.get("unrealized_pnl", 0.0)),
            exit=trade_exit,
        )


@dataclass
class AccountState:
    """Account-level facts: equity, watermark and the open-position set."""

    current_equity: float
    starting_capital: float
    peak_equity: float
    last_updated: datetime
    open_positions: list[str] = field(default_factory=list)

    @classmethod
    def initial(cls, starting_capital: float, now: datetime) -> "AccountState":
        capital = float(starting_capital)
        return cls(
            current_equity=capital,
            starting_capital=capital,
            peak_equity=capital,
            last_updated=now,
        )

    @property
    def drawdown(self) -> float:
        """Fractional decline of current equity from the peak."""
        if self.peak_equity <= 0:
            return 0.0
        return (self.peak_equity - self.current_equity) / self.peak_equity

    def to_dict(self) -> dict[str, Any]:
        return {
            "open_positions": list(self.open_positions),
            "current_equity": self.current_equity,
            "starting_capital": self.starting_capital,
            "peak_equity": self.peak_equity,
            "last_updated": to_iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AccountState":
        return cls(
            current_equity=float(d["current_equity"]),
            starting_capital=float(d["starting_capital"]),
            peak_equity=float(d["peak_equity"]),
            last_updated=parse_timestamp(d["last_updated"]),
            open_positions=[str(x) for x in d.get("open_positions", [])],
        )


@dataclass(frozen=True)
class DailySnapshot:
    date: str  # YYYY-MM-DD
    equity: float
    daily_pnl: float
    open_positions: int
    rolling_7d_win_rate: float
    rolling_7d_sharpe: float
