"""
Trade lifecycle: open, mark-to-market and close paper positions.

A trade moves OPEN -> CLOSED exactly once. Opens and closes mutate the
shared account state and run inside the ledger's transaction; marks only
touch their own trade and are serialized per trade.
"""

import asyncio
import inspect
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Union

from paperdesk.config import PaperConfig
from paperdesk.leverage import compute_leverage, describe_leverage
from paperdesk.pnl import accrue_constant
from paperdesk.recording.ledger import TradeLedger
from paperdesk.recording.types import Alert, Baseline, Trade, TradeEntry, TradeExit
from paperdesk.risk import can_open
from paperdesk.time_utils import days_between, hours_between
from paperdesk.types import Direction, ExitReason, StrategyTag, make_instrument


log = logging.getLogger(__name__)


__all__ = [
    "BaselineSource",
    "LifecycleManager",
    "OpenResult",
    "PositionStatus",
    "RateSource",
    "StatusReport",
    "TickReport",
]


RateSource = Callable[[str], Union[Optional[float], Awaitable[Optional[float]]]]
BaselineSource = Callable[[str], Optional[Baseline]]


@dataclass(frozen=True)
class OpenResult:
    """Outcome of an open attempt. ``trade`` is None when the open was rejected."""
    trade: Trade | None
    reason: str | None = None
    leverage_info: str | None = None

    @property
    def opened(self) -> bool:
        return self.trade is not None


@dataclass
class TickReport:
    marked: list[str] = field(default_factory=list)
    closed: list[tuple[str, ExitReason]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PositionStatus:
    """
    Live view of one open trade.

    ``current_rate`` and ``live_pnl`` are None when no rate could be
    fetched; ``current_deviation`` is 0 without a baseline.
    """
    trade_id: str
    instrument: str
    direction: Direction
    strategy: StrategyTag
    notional: float
    leverage: float
    entry_time: datetime
    entry_deviation: float
    current_rate: float | None
    current_deviation: float | None
    unrealized_pnl: float
    live_pnl: float | None
    days_to_exit: float


@dataclass(frozen=True)
class StatusReport:
    current_equity: float
    starting_capital: float
    peak_equity: float
    positions: list[PositionStatus]


class LifecycleManager:
    """
    Orchestrates the trade state machine over an injected ledger.

    Args:
        ledger: Trade history + account state
        config: Risk, leverage, fee and sizing configuration
        clock: Time source; defaults to the ledger's clock
    """

    def __init__(
        self,
        ledger: TradeLedger,
        config: PaperConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self._ledger = ledger
        self._config = config or PaperConfig()
        self._clock = clock or ledger.clock
        self._mark_locks: dict[str, threading.Lock] = {}
        self._mark_locks_guard = threading.Lock()

    @property
    def ledger(self) -> TradeLedger:
        return self._ledger

    @property
    def config(self) -> PaperConfig:
        return self._config

    def _trade_lock(self, trade_id: str) -> threading.Lock:
        with self._mark_locks_guard:
            lock = self._mark_locks.get(trade_id)
            if lock is None:
                lock = threading.Lock()
                self._mark_locks[trade_id] = lock
            return lock

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    def open(self, alert: Alert, *, requested_size: float | None = None) -> OpenResult:
        """
        Open a paper trade from an alert, subject to the risk rules.

        A rejection is a normal result carrying the reason; nothing is
        mutated or persisted in that case.
        """
        risk = self._config.risk
        ledger = self._ledger

        instrument = make_instrument(alert.instrument)

        with ledger.lock:
            now = self._clock()
            state = ledger.state

            decision = can_open(state, ledger.trades, instrument, risk, now=now)
            if not decision:
                log.info("Trade not opened for %s %s: %s", instrument, alert.direction.value, decision.reason)
                return OpenResult(None, decision.reason)

            leverage = compute_leverage(
                self._config.leverage,
                alert.deviation_score,
                state.current_equity,
                state.starting_capital,
            )
            leverage_info = describe_leverage(
                self._config.leverage,
                alert.deviation_score,
                state.current_equity,
                state.starting_capital,
            )
            leverage = min(leverage, float(risk.max_leverage))

            base_size = self._config.default_position_size if requested_size is None else float(requested_size)
            collateral = min(base_size, state.current_equity * risk.max_position_size)
            if collateral <= 0:
                reason = f"No collateral available (requested {base_size:.2f}, equity {state.current_equity:.2f})"
                log.info("Trade not opened for %s: %s", instrument, reason)
                return OpenResult(None, reason)
            notional = collateral * leverage

            trade = Trade(
                id=str(uuid.uuid4()),
                instrument=instrument,
                direction=alert.direction,
                strategy=alert.strategy,
                entry=TradeEntry(
                    time=now,
                    rate=float(alert.current_rate),
                    implied_rate=float(alert.implied_rate),
                    deviation_score=float(alert.deviation_score),
                    notional=notional,
                    leverage=leverage,
                ),
                target_hold_days=float(alert.hold_days),
                scheduled_exit_time=now + timedelta(days=float(alert.hold_days)),
                fees=notional * self._config.taker_fee_rate,
            )

            with ledger.transaction():
                ledger.add(trade)

        log.info(
            "Opened %s %s (%s) id=%s notional=%.2f leverage=%s exit=%s",
            trade.instrument,
            trade.direction.value,
            trade.strategy.value,
            trade.id[:8],
            notional,
            leverage_info,
            trade.scheduled_exit_time.date().isoformat(),
        )
        return OpenResult(trade, leverage_info=leverage_info)

    # ------------------------------------------------------------------
    # Mark
    # ------------------------------------------------------------------

    def mark(self, trade: Trade, current_rate: float, *, persist: bool = True) -> float:
        """
        Update ``trade.unrealized_pnl`` from the latest floating rate.

        Only the trade list is persisted; account state is untouched.
        """
        with self._trade_lock(trade.id):
            if not trade.is_open:
                raise ValueError(f"Cannot mark closed trade {trade.id}")
            hours = hours_between(trade.entry.time, self._clock())
            pnl = accrue_constant(
                trade.direction, trade.entry.rate, current_rate, trade.notional, hours
            )
            trade.unrealized_pnl = pnl

        if persist:
            self._ledger.save_trades()
        return pnl

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def close(
        self,
        trade: Trade,
        exit_rate: float,
        exit_deviation_score: float,
        exit_reason: ExitReason,
    ) -> Trade:
        """
        Close an open trade, realize its P&L and update the account.

        Returns the ledger's copy of the closed trade.

        Raises:
            ValueError: if the trade is already closed
            LookupError: if the trade is not in the ledger
        """
        ledger = self._ledger
        with ledger.transaction():
            current = ledger.get(trade.id)
            with self._trade_lock(current.id):
                if not current.is_open:
                    raise ValueError(f"Trade {current.id} is already closed")

                now = self._clock()
                hours = hours_between(current.entry.time, now)
                gross = accrue_constant(
                    current.direction, current.entry.rate, exit_rate, current.notional, hours
                )
                current.fees += current.notional * self._config.taker_fee_rate
                net = gross - current.fees

                current.exit = TradeExit(
                    time=now,
                    rate=float(exit_rate),
                    deviation_score=float(exit_deviation_score),
                    reason=exit_reason,
                    realized_pnl=net,
                )
                current.unrealized_pnl = 0.0

            ledger.settle(current)

        with self._mark_locks_guard:
            self._mark_locks.pop(current.id, None)

        log.info(
            "Closed %s %s id=%s reason=%s gross=%.2f fees=%.2f net=%.2f equity=%.2f",
            current.instrument,
            current.direction.value,
            current.id[:8],
            exit_reason.value,
            gross,
            current.fees,
            net,
            ledger.state.current_equity,
        )
        return current

    # ------------------------------------------------------------------
    # Exit triggers
    # ------------------------------------------------------------------

    def hit_stop_loss(self, trade: Trade) -> bool:
        if not trade.is_open or trade.notional <= 0:
            return False
        return trade.unrealized_pnl / trade.notional <= self._config.risk.stop_loss_threshold

    def exit_trigger(self, trade: Trade, now: datetime | None = None) -> ExitReason | None:
        """
        Exit reason that applies to *trade*, if any.

        Stop-loss is evaluated before the time-based exit, so a position
        that qualifies for both on the same tick closes as STOP_LOSS.
        """
        if not trade.is_open:
            return None
        if self.hit_stop_loss(trade):
            return ExitReason.STOP_LOSS
        if (now or self._clock()) >= trade.scheduled_exit_time:
            return ExitReason.TIME_BASED
        return None

    def trades_due_for_exit(self, now: datetime | None = None) -> list[Trade]:
        now = now or self._clock()
        return [t for t in self._ledger.open_trades() if now >= t.scheduled_exit_time]

    def trades_at_stop_loss(self) -> list[Trade]:
        return [t for t in self._ledger.open_trades() if self.hit_stop_loss(t)]

    # ------------------------------------------------------------------
    # Periodic processing
    # ------------------------------------------------------------------

    async def _fetch_rate(
        self, fetch_rate: RateSource, instrument: str, timeout: float
    ) -> float | None:
        try:
            if inspect.iscoroutinefunction(fetch_rate):
                result = await asyncio.wait_for(fetch_rate(instrument), timeout)
            else:
                result = await asyncio.wait_for(asyncio.to_thread(fetch_rate, instrument), timeout)
                if inspect.isawaitable(result):
                    result = await asyncio.wait_for(result, timeout)
            if result is None:
                log.warning("No current rate for %s, skipping", instrument)
                return None
            return float(result)
        except asyncio.TimeoutError:
            log.warning("Rate fetch for %s timed out after %.1fs, skipping", instrument, timeout)
            return None
        except Exception as e:
            log.warning("Rate fetch for %s failed, skipping: %s", instrument, e)
            return None

    async def _fetch_rates(
        self, fetch_rate: RateSource, instruments: list[str], timeout: float
    ) -> dict[str, float | None]:
        rates = await asyncio.gather(
            *(self._fetch_rate(fetch_rate, inst, timeout) for inst in instruments)
        )
        return dict(zip(instruments, rates))

    def _exit_deviation(
        self, load_baseline: BaselineSource | None, instrument: str, rate: float
    ) -> float:
        if load_baseline is None:
            return 0.0
        try:
            baseline = load_baseline(instrument)
        except Exception as e:
            log.warning("Baseline for %s unavailable: %s", instrument, e)
            return 0.0
        if baseline is None:
            log.debug("No baseline for %s, exit deviation recorded as 0", instrument)
            return 0.0
        return baseline.deviation(rate)

    async def process_tick(
        self,
        fetch_rate: RateSource,
        load_baseline: BaselineSource | None = None,
        *,
        timeout: float = 10.0,
    ) -> TickReport:
        """
        Mark every open trade and close those that hit an exit trigger.

        Rates are fetched concurrently, one request per instrument, each
        bounded by *timeout*. An instrument whose fetch fails, times out or
        returns None is skipped for this tick; the rest proceed. Trades
        closed elsewhere while rates were in flight are left alone, and a
        trade whose mark or close fails is logged and reported as failed.
        """
        report = TickReport()
        open_trades = self._ledger.open_trades()
        if not open_trades:
            return report

        instruments = sorted({str(t.instrument) for t in open_trades})
        rate_by_instrument = await self._fetch_rates(fetch_rate, instruments, timeout)

        now = self._clock()
        # Re-read: the open set may have changed during the fetch.
        for trade in self._ledger.open_trades():
            rate = rate_by_instrument.get(str(trade.instrument))
            if rate is None:
                report.skipped.append(str(trade.instrument))
                continue

            try:
                self.mark(trade, rate, persist=False)
                report.marked.append(trade.id)

                reason = self.exit_trigger(trade, now)
                if reason is None:
                    continue
                deviation = self._exit_deviation(load_baseline, str(trade.instrument), rate)
                self.close(trade, rate, deviation, reason)
                report.closed.append((trade.id, reason))
            except Exception:
                log.exception("Failed to process trade %s (%s)", trade.id[:8], trade.instrument)
                report.failed.append(trade.id)

        self._ledger.save_trades()
        log.info(
            "Tick processed: %d marked, %d closed, %d skipped, %d failed",
            len(report.marked),
            len(report.closed),
            len(report.skipped),
            len(report.failed),
        )
        return report

    async def status(
        self,
        fetch_rate: RateSource,
        load_baseline: BaselineSource | None = None,
        *,
        timeout: float = 10.0,
    ) -> StatusReport:
        """
        Account summary plus a live view of each open trade.

        Read-only: trades are not marked and nothing is persisted.
        """
        open_trades = self._ledger.open_trades()
        instruments = sorted({str(t.instrument) for t in open_trades})
        rate_by_instrument = await self._fetch_rates(fetch_rate, instruments, timeout)

        now = self._clock()
        positions = []
        for trade in open_trades:
            instrument = str(trade.instrument)
            rate = rate_by_instrument.get(instrument)
            if rate is None:
                deviation = live = None
            else:
                deviation = self._exit_deviation(load_baseline, instrument, rate)
                live = accrue_constant(
                    trade.direction,
                    trade.entry.rate,
                    rate,
                    trade.notional,
                    hours_between(trade.entry.time, now),
                )
            positions.append(
                PositionStatus(
                    trade_id=trade.id,
                    instrument=instrument,
                    direction=trade.direction,
                    strategy=trade.strategy,
                    notional=trade.notional,
                    leverage=trade.entry.leverage,
                    entry_time=trade.entry.time,
                    entry_deviation=trade.entry.deviation_score,
                    current_rate=rate,
                    current_deviation=deviation,
                    unrealized_pnl=trade.unrealized_pnl,
                    live_pnl=live,
                    days_to_exit=max(0.0, days_between(now, trade.scheduled_exit_time)),
                )
            )

        state = self._ledger.state
        return StatusReport(
            current_equity=state.current_equity,
            starting_capital=state.starting_capital,
            peak_equity=state.peak_equity,
            positions=positions,
        )

    async def close_manual(
        self,
        trade_ref: str,
        fetch_rate: RateSource,
        load_baseline: BaselineSource | None = None,
        *,
        timeout: float = 10.0,
    ) -> Trade | None:
        """
        Close a trade by id or unique id prefix at the current rate.

        Returns None (and leaves the trade open) when no rate is available.
        """
        trade = self._ledger.find(trade_ref)
        if not trade.is_open:
            raise ValueError(f"Trade {trade.id} is already closed")

        rate = await self._fetch_rate(fetch_rate, str(trade.instrument), timeout)
        if rate is None:
            return None
        deviation = self._exit_deviation(load_baseline, str(trade.instrument), rate)
        return self.close(trade, rate, deviation, ExitReason.MANUAL)
