import copy
import csv
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

from paperdesk.time_utils import now_utc, to_iso
from .journal import Store
from .types import AccountState, Alert, AlertRecord, DailySnapshot, Trade

log = logging.getLogger(__name__)


DEFAULT_STARTING_CAPITAL = 10_000.0

_EQUITY_TOLERANCE = 1e-6


class LedgerInvariantError(RuntimeError):
    """The open-position set or equity disagrees with the trade history."""

    def __init__(self, problems: list[str]):
        super().__init__("; ".join(problems))
        self.problems = problems


class TradeLedger:
    """
    Owns the trade history and the account state as a single unit.

    Every mutation of the pair happens inside :meth:`transaction`, which
    holds one re-entrant lock and persists trades, then state, before the
    lock is released. The trade list is treated as ground truth: on load,
    the open-position set, equity and peak are checked against it and
    repaired (or rejected in strict mode).
    """

    def __init__(
        self,
        store: Store,
        *,
        starting_capital: float = DEFAULT_STARTING_CAPITAL,
        clock: Callable[[], datetime] = now_utc,
        strict: bool = False,
    ):
        self._store = store
        self._clock = clock
        self._starting_capital = float(starting_capital)
        self.strict = strict
        self._lock = threading.RLock()

        self.trades: list[Trade] = store.load_trades()
        self.state: AccountState = store.load_state(self._default_state)
        self.reconcile()

    def _default_state(self) -> AccountState:
        return AccountState.initial(self._starting_capital, self._clock())

    @property
    def store(self) -> Store:
        return self._store

    @property
    def clock(self) -> Callable[[], datetime]:
        return self._clock

    @property
    def lock(self) -> threading.RLock:
        """The ledger's critical-section lock (re-entrant)."""
        return self._lock

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["TradeLedger"]:
        """
        Critical section over trades + state.

        On normal exit both are persisted. If the body or the commit
        raises, the in-memory trades and state are restored to their values
        on entry and the stored copy is rewritten from them.
        """
        with self._lock:
            trades_before = copy.deepcopy(self.trades)
            state_before = copy.deepcopy(self.state)
            committing = False
            try:
                yield self
                committing = True
                self.commit()
            except BaseException:
                self.trades = trades_before
                self.state = state_before
                if committing:
                    self._restore_store()
                raise

    def _restore_store(self) -> None:
        # A failed commit may have written trades but not state.
        try:
            self.commit()
        except Exception:
            log.exception("Could not restore persisted ledger after a failed commit")

    def commit(self) -> None:
        """Persist trades then state."""
        with self._lock:
            self.state.last_updated = self._clock()
            self._store.save_trades(self.trades)
            self._store.save_state(self.state)

    def save_trades(self) -> None:
        """Persist the trade list only (used after marks)."""
        with self._lock:
            self._store.save_trades(self.trades)

    # ------------------------------------------------------------------
    # Mutations (call inside transaction())
    # ------------------------------------------------------------------

    def add(self, trade: Trade) -> None:
        """Append an OPEN trade and register it in the open-position set."""
        if not trade.is_open:
            raise ValueError(f"Only open trades can be added, got {trade.status.value}")
        if any(t.id == trade.id for t in self.trades):
            raise ValueError(f"Duplicate trade id {trade.id}")
        self.trades.append(trade)
        self.state.open_positions.append(trade.id)

    def settle(self, trade: Trade) -> None:
        """Apply a just-closed trade to the account: open set, equity, watermark."""
        pnl = trade.realized_pnl
        if pnl is None:
            raise ValueError(f"Trade {trade.id} has no realized P&L")
        self.state.open_positions = [i for i in self.state.open_positions if i != trade.id]
        self.state.current_equity += pnl
        if self.state.current_equity > self.state.peak_equity:
            self.state.peak_equity = self.state.current_equity

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, trade_id: str) -> Trade:
        for t in self.trades:
            if t.id == trade_id:
                return t
        raise LookupError(f"Trade not found: {trade_id}")

    def find(self, ref: str) -> Trade:
        """Resolve a full id or a unique id prefix."""
        ref = ref.strip()
        if not ref:
            raise LookupError("Empty trade reference")
        matches = [t for t in self.trades if t.id.startswith(ref)]
        if not matches:
            raise LookupError(f"Trade not found: {ref}")
        if len(matches) > 1:
            raise LookupError(f"Ambiguous trade reference {ref!r} ({len(matches)} matches)")
        return matches[0]

    def open_trades(self) -> list[Trade]:
        open_ids = set(self.state.open_positions)
        return [t for t in self.trades if t.id in open_ids]

    def closed_trades(self) -> list[Trade]:
        return [t for t in self.trades if not t.is_open]

    def trades_for(self, instrument: str) -> list[Trade]:
        key = instrument.strip().upper()
        return [t for t in self.trades if t.instrument == key]

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def check_invariants(self) -> list[str]:
        """Describe every disagreement between the state and the trade history."""
        problems: list[str] = []

        expected_open = [t.id for t in self.trades if t.is_open]
        if sorted(expected_open) != sorted(self.state.open_positions):
            problems.append(
                f"open positions {sorted(self.state.open_positions)} != "
                f"open trades {sorted(expected_open)}"
            )

        expected_equity, expected_peak = self._replay_equity()
        if abs(self.state.current_equity - expected_equity) > _EQUITY_TOLERANCE:
            problems.append(
                f"equity {self.state.current_equity:.6f} != "
                f"starting capital + realized P&L {expected_equity:.6f}"
            )
        if self.state.peak_equity + _EQUITY_TOLERANCE < expected_peak:
            problems.append(
                f"peak equity {self.state.peak_equity:.6f} below replayed peak {expected_peak:.6f}"
            )
        return problems

    def _replay_equity(self) -> tuple[float, float]:
        equity = self.state.starting_capital
        peak = equity
        closed = sorted(self.closed_trades(), key=lambda t: t.exit_time)
        for t in closed:
            equity += t.realized_pnl
            peak = max(peak, equity)
        return equity, peak

    def reconcile(self) -> None:
        """
        Check invariants; raise in strict mode, otherwise rebuild the state
        from the trade history.
        """
        with self._lock:
            problems = self.check_invariants()
            if not problems:
                return
            if self.strict:
                raise LedgerInvariantError(problems)

            for p in problems:
                log.error("Ledger invariant violated: %s", p)

            equity, peak = self._replay_equity()
            self.state.open_positions = [t.id for t in self.trades if t.is_open]
            self.state.current_equity = equity
            self.state.peak_equity = max(self.state.peak_equity, peak, equity)
            log.warning(
                "Account state rebuilt from trade history: equity=%.2f peak=%.2f open=%d",
                equity,
                self.state.peak_equity,
                len(self.state.open_positions),
            )
            self.commit()

    # ------------------------------------------------------------------
    # Alerts and snapshots (pass-through to the store)
    # ------------------------------------------------------------------

    def record_alert(self, alert: Alert) -> None:
        self._store.append_alert(AlertRecord.from_alert(alert))

    def alerts_received(self) -> int:
        return len(self._store.load_alerts())

    def load_snapshots(self) -> list[DailySnapshot]:
        return self._store.load_snapshots()

    def save_snapshots(self, snapshots: list[DailySnapshot]) -> None:
        self._store.save_snapshots(snapshots)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def write_trades_csv(self, path: Path) -> None:
        """Write every trade, open and closed, as CSV.

        Output schema:
        id,instrument,direction,strategy,status,entry_time,exit_time,hold_days,
        entry_rate_pct,exit_rate_pct,entry_z,exit_z,notional,leverage,fees,realized_pnl,exit_reason
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="") as f:
            w = csv.writer(f)
            w.writerow(
                [
                    "id",
                    "instrument",
                    "direction",
                    "strategy",
                    "status",
                    "entry_time",
                    "exit_time",
                    "hold_days",
                    "entry_rate_pct",
                    "exit_rate_pct",
                    "entry_z",
                    "exit_z",
                    "notional",
                    "leverage",
                    "fees",
                    "realized_pnl",
                    "exit_reason",
                ]
            )
            for t in self.trades:
                ex = t.exit
                hold = t.hold_days()
                w.writerow(
                    [
                        t.id[:8],
                        t.instrument,
                        t.direction.value,
                        t.strategy.value,
                        t.status.value,
                        to_iso(t.entry.time),
                        to_iso(ex.time) if ex else "",
                        round(hold, 4) if hold is not None else "",
                        round(t.entry.rate * 100, 2),
                        round(ex.rate * 100, 2) if ex else "",
                        round(t.entry.deviation_score, 2),
                        round(ex.deviation_score, 2) if ex else "",
                        round(t.notional, 2),
                        t.entry.leverage,
                        round(t.fees, 2),
                        round(ex.realized_pnl, 2) if ex else "",
                        ex.reason.value if ex else "",
                    ]
                )
