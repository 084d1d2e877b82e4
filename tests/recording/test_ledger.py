"""Tests for paperdesk.recording.ledger – TradeLedger."""

import csv
import logging
from datetime import timedelta

import pytest

from paperdesk.recording.journal import JsonFileStore, MemoryStore
from paperdesk.recording.ledger import LedgerInvariantError, TradeLedger
from paperdesk.recording.types import AccountState, TradeExit
from paperdesk.types import ExitReason

from conftest import T0


class StateWriteFailsStore(MemoryStore):
    """Writes trades normally; state writes fail while ``fail`` is set."""

    def __init__(self):
        super().__init__()
        self.fail = True

    def save_state(self, state):
        if self.fail:
            raise OSError("disk full")
        super().save_state(state)


def _read_csv(path):
    with path.open() as f:
        return list(csv.DictReader(f))


def _seed(store, trades, state):
    store.save_trades(trades)
    store.save_state(state)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestTradeLedgerLoad:

    def test_fresh_ledger(self, ledger):
        assert ledger.trades == []
        assert ledger.state.current_equity == 10_000.0
        assert ledger.state.peak_equity == 10_000.0
        assert ledger.check_invariants() == []

    def test_custom_starting_capital(self, store, clock):
        ledger = TradeLedger(store, starting_capital=2_500, clock=clock)
        assert ledger.state.starting_capital == 2_500.0

    def test_consistent_store_loads_unchanged(self, store, clock, make_trade):
        open_t = make_trade(instrument="HYPE")
        closed = make_trade(instrument="ETH", pnl=50.0)
        state = AccountState(10_050.0, 10_000.0, 10_050.0, T0, [open_t.id])
        _seed(store, [open_t, closed], state)

        ledger = TradeLedger(store, clock=clock, strict=True)
        assert [t.id for t in ledger.open_trades()] == [open_t.id]
        assert [t.id for t in ledger.closed_trades()] == [closed.id]

    def test_loads_from_json_files(self, tmp_path, clock, make_trade):
        store = JsonFileStore(tmp_path)
        closed = make_trade(pnl=-20.0)
        _seed(store, [closed], AccountState(9_980.0, 10_000.0, 10_000.0, T0))

        ledger = TradeLedger(JsonFileStore(tmp_path), clock=clock, strict=True)
        assert ledger.state.current_equity == 9_980.0


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------

class TestInvariants:

    def _inconsistent(self, store, make_trade):
        # Trade closed on disk but state still lists it open with stale equity,
        # as after a crash between the two writes.
        closed = make_trade(pnl=75.0)
        _seed(store, [closed], AccountState(10_000.0, 10_000.0, 10_000.0, T0, [closed.id]))
        return closed

    def test_strict_mode_raises(self, store, clock, make_trade):
        self._inconsistent(store, make_trade)
        with pytest.raises(LedgerInvariantError) as exc_info:
            TradeLedger(store, clock=clock, strict=True)
        assert len(exc_info.value.problems) == 3

    def test_repairs_from_trades(self, store, clock, make_trade, caplog):
        self._inconsistent(store, make_trade)

        with caplog.at_level(logging.WARNING, logger="paperdesk.recording.ledger"):
            ledger = TradeLedger(store, clock=clock)

        assert ledger.state.open_positions == []
        assert ledger.state.current_equity == pytest.approx(10_075.0)
        assert ledger.state.peak_equity == pytest.approx(10_075.0)
        assert ledger.check_invariants() == []
        assert any(r.levelno == logging.ERROR for r in caplog.records)
        # Repair is persisted.
        assert store.state["current_equity"] == pytest.approx(10_075.0)

    def test_missing_open_position_restored(self, store, clock, make_trade):
        open_t = make_trade()
        _seed(store, [open_t], AccountState(10_000.0, 10_000.0, 10_000.0, T0, []))
        ledger = TradeLedger(store, clock=clock)
        assert ledger.state.open_positions == [open_t.id]

    def test_peak_below_replayed_peak(self, store, clock, make_trade):
        win = make_trade(pnl=500.0, exit_time=T0 + timedelta(days=1))
        loss = make_trade(pnl=-1500.0, exit_time=T0 + timedelta(days=2))
        _seed(store, [win, loss], AccountState(9_000.0, 10_000.0, 10_000.0, T0))

        problems = TradeLedger(store, clock=clock).check_invariants()
        assert problems == []
        assert store.state["peak_equity"] == pytest.approx(10_500.0)


# ---------------------------------------------------------------------------
# Transactions and mutations
# ---------------------------------------------------------------------------

class TestTransaction:

    def test_commit_persists_trades_and_state(self, ledger, store, make_trade):
        trade = make_trade()
        with ledger.transaction():
            ledger.add(trade)
        assert [row["id"] for row in store.trades] == [trade.id]
        assert store.state["open_positions"] == [trade.id]

    def test_rollback_on_error(self, ledger, store, make_trade):
        with pytest.raises(RuntimeError):
            with ledger.transaction():
                ledger.add(make_trade())
                ledger.state.current_equity += 1_000
                raise RuntimeError("boom")

        assert ledger.trades == []
        assert ledger.state.current_equity == 10_000.0
        assert ledger.state.open_positions == []
        assert store.trades == []

    def test_failed_state_write_rolls_back(self, clock, make_trade, caplog):
        store = StateWriteFailsStore()
        ledger = TradeLedger(store, clock=clock)

        with caplog.at_level(logging.ERROR, logger="paperdesk.recording.ledger"):
            with pytest.raises(OSError):
                with ledger.transaction():
                    ledger.add(make_trade())

        assert ledger.trades == []
        assert ledger.state.open_positions == []
        # the trade list written before the failure is rewritten empty
        assert store.trades == []
        assert store.state is None
        assert "Could not restore persisted ledger" in caplog.text

    def test_recovers_once_store_is_writable(self, clock, make_trade):
        store = StateWriteFailsStore()
        ledger = TradeLedger(store, clock=clock)
        with pytest.raises(OSError):
            with ledger.transaction():
                ledger.add(make_trade())

        store.fail = False
        trade = make_trade(instrument="ETH")
        with ledger.transaction():
            ledger.add(trade)

        assert [row["id"] for row in store.trades] == [trade.id]
        assert store.state["open_positions"] == [trade.id]
        assert ledger.check_invariants() == []

    def test_add_rejects_duplicates(self, ledger, make_trade):
        trade = make_trade(trade_id="dup")
        with ledger.transaction():
            ledger.add(trade)
        with pytest.raises(ValueError):
            with ledger.transaction():
                ledger.add(make_trade(trade_id="dup", instrument="ETH"))
        assert len(ledger.trades) == 1

    def test_add_rejects_closed_trade(self, ledger, make_trade):
        with pytest.raises(ValueError):
            ledger.add(make_trade(pnl=1.0))

    def test_settle_updates_equity_and_peak(self, ledger, make_trade):
        trade = make_trade()
        with ledger.transaction():
            ledger.add(trade)
        with ledger.transaction():
            trade.exit = TradeExit(T0, 0.02, 0.0, ExitReason.MANUAL, 120.0)
            ledger.settle(trade)

        assert ledger.state.current_equity == pytest.approx(10_120.0)
        assert ledger.state.peak_equity == pytest.approx(10_120.0)
        assert ledger.state.open_positions == []
        assert ledger.check_invariants() == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestQueries:

    def _ledger_with(self, store, clock, trades):
        _seed(store, trades, AccountState(10_000.0, 10_000.0, 10_000.0, T0, [t.id for t in trades]))
        return TradeLedger(store, clock=clock)

    def test_find_by_prefix(self, store, clock, make_trade):
        ledger = self._ledger_with(
            store, clock, [make_trade(trade_id="abc123"), make_trade(trade_id="abd456", instrument="ETH")]
        )
        assert ledger.find("abc").id == "abc123"
        assert ledger.find("abd456").id == "abd456"

    def test_find_ambiguous(self, store, clock, make_trade):
        ledger = self._ledger_with(
            store, clock, [make_trade(trade_id="abc123"), make_trade(trade_id="abd456", instrument="ETH")]
        )
        with pytest.raises(LookupError, match="Ambiguous"):
            ledger.find("ab")

    def test_find_missing(self, ledger):
        with pytest.raises(LookupError):
            ledger.find("zzz")
        with pytest.raises(LookupError):
            ledger.find("  ")

    def test_trades_for_normalises(self, store, clock, make_trade):
        ledger = self._ledger_with(store, clock, [make_trade(instrument="HYPE")])
        assert len(ledger.trades_for(" hype ")) == 1


# ---------------------------------------------------------------------------
# Alerts, snapshots, export
# ---------------------------------------------------------------------------

class TestPassThrough:

    def test_record_alert_counts(self, ledger, make_alert):
        ledger.record_alert(make_alert())
        ledger.record_alert(make_alert(instrument="ETH"))
        assert ledger.alerts_received() == 2

    def test_write_trades_csv(self, store, clock, make_trade, tmp_path):
        open_t = make_trade(instrument="HYPE", trade_id="11111111-aaaa")
        closed = make_trade(instrument="ETH", pnl=-3.456, trade_id="22222222-bbbb")
        _seed(store, [open_t, closed], AccountState(9_996.544, 10_000.0, 10_000.0, T0, [open_t.id]))
        ledger = TradeLedger(store, clock=clock, strict=True)

        path = tmp_path / "out" / "trades.csv"
        ledger.write_trades_csv(path)
        rows = _read_csv(path)

        assert [r["id"] for r in rows] == ["11111111", "22222222"]
        assert rows[0]["status"] == "OPEN"
        assert rows[0]["exit_time"] == ""
        assert rows[1]["status"] == "CLOSED"
        assert rows[1]["realized_pnl"] == "-3.46"
        assert rows[1]["exit_reason"] == "TIME_BASED"
        assert rows[1]["entry_rate_pct"] == "10.0"
