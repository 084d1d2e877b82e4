# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest

from paperdesk.config import PaperConfig
from paperdesk.lifecycle import LifecycleManager
from paperdesk.recording.journal import MemoryStore
from paperdesk.recording.ledger import TradeLedger
from paperdesk.recording.types import Alert, Trade, TradeEntry, TradeExit
from paperdesk.types import Direction, ExitReason, StrategyTag, make_instrument


T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Fixed time source that tests move forward explicitly."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store, clock):
    return TradeLedger(store, clock=clock)


@pytest.fixture
def config():
    return PaperConfig()


@pytest.fixture
def manager(ledger, config):
    return LifecycleManager(ledger, config)


@pytest.fixture
def make_alert(clock):
    def _make(
        instrument="HYPE",
        direction=Direction.SHORT,
        strategy=StrategyTag.MEAN_REVERSION,
        current_rate=0.10,
        deviation_score=2.7,
        hold_days=7,
        **overrides,
    ):
        fields = dict(
            strategy=strategy,
            instrument=make_instrument(instrument),
            direction=direction,
            current_rate=current_rate,
            implied_rate=current_rate,
            deviation_score=deviation_score,
            mean_rate=0.02,
            std_dev=0.03,
            spread=current_rate - 0.02,
            hold_days=hold_days,
            timestamp=clock(),
        )
        fields.update(overrides)
        return Alert(**fields)

    return _make


@pytest.fixture
def make_trade():
    """Build trades directly, open (pnl=None) or closed."""
    counter = {"n": 0}

    def _make(
        instrument="HYPE",
        direction=Direction.SHORT,
        strategy=StrategyTag.MEAN_REVERSION,
        entry_time=T0,
        exit_time=None,
        pnl=None,
        notional=1000.0,
        leverage=1.0,
        entry_rate=0.10,
        exit_z=0.0,
        reason=ExitReason.TIME_BASED,
        trade_id=None,
    ):
        counter["n"] += 1
        trade_exit = None
        if pnl is not None:
            trade_exit = TradeExit(
                time=exit_time or entry_time + timedelta(days=7),
                rate=0.02,
                deviation_score=exit_z,
                reason=reason,
                realized_pnl=pnl,
            )
        return Trade(
            id=trade_id or f"trade-{counter['n']:04d}",
            instrument=make_instrument(instrument),
            direction=direction,
            strategy=strategy,
            entry=TradeEntry(
                time=entry_time,
                rate=entry_rate,
                implied_rate=entry_rate,
                deviation_score=2.5,
                notional=notional,
                leverage=leverage,
            ),
            target_hold_days=7,
            scheduled_exit_time=entry_time + timedelta(days=7),
            exit=trade_exit,
        )

    return _make
