"""Broker-agnostic trading types."""

import re
from enum import Enum
from typing import NewType


__all__ = [
    "Direction",
    "ExitReason",
    "Instrument",
    "StrategyTag",
    "TradeStatus",
    "make_instrument",
]


Instrument = NewType("Instrument", str)

_INSTRUMENT_RE = re.compile(r"^[A-Z0-9][A-Z0-9._-]*$")


def make_instrument(value: str) -> Instrument:
    """
    Validate and normalise an instrument symbol.

    Symbols are upper-cased and stripped so that "hype " and "HYPE" group
    together in the ledger and metrics.

    Raises:
        ValueError: if the symbol is empty or contains unexpected characters
    """
    s = (value or "").strip().upper()
    if not _INSTRUMENT_RE.match(s):
        raise ValueError(f"Invalid instrument symbol: {value!r}")
    return Instrument(s)


class Direction(str, Enum):
    """Trading direction for a funding-rate position.

    LONG pays the fixed rate and receives floating: wins if funding goes up.
    SHORT receives the fixed rate and pays floating: wins if funding goes down.
    """
    LONG = "LONG"
    SHORT = "SHORT"

    def opposite(self) -> "Direction":
        """Return the opposite direction."""
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ExitReason(str, Enum):
    TIME_BASED = "TIME_BASED"
    MANUAL = "MANUAL"
    STOP_LOSS = "STOP_LOSS"


class StrategyTag(str, Enum):
    """Strategy that produced the alert behind a trade."""
    MEAN_REVERSION = "mean_reversion"
    SPREAD_HARVEST = "spread_harvest"

    @property
    def default_hold_days(self) -> int:
        """Hold period the strategy was backtested with."""
        return 14 if self is StrategyTag.SPREAD_HARVEST else 7
