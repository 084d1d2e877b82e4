from .journal import JsonFileStore, MemoryStore, Store
from .ledger import DEFAULT_STARTING_CAPITAL, LedgerInvariantError, TradeLedger
from .types import (
    AccountState,
    Alert,
    AlertRecord,
    Baseline,
    DailySnapshot,
    Trade,
    TradeEntry,
    TradeExit,
)

__all__ = [
    "AccountState",
    "Alert",
    "AlertRecord",
    "Baseline",
    "DEFAULT_STARTING_CAPITAL",
    "DailySnapshot",
    "JsonFileStore",
    "LedgerInvariantError",
    "MemoryStore",
    "Store",
    "Trade",
    "TradeEntry",
    "TradeExit",
    "TradeLedger",
]
