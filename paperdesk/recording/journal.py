"""Persistence for the paper trading book."""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Protocol

from .types import AccountState, AlertRecord, DailySnapshot, Trade

log = logging.getLogger(__name__)


__all__ = [
    "JsonFileStore",
    "MemoryStore",
    "Store",
]


class Store(Protocol):
    """Storage contract for trades, account state, snapshots and alerts.

    ``load_state`` receives a factory that builds the default state; it is
    used when nothing has been stored yet or the stored state is unreadable.
    """

    def load_trades(self) -> list[Trade]: ...

    def save_trades(self, trades: list[Trade]) -> None: ...

    def load_state(self, default: Callable[[], AccountState]) -> AccountState: ...

    def save_state(self, state: AccountState) -> None: ...

    def load_snapshots(self) -> list[DailySnapshot]: ...

    def save_snapshots(self, snapshots: list[DailySnapshot]) -> None: ...

    def load_alerts(self) -> list[AlertRecord]: ...

    def append_alert(self, record: AlertRecord) -> None: ...

    def reset(self) -> None: ...


class JsonFileStore:
    """
    Persists the book as JSON files in a data directory.

    Write pattern:
      Every file is written atomically (write to ``.<name>.tmp``, then
      rename over the target), so a crash mid-write leaves the previous
      version intact.

    Read pattern:
      A missing file means a fresh start. An unreadable file is logged
      loudly and treated as empty: the engine keeps running from defaults
      rather than propagating corrupt state.
    """

    TRADES_FILENAME = "paper-trades.json"
    STATE_FILENAME = "paper-state.json"
    SNAPSHOTS_FILENAME = "paper-snapshots.json"
    ALERTS_FILENAME = "paper-alerts-log.json"

    def __init__(self, data_dir: Path):
        self._dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._dir

    def _path(self, filename: str) -> Path:
        return self._dir / filename

    def _write_json(self, filename: str, payload: Any) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path(filename)
        tmp_path = self._dir / f".{filename}.tmp"
        tmp_path.write_text(json.dumps(payload, indent=2))
        tmp_path.replace(path)
        log.debug("Wrote %s", path)

    def _read_json(self, filename: str) -> tuple[bool, Any]:
        """Return ``(ok, data)``; ``ok`` is False when the file is corrupt."""
        path = self._path(filename)
        if not path.exists():
            return True, None
        try:
            return True, json.loads(path.read_text())
        except Exception:
            log.exception("Failed to read %s", path)
            return False, None

    def _reset_warning(self, filename: str, what: str) -> None:
        log.warning(
            "%s is unreadable; starting from empty %s. Previous history is NOT loaded.",
            self._path(filename),
            what,
        )

    def load_trades(self) -> list[Trade]:
        ok, data = self._read_json(self.TRADES_FILENAME)
        if data is not None:
            try:
                return [Trade.from_dict(row) for row in data]
            except Exception:
                log.exception("Malformed trade rows in %s", self._path(self.TRADES_FILENAME))
                ok = False
        if not ok:
            self._reset_warning(self.TRADES_FILENAME, "trade ledger")
        return []

    def save_trades(self, trades: list[Trade]) -> None:
        self._write_json(self.TRADES_FILENAME, [t.to_dict() for t in trades])

    def load_state(self, default: Callable[[], AccountState]) -> AccountState:
        ok, data = self._read_json(self.STATE_FILENAME)
        if data is not None:
            try:
                return AccountState.from_dict(data)
            except Exception:
                log.exception("Malformed account state in %s", self._path(self.STATE_FILENAME))
                ok = False
        if not ok:
            self._reset_warning(self.STATE_FILENAME, "account state")
        return default()

    def save_state(self, state: AccountState) -> None:
        self._write_json(self.STATE_FILENAME, state.to_dict())

    def load_snapshots(self) -> list[DailySnapshot]:
        ok, data = self._read_json(self.SNAPSHOTS_FILENAME)
        if data is not None:
            try:
                return [DailySnapshot(**row) for row in data]
            except Exception:
                log.exception("Malformed snapshots in %s", self._path(self.SNAPSHOTS_FILENAME))
                ok = False
        if not ok:
            self._reset_warning(self.SNAPSHOTS_FILENAME, "snapshot history")
        return []

    def save_snapshots(self, snapshots: list[DailySnapshot]) -> None:
        self._write_json(self.SNAPSHOTS_FILENAME, [asdict(s) for s in snapshots])

    def load_alerts(self) -> list[AlertRecord]:
        ok, data = self._read_json(self.ALERTS_FILENAME)
        if data is not None:
            try:
                return [AlertRecord(**row) for row in data]
            except Exception:
                log.exception("Malformed alert log in %s", self._path(self.ALERTS_FILENAME))
                ok = False
        if not ok:
            self._reset_warning(self.ALERTS_FILENAME, "alert log")
        return []

    def append_alert(self, record: AlertRecord) -> None:
        alerts = self.load_alerts()
        alerts.append(record)
        self._write_json(self.ALERTS_FILENAME, [asdict(a) for a in alerts])

    def reset(self) -> None:
        """Remove all paper trading data files."""
        for filename in (
            self.TRADES_FILENAME,
            self.STATE_FILENAME,
            self.SNAPSHOTS_FILENAME,
            self.ALERTS_FILENAME,
        ):
            path = self._path(filename)
            if path.exists():
                path.unlink()
                log.info("Deleted %s", path)


class MemoryStore:
    """In-process store. Round-trips through dicts so tests see persisted copies."""

    def __init__(self) -> None:
        self.trades: list[dict[str, Any]] = []
        self.state: dict[str, Any] | None = None
        self.snapshots: list[DailySnapshot] = []
        self.alerts: list[AlertRecord] = []

    def load_trades(self) -> list[Trade]:
        return [Trade.from_dict(row) for row in self.trades]

    def save_trades(self, trades: list[Trade]) -> None:
        self.trades = [t.to_dict() for t in trades]

    def load_state(self, default: Callable[[], AccountState]) -> AccountState:
        if self.state is None:
            return default()
        return AccountState.from_dict(self.state)

    def save_state(self, state: AccountState) -> None:
        self.state = state.to_dict()

    def load_snapshots(self) -> list[DailySnapshot]:
        return list(self.snapshots)

    def save_snapshots(self, snapshots: list[DailySnapshot]) -> None:
        self.snapshots = list(snapshots)

    def load_alerts(self) -> list[AlertRecord]:
        return list(self.alerts)

    def append_alert(self, record: AlertRecord) -> None:
        self.alerts.append(record)

    def reset(self) -> None:
        self.trades = []
        self.state = None
        self.snapshots = []
        self.alerts = []
