"""Funding-style P&L accrual.

A position locks in a fixed annualised rate at entry. Every hour it
exchanges that fixed leg against the floating rate observed that hour:

    hourly_fixed    = entry_rate / 8760
    hourly_floating = observed_rate / 8760
    SHORT: pnl_hour = (hourly_fixed - hourly_floating) * notional
    LONG:  pnl_hour = (hourly_floating - hourly_fixed) * notional

SHORT profits when the floating rate falls below the entry rate, LONG
profits when it rises above.
"""

from typing import Iterable

import numpy as np

from paperdesk.types import Direction


__all__ = [
    "HOURS_PER_YEAR",
    "accrue_constant",
    "accrue_series",
    "hourly_spread",
]


HOURS_PER_YEAR = 8760.0


def hourly_spread(direction: Direction, entry_rate: float, observed_rate: float) -> float:
    """Per-hour, per-unit-notional P&L for one observation."""
    hourly_fixed = float(entry_rate) / HOURS_PER_YEAR
    hourly_floating = float(observed_rate) / HOURS_PER_YEAR
    if direction == Direction.SHORT:
        return hourly_fixed - hourly_floating
    return hourly_floating - hourly_fixed


def accrue_constant(
    direction: Direction,
    entry_rate: float,
    observed_rate: float,
    notional: float,
    hours: float,
) -> float:
    """
    Single-rate approximation of accrued P&L.

    Used for live marking where only the latest observation is available.

    Args:
        direction: Position direction
        entry_rate: Fixed annualised rate locked at entry
        observed_rate: Latest floating annualised rate
        notional: Position notional
        hours: Hours held

    Returns:
        Gross P&L (before fees)
    """
    if hours <= 0:
        return 0.0
    return hourly_spread(direction, entry_rate, observed_rate) * float(notional) * float(hours)


def accrue_series(
    direction: Direction,
    entry_rate: float,
    observed_rates: Iterable[float],
    notional: float,
) -> float:
    """
    Accrued P&L over an hourly series of floating-rate observations.

    Each element of *observed_rates* is the floating rate for one elapsed
    hour.
    """
    rates = np.asarray(list(observed_rates), dtype=np.float64)
    if rates.size == 0:
        return 0.0
    hourly_fixed = float(entry_rate) / HOURS_PER_YEAR
    hourly_floating = rates / HOURS_PER_YEAR
    if direction == Direction.SHORT:
        per_hour = hourly_fixed - hourly_floating
    else:
        per_hour = hourly_floating - hourly_fixed
    return float(np.sum(per_hour) * float(notional))
