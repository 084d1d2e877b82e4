"""Leverage policies.

Maps signal strength and account state to a leverage multiplier:

- fixed: static leverage for all trades
- signal_strength: higher leverage on stronger signals (2-6x)
- profit_stack: adjust leverage based on equity growth
- combined: signal strength scaled by the profit-stack multiplier
"""

import logging
from dataclasses import dataclass
from enum import Enum

log = logging.getLogger(__name__)


__all__ = [
    "LeverageConfig",
    "LeverageStrategy",
    "compute_leverage",
    "describe_leverage",
    "profit_stack_multiplier",
    "signal_strength_leverage",
]


class LeverageStrategy(str, Enum):
    FIXED = "fixed"
    SIGNAL_STRENGTH = "signal_strength"
    PROFIT_STACK = "profit_stack"
    COMBINED = "combined"

    @classmethod
    def parse(cls, value: str | None) -> "LeverageStrategy":
        """Parse a selector, falling back to FIXED for unknown values."""
        raw = (value or "").strip().lower()
        if not raw:
            return cls.FIXED
        try:
            return cls(raw)
        except ValueError:
            log.warning("Unknown leverage strategy %r, using fixed", value)
            return cls.FIXED


@dataclass(frozen=True)
class LeverageConfig:
    strategy: LeverageStrategy = LeverageStrategy.FIXED
    fixed_leverage: float = 1.0
    max_leverage: float = 6.0


def signal_strength_leverage(deviation_score: float) -> float:
    """
    Bet bigger on stronger signals.

    | Z-Score     | Leverage |
    |-------------|----------|
    | < 2.0σ      | 1x       |
    | 2.0 - 2.5σ  | 2x       |
    | 2.5 - 3.0σ  | 4x       |
    | 3.0σ+       | 6x       |
    """
    abs_z = abs(float(deviation_score))
    if abs_z >= 3.0:
        return 6.0
    if abs_z >= 2.5:
        return 4.0
    if abs_z >= 2.0:
        return 2.0
    return 1.0


def profit_stack_multiplier(current_equity: float, starting_equity: float) -> float:
    """
    Scale up after gains, scale down after losses.

    | Equity vs start | Multiplier |
    |-----------------|------------|
    | Up 20%+         | 1.5x       |
    | Up 10%+         | 1.25x      |
    | Down 10%+       | 0.5x       |
    """
    if starting_equity <= 0:
        return 1.0
    ratio = float(current_equity) / float(starting_equity)
    if ratio >= 1.2:
        return 1.5
    if ratio >= 1.1:
        return 1.25
    if ratio <= 0.9:
        return 0.5
    return 1.0


def compute_leverage(
    config: LeverageConfig,
    deviation_score: float,
    current_equity: float,
    starting_equity: float,
) -> float:
    """
    Calculate leverage for a new trade under the configured strategy.

    The result is always clamped to ``[1, config.max_leverage]``.
    """
    strategy = config.strategy
    if strategy == LeverageStrategy.FIXED:
        leverage = float(config.fixed_leverage)
    elif strategy == LeverageStrategy.SIGNAL_STRENGTH:
        leverage = signal_strength_leverage(deviation_score)
    elif strategy == LeverageStrategy.PROFIT_STACK:
        leverage = 2.0 * profit_stack_multiplier(current_equity, starting_equity)
    elif strategy == LeverageStrategy.COMBINED:
        leverage = signal_strength_leverage(deviation_score) * profit_stack_multiplier(
            current_equity, starting_equity
        )
    else:
        leverage = 1.0

    leverage = min(leverage, float(config.max_leverage))
    return max(leverage, 1.0)


def describe_leverage(
    config: LeverageConfig,
    deviation_score: float,
    current_equity: float,
    starting_equity: float,
) -> str:
    """Human-readable summary of the leverage decision, for log lines."""
    leverage = compute_leverage(config, deviation_score, current_equity, starting_equity)
    abs_z = abs(float(deviation_score))
    profit_pct = ((current_equity / starting_equity) - 1.0) * 100.0 if starting_equity > 0 else 0.0
    sign = "+" if profit_pct >= 0 else ""

    if config.strategy == LeverageStrategy.FIXED:
        return f"{leverage:g}x (fixed)"
    if config.strategy == LeverageStrategy.SIGNAL_STRENGTH:
        return f"{leverage:g}x ({abs_z:.1f}σ signal)"
    if config.strategy == LeverageStrategy.PROFIT_STACK:
        return f"{leverage:g}x ({sign}{profit_pct:.1f}% equity)"
    if config.strategy == LeverageStrategy.COMBINED:
        return f"{leverage:g}x ({abs_z:.1f}σ + {sign}{profit_pct:.1f}% equity)"
    return f"{leverage:g}x"
