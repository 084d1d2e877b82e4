"""Tests for paperdesk.leverage – leverage policies."""

import logging

import pytest

from paperdesk.leverage import (
    LeverageConfig,
    LeverageStrategy,
    compute_leverage,
    describe_leverage,
    profit_stack_multiplier,
    signal_strength_leverage,
)


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

class TestSignalStrength:

    @pytest.mark.parametrize(
        "z, expected",
        [(0.0, 1.0), (1.99, 1.0), (2.0, 2.0), (2.49, 2.0), (2.5, 4.0), (3.0, 6.0), (5.0, 6.0)],
    )
    def test_tiers(self, z, expected):
        assert signal_strength_leverage(z) == expected

    def test_uses_absolute_score(self):
        assert signal_strength_leverage(-2.7) == signal_strength_leverage(2.7)


class TestProfitStack:

    @pytest.mark.parametrize(
        "equity, expected",
        [(12_000, 1.5), (11_000, 1.25), (10_500, 1.0), (9_500, 1.0), (9_000, 0.5), (5_000, 0.5)],
    )
    def test_tiers(self, equity, expected):
        assert profit_stack_multiplier(equity, 10_000) == expected

    def test_non_positive_start(self):
        assert profit_stack_multiplier(500, 0) == 1.0


# ---------------------------------------------------------------------------
# compute_leverage
# ---------------------------------------------------------------------------

class TestComputeLeverage:

    def test_fixed(self):
        cfg = LeverageConfig(strategy=LeverageStrategy.FIXED, fixed_leverage=2.0)
        assert compute_leverage(cfg, 4.0, 10_000, 10_000) == 2.0

    @pytest.mark.parametrize("cap", [1.0, 2.0, 4.0, 6.0, 10.0])
    def test_signal_strength_clamp_at_extreme_signal(self, cap):
        cfg = LeverageConfig(strategy=LeverageStrategy.SIGNAL_STRENGTH, max_leverage=cap)
        assert compute_leverage(cfg, 5.0, 10_000, 10_000) == min(6.0, cap)

    def test_profit_stack(self):
        cfg = LeverageConfig(strategy=LeverageStrategy.PROFIT_STACK)
        assert compute_leverage(cfg, 0.0, 12_500, 10_000) == 3.0
        assert compute_leverage(cfg, 0.0, 10_000, 10_000) == 2.0

    def test_combined(self):
        cfg = LeverageConfig(strategy=LeverageStrategy.COMBINED, max_leverage=10.0)
        assert compute_leverage(cfg, 2.6, 11_000, 10_000) == 5.0

    def test_never_below_one(self):
        cfg = LeverageConfig(strategy=LeverageStrategy.COMBINED)
        # 1x signal * 0.5x drawdown multiplier
        assert compute_leverage(cfg, 1.0, 8_000, 10_000) == 1.0

    def test_fixed_below_one_raised_to_one(self):
        cfg = LeverageConfig(strategy=LeverageStrategy.FIXED, fixed_leverage=0.5)
        assert compute_leverage(cfg, 0.0, 10_000, 10_000) == 1.0


class TestStrategyParse:

    def test_known(self):
        assert LeverageStrategy.parse("Signal_Strength") is LeverageStrategy.SIGNAL_STRENGTH

    def test_missing_defaults_to_fixed(self):
        assert LeverageStrategy.parse(None) is LeverageStrategy.FIXED

    def test_unknown_falls_back_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="paperdesk.leverage"):
            assert LeverageStrategy.parse("yolo") is LeverageStrategy.FIXED
        assert "yolo" in caplog.text


class TestDescribeLeverage:

    def test_signal_strength(self):
        cfg = LeverageConfig(strategy=LeverageStrategy.SIGNAL_STRENGTH)
        assert describe_leverage(cfg, 2.7, 10_000, 10_000) == "4x (2.7σ signal)"

    def test_fixed(self):
        assert describe_leverage(LeverageConfig(), 2.7, 10_000, 10_000) == "1x (fixed)"

    def test_profit_stack(self):
        cfg = LeverageConfig(strategy=LeverageStrategy.PROFIT_STACK)
        assert describe_leverage(cfg, 0.0, 11_000, 10_000) == "2.5x (+10.0% equity)"
