from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from paperdesk.leverage import LeverageConfig, LeverageStrategy
from paperdesk.recording.ledger import DEFAULT_STARTING_CAPITAL
from paperdesk.risk import RiskConfig


__all__ = [
    "ConfigError",
    "PaperConfig",
    "PaperMode",
    "PaperSettings",
]


DEFAULT_POSITION_SIZE = 1_000.0
DEFAULT_TAKER_FEE_RATE = 0.001  # 0.1% each side


class ConfigError(ValueError):
    """Configuration could not be loaded. ``errors`` lists every problem found."""

    def __init__(self, errors: list[str]):
        super().__init__("Invalid paper trading configuration:\n  - " + "\n  - ".join(errors))
        self.errors = errors


class PaperMode(str, Enum):
    """AUTO opens a trade for every alert; MANUAL only logs alerts."""
    AUTO = "auto"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: str | None) -> PaperMode:
        return cls.AUTO if (value or "").strip().lower() == "auto" else cls.MANUAL


@dataclass(frozen=True)
class PaperConfig:
    risk: RiskConfig = field(default_factory=RiskConfig)
    leverage: LeverageConfig = field(default_factory=LeverageConfig)
    taker_fee_rate: float = DEFAULT_TAKER_FEE_RATE
    default_position_size: float = DEFAULT_POSITION_SIZE
    starting_capital: float = DEFAULT_STARTING_CAPITAL
    mode: PaperMode = PaperMode.MANUAL
    data_dir: Path = Path("data")

    def validate(self) -> list[str]:
        """Return every range problem in this configuration (empty when valid)."""
        errors: list[str] = []
        r = self.risk

        if not 0 < r.max_position_size <= 1:
            errors.append(f"max position size must be in (0, 1] (got {r.max_position_size})")
        if r.max_concurrent_positions < 1:
            errors.append(
                f"max concurrent positions must be at least 1 (got {r.max_concurrent_positions})"
            )
        if r.max_total_exposure <= 0:
            errors.append(f"max total exposure must be positive (got {r.max_total_exposure})")
        if not -1 <= r.stop_loss_threshold < 0:
            errors.append(f"stop loss must be in [-1, 0) (got {r.stop_loss_threshold})")
        if not -1 <= r.max_drawdown < 0:
            errors.append(f"max drawdown must be in [-1, 0) (got {r.max_drawdown})")
        if r.max_leverage < 1:
            errors.append(f"max leverage must be at least 1 (got {r.max_leverage})")
        if r.consecutive_loss_limit < 0:
            errors.append(
                f"consecutive loss limit cannot be negative (got {r.consecutive_loss_limit})"
            )
        if r.cooldown_days < 0:
            errors.append(f"cooldown days cannot be negative (got {r.cooldown_days})")

        lev = self.leverage
        if lev.fixed_leverage < 1:
            errors.append(f"fixed leverage must be at least 1 (got {lev.fixed_leverage})")
        if lev.max_leverage < 1:
            errors.append(f"leverage cap must be at least 1 (got {lev.max_leverage})")

        if not 0 <= self.taker_fee_rate < 0.1:
            errors.append(f"taker fee rate must be in [0, 0.1) (got {self.taker_fee_rate})")
        if self.default_position_size <= 0:
            errors.append(
                f"default position size must be positive (got {self.default_position_size})"
            )
        if self.starting_capital <= 0:
            errors.append(f"starting capital must be positive (got {self.starting_capital})")

        return errors

    @classmethod
    def from_env(cls) -> PaperConfig:
        """
        Build a configuration from ``PAPER_*`` environment variables.

        Unset or empty variables take the documented defaults. Every
        unparseable value and every range problem is collected, then
        reported together.

        Raises:
            ConfigError: listing all problems found
        """
        errors: list[str] = []
        try:
            settings = PaperSettings()
        except ValidationError as e:
            errors = [_describe_error(err) for err in e.errors()]
            # Fall back to defaults for the bad fields so range checks still run.
            bad = {err["loc"][0] for err in e.errors() if err["loc"]}
            settings = PaperSettings(
                **{name: PaperSettings.model_fields[name].default for name in bad}
            )

        config = settings.to_config()
        errors.extend(config.validate())
        if errors:
            raise ConfigError(errors)
        return config


_RISK = RiskConfig()
_LEVERAGE = LeverageConfig()


class PaperSettings(BaseSettings):
    """Raw ``PAPER_*`` environment values, parsed but not range-checked."""

    model_config = SettingsConfigDict(env_prefix="PAPER_", env_ignore_empty=True)

    max_position_size: float = _RISK.max_position_size
    max_concurrent: int = _RISK.max_concurrent_positions
    max_exposure: float = _RISK.max_total_exposure
    stop_loss: float = _RISK.stop_loss_threshold
    max_drawdown: float = _RISK.max_drawdown
    max_leverage: float = _RISK.max_leverage
    loss_limit: int = _RISK.consecutive_loss_limit
    cooldown_days: float = _RISK.cooldown_days

    leverage_strategy: Optional[str] = None
    fixed_leverage: float = _LEVERAGE.fixed_leverage
    leverage_cap: float = _LEVERAGE.max_leverage

    taker_fee: float = DEFAULT_TAKER_FEE_RATE
    position_size: float = DEFAULT_POSITION_SIZE
    starting_capital: float = DEFAULT_STARTING_CAPITAL
    mode: Optional[str] = None
    data_dir: Path = Path("data")

    def to_config(self) -> PaperConfig:
        return PaperConfig(
            risk=RiskConfig(
                max_position_size=self.max_position_size,
                max_concurrent_positions=self.max_concurrent,
                max_total_exposure=self.max_exposure,
                stop_loss_threshold=self.stop_loss,
                max_drawdown=self.max_drawdown,
                max_leverage=self.max_leverage,
                consecutive_loss_limit=self.loss_limit,
                cooldown_days=self.cooldown_days,
            ),
            leverage=LeverageConfig(
                strategy=LeverageStrategy.parse(self.leverage_strategy),
                fixed_leverage=self.fixed_leverage,
                max_leverage=self.leverage_cap,
            ),
            taker_fee_rate=self.taker_fee,
            default_position_size=self.position_size,
            starting_capital=self.starting_capital,
            mode=PaperMode.parse(self.mode),
            data_dir=self.data_dir,
        )


def _describe_error(err: dict[str, Any]) -> str:
    name = "PAPER_" + "_".join(str(part) for part in err["loc"]).upper()
    return f"{name}: {err['msg']} (got {err.get('input')!r})"
