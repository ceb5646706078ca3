"""
Configuration models for the SMTA signal engine.

Tuned constants (lookbacks, clamp bounds, regime thresholds) live here so the
live plan and the walk-forward backtest read the same values.
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

VALID_CADENCES = ("weekly", "monthly")
VALID_UNIVERSE_MODES = ("etf", "stocks", "custom")


class ConfigurationError(Exception):
    """Raised when the resolved configuration cannot produce a plan."""

    pass


def validate_cadence(value: str) -> str:
    """Normalize and validate a rebalance cadence."""
    cadence = str(value).lower().strip()
    if cadence not in VALID_CADENCES:
        raise ValueError(f"cadence must be one of {VALID_CADENCES}")
    return cadence


class TiingoConfig(BaseModel):
    """Tiingo end-of-day price API settings."""

    api_token: str = Field(default="", description="Tiingo API token")
    base_url: str = Field(default="https://api.tiingo.com")
    history_days: int = Field(default=900, ge=300, le=5000, description="Calendar days of history to fetch")
    max_workers: int = Field(default=4, ge=1, le=16, description="Concurrent price fetches")
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    @field_validator("api_token")
    @classmethod
    def check_not_placeholder(cls, v: str) -> str:
        if v in ("your_tiingo_token_here",):
            raise ValueError("Please set an actual Tiingo token in config.yaml")
        return v


class UniverseConfig(BaseModel):
    """Tradable universe selection."""

    mode: str = Field(default="etf", description="'etf', 'stocks' or 'custom'")
    custom_tickers: List[str] = Field(default_factory=list)
    defensive_tickers: List[str] = Field(
        default_factory=list,
        description="Explicit defensive subset (empty = preset defaults)",
    )
    benchmark: str = Field(default="SPY", description="Regime/benchmark ticker, never traded")

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if v.lower() not in VALID_UNIVERSE_MODES:
            raise ValueError(f"mode must be one of {VALID_UNIVERSE_MODES}")
        return v.lower()

    @field_validator("benchmark")
    @classmethod
    def upper_benchmark(cls, v: str) -> str:
        return v.upper().strip()


class FeatureConfig(BaseModel):
    """Per-instrument feature parameters."""

    lookback_1m: int = Field(default=21, ge=5)
    lookback_3m: int = Field(default=63, ge=20)
    lookback_6m: int = Field(default=126, ge=40)
    lookback_12m: int = Field(default=252, ge=100)
    weight_1m: float = Field(default=0.10, ge=0, le=1)
    weight_3m: float = Field(default=0.20, ge=0, le=1)
    weight_6m: float = Field(default=0.30, ge=0, le=1)
    weight_12m: float = Field(default=0.40, ge=0, le=1)
    acceleration_weight: float = Field(default=0.15, ge=0, le=1, description="Weight on r1m - r3m")
    volatility_lookback: int = Field(default=63, ge=10, description="Sessions of log returns for realized vol")
    min_history: int = Field(default=260, ge=50, description="Observations required to be a candidate")
    seasonality_cap: float = Field(default=0.01, ge=0, le=0.10, description="Clamp for the seasonality tilt")
    trading_days_year: int = Field(default=252, ge=200, le=366)


class RegimeConfig(BaseModel):
    """Benchmark trend/volatility regime parameters."""

    sma_short: int = Field(default=50, ge=10, le=150)
    sma_long: int = Field(default=200, ge=50, le=400)
    volatility_lookback: int = Field(default=20, ge=5, le=63)
    vol_spike_threshold: float = Field(
        default=0.22,
        gt=0,
        le=1.0,
        description="Annualized 20-day vol above this is a volatility spike",
    )


class AllocationConfig(BaseModel):
    """Weighting and hold-time constants."""

    min_volatility: float = Field(default=0.05, gt=0, le=1.0, description="Vol floor for inverse-vol weights")
    max_volatility: float = Field(default=1.5, gt=0, le=5.0, description="Vol cap for inverse-vol weights")
    vol_scale_floor: float = Field(default=0.5, gt=0, le=1.0)
    vol_scale_cap: float = Field(default=1.25, ge=1.0, le=3.0)
    weight_decimals: int = Field(default=4, ge=2, le=8)
    hold_base_days: float = Field(default=12, ge=0)
    hold_score_multiplier: float = Field(default=180, ge=0)
    hold_min_days: int = Field(default=10, ge=1)
    hold_max_days: int = Field(default=90, ge=1)
    hold_fallback_days: int = Field(default=21, ge=1)


class StrategyConfig(BaseModel):
    """Caller-facing selection knobs."""

    top_n: Optional[int] = Field(default=None, ge=1, le=8, description="None = preset default")
    min_momentum: float = Field(default=0.0, description="Minimum composite score before defensive fallback")
    target_vol: float = Field(default=0.12, ge=0.05, le=0.30)
    seasonality_weight: float = Field(default=0.05, ge=0.0, le=0.20)


class RebalancingConfig(BaseModel):
    """Rebalance cadence and churn controls."""

    cadence: str = Field(default="weekly", description="'weekly' or 'monthly'")
    no_trade_pct: float = Field(default=5.0, ge=0, le=25, description="Weight delta (in %) below which no trade")
    min_hold_days: int = Field(default=10, ge=0, le=90, description="Calendar days before a reduction is allowed")

    @field_validator("cadence")
    @classmethod
    def check_cadence(cls, v: str) -> str:
        return validate_cadence(v)


class CostsConfig(BaseModel):
    """Transaction cost settings."""

    slippage_bps: float = Field(default=5.0, ge=0, le=50)


class PortfolioConfig(BaseModel):
    """Portfolio settings."""

    capital: float = Field(default=100000, ge=0, le=1e9)


class WalkForwardConfig(BaseModel):
    """Backtest replay parameters."""

    warmup_days: int = Field(default=260, ge=0, description="Common dates discarded before simulating")
    active_turnover_threshold: float = Field(default=0.0001, ge=0, description="Turnover counted as a rebalance")
    feature_window: int = Field(default=900, ge=260, description="Instrument sessions visible at each rebalance")
    benchmark_window: int = Field(default=400, ge=200, description="Benchmark sessions visible at each rebalance")
    window_padding: int = Field(default=20, ge=0)


class PathsConfig(BaseModel):
    """File path settings."""

    log_dir: str = Field(default="logs")


class Config(BaseModel):
    """Main configuration model for the SMTA signal engine."""

    tiingo: TiingoConfig = Field(default_factory=TiingoConfig)
    universe: UniverseConfig = Field(default_factory=UniverseConfig)
    features: FeatureConfig = Field(default_factory=FeatureConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    rebalancing: RebalancingConfig = Field(default_factory=RebalancingConfig)
    costs: CostsConfig = Field(default_factory=CostsConfig)
    portfolio: PortfolioConfig = Field(default_factory=PortfolioConfig)
    backtest: WalkForwardConfig = Field(default_factory=WalkForwardConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    model_config = {"frozen": True}

    @property
    def has_token(self) -> bool:
        """Whether a plausible Tiingo token is configured."""
        return len(self.tiingo.api_token.strip()) >= 8


def _apply_env_overrides(data: dict) -> dict:
    """Environment variables take precedence over file values."""
    if "TIINGO_TOKEN" in os.environ:
        tiingo = dict(data.get("tiingo") or {})
        tiingo["api_token"] = os.environ["TIINGO_TOKEN"]
        data["tiingo"] = tiingo
    return data


def load_config(config_path: str = "config.yaml", allow_missing: bool = False) -> Config:
    """Load configuration from YAML file with environment variable override support.

    Environment variables take precedence over config file values:
    - TIINGO_TOKEN: Override tiingo.api_token

    Args:
        config_path: Path to the YAML file
        allow_missing: Fall back to defaults (plus env overrides) when the file is absent

    Raises:
        FileNotFoundError: If the file is missing and allow_missing is False
    """
    path = Path(config_path)
    if not path.exists():
        if not allow_missing:
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return Config(**_apply_env_overrides({}))

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return Config(**_apply_env_overrides(data))


def get_default_config() -> Config:
    """Get configuration with all defaults."""
    return Config()
