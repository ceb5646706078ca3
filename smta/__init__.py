"""
SMTA Signal Engine - Multi-horizon momentum allocation with regime filter

An end-of-day analytics engine:
- Ranks instruments by multi-horizon log momentum plus a seasonality tilt
- Benchmark trend/volatility regime picks defensive, blended or risk-on sleeves
- Inverse-volatility sizing with a target-vol scale
- Trade plan with a no-trade band and minimum holding period
- Walk-forward backtest against buy-and-hold of the benchmark
"""

__version__ = "1.0.0"

from .config import (
    Config,
    ConfigurationError,
    load_config,
)
from .indicators import (
    MarketRegime,
    MomentumResult,
    RegimeResult,
    calculate_momentum_score,
    detect_market_regime,
)
from .momentum_engine import (
    AllocationParams,
    AllocationResult,
    MomentumEngine,
)
from .trade_planner import (
    PlannedTrade,
    TradeAction,
    TradePlanner,
)
from .backtest import (
    BacktestConfig,
    BacktestEngine,
    BacktestResult,
)
from .market_data import (
    TiingoClient,
    UpstreamDataError,
)
from .signal_engine import (
    PlanRequest,
    PlanResult,
    SignalEngine,
)

__all__ = [
    "Config",
    "ConfigurationError",
    "load_config",
    "MarketRegime",
    "MomentumResult",
    "RegimeResult",
    "calculate_momentum_score",
    "detect_market_regime",
    "AllocationParams",
    "AllocationResult",
    "MomentumEngine",
    "PlannedTrade",
    "TradeAction",
    "TradePlanner",
    "BacktestConfig",
    "BacktestEngine",
    "BacktestResult",
    "TiingoClient",
    "UpstreamDataError",
    "PlanRequest",
    "PlanResult",
    "SignalEngine",
]
