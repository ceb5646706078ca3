"""
Trade planner - turns a target allocation into BUY / SELL / HOLD instructions.

Enforces:
- No-trade band: weight deltas below the threshold produce no trade
- Minimum holding period: recent positions are not reduced
- Sells listed before buys
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from .logger import DecisionLogger
from .portfolio import Holding
from .utils import format_currency, round_half_up

logger = logging.getLogger(__name__)


class TradeAction(Enum):
    """Type of trade action in the plan."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"    # Reduction deferred by the minimum holding period


@dataclass
class PlannedTrade:
    """A single trade in the rebalance plan."""

    action: TradeAction
    ticker: str
    shares: int
    price: float
    estimated_value: float
    reason: str = ""
    current_weight: float = 0.0
    target_weight: float = 0.0

    @property
    def is_sell(self) -> bool:
        """Check if this is a sell trade."""
        return self.action == TradeAction.SELL

    @property
    def is_buy(self) -> bool:
        """Check if this is a buy trade."""
        return self.action == TradeAction.BUY

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "ticker": self.ticker,
            "shares": self.shares,
            "price": self.price,
            "est_value": self.estimated_value,
            "reason": self.reason,
            "current_weight": self.current_weight,
            "target_weight": self.target_weight,
        }

    def __str__(self) -> str:
        return (
            f"{self.action.value} {self.shares} {self.ticker} @ {self.price:.2f} "
            f"({format_currency(self.estimated_value)})"
        )


@dataclass
class RebalancePlan:
    """Complete trade plan for one as-of date."""

    trades: List[PlannedTrade] = field(default_factory=list)
    effective_capital: float = 0.0
    current_value: float = 0.0
    warnings: List[str] = field(default_factory=list)

    @property
    def sell_trades(self) -> List[PlannedTrade]:
        return [t for t in self.trades if t.is_sell]

    @property
    def buy_trades(self) -> List[PlannedTrade]:
        return [t for t in self.trades if t.is_buy]

    @property
    def hold_trades(self) -> List[PlannedTrade]:
        return [t for t in self.trades if t.action == TradeAction.HOLD]

    @property
    def total_sell_value(self) -> float:
        return sum(t.estimated_value for t in self.sell_trades)

    @property
    def total_buy_value(self) -> float:
        return sum(t.estimated_value for t in self.buy_trades)


class TradePlanner:
    """Computes trade deltas between current holdings and target weights."""

    def __init__(
        self,
        no_trade_pct: float = 5.0,
        min_hold_days: int = 10,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        """
        Initialize trade planner.

        Args:
            no_trade_pct: Weight delta in percent below which no trade is made
            min_hold_days: Calendar days a position must be held before reducing
            decision_logger: Optional audit logger
        """
        self.no_trade_pct = no_trade_pct
        self.min_hold_days = min_hold_days
        self.decision_logger = decision_logger

    def build_plan(
        self,
        target_weights: Mapping[str, float],
        current_prices: Mapping[str, float],
        holdings: Iterable[Holding],
        capital: float,
        as_of: date,
    ) -> RebalancePlan:
        """
        Build the trade plan from target weights.

        Current weights are measured against the total value of priced
        holdings; trade sizes against max(capital, holdings value).

        Args:
            target_weights: Ticker -> target weight (sums to 1 or empty)
            current_prices: Ticker -> latest close
            holdings: Current positions (a later duplicate ticker wins)
            capital: Cash-plus-holdings capital the caller wants allocated
            as_of: Plan date, used for holding-period checks

        Returns:
            RebalancePlan with sells first
        """
        plan = RebalancePlan()

        by_ticker: Dict[str, Holding] = {}
        for holding in holdings:
            by_ticker[holding.ticker] = holding

        market_values: Dict[str, float] = {}
        for ticker, holding in by_ticker.items():
            price = current_prices.get(ticker, 0.0)
            if not price or price <= 0:
                plan.warnings.append(f"No current price for held {ticker}; excluded from holdings value.")
                continue
            market_values[ticker] = holding.market_value(price)

        total_value = sum(market_values.values())
        effective_capital = max(capital or 0.0, total_value, 0.0)
        plan.current_value = total_value
        plan.effective_capital = effective_capital

        current_weights = {
            t: (v / total_value if total_value > 0 else 0.0) for t, v in market_values.items()
        }

        threshold = self.no_trade_pct / 100
        ordered = list(dict.fromkeys([*current_weights, *target_weights]))

        for ticker in ordered:
            current_weight = current_weights.get(ticker, 0.0)
            target_weight = target_weights.get(ticker, 0.0)
            delta = target_weight - current_weight

            price = current_prices.get(ticker, 0.0)
            if not price or price <= 0:
                if ticker in target_weights:
                    plan.warnings.append(f"No current price for target {ticker}; trade skipped.")
                continue

            if abs(delta) < threshold:
                continue

            holding = by_ticker.get(ticker)
            if holding and delta < 0 and holding.last_trade_date:
                days_held = (as_of - holding.last_trade_date).days
                if days_held < self.min_hold_days:
                    plan.trades.append(
                        PlannedTrade(
                            action=TradeAction.HOLD,
                            ticker=ticker,
                            shares=0,
                            price=price,
                            estimated_value=0.0,
                            reason=(
                                f"Min holding period ({self.min_hold_days}d) not met "
                                f"(held ~{days_held}d)."
                            ),
                            current_weight=current_weight,
                            target_weight=target_weight,
                        )
                    )
                    continue

            shares = round_half_up(delta * effective_capital / price)
            if shares == 0:
                continue

            plan.trades.append(
                PlannedTrade(
                    action=TradeAction.BUY if shares > 0 else TradeAction.SELL,
                    ticker=ticker,
                    shares=abs(shares),
                    price=price,
                    estimated_value=abs(shares) * price,
                    reason=(
                        f"Rebalance delta {delta * 100:.1f}% "
                        f"(no-trade threshold {self.no_trade_pct:g}%)."
                    ),
                    current_weight=current_weight,
                    target_weight=target_weight,
                )
            )

        # Sells first; sort is stable so the remaining order is preserved
        plan.trades.sort(key=lambda t: 0 if t.is_sell else 1)

        logger.debug(
            f"Plan built: {len(plan.trades)} trades, effective capital "
            f"{format_currency(effective_capital)}"
        )
        if self.decision_logger:
            self.decision_logger.log_plan(plan)
            self.decision_logger.log_warnings(plan.warnings)

        return plan
