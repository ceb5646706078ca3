"""
Utility functions for the SMTA signal engine.

Rate limiting for the price transport, plus the small numeric and calendar
helpers shared by live planning and the backtest.
"""

import math
import threading
import time
from collections import deque
from datetime import date, timedelta
from functools import wraps
from typing import Callable, Dict, Iterable, TypeVar

import numpy as np
from dateutil.relativedelta import relativedelta

F = TypeVar("F", bound=Callable)


def rate_limit(calls: int = 5, period: float = 1.0) -> Callable[[F], F]:
    """
    Decorator to rate limit function calls.

    Uses per-instance storage for instance methods, function-level storage
    for standalone functions.

    Args:
        calls: Maximum calls allowed in the period
        period: Time period in seconds

    Returns:
        Decorated function that respects rate limits
    """
    _func_timestamps: deque = deque()
    _lock = threading.Lock()

    def decorator(func: F) -> F:
        attr_name = f"_rate_limit_{func.__name__}"

        @wraps(func)
        def wrapper(*args, **kwargs):
            with _lock:
                if args and hasattr(args[0], "__dict__"):
                    instance = args[0]
                    if not hasattr(instance, attr_name):
                        setattr(instance, attr_name, deque())
                    timestamps = getattr(instance, attr_name)
                else:
                    timestamps = _func_timestamps

                now = time.time()

                while timestamps and timestamps[0] < now - period:
                    timestamps.popleft()

                # At limit: wait until the oldest call leaves the window
                if len(timestamps) >= calls:
                    sleep_time = timestamps[0] + period - now
                    if sleep_time > 0:
                        time.sleep(sleep_time)
                    while timestamps and timestamps[0] < time.time() - period:
                        timestamps.popleft()

                timestamps.append(time.time())

            return func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def population_std(values: Iterable[float]) -> float:
    """Population standard deviation, 0.0 for fewer than two values."""
    arr = np.asarray(list(values), dtype=float)
    if arr.size < 2:
        return 0.0
    return float(arr.std(ddof=0))


def normalize_weights(weights: Dict[str, float]) -> Dict[str, float]:
    """Scale weights to sum to 1.0 (unchanged if they sum to zero)."""
    total = sum(weights.values()) or 1.0
    return {k: v / total for k, v in weights.items()}


def round_weights(weights: Dict[str, float], decimals: int = 4) -> Dict[str, float]:
    """
    Round weights to a fixed number of decimals while keeping their sum at 1.0.

    The rounding residual is folded into the largest weight.

    Args:
        weights: Weights summing to 1.0
        decimals: Decimal places to keep

    Returns:
        Rounded weights in the same key order
    """
    if not weights:
        return {}

    rounded = {k: round(v, decimals) for k, v in weights.items()}
    residual = round(1.0 - sum(rounded.values()), decimals)
    if residual != 0:
        largest = max(rounded, key=rounded.get)
        rounded[largest] = round(rounded[largest] + residual, decimals)
    return rounded


def next_rebalance_date(as_of: date, cadence: str) -> date:
    """
    Next scheduled rebalance after as_of.

    Monthly: last calendar day of the following month.
    Weekly: the next Friday strictly after as_of.
    """
    if cadence == "monthly":
        return as_of + relativedelta(months=2, day=1) - timedelta(days=1)

    delta = (4 - as_of.weekday()) % 7 or 7
    return as_of + timedelta(days=delta)


def format_currency(value: float, symbol: str = "$") -> str:
    """
    Format number as currency.

    Args:
        value: Numeric value
        symbol: Currency symbol

    Returns:
        Formatted string like "$100,000.00"
    """
    if value < 0:
        return f"-{symbol}{abs(value):,.2f}"
    return f"{symbol}{value:,.2f}"


def format_percentage(value: float, decimals: int = 2) -> str:
    """
    Format number as percentage.

    Args:
        value: Decimal value (0.05 = 5%)
        decimals: Decimal places

    Returns:
        Formatted string like "+5.00%"
    """
    pct = value * 100
    sign = "+" if pct > 0 else ""
    return f"{sign}{pct:.{decimals}f}%"
