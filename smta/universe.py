"""
Universe resolution for the SMTA signal engine.

Maps a universe mode (etf / stocks / custom) to a clean ticker list, and
derives the defensive subset used by risk-off and caution selection.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .config import VALID_UNIVERSE_MODES, ConfigurationError

logger = logging.getLogger(__name__)

PRESET_UNIVERSES: Dict[str, List[str]] = {
    "etf": ["SPY", "QQQ", "IWM", "EFA", "EEM", "TLT", "IEF", "GLD", "DBC", "VNQ"],
    "stocks": [
        "AAPL", "MSFT", "NVDA", "AMZN", "GOOGL", "META", "TSLA", "JPM",
        "XOM", "UNH", "COST", "AVGO", "LLY", "PEP", "HD",
    ],
}

# Bonds, gold and low-vol equity: preferred defensive sleeve when present
DEFENSIVE_CANDIDATES = ["TLT", "IEF", "SHY", "GLD", "USMV", "SPLV"]

DEFAULT_TOP_N = {"stocks": 5}
FALLBACK_TOP_N = 3


def normalize_tickers(tickers: Iterable[str]) -> List[str]:
    """Upper-case, strip and de-duplicate tickers (first occurrence wins)."""
    cleaned = (str(t).upper().strip() for t in tickers)
    return list(dict.fromkeys(t for t in cleaned if t))


def resolve_universe(
    mode: str,
    custom_tickers: Optional[Sequence[str]] = None,
    benchmark: str = "SPY",
) -> List[str]:
    """
    Resolve the tradable universe.

    The benchmark is reserved for regime detection and is always removed.

    Args:
        mode: 'etf', 'stocks' or 'custom'
        custom_tickers: Tickers used when mode is 'custom'
        benchmark: Reserved benchmark ticker

    Returns:
        Ordered, de-duplicated ticker list

    Raises:
        ConfigurationError: Unknown mode or empty resolved universe
    """
    mode = (mode or "etf").lower()
    if mode not in VALID_UNIVERSE_MODES:
        raise ConfigurationError(f"Unknown universe mode '{mode}'. Use one of {VALID_UNIVERSE_MODES}.")

    raw = (custom_tickers or []) if mode == "custom" else PRESET_UNIVERSES[mode]
    benchmark = benchmark.upper().strip()
    universe = [t for t in normalize_tickers(raw) if t != benchmark]

    if not universe:
        raise ConfigurationError("Universe is empty. Provide custom tickers or choose a preset.")

    logger.debug(f"Universe ({mode}): {universe}")
    return universe


def default_defensive_tickers(universe: Sequence[str]) -> List[str]:
    """
    Known defensive assets present in the universe.

    Falls back to the first min(3, len) universe tickers when none are known.
    """
    members = set(universe)
    defensive = [t for t in DEFENSIVE_CANDIDATES if t in members]
    if defensive:
        return defensive
    return list(universe[: min(3, len(universe))])


def resolve_defensive_tickers(
    universe: Sequence[str],
    explicit: Optional[Sequence[str]] = None,
) -> List[str]:
    """
    Defensive subset, always contained in the universe.

    Explicit tickers are filtered to the universe; if none survive the
    default subset is used.
    """
    if explicit:
        members = set(universe)
        defensive = [t for t in normalize_tickers(explicit) if t in members]
        if defensive:
            return defensive
        logger.warning(f"No explicit defensive tickers in universe ({list(explicit)}); using defaults")
    return default_defensive_tickers(universe)


def default_top_n(mode: str) -> int:
    """Default number of holdings for a universe mode."""
    return DEFAULT_TOP_N.get((mode or "").lower(), FALLBACK_TOP_N)
