"""Signal functions for the backtest simulator.

A signal function receives the trailing window of bars that precede the bar
being traded (the current bar is never visible) and returns one of ``BUY``,
``SELL`` or ``HOLD``.
"""

from __future__ import annotations

from typing import Callable, Dict, Sequence

import numpy as np

from quantengine.core.exceptions import InvalidParameterError, NotFoundError
from quantengine.core.models import PriceBar

BUY = "BUY"
SELL = "SELL"
HOLD = "HOLD"
SIGNALS = (BUY, SELL, HOLD)

SignalFn = Callable[[Sequence[PriceBar]], str]


def _prices(window: Sequence[PriceBar]) -> np.ndarray:
    return np.fromiter((bar.price for bar in window), dtype=float, count=len(window))


def hold_only(window: Sequence[PriceBar]) -> str:
    return HOLD


def sma_crossover(window: Sequence[PriceBar]) -> str:
    """BUY above both the 10- and 20-bar averages, SELL below both."""
    if len(window) < 10:
        return HOLD
    prices = _prices(window)
    current = prices[-1]
    sma10 = prices[-10:].mean()
    sma20 = prices[-20:].mean() if prices.size >= 20 else sma10
    if current > sma20 and current > sma10:
        return BUY
    if current < sma20 and current < sma10:
        return SELL
    return HOLD


def price_above_average(period: int = 20) -> SignalFn:
    if period < 1:
        raise InvalidParameterError("period must be positive", field="period")

    def signal(window: Sequence[PriceBar]) -> str:
        if len(window) < period:
            return HOLD
        prices = _prices(window)
        avg = prices[-period:].mean()
        if prices[-1] > avg:
            return BUY
        if prices[-1] < avg:
            return SELL
        return HOLD

    signal.__name__ = f"price_above_average_{period}"
    return signal


def rsi_value(prices: np.ndarray, period: int = 14) -> float:
    """Simple-average RSI over the last ``period`` price changes."""
    deltas = np.diff(prices[-(period + 1) :])
    gains = deltas[deltas > 0].sum() / period
    losses = -deltas[deltas < 0].sum() / period
    if losses == 0:
        return 100.0 if gains > 0 else 50.0
    rs = gains / losses
    return 100.0 - 100.0 / (1.0 + rs)


def rsi(period: int = 14, oversold: float = 30.0, overbought: float = 70.0) -> SignalFn:
    if period < 1:
        raise InvalidParameterError("period must be positive", field="period")
    if not 0 <= oversold < overbought <= 100:
        raise InvalidParameterError(
            "thresholds must satisfy 0 <= oversold < overbought <= 100",
            field="oversold",
        )

    def signal(window: Sequence[PriceBar]) -> str:
        if len(window) < period + 1:
            return HOLD
        value = rsi_value(_prices(window), period)
        if value < oversold:
            return BUY
        if value > overbought:
            return SELL
        return HOLD

    signal.__name__ = f"rsi_{period}"
    return signal


def bollinger(period: int = 20, width: float = 2.0) -> SignalFn:
    """Mean reversion off the bands: BUY below the lower band, SELL above the upper."""
    if period < 2:
        raise InvalidParameterError("period must be at least 2", field="period")

    def signal(window: Sequence[PriceBar]) -> str:
        if len(window) < period:
            return HOLD
        prices = _prices(window)[-period:]
        mid = prices.mean()
        band = width * prices.std(ddof=0)
        if prices[-1] < mid - band:
            return BUY
        if prices[-1] > mid + band:
            return SELL
        return HOLD

    signal.__name__ = f"bollinger_{period}"
    return signal


STRATEGIES: Dict[str, SignalFn] = {
    "sma_crossover": sma_crossover,
    "price_above_average": price_above_average(20),
    "rsi": rsi(),
    "bollinger": bollinger(),
    "hold": hold_only,
}

STRATEGY_LABELS: Dict[str, str] = {
    "sma_crossover": "SMA Crossover",
    "price_above_average": "Price Above 20-bar Average",
    "rsi": "RSI Oversold/Overbought",
    "bollinger": "Bollinger Bands",
    "hold": "Hold Cash",
}


def get_strategy(name: str) -> SignalFn:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise NotFoundError(
            f"unknown strategy {name!r}; available: {', '.join(STRATEGIES)}",
            field="strategy",
        ) from None


__all__ = [
    "BUY",
    "SELL",
    "HOLD",
    "SIGNALS",
    "SignalFn",
    "hold_only",
    "sma_crossover",
    "price_above_average",
    "rsi",
    "rsi_value",
    "bollinger",
    "STRATEGIES",
    "STRATEGY_LABELS",
    "get_strategy",
]
