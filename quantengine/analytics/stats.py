"""Pure statistical primitives over price and portfolio-value sequences.

Every function accepts any float sequence (lists, tuples, numpy arrays) and
never mutates its input. Degenerate inputs return a 0.0 sentinel instead of
raising, so risk and backtest callers stay resilient to short histories.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from quantengine.core.exceptions import InsufficientDataError, InvalidParameterError

ArrayLike = Union[Sequence[float], np.ndarray]

MIN_HISTORICAL_POINTS = 30


def _as_array(values: ArrayLike) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1:
        arr = arr.reshape(-1)
    return arr


def mean(values: ArrayLike) -> float:
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    return float(arr.mean())


def std(values: ArrayLike) -> float:
    """Population standard deviation; 0.0 for fewer than two points."""
    arr = _as_array(values)
    if arr.size < 2:
        return 0.0
    return float(arr.std(ddof=0))


def returns(prices: ArrayLike) -> np.ndarray:
    """Simple period returns, length ``len(prices) - 1``."""
    arr = _as_array(prices)
    if arr.size < 2:
        return np.empty(0, dtype=float)
    prev = arr[:-1]
    out = np.zeros(arr.size - 1, dtype=float)
    np.divide(arr[1:] - prev, prev, out=out, where=prev != 0)
    return out


def max_drawdown(values: ArrayLike) -> float:
    """
    Largest peak-to-trough decline as a positive fraction of the running peak.

    A strictly rising (or flat) series yields 0.0.
    """
    arr = _as_array(values)
    if arr.size < 2:
        return 0.0
    peaks = np.maximum.accumulate(arr)
    drawdowns = np.zeros_like(arr)
    np.divide(peaks - arr, peaks, out=drawdowns, where=peaks > 0)
    return float(drawdowns.max())


def correlation(a: ArrayLike, b: ArrayLike) -> Optional[float]:
    """
    Pearson correlation aligned on the trailing ``min(len(a), len(b))`` points.

    Returns ``None`` when the correlation is undefined (fewer than two aligned
    points, or zero variance on either side).
    """
    x = _as_array(a)
    y = _as_array(b)
    n = min(x.size, y.size)
    if n < 2:
        return None
    x = x[-n:]
    y = y[-n:]
    dx = x - x.mean()
    dy = y - y.mean()
    denom = math.sqrt(float((dx * dx).sum()) * float((dy * dy).sum()))
    if denom == 0.0:
        return None
    rho = float((dx * dy).sum()) / denom
    return max(-1.0, min(1.0, rho))


def downside_deviation(period_returns: ArrayLike) -> float:
    """Population standard deviation over the negative returns only."""
    arr = _as_array(period_returns)
    neg = arr[arr < 0]
    if neg.size < 2:
        return 0.0
    return float(neg.std(ddof=0))


def historical_var_cvar(
    period_returns: ArrayLike, confidence_level: float = 0.95
) -> Tuple[float, float]:
    """
    Historical VaR and CVaR as positive loss fractions of one period.

    The VaR is the sorted return at index ``floor((1 - c) * n)``; the CVaR is
    the mean of the returns strictly below that index (at least one point).
    """
    if not 0.0 < confidence_level < 1.0:
        raise InvalidParameterError(
            "confidence level must lie in (0, 1)", field="confidence_level"
        )
    arr = _as_array(period_returns)
    if arr.size < MIN_HISTORICAL_POINTS:
        raise InsufficientDataError(
            f"need at least {MIN_HISTORICAL_POINTS} returns for historical VaR, got {arr.size}",
            field="returns",
        )
    ordered = np.sort(arr)
    index = int(math.floor((1.0 - confidence_level) * ordered.size))
    var = -float(ordered[index])
    tail = ordered[: max(index, 1)]
    cvar = -float(tail.mean())
    return var, cvar


def annualize_return(mean_period_return: float, periods: int) -> float:
    """Compound a mean period return over ``periods`` periods."""
    return float((1.0 + mean_period_return) ** periods - 1.0)


def annualize_volatility(period_std: float, periods: int) -> float:
    return float(period_std * math.sqrt(periods))


__all__ = [
    "mean",
    "std",
    "returns",
    "max_drawdown",
    "correlation",
    "downside_deviation",
    "historical_var_cvar",
    "annualize_return",
    "annualize_volatility",
    "MIN_HISTORICAL_POINTS",
]
