# quantengine/backtest/metrics.py
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from loguru import logger

from quantengine.analytics import stats
from quantengine.backtest.model import BacktestMetrics, TradeRecord
from quantengine.backtest.signals import BUY, SELL

TRADING_DAYS = 252
PROFIT_FACTOR_SENTINEL = 100.0

CurveLike = Union[Sequence[float], np.ndarray, pd.Series]


# -------- Data classes --------
@dataclass
class EquityMetrics:
    periods: int
    total_return: float
    vol: float
    sharpe: float
    sortino: float
    max_drawdown: float
    max_dd_len: int
    calmar: float = 0.0


@dataclass
class TradeMetrics:
    n_trades: int
    n_buys: int
    n_sells: int
    winning: int
    losing: int
    win_rate: float
    avg_pnl: float
    best: float
    worst: float
    gross_profit: float
    gross_loss: float
    profit_factor: float
    open_position: bool
    avg_win: float = 0.0
    avg_loss: float = 0.0
    max_win_streak: int = 0
    max_loss_streak: int = 0


# -------- Internals --------
def _as_curve(curve: CurveLike) -> pd.Series:
    if isinstance(curve, pd.Series):
        return curve.astype(float).dropna()
    return pd.Series(np.asarray(curve, dtype=float)).dropna()


def _drawdown_curve(curve: pd.Series) -> Tuple[pd.Series, float, int]:
    s = curve.astype(float).dropna()
    if s.empty:
        return pd.Series(dtype=float), 0.0, 0
    cummax = s.cummax()
    dd = s / cummax - 1.0
    max_dd = float(-dd.min()) if len(s) > 1 else 0.0

    # Longest drawdown duration (consecutive dd < 0)
    mask = (dd < 0).to_numpy()
    max_run = run = 0
    for m in mask:
        if m:
            run += 1
            if run > max_run:
                max_run = run
        else:
            run = 0
    return dd, max_dd, int(max_run)


def _longest_run(flags: Sequence[bool]) -> int:
    best = run = 0
    for flag in flags:
        run = run + 1 if flag else 0
        best = max(best, run)
    return best


def profit_factor(gross_profit: float, gross_loss: float) -> float:
    """Gross profit over gross loss; 100 when nothing was lost but something was won."""
    if gross_loss == 0:
        return PROFIT_FACTOR_SENTINEL if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


# -------- Public API --------
def equity_stats(
    equity: CurveLike,
    *,
    periods_per_year: int = TRADING_DAYS,
) -> EquityMetrics:
    """
    Compute equity metrics from an equity curve (one sample per bar).

    Sharpe is ``mean / std * sqrt(periods_per_year)`` over bar-to-bar returns
    and is 0.0 for a flat curve rather than undefined. Calmar is the
    annualized mean return over max drawdown, 0.0 without a drawdown.
    """
    curve = _as_curve(equity)
    if len(curve) < 2:
        logger.debug("[metrics] short series (n={}); returning zero stats", len(curve))
        return EquityMetrics(len(curve), 0.0, 0.0, 0.0, 0.0, 0.0, 0)

    rets = stats.returns(curve.to_numpy())
    mean = stats.mean(rets)
    std = stats.std(rets)
    sharpe = mean / std * math.sqrt(periods_per_year) if std > 0 else 0.0
    downs = stats.downside_deviation(rets)
    sortino = mean / downs * math.sqrt(periods_per_year) if downs > 0 else 0.0

    _, _, max_dd_len = _drawdown_curve(curve)
    max_dd = stats.max_drawdown(curve.to_numpy())
    total_ret = float(curve.iloc[-1] / curve.iloc[0] - 1.0)
    vol = stats.annualize_volatility(std, periods_per_year)
    annual = stats.annualize_return(mean, periods_per_year)
    calmar = annual / max_dd if max_dd > 0 else 0.0

    logger.debug(
        "[metrics] n={} tot={:.4f} vol={:.4f} sharpe={:.3f} sortino={:.3f} maxDD={:.4f} len={}",
        len(curve),
        total_ret,
        vol,
        sharpe,
        sortino,
        max_dd,
        max_dd_len,
    )
    return EquityMetrics(
        periods=len(curve),
        total_return=total_ret,
        vol=vol,
        sharpe=sharpe,
        sortino=sortino,
        max_drawdown=max_dd,
        max_dd_len=max_dd_len,
        calmar=calmar,
    )


def trade_stats(trades: List[TradeRecord]) -> TradeMetrics:
    """
    Pair each SELL with the BUY before it.

    A BUY with no later SELL is an open position and counts toward neither
    the win rate nor the profit factor.
    Streaks count consecutive round trips with positive or negative PnL; a
    break-even trip ends both.
    """
    n_buys = sum(1 for t in trades if t.type == BUY)
    n_sells = sum(1 for t in trades if t.type == SELL)

    pnls: List[float] = []
    winning = 0
    entry: Optional[TradeRecord] = None
    for trade in trades:
        if trade.type == BUY:
            entry = trade
        elif trade.type == SELL and entry is not None:
            pnls.append((trade.price - entry.price) * trade.quantity)
            if trade.price > entry.price:
                winning += 1
            entry = None

    open_position = entry is not None
    if not pnls:
        return TradeMetrics(
            0, n_buys, n_sells, 0, 0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, open_position
        )

    arr = np.array(pnls, dtype=float)
    wins, losses = arr[arr > 0], arr[arr < 0]
    gross_profit = float(wins.sum())
    gross_loss = float(-arr[arr <= 0].sum())
    n = len(pnls)
    return TradeMetrics(
        n_trades=n,
        n_buys=n_buys,
        n_sells=n_sells,
        winning=winning,
        losing=n - winning,
        win_rate=winning / n_sells if n_sells else 0.0,
        avg_pnl=float(arr.mean()),
        best=float(arr.max()),
        worst=float(arr.min()),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=profit_factor(gross_profit, gross_loss),
        open_position=open_position,
        avg_win=float(wins.mean()) if wins.size else 0.0,
        avg_loss=float(losses.mean()) if losses.size else 0.0,
        max_win_streak=_longest_run(arr > 0),
        max_loss_streak=_longest_run(arr < 0),
    )


def summarize(
    equity_curve: CurveLike,
    trades: List[TradeRecord],
    *,
    initial_capital: float,
    start_price: float,
    end_price: float,
    periods_per_year: int = TRADING_DAYS,
) -> BacktestMetrics:
    eqm = equity_stats(equity_curve, periods_per_year=periods_per_year)
    tm = trade_stats(trades)
    curve = _as_curve(equity_curve)
    final_equity = float(curve.iloc[-1]) if len(curve) else float(initial_capital)
    total_return = final_equity / float(initial_capital) - 1.0
    buy_hold = float(end_price) / float(start_price) - 1.0
    logger.debug("[metrics] summary built: equity & trades")
    return BacktestMetrics(
        total_return=total_return,
        buy_hold_return=buy_hold,
        outperformance=total_return - buy_hold,
        sharpe_ratio=eqm.sharpe,
        max_drawdown=eqm.max_drawdown,
        win_rate=tm.win_rate,
        profit_factor=tm.profit_factor,
        total_trades=tm.n_trades,
        winning_trades=tm.winning,
        losing_trades=tm.losing,
        open_position=tm.open_position,
        calmar_ratio=eqm.calmar,
    )


def summary_dict(
    equity_curve: CurveLike, trades: List[TradeRecord]
) -> Dict[str, Any]:
    """Detailed equity and trade statistics as plain dicts."""
    return {
        "equity": asdict(equity_stats(equity_curve)),
        "trades": asdict(trade_stats(trades)),
    }


def drawdown_series(equity: CurveLike) -> pd.Series:
    s = _as_curve(equity)
    if s.empty:
        return pd.Series(dtype=float)
    return s / s.cummax() - 1.0


__all__ = [
    "EquityMetrics",
    "TradeMetrics",
    "equity_stats",
    "trade_stats",
    "summarize",
    "summary_dict",
    "drawdown_series",
    "profit_factor",
    "TRADING_DAYS",
    "PROFIT_FACTOR_SENTINEL",
]
