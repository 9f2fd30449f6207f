from __future__ import annotations

from datetime import datetime, timezone

import numpy as np
import pandas as pd
import pytest

from quantengine.backtest import metrics
from quantengine.backtest.model import TradeRecord
from quantengine.backtest.signals import BUY, SELL

TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _trade(kind, price, qty=1.0, idx=0):
    return TradeRecord(kind, price, qty, bar_index=idx, timestamp=TS)


def test_equity_stats_flat_equity_has_zero_vol_and_drawdown():
    result = metrics.equity_stats([100.0] * 120)

    assert result.vol == pytest.approx(0.0)
    assert result.sharpe == 0.0
    assert result.max_drawdown == 0.0
    assert result.max_dd_len == 0


def test_equity_stats_monotonic_increase_has_positive_sharpe():
    rng = np.random.default_rng(1337)
    increments = np.abs(rng.normal(loc=0.4, scale=0.1, size=252))
    result = metrics.equity_stats(100.0 + np.cumsum(increments))

    assert result.sharpe > 0.0
    assert result.max_drawdown == 0.0


def test_equity_stats_accepts_pandas_series_and_measures_drawdown():
    curve = pd.Series([100.0, 120.0, 90.0, 95.0, 130.0])
    result = metrics.equity_stats(curve)
    assert result.max_drawdown == pytest.approx(0.25)
    assert result.max_dd_len == 2
    assert result.total_return == pytest.approx(0.30)


def test_short_curve_returns_zero_stats():
    assert metrics.equity_stats([100.0]).sharpe == 0.0


def test_trade_stats_pairs_buys_with_sells():
    trades = [
        _trade(BUY, 100.0),
        _trade(SELL, 110.0),
        _trade(BUY, 120.0),
        _trade(SELL, 90.0),
    ]
    result = metrics.trade_stats(trades)

    assert result.n_trades == 2
    assert result.winning == 1
    assert result.losing == 1
    assert result.win_rate == pytest.approx(0.5)
    assert result.gross_profit == pytest.approx(10.0)
    assert result.gross_loss == pytest.approx(30.0)
    assert result.profit_factor == pytest.approx(1.0 / 3.0)
    assert result.open_position is False


def test_trade_stats_without_losses_uses_sentinel():
    result = metrics.trade_stats([_trade(BUY, 10.0), _trade(SELL, 12.0)])
    assert result.profit_factor == metrics.PROFIT_FACTOR_SENTINEL


def test_trade_stats_open_position_has_no_round_trips():
    result = metrics.trade_stats([_trade(BUY, 10.0)])
    assert result.n_trades == 0
    assert result.win_rate == 0.0
    assert result.open_position is True


def test_profit_factor_edges():
    assert metrics.profit_factor(0.0, 0.0) == 0.0
    assert metrics.profit_factor(5.0, 0.0) == 100.0
    assert metrics.profit_factor(6.0, 3.0) == pytest.approx(2.0)


def test_summarize_compares_with_buy_and_hold():
    result = metrics.summarize(
        [1_000.0, 1_050.0, 1_100.0],
        [],
        initial_capital=1_000.0,
        start_price=50.0,
        end_price=60.0,
    )
    assert result.total_return == pytest.approx(0.10)
    assert result.buy_hold_return == pytest.approx(0.20)
    assert result.outperformance == pytest.approx(-0.10)


def test_summary_dict_and_drawdown_series():
    out = metrics.summary_dict([100.0, 80.0, 120.0], [_trade(BUY, 1.0)])
    assert set(out) == {"equity", "trades"}
    assert out["equity"]["max_drawdown"] == pytest.approx(0.2)

    dd = metrics.drawdown_series([100.0, 80.0, 120.0])
    assert dd.tolist() == pytest.approx([0.0, -0.2, 0.0])
    assert metrics.drawdown_series([]).empty


def test_calmar_is_annualized_return_over_drawdown():
    curve = [100.0, 120.0, 90.0, 95.0, 130.0]
    rets = [b / a - 1.0 for a, b in zip(curve, curve[1:])]
    mean = sum(rets) / len(rets)

    result = metrics.equity_stats(curve, periods_per_year=12)
    assert result.calmar == pytest.approx(((1.0 + mean) ** 12 - 1.0) / 0.25)
    assert metrics.equity_stats([100.0, 101.0, 102.0]).calmar == 0.0


def test_trade_stats_average_win_loss_and_streaks():
    round_trips = [
        (100.0, 110.0),
        (100.0, 120.0),
        (100.0, 105.0),
        (120.0, 90.0),
        (100.0, 95.0),
        (100.0, 100.0),
        (100.0, 101.0),
    ]
    trades = []
    for entry, exit_ in round_trips:
        trades += [_trade(BUY, entry), _trade(SELL, exit_)]
    result = metrics.trade_stats(trades)

    assert result.avg_win == pytest.approx((10 + 20 + 5 + 1) / 4)
    assert result.avg_loss == pytest.approx((-30 - 5) / 2)
    assert result.max_win_streak == 3
    assert result.max_loss_streak == 2


def test_summarize_carries_calmar_ratio():
    result = metrics.summarize(
        [1_000.0, 900.0, 1_100.0],
        [],
        initial_capital=1_000.0,
        start_price=50.0,
        end_price=60.0,
    )
    expected = metrics.equity_stats([1_000.0, 900.0, 1_100.0]).calmar
    assert result.calmar_ratio == pytest.approx(expected)
    assert result.calmar_ratio > 0.0
