from __future__ import annotations

import pytest

from quantengine.backtest.engine import BacktestRun, BacktestSimulator, run_backtest
from quantengine.backtest.model import COMPLETE, INITIALIZED, RUNNING
from quantengine.backtest.signals import BUY, SELL, hold_only, price_above_average
from quantengine.core.exceptions import InsufficientDataError, InvalidParameterError
from quantengine.core.models import PriceSeries


def _rising(n=40):
    return [100.0 + i for i in range(n)]


def _rise_then_fall():
    up = [100.0 + i for i in range(40)]
    down = [139.0 - 3.0 * (i + 1) for i in range(30)]
    return up + down


def test_rising_series_buys_once_and_tracks_buy_and_hold():
    report = run_backtest(_rising(), initial_capital=10_000)

    assert report.state == COMPLETE
    assert len(report.equity_curve) == 10
    assert [t.type for t in report.trades] == [BUY]
    buy = report.trades[0]
    assert buy.bar_index == 30
    assert buy.price == pytest.approx(130.0)
    assert buy.quantity == pytest.approx(10_000 / 130.0)
    assert report.final_equity == pytest.approx(10_000 * 139.0 / 130.0)
    assert report.metrics.total_return == pytest.approx(139.0 / 130.0 - 1.0)
    assert report.metrics.buy_hold_return == pytest.approx(139.0 / 130.0 - 1.0)
    assert report.metrics.outperformance == pytest.approx(0.0)
    assert report.metrics.open_position is True
    assert report.metrics.total_trades == 0
    assert report.metrics.max_drawdown == 0.0


def test_hold_only_keeps_cash_flat():
    report = run_backtest(_rising(60), hold_only, initial_capital=5_000)

    assert report.trades == []
    assert report.equity_curve == [5_000.0] * 30
    assert report.final_equity == 5_000.0
    assert report.metrics.total_return == 0.0
    assert report.metrics.sharpe_ratio == 0.0
    assert report.metrics.buy_hold_return == pytest.approx(159.0 / 130.0 - 1.0)
    assert report.strategy == "hold_only"


def test_sell_records_the_quantity_actually_sold():
    report = run_backtest(_rise_then_fall())

    types = [t.type for t in report.trades]
    assert types[:2] == [BUY, SELL]
    buy, sell = report.trades[0], report.trades[1]
    assert sell.quantity == pytest.approx(buy.quantity)
    assert report.metrics.total_trades >= 1
    assert 0.0 <= report.metrics.win_rate <= 1.0
    # flat after the exit until the next entry
    exit_pos = sell.bar_index - 30
    assert report.equity_curve[exit_pos] == pytest.approx(sell.notional)


def test_too_short_series_raises_before_trading():
    with pytest.raises(InsufficientDataError) as excinfo:
        run_backtest(_rising(29))
    assert excinfo.value.field == "price_history"


def test_series_equal_to_window_processes_no_bars():
    report = run_backtest(_rising(30), initial_capital=1_000)
    assert report.equity_curve == []
    assert report.final_equity == 1_000.0
    assert report.metrics.total_return == 0.0
    assert report.metrics.buy_hold_return == 0.0


def test_days_trims_to_trailing_window():
    sim = BacktestSimulator()
    report = sim.run(_rising(100), hold_only, days=40)
    assert len(report.equity_curve) == 11
    assert report.days == 40
    with pytest.raises(InsufficientDataError):
        sim.run(_rising(100), hold_only, days=20)


def test_non_positive_capital_is_rejected():
    with pytest.raises(InvalidParameterError) as excinfo:
        run_backtest(_rising(), initial_capital=0)
    assert excinfo.value.field == "initial_capital"


def test_unknown_signal_is_rejected_and_case_is_normalized():
    with pytest.raises(InvalidParameterError) as excinfo:
        run_backtest(_rising(), lambda window: "maybe")
    assert excinfo.value.field == "signal"

    report = run_backtest(_rising(), lambda window: "buy")
    assert [t.type for t in report.trades] == [BUY]


def test_signal_never_sees_the_traded_bar():
    seen = []

    def spy(window):
        seen.append(window[-1].price)
        return "HOLD"

    run_backtest(_rising(35), spy)
    assert seen == [129.0, 130.0, 131.0, 132.0, 133.0]


def test_run_steps_through_states():
    series = PriceSeries.from_raw("BTC", _rising(32))
    run = BacktestRun(series, hold_only, initial_capital=100.0, window=30)
    assert run.state == INITIALIZED
    run.step()
    assert run.state == RUNNING
    run.step()
    assert run.done
    run.step()
    assert len(run.equity_curve) == 2


def test_price_above_average_on_rising_series_buys_exactly_once():
    report = run_backtest(_rising(40), price_above_average(20))

    assert [t.type for t in report.trades] == [BUY]
    assert report.metrics.total_return == pytest.approx(report.metrics.buy_hold_return)


def test_default_lookback_comes_from_settings(monkeypatch):
    report = run_backtest(_rising(120), hold_only)
    assert report.days == 90
    assert len(report.equity_curve) == 91 - 30

    monkeypatch.setenv("QUANT_BT_DAYS", "45")
    report = BacktestSimulator().run(_rising(120), hold_only)
    assert report.days == 45
    assert len(report.equity_curve) == 46 - 30


@pytest.mark.parametrize(
    "kwargs,field", [({"window": 0}, "window"), ({"min_bars": 0}, "min_bars")]
)
def test_explicit_zero_sizes_are_rejected(kwargs, field):
    with pytest.raises(InvalidParameterError) as excinfo:
        BacktestSimulator(**kwargs)
    assert excinfo.value.field == field
