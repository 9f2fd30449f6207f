from __future__ import annotations

from typing import Any, List, Optional, Sequence, Union

from loguru import logger

from quantengine.backtest import metrics
from quantengine.backtest.model import (
    COMPLETE,
    INITIALIZED,
    RUNNING,
    BacktestReport,
    TradeRecord,
)
from quantengine.backtest.signals import BUY, SELL, SIGNALS, SignalFn, sma_crossover
from quantengine.core.exceptions import InsufficientDataError, InvalidParameterError
from quantengine.core.models import PriceSeries
from quantengine.settings import BacktestSettings, get_backtest_settings

SeriesInput = Union[PriceSeries, Sequence[Any]]


class BacktestRun:
    """
    One all-or-nothing pass over a price series.

    State moves INITIALIZED -> RUNNING on the first step and RUNNING ->
    COMPLETE after the last bar. Bars ``window..n-1`` are traded; each
    decision sees only the ``window`` bars before the bar being traded.
    """

    def __init__(
        self,
        series: PriceSeries,
        signal_fn: SignalFn,
        *,
        initial_capital: float,
        window: int,
    ) -> None:
        self.series = series
        self.signal_fn = signal_fn
        self.initial_capital = float(initial_capital)
        self.window = int(window)
        self.cash = self.initial_capital
        self.quantity = 0.0
        self.trades: List[TradeRecord] = []
        self.equity_curve: List[float] = []
        self.state = INITIALIZED
        self._cursor = self.window

    @property
    def done(self) -> bool:
        return self.state == COMPLETE

    def _decide(self, index: int) -> str:
        window = self.series.bars[index - self.window : index]
        raw = self.signal_fn(window)
        signal = str(raw).upper()
        if signal not in SIGNALS:
            raise InvalidParameterError(
                f"signal function returned {raw!r}; expected one of {SIGNALS}",
                field="signal",
            )
        return signal

    def step(self) -> None:
        """Process one bar."""
        if self.state == COMPLETE:
            return
        self.state = RUNNING
        bars = self.series.bars
        i = self._cursor
        if i >= len(bars):
            self.state = COMPLETE
            return

        bar = bars[i]
        price = bar.price
        signal = self._decide(i)
        if signal == BUY and self.cash > 0:
            bought = self.cash / price
            self.quantity += bought
            self.cash = 0.0
            self.trades.append(
                TradeRecord(BUY, price, bought, bar_index=i, timestamp=bar.timestamp)
            )
        elif signal == SELL and self.quantity > 0:
            sold = self.quantity
            self.cash += sold * price
            self.quantity = 0.0
            self.trades.append(
                TradeRecord(SELL, price, sold, bar_index=i, timestamp=bar.timestamp)
            )
        self.equity_curve.append(self.cash + self.quantity * price)

        self._cursor += 1
        if self._cursor >= len(bars):
            self.state = COMPLETE

    def run_to_completion(self) -> None:
        while self.state != COMPLETE:
            self.step()


class BacktestSimulator:
    def __init__(
        self,
        settings: Optional[BacktestSettings] = None,
        *,
        window: Optional[int] = None,
        min_bars: Optional[int] = None,
    ) -> None:
        self.settings = settings or get_backtest_settings()
        self.window = int(self.settings.window if window is None else window)
        self.min_bars = int(self.settings.min_bars if min_bars is None else min_bars)
        if self.window < 1:
            raise InvalidParameterError("window must be positive", field="window")
        if self.min_bars < 1:
            raise InvalidParameterError("min_bars must be positive", field="min_bars")

    def prepare(
        self,
        series: SeriesInput,
        *,
        series_id: Optional[str] = None,
        days: Optional[float] = None,
    ) -> PriceSeries:
        """Parse, trim to ``days`` and check the minimum length, before any trading."""
        parsed = PriceSeries.from_raw(series_id or "SERIES", series)
        parsed = parsed.tail(self.settings.days if days is None else days)
        required = max(self.min_bars, self.window)
        if len(parsed) < required:
            raise InsufficientDataError(
                f"backtest needs at least {required} bars, got {len(parsed)}",
                field="price_history",
            )
        return parsed

    def run(
        self,
        series: SeriesInput,
        signal_fn: Optional[SignalFn] = None,
        *,
        initial_capital: Optional[float] = None,
        days: Optional[float] = None,
        series_id: Optional[str] = None,
    ) -> BacktestReport:
        """
        Replay ``series`` bar by bar with ``signal_fn`` (default: SMA crossover).

        Only bars within ``days`` of the last bar are replayed; ``None`` uses
        ``BacktestSettings.days``.

        Raises:
            InsufficientDataError: fewer bars than ``max(min_bars, window)``.
            InvalidParameterError: non-positive capital, bad ``days`` or a
                signal outside BUY/SELL/HOLD.
        """
        capital = float(
            self.settings.initial_capital if initial_capital is None else initial_capital
        )
        if not capital > 0:
            raise InvalidParameterError(
                "initial capital must be positive", field="initial_capital"
            )
        signal_fn = signal_fn or sma_crossover
        days = self.settings.days if days is None else days
        parsed = self.prepare(series, series_id=series_id, days=days)

        run = BacktestRun(parsed, signal_fn, initial_capital=capital, window=self.window)
        run.run_to_completion()

        prices = parsed.prices
        start = min(self.window, len(prices) - 1)
        summary = metrics.summarize(
            run.equity_curve,
            run.trades,
            initial_capital=capital,
            start_price=float(prices[start]) if run.equity_curve else float(prices[-1]),
            end_price=float(prices[-1]),
        )
        final_equity = run.equity_curve[-1] if run.equity_curve else capital
        strategy = getattr(signal_fn, "__name__", None)
        logger.info(
            "[backtest] {} strategy={} bars={} trades={} final={:.2f} ret={:.4f} bh={:.4f}",
            parsed.symbol,
            strategy,
            len(run.equity_curve),
            len(run.trades),
            final_equity,
            summary.total_return,
            summary.buy_hold_return,
        )
        return BacktestReport(
            series_id=parsed.symbol,
            initial_capital=capital,
            final_equity=final_equity,
            trades=list(run.trades),
            equity_curve=list(run.equity_curve),
            metrics=summary,
            state=run.state,
            strategy=strategy,
            days=days,
            timestamps=[bar.timestamp for bar in parsed.bars[self.window :]],
        )


def run_backtest(
    series: SeriesInput,
    signal_fn: Optional[SignalFn] = None,
    *,
    initial_capital: Optional[float] = None,
    days: Optional[float] = None,
    series_id: Optional[str] = None,
) -> BacktestReport:
    return BacktestSimulator().run(
        series,
        signal_fn,
        initial_capital=initial_capital,
        days=days,
        series_id=series_id,
    )


__all__ = ["BacktestSimulator", "BacktestRun", "run_backtest"]
