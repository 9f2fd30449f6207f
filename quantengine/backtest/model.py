from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

INITIALIZED = "INITIALIZED"
RUNNING = "RUNNING"
COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class TradeRecord:
    """
    A single simulated fill.

    Attributes:
        type (str): ``BUY`` or ``SELL``.
        price (float): The bar price the fill executed at.
        quantity (float): Units bought, or units actually sold.
        bar_index (int): Index of the bar in the input series.
        timestamp (datetime): Timestamp of that bar.
    """

    type: str
    price: float
    quantity: float
    bar_index: int
    timestamp: datetime

    @property
    def notional(self) -> float:
        return self.price * self.quantity


@dataclass
class BacktestMetrics:
    """
    Performance summary of a completed run.

    Attributes:
        total_return (float): Final equity over initial capital, minus one.
        buy_hold_return (float): Last price over the first traded bar's price, minus one.
        outperformance (float): ``total_return - buy_hold_return``.
        sharpe_ratio (float): Annualized mean/std of equity-curve returns; 0 when flat.
        max_drawdown (float): Largest peak-to-trough equity decline, as a positive fraction.
        win_rate (float): Fraction of SELLs priced above the preceding BUY.
        profit_factor (float): Gross profit over gross loss of closed round trips.
        total_trades (int): Completed round trips (SELLs following a BUY).
        winning_trades (int): Round trips closed above their entry.
        losing_trades (int): Round trips closed at or below their entry.
        open_position (bool): Whether the run ended holding units.
        calmar_ratio (float): Annualized return over max drawdown; 0 without a drawdown.
    """

    total_return: float
    buy_hold_return: float
    outperformance: float
    sharpe_ratio: float
    max_drawdown: float
    win_rate: float
    profit_factor: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    open_position: bool = False
    calmar_ratio: float = 0.0


@dataclass
class BacktestReport:
    """
    Output of one backtest run.

    Attributes:
        series_id (str): Identifier of the replayed series (usually the symbol).
        initial_capital (float): Starting cash.
        final_equity (float): Cash plus holdings marked at the last price.
        trades (List[TradeRecord]): Fills in execution order.
        equity_curve (List[float]): One equity sample per processed bar.
        metrics (BacktestMetrics): Derived performance statistics.
        state (str): Simulator state when the report was produced.
        strategy (Optional[str]): Name of the signal function, when known.
        days (Optional[float]): Lookback in days the series was trimmed to.
        timestamps (List[datetime]): Bar timestamps aligned with ``equity_curve``.
    """

    series_id: str
    initial_capital: float
    final_equity: float
    trades: List[TradeRecord]
    equity_curve: List[float]
    metrics: BacktestMetrics
    state: str = COMPLETE
    strategy: Optional[str] = None
    days: Optional[float] = None
    timestamps: List[datetime] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
