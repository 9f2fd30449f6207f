"""Monte Carlo projection of portfolio value under a geometric random walk.

Each path compounds ``1 + drift + vol * Z`` once per day, with
``drift = mu / days_per_year`` and ``vol = sigma / sqrt(days_per_year)``.
Paths are split into fixed-size batches; every batch draws from its own
spawned random source, so the merged output depends only on the seed and
never on how many workers ran the batches.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from loguru import logger

from quantengine.core.exceptions import InvalidParameterError
from quantengine.core.models import Portfolio
from quantengine.risk.metrics import HistoriesInput, PortfolioInput, RiskMetricsEngine
from quantengine.settings import SimulationSettings, get_simulation_settings
from quantengine.simulation.random_source import NumpyRandomSource, RandomSource

PERCENTILES: Tuple[Tuple[str, float], ...] = (
    ("p5", 0.05),
    ("p25", 0.25),
    ("median", 0.50),
    ("p75", 0.75),
    ("p95", 0.95),
)


@dataclass
class SimulationResult:
    simulations: int
    horizon_days: int
    initial_value: float
    annual_return: float
    annual_volatility: float
    percentiles: Dict[str, float]
    expected_value: float
    std: float
    expected_return: float
    probability_of_profit: float
    probability_of_loss: float
    var: float
    cvar: float
    seed: Optional[int] = None
    return_source: Optional[str] = None
    volatility_source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class _Batch:
    index: int
    size: int
    source: RandomSource


def _batch_sizes(total: int, batch_size: int) -> List[int]:
    full, rest = divmod(total, batch_size)
    sizes = [batch_size] * full
    if rest:
        sizes.append(rest)
    return sizes


def summarize_finals(finals: np.ndarray) -> Dict[str, float]:
    """Percentiles at sorted index ``floor(N * q)`` plus min/max."""
    ordered = np.sort(finals)
    n = ordered.size
    out = {"min": float(ordered[0])}
    for name, q in PERCENTILES:
        out[name] = float(ordered[min(n - 1, int(math.floor(n * q)))])
    out["max"] = float(ordered[-1])
    return out


class MonteCarloSimulator:
    def __init__(
        self,
        settings: Optional[SimulationSettings] = None,
        *,
        seed: Optional[int] = None,
        random_source: Optional[RandomSource] = None,
        max_workers: Optional[int] = None,
        batch_size: Optional[int] = None,
        risk_engine: Optional[RiskMetricsEngine] = None,
    ) -> None:
        self.settings = settings or get_simulation_settings()
        self.seed = self.settings.seed if seed is None else seed
        self.random_source = random_source
        self.max_workers = int(
            self.settings.max_workers if max_workers is None else max_workers
        )
        self.batch_size = int(
            self.settings.batch_size if batch_size is None else batch_size
        )
        if self.max_workers < 1:
            raise InvalidParameterError(
                "max_workers must be positive", field="max_workers"
            )
        if self.batch_size < 1:
            raise InvalidParameterError(
                "batch_size must be positive", field="batch_size"
            )
        self.risk_engine = risk_engine

    def _source(self) -> RandomSource:
        # A fresh root per call keeps repeated runs identical.
        if self.random_source is not None:
            return self.random_source.fresh()
        return NumpyRandomSource(self.seed)

    @staticmethod
    def _run_batch(
        batch: _Batch, initial_value: float, drift: float, vol: float, horizon: int
    ) -> np.ndarray:
        z = batch.source.standard_normal((batch.size, horizon))
        growth = np.prod(1.0 + drift + vol * z, axis=1)
        return initial_value * growth

    def simulate(
        self,
        initial_value: float,
        expected_return: float,
        volatility: float,
        horizon_days: Optional[int] = None,
        simulations: Optional[int] = None,
    ) -> SimulationResult:
        """
        Project ``initial_value`` over ``horizon_days`` across ``simulations`` paths.

        ``expected_return`` and ``volatility`` are annual fractions.

        Raises:
            InvalidParameterError: fewer than the minimum simulation count,
                non-positive horizon or initial value, or negative volatility.
        """
        horizon = int(self.settings.horizon_days if horizon_days is None else horizon_days)
        n = int(self.settings.simulations if simulations is None else simulations)
        if n < self.settings.min_simulations:
            raise InvalidParameterError(
                f"need at least {self.settings.min_simulations} simulations, got {n}",
                field="simulations",
            )
        if horizon <= 0:
            raise InvalidParameterError(
                "horizon must be at least one day", field="horizon_days"
            )
        if not initial_value > 0:
            raise InvalidParameterError(
                "initial value must be positive", field="initial_value"
            )
        if volatility < 0:
            raise InvalidParameterError(
                "volatility must be non-negative", field="volatility"
            )

        days_per_year = self.settings.days_per_year
        drift = float(expected_return) / days_per_year
        vol = float(volatility) / math.sqrt(days_per_year)

        root = self._source()
        sizes = _batch_sizes(n, self.batch_size)
        children = root.spawn(len(sizes))
        batches = [
            _Batch(index=i, size=size, source=child)
            for i, (size, child) in enumerate(zip(sizes, children))
        ]

        def run(batch: _Batch) -> np.ndarray:
            return self._run_batch(batch, float(initial_value), drift, vol, horizon)

        workers = min(self.max_workers, len(batches))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                chunks = list(executor.map(run, batches))
        else:
            chunks = [run(batch) for batch in batches]
        finals = np.concatenate(chunks)

        result = self._reduce(
            finals,
            initial_value=float(initial_value),
            horizon=horizon,
            expected_return=float(expected_return),
            volatility=float(volatility),
            seed=getattr(root, "seed", None),
        )
        logger.info(
            "[mc] paths={} batches={} workers={} horizon={}d median={:.2f} pop={:.3f}",
            n,
            len(batches),
            workers,
            horizon,
            result.percentiles["median"],
            result.probability_of_profit,
        )
        return result

    @staticmethod
    def _reduce(
        finals: np.ndarray,
        *,
        initial_value: float,
        horizon: int,
        expected_return: float,
        volatility: float,
        seed: Optional[int],
    ) -> SimulationResult:
        n = int(finals.size)
        pct = summarize_finals(finals)
        mean = float(finals.mean())
        ordered = np.sort(finals)
        tail = ordered[: max(1, int(math.floor(n * 0.05)))]
        return SimulationResult(
            simulations=n,
            horizon_days=horizon,
            initial_value=initial_value,
            annual_return=expected_return,
            annual_volatility=volatility,
            percentiles=pct,
            expected_value=mean,
            std=float(finals.std(ddof=0)),
            expected_return=mean / initial_value - 1.0,
            probability_of_profit=float(np.count_nonzero(finals > initial_value)) / n,
            probability_of_loss=float(np.count_nonzero(finals < initial_value)) / n,
            var=max(0.0, initial_value - pct["p5"]),
            cvar=max(0.0, initial_value - float(tail.mean())),
            seed=seed,
        )

    def simulate_portfolio(
        self,
        portfolio: PortfolioInput,
        histories: HistoriesInput = None,
        *,
        horizon_days: Optional[int] = None,
        simulations: Optional[int] = None,
    ) -> SimulationResult:
        """Simulate a portfolio with return and volatility taken from its history."""
        engine = self.risk_engine or RiskMetricsEngine()
        pf = portfolio if isinstance(portfolio, Portfolio) else Portfolio.from_raw(portfolio)
        breakdown = engine.portfolio_volatility(pf, histories)
        mu, return_source = engine.expected_return(pf, histories)
        result = self.simulate(
            pf.total_value,
            mu,
            breakdown.volatility,
            horizon_days=horizon_days,
            simulations=simulations,
        )
        result.return_source = return_source
        result.volatility_source = breakdown.source
        return result


__all__ = ["MonteCarloSimulator", "SimulationResult", "summarize_finals", "PERCENTILES"]
