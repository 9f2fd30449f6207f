from __future__ import annotations

import argparse
import contextvars
import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
import yaml
from loguru import logger

from quantengine.backtest.engine import BacktestSimulator, SeriesInput
from quantengine.backtest.signals import (
    STRATEGY_LABELS,
    SignalFn,
    get_strategy,
    price_above_average,
)
from quantengine.core.exceptions import InvalidParameterError, QuantEngineError
from quantengine.core.models import PriceSeries
from quantengine.logging_utils import setup_logging
from quantengine.settings import get_backtest_settings

DEFAULT_STRATEGIES = ("sma_crossover", "rsi", "bollinger")
DEFAULT_SMA_PERIODS = (10, 20, 30, 50)


def _load_config(path: Path) -> Dict[str, Any]:
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict):
        raise InvalidParameterError("sweep config must be a mapping", field="config")
    return data


def load_price_csv(path: Path, symbol: Optional[str] = None) -> PriceSeries:
    """Read a ``timestamp,price[,volume]`` CSV (``close`` is accepted for price)."""
    df = pd.read_csv(path)
    cols = {c.lower().strip(): c for c in df.columns}
    ts_col = cols.get("timestamp") or cols.get("date") or cols.get("time")
    px_col = cols.get("price") or cols.get("close")
    if ts_col is None or px_col is None:
        raise InvalidParameterError(
            f"{path} needs timestamp and price columns, found {list(df.columns)}",
            field="prices",
        )
    vol_col = cols.get("volume")
    frame = pd.DataFrame(
        {
            "timestamp": pd.to_datetime(df[ts_col], utc=True),
            "price": df[px_col].astype(float),
        }
    )
    if vol_col is not None:
        frame["volume"] = df[vol_col].astype(float)
    frame = frame.sort_values("timestamp")
    records = [
        {
            "timestamp": row.timestamp.to_pydatetime(),
            "price": row.price,
            "volume": getattr(row, "volume", None),
        }
        for row in frame.itertuples(index=False)
    ]
    return PriceSeries.from_raw(symbol or path.stem, records)


def _run_jobs(
    simulator: BacktestSimulator,
    series: PriceSeries,
    jobs: Sequence[Tuple[str, SignalFn, Dict[str, Any]]],
    *,
    initial_capital: Optional[float],
    max_workers: int,
) -> List[Dict[str, Any]]:
    def execute(idx: int, name: str, fn: SignalFn, params: Dict[str, Any]):
        report = simulator.run(series, fn, initial_capital=initial_capital)
        payload = {
            "job_id": idx,
            "strategy": name,
            "label": STRATEGY_LABELS.get(name, name),
            "params": params,
            "final_equity": report.final_equity,
            "trades": len(report.trades),
            **asdict(report.metrics),
        }
        logger.info(
            "[sweep] job={} strategy={} params={} ret={:.4f} sharpe={:.3f}",
            idx,
            name,
            params,
            report.metrics.total_return,
            report.metrics.sharpe_ratio,
        )
        return payload

    results: List[Dict[str, Any]] = []
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        future_map = {
            executor.submit(
                contextvars.copy_context().run, execute, idx, name, fn, params
            ): (idx, name)
            for idx, (name, fn, params) in enumerate(jobs, start=1)
        }
        for future in as_completed(future_map):
            job_idx, name = future_map[future]
            try:
                results.append(future.result())
            except QuantEngineError as exc:
                logger.error("[sweep] job={} strategy={} failed: {}", job_idx, name, exc)
    results.sort(key=lambda r: (-r["total_return"], r["job_id"]))
    return results


def compare_strategies(
    series: SeriesInput,
    strategies: Optional[Iterable[str]] = None,
    *,
    days: Optional[float] = None,
    initial_capital: Optional[float] = None,
    max_workers: Optional[int] = None,
    series_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Backtest several named strategies on one series, best total return first."""
    names = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)
    if not names:
        raise InvalidParameterError(
            "at least one strategy is required", field="strategies"
        )
    jobs = [(name, get_strategy(name), {}) for name in names]
    simulator = BacktestSimulator()
    parsed = simulator.prepare(series, series_id=series_id, days=days)
    workers = max_workers or get_backtest_settings().sweep_workers
    logger.info("[sweep] comparing {} strategies on {}", len(jobs), parsed.symbol)
    return _run_jobs(
        simulator, parsed, jobs, initial_capital=initial_capital, max_workers=workers
    )


def optimize_sma_period(
    series: SeriesInput,
    periods: Sequence[int] = DEFAULT_SMA_PERIODS,
    *,
    days: Optional[float] = None,
    initial_capital: Optional[float] = None,
    max_workers: Optional[int] = None,
    series_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Backtest the price-above-average signal for each period.

    Every period trades the same bars: the window is widened to the longest
    period so no candidate is starved of history.
    """
    if not periods:
        raise InvalidParameterError("at least one period is required", field="periods")
    if any(int(p) < 1 for p in periods):
        raise InvalidParameterError("periods must be positive", field="periods")
    settings = get_backtest_settings()
    simulator = BacktestSimulator(window=max(settings.window, max(int(p) for p in periods)))
    parsed = simulator.prepare(series, series_id=series_id, days=days)
    jobs = [
        (f"sma_{int(p)}", price_above_average(int(p)), {"period": int(p)})
        for p in periods
    ]
    workers = max_workers or settings.sweep_workers
    logger.info("[sweep] optimizing SMA period over {} on {}", list(periods), parsed.symbol)
    return _run_jobs(
        simulator, parsed, jobs, initial_capital=initial_capital, max_workers=workers
    )


def run_sweep(config_path: Path) -> Dict[str, Any]:
    """
    Run the comparisons described by a YAML file::

        symbol: BTC
        prices: data/btc.csv
        days: 90
        initial_capital: 10000
        strategies: [sma_crossover, rsi, bollinger]
        sma_periods: [10, 20, 30, 50]
        max_workers: 4
        output_dir: artifacts/sweeps/btc

    Relative ``prices`` and ``output_dir`` paths resolve against the config file.
    """
    with logger.contextualize(run=config_path.stem):
        return _run_sweep(config_path)


def _run_sweep(config_path: Path) -> Dict[str, Any]:
    cfg = _load_config(config_path)
    if "prices" not in cfg:
        raise InvalidParameterError("sweep config needs a prices file", field="prices")
    base = config_path.parent
    prices_path = Path(cfg["prices"])
    if not prices_path.is_absolute():
        prices_path = base / prices_path
    series = load_price_csv(prices_path, cfg.get("symbol"))

    common: Mapping[str, Any] = {
        "days": cfg.get("days"),
        "initial_capital": cfg.get("initial_capital"),
        "max_workers": cfg.get("max_workers"),
    }
    started = perf_counter()
    out: Dict[str, Any] = {"symbol": series.symbol, "bars": len(series)}
    if cfg.get("strategies", DEFAULT_STRATEGIES):
        out["strategies"] = compare_strategies(
            series, cfg.get("strategies", DEFAULT_STRATEGIES), **common
        )
    if cfg.get("sma_periods"):
        out["sma_periods"] = optimize_sma_period(series, cfg["sma_periods"], **common)
    out["duration_ms"] = (perf_counter() - started) * 1000.0

    if cfg.get("output_dir"):
        out_dir = Path(cfg["output_dir"])
        if not out_dir.is_absolute():
            out_dir = base / out_dir
        out_dir.mkdir(parents=True, exist_ok=True)
        summary_path = out_dir / "summary.jsonl"
        with summary_path.open("w") as handle:
            for section in ("strategies", "sma_periods"):
                for record in out.get(section, []):
                    handle.write(
                        json.dumps({"section": section, **record}, default=str) + "\n"
                    )
        out["summary_path"] = str(summary_path)
    logger.info(
        "[sweep] completed {} in {:.1f} ms", series.symbol, out["duration_ms"]
    )
    return out


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Compare backtest strategies on a price file")
    parser.add_argument("--config", required=True, help="Path to YAML sweep definition")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level for stderr output (default: LOG_LEVEL or INFO)",
    )
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level)
    result = run_sweep(Path(args.config))
    print(json.dumps(result, default=str, indent=2))


if __name__ == "__main__":
    main()
