from __future__ import annotations

import json
from pathlib import Path

import pandas as pd
import pytest
import yaml

from quantengine.backtest import sweeps
from quantengine.core.exceptions import InvalidParameterError, NotFoundError
from quantengine.logging_utils import setup_test_logging


def test_compare_strategies_sorts_by_total_return(random_walk):
    prices = random_walk(n=120)
    results = sweeps.compare_strategies(
        prices, ["hold", "sma_crossover", "rsi"], max_workers=2, series_id="BTC"
    )

    assert len(results) == 3
    returns = [r["total_return"] for r in results]
    assert returns == sorted(returns, reverse=True)
    hold = next(r for r in results if r["strategy"] == "hold")
    assert hold["total_return"] == 0.0
    assert hold["label"] == "Hold Cash"


def test_compare_strategies_rejects_unknown_names(random_walk):
    with pytest.raises(NotFoundError):
        sweeps.compare_strategies(random_walk(n=60), ["sma_crossover", "unknown"])
    with pytest.raises(InvalidParameterError):
        sweeps.compare_strategies(random_walk(n=60), [])


def test_optimize_sma_period_uses_common_window(random_walk):
    results = sweeps.optimize_sma_period(random_walk(n=150), periods=(10, 50), max_workers=2)

    assert sorted(r["params"]["period"] for r in results) == [10, 50]
    assert {r["strategy"] for r in results} == {"sma_10", "sma_50"}


def test_optimize_sma_period_validates_periods(random_walk):
    with pytest.raises(InvalidParameterError):
        sweeps.optimize_sma_period(random_walk(n=60), periods=())
    with pytest.raises(InvalidParameterError):
        sweeps.optimize_sma_period(random_walk(n=60), periods=(0, 10))


def _write_prices(path: Path, prices):
    frame = pd.DataFrame(
        {
            "Date": pd.date_range("2024-01-01", periods=len(prices), freq="D"),
            "Close": prices,
        }
    )
    frame.to_csv(path, index=False)


def test_load_price_csv_accepts_close_column(tmp_path: Path, random_walk):
    csv_path = tmp_path / "eth.csv"
    _write_prices(csv_path, random_walk(n=40))
    series = sweeps.load_price_csv(csv_path)
    assert series.symbol == "ETH"
    assert len(series) == 40


def test_run_sweep_writes_summary(tmp_path: Path, random_walk):
    _write_prices(tmp_path / "btc.csv", random_walk(n=120))
    cfg = {
        "symbol": "BTC",
        "prices": "btc.csv",
        "initial_capital": 5_000,
        "strategies": ["sma_crossover", "bollinger"],
        "sma_periods": [10, 20, 30],
        "max_workers": 2,
        "output_dir": "out",
    }
    cfg_path = tmp_path / "sweep.yml"
    cfg_path.write_text(yaml.safe_dump(cfg))

    result = sweeps.run_sweep(cfg_path)

    assert result["symbol"] == "BTC"
    assert len(result["strategies"]) == 2
    assert len(result["sma_periods"]) == 3
    summary_path = Path(result["summary_path"])
    assert summary_path.parent == tmp_path / "out"
    lines = summary_path.read_text().strip().splitlines()
    saved = [json.loads(line) for line in lines]
    assert len(saved) == 5
    assert {rec["section"] for rec in saved} == {"strategies", "sma_periods"}


def test_run_sweep_requires_mapping_and_prices(tmp_path: Path):
    bad = tmp_path / "bad.yml"
    bad.write_text("- just\n- a list\n")
    with pytest.raises(InvalidParameterError):
        sweeps.run_sweep(bad)

    missing = tmp_path / "missing.yml"
    missing.write_text(yaml.safe_dump({"symbol": "BTC"}))
    with pytest.raises(InvalidParameterError) as excinfo:
        sweeps.run_sweep(missing)
    assert excinfo.value.field == "prices"


def test_main_prints_json_and_logs_to_stderr(tmp_path: Path, random_walk, capsys):
    _write_prices(tmp_path / "sol.csv", random_walk(n=60))
    cfg_path = tmp_path / "sweep.yml"
    cfg_path.write_text(yaml.safe_dump({"prices": "sol.csv", "strategies": ["hold"]}))

    try:
        sweeps.main(["--config", str(cfg_path), "--log-level", "info"])
        captured = capsys.readouterr()
    finally:
        setup_test_logging()

    out = json.loads(captured.out)
    assert out["symbol"] == "SOL"
    assert out["strategies"][0]["strategy"] == "hold"
    assert "[sweep] completed SOL" in captured.err
    assert "run=sweep" in captured.err
