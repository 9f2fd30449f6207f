from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest
from dotenv import load_dotenv

os.environ.setdefault("ENV", "test")

from quantengine.logging_utils import setup_test_logging  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def load_env():
    load_dotenv(override=False)


@pytest.fixture(scope="session", autouse=True)
def configure_logging(tmp_path_factory):
    setup_test_logging(tmp_path_factory.mktemp("logs"))
    yield


@pytest.fixture(autouse=True)
def _isolate_engine_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("QUANT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def daily_history():
    """Builds [[timestamp, price], ...] pairs one day apart."""

    def build(prices, start=datetime(2024, 1, 1, tzinfo=timezone.utc)):
        return [[start + timedelta(days=i), float(p)] for i, p in enumerate(prices)]

    return build


@pytest.fixture
def random_walk():
    def build(n=120, start=100.0, drift=0.001, vol=0.02, seed=7):
        rng = np.random.default_rng(seed)
        steps = 1.0 + drift + vol * rng.standard_normal(n - 1)
        return list(start * np.concatenate([[1.0], np.cumprod(steps)]))

    return build


@pytest.fixture
def crypto_holdings():
    return [
        {"symbol": "BTC", "amount": 0.5, "currentPrice": 60000.0, "entryPrice": 50000.0},
        {"symbol": "ETH", "amount": 5.0, "currentPrice": 3000.0, "entryPrice": 3500.0},
        {"symbol": "SOL", "amount": 100.0, "currentPrice": 150.0, "entryPrice": 100.0},
    ]
