from __future__ import annotations

import pytest

from quantengine.core.exceptions import InvalidParameterError, NotFoundError
from quantengine.core.models import Holding
from quantengine.risk.stress import (
    DEFAULT_SCENARIO_IDS,
    SCENARIO_CATALOG,
    StressScenario,
    StressTester,
    list_scenarios,
)


@pytest.fixture
def tester():
    return StressTester()


def test_catalog_lists_four_scenarios():
    ids = [s.id for s in list_scenarios()]
    assert ids == ["crash_20", "crash_50", "volatility_spike", "melt_up_25"]
    assert SCENARIO_CATALOG["crash_50"].severity == "critical"


def test_crash_20_on_single_btc_holding(tester):
    holdings = [
        {"symbol": "BTC", "amount": 1, "currentPrice": 50_000, "entryPrice": 40_000}
    ]
    report = tester.run(holdings, ["crash_20"])

    result = report.results[0]
    assert result.portfolio_value == pytest.approx(40_000.0)
    assert result.portfolio_change == pytest.approx(-10_000.0)
    assert result.portfolio_change_pct == pytest.approx(-20.0)
    impact = result.impacted_holdings[0]
    assert impact.stressed_price == pytest.approx(40_000.0)
    assert impact.change == pytest.approx(-10_000.0)
    assert report.worst_case is result
    assert report.best_case is result


def test_default_scenarios_pick_worst_and_best(tester, crypto_holdings):
    report = tester.run(crypto_holdings)
    assert report.scenario_ids == list(DEFAULT_SCENARIO_IDS)
    assert report.worst_case.scenario_id == "crash_50"
    assert report.best_case.scenario_id == "volatility_spike"


def test_identity_scenario_leaves_value_unchanged(tester, crypto_holdings):
    flat = StressScenario(id="flat", price_change_pct=0.0)
    report = tester.run_scenarios(crypto_holdings, [flat])
    assert report.results[0].portfolio_change == pytest.approx(0.0)
    assert all(i.change == 0.0 for i in report.results[0].impacted_holdings)
    assert report.results[0].portfolio_value == pytest.approx(60_000.0)


def test_ties_keep_first_scenario(tester, crypto_holdings):
    a = StressScenario(id="a", price_change_pct=-10.0)
    b = StressScenario(id="b", price_change_pct=-10.0)
    report = tester.run_scenarios(crypto_holdings, [a, b])
    assert report.worst_case.scenario_id == "a"
    assert report.best_case.scenario_id == "a"


def test_holdings_are_not_mutated(tester):
    holding = Holding(symbol="ETH", quantity=2, current_price=3000, entry_price=2500)
    tester.run([holding], ["crash_50"])
    assert holding.current_price == 3000


def test_stressed_volatility_scales_base(tester, crypto_holdings):
    report = tester.run(crypto_holdings, ["crash_20"], base_volatility=0.5)
    assert report.results[0].stressed_volatility == pytest.approx(0.7)


def test_unknown_scenario_is_not_found(tester, crypto_holdings):
    with pytest.raises(NotFoundError) as excinfo:
        tester.run(crypto_holdings, ["crash_20", "alien_invasion"])
    assert excinfo.value.kind == "NotFound"


def test_empty_scenario_list_is_invalid(tester, crypto_holdings):
    with pytest.raises(InvalidParameterError):
        tester.run(crypto_holdings, [])


def test_scenario_cannot_wipe_out_prices():
    with pytest.raises(InvalidParameterError):
        StressScenario(id="zero", price_change_pct=-100.0)
