from __future__ import annotations

from quantengine.core.envelope import Envelope, enveloped, fail, ok
from quantengine.core.exceptions import (
    DivisionGuardError,
    InsufficientDataError,
    NotFoundError,
)
from quantengine.risk.stress import StressTester


def test_ok_unwraps_reports_with_to_dict():
    report = StressTester().run([{"symbol": "BTC", "amount": 1, "currentPrice": 100}], ["crash_20"])
    env = ok(report).to_dict()
    assert env["success"] is True
    assert env["data"]["worst_case"]["scenario_id"] == "crash_20"


def test_fail_carries_kind_and_field():
    env = fail(InsufficientDataError("need more bars", field="price_history")).to_dict()
    assert env == {
        "success": False,
        "error": "need more bars",
        "kind": "InsufficientData",
        "field": "price_history",
    }


def test_enveloped_converts_engine_errors_only():
    @enveloped
    def scenario(name):
        if name == "missing":
            raise NotFoundError("no such scenario", field="scenario_ids")
        return {"name": name}

    assert scenario("crash_20") == {"success": True, "data": {"name": "crash_20"}}
    failed = scenario("missing")
    assert failed["success"] is False
    assert failed["kind"] == "NotFound"
    assert scenario.__name__ == "scenario"


def test_exception_str_and_dict():
    exc = DivisionGuardError("volatility is zero", field="volatility")
    assert str(exc) == "volatility is zero (field=volatility)"
    assert exc.as_dict()["kind"] == "DivisionGuard"
    assert Envelope(success=True, data=[1, 2]).to_dict()["data"] == [1, 2]
