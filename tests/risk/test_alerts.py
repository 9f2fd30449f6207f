from __future__ import annotations

import pytest

from quantengine.core.exceptions import InvalidParameterError
from quantengine.risk.alerts import CONCENTRATION, AlertHistory, RiskAlert


def _alert(i, severity="HIGH"):
    return RiskAlert(kind=CONCENTRATION, severity=severity, message=f"alert {i}", value=i)


def test_history_is_bounded_and_drops_oldest():
    history = AlertHistory(capacity=3)
    added = history.record(_alert(i) for i in range(5))

    assert added == 5
    assert len(history) == 3
    assert [a.value for a in history.recent()] == [2, 3, 4]
    assert [a.value for a in history.recent(2)] == [3, 4]
    assert history.recent(0) == []


def test_at_least_filters_by_severity():
    history = AlertHistory()
    history.record([_alert(1, "LOW"), _alert(2, "HIGH"), _alert(3, "CRITICAL")])
    assert [a.value for a in history.at_least("high")] == [2, 3]
    with pytest.raises(InvalidParameterError):
        history.at_least("SEVERE")


def test_clear_and_capacity_validation():
    history = AlertHistory(capacity=2)
    history.record([_alert(1)])
    history.clear()
    assert len(history) == 0
    with pytest.raises(InvalidParameterError):
        AlertHistory(capacity=0)


def test_alert_serializes_to_dict():
    assert _alert(7).to_dict() == {
        "kind": CONCENTRATION,
        "severity": "HIGH",
        "message": "alert 7",
        "symbol": None,
        "value": 7,
    }


def test_default_capacity_comes_from_settings(monkeypatch):
    assert AlertHistory().capacity == 100

    monkeypatch.setenv("QUANT_ALERT_HISTORY_SIZE", "4")
    history = AlertHistory()
    history.record(_alert(i) for i in range(6))
    assert history.capacity == 4
    assert [a.value for a in history.recent()] == [2, 3, 4, 5]
