"""Deterministic stress scenarios applied to current holdings."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from loguru import logger

from quantengine.core.exceptions import InvalidParameterError, NotFoundError
from quantengine.core.models import Holding, Portfolio

HoldingsInput = Union[Portfolio, Sequence[Union[Holding, Mapping[str, Any]]]]


@dataclass(frozen=True)
class StressScenario:
    id: str
    price_change_pct: float
    volatility_change_pct: float = 0.0
    severity: str = "medium"
    description: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidParameterError("scenario id is required", field="id")
        if self.price_change_pct <= -100.0:
            raise InvalidParameterError(
                f"price change {self.price_change_pct}% would leave a non-positive price",
                field="price_change_pct",
            )


SCENARIO_CATALOG: Dict[str, StressScenario] = {
    s.id: s
    for s in (
        StressScenario(
            id="crash_20",
            description="20% market crash across portfolio",
            price_change_pct=-20.0,
            volatility_change_pct=40.0,
            severity="medium",
        ),
        StressScenario(
            id="crash_50",
            description="50% market crash across portfolio",
            price_change_pct=-50.0,
            volatility_change_pct=90.0,
            severity="critical",
        ),
        StressScenario(
            id="volatility_spike",
            description="Extreme volatility spike with smaller directional move",
            price_change_pct=-5.0,
            volatility_change_pct=150.0,
            severity="high",
        ),
        StressScenario(
            id="melt_up_25",
            description="25% rapid upside move (risk for shorts / leverage)",
            price_change_pct=25.0,
            volatility_change_pct=60.0,
            severity="high",
        ),
    )
}

DEFAULT_SCENARIO_IDS = ("crash_20", "crash_50", "volatility_spike")


@dataclass
class HoldingImpact:
    symbol: str
    original_price: float
    stressed_price: float
    original_value: float
    new_value: float
    change: float
    change_pct: float


@dataclass
class ScenarioResult:
    scenario_id: str
    description: str
    severity: str
    price_change_pct: float
    volatility_change_pct: float
    original_value: float
    portfolio_value: float
    portfolio_change: float
    portfolio_change_pct: float
    impacted_holdings: List[HoldingImpact]
    stressed_volatility: Optional[float] = None


@dataclass
class StressReport:
    results: List[ScenarioResult]
    worst_case: ScenarioResult
    best_case: ScenarioResult
    as_of: Optional[datetime] = None
    base_volatility: Optional[float] = None
    scenario_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def list_scenarios() -> List[StressScenario]:
    return list(SCENARIO_CATALOG.values())


class StressTester:
    """Applies catalog (or ad-hoc) price shocks uniformly to every holding."""

    def __init__(self, catalog: Optional[Mapping[str, StressScenario]] = None) -> None:
        self.catalog: Dict[str, StressScenario] = dict(catalog or SCENARIO_CATALOG)

    def list_scenarios(self) -> List[StressScenario]:
        return list(self.catalog.values())

    def resolve(self, scenario_ids: Optional[Sequence[str]] = None) -> List[StressScenario]:
        if scenario_ids is None:
            scenario_ids = DEFAULT_SCENARIO_IDS
        if isinstance(scenario_ids, str):
            scenario_ids = [scenario_ids]
        if len(scenario_ids) == 0:
            raise InvalidParameterError(
                "at least one scenario id is required", field="scenario_ids"
            )
        unknown = [sid for sid in scenario_ids if sid not in self.catalog]
        if unknown:
            known = ", ".join(self.catalog)
            raise NotFoundError(
                f"unknown stress scenario(s) {unknown}; available: {known}",
                field="scenario_ids",
            )
        return [self.catalog[sid] for sid in scenario_ids]

    def run(
        self,
        holdings: HoldingsInput,
        scenario_ids: Optional[Sequence[str]] = None,
        *,
        base_volatility: Optional[float] = None,
        as_of: Optional[datetime] = None,
    ) -> StressReport:
        """
        Run catalog scenarios by id (defaults: crash_20, crash_50, volatility_spike).

        Raises:
            NotFoundError: any id is missing from the catalog.
            InvalidParameterError: an explicitly empty id list or malformed holdings.
        """
        scenarios = self.resolve(scenario_ids)
        return self.run_scenarios(
            holdings, scenarios, base_volatility=base_volatility, as_of=as_of
        )

    def run_scenarios(
        self,
        holdings: HoldingsInput,
        scenarios: Sequence[StressScenario],
        *,
        base_volatility: Optional[float] = None,
        as_of: Optional[datetime] = None,
    ) -> StressReport:
        if not scenarios:
            raise InvalidParameterError(
                "at least one scenario is required", field="scenarios"
            )
        if base_volatility is not None and base_volatility < 0:
            raise InvalidParameterError(
                "base volatility must be non-negative", field="base_volatility"
            )
        portfolio = (
            holdings if isinstance(holdings, Portfolio) else Portfolio.from_raw(holdings)
        )

        results = [
            self._apply(portfolio, scenario, base_volatility) for scenario in scenarios
        ]
        worst = best = results[0]
        for result in results[1:]:
            if result.portfolio_change < worst.portfolio_change:
                worst = result
            if result.portfolio_change > best.portfolio_change:
                best = result

        logger.info(
            "[stress] scenarios={} worst={} ({:.2f}) best={} ({:.2f})",
            len(results),
            worst.scenario_id,
            worst.portfolio_change,
            best.scenario_id,
            best.portfolio_change,
        )
        return StressReport(
            results=results,
            worst_case=worst,
            best_case=best,
            as_of=as_of,
            base_volatility=base_volatility,
            scenario_ids=[s.id for s in scenarios],
        )

    @staticmethod
    def _apply(
        portfolio: Portfolio,
        scenario: StressScenario,
        base_volatility: Optional[float],
    ) -> ScenarioResult:
        factor = 1.0 + scenario.price_change_pct / 100.0
        impacts: List[HoldingImpact] = []
        original_total = 0.0
        stressed_total = 0.0
        for holding in portfolio.holdings:
            shocked = holding.repriced(holding.current_price * factor)
            original = holding.market_value
            stressed = shocked.market_value
            original_total += original
            stressed_total += stressed
            impacts.append(
                HoldingImpact(
                    symbol=holding.symbol,
                    original_price=holding.current_price,
                    stressed_price=shocked.current_price,
                    original_value=original,
                    new_value=stressed,
                    change=stressed - original,
                    change_pct=(stressed - original) / original * 100.0,
                )
            )
        change = stressed_total - original_total
        stressed_vol = None
        if base_volatility is not None:
            stressed_vol = base_volatility * (1.0 + scenario.volatility_change_pct / 100.0)
        logger.debug(
            "[stress] {} value {:.2f} -> {:.2f}", scenario.id, original_total, stressed_total
        )
        return ScenarioResult(
            scenario_id=scenario.id,
            description=scenario.description,
            severity=scenario.severity,
            price_change_pct=scenario.price_change_pct,
            volatility_change_pct=scenario.volatility_change_pct,
            original_value=original_total,
            portfolio_value=stressed_total,
            portfolio_change=change,
            portfolio_change_pct=change / original_total * 100.0,
            impacted_holdings=impacts,
            stressed_volatility=stressed_vol,
        )


__all__ = [
    "StressScenario",
    "StressTester",
    "StressReport",
    "ScenarioResult",
    "HoldingImpact",
    "SCENARIO_CATALOG",
    "DEFAULT_SCENARIO_IDS",
    "list_scenarios",
]
