"""Portfolio risk metrics over holdings and optional per-symbol price histories.

Rates, volatilities and drawdowns are fractions (0.25 == 25%). Volatility is
annualised with ``RiskSettings.trading_days`` (252 by default).
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from loguru import logger

from quantengine.analytics import stats
from quantengine.core.exceptions import DivisionGuardError, InvalidParameterError
from quantengine.core.models import Holding, Portfolio, PriceSeries, parse_histories
from quantengine.risk.alerts import (
    CONCENTRATION,
    CORRELATION,
    PORTFOLIO_VOLATILITY,
    RiskAlert,
)
from quantengine.risk.policy import EstimatedVolatilityPolicy
from quantengine.settings import RiskSettings, get_risk_settings

Z_SCORES: Dict[float, float] = {0.90: 1.28, 0.95: 1.645, 0.99: 2.33}

PortfolioInput = Union[Portfolio, Sequence[Union[Holding, Mapping[str, Any]]]]
HistoriesInput = Optional[Mapping[str, Any]]


def z_score(confidence_level: float) -> float:
    for level, z in Z_SCORES.items():
        if math.isclose(level, confidence_level, abs_tol=1e-9):
            return z
    supported = ", ".join(f"{level:.2f}" for level in Z_SCORES)
    raise InvalidParameterError(
        f"unsupported confidence level {confidence_level}; expected one of {supported}",
        field="confidence_level",
    )


def risk_level_for(volatility_pct: float) -> str:
    if volatility_pct < 20:
        return "LOW"
    if volatility_pct < 40:
        return "MODERATE"
    if volatility_pct < 60:
        return "HIGH"
    return "CRITICAL"


def diversification_assessment(score: float) -> str:
    if score >= 80:
        return "EXCELLENT"
    if score >= 60:
        return "GOOD"
    if score >= 40:
        return "FAIR"
    if score >= 20:
        return "POOR"
    return "VERY_POOR"


def concentration_level(top3_share: float) -> str:
    if top3_share > 0.60:
        return "HIGH"
    if top3_share > 0.40:
        return "MEDIUM"
    return "LOW"


def _pair_key(a: str, b: str) -> str:
    return f"{a}-{b}"


# -------- Data classes --------
@dataclass
class PositionRisk:
    symbol: str
    value: float
    weight: float
    unrealized_pnl: float
    unrealized_return: float
    volatility: float
    drawdown: float
    volatility_estimated: bool
    risk_level: str


@dataclass
class CorrelationRisk:
    pair: str
    symbols: Tuple[str, str]
    correlation: float
    source: str
    risk: str = "HIGH"


@dataclass
class DiversificationReport:
    herfindahl_index: float
    diversification_score: float
    assessment: str
    concentration_level: str
    top3_concentration: float
    largest_holding: str
    largest_weight: float
    weights: Dict[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Contribution:
    symbol: str
    weight: float
    asset_return: float
    contribution: float


@dataclass
class AttributionReport:
    """Per-holding weight x return, largest contribution first."""

    contributions: List[Contribution]
    total_contribution: float
    top_contributor: Contribution
    bottom_contributor: Contribution

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VolatilityBreakdown:
    volatility: float
    variance: float
    asset_volatilities: Dict[str, float]
    correlations: Dict[str, float]
    correlation_sources: Dict[str, str]
    estimated_symbols: List[str] = field(default_factory=list)

    @property
    def estimated_pairs(self) -> List[str]:
        return [k for k, src in self.correlation_sources.items() if src == "estimated"]

    @property
    def source(self) -> str:
        if not self.estimated_symbols and not self.estimated_pairs:
            return "observed"
        if len(self.estimated_symbols) == len(self.asset_volatilities):
            return "estimated"
        return "mixed"


@dataclass
class RiskReport:
    total_value: float
    volatility: float
    var95: float
    cvar95: float
    cvar_method: str
    confidence_level: float
    annualized_return: float
    return_source: str
    risk_free_rate: float
    sharpe_ratio: float
    sortino_ratio: Optional[float]
    max_drawdown: float
    herfindahl_index: float
    diversification_score: float
    diversification_assessment: str
    concentration_level: str
    top3_concentration: float
    largest_holding: str
    correlation_risks: List[CorrelationRisk]
    position_risks: List[PositionRisk]
    alerts: List[RiskAlert]
    risk_level: str
    risk_score: float
    volatility_source: str
    estimated_symbols: List[str]
    historical_var: Optional[float] = None
    historical_cvar: Optional[float] = None
    sortino_unavailable_reason: Optional[str] = None

    @property
    def is_estimated(self) -> bool:
        return self.volatility_source != "observed" or self.return_source != "observed"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# -------- Engine --------
class RiskMetricsEngine:
    """Stateless calculator; one instance may serve concurrent callers."""

    def __init__(
        self,
        settings: Optional[RiskSettings] = None,
        policy: Optional[EstimatedVolatilityPolicy] = None,
    ) -> None:
        self.settings = settings or get_risk_settings()
        self.policy = policy or EstimatedVolatilityPolicy.from_settings(self.settings)
        self.periods = int(self.settings.trading_days)

    # ---- input normalisation ----
    @staticmethod
    def _portfolio(portfolio: PortfolioInput) -> Portfolio:
        if isinstance(portfolio, Portfolio):
            return portfolio
        return Portfolio.from_raw(portfolio)

    @staticmethod
    def _observed(
        portfolio: Portfolio, histories: HistoriesInput
    ) -> Dict[str, PriceSeries]:
        parsed = parse_histories(histories)
        return {sym: parsed[sym] for sym in portfolio.symbols if sym in parsed}

    # ---- per-asset inputs ----
    def _asset_volatilities(
        self, portfolio: Portfolio, observed: Mapping[str, PriceSeries]
    ) -> Tuple[Dict[str, float], List[str]]:
        vols: Dict[str, float] = {}
        estimated: List[str] = []
        for symbol in portfolio.symbols:
            series = observed.get(symbol)
            rets = series.returns if series is not None else np.empty(0)
            if rets.size >= 2:
                vols[symbol] = stats.annualize_volatility(stats.std(rets), self.periods)
            else:
                vols[symbol] = self.policy.volatility_for(symbol, int(rets.size))
                estimated.append(symbol)
        return vols, estimated

    def _pair_correlation(
        self,
        portfolio: Portfolio,
        observed: Mapping[str, PriceSeries],
        a: str,
        b: str,
    ) -> Tuple[float, str]:
        if portfolio.correlation is not None:
            rho = portfolio.correlation.get(a, b)
            if rho is not None:
                return rho, "matrix"
        sa, sb = observed.get(a), observed.get(b)
        if sa is not None and sb is not None:
            ra, rb = sa.returns, sb.returns
            if ra.size >= 2 and rb.size >= 2:
                rho = stats.correlation(ra, rb)
                if rho is not None:
                    return rho, "observed"
        return self.policy.correlation_for(a, b), "estimated"

    def _pair_correlations(
        self, portfolio: Portfolio, observed: Mapping[str, PriceSeries]
    ) -> Dict[Tuple[str, str], Tuple[float, str]]:
        pairs: Dict[Tuple[str, str], Tuple[float, str]] = {}
        symbols = portfolio.symbols
        for i, a in enumerate(symbols):
            for b in symbols[i + 1 :]:
                pairs[(a, b)] = self._pair_correlation(portfolio, observed, a, b)
        return pairs

    def _combine(
        self,
        portfolio: Portfolio,
        vols: Dict[str, float],
        estimated: List[str],
        pairs: Dict[Tuple[str, str], Tuple[float, str]],
    ) -> VolatilityBreakdown:
        weights = portfolio.weights()
        symbols = portfolio.symbols
        variance = 0.0
        for i, a in enumerate(symbols):
            for j, b in enumerate(symbols):
                if i == j:
                    rho = 1.0
                elif i < j:
                    rho = pairs[(a, b)][0]
                else:
                    rho = pairs[(b, a)][0]
                variance += weights[a] * weights[b] * vols[a] * vols[b] * rho
        variance = max(0.0, variance)
        return VolatilityBreakdown(
            volatility=math.sqrt(variance),
            variance=variance,
            asset_volatilities=vols,
            correlations={_pair_key(a, b): v[0] for (a, b), v in pairs.items()},
            correlation_sources={_pair_key(a, b): v[1] for (a, b), v in pairs.items()},
            estimated_symbols=estimated,
        )

    def _portfolio_returns(
        self, portfolio: Portfolio, observed: Mapping[str, PriceSeries]
    ) -> Optional[np.ndarray]:
        """Weighted daily returns, only when every holding has history."""
        series = [observed.get(sym) for sym in portfolio.symbols]
        if any(s is None or len(s) < 3 for s in series):
            return None
        weights = portfolio.weights()
        n = min(len(s) for s in series) - 1
        total = np.zeros(n, dtype=float)
        for symbol, s in zip(portfolio.symbols, series):
            total += weights[symbol] * s.returns[-n:]
        return total

    def _portfolio_values(
        self, portfolio: Portfolio, observed: Mapping[str, PriceSeries]
    ) -> Optional[np.ndarray]:
        series = [observed.get(sym) for sym in portfolio.symbols]
        if any(s is None or len(s) < 2 for s in series):
            return None
        n = min(len(s) for s in series)
        values = np.zeros(n, dtype=float)
        for holding, s in zip(portfolio.holdings, series):
            values += holding.quantity * s.prices[-n:]
        return values

    # ---- public operations ----
    def asset_volatilities(
        self, portfolio: PortfolioInput, histories: HistoriesInput = None
    ) -> Dict[str, float]:
        pf = self._portfolio(portfolio)
        vols, _ = self._asset_volatilities(pf, self._observed(pf, histories))
        return vols

    def portfolio_volatility(
        self, portfolio: PortfolioInput, histories: HistoriesInput = None
    ) -> VolatilityBreakdown:
        """variance = sum_i sum_j w_i w_j s_i s_j rho_ij over market-value weights."""
        pf = self._portfolio(portfolio)
        observed = self._observed(pf, histories)
        vols, estimated = self._asset_volatilities(pf, observed)
        pairs = self._pair_correlations(pf, observed)
        return self._combine(pf, vols, estimated, pairs)

    def expected_return(
        self, portfolio: PortfolioInput, histories: HistoriesInput = None
    ) -> Tuple[float, str]:
        """Annualized expected return and its source ('observed' or 'estimated')."""
        pf = self._portfolio(portfolio)
        return self._expected_return(pf, self._observed(pf, histories))

    def _expected_return(
        self, portfolio: Portfolio, observed: Mapping[str, PriceSeries]
    ) -> Tuple[float, str]:
        port_returns = self._portfolio_returns(portfolio, observed)
        if port_returns is not None:
            mean_daily = stats.mean(port_returns)
            return stats.annualize_return(mean_daily, self.periods), "observed"
        estimate = (portfolio.total_value - portfolio.total_cost) / portfolio.total_cost
        logger.warning(
            "[risk] incomplete return history; expected return estimated "
            "from cost basis ({:.4f})",
            estimate,
        )
        return estimate, "estimated"

    def value_at_risk(
        self,
        total_value: float,
        volatility: float,
        confidence_level: float = 0.95,
    ) -> Tuple[float, float]:
        """Parametric VaR and CVaR (VaR x tail factor) in currency units."""
        z = z_score(confidence_level)
        if total_value < 0:
            raise InvalidParameterError(
                "total value must be non-negative", field="total_value"
            )
        if volatility < 0:
            raise InvalidParameterError(
                "volatility must be non-negative", field="volatility"
            )
        var = float(total_value) * z * float(volatility)
        return var, var * self.settings.cvar_tail_factor

    def sharpe_ratio(
        self,
        annualized_return: float,
        volatility: float,
        risk_free_rate: Optional[float] = None,
    ) -> float:
        rf = self.settings.risk_free_rate if risk_free_rate is None else risk_free_rate
        if not volatility > 0:
            raise DivisionGuardError(
                "volatility is zero; Sharpe ratio is undefined", field="volatility"
            )
        return (annualized_return - rf) / volatility

    def sortino_ratio(
        self,
        annualized_return: float,
        downside_deviation: float,
        risk_free_rate: Optional[float] = None,
    ) -> float:
        rf = self.settings.risk_free_rate if risk_free_rate is None else risk_free_rate
        if not downside_deviation > 0:
            raise DivisionGuardError(
                "downside deviation is zero; Sortino ratio is undefined",
                field="downside_deviation",
            )
        return (annualized_return - rf) / downside_deviation

    def diversification(self, portfolio: PortfolioInput) -> DiversificationReport:
        pf = self._portfolio(portfolio)
        if not pf.total_value > 0:
            raise DivisionGuardError(
                "portfolio has zero market value", field="total_value"
            )
        weights = pf.weights()
        ranked = sorted(weights.items(), key=lambda kv: kv[1], reverse=True)
        herfindahl = float(sum(w * w for w in weights.values()))
        score = max(0.0, 100.0 * (1.0 - herfindahl))
        top3 = float(sum(w for _, w in ranked[:3]))
        largest, largest_weight = ranked[0]
        return DiversificationReport(
            herfindahl_index=herfindahl,
            diversification_score=score,
            assessment=diversification_assessment(score),
            concentration_level=concentration_level(top3),
            top3_concentration=top3,
            largest_holding=largest,
            largest_weight=largest_weight,
            weights=dict(ranked),
        )

    def attribution(self, portfolio: PortfolioInput) -> AttributionReport:
        """Split the portfolio return since entry into per-holding contributions."""
        pf = self._portfolio(portfolio)
        if not pf.total_value > 0:
            raise DivisionGuardError(
                "portfolio has zero market value", field="total_value"
            )
        weights = pf.weights()
        rows = [
            Contribution(
                symbol=h.symbol,
                weight=weights[h.symbol],
                asset_return=h.unrealized_return,
                contribution=weights[h.symbol] * h.unrealized_return,
            )
            for h in pf.holdings
        ]
        # stable sort keeps input order among equal contributions
        rows.sort(key=lambda c: c.contribution, reverse=True)
        total = float(sum(c.contribution for c in rows))
        logger.debug(
            "[risk] attribution top={} bottom={} total={:.4f}",
            rows[0].symbol,
            rows[-1].symbol,
            total,
        )
        return AttributionReport(
            contributions=rows,
            total_contribution=total,
            top_contributor=rows[0],
            bottom_contributor=rows[-1],
        )

    def correlation_risks(
        self, portfolio: PortfolioInput, histories: HistoriesInput = None
    ) -> List[CorrelationRisk]:
        pf = self._portfolio(portfolio)
        pairs = self._pair_correlations(pf, self._observed(pf, histories))
        return self._flag_correlations(pairs)

    def _flag_correlations(
        self, pairs: Dict[Tuple[str, str], Tuple[float, str]]
    ) -> List[CorrelationRisk]:
        threshold = self.settings.correlation_alert
        risks: List[CorrelationRisk] = []
        for (a, b), (rho, source) in pairs.items():
            if rho > threshold:
                risks.append(
                    CorrelationRisk(
                        pair=_pair_key(a, b),
                        symbols=(a, b),
                        correlation=rho,
                        source=source,
                    )
                )
        return risks

    def position_risks(
        self, portfolio: PortfolioInput, histories: HistoriesInput = None
    ) -> List[PositionRisk]:
        pf = self._portfolio(portfolio)
        vols, estimated = self._asset_volatilities(pf, self._observed(pf, histories))
        return self._position_risks(pf, vols, estimated)

    def _position_risks(
        self, portfolio: Portfolio, vols: Dict[str, float], estimated: List[str]
    ) -> List[PositionRisk]:
        weights = portfolio.weights()
        out: List[PositionRisk] = []
        for h in portfolio.holdings:
            vol = vols[h.symbol]
            out.append(
                PositionRisk(
                    symbol=h.symbol,
                    value=h.market_value,
                    weight=weights[h.symbol],
                    unrealized_pnl=h.unrealized_pnl,
                    unrealized_return=h.unrealized_return,
                    volatility=vol,
                    drawdown=max(0.0, -h.unrealized_return),
                    volatility_estimated=h.symbol in estimated,
                    risk_level=risk_level_for(vol * 100.0),
                )
            )
        return out

    def _alerts(
        self,
        diversification: DiversificationReport,
        volatility: float,
        correlation_risks: List[CorrelationRisk],
    ) -> List[RiskAlert]:
        alerts: List[RiskAlert] = []
        for symbol, weight in diversification.weights.items():
            if weight > 0.40:
                severity, advice = "CRITICAL", "reduce position size immediately"
            elif weight > 0.25:
                severity, advice = "HIGH", "consider reducing position size"
            else:
                continue
            alerts.append(
                RiskAlert(
                    kind=CONCENTRATION,
                    severity=severity,
                    symbol=symbol,
                    value=weight,
                    message=f"{symbol} is {weight:.1%} of the portfolio; {advice}",
                )
            )
        if volatility > 0.50:
            alerts.append(
                RiskAlert(
                    kind=PORTFOLIO_VOLATILITY,
                    severity="MEDIUM",
                    value=volatility,
                    message=f"portfolio volatility is high ({volatility:.1%})",
                )
            )
        for risk in correlation_risks:
            alerts.append(
                RiskAlert(
                    kind=CORRELATION,
                    severity="HIGH",
                    value=risk.correlation,
                    message=f"{risk.pair} correlation {risk.correlation:.2f}; consider diversifying",
                )
            )
        return alerts

    @staticmethod
    def risk_score(volatility: float, max_drawdown: float) -> float:
        vol_score = min(100.0, volatility / 0.80 * 100.0)
        dd_score = min(100.0, abs(max_drawdown) / 0.50 * 100.0)
        return (vol_score + dd_score) / 2.0

    def analyze(
        self,
        portfolio: PortfolioInput,
        histories: HistoriesInput = None,
        *,
        confidence_level: Optional[float] = None,
        risk_free_rate: Optional[float] = None,
    ) -> RiskReport:
        """
        Full risk report for a portfolio.

        Raises:
            InvalidParameterError: unsupported confidence level or malformed input.
            DivisionGuardError: zero portfolio value or zero volatility.
        """
        confidence = (
            self.settings.confidence_level
            if confidence_level is None
            else float(confidence_level)
        )
        rf = self.settings.risk_free_rate if risk_free_rate is None else risk_free_rate
        z_score(confidence)

        pf = self._portfolio(portfolio)
        total = pf.total_value
        if not total > 0:
            raise DivisionGuardError(
                "portfolio has zero market value", field="total_value"
            )
        observed = self._observed(pf, histories)

        vols, estimated = self._asset_volatilities(pf, observed)
        pairs = self._pair_correlations(pf, observed)
        breakdown = self._combine(pf, vols, estimated, pairs)
        volatility = breakdown.volatility
        var, cvar = self.value_at_risk(total, volatility, confidence)

        annualized, return_source = self._expected_return(pf, observed)
        port_returns = self._portfolio_returns(pf, observed)
        historical_var = historical_cvar = None
        if port_returns is not None:
            downside = stats.annualize_volatility(
                stats.downside_deviation(port_returns), self.periods
            )
            if port_returns.size >= stats.MIN_HISTORICAL_POINTS:
                historical_var, historical_cvar = stats.historical_var_cvar(
                    port_returns, confidence
                )
        else:
            downside = self.policy.downside_for(volatility)

        sharpe = self.sharpe_ratio(annualized, volatility, rf)
        sortino_reason: Optional[str] = None
        try:
            sortino: Optional[float] = self.sortino_ratio(annualized, downside, rf)
        except DivisionGuardError as exc:
            logger.warning("[risk] sortino unavailable: {}", exc)
            sortino = None
            sortino_reason = exc.message

        values = self._portfolio_values(pf, observed)
        if values is not None:
            max_dd = stats.max_drawdown(values)
        else:
            max_dd = max(0.0, max(-h.unrealized_return for h in pf.holdings))

        diversification = self.diversification(pf)
        corr_risks = self._flag_correlations(pairs)
        positions = self._position_risks(pf, vols, estimated)
        alerts = self._alerts(diversification, volatility, corr_risks)
        score = self.risk_score(volatility, max_dd)

        report = RiskReport(
            total_value=total,
            volatility=volatility,
            var95=var,
            cvar95=cvar,
            cvar_method="parametric+historical"
            if historical_cvar is not None
            else "parametric",
            confidence_level=confidence,
            annualized_return=annualized,
            return_source=return_source,
            risk_free_rate=rf,
            sharpe_ratio=sharpe,
            sortino_ratio=sortino,
            max_drawdown=max_dd,
            herfindahl_index=diversification.herfindahl_index,
            diversification_score=diversification.diversification_score,
            diversification_assessment=diversification.assessment,
            concentration_level=diversification.concentration_level,
            top3_concentration=diversification.top3_concentration,
            largest_holding=diversification.largest_holding,
            correlation_risks=corr_risks,
            position_risks=positions,
            alerts=alerts,
            risk_level=risk_level_for(volatility * 100.0),
            risk_score=score,
            volatility_source=breakdown.source,
            estimated_symbols=list(estimated),
            historical_var=historical_var,
            historical_cvar=historical_cvar,
            sortino_unavailable_reason=sortino_reason,
        )
        logger.info(
            "[risk] holdings={} total={:.2f} vol={:.4f} var={:.2f} sharpe={:.3f} source={}",
            len(pf.holdings),
            total,
            volatility,
            var,
            sharpe,
            report.volatility_source,
        )
        return report


__all__ = [
    "RiskMetricsEngine",
    "RiskReport",
    "AttributionReport",
    "Contribution",
    "PositionRisk",
    "CorrelationRisk",
    "DiversificationReport",
    "VolatilityBreakdown",
    "Z_SCORES",
    "z_score",
    "risk_level_for",
    "diversification_assessment",
    "concentration_level",
]
