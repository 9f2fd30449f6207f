"""Explicit fallback policy for symbols without usable price history."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from quantengine.settings import RiskSettings, get_risk_settings


@dataclass(frozen=True)
class EstimatedVolatilityPolicy:
    """
    Documented defaults substituted when a metric cannot be observed.

    Every substitution is logged at WARNING so an estimate never blends
    silently into observed figures. Reports built with any estimate expose
    ``volatility_source`` and ``estimated_symbols`` for the caller to judge.
    """

    default_volatility: float = 0.50
    default_correlation: float = 0.0
    downside_ratio: float = 0.7

    @classmethod
    def from_settings(
        cls, settings: Optional[RiskSettings] = None
    ) -> "EstimatedVolatilityPolicy":
        cfg = settings or get_risk_settings()
        return cls(
            default_volatility=cfg.default_volatility,
            default_correlation=cfg.default_correlation,
            downside_ratio=cfg.downside_ratio,
        )

    def volatility_for(self, symbol: str, observations: int) -> float:
        logger.warning(
            "[risk] {} has {} returns; using estimated volatility {:.2f}",
            symbol,
            observations,
            self.default_volatility,
        )
        return self.default_volatility

    def correlation_for(self, a: str, b: str) -> float:
        logger.warning(
            "[risk] correlation {}/{} unavailable; using estimated {:.2f}",
            a,
            b,
            self.default_correlation,
        )
        return self.default_correlation

    def downside_for(self, volatility: float) -> float:
        estimate = volatility * self.downside_ratio
        logger.warning(
            "[risk] no return history; downside deviation estimated as {:.4f} "
            "(volatility x {:.2f})",
            estimate,
            self.downside_ratio,
        )
        return estimate


__all__ = ["EstimatedVolatilityPolicy"]
