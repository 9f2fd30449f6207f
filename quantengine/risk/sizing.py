"""Position sizing logic: Kelly-criterion sizing under a triple cap, plus stop/target levels.

Inputs follow the trading-desk convention of percent figures (``risk_per_trade=2``
means 2% of the account, ``volatility=20`` means 20%). Fields suffixed ``_pct``
in the results are percents as well; everything else is a fraction or a price.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

from loguru import logger

from quantengine.core.exceptions import InvalidParameterError

PROFIT_FACTOR_SENTINEL = 100.0


@dataclass
class PositionSizeResult:
    account_size: float
    kelly_fraction: float
    fractional_kelly: float
    recommended_size: float
    position_size_pct: float
    kelly_cap: float
    risk_cap: float
    max_position_cap: float
    binding_cap: str
    expected_value: float
    risk_reward_ratio: float
    profit_factor: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StopLevels:
    entry_price: float
    stop_loss: float
    stop_distance_pct: float
    risk_amount: float
    take_profit: float
    take_profit_distance_pct: float
    profit_amount: float
    atr_stop_loss: float
    atr_take_profit: float
    chandelier_stop: float
    chandelier_distance_pct: float
    risk_reward_ratio: float
    break_even_price: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _require_positive(value: float, field: str) -> float:
    value = float(value)
    if not value > 0:
        raise InvalidParameterError(f"{field} must be positive, got {value}", field=field)
    return value


@dataclass(slots=True)
class PositionSizer:
    """
    Fractional Kelly sizing with three independent caps.

    The recommended size is the tightest of ``account x f* x kelly_multiplier``,
    ``account x risk_per_trade%`` and ``account x max_position_fraction``.
    A non-positive Kelly fraction (no edge) recommends zero.
    """

    kelly_multiplier: float = 0.25
    max_position_fraction: float = 0.05

    def position_size(
        self,
        account_size: float,
        win_rate: float,
        avg_win: float,
        avg_loss: float,
        risk_per_trade: float = 2.0,
    ) -> PositionSizeResult:
        account = _require_positive(account_size, "account_size")
        avg_win = _require_positive(avg_win, "avg_win")
        avg_loss = _require_positive(avg_loss, "avg_loss")
        p = float(win_rate)
        if not 0.0 <= p <= 1.0:
            raise InvalidParameterError(
                f"win_rate must lie in [0, 1], got {p}", field="win_rate"
            )
        rpt = float(risk_per_trade)
        if not 0.0 < rpt <= 100.0:
            raise InvalidParameterError(
                f"risk_per_trade must lie in (0, 100], got {rpt}",
                field="risk_per_trade",
            )

        q = 1.0 - p
        b = avg_win / avg_loss
        kelly = (b * p - q) / b
        fractional = kelly * self.kelly_multiplier

        caps = (
            ("kelly", max(0.0, account * fractional)),
            ("risk_per_trade", account * rpt / 100.0),
            ("max_position", account * self.max_position_fraction),
        )
        binding, recommended = caps[0]
        for name, cap in caps[1:]:
            if cap < recommended:
                binding, recommended = name, cap

        loss_weight = q * avg_loss
        if loss_weight == 0:
            profit_factor = PROFIT_FACTOR_SENTINEL if p * avg_win > 0 else 0.0
        else:
            profit_factor = (p * avg_win) / loss_weight

        result = PositionSizeResult(
            account_size=account,
            kelly_fraction=kelly,
            fractional_kelly=fractional,
            recommended_size=recommended,
            position_size_pct=recommended / account * 100.0,
            kelly_cap=caps[0][1],
            risk_cap=caps[1][1],
            max_position_cap=caps[2][1],
            binding_cap=binding,
            expected_value=(p * avg_win - q * avg_loss) / 100.0 * recommended,
            risk_reward_ratio=b,
            profit_factor=profit_factor,
        )
        logger.info(
            "[sizing] account={:.2f} p={:.3f} b={:.3f} kelly={:.4f} size={:.2f} cap={}",
            account,
            p,
            b,
            kelly,
            recommended,
            binding,
        )
        return result

    def stop_levels(
        self,
        entry_price: float,
        account_size: float,
        risk_amount: float,
        risk_reward_ratio: float = 2.0,
        volatility: float = 20.0,
    ) -> StopLevels:
        """
        Stop-loss and take-profit prices from a dollar risk budget.

        The stop distance is ``risk_amount / (account_size x 1%)`` percent
        below entry. ATR and chandelier stops are independent alternatives
        derived from ``volatility`` (percent) and never override the primary stop.
        """
        entry = _require_positive(entry_price, "entry_price")
        account = _require_positive(account_size, "account_size")
        risk = _require_positive(risk_amount, "risk_amount")
        reward = _require_positive(risk_reward_ratio, "risk_reward_ratio")
        vol = float(volatility)
        if vol < 0:
            raise InvalidParameterError(
                f"volatility must be non-negative, got {vol}", field="volatility"
            )

        distance = risk / (account * 0.01)
        if distance >= 100.0:
            raise InvalidParameterError(
                f"risk amount implies a {distance:.2f}% stop distance; must be below 100%",
                field="risk_amount",
            )
        target_distance = distance * reward
        stop = entry * (1.0 - distance / 100.0)
        target = entry * (1.0 + target_distance / 100.0)

        atr_stop = max(0.0, entry * (1.0 - vol / 100.0 * 2.0))
        atr_target = entry * (1.0 + vol / 100.0 * 2.0 * reward)
        chandelier = max(0.0, entry * (1.0 - vol / 100.0 * 3.0))

        logger.debug(
            "[sizing] entry={:.4f} stop={:.4f} target={:.4f} atr_stop={:.4f} chandelier={:.4f}",
            entry,
            stop,
            target,
            atr_stop,
            chandelier,
        )
        return StopLevels(
            entry_price=entry,
            stop_loss=stop,
            stop_distance_pct=distance,
            risk_amount=risk,
            take_profit=target,
            take_profit_distance_pct=target_distance,
            profit_amount=risk * reward,
            atr_stop_loss=atr_stop,
            atr_take_profit=atr_target,
            chandelier_stop=chandelier,
            chandelier_distance_pct=(entry - chandelier) / entry * 100.0,
            risk_reward_ratio=reward,
            break_even_price=entry,
        )


__all__ = ["PositionSizer", "PositionSizeResult", "StopLevels", "PROFIT_FACTOR_SENTINEL"]
