from __future__ import annotations

import numbers
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from quantengine.analytics import stats
from quantengine.core.exceptions import InvalidParameterError


def _invalid(exc: ValidationError, prefix: str) -> InvalidParameterError:
    """Translate the first pydantic error into an InvalidParameterError."""
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
    field = f"{prefix}.{loc}" if loc else prefix
    return InvalidParameterError(first.get("msg", str(exc)), field=field)


# Bare price lists carry no timestamps; they are laid out one day apart from here.
SYNTHETIC_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Holding(BaseModel):
    """
    An immutable position snapshot.

    Accepts both the snake_case names and the wire names used by callers
    (``amount``, ``currentPrice``, ``entryPrice``). When no entry price is
    supplied the current price is used, so the holding carries no PnL.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    symbol: str = Field(min_length=1)
    quantity: float = Field(gt=0, validation_alias=AliasChoices("quantity", "amount"))
    current_price: float = Field(
        gt=0, validation_alias=AliasChoices("current_price", "currentPrice")
    )
    entry_price: float = Field(
        gt=0, validation_alias=AliasChoices("entry_price", "entryPrice")
    )

    @model_validator(mode="before")
    @classmethod
    def _default_entry_price(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            keys = ("entry_price", "entryPrice")
            if all(data.get(k) is None for k in keys):
                current = data.get("current_price", data.get("currentPrice"))
                data = {**data, "entry_price": current}
        return data

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.entry_price

    @property
    def unrealized_pnl(self) -> float:
        return self.quantity * (self.current_price - self.entry_price)

    @property
    def unrealized_return(self) -> float:
        return (self.current_price - self.entry_price) / self.entry_price

    def repriced(self, price: float) -> "Holding":
        """Copy of this holding marked at ``price``; the original is untouched."""
        return self.model_copy(update={"current_price": float(price)})

    @classmethod
    def parse(cls, raw: "Holding | Mapping[str, Any]", index: int = 0) -> "Holding":
        if isinstance(raw, Holding):
            return raw
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise _invalid(exc, f"holdings[{index}]") from exc


class CorrelationMatrix(BaseModel):
    """Symmetric symbol x symbol correlation lookup with a unit diagonal."""

    model_config = ConfigDict(frozen=True)

    entries: Dict[str, Dict[str, float]] = Field(default_factory=dict)

    @field_validator("entries")
    @classmethod
    def _check_bounds(cls, value: Dict[str, Dict[str, float]]):
        for a, row in value.items():
            for b, rho in row.items():
                if not -1.0 <= float(rho) <= 1.0:
                    raise ValueError(f"correlation {a}/{b}={rho} outside [-1, 1]")
        return value

    def get(self, a: str, b: str) -> Optional[float]:
        a, b = a.upper(), b.upper()
        if a == b:
            return 1.0
        row = self.entries.get(a, {})
        if b in row:
            return float(row[b])
        row = self.entries.get(b, {})
        if a in row:
            return float(row[a])
        return None

    @classmethod
    def from_mapping(
        cls, raw: "CorrelationMatrix | Mapping[str, Any] | None"
    ) -> Optional["CorrelationMatrix"]:
        """
        Build from either a nested ``{"BTC": {"ETH": 0.8}}`` mapping or the flat
        ``{"BTC_ETH": 0.8}`` form. Flat keys split at the last underscore, so
        the second symbol must not contain one.
        """
        if raw is None or isinstance(raw, CorrelationMatrix):
            return raw
        nested: Dict[str, Dict[str, float]] = {}
        for key, value in raw.items():
            if isinstance(value, Mapping):
                row = nested.setdefault(str(key).upper(), {})
                for other, rho in value.items():
                    row[str(other).upper()] = float(rho)
                continue
            a, sep, b = str(key).rpartition("_")
            if not sep or not a or not b:
                raise InvalidParameterError(
                    f"cannot split correlation key {key!r} into a symbol pair",
                    field="correlation_matrix",
                )
            nested.setdefault(a.upper(), {})[b.upper()] = float(value)
        try:
            return cls(entries=nested)
        except ValidationError as exc:
            raise _invalid(exc, "correlation_matrix") from exc


class Portfolio(BaseModel):
    """Ordered, unique-by-symbol holdings plus an optional correlation matrix."""

    model_config = ConfigDict(frozen=True)

    holdings: Tuple[Holding, ...]
    correlation: Optional[CorrelationMatrix] = None

    @model_validator(mode="after")
    def _check_holdings(self) -> "Portfolio":
        if not self.holdings:
            raise InvalidParameterError(
                "portfolio requires at least one holding", field="holdings"
            )
        seen = set()
        for holding in self.holdings:
            if holding.symbol in seen:
                raise InvalidParameterError(
                    f"duplicate holding for {holding.symbol}", field="holdings"
                )
            seen.add(holding.symbol)
        return self

    @property
    def symbols(self) -> List[str]:
        return [h.symbol for h in self.holdings]

    @property
    def total_value(self) -> float:
        return float(sum(h.market_value for h in self.holdings))

    @property
    def total_cost(self) -> float:
        return float(sum(h.cost_basis for h in self.holdings))

    def weights(self) -> Dict[str, float]:
        total = self.total_value
        if total <= 0:
            return {h.symbol: 0.0 for h in self.holdings}
        return {h.symbol: h.market_value / total for h in self.holdings}

    @classmethod
    def from_raw(
        cls,
        holdings: Iterable["Holding | Mapping[str, Any]"],
        correlation_matrix: "CorrelationMatrix | Mapping[str, Any] | None" = None,
    ) -> "Portfolio":
        parsed = tuple(Holding.parse(h, i) for i, h in enumerate(holdings))
        return cls(
            holdings=parsed,
            correlation=CorrelationMatrix.from_mapping(correlation_matrix),
        )


class PriceBar(BaseModel):
    """A single timestamped price observation."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    price: float = Field(gt=0)
    volume: Optional[float] = Field(default=None, ge=0)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class PriceSeries(BaseModel):
    """Time-ordered, non-empty bars for one symbol."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    bars: Tuple[PriceBar, ...]

    @model_validator(mode="after")
    def _check_order(self) -> "PriceSeries":
        if not self.bars:
            raise InvalidParameterError(
                f"price series for {self.symbol} is empty", field="bars"
            )
        for i in range(1, len(self.bars)):
            if self.bars[i].timestamp <= self.bars[i - 1].timestamp:
                raise InvalidParameterError(
                    f"timestamps must be strictly increasing (bar {i})",
                    field=f"bars[{i}].timestamp",
                )
        return self

    def __len__(self) -> int:
        return len(self.bars)

    @property
    def prices(self) -> np.ndarray:
        return np.array([bar.price for bar in self.bars], dtype=float)

    @property
    def timestamps(self) -> List[datetime]:
        return [bar.timestamp for bar in self.bars]

    @property
    def returns(self) -> np.ndarray:
        return stats.returns(self.prices)

    def tail(self, days: int | float) -> "PriceSeries":
        """Bars within ``days`` of the last timestamp (reference is the series)."""
        if days <= 0:
            raise InvalidParameterError("days must be positive", field="days")
        cutoff = self.bars[-1].timestamp - timedelta(days=days)
        kept = tuple(bar for bar in self.bars if bar.timestamp >= cutoff)
        return self.model_copy(update={"bars": kept})

    def to_frame(self) -> pd.DataFrame:
        raw = [
            {"timestamp": bar.timestamp, "price": bar.price, "volume": bar.volume}
            for bar in self.bars
        ]
        return pd.DataFrame(raw).set_index("timestamp")

    @classmethod
    def from_raw(cls, symbol: str, raw: "PriceSeries | Sequence[Any]") -> "PriceSeries":
        """
        Parse ``[[timestamp, price], ...]`` pairs (optionally with a third volume
        element), ``[{"timestamp", "price", "volume"}, ...]`` objects, or a bare
        list of prices, which is given daily timestamps from ``SYNTHETIC_EPOCH``.
        """
        if isinstance(raw, PriceSeries):
            return raw
        if isinstance(raw, (str, bytes)) or not isinstance(raw, (Sequence, np.ndarray)):
            raise InvalidParameterError(
                "price history must be a sequence of bars", field="price_history"
            )
        bars: List[Dict[str, Any]] = []
        for i, item in enumerate(raw):
            if isinstance(item, PriceBar):
                bars.append(item.model_dump())
            elif isinstance(item, numbers.Real) and not isinstance(item, bool):
                bars.append(
                    {
                        "timestamp": SYNTHETIC_EPOCH + timedelta(days=i),
                        "price": item,
                        "volume": None,
                    }
                )
            elif isinstance(item, Mapping):
                bars.append(
                    {
                        "timestamp": item.get("timestamp"),
                        "price": item.get("price"),
                        "volume": item.get("volume"),
                    }
                )
            elif isinstance(item, Sequence) and len(item) in (2, 3):
                bars.append(
                    {
                        "timestamp": item[0],
                        "price": item[1],
                        "volume": item[2] if len(item) == 3 else None,
                    }
                )
            else:
                raise InvalidParameterError(
                    f"unrecognised price bar encoding: {item!r}",
                    field=f"price_history[{i}]",
                )
        try:
            return cls.model_validate({"symbol": symbol.upper(), "bars": bars})
        except ValidationError as exc:
            raise _invalid(exc, "price_history") from exc


def parse_histories(
    raw: Optional[Mapping[str, "PriceSeries | Sequence[Any]"]],
) -> Dict[str, PriceSeries]:
    """Normalise a symbol -> history mapping into PriceSeries objects."""
    if not raw:
        return {}
    return {
        str(symbol).upper(): PriceSeries.from_raw(str(symbol), series)
        for symbol, series in raw.items()
    }


__all__ = [
    "Holding",
    "CorrelationMatrix",
    "Portfolio",
    "PriceBar",
    "PriceSeries",
    "parse_histories",
]
