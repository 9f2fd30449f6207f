from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Deque, Dict, Iterable, Iterator, List, Optional

from loguru import logger

from quantengine.core.exceptions import InvalidParameterError
from quantengine.settings import get_risk_settings

SEVERITY_ORDER = {"LOW": 0, "MEDIUM": 1, "HIGH": 2, "CRITICAL": 3}

CONCENTRATION = "CONCENTRATION"
PORTFOLIO_VOLATILITY = "PORTFOLIO_VOLATILITY"
CORRELATION = "CORRELATION"


@dataclass(frozen=True)
class RiskAlert:
    kind: str
    severity: str
    message: str
    symbol: Optional[str] = None
    value: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AlertHistory:
    """
    Bounded, caller-owned ring buffer of alerts.

    The analytics core never keeps alert state between calls; a caller that
    wants a rolling history creates one of these and feeds reports into it.
    Once ``capacity`` is reached the oldest alerts are dropped first; the
    default capacity is ``RiskSettings.alert_history_size``.
    """

    def __init__(self, capacity: Optional[int] = None) -> None:
        if capacity is None:
            capacity = get_risk_settings().alert_history_size
        if capacity <= 0:
            raise InvalidParameterError(
                "alert history capacity must be positive", field="capacity"
            )
        self.capacity = int(capacity)
        self._buffer: Deque[RiskAlert] = deque(maxlen=self.capacity)

    def record(self, alerts: Iterable[RiskAlert]) -> int:
        added = 0
        for alert in alerts:
            self._buffer.append(alert)
            added += 1
        if added:
            logger.debug(
                "[alerts] recorded {} alert(s); buffer {}/{}",
                added,
                len(self._buffer),
                self.capacity,
            )
        return added

    def recent(self, limit: Optional[int] = None) -> List[RiskAlert]:
        """Newest-last slice of the buffer."""
        items = list(self._buffer)
        if limit is None:
            return items
        return items[-limit:] if limit > 0 else []

    def at_least(self, severity: str) -> List[RiskAlert]:
        floor = SEVERITY_ORDER.get(severity.upper())
        if floor is None:
            raise InvalidParameterError(
                f"unknown severity {severity!r}", field="severity"
            )
        return [a for a in self._buffer if SEVERITY_ORDER.get(a.severity, 0) >= floor]

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)

    def __iter__(self) -> Iterator[RiskAlert]:
        return iter(list(self._buffer))


__all__ = [
    "RiskAlert",
    "AlertHistory",
    "SEVERITY_ORDER",
    "CONCENTRATION",
    "PORTFOLIO_VOLATILITY",
    "CORRELATION",
]
