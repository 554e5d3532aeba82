from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

# ---- repository-level primitives ----

AlertCondition = Literal["above", "below", "cross", "exact"]

@dataclass(slots=True)
class Alert:
    id: str
    market_id: str
    target_price: float            # 0..1 probability price
    triggered: bool = False
    condition: AlertCondition = "above"
    market_question: Optional[str] = None
    triggered_at: Optional[float] = None  # epoch ms

@dataclass(slots=True)
class MarketPriceSample:
    """
    One market as reported by the market data provider.
    current_price=None means no fresh price this tick.
    """
    market_id: str
    current_price: Optional[float] = None
    question: Optional[str] = None

# ---- alerting domain ----

@dataclass(frozen=True, slots=True)
class Trigger:
    alert_id: str
    market_id: str
    target_price: float
    current_price: float           # price observed when the alert fired
    triggered_at: float            # epoch ms
    condition: AlertCondition = "above"
    market_question: Optional[str] = None

PermissionStatus = Literal["granted", "denied", "default"]
