from __future__ import annotations

import json
import uuid
from dataclasses import asdict, replace
from pathlib import Path
from typing import Callable, List, Optional

import structlog

from alertmon.alerts.rules import is_condition_met
from alertmon.utils.time import utc_now_ms
from alertmon.utils.types import Alert, AlertCondition, Trigger

log = structlog.get_logger("alert_store")


class InMemoryAlertRepository:
    """
    Process-local alert store. Evaluates conditions and flips `triggered` on
    the first fire, so a fired alert drops out of get_active_alerts() until it
    is dismissed (re-armed).
    """
    def __init__(self, alerts: Optional[List[Alert]] = None, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or utc_now_ms
        self._alerts: dict[str, Alert] = {}
        self.trigger_history: List[Trigger] = []
        for a in alerts or []:
            self._alerts[a.id] = a

    # ---- management ----

    def add_alert(
        self,
        market_id: str,
        target_price: float,
        condition: AlertCondition = "above",
        market_question: Optional[str] = None,
        alert_id: Optional[str] = None,
    ) -> str:
        if not 0.0 <= target_price <= 1.0:
            raise ValueError(f"target_price must be within [0, 1], got {target_price}")
        aid = alert_id or f"alert-{uuid.uuid4().hex[:12]}"
        self._alerts[aid] = Alert(
            id=aid,
            market_id=market_id,
            target_price=target_price,
            condition=condition,
            market_question=market_question,
        )
        return aid

    def remove_alert(self, alert_id: str) -> bool:
        return self._alerts.pop(alert_id, None) is not None

    def dismiss(self, alert_id: str) -> None:
        """Re-arm a triggered alert."""
        a = self._alerts.get(alert_id)
        if a is not None:
            a.triggered = False
            a.triggered_at = None

    def get(self, alert_id: str) -> Optional[Alert]:
        a = self._alerts.get(alert_id)
        return replace(a) if a is not None else None

    def all(self) -> List[Alert]:
        return [replace(a) for a in self._alerts.values()]

    # ---- AlertRepository ----

    async def get_active_alerts(self, market_id: str) -> List[Alert]:
        return [replace(a) for a in self._alerts.values() if a.market_id == market_id and not a.triggered]

    async def check_and_trigger(self, alert_id: str, current_price: float) -> Optional[Trigger]:
        a = self._alerts.get(alert_id)
        if a is None or a.triggered:
            return None
        if not is_condition_met(a.condition, a.target_price, current_price):
            return None
        now = self._clock()
        a.triggered = True
        a.triggered_at = now
        trigger = Trigger(
            alert_id=a.id,
            market_id=a.market_id,
            target_price=a.target_price,
            current_price=current_price,
            triggered_at=now,
            condition=a.condition,
            market_question=a.market_question,
        )
        self.trigger_history.append(trigger)
        return trigger

    # ---- persistence ----

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryAlertRepository":
        """
        [{"id": "...", "market_id": "...", "target_price": 0.7,
          "condition": "above", "market_question": "..."}, ...]
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        alerts = [
            Alert(
                id=str(item["id"]),
                market_id=str(item["market_id"]),
                target_price=float(item["target_price"]),
                triggered=bool(item.get("triggered", False)),
                condition=item.get("condition", "above"),
                market_question=item.get("market_question"),
            )
            for item in raw
        ]
        log.info("alerts_loaded", path=str(path), count=len(alerts))
        return cls(alerts)

    def to_json(self) -> str:
        return json.dumps([asdict(a) for a in self._alerts.values()], indent=2)
