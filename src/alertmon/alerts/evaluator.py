from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import List, Optional

import structlog

from alertmon.alerts.dedup import CooldownTracker
from alertmon.alerts.interfaces import AlertRepository
from alertmon.alerts.notifiers import NotificationDispatcher
from alertmon.utils.types import Trigger

log = structlog.get_logger("evaluator")


class AlertEvaluator:
    """
    One market, one price: evaluates that market's active alerts.

    Inputs:
      - repo:       AlertRepository (condition checks + triggered flag live there)
      - cooldowns:  CooldownTracker shared by every entry point into the checker
      - dispatcher: NotificationDispatcher for fired triggers

    A repository error on a single alert is logged and skipped; an error
    listing the market's alerts propagates to the caller.
    """
    def __init__(
        self,
        repo: AlertRepository,
        cooldowns: CooldownTracker,
        dispatcher: NotificationDispatcher,
    ):
        self.repo = repo
        self.cooldowns = cooldowns
        self.dispatcher = dispatcher

    async def evaluate_market(
        self,
        market_id: str,
        current_price: float,
        token: Optional[asyncio.Event] = None,
        question: Optional[str] = None,
    ) -> List[Trigger]:
        fired: List[Trigger] = []
        alerts = await self.repo.get_active_alerts(market_id)
        for alert in alerts:
            if token is not None and token.is_set():
                log.debug("evaluation_cancelled", market_id=market_id)
                break
            if alert.triggered:
                continue
            if self.cooldowns.is_in_cooldown(alert.id):
                log.debug("alert_in_cooldown", alert_id=alert.id)
                continue
            try:
                trigger = await self.repo.check_and_trigger(alert.id, current_price)
            except Exception as e:
                log.warning("alert_evaluation_failed", alert_id=alert.id, market_id=market_id, err=str(e))
                continue
            if trigger is None:
                continue
            if token is not None and token.is_set():
                log.info("trigger_dropped_after_stop", alert_id=alert.id, market_id=market_id)
                break
            # re-check: a concurrent pass may have fired this alert while we awaited
            if self.cooldowns.is_in_cooldown(alert.id):
                continue
            # cooldown first, so a failing channel can never cause a second fire
            self.cooldowns.record_trigger(alert.id)
            if trigger.market_question is None and question:
                trigger = replace(trigger, market_question=question)
            log.info(
                "alert_triggered",
                alert_id=trigger.alert_id,
                market_id=market_id,
                target=trigger.target_price,
                price=trigger.current_price,
            )
            self.dispatcher.dispatch(trigger)
            fired.append(trigger)
        return fired
