from __future__ import annotations

import asyncio
import contextlib
from typing import Callable, Optional

import structlog

from alertmon.alerts.dedup import CooldownTracker
from alertmon.alerts.evaluator import AlertEvaluator
from alertmon.alerts.interfaces import (
    AlertRepository,
    MarketDataProvider,
    PermissionGate,
    PlatformNotifier,
    PriceFeed,
    Subscription,
)
from alertmon.alerts.notifiers import NotificationDispatcher
from alertmon.alerts.retry import RetryController
from alertmon.alerts.state import CheckerState
from alertmon.alerts.visibility import VisibilityGate
from alertmon.config import CheckerConfig
from alertmon.utils.time import ms_to_s, utc_now_ms

log = structlog.get_logger("alert_checker")


class AlertChecker:
    """
    Periodic + push price-alert checker.

    Lifecycle:
      - start(): one immediate full pass, then a repeating timer every interval_ms
      - optional PriceFeed: each pushed price evaluates that one market at once
      - failed full passes go to the RetryController (bounded extra passes)
      - stop(): sets the cancellation token, cancels timer/retry, unsubscribes

    Timer ticks and pushed prices are two independent entry points into the
    same evaluator; the shared CooldownTracker keeps them from double-firing.

    Usage:
        checker = AlertChecker(repo, market_data, CheckerConfig(markets=["m1"]))
        await checker.start()
        ...
        await checker.stop()
    """

    def __init__(
        self,
        repo: AlertRepository,
        market_data: MarketDataProvider,
        cfg: Optional[CheckerConfig] = None,
        *,
        price_feed: Optional[PriceFeed] = None,
        permission: Optional[PermissionGate] = None,
        platform: Optional[PlatformNotifier] = None,
        visibility: Optional[VisibilityGate] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.cfg = cfg or CheckerConfig()
        self.repo = repo
        self.market_data = market_data
        self.price_feed = price_feed
        self.visibility = visibility or VisibilityGate()
        self._clock = clock or utc_now_ms

        self._state = CheckerState()
        self._allow: Optional[frozenset[str]] = (
            frozenset(self.cfg.markets) if self.cfg.markets is not None else None
        )

        self.cooldowns = CooldownTracker(self.cfg.trigger_cooldown_ms, clock=self._clock)
        self.retry = RetryController(
            self.cfg.max_retries,
            self.cfg.retry_delay_ms,
            backoff=self.cfg.retry_backoff,
            max_delay_ms=self.cfg.retry_max_delay_ms,
            jitter=self.cfg.retry_jitter,
        )
        self.dispatcher = NotificationDispatcher(
            self._state,
            on_notification=self.cfg.on_notification,
            enable_push=self.cfg.enable_push,
            permission=permission,
            platform=platform,
        )
        if self.cfg.enable_push and not self.dispatcher.enable_push:
            log.warning("push_disabled_missing_channel")
        self.evaluator = AlertEvaluator(repo, self.cooldowns, self.dispatcher)

        self._token: Optional[asyncio.Event] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._perm_task: Optional[asyncio.Task] = None
        self._subscription: Optional[Subscription] = None
        # market_id -> question, as last reported by the market data provider
        self._questions: dict[str, str] = {}

        # ask for push permission up front; without a running loop this waits for start()
        if self.dispatcher.enable_push:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._perm_task = loop.create_task(
                    self.dispatcher.ensure_permission(), name="alert-checker-permission"
                )

    # ---------------------------- public API ---------------------------- #

    @property
    def state(self) -> CheckerState:
        """Read-only snapshot; mutating it does not affect the checker."""
        return self._state.snapshot()

    @property
    def is_monitoring(self) -> bool:
        return self._state.is_monitoring

    def set_visible(self, visible: bool) -> None:
        self.visibility.set_visible(visible)

    async def start(self) -> None:
        if self._state.is_monitoring:
            return
        self._state.is_monitoring = True
        token = asyncio.Event()
        self._token = token
        log.info(
            "monitoring_started",
            interval_ms=self.cfg.interval_ms,
            markets=len(self._allow) if self._allow is not None else "all",
            push=self.dispatcher.enable_push,
        )

        if self.dispatcher.enable_push and self._perm_task is None:
            self._perm_task = asyncio.create_task(
                self.dispatcher.ensure_permission(), name="alert-checker-permission"
            )

        if self.price_feed is not None:
            try:
                sub = await self.price_feed.subscribe(self.on_price_update)
            except Exception as e:
                log.warning("price_feed_subscribe_failed", err=str(e))
            else:
                if token.is_set():
                    # stop() ran while we were subscribing; it could not see this handle
                    await self._release(sub)
                    return
                self._subscription = sub

        if token.is_set():
            return
        await self._scheduled_pass(token)
        if token.is_set():
            # stopped during the initial pass
            return
        self._timer_task = asyncio.create_task(self._timer_loop(token), name="alert-checker-timer")

    async def stop(self) -> None:
        if self._token is not None:
            self._token.set()
        was_monitoring = self._state.is_monitoring
        self._state.is_monitoring = False

        tasks = [t for t in (self._timer_task, self._retry_task) if t is not None]
        self._timer_task = None
        self._retry_task = None
        current = asyncio.current_task()
        for t in tasks:
            if t is current or t.done():
                continue
            t.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await t

        sub, self._subscription = self._subscription, None
        if sub is not None:
            await self._release(sub)

        if was_monitoring:
            log.info("monitoring_stopped", triggered=self._state.triggered_count)

    async def _release(self, sub: Subscription) -> None:
        try:
            await sub.unsubscribe()
        except Exception as e:
            log.warning("price_feed_unsubscribe_failed", err=str(e))

    async def check_now(self) -> bool:
        """Full pass right now, ignoring the timer and the visibility gate."""
        token = self._token
        if token is None or token.is_set():
            token = asyncio.Event()
        return await self._full_pass(token)

    def clear_cooldowns(self) -> None:
        self.cooldowns.clear()
        log.info("cooldowns_cleared")

    async def on_price_update(self, market_id: str, price: Optional[float]) -> None:
        """Push entry point: evaluate one market immediately (cooldown still applies)."""
        token = self._token
        if not self._state.is_monitoring or token is None or token.is_set():
            return
        if price is None:
            return
        if self._allow is not None and market_id not in self._allow:
            return
        try:
            await self.evaluator.evaluate_market(
                market_id, price, token, question=self._questions.get(market_id)
            )
        except Exception as e:
            self._state.error = str(e) or "Failed to check alerts"
            log.warning("price_update_check_failed", market_id=market_id, err=str(e))

    # --------------------------- core internals ------------------------- #

    async def _timer_loop(self, token: asyncio.Event) -> None:
        interval_s = ms_to_s(self.cfg.interval_ms)
        try:
            while not token.is_set():
                await asyncio.sleep(interval_s)
                if token.is_set():
                    break
                await self._scheduled_pass(token)
        except asyncio.CancelledError:
            return

    async def _scheduled_pass(self, token: asyncio.Event) -> None:
        if self.visibility.should_skip(self.cfg.enable_background):
            log.debug("tick_skipped_hidden")
            return
        await self._full_pass(token)

    async def _full_pass(self, token: asyncio.Event) -> bool:
        try:
            markets = await self.market_data.list_markets()
            for m in markets:
                if token.is_set():
                    break
                if self._allow is not None and m.market_id not in self._allow:
                    continue
                if m.question:
                    self._questions[m.market_id] = m.question
                if m.current_price is None:
                    continue
                await self.evaluator.evaluate_market(
                    m.market_id, m.current_price, token, question=m.question
                )
        except Exception as e:
            msg = str(e) or "Failed to check alerts"
            self._state.error = msg
            delay_ms = self.retry.record_failure()
            log.warning(
                "alert_check_failed",
                err=msg,
                failures=self.retry.failures,
                max_retries=self.retry.max_retries,
            )
            if delay_ms is not None and self._state.is_monitoring and not token.is_set():
                self._schedule_retry(delay_ms, token)
            return False

        if token.is_set():
            # stopped mid-pass: not a completed check
            return False
        self._state.last_check_at = self._clock()
        self._state.error = None
        self.retry.record_success()
        return True

    def _schedule_retry(self, delay_ms: float, token: asyncio.Event) -> None:
        pending = self._retry_task
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            # one pending retry at a time
            return
        log.info(
            "retry_scheduled",
            attempt=self.retry.failures,
            max_retries=self.retry.max_retries,
            delay_ms=round(delay_ms, 1),
        )
        self._retry_task = asyncio.create_task(
            self._retry_after(delay_ms, token), name="alert-checker-retry"
        )

    async def _retry_after(self, delay_ms: float, token: asyncio.Event) -> None:
        try:
            await asyncio.sleep(ms_to_s(delay_ms))
            if token.is_set():
                return
            # handle stays set during the pass so stop() can cancel it
            await self._full_pass(token)
        except asyncio.CancelledError:
            return
        finally:
            if self._retry_task is asyncio.current_task():
                self._retry_task = None
