# src/alertmon/alerts/notifiers.py
from __future__ import annotations

from typing import Callable, Optional

import structlog

from alertmon.alerts.formatting import PUSH_TITLE, format_push_body
from alertmon.alerts.interfaces import PermissionGate, PlatformNotifier
from alertmon.alerts.state import CheckerState
from alertmon.utils.types import Trigger

log = structlog.get_logger("notifier")

NotificationCallback = Callable[[Trigger], None]


class ConsoleNotifier:
    """Prints triggers; usable directly as an `on_notification` callback."""
    def __init__(self, format_fn: Optional[Callable[[Trigger], str]] = None):
        self._format_fn = format_fn

    def __call__(self, trigger: Trigger) -> None:
        if self._format_fn:
            try:
                print(self._format_fn(trigger), flush=True)
                return
            except Exception as e:
                log.warning("console_format_failed", err=str(e))
        # fallback (raw)
        print(f"[ALERT] {trigger.alert_id} market={trigger.market_id} "
              f"target={trigger.target_price} price={trigger.current_price}", flush=True)


class NotificationDispatcher:
    """
    Fans a fired Trigger out to the caller callback and, when enabled, the
    platform push channel. Every step is best-effort: failures are logged and
    swallowed, and the trigger is never re-queued.
    """
    def __init__(
        self,
        state: CheckerState,
        *,
        on_notification: Optional[NotificationCallback] = None,
        enable_push: bool = False,
        permission: Optional[PermissionGate] = None,
        platform: Optional[PlatformNotifier] = None,
    ):
        self._state = state
        self.on_notification = on_notification
        self.enable_push = enable_push and permission is not None and platform is not None
        self.permission = permission
        self.platform = platform
        self._permission_requested = False

    @property
    def permission_requested(self) -> bool:
        return self._permission_requested

    async def ensure_permission(self) -> None:
        """Ask for push permission at most once per dispatcher lifetime."""
        if not self.enable_push or self._permission_requested:
            return
        assert self.permission is not None
        try:
            if self.permission.status() != "default":
                return
            self._permission_requested = True
            result = await self.permission.request()
        except Exception as e:
            log.warning("notification_permission_request_failed", err=str(e))
            return
        if result != "granted":
            log.warning("notification_permission_denied", result=result)

    def dispatch(self, trigger: Trigger) -> None:
        if self.on_notification is not None:
            try:
                self.on_notification(trigger)
            except Exception as e:
                log.warning("notification_callback_failed", alert_id=trigger.alert_id, err=str(e))

        if self.enable_push:
            self._push(trigger)

        self._state.triggered_count += 1

    def _push(self, trigger: Trigger) -> None:
        assert self.permission is not None and self.platform is not None
        try:
            if self.permission.status() != "granted":
                return
            self.platform.show(
                PUSH_TITLE,
                format_push_body(trigger),
                tag=trigger.alert_id,
                require_interaction=True,
            )
        except Exception as e:
            log.warning("push_notification_failed", alert_id=trigger.alert_id, err=str(e))
