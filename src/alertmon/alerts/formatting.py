from __future__ import annotations
from datetime import datetime
from zoneinfo import ZoneInfo

from alertmon.utils.types import Trigger

PUSH_TITLE = "Price alert triggered"

_COND_TEXT = {
    "above": "rose above",
    "below": "fell below",
    "cross": "crossed",
    "exact": "hit",
}

def _fmt_ts(ts_ms: float, tz_name: str) -> str:
    tz = ZoneInfo(tz_name)
    return datetime.fromtimestamp(ts_ms / 1000.0, tz).strftime("%-I:%M:%S %Z")  # e.g., 11:28:30 CDT

def pct(price: float) -> str:
    """0.7 -> '70.0%'"""
    return f"{price * 100:.1f}%"

def format_push_body(trigger: Trigger) -> str:
    subject = trigger.market_question or "Market"
    return f"{subject} reached {pct(trigger.target_price)}"

def format_trigger_pretty(trigger: Trigger, tz_name: str = "America/Chicago") -> str:
    subject = trigger.market_question or trigger.market_id
    verb = _COND_TEXT.get(trigger.condition, "reached")
    return (
        f"[ALERT {trigger.alert_id}] {_fmt_ts(trigger.triggered_at, tz_name)}  "
        f"{subject} {verb} {pct(trigger.target_price)}  |  now {pct(trigger.current_price)}"
    )
