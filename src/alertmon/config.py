from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional

from alertmon.utils.types import Trigger

DEFAULT_INTERVAL_MS = 5_000
DEFAULT_COOLDOWN_MS = 5_000
MAX_RETRIES = 3
RETRY_DELAY_MS = 10_000


@dataclass(slots=True)
class CheckerConfig:
    interval_ms: float = DEFAULT_INTERVAL_MS
    enable_push: bool = False
    markets: Optional[list[str]] = None          # allow-list; None = all markets
    on_notification: Optional[Callable[[Trigger], None]] = None
    enable_background: bool = True
    trigger_cooldown_ms: float = DEFAULT_COOLDOWN_MS
    max_retries: int = MAX_RETRIES
    retry_delay_ms: float = RETRY_DELAY_MS
    # retry shaping; defaults keep a fixed retry_delay_ms
    retry_backoff: float = 1.0
    retry_max_delay_ms: Optional[float] = None
    retry_jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        if self.trigger_cooldown_ms < 0:
            raise ValueError("trigger_cooldown_ms must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_delay_ms < 0:
            raise ValueError("retry_delay_ms must be >= 0")
        if self.retry_backoff < 1.0:
            raise ValueError("retry_backoff must be >= 1.0")
        if not 0.0 <= self.retry_jitter < 1.0:
            raise ValueError("retry_jitter must be in [0, 1)")


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    return float(v) if v not in (None, "") else default


def config_from_env(on_notification: Optional[Callable[[Trigger], None]] = None) -> CheckerConfig:
    """
    ALERT_INTERVAL_MS, ALERT_ENABLE_PUSH, ALERT_MARKETS (comma list),
    ALERT_ENABLE_BACKGROUND, ALERT_COOLDOWN_MS, ALERT_MAX_RETRIES,
    ALERT_RETRY_DELAY_MS, ALERT_RETRY_BACKOFF, ALERT_RETRY_JITTER
    """
    markets_env = os.getenv("ALERT_MARKETS", "")
    markets = [m.strip() for m in markets_env.split(",") if m.strip()] or None
    max_delay = os.getenv("ALERT_RETRY_MAX_DELAY_MS")
    return CheckerConfig(
        interval_ms=_env_float("ALERT_INTERVAL_MS", DEFAULT_INTERVAL_MS),
        enable_push=_env_bool("ALERT_ENABLE_PUSH", False),
        markets=markets,
        on_notification=on_notification,
        enable_background=_env_bool("ALERT_ENABLE_BACKGROUND", True),
        trigger_cooldown_ms=_env_float("ALERT_COOLDOWN_MS", DEFAULT_COOLDOWN_MS),
        max_retries=int(_env_float("ALERT_MAX_RETRIES", MAX_RETRIES)),
        retry_delay_ms=_env_float("ALERT_RETRY_DELAY_MS", RETRY_DELAY_MS),
        retry_backoff=_env_float("ALERT_RETRY_BACKOFF", 1.0),
        retry_max_delay_ms=float(max_delay) if max_delay else None,
        retry_jitter=_env_float("ALERT_RETRY_JITTER", 0.0),
    )
