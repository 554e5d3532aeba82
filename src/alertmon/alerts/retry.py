from __future__ import annotations

from typing import Optional

import structlog

from alertmon.alerts.state import RetryPhase, RetryState
from alertmon.utils.backoff import retry_delay_ms

log = structlog.get_logger("retry")

class RetryController:
    """
    Bounded retry budget for failed full passes.

      idle      -> no failures since the last successful pass
      retrying  -> failures < max_retries; one retry is scheduled per failure
      exhausted -> failures >= max_retries; nothing self-schedules until a
                   regular tick (or a manual check) runs again

    A success from any phase returns to idle.
    """
    def __init__(
        self,
        max_retries: int = 3,
        retry_delay_ms: float = 10_000,
        *,
        backoff: float = 1.0,
        max_delay_ms: Optional[float] = None,
        jitter: float = 0.0,
    ):
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.backoff = backoff
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter
        self._st = RetryState()

    @property
    def phase(self) -> RetryPhase:
        return self._st.phase

    @property
    def failures(self) -> int:
        return self._st.failures

    @property
    def exhausted(self) -> bool:
        return self._st.phase == "exhausted"

    def record_success(self) -> None:
        if self._st.failures:
            log.info("retry_reset", after_failures=self._st.failures)
        self._st.failures = 0
        self._st.phase = "idle"

    def record_failure(self) -> Optional[float]:
        """
        Count a failed pass. Returns the delay (ms) before a single retry,
        or None when the budget is spent.
        """
        self._st.failures += 1
        n = self._st.failures
        if n < self.max_retries:
            self._st.phase = "retrying"
            return retry_delay_ms(
                n,
                self.retry_delay_ms,
                factor=self.backoff,
                cap_ms=self.max_delay_ms,
                jitter_ratio=self.jitter,
            )
        if self._st.phase != "exhausted":
            log.warning("retry_exhausted", failures=n, max_retries=self.max_retries)
        self._st.phase = "exhausted"
        return None
