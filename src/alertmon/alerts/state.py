from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Literal, Optional

RetryPhase = Literal["idle", "retrying", "exhausted"]

@dataclass(slots=True)
class CheckerState:
    is_monitoring: bool = False
    triggered_count: int = 0
    last_check_at: Optional[float] = None   # epoch ms of last successful full pass
    error: Optional[str] = None

    def snapshot(self) -> "CheckerState":
        return replace(self)

# internal; never exposed through AlertChecker.state
@dataclass(slots=True)
class RetryState:
    failures: int = 0
    phase: RetryPhase = "idle"
