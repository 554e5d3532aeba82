from __future__ import annotations

import random
from typing import Optional

def next_backoff(prev: float, cap: float, factor: float = 2.0) -> float:
    """Exponential backoff progression with cap (no jitter)."""
    return min(prev * factor, cap)

def jitter(v: float, *, ratio: float = 0.2) -> float:
    """
    Add ±ratio jitter. ratio=0.2 -> multiply by [0.8, 1.2].
    """
    if ratio <= 0.0:
        return v
    lo = 1.0 - ratio
    hi = 1.0 + ratio
    return v * (lo + (hi - lo) * random.random())

def retry_delay_ms(
    attempt: int,
    base_ms: float,
    *,
    factor: float = 1.0,
    cap_ms: Optional[float] = None,
    jitter_ratio: float = 0.0,
) -> float:
    """
    Delay before retry number `attempt` (1-based).
    factor=1.0 keeps a fixed delay; factor=2.0 doubles per attempt up to cap_ms.
    """
    cap = cap_ms if cap_ms is not None else float("inf")
    v = min(float(base_ms), cap)
    for _ in range(max(0, attempt - 1)):
        v = next_backoff(v, cap, factor)
    return jitter(v, ratio=jitter_ratio)
