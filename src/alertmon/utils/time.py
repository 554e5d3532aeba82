from __future__ import annotations

import time

# --- wall-clock helpers (milliseconds, matching the checker's config units) ---

def utc_now_ms() -> float:
    """Unix epoch milliseconds (float)."""
    return time.time() * 1000.0

def ms_to_s(ms: float) -> float:
    return ms / 1000.0
