from __future__ import annotations

from typing import Callable, Optional

from alertmon.utils.time import utc_now_ms

class CooldownTracker:
    """
    Per-alert trigger cooldown. Maps alert_id -> last trigger time (epoch ms).
    Entries expire lazily on read; there is no eviction task.
    """
    def __init__(
        self,
        cooldown_ms: float,
        max_size: int = 10_000,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.cooldown_ms = cooldown_ms
        self.max_size = max_size
        self._clock = clock or utc_now_ms
        self._store: dict[str, float] = {}  # alert_id -> last_trigger_ms

    def _now(self) -> float:
        return self._clock()

    def is_in_cooldown(self, alert_id: str) -> bool:
        last = self._store.get(alert_id)
        if last is None:
            return False
        if self._now() - last < self.cooldown_ms:
            return True
        # expired; cleanup
        self._store.pop(alert_id, None)
        return False

    def record_trigger(self, alert_id: str) -> None:
        # opportunistic cleanup when large
        if len(self._store) > self.max_size:
            now = self._now()
            for k, last in list(self._store.items()):
                if now - last >= self.cooldown_ms:
                    self._store.pop(k, None)
        self._store[alert_id] = self._now()

    def last_trigger(self, alert_id: str) -> Optional[float]:
        return self._store.get(alert_id)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)
