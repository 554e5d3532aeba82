from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Any, Optional

@dataclass(slots=True)
class QueueStats:
    enq_ok: int = 0
    enq_drop: int = 0
    enq_collapsed: int = 0
    deq_ok: int = 0

class NotifyQueue:
    """
    Bounded, non-blocking queue wrapper for notifications.
    - try_put(item, tag) drops on full and increments a counter
    - an item whose tag is already pending is collapsed (dropped)
    - get() awaits like a normal queue
    """
    def __init__(self, maxsize: int = 2000):
        self._q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._pending_tags: set[str] = set()
        self.stats = QueueStats()

    def try_put(self, item: Any, tag: Optional[str] = None) -> bool:
        if tag is not None and tag in self._pending_tags:
            self.stats.enq_collapsed += 1
            return False
        try:
            self._q.put_nowait((tag, item))
        except asyncio.QueueFull:
            self.stats.enq_drop += 1
            return False
        if tag is not None:
            self._pending_tags.add(tag)
        self.stats.enq_ok += 1
        return True

    async def get(self) -> Any:
        tag, item = await self._q.get()
        if tag is not None:
            self._pending_tags.discard(tag)
        self.stats.deq_ok += 1
        return item

    def qsize(self) -> int:
        return self._q.qsize()
