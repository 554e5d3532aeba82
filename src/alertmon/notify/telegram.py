from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from alertmon.notify.queue import NotifyQueue
from alertmon.utils.backoff import jitter, next_backoff

log = structlog.get_logger("telegram")

# --------- small rate limiter (token bucket) ----------

class RateLimiter:
    def __init__(self, rate_per_sec: float, burst: int = 1):
        self.rate = float(rate_per_sec)
        self.capacity = int(burst)
        self.tokens = float(burst)
        self.updated: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self):
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            if self.updated is None:
                self.updated = now
            # refill
            self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
            self.updated = now
            # wait if no token
            if self.tokens < 1.0:
                needed = 1.0 - self.tokens
                await asyncio.sleep(needed / self.rate)
                self.updated = loop.time()
                self.tokens = 1.0
            self.tokens -= 1.0

# --------- config & client ----------

@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    chat_id: str                # personal chat id or group id
    parse_mode: Optional[str] = None  # "HTML" or "MarkdownV2" or None
    timeout_s: float = 8.0
    per_chat_rate_per_sec: float = 1.0
    per_chat_burst: int = 3
    max_retries: int = 5
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0
    api_base: str = "https://api.telegram.org"

def config_from_env() -> TelegramConfig:
    """Raises KeyError when TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID are missing."""
    return TelegramConfig(
        bot_token=os.environ["TELEGRAM_BOT_TOKEN"],
        chat_id=os.environ["TELEGRAM_CHAT_ID"],
        parse_mode=os.getenv("TELEGRAM_PARSE_MODE") or None,
    )

class TelegramNotifier:
    """
    Platform push channel backed by a Telegram chat.

    show() only enqueues (fire-and-forget); a background worker drains the
    queue and sends with rate limiting and retry w/ backoff. Pending messages
    with the same tag are collapsed into one.
    """
    def __init__(self, cfg: TelegramConfig, queue: Optional[NotifyQueue] = None):
        self.cfg = cfg
        self.q = queue or NotifyQueue(maxsize=2000)
        self._session: Optional[aiohttp.ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._rl = RateLimiter(rate_per_sec=cfg.per_chat_rate_per_sec, burst=cfg.per_chat_burst)

    # ---- PlatformNotifier ----

    def show(self, title: str, body: str, *, tag: str, require_interaction: bool = True) -> None:
        if not self.q.try_put(f"{title}\n{body}", tag=tag):
            log.debug("telegram_enqueue_skipped", tag=tag)

    # ---- worker ----

    async def start(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="telegram-notifier")

    async def stop(self):
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session:
            await self._session.close()
            self._session = None

    async def _loop(self):
        try:
            while not self._stop.is_set():
                text = await self.q.get()
                await self._rl.acquire()
                await self.send(text)
        except asyncio.CancelledError:
            return

    async def send(self, text: str) -> bool:
        assert self._session is not None
        url = f"{self.cfg.api_base}/bot{self.cfg.bot_token}/sendMessage"
        payload = {"chat_id": self.cfg.chat_id, "text": text}
        if self.cfg.parse_mode:
            payload["parse_mode"] = self.cfg.parse_mode

        backoff = self.cfg.initial_backoff_s
        for attempt in range(1, self.cfg.max_retries + 1):
            try:
                async with self._session.post(url, data=payload) as resp:
                    if resp.status == 200:
                        return True
                    # 429 or 5xx → retry with backoff
                    detail = await _maybe_text(resp)
                    log.warning("telegram_send_failed", status=resp.status, body=detail, attempt=attempt)
                    if resp.status == 429:
                        # Telegram may include retry_after (seconds)
                        try:
                            data = await resp.json()
                            ra = data.get("parameters", {}).get("retry_after")
                        except Exception:
                            ra = None
                        if ra:
                            await asyncio.sleep(float(ra))
                            continue
                    if 500 <= resp.status < 600 or resp.status == 429:
                        await asyncio.sleep(jitter(backoff))
                        backoff = next_backoff(backoff, self.cfg.max_backoff_s)
                        continue
                    # other 4xx: don't retry
                    return False
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", err=str(e), attempt=attempt)
                await asyncio.sleep(jitter(backoff))
                backoff = next_backoff(backoff, self.cfg.max_backoff_s)
        log.error("telegram_give_up_after_retries")
        return False

async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except Exception:
        return "<no body>"
