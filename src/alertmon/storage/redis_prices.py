# src/alertmon/storage/redis_prices.py
from __future__ import annotations

import asyncio
import json
from typing import List, Optional, Tuple

import structlog
from redis.asyncio import Redis

from alertmon.alerts.interfaces import PriceHandler
from alertmon.utils.types import MarketPriceSample

log = structlog.get_logger("redis_prices")

PRICES_KEY = "alerts:prices"          # hash market_id -> price
QUESTIONS_KEY = "alerts:questions"    # hash market_id -> market question
UPDATES_CHANNEL = "alerts:price_updates"


def _s(v) -> str:
    return v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)


def parse_price_message(data) -> Optional[Tuple[str, Optional[float]]]:
    """
    Pub/sub payload -> (market_id, price). Payload: {"market_id": "...", "price": 0.71}
    price may be null. Returns None for malformed payloads.
    """
    try:
        obj = json.loads(_s(data))
        market_id = str(obj["market_id"])
        px = obj.get("price")
        return market_id, (float(px) if px is not None else None)
    except (ValueError, KeyError, TypeError):
        return None


async def publish_price(
    r: Redis,
    market_id: str,
    price: float,
    *,
    prices_key: str = PRICES_KEY,
    channel: str = UPDATES_CHANNEL,
) -> None:
    """Write the current price and notify push subscribers."""
    await r.hset(prices_key, market_id, price)
    await r.publish(channel, json.dumps({"market_id": market_id, "price": price}))


class RedisMarketData:
    """MarketDataProvider over two Redis hashes (prices + questions)."""
    def __init__(self, r: Redis, prices_key: str = PRICES_KEY, questions_key: str = QUESTIONS_KEY):
        self.r = r
        self.prices_key = prices_key
        self.questions_key = questions_key

    async def list_markets(self) -> List[MarketPriceSample]:
        prices = await self.r.hgetall(self.prices_key) or {}
        questions = await self.r.hgetall(self.questions_key) or {}
        qmap = {_s(k): _s(v) for k, v in questions.items()}
        out: List[MarketPriceSample] = []
        for k, v in prices.items():
            mid = _s(k)
            raw = _s(v)
            try:
                px: Optional[float] = float(raw) if raw not in ("", "null") else None
            except ValueError:
                # unparseable price counts as "no fresh price"
                log.debug("bad_price_value", market_id=mid, value=raw)
                px = None
            out.append(MarketPriceSample(mid, px, qmap.get(mid)))
        return out


class RedisSubscription:
    def __init__(self, pubsub, channel: str, task: asyncio.Task):
        self._pubsub = pubsub
        self._channel = channel
        self._task: Optional[asyncio.Task] = task

    async def unsubscribe(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except Exception as e:
            log.warning("redis_unsubscribe_failed", err=str(e))


class RedisPriceFeed:
    """PriceFeed over a Redis pub/sub channel of JSON price updates."""
    def __init__(self, r: Redis, channel: str = UPDATES_CHANNEL, poll_timeout_s: float = 1.0):
        self.r = r
        self.channel = channel
        self.poll_timeout_s = poll_timeout_s

    async def subscribe(self, handler: PriceHandler) -> RedisSubscription:
        pubsub = self.r.pubsub()
        await pubsub.subscribe(self.channel)
        task = asyncio.create_task(self._reader_loop(pubsub, handler), name="redis-price-feed")
        log.info("price_feed_subscribed", channel=self.channel)
        return RedisSubscription(pubsub, self.channel, task)

    async def _reader_loop(self, pubsub, handler: PriceHandler) -> None:
        try:
            while True:
                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=self.poll_timeout_s)
                if msg is None:
                    continue
                update = parse_price_message(msg.get("data"))
                if update is None:
                    log.debug("bad_price_message", data=_s(msg.get("data")))
                    continue
                try:
                    await handler(*update)
                except Exception as e:
                    log.warning("price_handler_failed", market_id=update[0], err=str(e))
        except asyncio.CancelledError:
            return
