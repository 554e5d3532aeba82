from __future__ import annotations

from typing import List, Optional

import structlog

from alertmon.alerts.interfaces import PriceHandler
from alertmon.utils.types import MarketPriceSample

log = structlog.get_logger("market_store")


class _HandlerSubscription:
    def __init__(self, owner: "InMemoryMarketData", handler: PriceHandler):
        self._owner = owner
        self._handler = handler

    async def unsubscribe(self) -> None:
        self._owner._remove(self._handler)


class InMemoryMarketData:
    """
    Current-price table that is both a MarketDataProvider (polled) and a
    PriceFeed (every update_price() is pushed to subscribers).
    """
    def __init__(self):
        self._markets: dict[str, MarketPriceSample] = {}
        self._handlers: list[PriceHandler] = []

    def set_market(self, market_id: str, price: Optional[float] = None, question: Optional[str] = None) -> None:
        self._markets[market_id] = MarketPriceSample(market_id, price, question)

    async def update_price(self, market_id: str, price: Optional[float]) -> None:
        m = self._markets.get(market_id)
        question = m.question if m is not None else None
        self._markets[market_id] = MarketPriceSample(market_id, price, question)
        for h in list(self._handlers):
            try:
                await h(market_id, price)
            except Exception as e:
                log.warning("price_handler_failed", market_id=market_id, err=str(e))

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    # ---- MarketDataProvider ----

    async def list_markets(self) -> List[MarketPriceSample]:
        return list(self._markets.values())

    # ---- PriceFeed ----

    async def subscribe(self, handler: PriceHandler) -> _HandlerSubscription:
        self._handlers.append(handler)
        return _HandlerSubscription(self, handler)

    def _remove(self, handler: PriceHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)
