from __future__ import annotations

from typing import Awaitable, Callable, List, Optional, Protocol

from alertmon.utils.types import Alert, MarketPriceSample, PermissionStatus, Trigger

PriceHandler = Callable[[str, Optional[float]], Awaitable[None]]


class AlertRepository(Protocol):
    async def get_active_alerts(self, market_id: str) -> List[Alert]: ...

    async def check_and_trigger(self, alert_id: str, current_price: float) -> Optional[Trigger]: ...


class MarketDataProvider(Protocol):
    async def list_markets(self) -> List[MarketPriceSample]: ...


class Subscription(Protocol):
    async def unsubscribe(self) -> None: ...


class PriceFeed(Protocol):
    async def subscribe(self, handler: PriceHandler) -> Subscription: ...


class PermissionGate(Protocol):
    def status(self) -> PermissionStatus: ...

    async def request(self) -> PermissionStatus: ...


class PlatformNotifier(Protocol):
    def show(self, title: str, body: str, *, tag: str, require_interaction: bool = True) -> None: ...
