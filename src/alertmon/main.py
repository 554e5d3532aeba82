# src/alertmon/main.py
import asyncio
import os

import structlog
from dotenv import load_dotenv
from redis.asyncio import Redis

from alertmon.alerts.checker import AlertChecker
from alertmon.alerts.formatting import format_trigger_pretty
from alertmon.alerts.notifiers import ConsoleNotifier
from alertmon.alerts.permissions import StaticPermission
from alertmon.config import config_from_env
from alertmon.data.alert_store import InMemoryAlertRepository
from alertmon.notify.telegram import TelegramNotifier, config_from_env as telegram_config_from_env
from alertmon.storage.redis_prices import RedisMarketData, RedisPriceFeed

load_dotenv()
log = structlog.get_logger()


async def main():
    tz_name = os.getenv("ALERT_TZ", "America/Chicago")
    console = ConsoleNotifier(format_fn=lambda t: format_trigger_pretty(t, tz_name))
    cfg = config_from_env(on_notification=console)

    # Alerts
    alerts_file = os.getenv("ALERTS_FILE", "alerts.json")
    if os.path.exists(alerts_file):
        repo = InMemoryAlertRepository.from_json_file(alerts_file)
    else:
        log.warning("alerts_file_missing", path=alerts_file)
        repo = InMemoryAlertRepository()

    # Prices (polled hash + pub/sub push)
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    redis_client = Redis.from_url(REDIS_URL)
    market_data = RedisMarketData(redis_client)
    price_feed = RedisPriceFeed(redis_client) if os.getenv("ALERT_PUSH_FEED", "1").lower() in ("1", "true", "yes") else None

    # Optional Telegram push channel (built from env). If not configured, we skip it.
    tg_notifier = None
    if cfg.enable_push:
        try:
            tg_notifier = TelegramNotifier(telegram_config_from_env())
            log.info("telegram_enabled")
        except KeyError:
            log.info("telegram_disabled_missing_env")

    checker = AlertChecker(
        repo,
        market_data,
        cfg,
        price_feed=price_feed,
        permission=StaticPermission("granted") if tg_notifier is not None else None,
        platform=tg_notifier,
    )

    try:
        if tg_notifier is not None:
            await tg_notifier.start()
        await checker.start()
        # run until cancelled
        await asyncio.Event().wait()
    finally:
        await checker.stop()
        if tg_notifier is not None:
            await tg_notifier.stop()
        await redis_client.aclose()


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
