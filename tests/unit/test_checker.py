import asyncio
import pytest

from alertmon.alerts.checker import AlertChecker
from alertmon.config import CheckerConfig
from alertmon.data.alert_store import InMemoryAlertRepository
from alertmon.data.market_store import InMemoryMarketData
from alertmon.utils.types import MarketPriceSample
from tests.helpers.fakes import (
    FakeClock,
    FakePermission,
    FakePlatform,
    FlakyMarketData,
    RecurringAlertRepository,
    Recorder,
    SlowAlertRepository,
    SlowSubscribeMarketData,
)

# timer far in the future unless a test wants ticks
NO_TICKS_MS = 60_000


async def wait_until(pred, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if pred():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("Timed out waiting for condition")


def _market(price=0.71, mid="M"):
    md = InMemoryMarketData()
    md.set_market(mid, price, question="Will it happen?")
    return md


@pytest.mark.asyncio
async def test_initial_state():
    checker = AlertChecker(InMemoryAlertRepository(), InMemoryMarketData())
    st = checker.state
    assert (st.is_monitoring, st.triggered_count, st.last_check_at, st.error) == (False, 0, None, None)


@pytest.mark.asyncio
async def test_start_runs_immediate_pass_and_is_idempotent():
    repo = InMemoryAlertRepository()
    repo.add_alert("M", 0.70, alert_id="A")
    rec = Recorder()
    checker = AlertChecker(repo, _market(0.71), CheckerConfig(interval_ms=NO_TICKS_MS, on_notification=rec))

    await checker.start()
    first_check = checker.state.last_check_at
    assert checker.state.is_monitoring is True
    assert first_check is not None
    assert checker.state.triggered_count == 1

    await checker.start()  # no-op
    assert checker.state.last_check_at == first_check
    assert len(rec.triggers) == 1

    await checker.stop()
    assert checker.state.is_monitoring is False


@pytest.mark.asyncio
async def test_stop_is_safe_repeatedly_and_before_start():
    checker = AlertChecker(InMemoryAlertRepository(), InMemoryMarketData())
    await checker.stop()
    await checker.start()
    await checker.stop()
    await checker.stop()
    assert checker.state.is_monitoring is False


@pytest.mark.asyncio
async def test_timer_ticks_repeat():
    md = FlakyMarketData([MarketPriceSample("M", 0.5)])
    checker = AlertChecker(InMemoryAlertRepository(), md, CheckerConfig(interval_ms=20))
    await checker.start()
    await wait_until(lambda: md.calls >= 3)
    await checker.stop()


@pytest.mark.asyncio
async def test_stop_halts_triggering():
    repo = InMemoryAlertRepository()
    repo.add_alert("M", 0.70, alert_id="A")
    md = _market(0.50)
    rec = Recorder()
    checker = AlertChecker(repo, md, CheckerConfig(interval_ms=20, on_notification=rec), price_feed=md)

    await checker.start()
    assert md.subscriber_count == 1
    await checker.stop()
    assert md.subscriber_count == 0

    await md.update_price("M", 0.90)          # push path
    await checker.on_price_update("M", 0.90)  # direct push call
    await asyncio.sleep(0.1)                  # several would-be ticks
    assert rec.triggers == []
    assert checker.state.triggered_count == 0


@pytest.mark.asyncio
async def test_retry_bound_after_consecutive_failures():
    """maxRetries=3: pass + two retries, then nothing until a regular tick."""
    md = FlakyMarketData([], fail_times=100)
    checker = AlertChecker(
        InMemoryAlertRepository(), md,
        CheckerConfig(interval_ms=NO_TICKS_MS, max_retries=3, retry_delay_ms=10),
    )
    await checker.start()
    assert checker.state.error == "market data unavailable"

    await wait_until(lambda: md.calls >= 3)
    await asyncio.sleep(0.15)
    assert md.calls == 3
    assert checker.retry.exhausted
    assert checker.state.error == "market data unavailable"
    assert checker.state.last_check_at is None

    await checker.stop()


@pytest.mark.asyncio
async def test_regular_tick_runs_when_exhausted_and_recovers():
    md = FlakyMarketData([MarketPriceSample("M", 0.5)], fail_times=4)
    checker = AlertChecker(
        InMemoryAlertRepository(), md,
        CheckerConfig(interval_ms=100, max_retries=3, retry_delay_ms=10),
    )
    await checker.start()
    await wait_until(lambda: checker.state.error is None and md.calls >= 5, timeout=3.0)
    assert checker.state.last_check_at is not None
    assert checker.retry.phase == "idle"
    await checker.stop()


@pytest.mark.asyncio
async def test_stop_cancels_pending_retry():
    md = FlakyMarketData([], fail_times=100)
    checker = AlertChecker(
        InMemoryAlertRepository(), md,
        CheckerConfig(interval_ms=NO_TICKS_MS, max_retries=3, retry_delay_ms=50),
    )
    await checker.start()
    await checker.stop()
    await asyncio.sleep(0.15)
    assert md.calls == 1


@pytest.mark.asyncio
async def test_hidden_tick_is_skipped_without_background():
    md = FlakyMarketData([MarketPriceSample("M", 0.5)])
    checker = AlertChecker(
        InMemoryAlertRepository(), md,
        CheckerConfig(interval_ms=20, enable_background=False),
    )
    await checker.start()
    t0 = checker.state.last_check_at
    assert t0 is not None

    checker.set_visible(False)
    calls = md.calls
    await asyncio.sleep(0.12)
    assert checker.state.last_check_at == t0
    assert md.calls == calls
    assert checker.retry.phase == "idle"

    checker.set_visible(True)
    await wait_until(lambda: checker.state.last_check_at != t0)
    await checker.stop()


@pytest.mark.asyncio
async def test_hidden_tick_runs_with_background_enabled():
    md = FlakyMarketData([MarketPriceSample("M", 0.5)])
    checker = AlertChecker(InMemoryAlertRepository(), md, CheckerConfig(interval_ms=20))
    checker.set_visible(False)
    await checker.start()
    await wait_until(lambda: md.calls >= 3)
    await checker.stop()


@pytest.mark.asyncio
async def test_check_now_ignores_visibility_gate():
    md = FlakyMarketData([MarketPriceSample("M", 0.5)])
    checker = AlertChecker(
        InMemoryAlertRepository(), md,
        CheckerConfig(interval_ms=NO_TICKS_MS, enable_background=False),
    )
    checker.set_visible(False)
    await checker.start()
    assert md.calls == 0
    assert await checker.check_now() is True
    assert md.calls == 1
    assert checker.state.last_check_at is not None
    await checker.stop()


@pytest.mark.asyncio
async def test_push_update_and_tick_share_cooldown():
    clock = FakeClock()
    repo = RecurringAlertRepository(clock=clock)
    repo.add_alert("M", 0.70, alert_id="A")
    md = _market(0.71)
    rec = Recorder()
    checker = AlertChecker(
        repo, md,
        CheckerConfig(interval_ms=NO_TICKS_MS, on_notification=rec),
        price_feed=md, clock=clock,
    )
    await checker.start()          # timer path fires A
    assert len(rec.triggers) == 1

    clock.advance(1_000)
    await md.update_price("M", 0.74)   # push path, inside the window
    assert len(rec.triggers) == 1

    clock.advance(5_000)
    await md.update_price("M", 0.75)   # window elapsed
    assert len(rec.triggers) == 2
    await checker.stop()


@pytest.mark.asyncio
async def test_concurrent_push_and_pass_fire_once():
    clock = FakeClock()
    repo = RecurringAlertRepository(clock=clock)
    repo.add_alert("M", 0.70, alert_id="A")
    md = _market(0.71)
    rec = Recorder()
    checker = AlertChecker(repo, md, CheckerConfig(interval_ms=NO_TICKS_MS, on_notification=rec), clock=clock)
    await checker.start()
    checker.clear_cooldowns()
    await asyncio.gather(checker.check_now(), checker.on_price_update("M", 0.72))
    # one from start(), one from the concurrent pair
    assert len(rec.triggers) == 2
    await checker.stop()


@pytest.mark.asyncio
async def test_clear_cooldowns_makes_alert_eligible_again():
    clock = FakeClock()
    repo = RecurringAlertRepository(clock=clock)
    repo.add_alert("M", 0.70, alert_id="A")
    checker = AlertChecker(repo, _market(0.71), CheckerConfig(interval_ms=NO_TICKS_MS), clock=clock)
    await checker.start()
    assert checker.state.triggered_count == 1

    clock.advance(1_000)
    await checker.check_now()
    assert checker.state.triggered_count == 1

    checker.clear_cooldowns()
    await checker.check_now()
    assert checker.state.triggered_count == 2
    assert checker.retry.phase == "idle"
    await checker.stop()


@pytest.mark.asyncio
async def test_market_allow_list_and_missing_price():
    repo = RecurringAlertRepository()
    repo.add_alert("M1", 0.70, alert_id="A1")
    repo.add_alert("M2", 0.70, alert_id="A2")
    repo.add_alert("M3", 0.70, alert_id="A3")
    md = InMemoryMarketData()
    md.set_market("M1", 0.9)
    md.set_market("M2", 0.9)
    md.set_market("M3", None)
    checker = AlertChecker(repo, md, CheckerConfig(interval_ms=NO_TICKS_MS, markets=["M1", "M3"]))
    await checker.check_now()
    assert repo.checked == ["A1"]

    checker2 = AlertChecker(repo, md, CheckerConfig(interval_ms=NO_TICKS_MS, markets=["M1"]), price_feed=md)
    await checker2.start()
    repo.checked.clear()
    await checker2.on_price_update("M2", 0.95)
    await checker2.on_price_update("M1", None)
    assert repo.checked == []
    await checker2.stop()


@pytest.mark.asyncio
async def test_per_alert_failure_does_not_set_error():
    repo = RecurringAlertRepository(fail_ids={"A"})
    repo.add_alert("M", 0.70, alert_id="A")
    repo.add_alert("M", 0.60, alert_id="B")
    checker = AlertChecker(repo, _market(0.8), CheckerConfig(interval_ms=NO_TICKS_MS))
    assert await checker.check_now() is True
    assert checker.state.error is None
    assert checker.state.triggered_count == 1


@pytest.mark.asyncio
async def test_successful_pass_clears_error():
    md = FlakyMarketData([MarketPriceSample("M", 0.5)], fail_times=1)
    checker = AlertChecker(InMemoryAlertRepository(), md, CheckerConfig(interval_ms=NO_TICKS_MS))
    assert await checker.check_now() is False
    assert checker.state.error == "market data unavailable"
    assert await checker.check_now() is True
    assert checker.state.error is None


@pytest.mark.asyncio
async def test_state_is_a_snapshot():
    checker = AlertChecker(InMemoryAlertRepository(), InMemoryMarketData())
    st = checker.state
    st.triggered_count = 99
    st.error = "x"
    assert checker.state.triggered_count == 0
    assert checker.state.error is None


@pytest.mark.asyncio
async def test_push_permission_requested_at_construction():
    perm = FakePermission("default")
    platform = FakePlatform()
    repo = InMemoryAlertRepository()
    repo.add_alert("M", 0.70, alert_id="A", market_question="Will it happen?")
    checker = AlertChecker(
        repo, _market(0.71),
        CheckerConfig(interval_ms=NO_TICKS_MS, enable_push=True),
        permission=perm, platform=platform,
    )
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert perm.requests == 1

    await checker.start()
    assert perm.requests == 1
    assert platform.shown[0]["tag"] == "A"
    assert platform.shown[0]["body"] == "Will it happen? reached 70.0%"
    await checker.stop()


def test_push_permission_deferred_without_running_loop():
    perm = FakePermission("default")
    checker = AlertChecker(
        InMemoryAlertRepository(), InMemoryMarketData(),
        CheckerConfig(interval_ms=NO_TICKS_MS, enable_push=True),
        permission=perm, platform=FakePlatform(),
    )

    async def run():
        await checker.start()
        await asyncio.sleep(0)
        await checker.stop()

    asyncio.run(run())
    assert perm.requests == 1


@pytest.mark.asyncio
async def test_stop_from_notification_callback():
    repo = RecurringAlertRepository()
    repo.add_alert("M", 0.70, alert_id="A")
    repo.add_alert("M", 0.70, alert_id="B")
    md = _market(0.9)
    holder = {}

    def on_notification(trigger):
        if "task" not in holder:
            holder["task"] = asyncio.get_running_loop().create_task(holder["checker"].stop())

    checker = AlertChecker(repo, md, CheckerConfig(interval_ms=20, on_notification=on_notification))
    holder["checker"] = checker
    await checker.start()
    await holder["task"]
    assert checker.state.is_monitoring is False
    count = checker.state.triggered_count
    await asyncio.sleep(0.1)
    assert checker.state.triggered_count == count


@pytest.mark.asyncio
async def test_stop_during_retry_pass_prevents_dispatch():
    repo = SlowAlertRepository(delay_s=0.1)
    repo.add_alert("M", 0.70, alert_id="A")
    md = FlakyMarketData([MarketPriceSample("M", 0.9)], fail_times=1)
    rec = Recorder()
    checker = AlertChecker(
        repo, md,
        CheckerConfig(interval_ms=NO_TICKS_MS, retry_delay_ms=10, on_notification=rec),
    )
    await checker.start()
    assert checker.state.error == "market data unavailable"

    # retry pass is now parked inside check_and_trigger
    await asyncio.wait_for(repo.entered.wait(), timeout=2.0)
    await checker.stop()
    assert rec.triggers == []

    await asyncio.sleep(0.3)
    assert rec.triggers == []
    assert checker.state.triggered_count == 0
    assert checker.state.last_check_at is None


@pytest.mark.asyncio
async def test_stop_while_subscribing_releases_feed():
    md = SlowSubscribeMarketData(delay_s=0.05)
    md.set_market("M", 0.5)
    checker = AlertChecker(
        InMemoryAlertRepository(), md, CheckerConfig(interval_ms=20), price_feed=md,
    )

    async def stop_soon():
        await asyncio.sleep(0.01)
        await checker.stop()

    await asyncio.gather(checker.start(), stop_soon())
    await asyncio.sleep(0.1)
    assert md.subscriber_count == 0
    assert md.list_calls == 0
    assert checker.state.is_monitoring is False
    assert checker.state.last_check_at is None


@pytest.mark.asyncio
async def test_push_body_uses_provider_question():
    repo = InMemoryAlertRepository()
    repo.add_alert("M", 0.70, alert_id="A")   # no question on the alert
    md = InMemoryMarketData()
    md.set_market("M", 0.9, question="Will it rain?")
    platform = FakePlatform()
    rec = Recorder()
    checker = AlertChecker(
        repo, md,
        CheckerConfig(interval_ms=NO_TICKS_MS, enable_push=True, on_notification=rec),
        permission=FakePermission("granted"), platform=platform,
    )
    await checker.start()
    assert platform.shown[0]["body"] == "Will it rain? reached 70.0%"
    assert rec.triggers[0].market_question == "Will it rain?"
    await checker.stop()


@pytest.mark.asyncio
async def test_pushed_price_uses_question_from_last_pass():
    repo = InMemoryAlertRepository()
    repo.add_alert("M", 0.70, alert_id="A")
    md = InMemoryMarketData()
    md.set_market("M", 0.5, question="Will it rain?")
    platform = FakePlatform()
    checker = AlertChecker(
        repo, md,
        CheckerConfig(interval_ms=NO_TICKS_MS, enable_push=True),
        price_feed=md, permission=FakePermission("granted"), platform=platform,
    )
    await checker.start()
    assert platform.shown == []
    await md.update_price("M", 0.9)
    assert platform.shown[0]["body"] == "Will it rain? reached 70.0%"
    await checker.stop()
