import asyncio

import pytest

from scanner_client.app import Dashboard, asset_view
from scanner_client.core.models import ScanStatus, StreamEvent
from scanner_client.db.cache import ResultCache
from scanner_client.errors import RemoteRequestError, ServiceUnavailable
from scanner_client.pipeline.poller import PollerState
from scanner_client.pipeline.sources import ResultSource

from conftest import FakeFeed, make_payload, make_result


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def dashboard(settings, fake_client, memory_store, feed):
    return Dashboard(settings, client=fake_client, store=memory_store, price_feed=feed)


@pytest.mark.asyncio
async def test_start_restores_cache_and_stop_tears_everything_down(settings, fake_client, memory_store, feed):
    await ResultCache(memory_store).write(make_payload())
    dashboard = Dashboard(settings, client=fake_client, store=memory_store, price_feed=feed)

    await dashboard.start()
    assert dashboard.pipeline.source is ResultSource.CACHE
    assert dashboard.poller.running
    assert feed.started == 1

    background = dashboard.spawn(asyncio.Event().wait())
    await dashboard.stop()

    assert background.cancelled()
    assert not dashboard.poller.running
    assert dashboard.poller.state is PollerState.IDLE
    assert feed.stopped == 1
    fake_client.close.assert_awaited_once()
    fake_client.get_latest_results.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_without_live_prices(dashboard, feed):
    await dashboard.start(live_prices=False)
    assert feed.started == 0
    assert dashboard.pipeline.has_results is False
    await dashboard.stop()


@pytest.mark.asyncio
async def test_polled_scan_loads_once_when_job_finishes(dashboard, fake_client):
    assert await dashboard.start_scan(top_n=500, use_cache=False) is True
    fake_client.health.assert_awaited_once()
    fake_client.start_scan.assert_awaited_once_with(top_n=200, use_cache=False)

    fake_client.get_status.side_effect = [
        ScanStatus(running=True, progress=2, total=10),
        ScanStatus(running=False, progress=10, total=10),
        ScanStatus(running=False, progress=10, total=10),
    ]
    for _ in range(3):
        await dashboard.poller.poll_once()

    assert fake_client.get_latest_results.await_count == 1
    assert dashboard.pipeline.source is ResultSource.LATEST
    assert dashboard.last_error is None


@pytest.mark.asyncio
async def test_multi_scan_loads_multi_results(dashboard, fake_client):
    assert await dashboard.multi_scan(top_n=20) is True
    fake_client.start_multi_scan.assert_awaited_once_with(top_n=20)

    fake_client.get_status.return_value = ScanStatus(running=False, progress=20, total=20)
    await dashboard.poller.poll_once()

    fake_client.get_multi_results.assert_awaited_once()
    fake_client.get_latest_results.assert_not_awaited()
    assert dashboard.pipeline.source is ResultSource.MULTI


@pytest.mark.asyncio
async def test_unreachable_service_blocks_scan(dashboard, fake_client):
    fake_client.health.side_effect = ServiceUnavailable("http://scanner.test", "connection refused")

    assert await dashboard.start_scan() is False
    assert await dashboard.stream_scan() is False

    fake_client.start_scan.assert_not_awaited()
    assert "not reachable" in dashboard.last_error
    assert dashboard.loading is False


@pytest.mark.asyncio
async def test_stream_scan_loads_final_results(dashboard, fake_client):
    fake_client.stream_events = [
        StreamEvent(type="coin_result", data=make_result("BTC", weekly=18.75)),
        StreamEvent(type="complete"),
    ]

    assert await dashboard.stream_scan(top_n=10) is True

    fake_client.start_scan.assert_awaited_once_with(top_n=10, use_cache=False)
    fake_client.get_latest_results.assert_awaited_once()
    assert dashboard.stream.buffer == []
    assert dashboard.stream.streaming is False

    # the poller sees the same job finish but results are already loaded
    fake_client.get_status.return_value = ScanStatus(running=False, progress=10, total=10)
    await dashboard.poller.poll_once()
    fake_client.get_latest_results.assert_awaited_once()


@pytest.mark.asyncio
async def test_poller_defers_to_active_stream(dashboard, fake_client):
    dashboard.stream.streaming = True
    fake_client.get_status.return_value = ScanStatus(running=False, progress=10, total=10)
    await dashboard.poller.poll_once()
    fake_client.get_latest_results.assert_not_awaited()


@pytest.mark.asyncio
async def test_stream_error_is_recorded(dashboard, fake_client):
    fake_client.stream_events = [StreamEvent(type="error", error="scanner crashed")]
    assert await dashboard.stream_scan() is False
    assert "scanner crashed" in dashboard.last_error
    fake_client.get_latest_results.assert_not_awaited()


@pytest.mark.asyncio
async def test_demo_snapshot(dashboard, feed):
    feed.prices["BTC"] = 95234.5
    assert await dashboard.demo() is True

    snap = await dashboard.snapshot()
    assert snap["source"] == "demo"
    assert snap["header"] == {"scanned": 4, "above": 2, "below": 2}
    assert snap["cache_age_minutes"] == 0
    assert [row["symbol"] for row in snap["analysis"]] == ["BTC", "ETH", "DOGE"]
    assert snap["strategic_summary"]["coins_to_avoid"] == ["DOGE"]
    assert snap["prices"] == {"BTC": 95234.5}
    assert snap["last_error"] is None


@pytest.mark.asyncio
async def test_failed_load_keeps_previous_results(dashboard, fake_client):
    await dashboard.load_latest()
    fake_client.get_latest_results.side_effect = RemoteRequestError("/api/results/latest", "boom", 500)

    assert await dashboard.load_latest() is False
    assert "HTTP 500" in dashboard.last_error
    assert dashboard.pipeline.has_results


@pytest.mark.asyncio
async def test_clear_cache(dashboard):
    await dashboard.demo()
    await dashboard.clear_cache()

    snap = await dashboard.snapshot()
    assert snap["source"] is None
    assert snap["analysis"] == []
    assert snap["cache_age_minutes"] is None


@pytest.mark.asyncio
async def test_coin_details(dashboard, fake_client):
    details = await dashboard.coin_details("btc")
    assert details.coin_info["symbol"] == "BTC"

    fake_client.get_coin_details.side_effect = RemoteRequestError("/api/coins/XYZ/details", "not found", 404)
    assert await dashboard.coin_details("xyz") is None
    assert "404" in dashboard.last_error


@pytest.mark.asyncio
async def test_asset_view(dashboard):
    await dashboard.demo()
    row = asset_view(dashboard.pipeline.by_symbol["BTC"])
    assert row["symbol"] == "BTC"
    assert row["alignment_score"] == 100.0
    assert row["primary_trend"] == "Bullish"
    assert row["timeframe_data"]["1w"] == {"pct": 18.75, "above": True, "trend": "very-bullish", "icon": "strong-up"}


@pytest.mark.asyncio
async def test_stop_finishes_teardown_after_the_poller_died(dashboard, fake_client, feed):
    fake_client.get_status.side_effect = asyncio.TimeoutError()
    await dashboard.start()
    task = dashboard.poller._task
    await asyncio.wait({task}, timeout=2)
    assert task.done()

    await dashboard.stop()

    assert feed.stopped == 1
    fake_client.close.assert_awaited_once()
    assert dashboard.poller.state is PollerState.IDLE


@pytest.mark.asyncio
async def test_one_failing_teardown_step_does_not_skip_the_rest(dashboard, fake_client, feed):
    async def broken_stop():
        raise RuntimeError("socket already gone")

    feed.stop = broken_stop
    await dashboard.start()
    await dashboard.stop()

    fake_client.close.assert_awaited_once()
    assert not dashboard.poller.running
