from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from scanner_client.config import Settings
from scanner_client.core.models import CoinDetails, ScanStatus
from scanner_client.db.cache import MemoryCacheStore


def make_snapshot(symbol, pct, timeframe="weekly", price=100.0):
    ema50 = price / (1 + pct / 100.0)
    return {
        "symbol": symbol,
        "name": f"{symbol} Coin",
        "rank": 1,
        "current_price": price,
        "ema50": round(ema50, 6),
        "pct_from_ema50": pct,
        "above_ema50": pct > 0,
        "timeframe": timeframe,
    }


def make_result(symbol, weekly=None, daily=None, four_hour=None):
    row = {"symbol": symbol, "name": f"{symbol} Coin"}
    if weekly is not None:
        row["weekly"] = make_snapshot(symbol, weekly, "weekly")
    if daily is not None:
        row["daily"] = make_snapshot(symbol, daily, "daily")
    if four_hour is not None:
        row["4h"] = make_snapshot(symbol, four_hour, "4h")
    return row


def make_payload():
    return {
        "summary": {"total_scanned": 4, "total_above_weekly": 2, "total_below_weekly": 2},
        "results": [
            make_result("BTC", weekly=18.75, daily=6.0, four_hour=2.0),
            make_result("ETH", weekly=-4.0, daily=-6.0, four_hour=-12.0),
            make_result("USDT", weekly=0.01, daily=0.0, four_hour=0.02),
            make_result("DOGE", weekly=-22.0, daily=-15.0, four_hour=1.5),
        ],
        "strategic_summary": {
            "coins_to_evaluate_long_term": [make_snapshot("BTC", 18.75)],
            "coins_to_trade_now_short_term": [],
            "coins_to_avoid": [make_snapshot("DOGE", -22.0)],
        },
    }


class FakeFeed:
    """Stands in for LivePriceFeed without opening a socket."""

    def __init__(self):
        self.prices = {}
        self.volumes = {}
        self.connected = False
        self.started = 0
        self.stopped = 0

    def start(self):
        self.started += 1
        self.connected = True

    async def stop(self):
        self.stopped += 1
        self.connected = False


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_url="http://scanner.test",
        ws_url="ws://scanner.test/ws",
        cache_path=str(tmp_path / "cache.db"),
        poll_interval=0.01,
        settle_delay=0.0,
        reconnect_delay=0.01,
    )


@pytest.fixture
def memory_store():
    return MemoryCacheStore()


@pytest.fixture
def fake_client():
    """MagicMock standing in for ScannerAPIClient; the stream replays `client.stream_events`."""
    client = MagicMock()
    client.base_url = "http://scanner.test"
    client.get_status = AsyncMock(return_value=ScanStatus())
    client.start_scan = AsyncMock()
    client.start_multi_scan = AsyncMock()
    client.get_latest_results = AsyncMock(side_effect=lambda: make_payload())
    client.get_demo = AsyncMock(side_effect=lambda: make_payload())
    client.get_multi_results = AsyncMock(return_value={"summary": {}, "analysis": []})
    client.get_ema_analysis = AsyncMock(return_value=[])
    client.get_database_stats = AsyncMock(return_value={})
    client.get_strategic_summary = AsyncMock(return_value={})
    client.get_coin_details = AsyncMock(return_value=CoinDetails(coin_info={"symbol": "BTC"}))
    client.health = AsyncMock()
    client.close = AsyncMock()

    client.stream_events = []
    client.stream_opened = 0
    client.stream_closed = 0

    @asynccontextmanager
    async def open_stream():
        client.stream_opened += 1

        async def events():
            for event in client.stream_events:
                yield event

        try:
            yield events()
        finally:
            client.stream_closed += 1

    client.open_stream = open_stream
    return client
