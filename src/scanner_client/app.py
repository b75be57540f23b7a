"""
Dashboard: the owning context of the scanner client.

Wires the API client, result cache, result pipeline, status poller, stream
ingestor and live price feed together. Every timer and subscription the
dashboard starts is cancelled or closed by `stop()`.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, Set

from .clients.api_client import ScannerAPIClient, clamp_top_n
from .clients.price_feed import LivePriceFeed
from .config import Settings, load_settings
from .core.models import ClassifiedAsset, CoinDetails
from .core.strategy import display_coin
from .core.trend import classify
from .db.cache import CacheStore, ResultCache, SqliteCacheStore
from .errors import ScannerClientError
from .pipeline.pipeline import ResultPipeline
from .pipeline.poller import ScanStatusPoller
from .pipeline.sources import ResultSource
from .pipeline.stream import StreamIngestor

logger = logging.getLogger(__name__)


def asset_view(asset: ClassifiedAsset) -> Dict[str, Any]:
    """Flat JSON-ready row for renderers."""
    row = asset.coin.model_dump()
    row.update(asset.alignment.model_dump())
    row["pct_from_ema50"] = asset.pct_from_ema50
    row["four_hour_pct_from_ema"] = asset.four_hour_pct_from_ema
    row["timeframe_data"] = {
        tf: {
            "pct": s.pct,
            "above": s.above,
            "trend": s.category.value,
            "icon": classify(s.pct).icon.value,
        }
        for tf, s in asset.samples.items()
    }
    return row


class Dashboard:
    def __init__(self, settings: Optional[Settings] = None, client=None,
                 store: Optional[CacheStore] = None, price_feed: Optional[LivePriceFeed] = None,
                 sleep=asyncio.sleep) -> None:
        self.settings = settings or load_settings()
        self.client = client or ScannerAPIClient(self.settings.api_url, self.settings.request_timeout)
        self.store = store or SqliteCacheStore(self.settings.cache_path)
        self.cache = ResultCache(self.store, ttl_ms=self.settings.cache_ttl_ms)
        self.pipeline = ResultPipeline(self.client, self.cache)
        self.poller = ScanStatusPoller(
            self.client, self._on_job_finished, interval=self.settings.poll_interval, sleep=sleep
        )
        self.stream = StreamIngestor(
            self.client, self._on_stream_complete, settle_delay=self.settings.settle_delay, sleep=sleep
        )
        self.prices = price_feed or LivePriceFeed(
            self.settings.ws_url, reconnect_delay=self.settings.reconnect_delay, sleep=sleep
        )
        self.loading = False
        self.last_error: Optional[str] = None
        self._pending_source = ResultSource.LATEST
        self._tasks: Set[asyncio.Task] = set()

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self, live_prices: bool = True) -> None:
        await self.refresh_from_cache()
        self.poller.start()
        if live_prices:
            self.prices.start()
        logger.info("Dashboard started (api=%s)", self.settings.api_url)

    async def stop(self) -> None:
        """Cancel background operations, the poll loop and the price feed; release I/O handles."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        steps = (
            ("status poller", self.poller.stop),
            ("price feed", self.prices.stop),
            ("API client", self.client.close),
            ("cache store", self.store.close),
        )
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.error("Failed to stop %s: %r", name, e)
        logger.info("Dashboard stopped")

    async def __aenter__(self) -> "Dashboard":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    def spawn(self, coro: Awaitable) -> asyncio.Task:
        """Run an operation in the background; stop() cancels it."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, coro: Awaitable, what: str) -> Any:
        """Await an operation, turning client errors into `last_error` instead of raising."""
        self.loading = True
        self.last_error = None
        try:
            return await coro
        except ScannerClientError as e:
            logger.error("%s failed: %s", what, e.message)
            self.last_error = e.message
            return None
        except ValueError as e:
            logger.error("%s failed: unexpected response: %s", what, e)
            self.last_error = f"{what} failed: the scanner returned an unexpected response."
            return None
        finally:
            self.loading = False

    # ---------------------------
    # Pipeline hooks
    # ---------------------------
    async def _on_job_finished(self) -> None:
        if self.stream.streaming:
            # the stream ingestor loads the final results itself
            return
        source, self._pending_source = self._pending_source, ResultSource.LATEST
        await self.pipeline.load(source)

    async def _on_stream_complete(self):
        results = await self.pipeline.load(ResultSource.LATEST)
        self.poller.mark_loaded()
        return results

    async def _load(self, source: ResultSource) -> bool:
        await self.pipeline.load(source)
        self.poller.mark_loaded()
        return True

    # ---------------------------
    # Operations
    # ---------------------------
    async def start_scan(self, top_n: Optional[int] = None, use_cache: bool = True) -> bool:
        """Start a job and let the poller load results when it finishes."""
        async def run():
            await self.client.health()
            self.pipeline.reset()
            self.poller.rearm()
            self._pending_source = ResultSource.LATEST
            await self.client.start_scan(top_n=clamp_top_n(top_n or self.settings.top_n), use_cache=use_cache)
            return True
        return bool(await self._guarded(run(), "Scan start"))

    async def multi_scan(self, top_n: Optional[int] = None) -> bool:
        async def run():
            await self.client.health()
            self.pipeline.reset()
            self.poller.rearm()
            self._pending_source = ResultSource.MULTI
            await self.client.start_multi_scan(top_n=clamp_top_n(top_n or self.settings.top_n))
            return True
        return bool(await self._guarded(run(), "Multi-timeframe scan start"))

    async def stream_scan(self, top_n: Optional[int] = None) -> bool:
        async def run():
            await self.client.health()
            await self.stream.run(top_n=clamp_top_n(top_n or self.settings.top_n))
            return True
        return bool(await self._guarded(run(), "Streaming scan"))

    async def demo(self) -> bool:
        return bool(await self._guarded(self._load(ResultSource.DEMO), "Demo"))

    async def load_latest(self) -> bool:
        return bool(await self._guarded(self._load(ResultSource.LATEST), "Loading latest results"))

    async def load_from_database(self) -> bool:
        return bool(await self._guarded(self._load(ResultSource.DATABASE), "Loading database results"))

    async def refresh_from_cache(self) -> bool:
        applied = await self.pipeline.load_cached()
        if applied:
            self.poller.mark_loaded()
        return applied

    async def clear_cache(self) -> None:
        await self.cache.clear()
        self.pipeline.reset()
        self.stream.buffer = []
        logger.info("Cache cleared")

    async def coin_details(self, symbol: str) -> Optional[CoinDetails]:
        return await self._guarded(self.client.get_coin_details(symbol), f"Loading {symbol} details")

    # ---------------------------
    # Read-only view
    # ---------------------------
    async def snapshot(self) -> Dict[str, Any]:
        status = self.poller.status
        strategic = self.pipeline.strategic
        return {
            "status": status.model_dump() if status else None,
            "poller_state": self.poller.state.value,
            "loading": self.loading,
            "streaming": self.stream.streaming,
            "last_error": self.last_error,
            "source": self.pipeline.source.value if self.pipeline.source else None,
            "header": self.pipeline.header(),
            "cache_age_minutes": await self.cache.age_minutes(),
            "partials": [c for c in (display_coin(r) for r in self.stream.buffer) if c],
            "analysis": [asset_view(a) for a in self.pipeline.assets],
            "strategic_summary": {
                "coins_to_evaluate_long_term": [a.symbol for a in strategic.coins_to_evaluate_long_term],
                "coins_to_trade_now_short_term": [a.symbol for a in strategic.coins_to_trade_now_short_term],
                "coins_to_avoid": [a.symbol for a in strategic.coins_to_avoid],
            },
            "prices": dict(self.prices.prices),
            "volumes": dict(self.prices.volumes),
            "prices_connected": self.prices.connected,
        }
