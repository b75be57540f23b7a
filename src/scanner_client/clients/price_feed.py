"""
Live price feed over WebSocket.

Keeps the latest price (and 24h volume, when sent) per symbol and
reconnects after a fixed delay whenever the socket closes or fails.
There is no retry limit and the delay never grows.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, List, Optional

import aiohttp

from ..core.models import PriceTick

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 5.0


class LivePriceFeed:
    """
    Usage:
        feed = LivePriceFeed("ws://localhost:5002")
        feed.on_tick(lambda tick: print(tick.symbol, tick.price))
        feed.start()
        ...
        await feed.stop()
    """

    def __init__(self, url: str = "ws://localhost:5002", reconnect_delay: float = RECONNECT_DELAY,
                 connect: Optional[Callable] = None, sleep: Callable = asyncio.sleep) -> None:
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.prices: Dict[str, float] = {}
        self.volumes: Dict[str, float] = {}
        self.connected = False
        self.connect_attempts = 0
        self._connect = connect or self._ws_connect
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._callbacks: List[Callable[[PriceTick], None]] = []

    def on_tick(self, callback: Callable[[PriceTick], None]) -> None:
        """Register a callback invoked for every price update."""
        self._callbacks.append(callback)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="live-price-feed")
        return self._task

    async def stop(self) -> None:
        """Cancel the pending reconnect (if any) and close the active socket."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Price feed had already failed: %r", e)
        self.connected = False
        logger.info("Price feed stopped")

    @asynccontextmanager
    async def _ws_connect(self):
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(self.url, heartbeat=20) as ws:
                yield ws

    async def _run(self) -> None:
        while True:
            self.connect_attempts += 1
            logger.info("Connecting to price WebSocket %s", self.url)
            try:
                async with self._connect() as ws:
                    self.connected = True
                    logger.info("Price WebSocket connected")
                    await self._listen(ws)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Price feed connection failed: %s", e)
            finally:
                self.connected = False

            logger.info("Price WebSocket disconnected, reconnecting in %ss", self.reconnect_delay)
            await self._sleep(self.reconnect_delay)

    async def _listen(self, ws) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.handle_message(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("Price WebSocket error: %s", msg.data)
                break

    def handle_message(self, text: str) -> Optional[PriceTick]:
        """Apply one inbound message. Returns the tick for price updates, None otherwise."""
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            logger.error("Error parsing price update: %s", e)
            return None
        if not isinstance(data, dict) or data.get("type") != "price_update":
            return None
        try:
            tick = PriceTick.model_validate(data)
        except ValueError as e:
            logger.error("Error parsing price update: %s", e)
            return None

        self.prices[tick.symbol] = tick.price
        if tick.volume_24h is not None:
            self.volumes[tick.symbol] = tick.volume_24h

        for cb in self._callbacks:
            try:
                cb(tick)
            except Exception as e:
                logger.warning("Price tick callback error: %s", e)
        return tick
