import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List

from ..errors import StreamError

logger = logging.getLogger(__name__)

SETTLE_DELAY = 1.0


class StreamIngestor:
    """
    Start a scan and follow its push stream.

    coin_result events are appended to `buffer` in arrival order. On
    `complete` the ingestor keeps buffering for `settle_delay`, closes the stream and
    awaits `on_complete` (the final result load), then clears the buffer.
    An `error` event closes the stream and raises StreamError.
    """

    def __init__(self, client, on_complete: Callable[[], Awaitable[Any]],
                 settle_delay: float = SETTLE_DELAY, sleep: Callable = asyncio.sleep) -> None:
        self.client = client
        self.on_complete = on_complete
        self.settle_delay = settle_delay
        self._sleep = sleep
        self.buffer: List[Dict[str, Any]] = []
        self.streaming = False
        self._partial_callbacks: List[Callable[[Dict[str, Any]], None]] = []

    def on_partial(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        self._partial_callbacks.append(callback)

    async def _settle(self, events) -> None:
        """Keep buffering trailing coin_result events until the settle delay has passed."""
        async def drain():
            async for event in events:
                if event.type == "coin_result" and isinstance(event.data, dict):
                    self._append(event.data)
                elif event.type == "error":
                    logger.warning("Ignoring stream error after completion: %s", event.error)
                    return

        drainer = asyncio.ensure_future(drain())
        try:
            await self._sleep(self.settle_delay)
        finally:
            drainer.cancel()
            result = (await asyncio.gather(drainer, return_exceptions=True))[0]
            if isinstance(result, Exception):
                logger.warning("Result stream broke while settling: %s", result)

    def _append(self, data: Dict[str, Any]) -> None:
        self.buffer.append(data)
        for cb in self._partial_callbacks:
            try:
                cb(data)
            except Exception as e:
                logger.warning("Partial result callback error: %s", e)

    async def run(self, top_n: int = 10) -> Any:
        """
        Raises StartupFailure if the scan or the stream cannot be started,
        StreamError if the stream reports or suffers a failure.
        """
        self.buffer = []
        self.streaming = True
        try:
            await self.client.start_scan(top_n=top_n, use_cache=False)
            completed = False
            async with self.client.open_stream() as events:
                async for event in events:
                    if event.type == "coin_result":
                        if isinstance(event.data, dict):
                            self._append(event.data)
                    elif event.type == "complete":
                        logger.info("Scan complete, %d partial results streamed", len(self.buffer))
                        completed = True
                        break
                    elif event.type == "error":
                        raise StreamError(f"Scan error: {event.error or 'unknown error'}")
                    else:
                        logger.debug("Ignoring stream event %r", event.type)
                if completed:
                    await self._settle(events)

            if not completed:
                raise StreamError("Result stream closed before the scan completed")

            result = await self.on_complete()
            self.buffer = []
            return result
        except StreamError as e:
            logger.error(e.message)
            self.buffer = []
            raise
        finally:
            self.streaming = False
