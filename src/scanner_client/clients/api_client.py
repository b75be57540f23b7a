import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp
from pydantic import ValidationError

from ..core.models import CoinDetails, ScanStatus, StreamEvent
from ..errors import (
    RemoteRequestError,
    ServiceUnavailable,
    StartupFailure,
    StreamError,
    TransientNetworkFailure,
)

logger = logging.getLogger(__name__)

MIN_TOP_N = 5
MAX_TOP_N = 200


def clamp_top_n(top_n) -> int:
    """Keep top_n within what the scanner accepts; junk falls back to 10."""
    try:
        value = int(top_n)
    except (TypeError, ValueError):
        value = 10
    return max(MIN_TOP_N, min(MAX_TOP_N, value))


class ScannerAPIClient:
    """
    Thin aiohttp client for the scanner API.

    One ClientSession is created lazily and reused; call close() when done.
    """

    def __init__(self, base_url: str = "http://localhost:5001", timeout: float = 10.0,
                 session: Optional[aiohttp.ClientSession] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request_json(self, method: str, path: str, **kwargs) -> Any:
        session = await self._get_session()
        try:
            async with session.request(method, self.url(path), **kwargs) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise RemoteRequestError(path, text[:200] or response.reason or "error", response.status)
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RemoteRequestError(path, str(e)) from e
        except asyncio.TimeoutError as e:
            raise RemoteRequestError(path, f"timed out after {self.timeout.total}s") from e
        except json.JSONDecodeError as e:
            raise RemoteRequestError(path, f"invalid JSON: {e}") from e

    # ---------------------------
    # Job lifecycle
    # ---------------------------
    async def get_status(self) -> ScanStatus:
        try:
            data = await self._request_json("GET", "/api/status")
        except RemoteRequestError as e:
            raise TransientNetworkFailure(e.message) from e
        try:
            return ScanStatus.model_validate(data or {})
        except ValidationError as e:
            raise TransientNetworkFailure(f"Malformed status response: {e.error_count()} invalid field(s)") from e

    async def start_scan(self, top_n: int = 10, use_cache: bool = True) -> None:
        body = {"top_n": clamp_top_n(top_n), "use_cache": use_cache}
        try:
            await self._request_json("POST", "/api/scan", json=body)
        except RemoteRequestError as e:
            raise StartupFailure(f"Failed to start scan: {e.message}") from e

    async def start_multi_scan(self, top_n: int = 10) -> None:
        try:
            await self._request_json("POST", "/api/scan/multi", json={"top_n": clamp_top_n(top_n)})
        except RemoteRequestError as e:
            raise StartupFailure(f"Failed to start multi-timeframe scan: {e.message}") from e

    # ---------------------------
    # Result payloads
    # ---------------------------
    async def get_latest_results(self) -> Dict[str, Any]:
        return await self._request_json("GET", "/api/results/latest")

    async def get_multi_results(self) -> Dict[str, Any]:
        return await self._request_json("GET", "/api/results/multi/latest")

    async def get_demo(self) -> Dict[str, Any]:
        return await self._request_json("GET", "/api/demo")

    async def health(self) -> None:
        """Raise ServiceUnavailable unless GET /health answers 2xx."""
        session = await self._get_session()
        try:
            async with session.get(self.url("/health")) as response:
                if not 200 <= response.status < 300:
                    raise ServiceUnavailable(self.base_url, f"HTTP {response.status}")
        except aiohttp.ClientError as e:
            raise ServiceUnavailable(self.base_url, str(e)) from e
        except asyncio.TimeoutError as e:
            raise ServiceUnavailable(self.base_url, "health check timed out") from e

    # ---------------------------
    # Database-backed read paths
    # ---------------------------
    async def get_database_stats(self) -> Dict[str, Any]:
        return await self._request_json("GET", "/api/database-stats")

    async def get_strategic_summary(self) -> Dict[str, Any]:
        return await self._request_json("GET", "/api/strategic-summary")

    async def get_ema_analysis(self, timeframe: str) -> Any:
        return await self._request_json("GET", "/api/ema-analysis/all", params={"timeframe": timeframe})

    async def get_coin_details(self, symbol: str) -> CoinDetails:
        data = await self._request_json("GET", f"/api/coins/{symbol.upper()}/details")
        return CoinDetails.model_validate(data or {})

    # ---------------------------
    # Push stream (server-sent events)
    # ---------------------------
    @asynccontextmanager
    async def open_stream(self) -> AsyncIterator[AsyncIterator[StreamEvent]]:
        """
        Open GET /api/stream and yield an async iterator of StreamEvents.
        The response is released on every exit path.
        """
        session = await self._get_session()
        try:
            response = await session.get(
                self.url("/api/stream"),
                headers={"Accept": "text/event-stream"},
                timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
            )
        except aiohttp.ClientError as e:
            raise StartupFailure(f"Failed to open result stream: {e}") from e
        events = self._iter_events(response)
        try:
            if response.status >= 400:
                raise StartupFailure(f"Failed to open result stream: HTTP {response.status}")
            yield events
        finally:
            await events.aclose()
            response.release()

    async def _iter_events(self, response: aiohttp.ClientResponse) -> AsyncIterator[StreamEvent]:
        data_lines = []
        try:
            async for raw_line in response.content:
                line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                if line.startswith("data:"):
                    data_lines.append(line[5:].lstrip())
                    continue
                if line or not data_lines:
                    # comments, event/id fields and keep-alives
                    continue
                event = parse_event("\n".join(data_lines))
                data_lines = []
                if event is not None:
                    yield event
        except aiohttp.ClientError as e:
            raise StreamError(f"Result stream broke: {e}") from e

        if data_lines:
            event = parse_event("\n".join(data_lines))
            if event is not None:
                yield event


def parse_event(payload: str) -> Optional[StreamEvent]:
    try:
        data = json.loads(payload)
        return StreamEvent.model_validate(data)
    except ValueError as e:
        logger.warning("Skipping malformed stream event: %s", e)
        return None
