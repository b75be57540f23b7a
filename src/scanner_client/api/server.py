"""
FastAPI server providing read-only visibility and manual triggers.
This file wires:
- Dashboard (owning context for poller, stream, cache and price feed)
- Web endpoints for control and inspection
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..app import Dashboard, asset_view
from ..config import configure_logging, load_settings
from ..errors import ScannerClientError, ServiceUnavailable

logger = logging.getLogger(__name__)


class ScanRequest(BaseModel):
    top_n: Optional[int] = None
    use_cache: bool = True
    mode: str = "poll"  # poll | stream | multi


def create_app(dashboard: Optional[Dashboard] = None, live_prices: bool = True) -> FastAPI:
    app = FastAPI(title="Scanner Client Control API", version="0.1.0")
    app.state.dashboard = dashboard

    @app.exception_handler(ScannerClientError)
    async def scanner_error_handler(request: Request, exc: ScannerClientError):
        status = 503 if isinstance(exc, ServiceUnavailable) else 502
        return JSONResponse(status_code=status, content={"detail": exc.message})

    @app.on_event("startup")
    async def startup_event():
        if app.state.dashboard is None:
            settings = load_settings()
            configure_logging(settings.log_level)
            app.state.dashboard = Dashboard(settings)
        await app.state.dashboard.start(live_prices=live_prices)

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.dashboard.stop()

    def board() -> Dashboard:
        return app.state.dashboard

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/upstream")
    async def upstream():
        """Probe the scanner API; 503 with a readable message when it is down."""
        await board().client.health()
        return {"status": "up", "api_url": board().client.base_url}

    @app.get("/state")
    async def state():
        """Everything a renderer needs: job status, buckets, analysis, prices."""
        return await board().snapshot()

    @app.get("/prices")
    async def prices():
        feed = board().prices
        return {"connected": feed.connected, "prices": feed.prices, "volumes": feed.volumes}

    @app.get("/coins/{symbol}")
    async def coin(symbol: str):
        asset = board().pipeline.by_symbol.get(symbol.upper())
        if asset is None:
            raise HTTPException(status_code=404, detail="Coin not found")
        return asset_view(asset)

    @app.get("/coins/{symbol}/details")
    async def coin_details(symbol: str):
        details = await board().coin_details(symbol)
        if details is None:
            raise HTTPException(status_code=502, detail=board().last_error or "Failed to load coin details")
        return details.model_dump()

    @app.post("/scan")
    async def scan(req: ScanRequest):
        """Start a scan. Streaming scans run in the background; poll /state for progress."""
        d = board()
        if req.mode == "stream":
            d.spawn(d.stream_scan(req.top_n))
            return {"status": "streaming"}
        if req.mode == "multi":
            ok = await d.multi_scan(req.top_n)
        else:
            ok = await d.start_scan(req.top_n, use_cache=req.use_cache)
        if not ok:
            raise HTTPException(status_code=502, detail=d.last_error)
        return {"status": "scan_started"}

    @app.post("/demo")
    async def demo():
        d = board()
        if not await d.demo():
            raise HTTPException(status_code=502, detail=d.last_error)
        return {"status": "loaded", "source": "demo"}

    @app.post("/results/reload")
    async def reload_results(source: str = "latest"):
        d = board()
        ok = await (d.load_from_database() if source == "database" else d.load_latest())
        if not ok:
            raise HTTPException(status_code=502, detail=d.last_error)
        return {"status": "loaded", "source": source}

    @app.post("/cache/refresh")
    async def refresh_cache():
        return {"applied": await board().refresh_from_cache()}

    @app.delete("/cache")
    async def clear_cache():
        await board().clear_cache()
        return {"status": "cleared"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("scanner_client.api.server:app", host="0.0.0.0", port=8000, reload=True)
