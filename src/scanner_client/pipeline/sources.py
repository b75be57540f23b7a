"""
Result sources: the ways a full result payload can reach the pipeline.
"""

import logging
from enum import Enum
from typing import Any, Dict, List

from ..core.models import TIMEFRAMES
from ..errors import RemoteRequestError

logger = logging.getLogger(__name__)

# Fields copied from a per-timeframe listing row onto the merged coin row
COIN_FIELDS = ("symbol", "name", "rank", "market_cap_rank", "current_price", "ema50")


class ResultSource(str, Enum):
    LATEST = "latest"        # /api/results/latest, after a polled or streamed scan
    DEMO = "demo"            # /api/demo, no job lifecycle
    MULTI = "multi"          # /api/results/multi/latest
    DATABASE = "database"    # merged /api/ema-analysis/all listings
    CACHE = "cache"          # ResultCache, never re-written


def listing_rows(listing: Any) -> List[Dict[str, Any]]:
    """Handle both list and dict responses from the listing endpoints."""
    if isinstance(listing, list):
        return [r for r in listing if isinstance(r, dict)]
    if isinstance(listing, dict):
        for k in ("coins", "data", "results", "analysis"):
            if isinstance(listing.get(k), list):
                return [r for r in listing[k] if isinstance(r, dict)]
    return []


class DatabaseSource:
    """
    Builds a multi-timeframe payload from the database-backed API variant.
    Each timeframe listing contributes one `timeframe_data` entry per coin.
    """

    def __init__(self, client, timeframes: List[str] = TIMEFRAMES) -> None:
        self.client = client
        self.timeframes = list(timeframes)

    async def fetch(self) -> Dict[str, Any]:
        rows: Dict[str, Dict[str, Any]] = {}
        failures = 0

        for tf in self.timeframes:
            try:
                listing = await self.client.get_ema_analysis(tf)
            except RemoteRequestError as e:
                failures += 1
                logger.warning("EMA analysis for %s unavailable: %s", tf, e.message)
                continue

            for item in listing_rows(listing):
                symbol = item.get("symbol")
                if not symbol:
                    continue
                row = rows.get(symbol)
                if row is None:
                    row = {k: item[k] for k in COIN_FIELDS if k in item}
                    row["timeframe_data"] = {}
                    rows[symbol] = row
                row["timeframe_data"][tf] = {
                    "pct": item.get("pct_from_ema50"),
                    "above": item.get("above_ema50"),
                }

        if failures == len(self.timeframes):
            raise RemoteRequestError("/api/ema-analysis/all", "no timeframe could be loaded")

        analysis = list(rows.values())
        weekly = [r["timeframe_data"].get("1w") for r in analysis]
        above = sum(1 for w in weekly if w and w.get("above"))
        below = sum(1 for w in weekly if w and w.get("above") is False)

        payload: Dict[str, Any] = {
            "summary": {
                "total_scanned": len(analysis),
                "total_above_weekly": above,
                "total_below_weekly": below,
            },
            "analysis": analysis,
        }

        try:
            payload["database_stats"] = await self.client.get_database_stats()
        except RemoteRequestError as e:
            logger.info("Database stats unavailable: %s", e.message)

        # the server's own buckets ride along; the client re-buckets from `analysis`
        try:
            strategic = await self.client.get_strategic_summary()
        except RemoteRequestError as e:
            logger.info("Strategic summary unavailable: %s", e.message)
        else:
            if isinstance(strategic, dict):
                payload["strategic_summary"] = strategic

        return payload
