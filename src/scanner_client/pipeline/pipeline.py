import logging
import time
from typing import Any, Dict, List, Optional

from ..core.models import ClassifiedAsset, ScanResults, StrategicSummary
from ..core.strategy import (
    bucket,
    classify_coins,
    filter_stablecoins,
    header_counts,
    rank_by_alignment,
)
from ..db.cache import ResultCache
from .sources import DatabaseSource, ResultSource

logger = logging.getLogger(__name__)

STRATEGIC_LISTS = (
    "coins_to_evaluate_long_term",
    "coins_to_trade_now_short_term",
    "coins_to_avoid",
)


def extract_rows(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Pull raw coin rows out of a result payload.
    Prefers the full `results`/`analysis` lists and falls back to the
    server's strategic lists (deduplicated later by symbol).
    """
    for key in ("results", "analysis"):
        rows = payload.get(key)
        if isinstance(rows, list) and rows:
            return rows
    rows: List[Dict[str, Any]] = []
    strategic = payload.get("strategic_summary") or {}
    if isinstance(strategic, dict):
        for name in STRATEGIC_LISTS:
            items = strategic.get(name)
            if isinstance(items, list):
                rows.extend(items)
    return rows


class ResultPipeline:
    """
    Shared downstream of every result source:
    fetch -> stablecoin filter -> classify/score -> bucket -> cache.
    """

    def __init__(self, client, cache: ResultCache) -> None:
        self.client = client
        self.cache = cache
        self.database = DatabaseSource(client)
        self.results: Optional[ScanResults] = None
        self.assets: List[ClassifiedAsset] = []
        self.by_symbol: Dict[str, ClassifiedAsset] = {}
        self.strategic = StrategicSummary()
        self.source: Optional[ResultSource] = None
        self.loaded_at: Optional[float] = None

    @property
    def has_results(self) -> bool:
        return self.results is not None

    async def _fetch(self, source: ResultSource) -> Dict[str, Any]:
        if source is ResultSource.LATEST:
            return await self.client.get_latest_results()
        if source is ResultSource.DEMO:
            return await self.client.get_demo()
        if source is ResultSource.MULTI:
            return await self.client.get_multi_results()
        if source is ResultSource.DATABASE:
            return await self.database.fetch()
        raise ValueError(f"{source} is not a remote result source")

    async def load(self, source: ResultSource = ResultSource.LATEST) -> ScanResults:
        """Fetch a full payload from `source`, classify it and cache it."""
        payload = await self._fetch(source)
        payload = payload or {}
        results = self.apply(payload, source)
        await self.cache.write(payload)
        return results

    async def load_cached(self) -> bool:
        """Apply the cached payload if it is still fresh. Returns True when applied."""
        payload = await self.cache.read_fresh()
        if payload is None:
            return False
        self.apply(payload, ResultSource.CACHE)
        return True

    def apply(self, payload: Dict[str, Any], source: ResultSource) -> ScanResults:
        results = ScanResults.model_validate(payload)
        rows = filter_stablecoins(extract_rows(payload))
        assets = rank_by_alignment(classify_coins(rows))

        self.results = results
        self.assets = assets
        self.by_symbol = {a.symbol: a for a in assets}
        self.strategic = bucket(assets)
        self.source = source
        self.loaded_at = time.time()

        logger.info(
            "Loaded %d coins from %s (long term %d, trade now %d, avoid %d)",
            len(assets),
            source.value,
            len(self.strategic.coins_to_evaluate_long_term),
            len(self.strategic.coins_to_trade_now_short_term),
            len(self.strategic.coins_to_avoid),
        )
        return results

    def reset(self) -> None:
        self.results = None
        self.assets = []
        self.by_symbol = {}
        self.strategic = StrategicSummary()
        self.source = None
        self.loaded_at = None

    def header(self) -> Dict[str, int]:
        if self.results is None:
            return {"scanned": 0, "above": 0, "below": 0}
        return header_counts(self.results.summary)
