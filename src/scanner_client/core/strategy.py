"""
Stablecoin filtering, per-coin classification and strategic bucketing.
"""

from typing import Any, Dict, Iterable, List, Optional

from .models import ClassifiedAsset, CoinResult, StrategicSummary, TimeframeSample
from .trend import parse_pct, sample_from_pct, score

STABLECOINS = frozenset({
    "USDT", "USDC", "BUSD", "DAI", "TUSD", "USDP", "USDD", "GUSD", "FRAX",
    "LUSD", "USDE", "FDUSD", "PYUSD", "EURC", "EURS", "SUSD", "USTC", "UST",
    "PAX",
})

# Keys the scanner uses for nested per-timeframe snapshots
TIMEFRAME_KEYS = {
    "weekly": "1w",
    "daily": "1d",
    "4h": "4h",
}

# Which snapshot stands in for the coin on cards: weekly, then daily, then 4h
DISPLAY_ORDER = ("weekly", "daily", "4h")

LONG_TERM_FLOOR = -10.0
AVOID_BELOW = -10.0
TRADE_NOW_BAND = 5.0


def _symbol_of(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        return item.get("symbol")
    return getattr(item, "symbol", None)


def filter_stablecoins(assets) -> list:
    """Drop assets whose symbol is a known stablecoin. Order-preserving.
    Accepts models or raw dicts; anything that is not a list yields [].
    """
    if not isinstance(assets, (list, tuple)):
        return []
    return [a for a in assets if _symbol_of(a) not in STABLECOINS]


def display_coin(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Pick the snapshot shown for a streamed partial result (weekly, daily, 4h)."""
    for key in DISPLAY_ORDER:
        if isinstance(raw.get(key), dict):
            return raw[key]
    return raw if raw.get("symbol") else None


def _collect_samples(raw: Dict[str, Any]) -> Dict[str, TimeframeSample]:
    samples: Dict[str, TimeframeSample] = {}

    # Multi-timeframe payload: {"timeframe_data": {"1h": {"pct": .., "above": ..}}}
    tf_data = raw.get("timeframe_data")
    if isinstance(tf_data, dict):
        for tf, data in tf_data.items():
            if not isinstance(data, dict):
                continue
            sample = sample_from_pct(tf, data.get("pct"), data.get("above"))
            if sample:
                samples[tf] = sample

    # Standard payload: {"weekly": {...coin}, "daily": {...}, "4h": {...}}
    for key, tf in TIMEFRAME_KEYS.items():
        snap = raw.get(key)
        if isinstance(snap, dict) and tf not in samples:
            sample = sample_from_pct(tf, snap.get("pct_from_ema50"), snap.get("above_ema50"))
            if sample:
                samples[tf] = sample

    # Flat coin row carrying its own timeframe label
    tf = TIMEFRAME_KEYS.get(raw.get("timeframe"), raw.get("timeframe"))
    if tf and tf not in samples:
        sample = sample_from_pct(tf, raw.get("pct_from_ema50"), raw.get("above_ema50"))
        if sample:
            samples[tf] = sample

    if "4h" not in samples:
        sample = sample_from_pct("4h", raw.get("four_hour_pct_from_ema"))
        if sample:
            samples["4h"] = sample

    return samples


def classify_coin(raw: Dict[str, Any]) -> Optional[ClassifiedAsset]:
    """
    Build a ClassifiedAsset from one raw coin row in any of the scanner's shapes.
    Returns None when the row has no symbol.
    """
    base = display_coin(raw) or {}
    fields = {**base, **{k: v for k, v in raw.items() if k not in TIMEFRAME_KEYS and k != "timeframe_data"}}
    if not fields.get("symbol"):
        return None
    coin = CoinResult.model_validate(fields)

    samples = _collect_samples(raw)

    primary = parse_pct(fields.get("pct_from_ema50"))
    if primary is None and "1w" in samples:
        primary = samples["1w"].pct

    four_hour = samples["4h"].pct if "4h" in samples else None

    return ClassifiedAsset(
        coin=coin,
        samples=samples,
        alignment=score(samples),
        pct_from_ema50=primary,
        four_hour_pct_from_ema=four_hour,
    )


def classify_coins(rows: Iterable[Dict[str, Any]]) -> List[ClassifiedAsset]:
    """Classify rows, keeping the first occurrence of each symbol."""
    out: List[ClassifiedAsset] = []
    seen = set()
    for raw in rows:
        if not isinstance(raw, dict):
            continue
        asset = classify_coin(raw)
        if asset is None or asset.symbol in seen:
            continue
        seen.add(asset.symbol)
        out.append(asset)
    return out


def rank_by_alignment(assets: List[ClassifiedAsset]) -> List[ClassifiedAsset]:
    # sorted() is stable, so equal scores keep their input order
    return sorted(assets, key=lambda a: a.alignment.alignment_score, reverse=True)


def bucket(assets: Iterable[ClassifiedAsset]) -> StrategicSummary:
    """
    Sort assets into long-term, trade-now and avoid lists.
    The rules are independent: an asset may land in several lists or none.
    """
    summary = StrategicSummary()
    for asset in filter_stablecoins(list(assets)):
        pct = asset.pct_from_ema50
        if pct is not None:
            if pct >= 0 or pct >= LONG_TERM_FLOOR:
                summary.coins_to_evaluate_long_term.append(asset)
            if pct < AVOID_BELOW:
                summary.coins_to_avoid.append(asset)

        four_hour = asset.four_hour_pct_from_ema
        if four_hour is not None and abs(four_hour) <= TRADE_NOW_BAND:
            summary.coins_to_trade_now_short_term.append(asset)
    return summary


def header_counts(summary: Dict[str, Any]) -> Dict[str, int]:
    """Scanned/above/below for the dashboard header; weekly counts win when present."""
    return {
        "scanned": int(summary.get("total_scanned") or 0),
        "above": int(summary.get("total_above_weekly") or summary.get("total_above") or 0),
        "below": int(summary.get("total_below_weekly") or summary.get("total_below") or 0),
    }
