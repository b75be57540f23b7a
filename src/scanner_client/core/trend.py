"""
Trend classification and multi-timeframe alignment scoring.
Pure functions, no I/O.
"""

import math
from typing import Mapping, NamedTuple, Optional

from .models import AlignmentResult, TimeframeSample, TrendCategory, TrendIcon

BULLISH_CATEGORIES = frozenset({
    TrendCategory.VERY_BULLISH,
    TrendCategory.BULLISH,
    TrendCategory.SLIGHTLY_BULLISH,
})
BEARISH_CATEGORIES = frozenset({
    TrendCategory.BEARISH,
    TrendCategory.SLIGHTLY_BEARISH,
})

GLYPHS = {
    TrendIcon.STRONG_UP: "▲▲",
    TrendIcon.UP: "▲",
    TrendIcon.FLAT: "━",
    TrendIcon.DOWN: "▼",
    TrendIcon.STRONG_DOWN: "▼▼",
}


class Trend(NamedTuple):
    category: TrendCategory
    icon: TrendIcon

    @property
    def glyph(self) -> str:
        return GLYPHS[self.icon]


def classify(pct: float) -> Trend:
    """
    Map a percent distance from EMA-50 to a trend category and icon.
    Thresholds are strict, so a boundary value falls to the lower category:
    10 is bullish, 0 is neutral, -10 is bearish.
    Callers must filter out non-finite values first.
    """
    if pct > 10:
        return Trend(TrendCategory.VERY_BULLISH, TrendIcon.STRONG_UP)
    if pct > 5:
        return Trend(TrendCategory.BULLISH, TrendIcon.UP)
    if pct > 0:
        return Trend(TrendCategory.SLIGHTLY_BULLISH, TrendIcon.UP)
    if pct > -5:
        return Trend(TrendCategory.NEUTRAL, TrendIcon.FLAT)
    if pct > -10:
        return Trend(TrendCategory.SLIGHTLY_BEARISH, TrendIcon.DOWN)
    return Trend(TrendCategory.BEARISH, TrendIcon.STRONG_DOWN)


def parse_pct(val) -> Optional[float]:
    """
    Parse 12.34, '12.34', '+12.34%' -> float. None, NaN, inf and junk -> None.
    """
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, str):
        val = val.replace("%", "").replace(",", "").strip()
    try:
        pct = float(val)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(pct):
        return None
    return pct


def sample_from_pct(timeframe: str, pct, above: Optional[bool] = None) -> Optional[TimeframeSample]:
    """Build a TimeframeSample, or None when the distance is missing or not finite."""
    value = parse_pct(pct)
    if value is None:
        return None
    if above is None:
        above = value > 0
    return TimeframeSample(
        timeframe=timeframe,
        pct=value,
        category=classify(value).category,
        above=bool(above),
    )


def score(samples: Mapping[str, TimeframeSample]) -> AlignmentResult:
    """
    Count bullish/bearish timeframes and compute the alignment score.

    Only timeframes with a sample count toward the total; neutral samples
    count toward the total but neither side. Equal counts are Neutral.
    """
    bullish = 0
    bearish = 0
    for sample in samples.values():
        if sample.category in BULLISH_CATEGORIES:
            bullish += 1
        elif sample.category in BEARISH_CATEGORIES:
            bearish += 1

    total = len(samples)
    alignment = 100.0 * max(bullish, bearish) / total if total > 0 else 0.0

    if bullish > bearish:
        primary = "Bullish"
    elif bearish > bullish:
        primary = "Bearish"
    else:
        primary = "Neutral"

    return AlignmentResult(
        bullish_timeframes=bullish,
        bearish_timeframes=bearish,
        total_timeframes=total,
        alignment_score=alignment,
        primary_trend=primary,
    )
