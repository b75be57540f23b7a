import math

import pytest

from scanner_client.core.models import TimeframeSample, TrendCategory, TrendIcon
from scanner_client.core.trend import classify, parse_pct, sample_from_pct, score

ORDER = [
    TrendCategory.BEARISH,
    TrendCategory.SLIGHTLY_BEARISH,
    TrendCategory.NEUTRAL,
    TrendCategory.SLIGHTLY_BULLISH,
    TrendCategory.BULLISH,
    TrendCategory.VERY_BULLISH,
]


def _samples(**pcts):
    return {tf: sample_from_pct(tf, pct) for tf, pct in pcts.items()}


@pytest.mark.parametrize("pct,category,icon", [
    (25.0, TrendCategory.VERY_BULLISH, TrendIcon.STRONG_UP),
    (10.0001, TrendCategory.VERY_BULLISH, TrendIcon.STRONG_UP),
    (10.0, TrendCategory.BULLISH, TrendIcon.UP),
    (5.0, TrendCategory.SLIGHTLY_BULLISH, TrendIcon.UP),
    (0.01, TrendCategory.SLIGHTLY_BULLISH, TrendIcon.UP),
    (0.0, TrendCategory.NEUTRAL, TrendIcon.FLAT),
    (-4.99, TrendCategory.NEUTRAL, TrendIcon.FLAT),
    (-5.0, TrendCategory.SLIGHTLY_BEARISH, TrendIcon.DOWN),
    (-9.99, TrendCategory.SLIGHTLY_BEARISH, TrendIcon.DOWN),
    (-10.0, TrendCategory.BEARISH, TrendIcon.STRONG_DOWN),
    (-80.0, TrendCategory.BEARISH, TrendIcon.STRONG_DOWN),
])
def test_classify_thresholds(pct, category, icon):
    trend = classify(pct)
    assert trend.category is category
    assert trend.icon is icon


def test_classify_is_monotonic():
    values = [x / 4 for x in range(-100, 101)]
    ranks = [ORDER.index(classify(v).category) for v in values]
    assert ranks == sorted(ranks)
    assert {classify(v).category for v in values} == set(ORDER)


def test_glyphs():
    assert classify(12).glyph == "▲▲"
    assert classify(-2).glyph == "━"
    assert classify(-12).glyph == "▼▼"


@pytest.mark.parametrize("raw,expected", [
    (12.5, 12.5),
    ("12.5", 12.5),
    ("+3.2%", 3.2),
    ("-7", -7.0),
    (None, None),
    ("n/a", None),
    (float("nan"), None),
    (float("inf"), None),
    (True, None),
])
def test_parse_pct(raw, expected):
    assert parse_pct(raw) == expected


def test_sample_from_pct_rejects_non_finite():
    assert sample_from_pct("1h", float("nan")) is None
    assert sample_from_pct("1h", None) is None


def test_sample_from_pct_derives_above_flag():
    sample = sample_from_pct("1d", -3.0)
    assert sample.category is TrendCategory.NEUTRAL
    assert sample.above is False
    assert sample_from_pct("1d", -3.0, above=True).above is True


def test_score_all_bullish():
    result = score(_samples(**{"15m": 1.0, "1h": 6.0, "1d": 15.0, "1w": 30.0}))
    assert result.bullish_timeframes == 4
    assert result.bearish_timeframes == 0
    assert result.total_timeframes == 4
    assert result.alignment_score == 100.0
    assert result.primary_trend == "Bullish"


def test_score_even_split_is_neutral():
    result = score(_samples(**{"1h": 40.0, "4h": 0.5, "1d": -6.0, "1w": -50.0}))
    assert result.bullish_timeframes == 2
    assert result.bearish_timeframes == 2
    assert result.alignment_score == 50.0
    assert result.primary_trend == "Neutral"


def test_score_neutral_counts_toward_total_only():
    result = score(_samples(**{"1h": -1.0, "4h": -2.0, "1d": 3.0, "1w": -11.0}))
    assert result.total_timeframes == 4
    assert result.bullish_timeframes == 1
    assert result.bearish_timeframes == 1
    assert result.alignment_score == 25.0
    assert result.primary_trend == "Neutral"


def test_score_majority_bearish():
    result = score(_samples(**{"4h": -12.0, "1d": -6.0, "1w": 2.0}))
    assert result.primary_trend == "Bearish"
    assert math.isclose(result.alignment_score, 200 / 3)


def test_score_without_samples():
    result = score({})
    assert result.total_timeframes == 0
    assert result.alignment_score == 0.0
    assert result.primary_trend == "Neutral"


def test_score_accepts_prebuilt_samples():
    samples = {
        "1d": TimeframeSample(timeframe="1d", pct=-20.0, category=TrendCategory.BEARISH, above=False),
    }
    assert score(samples).primary_trend == "Bearish"
