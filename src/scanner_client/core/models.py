"""
Data models for the scanner client.
No implementation logic, only Pydantic models and typed structures.
"""

from enum import Enum
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
import time


# Ordered timeframe sequence used for display and scoring
TIMEFRAMES = ["15m", "30m", "1h", "4h", "12h", "1d", "1w"]


class TrendCategory(str, Enum):
    VERY_BULLISH = "very-bullish"
    BULLISH = "bullish"
    SLIGHTLY_BULLISH = "slightly-bullish"
    NEUTRAL = "neutral"
    SLIGHTLY_BEARISH = "slightly-bearish"
    BEARISH = "bearish"


class TrendIcon(str, Enum):
    STRONG_UP = "strong-up"
    UP = "up"
    FLAT = "flat"
    DOWN = "down"
    STRONG_DOWN = "strong-down"


class CoinResult(BaseModel):
    """Snapshot of one asset as produced by the remote scanner.
    The client never mutates it; derived fields live on ClassifiedAsset.
    """
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    symbol: str = Field(..., description="Uppercase ticker")
    name: Optional[str] = Field(None, description="Display name")
    rank: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("rank", "market_cap_rank"),
        description="Market-cap rank",
    )
    current_price: Optional[float] = Field(None, description="Last price")
    ema50: Optional[float] = Field(None, description="EMA-50 value")
    pct_from_ema50: Optional[float] = Field(None, description="Percent distance from EMA-50")
    above_ema50: Optional[bool] = Field(None, description="Price above EMA-50")
    timeframe: Optional[str] = Field(None, description="Timeframe the snapshot was taken on")


class TimeframeSample(BaseModel):
    timeframe: str
    pct: float
    category: TrendCategory
    above: bool


class AlignmentResult(BaseModel):
    bullish_timeframes: int = 0
    bearish_timeframes: int = 0
    total_timeframes: int = 0
    alignment_score: float = 0.0
    primary_trend: str = "Neutral"


class ClassifiedAsset(BaseModel):
    """A CoinResult annotated with its per-timeframe samples and alignment."""
    coin: CoinResult
    samples: Dict[str, TimeframeSample] = Field(default_factory=dict)
    alignment: AlignmentResult = Field(default_factory=AlignmentResult)
    pct_from_ema50: Optional[float] = Field(None, description="Primary (weekly) distance")
    four_hour_pct_from_ema: Optional[float] = Field(None, description="4H distance")

    @property
    def symbol(self) -> str:
        return self.coin.symbol


class ScanStatus(BaseModel):
    """Job snapshot returned by GET /api/status. Observed, never owned."""
    model_config = ConfigDict(extra="allow")

    running: bool = False
    progress: int = 0
    total: int = 0
    current_coin: Optional[str] = Field(
        None, validation_alias=AliasChoices("current_coin", "current_item")
    )
    status_message: str = Field(
        "", validation_alias=AliasChoices("status_message", "message")
    )


class StrategicSummary(BaseModel):
    coins_to_evaluate_long_term: List[ClassifiedAsset] = Field(default_factory=list)
    coins_to_trade_now_short_term: List[ClassifiedAsset] = Field(default_factory=list)
    coins_to_avoid: List[ClassifiedAsset] = Field(default_factory=list)


class ScanResults(BaseModel):
    """Full result payload from /api/results/latest, /api/demo or the multi endpoint.
    Unknown keys are kept so the payload round-trips through the cache unchanged.
    """
    model_config = ConfigDict(extra="allow")

    summary: Dict[str, Any] = Field(default_factory=dict)
    strategic_summary: Optional[Dict[str, Any]] = None
    results: Optional[List[Dict[str, Any]]] = None
    analysis: Optional[List[Dict[str, Any]]] = None


class CacheEntry(BaseModel):
    key: str
    timestamp: int = Field(..., description="Epoch milliseconds at write time")
    data: Dict[str, Any]


class PriceTick(BaseModel):
    symbol: str
    price: float
    volume_24h: Optional[float] = None
    received_at: float = Field(default_factory=time.time)


class StreamEvent(BaseModel):
    """One message of the /api/stream push stream."""
    model_config = ConfigDict(extra="allow")

    type: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class CoinDetails(BaseModel):
    """Payload of /api/coins/{symbol}/details."""
    model_config = ConfigDict(extra="allow")

    coin_info: Dict[str, Any] = Field(default_factory=dict)
    ema_analysis: List[Dict[str, Any]] = Field(default_factory=list)
    price_range: Dict[str, Any] = Field(default_factory=dict)
    data_coverage: List[Any] = Field(default_factory=list)
    overall_quality: Optional[float] = None
    trading_confidence: Optional[Any] = None
