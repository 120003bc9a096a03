"""Regime detection models.

Classes:
    RegimeConfig: Indicator periods, classification thresholds and hysteresis settings
    RegimeMetrics: Fused indicator readings for one classification call
    RegimeSignal: Output of one detection call
    RegimeDetectorState: Persistable copy of the detector's hysteresis state
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import ConfigDict, Field, field_validator, model_validator

from regime_switch.contracts import RegimeType
from regime_switch.indicators import ADX, ATR, EMA, BollingerBands, BreakoutDetector, NoiseScore
from regime_switch.models import StrictModel


class RegimeConfig(StrictModel):
    """Regime detector configuration.

    Attributes:
        ema_periods: (fast, slow) EMA periods for the moving-average divergence.
        adx_period: ADX smoothing period.
        adx_trend_threshold: ADX level separating trending from non-trending.
        ema_distance_threshold: Minimum |ema_fast - ema_slow| / price for a trend.
        donchian_period: Breakout channel lookback.
        atr_period: ATR smoothing period.
        bollinger_period: Bollinger band window.
        bollinger_std_dev: Bollinger band width in standard deviations.
        rsi_period: RSI period for the noise score.
        noise_band: RSI neutral band; noise is 1.0 at its center.
        confirmation_bars: Consecutive differing detections required to switch.
        regime_switch_cooldown: Detections after a switch during which the
            regime is frozen.
        history_limit: Maximum retained signals.
        history_trim: Signals dropped in one pass once the limit is exceeded.
        atr_normalizer: ATR / price that maps to volatility 1.0.
        bandwidth_normalizer: Bollinger width that maps to volatility 1.0.
    """

    ema_periods: tuple[int, int] = (50, 200)
    adx_period: int = Field(default=14, ge=1)
    adx_trend_threshold: float = Field(default=20.0, gt=0, le=100)
    ema_distance_threshold: float = Field(default=0.005, gt=0)
    donchian_period: int = Field(default=20, ge=1)
    atr_period: int = Field(default=14, ge=1)
    bollinger_period: int = Field(default=20, ge=2)
    bollinger_std_dev: float = Field(default=2.0, gt=0)
    rsi_period: int = Field(default=14, ge=1)
    noise_band: tuple[float, float] = (45.0, 55.0)
    confirmation_bars: int = Field(default=3, ge=1)
    regime_switch_cooldown: int = Field(default=2, ge=0)
    history_limit: int = Field(default=1000, ge=1)
    history_trim: int = Field(default=100, ge=1)
    atr_normalizer: float = Field(default=0.03, gt=0)
    bandwidth_normalizer: float = Field(default=0.10, gt=0)

    @field_validator("ema_periods")
    @classmethod
    def _fast_below_slow(cls, value: tuple[int, int]) -> tuple[int, int]:
        fast, slow = value
        if fast < 1 or slow <= fast:
            raise ValueError("ema_periods must be (fast, slow) with 1 <= fast < slow")
        return value

    @field_validator("noise_band")
    @classmethod
    def _valid_band(cls, value: tuple[float, float]) -> tuple[float, float]:
        low, high = value
        if not 0 <= low < high <= 100:
            raise ValueError("noise_band must satisfy 0 <= low < high <= 100")
        return value

    @model_validator(mode="after")
    def _trim_within_limit(self) -> RegimeConfig:
        if self.history_trim > self.history_limit:
            raise ValueError("history_trim cannot exceed history_limit")
        return self

    @property
    def minimum_bars(self) -> int:
        """Bars required by detect_regime: longest indicator warmup plus confirmation bars."""
        indicators = (
            EMA(self.ema_periods[1]),
            ADX(self.adx_period),
            ATR(self.atr_period),
            BollingerBands(self.bollinger_period, self.bollinger_std_dev),
            BreakoutDetector(self.donchian_period),
            NoiseScore(self.rsi_period, self.noise_band),
        )
        return max(ind.warmup_bars for ind in indicators) + self.confirmation_bars


@dataclass(frozen=True)
class RegimeMetrics:
    """Fused indicator readings, recomputed on every classification call.

    Attributes:
        adx: Raw ADX (0..100)
        ema_distance: (ema_fast - ema_slow) / price
        trend_direction: -1, 0 or 1
        trend_strength: Mean of normalized ADX and normalized EMA divergence (0..1)
        atr_normalized: ATR / price
        band_width: Bollinger width
        volatility: Mean of normalized ATR and normalized band width (0..1)
        rsi: Raw RSI
        noise_level: RSI centeredness in the neutral band (0..1)
        breakout: True when price closed outside the channel
        breakout_direction: -1, 0 or 1
        breakout_strength: Volume-adjusted strength, capped at 2.0
        price: Close of the last bar
    """

    adx: float
    ema_distance: float
    trend_direction: int
    trend_strength: float
    atr_normalized: float
    band_width: float
    volatility: float
    rsi: float
    noise_level: float
    breakout: bool
    breakout_direction: int
    breakout_strength: float
    price: float


class RegimeSignal(StrictModel):
    """Result of a single detection call.

    Attributes:
        regime: Externally visible regime after hysteresis.
        confidence: Confidence in [0, 1].
        timestamp: Timestamp of the last bar.
        trend_strength: Combined trend strength (0..1).
        volatility: Combined volatility (0..1).
        noise_level: Noise score (0..1).
        transition: True only on the call that accepted a regime change.
        raw_regime: Classification before hysteresis.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    regime: RegimeType
    confidence: float = Field(ge=0.0, le=1.0)
    timestamp: datetime
    trend_strength: float
    volatility: float
    noise_level: float
    transition: bool = False
    raw_regime: RegimeType | None = None


class RegimeDetectorState(StrictModel):
    """Deep copy of the detector's hysteresis state and history."""

    current_regime: RegimeType | None = None
    pending_regime: RegimeType | None = None
    confirmation_count: int = 0
    cooldown_remaining: int = 0
    last_signal: RegimeSignal | None = None
    history: list[RegimeSignal] = Field(default_factory=list)


__all__ = [
    "RegimeConfig",
    "RegimeDetectorState",
    "RegimeMetrics",
    "RegimeSignal",
]
