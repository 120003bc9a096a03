"""Indicator fusion, rule-based classification and confidence scoring.

These are pure functions of their inputs; the detector owns the state.
Indicators are rebuilt on every call so a classification never depends on
anything but the bars passed in.
"""

from __future__ import annotations

from collections.abc import Sequence

from regime_switch.contracts import Bar, RegimeType
from regime_switch.indicators import ADX, ATR, EMA, BollingerBands, BreakoutDetector, NoiseScore
from regime_switch.regime.models import RegimeConfig, RegimeMetrics

TRENDING_MIN_STRENGTH = 0.6
TRENDING_MIN_BREAKOUT = 0.3
LOW_ADX_FACTOR = 0.8
NOISY_MIN_NOISE = 0.6
NOISY_RANGING_MAX_VOLATILITY = 0.4
VOLATILE_MIN_VOLATILITY = 0.7
RANGING_MAX_STRENGTH = 0.4

BASE_CONFIDENCE = 0.5
UNCERTAIN_CONFIDENCE = 0.3


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def compute_metrics(bars: Sequence[Bar], config: RegimeConfig) -> RegimeMetrics:
    """Run every indicator over `bars` and fuse the readings.

    Raises:
        InsufficientDataError: If any indicator lacks warmup data
        IndicatorError: If a bar carries an invalid price
    """
    fast_period, slow_period = config.ema_periods
    ema_fast = EMA(fast_period).calculate(bars)
    ema_slow = EMA(slow_period).calculate(bars)
    adx = ADX(config.adx_period).calculate(bars)
    atr = ATR(config.atr_period).calculate(bars)
    bands = BollingerBands(config.bollinger_period, config.bollinger_std_dev)
    band_width = bands.calculate(bars)
    breakout = BreakoutDetector(config.donchian_period)
    breakout.calculate(bars)
    noise = NoiseScore(config.rsi_period, config.noise_band)
    noise_level = noise.calculate(bars)

    price = bars[-1].close
    threshold = config.ema_distance_threshold

    ema_distance = (ema_fast - ema_slow) / price
    if ema_fast > ema_slow * (1 + threshold):
        direction = 1
    elif ema_fast < ema_slow * (1 - threshold):
        direction = -1
    else:
        direction = 0

    trend_strength = (_clamp(adx / 100.0) + min(1.0, abs(ema_distance) / threshold)) / 2

    atr_normalized = atr / price
    volatility = (
        min(1.0, atr_normalized / config.atr_normalizer)
        + min(1.0, band_width / config.bandwidth_normalizer)
    ) / 2

    signal = breakout.signal
    return RegimeMetrics(
        adx=adx,
        ema_distance=ema_distance,
        trend_direction=direction,
        trend_strength=_clamp(trend_strength),
        atr_normalized=atr_normalized,
        band_width=band_width,
        volatility=_clamp(volatility),
        rsi=noise.rsi,
        noise_level=_clamp(noise_level),
        breakout=signal.is_breakout,
        breakout_direction=signal.direction,
        breakout_strength=signal.strength,
        price=price,
    )


def classify(metrics: RegimeMetrics, config: RegimeConfig) -> RegimeType:
    """Map metrics to a regime. Rules are checked in order; first match wins."""
    adx_threshold = config.adx_trend_threshold

    if (
        metrics.adx > adx_threshold
        and metrics.trend_strength > TRENDING_MIN_STRENGTH
        and (
            (metrics.breakout and metrics.breakout_strength > TRENDING_MIN_BREAKOUT)
            or abs(metrics.ema_distance) > config.ema_distance_threshold
        )
    ):
        return RegimeType.TRENDING

    if metrics.adx < adx_threshold * LOW_ADX_FACTOR and metrics.noise_level > NOISY_MIN_NOISE:
        if metrics.volatility < NOISY_RANGING_MAX_VOLATILITY:
            return RegimeType.RANGING
        return RegimeType.VOLATILE

    if metrics.volatility > VOLATILE_MIN_VOLATILITY:
        return RegimeType.VOLATILE

    if (
        metrics.adx < adx_threshold
        and not metrics.breakout
        and metrics.trend_strength < RANGING_MAX_STRENGTH
    ):
        return RegimeType.RANGING

    return RegimeType.UNCERTAIN


def score_confidence(regime: RegimeType, metrics: RegimeMetrics, config: RegimeConfig) -> float:
    """Confidence in `regime` given `metrics`, clamped to [0, 1]."""
    if regime is RegimeType.UNCERTAIN:
        return UNCERTAIN_CONFIDENCE

    adx_threshold = config.adx_trend_threshold
    distance_threshold = config.ema_distance_threshold
    confidence = BASE_CONFIDENCE

    if regime is RegimeType.TRENDING:
        if metrics.adx > adx_threshold * 1.5:
            confidence += 0.3
        elif metrics.adx > adx_threshold:
            confidence += 0.2
        if abs(metrics.ema_distance) > distance_threshold * 2:
            confidence += 0.2
        elif abs(metrics.ema_distance) > distance_threshold:
            confidence += 0.1
        if metrics.breakout and metrics.breakout_strength > 0.5:
            confidence += 0.2

    elif regime is RegimeType.RANGING:
        if metrics.adx < adx_threshold * 0.5:
            confidence += 0.2
        if metrics.noise_level > 0.7:
            confidence += 0.2
        if metrics.volatility < 0.3:
            confidence += 0.2
        if not metrics.breakout:
            confidence += 0.1

    elif regime is RegimeType.VOLATILE:
        if metrics.volatility > 0.8:
            confidence += 0.3
        elif metrics.volatility > 0.6:
            confidence += 0.2
        if metrics.adx < adx_threshold:
            confidence += 0.1

    return _clamp(confidence)


__all__ = ["classify", "compute_metrics", "score_confidence"]
