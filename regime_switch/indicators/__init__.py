"""Rolling technical indicators used for regime classification.

Available Indicators:
- BaseIndicator: Abstract base class for all indicators
- EMA, ADX: trend
- ATR, BollingerBands: volatility
- DonchianChannel, BreakoutDetector: channel breakout
- RSI, NoiseScore: oscillator noise
"""

from regime_switch.indicators.base import BaseIndicator, true_range
from regime_switch.indicators.breakout import BreakoutDetector, BreakoutSignal, DonchianChannel
from regime_switch.indicators.oscillators import RSI, NoiseScore
from regime_switch.indicators.trend import ADX, EMA
from regime_switch.indicators.volatility import ATR, BollingerBands

__all__: list[str] = [
    "ADX",
    "ATR",
    "BaseIndicator",
    "BollingerBands",
    "BreakoutDetector",
    "BreakoutSignal",
    "DonchianChannel",
    "EMA",
    "NoiseScore",
    "RSI",
    "true_range",
]
