"""Channel breakout indicators.

Implements:
- DonchianChannel: highest high / lowest low of the PREVIOUS n bars
- BreakoutDetector: channel break with volume confirmation

The channel never includes the current bar, so a close above the upper
band is a genuine break of past highs.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from regime_switch.contracts import Bar
from regime_switch.indicators.base import BaseIndicator

VOLUME_LOOKBACK = 4
VOLUME_SURGE_RATIO = 1.5
VOLUME_DRY_RATIO = 0.5
VOLUME_SURGE_MULTIPLIER = 1.5
VOLUME_DRY_MULTIPLIER = 0.7
MAX_BREAKOUT_STRENGTH = 2.0


class DonchianChannel(BaseIndicator):
    """Donchian channel over the previous `period` bars.

    value is the channel width (upper - lower).
    """

    name = "DonchianChannel"

    def __init__(self, period: int = 20) -> None:
        super().__init__(period)
        self.reset()

    @property
    def warmup_bars(self) -> int:
        """period past bars plus the current bar."""
        return self._period + 1

    def reset(self) -> None:
        self._value = None
        self._highs: deque[float] = deque(maxlen=self._period)
        self._lows: deque[float] = deque(maxlen=self._period)
        self.upper: float | None = None
        self.lower: float | None = None

    def update(self, bar: Bar) -> float | None:
        self._check_bar(bar)
        if len(self._highs) == self._period:
            self.upper = max(self._highs)
            self.lower = min(self._lows)
            self._value = self.upper - self.lower
        self._highs.append(bar.high)
        self._lows.append(bar.low)
        return self._value


@dataclass(frozen=True)
class BreakoutSignal:
    """Breakout state for the current bar.

    direction: +1 upside break, -1 downside break, 0 inside the channel
    strength: distance beyond the channel / channel width, volume adjusted
    """

    direction: int = 0
    strength: float = 0.0
    volume_multiplier: float = 1.0

    @property
    def is_breakout(self) -> bool:
        return self.direction != 0


class BreakoutDetector(BaseIndicator):
    """Detects closes outside the Donchian channel.

    Strength = (close - upper) / width for upside breaks, (lower - close) / width
    for downside breaks, multiplied by 1.5 when volume exceeds 1.5x the
    trailing 4-bar average and 0.7 when below 0.5x, capped at 2.0.
    value is the signed strength (direction * strength).
    """

    name = "BreakoutDetector"

    def __init__(self, period: int = 20) -> None:
        super().__init__(period)
        self._channel = DonchianChannel(period)
        self.reset()

    @property
    def warmup_bars(self) -> int:
        return self._channel.warmup_bars

    @property
    def channel(self) -> DonchianChannel:
        return self._channel

    def reset(self) -> None:
        self._value = None
        self._channel.reset()
        self._volumes: deque[float] = deque(maxlen=VOLUME_LOOKBACK)
        self.signal = BreakoutSignal()

    def update(self, bar: Bar) -> float | None:
        width = self._channel.update(bar)
        multiplier = self._volume_multiplier(bar.volume)
        self._volumes.append(bar.volume)
        if width is None:
            return None

        upper, lower = self._channel.upper, self._channel.lower
        direction = 0
        distance = 0.0
        if bar.close > upper:
            direction, distance = 1, bar.close - upper
        elif bar.close < lower:
            direction, distance = -1, lower - bar.close

        strength = 0.0
        if direction != 0:
            raw = self._safe_divide(distance, width)
            # Zero-width channel: any break counts as maximal
            strength = MAX_BREAKOUT_STRENGTH if raw is None else raw
            strength = min(MAX_BREAKOUT_STRENGTH, strength * multiplier)

        self.signal = BreakoutSignal(
            direction=direction, strength=strength, volume_multiplier=multiplier
        )
        self._value = direction * strength
        return self._value

    def _volume_multiplier(self, volume: float) -> float:
        if len(self._volumes) < VOLUME_LOOKBACK:
            return 1.0
        average = sum(self._volumes) / len(self._volumes)
        if average <= 0:
            return 1.0
        if volume > VOLUME_SURGE_RATIO * average:
            return VOLUME_SURGE_MULTIPLIER
        if volume < VOLUME_DRY_RATIO * average:
            return VOLUME_DRY_MULTIPLIER
        return 1.0
