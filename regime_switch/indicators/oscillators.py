"""Oscillator indicators.

Implements:
- RSI: relative strength index (0..100)
- NoiseScore: how centered RSI sits inside a neutral band
"""

from __future__ import annotations

from collections.abc import Sequence

from regime_switch.contracts import Bar
from regime_switch.errors import IndicatorError
from regime_switch.indicators.base import BaseIndicator


class RSI(BaseIndicator):
    """Relative Strength Index.

    calculate() seeds average gain/loss with the simple average of the last
    `period` close-to-close changes; update() continues with Wilder
    smoothing. RSI is 100 when there are no losses and 50 when price is flat.
    """

    name = "RSI"

    def __init__(self, period: int = 14) -> None:
        super().__init__(period)
        self.reset()

    @property
    def warmup_bars(self) -> int:
        """period changes need period + 1 closes."""
        return self._period + 1

    def reset(self) -> None:
        self._value = None
        self._prev_close: float | None = None
        self._avg_gain: float | None = None
        self._avg_loss: float | None = None
        self._seed: list[float] = []

    def calculate(self, bars: Sequence[Bar]) -> float:
        self._require(bars)
        self.reset()
        window = bars[-(self._period + 1) :]
        for bar in window:
            self._check_bar(bar)
        changes = [cur.close - prev.close for prev, cur in zip(window, window[1:])]
        self._avg_gain = sum(c for c in changes if c > 0) / self._period
        self._avg_loss = sum(-c for c in changes if c < 0) / self._period
        self._prev_close = window[-1].close
        self._value = self._from_averages()
        return self._value

    def update(self, bar: Bar) -> float | None:
        self._check_bar(bar)
        prev_close, self._prev_close = self._prev_close, bar.close
        if prev_close is None:
            return None

        change = bar.close - prev_close
        gain, loss = max(change, 0.0), max(-change, 0.0)

        if self._avg_gain is None:
            self._seed.append(change)
            if len(self._seed) < self._period:
                return None
            self._avg_gain = sum(c for c in self._seed if c > 0) / self._period
            self._avg_loss = sum(-c for c in self._seed if c < 0) / self._period
            self._seed.clear()
        else:
            p = self._period
            self._avg_gain = (self._avg_gain * (p - 1) + gain) / p
            self._avg_loss = (self._avg_loss * (p - 1) + loss) / p

        self._value = self._from_averages()
        return self._value

    def _from_averages(self) -> float:
        if self._avg_loss == 0:
            return 50.0 if self._avg_gain == 0 else 100.0
        rs = self._avg_gain / self._avg_loss
        return 100.0 - 100.0 / (1.0 + rs)


class NoiseScore(BaseIndicator):
    """Centeredness of RSI within a neutral band.

    1.0 when RSI sits exactly at the band center, falling linearly to 0 at
    the band edges, 0 outside the band. For the default band [45, 55]:
    noise = 1 - |rsi - 50| / 5.
    """

    name = "NoiseScore"

    def __init__(self, period: int = 14, band: tuple[float, float] = (45.0, 55.0)) -> None:
        super().__init__(period)
        low, high = band
        if not 0 <= low < high <= 100:
            raise ValueError(f"invalid neutral band {band}")
        self._band = (low, high)
        self._rsi = RSI(period)
        self.reset()

    @property
    def warmup_bars(self) -> int:
        return self._rsi.warmup_bars

    @property
    def rsi(self) -> float | None:
        return self._rsi.value

    def reset(self) -> None:
        self._value = None
        self._rsi.reset()

    def calculate(self, bars: Sequence[Bar]) -> float:
        self._value = self.score(self._rsi.calculate(bars))
        return self._value

    def update(self, bar: Bar) -> float | None:
        rsi = self._rsi.update(bar)
        self._value = None if rsi is None else self.score(rsi)
        return self._value

    def score(self, rsi: float) -> float:
        if not 0 <= rsi <= 100:
            raise IndicatorError(f"RSI out of range: {rsi}", component="indicators")
        low, high = self._band
        if rsi < low or rsi > high:
            return 0.0
        center = (low + high) / 2
        half_width = (high - low) / 2
        return max(0.0, 1.0 - abs(rsi - center) / half_width)
