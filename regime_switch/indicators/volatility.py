"""Volatility indicators.

Implements:
- ATR: Wilder-smoothed average true range
- BollingerBands: SMA +/- k population standard deviations, with band width
"""

from __future__ import annotations

import math
from collections import deque

from regime_switch.contracts import Bar
from regime_switch.indicators.base import BaseIndicator, true_range


class ATR(BaseIndicator):
    """Average True Range.

    The first value is the mean of `period` true ranges (each needing the
    previous close), then ATR = (ATR * (period - 1) + TR) / period.
    """

    name = "ATR"

    def __init__(self, period: int = 14) -> None:
        super().__init__(period)
        self.reset()

    @property
    def warmup_bars(self) -> int:
        """period true ranges need period + 1 bars."""
        return self._period + 1

    def reset(self) -> None:
        self._value = None
        self._prev_close: float | None = None
        self._tr_values: list[float] = []

    def update(self, bar: Bar) -> float | None:
        self._check_bar(bar)
        prev_close, self._prev_close = self._prev_close, bar.close
        if prev_close is None:
            return None

        tr = true_range(bar, prev_close)
        if self._value is None:
            self._tr_values.append(tr)
            if len(self._tr_values) == self._period:
                self._value = sum(self._tr_values) / self._period
                self._tr_values.clear()
            return self._value

        self._value = (self._value * (self._period - 1) + tr) / self._period
        return self._value


class BollingerBands(BaseIndicator):
    """Bollinger Bands over a rolling window of closes.

    middle = SMA(period), upper/lower = middle +/- std_dev * sigma (population),
    width = (upper - lower) / middle. value is the width.
    """

    name = "BollingerBands"

    def __init__(self, period: int = 20, std_dev: float = 2.0) -> None:
        super().__init__(period)
        if std_dev <= 0:
            raise ValueError(f"std_dev must be > 0, got {std_dev}")
        self._std_dev = std_dev
        self.reset()

    def reset(self) -> None:
        self._value = None
        self._closes: deque[float] = deque(maxlen=self._period)
        self.upper: float | None = None
        self.middle: float | None = None
        self.lower: float | None = None

    @property
    def width(self) -> float | None:
        return self._value

    def update(self, bar: Bar) -> float | None:
        self._check_bar(bar)
        self._closes.append(bar.close)
        if len(self._closes) < self._period:
            return None

        mean = sum(self._closes) / self._period
        variance = sum((c - mean) ** 2 for c in self._closes) / self._period
        sigma = math.sqrt(variance)

        self.middle = mean
        self.upper = mean + self._std_dev * sigma
        self.lower = mean - self._std_dev * sigma
        self._value = self._safe_divide(self.upper - self.lower, mean)
        return self._value
