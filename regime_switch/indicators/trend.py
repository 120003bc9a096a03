"""Trend indicators.

Implements:
- EMA: exponential moving average, seeded with the simple average
- ADX: Wilder's average directional index with +DI / -DI
"""

from __future__ import annotations

from regime_switch.contracts import Bar
from regime_switch.indicators.base import BaseIndicator, true_range


class EMA(BaseIndicator):
    """Exponential moving average of closes.

    The first value is the SMA of the first `period` closes; afterwards
    value = alpha * close + (1 - alpha) * value with alpha = 2 / (period + 1).

    Example:
        >>> ema = EMA(period=3)
        >>> # closes 1, 2, 3 -> seed 2.0; close 4 -> 0.5 * 4 + 0.5 * 2 = 3.0
    """

    name = "EMA"

    def __init__(self, period: int) -> None:
        super().__init__(period)
        self._alpha = 2.0 / (period + 1)
        self.reset()

    def reset(self) -> None:
        self._value = None
        self._seed_sum = 0.0
        self._count = 0

    def update(self, bar: Bar) -> float | None:
        self._check_bar(bar)
        self._count += 1
        if self._value is None:
            self._seed_sum += bar.close
            if self._count == self._period:
                self._value = self._seed_sum / self._period
            return self._value

        self._value = self._alpha * bar.close + (1 - self._alpha) * self._value
        return self._value


class ADX(BaseIndicator):
    """Average Directional Index (0..100).

    Directional movement per bar:
        up = high[t] - high[t-1], down = low[t-1] - low[t]
        +DM = up if up > down and up > 0 else 0
        -DM = down if down > up and down > 0 else 0

    TR, +DM and -DM are Wilder-smoothed over `period` bars, DX =
    100 * |+DI - -DI| / (+DI + -DI), and ADX is the Wilder average of DX.

    Attributes:
        plus_di: Latest +DI (None during warmup)
        minus_di: Latest -DI (None during warmup)
    """

    name = "ADX"

    def __init__(self, period: int = 14) -> None:
        super().__init__(period)
        self.reset()

    @property
    def warmup_bars(self) -> int:
        """period changes to seed DI, then period DX values to seed ADX."""
        return 2 * self._period

    def reset(self) -> None:
        self._value = None
        self._prev: Bar | None = None
        self._changes = 0
        self._tr_sum = 0.0
        self._plus_sum = 0.0
        self._minus_sum = 0.0
        self._dx_values: list[float] = []
        self.plus_di: float | None = None
        self.minus_di: float | None = None

    def update(self, bar: Bar) -> float | None:
        self._check_bar(bar)
        prev, self._prev = self._prev, bar
        if prev is None:
            return None

        up_move = bar.high - prev.high
        down_move = prev.low - bar.low
        plus_dm = up_move if up_move > down_move and up_move > 0 else 0.0
        minus_dm = down_move if down_move > up_move and down_move > 0 else 0.0
        tr = true_range(bar, prev.close)

        self._changes += 1
        p = self._period
        if self._changes <= p:
            self._tr_sum += tr
            self._plus_sum += plus_dm
            self._minus_sum += minus_dm
            if self._changes < p:
                return None
        else:
            self._tr_sum = self._tr_sum - self._tr_sum / p + tr
            self._plus_sum = self._plus_sum - self._plus_sum / p + plus_dm
            self._minus_sum = self._minus_sum - self._minus_sum / p + minus_dm

        self.plus_di = 100.0 * (self._safe_divide(self._plus_sum, self._tr_sum) or 0.0)
        self.minus_di = 100.0 * (self._safe_divide(self._minus_sum, self._tr_sum) or 0.0)
        di_sum = self.plus_di + self.minus_di
        dx = 100.0 * (self._safe_divide(abs(self.plus_di - self.minus_di), di_sum) or 0.0)

        if self._value is None:
            self._dx_values.append(dx)
            if len(self._dx_values) == p:
                self._value = sum(self._dx_values) / p
                self._dx_values.clear()
            return self._value

        self._value = (self._value * (p - 1) + dx) / p
        return self._value
