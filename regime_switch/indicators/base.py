"""Base class for rolling technical indicators.

All indicators follow strict lookahead bias prevention:
- When processing bar[t], only data from bar[0:t] is used, never bar[t+1:]
- update() returns None during warmup (fewer than warmup_bars bars seen)
- calculate() raises InsufficientDataError instead of returning a partial value
- Division by zero yields None, never an exception
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Sequence

from regime_switch.contracts import Bar
from regime_switch.errors import IndicatorError, InsufficientDataError


class BaseIndicator(ABC):
    """Base class for incremental indicators.

    Subclasses implement reset() and update(bar). calculate(bars) replays a
    full history through update() unless a subclass needs a different seed
    for its first value.

    Attributes:
        period: Smoothing / lookback period in bars.
    """

    name = "indicator"

    def __init__(self, period: int) -> None:
        """Initialize indicator with a period.

        Raises:
            ValueError: If period is not positive.
        """
        if period < 1:
            raise ValueError(f"period must be >= 1, got {period}")
        self._period = period
        self._value: float | None = None

    @property
    def period(self) -> int:
        return self._period

    @property
    def warmup_bars(self) -> int:
        """Minimum bars needed before the indicator produces a value."""
        return self._period

    @property
    def value(self) -> float | None:
        """Latest value, None during warmup."""
        return self._value

    @property
    def is_ready(self) -> bool:
        return self._value is not None

    @abstractmethod
    def reset(self) -> None:
        """Forget all state."""

    @abstractmethod
    def update(self, bar: Bar) -> float | None:
        """Feed one new bar and return the updated value (None during warmup)."""

    def calculate(self, bars: Sequence[Bar]) -> float:
        """Recompute from a full history, oldest first.

        Raises:
            InsufficientDataError: If len(bars) < warmup_bars
            IndicatorError: If a bar carries an invalid price
        """
        self._require(bars)
        self.reset()
        for bar in bars:
            self.update(bar)
        if self._value is None:
            raise IndicatorError(
                f"{self.name} produced no value", component="indicators", operation="calculate"
            )
        return self._value

    def _require(self, bars: Sequence[Bar]) -> None:
        if len(bars) < self.warmup_bars:
            raise InsufficientDataError(
                f"{self.name}({self._period}) needs {self.warmup_bars} bars, got {len(bars)}",
                required=self.warmup_bars,
                available=len(bars),
                component="indicators",
                operation="calculate",
            )

    def _check_bar(self, bar: Bar) -> None:
        for label, price in (("high", bar.high), ("low", bar.low), ("close", bar.close)):
            if not math.isfinite(price) or price <= 0:
                raise IndicatorError(
                    f"{self.name}: invalid {label} price {price!r} at {bar.timestamp}",
                    component="indicators",
                    operation="update",
                )

    @staticmethod
    def _safe_divide(numerator: float, denominator: float) -> float | None:
        """numerator / denominator, or None if denominator is zero."""
        if denominator == 0:
            return None
        return numerator / denominator


def true_range(bar: Bar, previous_close: float | None) -> float:
    """Greatest of high-low, |high-prev close| and |low-prev close|."""
    if previous_close is None:
        return bar.high - bar.low
    return max(
        bar.high - bar.low,
        abs(bar.high - previous_close),
        abs(bar.low - previous_close),
    )
