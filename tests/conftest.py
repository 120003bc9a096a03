"""Shared fixtures: synthetic bar series, positions and paper engines."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from regime_switch.contracts import Bar, EnginePosition, PositionSide
from regime_switch.engines import PaperEngine, PaperExecutionVenue

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
BAR_INTERVAL = timedelta(minutes=5)


def _bars_from_closes(
    closes: list[float], spread: Callable[[float], tuple[float, float]]
) -> list[Bar]:
    bars = []
    for i, close in enumerate(closes):
        high, low = spread(close)
        bars.append(
            Bar(
                timestamp=START + i * BAR_INTERVAL,
                open=close,
                high=high,
                low=low,
                close=close,
                volume=1000.0,
            )
        )
    return bars


@pytest.fixture
def uptrend_bars() -> list[Bar]:
    """300 bars rising 0.2% per bar with a 0.2% high/low spread."""
    closes = [100.0 * 1.002**i for i in range(300)]
    return _bars_from_closes(closes, lambda c: (c * 1.002, c * 0.998))


@pytest.fixture
def ranging_bars() -> list[Bar]:
    """300 bars alternating between 100.0 and 100.2."""
    closes = [100.0 if i % 2 == 0 else 100.2 for i in range(300)]
    return _bars_from_closes(closes, lambda c: (c + 0.05, c - 0.05))


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_position(now: datetime) -> Callable[..., EnginePosition]:
    """Factory for EnginePosition with P&L derived from prices."""

    def factory(
        id: str = "pos-1",
        side: PositionSide = PositionSide.LONG,
        size: float = 100.0,
        entry_price: float = 100.0,
        current_price: float = 100.0,
        age: timedelta = timedelta(hours=1),
    ) -> EnginePosition:
        return EnginePosition(
            id=id,
            side=side,
            size=size,
            entry_price=entry_price,
            current_price=current_price,
            unrealized_pnl=side.sign * size * (current_price - entry_price),
            entry_time=now - age,
        )

    return factory


@pytest.fixture
def trend_engine() -> PaperEngine:
    return PaperEngine("trend", active=True)


@pytest.fixture
def grid_engine() -> PaperEngine:
    return PaperEngine("grid")


@pytest.fixture
def paper_venue(trend_engine: PaperEngine, grid_engine: PaperEngine) -> PaperExecutionVenue:
    return PaperExecutionVenue([trend_engine, grid_engine])
