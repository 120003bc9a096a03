"""Shared contracts used across regime detection, transitions and persistence.

Every public type that crosses a package boundary is defined here exactly
once: the regime enumeration, market bars, engine positions, and the
engine / execution venue protocols implemented by external collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol, runtime_checkable


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class RegimeType(str, Enum):
    """Qualitative market condition label."""

    TRENDING = "trending"
    RANGING = "ranging"
    VOLATILE = "volatile"
    UNCERTAIN = "uncertain"


class PositionSide(str, Enum):
    """Direction of an open position."""

    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is PositionSide.LONG else -1


@dataclass(frozen=True)
class Bar:
    """One OHLCV price bar."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class EnginePosition:
    """An open position as reported by a trading engine."""

    id: str
    side: PositionSide
    size: float
    entry_price: float
    current_price: float
    unrealized_pnl: float
    entry_time: datetime

    @property
    def notional(self) -> float:
        return abs(self.size) * self.current_price

    @property
    def signed_notional(self) -> float:
        return self.side.sign * self.notional

    @property
    def cost_basis(self) -> float:
        return abs(self.size) * self.entry_price

    @property
    def pnl_percent(self) -> float:
        """Unrealized P&L as a fraction of cost basis (0 when basis is zero)."""
        if self.cost_basis == 0:
            return 0.0
        return self.unrealized_pnl / self.cost_basis

    def age(self, now: datetime) -> timedelta:
        return now - self.entry_time


@dataclass(frozen=True)
class RegimeChange:
    """An accepted change of the externally visible regime."""

    timestamp: datetime
    old_regime: RegimeType | None
    new_regime: RegimeType
    confidence: float
    reason: str
    trigger_price: float


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one venue call: success plus realized price and cost."""

    success: bool
    cost: float = 0.0
    price: float | None = None
    message: str | None = None
    details: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class TradingEngine(Protocol):
    """Strategy engine (grid or trend) that owns a list of positions."""

    def get_type(self) -> str:
        """Engine tag, e.g. "grid" or "trend"."""
        ...

    def get_current_positions(self) -> list[EnginePosition]:
        """Snapshot of currently open positions."""
        ...

    def is_active(self) -> bool:
        ...

    def set_active(self, active: bool) -> None:
        """Enable or disable new entries for this engine."""
        ...


class ExecutionVenue(Protocol):
    """Place / modify / close capability used only by transition step handlers."""

    async def close_position(
        self, position: EnginePosition, fraction: float, *, urgent: bool = False
    ) -> ExecutionOutcome:
        """Close `fraction` (0, 1] of a position."""
        ...

    async def modify_order(
        self,
        position: EnginePosition,
        *,
        stop_price: float | None = None,
        reassign_to: str | None = None,
    ) -> ExecutionOutcome:
        """Move the protective stop and/or hand the position to another engine."""
        ...

    async def place_order(
        self,
        engine: str,
        side: PositionSide,
        size: float,
        price: float | None = None,
    ) -> ExecutionOutcome:
        """Place a new order on behalf of `engine` (market when price is None)."""
        ...


__all__ = [
    "Bar",
    "EnginePosition",
    "ExecutionOutcome",
    "ExecutionVenue",
    "PositionSide",
    "RegimeChange",
    "RegimeType",
    "TradingEngine",
    "utc_now",
]
