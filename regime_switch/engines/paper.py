"""Simulated engine and execution venue for paper trading and tests.

PaperEngine keeps a locked list of positions. PaperExecutionVenue fills
closes and new orders immediately at the position's current price with
adverse slippage plus a proportional fee, and moves positions between
engines on reassignment.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import replace
from uuid import uuid4

from regime_switch.contracts import (
    EnginePosition,
    ExecutionOutcome,
    PositionSide,
    utc_now,
)

logger = logging.getLogger(__name__)


class PaperEngine:
    """In-memory TradingEngine."""

    def __init__(
        self,
        engine_type: str,
        positions: list[EnginePosition] | None = None,
        active: bool = False,
    ) -> None:
        self._type = engine_type
        self._positions: dict[str, EnginePosition] = {p.id: p for p in positions or []}
        self._active = active
        self._lock = threading.Lock()

    def get_type(self) -> str:
        return self._type

    def get_current_positions(self) -> list[EnginePosition]:
        with self._lock:
            return list(self._positions.values())

    def is_active(self) -> bool:
        with self._lock:
            return self._active

    def set_active(self, active: bool) -> None:
        with self._lock:
            self._active = active

    def get_position(self, position_id: str) -> EnginePosition | None:
        with self._lock:
            return self._positions.get(position_id)

    def add_position(self, position: EnginePosition) -> None:
        with self._lock:
            self._positions[position.id] = position

    def remove_position(self, position_id: str) -> EnginePosition | None:
        with self._lock:
            return self._positions.pop(position_id, None)

    def replace_position(self, position: EnginePosition) -> None:
        with self._lock:
            if position.id in self._positions:
                self._positions[position.id] = position

    def mark_price(self, price: float) -> None:
        """Revalue every position at `price`."""
        with self._lock:
            for position_id, p in self._positions.items():
                pnl = p.side.sign * p.size * (price - p.entry_price)
                self._positions[position_id] = replace(p, current_price=price, unrealized_pnl=pnl)


class PaperExecutionVenue:
    """ExecutionVenue over a set of PaperEngines.

    Attributes:
        _engines: Engines by type tag.
        _fee_rate: Fee as a fraction of filled notional.
        _slippage_bps: Adverse slippage in basis points; doubled for urgent exits.
        _fill_delay: Simulated latency in seconds.
        stops: Latest protective stop per position id.
    """

    def __init__(
        self,
        engines: list[PaperEngine],
        fee_rate: float = 0.001,
        slippage_bps: float = 5.0,
        fill_delay: float = 0.0,
    ) -> None:
        self._engines = {engine.get_type(): engine for engine in engines}
        self._fee_rate = fee_rate
        self._slippage_bps = slippage_bps
        self._fill_delay = fill_delay
        self.stops: dict[str, float] = {}

    async def close_position(
        self, position: EnginePosition, fraction: float, *, urgent: bool = False
    ) -> ExecutionOutcome:
        await self._latency()
        engine = self._owner(position.id)
        if engine is None:
            return ExecutionOutcome(success=False, message=f"position {position.id} not found")
        if not 0 < fraction <= 1:
            return ExecutionOutcome(success=False, message=f"invalid fraction {fraction}")

        current = engine.get_position(position.id) or position
        closed_size = current.size * fraction
        slippage = self._slippage_bps / 10_000 * (2 if urgent else 1)
        # Adverse: longs sell lower, shorts buy back higher
        fill_price = current.current_price * (1 - current.side.sign * slippage)
        notional = closed_size * fill_price
        cost = notional * self._fee_rate + closed_size * abs(current.current_price - fill_price)

        remaining = current.size - closed_size
        if remaining <= 1e-12:
            engine.remove_position(current.id)
            self.stops.pop(current.id, None)
        else:
            ratio = remaining / current.size
            engine.replace_position(
                replace(current, size=remaining, unrealized_pnl=current.unrealized_pnl * ratio)
            )

        logger.debug(
            f"Paper close {current.id}: {fraction:.0%} of {current.size} @ {fill_price:.4f}, "
            f"cost {cost:.4f}"
        )
        return ExecutionOutcome(success=True, cost=cost, price=fill_price)

    async def modify_order(
        self,
        position: EnginePosition,
        *,
        stop_price: float | None = None,
        reassign_to: str | None = None,
    ) -> ExecutionOutcome:
        await self._latency()
        engine = self._owner(position.id)
        if engine is None:
            return ExecutionOutcome(success=False, message=f"position {position.id} not found")

        if stop_price is not None:
            if stop_price <= 0:
                return ExecutionOutcome(success=False, message=f"invalid stop price {stop_price}")
            self.stops[position.id] = stop_price

        if reassign_to is not None and reassign_to != engine.get_type():
            target = self._engines.get(reassign_to)
            if target is None:
                return ExecutionOutcome(success=False, message=f"unknown engine {reassign_to}")
            moved = engine.remove_position(position.id)
            if moved is not None:
                target.add_position(moved)
            logger.debug(f"Paper reassign {position.id}: {engine.get_type()} -> {reassign_to}")

        return ExecutionOutcome(success=True, cost=0.0, price=position.current_price)

    async def place_order(
        self,
        engine: str,
        side: PositionSide,
        size: float,
        price: float | None = None,
    ) -> ExecutionOutcome:
        await self._latency()
        target = self._engines.get(engine)
        if target is None:
            return ExecutionOutcome(success=False, message=f"unknown engine {engine}")
        if size <= 0:
            return ExecutionOutcome(success=False, message=f"invalid size {size}")
        reference = price or self._reference_price()
        if reference is None:
            return ExecutionOutcome(success=False, message="no price for market order")

        slippage = 0.0 if price is not None else self._slippage_bps / 10_000
        fill_price = reference * (1 + side.sign * slippage)
        target.add_position(
            EnginePosition(
                id=f"PAPER-{uuid4().hex[:8]}",
                side=side,
                size=size,
                entry_price=fill_price,
                current_price=fill_price,
                unrealized_pnl=0.0,
                entry_time=utc_now(),
            )
        )
        cost = size * fill_price * self._fee_rate + size * abs(fill_price - reference)
        return ExecutionOutcome(success=True, cost=cost, price=fill_price)

    def _owner(self, position_id: str) -> PaperEngine | None:
        for engine in self._engines.values():
            if engine.get_position(position_id) is not None:
                return engine
        return None

    def _reference_price(self) -> float | None:
        for engine in self._engines.values():
            for position in engine.get_current_positions():
                return position.current_price
        return None

    async def _latency(self) -> None:
        if self._fill_delay > 0:
            await asyncio.sleep(self._fill_delay)


__all__ = ["PaperEngine", "PaperExecutionVenue"]
