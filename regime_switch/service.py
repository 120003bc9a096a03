"""Host-side glue: bars in, regime changes and engine transitions out.

RegimeSwitchService wires a detector, transition manager, optional event
bus and optional state persister for one symbol. The host feeds it bars;
transitions execute on a background task so detection is never blocked
by a slow plan.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from regime_switch.config import RegimeSwitchConfig
from regime_switch.contracts import (
    Bar,
    ExecutionVenue,
    RegimeChange,
    RegimeType,
    TradingEngine,
    utc_now,
)
from regime_switch.errors import InsufficientDataError, TradingError
from regime_switch.notifications import RegimeEventBus
from regime_switch.persistence import StatePersister, StateStore
from regime_switch.regime import RegimeDetector, RegimeSignal
from regime_switch.transition import (
    PositionEvaluator,
    TransitionDecision,
    TransitionExecutor,
    TransitionManager,
    TransitionPolicies,
    TransitionRecord,
)

logger = logging.getLogger(__name__)


class RegimeSwitchService:
    """Runs regime detection and engine transitions for one symbol.

    Attributes:
        config: Effective configuration.
        detector: Regime detector.
        manager: Transition manager (owns policies and executor).
        event_bus: Optional regime change fan-out.
        persister: Optional state persister.
        last_decision: Most recent transition decision.
        pending_confirmation: Decision waiting for operator confirmation.
    """

    def __init__(
        self,
        config: RegimeSwitchConfig,
        engines: Sequence[TradingEngine],
        venue: ExecutionVenue,
        store: StateStore | None = None,
        event_bus: RegimeEventBus | None = None,
    ) -> None:
        self.config = config
        self._engines = {engine.get_type(): engine for engine in engines}
        for regime, tag in config.engines.items():
            if tag not in self._engines:
                logger.warning(f"No engine registered for {regime.value} (expected {tag!r})")

        self.detector = RegimeDetector(config.regime)
        self.manager = TransitionManager(
            config.transition,
            evaluator=PositionEvaluator(config.evaluator),
            policies=TransitionPolicies(active_policy=config.transition.default_policy),
            executor=TransitionExecutor(venue, config.executor),
        )
        self.event_bus = event_bus
        self.persister = (
            StatePersister(
                store,
                self.detector,
                self.manager,
                config.symbol,
                save_interval=config.persistence.save_interval,
            )
            if store is not None
            else None
        )

        self.last_decision: TransitionDecision | None = None
        self.pending_confirmation: TransitionDecision | None = None
        self._pending_engines: tuple[TradingEngine, TradingEngine] | None = None
        self._execution_task: asyncio.Task[TransitionRecord | None] | None = None
        self._cancel_event: asyncio.Event | None = None
        self._started_at: datetime | None = None

    # Lifecycle
    async def start(self) -> None:
        """Restore persisted state and start notification delivery."""
        if self.persister is not None:
            try:
                await self.persister.restore()
            except TradingError as e:
                logger.error(f"State restore failed, starting fresh: {e}")
        if self.event_bus is not None:
            await self.event_bus.start()
        self._started_at = utc_now()
        logger.info(f"RegimeSwitchService started for {self.config.symbol}")

    async def stop(self) -> None:
        """Wait for a running transition, save state and stop notifications."""
        await self.wait_for_transition()
        if self.persister is not None:
            try:
                await self.persister.save_now()
            except TradingError as e:
                logger.error(f"Final state save failed: {e}")
        if self.event_bus is not None:
            await self.event_bus.stop()
        logger.info(f"RegimeSwitchService stopped for {self.config.symbol}")

    # Engines
    def engine_for(self, regime: RegimeType) -> TradingEngine | None:
        tag = self.config.engines.get(regime)
        return self._engines.get(tag) if tag else None

    def active_engine(self) -> TradingEngine | None:
        for engine in self._engines.values():
            if engine.is_active():
                return engine
        return None

    @property
    def transition_running(self) -> bool:
        return self._execution_task is not None and not self._execution_task.done()

    # Bars
    async def on_bars(self, bars: Sequence[Bar]) -> RegimeSignal | None:
        """Process the latest bar history.

        Returns:
            The new signal, the previous one if detection failed, or None
            while the history is still too short.
        """
        try:
            signal, change = self.detector.detect_change(bars)
        except InsufficientDataError as e:
            logger.debug(f"Waiting for data: {e.message}")
            return None
        except TradingError as e:
            logger.error(f"Regime detection failed, keeping previous signal: {e}")
            return self.detector.get_last_signal()

        if self.active_engine() is None:
            initial = self.engine_for(signal.regime)
            if initial is not None:
                initial.set_active(True)
                logger.info(f"Activated {initial.get_type()} engine for {signal.regime.value}")

        if change is not None:
            if self.event_bus is not None:
                await self.event_bus.publish(change)
            self._handle_change(change, bars)

        if self.persister is not None:
            self.persister.maybe_save()
        return signal

    def _handle_change(self, change: RegimeChange, bars: Sequence[Bar]) -> None:
        from_engine = self.active_engine()
        to_engine = self.engine_for(change.new_regime)
        if to_engine is None:
            logger.info(f"No engine mapped to {change.new_regime.value}, keeping current engine")
            return
        if from_engine is None:
            to_engine.set_active(True)
            return
        if from_engine is to_engine:
            return

        decision = self.manager.evaluate_transition(
            change, from_engine.get_current_positions(), bars
        )
        self.last_decision = decision
        if not decision.should_act:
            return

        if decision.plan is not None and decision.plan.requires_confirmation:
            self.pending_confirmation = decision
            self._pending_engines = (from_engine, to_engine)
            logger.warning(
                f"Transition {decision.action.value} awaits confirmation: {decision.reason}"
            )
            return

        self._schedule(decision, from_engine, to_engine, confirmed=False)

    # Transitions
    async def confirm_pending(self) -> bool:
        """Execute the decision waiting for confirmation.

        Returns:
            False if nothing was pending.
        """
        if self.pending_confirmation is None or self._pending_engines is None:
            return False
        decision = self.pending_confirmation
        from_engine, to_engine = self._pending_engines
        self.pending_confirmation = None
        self._pending_engines = None
        self._schedule(decision, from_engine, to_engine, confirmed=True)
        return True

    def cancel_transition(self) -> bool:
        """Ask the running transition to stop before its next step."""
        if not self.transition_running or self._cancel_event is None:
            return False
        self._cancel_event.set()
        logger.warning("Transition cancellation requested")
        return True

    async def wait_for_transition(self) -> TransitionRecord | None:
        if self._execution_task is None:
            return None
        results = await asyncio.gather(self._execution_task, return_exceptions=True)
        result = results[0]
        return result if isinstance(result, TransitionRecord) else None

    def _schedule(
        self,
        decision: TransitionDecision,
        from_engine: TradingEngine,
        to_engine: TradingEngine,
        confirmed: bool,
    ) -> None:
        if self.transition_running:
            logger.warning(f"Transition still running, {decision.action.value} not scheduled")
            return
        self._cancel_event = asyncio.Event()
        self._execution_task = asyncio.create_task(
            self._execute(decision, from_engine, to_engine, self._cancel_event, confirmed)
        )

    async def _execute(
        self,
        decision: TransitionDecision,
        from_engine: TradingEngine,
        to_engine: TradingEngine,
        cancel_event: asyncio.Event,
        confirmed: bool,
    ) -> TransitionRecord | None:
        try:
            return await self.manager.execute_transition(
                decision, from_engine, to_engine, cancel_event=cancel_event, confirmed=confirmed
            )
        except TradingError as e:
            logger.error(f"Transition execution rejected: {e}")
        except Exception as e:
            logger.exception(f"Transition execution crashed: {e}")
        return None

    # Operator controls
    def set_emergency_stop(self, active: bool, reason: str = "") -> None:
        self.manager.set_emergency_stop(active, reason)
        if active:
            self.cancel_transition()

    def set_manual_override(self, active: bool, reason: str = "") -> None:
        self.manager.set_manual_override(active, reason)

    def status(self) -> dict[str, Any]:
        signal = self.detector.get_last_signal()
        active = self.active_engine()
        return {
            "symbol": self.config.symbol,
            "current_regime": (
                regime.value if (regime := self.detector.get_current_regime()) else None
            ),
            "last_signal": signal.model_dump(mode="json") if signal else None,
            "active_engine": active.get_type() if active else None,
            "active_policy": self.manager.policies.active_policy.name,
            "emergency_stop": self.manager.is_emergency_stopped(),
            "manual_override": self.manager.is_manual_override(),
            "transition_running": self.transition_running,
            "pending_confirmation": (
                self.pending_confirmation.action.value if self.pending_confirmation else None
            ),
            "started_at": self._started_at.isoformat() if self._started_at else None,
        }


__all__ = ["RegimeSwitchService"]
