"""Transition manager: gatekeeping, regime-pair decisions and the active transition.

evaluate_transition() turns a RegimeChange plus open positions into a
TransitionDecision. Limit and cooldown violations are not errors: they
come back as hold decisions with a human-readable reason.

execute_transition() owns the lifecycle of the single active transition:
evaluating -> planned -> executing -> completed | failed | cancelled.
The slot is claimed under the manager lock before the executor runs and
is always cleared afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from regime_switch import metrics as prom
from regime_switch.contracts import (
    Bar,
    EnginePosition,
    RegimeChange,
    TradingEngine,
    utc_now,
)
from regime_switch.errors import ConfigurationError, TransitionInProgressError
from regime_switch.models import apply_partial_update
from regime_switch.transition.evaluator import PositionEvaluator
from regime_switch.transition.executor import TransitionExecutor
from regime_switch.transition.models import (
    ActiveTransition,
    ActiveTransitionSummary,
    ExecutionResult,
    PositionEvaluation,
    StepType,
    TransitionActionType,
    TransitionConfig,
    TransitionDecision,
    TransitionManagerState,
    TransitionMetrics,
    TransitionPlan,
    TransitionRecord,
    TransitionStatus,
    TransitionStep,
    efficiency_score,
)
from regime_switch.transition.policies import (
    PairDecision,
    PolicyDefinition,
    TransitionPolicies,
    build_steps,
    decide_for_pair,
    plan_priority,
)

logger = logging.getLogger(__name__)


class TransitionManager:
    """Decides on and runs regime transitions.

    Gating order for every evaluation: emergency stop, manual override,
    transition in progress, confidence floor, daily limits (count and
    cost, reset at the local day boundary), cooldown. With open positions
    the active policy must then apply: regime pair, its own confidence
    floor (skipped for emergency exits), daily cap and cooldown. Tree
    decisions are adjusted by the policy's triggers and cost fallback.

    Effective limits combine the manager config with the active policy:
    daily cap = min(max_daily_transitions, policy daily cap), cooldown =
    max(transition_cooldown, policy cooldown), per-transition cost ceiling
    = policy max cost x portfolio_value.

    Attributes:
        _config: Manager limits.
        _evaluator: Position evaluator.
        _policies: Policy book (active policy and bookkeeping).
        _executor: Plan executor used by execute_transition.
        _active: The in-flight transition, if any.
        _history: Bounded list of TransitionRecords, newest last.
    """

    def __init__(
        self,
        config: TransitionConfig | None = None,
        evaluator: PositionEvaluator | None = None,
        policies: TransitionPolicies | None = None,
        executor: TransitionExecutor | None = None,
    ) -> None:
        self._config = config or TransitionConfig()
        self._evaluator = evaluator or PositionEvaluator()
        self._policies = policies or TransitionPolicies(active_policy=self._config.default_policy)
        self._executor = executor
        self._lock = threading.Lock()

        self._emergency_stop = False
        self._emergency_reason: str | None = None
        self._manual_override = False
        self._override_reason: str | None = None

        self._active: ActiveTransition | None = None
        self._history: list[TransitionRecord] = []

        self._daily_date = None
        self._daily_count = 0
        self._daily_cost = 0.0
        self._last_transition_at: datetime | None = None

        self._total = 0
        self._successful = 0
        self._failed = 0
        self._cancelled = 0
        self._total_cost = 0.0
        self._total_duration = 0.0

    @property
    def config(self) -> TransitionConfig:
        with self._lock:
            return self._config

    @property
    def policies(self) -> TransitionPolicies:
        return self._policies

    # Emergency controls
    def set_emergency_stop(self, active: bool, reason: str = "") -> None:
        """Block all transitions; effective on the next evaluation."""
        with self._lock:
            self._emergency_stop = active
            self._emergency_reason = reason if active else None
        if active:
            logger.warning(f"Emergency stop activated: {reason}")
        else:
            logger.info("Emergency stop cleared")

    def is_emergency_stopped(self) -> bool:
        with self._lock:
            return self._emergency_stop

    def set_manual_override(self, active: bool, reason: str = "") -> None:
        """Hand transitions to an operator; automatic evaluation holds."""
        with self._lock:
            self._manual_override = active
            self._override_reason = reason if active else None
        logger.info(f"Manual override {'enabled' if active else 'disabled'} {reason}".rstrip())

    def is_manual_override(self) -> bool:
        with self._lock:
            return self._manual_override

    # Evaluation
    def evaluate_transition(
        self,
        regime_change: RegimeChange,
        positions: Sequence[EnginePosition],
        market_data: Sequence[Bar] = (),
        now: datetime | None = None,
    ) -> TransitionDecision:
        """Decide how to handle open positions for a regime change.

        Args:
            regime_change: The accepted change.
            positions: Open positions of the engine being left.
            market_data: Recent bars for trend/volatility context.
            now: Evaluation time; defaults to the current UTC time.

        Returns:
            TransitionDecision; action HOLD with a reason when gated.
        """
        now = now or utc_now()
        policy = self._policies.active_policy

        with self._lock:
            self._reset_daily_if_needed(now)
            blocked = self._gate(regime_change, policy, now)
        if blocked is not None:
            logger.info(
                f"Transition {self._describe(regime_change)} held: {blocked}"
            )
            return self._decided(self._hold(regime_change, blocked, now=now))

        if not positions:
            plan = self._make_plan(
                TransitionActionType.SWITCH,
                [TransitionStep(step_type=StepType.ENGINE_SWITCH, priority=1)],
                regime_change,
                policy,
                "no open positions",
            )
            return self._decided(
                TransitionDecision(
                    action=TransitionActionType.SWITCH,
                    reason="no open positions, switch engines",
                    confidence=regime_change.confidence,
                    estimated_cost=0.0,
                    plan=plan,
                    regime_change=regime_change,
                    timestamp=now,
                )
            )

        evaluation = self._evaluator.evaluate_positions(
            positions, regime_change.old_regime, regime_change.new_regime, market_data, now
        )

        emergency = evaluation.unrealized_pnl_pct <= self._config.emergency_exit_threshold
        blocked = self._policies.blocked_reason(
            evaluation,
            regime_change.old_regime,
            regime_change.new_regime,
            regime_change.confidence,
            now=now,
            policy=policy,
            enforce_floor=not emergency,
        )
        if blocked is not None:
            reason = f"policy {policy.name} holds: {blocked}"
            logger.info(f"Transition {self._describe(regime_change)} held: {reason}")
            return self._decided(
                self._hold(regime_change, reason, evaluation=evaluation, now=now)
            )

        if emergency:
            pair = PairDecision(
                TransitionActionType.IMMEDIATE_EXIT,
                f"P&L {evaluation.unrealized_pnl_pct:.2%} breached emergency exit threshold "
                f"{self._config.emergency_exit_threshold:.2%}",
                max(regime_change.confidence, 0.9),
            )
            if regime_change.old_regime is not None:
                regular = decide_for_pair(
                    evaluation,
                    regime_change.old_regime,
                    regime_change.new_regime,
                    regime_change.confidence,
                )
                if regular.action is TransitionActionType.IMMEDIATE_EXIT:
                    pair = regular
        else:
            pair = decide_for_pair(
                evaluation,
                regime_change.old_regime,
                regime_change.new_regime,
                regime_change.confidence,
            )
            action, note = self._policies.adjust_action(pair.action, evaluation, policy=policy)
            if note is not None:
                pair = PairDecision(action, f"{pair.reason}; {note}", pair.confidence)

        if pair.action is TransitionActionType.HOLD:
            return self._decided(
                self._hold(regime_change, pair.reason, evaluation=evaluation, now=now)
            )

        plan = self._make_plan(
            pair.action, build_steps(pair.action, evaluation), regime_change, policy, pair.reason
        )
        estimated = plan.total_estimated_cost
        ceiling = policy.max_cost_threshold * self._config.portfolio_value
        if estimated > ceiling:
            reason = (
                f"cost validation failed: {pair.action.value} estimated {estimated:.2f} "
                f"exceeds ceiling {ceiling:.2f}"
            )
            logger.info(f"Transition {self._describe(regime_change)} held: {reason}")
            return self._decided(
                self._hold(regime_change, reason, evaluation=evaluation, now=now)
            )

        decision = TransitionDecision(
            action=pair.action,
            reason=pair.reason,
            confidence=pair.confidence,
            estimated_cost=estimated,
            plan=plan,
            risk_factors=self._risk_factors(evaluation),
            regime_change=regime_change,
            evaluation=evaluation,
            timestamp=now,
        )
        logger.info(
            f"Transition {self._describe(regime_change)}: {pair.action.value} "
            f"({pair.reason}), {len(plan.steps)} steps, est. cost {estimated:.2f}"
        )
        return self._decided(decision)

    # Execution
    async def execute_transition(
        self,
        decision: TransitionDecision,
        from_engine: TradingEngine,
        to_engine: TradingEngine,
        cancel_event: asyncio.Event | None = None,
        confirmed: bool = False,
    ) -> TransitionRecord | None:
        """Run a decision's plan as the active transition.

        Args:
            decision: Decision from evaluate_transition.
            from_engine: Engine being left.
            to_engine: Engine being activated.
            cancel_event: Cancels the executor between steps.
            confirmed: Operator confirmation for plans that require it.

        Returns:
            TransitionRecord, or None for hold decisions.

        Raises:
            TransitionInProgressError: If another transition holds the slot.
            ConfigurationError: If the manager has no executor.
        """
        if not decision.should_act:
            logger.debug(f"Nothing to execute for {decision.action.value}: {decision.reason}")
            return None
        if self._executor is None:
            raise ConfigurationError(
                "TransitionManager has no executor", component="transition_manager"
            )

        plan = decision.plan
        change = decision.regime_change
        with self._lock:
            if self._active is not None:
                raise TransitionInProgressError(
                    self._active.id, component="transition_manager", operation="execute"
                )
            active = ActiveTransition(
                from_regime=change.old_regime if change else plan.from_regime,
                to_regime=change.new_regime if change else plan.to_regime,
                from_engine=from_engine.get_type(),
                to_engine=to_engine.get_type(),
                plan=plan,
                original_positions=tuple(from_engine.get_current_positions()),
                target_positions=tuple(to_engine.get_current_positions()),
                action=decision.action,
                estimated_cost=plan.total_estimated_cost,
            )
            self._active = active

        try:
            with self._lock:
                if self._emergency_stop:
                    cancel_reason = f"emergency stop active: {self._emergency_reason}"
                elif plan.requires_confirmation and not confirmed:
                    cancel_reason = "plan requires operator confirmation"
                else:
                    cancel_reason = None
                    active.status = TransitionStatus.PLANNED

            if cancel_reason is not None:
                logger.warning(f"Transition {active.id} cancelled: {cancel_reason}")
                return self._finish(active, TransitionStatus.CANCELLED, None, cancel_reason)

            with self._lock:
                active.status = TransitionStatus.EXECUTING
            logger.info(
                f"Transition {active.id} executing: {active.action.value} "
                f"{active.from_engine} -> {active.to_engine}"
            )

            result = await self._executor.execute_transition_plan(
                plan,
                from_engine,
                to_engine,
                cancel_event=cancel_event,
                on_progress=lambda fraction: self._update_progress(active, fraction),
            )
            if result.success:
                status = TransitionStatus.COMPLETED
            elif result.cancelled:
                status = TransitionStatus.CANCELLED
            else:
                status = TransitionStatus.FAILED
            return self._finish(active, status, result, result.error)

        except asyncio.CancelledError:
            self._finish(active, TransitionStatus.CANCELLED, None, "execution task cancelled")
            raise
        except Exception as e:
            self._finish(active, TransitionStatus.FAILED, None, f"executor error: {e}")
            raise
        finally:
            with self._lock:
                if self._active is active:
                    self._active = None

    # Accessors
    def get_active_transition(self) -> ActiveTransition | None:
        with self._lock:
            return self._active.snapshot() if self._active else None

    def get_transition_history(self, limit: int | None = None) -> list[TransitionRecord]:
        with self._lock:
            if limit is None:
                return list(self._history)
            return self._history[-limit:] if limit > 0 else []

    def get_transition_metrics(self, now: datetime | None = None) -> TransitionMetrics:
        with self._lock:
            self._reset_daily_if_needed(now or utc_now())
            decided = self._successful + self._failed
            return TransitionMetrics(
                total_transitions=self._total,
                successful_transitions=self._successful,
                failed_transitions=self._failed,
                cancelled_transitions=self._cancelled,
                success_rate=self._successful / decided if decided else 0.0,
                total_cost=self._total_cost,
                average_cost=self._total_cost / decided if decided else 0.0,
                average_duration_seconds=self._total_duration / decided if decided else 0.0,
                daily_transition_count=self._daily_count,
                daily_transition_cost=self._daily_cost,
                last_transition_at=self._last_transition_at,
            )

    # Configuration
    def apply_config_update(self, updates: Mapping[str, Any]) -> TransitionConfig:
        """Validate and apply a partial config update.

        Raises:
            ConfigurationError: On unknown keys, invalid values or unknown policy.
        """
        new_config = apply_partial_update(self.config, updates)
        if "default_policy" in updates:
            self._policies.set_active_policy(new_config.default_policy)
        with self._lock:
            self._config = new_config
        logger.info(f"Transition config updated: {sorted(updates)}")
        return new_config

    # Persistence
    def export_state(self) -> TransitionManagerState:
        with self._lock:
            return TransitionManagerState(
                emergency_stop=self._emergency_stop,
                emergency_reason=self._emergency_reason,
                manual_override=self._manual_override,
                override_reason=self._override_reason,
                daily_date=self._daily_date,
                daily_transition_count=self._daily_count,
                daily_transition_cost=self._daily_cost,
                last_transition_at=self._last_transition_at,
                total_transitions=self._total,
                successful_transitions=self._successful,
                failed_transitions=self._failed,
                cancelled_transitions=self._cancelled,
                total_cost=self._total_cost,
                total_duration_seconds=self._total_duration,
                history=list(self._history),
                active=ActiveTransitionSummary.from_active(self._active) if self._active else None,
            )

    def restore_state(self, state: TransitionManagerState) -> None:
        """Load persisted state.

        A transition that was active when the state was saved cannot be
        resumed; it is recorded as failed.
        """
        with self._lock:
            if self._active is not None:
                raise TransitionInProgressError(self._active.id, operation="restore_state")
            self._emergency_stop = state.emergency_stop
            self._emergency_reason = state.emergency_reason
            self._manual_override = state.manual_override
            self._override_reason = state.override_reason
            self._daily_date = state.daily_date
            self._daily_count = state.daily_transition_count
            self._daily_cost = state.daily_transition_cost
            self._last_transition_at = state.last_transition_at
            self._total = state.total_transitions
            self._successful = state.successful_transitions
            self._failed = state.failed_transitions
            self._cancelled = state.cancelled_transitions
            self._total_cost = state.total_cost
            self._total_duration = state.total_duration_seconds
            self._history = list(state.history[-self._config.history_limit :])

            interrupted = state.active
            if interrupted is not None:
                record = TransitionRecord(
                    id=interrupted.id,
                    started_at=interrupted.started_at,
                    completed_at=utc_now(),
                    from_regime=interrupted.from_regime,
                    to_regime=interrupted.to_regime,
                    from_engine=interrupted.from_engine,
                    to_engine=interrupted.to_engine,
                    action=interrupted.action,
                    policy=self._policies.active_policy.name,
                    status=TransitionStatus.FAILED,
                    success=False,
                    estimated_cost=interrupted.estimated_cost,
                    actual_cost=interrupted.actual_cost,
                    positions_affected=0,
                    steps_completed=0,
                    steps_total=0,
                    efficiency=efficiency_score(
                        interrupted.estimated_cost, interrupted.actual_cost
                    ),
                    error="interrupted by restart",
                )
                self._total += 1
                self._failed += 1
                self._append_history(record)

        if state.active is not None:
            logger.warning(f"Transition {state.active.id} was interrupted by a restart")
        logger.info(f"Restored transition manager state: {len(state.history)} records")

    # Internals
    def _gate(
        self, change: RegimeChange, policy: PolicyDefinition, now: datetime
    ) -> str | None:
        """First failing gate as a reason string. Caller holds the lock."""
        if self._emergency_stop:
            return f"emergency stop active: {self._emergency_reason or 'no reason given'}"
        if self._manual_override:
            return f"manual override active: {self._override_reason or 'no reason given'}"
        if self._active is not None:
            return f"transition already in progress: {self._active.id}"

        floor = self._config.regime_confidence_threshold
        if change.confidence < floor:
            return f"confidence {change.confidence:.2f} below threshold {floor:.2f}"

        daily_cap = min(self._config.max_daily_transitions, policy.max_daily_applications)
        if self._daily_count >= daily_cap:
            return f"daily limit reached: {self._daily_count}/{daily_cap} transitions"
        cost_cap = self._config.max_daily_transition_cost * self._config.portfolio_value
        if self._daily_cost >= cost_cap:
            return f"daily cost limit reached: {self._daily_cost:.2f}/{cost_cap:.2f}"

        cooldown = max(self._config.transition_cooldown, policy.cooldown)
        if self._last_transition_at is not None:
            elapsed = now - self._last_transition_at
            if elapsed < cooldown:
                remaining = (cooldown - elapsed).total_seconds()
                return f"cooldown active: {remaining:.0f}s remaining"
        return None

    def _reset_daily_if_needed(self, now: datetime) -> None:
        """Reset daily counters when the local day changed. Caller holds the lock."""
        today = now.astimezone().date()
        if self._daily_date != today:
            if self._daily_date is not None:
                logger.info(
                    f"Daily transition counters reset ({self._daily_count} transitions, "
                    f"cost {self._daily_cost:.2f} on {self._daily_date})"
                )
            self._daily_date = today
            self._daily_count = 0
            self._daily_cost = 0.0

    def _update_progress(self, active: ActiveTransition, fraction: float) -> None:
        with self._lock:
            active.progress = fraction
            active.actual_cost = active.plan.total_actual_cost

    def _finish(
        self,
        active: ActiveTransition,
        status: TransitionStatus,
        result: ExecutionResult | None,
        error: str | None,
    ) -> TransitionRecord:
        now = utc_now()
        actual_cost = result.total_cost if result else active.plan.total_actual_cost
        executed = result is not None or active.status is TransitionStatus.EXECUTING
        duration = (now - active.started_at).total_seconds()

        record = TransitionRecord(
            id=active.id,
            started_at=active.started_at,
            completed_at=now,
            from_regime=active.from_regime,
            to_regime=active.to_regime,
            from_engine=active.from_engine,
            to_engine=active.to_engine,
            action=active.action,
            policy=active.plan.policy,
            status=status,
            success=status is TransitionStatus.COMPLETED,
            estimated_cost=active.estimated_cost,
            actual_cost=actual_cost,
            positions_affected=len(active.plan.position_ids),
            steps_completed=result.steps_completed if result else active.plan.completed_steps,
            steps_total=len(active.plan.steps),
            efficiency=efficiency_score(active.estimated_cost, actual_cost),
            error=error,
        )

        with self._lock:
            active.status = status
            active.actual_cost = actual_cost
            active.error = error
            self._total += 1
            if status is TransitionStatus.COMPLETED:
                self._successful += 1
            elif status is TransitionStatus.FAILED:
                self._failed += 1
            else:
                self._cancelled += 1
            if executed:
                self._reset_daily_if_needed(now)
                self._daily_count += 1
                self._daily_cost += actual_cost
                self._total_cost += actual_cost
                self._total_duration += duration
                self._last_transition_at = now
            self._append_history(record)

        if executed:
            self._policies.record_policy_application(
                active.plan.policy, record.success, actual_cost, now
            )
        prom.transitions_total.labels(status=status.value).inc()
        if actual_cost > 0:
            prom.transition_cost_total.inc(actual_cost)

        log = logger.info if record.success else logger.warning
        log(
            f"Transition {active.id} {status.value}: {record.steps_completed}/"
            f"{record.steps_total} steps, cost {actual_cost:.2f} "
            f"(est. {active.estimated_cost:.2f}, efficiency {record.efficiency:.2f})"
            + (f", error: {error}" if error else "")
        )
        return record

    def _append_history(self, record: TransitionRecord) -> None:
        self._history.append(record)
        if len(self._history) > self._config.history_limit:
            del self._history[: len(self._history) - self._config.history_limit]

    def _make_plan(
        self,
        action: TransitionActionType,
        steps: list[TransitionStep],
        change: RegimeChange,
        policy: PolicyDefinition,
        reason: str,
    ) -> TransitionPlan:
        return TransitionPlan(
            action=action,
            steps=steps,
            from_regime=change.old_regime,
            to_regime=change.new_regime,
            policy=policy.name,
            priority=plan_priority(change.confidence),
            requires_confirmation=(
                policy.confirm_below is not None and change.confidence < policy.confirm_below
            ),
            reason=reason,
        )

    @staticmethod
    def _hold(
        change: RegimeChange,
        reason: str,
        evaluation: PositionEvaluation | None = None,
        now: datetime | None = None,
    ) -> TransitionDecision:
        return TransitionDecision(
            action=TransitionActionType.HOLD,
            reason=reason,
            confidence=change.confidence,
            regime_change=change,
            evaluation=evaluation,
            timestamp=now or utc_now(),
        )

    @staticmethod
    def _decided(decision: TransitionDecision) -> TransitionDecision:
        prom.transition_decisions_total.labels(action=decision.action.value).inc()
        return decision

    @staticmethod
    def _risk_factors(evaluation: PositionEvaluation) -> tuple[str, ...]:
        factors = []
        if evaluation.unrealized_pnl_pct < 0:
            factors.append(f"unrealized loss {evaluation.unrealized_pnl_pct:.2%}")
        if evaluation.average_age > timedelta(hours=4):
            factors.append(f"average position age {evaluation.average_age_hours:.1f}h")
        if evaluation.exposure_against_trend:
            factors.append("net exposure against trend")
        if evaluation.compatibility < 0.3:
            factors.append(f"low regime compatibility {evaluation.compatibility:.2f}")
        if evaluation.market.volatility > 0.7:
            factors.append(f"high volatility {evaluation.market.volatility:.2f}")
        return tuple(factors)

    @staticmethod
    def _describe(change: RegimeChange) -> str:
        old = change.old_regime.value if change.old_regime else "none"
        return f"{old}->{change.new_regime.value}"


__all__ = ["TransitionManager"]
