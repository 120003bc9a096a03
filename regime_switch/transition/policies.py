"""Transition policies, regime-pair decision functions and plan builders.

A policy is a named bundle of thresholds (conservative, aggressive,
adaptive). All policies share the same control flow:

1. Gate: applicable regime pair, confidence floor, daily cap, cooldown.
2. Decide: dedicated trees for trending->ranging and ranging->trending,
   a generic rule for every other pair.
3. Adjust: a hold becomes the policy's preferred action when a loss or
   age trigger fires; an action costing more than the policy allows
   becomes its fallback action.

The decision functions and plan builders are pure. The transition manager
reuses them together with blocked_reason() and adjust_action().
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from itertools import permutations

from pydantic import Field

from regime_switch.contracts import RegimeChange, RegimeType, utc_now
from regime_switch.errors import ConfigurationError, PlanGenerationError
from regime_switch.models import StrictModel
from regime_switch.transition.models import (
    PositionEvaluation,
    StepType,
    TransitionActionType,
    TransitionPlan,
    TransitionStep,
)

logger = logging.getLogger(__name__)

ALL_REGIME_PAIRS: list[tuple[RegimeType, RegimeType]] = list(permutations(RegimeType, 2))

STEP_TIME_LIMITS: dict[StepType, timedelta] = {
    StepType.IMMEDIATE_EXIT: timedelta(minutes=2),
    StepType.CLOSE_POSITION: timedelta(minutes=2),
    StepType.SCALE_OUT: timedelta(minutes=5),
    StepType.TIGHTEN_STOPS: timedelta(minutes=1),
    StepType.PROTECTIVE_STOP: timedelta(minutes=1),
    StepType.CONVERT: timedelta(minutes=10),
}

# Severity order used when per-position actions are merged into one plan
ACTION_SEVERITY: dict[TransitionActionType, int] = {
    TransitionActionType.HOLD: 0,
    TransitionActionType.SWITCH: 1,
    TransitionActionType.PROTECTIVE_HOLD: 2,
    TransitionActionType.GRADUAL_UNWIND: 3,
    TransitionActionType.GRACEFUL_MIGRATION: 4,
    TransitionActionType.CONVERT_TO_TREND: 5,
    TransitionActionType.FLATTEN_HEDGE: 6,
    TransitionActionType.IMMEDIATE_EXIT: 7,
}

SCALE_OUT_FRACTION = 0.5
SCALE_OUT_HIGH_RISK_FRACTION = 0.75
HIGH_RISK_SCORE = 0.8
BASE_STOP_DISTANCE = 0.01
VOLATILITY_STOP_DISTANCE = 0.02
TIGHT_STOP_DISTANCE = 0.005


class PolicyDefinition(StrictModel):
    """Named policy thresholds.

    Attributes:
        name: Policy name.
        min_confidence: Confidence floor for the policy to act.
        preferred_action: Used when a loss or age trigger fires on a hold.
        fallback_action: Used when an action costs more than max_cost_threshold.
        max_cost_threshold: Maximum cost as a fraction of gross exposure.
        max_daily_applications: Applications allowed per day.
        cooldown: Minimum time between applications.
        loss_trigger: Aggregated P&L (fraction) at or below which the trigger fires.
        max_position_age: Average position age above which the trigger fires.
        confirm_below: Plans with change confidence below this need confirmation.
        adaptive: Adjust the confidence floor from performance and volatility.
        applicable_transitions: Regime pairs the policy acts on.
    """

    name: str
    min_confidence: float = Field(ge=0, le=1)
    preferred_action: TransitionActionType
    fallback_action: TransitionActionType
    max_cost_threshold: float = Field(gt=0)
    max_daily_applications: int = Field(ge=0)
    cooldown: timedelta
    loss_trigger: float | None = None
    max_position_age: timedelta | None = None
    confirm_below: float | None = None
    adaptive: bool = False
    applicable_transitions: list[tuple[RegimeType, RegimeType]] = Field(
        default_factory=lambda: list(ALL_REGIME_PAIRS)
    )


class PolicyPerformance(StrictModel):
    """Bookkeeping of one policy's applications."""

    application_count: int = 0
    success_count: int = 0
    average_cost: float = 0.0
    last_applied: datetime | None = None
    daily_applications: int = 0
    daily_date: date | None = None

    @property
    def success_rate(self) -> float | None:
        if self.application_count == 0:
            return None
        return self.success_count / self.application_count


def default_policies() -> dict[str, PolicyDefinition]:
    """The three built-in policies."""
    return {
        "conservative": PolicyDefinition(
            name="conservative",
            min_confidence=0.8,
            preferred_action=TransitionActionType.HOLD,
            fallback_action=TransitionActionType.PROTECTIVE_HOLD,
            max_cost_threshold=0.005,
            max_daily_applications=5,
            cooldown=timedelta(minutes=15),
            confirm_below=0.8,
        ),
        "aggressive": PolicyDefinition(
            name="aggressive",
            min_confidence=0.6,
            preferred_action=TransitionActionType.IMMEDIATE_EXIT,
            fallback_action=TransitionActionType.GRACEFUL_MIGRATION,
            max_cost_threshold=0.015,
            max_daily_applications=15,
            cooldown=timedelta(minutes=5),
            loss_trigger=0.0,
            max_position_age=timedelta(hours=12),
        ),
        "adaptive": PolicyDefinition(
            name="adaptive",
            min_confidence=0.7,
            preferred_action=TransitionActionType.GRACEFUL_MIGRATION,
            fallback_action=TransitionActionType.PROTECTIVE_HOLD,
            max_cost_threshold=0.01,
            max_daily_applications=10,
            cooldown=timedelta(minutes=7),
            loss_trigger=-0.02,
            max_position_age=timedelta(hours=24),
            adaptive=True,
        ),
    }


# =============================================================================
# Decision functions
# =============================================================================


@dataclass(frozen=True)
class PairDecision:
    action: TransitionActionType
    reason: str
    confidence: float


def decide_trend_to_range(evaluation: PositionEvaluation, confidence: float) -> PairDecision:
    """Trending -> ranging: exit stale losers, migrate fresh winners, else protect."""
    pnl = evaluation.unrealized_pnl_pct
    age = evaluation.average_age_hours

    if pnl < -0.02 and confidence > 0.8 and age > 4:
        return PairDecision(
            TransitionActionType.IMMEDIATE_EXIT,
            f"losing trend positions (pnl {pnl:.2%}, age {age:.1f}h) in confirmed range",
            0.9,
        )
    if pnl > 0 and age < 2 and confidence < 0.7:
        return PairDecision(
            TransitionActionType.GRACEFUL_MIGRATION,
            f"fresh profitable positions (pnl {pnl:.2%}) migrate to grid anchors",
            0.7,
        )
    if pnl > -0.01:
        return PairDecision(
            TransitionActionType.PROTECTIVE_HOLD,
            f"small drawdown (pnl {pnl:.2%}), protect with stops",
            0.5,
        )
    return PairDecision(
        TransitionActionType.HOLD, f"no trend->range rule matched (pnl {pnl:.2%})", 0.3
    )


def decide_range_to_trend(evaluation: PositionEvaluation, confidence: float) -> PairDecision:
    """Ranging -> trending: flatten counter-trend hedges, convert aligned winners."""
    pnl = evaluation.unrealized_pnl_pct
    strength = evaluation.market.trend_strength

    if strength > 25 and confidence > 0.8 and evaluation.exposure_against_trend:
        return PairDecision(
            TransitionActionType.FLATTEN_HEDGE,
            f"net exposure opposes strong trend (adx {strength:.1f})",
            0.9,
        )
    if evaluation.exposure_aligned_with_trend and pnl > 0:
        return PairDecision(
            TransitionActionType.CONVERT_TO_TREND,
            f"profitable exposure aligned with trend (pnl {pnl:.2%})",
            0.8,
        )
    if 20 < strength <= 25 and pnl > 0:
        return PairDecision(
            TransitionActionType.GRADUAL_UNWIND,
            f"moderate trend (adx {strength:.1f}), unwind grid gradually",
            0.6,
        )
    return PairDecision(
        TransitionActionType.HOLD, f"no range->trend rule matched (adx {strength:.1f})", 0.3
    )


def decide_generic(evaluation: PositionEvaluation, confidence: float) -> PairDecision:
    """Any other regime pair."""
    compatibility = evaluation.compatibility
    if confidence > 0.8 and compatibility < 0.3:
        return PairDecision(
            TransitionActionType.IMMEDIATE_EXIT,
            f"positions incompatible with new regime (compatibility {compatibility:.2f})",
            confidence,
        )
    if confidence > 0.6 and compatibility > 0.5:
        return PairDecision(
            TransitionActionType.SWITCH,
            f"positions compatible with new regime (compatibility {compatibility:.2f})",
            confidence * 0.8,
        )
    return PairDecision(
        TransitionActionType.HOLD,
        f"insufficient confidence {confidence:.2f} for compatibility {compatibility:.2f}",
        0.3,
    )


def decide_for_pair(
    evaluation: PositionEvaluation,
    old_regime: RegimeType | None,
    new_regime: RegimeType,
    confidence: float,
) -> PairDecision:
    """Dispatch to the decision function for the regime pair."""
    if old_regime is RegimeType.TRENDING and new_regime is RegimeType.RANGING:
        return decide_trend_to_range(evaluation, confidence)
    if old_regime is RegimeType.RANGING and new_regime is RegimeType.TRENDING:
        return decide_range_to_trend(evaluation, confidence)
    return decide_generic(evaluation, confidence)


def plan_priority(confidence: float) -> int:
    if confidence > 0.9:
        return 1
    if confidence > 0.7:
        return 2
    if confidence > 0.5:
        return 3
    return 4


# =============================================================================
# Plan builders
# =============================================================================


def _share(total: float, notional: float, gross: float) -> float:
    if gross <= 0:
        return 0.0
    return total * abs(notional) / gross


def _stop_price(price: float, side_sign: int, distance: float) -> float:
    return price * (1 - side_sign * distance)


def _engine_switch(priority: int) -> TransitionStep:
    return TransitionStep(
        step_type=StepType.ENGINE_SWITCH,
        priority=priority,
        description="switch active engine",
    )


def build_steps(
    action: TransitionActionType,
    evaluation: PositionEvaluation,
    include_switch: bool = True,
) -> list[TransitionStep]:
    """Ordered steps implementing `action` for the evaluated positions.

    Step costs are the evaluation's aggregate estimates split by notional,
    so the plan total matches the evaluator's estimate for the action.
    """
    gross = evaluation.gross_exposure
    costs = evaluation.costs
    direction = evaluation.market.trend_direction
    steps: list[TransitionStep] = []

    # Riskiest first so critical exits run before anything else
    risk_by_id = {risk.position_id: risk.risk_score for risk in evaluation.position_risks}
    ranked = sorted(evaluation.positions, key=lambda p: -risk_by_id.get(p.id, 0.0))

    if action is TransitionActionType.HOLD:
        return []

    if action is TransitionActionType.SWITCH:
        return [_engine_switch(1)] if include_switch else []

    if action is TransitionActionType.IMMEDIATE_EXIT:
        for p in ranked:
            steps.append(
                TransitionStep(
                    step_type=StepType.IMMEDIATE_EXIT,
                    priority=1,
                    position_id=p.id,
                    estimated_cost=_share(costs.exit, p.notional, gross),
                    time_limit=STEP_TIME_LIMITS[StepType.IMMEDIATE_EXIT],
                    description=f"exit {p.side.value} {p.size} @ market",
                )
            )
        if include_switch:
            steps.append(_engine_switch(2))
        return steps

    if action is TransitionActionType.GRACEFUL_MIGRATION:
        if include_switch:
            steps.append(_engine_switch(1))
        for p in ranked:
            steps.append(
                TransitionStep(
                    step_type=StepType.MODIFY_ORDER,
                    priority=2,
                    position_id=p.id,
                    reassign=True,
                    estimated_cost=_share(costs.migrate, p.notional, gross),
                    description=f"anchor {p.side.value} position {p.id} in grid",
                )
            )
        return steps

    if action is TransitionActionType.PROTECTIVE_HOLD:
        distance = BASE_STOP_DISTANCE + VOLATILITY_STOP_DISTANCE * evaluation.market.volatility
        for p in ranked:
            steps.append(
                TransitionStep(
                    step_type=StepType.PROTECTIVE_STOP,
                    priority=2,
                    position_id=p.id,
                    stop_price=_stop_price(p.current_price, p.side.sign, distance),
                    time_limit=STEP_TIME_LIMITS[StepType.PROTECTIVE_STOP],
                    description=f"protective stop {distance:.2%} from {p.current_price}",
                )
            )
        return steps

    if action is TransitionActionType.FLATTEN_HEDGE:
        for p in ranked:
            if direction != 0 and p.side.sign != direction:
                steps.append(
                    TransitionStep(
                        step_type=StepType.CLOSE_POSITION,
                        priority=1,
                        position_id=p.id,
                        estimated_cost=_share(costs.exit, p.notional, gross),
                        time_limit=STEP_TIME_LIMITS[StepType.CLOSE_POSITION],
                        description=f"close counter-trend {p.side.value} {p.id}",
                    )
                )
        if include_switch:
            steps.append(_engine_switch(2))
        return steps

    if action is TransitionActionType.CONVERT_TO_TREND:
        aligned = [p for p in ranked if direction != 0 and p.side.sign == direction]
        counter = [p for p in ranked if p not in aligned]
        for p in counter:
            steps.append(
                TransitionStep(
                    step_type=StepType.CLOSE_POSITION,
                    priority=1,
                    position_id=p.id,
                    estimated_cost=_share(costs.exit, p.notional, gross),
                    time_limit=STEP_TIME_LIMITS[StepType.CLOSE_POSITION],
                    description=f"close counter-trend {p.side.value} {p.id}",
                )
            )
        if include_switch:
            steps.append(_engine_switch(1))
        for p in aligned:
            steps.append(
                TransitionStep(
                    step_type=StepType.CONVERT,
                    priority=2,
                    position_id=p.id,
                    reassign=True,
                    estimated_cost=_share(costs.convert, p.notional, gross),
                    time_limit=STEP_TIME_LIMITS[StepType.CONVERT],
                    description=f"convert {p.side.value} {p.id} to trend position",
                )
            )
        return steps

    if action is TransitionActionType.GRADUAL_UNWIND:
        for p in ranked:
            risk = evaluation.position_risk(p.id)
            fraction = (
                SCALE_OUT_HIGH_RISK_FRACTION
                if risk is not None and risk.risk_score > HIGH_RISK_SCORE
                else SCALE_OUT_FRACTION
            )
            steps.append(
                TransitionStep(
                    step_type=StepType.SCALE_OUT,
                    priority=2,
                    position_id=p.id,
                    quantity=fraction,
                    estimated_cost=_share(costs.unwind, p.notional, gross),
                    time_limit=STEP_TIME_LIMITS[StepType.SCALE_OUT],
                    description=f"scale out {fraction:.0%} of {p.id}",
                )
            )
            steps.append(
                TransitionStep(
                    step_type=StepType.TIGHTEN_STOPS,
                    priority=3,
                    position_id=p.id,
                    stop_price=_stop_price(p.current_price, p.side.sign, TIGHT_STOP_DISTANCE),
                    time_limit=STEP_TIME_LIMITS[StepType.TIGHTEN_STOPS],
                    description=f"tighten stop on remaining {p.id}",
                )
            )
        if include_switch:
            steps.append(_engine_switch(2))
        return steps

    raise PlanGenerationError(f"No plan builder for action {action.value}")


def estimate_action_cost(action: TransitionActionType, evaluation: PositionEvaluation) -> float:
    return sum(step.estimated_cost for step in build_steps(action, evaluation))


# =============================================================================
# Policy book
# =============================================================================


class TransitionPolicies:
    """Holds the policy definitions, the active policy and their bookkeeping.

    Bookkeeping is guarded by a lock; decision functions hold no state.
    """

    def __init__(
        self,
        policies: dict[str, PolicyDefinition] | None = None,
        active_policy: str = "adaptive",
    ) -> None:
        self._policies = dict(policies or default_policies())
        if active_policy not in self._policies:
            raise ConfigurationError(
                f"Unknown policy: {active_policy}", component="policies", operation="init"
            )
        self._active = active_policy
        self._performance = {name: PolicyPerformance() for name in self._policies}
        self._lock = threading.Lock()

    @property
    def active_policy(self) -> PolicyDefinition:
        with self._lock:
            return self._policies[self._active]

    @property
    def names(self) -> list[str]:
        return list(self._policies)

    def get_policy(self, name: str) -> PolicyDefinition:
        try:
            return self._policies[name]
        except KeyError:
            raise ConfigurationError(f"Unknown policy: {name}", component="policies") from None

    def set_active_policy(self, name: str) -> None:
        policy = self.get_policy(name)
        with self._lock:
            self._active = policy.name
        logger.info(f"Active transition policy: {name}")

    def effective_confidence_floor(self, name: str | None = None, volatility: float = 0.0) -> float:
        """Confidence floor, adjusted by recent success and volatility for adaptive policies."""
        policy = self.get_policy(name or self.active_policy.name)
        floor = policy.min_confidence
        if not policy.adaptive:
            return floor

        with self._lock:
            success_rate = self._performance[policy.name].success_rate
        if success_rate is not None:
            if success_rate > 0.8:
                floor *= 0.9
            elif success_rate < 0.6:
                floor *= 1.1
        if volatility > 0.7:
            floor *= 1.2
        return min(1.0, floor)

    def evaluate_policy(
        self,
        evaluation: PositionEvaluation,
        old_regime: RegimeType | None,
        new_regime: RegimeType,
        confidence: float,
        now: datetime | None = None,
    ) -> TransitionActionType:
        """Recommended action under the active policy; hold when the policy does not apply."""
        policy = self.active_policy

        blocked = self.blocked_reason(
            evaluation, old_regime, new_regime, confidence, now=now, policy=policy
        )
        if blocked is not None:
            logger.debug(f"Policy {policy.name} holds: {blocked}")
            return TransitionActionType.HOLD

        action = decide_for_pair(evaluation, old_regime, new_regime, confidence).action
        return self.adjust_action(action, evaluation, policy=policy)[0]

    def blocked_reason(
        self,
        evaluation: PositionEvaluation,
        old_regime: RegimeType | None,
        new_regime: RegimeType,
        confidence: float,
        now: datetime | None = None,
        policy: PolicyDefinition | None = None,
        enforce_floor: bool = True,
    ) -> str | None:
        """Why `policy` does not apply to this change, or None when it does.

        Checks the applicable regime pairs, the (adaptive) confidence floor,
        the daily application cap and the cooldown, in that order.
        """
        return self._blocked_reason(
            policy or self.active_policy,
            old_regime,
            new_regime,
            confidence,
            evaluation,
            now or utc_now(),
            enforce_floor,
        )

    def adjust_action(
        self,
        action: TransitionActionType,
        evaluation: PositionEvaluation,
        policy: PolicyDefinition | None = None,
    ) -> tuple[TransitionActionType, str | None]:
        """Apply the policy's loss/age triggers and cost fallback to `action`.

        Returns:
            The adjusted action and a note describing the adjustment, or
            None when the action is unchanged.
        """
        policy = policy or self.active_policy
        note = None

        if action is TransitionActionType.HOLD and not evaluation.is_empty:
            if self._trigger_fired(policy, evaluation):
                action = policy.preferred_action
                note = f"policy {policy.name} trigger fired, using {action.value}"

        if action not in (TransitionActionType.HOLD, TransitionActionType.SWITCH):
            ceiling = policy.max_cost_threshold * evaluation.gross_exposure
            cost = estimate_action_cost(action, evaluation)
            if cost > ceiling:
                logger.debug(
                    f"Policy {policy.name}: {action.value} cost {cost:.2f} exceeds "
                    f"{ceiling:.2f}, using {policy.fallback_action.value}"
                )
                note = (
                    f"policy {policy.name} cost {cost:.2f} over {ceiling:.2f}, "
                    f"falling back to {policy.fallback_action.value}"
                )
                action = policy.fallback_action

        return action, note

    def generate_transition_plan(
        self,
        regime_change: RegimeChange,
        evaluations: Sequence[PositionEvaluation],
    ) -> TransitionPlan:
        """Plan combining the policy's action for each per-position evaluation.

        Raises:
            PlanGenerationError: If no evaluations are given.
        """
        if not evaluations:
            raise PlanGenerationError(
                "No position evaluations to plan from",
                component="policies",
                operation="generate_transition_plan",
            )

        policy = self.active_policy
        steps: list[TransitionStep] = []
        actions: list[TransitionActionType] = []
        for evaluation in evaluations:
            action = self.evaluate_policy(
                evaluation,
                regime_change.old_regime,
                regime_change.new_regime,
                regime_change.confidence,
                now=regime_change.timestamp,
            )
            actions.append(action)
            steps.extend(build_steps(action, evaluation, include_switch=False))

        plan_action = max(actions, key=ACTION_SEVERITY.__getitem__)
        if plan_action not in (TransitionActionType.HOLD, TransitionActionType.PROTECTIVE_HOLD):
            steps.append(_engine_switch(1 if plan_action is TransitionActionType.SWITCH else 2))

        return TransitionPlan(
            action=plan_action,
            steps=steps,
            from_regime=regime_change.old_regime,
            to_regime=regime_change.new_regime,
            policy=policy.name,
            priority=plan_priority(regime_change.confidence),
            requires_confirmation=(
                policy.confirm_below is not None
                and regime_change.confidence < policy.confirm_below
            ),
            reason=regime_change.reason,
        )

    def record_policy_application(
        self,
        name: str,
        success: bool,
        cost: float,
        now: datetime | None = None,
    ) -> None:
        """Update a policy's counters and running average cost."""
        self.get_policy(name)
        now = now or utc_now()
        with self._lock:
            perf = self._performance[name]
            self._roll_day(perf, now)
            perf.application_count += 1
            if success:
                perf.success_count += 1
            perf.average_cost += (cost - perf.average_cost) / perf.application_count
            perf.last_applied = now
            perf.daily_applications += 1

    def get_policy_performance(self) -> dict[str, PolicyPerformance]:
        with self._lock:
            return {name: perf.model_copy(deep=True) for name, perf in self._performance.items()}

    def restore_performance(self, performance: dict[str, PolicyPerformance]) -> None:
        with self._lock:
            for name, perf in performance.items():
                if name in self._performance:
                    self._performance[name] = perf.model_copy(deep=True)

    def reset_daily_limits(self) -> None:
        with self._lock:
            for perf in self._performance.values():
                perf.daily_applications = 0
                perf.daily_date = None

    def _blocked_reason(
        self,
        policy: PolicyDefinition,
        old_regime: RegimeType | None,
        new_regime: RegimeType,
        confidence: float,
        evaluation: PositionEvaluation,
        now: datetime,
        enforce_floor: bool = True,
    ) -> str | None:
        if old_regime is not None and (old_regime, new_regime) not in policy.applicable_transitions:
            return f"{old_regime.value}->{new_regime.value} not applicable"

        if enforce_floor:
            floor = self.effective_confidence_floor(policy.name, evaluation.market.volatility)
            if confidence < floor:
                return f"confidence {confidence:.2f} below {floor:.2f}"

        with self._lock:
            perf = self._performance[policy.name]
            self._roll_day(perf, now)
            daily = perf.daily_applications
            last = perf.last_applied

        if daily >= policy.max_daily_applications:
            return f"daily cap {policy.max_daily_applications} reached"
        if last is not None and now - last < policy.cooldown:
            return f"cooldown active until {last + policy.cooldown}"
        return None

    @staticmethod
    def _trigger_fired(policy: PolicyDefinition, evaluation: PositionEvaluation) -> bool:
        if policy.loss_trigger is not None and evaluation.unrealized_pnl_pct <= policy.loss_trigger:
            return True
        if policy.max_position_age is not None and evaluation.average_age > policy.max_position_age:
            return True
        return False

    @staticmethod
    def _roll_day(perf: PolicyPerformance, now: datetime) -> None:
        today = now.astimezone().date()
        if perf.daily_date != today:
            perf.daily_date = today
            perf.daily_applications = 0


__all__ = [
    "ACTION_SEVERITY",
    "PairDecision",
    "PolicyDefinition",
    "PolicyPerformance",
    "TransitionPolicies",
    "build_steps",
    "decide_for_pair",
    "decide_generic",
    "decide_range_to_trend",
    "decide_trend_to_range",
    "default_policies",
    "estimate_action_cost",
    "plan_priority",
]
