"""Tests for transition policies, regime-pair decisions and plan builders.

Key concepts:
- Trending->ranging and ranging->trending have dedicated decision trees
- Every other pair uses the compatibility rule
- Policies gate on confidence, daily cap and cooldown, then adjust
  holds (loss/age triggers) and expensive actions (fallback)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from regime_switch.contracts import Bar, EnginePosition, PositionSide, RegimeChange, RegimeType
from regime_switch.errors import ConfigurationError, PlanGenerationError
from regime_switch.transition import (
    PolicyDefinition,
    PositionEvaluator,
    TransitionPolicies,
    default_policies,
)
from regime_switch.transition.models import (
    PositionEvaluation,
    StepType,
    TransitionActionType,
)
from regime_switch.transition.policies import (
    build_steps,
    decide_for_pair,
    decide_generic,
    plan_priority,
)

Action = TransitionActionType


@pytest.fixture
def evaluate(now: datetime) -> Callable[..., PositionEvaluation]:
    """Evaluate positions for a regime pair at the fixed test time."""
    evaluator = PositionEvaluator()

    def _evaluate(
        positions: list[EnginePosition],
        old: RegimeType | None = RegimeType.TRENDING,
        new: RegimeType = RegimeType.RANGING,
        bars: list[Bar] | None = None,
    ) -> PositionEvaluation:
        return evaluator.evaluate_positions(positions, old, new, bars or (), now=now)

    return _evaluate


@pytest.fixture
def losing_long(make_position: Callable[..., EnginePosition]) -> EnginePosition:
    """-5% after six hours."""
    return make_position(current_price=95.0, age=timedelta(hours=6))


def change(
    now: datetime,
    confidence: float,
    old: RegimeType | None = RegimeType.TRENDING,
    new: RegimeType = RegimeType.RANGING,
) -> RegimeChange:
    return RegimeChange(
        timestamp=now,
        old_regime=old,
        new_regime=new,
        confidence=confidence,
        reason="test change",
        trigger_price=100.0,
    )


class TestDefaultPolicies:
    def test_three_policies(self) -> None:
        policies = default_policies()

        assert set(policies) == {"conservative", "aggressive", "adaptive"}
        assert policies["conservative"].min_confidence == 0.8
        assert policies["aggressive"].preferred_action is Action.IMMEDIATE_EXIT
        assert policies["adaptive"].adaptive
        assert len(policies["adaptive"].applicable_transitions) == 12


class TestTrendToRange:
    def test_stale_loser_exits(self, evaluate, losing_long: EnginePosition) -> None:
        decision = decide_for_pair(
            evaluate([losing_long]), RegimeType.TRENDING, RegimeType.RANGING, 0.85
        )
        assert decision.action is Action.IMMEDIATE_EXIT

    def test_fresh_winner_migrates(self, evaluate, make_position) -> None:
        position = make_position(current_price=102.0, age=timedelta(hours=1))

        decision = decide_for_pair(
            evaluate([position]), RegimeType.TRENDING, RegimeType.RANGING, 0.65
        )

        assert decision.action is Action.GRACEFUL_MIGRATION

    def test_small_drawdown_protects(self, evaluate, make_position) -> None:
        position = make_position(current_price=99.5)

        decision = decide_for_pair(
            evaluate([position]), RegimeType.TRENDING, RegimeType.RANGING, 0.9
        )

        assert decision.action is Action.PROTECTIVE_HOLD

    def test_fresh_large_loss_holds(self, evaluate, make_position) -> None:
        """Too young to exit, too deep to protect."""
        position = make_position(current_price=95.0, age=timedelta(hours=1))

        decision = decide_for_pair(
            evaluate([position]), RegimeType.TRENDING, RegimeType.RANGING, 0.9
        )

        assert decision.action is Action.HOLD


class TestRangeToTrend:
    def test_counter_trend_exposure_flattens(
        self, evaluate, make_position, uptrend_bars: list[Bar]
    ) -> None:
        position = make_position(side=PositionSide.SHORT)
        evaluation = evaluate(
            [position], RegimeType.RANGING, RegimeType.TRENDING, uptrend_bars[:60]
        )

        decision = decide_for_pair(evaluation, RegimeType.RANGING, RegimeType.TRENDING, 0.85)

        assert decision.action is Action.FLATTEN_HEDGE

    def test_aligned_winner_converts(
        self, evaluate, make_position, uptrend_bars: list[Bar]
    ) -> None:
        position = make_position(current_price=103.0)
        evaluation = evaluate(
            [position], RegimeType.RANGING, RegimeType.TRENDING, uptrend_bars[:60]
        )

        decision = decide_for_pair(evaluation, RegimeType.RANGING, RegimeType.TRENDING, 0.85)

        assert decision.action is Action.CONVERT_TO_TREND

    def test_no_trend_context_holds(self, evaluate, make_position) -> None:
        position = make_position(current_price=103.0)
        evaluation = evaluate([position], RegimeType.RANGING, RegimeType.TRENDING)

        decision = decide_for_pair(evaluation, RegimeType.RANGING, RegimeType.TRENDING, 0.85)

        assert decision.action is Action.HOLD


class TestGenericRule:
    def test_incompatible_exits(self, evaluate, make_position) -> None:
        """One-sided book in a ranging regime has compatibility 0."""
        evaluation = evaluate([make_position()], RegimeType.UNCERTAIN, RegimeType.RANGING)

        assert decide_generic(evaluation, 0.9).action is Action.IMMEDIATE_EXIT

    def test_compatible_switches(self, evaluate, make_position) -> None:
        positions = [make_position(id="a"), make_position(id="b", side=PositionSide.SHORT)]
        evaluation = evaluate(positions, RegimeType.UNCERTAIN, RegimeType.RANGING)

        decision = decide_generic(evaluation, 0.7)

        assert decision.action is Action.SWITCH
        assert decision.confidence == pytest.approx(0.56)

    def test_low_confidence_holds(self, evaluate, make_position) -> None:
        evaluation = evaluate([make_position()], RegimeType.UNCERTAIN, RegimeType.RANGING)
        assert decide_generic(evaluation, 0.5).action is Action.HOLD


class TestPlanPriority:
    @pytest.mark.parametrize(
        "confidence, priority", [(0.95, 1), (0.85, 2), (0.7, 3), (0.6, 3), (0.5, 4)]
    )
    def test_bands(self, confidence: float, priority: int) -> None:
        assert plan_priority(confidence) == priority


class TestBuildSteps:
    def test_hold_has_no_steps(self, evaluate, losing_long) -> None:
        assert build_steps(Action.HOLD, evaluate([losing_long])) == []

    def test_immediate_exit(self, evaluate, losing_long, make_position) -> None:
        """Riskiest positions first, engine switch last, costs sum to the exit estimate."""
        fresh = make_position(id="fresh", size=50.0)
        evaluation = evaluate([fresh, losing_long])

        steps = build_steps(Action.IMMEDIATE_EXIT, evaluation)

        assert [s.step_type for s in steps] == [
            StepType.IMMEDIATE_EXIT,
            StepType.IMMEDIATE_EXIT,
            StepType.ENGINE_SWITCH,
        ]
        assert steps[0].position_id == "pos-1"
        assert steps[0].is_critical
        assert sum(s.estimated_cost for s in steps) == pytest.approx(evaluation.costs.exit)

    def test_graceful_migration(self, evaluate, losing_long) -> None:
        steps = build_steps(Action.GRACEFUL_MIGRATION, evaluate([losing_long]))

        assert steps[0].step_type is StepType.ENGINE_SWITCH
        assert steps[1].step_type is StepType.MODIFY_ORDER
        assert steps[1].reassign

    def test_protective_hold_sets_stops(self, evaluate, losing_long) -> None:
        """1% base distance below the current price of a long without volatility."""
        steps = build_steps(Action.PROTECTIVE_HOLD, evaluate([losing_long]))

        assert len(steps) == 1
        assert steps[0].step_type is StepType.PROTECTIVE_STOP
        assert steps[0].stop_price == pytest.approx(94.05)

    def test_gradual_unwind(self, evaluate, losing_long) -> None:
        steps = build_steps(Action.GRADUAL_UNWIND, evaluate([losing_long]))

        assert [s.step_type for s in steps] == [
            StepType.SCALE_OUT,
            StepType.TIGHTEN_STOPS,
            StepType.ENGINE_SWITCH,
        ]
        assert steps[0].quantity == 0.5

    def test_convert_to_trend(self, evaluate, make_position, uptrend_bars: list[Bar]) -> None:
        positions = [make_position(id="long"), make_position(id="short", side=PositionSide.SHORT)]
        evaluation = evaluate(positions, RegimeType.RANGING, RegimeType.TRENDING, uptrend_bars[:60])

        steps = build_steps(Action.CONVERT_TO_TREND, evaluation)

        assert [(s.step_type, s.position_id) for s in steps] == [
            (StepType.CLOSE_POSITION, "short"),
            (StepType.ENGINE_SWITCH, None),
            (StepType.CONVERT, "long"),
        ]

    def test_without_switch(self, evaluate, losing_long) -> None:
        steps = build_steps(Action.IMMEDIATE_EXIT, evaluate([losing_long]), include_switch=False)
        assert all(s.step_type is not StepType.ENGINE_SWITCH for s in steps)


class TestTransitionPolicies:
    def test_unknown_active_policy(self) -> None:
        with pytest.raises(ConfigurationError):
            TransitionPolicies(active_policy="reckless")

    def test_set_active_policy(self) -> None:
        policies = TransitionPolicies()
        policies.set_active_policy("conservative")

        assert policies.active_policy.name == "conservative"
        with pytest.raises(ConfigurationError):
            policies.set_active_policy("reckless")

    def test_adaptive_floor(self, now: datetime) -> None:
        """Good track record lowers the floor, high volatility raises it."""
        policies = TransitionPolicies()
        assert policies.effective_confidence_floor() == pytest.approx(0.7)

        for _ in range(5):
            policies.record_policy_application("adaptive", True, 10.0, now=now)

        assert policies.effective_confidence_floor() == pytest.approx(0.63)
        assert policies.effective_confidence_floor(volatility=0.8) == pytest.approx(0.756)

    def test_poor_record_raises_floor(self, now: datetime) -> None:
        policies = TransitionPolicies()
        policies.record_policy_application("adaptive", False, 10.0, now=now)

        assert policies.effective_confidence_floor() == pytest.approx(0.77)

    def test_fixed_floor(self) -> None:
        policies = TransitionPolicies(active_policy="conservative")
        assert policies.effective_confidence_floor(volatility=0.9) == 0.8

    def test_evaluate_policy(self, evaluate, losing_long, now: datetime) -> None:
        policies = TransitionPolicies()
        evaluation = evaluate([losing_long])

        action = policies.evaluate_policy(
            evaluation, RegimeType.TRENDING, RegimeType.RANGING, 0.85, now=now
        )

        assert action is Action.IMMEDIATE_EXIT

    def test_below_floor_holds(self, evaluate, losing_long, now: datetime) -> None:
        policies = TransitionPolicies()
        action = policies.evaluate_policy(
            evaluate([losing_long]), RegimeType.TRENDING, RegimeType.RANGING, 0.65, now=now
        )
        assert action is Action.HOLD

    def test_loss_trigger_uses_preferred_action(
        self, evaluate, make_position, now: datetime
    ) -> None:
        """The tree holds a fresh -5% loser; adaptive's -2% trigger migrates it."""
        position = make_position(current_price=95.0, age=timedelta(hours=1))
        policies = TransitionPolicies()

        action = policies.evaluate_policy(
            evaluate([position]), RegimeType.TRENDING, RegimeType.RANGING, 0.9, now=now
        )

        assert action is Action.GRACEFUL_MIGRATION

    def test_expensive_action_falls_back(self, evaluate, losing_long, now: datetime) -> None:
        tight = PolicyDefinition(
            name="tight",
            min_confidence=0.5,
            preferred_action=Action.HOLD,
            fallback_action=Action.PROTECTIVE_HOLD,
            max_cost_threshold=0.001,
            max_daily_applications=5,
            cooldown=timedelta(0),
        )
        policies = TransitionPolicies({"tight": tight}, active_policy="tight")

        action = policies.evaluate_policy(
            evaluate([losing_long]), RegimeType.TRENDING, RegimeType.RANGING, 0.85, now=now
        )

        assert action is Action.PROTECTIVE_HOLD

    def test_cooldown_and_daily_cap(self, evaluate, losing_long, now: datetime) -> None:
        once = default_policies()["adaptive"].model_copy(update={"max_daily_applications": 2})
        policies = TransitionPolicies({"adaptive": once})
        evaluation = evaluate([losing_long])
        policies.record_policy_application("adaptive", True, 10.0, now=now)

        def act(at: datetime) -> TransitionActionType:
            return policies.evaluate_policy(
                evaluation, RegimeType.TRENDING, RegimeType.RANGING, 0.85, now=at
            )

        assert act(now + timedelta(minutes=1)) is Action.HOLD
        assert act(now + timedelta(minutes=10)) is Action.IMMEDIATE_EXIT

        policies.record_policy_application("adaptive", True, 10.0, now=now + timedelta(minutes=10))
        assert act(now + timedelta(minutes=30)) is Action.HOLD

    def test_inapplicable_pair(self, evaluate, losing_long, now: datetime) -> None:
        only_up = default_policies()["adaptive"].model_copy(
            update={"applicable_transitions": [(RegimeType.RANGING, RegimeType.TRENDING)]}
        )
        policies = TransitionPolicies({"adaptive": only_up})

        action = policies.evaluate_policy(
            evaluate([losing_long]), RegimeType.TRENDING, RegimeType.RANGING, 0.85, now=now
        )

        assert action is Action.HOLD


class TestGenerateTransitionPlan:
    def test_merges_per_position_actions(
        self, losing_long, make_position, now: datetime
    ) -> None:
        """The most severe action names the plan; each position gets its own steps."""
        healthy = make_position(id="healthy", current_price=100.5)
        evaluations = PositionEvaluator().evaluate_each(
            [losing_long, healthy], RegimeType.TRENDING, RegimeType.RANGING, now=now
        )
        policies = TransitionPolicies()

        plan = policies.generate_transition_plan(change(now, 0.85), evaluations)

        assert plan.action is Action.IMMEDIATE_EXIT
        assert [(s.step_type, s.position_id) for s in plan.steps] == [
            (StepType.IMMEDIATE_EXIT, "pos-1"),
            (StepType.PROTECTIVE_STOP, "healthy"),
            (StepType.ENGINE_SWITCH, None),
        ]
        assert plan.policy == "adaptive"
        assert plan.priority == 2
        assert not plan.requires_confirmation
        assert plan.position_ids == ["pos-1", "healthy"]

    def test_conservative_requires_confirmation(self, evaluate, losing_long, now) -> None:
        policies = TransitionPolicies(active_policy="conservative")

        plan = policies.generate_transition_plan(change(now, 0.75), [evaluate([losing_long])])

        assert plan.requires_confirmation
        assert plan.action is Action.HOLD
        assert plan.steps == []

    def test_no_evaluations(self, now: datetime) -> None:
        with pytest.raises(PlanGenerationError):
            TransitionPolicies().generate_transition_plan(change(now, 0.9), [])


class TestPolicyBookkeeping:
    def test_running_average_cost(self, now: datetime) -> None:
        policies = TransitionPolicies()
        policies.record_policy_application("adaptive", True, 10.0, now=now)
        policies.record_policy_application("adaptive", False, 30.0, now=now)

        perf = policies.get_policy_performance()["adaptive"]
        assert perf.application_count == 2
        assert perf.success_rate == pytest.approx(0.5)
        assert perf.average_cost == pytest.approx(20.0)
        assert perf.daily_applications == 2
        assert perf.last_applied == now

    def test_performance_is_copied(self, now: datetime) -> None:
        policies = TransitionPolicies()
        snapshot = policies.get_policy_performance()
        policies.record_policy_application("adaptive", True, 10.0, now=now)

        assert snapshot["adaptive"].application_count == 0

    def test_restore_and_reset(self, now: datetime) -> None:
        source = TransitionPolicies()
        source.record_policy_application("aggressive", True, 5.0, now=now)

        target = TransitionPolicies()
        target.restore_performance(source.get_policy_performance())
        assert target.get_policy_performance()["aggressive"].application_count == 1

        target.reset_daily_limits()
        assert target.get_policy_performance()["aggressive"].daily_applications == 0

    def test_unknown_policy(self, now: datetime) -> None:
        with pytest.raises(ConfigurationError):
            TransitionPolicies().record_policy_application("reckless", True, 0.0, now=now)
