"""Regime transitions.

Evaluates open positions against a regime change, decides how to
reconcile them under the active policy, and executes the resulting plan.
"""

from regime_switch.transition.evaluator import PositionEvaluator
from regime_switch.transition.executor import TransitionExecutor
from regime_switch.transition.manager import TransitionManager
from regime_switch.transition.models import (
    ActiveTransition,
    EvaluatorConfig,
    ExecutionResult,
    ExecutorConfig,
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
)
from regime_switch.transition.policies import (
    PolicyDefinition,
    PolicyPerformance,
    TransitionPolicies,
    default_policies,
)

__all__ = [
    "ActiveTransition",
    "EvaluatorConfig",
    "ExecutionResult",
    "ExecutorConfig",
    "PolicyDefinition",
    "PolicyPerformance",
    "PositionEvaluation",
    "PositionEvaluator",
    "StepType",
    "TransitionActionType",
    "TransitionConfig",
    "TransitionDecision",
    "TransitionExecutor",
    "TransitionManager",
    "TransitionManagerState",
    "TransitionMetrics",
    "TransitionPlan",
    "TransitionPolicies",
    "TransitionRecord",
    "TransitionStatus",
    "TransitionStep",
    "default_policies",
]
