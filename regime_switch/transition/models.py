"""Transition data models.

Classes:
    TransitionActionType: Resolution strategies for open positions on a regime change
    StepType: Execution primitives a plan step maps to
    StepStatus / TransitionStatus: Lifecycle states
    TransitionConfig / ExecutorConfig / EvaluatorConfig: Component configuration
    MarketContext / TransitionCosts / PositionRisk / PositionEvaluation: Evaluator output
    TransitionStep / TransitionPlan: Ordered actions consumed by the executor
    TransitionDecision: Result of one manager evaluation
    ActiveTransition: The single in-flight transition
    TransitionRecord / TransitionMetrics: History and aggregates
    StepResult / ExecutionResult / ExecutorStats: Executor output
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from uuid import uuid4

from pydantic import ConfigDict, Field

from regime_switch.contracts import (
    EnginePosition,
    PositionSide,
    RegimeChange,
    RegimeType,
    utc_now,
)
from regime_switch.models import StrictModel


def _new_id() -> str:
    return uuid4().hex[:12]


class TransitionActionType(str, Enum):
    """How open positions are reconciled with a new regime."""

    HOLD = "hold"
    SWITCH = "switch"
    IMMEDIATE_EXIT = "immediate_exit"
    GRACEFUL_MIGRATION = "graceful_migration"
    PROTECTIVE_HOLD = "protective_hold"
    FLATTEN_HEDGE = "flatten_hedge"
    CONVERT_TO_TREND = "convert_to_trend"
    GRADUAL_UNWIND = "gradual_unwind"


class StepType(str, Enum):
    """Execution primitive of a plan step."""

    IMMEDIATE_EXIT = "immediate_exit"
    CLOSE_POSITION = "close_position"
    MODIFY_ORDER = "modify_order"
    PLACE_ORDER = "place_order"
    ENGINE_SWITCH = "engine_switch"
    PROTECTIVE_STOP = "protective_stop"
    SCALE_OUT = "scale_out"
    TIGHTEN_STOPS = "tighten_stops"
    CONVERT = "convert"


class StepStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class TransitionStatus(str, Enum):
    """Lifecycle of the active transition.

    evaluating -> planned -> executing -> completed | failed | cancelled
    """

    EVALUATING = "evaluating"
    PLANNED = "planned"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TransitionStatus.COMPLETED,
            TransitionStatus.FAILED,
            TransitionStatus.CANCELLED,
        )


CRITICAL_PRIORITY = 1


# =============================================================================
# Configuration
# =============================================================================


class TransitionConfig(StrictModel):
    """Transition manager limits.

    Costs are expressed as fractions of portfolio_value.

    Attributes:
        max_daily_transitions: Executed transitions allowed per local day.
        max_daily_transition_cost: Cumulative daily cost ceiling (fraction).
        regime_confidence_threshold: Confidence floor for acting on a change.
        transition_cooldown: Minimum time between executed transitions.
        portfolio_value: Reference value for cost fractions (quote currency).
        emergency_exit_threshold: Aggregated P&L at or below which any
            confident change exits immediately.
        default_policy: Name of the active transition policy.
        history_limit: Retained transition records.
    """

    max_daily_transitions: int = Field(default=10, ge=0)
    max_daily_transition_cost: float = Field(default=0.01, ge=0)
    regime_confidence_threshold: float = Field(default=0.7, ge=0, le=1)
    transition_cooldown: timedelta = timedelta(minutes=5)
    portfolio_value: float = Field(default=100_000.0, gt=0)
    emergency_exit_threshold: float = Field(default=-0.03, le=0)
    default_policy: str = "adaptive"
    history_limit: int = Field(default=100, ge=1)


class ExecutorConfig(StrictModel):
    """Transition executor timing.

    Attributes:
        step_timeout: Seconds allowed for one step attempt; the whole plan
            gets step_timeout * number of steps.
        retry_attempts: Attempts per step.
        retry_delay: Seconds between attempts.
        step_pause: Seconds between consecutive steps.
        rate_limit_delay: Wait before retrying a rate-limited step when the
            error carries no retry_after.
        dry_run: Report estimated costs without calling the venue.
    """

    step_timeout: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=5.0, ge=0)
    step_pause: float = Field(default=0.1, ge=0)
    rate_limit_delay: float = Field(default=10.0, ge=0)
    dry_run: bool = False


class EvaluatorConfig(StrictModel):
    """Position evaluator cost model and market-context settings."""

    fee_rate: float = Field(default=0.001, ge=0)
    slippage_rate: float = Field(default=0.0005, ge=0)
    migration_cost_factor: float = Field(default=0.5, ge=0)
    conversion_cost_factor: float = Field(default=1.5, ge=0)
    unwind_cost_factor: float = Field(default=0.6, ge=0)
    max_position_age_hours: float = Field(default=24.0, gt=0)
    adx_period: int = Field(default=14, ge=1)
    ema_fast_period: int = Field(default=12, ge=1)
    ema_slow_period: int = Field(default=26, ge=2)
    atr_period: int = Field(default=14, ge=1)
    atr_normalizer: float = Field(default=0.03, gt=0)
    direction_threshold: float = Field(default=0.001, ge=0)


# =============================================================================
# Evaluation
# =============================================================================


@dataclass(frozen=True)
class MarketContext:
    """Market state used by the decision functions.

    trend_strength is the raw ADX reading (0..100); volatility is 0..1.
    """

    trend_strength: float = 0.0
    trend_direction: int = 0
    volatility: float = 0.0


@dataclass(frozen=True)
class TransitionCosts:
    """Estimated cost (quote currency) of each resolution strategy."""

    exit: float = 0.0
    migrate: float = 0.0
    convert: float = 0.0
    unwind: float = 0.0


@dataclass(frozen=True)
class PositionRisk:
    """Risk profile of one position."""

    position_id: str
    notional: float
    pnl_percent: float
    age_hours: float
    regime_alignment: float
    risk_score: float


@dataclass(frozen=True)
class PositionEvaluation:
    """Read-only snapshot of open positions against a regime change."""

    old_regime: RegimeType | None
    new_regime: RegimeType
    positions: tuple[EnginePosition, ...]
    gross_exposure: float
    net_exposure: float
    unrealized_pnl: float
    unrealized_pnl_pct: float
    average_age: timedelta
    compatibility: float
    costs: TransitionCosts
    market: MarketContext
    position_risks: tuple[PositionRisk, ...] = ()
    largest_position: PositionRisk | None = None
    riskiest_position: PositionRisk | None = None
    profitable_count: int = 0
    losing_count: int = 0
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def position_count(self) -> int:
        return len(self.positions)

    @property
    def is_empty(self) -> bool:
        return not self.positions

    @property
    def average_age_hours(self) -> float:
        return self.average_age.total_seconds() / 3600

    @property
    def net_ratio(self) -> float:
        """net / gross exposure in [-1, 1]; 0 without exposure."""
        if self.gross_exposure == 0:
            return 0.0
        return self.net_exposure / self.gross_exposure

    @property
    def exposure_against_trend(self) -> bool:
        direction = self.market.trend_direction
        return direction != 0 and self.net_exposure * direction < 0

    @property
    def exposure_aligned_with_trend(self) -> bool:
        direction = self.market.trend_direction
        return direction != 0 and self.net_exposure * direction > 0

    @property
    def risk_score(self) -> float:
        return self.riskiest_position.risk_score if self.riskiest_position else 0.0

    def position_risk(self, position_id: str) -> PositionRisk | None:
        for risk in self.position_risks:
            if risk.position_id == position_id:
                return risk
        return None


# =============================================================================
# Plans
# =============================================================================


@dataclass
class TransitionStep:
    """One action of a transition plan.

    actual_cost is only set when the step completes successfully.

    Attributes:
        quantity: Fraction of the position affected (scale-out, close).
        reassign: Hand the position over to the target engine (convert,
            grid anchoring).
        order_side / order_size / order_price: Parameters of a new order.
    """

    step_type: StepType
    priority: int
    estimated_cost: float = 0.0
    position_id: str | None = None
    quantity: float = 1.0
    stop_price: float | None = None
    reassign: bool = False
    order_side: PositionSide | None = None
    order_size: float | None = None
    order_price: float | None = None
    time_limit: timedelta | None = None
    description: str = ""
    id: str = field(default_factory=_new_id)
    status: StepStatus = StepStatus.PENDING
    actual_cost: float | None = None
    attempts: int = 0
    error: str | None = None

    @property
    def is_critical(self) -> bool:
        return self.priority == CRITICAL_PRIORITY


@dataclass
class TransitionPlan:
    """Ordered steps implementing one transition decision.

    A plan is consumed exactly once by the executor.
    """

    action: TransitionActionType
    steps: list[TransitionStep]
    from_regime: RegimeType | None
    to_regime: RegimeType
    policy: str
    priority: int = 2
    requires_confirmation: bool = False
    reason: str = ""
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utc_now)
    consumed: bool = False

    @property
    def total_estimated_cost(self) -> float:
        return sum(step.estimated_cost for step in self.steps)

    @property
    def total_actual_cost(self) -> float:
        return sum(
            step.actual_cost or 0.0
            for step in self.steps
            if step.status is StepStatus.COMPLETED
        )

    @property
    def completed_steps(self) -> int:
        return sum(1 for step in self.steps if step.status is StepStatus.COMPLETED)

    @property
    def position_ids(self) -> list[str]:
        seen: list[str] = []
        for step in self.steps:
            if step.position_id is not None and step.position_id not in seen:
                seen.append(step.position_id)
        return seen


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of one transition evaluation."""

    action: TransitionActionType
    reason: str
    confidence: float
    estimated_cost: float = 0.0
    plan: TransitionPlan | None = None
    risk_factors: tuple[str, ...] = ()
    regime_change: RegimeChange | None = None
    evaluation: PositionEvaluation | None = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def should_act(self) -> bool:
        return self.action is not TransitionActionType.HOLD and self.plan is not None


# =============================================================================
# Lifecycle, history and metrics
# =============================================================================


@dataclass
class ActiveTransition:
    """The in-flight transition. At most one exists at a time."""

    from_regime: RegimeType | None
    to_regime: RegimeType
    from_engine: str
    to_engine: str
    plan: TransitionPlan
    original_positions: tuple[EnginePosition, ...]
    target_positions: tuple[EnginePosition, ...]
    action: TransitionActionType
    estimated_cost: float
    id: str = field(default_factory=_new_id)
    started_at: datetime = field(default_factory=utc_now)
    status: TransitionStatus = TransitionStatus.EVALUATING
    progress: float = 0.0
    actual_cost: float = 0.0
    error: str | None = None

    def snapshot(self) -> ActiveTransition:
        """Copy safe to hand out; the plan is shared read-only."""
        return replace(
            self,
            original_positions=tuple(self.original_positions),
            target_positions=tuple(self.target_positions),
        )


class TransitionRecord(StrictModel):
    """Completed transition kept in the bounded history."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    started_at: datetime
    completed_at: datetime
    from_regime: RegimeType | None
    to_regime: RegimeType
    from_engine: str
    to_engine: str
    action: TransitionActionType
    policy: str
    status: TransitionStatus
    success: bool
    estimated_cost: float
    actual_cost: float
    positions_affected: int
    steps_completed: int
    steps_total: int
    efficiency: float = Field(ge=0.0, le=1.0)
    error: str | None = None

    @property
    def duration(self) -> timedelta:
        return self.completed_at - self.started_at


class TransitionMetrics(StrictModel):
    """Aggregate transition statistics."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    total_transitions: int = 0
    successful_transitions: int = 0
    failed_transitions: int = 0
    cancelled_transitions: int = 0
    success_rate: float = 0.0
    total_cost: float = 0.0
    average_cost: float = 0.0
    average_duration_seconds: float = 0.0
    daily_transition_count: int = 0
    daily_transition_cost: float = 0.0
    last_transition_at: datetime | None = None


def efficiency_score(estimated_cost: float, actual_cost: float) -> float:
    """min(1, estimated / actual); 1.0 when nothing was estimated or spent."""
    if estimated_cost <= 0 or actual_cost <= 0:
        return 1.0
    return min(1.0, estimated_cost / actual_cost)


# =============================================================================
# Execution results
# =============================================================================


@dataclass(frozen=True)
class StepResult:
    step_id: str
    step_type: StepType
    success: bool
    cost: float = 0.0
    attempts: int = 0
    error: str | None = None


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of executing a plan; partial progress is always reported."""

    plan_id: str
    success: bool
    total_cost: float
    steps_completed: int
    steps_total: int
    duration: timedelta
    error: str | None = None
    cancelled: bool = False
    step_results: tuple[StepResult, ...] = ()


@dataclass
class ExecutorStats:
    executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    cancelled_executions: int = 0
    steps_executed: int = 0
    steps_failed: int = 0
    total_cost: float = 0.0

    def copy(self) -> ExecutorStats:
        return replace(self)


# =============================================================================
# Persisted manager state
# =============================================================================


class ActiveTransitionSummary(StrictModel):
    """Serializable view of the active transition."""

    id: str
    started_at: datetime
    from_regime: RegimeType | None
    to_regime: RegimeType
    from_engine: str
    to_engine: str
    action: TransitionActionType
    status: TransitionStatus
    progress: float
    estimated_cost: float
    actual_cost: float

    @classmethod
    def from_active(cls, active: ActiveTransition) -> ActiveTransitionSummary:
        return cls(
            id=active.id,
            started_at=active.started_at,
            from_regime=active.from_regime,
            to_regime=active.to_regime,
            from_engine=active.from_engine,
            to_engine=active.to_engine,
            action=active.action,
            status=active.status,
            progress=active.progress,
            estimated_cost=active.estimated_cost,
            actual_cost=active.actual_cost,
        )


class TransitionManagerState(StrictModel):
    """Deep copy of the transition manager's mutable state."""

    emergency_stop: bool = False
    emergency_reason: str | None = None
    manual_override: bool = False
    override_reason: str | None = None
    daily_date: date | None = None
    daily_transition_count: int = 0
    daily_transition_cost: float = 0.0
    last_transition_at: datetime | None = None
    total_transitions: int = 0
    successful_transitions: int = 0
    failed_transitions: int = 0
    cancelled_transitions: int = 0
    total_cost: float = 0.0
    total_duration_seconds: float = 0.0
    history: list[TransitionRecord] = Field(default_factory=list)
    active: ActiveTransitionSummary | None = None


__all__ = [
    "CRITICAL_PRIORITY",
    "ActiveTransition",
    "ActiveTransitionSummary",
    "EvaluatorConfig",
    "ExecutionResult",
    "ExecutorConfig",
    "ExecutorStats",
    "MarketContext",
    "PositionEvaluation",
    "PositionRisk",
    "StepResult",
    "StepStatus",
    "StepType",
    "TransitionActionType",
    "TransitionConfig",
    "TransitionCosts",
    "TransitionDecision",
    "TransitionManagerState",
    "TransitionMetrics",
    "TransitionPlan",
    "TransitionRecord",
    "TransitionStatus",
    "TransitionStep",
    "efficiency_score",
]
