"""Transition plan executor.

Runs plan steps strictly in order against the execution venue:
- each step is retried up to retry_attempts times with retry_delay between attempts
- a pause of step_pause seconds separates consecutive steps
- a priority-1 step that still fails aborts the plan; other failures are skipped
- the whole plan is bounded by step_timeout * number of steps
- the cancel event is checked before every step and while waiting to retry

Partial progress is always reported: a failed or cancelled plan still
returns the steps completed and the cost they realized.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import timedelta

from regime_switch import metrics as prom
from regime_switch.contracts import (
    EnginePosition,
    ExecutionOutcome,
    ExecutionVenue,
    TradingEngine,
)
from regime_switch.errors import (
    ErrorCategory,
    PlanGenerationError,
    PositionNotFoundError,
    StepExecutionError,
    TradingError,
    categorize_error,
)
from regime_switch.transition.models import (
    ExecutionResult,
    ExecutorConfig,
    ExecutorStats,
    StepResult,
    StepStatus,
    StepType,
    TransitionPlan,
    TransitionStep,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

CLOSING_STEPS = frozenset({StepType.IMMEDIATE_EXIT, StepType.CLOSE_POSITION, StepType.SCALE_OUT})
STOP_STEPS = frozenset({StepType.PROTECTIVE_STOP, StepType.TIGHTEN_STOPS})


class TransitionExecutor:
    """Executes TransitionPlans step by step.

    Attributes:
        _venue: Execution venue used by the step handlers.
        _config: Timing and retry settings.
        _stats: Cumulative execution statistics.
    """

    def __init__(self, venue: ExecutionVenue, config: ExecutorConfig | None = None) -> None:
        self._venue = venue
        self._config = config or ExecutorConfig()
        self._stats = ExecutorStats()

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    def get_stats(self) -> ExecutorStats:
        return self._stats.copy()

    async def execute_transition_plan(
        self,
        plan: TransitionPlan,
        from_engine: TradingEngine,
        to_engine: TradingEngine,
        cancel_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        """Execute every step of `plan` in order.

        Args:
            plan: Plan to execute; consumed by this call.
            from_engine: Engine being left; owns the positions the steps refer to.
            to_engine: Engine being activated.
            cancel_event: Set by the caller to stop before the next step.
            on_progress: Called with the completed fraction after each step.

        Returns:
            ExecutionResult with success flag, realized cost and step results.

        Raises:
            PlanGenerationError: If the plan was already executed.
        """
        if plan.consumed:
            raise PlanGenerationError(
                f"Plan {plan.id} was already executed",
                component="executor",
                operation="execute_transition_plan",
            )
        plan.consumed = True

        cfg = self._config
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        deadline = loop.time() + cfg.step_timeout * max(1, len(plan.steps))
        positions = self._positions_by_id(from_engine, to_engine)

        self._stats.executions += 1
        logger.info(
            f"Executing plan {plan.id}: {plan.action.value} with {len(plan.steps)} steps "
            f"({from_engine.get_type()} -> {to_engine.get_type()}, dry_run={cfg.dry_run})"
        )

        results: list[StepResult] = []
        total_cost = 0.0
        completed = 0
        error: str | None = None
        cancelled = False

        for index, step in enumerate(plan.steps):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                error = f"cancelled before step {index + 1}/{len(plan.steps)}"
                break
            if loop.time() >= deadline:
                error = f"plan timed out before step {index + 1}/{len(plan.steps)}"
                break

            result = await self._execute_step(
                step, positions, from_engine, to_engine, deadline, cancel_event
            )
            results.append(result)
            self._stats.steps_executed += 1

            if result.success:
                completed += 1
                total_cost += result.cost
            else:
                self._stats.steps_failed += 1
                prom.transition_step_failures_total.labels(step_type=step.step_type.value).inc()
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    error = f"cancelled during step {index + 1}/{len(plan.steps)}"
                    break
                if step.is_critical:
                    error = f"critical step {step.step_type.value} failed: {result.error}"
                    logger.error(f"Plan {plan.id} aborted: {error}")
                    break
                logger.warning(
                    f"Non-critical step {step.step_type.value} failed, continuing: {result.error}"
                )

            if on_progress is not None:
                on_progress((index + 1) / len(plan.steps))

            if index < len(plan.steps) - 1 and cfg.step_pause > 0:
                await asyncio.sleep(cfg.step_pause)

        duration = time.monotonic() - started
        success = error is None
        self._stats.total_cost += total_cost
        if success:
            self._stats.successful_executions += 1
        elif cancelled:
            self._stats.cancelled_executions += 1
        else:
            self._stats.failed_executions += 1
        prom.transition_duration_seconds.observe(duration)

        logger.info(
            f"Plan {plan.id} finished: success={success}, steps {completed}/{len(plan.steps)}, "
            f"cost {total_cost:.4f}, {duration:.2f}s"
        )
        return ExecutionResult(
            plan_id=plan.id,
            success=success,
            total_cost=total_cost,
            steps_completed=completed,
            steps_total=len(plan.steps),
            duration=timedelta(seconds=duration),
            error=error,
            cancelled=cancelled,
            step_results=tuple(results),
        )

    async def _execute_step(
        self,
        step: TransitionStep,
        positions: dict[str, EnginePosition],
        from_engine: TradingEngine,
        to_engine: TradingEngine,
        deadline: float,
        cancel_event: asyncio.Event | None,
    ) -> StepResult:
        """Attempt one step with retries. Never raises for step failures."""
        cfg = self._config
        loop = asyncio.get_running_loop()
        step.status = StepStatus.EXECUTING
        last_error: TradingError | None = None

        for attempt in range(1, cfg.retry_attempts + 1):
            step.attempts = attempt
            remaining = deadline - loop.time()
            if remaining <= 0:
                last_error = TradingError(
                    "plan deadline exceeded", category=ErrorCategory.TIMEOUT, retryable=False
                )
                break

            try:
                cost = await asyncio.wait_for(
                    self._dispatch(step, positions, from_engine, to_engine),
                    timeout=min(cfg.step_timeout, remaining),
                )
            except TimeoutError:
                last_error = TradingError(
                    f"step timed out after {min(cfg.step_timeout, remaining):.1f}s",
                    category=ErrorCategory.TIMEOUT,
                    component="executor",
                    operation=step.step_type.value,
                )
            except Exception as e:
                last_error = categorize_error(e, "executor", step.step_type.value)
            else:
                step.status = StepStatus.COMPLETED
                step.actual_cost = cost
                step.error = None
                return StepResult(
                    step_id=step.id,
                    step_type=step.step_type,
                    success=True,
                    cost=cost,
                    attempts=attempt,
                )

            logger.warning(
                f"Step {step.step_type.value} ({step.position_id}) attempt "
                f"{attempt}/{cfg.retry_attempts} failed: {last_error}"
            )
            if last_error.is_fatal or not last_error.retryable:
                break
            if attempt < cfg.retry_attempts:
                if last_error.category is ErrorCategory.RATE_LIMIT:
                    delay = last_error.retry_after or cfg.rate_limit_delay
                else:
                    delay = cfg.retry_delay
                if await self._cancelled_while_waiting(cancel_event, delay):
                    break

        step.status = StepStatus.FAILED
        step.error = str(last_error) if last_error else "unknown error"
        return StepResult(
            step_id=step.id,
            step_type=step.step_type,
            success=False,
            attempts=step.attempts,
            error=step.error,
        )

    async def _dispatch(
        self,
        step: TransitionStep,
        positions: dict[str, EnginePosition],
        from_engine: TradingEngine,
        to_engine: TradingEngine,
    ) -> float:
        """Run the execution primitive for a step and return its realized cost."""
        if self._config.dry_run:
            return step.estimated_cost

        if step.step_type is StepType.ENGINE_SWITCH:
            from_engine.set_active(False)
            to_engine.set_active(True)
            logger.info(f"Engine switch: {from_engine.get_type()} -> {to_engine.get_type()}")
            return 0.0

        if step.step_type is StepType.PLACE_ORDER:
            if step.order_side is None or not step.order_size:
                raise StepExecutionError(
                    "place_order step without side/size", retryable=False, operation="place_order"
                )
            outcome = await self._venue.place_order(
                to_engine.get_type(), step.order_side, step.order_size, step.order_price
            )
            return self._realized(outcome, step)

        position = positions.get(step.position_id or "")
        if position is None:
            raise PositionNotFoundError(
                step.position_id or "<none>", component="executor", operation=step.step_type.value
            )

        if step.step_type in CLOSING_STEPS:
            fraction = 1.0 if step.step_type is StepType.IMMEDIATE_EXIT else step.quantity
            outcome = await self._venue.close_position(
                position, fraction, urgent=step.step_type is StepType.IMMEDIATE_EXIT
            )
        elif step.step_type in STOP_STEPS:
            outcome = await self._venue.modify_order(position, stop_price=step.stop_price)
        elif step.step_type in (StepType.MODIFY_ORDER, StepType.CONVERT):
            outcome = await self._venue.modify_order(
                position,
                stop_price=step.stop_price,
                reassign_to=to_engine.get_type() if step.reassign else None,
            )
        else:
            raise StepExecutionError(
                f"Unsupported step type: {step.step_type.value}", retryable=False
            )
        return self._realized(outcome, step)

    @staticmethod
    def _realized(outcome: ExecutionOutcome, step: TransitionStep) -> float:
        if not outcome.success:
            raise categorize_error(
                RuntimeError(outcome.message or "venue reported failure"),
                "executor",
                step.step_type.value,
            )
        return outcome.cost

    @staticmethod
    def _positions_by_id(*engines: TradingEngine) -> dict[str, EnginePosition]:
        positions: dict[str, EnginePosition] = {}
        for engine in engines:
            for position in engine.get_current_positions():
                positions.setdefault(position.id, position)
        return positions

    @staticmethod
    async def _cancelled_while_waiting(cancel_event: asyncio.Event | None, delay: float) -> bool:
        """Sleep for `delay`, returning True early if the cancel event is set."""
        if cancel_event is None:
            if delay > 0:
                await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True


__all__ = ["TransitionExecutor"]
