"""Error taxonomy for regime detection and transition execution.

Errors carry a category that decides how callers react:

- fatal / configuration / credentials: stop processing, never retried
- network / timeout / temporary / rate_limit: retried (rate_limit waits first)
- validation / order: not retried, the input or market state was invalid
- position / strategy: retryability decided by whoever raises them

Risk-limit and cooldown violations are not errors; the transition manager
returns them as hold decisions with a reason string.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Category of a trading error."""

    FATAL = "fatal"
    CONFIGURATION = "configuration"
    CREDENTIALS = "credentials"
    NETWORK = "network"
    TIMEOUT = "timeout"
    TEMPORARY = "temporary"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    ORDER = "order"
    POSITION = "position"
    STRATEGY = "strategy"


FATAL_CATEGORIES = frozenset(
    {ErrorCategory.FATAL, ErrorCategory.CONFIGURATION, ErrorCategory.CREDENTIALS}
)

RETRYABLE_CATEGORIES = frozenset(
    {
        ErrorCategory.NETWORK,
        ErrorCategory.TIMEOUT,
        ErrorCategory.TEMPORARY,
        ErrorCategory.RATE_LIMIT,
    }
)


class TradingError(Exception):
    """Base exception for regime_switch errors.

    Attributes:
        message: Human-readable description
        category: ErrorCategory deciding retry/abort behavior
        component: Component that raised the error (e.g. "executor")
        operation: Operation in progress (e.g. "close_position")
        retryable: Whether a retry may succeed
        retry_after: Seconds to wait before retrying (rate limits)
        context: Free-form key/value details for logs
    """

    category: ErrorCategory = ErrorCategory.TEMPORARY

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        component: str = "",
        operation: str = "",
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        self.component = component
        self.operation = operation
        self.retryable = (
            retryable if retryable is not None else self.category in RETRYABLE_CATEGORIES
        )
        self.retry_after = retry_after
        self.context = dict(context or {})

    @property
    def is_fatal(self) -> bool:
        """True when processing must stop entirely."""
        return self.category in FATAL_CATEGORIES

    def __str__(self) -> str:
        where = ".".join(part for part in (self.component, self.operation) if part)
        prefix = f"[{self.category.value}]"
        if where:
            prefix = f"{prefix} {where}:"
        return f"{prefix} {self.message}"


class InsufficientDataError(TradingError):
    """Not enough bars for a calculation."""

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, required: int, available: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.required = required
        self.available = available


class IndicatorError(TradingError):
    """An indicator produced an invalid value (NaN, non-positive price)."""

    category = ErrorCategory.VALIDATION


class ConfigurationError(TradingError):
    """Invalid configuration or configuration update."""

    category = ErrorCategory.CONFIGURATION


class TransitionInProgressError(TradingError):
    """A transition is already executing."""

    category = ErrorCategory.STRATEGY

    def __init__(self, transition_id: str, **kwargs: Any) -> None:
        super().__init__(f"Transition {transition_id} already in progress", **kwargs)
        self.transition_id = transition_id


class PlanGenerationError(TradingError):
    """A transition plan could not be built."""

    category = ErrorCategory.STRATEGY


class StepExecutionError(TradingError):
    """A transition step failed against the execution venue."""

    category = ErrorCategory.ORDER


class PositionNotFoundError(TradingError):
    """A plan step references a position the engine no longer holds."""

    category = ErrorCategory.POSITION

    def __init__(self, position_id: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(f"Position not found: {position_id}", **kwargs)
        self.position_id = position_id


class StateStoreError(TradingError):
    """Persisted state could not be saved or loaded."""

    category = ErrorCategory.TEMPORARY


# Ordered: first match wins
_MESSAGE_RULES: list[tuple[tuple[str, ...], ErrorCategory, bool]] = [
    (("timeout", "timed out", "deadline"), ErrorCategory.TIMEOUT, True),
    (("rate limit", "too many requests"), ErrorCategory.RATE_LIMIT, True),
    (("connection", "network", "dns", "dial"), ErrorCategory.NETWORK, True),
    (("api key", "unauthorized", "authentication", "forbidden"), ErrorCategory.CREDENTIALS, False),
    (("insufficient", "balance"), ErrorCategory.ORDER, False),
    (("invalid", "constraint", "minimum", "maximum"), ErrorCategory.VALIDATION, False),
]


def categorize_error(
    exc: BaseException, component: str = "", operation: str = ""
) -> TradingError:
    """Wrap an arbitrary exception into a categorized TradingError.

    TradingErrors pass through unchanged (component/operation filled in when
    missing). Other exceptions are classified by type first, then by message.
    """
    if isinstance(exc, TradingError):
        if not exc.component:
            exc.component = component
        if not exc.operation:
            exc.operation = operation
        return exc

    message = str(exc) or type(exc).__name__

    if isinstance(exc, TimeoutError):
        category, retryable = ErrorCategory.TIMEOUT, True
    elif isinstance(exc, ConnectionError):
        category, retryable = ErrorCategory.NETWORK, True
    elif isinstance(exc, PermissionError):
        category, retryable = ErrorCategory.CREDENTIALS, False
    else:
        category, retryable = ErrorCategory.TEMPORARY, True
        lowered = message.lower()
        for needles, rule_category, rule_retryable in _MESSAGE_RULES:
            if any(needle in lowered for needle in needles):
                category, retryable = rule_category, rule_retryable
                break

    error = TradingError(
        message,
        category=category,
        component=component,
        operation=operation,
        retryable=retryable,
    )
    error.__cause__ = exc
    return error


__all__ = [
    "ConfigurationError",
    "ErrorCategory",
    "FATAL_CATEGORIES",
    "IndicatorError",
    "InsufficientDataError",
    "PlanGenerationError",
    "PositionNotFoundError",
    "RETRYABLE_CATEGORIES",
    "StateStoreError",
    "StepExecutionError",
    "TradingError",
    "TransitionInProgressError",
    "categorize_error",
]
