"""Tests for the error taxonomy and categorize_error."""

import pytest

from regime_switch.errors import (
    ConfigurationError,
    ErrorCategory,
    InsufficientDataError,
    PositionNotFoundError,
    StepExecutionError,
    TradingError,
    TransitionInProgressError,
    categorize_error,
)


class TestTradingError:
    def test_str_includes_category_and_location(self) -> None:
        error = StepExecutionError(
            "order rejected", component="executor", operation="close_position"
        )
        assert str(error) == "[order] executor.close_position: order rejected"

    def test_str_without_location(self) -> None:
        assert str(ConfigurationError("bad value")) == "[configuration] bad value"

    def test_retryable_follows_category(self) -> None:
        assert TradingError("blip").retryable
        assert not ConfigurationError("bad").retryable
        assert TradingError("slow", category=ErrorCategory.TIMEOUT).retryable

    def test_explicit_retryable_wins(self) -> None:
        assert not TradingError("blip", retryable=False).retryable

    def test_fatal(self) -> None:
        assert ConfigurationError("bad").is_fatal
        assert not StepExecutionError("rejected").is_fatal

    def test_specialized_errors(self) -> None:
        insufficient = InsufficientDataError("need more", required=203, available=50)
        assert (insufficient.required, insufficient.available) == (203, 50)
        assert insufficient.category is ErrorCategory.VALIDATION

        missing = PositionNotFoundError("pos-9")
        assert missing.message == "Position not found: pos-9"
        assert not missing.retryable

        busy = TransitionInProgressError("tr-1")
        assert busy.transition_id == "tr-1"
        assert busy.category is ErrorCategory.STRATEGY


class TestCategorizeError:
    def test_trading_error_passes_through(self) -> None:
        original = StepExecutionError("rejected")

        result = categorize_error(original, component="executor", operation="modify_order")

        assert result is original
        assert result.component == "executor"
        assert result.operation == "modify_order"

    def test_existing_location_kept(self) -> None:
        original = StepExecutionError("rejected", component="venue")
        assert categorize_error(original, component="executor").component == "venue"

    @pytest.mark.parametrize(
        "exc, category, retryable",
        [
            (TimeoutError(), ErrorCategory.TIMEOUT, True),
            (ConnectionError("reset by peer"), ErrorCategory.NETWORK, True),
            (PermissionError("denied"), ErrorCategory.CREDENTIALS, False),
            (RuntimeError("request timed out"), ErrorCategory.TIMEOUT, True),
            (RuntimeError("429 Too Many Requests"), ErrorCategory.RATE_LIMIT, True),
            (RuntimeError("network unreachable"), ErrorCategory.NETWORK, True),
            (RuntimeError("Invalid API key"), ErrorCategory.CREDENTIALS, False),
            (RuntimeError("insufficient margin"), ErrorCategory.ORDER, False),
            (ValueError("quantity below minimum"), ErrorCategory.VALIDATION, False),
            (RuntimeError("something odd"), ErrorCategory.TEMPORARY, True),
        ],
    )
    def test_classification(
        self, exc: BaseException, category: ErrorCategory, retryable: bool
    ) -> None:
        result = categorize_error(exc, component="venue")

        assert result.category is category
        assert result.retryable is retryable
        assert result.__cause__ is exc

    def test_empty_message_uses_type_name(self) -> None:
        assert categorize_error(TimeoutError()).message == "TimeoutError"
