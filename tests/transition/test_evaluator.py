"""Tests for PositionEvaluator.

Test cases:
- Aggregates: gross/net exposure, P&L percent, average age
- Cost model: exit = gross * (fee + slippage), other strategies scaled
- Compatibility per regime
- Market context from bars, neutral when data is short
- Per-position risk scores
- Evaluation is a pure function of its inputs
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from regime_switch.contracts import Bar, EnginePosition, PositionSide, RegimeType
from regime_switch.transition import PositionEvaluator
from regime_switch.transition.models import EvaluatorConfig, MarketContext


@pytest.fixture
def evaluator() -> PositionEvaluator:
    return PositionEvaluator(EvaluatorConfig())


@pytest.fixture
def losing_long(make_position: Callable[..., EnginePosition]) -> EnginePosition:
    """Long 100 @ 100, now 95, held for six hours."""
    return make_position(current_price=95.0, age=timedelta(hours=6))


class TestAggregates:
    def test_single_losing_position(
        self, evaluator: PositionEvaluator, losing_long: EnginePosition, now: datetime
    ) -> None:
        evaluation = evaluator.evaluate_positions(
            [losing_long], RegimeType.TRENDING, RegimeType.RANGING, now=now
        )

        assert evaluation.position_count == 1
        assert evaluation.gross_exposure == pytest.approx(9500.0)
        assert evaluation.net_exposure == pytest.approx(9500.0)
        assert evaluation.unrealized_pnl == pytest.approx(-500.0)
        assert evaluation.unrealized_pnl_pct == pytest.approx(-0.05)
        assert evaluation.average_age_hours == pytest.approx(6.0)
        assert evaluation.losing_count == 1
        assert evaluation.profitable_count == 0
        assert evaluation.timestamp == now

    def test_balanced_book(
        self,
        evaluator: PositionEvaluator,
        make_position: Callable[..., EnginePosition],
        now: datetime,
    ) -> None:
        """Offsetting long and short: zero net exposure, full ranging fit."""
        positions = [
            make_position(id="long", age=timedelta(hours=2)),
            make_position(id="short", side=PositionSide.SHORT, age=timedelta(hours=4)),
        ]

        evaluation = evaluator.evaluate_positions(
            positions, RegimeType.TRENDING, RegimeType.RANGING, now=now
        )

        assert evaluation.gross_exposure == pytest.approx(20000.0)
        assert evaluation.net_exposure == pytest.approx(0.0)
        assert evaluation.net_ratio == 0.0
        assert evaluation.compatibility == pytest.approx(1.0)
        assert evaluation.average_age_hours == pytest.approx(3.0)

    def test_no_positions(self, evaluator: PositionEvaluator, now: datetime) -> None:
        evaluation = evaluator.evaluate_positions([], None, RegimeType.RANGING, now=now)

        assert evaluation.is_empty
        assert evaluation.old_regime is None
        assert evaluation.gross_exposure == 0.0
        assert evaluation.unrealized_pnl_pct == 0.0
        assert evaluation.average_age == timedelta()
        assert evaluation.costs.exit == 0.0
        assert evaluation.largest_position is None
        assert evaluation.risk_score == 0.0

    def test_evaluation_is_pure(
        self,
        evaluator: PositionEvaluator,
        losing_long: EnginePosition,
        now: datetime,
        uptrend_bars: list[Bar],
    ) -> None:
        """Same inputs give equal evaluations."""
        args = ([losing_long], RegimeType.TRENDING, RegimeType.RANGING, uptrend_bars[:60])

        assert evaluator.evaluate_positions(*args, now=now) == evaluator.evaluate_positions(
            *args, now=now
        )

    def test_evaluate_each(
        self,
        evaluator: PositionEvaluator,
        make_position: Callable[..., EnginePosition],
        now: datetime,
    ) -> None:
        positions = [make_position(id="a"), make_position(id="b", size=50.0)]

        evaluations = evaluator.evaluate_each(
            positions, RegimeType.TRENDING, RegimeType.RANGING, now=now
        )

        assert [e.positions[0].id for e in evaluations] == ["a", "b"]
        assert evaluations[1].gross_exposure == pytest.approx(5000.0)


class TestCosts:
    def test_cost_model(self, evaluator: PositionEvaluator) -> None:
        """exit = 9500 * 0.0015; migrate 0.5x, convert 1.5x, unwind 0.6x."""
        costs = evaluator.estimate_costs(9500.0)

        assert costs.exit == pytest.approx(14.25)
        assert costs.migrate == pytest.approx(7.125)
        assert costs.convert == pytest.approx(21.375)
        assert costs.unwind == pytest.approx(8.55)

    def test_costs_follow_config(self) -> None:
        evaluator = PositionEvaluator(EvaluatorConfig(fee_rate=0.002, slippage_rate=0.0))
        assert evaluator.estimate_costs(1000.0).exit == pytest.approx(2.0)


class TestCompatibility:
    @pytest.mark.parametrize(
        "direction, net_ratio, expected",
        [(0, 1.0, 0.5), (1, 1.0, 1.0), (1, -1.0, 0.0), (-1, -1.0, 1.0)],
    )
    def test_trending(
        self, evaluator: PositionEvaluator, direction: int, net_ratio: float, expected: float
    ) -> None:
        market = MarketContext(trend_strength=30.0, trend_direction=direction)
        assert evaluator.compatibility(RegimeType.TRENDING, net_ratio, market) == expected

    def test_ranging_prefers_balance(self, evaluator: PositionEvaluator) -> None:
        assert evaluator.compatibility(RegimeType.RANGING, 0.5, MarketContext()) == 0.5

    def test_volatile(self, evaluator: PositionEvaluator) -> None:
        """0.6 * balance + 0.4 * calmness."""
        market = MarketContext(volatility=0.5)
        assert evaluator.compatibility(RegimeType.VOLATILE, 0.0, market) == pytest.approx(0.8)

    def test_uncertain(self, evaluator: PositionEvaluator) -> None:
        assert evaluator.compatibility(RegimeType.UNCERTAIN, 1.0, MarketContext()) == 0.5


class TestMarketContext:
    def test_no_bars_is_neutral(self, evaluator: PositionEvaluator) -> None:
        assert evaluator.market_context([]) == MarketContext()

    def test_short_history_is_neutral(
        self, evaluator: PositionEvaluator, uptrend_bars: list[Bar]
    ) -> None:
        assert evaluator.market_context(uptrend_bars[:10]) == MarketContext()

    def test_uptrend(self, evaluator: PositionEvaluator, uptrend_bars: list[Bar]) -> None:
        market = evaluator.market_context(uptrend_bars[:60])

        assert market.trend_direction == 1
        assert market.trend_strength == pytest.approx(100.0)
        assert 0.0 < market.volatility < 1.0


class TestPositionRisk:
    def test_risk_score(
        self, evaluator: PositionEvaluator, losing_long: EnginePosition, now: datetime
    ) -> None:
        """0.4 * loss(0.5) + 0.3 * age(0.25) + 0.3 * misalignment(0.5)."""
        evaluation = evaluator.evaluate_positions(
            [losing_long], RegimeType.TRENDING, RegimeType.RANGING, now=now
        )

        risk = evaluation.position_risk("pos-1")
        assert risk is not None
        assert risk.regime_alignment == 0.0
        assert risk.risk_score == pytest.approx(0.425)
        assert evaluation.riskiest_position == risk
        assert evaluation.position_risk("missing") is None

    def test_alignment_with_trend(
        self,
        evaluator: PositionEvaluator,
        make_position: Callable[..., EnginePosition],
        now: datetime,
        uptrend_bars: list[Bar],
    ) -> None:
        positions = [
            make_position(id="long"),
            make_position(id="short", side=PositionSide.SHORT, size=200.0),
        ]

        evaluation = evaluator.evaluate_positions(
            positions, RegimeType.RANGING, RegimeType.TRENDING, uptrend_bars[:60], now=now
        )

        assert evaluation.position_risk("long").regime_alignment == 1.0
        assert evaluation.position_risk("short").regime_alignment == -1.0
        assert evaluation.largest_position.position_id == "short"
        assert evaluation.exposure_against_trend
