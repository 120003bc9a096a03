"""Position evaluation against a regime change.

PositionEvaluator is a pure function of its inputs: the same positions,
regimes, bars and evaluation time always give an equal PositionEvaluation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from regime_switch.contracts import Bar, EnginePosition, RegimeType, utc_now
from regime_switch.errors import InsufficientDataError
from regime_switch.indicators import ADX, ATR, EMA
from regime_switch.transition.models import (
    EvaluatorConfig,
    MarketContext,
    PositionEvaluation,
    PositionRisk,
    TransitionCosts,
)

logger = logging.getLogger(__name__)

# Risk score weights
LOSS_WEIGHT = 0.4
AGE_WEIGHT = 0.3
MISALIGNMENT_WEIGHT = 0.3
# P&L at which loss severity saturates
MAX_LOSS_PCT = 0.10


class PositionEvaluator:
    """Computes exposure, P&L, compatibility and resolution costs.

    Attributes:
        _config: Cost model and market context settings.
    """

    def __init__(self, config: EvaluatorConfig | None = None) -> None:
        self._config = config or EvaluatorConfig()

    @property
    def config(self) -> EvaluatorConfig:
        return self._config

    def evaluate_positions(
        self,
        positions: Sequence[EnginePosition],
        old_regime: RegimeType | None,
        new_regime: RegimeType,
        market_data: Sequence[Bar] = (),
        now: datetime | None = None,
    ) -> PositionEvaluation:
        """Evaluate open positions for a change from old_regime to new_regime.

        Args:
            positions: Open positions across engines.
            old_regime: Regime being left (None on the first detection).
            new_regime: Regime being entered.
            market_data: Recent bars for trend/volatility context.
            now: Evaluation time; defaults to the current UTC time.

        Returns:
            PositionEvaluation built fresh from the inputs.
        """
        now = now or utc_now()
        market = self.market_context(market_data)
        positions = tuple(positions)

        gross = sum(p.notional for p in positions)
        net = sum(p.signed_notional for p in positions)
        pnl = sum(p.unrealized_pnl for p in positions)
        basis = sum(p.cost_basis for p in positions)
        pnl_pct = pnl / basis if basis else 0.0

        if positions:
            total_age = sum((p.age(now) for p in positions), timedelta())
            average_age = total_age / len(positions)
        else:
            average_age = timedelta()

        net_ratio = net / gross if gross else 0.0
        compatibility = self.compatibility(new_regime, net_ratio, market)
        costs = self.estimate_costs(gross)

        risks = tuple(self._position_risk(p, new_regime, market, now) for p in positions)
        largest = max(risks, key=lambda r: abs(r.notional), default=None)
        riskiest = max(risks, key=lambda r: r.risk_score, default=None)

        return PositionEvaluation(
            old_regime=old_regime,
            new_regime=new_regime,
            positions=positions,
            gross_exposure=gross,
            net_exposure=net,
            unrealized_pnl=pnl,
            unrealized_pnl_pct=pnl_pct,
            average_age=average_age,
            compatibility=compatibility,
            costs=costs,
            market=market,
            position_risks=risks,
            largest_position=largest,
            riskiest_position=riskiest,
            profitable_count=sum(1 for p in positions if p.unrealized_pnl > 0),
            losing_count=sum(1 for p in positions if p.unrealized_pnl < 0),
            timestamp=now,
        )

    def evaluate_each(
        self,
        positions: Sequence[EnginePosition],
        old_regime: RegimeType | None,
        new_regime: RegimeType,
        market_data: Sequence[Bar] = (),
        now: datetime | None = None,
    ) -> list[PositionEvaluation]:
        """One evaluation per position, for per-position policy plans."""
        now = now or utc_now()
        return [
            self.evaluate_positions([position], old_regime, new_regime, market_data, now)
            for position in positions
        ]

    def market_context(self, bars: Sequence[Bar]) -> MarketContext:
        """Trend strength (ADX), direction (fast vs slow EMA) and volatility.

        Too few bars give a neutral context.
        """
        cfg = self._config
        if not bars:
            return MarketContext()
        try:
            adx = ADX(cfg.adx_period).calculate(bars)
            fast = EMA(cfg.ema_fast_period).calculate(bars)
            slow = EMA(cfg.ema_slow_period).calculate(bars)
            atr = ATR(cfg.atr_period).calculate(bars)
        except InsufficientDataError as e:
            logger.debug(f"Neutral market context: {e.message}")
            return MarketContext()

        price = bars[-1].close
        if fast > slow * (1 + cfg.direction_threshold):
            direction = 1
        elif fast < slow * (1 - cfg.direction_threshold):
            direction = -1
        else:
            direction = 0

        volatility = min(1.0, atr / price / cfg.atr_normalizer)
        return MarketContext(trend_strength=adx, trend_direction=direction, volatility=volatility)

    def compatibility(
        self, regime: RegimeType, net_ratio: float, market: MarketContext
    ) -> float:
        """How well net exposure suits the regime, in [0, 1].

        Trending regimes want exposure in the trend direction, ranging
        regimes want a balanced book, volatile regimes want little net
        exposure and calm markets.
        """
        if regime is RegimeType.TRENDING:
            if market.trend_direction == 0:
                return 0.5
            return (1 + net_ratio * market.trend_direction) / 2
        if regime is RegimeType.RANGING:
            return 1 - abs(net_ratio)
        if regime is RegimeType.VOLATILE:
            return 0.6 * (1 - abs(net_ratio)) + 0.4 * (1 - market.volatility)
        return 0.5

    def estimate_costs(self, gross_exposure: float) -> TransitionCosts:
        """Linear cost estimates for each resolution strategy."""
        cfg = self._config
        exit_cost = gross_exposure * (cfg.fee_rate + cfg.slippage_rate)
        return TransitionCosts(
            exit=exit_cost,
            migrate=exit_cost * cfg.migration_cost_factor,
            convert=exit_cost * cfg.conversion_cost_factor,
            unwind=exit_cost * cfg.unwind_cost_factor,
        )

    def _position_risk(
        self,
        position: EnginePosition,
        regime: RegimeType,
        market: MarketContext,
        now: datetime,
    ) -> PositionRisk:
        age_hours = position.age(now).total_seconds() / 3600
        pnl_pct = position.pnl_percent

        if regime is RegimeType.TRENDING and market.trend_direction != 0:
            alignment = float(position.side.sign * market.trend_direction)
        elif regime is RegimeType.VOLATILE:
            alignment = -0.5
        else:
            alignment = 0.0

        loss_severity = min(1.0, max(0.0, -pnl_pct) / MAX_LOSS_PCT)
        age_ratio = min(1.0, age_hours / self._config.max_position_age_hours)
        misalignment = (1 - alignment) / 2
        risk = (
            LOSS_WEIGHT * loss_severity
            + AGE_WEIGHT * age_ratio
            + MISALIGNMENT_WEIGHT * misalignment
        )
        return PositionRisk(
            position_id=position.id,
            notional=position.signed_notional,
            pnl_percent=pnl_pct,
            age_hours=age_hours,
            regime_alignment=alignment,
            risk_score=min(1.0, risk),
        )


__all__ = ["PositionEvaluator"]
