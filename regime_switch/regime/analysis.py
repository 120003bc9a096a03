"""Offline regime analysis over a historical bar series.

Runs a fresh detector bar by bar and summarizes the resulting signal
stream: regime distribution, transition count, false-signal rate and
stability. Used by the CLI for backtesting detector settings.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from regime_switch.contracts import Bar, RegimeType
from regime_switch.regime.detector import RegimeDetector
from regime_switch.regime.models import RegimeConfig

logger = logging.getLogger(__name__)

# 5-minute bars
DEFAULT_BARS_PER_HOUR = 12
MAX_FALSE_SIGNAL_RATE = 3.0
MIN_STABILITY_PCT = 85.0


@dataclass(frozen=True)
class RegimeAnalysisRow:
    """Detector output for one processed bar."""

    timestamp: datetime
    price: float
    regime: RegimeType
    confidence: float
    trend_strength: float
    volatility: float
    noise_level: float
    transition: bool


@dataclass(frozen=True)
class RegimeAnalysisSummary:
    """Summary statistics of an analysis run.

    Attributes:
        total_bars: Rows analyzed
        regime_counts: Rows per reported regime
        regime_percentages: Share of rows per regime, in percent
        transitions: Accepted regime changes
        average_confidence: Mean confidence over all rows
        false_signal_rate: Transitions per hour of data
        stability_pct: Share of rows without a transition, in percent
    """

    total_bars: int
    regime_counts: dict[str, int] = field(default_factory=dict)
    regime_percentages: dict[str, float] = field(default_factory=dict)
    transitions: int = 0
    average_confidence: float = 0.0
    false_signal_rate: float = 0.0
    stability_pct: float = 0.0

    @property
    def acceptable(self) -> bool:
        """Fewer than 3 transitions per hour and stability above 85%."""
        return (
            self.false_signal_rate < MAX_FALSE_SIGNAL_RATE
            and self.stability_pct > MIN_STABILITY_PCT
        )

    def to_dict(self) -> dict:
        return {
            "total_bars": self.total_bars,
            "regime_counts": dict(self.regime_counts),
            "regime_percentages": dict(self.regime_percentages),
            "transitions": self.transitions,
            "average_confidence": self.average_confidence,
            "false_signal_rate": self.false_signal_rate,
            "stability_pct": self.stability_pct,
            "acceptable": self.acceptable,
        }


@dataclass(frozen=True)
class RegimeAnalysis:
    rows: list[RegimeAnalysisRow]
    summary: RegimeAnalysisSummary


def summarize(
    rows: Sequence[RegimeAnalysisRow], bars_per_hour: int = DEFAULT_BARS_PER_HOUR
) -> RegimeAnalysisSummary:
    """Summarize a signal stream. An empty stream yields an all-zero summary."""
    if bars_per_hour < 1:
        raise ValueError(f"bars_per_hour must be >= 1, got {bars_per_hour}")

    total = len(rows)
    if total == 0:
        return RegimeAnalysisSummary(total_bars=0)

    counts = Counter(row.regime.value for row in rows)
    transitions = sum(1 for row in rows if row.transition)
    hours = total / bars_per_hour

    return RegimeAnalysisSummary(
        total_bars=total,
        regime_counts={regime.value: counts.get(regime.value, 0) for regime in RegimeType},
        regime_percentages={
            regime.value: counts.get(regime.value, 0) / total * 100 for regime in RegimeType
        },
        transitions=transitions,
        average_confidence=sum(row.confidence for row in rows) / total,
        false_signal_rate=transitions / hours,
        stability_pct=(total - transitions) / total * 100,
    )


def analyze_history(
    bars: Sequence[Bar],
    config: RegimeConfig | None = None,
    warmup: int | None = None,
    bars_per_hour: int = DEFAULT_BARS_PER_HOUR,
) -> RegimeAnalysis:
    """Replay `bars` through a fresh detector, one detection per bar.

    Args:
        bars: Full history, oldest first.
        config: Detector configuration.
        warmup: Bars skipped before the first detection; defaults to the
            detector's minimum.
        bars_per_hour: Bar frequency used for the false-signal rate.

    Raises:
        ValueError: If warmup is smaller than the detector's minimum.
    """
    detector = RegimeDetector(config)
    start = detector.minimum_bars if warmup is None else warmup
    if start < detector.minimum_bars:
        raise ValueError(f"warmup must be >= {detector.minimum_bars}, got {start}")

    rows: list[RegimeAnalysisRow] = []
    for end in range(start, len(bars) + 1):
        window = bars[:end]
        signal = detector.detect_regime(window)
        rows.append(
            RegimeAnalysisRow(
                timestamp=signal.timestamp,
                price=window[-1].close,
                regime=signal.regime,
                confidence=signal.confidence,
                trend_strength=signal.trend_strength,
                volatility=signal.volatility,
                noise_level=signal.noise_level,
                transition=signal.transition,
            )
        )

    summary = summarize(rows, bars_per_hour)
    logger.info(
        "Analyzed %d bars: %d transitions, stability %.1f%%",
        summary.total_bars,
        summary.transitions,
        summary.stability_pct,
    )
    return RegimeAnalysis(rows=rows, summary=summary)


__all__ = [
    "RegimeAnalysis",
    "RegimeAnalysisRow",
    "RegimeAnalysisSummary",
    "analyze_history",
    "summarize",
]
