"""Regime detection.

Contains the rule-based regime classifier, the hysteresis-applying
detector, and offline analysis of detector output.
"""

from regime_switch.regime.analysis import (
    RegimeAnalysis,
    RegimeAnalysisRow,
    RegimeAnalysisSummary,
    analyze_history,
    summarize,
)
from regime_switch.regime.detector import RegimeDetector
from regime_switch.regime.models import (
    RegimeConfig,
    RegimeDetectorState,
    RegimeMetrics,
    RegimeSignal,
)

__all__ = [
    "RegimeAnalysis",
    "RegimeAnalysisRow",
    "RegimeAnalysisSummary",
    "RegimeConfig",
    "RegimeDetector",
    "RegimeDetectorState",
    "RegimeMetrics",
    "RegimeSignal",
    "analyze_history",
    "summarize",
]
