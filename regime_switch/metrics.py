"""Prometheus metrics for regime detection and transitions.

Metrics exported:
- regime_detections_total: Counter of detections by reported regime
- regime_changes_total: Counter of accepted regime changes
- regime_confidence: Gauge of the latest detection confidence
- regime_transition_decisions_total: Counter of decisions by action
- regime_transitions_total: Counter of executed transitions by outcome
- regime_transition_cost_total: Counter of realized transition cost
- regime_transition_duration_seconds: Histogram of plan execution time
- regime_transition_step_failures_total: Counter of failed steps by type
- regime_events_dropped_total: Counter of notifications dropped by subscriber
- regime_state_saves_total: Counter of state snapshot saves by status
"""

from prometheus_client import Counter, Gauge, Histogram

# Detection metrics
regime_detections_total = Counter(
    "regime_detections_total",
    "Total number of regime detections",
    ["regime"],
)

regime_changes_total = Counter(
    "regime_changes_total",
    "Total number of accepted regime changes",
    ["from_regime", "to_regime"],
)

regime_confidence = Gauge(
    "regime_confidence",
    "Confidence of the most recent regime detection",
)

# Transition metrics
transition_decisions_total = Counter(
    "regime_transition_decisions_total",
    "Total number of transition decisions",
    ["action"],
)

transitions_total = Counter(
    "regime_transitions_total",
    "Total number of executed transitions",
    ["status"],  # completed, failed, cancelled
)

transition_cost_total = Counter(
    "regime_transition_cost_total",
    "Total realized transition cost in quote currency",
)

transition_duration_seconds = Histogram(
    "regime_transition_duration_seconds",
    "Duration of transition plan execution in seconds",
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0],
)

transition_step_failures_total = Counter(
    "regime_transition_step_failures_total",
    "Total number of transition steps that failed after retries",
    ["step_type"],
)

# Infrastructure metrics
events_dropped_total = Counter(
    "regime_events_dropped_total",
    "Total number of regime change notifications dropped",
    ["subscriber"],
)

state_saves_total = Counter(
    "regime_state_saves_total",
    "Total number of state snapshot saves",
    ["status"],  # success, failed
)
