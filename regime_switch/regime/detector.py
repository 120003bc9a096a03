"""Market regime detector with hysteresis.

This module classifies a price/volume history into one of four regimes
(trending, ranging, volatile, uncertain) and suppresses chatter with a
confirmation counter and a post-switch cooldown.

Classes:
    RegimeDetector: Stateful classifier owning the hysteresis state machine.

Example:
    >>> from regime_switch.regime import RegimeConfig, RegimeDetector
    >>> detector = RegimeDetector(RegimeConfig())
    >>> signal = detector.detect_regime(bars)  # bars: list[Bar], >= 203 bars
    >>> signal.regime.value
    'trending'
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from regime_switch import metrics as prom
from regime_switch.contracts import Bar, RegimeChange, RegimeType
from regime_switch.errors import InsufficientDataError
from regime_switch.regime.classifier import classify, compute_metrics, score_confidence
from regime_switch.regime.models import (
    RegimeConfig,
    RegimeDetectorState,
    RegimeMetrics,
    RegimeSignal,
)

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.6


class RegimeDetector:
    """Classifies market regime and applies hysteresis.

    States of the hysteresis machine: no prior regime, stable, pending
    confirmation (a differing candidate is accumulating detections) and
    cooldown (frozen after an accepted switch).

    - First detection is accepted immediately without a transition flag.
    - While cooling down, the accepted regime is reported unchanged.
    - A differing candidate must be seen on consecutive detections:
      confirmation_bars - 1 times at confidence > 0.8, confirmation_bars
      times at confidence > 0.6. Lower confidence resets the count, and a
      different candidate restarts it.

    The caller must not invoke detect_regime concurrently for the same
    symbol; the lock protects readers (API, persistence) against a
    detection in progress.

    Attributes:
        _config: Regime configuration.
        _current_regime: Last accepted regime, None before the first detection.
        _pending_regime: Candidate accumulating confirmations.
        _confirmation_count: Consecutive detections of the candidate.
        _cooldown_remaining: Detections left in the post-switch freeze.
        _history: Bounded list of produced signals.
    """

    def __init__(self, config: RegimeConfig | None = None) -> None:
        """Initialize RegimeDetector.

        Args:
            config: Regime configuration, defaults to RegimeConfig().
        """
        self._config = config or RegimeConfig()
        self._lock = threading.Lock()
        self._current_regime: RegimeType | None = None
        self._pending_regime: RegimeType | None = None
        self._confirmation_count = 0
        self._cooldown_remaining = 0
        self._last_signal: RegimeSignal | None = None
        self._last_metrics: RegimeMetrics | None = None
        self._history: list[RegimeSignal] = []

    @property
    def config(self) -> RegimeConfig:
        return self._config

    @property
    def minimum_bars(self) -> int:
        return self._config.minimum_bars

    def detect_regime(self, history: Sequence[Bar]) -> RegimeSignal:
        """Classify the latest bar of `history` and apply hysteresis.

        Args:
            history: Bars, oldest first; the last bar is the current one.

        Returns:
            RegimeSignal with the externally visible regime.

        Raises:
            InsufficientDataError: If fewer than minimum_bars bars are given.
            IndicatorError: If an indicator cannot be computed. The detector
                state is left untouched so the previous signal stays valid.
        """
        if len(history) < self.minimum_bars:
            raise InsufficientDataError(
                f"insufficient data: need at least {self.minimum_bars} bars, got {len(history)}",
                required=self.minimum_bars,
                available=len(history),
                component="regime_detector",
                operation="detect_regime",
            )

        metrics = compute_metrics(history, self._config)
        raw_regime = classify(metrics, self._config)
        confidence = score_confidence(raw_regime, metrics, self._config)

        with self._lock:
            previous = self._current_regime
            regime, transition = self._apply_hysteresis(raw_regime, confidence)
            signal = RegimeSignal(
                regime=regime,
                confidence=confidence,
                timestamp=history[-1].timestamp,
                trend_strength=metrics.trend_strength,
                volatility=metrics.volatility,
                noise_level=metrics.noise_level,
                transition=transition,
                raw_regime=raw_regime,
            )
            self._last_signal = signal
            self._last_metrics = metrics
            self._append_history(signal)

        prom.regime_detections_total.labels(regime=regime.value).inc()
        prom.regime_confidence.set(confidence)

        if transition:
            prom.regime_changes_total.labels(
                from_regime=previous.value if previous else "none", to_regime=regime.value
            ).inc()
            logger.info(
                "Regime change: %s -> %s (confidence=%.2f, adx=%.1f, vol=%.2f, noise=%.2f)",
                previous.value if previous else "none",
                regime.value,
                confidence,
                metrics.adx,
                metrics.volatility,
                metrics.noise_level,
            )
        else:
            logger.debug(
                "Regime %s (raw=%s, confidence=%.2f)", regime.value, raw_regime.value, confidence
            )

        return signal

    def detect_change(self, history: Sequence[Bar]) -> tuple[RegimeSignal, RegimeChange | None]:
        """Run detect_regime and build a RegimeChange when a switch was accepted."""
        previous = self.get_current_regime()
        signal = self.detect_regime(history)
        if not signal.transition:
            return signal, None

        change = RegimeChange(
            timestamp=signal.timestamp,
            old_regime=previous,
            new_regime=signal.regime,
            confidence=signal.confidence,
            reason=(
                f"{signal.regime.value} confirmed after hysteresis "
                f"(trend={signal.trend_strength:.2f}, vol={signal.volatility:.2f}, "
                f"noise={signal.noise_level:.2f})"
            ),
            trigger_price=history[-1].close,
        )
        return signal, change

    def _apply_hysteresis(self, regime: RegimeType, confidence: float) -> tuple[RegimeType, bool]:
        """Advance the hysteresis state machine. Caller holds the lock.

        Returns:
            (reported regime, transition flag)
        """
        if self._current_regime is None:
            self._current_regime = regime
            self._reset_pending()
            return regime, False

        if self._cooldown_remaining > 0:
            self._cooldown_remaining -= 1
            return self._current_regime, False

        if regime == self._current_regime:
            self._reset_pending()
            return self._current_regime, False

        if confidence > MEDIUM_CONFIDENCE:
            if regime != self._pending_regime:
                self._pending_regime = regime
                self._confirmation_count = 0
            self._confirmation_count += 1

            required = self._config.confirmation_bars
            if confidence > HIGH_CONFIDENCE:
                required = max(1, required - 1)

            if self._confirmation_count >= required:
                self._current_regime = regime
                self._reset_pending()
                self._cooldown_remaining = self._config.regime_switch_cooldown
                return regime, True
        else:
            self._reset_pending()

        return self._current_regime, False

    def _reset_pending(self) -> None:
        self._pending_regime = None
        self._confirmation_count = 0

    def _append_history(self, signal: RegimeSignal) -> None:
        self._history.append(signal)
        if len(self._history) > self._config.history_limit:
            del self._history[: self._config.history_trim]

    def get_current_regime(self) -> RegimeType | None:
        with self._lock:
            return self._current_regime

    def get_last_signal(self) -> RegimeSignal | None:
        with self._lock:
            return self._last_signal

    def get_last_metrics(self) -> RegimeMetrics | None:
        with self._lock:
            return self._last_metrics

    def get_history(self, limit: int | None = None) -> list[RegimeSignal]:
        """Copy of the signal history, newest last."""
        with self._lock:
            if limit is None:
                return list(self._history)
            return self._history[-limit:] if limit > 0 else []

    def export_state(self) -> RegimeDetectorState:
        """Deep copy of hysteresis state for persistence."""
        with self._lock:
            return RegimeDetectorState(
                current_regime=self._current_regime,
                pending_regime=self._pending_regime,
                confirmation_count=self._confirmation_count,
                cooldown_remaining=self._cooldown_remaining,
                last_signal=self._last_signal,
                history=list(self._history),
            )

    def restore_state(self, state: RegimeDetectorState) -> None:
        """Replace hysteresis state with a previously exported copy."""
        with self._lock:
            self._current_regime = state.current_regime
            self._pending_regime = state.pending_regime
            self._confirmation_count = state.confirmation_count
            self._cooldown_remaining = state.cooldown_remaining
            self._last_signal = state.last_signal
            self._last_metrics = None
            self._history = list(state.history[-self._config.history_limit :])
        logger.info(
            "Restored regime detector state: regime=%s, history=%d",
            state.current_regime.value if state.current_regime else "none",
            len(state.history),
        )

    def reset(self) -> None:
        """Forget all state, as if no detection had run."""
        with self._lock:
            self._current_regime = None
            self._last_signal = None
            self._last_metrics = None
            self._cooldown_remaining = 0
            self._history = []
            self._reset_pending()


__all__ = ["RegimeDetector"]
