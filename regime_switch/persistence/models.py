"""Persisted state snapshot."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from pydantic import Field

from regime_switch.contracts import utc_now
from regime_switch.models import StrictModel
from regime_switch.regime.models import RegimeDetectorState
from regime_switch.transition.models import TransitionManagerState
from regime_switch.transition.policies import PolicyPerformance

SNAPSHOT_VERSION = 1


class StateSnapshot(StrictModel):
    """Everything needed to resume a symbol after a restart.

    Attributes:
        version: Snapshot schema version.
        symbol: Instrument the state belongs to.
        saved_at: When the snapshot was built.
        regime: Detector hysteresis state and signal history.
        transitions: Manager flags, daily counters, history and active summary.
        active_policy: Name of the active transition policy.
        policy_performance: Per-policy application bookkeeping.
    """

    version: int = SNAPSHOT_VERSION
    symbol: str
    saved_at: datetime = Field(default_factory=utc_now)
    regime: RegimeDetectorState = Field(default_factory=RegimeDetectorState)
    transitions: TransitionManagerState = Field(default_factory=TransitionManagerState)
    active_policy: str | None = None
    policy_performance: dict[str, PolicyPerformance] = Field(default_factory=dict)


class StateStore(Protocol):
    """Persistence backend for state snapshots."""

    async def save_state(self, snapshot: StateSnapshot) -> None:
        ...

    async def load_state(self) -> StateSnapshot | None:
        """Most recent snapshot, or None when nothing was saved yet."""
        ...


__all__ = ["SNAPSHOT_VERSION", "StateSnapshot", "StateStore"]
