"""Opportunistic background persistence of detector and manager state.

Snapshots are built synchronously from deep copies (cheap, under each
component's own lock) and written on a background task, so the detection
loop never waits on I/O.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from regime_switch import metrics as prom
from regime_switch.contracts import utc_now
from regime_switch.errors import ConfigurationError
from regime_switch.persistence.models import SNAPSHOT_VERSION, StateSnapshot, StateStore
from regime_switch.regime.detector import RegimeDetector
from regime_switch.transition.manager import TransitionManager

logger = logging.getLogger(__name__)

DEFAULT_SAVE_INTERVAL = timedelta(minutes=5)


class StatePersister:
    """Saves and restores one symbol's state through a StateStore.

    Attributes:
        _store: Persistence backend.
        _detector: Regime detector whose state is saved.
        _manager: Transition manager whose state (and policies) are saved.
        _save_interval: Minimum time between opportunistic saves.
        _save_task: The in-flight background save, if any.
    """

    def __init__(
        self,
        store: StateStore,
        detector: RegimeDetector,
        manager: TransitionManager,
        symbol: str,
        save_interval: timedelta = DEFAULT_SAVE_INTERVAL,
    ) -> None:
        self._store = store
        self._detector = detector
        self._manager = manager
        self._symbol = symbol
        self._save_interval = save_interval
        self._last_save: datetime | None = None
        self._save_task: asyncio.Task[None] | None = None

    @property
    def last_save(self) -> datetime | None:
        return self._last_save

    @property
    def save_in_flight(self) -> bool:
        return self._save_task is not None and not self._save_task.done()

    def build_snapshot(self, now: datetime | None = None) -> StateSnapshot:
        policies = self._manager.policies
        return StateSnapshot(
            symbol=self._symbol,
            saved_at=now or utc_now(),
            regime=self._detector.export_state(),
            transitions=self._manager.export_state(),
            active_policy=policies.active_policy.name,
            policy_performance=policies.get_policy_performance(),
        )

    def maybe_save(self, now: datetime | None = None) -> asyncio.Task[None] | None:
        """Schedule a background save if the interval elapsed and none is running.

        Must be called from a running event loop.

        Returns:
            The scheduled task, or None when no save was due.
        """
        now = now or utc_now()
        if self.save_in_flight:
            return None
        if self._last_save is not None and now - self._last_save < self._save_interval:
            return None

        snapshot = self.build_snapshot(now)
        self._last_save = now
        self._save_task = asyncio.create_task(self._save_in_background(snapshot))
        return self._save_task

    async def save_now(self) -> StateSnapshot:
        """Save immediately, waiting for any in-flight save first.

        Raises:
            StateStoreError: If the store fails.
        """
        await self.wait()
        snapshot = self.build_snapshot()
        try:
            await self._store.save_state(snapshot)
        except Exception:
            prom.state_saves_total.labels(status="failed").inc()
            raise
        self._last_save = snapshot.saved_at
        prom.state_saves_total.labels(status="success").inc()
        logger.info(f"Saved state for {self._symbol}")
        return snapshot

    async def wait(self) -> None:
        """Wait for the in-flight background save, if any."""
        if self._save_task is not None:
            await asyncio.gather(self._save_task, return_exceptions=True)
            self._save_task = None

    async def restore(self) -> bool:
        """Load the latest snapshot into the detector, manager and policies.

        Returns:
            True if a snapshot was restored, False if none exists.

        Raises:
            StateStoreError: If stored state exists but cannot be read.
        """
        snapshot = await self._store.load_state()
        if snapshot is None:
            logger.info(f"No saved state for {self._symbol}")
            return False
        if snapshot.symbol != self._symbol:
            raise ConfigurationError(
                f"Snapshot belongs to {snapshot.symbol}, expected {self._symbol}",
                component="persister",
                operation="restore",
            )
        if snapshot.version != SNAPSHOT_VERSION:
            logger.warning(
                f"Snapshot version {snapshot.version} differs from {SNAPSHOT_VERSION}"
            )

        self._detector.restore_state(snapshot.regime)
        self._manager.restore_state(snapshot.transitions)
        policies = self._manager.policies
        if snapshot.active_policy is not None and snapshot.active_policy in policies.names:
            policies.set_active_policy(snapshot.active_policy)
        policies.restore_performance(snapshot.policy_performance)
        self._last_save = snapshot.saved_at
        logger.info(f"Restored state for {self._symbol} saved at {snapshot.saved_at.isoformat()}")
        return True

    async def _save_in_background(self, snapshot: StateSnapshot) -> None:
        try:
            await self._store.save_state(snapshot)
        except Exception as e:
            prom.state_saves_total.labels(status="failed").inc()
            logger.exception(f"Background state save failed for {self._symbol}: {e}")
            return
        prom.state_saves_total.labels(status="success").inc()
        logger.debug(f"Background state save completed for {self._symbol}")


__all__ = ["DEFAULT_SAVE_INTERVAL", "StatePersister"]
