"""Tests for StatePersister.

Key concepts:
- Snapshots combine detector state, manager state and policy bookkeeping
- maybe_save() runs in the background at most once per interval
- restore() loads everything back, including the active policy
"""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from regime_switch.contracts import RegimeType
from regime_switch.errors import ConfigurationError, StateStoreError
from regime_switch.persistence import FileStateStore, StatePersister
from regime_switch.regime import RegimeDetector
from regime_switch.regime.models import RegimeDetectorState
from regime_switch.transition import TransitionManager


def create_persister(
    store, symbol: str = "BTCUSDT"
) -> tuple[StatePersister, RegimeDetector, TransitionManager]:
    detector = RegimeDetector()
    manager = TransitionManager()
    return StatePersister(store, detector, manager, symbol), detector, manager


@pytest.fixture
def store(tmp_path: Path) -> FileStateStore:
    return FileStateStore(tmp_path, "BTCUSDT")


@pytest.fixture
def failing_store() -> AsyncMock:
    mock = AsyncMock()
    mock.save_state.side_effect = StateStoreError("disk full", component="test")
    return mock


class TestBuildSnapshot:
    def test_captures_components(self, store: FileStateStore, now: datetime) -> None:
        persister, detector, manager = create_persister(store)
        detector.restore_state(
            RegimeDetectorState(current_regime=RegimeType.RANGING, cooldown_remaining=3)
        )
        manager.set_emergency_stop(True, "exchange outage")
        manager.policies.record_policy_application("adaptive", True, 5.0, now=now)

        snapshot = persister.build_snapshot(now)

        assert snapshot.symbol == "BTCUSDT"
        assert snapshot.saved_at == now
        assert snapshot.regime.current_regime is RegimeType.RANGING
        assert snapshot.regime.cooldown_remaining == 3
        assert snapshot.transitions.emergency_stop
        assert snapshot.transitions.emergency_reason == "exchange outage"
        assert snapshot.active_policy == "adaptive"
        assert snapshot.policy_performance["adaptive"].application_count == 1


class TestSaveAndRestore:
    @pytest.mark.asyncio
    async def test_round_trip(self, store: FileStateStore, now: datetime) -> None:
        persister, detector, manager = create_persister(store)
        detector.restore_state(RegimeDetectorState(current_regime=RegimeType.TRENDING))
        manager.set_manual_override(True, "operator")
        manager.policies.set_active_policy("aggressive")
        manager.policies.record_policy_application("aggressive", False, 12.0, now=now)

        saved = await persister.save_now()
        assert persister.last_save == saved.saved_at

        restored, new_detector, new_manager = create_persister(store)
        assert await restored.restore() is True

        assert new_detector.get_current_regime() is RegimeType.TRENDING
        assert new_manager.is_manual_override()
        assert new_manager.policies.active_policy.name == "aggressive"
        performance = new_manager.policies.get_policy_performance()["aggressive"]
        assert performance.application_count == 1
        assert performance.average_cost == pytest.approx(12.0)
        assert restored.last_save == saved.saved_at

    @pytest.mark.asyncio
    async def test_restore_without_state(self, store: FileStateStore) -> None:
        persister, detector, _ = create_persister(store)

        assert await persister.restore() is False
        assert detector.get_current_regime() is None
        assert persister.last_save is None

    @pytest.mark.asyncio
    async def test_restore_rejects_other_symbol(self, store: FileStateStore) -> None:
        writer, _, _ = create_persister(store, symbol="ETHUSDT")
        await writer.save_now()

        reader, _, _ = create_persister(store)
        with pytest.raises(ConfigurationError):
            await reader.restore()

    @pytest.mark.asyncio
    async def test_save_now_propagates_store_errors(self, failing_store: AsyncMock) -> None:
        persister, _, _ = create_persister(failing_store)

        with pytest.raises(StateStoreError):
            await persister.save_now()
        assert persister.last_save is None


class TestMaybeSave:
    @pytest.mark.asyncio
    async def test_interval(self, store: FileStateStore, now: datetime) -> None:
        persister, _, _ = create_persister(store)

        first = persister.maybe_save(now)
        assert first is not None
        await persister.wait()
        assert store.path.exists()

        assert persister.maybe_save(now + timedelta(minutes=1)) is None
        assert persister.maybe_save(now + timedelta(minutes=5)) is not None
        await persister.wait()
        assert persister.last_save == now + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_skips_while_save_in_flight(self, store: FileStateStore, now: datetime) -> None:
        persister = StatePersister(
            store, RegimeDetector(), TransitionManager(), "BTCUSDT", save_interval=timedelta()
        )

        assert persister.maybe_save(now) is not None
        assert persister.save_in_flight
        assert persister.maybe_save(now) is None
        await persister.wait()
        assert not persister.save_in_flight

    @pytest.mark.asyncio
    async def test_background_failure_is_logged_not_raised(
        self, failing_store: AsyncMock, now: datetime
    ) -> None:
        persister, _, _ = create_persister(failing_store)

        task = persister.maybe_save(now)
        await persister.wait()

        assert task.done()
        assert task.exception() is None
        failing_store.save_state.assert_awaited_once()
