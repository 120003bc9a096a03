"""Tests for FileStateStore atomic writes and backup fallback."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from regime_switch.contracts import RegimeType
from regime_switch.errors import StateStoreError
from regime_switch.persistence import FileStateStore, StateSnapshot
from regime_switch.regime.models import RegimeDetectorState


def create_snapshot(regime: RegimeType = RegimeType.TRENDING, cooldown: int = 0) -> StateSnapshot:
    return StateSnapshot(
        symbol="BTCUSDT",
        saved_at=datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc),
        regime=RegimeDetectorState(current_regime=regime, cooldown_remaining=cooldown),
        active_policy="adaptive",
    )


@pytest.fixture
def store(tmp_path: Path) -> FileStateStore:
    return FileStateStore(tmp_path / "state", "BTCUSDT")


class TestFileStateStore:
    def test_paths(self, store: FileStateStore, tmp_path: Path) -> None:
        assert store.path == tmp_path / "state" / "BTCUSDT_state.json"
        assert store.backup_path.name == "BTCUSDT_state.json.bak"

    @pytest.mark.asyncio
    async def test_load_without_files(self, store: FileStateStore) -> None:
        assert await store.load_state() is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, store: FileStateStore) -> None:
        """Directory is created on first save; no temp file is left behind."""
        snapshot = create_snapshot(cooldown=2)

        await store.save_state(snapshot)
        loaded = await store.load_state()

        assert loaded == snapshot
        assert store.path.exists()
        assert not store.path.with_name(store.path.name + ".tmp").exists()
        assert not store.backup_path.exists()

    @pytest.mark.asyncio
    async def test_previous_snapshot_kept_as_backup(self, store: FileStateStore) -> None:
        await store.save_state(create_snapshot(RegimeType.TRENDING))
        await store.save_state(create_snapshot(RegimeType.RANGING))

        backup = StateSnapshot.model_validate_json(store.backup_path.read_text())
        assert backup.regime.current_regime is RegimeType.TRENDING
        assert (await store.load_state()).regime.current_regime is RegimeType.RANGING

    @pytest.mark.asyncio
    async def test_corrupt_primary_falls_back_to_backup(self, store: FileStateStore) -> None:
        await store.save_state(create_snapshot(RegimeType.TRENDING))
        await store.save_state(create_snapshot(RegimeType.RANGING))
        store.path.write_text("{not json")

        loaded = await store.load_state()

        assert loaded.regime.current_regime is RegimeType.TRENDING

    @pytest.mark.asyncio
    async def test_all_files_corrupt(self, store: FileStateStore) -> None:
        await store.save_state(create_snapshot())
        store.path.write_text('{"symbol": 42}')

        with pytest.raises(StateStoreError) as exc_info:
            await store.load_state()

        assert not exc_info.value.retryable
        assert "BTCUSDT_state.json" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_write_failure(self, tmp_path: Path) -> None:
        """A file where the directory should be makes the save fail."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = FileStateStore(blocker, "BTCUSDT")

        with pytest.raises(StateStoreError) as exc_info:
            await store.save_state(create_snapshot())

        assert exc_info.value.operation == "save_state"
