"""Tests for DatabaseStateStore against a SQLite file database."""

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from regime_switch.contracts import RegimeType
from regime_switch.errors import StateStoreError
from regime_switch.persistence import DatabaseStateStore, StateSnapshot
from regime_switch.persistence.db_store import StateSnapshotRow
from regime_switch.regime.models import RegimeDetectorState

BASE_TIME = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


def create_snapshot(cooldown: int, symbol: str = "BTCUSDT") -> StateSnapshot:
    return StateSnapshot(
        symbol=symbol,
        saved_at=BASE_TIME + timedelta(minutes=cooldown),
        regime=RegimeDetectorState(
            current_regime=RegimeType.RANGING, cooldown_remaining=cooldown
        ),
    )


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'state.db'}"


@pytest_asyncio.fixture
async def store(database_url: str) -> AsyncIterator[DatabaseStateStore]:
    """Store keeping the two newest snapshots."""
    db_store = DatabaseStateStore("BTCUSDT", database_url=database_url, keep=2)
    await db_store.init_schema()
    yield db_store
    await db_store.close()


class TestConstruction:
    def test_requires_url_or_engine(self) -> None:
        with pytest.raises(ValueError):
            DatabaseStateStore("BTCUSDT")

    def test_keep_must_be_positive(self, database_url: str) -> None:
        with pytest.raises(ValueError):
            DatabaseStateStore("BTCUSDT", database_url=database_url, keep=0)


class TestDatabaseStateStore:
    @pytest.mark.asyncio
    async def test_load_empty(self, store: DatabaseStateStore) -> None:
        assert await store.load_state() is None

    @pytest.mark.asyncio
    async def test_latest_snapshot_wins(self, store: DatabaseStateStore) -> None:
        await store.save_state(create_snapshot(1))
        await store.save_state(create_snapshot(2))

        loaded = await store.load_state()

        assert loaded.regime.cooldown_remaining == 2
        assert loaded.saved_at == BASE_TIME + timedelta(minutes=2)

    @pytest.mark.asyncio
    async def test_old_rows_pruned(self, store: DatabaseStateStore) -> None:
        for cooldown in range(1, 5):
            await store.save_state(create_snapshot(cooldown))

        assert await store.count() == 2
        assert (await store.load_state()).regime.cooldown_remaining == 4

    @pytest.mark.asyncio
    async def test_symbols_are_isolated(
        self, store: DatabaseStateStore, database_url: str
    ) -> None:
        other = DatabaseStateStore("ETHUSDT", database_url=database_url)
        await other.save_state(create_snapshot(7, symbol="ETHUSDT"))

        assert await store.load_state() is None
        assert (await other.load_state()).symbol == "ETHUSDT"
        await other.close()

    @pytest.mark.asyncio
    async def test_corrupt_payload(self, database_url: str) -> None:
        """A row that fails validation raises a non-retryable error."""
        engine = create_async_engine(database_url)
        db_store = DatabaseStateStore("BTCUSDT", engine=engine)
        await db_store.init_schema()
        async with AsyncSession(engine) as session:
            session.add(
                StateSnapshotRow(
                    symbol="BTCUSDT", saved_at=BASE_TIME, version=1, payload={"bad": 1}
                )
            )
            await session.commit()

        with pytest.raises(StateStoreError) as exc_info:
            await db_store.load_state()

        assert not exc_info.value.retryable
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_missing_table(self, database_url: str) -> None:
        db_store = DatabaseStateStore("BTCUSDT", database_url=database_url)

        with pytest.raises(StateStoreError):
            await db_store.load_state()
        await db_store.close()
