"""SQLAlchemy state store.

Each save inserts a row into regime_state_snapshots; only the newest
`keep` rows per symbol are retained.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import JSON, DateTime, Integer, String, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from regime_switch.errors import StateStoreError
from regime_switch.models import format_validation_error
from regime_switch.persistence.models import StateSnapshot

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class StateSnapshotRow(Base):
    __tablename__ = "regime_state_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(50), index=True)
    saved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)


class DatabaseStateStore:
    """Stores snapshots of one symbol in a SQL database.

    Attributes:
        _engine: Async engine, created from a URL or supplied by the host.
        _session_factory: AsyncSession factory bound to the engine.
        _keep: Rows retained per symbol.
    """

    def __init__(
        self,
        symbol: str,
        database_url: str | None = None,
        engine: AsyncEngine | None = None,
        keep: int = 10,
    ) -> None:
        if engine is None and database_url is None:
            raise ValueError("Either database_url or engine is required")
        if keep < 1:
            raise ValueError("keep must be at least 1")
        self._symbol = symbol
        self._owns_engine = engine is None
        self._engine = engine or create_async_engine(database_url, echo=False)
        self._session_factory = sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        self._keep = keep

    async def init_schema(self) -> None:
        """Create the snapshot table if it does not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()

    async def save_state(self, snapshot: StateSnapshot) -> None:
        """Insert `snapshot` and prune rows beyond the retention count.

        Raises:
            StateStoreError: On database errors.
        """
        row = StateSnapshotRow(
            symbol=snapshot.symbol,
            saved_at=snapshot.saved_at,
            version=snapshot.version,
            payload=snapshot.model_dump(mode="json"),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.flush()

                stale = await session.execute(
                    select(StateSnapshotRow.id)
                    .where(StateSnapshotRow.symbol == self._symbol)
                    .order_by(StateSnapshotRow.id.desc())
                    .offset(self._keep)
                )
                stale_ids = list(stale.scalars().all())
                if stale_ids:
                    await session.execute(
                        delete(StateSnapshotRow).where(StateSnapshotRow.id.in_(stale_ids))
                    )
                await session.commit()
        except SQLAlchemyError as e:
            raise StateStoreError(
                f"Failed to save state for {self._symbol}: {e}",
                component="db_store",
                operation="save_state",
            ) from e
        logger.debug(
            "Saved state snapshot for %s (pruned %d old rows)", self._symbol, len(stale_ids)
        )

    async def load_state(self) -> StateSnapshot | None:
        """Newest snapshot for the symbol, or None.

        Raises:
            StateStoreError: On database errors or an unparseable payload.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(StateSnapshotRow)
                    .where(StateSnapshotRow.symbol == self._symbol)
                    .order_by(StateSnapshotRow.id.desc())
                    .limit(1)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StateStoreError(
                f"Failed to load state for {self._symbol}: {e}",
                component="db_store",
                operation="load_state",
            ) from e

        if row is None:
            return None
        try:
            return StateSnapshot.model_validate(row.payload)
        except ValidationError as e:
            raise StateStoreError(
                f"Corrupt state row {row.id}: {format_validation_error(e)}",
                component="db_store",
                operation="load_state",
                retryable=False,
            ) from e

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StateSnapshotRow.id).where(StateSnapshotRow.symbol == self._symbol)
            )
            return len(result.scalars().all())


__all__ = ["Base", "DatabaseStateStore", "StateSnapshotRow"]
