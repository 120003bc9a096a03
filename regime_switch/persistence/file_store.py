"""JSON file state store.

Writes go to a temporary file that is renamed over the target, so a crash
mid-write never leaves a truncated snapshot. The previous snapshot is kept
as a .bak file and used when the primary cannot be read.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from regime_switch.errors import StateStoreError
from regime_switch.models import format_validation_error
from regime_switch.persistence.models import StateSnapshot

logger = logging.getLogger(__name__)


class FileStateStore:
    """Stores one symbol's snapshot as `<directory>/<symbol>_state.json`."""

    def __init__(self, directory: Path | str, symbol: str) -> None:
        self._directory = Path(directory)
        self._symbol = symbol

    @property
    def path(self) -> Path:
        return self._directory / f"{self._symbol}_state.json"

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    async def save_state(self, snapshot: StateSnapshot) -> None:
        """Atomically write `snapshot`.

        Raises:
            StateStoreError: If the file cannot be written.
        """
        payload = snapshot.model_dump_json(indent=2)
        try:
            await asyncio.to_thread(self._write, payload)
        except OSError as e:
            raise StateStoreError(
                f"Failed to write {self.path}: {e}",
                component="file_store",
                operation="save_state",
            ) from e
        logger.debug(f"Saved state snapshot to {self.path}")

    async def load_state(self) -> StateSnapshot | None:
        """Load the primary snapshot, falling back to the backup.

        Returns:
            The snapshot, or None if neither file exists.

        Raises:
            StateStoreError: If files exist but none can be parsed.
        """
        return await asyncio.to_thread(self._load)

    def _write(self, payload: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        if self.path.exists():
            os.replace(self.path, self.backup_path)
        os.replace(tmp_path, self.path)

    def _load(self) -> StateSnapshot | None:
        errors = []
        for path in (self.path, self.backup_path):
            if not path.exists():
                continue
            try:
                snapshot = StateSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
            except ValidationError as e:
                errors.append(f"{path.name}: {format_validation_error(e)}")
                logger.warning(f"Corrupt state file {path}: {format_validation_error(e)}")
                continue
            except OSError as e:
                errors.append(f"{path.name}: {e}")
                logger.warning(f"Unreadable state file {path}: {e}")
                continue
            if path == self.backup_path:
                logger.warning(f"Primary state file unusable, restored from {path}")
            return snapshot

        if errors:
            raise StateStoreError(
                f"No readable state for {self._symbol}: {'; '.join(errors)}",
                component="file_store",
                operation="load_state",
                retryable=False,
            )
        return None


__all__ = ["FileStateStore"]
