"""State persistence: snapshots, file and database stores, background saver."""

from regime_switch.persistence.db_store import DatabaseStateStore
from regime_switch.persistence.file_store import FileStateStore
from regime_switch.persistence.models import SNAPSHOT_VERSION, StateSnapshot, StateStore
from regime_switch.persistence.persister import StatePersister

__all__ = [
    "SNAPSHOT_VERSION",
    "DatabaseStateStore",
    "FileStateStore",
    "StatePersister",
    "StateSnapshot",
    "StateStore",
]
