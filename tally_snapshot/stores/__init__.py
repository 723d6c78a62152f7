"""
State and registry stores for Tally Snapshot.
"""
from pathlib import Path
from typing import Optional

from ..config import TallySnapshotConfig
from .base import MemoryStore, StateStore, read_json, write_json_atomic
from .files import JsonStateStore, RegistryStore
from .postgres import PostgresStateStore


def build_state_store(config: Optional[TallySnapshotConfig] = None) -> StateStore:
    """Sync state store selected by TALLY_STATE_BACKEND."""
    config = config or TallySnapshotConfig.from_env()
    if config.state_backend == "postgres":
        return PostgresStateStore(config)
    return JsonStateStore(Path(config.data_dir))


def build_registry_store(config: Optional[TallySnapshotConfig] = None) -> RegistryStore:
    """Company registry next to the per-company snapshot folders."""
    config = config or TallySnapshotConfig.from_env()
    return RegistryStore(Path(config.output_dir) / "companies.json")


__all__ = [
    "StateStore",
    "MemoryStore",
    "JsonStateStore",
    "RegistryStore",
    "PostgresStateStore",
    "build_state_store",
    "build_registry_store",
    "read_json",
    "write_json_atomic",
]
