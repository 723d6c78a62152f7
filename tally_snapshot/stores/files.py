"""
File-backed stores.

- JsonStateStore: one JSON document per key, `<root>/<key>/<filename>`
- RegistryStore: one JSON list of `{id, ...}` entries shared by all keys
"""
from __future__ import annotations
from pathlib import Path
from typing import Optional

from loguru import logger

from ..errors import StateCorruptionError
from .base import read_json, write_json_atomic


class JsonStateStore:
    """Per-company documents such as sync_state.json."""

    def __init__(self, root: Path, filename: str = "sync_state.json"):
        self.root = Path(root)
        self.filename = filename

    def path_for(self, key: str) -> Path:
        return self.root / key / self.filename

    def get(self, key: str) -> Optional[dict]:
        """
        Return the stored document, or None when there is none.

        Raises:
            StateCorruptionError: The file exists but cannot be decoded
        """
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            raise StateCorruptionError(f"Unreadable state file {path}: {e}") from e
        if not isinstance(data, dict):
            raise StateCorruptionError(f"State file {path} does not hold an object")
        return data

    def put(self, key: str, value: dict) -> None:
        write_json_atomic(self.path_for(key), value)
        logger.debug(f"Saved {self.path_for(key)}")


class RegistryStore:
    """
    Company registry: a single JSON list keyed by each entry's `id`.

    A missing or unreadable registry is treated as empty so one bad file
    never blocks publishing a snapshot.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> list[dict]:
        if not self.path.exists():
            return []
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            logger.warning(f"Company registry {self.path} unreadable, rebuilding it: {e}")
            return []
        if not isinstance(data, list):
            logger.warning(f"Company registry {self.path} is not a list, rebuilding it")
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def all(self) -> list[dict]:
        return self._load()

    def get(self, key: str) -> Optional[dict]:
        for entry in self._load():
            if entry.get("id") == key:
                return entry
        return None

    def put(self, key: str, value: dict) -> None:
        entries = [e for e in self._load() if e.get("id") != key]
        entries.append({"id": key, **{k: v for k, v in value.items() if k != "id"}})
        write_json_atomic(self.path, entries)
        logger.debug(f"Registry {self.path} now lists {len(entries)} companies")
