"""
Key-value store interface for per-company sync state and the company registry.

Stores are injected into the sync engine instead of touching fixed file
paths, so tests can swap in MemoryStore.
"""
from __future__ import annotations
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

from loguru import logger

from ..errors import StoreError


class StateStore(Protocol):
    def get(self, key: str) -> Optional[dict]: ...
    def put(self, key: str, value: dict) -> None: ...


class MemoryStore:
    """In-process store; values are copied through JSON like the file stores."""

    def __init__(self, initial: Optional[dict[str, dict]] = None):
        self._data: dict[str, str] = {}
        self.writes = 0
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    def get(self, key: str) -> Optional[dict]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, value: dict) -> None:
        self._data[key] = json.dumps(value, default=str)
        self.writes += 1

    def keys(self) -> list[str]:
        return sorted(self._data)


def dump_json(data: Any, indent: Optional[int] = 2) -> str:
    """Serialize with the settings every on-disk document uses."""
    return json.dumps(data, indent=indent, ensure_ascii=False, default=str)


def write_json_atomic(path: Path, data: Any, indent: Optional[int] = 2) -> None:
    """
    Replace `path` with the JSON document in one step.

    The document is written to a temp file in the same directory and moved
    over the target, so a crash leaves either the old or the new file.

    Raises:
        StoreError: The file cannot be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(dump_json(data, indent=indent))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        raise StoreError(f"Cannot write {path}: {e}") from e


def read_json(path: Path) -> Any:
    """
    Load a JSON document.

    Raises:
        FileNotFoundError: The file does not exist
        ValueError: The file is not valid JSON (json.JSONDecodeError)
    """
    return json.loads(Path(path).read_text(encoding="utf-8"))
