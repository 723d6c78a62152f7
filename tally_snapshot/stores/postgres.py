"""
Postgres-backed sync state store.

Keeps one row per company in `<schema>.sync_state`, for deployments that
already run the warehouse database and want the watermark next to it.
"""
from __future__ import annotations
from typing import Optional

import psycopg
from loguru import logger
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..config import TallySnapshotConfig
from ..errors import StateCorruptionError, StoreError


class PostgresStateStore:
    """
    Sync state in a Postgres table.

    Usage:
        store = PostgresStateStore(config)
        store.put("SBE_Rayagada", {"lastAlterId": 1520, "lastSync": "..."})
        store.get("SBE_Rayagada")
    """

    def __init__(self, config: Optional[TallySnapshotConfig] = None):
        self.config = config or TallySnapshotConfig.from_env()
        self.schema = self.config.db_schema
        self._conn = None
        self._ready = False

    @property
    def conn(self):
        """Get or create database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg.connect(self.config.db_url, autocommit=True, row_factory=dict_row)
            self._ready = False
        return self._conn

    def ensure_table(self):
        """Create schema and state table if they don't exist."""
        if self._ready:
            return
        with self.conn.cursor() as cur:
            cur.execute(f"CREATE SCHEMA IF NOT EXISTS {self.schema}")
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.schema}.sync_state (
                    company_id TEXT PRIMARY KEY,
                    payload JSONB NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
        self._ready = True

    def get(self, key: str) -> Optional[dict]:
        """
        Raises:
            StateCorruptionError: The database cannot be read or the row is not an object
        """
        try:
            self.ensure_table()
            with self.conn.cursor() as cur:
                cur.execute(
                    f"SELECT payload FROM {self.schema}.sync_state WHERE company_id = %s",
                    (key,),
                )
                row = cur.fetchone()
        except psycopg.Error as e:
            raise StateCorruptionError(f"Cannot read sync state for {key}: {e}") from e

        if row is None:
            return None
        payload = row["payload"]
        if not isinstance(payload, dict):
            raise StateCorruptionError(f"Sync state for {key} is not an object")
        return payload

    def put(self, key: str, value: dict) -> None:
        try:
            self.ensure_table()
            with self.conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self.schema}.sync_state (company_id, payload, updated_at)
                    VALUES (%s, %s, NOW())
                    ON CONFLICT (company_id) DO UPDATE SET
                        payload = EXCLUDED.payload,
                        updated_at = EXCLUDED.updated_at
                    """,
                    (key, Jsonb(value)),
                )
        except psycopg.Error as e:
            logger.error(f"Failed to save sync state for {key}: {e}")
            raise StoreError(f"Cannot write sync state for {key}: {e}") from e

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
