"""
Configuration management for Tally Snapshot.

Loads settings from environment variables with sensible defaults.
A `.env` file in the working directory is picked up automatically.
"""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# First month the full sync walks when TALLY_BOOKS_FROM is not set
DEFAULT_BOOKS_FROM = date(2021, 4, 1)

EXPORT_FORMATS = {
    "xml": "$$SysName:XML",
    "json": "JSONEx",
}


def _parse_books_from_date() -> date:
    """Parse TALLY_BOOKS_FROM environment variable to date."""
    env_val = os.getenv("TALLY_BOOKS_FROM")
    if not env_val:
        return DEFAULT_BOOKS_FROM
    try:
        # Support formats: YYYY-MM-DD or YYYYMMDD
        env_val = env_val.strip()
        if "-" in env_val:
            return date.fromisoformat(env_val)
        elif len(env_val) == 8:
            return date(int(env_val[:4]), int(env_val[4:6]), int(env_val[6:8]))
    except (ValueError, TypeError):
        pass
    return DEFAULT_BOOKS_FROM


def _default_company_id() -> str:
    explicit = os.getenv("TALLY_COMPANY_ID")
    if explicit:
        return explicit
    return os.getenv("TALLY_COMPANY", "default_company").strip().replace(" ", "_")


@dataclass
class TallySnapshotConfig:
    """Configuration settings for Tally Snapshot."""

    # Tally connection settings
    tally_url: str = field(
        default_factory=lambda: os.getenv("TALLY_URL", "http://localhost:9000")
    )
    # Empty company means "whatever company is active in Tally"
    tally_company: str = field(default_factory=lambda: os.getenv("TALLY_COMPANY", ""))
    company_id: str = field(default_factory=_default_company_id)
    export_format: str = field(
        default_factory=lambda: os.getenv("TALLY_EXPORT_FORMAT", "xml").lower()
    )

    # Local dataset and snapshot output
    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("TALLY_DATA_DIR", "tally_data"))
    )
    output_dir: Path = field(
        default_factory=lambda: Path(os.getenv("TALLY_OUTPUT_DIR", "dashboard/public/data"))
    )

    # Request settings. Master exports can be tens of MB, keep the timeout generous.
    request_timeout: int = field(
        default_factory=lambda: int(os.getenv("TALLY_REQUEST_TIMEOUT", "300"))
    )
    retry_attempts: int = field(
        default_factory=lambda: int(os.getenv("TALLY_RETRY_ATTEMPTS", "3"))
    )
    retry_delay: float = field(
        default_factory=lambda: float(os.getenv("TALLY_RETRY_DELAY", "2.0"))
    )
    retry_max_delay: float = field(
        default_factory=lambda: float(os.getenv("TALLY_RETRY_MAX_DELAY", "30.0"))
    )

    # Tally becomes unresponsive under rapid-fire load
    cooldown: float = field(default_factory=lambda: float(os.getenv("TALLY_COOLDOWN", "1.0")))
    batch_delay: float = field(
        default_factory=lambda: float(os.getenv("TALLY_BATCH_DELAY", "2.5"))
    )

    # Books from date - first month fetched by a full sync
    # Set via TALLY_BOOKS_FROM env var (format: YYYY-MM-DD or YYYYMMDD)
    books_from: date = field(default_factory=_parse_books_from_date)

    # Full sync reuses a stored masters export younger than this (seconds, 0 disables)
    masters_max_age: int = field(
        default_factory=lambda: int(os.getenv("TALLY_MASTERS_MAX_AGE", "7200"))
    )
    refresh_masters_on_incremental: bool = field(
        default_factory=lambda: os.getenv("TALLY_REFRESH_MASTERS", "true").lower() == "true"
    )

    # Sync state backend: "file" (sync_state.json per company) or "postgres"
    state_backend: str = field(
        default_factory=lambda: os.getenv("TALLY_STATE_BACKEND", "file").lower()
    )
    db_url: Optional[str] = field(default_factory=lambda: os.getenv("DB_URL"))
    db_schema: str = field(default_factory=lambda: os.getenv("TALLY_STATE_SCHEMA", "tally_snapshot"))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(
        default_factory=lambda: os.getenv("TALLY_SNAPSHOT_LOG_FILE")
    )

    @classmethod
    def from_env(cls) -> "TallySnapshotConfig":
        """Create config from environment variables."""
        return cls()

    @property
    def export_format_tag(self) -> str:
        """SVEXPORTFORMAT value for the configured export format."""
        return EXPORT_FORMATS.get(self.export_format, EXPORT_FORMATS["xml"])

    @property
    def company_name(self) -> str:
        """Display name for the registry."""
        return self.tally_company or self.company_id.replace("_", " ")

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []
        if not self.tally_url:
            errors.append("TALLY_URL is required")
        if not self.company_id:
            errors.append("TALLY_COMPANY_ID (or TALLY_COMPANY) is required")
        if self.export_format not in EXPORT_FORMATS:
            errors.append(f"TALLY_EXPORT_FORMAT must be one of {sorted(EXPORT_FORMATS)}")
        if self.retry_attempts < 1:
            errors.append("TALLY_RETRY_ATTEMPTS must be at least 1")
        if self.state_backend not in ("file", "postgres"):
            errors.append("TALLY_STATE_BACKEND must be 'file' or 'postgres'")
        if self.state_backend == "postgres" and not self.db_url:
            errors.append("DB_URL is required for the postgres state backend")
        return errors
