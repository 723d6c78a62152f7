"""
Local dataset for one company.

Layout under `<data_dir>/<company_id>/`:
- masters.json                  groups and ledgers, rebuilt on every sync
- vouchers/vouchers_YYYY_MM.json one batch per calendar month
- sync_state.json               watermark (when the file state store is used)

Batches are only ever replaced whole, so an interrupted run leaves each
file either in its previous or its new state.
"""
from __future__ import annotations
import re
import time
from collections import defaultdict
from pathlib import Path
from typing import Iterable, Iterator, Optional

from loguru import logger
from pydantic import ValidationError

from .errors import StoreError
from .models import Masters, Voucher
from .stores.base import read_json, write_json_atomic

BATCH_PATTERN = re.compile(r"^vouchers_(\d{4})_(\d{2})\.json$")


class MergeStore:
    """
    GUID-keyed voucher batches, one JSON file per month.

    Usage:
        store = MergeStore(Path("tally_data/ACME/vouchers"))
        store.overwrite_month(2024, 4, vouchers)   # full sync
        store.merge(changed_vouchers)              # incremental sync
        for voucher in store.iter_vouchers(): ...
    """

    def __init__(self, vouchers_dir: Path):
        self.vouchers_dir = Path(vouchers_dir)
        self.skipped = 0

    def batch_path(self, year: int, month: int) -> Path:
        return self.vouchers_dir / f"vouchers_{year:04d}_{month:02d}.json"

    def months(self) -> list[tuple[int, int]]:
        """(year, month) of every stored batch, oldest first."""
        if not self.vouchers_dir.exists():
            return []
        found = []
        for path in self.vouchers_dir.iterdir():
            match = BATCH_PATTERN.match(path.name)
            if match:
                found.append((int(match.group(1)), int(match.group(2))))
        return sorted(found)

    def _read_batch(self, year: int, month: int) -> list[dict]:
        path = self.batch_path(year, month)
        if not path.exists():
            return []
        data = read_json(path)
        if not isinstance(data, list):
            raise ValueError(f"{path.name} does not hold a list")
        return [record for record in data if isinstance(record, dict)]

    def _write_batch(self, year: int, month: int, records: list[dict]) -> None:
        write_json_atomic(self.batch_path(year, month), records, indent=None)

    def overwrite_month(self, year: int, month: int, vouchers: Iterable[Voucher]) -> int:
        """
        Replace a month's batch with exactly these vouchers.

        Duplicate GUIDs within the input collapse to the last occurrence.

        Returns:
            Number of vouchers written
        """
        by_guid: dict[str, dict] = {}
        for voucher in vouchers:
            by_guid[voucher.guid] = voucher.model_dump(mode="json")
        self._write_batch(year, month, list(by_guid.values()))
        return len(by_guid)

    def merge(self, vouchers: Iterable[Voucher]) -> dict[tuple[int, int], int]:
        """
        Upsert vouchers into their monthly batches.

        Existing records come first in file order; an incoming record with a
        known GUID replaces the stored one in place, new GUIDs are appended.
        A voucher whose date moved to another month is removed from the batch
        that held it before, so every GUID is stored exactly once.
        Merging the same input twice leaves the files byte-identical.

        Returns:
            Dict of (year, month) -> batch size after the merge, for every
            batch that received vouchers or lost a moved one

        Raises:
            StoreError: A batch receiving vouchers cannot be read or written
        """
        latest: dict[str, Voucher] = {}
        for voucher in vouchers:
            latest.pop(voucher.guid, None)
            latest[voucher.guid] = voucher
        home = {guid: voucher.period for guid, voucher in latest.items()}

        grouped: dict[tuple[int, int], list[Voucher]] = defaultdict(list)
        for voucher in latest.values():
            grouped[voucher.period].append(voucher)

        sizes = {}
        for year, month in sorted(set(self.months()) | set(grouped)):
            period = (year, month)
            incoming = grouped.get(period, [])
            try:
                existing = self._read_batch(year, month)
            except (OSError, ValueError) as e:
                if not incoming:
                    # Unreadable batches are skipped by iter_vouchers too
                    logger.warning(f"Not checking {self.batch_path(year, month).name} for moved vouchers: {e}")
                    continue
                raise StoreError(
                    f"Cannot merge into {self.batch_path(year, month)}: {e}. "
                    "Run a full sync to rebuild it."
                ) from e

            by_guid: dict[str, dict] = {}
            moved = 0
            for record in existing:
                guid = record.get("guid")
                if not guid:
                    continue
                if home.get(guid, period) != period:
                    moved += 1
                    continue
                by_guid[guid] = record
            if not incoming and not moved:
                continue

            before = len(by_guid)
            for voucher in incoming:
                by_guid[voucher.guid] = voucher.model_dump(mode="json")

            self._write_batch(year, month, list(by_guid.values()))
            sizes[period] = len(by_guid)
            logger.debug(
                f"  Merged {len(incoming)} vouchers into {year:04d}-{month:02d}: "
                f"{before} -> {len(by_guid)}, {moved} moved out"
            )
        return sizes

    def load_month(self, year: int, month: int) -> list[Voucher]:
        """Vouchers stored for one month (empty when the batch does not exist)."""
        vouchers = []
        for record in self._read_batch(year, month):
            try:
                vouchers.append(Voucher.model_validate(record))
            except ValidationError as e:
                self.skipped += 1
                logger.debug(f"Skipping stored voucher {record.get('guid')}: {e}")
        return vouchers

    def iter_vouchers(self) -> Iterator[Voucher]:
        """
        Every stored voucher, month by month.

        A corrupt batch file is logged and skipped; the rest still load.
        """
        self.skipped = 0
        for year, month in self.months():
            try:
                batch = self.load_month(year, month)
            except (OSError, ValueError) as e:
                logger.error(f"Skipping corrupt batch {self.batch_path(year, month).name}: {e}")
                continue
            yield from batch


class CompanyDataset:
    """Paths and master-file access for one company's local dataset."""

    def __init__(self, data_dir: Path, company_id: str):
        self.company_id = company_id
        self.base_dir = Path(data_dir) / company_id
        self.masters_path = self.base_dir / "masters.json"
        self.vouchers_dir = self.base_dir / "vouchers"
        self.batches = MergeStore(self.vouchers_dir)

    def init(self):
        """Create the dataset directories."""
        try:
            self.vouchers_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create {self.vouchers_dir}: {e}") from e
        logger.info(f"Data directory initialized: {self.base_dir}")

    def save_masters(self, masters: Masters) -> None:
        write_json_atomic(self.masters_path, masters.model_dump(mode="json"))

    def load_masters(self) -> Masters:
        """Stored masters, or empty masters when none are usable."""
        if not self.masters_path.exists():
            logger.warning(f"No masters stored at {self.masters_path}")
            return Masters()
        try:
            return Masters.model_validate(read_json(self.masters_path))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load masters from {self.masters_path}: {e}")
            return Masters()

    def masters_age(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since masters.json was written, None when absent."""
        if not self.masters_path.exists():
            return None
        now = time.time() if now is None else now
        return now - self.masters_path.stat().st_mtime
