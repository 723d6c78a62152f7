"""
Sync orchestration for Tally Snapshot.

Provides:
- Full sync: masters plus one voucher request per calendar month
- Incremental sync: masters plus vouchers altered since the stored watermark
- run_pipeline: sync, analytics and snapshot output in one call

State transitions:
    no state (or unreadable state)  -> FULL
    lastAlterId > 0                 -> INCREMENTAL
    mode="full"                     -> FULL regardless of state

Sync state is written only after every request of the run succeeded.
"""
from __future__ import annotations
import time
from calendar import monthrange
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from .analytics import AnalyticsEngine
from .client import TallyConnector
from .config import TallySnapshotConfig
from .dataset import CompanyDataset
from .errors import StateCorruptionError
from .models import Company, Masters, SyncState
from .output import OutputWriter
from .parsers import max_alter_id, parse_masters, parse_vouchers
from .stores import StateStore, build_registry_store, build_state_store

MODES = ("auto", "full", "incremental")


def local_now() -> datetime:
    return datetime.now().astimezone()


def month_ranges(start: date, end: date) -> list[tuple[date, date]]:
    """
    Calendar-month windows covering start..end inclusive.

    The first window starts at `start` and the last ends at `end`.
    """
    ranges = []
    current = start
    while current <= end:
        last_day = date(current.year, current.month, monthrange(current.year, current.month)[1])
        ranges.append((current, min(last_day, end)))
        current = last_day + timedelta(days=1)
    return ranges


class SyncOrchestrator:
    """
    Pulls masters and vouchers from Tally into the local dataset.

    Usage:
        sync = SyncOrchestrator(config)
        result = sync.run()             # FULL or INCREMENTAL from stored state
        result = sync.run(mode="full")  # force a complete resync
    """

    def __init__(
        self,
        config: Optional[TallySnapshotConfig] = None,
        connector: Optional[TallyConnector] = None,
        state_store: Optional[StateStore] = None,
        dataset: Optional[CompanyDataset] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = local_now,
    ):
        self.config = config or TallySnapshotConfig.from_env()
        self.connector = connector or TallyConnector(self.config)
        self.state_store = state_store if state_store is not None else build_state_store(self.config)
        self.dataset = dataset or CompanyDataset(self.config.data_dir, self.config.company_id)
        self._sleep = sleep
        self.clock = clock
        self.company_name: Optional[str] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def load_state(self) -> Optional[SyncState]:
        """Stored sync state, or None when absent or unreadable."""
        key = self.config.company_id
        try:
            raw = self.state_store.get(key)
        except StateCorruptionError as e:
            logger.warning(f"Ignoring unreadable sync state for {key}, running a full sync: {e}")
            return None
        if raw is None:
            return None
        try:
            return SyncState.model_validate(raw)
        except ValueError as e:
            logger.warning(f"Ignoring invalid sync state for {key}, running a full sync: {e}")
            return None

    def save_state(self, state: SyncState) -> None:
        self.state_store.put(self.config.company_id, state.model_dump(mode="json", by_alias=True))
        logger.info(f"Sync state saved: lastAlterId={state.last_alter_id}")

    # ------------------------------------------------------------------
    # Fetch steps
    # ------------------------------------------------------------------

    def sync_masters(self, force: bool = True) -> Optional[int]:
        """
        Fetch groups and ledgers and replace masters.json.

        Args:
            force: Fetch even when the stored masters are younger than masters_max_age

        Returns:
            Number of records skipped while parsing, or None when the fetch was skipped
        """
        if not force and self.config.masters_max_age > 0:
            age = self.dataset.masters_age()
            if age is not None and age < self.config.masters_max_age:
                logger.info(f"Masters are {int(age)}s old, reusing stored export")
                return None

        logger.info("Fetching masters...")
        response = self.connector.send(self.connector.builder.masters())
        masters, skipped = parse_masters(response)
        self.dataset.save_masters(masters)
        logger.info(f"  Saved {len(masters.groups)} groups and {len(masters.ledgers)} ledgers")
        return skipped

    def run_full(self, previous: Optional[SyncState] = None) -> dict:
        """
        Fetch every month from books_from to today, replacing each month's batch.

        Returns:
            Sync report dict
        """
        floor = previous.last_alter_id if previous else 0
        today = self.clock().date()
        report = self._report("full", floor)

        report["skipped"] += self.sync_masters(force=False) or 0

        ranges = month_ranges(self.config.books_from, today)
        logger.info(f"Fetching vouchers for {len(ranges)} months from {self.config.books_from}")
        watermark = floor
        for i, (from_date, to_date) in enumerate(ranges):
            if i > 0 and self.config.batch_delay > 0:
                self._sleep(self.config.batch_delay)

            response = self.connector.send(self.connector.builder.vouchers_for_range(from_date, to_date))
            parsed = parse_vouchers(response)
            written = self.dataset.batches.overwrite_month(from_date.year, from_date.month, parsed.records)
            watermark = max_alter_id(parsed.records, floor=watermark)

            report["months"] += 1
            report["vouchers"] += written
            report["skipped"] += parsed.skipped
            logger.info(f"  {from_date:%Y-%m}: {written} vouchers")

        report["new_alter_id"] = watermark
        return report

    def run_incremental(self, previous: SyncState) -> dict:
        """
        Fetch vouchers altered after the stored watermark and merge them.

        Returns:
            Sync report dict
        """
        floor = previous.last_alter_id
        report = self._report("incremental", floor)

        if self.config.refresh_masters_on_incremental:
            report["skipped"] += self.sync_masters(force=True) or 0

        logger.info(f"Fetching vouchers with AlterId > {floor}")
        response = self.connector.send(self.connector.builder.vouchers_since(floor))
        parsed = parse_vouchers(response)

        if parsed.records:
            sizes = self.dataset.batches.merge(parsed.records)
            report["months"] = len(sizes)
        else:
            logger.info("No changes since last sync")

        report["vouchers"] = len(parsed.records)
        report["skipped"] += parsed.skipped
        report["new_alter_id"] = max_alter_id(parsed.records, floor=floor)
        return report

    @staticmethod
    def _report(mode: str, floor: int) -> dict:
        return {
            "mode": mode,
            "months": 0,
            "vouchers": 0,
            "skipped": 0,
            "old_alter_id": floor,
            "new_alter_id": floor,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, mode: str = "auto") -> dict:
        """
        Run one sync.

        Args:
            mode: "auto" picks FULL or INCREMENTAL from stored state,
                  "full" forces a resync, "incremental" requires stored state

        Returns:
            Dict with mode, months, vouchers, skipped, old_alter_id, new_alter_id

        Raises:
            TransportError / ProtocolError: Tally failed; no state was written
            StoreError: The local dataset or state could not be written
        """
        if mode not in MODES:
            raise ValueError(f"Unknown sync mode: {mode}. Valid: {list(MODES)}")

        started = self.clock()
        self.company_name = self.connector.probe()
        if self.config.tally_company and self.company_name not in ("Unknown", self.config.tally_company):
            logger.warning(
                f"Tally reports active company '{self.company_name}', "
                f"requests target '{self.config.tally_company}'"
            )

        self.dataset.init()
        previous = self.load_state()

        if mode == "full" or previous is None or previous.last_alter_id <= 0:
            if mode == "incremental":
                logger.warning("No usable sync state, falling back to a full sync")
            logger.info("=== Full Sync ===")
            report = self.run_full(previous)
        else:
            logger.info("=== Incremental Sync ===")
            report = self.run_incremental(previous)

        self.save_state(SyncState(last_alter_id=report["new_alter_id"], last_sync=self.clock()))

        elapsed = (self.clock() - started).total_seconds()
        logger.info(
            f"=== Sync Complete ({report['mode']}) in {elapsed:.1f}s: "
            f"{report['vouchers']} vouchers, {report['skipped']} skipped, "
            f"AlterId {report['old_alter_id']} -> {report['new_alter_id']} ==="
        )
        return report

    def close(self):
        """Close the Tally session and any database connection."""
        self.connector.close()
        close_store = getattr(self.state_store, "close", None)
        if close_store:
            close_store()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def run_pipeline(
    config: Optional[TallySnapshotConfig] = None,
    mode: str = "auto",
    orchestrator: Optional[SyncOrchestrator] = None,
    writer: Optional[OutputWriter] = None,
) -> dict:
    """
    Sync, recompute analytics and publish the snapshot.

    Returns:
        The sync report with the snapshot path under "snapshot"
    """
    config = config or TallySnapshotConfig.from_env()
    orchestrator = orchestrator or SyncOrchestrator(config)
    writer = writer or OutputWriter(config.output_dir, build_registry_store(config))

    report = orchestrator.run(mode=mode)

    dataset = orchestrator.dataset
    masters: Masters = dataset.load_masters()
    now = orchestrator.clock()
    engine = AnalyticsEngine(masters, today=now.date(), opening_date=config.books_from)
    result = engine.run(dataset.batches.iter_vouchers())
    if dataset.batches.skipped:
        logger.warning(f"Skipped {dataset.batches.skipped} unreadable stored vouchers")

    detected = orchestrator.company_name
    name = config.tally_company or (detected if detected and detected != "Unknown" else config.company_name)
    company = Company(id=config.company_id, name=name, last_updated=now)
    report["snapshot"] = str(writer.write(company, engine.index, result))
    return report
