"""
Tally Snapshot - Incremental sync of Tally books into a local dataset and
dashboard-ready analytics snapshots.

Key Features:
- Full and incremental (AlterId watermark) sync modes
- Single-flight Tally client with cooldowns and capped exponential retry
- Idempotent GUID-keyed merge into monthly voucher batches
- Debtor/creditor balances with bill-wise aging, stock FSN and ABC classes
- Atomic JSON snapshot and company registry output

Usage:
    # Sync and publish (full on first run, incremental afterwards)
    python -m tally_snapshot

    # Force a full resync
    python -m tally_snapshot --mode full

    # Connection check
    python -m tally_snapshot --health-check
"""

__version__ = "1.0.0"

from .config import TallySnapshotConfig
from .sync import SyncOrchestrator, run_pipeline

__all__ = ["TallySnapshotConfig", "SyncOrchestrator", "run_pipeline", "__version__"]
