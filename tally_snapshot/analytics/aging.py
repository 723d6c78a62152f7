"""
Bill-wise outstanding and aging for party ledgers.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from ..models import AgingBuckets, OpenBill

# Settled bills leave rounding residue; anything within one currency unit is closed.
OPEN_BILL_THRESHOLD = 1.0


@dataclass
class BillPosition:
    """Running sum of every allocation against one bill reference."""

    name: str
    amount: float = 0.0
    first_seen: Optional[date] = None
    first_origin: Optional[date] = None

    def add(self, amount: float, on: Optional[date], is_origin: bool = False):
        self.amount += amount
        if on is None:
            return
        if self.first_seen is None or on < self.first_seen:
            self.first_seen = on
        if is_origin and (self.first_origin is None or on < self.first_origin):
            self.first_origin = on

    @property
    def origin_date(self) -> Optional[date]:
        return self.first_origin or self.first_seen

    @property
    def is_open(self) -> bool:
        return abs(self.amount) > OPEN_BILL_THRESHOLD


def bucket_name(days: int) -> str:
    if days <= 30:
        return "days30"
    if days <= 60:
        return "days60"
    if days <= 90:
        return "days90"
    return "days_over_90"


def age_bills(
    bills: Iterable[BillPosition],
    today: date,
    undated: Optional[date] = None,
) -> tuple[list[OpenBill], AgingBuckets]:
    """
    Open bills (oldest first) and their aging buckets.

    Each open bill's absolute outstanding goes into exactly one bucket.
    Bills with no dated allocation age from `undated`, or from today when
    that is not given.
    """
    buckets = AgingBuckets()
    open_bills = []
    for bill in bills:
        if not bill.is_open:
            continue
        origin = bill.origin_date or undated or today
        bucket = bucket_name((today - origin).days)
        setattr(buckets, bucket, getattr(buckets, bucket) + abs(bill.amount))
        open_bills.append(OpenBill(name=bill.name, origin_date=origin, outstanding_amount=bill.amount))
    open_bills.sort(key=lambda b: (b.origin_date, b.name))
    return open_bills, buckets


def ledger_status(buckets: AgingBuckets) -> str:
    return "Non-Performing" if buckets.days_over_90 > 0 else "Performing"
