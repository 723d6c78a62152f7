"""
Stock movement (FSN) and revenue (ABC) classification.
"""
from __future__ import annotations
from datetime import date
from typing import Optional

from ..models import StockRecord

FAST_DAYS = 30
SLOW_DAYS = 90

A_SHARE = 0.70
B_SHARE = 0.90
SHARE_TOLERANCE = 1e-9


def movement_class(last_sale: Optional[date], today: date) -> str:
    """Fast / Slow / Non-Moving by days since the last sale."""
    if last_sale is None:
        return "Non-Moving"
    days = (today - last_sale).days
    if days <= FAST_DAYS:
        return "Fast"
    if days <= SLOW_DAYS:
        return "Slow"
    return "Non-Moving"


def closing_position(record: StockRecord) -> tuple[float, float]:
    """(closing qty, closing value) at the average inward rate."""
    closing_qty = record.inward_qty - record.outward_qty
    if record.inward_qty > 0:
        closing_value = closing_qty * record.inward_value / record.inward_qty
    else:
        closing_value = 0.0
    return closing_qty, closing_value


def assign_abc(records: list[StockRecord]) -> list[StockRecord]:
    """
    Rank by descending revenue and set `abc_class` on each record.

    Cumulative revenue share up to 70% is A, up to 90% is B, the rest C.
    Equal revenues keep their input order. With no revenue at all every
    item is C.

    Returns:
        The records in rank order
    """
    ranked = sorted(records, key=lambda r: -r.revenue)
    total = sum(r.revenue for r in ranked)
    if total <= 0:
        for record in ranked:
            record.abc_class = "C"
        return ranked

    cumulative = 0.0
    for record in ranked:
        cumulative += record.revenue
        share = cumulative / total
        if share <= A_SHARE + SHARE_TOLERANCE:
            record.abc_class = "A"
        elif share <= B_SHARE + SHARE_TOLERANCE:
            record.abc_class = "B"
        else:
            record.abc_class = "C"
    return ranked
