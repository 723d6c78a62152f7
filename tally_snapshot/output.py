"""
Snapshot and registry writer for the reporting front end.

Writes `<output_dir>/<company_id>/data.json` and upserts the company into
`<output_dir>/companies.json`. Keys are camelCase and numbers are rounded
to 2 decimals here and nowhere earlier.
"""
from __future__ import annotations
from datetime import date
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .analytics import AnalyticsResult, MasterIndex
from .models import Company, LedgerBalanceRecord, StockRecord
from .stores.base import write_json_atomic
from .stores.files import RegistryStore


def money(value: Optional[float]) -> float:
    # round() keeps -0.0; normalize it so zero balances print as 0.0
    return round(value or 0.0, 2) + 0.0


def iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def masters_rows(index: MasterIndex) -> list[dict]:
    rows = []
    for ledger in index.ledgers.values():
        rows.append({
            "name": ledger.name,
            "parent": ledger.parent,
            "rootGroup": index.root_group(ledger.name),
            "rootClass": index.root_class(ledger.name),
            "primaryGroup": index.primary_group(ledger.name),
            "openingBalance": money(ledger.opening_balance),
        })
    return rows


def ledger_row(record: LedgerBalanceRecord) -> dict:
    return {
        "name": record.name,
        "parentGroup": record.parent_group,
        "balance": money(record.balance),
        "status": record.status,
        "buckets": {
            "days30": money(record.buckets.days30),
            "days60": money(record.buckets.days60),
            "days90": money(record.buckets.days90),
            "daysOver90": money(record.buckets.days_over_90),
        },
        "openBills": [
            {
                "name": bill.name,
                "originDate": iso(bill.origin_date),
                "outstandingAmount": money(bill.outstanding_amount),
            }
            for bill in record.open_bills
        ],
    }


def stock_row(record: StockRecord) -> dict:
    return {
        "name": record.name,
        "inwardQty": money(record.inward_qty),
        "outwardQty": money(record.outward_qty),
        "inwardValue": money(record.inward_value),
        "outwardValue": money(record.outward_value),
        "revenue": money(record.revenue),
        "closingQty": money(record.closing_qty),
        "closingValue": money(record.closing_value),
        "lastSaleDate": iso(record.last_sale_date),
        "movement": record.movement,
        "class": record.abc_class,
    }


def transaction_row(txn: dict) -> dict:
    return {
        "guid": txn["guid"],
        "date": iso(txn["date"]),
        "type": txn["type"],
        "number": txn["number"],
        "party": txn["party"],
        "ledgers": [
            {"name": l["name"], "amount": money(l["amount"])} for l in txn["ledgers"]
        ],
    }


def build_snapshot(company: Company, index: MasterIndex, result: AnalyticsResult) -> dict[str, Any]:
    entry = company.model_dump(mode="json", by_alias=True)
    return {
        "meta": {
            "companyId": entry["id"],
            "companyName": entry["name"],
            "lastUpdated": entry["lastUpdated"],
        },
        "masters": masters_rows(index),
        "monthlyStats": {
            month: {"sales": money(totals["sales"]), "purchase": money(totals["purchase"])}
            for month, totals in result.monthly_stats.items()
        },
        "debtors": [ledger_row(r) for r in result.debtors],
        "creditors": [ledger_row(r) for r in result.creditors],
        "stocks": [stock_row(r) for r in result.stocks],
        "transactions": [transaction_row(t) for t in result.transactions],
        "ledgerNames": list(result.ledger_names),
    }


class OutputWriter:
    """
    Usage:
        writer = OutputWriter(Path("dashboard/public/data"), registry)
        writer.write(company, index, result)
    """

    def __init__(self, output_dir: Path, registry: Optional[RegistryStore] = None):
        self.output_dir = Path(output_dir)
        self.registry = registry or RegistryStore(self.output_dir / "companies.json")

    def snapshot_path(self, company_id: str) -> Path:
        return self.output_dir / company_id / "data.json"

    def write(self, company: Company, index: MasterIndex, result: AnalyticsResult) -> Path:
        """
        Replace the company snapshot, then upsert the registry entry.

        Raises:
            StoreError: Either file cannot be written
        """
        path = self.snapshot_path(company.id)
        write_json_atomic(path, build_snapshot(company, index, result), indent=None)
        logger.info(f"Snapshot written to {path}")

        self.registry.put(company.id, company.model_dump(mode="json", by_alias=True))
        logger.info(f"Registry updated: {company.id}")
        return path
