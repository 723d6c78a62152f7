"""
Derived analytics over the merged voucher dataset.

One pass over all vouchers produces:
- monthly sales / purchase totals
- per-item stock movement with FSN and ABC classes
- debtor and creditor balances with bill-wise aging
- the transaction list and ledger-name index for the front end

Everything is recomputed from scratch on every run.
"""
from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from loguru import logger

from ..models import LedgerBalanceRecord, Masters, StockRecord, Voucher
from .aging import BillPosition, age_bills, ledger_status
from .masters import MasterIndex
from .stock import assign_abc, closing_position, movement_class


def classify_voucher_type(voucher_type: str) -> Optional[str]:
    """'sales', 'purchase' or None, by case-insensitive substring."""
    name = (voucher_type or "").lower()
    if "sales" in name or "tax invoice" in name:
        return "sales"
    if "purchase" in name:
        return "purchase"
    return None


@dataclass
class AnalyticsResult:
    monthly_stats: dict[str, dict[str, float]] = field(default_factory=dict)
    debtors: list[LedgerBalanceRecord] = field(default_factory=list)
    creditors: list[LedgerBalanceRecord] = field(default_factory=list)
    stocks: list[StockRecord] = field(default_factory=list)
    transactions: list[dict] = field(default_factory=list)
    ledger_names: list[str] = field(default_factory=list)
    voucher_count: int = 0


class _PartyLedger:
    """Accumulator for one Debtor/Creditor ledger."""

    def __init__(self, name: str, parent: Optional[str], root_class: str, opening: float):
        self.name = name
        self.parent = parent
        self.root_class = root_class
        self.balance = opening
        self.bills: dict[str, BillPosition] = {}

    def bill(self, name: str) -> BillPosition:
        if name not in self.bills:
            self.bills[name] = BillPosition(name=name)
        return self.bills[name]


class AnalyticsEngine:
    """
    Usage:
        engine = AnalyticsEngine(masters, today=date(2024, 6, 30))
        result = engine.run(dataset.batches.iter_vouchers())
    """

    def __init__(
        self,
        masters: Masters,
        today: Optional[date] = None,
        opening_date: Optional[date] = None,
    ):
        self.masters = masters
        self.index = MasterIndex(masters)
        self.today = today or date.today()
        # Age for opening bills exported without a bill date
        self.opening_date = opening_date

    def _seed_parties(self) -> dict[str, _PartyLedger]:
        parties = {}
        for ledger in self.index.party_ledgers():
            party = _PartyLedger(
                name=ledger.name,
                parent=ledger.parent,
                root_class=self.index.root_class(ledger.name),
                opening=ledger.opening_balance,
            )
            for opening_bill in ledger.opening_bills:
                party.bill(opening_bill.name).add(
                    opening_bill.amount, opening_bill.bill_date, is_origin=True
                )
            parties[ledger.name] = party
        return parties

    def run(self, vouchers: Iterable[Voucher]) -> AnalyticsResult:
        result = AnalyticsResult()
        monthly: dict[str, dict[str, float]] = {}
        stocks: dict[str, StockRecord] = {}
        parties = self._seed_parties()

        for voucher in vouchers:
            result.voucher_count += 1
            kind = classify_voucher_type(voucher.voucher_type)
            month_key = voucher.date.strftime("%Y%m")

            if kind and voucher.inventory_entries:
                totals = monthly.setdefault(month_key, {"sales": 0.0, "purchase": 0.0})
                for entry in voucher.inventory_entries:
                    amount = abs(entry.amount)
                    qty = abs(entry.qty)
                    totals[kind] += amount
                    stock = stocks.get(entry.item_name)
                    if stock is None:
                        stock = stocks[entry.item_name] = StockRecord(name=entry.item_name)
                    if kind == "sales":
                        stock.outward_qty += qty
                        stock.outward_value += amount
                        stock.revenue += amount
                        if stock.last_sale_date is None or voucher.date > stock.last_sale_date:
                            stock.last_sale_date = voucher.date
                    else:
                        stock.inward_qty += qty
                        stock.inward_value += amount

            for entry in voucher.ledger_entries:
                party = parties.get(entry.ledger_name)
                if party is None:
                    continue
                party.balance += entry.amount
                for allocation in entry.bill_allocations:
                    party.bill(allocation.bill_name).add(
                        allocation.amount, voucher.date, is_origin=allocation.is_origin
                    )

            result.transactions.append(self._transaction(voucher))

        result.monthly_stats = dict(sorted(monthly.items()))
        result.stocks = self._finish_stocks(stocks)
        result.debtors, result.creditors = self._finish_parties(parties)
        result.transactions.sort(key=lambda t: t["date"], reverse=True)
        result.ledger_names = sorted(self.index.ledgers)

        logger.info(
            f"Analytics: {result.voucher_count} vouchers, {len(result.stocks)} items, "
            f"{len(result.debtors)} debtors, {len(result.creditors)} creditors"
        )
        return result

    @staticmethod
    def _transaction(voucher: Voucher) -> dict:
        return {
            "guid": voucher.guid,
            "date": voucher.date,
            "type": voucher.voucher_type,
            "number": voucher.voucher_number,
            "party": voucher.party_name,
            "ledgers": [
                {"name": e.ledger_name, "amount": e.amount} for e in voucher.ledger_entries
            ],
        }

    def _finish_stocks(self, stocks: dict[str, StockRecord]) -> list[StockRecord]:
        for stock in stocks.values():
            stock.closing_qty, stock.closing_value = closing_position(stock)
            stock.movement = movement_class(stock.last_sale_date, self.today)
        return assign_abc(list(stocks.values()))

    def _finish_parties(
        self, parties: dict[str, _PartyLedger]
    ) -> tuple[list[LedgerBalanceRecord], list[LedgerBalanceRecord]]:
        debtors, creditors = [], []
        for party in parties.values():
            open_bills, buckets = age_bills(party.bills.values(), self.today, self.opening_date)
            record = LedgerBalanceRecord(
                name=party.name,
                parent_group=party.parent,
                root_class=party.root_class,
                balance=party.balance,
                open_bills=open_bills,
                buckets=buckets,
                status=ledger_status(buckets),
            )
            (debtors if party.root_class == "Debtor" else creditors).append(record)

        def order(r):
            return (-abs(r.balance), r.name)

        return sorted(debtors, key=order), sorted(creditors, key=order)
