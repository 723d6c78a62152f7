"""
Domain models shared by the sync, analytics and output stages.

All monetary amounts are signed with positive = debit, negative = credit.
"""
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field


class Company(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    last_updated: datetime = Field(alias="lastUpdated")


class SyncState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_alter_id: int = Field(0, alias="lastAlterId")
    last_sync: datetime | None = Field(None, alias="lastSync")


class Group(BaseModel):
    name: str
    parent: str | None = None


class OpeningBill(BaseModel):
    name: str
    bill_date: date | None = None
    amount: float = 0.0


class MasterAccount(BaseModel):
    name: str
    parent: str | None = None
    opening_balance: float = 0.0
    opening_bills: list[OpeningBill] = []


class Masters(BaseModel):
    groups: list[Group] = []
    ledgers: list[MasterAccount] = []


class BillAllocation(BaseModel):
    bill_name: str
    amount: float
    is_origin: bool = False      # Tally "New Ref"


class LedgerEntry(BaseModel):
    ledger_name: str
    amount: float
    bill_allocations: list[BillAllocation] = []


class InventoryEntry(BaseModel):
    item_name: str
    qty: float = 0.0
    amount: float = 0.0


class Voucher(BaseModel):
    guid: str
    alter_id: int = 0
    date: date
    voucher_type: str = ""
    voucher_number: str | None = None
    party_name: str | None = None
    ledger_entries: list[LedgerEntry] = []
    inventory_entries: list[InventoryEntry] = []

    @property
    def period(self) -> tuple[int, int]:
        """(year, month) batch this voucher belongs to."""
        return self.date.year, self.date.month


class OpenBill(BaseModel):
    name: str
    origin_date: date
    outstanding_amount: float


class AgingBuckets(BaseModel):
    days30: float = 0.0
    days60: float = 0.0
    days90: float = 0.0
    days_over_90: float = 0.0


class LedgerBalanceRecord(BaseModel):
    name: str
    parent_group: str | None = None
    root_class: str
    balance: float = 0.0
    open_bills: list[OpenBill] = []
    buckets: AgingBuckets = Field(default_factory=AgingBuckets)
    status: str = "Performing"


class StockRecord(BaseModel):
    name: str
    inward_qty: float = 0.0
    outward_qty: float = 0.0
    inward_value: float = 0.0
    outward_value: float = 0.0
    revenue: float = 0.0
    closing_qty: float = 0.0
    closing_value: float = 0.0
    last_sale_date: date | None = None
    movement: str = "Non-Moving"
    abc_class: str = "C"
