"""
Parsers for Tally voucher exports.

Handles both export shapes the sync engine requests:
- Voucher Register report (TALLYMESSAGE/VOUCHER)
- Collection export filtered by AlterId (COLLECTION/VOUCHER)

Tally exports debits as negative amounts; records returned here carry
positive = debit.
"""
from __future__ import annotations
from loguru import logger

from ..errors import DataIntegrityWarning
from ..models import BillAllocation, InventoryEntry, LedgerEntry, Voucher
from .base import (
    ParseResult,
    as_list,
    decode_response,
    extract_alter_id,
    iter_records,
    parse_float,
    parse_quantity,
    parse_tally_date,
    text,
)

LEDGER_ENTRY_KEYS = ("ALLLEDGERENTRIES.LIST", "LEDGERENTRIES.LIST")
INVENTORY_ENTRY_KEYS = ("ALLINVENTORYENTRIES.LIST", "INVENTORYENTRIES.LIST")
ORIGIN_BILL_TYPES = ("new ref",)


def signed_amount(value) -> float:
    """Tally amount string to positive-debit float."""
    amount = parse_float(value)
    return -amount if amount else 0.0


def _entries(record: dict, keys: tuple[str, ...]) -> list[dict]:
    entries = []
    for key in keys:
        entries.extend(e for e in as_list(record.get(key)) if isinstance(e, dict))
    return entries


def _parse_bill_allocations(entry: dict) -> list[BillAllocation]:
    bills = []
    for bill in as_list(entry.get("BILLALLOCATIONS.LIST")):
        if not isinstance(bill, dict):
            continue
        name = text(bill, "NAME") or text(bill, "BILLNAME")
        if not name:
            continue
        bill_type = (text(bill, "BILLTYPE") or "").lower()
        bills.append(BillAllocation(
            bill_name=name,
            amount=signed_amount(text(bill, "AMOUNT")),
            is_origin=bill_type in ORIGIN_BILL_TYPES,
        ))
    return bills


def _parse_ledger_entries(record: dict) -> list[LedgerEntry]:
    entries = []
    for le in _entries(record, LEDGER_ENTRY_KEYS):
        ledger = text(le, "LEDGERNAME") or text(le, "NAME")
        if not ledger:
            continue
        entries.append(LedgerEntry(
            ledger_name=ledger,
            amount=signed_amount(text(le, "AMOUNT")),
            bill_allocations=_parse_bill_allocations(le),
        ))
    return entries


def _parse_inventory_entries(record: dict) -> list[InventoryEntry]:
    entries = []
    for inv in _entries(record, INVENTORY_ENTRY_KEYS):
        item = text(inv, "STOCKITEMNAME") or text(inv, "NAME")
        if not item:
            continue
        entries.append(InventoryEntry(
            item_name=item,
            qty=parse_quantity(text(inv, "BILLEDQTY") or text(inv, "ACTUALQTY")),
            amount=signed_amount(text(inv, "AMOUNT")),
        ))
    return entries


def normalize_voucher(record: dict) -> Voucher:
    """
    Build a Voucher from one decoded VOUCHER record.

    Raises:
        DataIntegrityWarning: The record has no usable date or identity
    """
    voucher_date = parse_tally_date(text(record, "DATE"))
    if voucher_date is None:
        raise DataIntegrityWarning(f"voucher without a date: {text(record, 'GUID') or record.get('VCHTYPE')}")

    voucher_type = (
        text(record, "VOUCHERTYPENAME") or text(record, "VCHTYPE") or ""
    )
    voucher_number = text(record, "VOUCHERNUMBER") or text(record, "VCHNUMBER")

    guid = text(record, "GUID") or text(record, "REMOTEID")
    if not guid:
        if not voucher_number:
            raise DataIntegrityWarning(f"voucher without GUID or number on {voucher_date}")
        # Pseudo-GUID, stable across exports of the same voucher
        guid = f"{voucher_type}/{voucher_number}/{voucher_date:%Y%m%d}"

    return Voucher(
        guid=guid,
        alter_id=extract_alter_id(record),
        date=voucher_date,
        voucher_type=voucher_type,
        voucher_number=voucher_number,
        party_name=text(record, "PARTYLEDGERNAME") or text(record, "PARTYNAME"),
        ledger_entries=_parse_ledger_entries(record),
        inventory_entries=_parse_inventory_entries(record),
    )


def parse_vouchers(raw: str) -> ParseResult:
    """
    Parse a voucher export into normalized Voucher records.

    Malformed records are skipped and counted; an empty but valid response
    yields an empty result.

    Raises:
        ProtocolError: The body cannot be decoded at all
    """
    tree = decode_response(raw)
    result = ParseResult()

    for record in iter_records(tree, "VOUCHER"):
        try:
            result.records.append(normalize_voucher(record))
        except DataIntegrityWarning as e:
            result.skipped += 1
            logger.debug(f"Skipping voucher: {e}")

    if result.skipped:
        logger.warning(f"Skipped {result.skipped} malformed vouchers")
    logger.debug(f"Parsed {len(result.records)} vouchers")
    return result


def max_alter_id(vouchers: list[Voucher], floor: int = 0) -> int:
    """Highest AlterId among the vouchers, never below `floor`."""
    return max([floor] + [v.alter_id for v in vouchers])
