"""
Parsers for the Tally "List of Accounts" masters export.

Only groups and ledgers are kept: the group tree drives ledger
classification, ledgers carry opening balances and opening bills.
"""
from __future__ import annotations
from loguru import logger

from ..errors import DataIntegrityWarning
from ..models import Group, MasterAccount, Masters, OpeningBill
from .base import as_list, decode_response, iter_records, parse_tally_date, text
from .vouchers import signed_amount

OPENING_BILL_KEYS = ("LEDGERBILLALLOCATIONS.LIST", "BILLALLOCATIONS.LIST")


def _name(record: dict) -> str | None:
    name = text(record, "NAME")
    if name:
        return name
    # Collection exports nest the name as NAME.LIST/NAME
    for name_list in as_list(record.get("NAME.LIST")):
        name = text(name_list, "NAME")
        if name:
            return name
    return None


def _parent(record: dict) -> str | None:
    # Primary groups export PARENT as "&#4; Primary"; sanitizing leaves "Primary"
    parent = text(record, "PARENT")
    if parent is None or parent.lower() == "primary":
        return None
    return parent


def normalize_group(record: dict) -> Group:
    name = _name(record)
    if not name:
        raise DataIntegrityWarning("group without a name")
    return Group(name=name, parent=_parent(record))


def normalize_ledger(record: dict) -> MasterAccount:
    name = _name(record)
    if not name:
        raise DataIntegrityWarning("ledger without a name")

    opening_bills = []
    for key in OPENING_BILL_KEYS:
        for bill in as_list(record.get(key)):
            bill_name = text(bill, "NAME") or text(bill, "BILLNAME")
            if not bill_name:
                continue
            opening_bills.append(OpeningBill(
                name=bill_name,
                bill_date=parse_tally_date(text(bill, "BILLDATE")),
                amount=signed_amount(text(bill, "OPENINGBALANCE") or text(bill, "AMOUNT")),
            ))

    return MasterAccount(
        name=name,
        parent=_parent(record),
        opening_balance=signed_amount(text(record, "OPENINGBALANCE")),
        opening_bills=opening_bills,
    )


def parse_masters(raw: str) -> tuple[Masters, int]:
    """
    Parse groups and ledgers from a masters export.

    Returns:
        Tuple of (masters, skipped_record_count)

    Raises:
        ProtocolError: The body cannot be decoded at all
    """
    tree = decode_response(raw)
    masters = Masters()
    skipped = 0

    for record in iter_records(tree, "GROUP"):
        try:
            masters.groups.append(normalize_group(record))
        except DataIntegrityWarning as e:
            skipped += 1
            logger.debug(f"Skipping group: {e}")

    for record in iter_records(tree, "LEDGER"):
        try:
            masters.ledgers.append(normalize_ledger(record))
        except DataIntegrityWarning as e:
            skipped += 1
            logger.debug(f"Skipping ledger: {e}")

    if skipped:
        logger.warning(f"Skipped {skipped} malformed master records")
    logger.debug(f"Parsed {len(masters.groups)} groups and {len(masters.ledgers)} ledgers")
    return masters, skipped
