"""
Analytics over merged Tally vouchers.
"""
from .aging import BillPosition, age_bills, bucket_name, ledger_status
from .engine import AnalyticsEngine, AnalyticsResult, classify_voucher_type
from .masters import CREDITORS_GROUP, DEBTORS_GROUP, UNKNOWN, MasterIndex
from .stock import assign_abc, closing_position, movement_class

__all__ = [
    "AnalyticsEngine",
    "AnalyticsResult",
    "MasterIndex",
    "BillPosition",
    "age_bills",
    "bucket_name",
    "ledger_status",
    "assign_abc",
    "closing_position",
    "movement_class",
    "classify_voucher_type",
    "DEBTORS_GROUP",
    "CREDITORS_GROUP",
    "UNKNOWN",
]
