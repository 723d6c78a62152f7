"""
Parsers for Tally responses.

Every response passes through `decode_response`, which turns XML or JSON
into one nested-dict tree; the entity parsers normalize that tree into
domain models and count the records they had to skip.
"""

from .base import (
    DecodeStrategy,
    JsonStrategy,
    ParseResult,
    RecoveringXmlStrategy,
    StrictXmlStrategy,
    as_list,
    decode_response,
    extract_company_name,
    iter_records,
    parse_float,
    parse_int,
    parse_tally_date,
    sanitize_xml,
)
from .masters import parse_masters
from .vouchers import max_alter_id, parse_vouchers

__all__ = [
    # Base
    "DecodeStrategy",
    "JsonStrategy",
    "StrictXmlStrategy",
    "RecoveringXmlStrategy",
    "ParseResult",
    "as_list",
    "decode_response",
    "extract_company_name",
    "iter_records",
    "sanitize_xml",
    "parse_tally_date",
    "parse_float",
    "parse_int",
    # Entities
    "parse_masters",
    "parse_vouchers",
    "max_alter_id",
]
