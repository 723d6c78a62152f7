"""
Base utilities for parsing Tally responses.

Provides:
- XML sanitization
- Date, numeric and boolean parsing
- Decoding strategies that turn XML or JSON bodies into one nested-dict tree
- List normalization for fields that are sometimes an object, sometimes a list
"""
from __future__ import annotations
import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterator, Optional

from loguru import logger
from lxml import etree

from ..errors import ProtocolError


def sanitize_xml(xml_text: str) -> str:
    """
    Remove invalid XML characters and fix common issues.

    Tally sometimes produces XML with control characters or invalid
    character references (&#4; marks reserved names like Primary).
    """
    if not xml_text:
        return xml_text

    xml_text = xml_text.replace("\x00", "")

    # Invalid numeric character references for control chars (except tab, newline, CR)
    xml_text = re.sub(r"&#([0-8]|1[0-2]|1[4-9]|2[0-9]|3[01]);", "", xml_text)
    xml_text = re.sub(r"&#x([0-8bBcCeEfF]|1[0-9a-fA-F]);", "", xml_text)

    # XML 1.0 only allows #x9 | #xA | #xD | [#x20-#xD7FF] | [#xE000-#xFFFD] | [#x10000-#x10FFFF]
    xml_text = re.sub(r"[\x01-\x08\x0B\x0C\x0E-\x1F\uFFFE\uFFFF]", "", xml_text)

    # Unescaped ampersands (but not valid entities)
    xml_text = re.sub(r"&(?!(amp|lt|gt|apos|quot|#\d+|#x[\da-fA-F]+);)", "&amp;", xml_text)

    return xml_text


def parse_tally_date(s: Any) -> Optional[date]:
    """
    Parse Tally date string to Python date.

    Tally uses multiple date formats:
    - YYYYMMDD (most common)
    - YYYY-MM-DD
    - DD-MMM-YYYY (e.g., "01-Apr-2024")

    Returns None for empty or unparseable strings.
    """
    if s is None:
        return None
    if isinstance(s, date):
        return s

    s = str(s).strip()
    if not s or s.lower() in ("null", "none"):
        return None

    formats = [
        "%Y%m%d",      # 20240401
        "%Y-%m-%d",    # 2024-04-01
        "%d-%b-%Y",    # 01-Apr-2024
        "%d-%b-%y",    # 1-Apr-24
        "%d/%m/%Y",    # 01/04/2024
        "%d-%m-%Y",    # 01-04-2024
    ]

    for fmt in formats:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    logger.warning(f"Could not parse date: {s}")
    return None


def parse_float(s: Any, default: float = 0.0) -> float:
    """
    Parse Tally numeric string to float.

    Handles:
    - Comma separators (1,234.56)
    - Parentheses and Tally's "(-)" prefix for negatives
    - Currency symbols
    - Empty strings
    """
    if s is None:
        return default
    if isinstance(s, (int, float)):
        return float(s)

    s = str(s).strip()
    if not s or s.lower() in ("null", "none"):
        return default

    is_negative = False
    if s.startswith("(-)"):
        is_negative = True
        s = s[3:]
    elif s.startswith("(") and s.endswith(")"):
        is_negative = True
        s = s[1:-1]

    s = re.sub(r"[,₹$€£¥\s]", "", s)

    try:
        val = float(s)
        return -val if is_negative else val
    except ValueError:
        logger.warning(f"Could not parse float: {s}")
        return default


def parse_int(s: Any, default: int = 0) -> int:
    """Parse Tally integer string ("1 234" and "123.0" included)."""
    if s is None:
        return default
    if isinstance(s, int):
        return s

    s = str(s).strip().replace(",", "").replace(" ", "")
    if not s or s.lower() in ("null", "none"):
        return default

    try:
        return int(float(s))
    except ValueError:
        logger.warning(f"Could not parse int: {s}")
        return default


def parse_quantity(qty: Any) -> float:
    """
    Parse Tally quantity string which may include a unit suffix.
    E.g., "10 Nos" -> 10.0
    """
    if qty is None:
        return 0.0
    if isinstance(qty, (int, float)):
        return float(qty)

    match = re.match(r"\s*(\(-\)\s*)?([-\d.,]+)", str(qty))
    if match:
        value = parse_float(match.group(2))
        return -value if match.group(1) else value

    return 0.0


def as_list(value: Any) -> list:
    """
    Coerce an optional field to a list.

    Tally emits a single object when there is one record and a list when
    there are several; None and empty strings mean no records.
    """
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def text(node: Any, key: str, default: Optional[str] = None) -> Optional[str]:
    """
    Safely extract a scalar field from a decoded record.

    Args:
        node: Decoded record (dict)
        key: Field name, e.g. "LEDGERNAME"
        default: Default value if missing or empty

    Returns:
        Stripped text or default
    """
    if not isinstance(node, dict):
        return default

    val = node.get(key)
    if isinstance(val, list):
        val = val[0] if val else None
    if isinstance(val, dict):
        val = val.get("#text")
    if val is None:
        return default

    val = str(val).strip()
    return val or default


def extract_alter_id(node: Any) -> int:
    """
    Extract ALTERID from a record, handling space-separated format.

    Tally sometimes formats ALTERID with spaces (e.g., "1 234" instead of "1234").
    """
    return parse_int(text(node, "ALTERID"), default=0)


def element_to_dict(element: etree._Element) -> Any:
    """
    Convert an lxml element into the nested-dict shape JSON exports use.

    Leaf elements become their text. Attributes and children become keys;
    a child tag seen more than once becomes a list.
    """
    children = [c for c in element if isinstance(c.tag, str)]
    if not children and not element.attrib:
        return (element.text or "").strip()

    out: dict[str, Any] = {k: v for k, v in element.attrib.items()}
    if not children:
        out["#text"] = (element.text or "").strip()
        return out

    for child in children:
        value = element_to_dict(child)
        if child.tag in out:
            existing = out[child.tag]
            if isinstance(existing, list):
                existing.append(value)
            else:
                out[child.tag] = [existing, value]
        else:
            out[child.tag] = value
    return out


class DecodeStrategy:
    """One way of turning a raw response body into a nested-dict tree."""

    name = "base"

    def accepts(self, raw: str) -> bool:
        raise NotImplementedError

    def decode(self, raw: str) -> dict:
        raise NotImplementedError


class JsonStrategy(DecodeStrategy):
    """JSONEx exports."""

    name = "json"

    def accepts(self, raw: str) -> bool:
        return raw.lstrip().startswith(("{", "["))

    def decode(self, raw: str) -> dict:
        data = json.loads(raw)
        return data if isinstance(data, dict) else {"ROOT": data}


class StrictXmlStrategy(DecodeStrategy):
    """Sanitized XML through the regular lxml parser."""

    name = "xml"

    def accepts(self, raw: str) -> bool:
        return raw.lstrip().startswith("<")

    def decode(self, raw: str) -> dict:
        parser = etree.XMLParser(huge_tree=True)
        root = etree.fromstring(sanitize_xml(raw).encode("utf-8"), parser)
        return {root.tag: element_to_dict(root)}


class RecoveringXmlStrategy(StrictXmlStrategy):
    """
    Fallback for XML the strict parser rejects (truncated bodies, stray tags).

    lxml's recover mode keeps every well-formed record it can reach.
    """

    name = "xml-recover"

    def decode(self, raw: str) -> dict:
        parser = etree.XMLParser(recover=True, huge_tree=True)
        root = etree.fromstring(sanitize_xml(raw).encode("utf-8"), parser)
        if root is None:
            raise ValueError("no recoverable XML content")
        return {root.tag: element_to_dict(root)}


DEFAULT_STRATEGIES: tuple[DecodeStrategy, ...] = (
    JsonStrategy(),
    StrictXmlStrategy(),
    RecoveringXmlStrategy(),
)


def decode_response(raw: str, strategies: tuple[DecodeStrategy, ...] = DEFAULT_STRATEGIES) -> dict:
    """
    Decode a response body with the first strategy that succeeds.

    Raises:
        ProtocolError: No strategy could decode the body
    """
    if raw is None or not raw.strip():
        return {}
    raw = raw.lstrip("\ufeff")

    failures = []
    for strategy in strategies:
        if not strategy.accepts(raw):
            continue
        try:
            tree = strategy.decode(raw)
        except (ValueError, etree.XMLSyntaxError) as e:
            failures.append(f"{strategy.name}: {e}")
            logger.debug(f"Decode strategy {strategy.name} failed: {e}")
            continue
        if failures:
            logger.warning(f"Response decoded with fallback strategy {strategy.name}")
        return tree

    raise ProtocolError(f"Unparseable Tally response ({'; '.join(failures) or 'unknown format'})")


def iter_records(tree: Any, tag: str) -> Iterator[dict]:
    """
    Yield every record stored under `tag` anywhere in a decoded tree.

    Walks with an explicit stack; does not descend into matched records.
    """
    stack = [tree]
    while stack:
        node = stack.pop()
        if isinstance(node, list):
            stack.extend(reversed(node))
        elif isinstance(node, dict):
            children = []
            for key, value in node.items():
                if key == tag:
                    for record in as_list(value):
                        if isinstance(record, dict):
                            yield record
                elif isinstance(value, (dict, list)):
                    children.append(value)
            stack.extend(reversed(children))


def extract_company_name(raw: str) -> Optional[str]:
    """
    Find the company name in a probe response.

    Structured lookup first; falls back to a tag scrape when the body
    does not decode.
    """
    try:
        tree = decode_response(raw)
    except ProtocolError:
        tree = None

    if tree:
        for company in iter_records(tree, "COMPANY"):
            name = text(company, "NAME")
            if name:
                return name

    match = re.search(r"<NAME[^>]*>(.*?)</NAME>", raw or "", re.IGNORECASE | re.DOTALL)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return None


@dataclass
class ParseResult:
    """Normalized records plus the number of records skipped as malformed."""

    records: list = field(default_factory=list)
    skipped: int = 0
