"""Deterministic pattern-based invoice field extraction.

Used whenever the LLM path is unavailable or returns nothing usable. The parser
is total: every call returns an ``ExtractedFields`` and missing values are
replaced with explicit sentinels (``UNKNOWN`` and ``0.00``). Client address is
not derived on this path.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from invoice_extractor.domain.models import UNKNOWN, ZERO_AMOUNT, ExtractedFields, FieldSource

_INVOICE_NUMBER_RE = re.compile(
    r"\b(?:invoice|document|doc)\b\.?"
    r"(?:[^\S\r\n]*(?:number|num|nr|no|id)\b\.?)?"
    r"[^\S\r\n]*[#:]?[^\S\r\n]*[#:]?[^\S\r\n]*"
    r"(?=[A-Z0-9/-]*\d)([A-Z0-9][A-Z0-9/-]*)",
    re.IGNORECASE,
)

_MONEY = (
    r"[^\S\r\n]*[:=-]?\s*"
    r"(?:[A-Z]{3}[^\S\r\n]*)?[$€£¥]?[^\S\r\n]*"
    r"(\d{1,3}(?:,\d{3})+|\d+)\.(\d{2})(?!\d)"
)

# Priority order matters: the first tier with any match wins, regardless of
# where the other tiers occur in the document.
_AMOUNT_LABEL_TIERS = (
    r"invoice[^\S\r\n]+total|total[^\S\r\n]+invoice(?:[^\S\r\n]+amount)?"
    r"|total[^\S\r\n]+amount(?:[^\S\r\n]+due)?|amount[^\S\r\n]+total",
    r"grand[^\S\r\n]+total",
    r"amount[^\S\r\n]+due",
    r"balance[^\S\r\n]+due",
    r"total",
)
_AMOUNT_RES = tuple(
    re.compile(rf"\b(?:{label})\b{_MONEY}", re.IGNORECASE) for label in _AMOUNT_LABEL_TIERS
)

_CLIENT_LABEL_RE = re.compile(
    r"\b(?:bill(?:ed)?[^\S\r\n]+to|sold[^\S\r\n]+to|customer(?:[^\S\r\n]+name)?)\b"
    r"[^\S\r\n]*:?[^\S\r\n]*(.*)$",
    re.IGNORECASE | re.MULTILINE,
)
_OTHER_LABEL_RE = re.compile(
    r"\b(?:ship(?:ped)?\s+to|invoice|date|total|amount|balance|phone|tel|email|fax|id|account)\b.*$",
    re.IGNORECASE,
)
_COLUMN_GAP_RE = re.compile(r"\s{3,}")
_MAX_CLIENT_LINES = 3


def parse_invoice_fields(ocr_text: str | None) -> ExtractedFields:
    text = ocr_text if isinstance(ocr_text, str) else ""
    return ExtractedFields(
        invoice_number=find_invoice_number(text) or UNKNOWN,
        amount=find_amount(text) or ZERO_AMOUNT,
        client_name=find_client_name(text) or UNKNOWN,
        client_address=None,
        currency=None,
        confidence=0.0,
        source=FieldSource.FALLBACK,
    )


def find_invoice_number(text: str) -> str | None:
    match = _INVOICE_NUMBER_RE.search(text)
    if not match:
        return None
    value = match.group(1).strip("-/")
    return value or None


def find_amount(text: str) -> Decimal | None:
    for pattern in _AMOUNT_RES:
        match = pattern.search(text)
        if not match:
            continue
        whole = match.group(1).replace(",", "")
        try:
            return Decimal(f"{whole}.{match.group(2)}")
        except InvalidOperation:
            continue
    return None


def find_client_name(text: str) -> str | None:
    match = _CLIENT_LABEL_RE.search(text)
    if not match:
        return None
    parts: list[str] = []
    same_line = _trim_client_line(match.group(1))
    if same_line and _OTHER_LABEL_RE.match(same_line):
        return None
    if same_line:
        if _starts_address(same_line):
            return None
        parts.append(same_line)

    following = text[match.end():].splitlines()
    if following and following[0] == "":
        following = following[1:]
    for raw_line in following:
        if len(parts) >= _MAX_CLIENT_LINES:
            break
        line = _trim_client_line(raw_line)
        if not line or _starts_address(line):
            break
        if parts and _is_header(line):
            break
        if _OTHER_LABEL_RE.match(line):
            break
        parts.append(line)
    name = " ".join(parts).strip(" ,;:")
    return name or None


def _trim_client_line(line: str) -> str:
    line = _COLUMN_GAP_RE.split(line.strip(), maxsplit=1)[0]
    cut = _OTHER_LABEL_RE.search(line)
    if cut and cut.start() > 0:
        line = line[: cut.start()]
    return line.strip(" \t,;:")


def _starts_address(line: str) -> bool:
    return line[:1].isdigit()


def _is_header(line: str) -> bool:
    letters = [ch for ch in line if ch.isalpha()]
    return bool(letters) and all(ch.isupper() for ch in letters)
