"""French number parsing and display, and the reimbursement document filename."""

from __future__ import annotations

import datetime as dt
import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")

# amounts and kilometers stay below 10^12
MAX_ADJUSTED_EXPONENT = 11

_PLAIN_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


def parse_decimal(raw: Optional[str]) -> Optional[Decimal]:
    """Parse a user typed number ("45.50", "45,50", " 1 200 "); None when invalid or out of range."""
    if raw is None:
        return None
    text = str(raw).strip().replace(" ", "").replace("\u00a0", "").replace("\u202f", "")
    text = text.replace(",", ".")
    if not _PLAIN_NUMBER.match(text):
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if value.adjusted() > MAX_ADJUSTED_EXPONENT:
        return None
    return value


def round_money(value: Number) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Number) -> str:
    """``1234.5`` -> ``1 234,50`` (space thousands separator, comma decimals)."""
    text = f"{round_money(value):,.2f}"
    return text.replace(",", " ").replace(".", ",")


def format_eur(value: Number) -> str:
    return f"{format_amount(value)} €"


def format_number(value: Number) -> str:
    """Plain number without forced decimals, e.g. kilometers: ``123,5``."""
    text = format(Decimal(str(value)).normalize(), "f")
    return text.replace(".", ",")


def parse_iso_date(value: str) -> Optional[dt.date]:
    try:
        return dt.date.fromisoformat((value or "").strip()[:10])
    except ValueError:
        return None


def format_date_fr(value: str) -> str:
    """``2024-05-01`` -> ``01/05/2024``; unparsable input is returned as typed."""
    parsed = parse_iso_date(value)
    return parsed.strftime("%d/%m/%Y") if parsed else (value or "")


def format_datetime_fr(value: dt.datetime) -> str:
    return f"{value.strftime('%d/%m/%Y')} à {value.strftime('%H:%M:%S')}"


def slugify(text: str) -> str:
    """Lowercase ASCII slug: accents folded, non-alphanumeric runs become one hyphen."""
    folded = unicodedata.normalize("NFKD", text or "")
    ascii_text = folded.encode("ascii", "ignore").decode("ascii").lower()
    return re.sub(r"[^a-z0-9]+", "-", ascii_text).strip("-")


def compact_date(value: str) -> str:
    parsed = parse_iso_date(value)
    if parsed:
        return parsed.strftime("%Y%m%d")
    return re.sub(r"\D", "", value or "")


def download_filename(request_date: str, first_name: str, last_name: str, subject: str) -> str:
    name = slugify(f"{first_name} {last_name}")
    return f"fiche_remboursement_{compact_date(request_date)}_{name}_{slugify(subject)}.pdf"
