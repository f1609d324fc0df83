"""
Amount and currency normalization for free-form bank statement cells.

Bank exports mix locales freely ("1.234,56 €", "-99.90 USD", "EUR 12,00"),
so the decimal separator is configured per import rather than guessed
from a single value.
"""

import re
from typing import NamedTuple

CURRENCY_SYMBOLS = ("$", "€", "£", "¥")
DIGITS = "0123456789"

_UPPERCASE_RUN = re.compile(r"[A-Z]+")

ISO_TO_SYMBOL = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
}


class ParsedAmount(NamedTuple):
    amount: float | None
    currency: str | None


def extract_currency(raw: str) -> str | None:
    """
    Find the currency in a raw amount string.

    Symbols win over letter codes. Without a symbol, uppercase letter runs
    are treated as ISO code candidates: the first known code maps to its
    symbol, otherwise the first run is passed through.
    """
    for ch in raw:
        if ch in CURRENCY_SYMBOLS:
            return ch

    runs = _UPPERCASE_RUN.findall(raw)
    if not runs:
        return None
    for run in runs:
        if run in ISO_TO_SYMBOL:
            return ISO_TO_SYMBOL[run]
    return runs[0].upper()


def parse_amount(raw: str | None, decimal_separator: str = ",") -> ParsedAmount:
    """
    Parse a signed amount and its currency from a raw cell value.

    Args:
        raw: Cell text, e.g. "1.234,56 €" or "-99.90 USD"
        decimal_separator: "," or "." as configured for the import

    Returns:
        ParsedAmount; amount is None when no number could be read, while
        the currency may still be reported.
    """
    if raw is None:
        return ParsedAmount(None, None)

    currency = extract_currency(raw)

    cleaned = "".join(ch for ch in raw if ch in DIGITS or ch == decimal_separator)
    if decimal_separator == ",":
        cleaned = cleaned.replace(",", ".")
    else:
        # Dot separator: commas are thousands grouping
        cleaned = cleaned.replace(",", "")

    try:
        amount = float(cleaned)
    except ValueError:
        return ParsedAmount(None, currency)

    if "-" in raw:
        amount = -amount
    return ParsedAmount(amount, currency)


def normalize_currency(value: str | None) -> str | None:
    """Trim and upper-case a currency; empty values become None"""
    trimmed = (value or "").strip()
    if not trimmed:
        return None
    return trimmed.upper()


def format_amount(amount: float | None, currency: str | None = None) -> str:
    if amount is None:
        return ""
    formatted = f"{amount:,.2f}"
    if not currency:
        return formatted
    return f"{formatted} {currency}"
