"""Money parsing and formatting for receipt text.

Amounts are ``Decimal`` values quantized to cents. Parsing accepts both
comma and dot decimal separators unless a separator is forced.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ticketfox.domain.receipt import DecimalSeparator

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MAX_ITEM_PRICE = Decimal("10000")

CURRENCY_SYMBOLS = re.compile(r"[$€£¥]")
PRICE_PATTERN = re.compile(r"\d+[.,]\d{2}(?!\d)")
STANDALONE_PRICE_PATTERN = re.compile(r"^\d+[,.]\s*\d{2}(\s*[A-Za-z]{0,3})?$")
COMMA_DECIMAL_PATTERN = re.compile(r"\d+,\d{2}(?!\d)")
DOT_DECIMAL_PATTERN = re.compile(r"\d+\.\d{2}(?!\d)")
LEADING_PRICE_PATTERN = re.compile(r"^\d+[,.]\d{2}")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize a value to cents, rounding half up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _price_patterns(separator: str) -> tuple[re.Pattern[str], ...]:
    sep = re.escape(separator)
    return (
        re.compile(rf"^(\d+){sep}(\d{{2}})$"),
        re.compile(rf"(\d+){sep}(\d{{2}})\s*[A-Za-z]*$"),
        re.compile(rf"^(\d+){sep}(\d{{2}})"),
    )


_COMMA_PATTERNS = _price_patterns(",")
_DOT_PATTERNS = _price_patterns(".")


def _strip_thousands(text: str, decimal_separator: str) -> str:
    if decimal_separator == ",":
        return re.sub(r"(?<=\d)\.(?=\d{3}(?:\D|$))", "", text)
    return re.sub(r"(?<=\d),(?=\d{3}(?:\D|$))", "", text)


def parse_price(
    text: str,
    decimal_separator: DecimalSeparator | None = None,
    *,
    allow_integer: bool = False,
) -> Decimal | None:
    """
    Parse a price from a receipt fragment.

    Handles "12,50", "12.50", "€12,50", "12, 50" (OCR split), and a trailing
    tax letter such as "2,70 A". Exact matches win over trailing matches,
    which win over leading matches, comma before dot at each level.

    Args:
        text: Text that contains the price.
        decimal_separator: Restrict parsing to one separator; thousands
            groups written with the other separator are removed first.
        allow_integer: Accept a bare integer ("12") as a whole amount.

    Returns:
        The amount in cents precision, or None if no price was found.
    """
    cleaned = CURRENCY_SYMBOLS.sub("", text).strip()
    cleaned = re.sub(r"(\d+),\s+(\d{2})\b", r"\1,\2", cleaned)
    cleaned = re.sub(r"(\d+)\.\s+(\d{2})\b", r"\1.\2", cleaned)

    if decimal_separator is not None:
        cleaned = _strip_thousands(cleaned, decimal_separator)
        pattern_groups = [_COMMA_PATTERNS if decimal_separator == "," else _DOT_PATTERNS]
    else:
        pattern_groups = [_COMMA_PATTERNS, _DOT_PATTERNS]

    for level in range(3):
        for patterns in pattern_groups:
            match = patterns[level].search(cleaned)
            if match:
                try:
                    return to_money(f"{match.group(1)}.{match.group(2)}")
                except InvalidOperation:
                    return None

    if allow_integer:
        simple = re.match(r"^(\d+)$", cleaned)
        if simple:
            return to_money(simple.group(1))
    return None


def format_price(amount: Decimal, decimal_separator: DecimalSeparator = ",") -> str:
    """Format an amount with two decimals and the given separator."""
    text = f"{to_money(amount):.2f}"
    if decimal_separator == ",":
        return text.replace(".", ",")
    return text


def contains_price(text: str) -> bool:
    return PRICE_PATTERN.search(text) is not None


def is_standalone_price(text: str) -> bool:
    """Return True for a line that is only a price, optionally with a tax letter."""
    return STANDALONE_PRICE_PATTERN.match(text.strip()) is not None


def starts_with_price(text: str) -> bool:
    return LEADING_PRICE_PATTERN.match(text.strip()) is not None


def extract_price_value(text: str) -> Decimal | None:
    """Pull the first price from text, preferring the European comma style."""
    comma_match = re.search(r"[\d.]+,\d{2}", text)
    if comma_match:
        normalized = comma_match.group(0).replace(".", "").replace(",", ".")
        try:
            return to_money(normalized)
        except InvalidOperation:
            return None

    dot_match = re.search(r"\d+\.\d{2}", text)
    if dot_match:
        return to_money(dot_match.group(0))
    return None


def count_decimal_styles(text: str) -> tuple[int, int]:
    """Return (comma_decimals, dot_decimals) occurrences in text."""
    return len(COMMA_DECIMAL_PATTERN.findall(text)), len(DOT_DECIMAL_PATTERN.findall(text))


def detect_decimal_separator(text: str) -> DecimalSeparator | None:
    """Majority vote between comma and dot decimals; None on a tie."""
    commas, dots = count_decimal_styles(text)
    if commas > dots:
        return ","
    if dots > commas:
        return "."
    return None


def is_plausible_item_price(amount: Decimal | None) -> bool:
    return amount is not None and ZERO < amount < MAX_ITEM_PRICE
