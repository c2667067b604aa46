"""Merchant/date/payment/summary amount extraction helpers."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from ticketfox.domain.receipt import DateOrder, DecimalSeparator, PaymentMethod
from ticketfox.receipt.date_utils import DateMatch, parse_date, parse_date_with_patterns, parse_time
from ticketfox.receipt.prices import ZERO, is_standalone_price, parse_price
from ticketfox.receipt.regional_presets import KeywordCategory, RegionalPreset
from ticketfox.receipt.text_normalizer import contains_keyword

from .common import MASKED_CARD_PATTERN

STORE_HEADER_LINES = 8
ADDRESS_HEADER_LINES = 15
DATE_HEADER_LINES = 15

_STORE_SKIP_PATTERNS = (
    re.compile(r"^\d+[\s\-/.:]+\d+"),
    re.compile(r"^[\d\s\-/.:]+$"),
    re.compile(r"^\d{4,}"),
    re.compile(r"^(www\.|http|@)", re.IGNORECASE),
    re.compile(r"^(tel|phone|fax|nif|cif|rfc)", re.IGNORECASE),
    re.compile(r"^(receipt|ticket|recibo|factura|bon)", re.IGNORECASE),
    re.compile(r"^\*+$"),
    re.compile(r"^-+$"),
    re.compile(r"^=+$"),
)

ADDRESS_PATTERNS = (
    re.compile(r"\d+\s+\w+\s+(calle|avenida|avda|c/|plaza|pol[íi]gono)", re.IGNORECASE),
    re.compile(r"^(calle|avenida|avda\.?|plaza|pol[íi]gono)\s+\w", re.IGNORECASE),
    re.compile(r"^C/\s*[^\W\d_]", re.IGNORECASE),
    re.compile(r"^\d{5}\s+[^\W\d_]"),
)

PAYMENT_PATTERNS: tuple[tuple[PaymentMethod, re.Pattern[str]], ...] = (
    (PaymentMethod.CASH, re.compile(r"\b(efectivo|met[aá]lico|contado|cambio|vuelto)\b")),
    (
        PaymentMethod.CARD,
        re.compile(r"\b(tarjeta|visa|mastercard|contactless|cr[eé]dito|d[eé]bito)\b"),
    ),
    (
        PaymentMethod.DIGITAL,
        re.compile(r"\b(bizum|apple\s*pay|google\s*pay|paypal|transferencia)\b"),
    ),
)

_NEGATIVE_AMOUNT = re.compile(r"(^|\s)-\s*[$€]?\s*\d+[.,]\d{2}|\d+[.,]\d{2}\s*-$")


@dataclass(frozen=True)
class TotalsKeywords:
    """Upper-case keyword sets for the summary block, checked in field order."""

    total: tuple[str, ...]
    subtotal: tuple[str, ...] = ()
    tax: tuple[str, ...] = ()
    discount: tuple[str, ...] = ()
    # Substrings that disqualify a line from being the grand total ("SUB" covers "SUBTOTAL")
    not_total: tuple[str, ...] = ("SUB",)
    negative_is_discount: bool = False

    @classmethod
    def from_preset(cls, preset: RegionalPreset) -> TotalsKeywords:
        return cls(
            total=preset.keywords_for(KeywordCategory.TOTAL),
            subtotal=preset.keywords_for(KeywordCategory.SUBTOTAL),
            tax=preset.keywords_for(KeywordCategory.TAX),
            discount=preset.keywords_for(KeywordCategory.DISCOUNT),
            not_total=("SUB", "ARTICUL", "ARTÍCUL"),
            negative_is_discount=True,
        )


@dataclass(frozen=True)
class ExtractedTotals:
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    discount: Decimal | None = None
    total: Decimal | None = None

    def merged_with(self, other: ExtractedTotals) -> ExtractedTotals:
        """Fill missing fields from ``other``."""
        return ExtractedTotals(
            subtotal=self.subtotal if self.subtotal is not None else other.subtotal,
            tax=self.tax if self.tax is not None else other.tax,
            discount=self.discount if self.discount is not None else other.discount,
            total=self.total if self.total is not None else other.total,
        )


def extract_store_name(lines: Sequence[str]) -> str | None:
    """First header line that reads like a business name."""
    for line in lines[:STORE_HEADER_LINES]:
        cleaned = line.strip()
        if len(cleaned) < 3 or len(cleaned) > 60:
            continue
        if any(pattern.search(cleaned) for pattern in _STORE_SKIP_PATTERNS):
            continue
        if not re.search(r"[a-zA-Z]", cleaned):
            continue
        return cleaned
    return None


def _display_store_name(store: str) -> str:
    return store[0] + store[1:].lower()


def extract_store_name_with_preset(lines: Sequence[str], preset: RegionalPreset | None) -> str | None:
    """
    Match the preset's known stores in the header before falling back to heuristics.

    Full-name hits win; a five-letter prefix is accepted only for store
    names of six letters or more so short names like LIDL do not match
    stray words.
    """
    header = [line.strip().upper() for line in lines[:10]]
    if preset is not None and preset.common_stores:
        for line in header:
            for store in preset.common_stores:
                if store in line:
                    return _display_store_name(store)

        by_length = sorted(preset.common_stores, key=len, reverse=True)
        for line in header:
            for store in by_length:
                if len(store) >= 6 and store[:5] in line:
                    return _display_store_name(store)

    return extract_store_name(lines)


def extract_store_address(lines: Sequence[str]) -> str | None:
    for line in lines[:ADDRESS_HEADER_LINES]:
        if any(pattern.search(line) for pattern in ADDRESS_PATTERNS):
            return line.strip()
    return None


def extract_payment_method(text: str) -> PaymentMethod | None:
    lowered = text.lower()
    for method, pattern in PAYMENT_PATTERNS:
        if pattern.search(lowered):
            return method
    if MASKED_CARD_PATTERN.search(text):
        return PaymentMethod.CARD
    return None


def find_date_and_time(
    lines: Sequence[str],
    *,
    hint: DateOrder | None = None,
    patterns: Sequence[re.Pattern[str]] | None = None,
) -> tuple[DateMatch | None, str | None]:
    """
    Scan lines top-down for the first date and the first time.

    With ``patterns`` (chain templates) only those day-month-year patterns
    are tried; otherwise the generic date grammar is used with ``hint``.
    """
    found_date: DateMatch | None = None
    found_time: str | None = None
    for line in lines:
        if found_date is None:
            if patterns is not None:
                found_date = parse_date_with_patterns(line, patterns)
            else:
                found_date = parse_date(line, hint)
        if found_time is None:
            found_time = parse_time(line)
        if found_date is not None and found_time is not None:
            break
    return found_date, found_time


def _has_prefix_marker(upper_line: str, markers: Sequence[str]) -> bool:
    return any(marker in upper_line for marker in markers)


def extract_totals(
    lines: Sequence[str],
    keywords: TotalsKeywords,
    *,
    decimal_separator: DecimalSeparator | None = None,
    next_line_price: Callable[[str], bool] = is_standalone_price,
) -> ExtractedTotals:
    """
    Read subtotal/tax/discount/total from keyword lines.

    Each line is classified in that field order, so "IVA 21% 1,05" is a tax
    line even though it also carries a price. A keyword line without a price
    takes it from the next line when ``next_line_price`` accepts that line.
    The largest total candidate wins.
    """
    subtotal = tax = discount = total = None

    for index, line in enumerate(lines):
        upper = line.upper()
        price = parse_price(line, decimal_separator)
        if price is None and index + 1 < len(lines):
            next_line = lines[index + 1].strip()
            if next_line_price(next_line):
                price = parse_price(next_line, decimal_separator)

        if price is None or price <= ZERO:
            continue

        if contains_keyword(upper, keywords.subtotal):
            subtotal = price
        elif contains_keyword(upper, keywords.tax):
            tax = price
        elif contains_keyword(upper, keywords.discount) or (
            keywords.negative_is_discount and _NEGATIVE_AMOUNT.search(line.strip())
        ):
            discount = price
        elif not _has_prefix_marker(upper, keywords.not_total) and contains_keyword(upper, keywords.total):
            if total is None or price > total:
                total = price

    return ExtractedTotals(subtotal=subtotal, tax=tax, discount=discount, total=total)


# Language-agnostic keyword sets for receipts without a regional preset
GENERIC_TOTALS_KEYWORDS = TotalsKeywords(
    total=("TOTAL", "GRAND TOTAL", "AMOUNT DUE", "BALANCE", "TOTAL COMPRA", "TOTAL A PAGAR"),
    subtotal=("SUBTOTAL", "SUB-TOTAL", "SUB TOTAL"),
    tax=("TAX", "IVA", "I.V.A", "IMPUESTO", "VAT", "MWST"),
    discount=("DISCOUNT", "DESCUENTO", "SAVINGS", "AHORRO", "PROMO", "OFERTA"),
    not_total=("SUB", "ARTICUL", "ARTÍCUL"),
    negative_is_discount=True,
)


def largest_standalone_price(
    lines: Sequence[str],
    minimum: Decimal,
    decimal_separator: DecimalSeparator | None = None,
) -> Decimal | None:
    """Last-resort total: the biggest price printed alone on a line."""
    best: Decimal | None = None
    for line in lines:
        if not is_standalone_price(line):
            continue
        price = parse_price(line.strip(), decimal_separator)
        if price is not None and price > minimum and (best is None or price > best):
            best = price
    return best
