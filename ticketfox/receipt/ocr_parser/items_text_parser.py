"""Text-line based receipt item extraction for the generic parser."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from decimal import Decimal

from ticketfox.domain.receipt import ParsedItem
from ticketfox.receipt.prices import ZERO, is_plausible_item_price, is_standalone_price, parse_price

from .common import (
    MIN_LINE_LENGTH,
    contains_skip_keyword,
    extract_quantity_and_unit,
    is_product_line,
    is_total_section_line,
    is_valid_item_name,
    matches_header_pattern,
    unit_price_for,
)

INLINE_ITEM_CONFIDENCE = 60
COLUMNAR_ITEM_CONFIDENCE = 70
MAX_INLINE_ITEM_CONFIDENCE = 95

# Single-line "name + price" shapes, most specific first
INLINE_PRICE_PATTERNS = (
    re.compile(r"^(.+?)\s+\$\s*(\d+[.,]\d{2})\s*$"),
    re.compile(r"^(.+?)\s+(\d+[.,]\d{2})\s*$"),
    re.compile(r"^(.+?)\s+(\d+[.,]\d{2})\s*[A-Za-z]{0,3}\s*$"),
    re.compile(r"^(.+?)\s*\$\s*(\d+[.,]\d{2})(?:\s|$)"),
    re.compile(r"^(.+?)[\t ]{2,}(\d+[.,]\d{2})\s*$"),
    re.compile(r"^(.+?)\s*\(\s*\$?\s*(\d+[.,]\d{2})\s*\)\s*$"),
)

_PLAIN_NAME = re.compile(r"^[a-zA-Z0-9\s\-]+$")
_COLUMNAR_QTY_SUFFIX = re.compile(r"\s*x\s*(\d+)$", re.IGNORECASE)
_COLUMNAR_QTY_PREFIX = re.compile(r"^(\d+)\s*x\s*", re.IGNORECASE)


def _match_name_and_price(line: str) -> tuple[str, Decimal] | None:
    for pattern in INLINE_PRICE_PATTERNS:
        match = pattern.match(line)
        if not match:
            continue
        name = match.group(1).strip()
        price = parse_price(match.group(2))
        if price is not None and price > ZERO and len(name) > 1:
            return name, price
    return None


def parse_line_item(line: str) -> ParsedItem | None:
    """
    Parse one "name + price" line into an item.

    Lines carrying skip, totals or header markers are rejected before any
    grammar is tried. Quantity and weight tokens embedded in the name are
    pulled out afterwards.
    """
    if len(line) < MIN_LINE_LENGTH:
        return None
    if contains_skip_keyword(line) or is_total_section_line(line) or matches_header_pattern(line):
        return None

    matched = _match_name_and_price(line)
    if matched is None:
        return None
    raw_name, total_price = matched

    extraction = extract_quantity_and_unit(raw_name, total_price)
    if not is_valid_item_name(extraction.name):
        return None

    confidence = INLINE_ITEM_CONFIDENCE
    if len(extraction.name) > 5:
        confidence += 10
    if extraction.unit is not None:
        confidence += 10
    if _PLAIN_NAME.match(extraction.name):
        confidence += 10

    return ParsedItem(
        name=extraction.name,
        total_price=total_price,
        quantity=extraction.quantity,
        unit_price=extraction.unit_price,
        unit=extraction.unit,
        confidence=min(confidence, MAX_INLINE_ITEM_CONFIDENCE),
    )


def parse_inline_items(lines: Iterable[str]) -> list[ParsedItem]:
    items: list[ParsedItem] = []
    for line in lines:
        item = parse_line_item(line)
        if item is not None:
            items.append(item)
    return items


def parse_columnar_items(lines: Sequence[str]) -> list[ParsedItem]:
    """
    Pair product-name lines with standalone price lines by position.

    The Nth product line gets the Nth price; surplus lines on either side
    are ignored.
    """
    product_lines: list[str] = []
    prices: list[Decimal] = []

    for line in lines:
        trimmed = line.strip()
        if is_standalone_price(trimmed):
            price = parse_price(trimmed)
            if is_plausible_item_price(price):
                prices.append(price)  # type: ignore[arg-type]
        elif is_product_line(trimmed):
            product_lines.append(trimmed)

    items: list[ParsedItem] = []
    for name, total_price in zip(product_lines, prices):
        quantity = Decimal("1")
        qty_match = _COLUMNAR_QTY_SUFFIX.search(name) or _COLUMNAR_QTY_PREFIX.match(name)
        if qty_match and int(qty_match.group(1)) > 0:
            quantity = Decimal(qty_match.group(1))
            name = (name[: qty_match.start()] + name[qty_match.end() :]).strip()

        items.append(
            ParsedItem(
                name=name,
                total_price=total_price,
                quantity=quantity,
                unit_price=unit_price_for(total_price, quantity),
                unit="each" if quantity > 1 else None,
                confidence=COLUMNAR_ITEM_CONFIDENCE,
            )
        )
    return items
