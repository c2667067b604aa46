"""Template-free receipt parsing with regional presets and universal heuristics."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal

from ticketfox.domain.receipt import DateOrder, DecimalSeparator, ParsedItem, ParsedReceipt
from ticketfox.receipt.date_utils import detect_date_order, is_recent_date
from ticketfox.receipt.merchant_detector import NO_DETECTION, ChainDetection
from ticketfox.receipt.prices import PRICE_PATTERN, detect_decimal_separator
from ticketfox.receipt.reference import ReferenceData
from ticketfox.receipt.regional_presets import RegionalPreset
from ticketfox.receipt.tax_regions import detect_tax_region

from .common import ParseOptions, is_total_section_line
from .fields_parser import (
    GENERIC_TOTALS_KEYWORDS,
    ExtractedTotals,
    TotalsKeywords,
    extract_payment_method,
    extract_store_address,
    extract_store_name_with_preset,
    extract_totals,
    find_date_and_time,
    largest_standalone_price,
)
from .items_text_parser import parse_columnar_items, parse_inline_items

logger = logging.getLogger(__name__)

MAX_HEADER_LINES = 8
COLUMNAR_MIN_PRICE_LINES = 3
# Without a preset, a bare price above this may stand in for a missing total
STANDALONE_TOTAL_MINIMUM = Decimal("10")

_FOOTER_PATTERN = re.compile(
    r"thank\s*you|gracias|have\s*a\s*(nice|good)|buen\s*dia|visit\s*us|www\.|http|survey",
    re.IGNORECASE,
)
_HAS_LETTERS = re.compile(r"[a-zA-Z]{2,}")


@dataclass(frozen=True)
class ReceiptFormat:
    decimal_separator: DecimalSeparator
    date_order: DateOrder
    is_columnar: bool


@dataclass
class ReceiptSections:
    header: list[str] = field(default_factory=list)
    items: list[str] = field(default_factory=list)
    totals: list[str] = field(default_factory=list)
    footer: list[str] = field(default_factory=list)


def _is_columnar(lines: Sequence[str], decimal_separator: DecimalSeparator) -> bool:
    sep = re.escape(decimal_separator)
    price_only = re.compile(rf"^\d+{sep}\s*\d{{2}}\s*[A-Za-z]{{0,3}}$")
    has_price = re.compile(rf"\d+{sep}\d{{2}}")

    price_only_lines = 0
    text_with_price_lines = 0
    for line in lines:
        trimmed = line.strip()
        if price_only.match(trimmed):
            price_only_lines += 1
        elif has_price.search(trimmed) and len(trimmed) > 10:
            text_with_price_lines += 1
    return price_only_lines > COLUMNAR_MIN_PRICE_LINES and price_only_lines > text_with_price_lines


def detect_receipt_format(
    lines: Sequence[str],
    options: ParseOptions | None = None,
    preset: RegionalPreset | None = None,
) -> ReceiptFormat:
    """
    Work out decimal separator, date order and layout of a receipt.

    What the text itself shows always wins. Caller preferences, then the
    regional preset, only settle a tie.
    """
    options = options or ParseOptions()
    text = " ".join(lines)

    decimal_separator = (
        detect_decimal_separator(text)
        or options.preferred_decimal_separator
        or (preset.decimal_separator if preset else None)
        or "."
    )
    date_order = (
        detect_date_order(text)
        or options.preferred_date_format
        or (preset.date_format if preset else None)
        or "DMY"
    )
    return ReceiptFormat(
        decimal_separator=decimal_separator,
        date_order=date_order,
        is_columnar=_is_columnar(lines, decimal_separator),
    )


def extract_sections(lines: Sequence[str]) -> ReceiptSections:
    """
    Split a receipt into header, items, totals and footer.

    The header runs until the first price (at most eight lines), totals
    start at the first totals keyword and the footer only begins after it.
    """
    sections = ReceiptSections()
    current = sections.header
    found_first_price = False
    found_totals = False
    header_count = 0

    for line in lines:
        lowered = line.lower()
        has_price = PRICE_PATTERN.search(line) is not None
        is_total_line = is_total_section_line(line)

        if not found_first_price and not is_total_line:
            header_count += 1
            if has_price or header_count > MAX_HEADER_LINES:
                found_first_price = True
                current = sections.items
                if has_price:
                    current.append(line)
                    continue
            else:
                sections.header.append(line)
                continue

        if is_total_line and not found_totals:
            found_totals = True
            current = sections.totals

        if found_totals and _FOOTER_PATTERN.search(lowered):
            current = sections.footer

        current.append(line)

    return sections


def _extract_items(lines: Sequence[str], sections: ReceiptSections, receipt_format: ReceiptFormat) -> list[ParsedItem]:
    items: list[ParsedItem] = []
    if receipt_format.is_columnar:
        items = parse_columnar_items(lines)
    if not items:
        items = parse_inline_items(sections.items or lines)
    if not items:
        items = parse_inline_items(lines)
    if not items and not receipt_format.is_columnar:
        items = parse_columnar_items(lines)
    return items


def _extract_all_totals(
    lines: Sequence[str],
    sections: ReceiptSections,
    preset: RegionalPreset | None,
    decimal_separator: DecimalSeparator,
) -> ExtractedTotals:
    keywords = TotalsKeywords.from_preset(preset) if preset else GENERIC_TOTALS_KEYWORDS
    totals = extract_totals(sections.totals or lines, keywords, decimal_separator=decimal_separator)
    if totals.total is None:
        totals = totals.merged_with(extract_totals(lines, keywords, decimal_separator=decimal_separator))
    if totals.total is None and preset is None:
        fallback = largest_standalone_price(lines, STANDALONE_TOTAL_MINIMUM, decimal_separator)
        totals = totals.merged_with(ExtractedTotals(total=fallback))
    return totals


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def score_generic_receipt(receipt: ParsedReceipt, now: datetime) -> int:
    """
    Quality-based confidence for a generic parse.

    Each field earns points for looking right rather than for merely being
    present; the result is blended 70/30 with the mean item confidence.
    """
    confidence = 30

    if receipt.store_name:
        name = receipt.store_name
        good_name = bool(_HAS_LETTERS.search(name)) and 3 <= len(name) <= 50 and not name.isdigit()
        confidence += 10 if good_name else 3
    if receipt.store_address:
        confidence += 5

    if receipt.date is not None:
        confidence += 10 if is_recent_date(receipt.date, now) else 3
    if receipt.time:
        confidence += 3

    items = receipt.items
    if items:
        confidence += 10
        reasonable_prices = sum(1 for item in items if Decimal("0.10") <= item.total_price <= Decimal("500"))
        confidence += _round_half_up(reasonable_prices / len(items) * 10)
        valid_names = sum(1 for item in items if _HAS_LETTERS.search(item.name) and 2 <= len(item.name) <= 60)
        confidence += _round_half_up(valid_names / len(items) * 10)
        if len(items) >= 3:
            confidence += 3
        if len(items) >= 5:
            confidence += 2

    if receipt.total is not None:
        confidence += 5
        if items:
            difference = abs(receipt.items_sum - receipt.total)
            if difference <= receipt.total * Decimal("0.2"):
                confidence += 10
            elif difference <= receipt.total * Decimal("0.5"):
                confidence += 3

    if receipt.subtotal is not None or receipt.tax is not None:
        confidence += 3

    if items:
        average_item = sum(item.confidence for item in items) / len(items)
        confidence = _round_half_up(confidence * 0.7 + average_item * 0.3)

    return min(confidence, 100)


def parse_generic(
    lines: Sequence[str],
    reference: ReferenceData,
    options: ParseOptions | None = None,
    detection: ChainDetection = NO_DETECTION,
) -> ParsedReceipt:
    """
    Parse normalized lines without a chain template.

    Args:
        lines: Normalized OCR lines.
        reference: Preset and tax-region registries.
        options: Caller hints; ``options.now`` anchors the date plausibility check.
        detection: A sub-threshold chain detection to report on the result.
    """
    options = options or ParseOptions()
    preset = reference.presets.get(options.preset_id) if options.preset_id else reference.preset
    raw_text = "\n".join(lines)

    receipt_format = detect_receipt_format(lines, options, preset)
    sections = extract_sections(lines)
    header = sections.header or list(lines[:10])

    store_name = extract_store_name_with_preset(header, preset) or extract_store_name_with_preset(lines, preset)
    found_date, time = find_date_and_time(header, hint=receipt_format.date_order)
    if found_date is None or time is None:
        all_date, all_time = find_date_and_time(lines, hint=receipt_format.date_order)
        found_date = found_date or all_date
        time = time or all_time

    items = _extract_items(lines, sections, receipt_format)
    totals = _extract_all_totals(lines, sections, preset, receipt_format.decimal_separator)
    region = detect_tax_region(raw_text, reference.tax_regions, store_name=store_name)

    receipt = ParsedReceipt(
        store_name=store_name,
        store_address=extract_store_address(header),
        date=found_date.value if found_date else None,
        time=time,
        date_string=found_date.text if found_date else None,
        items=tuple(items),
        subtotal=totals.subtotal,
        tax=totals.tax,
        discount=totals.discount,
        total=totals.total,
        payment_method=extract_payment_method(raw_text),
        raw_text=raw_text,
        chain_id=detection.chain_id,
        chain_name=detection.chain.name if detection.chain else None,
        chain_confidence=detection.confidence,
        detection_method=detection.method,
        parsing_method="generic",
        tax_region=region.region.region_id,
        tax_type=region.region.tax_type.value,
    )
    confidence = score_generic_receipt(receipt, options.now or datetime.now())

    logger.debug(
        "Generic parse (decimal %r, dates %s, columnar %s): %d items, total %s, confidence %d",
        receipt_format.decimal_separator,
        receipt_format.date_order,
        receipt_format.is_columnar,
        len(items),
        totals.total,
        confidence,
    )
    return replace(receipt, confidence=confidence)
