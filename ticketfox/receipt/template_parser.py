"""Parse a receipt with a learned per-merchant zone template."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal

from ticketfox.domain.layout import NormalizedBoundingBox, StoreParsingTemplate, ZoneDefinition, ZoneType
from ticketfox.domain.receipt import (
    DateOrder,
    DecimalSeparator,
    ImageDimensions,
    OcrBlock,
    OcrLine,
    ParsedItem,
    ParsedReceipt,
)
from ticketfox.receipt.date_utils import parse_date, parse_time
from ticketfox.receipt.ocr_helpers import infer_image_dimensions, normalize_box
from ticketfox.receipt.ocr_parser.common import HEADER_PATTERNS
from ticketfox.receipt.ocr_parser.items_text_parser import parse_columnar_items, parse_inline_items
from ticketfox.receipt.prices import ZERO, detect_decimal_separator, parse_price
from ticketfox.receipt.regional_presets import PresetRegistry, detect_region_from_text

logger = logging.getLogger(__name__)

MIN_TEMPLATE_CONFIDENCE = 40
NEW_TEMPLATE_CONFIDENCE = 60
NEW_TEMPLATE_USES = 2
# Aspect ratios closer than this are used unscaled
ASPECT_TOLERANCE = 0.1
MIN_ASPECT_PADDING = 0.05
ZONE_OVERLAP_RATIO = 0.3
# Product lines pair with the nearest price line within this vertical distance
MAX_PRICE_DISTANCE = 0.1
CORRELATED_ITEM_CONFIDENCE = 80

_HEADER_LINE_PATTERNS = (
    re.compile(r"\bS\.?A\.?U?\.?\s*$", re.IGNORECASE),
    re.compile(r"\bS\.?L\.?\s*$", re.IGNORECASE),
    re.compile(r"\.(es|com)\s*$", re.IGNORECASE),
    re.compile(r"^(calle|avda\.?)\s", re.IGNORECASE),
    re.compile(r"^C/\s*[^\W\d_]", re.IGNORECASE),
    re.compile(r"^\d{5}[^\W\d_]"),
)
_TOTAL_WORD = re.compile(r"total|importe|suma", re.IGNORECASE)
_LETTER_BEFORE_PRICE = re.compile(r"[^\W\d_].*\d+[.,]\d{2}")


@dataclass(frozen=True)
class PlacedBlock:
    block: OcrBlock
    box: NormalizedBoundingBox


def should_use_template(template: StoreParsingTemplate | None) -> bool:
    """Trust a template only once it has a track record."""
    if template is None:
        return False
    if template.confidence < MIN_TEMPLATE_CONFIDENCE:
        return False
    if template.use_count < NEW_TEMPLATE_USES and template.confidence < NEW_TEMPLATE_CONFIDENCE:
        return False
    return True


def scale_zones_for_aspect_ratio(
    zones: Sequence[ZoneDefinition],
    template_dimensions: ImageDimensions | None,
    current_dimensions: ImageDimensions,
) -> tuple[ZoneDefinition, ...]:
    """
    Pad zones to absorb an aspect ratio change between images.

    This is an approximation, not a projective correction: every zone grows
    on all sides by half the relative ratio difference (at least 5%).
    """
    if template_dimensions is None or not template_dimensions.aspect_ratio or not current_dimensions.aspect_ratio:
        return tuple(zones)

    template_ratio = template_dimensions.aspect_ratio
    difference = abs(template_ratio - current_dimensions.aspect_ratio) / template_ratio
    if difference < ASPECT_TOLERANCE:
        return tuple(zones)

    padding = max(difference * 0.5, MIN_ASPECT_PADDING)
    logger.debug("Aspect ratio differs by %.2f, padding zones by %.3f", difference, padding)
    return tuple(replace(zone, bounding_box=zone.bounding_box.padded(padding)) for zone in zones)


def _overlaps(box: NormalizedBoundingBox, zone: NormalizedBoundingBox, min_ratio: float) -> bool:
    overlap_x = max(0.0, min(box.right, zone.right) - max(box.x, zone.x))
    overlap_y = max(0.0, min(box.bottom, zone.bottom) - max(box.y, zone.y))
    area = box.width * box.height
    return area > 0 and overlap_x * overlap_y / area >= min_ratio


def is_box_in_zone(box: NormalizedBoundingBox, zone: NormalizedBoundingBox) -> bool:
    """Overlap of 30%, a contained center, or any intersection counts."""
    if _overlaps(box, zone, ZONE_OVERLAP_RATIO):
        return True
    if zone.x <= box.center_x <= zone.right and zone.y <= box.center_y <= zone.bottom:
        return True
    return not (box.right < zone.x or box.x > zone.right or box.bottom < zone.y or box.y > zone.bottom)


def _blocks_in_zone(blocks: Sequence[PlacedBlock], zone: ZoneDefinition) -> list[PlacedBlock]:
    return [placed for placed in blocks if is_box_in_zone(placed.box, zone.bounding_box)]


def _lines_of(block: OcrBlock) -> tuple[OcrLine, ...]:
    return block.lines or (OcrLine(block.text, block.bounding_box),)


def zone_text(blocks: Sequence[PlacedBlock], zone: ZoneDefinition, height: float) -> list[str]:
    """Text of the zone's blocks, restricted to lines that reach into it."""
    zone_blocks = _blocks_in_zone(blocks, zone)
    top, bottom = zone.bounding_box.y, zone.bounding_box.bottom
    lines = [
        line.text.strip()
        for placed in zone_blocks
        for line in _lines_of(placed.block)
        if line.bounding_box.bottom / height >= top and line.bounding_box.top / height <= bottom
    ]
    if lines:
        return lines
    return [line.text.strip() for placed in zone_blocks for line in _lines_of(placed.block)]


def _first_price(lines: Sequence[str], decimal_separator: DecimalSeparator) -> Decimal | None:
    for line in lines:
        price = parse_price(line, decimal_separator)
        if price is not None:
            return price
    return None


def extract_total_price(lines: Sequence[str], decimal_separator: DecimalSeparator) -> Decimal | None:
    """
    Pick the total from a total zone.

    Standalone prices beat prices on keyword lines, and the larger amount
    wins within the same kind. Item lines that bled into the zone are
    ignored.
    """
    best: Decimal | None = None
    found_standalone = False
    standalone = re.compile(
        r"^\s*[€$]?\s*[\d.]+,\d{2}\s*[€$]?\s*$" if decimal_separator == "," else r"^\s*[€$]?\s*\d+\.?\d{2}\s*[€$]?\s*$"
    )

    for line in lines:
        trimmed = line.strip()
        is_standalone = standalone.match(trimmed) is not None
        if _LETTER_BEFORE_PRICE.search(trimmed) and not _TOTAL_WORD.search(trimmed) and not is_standalone:
            continue
        price = parse_price(trimmed, decimal_separator)
        if price is None or price <= ZERO:
            continue
        if is_standalone and not found_standalone:
            best, found_standalone = price, True
        elif (is_standalone or not found_standalone) and (best is None or price > best):
            best = price
    return best


def _is_header_line(text: str) -> bool:
    if any(pattern.search(text) for pattern in HEADER_PATTERNS):
        return True
    return any(pattern.search(text) for pattern in _HEADER_LINE_PATTERNS)


def correlate_zone_items(
    product_blocks: Sequence[PlacedBlock],
    price_blocks: Sequence[PlacedBlock],
    decimal_separator: DecimalSeparator,
    height: float,
) -> list[ParsedItem]:
    """Pair each product line with the nearest price line by vertical position."""
    products = [
        (line.text.strip(), line.bounding_box.top / height)
        for placed in product_blocks
        for line in _lines_of(placed.block)
        if not _is_header_line(line.text.strip())
    ]
    prices: list[tuple[Decimal, float]] = []
    for placed in price_blocks:
        for line in _lines_of(placed.block):
            price = parse_price(line.text.strip(), decimal_separator)
            if price is not None and price > ZERO:
                prices.append((price, line.bounding_box.top / height))

    items: list[ParsedItem] = []
    if not prices:
        return items
    for name, y in products:
        if len(name) < 2:
            continue
        price, price_y = min(prices, key=lambda candidate: abs(candidate[1] - y))
        if abs(price_y - y) < MAX_PRICE_DISTANCE:
            items.append(ParsedItem(name=name, total_price=price, confidence=CORRELATED_ITEM_CONFIDENCE))
    return items


def _zone_items(
    placed: Sequence[PlacedBlock],
    zones: Sequence[ZoneDefinition],
    current: Sequence[ParsedItem],
    decimal_separator: DecimalSeparator,
    height: float,
) -> list[ParsedItem]:
    product_zone = next((zone for zone in zones if zone.type is ZoneType.PRODUCT_NAMES), None)
    price_zone = next((zone for zone in zones if zone.type is ZoneType.PRICES), None)
    items = list(current)
    if product_zone is None:
        return items

    product_blocks = _blocks_in_zone(placed, product_zone)
    if price_zone is not None and product_blocks:
        # A learned price zone drifts with the photo; any price line may match
        correlated = correlate_zone_items(product_blocks, placed, decimal_separator, height)
        if correlated and (not items or len(correlated) >= len(items) * 0.5):
            items = correlated

    if not items or (price_zone is None and product_blocks):
        zone_lines = zone_text(placed, product_zone, height)
        zone_items = parse_inline_items(zone_lines) or parse_columnar_items(zone_lines)
        if len(zone_items) > len(items):
            items = zone_items
    return items


def _template_confidence(receipt: ParsedReceipt) -> int:
    confidence = 40
    if receipt.store_name:
        confidence += 10
    if receipt.date is not None:
        confidence += 10
    if receipt.items:
        confidence += 15
    if receipt.total is not None:
        confidence += 10
        if abs(receipt.items_sum - receipt.total) < Decimal("1"):
            confidence += 15
    return min(confidence, 100)


def parse_with_template(
    blocks: Sequence[OcrBlock],
    template: StoreParsingTemplate,
    baseline: ParsedReceipt,
    dimensions: ImageDimensions | None,
    presets: PresetRegistry,
) -> ParsedReceipt:
    """
    Override baseline fields with what the template's zones contain.

    Args:
        blocks: OCR blocks of the current image.
        template: Learned zones for the merchant.
        baseline: Generic parse of the same receipt; a field is replaced
            only when its zone yields a value.
        dimensions: Caller-measured image size, corrected from the blocks.
        presets: Used to guess the decimal separator and date order when
            the template carries no hints.
    """
    effective = infer_image_dimensions(blocks, dimensions)
    height = effective.height or 1
    placed = [PlacedBlock(block, normalize_box(block.bounding_box, effective)) for block in blocks]
    zones = scale_zones_for_aspect_ratio(template.zones, template.image_dimensions, effective)

    hints = template.parsing_hints
    preset = detect_region_from_text(baseline.raw_text, presets)
    decimal_separator: DecimalSeparator = (
        hints.decimal_separator
        or detect_decimal_separator(baseline.raw_text)
        or (preset.decimal_separator if preset else ".")
    )
    date_order: DateOrder = hints.date_format or (preset.date_format if preset else "DMY")

    store_name = baseline.store_name
    found_date, date_string, time = baseline.date, baseline.date_string, baseline.time
    subtotal, tax, total = baseline.subtotal, baseline.tax, baseline.total

    for zone in zones:
        lines = zone_text(placed, zone, height)
        if zone.type is ZoneType.STORE_NAME:
            if lines and lines[0]:
                store_name = lines[0]
        elif zone.type is ZoneType.DATE:
            for line in lines:
                match = parse_date(line, date_order)
                if match is not None:
                    found_date, date_string = match.value, match.text
                    break
            time = parse_time(" ".join(lines)) or time
        elif zone.type is ZoneType.TOTAL:
            zone_total = extract_total_price(lines, decimal_separator) or _first_price(lines, decimal_separator)
            total = zone_total if zone_total is not None else total
        elif zone.type is ZoneType.SUBTOTAL:
            subtotal = _first_price(lines, decimal_separator) or subtotal
        elif zone.type is ZoneType.TAX:
            tax = _first_price(lines, decimal_separator) or tax

    items = _zone_items(placed, zones, baseline.items, decimal_separator, height)
    receipt = replace(
        baseline,
        store_name=store_name,
        date=found_date,
        date_string=date_string,
        time=time,
        items=tuple(items),
        subtotal=subtotal,
        tax=tax,
        total=total,
        parsing_method="template",
        template_merchant_id=template.merchant_id,
    )
    receipt = replace(receipt, confidence=_template_confidence(receipt))
    logger.debug(
        "Template parse for %s: %d zones, %d items, total %s, confidence %d",
        template.merchant_id,
        len(zones),
        len(items),
        total,
        receipt.confidence,
    )
    return receipt
