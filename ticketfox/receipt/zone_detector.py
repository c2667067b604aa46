"""Geometric zone detection from OCR block positions.

Zones are inferred from where text sits on the page, using keyword lists
only to classify lines. No chain template or learned layout is needed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal

from ticketfox.domain.layout import NormalizedBoundingBox, ZoneDefinition, ZoneType
from ticketfox.domain.receipt import ImageDimensions, OcrBlock
from ticketfox.receipt.ocr_helpers import block_extent
from ticketfox.receipt.ocr_parser.common import has_min_letters
from ticketfox.receipt.prices import contains_price, extract_price_value
from ticketfox.receipt.regional_presets import (
    KeywordCategory,
    PresetRegistry,
    RegionalPreset,
    detect_region_from_text,
)
from ticketfox.receipt.text_normalizer import contains_keyword

logger = logging.getLogger(__name__)

TOTAL_KEYWORDS = (
    "total",
    "subtotal",
    "tax",
    "iva",
    "vat",
    "sum",
    "amount",
    "balance",
    "due",
    "suma",
    "importe",
    "gesamt",
    "somme",
    "montant",
)

SKIP_KEYWORDS = (
    "receipt",
    "ticket",
    "recibo",
    "factura",
    "phone",
    "tel",
    "telefono",
    "teléfono",
    "address",
    "direccion",
    "dirección",
    "cashier",
    "cajero",
    "terminal",
    "register",
    "caja",
    "member",
    "socio",
    "client",
    "cliente",
    "welcome",
    "bienvenido",
    "thank",
    "gracias",
    "documento",
    "fecha",
    "hora",
    "date",
    "time",
    "change",
    "cambio",
    "vuelto",
    "paid",
    "pago",
    "payment",
    "efectivo",
    "tarjeta",
    "card",
    "cash",
    "credit",
    "debit",
    "credito",
    "crédito",
    "debito",
    "débito",
    # Company and legal info
    "c.i.f",
    "cif",
    "n.i.f",
    "nif",
    "s.l.",
    "s.a.",
    "supermercados",
    "hipermercados",
    "www.",
    "http",
    "https",
    "@",
    "email",
    "correo",
)

HEADER_KEYWORDS = (
    "supermercados",
    "hipermercados",
    "s.l.",
    "s.a.",
    "sociedad",
    "empresa",
    "tienda",
    "sucursal",
    "centro",
    "comercial",
    "avda",
    "avenida",
    "calle",
    "c/",
    "plaza",
    "polígono",
    "codigo postal",
    "c.p.",
)

DIMENSION_MARGIN = 1.05
DEFAULT_ZONE_PADDING = 0.02
DEFAULT_HEADER_END_Y = 0.15
DEFAULT_TOTALS_START_Y = 0.85
# A total keyword and its price may be split over blocks this far apart
TOTAL_PRICE_WINDOW = (-0.02, 0.1)
NON_STANDALONE_PENALTY = 0.05
STORE_SEARCH_BLOCKS = 5
STORE_HEURISTIC_BLOCKS = 3

_DATE_PATTERNS = (
    re.compile(r"\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}"),
    re.compile(r"\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}"),
    re.compile(r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)", re.IGNORECASE),
)
_STANDALONE_PRICE = re.compile(r"^\$?€?[\d.,\s]+$")
_NUMERIC_ONLY = re.compile(r"^[\d\s\-/.:]+$")
_INLINE_PRICE = re.compile(r"[^\W\d_].+\s+\d+[.,]\d{2}")


@dataclass(frozen=True)
class _NormalizedLine:
    text: str
    y: float
    height: float


@dataclass(frozen=True)
class _NormalizedBlock:
    text: str
    box: NormalizedBoundingBox
    lines: tuple[_NormalizedLine, ...]


@dataclass(frozen=True)
class ZoneDetectionDebug:
    store_name_found: bool = False
    date_found: bool = False
    products_found: int = 0
    prices_found: int = 0
    total_found: bool = False


@dataclass(frozen=True)
class AutoDetectedZones:
    zones: tuple[ZoneDefinition, ...]
    confidence: int
    # Read straight from the OCR text so a badly placed zone cannot lose it
    detected_total: Decimal | None = None
    debug: ZoneDetectionDebug = field(default_factory=ZoneDetectionDebug)

    def zones_of(self, zone_type: ZoneType) -> tuple[ZoneDefinition, ...]:
        return tuple(zone for zone in self.zones if zone.type is zone_type)


def contains_date(text: str) -> bool:
    return any(pattern.search(text) for pattern in _DATE_PATTERNS)


def is_total_line(text: str) -> bool:
    return contains_keyword(text, TOTAL_KEYWORDS)


def should_skip_line(text: str) -> bool:
    return contains_keyword(text, SKIP_KEYWORDS) or is_total_line(text)


def is_header_line(text: str) -> bool:
    return contains_keyword(text, HEADER_KEYWORDS)


def is_standalone_price_text(text: str) -> bool:
    """Digits, separators and at most a currency sign, containing a price."""
    cleaned = text.strip()
    return _STANDALONE_PRICE.match(cleaned) is not None and contains_price(cleaned)


def is_product_name(text: str) -> bool:
    cleaned = text.strip()
    if len(cleaned) < 3 or is_standalone_price_text(cleaned) or should_skip_line(cleaned):
        return False
    if _NUMERIC_ONLY.match(cleaned):
        return False
    return has_min_letters(cleaned, 2)


def is_item_line(text: str) -> bool:
    """A product name and its price on one line."""
    cleaned = text.strip()
    if len(cleaned) < 5:
        return False
    if should_skip_line(cleaned) or is_header_line(cleaned):
        return False
    if not contains_price(cleaned) or is_standalone_price_text(cleaned):
        return False
    return has_min_letters(cleaned, 2)


def merge_bounding_boxes(boxes: Sequence[NormalizedBoundingBox]) -> NormalizedBoundingBox:
    if not boxes:
        return NormalizedBoundingBox(0.0, 0.0, 0.0, 0.0)
    min_x = min(box.x for box in boxes)
    min_y = min(box.y for box in boxes)
    max_x = max(box.right for box in boxes)
    max_y = max(box.bottom for box in boxes)
    return NormalizedBoundingBox(min_x, min_y, max_x - min_x, max_y - min_y)


def _normalize_blocks(blocks: Sequence[OcrBlock], dimensions: ImageDimensions) -> list[_NormalizedBlock]:
    max_x, max_y = block_extent(blocks)
    width = max(dimensions.width, max_x * DIMENSION_MARGIN) or 1.0
    height = max(dimensions.height, max_y * DIMENSION_MARGIN) or 1.0

    normalized: list[_NormalizedBlock] = []
    for block in blocks:
        box = block.bounding_box
        lines = tuple(
            _NormalizedLine(
                text=line.text,
                y=line.bounding_box.top / height,
                height=line.bounding_box.height / height,
            )
            for line in block.lines
        )
        normalized.append(
            _NormalizedBlock(
                text=" ".join(line.text for line in block.lines) if block.lines else block.text,
                box=NormalizedBoundingBox(box.left / width, box.top / height, box.width / width, box.height / height),
                lines=lines or (_NormalizedLine(block.text, box.top / height, box.height / height),),
            )
        )
    return normalized


class _ZoneFactory:
    """Numbers zones per type so ids are stable across runs."""

    def __init__(self) -> None:
        self._counts: dict[ZoneType, int] = {}

    def create(
        self, zone_type: ZoneType, box: NormalizedBoundingBox, padding: float = DEFAULT_ZONE_PADDING
    ) -> ZoneDefinition:
        count = self._counts.get(zone_type, 0) + 1
        self._counts[zone_type] = count
        return ZoneDefinition(
            id=f"auto-{zone_type.value}-{count}",
            type=zone_type,
            bounding_box=box.padded(padding),
            is_required=zone_type in (ZoneType.PRODUCT_NAMES, ZoneType.PRICES),
        )


def _find_known_store(text: str, preset: RegionalPreset | None) -> str | None:
    if preset is None:
        return None
    upper = text.upper()
    for store in preset.common_stores:
        if store in upper:
            return store
    return None


def _find_store_block(blocks: Sequence[_NormalizedBlock], preset: RegionalPreset | None) -> _NormalizedBlock | None:
    for block in blocks[:STORE_SEARCH_BLOCKS]:
        if _find_known_store(block.text.strip(), preset):
            return block
    for block in blocks[:STORE_HEURISTIC_BLOCKS]:
        text = block.text.strip()
        if 3 <= len(text) <= 60 and has_min_letters(text, 2) and not contains_date(text) and not should_skip_line(text):
            return block
    return None


def _find_total_zone(
    blocks: Sequence[_NormalizedBlock], keywords: Sequence[str], factory: _ZoneFactory
) -> tuple[ZoneDefinition, Decimal | None] | None:
    for block in reversed(blocks):
        if contains_keyword(block.text, keywords) and "sub" not in block.text.lower() and contains_price(block.text):
            return factory.create(ZoneType.TOTAL, block.box, 0.03), extract_price_value(block.text)

    keyword_block: _NormalizedBlock | None = None
    for block in reversed(blocks):
        lowered = block.text.lower()
        is_subtotal = "sub" in lowered or "parcial" in lowered
        if contains_keyword(block.text, keywords) and not is_subtotal and block.box.y > 0.5:
            keyword_block = block
            break
    if keyword_block is None:
        return None

    low, high = TOTAL_PRICE_WINDOW
    price_block: _NormalizedBlock | None = None
    smallest = float("inf")
    for block in blocks:
        distance = block.box.y - keyword_block.box.y
        if not (low <= distance < high) or not contains_price(block.text):
            continue
        effective = distance if is_standalone_price_text(block.text) else distance + NON_STANDALONE_PENALTY
        if effective < smallest:
            smallest = effective
            price_block = block
    if price_block is None:
        return None

    merged = merge_bounding_boxes([keyword_block.box, price_block.box])
    top = max(0.0, merged.y - 0.02)
    # Extra height so the zone still covers the price after aspect rescaling
    extended = NormalizedBoundingBox(merged.x, top, merged.width, min(1.0 - top, merged.height + 0.06))
    return factory.create(ZoneType.TOTAL, extended, 0.02), extract_price_value(price_block.text)


def _totals_start_y(blocks: Sequence[_NormalizedBlock], keywords: Sequence[str]) -> float:
    totals_start = DEFAULT_TOTALS_START_Y
    for block in blocks:
        # "TOTAL ARTICULOS: 5" near the header is not the totals section
        if block.box.y < 0.4:
            continue
        if "articul" in block.text.lower() or not contains_price(block.text):
            continue
        if contains_keyword(block.text, keywords):
            totals_start = min(totals_start, block.box.y - 0.02)
    return totals_start


def _items_y_range(blocks: Sequence[_NormalizedBlock], totals_start: float) -> tuple[float, float] | None:
    ys = sorted(
        line.y for block in blocks for line in block.lines if line.y < totals_start and is_item_line(line.text)
    )
    if not ys:
        return None
    return ys[0], ys[-1]


def _line_box(block: _NormalizedBlock, line: _NormalizedLine) -> NormalizedBoundingBox:
    return NormalizedBoundingBox(block.box.x, line.y, block.box.width, line.height)


def _mean_center_x(boxes: Sequence[NormalizedBoundingBox]) -> float:
    return sum(box.center_x for box in boxes) / len(boxes)


def _item_zones(
    blocks: Sequence[_NormalizedBlock],
    totals_start: float,
    header_end: float,
    factory: _ZoneFactory,
) -> tuple[list[ZoneDefinition], int, int]:
    items_range = _items_y_range(blocks, totals_start)
    product_boxes: list[NormalizedBoundingBox] = []
    price_boxes: list[NormalizedBoundingBox] = []
    inline_count = 0

    for block in blocks:
        if block.box.y > totals_start:
            continue
        for line in block.lines:
            if line.y < header_end:
                continue
            if is_item_line(line.text):
                inline_count += 1
                product_boxes.append(_line_box(block, line))
            elif is_standalone_price_text(line.text):
                price_boxes.append(_line_box(block, line))
            elif is_product_name(line.text) and not is_header_line(line.text):
                product_boxes.append(_line_box(block, line))

    zones: list[ZoneDefinition] = []
    likely_columnar = len(product_boxes) >= 5 and len(price_boxes) >= len(product_boxes) * 0.5
    if likely_columnar and len(product_boxes) > inline_count * 3:
        logger.debug("Columnar items: %d product lines vs %d inline", len(product_boxes), inline_count)
    elif items_range is not None and inline_count >= 2:
        start, end = items_range
        box = NormalizedBoundingBox(0.02, start, 0.96, end - start + 0.03)
        zones.append(factory.create(ZoneType.PRODUCT_NAMES, box))

    if not zones and product_boxes:
        products = merge_bounding_boxes(product_boxes)
        if price_boxes and len(price_boxes) >= len(product_boxes) * 0.5:
            price_x = _mean_center_x(price_boxes)
            if price_x > _mean_center_x(product_boxes):
                width = max(0.0, min(products.width, price_x - products.x - 0.02))
                zones.append(factory.create(ZoneType.PRODUCT_NAMES, replace(products, width=width)))
                zones.append(factory.create(ZoneType.PRICES, merge_bounding_boxes(price_boxes)))
            else:
                zones.append(factory.create(ZoneType.PRODUCT_NAMES, products))
        else:
            zones.append(factory.create(ZoneType.PRODUCT_NAMES, merge_bounding_boxes(product_boxes + price_boxes)))
    elif not zones:
        box = NormalizedBoundingBox(0.02, header_end, 0.96, max(0.0, totals_start - header_end - 0.02))
        zones.append(factory.create(ZoneType.PRODUCT_NAMES, box))

    return zones, len(product_boxes), len(price_boxes)


def detect_zones(
    blocks: Sequence[OcrBlock],
    dimensions: ImageDimensions,
    presets: PresetRegistry,
) -> AutoDetectedZones:
    """
    Infer store name, date, items and total zones from block geometry.

    Blocks are normalized against the larger of the given dimensions and
    their own extent, then read top to bottom. Confidence is a weighted sum
    of which detections succeeded, capped at 100.
    """
    if not blocks:
        return AutoDetectedZones(zones=(), confidence=0)

    normalized = sorted(_normalize_blocks(blocks, dimensions), key=lambda block: block.box.y)
    preset = detect_region_from_text("\n".join(block.text for block in normalized), presets)
    total_keywords = (preset.keywords_for(KeywordCategory.TOTAL) if preset else ()) or TOTAL_KEYWORDS
    factory = _ZoneFactory()
    zones: list[ZoneDefinition] = []

    store_block = _find_store_block(normalized, preset)
    if store_block is not None:
        zones.append(factory.create(ZoneType.STORE_NAME, store_block.box, 0.01))

    date_block = next((block for block in normalized if contains_date(block.text)), None)
    if date_block is not None:
        zones.append(factory.create(ZoneType.DATE, date_block.box, 0.01))

    detected_total: Decimal | None = None
    total = _find_total_zone(normalized, total_keywords, factory)
    if total is not None:
        zones.append(total[0])
        detected_total = total[1]

    item_zones, products_found, prices_found = _item_zones(
        normalized, _totals_start_y(normalized, total_keywords), DEFAULT_HEADER_END_Y, factory
    )
    zones.extend(item_zones)

    debug = ZoneDetectionDebug(
        store_name_found=store_block is not None,
        date_found=date_block is not None,
        products_found=products_found,
        prices_found=prices_found,
        total_found=total is not None,
    )
    confidence = 30
    confidence += 15 if debug.store_name_found else 0
    confidence += 10 if debug.date_found else 0
    confidence += 20 if debug.products_found else 0
    confidence += 15 if debug.prices_found else 0
    confidence += 10 if debug.total_found else 0

    logger.debug(
        "Detected %d zones (confidence %d, total %s, %d product lines, %d price lines)",
        len(zones),
        min(confidence, 100),
        detected_total,
        products_found,
        prices_found,
    )
    return AutoDetectedZones(
        zones=tuple(zones),
        confidence=min(confidence, 100),
        detected_total=detected_total,
        debug=debug,
    )


def refine_zones(zones: Sequence[ZoneDefinition], parsed_item_count: int) -> tuple[ZoneDefinition, ...]:
    """Widen product zones after a parse that found no items."""
    if parsed_item_count > 0:
        return tuple(zones)

    refined: list[ZoneDefinition] = []
    for zone in zones:
        if zone.type is not ZoneType.PRODUCT_NAMES:
            refined.append(zone)
            continue
        box = zone.bounding_box
        x = max(0.0, box.x - 0.05)
        y = max(0.0, box.y - 0.02)
        widened = NormalizedBoundingBox(
            x=x,
            y=y,
            width=min(1.0 - x, box.width + 0.1),
            height=min(1.0 - y, box.height + 0.04),
        )
        refined.append(replace(zone, bounding_box=widened))
    return tuple(refined)
