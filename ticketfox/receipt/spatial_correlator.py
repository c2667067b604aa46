"""Correlate product text with prices by position on the page."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation

from ticketfox.domain.receipt import ImageDimensions, OcrBlock, OcrLine, ParsedItem, ParsedReceipt
from ticketfox.receipt.ocr_helpers import infer_image_dimensions
from ticketfox.receipt.ocr_parser.common import extract_quantity_and_unit, is_valid_item_name
from ticketfox.receipt.prices import MAX_ITEM_PRICE, ZERO, to_money
from ticketfox.receipt.regional_presets import RegionalPreset
from ticketfox.receipt.text_normalizer import contains_keyword

logger = logging.getLogger(__name__)

ROW_TOLERANCE = 0.02
SAME_ROW_SORT_TOLERANCE = 0.01
COLUMNAR_MIN_PRICES = 3
COLUMNAR_MAX_STD_DEV = 0.1
PRICE_COLUMN_WIDTH = 0.15
MAX_COLUMN_MATCH_DISTANCE = 0.03
ITEM_COUNT_AGREEMENT = 2
AGREEMENT_BONUS = 10

PRICE_TOKEN_PATTERNS = (
    re.compile(r"(\d+)[,\s]\s*(\d{2})(?:\s*€)?$"),
    re.compile(r"(\d+)\.(\d{2})(?:\s*\$)?$"),
    re.compile(r"[$€]\s*(\d+)[.,](\d{2})"),
    re.compile(r"(\d+)[.,](\d{2})\s*[$€]"),
    re.compile(r"(\d+)[.,](\d{2})$"),
)
ITEM_ZONE_END_KEYWORDS = ("total", "subtotal", "importe", "suma", "iva", "tax", "cambio", "efectivo", "tarjeta")
ROW_TOTAL_KEYWORDS = ("total", "subtotal", "importe", "suma", "iva", "tax")

_ITEM_ZONE_END = re.compile(rf"\b(?:{'|'.join(ITEM_ZONE_END_KEYWORDS)})\b", re.IGNORECASE)
# Whole words only: "ACEITE OLIVA" is an item, not a tax row
_ROW_TOTAL = re.compile(rf"\b(?:{'|'.join(ROW_TOTAL_KEYWORDS)})\b", re.IGNORECASE)

_NUMERIC_ONLY = re.compile(r"^[\d\-/.:]+$")
_KEYWORD_START = re.compile(r"^(total|subtotal|iva|tax|fecha|hora|date|time)", re.IGNORECASE)
_EDGE_PUNCTUATION = re.compile(r"^[\-*.]+|[\-*.]+$")
_UNCLEAN_NAME = re.compile(r"[^a-zA-Z0-9\s\-áéíóúñü]")


@dataclass(frozen=True)
class OcrElement:
    """One OCR line with its position as fractions of the image."""

    text: str
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class LineCluster:
    y: float
    elements: tuple[OcrElement, ...]
    text: str
    price: Decimal | None = None
    price_text: str | None = None
    product_text: str | None = None


@dataclass(frozen=True)
class LayoutAnalysis:
    is_columnar: bool
    price_column_x: float | None
    average_line_height: float
    item_zone: tuple[float, float] | None


@dataclass(frozen=True)
class SpatialParseResult:
    items: tuple[ParsedItem, ...]
    layout: LayoutAnalysis
    clusters: tuple[LineCluster, ...]


def _price_match(text: str) -> tuple[Decimal, int] | None:
    """Value and start offset of the price token in ``text``."""
    for pattern in PRICE_TOKEN_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        try:
            value = Decimal(f"{match.group(1)}.{match.group(2)}")
        except InvalidOperation:
            continue
        if ZERO < value < MAX_ITEM_PRICE:
            return to_money(value), match.start()
    return None


def _price_token(text: str) -> Decimal | None:
    found = _price_match(text)
    return found[0] if found else None


def _is_price_shaped(text: str) -> bool:
    return any(pattern.search(text) for pattern in PRICE_TOKEN_PATTERNS)


def _is_standalone_price(text: str) -> bool:
    found = _price_match(text)
    return found is not None and not text[: found[1]].strip()


def extract_elements(blocks: Sequence[OcrBlock], dimensions: ImageDimensions) -> list[OcrElement]:
    """Flatten block lines into elements in reading order."""
    width = dimensions.width or 1
    height = dimensions.height or 1
    elements = [
        OcrElement(
            text=line.text.strip(),
            x=line.bounding_box.left / width,
            y=line.bounding_box.top / height,
            width=line.bounding_box.width / width,
            height=line.bounding_box.height / height,
        )
        for block in blocks
        for line in block.lines or (OcrLine(block.text, block.bounding_box),)
    ]
    # Elements within 1% vertically read left to right
    elements.sort(key=lambda element: (round(element.y / SAME_ROW_SORT_TOLERANCE), element.x))
    return elements


def _make_cluster(elements: Sequence[OcrElement]) -> LineCluster:
    ordered = sorted(elements, key=lambda element: element.x)
    y = sum(element.y for element in ordered) / len(ordered)
    text = " ".join(element.text for element in ordered)

    for index in range(len(ordered) - 1, -1, -1):
        element_text = ordered[index].text.strip()
        found = _price_match(element_text)
        if found is None:
            continue
        price, start = found
        # Text sharing the price's OCR line belongs to the product
        parts = [element.text for element in ordered[:index]]
        parts.append(element_text[:start].strip())
        product = " ".join(part for part in parts if part) or None
        return LineCluster(
            y=y,
            elements=tuple(ordered),
            text=text,
            price=price,
            price_text=element_text[start:].strip(),
            product_text=product,
        )
    return LineCluster(y=y, elements=tuple(ordered), text=text, product_text=text)


def cluster_by_line(elements: Sequence[OcrElement], tolerance: float = ROW_TOLERANCE) -> list[LineCluster]:
    """
    Group elements into visual rows.

    An element joins the current row while its Y stays within ``tolerance``
    of the row's running average.
    """
    if not elements:
        return []

    clusters: list[LineCluster] = []
    current: list[OcrElement] = [elements[0]]
    for element in elements[1:]:
        average_y = sum(item.y for item in current) / len(current)
        if abs(element.y - average_y) <= tolerance:
            current.append(element)
        else:
            clusters.append(_make_cluster(current))
            current = [element]
    clusters.append(_make_cluster(current))
    return clusters


def _detect_item_zone(elements: Sequence[OcrElement]) -> tuple[float, float] | None:
    if len(elements) < 5:
        return None

    start = 0.15
    for element in elements:
        if _is_price_shaped(element.text):
            start = max(0.05, element.y - 0.02)
            break

    end = 0.85
    for element in elements:
        if _ITEM_ZONE_END.search(element.text):
            end = element.y
            break
    return start, end


def analyze_layout(elements: Sequence[OcrElement]) -> LayoutAnalysis:
    """Columnar when at least three standalone prices line up within 10% of the width."""
    price_xs = [element.x for element in elements if _is_standalone_price(element.text.strip())]

    heights = [element.height for element in elements if element.height > 0]
    average_height = sum(heights) / len(heights) if len(elements) > 1 and heights else 0.03

    is_columnar = False
    price_column_x: float | None = None
    if len(price_xs) >= COLUMNAR_MIN_PRICES:
        mean = sum(price_xs) / len(price_xs)
        std_dev = math.sqrt(sum((x - mean) ** 2 for x in price_xs) / len(price_xs))
        if std_dev < COLUMNAR_MAX_STD_DEV:
            is_columnar = True
            price_column_x = mean

    return LayoutAnalysis(
        is_columnar=is_columnar,
        price_column_x=price_column_x,
        average_line_height=average_height,
        item_zone=_detect_item_zone(elements),
    )


def _is_continuation_text(text: str) -> bool:
    return 2 < len(text) < 40 and not _NUMERIC_ONLY.match(text) and not _KEYWORD_START.match(text)


def merge_multiline_items(clusters: Sequence[LineCluster]) -> list[LineCluster]:
    """Prepend priceless text rows to the next priced row; drop the rest."""
    merged: list[LineCluster] = []
    pending: list[str] = []

    for cluster in clusters:
        if cluster.price is not None:
            if pending:
                text = " ".join(part for part in (*pending, cluster.product_text) if part)
                merged.append(replace(cluster, product_text=text))
                pending = []
            else:
                merged.append(cluster)
        elif cluster.product_text:
            text = cluster.product_text.strip()
            if _is_continuation_text(text):
                pending.append(text)
    return merged


def item_from_cluster(cluster: LineCluster) -> ParsedItem | None:
    if not cluster.product_text or cluster.price is None:
        return None

    extracted = extract_quantity_and_unit(cluster.product_text.strip(), cluster.price)
    name = _EDGE_PUNCTUATION.sub("", re.sub(r"\s+", " ", extracted.name)).strip()
    if not is_valid_item_name(name):
        return None

    confidence = 60
    if len(name) > 5:
        confidence += 10
    if len(cluster.elements) >= 2:
        confidence += 5
    if not _UNCLEAN_NAME.search(name):
        confidence += 10
    if extracted.unit is not None:
        confidence += 5

    return ParsedItem(
        name=name,
        total_price=cluster.price,
        quantity=extracted.quantity,
        unit_price=extracted.unit_price,
        unit=extracted.unit,
        confidence=min(confidence, 95),
    )


def _skip_row(product_text: str, preset: RegionalPreset | None) -> bool:
    if preset is not None and contains_keyword(product_text, preset.skip_keywords):
        return True
    return _ROW_TOTAL.search(product_text) is not None


def extract_items_from_clusters(
    clusters: Sequence[LineCluster],
    layout: LayoutAnalysis,
    preset: RegionalPreset | None = None,
) -> list[ParsedItem]:
    if layout.item_zone is not None:
        start, end = layout.item_zone
        clusters = [cluster for cluster in clusters if start <= cluster.y <= end]

    items: list[ParsedItem] = []
    for cluster in clusters:
        if not cluster.product_text or len(cluster.product_text) < 2:
            continue
        if _skip_row(cluster.product_text, preset) or cluster.price is None:
            continue
        item = item_from_cluster(cluster)
        if item is not None:
            items.append(item)
    return items


def correlate_columnar_items(
    elements: Sequence[OcrElement],
    layout: LayoutAnalysis,
    preset: RegionalPreset | None = None,
) -> list[ParsedItem]:
    """
    Pair product rows with price rows from a separate price column.

    Elements near the price column are clustered apart from the text to
    their left, and each product row takes the price row nearest in Y.
    """
    if not layout.is_columnar or layout.price_column_x is None:
        return []

    column_x = layout.price_column_x
    price_elements = [
        element
        for element in elements
        if abs(element.x - column_x) < PRICE_COLUMN_WIDTH and _price_token(element.text) is not None
    ]
    product_elements = [element for element in elements if element.x < column_x and element not in price_elements]

    price_rows = [cluster for cluster in cluster_by_line(price_elements) if cluster.price is not None]
    items: list[ParsedItem] = []
    for product in cluster_by_line(product_elements):
        if not product.text or _skip_row(product.text, preset) or not price_rows:
            continue
        nearest = min(price_rows, key=lambda row: abs(row.y - product.y))
        if abs(nearest.y - product.y) >= MAX_COLUMN_MATCH_DISTANCE:
            continue
        combined = LineCluster(
            y=product.y,
            elements=product.elements + nearest.elements,
            text=f"{product.text} {nearest.text}",
            price=nearest.price,
            price_text=nearest.price_text,
            product_text=product.text,
        )
        item = item_from_cluster(combined)
        if item is not None:
            items.append(item)
    return items


def parse_items_spatially(
    blocks: Sequence[OcrBlock],
    dimensions: ImageDimensions,
    preset: RegionalPreset | None = None,
) -> SpatialParseResult:
    """
    Extract items from block geometry alone.

    Rows are read as "name ... price"; on a columnar receipt names and
    prices are matched across columns instead, falling back to rows when
    column matching finds nothing.
    """
    elements = extract_elements(blocks, dimensions)
    layout = analyze_layout(elements)
    rows = cluster_by_line(elements)
    if layout.item_zone is not None:
        # Header rows must not continue the first item
        start, end = layout.item_zone
        rows = [row for row in rows if start <= row.y <= end]
    clusters = merge_multiline_items(rows)

    items: list[ParsedItem] = []
    if layout.is_columnar:
        items = correlate_columnar_items(elements, layout, preset)
    if not items:
        items = extract_items_from_clusters(clusters, layout, preset)

    logger.debug(
        "Spatial parse: %d elements, %d rows, columnar %s, %d items",
        len(elements),
        len(clusters),
        layout.is_columnar,
        len(items),
    )
    return SpatialParseResult(items=tuple(items), layout=layout, clusters=tuple(clusters))


def _sum(items: Sequence[ParsedItem]) -> Decimal:
    return sum((item.total_price for item in items), ZERO)


def parse_with_spatial_correlation(
    blocks: Sequence[OcrBlock],
    dimensions: ImageDimensions | None,
    baseline: ParsedReceipt,
    preset: RegionalPreset | None = None,
) -> ParsedReceipt:
    """
    Let spatial correlation replace the text-parsed items when it does better.

    Spatial items win when they are more numerous (at least two) and sum at
    least as close to the detected total. A columnar layout lifts the count
    requirement but not the one on the total.
    Agreement between the two item counts earns a confidence bonus.
    """
    spatial = parse_items_spatially(blocks, infer_image_dimensions(blocks, dimensions), preset)
    text_items = baseline.items
    spatial_items = spatial.items

    reconciles = baseline.total is None or abs(_sum(spatial_items) - baseline.total) <= abs(
        _sum(text_items) - baseline.total
    )

    items = text_items
    if len(spatial_items) > len(text_items) and len(spatial_items) >= 2 and reconciles:
        items = spatial_items
    elif spatial.layout.is_columnar and spatial_items and reconciles:
        items = spatial_items

    confidence = baseline.confidence
    if spatial_items and text_items and abs(len(spatial_items) - len(text_items)) <= ITEM_COUNT_AGREEMENT:
        confidence = min(100, confidence + AGREEMENT_BONUS)

    logger.debug(
        "Spatial enhancement: %d text items, %d spatial items, kept %s",
        len(text_items),
        len(spatial_items),
        "spatial" if items is spatial_items and items is not text_items else "text",
    )
    return replace(baseline, items=tuple(items), confidence=confidence)
