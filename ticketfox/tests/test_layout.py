"""Tests for zone detection, spatial correlation, fingerprints and template parsing."""

from __future__ import annotations

from decimal import Decimal

import pytest

from ticketfox.domain import ParsedItem, ParsedReceipt
from ticketfox.domain.layout import (
    LayoutType,
    NormalizedBoundingBox,
    PricePosition,
    StoreFingerprint,
    StoreParsingTemplate,
    ZoneDefinition,
    ZoneType,
)
from ticketfox.domain.receipt import BoundingBox, ImageDimensions, OcrBlock, OcrLine
from ticketfox.receipt.spatial_correlator import (
    OcrElement,
    cluster_by_line,
    item_from_cluster,
    merge_multiline_items,
    parse_items_spatially,
    parse_with_spatial_correlation,
)
from ticketfox.receipt.store_fingerprint import (
    build_store_fingerprint,
    compare_fingerprints,
    create_pattern,
    match_fingerprint_to_templates,
)
from ticketfox.receipt.template_parser import (
    extract_total_price,
    parse_with_template,
    scale_zones_for_aspect_ratio,
    should_use_template,
)
from ticketfox.receipt.zone_detector import detect_zones, refine_zones


def _block(text: str, left: float, top: float, width: float = 300, height: float = 20) -> OcrBlock:
    box = BoundingBox(left, top, width, height)
    return OcrBlock(text=text, bounding_box=box, lines=(OcrLine(text, box),))


def _element(text: str, x: float, y: float) -> OcrElement:
    return OcrElement(text=text, x=x, y=y, width=0.2, height=0.02)


COLUMNAR_BLOCKS = [
    _block("PAN BARRA", 50, 200),
    _block("0,95", 800, 202, 80),
    _block("LECHE ENTERA", 50, 240),
    _block("1,05", 800, 241, 80),
    _block("ACEITE OLIVA", 50, 280),
    _block("5,95", 800, 280, 80),
    _block("TOTAL", 50, 400),
    _block("8,00", 800, 400, 80),
]

MERCADONA_FINGERPRINT = StoreFingerprint(
    layout_type=LayoutType.INLINE,
    price_position=PricePosition.RIGHT,
    header_patterns=("MERCADONA S.A.", "C/ <NUM>"),
    date_format="DMY",
    decimal_separator=",",
    currency_symbol="€",
    known_keywords=("MERCADONA", "IVA"),
)


def _template(confidence: int, use_count: int, **kwargs) -> StoreParsingTemplate:
    return StoreParsingTemplate(merchant_id="plaza", zones=(), confidence=confidence, use_count=use_count, **kwargs)


def test_zones_are_found_from_geometry(reference, fruteria_blocks) -> None:
    blocks, dimensions = fruteria_blocks

    detected = detect_zones(blocks, dimensions, reference.presets)

    assert [zone.type for zone in detected.zones] == [
        ZoneType.STORE_NAME,
        ZoneType.DATE,
        ZoneType.TOTAL,
        ZoneType.PRODUCT_NAMES,
    ]
    assert [zone.id for zone in detected.zones] == [
        "auto-store_name-1",
        "auto-date-1",
        "auto-total-1",
        "auto-product_names-1",
    ]
    assert detected.detected_total == Decimal("8.00")
    assert detected.debug.products_found == 3
    assert detected.debug.prices_found == 0
    assert detected.confidence == 85

    products = detected.zones_of(ZoneType.PRODUCT_NAMES)[0]
    assert products.is_required
    assert products.bounding_box.y == pytest.approx(0.18)
    assert products.bounding_box.height == pytest.approx(0.13)


def test_zone_detection_is_deterministic(reference, fruteria_blocks) -> None:
    blocks, dimensions = fruteria_blocks

    assert detect_zones(blocks, dimensions, reference.presets) == detect_zones(blocks, dimensions, reference.presets)


def test_no_blocks_means_no_zones(reference) -> None:
    detected = detect_zones([], ImageDimensions(1000, 2000), reference.presets)

    assert detected.zones == ()
    assert detected.confidence == 0


def test_product_zones_widen_only_after_an_empty_parse(reference, fruteria_blocks) -> None:
    blocks, dimensions = fruteria_blocks
    zones = detect_zones(blocks, dimensions, reference.presets).zones

    assert refine_zones(zones, 3) == zones

    refined = refine_zones(zones, 0)
    widened = next(zone for zone in refined if zone.type is ZoneType.PRODUCT_NAMES)
    assert widened.bounding_box.y == pytest.approx(0.16)
    assert widened.bounding_box.height == pytest.approx(0.17)
    assert [zone for zone in refined if zone.type is not ZoneType.PRODUCT_NAMES] == [
        zone for zone in zones if zone.type is not ZoneType.PRODUCT_NAMES
    ]


def test_elements_on_one_row_form_a_priced_cluster() -> None:
    clusters = cluster_by_line([_element("PAN", 0.05, 0.2), _element("0,95", 0.8, 0.205), _element("LECHE", 0.05, 0.3)])

    assert len(clusters) == 2
    assert clusters[0].product_text == "PAN"
    assert clusters[0].price == Decimal("0.95")
    assert clusters[1].price is None


def test_priceless_row_continues_the_next_item() -> None:
    clusters = cluster_by_line(
        [_element("ACEITE DE", 0.05, 0.2), _element("OLIVA VIRGEN", 0.05, 0.23), _element("5,95", 0.8, 0.23)]
    )

    merged = merge_multiline_items(clusters)

    assert len(merged) == 1
    item = item_from_cluster(merged[0])
    assert item is not None
    assert item.name == "ACEITE DE OLIVA VIRGEN"
    assert item.total_price == Decimal("5.95")


def test_columnar_layout_pairs_names_with_price_column() -> None:
    result = parse_items_spatially(COLUMNAR_BLOCKS, ImageDimensions(1000, 1000))

    assert result.layout.is_columnar
    assert result.layout.price_column_x == pytest.approx(0.8)
    assert [(item.name, item.total_price) for item in result.items] == [
        ("PAN BARRA", Decimal("0.95")),
        ("LECHE ENTERA", Decimal("1.05")),
        ("ACEITE OLIVA", Decimal("5.95")),
    ]


def test_spatial_items_replace_text_items_closer_to_total() -> None:
    baseline = ParsedReceipt(
        items=(ParsedItem(name="PAN BARRA", total_price=Decimal("0.95")),),
        total=Decimal("8.00"),
        confidence=50,
    )

    enhanced = parse_with_spatial_correlation(COLUMNAR_BLOCKS, ImageDimensions(1000, 1000), baseline)

    assert len(enhanced.items) == 3
    assert enhanced.items_sum == Decimal("7.95")
    assert enhanced.confidence == 60


def test_price_sharing_a_line_with_its_name_is_split_off(fruteria_blocks) -> None:
    blocks, dimensions = fruteria_blocks

    result = parse_items_spatially(blocks, dimensions)

    assert not result.layout.is_columnar
    assert [(item.name, item.total_price) for item in result.items] == [
        ("PAN BARRA", Decimal("0.95")),
        ("LECHE ENTERA", Decimal("1.05")),
        ("ACEITE OLIVA", Decimal("5.95")),
    ]
    assert result.clusters[0].product_text == "PAN BARRA"
    assert result.clusters[0].price_text == "0,95"


def test_columnar_items_must_reconcile_with_the_total() -> None:
    text_items = (
        ParsedItem(name="PAN BARRA", total_price=Decimal("0.95")),
        ParsedItem(name="LECHE ENTERA", total_price=Decimal("1.05")),
        ParsedItem(name="ACEITE OLIVA", total_price=Decimal("6.00")),
    )
    baseline = ParsedReceipt(items=text_items, total=Decimal("8.00"), confidence=50)

    enhanced = parse_with_spatial_correlation(COLUMNAR_BLOCKS, ImageDimensions(1000, 1000), baseline)

    assert enhanced.items == text_items
    assert enhanced.confidence == 60


def test_patterns_replace_identifying_numbers() -> None:
    assert create_pattern("FRUTERIA LA PLAZA 15/03/2024") == "FRUTERIA LA PLAZA <DATE>"
    assert create_pattern("NIF A46103834") == "NIF <TAXID>"
    assert create_pattern("TOTAL 12,50") == "TOTAL <PRICE>"
    assert create_pattern("1234") is None
    assert create_pattern("ab") is None


def test_fingerprint_summarizes_header_footer_and_formats(fruteria_blocks) -> None:
    blocks, dimensions = fruteria_blocks

    fingerprint = build_store_fingerprint(blocks, dimensions)

    assert fingerprint.header_patterns == ("FRUTERIA LA PLAZA", "<DATE> <TIME>")
    assert fingerprint.footer_patterns == ("TOTAL <PRICE>",)
    assert fingerprint.date_format == "DMY"
    assert fingerprint.date_position == "header"
    assert fingerprint.decimal_separator == ","
    assert fingerprint.line_count == 6
    assert fingerprint.confidence == 95


def test_fingerprint_comparison_weights() -> None:
    unrelated = StoreFingerprint(
        layout_type=LayoutType.COLUMNAR,
        price_position=PricePosition.LEFT,
        date_format="MDY",
        decimal_separator=".",
        currency_symbol="$",
    )

    assert compare_fingerprints(MERCADONA_FINGERPRINT, MERCADONA_FINGERPRINT) == 78
    assert compare_fingerprints(MERCADONA_FINGERPRINT, unrelated) == 0


def test_fingerprint_matches_rank_learned_templates() -> None:
    unrelated = StoreFingerprint(layout_type=LayoutType.COLUMNAR, price_position=PricePosition.LEFT)
    templates = [
        StoreParsingTemplate(merchant_id="other", zones=(), fingerprint=unrelated),
        StoreParsingTemplate(merchant_id="mercadona", zones=(), store_name="Mercadona", fingerprint=MERCADONA_FINGERPRINT),
        StoreParsingTemplate(merchant_id="blank", zones=()),
    ]

    matches = match_fingerprint_to_templates(MERCADONA_FINGERPRINT, templates)

    assert [match.merchant_id for match in matches] == ["mercadona"]
    assert matches[0].score == 78
    assert "header:MERCADONA S.A." in matches[0].matched_patterns
    assert "keyword:IVA" in matches[0].matched_patterns


def test_templates_need_a_track_record() -> None:
    assert not should_use_template(None)
    assert not should_use_template(_template(confidence=30, use_count=10))
    assert not should_use_template(_template(confidence=50, use_count=0))
    assert should_use_template(_template(confidence=60, use_count=0))
    assert should_use_template(_template(confidence=50, use_count=2))


def test_aspect_change_pads_zones_approximately() -> None:
    """Approximation only: every zone grows on all sides, nothing is reprojected."""
    zone = ZoneDefinition("z", ZoneType.TOTAL, NormalizedBoundingBox(0.4, 0.4, 0.2, 0.2))

    same = scale_zones_for_aspect_ratio([zone], ImageDimensions(1000, 2000), ImageDimensions(500, 1000))
    unknown = scale_zones_for_aspect_ratio([zone], None, ImageDimensions(500, 1000))
    wider = scale_zones_for_aspect_ratio([zone], ImageDimensions(1000, 2000), ImageDimensions(1200, 2000))

    assert same == (zone,)
    assert unknown == (zone,)
    box = wider[0].bounding_box
    assert box.x == pytest.approx(0.3)
    assert box.y == pytest.approx(0.3)
    assert box.width == pytest.approx(0.4)
    assert box.height == pytest.approx(0.4)


def test_total_zone_prefers_standalone_prices() -> None:
    assert extract_total_price(["TOTAL", "12,40"], ",") == Decimal("12.40")
    assert extract_total_price(["TOTAL 12,40", "ENTREGADO 20,00"], ",") == Decimal("12.40")
    assert extract_total_price(["PAN 0,95"], ",") is None


def test_template_zones_override_an_empty_baseline(reference, fruteria_blocks) -> None:
    blocks, dimensions = fruteria_blocks
    zones = detect_zones(blocks, dimensions, reference.presets).zones
    template = StoreParsingTemplate(
        merchant_id="fruteria-la-plaza",
        zones=zones,
        image_dimensions=dimensions,
        confidence=70,
        use_count=3,
    )
    baseline = ParsedReceipt(raw_text="\n".join(block.text for block in blocks))

    receipt = parse_with_template(blocks, template, baseline, dimensions, reference.presets)

    assert receipt.parsing_method == "template"
    assert receipt.template_merchant_id == "fruteria-la-plaza"
    assert receipt.store_name == "FRUTERIA LA PLAZA"
    assert receipt.date is not None and receipt.date.isoformat() == "2024-03-15"
    assert receipt.time == "10:42"
    assert receipt.total == Decimal("8.00")
    assert [item.name for item in receipt.items] == ["PAN BARRA", "LECHE ENTERA", "ACEITE OLIVA"]
    assert receipt.confidence == 100
