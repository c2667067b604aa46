"""Tests for the merchant detector, chain grammars and the generic parser."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from ticketfox.domain import DetectionMethod, PaymentMethod
from ticketfox.receipt.chain_templates import build_chain_registry
from ticketfox.receipt.merchant_detector import (
    NO_DETECTION,
    detect_chain_from_lines,
    detect_chain_from_text,
    should_use_chain_parsing,
)
from ticketfox.receipt.ocr_parser import (
    ParseOptions,
    TotalsKeywords,
    detect_receipt_format,
    extract_sections,
    extract_totals,
    parse_chain_items,
    parse_generic,
    parse_line_item,
)
from ticketfox.receipt.ocr_parser.fields_parser import GENERIC_TOTALS_KEYWORDS
from ticketfox.receipt.ocr_result_parser import merchant_slug, parse_receipt_lines

FIXED_NOW = datetime(2024, 3, 20, 12, 0)

GENERIC_RECEIPT = [
    "FRUTERIA LA PLAZA",
    "Calle Mayor 12",
    "15/03/2024 10:42",
    "PAN BARRA 0,95",
    "2 x YOGUR NATURAL 1,80",
    "TOTAL 2,75",
    "EFECTIVO 5,00",
    "CAMBIO 2,25",
    "GRACIAS POR SU VISITA",
]


def test_fingerprint_phrases_identify_a_chain_without_its_name(reference) -> None:
    one = detect_chain_from_text("YOGUR HACENDADO 1,20", reference.chains)
    two = detect_chain_from_text("YOGUR HACENDADO 1,20\nCREMA DELIPLUS 3,10", reference.chains)

    assert one.chain_id == "mercadona"
    assert one.method == DetectionMethod.FINGERPRINT
    assert one.confidence == 75
    assert two.confidence == 80


def test_header_word_heuristic_stays_below_chain_threshold() -> None:
    registry = build_chain_registry(
        [
            (
                "barrio.toml",
                {
                    "id": "barrio",
                    "name": "Super Barrio",
                    "name_patterns": [r"(?i)^SUPER BARRIO S\.L\.$"],
                    "items": [{"pattern": r"^(.+?)\s+(\d+,\d{2})$", "name": 1, "total_price": 2}],
                },
            )
        ]
    )

    detection = detect_chain_from_lines(["BARRIO CENTRAL", "PAN 0,95"], registry)

    assert detection.chain_id == "barrio"
    assert detection.method == DetectionMethod.HEURISTIC
    assert detection.confidence == 60
    assert not should_use_chain_parsing(detection)


def test_no_detection_for_unknown_text(reference) -> None:
    assert detect_chain_from_text("", reference.chains) is NO_DETECTION
    assert detect_chain_from_text("FRUTERIA LA PLAZA\nPAN 0,95", reference.chains).chain is None


def test_weighted_item_spans_name_and_weight_lines(reference) -> None:
    mercadona = reference.chains.get("mercadona")
    lines = ["MERCADONA", "1 PLATANO", "1,102 kg 1,85 €/kg 2,04", "TOTAL 2,04"]

    items = parse_chain_items(lines, mercadona)

    assert len(items) == 1
    assert items[0].name == "PLATANO"
    assert items[0].quantity == Decimal("1.102")
    assert items[0].unit == "kg"
    assert items[0].unit_price == Decimal("1.85")
    assert items[0].total_price == Decimal("2.04")


def test_chain_grammars_skip_totals_and_tax_id_lines(reference) -> None:
    mercadona = reference.chains.get("mercadona")
    lines = ["MERCADONA, S.A. A-46103834", "1 LECHE ENTERA 0,89", "IVA 10% 0,08", "TOTAL 0,89"]

    items = parse_chain_items(lines, mercadona)

    assert [(item.name, item.total_price) for item in items] == [("LECHE ENTERA", Decimal("0.89"))]


def test_empty_chain_result_falls_back_to_generic(reference) -> None:
    outcome = parse_receipt_lines(["MERCADONA", "Gracias por su compra"], reference, ParseOptions(now=FIXED_NOW))

    assert outcome.parser == "generic"
    assert outcome.receipt.parsing_method == "generic"
    assert outcome.receipt.chain_id == "mercadona"


def test_generic_parse_extracts_every_field(reference) -> None:
    receipt = parse_generic(GENERIC_RECEIPT, reference, ParseOptions(now=FIXED_NOW))

    assert receipt.store_name == "FRUTERIA LA PLAZA"
    assert receipt.store_address == "Calle Mayor 12"
    assert receipt.date == date(2024, 3, 15)
    assert receipt.time == "10:42"
    assert receipt.total == Decimal("2.75")
    assert receipt.payment_method == PaymentMethod.CASH
    assert receipt.parsing_method == "generic"
    assert [(item.name, item.quantity, item.total_price) for item in receipt.items] == [
        ("PAN BARRA", Decimal("1"), Decimal("0.95")),
        ("YOGUR NATURAL", Decimal("2"), Decimal("1.80")),
    ]
    assert receipt.items[1].unit_price == Decimal("0.90")
    assert 0 < receipt.confidence <= 100


def test_sections_split_header_items_totals_and_footer() -> None:
    sections = extract_sections(GENERIC_RECEIPT)

    assert sections.header == GENERIC_RECEIPT[:3]
    assert sections.items == GENERIC_RECEIPT[3:5]
    assert sections.totals == GENERIC_RECEIPT[5:8]
    assert sections.footer == GENERIC_RECEIPT[8:]


def test_receipt_format_prefers_text_evidence_over_hints(reference) -> None:
    comma = detect_receipt_format(["PAN 0,95", "LECHE 1,05"], ParseOptions(preferred_decimal_separator="."))
    tie = detect_receipt_format(["PAN"], ParseOptions(preferred_decimal_separator="."))
    preset = detect_receipt_format(["PAN"], None, reference.preset)

    assert comma.decimal_separator == ","
    assert tie.decimal_separator == "."
    assert preset.decimal_separator == ","
    assert preset.date_order == "DMY"


def test_columnar_layout_needs_more_than_three_price_lines() -> None:
    lines = ["PAN", "LECHE", "HUEVOS", "ACEITE", "1,00", "2,00", "3,00", "4,00"]

    assert detect_receipt_format(lines).is_columnar
    assert not detect_receipt_format(lines[:3] + lines[4:7]).is_columnar


def test_totals_classify_tax_before_total_and_keep_largest_total(reference) -> None:
    keywords = TotalsKeywords.from_preset(reference.preset)
    totals = extract_totals(
        ["SUBTOTAL 5,00", "IVA 21% 1,05", "DESCUENTO 0,50", "TOTAL 5,55", "TOTAL A PAGAR 6,05"],
        keywords,
    )

    assert totals.subtotal == Decimal("5.00")
    assert totals.tax == Decimal("1.05")
    assert totals.discount == Decimal("0.50")
    assert totals.total == Decimal("6.05")


def test_total_keyword_takes_price_from_next_line() -> None:
    totals = extract_totals(["TOTAL", "12,40"], GENERIC_TOTALS_KEYWORDS)

    assert totals.total == Decimal("12.40")


def test_line_item_rejects_summary_lines() -> None:
    assert parse_line_item("TOTAL 12,40") is None
    assert parse_line_item("TARJETA 12,40") is None
    item = parse_line_item("ACEITE OLIVA 1L 5,95")
    assert item is not None
    assert item.name == "ACEITE OLIVA"
    assert item.unit == "l"


def test_merchant_slug() -> None:
    assert merchant_slug("Dia %") == "dia"
    assert merchant_slug("El Corte Inglés") == "el-corte-ingles"
    assert merchant_slug("  ") is None
    assert merchant_slug(None) is None
