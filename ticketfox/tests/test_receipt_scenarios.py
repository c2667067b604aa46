"""End-to-end behaviour of the text pipeline on small Spanish receipts."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from ticketfox.domain import BoundingBox, DetectionMethod, OcrBlock, ParsedItem, ParsedReceipt
from ticketfox.receipt.merchant_detector import detect_chain, detect_chain_from_text
from ticketfox.receipt.ocr_parser import ParseOptions, parse_columnar_items
from ticketfox.receipt.ocr_parser.generic_parser import score_generic_receipt
from ticketfox.receipt.ocr_result_parser import parse_receipt_lines
from ticketfox.receipt.prices import format_price, parse_price
from ticketfox.receipt.validator import validate_receipt

FIXED_NOW = datetime(2024, 3, 20, 12, 0)


def test_mercadona_line_with_quantity_and_unit_price(reference) -> None:
    outcome = parse_receipt_lines(["MERCADONA", "2 QUESO COTTAGE 1,35 2,70", "TOTAL 2,70"], reference)
    receipt = outcome.receipt

    assert outcome.parser == "chain"
    assert outcome.merchant_id == "mercadona"
    assert receipt.store_name == "Mercadona"
    assert receipt.chain_id == "mercadona"
    assert receipt.detection_method == DetectionMethod.NAME
    assert len(receipt.items) == 1
    item = receipt.items[0]
    assert item.name == "QUESO COTTAGE"
    assert item.quantity == Decimal("2")
    assert item.unit_price == Decimal("1.35")
    assert item.total_price == Decimal("2.70")
    assert receipt.total == Decimal("2.70")
    assert outcome.validation.items_sum_matches_total is True
    assert outcome.validation.is_valid is True


def test_tax_id_alone_resolves_merchant(reference) -> None:
    detection = detect_chain_from_text("FRA. 0012-345\nA46103834\nGRACIAS", reference.chains)

    assert detection.chain_id == "mercadona"
    assert detection.chain is not None and detection.chain.name == "Mercadona"
    assert detection.confidence == 98
    assert detection.method == DetectionMethod.NIF


def test_tax_id_outranks_a_different_store_name(reference) -> None:
    detection = detect_chain_from_text("LIDL\nNIF: A-46103834", reference.chains)

    assert detection.chain_id == "mercadona"
    assert detection.method == DetectionMethod.NIF


def test_chain_detection_reads_block_text(reference) -> None:
    blocks = [
        OcrBlock("GRACIAS POR SU VISITA", BoundingBox(0, 600, 300, 20)),
        OcrBlock("LIDL SUPERMERCADOS", BoundingBox(0, 0, 300, 30)),
    ]

    detection = detect_chain(blocks, reference.chains)

    assert detection.chain_id == "lidl"
    assert detection.method == DetectionMethod.NAME


def test_columnar_names_pair_with_standalone_prices_by_position(reference) -> None:
    lines = ["PAN", "LECHE", "2,35", "19,10"]

    items = parse_columnar_items(lines)
    assert [(item.name, item.total_price) for item in items] == [
        ("PAN", Decimal("2.35")),
        ("LECHE", Decimal("19.10")),
    ]

    outcome = parse_receipt_lines(lines, reference, ParseOptions(now=FIXED_NOW))
    assert outcome.parser == "generic"
    assert [(item.name, item.total_price) for item in outcome.receipt.items] == [
        ("PAN", Decimal("2.35")),
        ("LECHE", Decimal("19.10")),
    ]


def test_tax_line_is_not_read_as_total(reference) -> None:
    outcome = parse_receipt_lines(["IVA 21% 1,05", "TOTAL 6,05"], reference, ParseOptions(now=FIXED_NOW))

    assert outcome.receipt.tax == Decimal("1.05")
    assert outcome.receipt.total == Decimal("6.05")


def test_large_gap_between_items_and_total_is_invalid() -> None:
    receipt = ParsedReceipt(
        store_name="Dia",
        date=date(2024, 3, 1),
        items=(
            ParsedItem(name="ACEITE", total_price=Decimal("15.00")),
            ParsedItem(name="CAFE", total_price=Decimal("10.00")),
        ),
        total=Decimal("30.00"),
    )

    validation = validate_receipt(receipt)

    assert validation.is_valid is False
    assert validation.items_sum == Decimal("25.00")
    assert validation.suggested_total == Decimal("25.00")
    assert validation.difference == Decimal("5.00")
    assert any("differs from total" in warning for warning in validation.warnings)


def test_small_gap_is_a_warning_but_still_valid() -> None:
    receipt = ParsedReceipt(
        store_name="Dia",
        date=date(2024, 3, 1),
        items=(ParsedItem(name="ACEITE", total_price=Decimal("9.00")),),
        total=Decimal("10.00"),
    )

    validation = validate_receipt(receipt)

    assert validation.is_valid is True
    assert validation.items_sum_matches_total is False
    assert validation.suggested_total == Decimal("9.00")
    assert any("by 10.0%" in warning for warning in validation.warnings)


def test_price_format_then_parse_recovers_amount() -> None:
    for text in ("0.01", "0.10", "1.00", "2.35", "19.10", "123.45", "999.99", "4321.05"):
        amount = Decimal(text)
        assert parse_price(format_price(amount, ","), ",") == amount
        assert parse_price(format_price(amount, "."), ".") == amount


def test_parsing_same_lines_twice_gives_equal_results(reference) -> None:
    lines = [
        "SUPERMERCADO LA PLAZA",
        "Calle Mayor 12",
        "15/03/2024 10:42",
        "PAN BARRA 0,95",
        "2 x YOGUR NATURAL 1,80",
        "MANZANA GOLDEN 1,250 kg 2,49",
        "TOTAL 5,24",
        "TARJETA",
    ]
    options = ParseOptions(now=FIXED_NOW)

    first = parse_receipt_lines(lines, reference, options)
    second = parse_receipt_lines(list(lines), reference, options)

    assert first == second
    assert first.receipt.items


def test_matching_total_never_lowers_confidence(reference) -> None:
    items = (
        ParsedItem(name="PAN BARRA", total_price=Decimal("0.95"), confidence=80),
        ParsedItem(name="LECHE ENTERA", total_price=Decimal("1.05"), confidence=80),
    )
    without_total = ParsedReceipt(store_name="Dia", items=items)
    with_total = ParsedReceipt(store_name="Dia", items=items, total=Decimal("2.00"))

    assert validate_receipt(with_total).confidence >= validate_receipt(without_total).confidence
    assert score_generic_receipt(with_total, FIXED_NOW) >= score_generic_receipt(without_total, FIXED_NOW)

    chain_without = parse_receipt_lines(["MERCADONA", "1 PAN BARRA 0,95"], reference)
    chain_with = parse_receipt_lines(["MERCADONA", "1 PAN BARRA 0,95", "TOTAL 0,95"], reference)
    assert chain_with.receipt.confidence >= chain_without.receipt.confidence
    assert chain_with.validation.confidence >= chain_without.validation.confidence


def test_empty_input_returns_empty_receipt(reference) -> None:
    outcome = parse_receipt_lines(["", "   "], reference)

    assert outcome.receipt.items == ()
    assert outcome.receipt.total is None
    assert outcome.validation.is_valid is False
    assert outcome.receipt.confidence <= 10


def test_olive_oil_is_an_item_not_a_tax_line(reference) -> None:
    outcome = parse_receipt_lines(
        ["FRUTERIA PEPE", "PAN BARRA 0,95", "ACEITE OLIVA 5,95", "TOTAL 6,90"],
        reference,
        ParseOptions(now=FIXED_NOW),
    )
    receipt = outcome.receipt

    assert [(item.name, item.total_price) for item in receipt.items] == [
        ("PAN BARRA", Decimal("0.95")),
        ("ACEITE OLIVA", Decimal("5.95")),
    ]
    assert receipt.tax is None
    assert receipt.total == Decimal("6.90")
    assert outcome.validation.items_sum_matches_total
