"""Tests for the block pipeline: spatial refinement, template learning and reuse."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from PIL import Image

from ticketfox.application.receipts import ReceiptParseRequest, run_cached_ocr_parse, run_receipt_parse, run_text_parse
from ticketfox.domain.layout import TemplateStoreError
from ticketfox.receipt.ocr_parser import ParseOptions
from ticketfox.receipt.ocr_result_parser import parse_receipt_blocks
from ticketfox.receipt.store_fingerprint import build_store_fingerprint
from ticketfox.receipt.zone_detector import detect_zones
from ticketfox.runtime import TemplateStore
from ticketfox.runtime.receipt_pipeline import create_debug_overlay

FIXED_NOW = datetime(2024, 3, 20, 12, 0)


def _quad(left: int, top: int, right: int, bottom: int) -> list[list[int]]:
    return [[left, top], [right, top], [right, bottom], [left, bottom]]


# Coordinates include the 50px padding the OCR request adds around the image
MERCADONA_OCR = {
    "status": "success",
    "image_width": 1100,
    "image_height": 2100,
    "detections": [
        [_quad(100, 90, 500, 130), ["MERCADONA, S.A.", 0.99]],
        [_quad(100, 450, 500, 480), ["1 LECHE ENTERA", 0.98]],
        [_quad(850, 450, 950, 480), ["0,89", 0.99]],
        [_quad(100, 1700, 400, 1740), ["TOTAL", 0.99]],
        [_quad(850, 1700, 950, 1740), ["0,89", 0.99]],
    ],
}


class _BrokenRepository:
    def get(self, merchant_id):
        raise TemplateStoreError("disk on fire")

    def list_with_fingerprints(self):
        raise TemplateStoreError("disk on fire")

    def upsert(self, merchant_id, **kwargs):
        raise TemplateStoreError("disk on fire")

    def record_outcome(self, merchant_id, success, parser="template"):
        raise TemplateStoreError("disk on fire")


def test_first_valid_sighting_learns_a_template(reference, fruteria_blocks, tmp_path: Path) -> None:
    blocks, dimensions = fruteria_blocks
    store = TemplateStore(tmp_path)

    outcome = parse_receipt_blocks(
        blocks,
        reference,
        dimensions=dimensions,
        options=ParseOptions(now=FIXED_NOW),
        templates=store,
        sample_image_path="receipts/plaza.jpg",
    )

    assert outcome.parser == "generic"
    assert outcome.merchant_id == "fruteria-la-plaza"
    assert outcome.validation.is_valid
    assert outcome.template_learned
    learned = store.get("fruteria-la-plaza")
    assert learned is not None
    assert learned.store_name == "FRUTERIA LA PLAZA"
    assert learned.sample_image_path == "receipts/plaza.jpg"
    assert learned.fingerprint is not None
    assert learned.parsing_hints.decimal_separator == ","
    assert {zone.type for zone in learned.zones} == {zone.type for zone in outcome.zones.zones}


def test_learned_template_is_used_once_trusted(reference, fruteria_blocks, tmp_path: Path) -> None:
    blocks, dimensions = fruteria_blocks
    store = TemplateStore(tmp_path)
    options = ParseOptions(now=FIXED_NOW)

    parsers = [
        parse_receipt_blocks(blocks, reference, dimensions=dimensions, options=options, templates=store).parser
        for _ in range(4)
    ]

    assert parsers == ["generic", "generic", "generic", "template"]
    template = store.get("fruteria-la-plaza")
    assert template.use_count == 3
    assert template.confidence == 56
    assert template.parser_outcomes["generic"].success == 2
    assert template.parser_outcomes["template"].success == 1


def test_unknown_store_is_recognized_by_layout(reference, fruteria_blocks, tmp_path: Path) -> None:
    blocks, dimensions = fruteria_blocks
    store = TemplateStore(tmp_path)
    store.upsert(
        "mi-fruteria",
        zones=detect_zones(blocks, dimensions, reference.presets).zones,
        image_dimensions=dimensions,
        fingerprint=build_store_fingerprint(blocks, dimensions),
        confidence=80,
    )

    outcome = parse_receipt_blocks(
        blocks, reference, dimensions=dimensions, options=ParseOptions(now=FIXED_NOW), templates=store
    )

    assert outcome.parser == "template"
    assert outcome.merchant_id == "mi-fruteria"
    assert outcome.receipt.template_merchant_id == "mi-fruteria"
    assert outcome.receipt.total == Decimal("8.00")
    assert store.get("mi-fruteria").use_count == 1
    assert store.get("fruteria-la-plaza") is None


def test_identified_chain_never_borrows_another_merchants_template(reference, fruteria_blocks, tmp_path: Path) -> None:
    blocks, dimensions = fruteria_blocks
    store = TemplateStore(tmp_path)
    store.upsert(
        "mi-fruteria",
        zones=detect_zones(blocks, dimensions, reference.presets).zones,
        image_dimensions=dimensions,
        fingerprint=build_store_fingerprint(blocks, dimensions),
        confidence=80,
    )
    header = blocks[0]
    mercadona_header = replace(
        header,
        text="MERCADONA A-46103834",
        lines=(replace(header.lines[0], text="MERCADONA A-46103834"),),
    )

    outcome = parse_receipt_blocks(
        [mercadona_header, *blocks[1:]],
        reference,
        dimensions=dimensions,
        options=ParseOptions(now=FIXED_NOW),
        templates=store,
    )

    assert outcome.merchant_id == "mercadona"
    assert outcome.parser != "template"
    assert outcome.receipt.template_merchant_id is None
    assert store.get("mi-fruteria").use_count == 0


def test_names_on_priced_lines_survive_the_block_pipeline(reference, fruteria_blocks) -> None:
    blocks, dimensions = fruteria_blocks

    outcome = parse_receipt_blocks(blocks, reference, dimensions=dimensions, options=ParseOptions(now=FIXED_NOW))

    assert [(item.name, item.total_price) for item in outcome.receipt.items] == [
        ("PAN BARRA", Decimal("0.95")),
        ("LECHE ENTERA", Decimal("1.05")),
        ("ACEITE OLIVA", Decimal("5.95")),
    ]
    assert outcome.receipt.total == Decimal("8.00")
    assert outcome.validation.items_sum_matches_total


def test_template_storage_failure_does_not_fail_the_parse(reference, fruteria_blocks) -> None:
    blocks, dimensions = fruteria_blocks

    outcome = parse_receipt_blocks(
        blocks,
        reference,
        dimensions=dimensions,
        options=ParseOptions(now=FIXED_NOW),
        templates=_BrokenRepository(),
    )

    assert outcome.parser == "generic"
    assert outcome.receipt.total == Decimal("8.00")
    assert not outcome.template_learned


def test_no_blocks_gives_an_empty_outcome(reference) -> None:
    outcome = parse_receipt_blocks([], reference)

    assert outcome.receipt.items == ()
    assert outcome.receipt.confidence == 0
    assert not outcome.validation.is_valid


def test_cached_ocr_json_parses_with_chain_grammar(reference, tmp_path: Path) -> None:
    cached = tmp_path / "mercadona.json"
    cached.write_text(json.dumps(MERCADONA_OCR), encoding="utf-8")

    result = run_cached_ocr_parse(ReceiptParseRequest(image_path=cached, learn_templates=False, reference=reference))

    assert result.status == "parsed"
    assert result.ocr_json_path == cached
    outcome = result.outcome
    assert outcome.parser == "chain"
    assert outcome.merchant_id == "mercadona"
    assert [(item.name, item.total_price) for item in outcome.receipt.items] == [("LECHE ENTERA", Decimal("0.89"))]
    assert outcome.receipt.total == Decimal("0.89")


def test_cached_ocr_parse_reports_bad_input(reference, tmp_path: Path) -> None:
    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")
    garbage = tmp_path / "garbage.json"
    garbage.write_text("{oops", encoding="utf-8")

    missing = run_cached_ocr_parse(ReceiptParseRequest(image_path=tmp_path / "nope.json", reference=reference))
    not_object = run_cached_ocr_parse(ReceiptParseRequest(image_path=listing, reference=reference))
    not_json = run_cached_ocr_parse(ReceiptParseRequest(image_path=garbage, reference=reference))

    assert missing.status == "file_not_found"
    assert not_object.status == "invalid_input"
    assert not_json.status == "invalid_input"


def test_image_parse_without_ocr_service(reference, tmp_path: Path) -> None:
    from PIL import Image

    image = tmp_path / "receipt.jpg"
    Image.new("RGB", (200, 400), "white").save(image)

    missing = run_receipt_parse(ReceiptParseRequest(image_path=tmp_path / "none.jpg", reference=reference))
    unreachable = run_receipt_parse(
        ReceiptParseRequest(image_path=image, ocr_url="http://127.0.0.1:9", reference=reference)
    )

    assert missing.status == "file_not_found"
    assert unreachable.status == "ocr_unavailable"
    assert "connect" in unreachable.error


def test_text_parse_workflow(reference) -> None:
    result = run_text_parse("MERCADONA\n2 QUESO COTTAGE 1,35 2,70\nTOTAL 2,70\n", reference=reference)

    assert result.status == "parsed"
    assert result.outcome.parser == "chain"
    assert result.outcome.receipt.total == Decimal("2.70")


def test_debug_overlay_is_saved_beside_the_image(tmp_path: Path) -> None:
    image_path = tmp_path / "ticket.png"
    Image.new("RGB", (1000, 2000), "white").save(image_path)

    overlay = create_debug_overlay(image_path, MERCADONA_OCR)

    assert overlay == tmp_path / "ticket_debug.png"
    with Image.open(overlay) as drawn:
        assert drawn.size == (1100, 2100)
