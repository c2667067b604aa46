"""Receipt parse workflow orchestration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from ticketfox.receipt.ocr_parser import ParseOptions
from ticketfox.receipt.ocr_result_parser import ReceiptParseOutcome, parse_receipt_blocks, parse_receipt_lines
from ticketfox.receipt.reference import ReferenceData
from ticketfox.receipt.text_normalizer import split_text
from ticketfox.runtime import TemplateStore, get_logger, load_reference_data
from ticketfox.runtime.receipt_pipeline import (
    OCRServiceUnavailable,
    call_ocr_service,
    create_debug_overlay,
    load_ocr_json,
    save_ocr_json,
)

logger = get_logger(__name__)

ParseStatus = Literal[
    "file_not_found",
    "ocr_unavailable",
    "invalid_input",
    "parsed",
]


@dataclass(frozen=True)
class ReceiptParseRequest:
    """Inputs for parsing one receipt image or cached OCR result."""

    image_path: Path
    ocr_url: str | None = None
    options: ParseOptions | None = None
    learn_templates: bool = True
    debug_overlay: bool = False
    reference: ReferenceData | None = None


@dataclass(frozen=True)
class ReceiptParseResult:
    """Outcome from the receipt parse workflow."""

    status: ParseStatus
    outcome: ReceiptParseOutcome | None = None
    ocr_json_path: Path | None = None
    debug_overlay_path: Path | None = None
    error: str | None = None


def _template_store(request: ReceiptParseRequest) -> TemplateStore | None:
    return TemplateStore() if request.learn_templates else None


def run_receipt_parse(request: ReceiptParseRequest) -> ReceiptParseResult:
    """Run image flow: OCR -> save raw JSON -> parse with learned templates."""
    if not request.image_path.exists():
        return ReceiptParseResult(
            status="file_not_found",
            error=f"Receipt file not found: {request.image_path}",
        )

    try:
        raw_ocr_result, blocks, dimensions = call_ocr_service(request.image_path, request.ocr_url)
    except OCRServiceUnavailable as exc:
        return ReceiptParseResult(status="ocr_unavailable", error=str(exc))

    ocr_json_path = save_ocr_json(raw_ocr_result, request.image_path)
    overlay_path = create_debug_overlay(request.image_path, raw_ocr_result) if request.debug_overlay else None
    outcome = parse_receipt_blocks(
        blocks,
        request.reference or load_reference_data(),
        dimensions=dimensions,
        options=request.options,
        templates=_template_store(request),
        sample_image_path=str(request.image_path),
    )
    return ReceiptParseResult(
        status="parsed",
        outcome=outcome,
        ocr_json_path=ocr_json_path,
        debug_overlay_path=overlay_path,
    )


def run_cached_ocr_parse(request: ReceiptParseRequest) -> ReceiptParseResult:
    """Parse a saved OCR service response (``request.image_path`` points at the JSON)."""
    if not request.image_path.exists():
        return ReceiptParseResult(
            status="file_not_found",
            error=f"OCR JSON not found: {request.image_path}",
        )

    try:
        _, blocks, dimensions = load_ocr_json(request.image_path)
    except ValueError as exc:
        logger.error("Cannot read OCR JSON %s: %s", request.image_path, exc)
        return ReceiptParseResult(status="invalid_input", error=str(exc))

    outcome = parse_receipt_blocks(
        blocks,
        request.reference or load_reference_data(),
        dimensions=dimensions,
        options=request.options,
        templates=_template_store(request),
    )
    return ReceiptParseResult(status="parsed", outcome=outcome, ocr_json_path=request.image_path)


def run_text_parse(
    text: str,
    options: ParseOptions | None = None,
    reference: ReferenceData | None = None,
) -> ReceiptParseResult:
    """Parse a plain text dump, one receipt line per line."""
    outcome = parse_receipt_lines(split_text(text), reference or load_reference_data(), options)
    return ReceiptParseResult(status="parsed", outcome=outcome)
