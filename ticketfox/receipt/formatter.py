"""Render parse outcomes as text or JSON-ready dicts, and read OCR blocks from JSON."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from ticketfox.domain.receipt import (
    BoundingBox,
    ImageDimensions,
    OcrBlock,
    OcrLine,
    ParsedItem,
    ParsedReceipt,
    ValidationResult,
)
from ticketfox.receipt.ocr_result_parser import ReceiptParseOutcome


def _money(value: Decimal | None) -> str | None:
    return None if value is None else f"{value:.2f}"


def _quantity(value: Decimal) -> str:
    normalized = value.normalize()
    return format(normalized, "f")


def item_to_dict(item: ParsedItem) -> dict[str, Any]:
    return {
        "name": item.name,
        "quantity": _quantity(item.quantity),
        "unit": item.unit,
        "unit_price": _money(item.unit_price),
        "total_price": _money(item.total_price),
        "confidence": item.confidence,
    }


def receipt_to_dict(receipt: ParsedReceipt) -> dict[str, Any]:
    """Convert a receipt to plain JSON types; money is a 2-decimal string."""
    return {
        "store_name": receipt.store_name,
        "store_address": receipt.store_address,
        "date": receipt.date.isoformat() if receipt.date else None,
        "time": receipt.time,
        "date_string": receipt.date_string,
        "items": [item_to_dict(item) for item in receipt.items],
        "subtotal": _money(receipt.subtotal),
        "tax": _money(receipt.tax),
        "discount": _money(receipt.discount),
        "total": _money(receipt.total),
        "payment_method": receipt.payment_method.value if receipt.payment_method else None,
        "confidence": receipt.confidence,
        "chain_id": receipt.chain_id,
        "chain_name": receipt.chain_name,
        "chain_confidence": receipt.chain_confidence,
        "detection_method": receipt.detection_method.value,
        "parsing_method": receipt.parsing_method,
        "tax_region": receipt.tax_region,
        "tax_type": receipt.tax_type,
        "template_merchant_id": receipt.template_merchant_id,
        "warnings": list(receipt.warnings),
        "raw_text": receipt.raw_text,
    }


def validation_to_dict(validation: ValidationResult) -> dict[str, Any]:
    return {
        "is_valid": validation.is_valid,
        "items_sum_matches_total": validation.items_sum_matches_total,
        "items_sum": _money(validation.items_sum),
        "difference": _money(validation.difference),
        "difference_percent": str(validation.difference_percent),
        "suggested_total": _money(validation.suggested_total),
        "warnings": list(validation.warnings),
        "confidence": validation.confidence,
    }


def outcome_to_dict(outcome: ReceiptParseOutcome) -> dict[str, Any]:
    result = {
        "receipt": receipt_to_dict(outcome.receipt),
        "validation": validation_to_dict(outcome.validation),
        "parser": outcome.parser,
        "merchant_id": outcome.merchant_id,
        "template_learned": outcome.template_learned,
    }
    if outcome.zones is not None:
        result["zone_confidence"] = outcome.zones.confidence
    return result


def _format_rows_aligned(rows: Sequence[tuple[str, str]], indent: str = "  ") -> list[str]:
    """Left-align labels and right-align amounts in two columns."""
    if not rows:
        return []
    label_width = max(len(label) for label, _ in rows)
    amount_width = max(len(amount) for _, amount in rows)
    return [f"{indent}{label.ljust(label_width)}  {amount.rjust(amount_width)}" for label, amount in rows]


def _item_label(item: ParsedItem) -> str:
    if item.quantity == 1 and item.unit in (None, "each"):
        return item.name
    unit = f" {item.unit}" if item.unit and item.unit != "each" else ""
    return f"{item.name} ({_quantity(item.quantity)}{unit} x {item.unit_price:.2f})"


def format_receipt_text(outcome: ReceiptParseOutcome) -> str:
    """Human readable summary of a parse, one field per line."""
    receipt = outcome.receipt
    lines = [f"Store:      {receipt.store_name or 'UNKNOWN'}"]
    if receipt.chain_name:
        lines.append(f"Chain:      {receipt.chain_name} ({receipt.detection_method.value}, {receipt.chain_confidence})")
    if receipt.store_address:
        lines.append(f"Address:    {receipt.store_address}")
    date_text = receipt.date.isoformat() if receipt.date else "UNKNOWN"
    lines.append(f"Date:       {date_text}{' ' + receipt.time if receipt.time else ''}")
    if receipt.tax_region:
        lines.append(f"Tax region: {receipt.tax_region} ({receipt.tax_type})")
    if receipt.payment_method:
        lines.append(f"Payment:    {receipt.payment_method.value}")
    lines.append(f"Parser:     {receipt.parsing_method}")
    lines.append("")

    rows = [(_item_label(item), f"{item.total_price:.2f}") for item in receipt.items]
    for label, value in (
        ("SUBTOTAL", receipt.subtotal),
        ("DISCOUNT", receipt.discount),
        ("TAX", receipt.tax),
        ("TOTAL", receipt.total),
    ):
        if value is not None:
            rows.append((label, f"{value:.2f}"))
    lines.extend(_format_rows_aligned(rows))
    if not receipt.items:
        lines.append("  (no items)")
    lines.append("")

    validation = outcome.validation
    lines.append(f"Confidence: {receipt.confidence} (validation {validation.confidence})")
    lines.append(f"Valid:      {'yes' if validation.is_valid else 'no'}")
    if validation.suggested_total is not None:
        lines.append(f"Suggested total: {validation.suggested_total:.2f}")
    for warning in validation.warnings:
        lines.append(f"; WARN {warning}")
    return "\n".join(lines)


def _box_from(raw: Any) -> BoundingBox:
    if isinstance(raw, Mapping):
        return BoundingBox(
            left=float(raw.get("left", raw.get("x", 0))),
            top=float(raw.get("top", raw.get("y", 0))),
            width=float(raw.get("width", 0)),
            height=float(raw.get("height", 0)),
        )
    left, top, width, height = (float(value) for value in raw)
    return BoundingBox(left, top, width, height)


def blocks_from_dict(raw_blocks: Sequence[Mapping[str, Any]]) -> list[OcrBlock]:
    """
    Read OCR blocks from JSON.

    Each block has ``text``, ``bounding_box`` (``{left, top, width, height}``
    or a 4-item list) and optional ``lines`` with the same shape. A block
    without lines gets none; its text is split on newlines when read.

    Raises:
        ValueError: A block or box is malformed.
    """
    blocks: list[OcrBlock] = []
    for raw in raw_blocks:
        try:
            lines = tuple(
                OcrLine(text=str(line["text"]), bounding_box=_box_from(line["bounding_box"]))
                for line in raw.get("lines") or ()
            )
            text = raw.get("text")
            if text is None:
                text = "\n".join(line.text for line in lines)
            box = _box_from(raw["bounding_box"]) if "bounding_box" in raw else OcrBlock.from_lines(lines).bounding_box
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed OCR block: {raw!r}") from exc
        blocks.append(OcrBlock(text=str(text), bounding_box=box, lines=lines))
    return blocks


def dimensions_from_dict(raw: Mapping[str, Any] | None) -> ImageDimensions | None:
    if not raw:
        return None
    try:
        return ImageDimensions(width=float(raw["width"]), height=float(raw["height"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Malformed image dimensions: {raw!r}") from exc
