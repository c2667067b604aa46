"""Composable OCR receipt parser components."""

from .chain_parser import parse_chain_items, parse_with_chain_template
from .common import ParseOptions, extract_quantity_and_unit
from .fields_parser import (
    ExtractedTotals,
    TotalsKeywords,
    extract_payment_method,
    extract_store_address,
    extract_store_name_with_preset,
    extract_totals,
)
from .generic_parser import detect_receipt_format, extract_sections, parse_generic
from .items_text_parser import parse_columnar_items, parse_inline_items, parse_line_item

__all__ = [
    "ExtractedTotals",
    "ParseOptions",
    "TotalsKeywords",
    "detect_receipt_format",
    "extract_payment_method",
    "extract_quantity_and_unit",
    "extract_sections",
    "extract_store_address",
    "extract_store_name_with_preset",
    "extract_totals",
    "parse_chain_items",
    "parse_columnar_items",
    "parse_generic",
    "parse_inline_items",
    "parse_line_item",
    "parse_with_chain_template",
]
