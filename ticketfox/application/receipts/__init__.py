"""Receipt workflows."""

from ticketfox.application.receipts.scan import (
    ReceiptParseRequest,
    ReceiptParseResult,
    run_cached_ocr_parse,
    run_receipt_parse,
    run_text_parse,
)

__all__ = [
    "ReceiptParseRequest",
    "ReceiptParseResult",
    "run_receipt_parse",
    "run_cached_ocr_parse",
    "run_text_parse",
]
