"""Receipt command handlers used by the unified CLI."""

import argparse
import json
import sys
from pathlib import Path

from ticketfox.application.receipts.scan import (
    ReceiptParseRequest,
    ReceiptParseResult,
    run_cached_ocr_parse,
    run_receipt_parse,
    run_text_parse,
)
from ticketfox.receipt.formatter import format_receipt_text, outcome_to_dict
from ticketfox.receipt.ocr_parser import ParseOptions
from ticketfox.runtime import TemplateStore, TemplateStoreError, get_logger
from ticketfox.runtime.template_store import template_to_dict

logger = get_logger(__name__)


def _options(args: argparse.Namespace) -> ParseOptions:
    return ParseOptions(
        preset_id=getattr(args, "preset", None),
        merchant_id=getattr(args, "merchant", None),
    )


def _print_result(result: ReceiptParseResult, as_json: bool) -> None:
    """Print a parsed outcome, or exit 1 when the workflow failed."""
    if result.status == "file_not_found":
        logger.error("%s", result.error)
        print(f"Error: {result.error}")
        sys.exit(1)

    if result.status == "ocr_unavailable":
        logger.error("%s", result.error)
        print(f"OCR service unavailable: {result.error}")
        print("Make sure the OCR service is running before parsing receipt images.")
        sys.exit(1)

    if result.status == "invalid_input" or result.outcome is None:
        print(f"Error: {result.error or 'nothing was parsed'}")
        sys.exit(1)

    if as_json:
        print(json.dumps(outcome_to_dict(result.outcome), indent=2, ensure_ascii=False))
        return

    print("=" * 60)
    print("PARSED RECEIPT")
    print("=" * 60)
    print(format_receipt_text(result.outcome))
    print("=" * 60)
    if result.ocr_json_path is not None:
        print(f"OCR JSON: {result.ocr_json_path}")
    if result.debug_overlay_path is not None:
        print(f"Debug overlay: {result.debug_overlay_path}")
    if result.outcome.template_learned:
        print(f"Learned a layout template for {result.outcome.merchant_id}")


def cmd_parse(args: argparse.Namespace) -> None:
    """OCR a receipt image and parse it."""
    result = run_receipt_parse(
        ReceiptParseRequest(
            image_path=Path(args.image),
            ocr_url=args.ocr_url,
            options=_options(args),
            learn_templates=not args.no_learn,
            debug_overlay=args.debug_overlay,
        )
    )
    _print_result(result, args.json)


def cmd_parse_ocr(args: argparse.Namespace) -> None:
    """Parse a cached OCR service response."""
    result = run_cached_ocr_parse(
        ReceiptParseRequest(
            image_path=Path(args.ocr_json),
            options=_options(args),
            learn_templates=not args.no_learn,
        )
    )
    _print_result(result, args.json)


def cmd_parse_text(args: argparse.Namespace) -> None:
    """Parse a text file (or stdin with ``-``), one receipt line per line."""
    if args.source == "-":
        text = sys.stdin.read()
    else:
        path = Path(args.source)
        if not path.exists():
            print(f"Error: Text file not found: {path}")
            sys.exit(1)
        text = path.read_text(encoding="utf-8")
    _print_result(run_text_parse(text, _options(args)), args.json)


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the FastAPI parse server."""
    from ticketfox.runtime import receipt_server as server

    print(f"Starting receipt server on {args.host}:{args.port}")
    print(f"Endpoints: http://{args.host}:{args.port}/parse | /parse/blocks | /parse/lines | /templates")
    print("Press Ctrl+C to stop")
    server.serve(host=args.host, port=args.port)


def cmd_templates_list(args: argparse.Namespace) -> None:
    """List learned templates."""
    try:
        templates = TemplateStore().list_all()
    except TemplateStoreError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if not templates:
        print("No learned templates.")
        return
    for template in templates:
        print(
            f"{template.merchant_id:<24} {template.store_name or '-':<24} "
            f"confidence {template.confidence:>3}  uses {template.use_count:>3}  zones {len(template.zones)}"
        )


def cmd_templates_show(args: argparse.Namespace) -> None:
    """Print one learned template as JSON."""
    try:
        template = TemplateStore().get(args.merchant_id)
    except TemplateStoreError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if template is None:
        print(f"No template for {args.merchant_id}")
        sys.exit(1)
    print(json.dumps(template_to_dict(template), indent=2, ensure_ascii=False))
