#!/usr/bin/env python3

import argparse
import logging
from collections.abc import Callable, Sequence

from ticketfox.runtime.logging import set_log_level
from ticketfox.runtime.receipt_pipeline import default_ocr_url


def _coerce_exit_code(code: object) -> int:
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    return 1


def _run_command(command: Callable[[argparse.Namespace], None], args: argparse.Namespace) -> int:
    """
    Run a handler that may call sys.exit().

    This keeps process termination centralized in this module's entrypoint.
    """
    try:
        command(args)
    except SystemExit as exc:
        return _coerce_exit_code(exc.code)
    return 0


def _add_parse_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--preset", default=None, help="Regional preset id (default: spain)")
    parser.add_argument("--merchant", default=None, help="Merchant id to use as template key")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tfx",
        description="Spanish receipt parser",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  parse <image>              OCR a receipt image and parse it
  parse-ocr <ocr.json>       Parse a cached OCR service response
  parse-text <file|->        Parse plain text lines
  serve [--host] [--port]    Start the parse server
  templates list             List learned layout templates
  templates show <id>        Show one learned template

Notes:
  data/ocr_json/   = raw OCR responses, reusable with parse-ocr
  data/templates/  = learned per-merchant layout templates
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parse_parser = subparsers.add_parser("parse", help="OCR a receipt image and parse it")
    parse_parser.add_argument("image", help="Path to receipt image")
    parse_parser.add_argument(
        "--ocr-url", default=default_ocr_url(), help="OCR service URL (default: $OCR_SERVICE_URL or localhost:8001)"
    )
    parse_parser.add_argument("--no-learn", action="store_true", help="Do not read or update learned templates")
    parse_parser.add_argument(
        "--debug-overlay", action="store_true", help="Save the image with OCR boxes drawn next to the original"
    )
    _add_parse_flags(parse_parser)

    ocr_parser = subparsers.add_parser("parse-ocr", help="Parse a cached OCR service response")
    ocr_parser.add_argument("ocr_json", help="Path to OCR JSON")
    ocr_parser.add_argument("--no-learn", action="store_true", help="Do not read or update learned templates")
    _add_parse_flags(ocr_parser)

    text_parser = subparsers.add_parser("parse-text", help="Parse plain text lines")
    text_parser.add_argument("source", help="Text file, or - for stdin")
    _add_parse_flags(text_parser)

    serve_parser = subparsers.add_parser("serve", help="Start the parse server")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")

    templates_parser = subparsers.add_parser("templates", help="Inspect learned templates")
    templates_subparsers = templates_parser.add_subparsers(dest="templates_command", help="Template command")
    templates_subparsers.add_parser("list", help="List learned templates")
    show_parser = templates_subparsers.add_parser("show", help="Show one learned template")
    show_parser.add_argument("merchant_id", help="Merchant id")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.verbose:
        set_log_level(logging.DEBUG)

    from ticketfox.cli import receipt

    if args.command == "parse":
        return _run_command(receipt.cmd_parse, args)
    elif args.command == "parse-ocr":
        return _run_command(receipt.cmd_parse_ocr, args)
    elif args.command == "parse-text":
        return _run_command(receipt.cmd_parse_text, args)
    elif args.command == "serve":
        return _run_command(receipt.cmd_serve, args)
    elif args.command == "templates":
        if args.templates_command == "list":
            return _run_command(receipt.cmd_templates_list, args)
        if args.templates_command == "show":
            return _run_command(receipt.cmd_templates_show, args)
        parser.print_help()
        return 1

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
