"""Unified command-line interface for ticketfox.

Usage:
    tfx parse <image> [--ocr-url URL] [--json]
    tfx parse-ocr <ocr.json> [--json]
    tfx parse-text <file|-> [--json]
    tfx serve [--host] [--port]
    tfx templates list
    tfx templates show <merchant_id>
"""
