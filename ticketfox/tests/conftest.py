"""Shared pytest fixtures/options for ticketfox tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from ticketfox.domain.receipt import BoundingBox, ImageDimensions, OcrBlock, OcrLine
from ticketfox.receipt.reference import ReferenceData
from ticketfox.runtime import get_paths, load_reference_data, reset_reference_data, set_project_root


def pytest_addoption(parser):
    """Custom pytest option for the live OCR smoke test."""
    parser.addoption(
        "--ticketfox-ocr-url",
        action="store",
        default=None,
        help="Base URL of a running OCR service; enables tests/test_live_ocr.py.",
    )


@pytest.fixture(scope="session")
def reference() -> ReferenceData:
    """Built-in chain, preset and tax-region registries."""
    return load_reference_data()


@pytest.fixture
def project_root(tmp_path: Path) -> Iterator[Path]:
    """Point ProjectPaths at a throwaway root for the duration of a test."""
    previous = get_paths().root
    set_project_root(tmp_path)
    reset_reference_data()
    try:
        yield tmp_path
    finally:
        set_project_root(previous)
        reset_reference_data()


def _text_block(text: str, left: float, top: float, width: float, height: float) -> OcrBlock:
    """A single-line OCR block in pixel coordinates."""
    box = BoundingBox(left, top, width, height)
    return OcrBlock(text=text, bounding_box=box, lines=(OcrLine(text, box),))


@pytest.fixture
def fruteria_blocks() -> tuple[list[OcrBlock], ImageDimensions]:
    """An inline receipt photographed at 1000x2000 with its total near the bottom."""
    blocks = [
        _text_block("FRUTERIA LA PLAZA", 50, 40, 400, 40),
        _text_block("15/03/2024 10:42", 50, 120, 300, 30),
        _text_block("PAN BARRA 0,95", 50, 400, 900, 30),
        _text_block("LECHE ENTERA 1,05", 50, 460, 900, 30),
        _text_block("ACEITE OLIVA 5,95", 50, 520, 900, 30),
        _text_block("TOTAL 8,00", 50, 1750, 900, 40),
    ]
    return blocks, ImageDimensions(1000, 2000)
