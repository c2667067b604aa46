"""Run the receipt pipeline over OCR blocks or plain text lines."""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass, replace

from ticketfox.domain.layout import (
    ParserKind,
    ParsingHints,
    StoreParsingTemplate,
    TemplateRepository,
    TemplateStoreError,
    ZoneDefinition,
)
from ticketfox.domain.receipt import DetectionMethod, ImageDimensions, OcrBlock, ParsedReceipt, ValidationResult
from ticketfox.receipt.merchant_detector import ChainDetection, detect_chain_from_lines, should_use_chain_parsing
from ticketfox.receipt.ocr_helpers import block_text_lines, infer_image_dimensions
from ticketfox.receipt.ocr_parser import ParseOptions, parse_generic, parse_with_chain_template
from ticketfox.receipt.reference import ReferenceData
from ticketfox.receipt.regional_presets import RegionalPreset
from ticketfox.receipt.spatial_correlator import parse_with_spatial_correlation
from ticketfox.receipt.store_fingerprint import build_store_fingerprint, match_fingerprint_to_templates
from ticketfox.receipt.template_parser import parse_with_template, should_use_template
from ticketfox.receipt.text_normalizer import normalize_lines
from ticketfox.receipt.validator import validate_receipt
from ticketfox.receipt.zone_detector import AutoDetectedZones, detect_zones, refine_zones

logger = logging.getLogger(__name__)

LEARN_MIN_ZONE_CONFIDENCE = 70
UNPLACED_METHODS = frozenset({DetectionMethod.NONE, DetectionMethod.HEURISTIC})

_NON_SLUG = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class ReceiptParseOutcome:
    """A parsed receipt plus how the pipeline got there."""

    receipt: ParsedReceipt
    validation: ValidationResult
    parser: ParserKind = "generic"
    merchant_id: str | None = None
    zones: AutoDetectedZones | None = None
    template_learned: bool = False


def merchant_slug(name: str | None) -> str | None:
    """Stable template key for a store name: ``"Dia %"`` becomes ``"dia"``."""
    if not name:
        return None
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = _NON_SLUG.sub("-", ascii_name.lower()).strip("-")
    return slug or None


def _preset_for(reference: ReferenceData, options: ParseOptions) -> RegionalPreset | None:
    if options.preset_id:
        return reference.presets.get(options.preset_id) or reference.preset
    return reference.preset


def _parse_text(
    lines: Sequence[str],
    reference: ReferenceData,
    options: ParseOptions,
    detection: ChainDetection,
) -> tuple[ParsedReceipt, ParserKind]:
    if should_use_chain_parsing(detection):
        chain_result = parse_with_chain_template(lines, detection, reference.tax_regions)
        if chain_result.items or chain_result.total is not None:
            return chain_result, "chain"
        logger.info("Chain parsing for %s found nothing, falling back to generic", detection.chain_id)
    return parse_generic(lines, reference, options, detection), "generic"


def _finish(
    receipt: ParsedReceipt,
    parser: ParserKind,
    merchant_id: str | None,
    zones: AutoDetectedZones | None = None,
    template_learned: bool = False,
) -> ReceiptParseOutcome:
    validation = validate_receipt(receipt)
    return ReceiptParseOutcome(
        receipt=replace(receipt, warnings=validation.warnings),
        validation=validation,
        parser=parser,
        merchant_id=merchant_id,
        zones=zones,
        template_learned=template_learned,
    )


def parse_receipt_lines(
    lines: Sequence[str],
    reference: ReferenceData,
    options: ParseOptions | None = None,
) -> ReceiptParseOutcome:
    """
    Parse plain text lines, without geometry or learned templates.

    Chain grammars run first when the merchant detector is confident; an
    empty chain result falls back to the generic parser.
    """
    options = options or ParseOptions()
    normalized = normalize_lines(lines)
    if not normalized:
        return _finish(ParsedReceipt(), "generic", options.merchant_id)

    detection = detect_chain_from_lines(normalized, reference.chains)
    receipt, parser = _parse_text(normalized, reference, options, detection)
    merchant_id = options.merchant_id or detection.chain_id or merchant_slug(receipt.store_name)
    return _finish(receipt, parser, merchant_id)


def _find_template(
    templates: TemplateRepository,
    merchant_id: str | None,
    detection: ChainDetection,
    blocks: Sequence[OcrBlock],
    dimensions: ImageDimensions,
) -> StoreParsingTemplate | None:
    """
    Template stored under ``merchant_id``, else the best layout match.

    Layout matching only applies to receipts whose merchant the detector
    could not place. An identified chain never borrows another merchant's
    template.
    """
    if merchant_id:
        template = templates.get(merchant_id)
        if template is not None:
            return template
    if detection.method not in UNPLACED_METHODS:
        return None

    fingerprint = build_store_fingerprint(blocks, dimensions)
    candidates = templates.list_with_fingerprints()
    matches = match_fingerprint_to_templates(fingerprint, candidates)
    if not matches:
        return None
    best = matches[0]
    logger.debug("Recognized %s by layout fingerprint (score %d)", best.merchant_id, best.score)
    return next((template for template in candidates if template.merchant_id == best.merchant_id), None)


def _learn_template(
    templates: TemplateRepository,
    merchant_id: str,
    receipt: ParsedReceipt,
    zones: Sequence[ZoneDefinition],
    blocks: Sequence[OcrBlock],
    dimensions: ImageDimensions,
    sample_image_path: str | None,
) -> StoreParsingTemplate:
    fingerprint = build_store_fingerprint(blocks, dimensions)
    hints = ParsingHints(
        decimal_separator=fingerprint.decimal_separator,
        date_format=fingerprint.date_format,
        currency_symbol=fingerprint.currency_symbol,
    )
    logger.info("Learning layout template for %s (%d zones)", merchant_id, len(zones))
    return templates.upsert(
        merchant_id,
        zones=zones,
        store_name=receipt.store_name,
        hints=hints,
        sample_image_path=sample_image_path,
        image_dimensions=dimensions,
        fingerprint=fingerprint,
    )


def parse_receipt_blocks(
    blocks: Sequence[OcrBlock],
    reference: ReferenceData,
    *,
    dimensions: ImageDimensions | None = None,
    options: ParseOptions | None = None,
    templates: TemplateRepository | None = None,
    sample_image_path: str | None = None,
) -> ReceiptParseOutcome:
    """
    Parse one receipt from OCR blocks.

    The text path (chain grammars, else the generic parser refined by
    spatial correlation) always runs. A learned template for the merchant,
    found by id or by layout fingerprint, then overrides fields from its
    zones when it has earned enough trust. Afterwards the outcome is
    recorded against the template and, for a first validated sighting
    with clear zones, a new template is learned.

    Template storage failures are logged and the parse continues without
    templates; bad OCR input never raises.

    Args:
        blocks: OCR blocks in pixel coordinates.
        reference: Chain, preset and tax-region registries.
        dimensions: Image size as measured by the caller, if known.
        options: Parser hints; ``options.merchant_id`` pins the template key.
        templates: Learned template storage, or None to skip learning.
        sample_image_path: Recorded on newly learned templates.
    """
    options = options or ParseOptions()
    lines = normalize_lines(block_text_lines(blocks))
    if not lines:
        return _finish(ParsedReceipt(), "generic", options.merchant_id)

    effective = infer_image_dimensions(blocks, dimensions)
    detection = detect_chain_from_lines(lines, reference.chains)
    receipt, parser = _parse_text(lines, reference, options, detection)
    preset = _preset_for(reference, options)
    if parser == "generic":
        receipt = parse_with_spatial_correlation(blocks, effective, receipt, preset)

    zones = detect_zones(blocks, effective, reference.presets)
    if receipt.total is None and zones.detected_total is not None:
        receipt = replace(receipt, total=zones.detected_total)

    merchant_id = options.merchant_id or detection.chain_id or merchant_slug(receipt.store_name)
    if templates is None:
        return _finish(receipt, parser, merchant_id, zones)

    try:
        template = _find_template(templates, merchant_id, detection, blocks, effective)
    except TemplateStoreError as exc:
        logger.warning("Template lookup failed, parsing without templates: %s", exc)
        return _finish(receipt, parser, merchant_id, zones)

    if template is not None and parser == "generic":
        if should_use_template(template):
            receipt = parse_with_template(blocks, template, receipt, effective, reference.presets)
            parser = "template"
            merchant_id = template.merchant_id
        else:
            logger.debug(
                "Template for %s not trusted yet (confidence %d, %d uses)",
                template.merchant_id,
                template.confidence,
                template.use_count,
            )

    learned_zones = refine_zones(zones.zones, len(receipt.items))
    outcome = _finish(receipt, parser, merchant_id, replace(zones, zones=learned_zones))
    if merchant_id is None:
        return outcome

    try:
        if template is None:
            if zones.confidence >= LEARN_MIN_ZONE_CONFIDENCE and outcome.validation.is_valid:
                _learn_template(
                    templates, merchant_id, outcome.receipt, learned_zones, blocks, effective, sample_image_path
                )
                outcome = replace(outcome, template_learned=True)
        else:
            templates.record_outcome(template.merchant_id, outcome.validation.is_valid, parser)
    except TemplateStoreError as exc:
        logger.warning("Could not update template for %s: %s", merchant_id, exc)
    return outcome
