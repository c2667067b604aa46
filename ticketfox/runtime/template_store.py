"""JSON-file persistence for learned per-merchant parsing templates.

One document per merchant id lives at ``<directory>/<slug>.json``. Writes
for the same merchant are serialized with a process-wide lock per file,
shared by every store instance, and land through a temp file plus
``os.replace`` so readers never see half a document.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ticketfox.domain.layout import (
    LayoutType,
    NormalizedBoundingBox,
    OutcomeCounts,
    ParserKind,
    ParsingHints,
    PricePosition,
    StoreFingerprint,
    StoreParsingTemplate,
    TemplateStoreError,
    ZoneDefinition,
    ZoneType,
)
from ticketfox.domain.receipt import ImageDimensions
from ticketfox.runtime.logging import get_logger
from ticketfox.runtime.paths import get_paths

logger = get_logger(__name__)

SUCCESS_CONFIDENCE_STEP = 2
FAILURE_CONFIDENCE_STEP = 5

_UNSAFE_KEY_CHARS = re.compile(r"[^a-z0-9_-]+")

# Keyed by resolved document path
_FILE_LOCKS: dict[Path, threading.Lock] = {}
_FILE_LOCKS_GUARD = threading.Lock()

__all__ = [
    "TemplateStore",
    "TemplateStoreError",
    "template_from_dict",
    "template_to_dict",
]


def _slug(merchant_id: str) -> str:
    slug = _UNSAFE_KEY_CHARS.sub("-", merchant_id.strip().lower()).strip("-")
    if not slug:
        raise TemplateStoreError(f"Invalid merchant id: {merchant_id!r}")
    return slug


def _box_to_dict(box: NormalizedBoundingBox) -> dict[str, float]:
    return {"x": box.x, "y": box.y, "width": box.width, "height": box.height}


def _fingerprint_to_dict(fingerprint: StoreFingerprint) -> dict[str, Any]:
    return {
        "layout_type": fingerprint.layout_type.value,
        "price_position": fingerprint.price_position.value,
        "header_patterns": list(fingerprint.header_patterns),
        "footer_patterns": list(fingerprint.footer_patterns),
        "date_format": fingerprint.date_format,
        "date_position": fingerprint.date_position,
        "typical_width": fingerprint.typical_width,
        "line_count": fingerprint.line_count,
        "decimal_separator": fingerprint.decimal_separator,
        "currency_symbol": fingerprint.currency_symbol,
        "known_keywords": list(fingerprint.known_keywords),
        "confidence": fingerprint.confidence,
    }


def template_to_dict(template: StoreParsingTemplate) -> dict[str, Any]:
    """Serialize a template to JSON-compatible types."""
    return {
        "merchant_id": template.merchant_id,
        "store_name": template.store_name,
        "zones": [
            {
                "id": zone.id,
                "type": zone.type.value,
                "bounding_box": _box_to_dict(zone.bounding_box),
                "is_required": zone.is_required,
            }
            for zone in template.zones
        ],
        "parsing_hints": {
            "decimal_separator": template.parsing_hints.decimal_separator,
            "date_format": template.parsing_hints.date_format,
            "currency_symbol": template.parsing_hints.currency_symbol,
        },
        "sample_image_path": template.sample_image_path,
        "image_dimensions": (
            {"width": template.image_dimensions.width, "height": template.image_dimensions.height}
            if template.image_dimensions
            else None
        ),
        "fingerprint": _fingerprint_to_dict(template.fingerprint) if template.fingerprint else None,
        "confidence": template.confidence,
        "use_count": template.use_count,
        "success_count": template.success_count,
        "failure_count": template.failure_count,
        "parser_outcomes": {
            parser: {"success": counts.success, "failure": counts.failure}
            for parser, counts in sorted(template.parser_outcomes.items())
        },
        "version": template.version,
        "created_at": template.created_at.isoformat() if template.created_at else None,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
    }


def _box_from_dict(raw: Mapping[str, Any]) -> NormalizedBoundingBox:
    return NormalizedBoundingBox(
        x=float(raw["x"]),
        y=float(raw["y"]),
        width=float(raw["width"]),
        height=float(raw["height"]),
    ).clamped()


def _fingerprint_from_dict(raw: Mapping[str, Any]) -> StoreFingerprint:
    return StoreFingerprint(
        layout_type=LayoutType(raw["layout_type"]),
        price_position=PricePosition(raw["price_position"]),
        header_patterns=tuple(str(p) for p in raw.get("header_patterns", ())),
        footer_patterns=tuple(str(p) for p in raw.get("footer_patterns", ())),
        date_format=raw.get("date_format"),
        date_position=raw.get("date_position"),
        typical_width=int(raw.get("typical_width", 40)),
        line_count=int(raw.get("line_count", 0)),
        decimal_separator=raw.get("decimal_separator"),
        currency_symbol=raw.get("currency_symbol"),
        known_keywords=tuple(str(k) for k in raw.get("known_keywords", ())),
        confidence=int(raw.get("confidence", 0)),
    )


def _datetime_or_none(raw: Any) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


def template_from_dict(raw: Mapping[str, Any]) -> StoreParsingTemplate:
    """
    Rebuild a template from its JSON form.

    Raises:
        KeyError, TypeError, ValueError: The document is malformed.
    """
    hints = raw.get("parsing_hints") or {}
    dimensions = raw.get("image_dimensions")
    fingerprint = raw.get("fingerprint")
    return StoreParsingTemplate(
        merchant_id=str(raw["merchant_id"]),
        store_name=raw.get("store_name"),
        zones=tuple(
            ZoneDefinition(
                id=str(zone["id"]),
                type=ZoneType(zone["type"]),
                bounding_box=_box_from_dict(zone["bounding_box"]),
                is_required=bool(zone.get("is_required", False)),
            )
            for zone in raw["zones"]
        ),
        parsing_hints=ParsingHints(
            decimal_separator=hints.get("decimal_separator"),
            date_format=hints.get("date_format"),
            currency_symbol=hints.get("currency_symbol"),
        ),
        sample_image_path=raw.get("sample_image_path"),
        image_dimensions=(
            ImageDimensions(width=float(dimensions["width"]), height=float(dimensions["height"]))
            if dimensions
            else None
        ),
        fingerprint=_fingerprint_from_dict(fingerprint) if fingerprint else None,
        confidence=int(raw.get("confidence", 50)),
        use_count=int(raw.get("use_count", 0)),
        success_count=int(raw.get("success_count", 0)),
        failure_count=int(raw.get("failure_count", 0)),
        parser_outcomes={
            str(parser): OutcomeCounts(success=int(counts["success"]), failure=int(counts["failure"]))
            for parser, counts in (raw.get("parser_outcomes") or {}).items()
        },
        version=int(raw.get("version", 0)),
        created_at=_datetime_or_none(raw.get("created_at")),
        updated_at=_datetime_or_none(raw.get("updated_at")),
    )


class TemplateStore:
    """Learned templates on disk, one JSON document per merchant."""

    def __init__(self, directory: Path | None = None) -> None:
        self.directory = directory if directory is not None else get_paths().templates

    def _lock_for(self, slug: str) -> threading.Lock:
        key = self._path_for(slug).resolve()
        with _FILE_LOCKS_GUARD:
            lock = _FILE_LOCKS.get(key)
            if lock is None:
                lock = _FILE_LOCKS[key] = threading.Lock()
            return lock

    def _path_for(self, slug: str) -> Path:
        return self.directory / f"{slug}.json"

    def _read(self, path: Path) -> StoreParsingTemplate | None:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise TemplateStoreError(f"Cannot read template {path}: {exc}") from exc

        try:
            return template_from_dict(json.loads(text))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed template %s: %s", path, exc)
            return None

    def _write(self, slug: str, template: StoreParsingTemplate) -> None:
        path = self._path_for(slug)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{slug}.", suffix=".tmp", dir=self.directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(template_to_dict(template), f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise TemplateStoreError(f"Cannot write template {path}: {exc}") from exc

    def get(self, merchant_id: str) -> StoreParsingTemplate | None:
        """Return the template for a merchant, or None when absent or malformed."""
        return self._read(self._path_for(_slug(merchant_id)))

    def list_all(self) -> list[StoreParsingTemplate]:
        if not self.directory.is_dir():
            return []
        templates: list[StoreParsingTemplate] = []
        for path in sorted(self.directory.glob("*.json")):
            template = self._read(path)
            if template is not None:
                templates.append(template)
        return templates

    def list_with_fingerprints(self) -> list[StoreParsingTemplate]:
        return [template for template in self.list_all() if template.fingerprint is not None]

    def upsert(
        self,
        merchant_id: str,
        *,
        zones: Sequence[ZoneDefinition],
        store_name: str | None = None,
        hints: ParsingHints | None = None,
        sample_image_path: str | None = None,
        image_dimensions: ImageDimensions | None = None,
        fingerprint: StoreFingerprint | None = None,
        confidence: int | None = None,
    ) -> StoreParsingTemplate:
        """
        Create or replace a merchant's zones and hints.

        Counters, version history and creation time of an existing template
        are kept; only ``record_outcome`` moves them.
        """
        slug = _slug(merchant_id)
        now = datetime.now(timezone.utc)
        with self._lock_for(slug):
            existing = self._read(self._path_for(slug))
            if existing is None:
                template = StoreParsingTemplate(
                    merchant_id=merchant_id,
                    zones=tuple(zones),
                    store_name=store_name,
                    parsing_hints=hints or ParsingHints(),
                    sample_image_path=sample_image_path,
                    image_dimensions=image_dimensions,
                    fingerprint=fingerprint,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                if confidence is not None:
                    template = replace(template, confidence=max(0, min(100, confidence)))
            else:
                template = replace(
                    existing,
                    zones=tuple(zones),
                    store_name=store_name or existing.store_name,
                    parsing_hints=hints or existing.parsing_hints,
                    sample_image_path=sample_image_path or existing.sample_image_path,
                    image_dimensions=image_dimensions or existing.image_dimensions,
                    fingerprint=fingerprint or existing.fingerprint,
                    confidence=existing.confidence if confidence is None else max(0, min(100, confidence)),
                    version=existing.version + 1,
                    updated_at=now,
                )
            self._write(slug, template)
        logger.debug("Saved template %s (version %d)", merchant_id, template.version)
        return template

    def record_outcome(
        self, merchant_id: str, success: bool, parser: ParserKind = "template"
    ) -> StoreParsingTemplate | None:
        """
        Apply one parse outcome to a merchant's counters.

        Confidence moves +2 on success and -5 on failure, clamped to 0-100.
        Returns the updated template, or None when the merchant has none.
        """
        slug = _slug(merchant_id)
        with self._lock_for(slug):
            existing = self._read(self._path_for(slug))
            if existing is None:
                return None

            counts = existing.parser_outcomes.get(parser, OutcomeCounts())
            if success:
                counts = replace(counts, success=counts.success + 1)
                confidence = existing.confidence + SUCCESS_CONFIDENCE_STEP
            else:
                counts = replace(counts, failure=counts.failure + 1)
                confidence = existing.confidence - FAILURE_CONFIDENCE_STEP

            template = replace(
                existing,
                use_count=existing.use_count + 1,
                success_count=existing.success_count + (1 if success else 0),
                failure_count=existing.failure_count + (0 if success else 1),
                parser_outcomes={**existing.parser_outcomes, parser: counts},
                confidence=max(0, min(100, confidence)),
                version=existing.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            self._write(slug, template)
        logger.debug(
            "Recorded %s %s for %s (confidence %d, %d uses)",
            parser,
            "success" if success else "failure",
            merchant_id,
            template.confidence,
            template.use_count,
        )
        return template
