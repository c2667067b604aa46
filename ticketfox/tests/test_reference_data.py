"""Tests for chain templates, regional presets and tax regions."""

from __future__ import annotations

from pathlib import Path

import pytest

from ticketfox.receipt.chain_templates import (
    ReferenceDataError,
    apply_chain_corrections,
    build_chain_registry,
    build_chain_template,
)
from ticketfox.receipt.regional_presets import (
    KeywordCategory,
    detect_region_from_text,
    get_preset_by_country_code,
    get_regional_preset,
    match_store_in_preset,
    matches_keyword,
    should_skip_text,
)
from ticketfox.receipt.tax_regions import (
    TaxDetectionMethod,
    TaxType,
    detect_tax_region,
    get_tax_rates,
    match_tax_rate,
)
from ticketfox.runtime import load_chain_registry

_MINIMAL_CHAIN = {
    "id": "barrio",
    "name": "Barrio",
    "tier": 3,
    "name_patterns": ["(?i)SUPER BARRIO"],
    "items": [{"pattern": r"^(.+?)\s+(\d+,\d{2})$", "name": 1, "total_price": 2}],
}


def test_builtin_chains_are_ordered_by_tier_then_market_share(reference) -> None:
    ids = [template.chain_id for template in reference.chains.templates]

    assert set(ids) == {
        "mercadona",
        "carrefour",
        "lidl",
        "eroski",
        "dia",
        "consum",
        "alcampo",
        "aldi",
        "hiperdino",
    }
    assert ids[0] == "mercadona"
    tiers = [template.tier for template in reference.chains.templates]
    assert tiers == sorted(tiers)
    tier_one = reference.chains.by_tier(1)
    shares = [template.market_share for template in tier_one]
    assert shares == sorted(shares, reverse=True)


def test_chain_lookup_is_case_insensitive(reference) -> None:
    assert reference.chains.get("MERCADONA") is reference.chains.get("mercadona")
    assert reference.chains.get("unknown") is None
    assert reference.chains.nif_index["A46103834"] == "mercadona"
    assert reference.chains.nif_index["A-46103834"] == "mercadona"


def test_chain_corrections_fix_known_misreads(reference) -> None:
    mercadona = reference.chains.get("mercadona")

    assert apply_chain_corrections("MERCAD0NA S.A.", mercadona) == "MERCADONA S.A."


def test_chain_grammar_group_outside_pattern_is_rejected() -> None:
    config = dict(_MINIMAL_CHAIN, items=[{"pattern": r"^(.+?)\s+(\d+,\d{2})$", "name": 1, "total_price": 3}])

    with pytest.raises(ReferenceDataError, match="exceeds pattern groups"):
        build_chain_template(config)


def test_chain_needs_a_price_group_and_valid_regex() -> None:
    with pytest.raises(ReferenceDataError, match="price group"):
        build_chain_template(dict(_MINIMAL_CHAIN, items=[{"pattern": "^(.+)$", "name": 1}]))
    with pytest.raises(ReferenceDataError, match="invalid pattern"):
        build_chain_template(dict(_MINIMAL_CHAIN, name_patterns=["(unclosed"]))


def test_override_replaces_chain_with_same_id() -> None:
    builtin = ("builtin.toml", _MINIMAL_CHAIN)
    override = ("user.toml", dict(_MINIMAL_CHAIN, name="Barrio Local"))

    registry = build_chain_registry([builtin], overrides=[override])

    assert len(registry.templates) == 1
    assert registry.get("barrio").name == "Barrio Local"


def test_invalid_user_chain_file_is_skipped(tmp_path: Path) -> None:
    builtin_dir = tmp_path / "builtin"
    user_dir = tmp_path / "user"
    builtin_dir.mkdir()
    user_dir.mkdir()
    (builtin_dir / "barrio.toml").write_text(
        'id = "barrio"\nname = "Barrio"\n\n[[items]]\npattern = \'^(.+?)\\s+(\\d+,\\d{2})$\'\nname = 1\ntotal_price = 2\n',
        encoding="utf-8",
    )
    (user_dir / "broken.toml").write_text('id = "broken"\nname = "Broken"\n', encoding="utf-8")

    registry = load_chain_registry(str(builtin_dir), str(user_dir))

    assert [template.chain_id for template in registry.templates] == ["barrio"]


def test_spain_preset_lookups(reference) -> None:
    spain = get_regional_preset("spain", reference.presets)

    assert spain is not None
    assert spain.decimal_separator == ","
    assert spain.thousands_separator == "."
    assert spain.date_format == "DMY"
    assert spain.currency == "EUR"
    assert spain.tax_rates == (4.0, 10.0, 21.0)
    assert get_preset_by_country_code("es", reference.presets) is spain
    assert get_preset_by_country_code("FR", reference.presets) is None
    assert reference.preset is spain


def test_region_detection_needs_two_indicators(reference) -> None:
    assert detect_region_from_text("TOTAL 12,50 IVA incluido", reference.presets).preset_id == "spain"
    assert detect_region_from_text("TOTAL 12.50", reference.presets) is None


def test_preset_keywords_and_store_matching(reference) -> None:
    spain = reference.preset

    assert match_store_in_preset("Mercadona", spain) == "MERCADONA"
    assert match_store_in_preset("SUPERMERCADO MASYMAS", spain) is not None
    assert match_store_in_preset("XYZ", spain) is None
    assert matches_keyword("Total a pagar", KeywordCategory.TOTAL, spain)
    assert matches_keyword("PAGO CON VISA", KeywordCategory.CARD, spain)
    assert not matches_keyword("PAN BARRA", KeywordCategory.TOTAL, spain)
    assert should_skip_text("Gracias por su visita", spain)
    assert not should_skip_text("YOGUR NATURAL", spain)


def test_tax_region_from_postal_code(reference) -> None:
    tenerife = detect_tax_region("C/ La Marina 3, 38001 Santa Cruz", reference.tax_regions)
    madrid = detect_tax_region("Calle Mayor 1, 28013 Madrid", reference.tax_regions)
    ceuta = detect_tax_region("", reference.tax_regions, postal_code="51001")

    assert tenerife.region.region_id == "canarias"
    assert tenerife.confidence == 98
    assert tenerife.method == TaxDetectionMethod.POSTAL_CODE
    assert madrid.region.tax_type == TaxType.IVA
    assert ceuta.region.tax_type == TaxType.IPSI


def test_tax_region_from_keywords_store_and_default(reference) -> None:
    igic = detect_tax_region("IGIC 7% 0,70", reference.tax_regions)
    url = detect_tax_region("www.lidl-canarias.es", reference.tax_regions)
    iva = detect_tax_region("IVA 21% 1,05", reference.tax_regions)
    by_store = detect_tax_region("sin impuestos", reference.tax_regions, store_name="HiperDino")
    fallback = detect_tax_region("sin datos", reference.tax_regions)

    assert igic.region.tax_type == TaxType.IGIC and igic.confidence == 95
    assert url.region.region_id == "canarias"
    assert iva.region.tax_type == TaxType.IVA and iva.confidence == 90
    assert by_store.method == TaxDetectionMethod.STORE_NAME and by_store.confidence == 85
    assert fallback.method == TaxDetectionMethod.DEFAULT and fallback.confidence == 70
    assert fallback.region.region_id == "peninsula"


def test_tax_rates_and_tolerant_rate_matching(reference) -> None:
    assert get_tax_rates("peninsula", reference.tax_regions) == (4.0, 10.0, 21.0)
    assert get_tax_rates("canarias", reference.tax_regions) == (0.0, 3.0, 7.0)
    assert get_tax_rates("nowhere", reference.tax_regions) == ()

    rate = match_tax_rate(20.6, "peninsula", reference.tax_regions)
    assert rate is not None and rate.rate == 21.0
    assert match_tax_rate(15.0, "peninsula", reference.tax_regions) is None
    assert match_tax_rate(0.5, "ceuta_melilla", reference.tax_regions).rate == 0.5
