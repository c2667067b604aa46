"""Runtime loader for the chain, preset and tax-region reference data."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from ticketfox.receipt.chain_templates import (
    ChainRegistry,
    ReferenceDataError,
    build_chain_registry,
    build_chain_template,
)
from ticketfox.receipt.reference import ReferenceData
from ticketfox.receipt.regional_presets import PresetRegistry, build_preset_registry
from ticketfox.receipt.tax_regions import TaxRegionRegistry, build_tax_region_registry
from ticketfox.runtime.logging import get_logger
from ticketfox.runtime.paths import get_paths

logger = get_logger(__name__)


def _load_toml(path: Path) -> dict[str, Any]:
    """Load TOML file and return parsed dict; missing files map to empty dict."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    if not path.exists():
        return {}

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ReferenceDataError(f"{path}: {exc}") from exc
    return data if isinstance(data, dict) else {}


def _load_chain_dir(directory: Path) -> list[tuple[str, dict[str, Any]]]:
    if not directory.is_dir():
        return []
    return [(str(path), _load_toml(path)) for path in sorted(directory.glob("*.toml"))]


def _load_user_chains(directory: Path) -> list[tuple[str, dict[str, Any]]]:
    """User chain files are skipped (with a warning) when unreadable or invalid."""
    valid: list[tuple[str, dict[str, Any]]] = []
    if not directory.is_dir():
        return valid
    for path in sorted(directory.glob("*.toml")):
        try:
            config = _load_toml(path)
            build_chain_template(config, source=str(path))
        except ReferenceDataError as exc:
            logger.warning("Ignoring user chain template: %s", exc)
            continue
        valid.append((str(path), config))
    return valid


@lru_cache(maxsize=4)
def load_chain_registry(
    builtin_dir: str | None = None,
    user_dir: str | None = None,
) -> ChainRegistry:
    """
    Load chain templates.

    Args:
        builtin_dir: Directory of built-in chain TOML files. If None, uses the
            files shipped with the package.
        user_dir: Directory of user overrides. If None, uses config/chains
            under the project root.
    """
    p = get_paths()
    builtin = Path(builtin_dir) if builtin_dir is not None else p.builtin_chains
    user = Path(user_dir) if user_dir is not None else p.user_chains
    registry = build_chain_registry(_load_chain_dir(builtin), overrides=_load_user_chains(user))
    logger.debug("Loaded %d chain templates", len(registry.templates))
    return registry


@lru_cache(maxsize=4)
def load_preset_registry(config_path: str | None = None) -> PresetRegistry:
    path = Path(config_path) if config_path is not None else get_paths().regional_presets
    return build_preset_registry(_load_toml(path), source=str(path))


@lru_cache(maxsize=4)
def load_tax_region_registry(config_path: str | None = None) -> TaxRegionRegistry:
    path = Path(config_path) if config_path is not None else get_paths().tax_regions
    return build_tax_region_registry(_load_toml(path), source=str(path))


@lru_cache(maxsize=1)
def load_reference_data() -> ReferenceData:
    """Load every registry once per process."""
    return ReferenceData(
        chains=load_chain_registry(),
        presets=load_preset_registry(),
        tax_regions=load_tax_region_registry(),
    )


def reset_reference_data() -> None:
    """Drop cached registries (after set_project_root or in tests)."""
    load_reference_data.cache_clear()
    load_chain_registry.cache_clear()
    load_preset_registry.cache_clear()
    load_tax_region_registry.cache_clear()
