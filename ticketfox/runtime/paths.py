"""Centralized path management for ticketfox.

Every on-disk location the runtime touches is derived from one root,
taken from TICKETFOX_HOME (or the current working directory).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

# Built-in rule data shipped inside the package
PACKAGE_RULES_DIR = Path(__file__).resolve().parents[1] / "receipt" / "rules"


def _get_project_root() -> Path:
    """Determine the project root directory."""
    env_root = os.environ.get("TICKETFOX_HOME")
    if env_root:
        return Path(env_root).expanduser()
    return Path.cwd()


@dataclass
class ProjectPaths:
    """Container for all project-related paths."""

    root: Path = field(default_factory=_get_project_root)

    def __post_init__(self) -> None:
        self.root = self.root.resolve()

    # --- Built-in reference data ---
    @property
    def builtin_rules(self) -> Path:
        """Reference data TOML files bundled with the package."""
        return PACKAGE_RULES_DIR

    @property
    def builtin_chains(self) -> Path:
        """Built-in chain template directory."""
        return self.builtin_rules / "chains"

    @property
    def regional_presets(self) -> Path:
        """Regional preset TOML file."""
        return self.builtin_rules / "regional_presets.toml"

    @property
    def tax_regions(self) -> Path:
        """Tax region TOML file."""
        return self.builtin_rules / "tax_regions.toml"

    # --- Configuration paths ---
    @property
    def config(self) -> Path:
        """User configuration directory (config/)."""
        return self.root / "config"

    @property
    def user_chains(self) -> Path:
        """User-provided chain templates; same id replaces a built-in chain."""
        return self.config / "chains"

    # --- Data paths ---
    @property
    def data(self) -> Path:
        """Runtime data directory (data/)."""
        return self.root / "data"

    @property
    def templates(self) -> Path:
        """Learned per-merchant parsing templates (JSON)."""
        return self.data / "templates"

    @property
    def ocr_json(self) -> Path:
        """Raw OCR results (JSON)."""
        return self.data / "ocr_json"

    @property
    def uploads(self) -> Path:
        """Receipt images received by the server."""
        return self.data / "uploads"

    def ensure_data_directories(self) -> None:
        """Create all data directories if they don't exist."""
        self.templates.mkdir(parents=True, exist_ok=True)
        self.ocr_json.mkdir(parents=True, exist_ok=True)
        self.uploads.mkdir(parents=True, exist_ok=True)


_paths: ProjectPaths | None = None


def get_paths() -> ProjectPaths:
    """Get the singleton ProjectPaths instance."""
    global _paths
    if _paths is None:
        _paths = ProjectPaths()
    return _paths


def set_project_root(root: Path) -> ProjectPaths:
    """Point the singleton at a different root (tests, CLI --home)."""
    global _paths
    _paths = ProjectPaths(root=root)
    return _paths
