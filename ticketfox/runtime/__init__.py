"""Runtime infrastructure for ticketfox.

This package provides process/runtime services including:
- Logging setup via get_logger()
- Path resolution via get_paths(), ProjectPaths
- Reference data loading via load_reference_data()
- Learned template persistence via TemplateStore

Usage:
    from ticketfox.runtime import get_logger, get_paths, load_reference_data

    logger = get_logger(__name__)
    reference = load_reference_data()
    print(get_paths().templates)
"""

from ticketfox.runtime.logging import (
    DEFAULT_LOG_LEVEL,
    LOG_FORMAT,
    LOG_FORMAT_DEBUG,
    configure_logging,
    get_logger,
    set_log_level,
)
from ticketfox.runtime.paths import (
    ProjectPaths,
    get_paths,
    set_project_root,
)
from ticketfox.runtime.reference_data import (
    load_chain_registry,
    load_preset_registry,
    load_reference_data,
    load_tax_region_registry,
    reset_reference_data,
)
from ticketfox.runtime.template_store import TemplateStore, TemplateStoreError

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "set_log_level",
    "DEFAULT_LOG_LEVEL",
    "LOG_FORMAT",
    "LOG_FORMAT_DEBUG",
    # Reference data
    "load_chain_registry",
    "load_preset_registry",
    "load_tax_region_registry",
    "load_reference_data",
    "reset_reference_data",
    # Templates
    "TemplateStore",
    "TemplateStoreError",
    # Paths
    "get_paths",
    "set_project_root",
    "ProjectPaths",
]
