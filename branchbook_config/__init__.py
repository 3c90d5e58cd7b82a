"""
branchbook_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``KernelSettings``.

Architecture position:
    Configuration.  This package sits above ``branchbook_kernel``.  The
    kernel MUST NEVER import from ``branchbook_config``; ``bridges`` in
    this package translate settings into kernel constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``ValueError`` -- one or more fields failed validation.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``branchbook_config_loaded`` log entry carrying the source path and the
    checksum of the settings document.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from branchbook_config.loader import load_yaml_file, parse_settings
from branchbook_config.schema import DatabaseSettings, KernelSettings

_logger = logging.getLogger("branchbook.config")

_DEFAULT_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


def get_active_config(config_path: Path | None = None) -> KernelSettings:
    """The ONLY public configuration entrypoint.

    ``BRANCHBOOK_DATABASE_URL`` in the environment overrides the file's
    ``database.url``.

    Args:
        config_path: Override path to the settings file.  Defaults to
            branchbook_config/settings.yaml.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path else _DEFAULT_SETTINGS_PATH
    settings = parse_settings(load_yaml_file(path), env=os.environ)

    _logger.info(
        "branchbook_config_loaded",
        extra={
            "source": str(path),
            "checksum": settings.checksum,
            "log_level": settings.log_level,
            "free_plan_max_branches": settings.free_plan_max_branches,
        },
    )
    return settings


__all__ = ["get_active_config", "KernelSettings", "DatabaseSettings"]
