"""
YAML loader -- parses settings documents into frozen dataclasses.

Responsibility:
    Reads a YAML settings file, applies environment overrides, validates
    every field and returns a ``KernelSettings``.  Used only by
    ``get_active_config()``.

Failure modes:
    - FileNotFoundError if the file does not exist.
    - yaml.YAMLError on malformed YAML.
    - ValueError on any field that fails validation (all problems are
      reported together).
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from branchbook_config.schema import LOG_LEVELS, DatabaseSettings, KernelSettings

DATABASE_URL_ENV = "BRANCHBOOK_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return data


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _int_field(
    data: Mapping[str, Any],
    key: str,
    default: int,
    minimum: int,
    errors: list[str],
) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{key} must be an integer, got {value!r}")
        return default
    if value < minimum:
        errors.append(f"{key} must be >= {minimum}, got {value}")
        return default
    return value


def parse_settings(
    data: Mapping[str, Any],
    env: Mapping[str, str] | None = None,
) -> KernelSettings:
    """
    Build KernelSettings from a parsed document.

    ``env`` supplies overrides (``BRANCHBOOK_DATABASE_URL``); pass
    ``os.environ`` in production and a dict in tests.
    """
    env = env or {}
    errors: list[str] = []

    db = data.get("database") or {}
    if not isinstance(db, Mapping):
        errors.append("database must be a mapping")
        db = {}
    url = env.get(DATABASE_URL_ENV) or db.get("url") or DatabaseSettings.url
    if not isinstance(url, str) or "://" not in url:
        errors.append(f"database.url is not a database URL: {url!r}")
        url = DatabaseSettings.url
    database = DatabaseSettings(
        url=url,
        echo=bool(db.get("echo", False)),
        pool_size=_int_field(db, "pool_size", DatabaseSettings.pool_size, 1, errors),
        max_overflow=_int_field(db, "max_overflow", DatabaseSettings.max_overflow, 0, errors),
        pool_timeout=_int_field(db, "pool_timeout", DatabaseSettings.pool_timeout, 1, errors),
        pool_recycle=_int_field(db, "pool_recycle", DatabaseSettings.pool_recycle, 1, errors),
    )

    log_level = str(data.get("log_level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        errors.append(f"log_level must be one of {LOG_LEVELS}, got {log_level!r}")
        log_level = "INFO"

    subscription = data.get("subscription") or {}
    cache = data.get("lookup_cache") or {}
    notifications = data.get("notifications") or {}
    pagination = data.get("pagination") or {}

    settings = KernelSettings(
        database=database,
        log_level=log_level,
        free_plan_max_branches=_int_field(
            subscription, "free_plan_max_branches", 1, 0, errors,
        ),
        lookup_cache_ttl_seconds=_int_field(cache, "ttl_seconds", 300, 0, errors),
        lookup_cache_max_entries=_int_field(cache, "max_entries", 1024, 1, errors),
        notification_workers=_int_field(notifications, "workers", 4, 0, errors),
        default_page_size=_int_field(pagination, "default_page_size", 20, 1, errors),
        checksum=compute_checksum(data),
    )

    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
    return settings
