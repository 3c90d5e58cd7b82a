"""
Configuration schema -- frozen settings consumed by the kernel bridges.

Every field has a default so an empty YAML document still yields a usable
(test-grade) configuration.
"""

from __future__ import annotations

from dataclasses import dataclass

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class KernelSettings:
    """
    Runtime settings for a branchbook deployment.

    ``checksum`` is the SHA-256 of the canonical source document; it ties a
    running process to the exact configuration that produced it.
    """

    database: DatabaseSettings = DatabaseSettings()
    log_level: str = "INFO"
    free_plan_max_branches: int = 1
    lookup_cache_ttl_seconds: int = 300
    lookup_cache_max_entries: int = 1024
    notification_workers: int = 4
    default_page_size: int = 20
    checksum: str = ""

    @property
    def database_url(self) -> str:
        return self.database.url
