"""
procurement_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the way runtime code obtains a
    ``ProcurementConfig``.  YAML parsing and environment overrides live in
    ``procurement_config.loader``.

Architecture position:
    Configuration.  Sits above ``procurement_kernel`` and below
    ``procurement_modules``.  The kernel never imports from here.
"""

from __future__ import annotations

from pathlib import Path

from procurement_config.loader import load_config
from procurement_config.schema import (
    DEFAULT_STAGES,
    NotificationSettings,
    ProcurementConfig,
    StageSeed,
)
from procurement_kernel.logging_config import get_logger

_logger = get_logger("config")


def get_active_config(path: Path | None = None) -> ProcurementConfig:
    """
    Load the active configuration.

    Reads ``path`` (bundled ``defaults.yaml`` when None), applies
    ``PROCUREMENT_*`` environment overrides and validates the result.
    """
    config = load_config(path)
    _logger.info(
        "PROCUREMENT_CONFIG_TRACE",
        extra={
            "org_prefix": config.org_prefix,
            "timezone": config.timezone,
            "stage_codes": [s.code for s in config.stages],
            "checksum": config.checksum,
        },
    )
    return config


__all__ = [
    "DEFAULT_STAGES",
    "NotificationSettings",
    "ProcurementConfig",
    "StageSeed",
    "get_active_config",
]
