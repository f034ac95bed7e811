"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads a YAML configuration file, applies ``PROCUREMENT_*`` environment
overrides, and parses the result into a frozen ``ProcurementConfig``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required stage keys  -> ``KeyError`` propagates.
* Invalid values (timezone, rounding, actions)  -> ``ValueError``.

``compute_checksum`` gives a deterministic SHA-256 over the merged data so
that a running process can report exactly which configuration it loaded.
"""

from __future__ import annotations

import hashlib
import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping

import yaml

from procurement_config.schema import NotificationSettings, ProcurementConfig, StageSeed
from procurement_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

ENV_PREFIX = "PROCUREMENT_"

# Environment variable suffix -> (section, key).  Section None = top level.
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "DATABASE_URL": (None, "database_url"),
    "ORG_PREFIX": (None, "org_prefix"),
    "TIMEZONE": (None, "timezone"),
    "CURRENCY_DECIMAL_PLACES": (None, "currency_decimal_places"),
    "NOTIFICATIONS_ENABLED": ("notifications", "enabled"),
    "SMTP_HOST": ("notifications", "smtp_host"),
    "SMTP_PORT": ("notifications", "smtp_port"),
    "SMTP_USERNAME": ("notifications", "username"),
    "SMTP_PASSWORD": ("notifications", "password"),
    "SMTP_USE_TLS": ("notifications", "use_tls"),
    "SMTP_FROM_EMAIL": ("notifications", "from_email"),
    "SMTP_FROM_NAME": ("notifications", "from_name"),
}

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_STRINGS


def parse_stage_seed(data: dict[str, Any]) -> StageSeed:
    """Parse a StageSeed from a dict.  ``code``, ``name`` and ``sequence`` are required."""
    return StageSeed(
        code=str(data["code"]).strip().upper(),
        name=data["name"],
        sequence=int(data["sequence"]),
        allowed_actions=tuple(data.get("allowed_actions") or ()),
        description=data.get("description", "") or "",
        is_active=parse_bool(data.get("is_active", True)),
    )


def parse_notification_settings(data: dict[str, Any]) -> NotificationSettings:
    defaults = NotificationSettings()
    return NotificationSettings(
        enabled=parse_bool(data.get("enabled", defaults.enabled)),
        smtp_host=data.get("smtp_host", defaults.smtp_host),
        smtp_port=int(data.get("smtp_port", defaults.smtp_port)),
        username=data.get("username") or None,
        password=data.get("password") or None,
        use_tls=parse_bool(data.get("use_tls", defaults.use_tls)),
        from_email=data.get("from_email", defaults.from_email),
        from_name=data.get("from_name", defaults.from_name),
        max_retries=int(data.get("max_retries", defaults.max_retries)),
        retry_delay_seconds=float(data.get("retry_delay_seconds", defaults.retry_delay_seconds)),
        timeout_seconds=float(data.get("timeout_seconds", defaults.timeout_seconds)),
    )


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return a copy of ``data`` with ``PROCUREMENT_*`` variables applied."""
    environ = os.environ if environ is None else environ
    merged = dict(data)
    merged["notifications"] = dict(data.get("notifications") or {})
    applied: list[str] = []

    for suffix, (section, key) in _ENV_OVERRIDES.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is None:
            continue
        target = merged if section is None else merged[section]
        target[key] = value
        applied.append(ENV_PREFIX + suffix)

    if applied:
        logger.info("config_env_overrides_applied", extra={"variables": applied})
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> ProcurementConfig:
    """Parse a ProcurementConfig from merged configuration data."""
    defaults = ProcurementConfig.__dataclass_fields__
    kwargs: dict[str, Any] = {}

    for key in ("org_prefix", "timezone", "default_tax_type", "default_unit",
                "database_url", "rounding"):
        if data.get(key) is not None:
            kwargs[key] = str(data[key])
    if data.get("currency_decimal_places") is not None:
        kwargs["currency_decimal_places"] = int(data["currency_decimal_places"])
    for key in ("default_order_gst_rate", "default_line_gst_rate"):
        if data.get(key) is not None:
            kwargs[key] = Decimal(str(data[key]))

    if data.get("stages"):
        kwargs["stages"] = tuple(parse_stage_seed(s) for s in data["stages"])

    kwargs["notifications"] = parse_notification_settings(data.get("notifications") or {})
    kwargs["checksum"] = compute_checksum(data)

    unknown = set(data) - set(defaults) - {"notifications", "stages"}
    if unknown:
        logger.warning("config_unknown_keys_ignored", extra={"keys": sorted(unknown)})

    return ProcurementConfig(**kwargs)


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProcurementConfig:
    """
    Load configuration from YAML (bundled defaults when ``path`` is None)
    and the environment.
    """
    source = path or DEFAULTS_PATH
    data = apply_env_overrides(load_yaml_file(source), environ)
    config = parse_config(data)
    logger.info(
        "config_loaded",
        extra={"path": str(source), "checksum": config.checksum},
    )
    return config
