"""
Configuration Schema (``procurement_config.schema``).

Frozen dataclasses describing everything the workflow engine reads from
configuration: numbering, time zone, currency precision, line defaults,
the stage catalog to seed, and outbound notification settings.

Field defaults are the values the engine uses when a key is absent from
YAML and from the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from procurement_kernel.logging_config import get_logger

logger = get_logger("config.schema")

VALID_ACTIONS = frozenset({"edit", "approve", "reject", "cancel"})
VALID_ROUNDING_MODES = frozenset({ROUND_HALF_UP, ROUND_HALF_EVEN, ROUND_HALF_DOWN})


@dataclass(frozen=True)
class StageSeed:
    """A workflow stage to be created by bootstrap if it does not exist."""

    code: str
    name: str
    sequence: int
    allowed_actions: tuple[str, ...] = ()
    description: str = ""
    is_active: bool = True

    def __post_init__(self) -> None:
        if not self.code or self.code != self.code.upper():
            raise ValueError(f"Stage code must be non-empty upper case: {self.code!r}")
        unknown = set(self.allowed_actions) - VALID_ACTIONS
        if unknown:
            raise ValueError(
                f"Stage {self.code} has unknown allowed actions: {sorted(unknown)}"
            )


DEFAULT_STAGES: tuple[StageSeed, ...] = (
    StageSeed("DRAFT", "Draft", 1, ("edit", "approve", "cancel"),
              "Purchase order being prepared"),
    StageSeed("PENDING_APPROVAL", "Pending Approval", 2, ("approve", "reject"),
              "Submitted and waiting for level 1 approval"),
    StageSeed("APPROVED_L1", "Level 1 Approved", 3, ("approve", "reject"),
              "Approved at level 1, waiting for final approval"),
    StageSeed("APPROVED_FINAL", "Final Approval", 4, ("approve", "reject"),
              "Finally approved, ready to be ordered"),
    StageSeed("ORDERED", "Ordered", 5, (),
              "Sent to the principal"),
    StageSeed("CANCELLED", "Cancelled", 6, (),
              "Rejected during approval"),
)


@dataclass(frozen=True)
class NotificationSettings:
    """SMTP settings for the order notification sent on reaching ORDERED."""

    enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 587
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    use_tls: bool = True
    from_email: str = "purchase@example.com"
    from_name: str = "Purchase Department"
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")


@dataclass(frozen=True)
class ProcurementConfig:
    """
    Runtime configuration for the purchase order workflow engine.

    Override with company-specific values through YAML or environment
    variables (see ``procurement_config.loader``), or directly:

        config = ProcurementConfig(org_prefix="MM", timezone="Asia/Kolkata")
    """

    # Numbering
    org_prefix: str = "MM"
    timezone: str = "Asia/Kolkata"

    # Money
    currency_decimal_places: int = 2
    rounding: str = ROUND_HALF_UP

    # Order and line defaults
    default_tax_type: str = "IGST"
    default_order_gst_rate: Decimal = Decimal("5")
    default_line_gst_rate: Decimal = Decimal("18")
    default_unit: str = "PCS"

    # Persistence
    database_url: str = "sqlite+pysqlite:///:memory:"

    # Workflow
    stages: tuple[StageSeed, ...] = DEFAULT_STAGES

    # Notifications
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    # SHA-256 of the source data, empty when built in code
    checksum: str = ""

    def __post_init__(self):
        if not self.org_prefix:
            raise ValueError("org_prefix must not be empty")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from exc
        if self.currency_decimal_places < 0:
            raise ValueError("currency_decimal_places cannot be negative")
        if self.rounding not in VALID_ROUNDING_MODES:
            raise ValueError(f"Unsupported rounding mode: {self.rounding!r}")
        codes = [s.code for s in self.stages]
        if len(codes) != len(set(codes)):
            raise ValueError(f"Duplicate stage codes in configuration: {codes}")

        logger.info(
            "procurement_config_initialized",
            extra={
                "org_prefix": self.org_prefix,
                "timezone": self.timezone,
                "currency_decimal_places": self.currency_decimal_places,
                "stage_count": len(self.stages),
                "notifications_enabled": self.notifications.enabled,
                "checksum": self.checksum or None,
            },
        )

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def with_defaults(cls) -> ProcurementConfig:
        """Create config with the built-in defaults."""
        logger.info("procurement_config_created_with_defaults")
        return cls()
