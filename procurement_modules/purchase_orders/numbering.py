"""
PO Number Generator.

Format: ``<org prefix>-<principal code>-<ddMMyy>/<daily serial>``, e.g.
``MM-APO-240325/001``.

* principal code: first three characters of the principal's name, upper case
* ddMMyy: the local calendar day in the configured time zone
* daily serial: an atomic per-day counter, zero-padded to three digits

The counter row for a day is created on first use and seeded from the
number of purchase orders already created that day, so switching an
existing database over to counters does not reissue numbers.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from procurement_config.schema import ProcurementConfig
from procurement_kernel.domain.clock import Clock
from procurement_kernel.exceptions import PoNumberExhaustedError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.services.sequence_service import SequenceService
from procurement_modules.purchase_orders.orm import PrincipalModel, PurchaseOrderModel

logger = get_logger("modules.purchase_orders.numbering")

SERIAL_WIDTH = 3
PRINCIPAL_CODE_LENGTH = 3
_MAX_COLLISION_RETRIES = 50


def principal_code(name: str) -> str:
    return name.strip()[:PRINCIPAL_CODE_LENGTH].upper()


def format_po_number(prefix: str, principal_name: str, on: date, serial: int) -> str:
    return f"{prefix}-{principal_code(principal_name)}-{on:%d%m%y}/{serial:0{SERIAL_WIDTH}d}"


class PoNumberGenerator:
    """Allocates purchase order numbers.  Does not commit."""

    def __init__(self, session: Session, clock: Clock, config: ProcurementConfig):
        self._session = session
        self._clock = clock
        self._config = config
        self._tz = ZoneInfo(config.timezone)
        self._sequences = SequenceService(session)

    def local_date(self, at: datetime | None = None) -> date:
        return (at or self._clock.now()).astimezone(self._tz).date()

    def day_window(self, day: date) -> tuple[datetime, datetime]:
        """Local midnight to the next local midnight, as aware datetimes."""
        start = datetime.combine(day, time.min, tzinfo=self._tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self._tz)
        return start, end

    def sequence_name(self, day: date) -> str:
        return f"po_number:{self._config.org_prefix}:{day:%Y%m%d}"

    def count_created_between(self, start: datetime, end: datetime) -> int:
        return self._session.execute(
            select(func.count(PurchaseOrderModel.id)).where(
                PurchaseOrderModel.created_at >= start,
                PurchaseOrderModel.created_at < end,
            )
        ).scalar_one()

    def is_available(self, po_number: str) -> bool:
        existing = self._session.execute(
            select(PurchaseOrderModel.id).where(PurchaseOrderModel.po_number == po_number)
        ).first()
        return existing is None

    def allocate_serial(self, day: date) -> int:
        """Consume the next daily serial for ``day``."""
        start, end = self.day_window(day)
        return self._sequences.next_value(
            self.sequence_name(day),
            seed=lambda: self.count_created_between(start, end),
        )

    def next_po_number(self, principal: PrincipalModel, day: date | None = None) -> str:
        """
        Allocate a number for a new purchase order.  Serials already taken
        by an explicitly supplied number are skipped.
        """
        day = day or self.local_date()
        for _ in range(_MAX_COLLISION_RETRIES):
            serial = self.allocate_serial(day)
            po_number = format_po_number(self._config.org_prefix, principal.name, day, serial)
            if self.is_available(po_number):
                logger.info(
                    "po_number_allocated",
                    extra={"po_number": po_number, "serial": serial, "local_date": day},
                )
                return po_number
            logger.warning("po_number_collision_skipped", extra={"po_number": po_number})
        raise PoNumberExhaustedError(principal.name, day.isoformat(), _MAX_COLLISION_RETRIES)

    def preview_po_number(self, principal: PrincipalModel, day: date | None = None) -> str:
        """
        The number the next creation would receive.  Consumes nothing, and
        skips taken serials the same way ``next_po_number`` does.
        """
        day = day or self.local_date()
        current = self._sequences.current_value(self.sequence_name(day))
        if current is None:
            start, end = self.day_window(day)
            current = self.count_created_between(start, end)
        for serial in range(current + 1, current + 1 + _MAX_COLLISION_RETRIES):
            po_number = format_po_number(self._config.org_prefix, principal.name, day, serial)
            if self.is_available(po_number):
                return po_number
        raise PoNumberExhaustedError(principal.name, day.isoformat(), _MAX_COLLISION_RETRIES)
