"""
Audit Trail Recorder.

Appends immutable workflow history entries to a purchase order.  Called
only from inside a larger transition; there is no standalone mutation and
no way to edit or remove an entry.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock
from procurement_kernel.logging_config import get_logger
from procurement_modules.purchase_orders.models import HistoryAction, WorkflowHistoryEntry
from procurement_modules.purchase_orders.orm import (
    PurchaseOrderModel,
    WorkflowHistoryEntryModel,
    WorkflowStageModel,
)

logger = get_logger("modules.purchase_orders.history")


def to_jsonable(value: Any) -> Any:
    """Render a value for the ``changes`` JSON column."""
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def diff_fields(
    before: dict[str, Any],
    after: dict[str, Any],
) -> dict[str, dict[str, Any]]:
    """Field name -> {"old", "new"} for every field whose JSON form changed."""
    changes: dict[str, dict[str, Any]] = {}
    for name in after:
        old = to_jsonable(before.get(name))
        new = to_jsonable(after[name])
        if old != new:
            changes[name] = {"old": old, "new": new}
    return changes


class AuditTrailRecorder:
    """Appends workflow history entries.  Does not commit."""

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def append(
        self,
        purchase_order: PurchaseOrderModel,
        stage: WorkflowStageModel,
        action: HistoryAction,
        actor_id: UUID,
        remarks: str | None = None,
        changes: dict[str, dict[str, Any]] | None = None,
    ) -> WorkflowHistoryEntryModel:
        """
        Append one entry at the end of the purchase order's history.

        ``seq`` is one past the current last entry, so entries are totally
        ordered by insertion.
        """
        seq = len(purchase_order.history) + 1
        entry = WorkflowHistoryEntryModel(
            seq=seq,
            stage=stage,
            stage_id=stage.id,
            action=HistoryAction(action).value,
            action_by_id=actor_id,
            action_date=self._clock.now(),
            remarks=remarks,
            changes=to_jsonable(changes) if changes else None,
        )
        purchase_order.history.append(entry)

        logger.info(
            "workflow_history_appended",
            extra={
                "po_id": str(purchase_order.id),
                "seq": seq,
                "action": entry.action,
                "stage_code": stage.code,
                "changed_fields": sorted(changes) if changes else [],
            },
        )
        return entry

    def entries_for(self, po_id: UUID) -> tuple[WorkflowHistoryEntry, ...]:
        rows = self._session.execute(
            select(WorkflowHistoryEntryModel)
            .where(WorkflowHistoryEntryModel.purchase_order_id == po_id)
            .order_by(WorkflowHistoryEntryModel.seq)
        ).scalars()
        return tuple(row.to_dto() for row in rows)
