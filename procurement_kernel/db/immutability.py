"""
ORM-Level Append-Only Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A purchase order's workflow history is its audit trail: who created it, who
edited what, who approved at which level, who rejected and why.  Entries are
appended as part of a transition and must never be edited or removed while
the purchase order exists.  Workflow stage codes are the stable identifiers
those entries point at, so a code must not change once anything refers to it.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
The listeners registered here intercept those events:

    session.flush()
         |
         v
    [before_flush]   --> _check_history_deletion_before_flush()
         |
         v
    [before_update]  --> _check_history_entry_immutability()   --+
    [before_update]  --> _check_stage_code_immutability()         |--> ImmutabilityViolationError
    [before_delete]  --> _check_history_entry_delete()          --+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                        | When Immutable                  | Exception
------------------------------|---------------------------------|----------------------------
WorkflowHistoryEntryModel     | ALWAYS (from creation)          | Deleted with its parent PO
WorkflowStageModel.code       | Once referenced by a PO/entry   | -

===============================================================================
USAGE
===============================================================================

    from procurement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, text
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from procurement_kernel.exceptions import ImmutabilityViolationError
from procurement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_DELETING_PO_IDS_KEY = "deleting_purchase_order_ids"


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_history_deletion_before_flush(session, flush_context, instances):
    """
    Record which purchase orders are being deleted and reject any history
    entry deletion whose parent is not among them.

    Runs in SessionEvents.before_flush, before the flush plan is finalized.
    Orphan deletions (an entry removed from its collection) are only known
    during the flush itself and are caught by _check_history_entry_delete.
    """
    from procurement_modules.purchase_orders.orm import (
        PurchaseOrderModel,
        WorkflowHistoryEntryModel,
    )

    deleting = {
        obj.id for obj in session.deleted if isinstance(obj, PurchaseOrderModel)
    }
    session.info[_DELETING_PO_IDS_KEY] = deleting

    for obj in list(session.deleted):
        if not isinstance(obj, WorkflowHistoryEntryModel):
            continue
        if obj.purchase_order_id not in deleting:
            _blocked(
                "WorkflowHistoryEntry",
                obj.id,
                "DELETE",
                "Workflow history entries cannot be deleted",
                purchase_order_id=str(obj.purchase_order_id),
            )


def _clear_deleting_marker(session, flush_context):
    session.info.pop(_DELETING_PO_IDS_KEY, None)


def _check_history_entry_immutability(mapper, connection, target):
    """Prevent any update to a workflow history entry."""
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    _blocked(
        "WorkflowHistoryEntry",
        target.id,
        "UPDATE",
        "Workflow history entries are immutable and cannot be modified",
        purchase_order_id=str(target.purchase_order_id),
    )


def _check_history_entry_delete(mapper, connection, target):
    """Allow deleting a history entry only together with its purchase order."""
    session = object_session(target)
    deleting = session.info.get(_DELETING_PO_IDS_KEY, set()) if session else set()
    if target.purchase_order_id in deleting:
        return
    _blocked(
        "WorkflowHistoryEntry",
        target.id,
        "DELETE",
        "Workflow history entries cannot be deleted",
        purchase_order_id=str(target.purchase_order_id),
    )


def _check_stage_code_immutability(mapper, connection, target):
    """
    Prevent changes to WorkflowStage.code once a purchase order or history
    entry references the stage.
    """
    code_history = get_history(target, "code")
    if not code_history.has_changes():
        return

    old_code = code_history.deleted[0] if code_history.deleted else None
    if old_code is None:
        return

    referenced = connection.execute(
        text(
            "SELECT 1 FROM purchase_orders WHERE current_stage_id = :stage_id "
            "UNION ALL "
            "SELECT 1 FROM purchase_order_workflow_history WHERE stage_id = :stage_id "
            "LIMIT 1"
        ),
        {"stage_id": str(target.id)},
    ).first()

    if referenced is not None:
        _blocked(
            "WorkflowStage",
            target.id,
            "UPDATE",
            f"Cannot change code on a referenced workflow stage (old code: {old_code})",
            field="code",
        )


def register_immutability_listeners():
    """Register all append-only enforcement event listeners.  Idempotent."""
    from procurement_modules.purchase_orders.orm import (
        WorkflowHistoryEntryModel,
        WorkflowStageModel,
    )

    listeners = (
        (Session, "before_flush", _check_history_deletion_before_flush),
        (Session, "after_flush_postexec", _clear_deleting_marker),
        (WorkflowHistoryEntryModel, "before_update", _check_history_entry_immutability),
        (WorkflowHistoryEntryModel, "before_delete", _check_history_entry_delete),
        (WorkflowStageModel, "before_update", _check_stage_code_immutability),
    )
    for target, name, fn in listeners:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)

    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """Remove the append-only enforcement listeners.  TESTS ONLY."""
    from procurement_modules.purchase_orders.orm import (
        WorkflowHistoryEntryModel,
        WorkflowStageModel,
    )

    _safe_remove_listener(Session, "before_flush", _check_history_deletion_before_flush)
    _safe_remove_listener(Session, "after_flush_postexec", _clear_deleting_marker)
    _safe_remove_listener(WorkflowHistoryEntryModel, "before_update", _check_history_entry_immutability)
    _safe_remove_listener(WorkflowHistoryEntryModel, "before_delete", _check_history_entry_delete)
    _safe_remove_listener(WorkflowStageModel, "before_update", _check_stage_code_immutability)
