"""
Purchase Order Module (``procurement_modules.purchase_orders``).

Responsibility
--------------
The purchase order approval workflow: creation in DRAFT, stage-gated
editing, submission, the PENDING_APPROVAL -> APPROVED_L1 -> APPROVED_FINAL
-> ORDERED approval chain, rejection to CANCELLED, deletion of drafts,
order numbering, and the append-only workflow history.

Architecture position
---------------------
**Modules layer** -- domain models, ORM models, the transition table, and
``PurchaseOrderService``, which owns the transaction boundary.

Invariants enforced
-------------------
* Stage and status always agree with the workflow's mapping.
* Totals are derived by ``procurement_engines.totals`` and never hand-set.
* Workflow history is append-only (ORM listeners in
  ``procurement_kernel.db.immutability``).
* Concurrent writes to one order are serialized by an optimistic version.

Failure modes
-------------
* Typed ``ProcurementError`` subclasses; see ``procurement_kernel.exceptions``.
* Notification failures after ORDERED are warnings on the result.

Audit relevance
---------------
Every transition writes a history entry in the same transaction: who did
what, when, at which stage, with what remarks and which field changes.
"""

from procurement_modules.purchase_orders.models import (
    Address,
    HistoryAction,
    NotificationResult,
    POStatus,
    Principal,
    ProductLine,
    PurchaseOrder,
    PurchaseOrderResult,
    StageAction,
    StageCode,
    WorkflowHistoryEntry,
    WorkflowStage,
)
from procurement_modules.purchase_orders.notifications import (
    NullOrderNotifier,
    OrderNotifier,
    SmtpOrderNotifier,
    build_notifier,
)
from procurement_modules.purchase_orders.service import PurchaseOrderService
from procurement_modules.purchase_orders.stages import (
    StageRegistry,
    bootstrap_workflow,
    validate_workflow_against_stages,
)
from procurement_modules.purchase_orders.workflows import PURCHASE_ORDER_WORKFLOW

__all__ = [
    "Address",
    "HistoryAction",
    "NotificationResult",
    "NullOrderNotifier",
    "OrderNotifier",
    "POStatus",
    "PURCHASE_ORDER_WORKFLOW",
    "Principal",
    "ProductLine",
    "PurchaseOrder",
    "PurchaseOrderResult",
    "PurchaseOrderService",
    "SmtpOrderNotifier",
    "StageAction",
    "StageCode",
    "StageRegistry",
    "WorkflowHistoryEntry",
    "WorkflowStage",
    "bootstrap_workflow",
    "build_notifier",
    "validate_workflow_against_stages",
]
