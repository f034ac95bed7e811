"""
Purchase Order Domain Models.

The nouns of the purchase order workflow: stages, orders, product lines,
history entries, and the results handed back to callers.  All frozen.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from procurement_engines.totals import Adjustment, AdjustmentType, TaxType
from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.purchase_orders.models")


class POStatus(str, Enum):
    """Purchase order status, derived from the current stage."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    ORDERED = "ordered"
    REJECTED = "rejected"


class StageCode(str, Enum):
    """Stage codes the transition table knows about."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED_L1 = "APPROVED_L1"
    APPROVED_FINAL = "APPROVED_FINAL"
    ORDERED = "ORDERED"
    CANCELLED = "CANCELLED"


class StageAction(str, Enum):
    """Actions a stage can allow."""
    EDIT = "edit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


class HistoryAction(str, Enum):
    """What a workflow history entry records."""
    CREATED = "created"
    UPDATED = "updated"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({POStatus.ORDERED, POStatus.REJECTED})


@dataclass(frozen=True)
class Address:
    """Bill-to / ship-to party.  ``branch_warehouse`` is required."""
    branch_warehouse: str
    name: str = ""
    address: str = ""
    gstin: str = ""
    drug_license: str = ""
    phone: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "branch_warehouse": self.branch_warehouse,
            "name": self.name,
            "address": self.address,
            "gstin": self.gstin,
            "drug_license": self.drug_license,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Address":
        return cls(
            branch_warehouse=str(data.get("branch_warehouse") or ""),
            name=str(data.get("name") or ""),
            address=str(data.get("address") or ""),
            gstin=str(data.get("gstin") or ""),
            drug_license=str(data.get("drug_license") or ""),
            phone=str(data.get("phone") or ""),
        )


@dataclass(frozen=True)
class ProductLine:
    """A product line on a purchase order, denormalized at order time."""
    line_number: int
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    foc: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    discount_type: AdjustmentType = AdjustmentType.AMOUNT
    unit: str = "PCS"
    gst_rate: Decimal = Decimal("18")
    total_cost: Decimal = Decimal("0")
    product_id: UUID | None = None
    product_code: str = ""
    product_name: str = ""
    description: str = ""
    remarks: str = ""


@dataclass(frozen=True)
class Principal:
    """The supplier a purchase order is addressed to."""
    id: UUID
    name: str
    code: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class WorkflowStage:
    """A named stage of the approval workflow."""
    id: UUID
    code: str
    name: str
    sequence: int
    allowed_actions: frozenset[str] = field(default_factory=frozenset)
    description: str = ""
    is_active: bool = True

    def allows(self, action: StageAction | str) -> bool:
        return StageAction(action).value in self.allowed_actions


@dataclass(frozen=True)
class WorkflowHistoryEntry:
    """One immutable record of a workflow transition."""
    id: UUID
    seq: int
    stage_id: UUID
    stage_code: str
    action: HistoryAction
    action_by: UUID
    action_date: datetime
    remarks: str | None = None
    changes: dict[str, dict[str, Any]] | None = None


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order with its stage populated."""
    id: UUID
    po_number: str
    po_date: date
    principal_id: UUID
    principal_name: str
    bill_to: Address
    ship_to: Address
    products: tuple[ProductLine, ...]
    current_stage: WorkflowStage
    status: POStatus
    created_by: UUID
    created_at: datetime
    additional_discount: Adjustment = field(default_factory=Adjustment)
    tax_type: TaxType = TaxType.IGST
    gst_rate: Decimal = Decimal("5")
    shipping_charges: Adjustment = field(default_factory=Adjustment)
    sub_total: Decimal = Decimal("0")
    product_level_discount: Decimal = Decimal("0")
    additional_discount_amount: Decimal = Decimal("0")
    total_after_discount: Decimal = Decimal("0")
    gst_amount: Decimal = Decimal("0")
    cgst: Decimal = Decimal("0")
    sgst: Decimal = Decimal("0")
    igst: Decimal = Decimal("0")
    shipping_amount: Decimal = Decimal("0")
    grand_total: Decimal = Decimal("0")
    approved_by: UUID | None = None
    approved_date: datetime | None = None
    to_emails: tuple[str, ...] = ()
    from_email: str | None = None
    cc_emails: tuple[str, ...] = ()
    terms: str | None = None
    notes: str | None = None
    updated_by: UUID | None = None
    updated_at: datetime | None = None
    version: int = 1
    workflow_history: tuple[WorkflowHistoryEntry, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class PurchaseOrderResult:
    """What every mutating workflow operation hands back."""
    purchase_order: PurchaseOrder
    message: str
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class NotificationResult:
    """Outcome reported by an order notifier."""
    success: bool
    message: str = ""
