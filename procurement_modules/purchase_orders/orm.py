"""
SQLAlchemy ORM persistence models for purchase orders.

Responsibility
--------------
Database-backed persistence for principals, workflow stages, purchase
orders, their product lines and their workflow history.

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (Numeric(38,9)), never float.
* Enum fields are stored as String(50) for readability and portability.
* ``po_number`` is unique; ``(purchase_order_id, seq)`` is unique.
* ``PurchaseOrderModel.version`` is the optimistic lock column; every
  UPDATE or DELETE is conditional on it.
* History rows are append-only (see ``procurement_kernel.db.immutability``).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_engines.totals import Adjustment, AdjustmentType, TaxType
from procurement_kernel.db.base import Base, TrackedBase, UTCDateTime


# ---------------------------------------------------------------------------
# PrincipalModel
# ---------------------------------------------------------------------------


class PrincipalModel(Base):
    """
    A principal (supplier).  Maintained outside the workflow engine; only
    ``name`` is read, to derive the PO number's principal code.
    """

    __tablename__ = "principals"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self):
        from procurement_modules.purchase_orders.models import Principal

        return Principal(id=self.id, name=self.name, code=self.code, is_active=self.is_active)

    def __repr__(self) -> str:
        return f"<PrincipalModel {self.name}>"


# ---------------------------------------------------------------------------
# WorkflowStageModel
# ---------------------------------------------------------------------------


class WorkflowStageModel(Base):
    """
    A stage of the approval workflow.

    Guarantees:
        - ``code`` is unique and upper case.
        - ``code`` cannot change once a purchase order or history entry
          references the stage.
        - ``sequence`` orders stages for display only.
    """

    __tablename__ = "workflow_stages"

    __table_args__ = (
        UniqueConstraint("code", name="uq_workflow_stage_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    allowed_actions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def allows(self, action: str) -> bool:
        return action in (self.allowed_actions or [])

    def to_dto(self):
        from procurement_modules.purchase_orders.models import WorkflowStage

        return WorkflowStage(
            id=self.id,
            code=self.code,
            name=self.name,
            sequence=self.sequence,
            allowed_actions=frozenset(self.allowed_actions or ()),
            description=self.description or "",
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<WorkflowStageModel {self.code} {sorted(self.allowed_actions or [])}>"


# ---------------------------------------------------------------------------
# PurchaseOrderModel
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order.

    Maps to the ``PurchaseOrder`` DTO in
    ``procurement_modules.purchase_orders.models``.

    Guarantees:
        - ``status`` mirrors ``current_stage`` per the workflow's
          stage-to-status mapping.
        - Total columns are written only by the totals calculator.
        - ``approved_by_id``/``approved_date`` are written once, on the
          APPROVED_L1 -> APPROVED_FINAL transition.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_purchase_order_number"),
        Index("idx_purchase_order_principal", "principal_id"),
        Index("idx_purchase_order_status", "status"),
        Index("idx_purchase_order_created_at", "created_at"),
    )

    po_number: Mapped[str] = mapped_column(String(100), nullable=False)
    po_date: Mapped[date] = mapped_column(Date, nullable=False)
    principal_id: Mapped[UUID] = mapped_column(ForeignKey("principals.id"), nullable=False)

    bill_to: Mapped[dict] = mapped_column(JSON, nullable=False)
    ship_to: Mapped[dict] = mapped_column(JSON, nullable=False)

    additional_discount_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=AdjustmentType.AMOUNT.value,
    )
    additional_discount_value: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_type: Mapped[str] = mapped_column(String(50), nullable=False, default=TaxType.IGST.value)
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)
    shipping_charges_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=AdjustmentType.AMOUNT.value,
    )
    shipping_charges_value: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    # Derived by the totals calculator
    sub_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    product_level_discount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    additional_discount_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_after_discount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    gst_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    cgst: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    sgst: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    igst: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    shipping_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    # Workflow state
    current_stage_id: Mapped[UUID] = mapped_column(ForeignKey("workflow_stages.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    approved_by_id: Mapped[UUID | None]
    approved_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Correspondence
    to_emails: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    from_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    cc_emails: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    terms: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    principal: Mapped["PrincipalModel"] = relationship("PrincipalModel", lazy="joined")
    current_stage: Mapped["WorkflowStageModel"] = relationship("WorkflowStageModel", lazy="joined")
    lines: Mapped[list["ProductLineModel"]] = relationship(
        "ProductLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="ProductLineModel.line_number",
        lazy="selectin",
    )
    history: Mapped[list["WorkflowHistoryEntryModel"]] = relationship(
        "WorkflowHistoryEntryModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="WorkflowHistoryEntryModel.seq",
        lazy="selectin",
    )

    @property
    def additional_discount(self) -> Adjustment:
        return Adjustment(AdjustmentType(self.additional_discount_type), self.additional_discount_value)

    @property
    def shipping_charges(self) -> Adjustment:
        return Adjustment(AdjustmentType(self.shipping_charges_type), self.shipping_charges_value)

    def to_dto(self):
        from procurement_modules.purchase_orders.models import (
            Address,
            POStatus,
            PurchaseOrder,
        )

        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            po_date=self.po_date,
            principal_id=self.principal_id,
            principal_name=self.principal.name if self.principal else "",
            bill_to=Address.from_dict(self.bill_to or {}),
            ship_to=Address.from_dict(self.ship_to or {}),
            products=tuple(line.to_dto() for line in self.lines),
            current_stage=self.current_stage.to_dto(),
            status=POStatus(self.status),
            created_by=self.created_by_id,
            created_at=self.created_at,
            additional_discount=self.additional_discount,
            tax_type=TaxType(self.tax_type),
            gst_rate=self.gst_rate,
            shipping_charges=self.shipping_charges,
            sub_total=self.sub_total,
            product_level_discount=self.product_level_discount,
            additional_discount_amount=self.additional_discount_amount,
            total_after_discount=self.total_after_discount,
            gst_amount=self.gst_amount,
            cgst=self.cgst,
            sgst=self.sgst,
            igst=self.igst,
            shipping_amount=self.shipping_amount,
            grand_total=self.grand_total,
            approved_by=self.approved_by_id,
            approved_date=self.approved_date,
            to_emails=tuple(self.to_emails or ()),
            from_email=self.from_email,
            cc_emails=tuple(self.cc_emails or ()),
            terms=self.terms,
            notes=self.notes,
            updated_by=self.updated_by_id,
            updated_at=self.updated_at,
            version=self.version,
            workflow_history=tuple(entry.to_dto() for entry in self.history),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}] v{self.version}>"


# ---------------------------------------------------------------------------
# ProductLineModel
# ---------------------------------------------------------------------------


class ProductLineModel(Base):
    """
    A product line on a purchase order.

    Guarantees:
        - Belongs to exactly one ``PurchaseOrderModel``.
        - (purchase_order_id, line_number) is unique.
        - ``total_cost`` is the line net written by the totals calculator.
    """

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_purchase_order_line_number"),
        Index("idx_po_line_purchase_order", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID | None]
    product_code: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    product_name: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    description: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    quantity: Mapped[Decimal] = mapped_column(default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    foc: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    discount_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=AdjustmentType.AMOUNT.value,
    )
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="PCS")
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    remarks: Mapped[str] = mapped_column(String(1000), nullable=False, default="")

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    def to_dto(self):
        from procurement_modules.purchase_orders.models import ProductLine

        return ProductLine(
            line_number=self.line_number,
            quantity=self.quantity,
            unit_price=self.unit_price,
            foc=self.foc,
            discount=self.discount,
            discount_type=AdjustmentType(self.discount_type),
            unit=self.unit,
            gst_rate=self.gst_rate,
            total_cost=self.total_cost,
            product_id=self.product_id,
            product_code=self.product_code,
            product_name=self.product_name,
            description=self.description,
            remarks=self.remarks,
        )

    @classmethod
    def from_dto(cls, dto) -> "ProductLineModel":
        return cls(
            line_number=dto.line_number,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            foc=dto.foc,
            discount=dto.discount,
            discount_type=AdjustmentType(dto.discount_type).value,
            unit=dto.unit,
            gst_rate=dto.gst_rate,
            total_cost=dto.total_cost,
            product_id=dto.product_id,
            product_code=dto.product_code,
            product_name=dto.product_name,
            description=dto.description,
            remarks=dto.remarks,
        )


# ---------------------------------------------------------------------------
# WorkflowHistoryEntryModel
# ---------------------------------------------------------------------------


class WorkflowHistoryEntryModel(Base):
    """
    One workflow transition of a purchase order.  Append-only.

    Guarantees:
        - (purchase_order_id, seq) is unique; ``seq`` is the insertion order.
        - Never updated; deleted only together with its purchase order.
    """

    __tablename__ = "purchase_order_workflow_history"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "seq", name="uq_po_history_seq"),
        Index("idx_po_history_purchase_order", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    stage_id: Mapped[UUID] = mapped_column(ForeignKey("workflow_stages.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    action_by_id: Mapped[UUID]
    action_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    remarks: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    changes: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="history",
    )
    stage: Mapped["WorkflowStageModel"] = relationship("WorkflowStageModel", lazy="joined")

    def to_dto(self):
        from procurement_modules.purchase_orders.models import (
            HistoryAction,
            WorkflowHistoryEntry,
        )

        return WorkflowHistoryEntry(
            id=self.id,
            seq=self.seq,
            stage_id=self.stage_id,
            stage_code=self.stage.code if self.stage else "",
            action=HistoryAction(self.action),
            action_by=self.action_by_id,
            action_date=self.action_date,
            remarks=self.remarks,
            changes=self.changes,
        )

    def __repr__(self) -> str:
        return f"<WorkflowHistoryEntryModel #{self.seq} {self.action}>"
