"""
Purchase Order Service - orchestrates the purchase order approval workflow.

Responsibility
--------------
Creation, stage-gated editing, submission, the multi-level approval chain,
rejection, deletion of drafts, and the read operations over purchase orders.
Each mutating operation runs the totals calculator where its inputs changed,
records a workflow history entry, and persists the result as a single
optimistic-locked write.

Architecture position
---------------------
**Modules layer** -- domain service that composes:

* ``StageRegistry`` for stage lookups (and the DRAFT fallback),
* ``PURCHASE_ORDER_WORKFLOW`` for the transition table,
* ``TotalsCalculator`` for every monetary field,
* ``AuditTrailRecorder`` for the append-only history,
* ``PoNumberGenerator`` for order numbers,
* an ``OrderNotifier`` fired once an order reaches ORDERED.

Invariants enforced
-------------------
* ``current_stage`` and ``status`` always agree with the workflow's
  stage-to-status mapping.
* ``grand_total`` and the intermediate totals are only ever written from the
  calculator's output.
* Every action is gated on the current stage's ``allowed_actions``.
* ``approved_by``/``approved_date`` are stamped exactly once, on
  APPROVED_L1 -> APPROVED_FINAL.
* Workflow history only grows.

Failure modes
-------------
* ValidationFailedError  -- bad input, detected before anything is written.
* NotFoundError family   -- unknown purchase order, principal or stage.
* ForbiddenInStageError  -- action not allowed by the current stage.
* InvalidTransitionError -- no transition for the action from this stage.
* ConflictError family   -- duplicate PO number, stale version.
* Notification failures after ORDERED are returned as warnings, never raised.

Audit relevance
---------------
The history entry is written in the same transaction as the state change
it describes, so there is no committed transition without its record.

Usage
-----
    service = PurchaseOrderService(session, clock=clock, config=config)
    result = service.create_purchase_order(
        principal_id=principal.id,
        bill_to={"branch_warehouse": "Main Store"},
        ship_to={"branch_warehouse": "Main Store"},
        products=[{"quantity": 2, "unit_price": 100}],
        actor_id=user_id,
    )
    service.submit_purchase_order(result.purchase_order.id, user_id)
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procurement_config.schema import ProcurementConfig
from procurement_engines.totals import (
    AdjustmentType,
    LineInput,
    TaxType,
    TotalsCalculator,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import (
    DuplicatePoNumberError,
    ForbiddenInStageError,
    InvalidTransitionError,
    NotificationDispatchError,
    OptimisticLockError,
    PrincipalNotFoundError,
    PurchaseOrderNotDraftError,
    PurchaseOrderNotFoundError,
    ValidationFailedError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_modules.purchase_orders.history import AuditTrailRecorder, diff_fields
from procurement_modules.purchase_orders.models import (
    HistoryAction,
    NotificationResult,
    POStatus,
    ProductLine,
    PurchaseOrder,
    PurchaseOrderResult,
    StageAction,
    StageCode,
    WorkflowHistoryEntry,
)
from procurement_modules.purchase_orders.notifications import OrderNotifier, build_notifier
from procurement_modules.purchase_orders.numbering import PoNumberGenerator
from procurement_modules.purchase_orders.orm import (
    PrincipalModel,
    ProductLineModel,
    PurchaseOrderModel,
    WorkflowStageModel,
)
from procurement_modules.purchase_orders.stages import StageRegistry
from procurement_modules.purchase_orders.validation import (
    ErrorCollector,
    normalize_address,
    normalize_adjustment,
    normalize_email,
    normalize_emails,
    normalize_product_lines,
    normalize_text,
    parse_date,
    parse_gst_rate,
    parse_tax_type,
    parse_uuid,
)
from procurement_modules.purchase_orders.workflows import (
    PURCHASE_ORDER_WORKFLOW,
    Transition,
    Workflow,
)

logger = get_logger("modules.purchase_orders.service")

EDITABLE_FIELDS = frozenset({
    "principal_id",
    "bill_to",
    "ship_to",
    "products",
    "additional_discount",
    "tax_type",
    "gst_rate",
    "shipping_charges",
    "po_date",
    "to_emails",
    "from_email",
    "cc_emails",
    "terms",
    "notes",
})

# Any of these in an update re-runs the totals calculator.
TOTALS_INPUT_FIELDS = frozenset({
    "products",
    "additional_discount",
    "tax_type",
    "gst_rate",
    "shipping_charges",
})

_LINE_COLUMNS = (
    "quantity",
    "unit_price",
    "foc",
    "discount",
    "unit",
    "gst_rate",
    "product_id",
    "product_code",
    "product_name",
    "description",
    "remarks",
)


def _line_snapshot(line: ProductLineModel) -> dict[str, Any]:
    data = {name: getattr(line, name) for name in _LINE_COLUMNS}
    data["line_number"] = line.line_number
    data["discount_type"] = line.discount_type
    data["total_cost"] = line.total_cost
    return data


def _snapshot(po: PurchaseOrderModel) -> dict[str, Any]:
    """The editable fields of ``po``, for diffing."""
    return {
        "principal_id": po.principal_id,
        "bill_to": dict(po.bill_to or {}),
        "ship_to": dict(po.ship_to or {}),
        "products": [_line_snapshot(line) for line in po.lines],
        "additional_discount": {
            "type": po.additional_discount_type,
            "value": po.additional_discount_value,
        },
        "tax_type": po.tax_type,
        "gst_rate": po.gst_rate,
        "shipping_charges": {
            "type": po.shipping_charges_type,
            "value": po.shipping_charges_value,
        },
        "po_date": po.po_date,
        "to_emails": list(po.to_emails or ()),
        "from_email": po.from_email,
        "cc_emails": list(po.cc_emails or ()),
        "terms": po.terms,
        "notes": po.notes,
    }


class PurchaseOrderService:
    """
    Orchestrates the purchase order workflow.

    Contract
    --------
    * Mutating operations return ``PurchaseOrderResult`` (the updated order
      with its stage populated, a message, and warnings).
    * ``delete_purchase_order`` returns a confirmation message.
    * Failures raise a typed ``ProcurementError`` subclass.

    Guarantees
    ----------
    * Session is committed only when the whole operation succeeded; on any
      exception it is rolled back and the exception re-raised.
    * Validation and stage gating happen before any write.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT seed stages beyond the DRAFT fallback (see
      ``stages.bootstrap_workflow``).
    * Does NOT retry on conflicts; the caller reloads and tries again.

    Transaction boundary: this service commits on success, rolls back on
    failure.  The order notification runs after the commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ProcurementConfig | None = None,
        notifier: OrderNotifier | None = None,
        calculator: TotalsCalculator | None = None,
        workflow: Workflow = PURCHASE_ORDER_WORKFLOW,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or ProcurementConfig.with_defaults()
        self._notifier = notifier or build_notifier(self._config.notifications)
        self._calculator = calculator or TotalsCalculator(
            decimal_places=self._config.currency_decimal_places,
            rounding=self._config.rounding,
        )
        self._workflow = workflow

        # Collaborators (share session for atomicity)
        self._stages = StageRegistry(session)
        self._recorder = AuditTrailRecorder(session, self._clock)
        self._numbers = PoNumberGenerator(session, self._clock, self._config)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _load(self, po_id: UUID | str) -> PurchaseOrderModel:
        try:
            key = po_id if isinstance(po_id, UUID) else UUID(str(po_id))
        except ValueError:
            raise PurchaseOrderNotFoundError(str(po_id)) from None
        po = self._session.get(PurchaseOrderModel, key)
        if po is None:
            raise PurchaseOrderNotFoundError(str(po_id))
        return po

    def _principal(self, principal_id: UUID) -> PrincipalModel:
        principal = self._session.get(PrincipalModel, principal_id)
        if principal is None:
            raise PrincipalNotFoundError(str(principal_id))
        return principal

    def _check_version(self, po: PurchaseOrderModel, expected_version: int | None) -> None:
        if expected_version is not None and po.version != expected_version:
            logger.warning(
                "purchase_order_version_mismatch",
                extra={"expected_version": expected_version, "actual_version": po.version},
            )
            raise OptimisticLockError(
                "PurchaseOrder", str(po.id), expected_version, po.version,
            )

    def _commit(self, po_id: UUID | str) -> None:
        try:
            self._session.commit()
        except StaleDataError as exc:
            logger.warning("purchase_order_stale_write", extra={"po_id": str(po_id)})
            raise OptimisticLockError("PurchaseOrder", str(po_id)) from exc

    # =========================================================================
    # Totals
    # =========================================================================

    def _apply_totals(self, po: PurchaseOrderModel) -> None:
        """Overwrite every derived money field from the calculator."""
        lines = sorted(po.lines, key=lambda line: line.line_number)
        totals = self._calculator.calculate(
            [
                LineInput(
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    discount=line.discount,
                    discount_type=AdjustmentType(line.discount_type),
                    foc=line.foc,
                )
                for line in lines
            ],
            additional_discount=po.additional_discount,
            tax_type=TaxType(po.tax_type),
            gst_rate=po.gst_rate,
            shipping_charges=po.shipping_charges,
        )
        for line, line_totals in zip(lines, totals.lines):
            line.total_cost = line_totals.net

        po.sub_total = totals.sub_total
        po.product_level_discount = totals.product_level_discount
        po.additional_discount_amount = totals.additional_discount_amount
        po.total_after_discount = totals.total_after_discount
        po.gst_amount = totals.gst_amount
        po.cgst = totals.cgst
        po.sgst = totals.sgst
        po.igst = totals.igst
        po.shipping_amount = totals.shipping_amount
        po.grand_total = totals.grand_total

    def _replace_lines(self, po: PurchaseOrderModel, lines: Sequence[ProductLine]) -> None:
        # Rows are rewritten in place by line number; replacing them
        # wholesale would insert before the unit of work deletes.
        existing = {line.line_number: line for line in po.lines}
        for dto in lines:
            row = existing.pop(dto.line_number, None)
            if row is None:
                po.lines.append(ProductLineModel.from_dto(dto))
                continue
            for name in _LINE_COLUMNS:
                setattr(row, name, getattr(dto, name))
            row.discount_type = AdjustmentType(dto.discount_type).value
        for row in existing.values():
            po.lines.remove(row)

    # =========================================================================
    # Create
    # =========================================================================

    def create_purchase_order(
        self,
        *,
        principal_id: UUID | str | None,
        bill_to: Mapping[str, Any] | None,
        ship_to: Mapping[str, Any] | None,
        products: Sequence[Mapping[str, Any]] | None,
        actor_id: UUID,
        po_number: str | None = None,
        po_date: Any = None,
        additional_discount: Mapping[str, Any] | None = None,
        tax_type: str | None = None,
        gst_rate: Any = None,
        shipping_charges: Mapping[str, Any] | None = None,
        to_emails: Sequence[str] | None = None,
        from_email: str | None = None,
        cc_emails: Sequence[str] | None = None,
        terms: str | None = None,
        notes: str | None = None,
    ) -> PurchaseOrderResult:
        """
        Create a purchase order in DRAFT and record "created".

        The order number is generated unless ``po_number`` is given; an
        explicit number that is already taken raises DuplicatePoNumberError.
        """
        errors = ErrorCollector()
        principal_key = parse_uuid(principal_id, "principal_id", errors)
        if principal_key is None and "principal_id" not in errors.errors:
            errors.add("principal_id", "is required")
        bill = normalize_address(bill_to, "bill_to", errors)
        ship = normalize_address(ship_to, "ship_to", errors)
        lines = normalize_product_lines(products, errors, self._config)
        discount = normalize_adjustment(additional_discount, "additional_discount", errors)
        shipping = normalize_adjustment(shipping_charges, "shipping_charges", errors)
        tax = parse_tax_type(tax_type, errors, self._config.default_tax_type)
        rate = parse_gst_rate(gst_rate, errors, self._config.default_order_gst_rate)
        order_date = parse_date(po_date, "po_date", errors)
        to_list = normalize_emails(to_emails, "to_emails", errors)
        cc_list = normalize_emails(cc_emails, "cc_emails", errors)
        sender = normalize_email(from_email, "from_email", errors)
        explicit_number = normalize_text(po_number)
        errors.raise_if_any("Invalid purchase order")

        with LogContext.bind(actor_id=str(actor_id)):
            try:
                principal = self._principal(principal_key)
                now = self._clock.now()
                today = self._numbers.local_date(now)

                logger.info("purchase_order_create_started", extra={
                    "principal_id": str(principal.id),
                    "line_count": len(lines),
                    "explicit_po_number": explicit_number is not None,
                })

                draft = self._stages.ensure_initial_stage(self._workflow)

                if explicit_number is not None:
                    if not self._numbers.is_available(explicit_number):
                        raise DuplicatePoNumberError(explicit_number)
                    # The daily serial counts every order, numbered or not.
                    self._numbers.allocate_serial(today)
                    number = explicit_number
                else:
                    number = self._numbers.next_po_number(principal, today)

                po = PurchaseOrderModel(
                    po_number=number,
                    po_date=order_date or today,
                    principal=principal,
                    bill_to=bill.to_dict(),
                    ship_to=ship.to_dict(),
                    additional_discount_type=discount.type.value,
                    additional_discount_value=discount.value,
                    tax_type=tax.value,
                    gst_rate=rate,
                    shipping_charges_type=shipping.type.value,
                    shipping_charges_value=shipping.value,
                    current_stage=draft,
                    status=self._workflow.status_for(draft.code).value,
                    to_emails=list(to_list),
                    from_email=sender,
                    cc_emails=list(cc_list),
                    terms=normalize_text(terms),
                    notes=normalize_text(notes),
                    created_at=now,
                    updated_at=now,
                    created_by_id=actor_id,
                    lines=[ProductLineModel.from_dto(line) for line in lines],
                )
                self._apply_totals(po)
                self._session.add(po)
                self._recorder.append(po, draft, HistoryAction.CREATED, actor_id)

                try:
                    self._session.flush()
                except IntegrityError as exc:
                    raise DuplicatePoNumberError(number) from exc

                self._session.commit()
                logger.info("purchase_order_created", extra={
                    "po_id": str(po.id),
                    "po_number": po.po_number,
                    "grand_total": str(po.grand_total),
                })
                return PurchaseOrderResult(
                    purchase_order=po.to_dto(),
                    message="Purchase order created successfully",
                )

            except Exception:
                self._session.rollback()
                raise

    # =========================================================================
    # Update (edit)
    # =========================================================================

    def update_purchase_order(
        self,
        po_id: UUID | str,
        updates: Mapping[str, Any],
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> PurchaseOrderResult:
        """
        Patch the editable fields of a purchase order.

        Allowed only while the current stage allows ``edit``.  Records an
        "updated" entry carrying a field-by-field diff and re-runs the
        totals when any of their inputs changed.
        """
        rejected = sorted(set(updates) - EDITABLE_FIELDS)
        if rejected:
            raise ValidationFailedError(
                "Purchase order fields not editable",
                {name: "is not editable" for name in rejected},
            )

        with LogContext.bind(po_id=str(po_id), actor_id=str(actor_id)):
            try:
                po = self._load(po_id)
                self._check_version(po, expected_version)
                stage = po.current_stage
                if not stage.allows(StageAction.EDIT.value):
                    raise ForbiddenInStageError(
                        str(po.id), stage.code, StageAction.EDIT.value,
                        message="Cannot edit purchase order in current stage",
                    )

                errors = ErrorCollector()
                values: dict[str, Any] = {}
                for name, raw in updates.items():
                    values[name] = self._parse_update(name, raw, po, errors)
                errors.raise_if_any("Invalid purchase order update")

                if "principal_id" in values:
                    values["principal_id"] = self._principal(values["principal_id"])

                logger.info("purchase_order_update_started", extra={
                    "po_number": po.po_number,
                    "fields": sorted(values),
                })

                before = _snapshot(po)
                self._apply_updates(po, values)
                if TOTALS_INPUT_FIELDS & values.keys():
                    self._apply_totals(po)
                changes = diff_fields(before, _snapshot(po))

                po.updated_by_id = actor_id
                po.updated_at = self._clock.now()
                self._recorder.append(
                    po, stage, HistoryAction.UPDATED, actor_id, changes=changes or None,
                )
                self._commit(po.id)

                logger.info("purchase_order_updated", extra={
                    "po_number": po.po_number,
                    "changed_fields": sorted(changes),
                    "version": po.version,
                })
                return PurchaseOrderResult(
                    purchase_order=po.to_dto(),
                    message="Purchase order updated successfully",
                )

            except Exception:
                self._session.rollback()
                raise

    def _parse_update(
        self,
        name: str,
        raw: Any,
        po: PurchaseOrderModel,
        errors: ErrorCollector,
    ) -> Any:
        if name == "principal_id":
            key = parse_uuid(raw, name, errors)
            if key is None and name not in errors.errors:
                errors.add(name, "is required")
            return key
        if name in ("bill_to", "ship_to"):
            return normalize_address(raw, name, errors)
        if name == "products":
            return normalize_product_lines(raw, errors, self._config)
        if name in ("additional_discount", "shipping_charges"):
            return normalize_adjustment(raw, name, errors)
        if name == "tax_type":
            return parse_tax_type(raw, errors, po.tax_type)
        if name == "gst_rate":
            return parse_gst_rate(raw, errors, po.gst_rate)
        if name == "po_date":
            parsed = parse_date(raw, name, errors)
            if parsed is None and name not in errors.errors:
                errors.add(name, "is required")
            return parsed
        if name in ("to_emails", "cc_emails"):
            return normalize_emails(raw, name, errors)
        if name == "from_email":
            return normalize_email(raw, name, errors)
        return normalize_text(raw)

    def _apply_updates(self, po: PurchaseOrderModel, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            if name == "principal_id":
                po.principal = value
                po.principal_id = value.id
            elif name in ("bill_to", "ship_to"):
                setattr(po, name, value.to_dict())
            elif name == "products":
                self._replace_lines(po, value)
            elif name == "additional_discount":
                po.additional_discount_type = value.type.value
                po.additional_discount_value = value.value
            elif name == "shipping_charges":
                po.shipping_charges_type = value.type.value
                po.shipping_charges_value = value.value
            elif name == "tax_type":
                po.tax_type = value.value
            elif name in ("to_emails", "cc_emails"):
                # JSON columns: assign a new list, never mutate in place
                setattr(po, name, list(value))
            else:
                setattr(po, name, value)

    # =========================================================================
    # Transitions
    # =========================================================================

    def _target_stage(self, transition: Transition) -> WorkflowStageModel:
        return self._stages.get(transition.to_state, reason="Next stage not found")

    def _advance(
        self,
        po: PurchaseOrderModel,
        transition: Transition,
        target: WorkflowStageModel,
        actor_id: UUID,
        remarks: str | None,
    ) -> None:
        """Move ``po`` along ``transition`` and record it.  Does not commit."""
        now = self._clock.now()
        previous = po.current_stage.code

        po.current_stage = target
        po.status = self._workflow.status_for(target.code).value
        if transition.stamps_approval:
            po.approved_by_id = actor_id
            po.approved_date = now
        po.updated_by_id = actor_id
        po.updated_at = now

        self._recorder.append(po, target, transition.history_action, actor_id, remarks=remarks)
        logger.info("purchase_order_transitioned", extra={
            "po_number": po.po_number,
            "action": transition.action,
            "from_stage": previous,
            "to_stage": target.code,
            "status": po.status,
        })

    def submit_purchase_order(
        self,
        po_id: UUID | str,
        actor_id: UUID,
        remarks: str | None = None,
    ) -> PurchaseOrderResult:
        """DRAFT -> PENDING_APPROVAL; needs ``approve`` on the DRAFT stage."""
        with LogContext.bind(po_id=str(po_id), actor_id=str(actor_id)):
            try:
                po = self._load(po_id)
                stage = po.current_stage
                if not stage.allows(StageAction.APPROVE.value):
                    raise ForbiddenInStageError(
                        str(po.id), stage.code, "submit",
                        message="Submission not allowed in current stage",
                    )
                transition = self._workflow.transition_for(stage.code, "submit")
                if transition is None:
                    raise InvalidTransitionError(str(po.id), stage.code, "submission")

                self._advance(
                    po, transition, self._target_stage(transition), actor_id, normalize_text(remarks),
                )
                self._commit(po.id)
                return PurchaseOrderResult(
                    purchase_order=po.to_dto(),
                    message="Purchase order submitted for approval",
                )

            except Exception:
                self._session.rollback()
                raise

    def approve_purchase_order(
        self,
        po_id: UUID | str,
        actor_id: UUID,
        remarks: str | None = None,
    ) -> PurchaseOrderResult:
        """
        Advance one approval level.

        PENDING_APPROVAL -> APPROVED_L1 -> APPROVED_FINAL -> ORDERED.  The
        L1 -> Final step stamps ``approved_by``/``approved_date``.  Reaching
        ORDERED fires the order notification after the commit; a failed
        notification is returned as a warning.
        """
        with LogContext.bind(po_id=str(po_id), actor_id=str(actor_id)):
            try:
                po = self._load(po_id)
                stage = po.current_stage
                if not stage.allows(StageAction.APPROVE.value):
                    raise ForbiddenInStageError(
                        str(po.id), stage.code, StageAction.APPROVE.value,
                        message="Approval not allowed in current stage",
                    )
                transition = self._workflow.transition_for(stage.code, "approve")
                if transition is None:
                    raise InvalidTransitionError(str(po.id), stage.code, "approval")

                target = self._target_stage(transition)
                self._advance(
                    po, transition, target, actor_id,
                    normalize_text(remarks) or f"Approved at {target.name}",
                )
                self._commit(po.id)

            except Exception:
                self._session.rollback()
                raise

            dto = po.to_dto()
            warnings: tuple[str, ...] = ()
            if transition.notifies:
                failure = self._notify(dto)
                if failure is not None:
                    warnings = (str(failure),)
            return PurchaseOrderResult(
                purchase_order=dto,
                message="Purchase order approved successfully",
                warnings=warnings,
            )

    def reject_purchase_order(
        self,
        po_id: UUID | str,
        actor_id: UUID,
        remarks: str | None,
    ) -> PurchaseOrderResult:
        """Move to CANCELLED with the caller's remarks.  Remarks are required."""
        if remarks is None or not str(remarks).strip():
            raise ValidationFailedError(
                "Remarks required for rejection", {"remarks": "is required"},
            )

        with LogContext.bind(po_id=str(po_id), actor_id=str(actor_id)):
            try:
                po = self._load(po_id)
                stage = po.current_stage
                if not stage.allows(StageAction.REJECT.value):
                    raise ForbiddenInStageError(
                        str(po.id), stage.code, StageAction.REJECT.value,
                        message="Rejection not allowed in current stage",
                    )
                transition = self._workflow.transition_for(stage.code, "reject")
                if transition is None:
                    raise InvalidTransitionError(str(po.id), stage.code, "rejection")

                self._advance(po, transition, self._target_stage(transition), actor_id, remarks)
                self._commit(po.id)
                return PurchaseOrderResult(
                    purchase_order=po.to_dto(),
                    message="Purchase order rejected",
                )

            except Exception:
                self._session.rollback()
                raise

    # =========================================================================
    # Delete
    # =========================================================================

    def delete_purchase_order(self, po_id: UUID | str, actor_id: UUID) -> str:
        """Hard-delete a draft purchase order together with its history."""
        with LogContext.bind(po_id=str(po_id), actor_id=str(actor_id)):
            try:
                po = self._load(po_id)
                if po.status != POStatus.DRAFT.value:
                    raise PurchaseOrderNotDraftError(str(po.id), po.current_stage.code, po.status)

                po_number = po.po_number
                self._session.delete(po)
                self._commit(po_id)

                logger.info("purchase_order_deleted", extra={"po_number": po_number})
                return "Purchase order deleted successfully"

            except Exception:
                self._session.rollback()
                raise

    # =========================================================================
    # Notifications
    # =========================================================================

    def _notify(self, purchase_order: PurchaseOrder) -> NotificationDispatchError | None:
        """Send the order notification; a failure is returned, not raised."""
        try:
            result = self._notifier.send_order_notification(purchase_order)
        except Exception as exc:
            failure = NotificationDispatchError(purchase_order.po_number, str(exc) or type(exc).__name__)
            logger.exception("order_notification_dispatch_failed", extra={
                "po_number": purchase_order.po_number,
            })
            return failure

        if not result.success:
            failure = NotificationDispatchError(purchase_order.po_number, result.message)
            logger.warning("order_notification_dispatch_failed", extra={
                "po_number": purchase_order.po_number,
                "reason": result.message,
            })
            return failure
        return None

    def resend_order_notification(self, po_id: UUID | str) -> NotificationResult:
        """
        Send the order notification again for an ORDERED purchase order.

        Raises:
            ForbiddenInStageError: The order is not in ORDERED.
            NotificationDispatchError: The notifier failed.
        """
        po = self._load(po_id)
        stage_code = po.current_stage.code
        if stage_code != StageCode.ORDERED.value:
            raise ForbiddenInStageError(
                str(po.id), stage_code, "notify",
                message="Notifications can only be sent for ordered purchase orders",
            )
        failure = self._notify(po.to_dto())
        if failure is not None:
            raise failure
        return NotificationResult(success=True, message="Order notification sent")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_purchase_order(self, po_id: UUID | str) -> PurchaseOrder:
        return self._load(po_id).to_dto()

    def get_workflow_history(self, po_id: UUID | str) -> tuple[WorkflowHistoryEntry, ...]:
        po = self._load(po_id)
        return self._recorder.entries_for(po.id)

    def preview_next_po_number(self, principal_id: UUID | str, on=None) -> str:
        """The number the next creation for this principal would receive."""
        errors = ErrorCollector()
        key = parse_uuid(principal_id, "principal_id", errors)
        if key is None and "principal_id" not in errors.errors:
            errors.add("principal_id", "is required")
        errors.raise_if_any("Invalid principal")
        return self._numbers.preview_po_number(self._principal(key), on)

    def is_po_number_available(self, po_number: str) -> bool:
        number = normalize_text(po_number)
        if number is None:
            raise ValidationFailedError("PO number is required", {"po_number": "is required"})
        return self._numbers.is_available(number)
