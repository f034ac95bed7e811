"""
Tests for PurchaseOrderService.create_purchase_order.

Verifies:
- A new order starts in DRAFT/draft with a "created" history entry
- Totals are computed on create
- The order number is generated from principal, local date and daily serial
- Explicit order numbers: used as given, duplicates rejected
- Validation fails fast and persists nothing
- The DRAFT stage is created lazily when missing, and only DRAFT
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from procurement_engines.totals import AdjustmentType, LineInput, TaxType, TotalsCalculator
from procurement_kernel.exceptions import (
    DuplicatePoNumberError,
    PrincipalNotFoundError,
    StageNotFoundError,
    ValidationFailedError,
)
from procurement_modules.purchase_orders.models import HistoryAction, POStatus
from procurement_modules.purchase_orders.orm import PurchaseOrderModel, WorkflowStageModel
from procurement_modules.purchase_orders.service import PurchaseOrderService
from procurement_modules.purchase_orders.stages import StageRegistry
from procurement_modules.purchase_orders.workflows import PURCHASE_ORDER_WORKFLOW


def _po_count(session) -> int:
    return session.execute(select(func.count(PurchaseOrderModel.id))).scalar_one()


class TestCreatePurchaseOrder:
    """Happy-path creation."""

    def test_starts_in_draft(self, create_po, test_actor_id):
        result = create_po()
        po = result.purchase_order

        assert result.message == "Purchase order created successfully"
        assert result.warnings == ()
        assert po.current_stage.code == "DRAFT"
        assert po.status is POStatus.DRAFT
        assert po.created_by == test_actor_id
        assert po.version == 1
        assert po.approved_by is None
        assert po.approved_date is None

    def test_records_created_entry(self, create_po, test_actor_id, deterministic_clock):
        po = create_po().purchase_order

        assert len(po.workflow_history) == 1
        entry = po.workflow_history[0]
        assert entry.seq == 1
        assert entry.action is HistoryAction.CREATED
        assert entry.stage_code == "DRAFT"
        assert entry.action_by == test_actor_id
        assert entry.action_date == deterministic_clock.now()
        assert entry.changes is None

    def test_totals_computed(self, create_po):
        po = create_po().purchase_order

        assert po.products[0].line_number == 1
        assert po.products[0].total_cost == Decimal("200")
        assert po.sub_total == Decimal("200")
        assert po.gst_rate == Decimal("5")
        assert po.gst_amount == Decimal("10")
        assert po.igst == Decimal("10")
        assert po.grand_total == Decimal("210.00")

    def test_cgst_sgst_order(self, create_po):
        po = create_po(
            tax_type="cgst_sgst",
            gst_rate="12",
            products=[{"quantity": 1, "unit_price": 1000}],
            additional_discount={"type": "percentage", "value": 10},
            shipping_charges={"type": "amount", "value": 50},
        ).purchase_order

        assert po.total_after_discount == Decimal("900")
        assert po.cgst == Decimal("54")
        assert po.sgst == Decimal("54")
        assert po.igst == Decimal("0")
        assert po.grand_total == Decimal("1058.00")

    def test_generated_po_number(self, create_po):
        po = create_po().purchase_order

        assert po.po_number == "MM-APO-240325/001"
        assert po.po_date == date(2025, 3, 24)
        assert po.principal_name == "Apollo Pharmacy"

    def test_serial_increments_within_day(self, create_po):
        first = create_po().purchase_order
        second = create_po().purchase_order

        assert first.po_number.endswith("/001")
        assert second.po_number.endswith("/002")

    def test_serial_restarts_next_local_day(self, create_po, deterministic_clock):
        create_po()
        # 2025-03-24 18:30 UTC is 00:00 on 25 March in Asia/Kolkata
        deterministic_clock.advance(12 * 3600)

        po = create_po().purchase_order

        assert po.po_number == "MM-APO-250325/001"

    def test_explicit_po_number(self, create_po):
        po = create_po(po_number="  MM-APO-MANUAL/7  ").purchase_order

        assert po.po_number == "MM-APO-MANUAL/7"

    def test_explicit_number_consumes_daily_serial(self, create_po):
        create_po(po_number="MANUAL-1")

        po = create_po().purchase_order

        assert po.po_number == "MM-APO-240325/002"

    def test_generated_number_skips_explicitly_taken_serial(self, create_po):
        create_po(po_number="MM-APO-240325/002")

        po = create_po().purchase_order

        assert po.po_number == "MM-APO-240325/003"

    def test_duplicate_explicit_number_rejected(self, create_po, session):
        create_po(po_number="MANUAL-1")

        with pytest.raises(DuplicatePoNumberError) as exc_info:
            create_po(po_number="MANUAL-1")

        assert exc_info.value.code == "DUPLICATE_PO_NUMBER"
        assert _po_count(session) == 1

    def test_emails_normalized(self, create_po):
        po = create_po(
            to_emails=[" Orders@Apollo.example.com", "orders@apollo.example.com", ""],
            cc_emails="Buyer@Hospital.example.com",
            from_email=" Purchase@Hospital.example.com ",
        ).purchase_order

        assert po.to_emails == ("orders@apollo.example.com",)
        assert po.cc_emails == ("buyer@hospital.example.com",)
        assert po.from_email == "purchase@hospital.example.com"

    def test_line_defaults(self, create_po):
        po = create_po(products=[{"product_name": "Gauze", "quantity": "abc", "unit_price": None}]).purchase_order
        line = po.products[0]

        assert line.quantity == Decimal("1")
        assert line.unit_price == Decimal("0")
        assert line.foc == Decimal("0")
        assert line.unit == "PCS"
        assert line.gst_rate == Decimal("18")
        assert po.grand_total == Decimal("0.00")

    def test_stored_fields_reproduce_grand_total(self, create_po, session):
        """Reloading the order and recomputing from its columns gives the stored total."""
        po_id = create_po(
            products=[
                {"quantity": "3.5", "unit_price": "1000.123456789", "discount": "2.5", "discount_type": "percentage"},
                {"quantity": 1000, "unit_price": "1000", "gst_rate": "12.3456"},
            ],
            gst_rate="5.1234",
            shipping_charges={"type": "amount", "value": "99.123456789"},
        ).purchase_order.id

        session.expire_all()
        stored = session.get(PurchaseOrderModel, po_id)
        lines = sorted(stored.lines, key=lambda line: line.line_number)
        recomputed = TotalsCalculator().calculate(
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
            additional_discount=stored.additional_discount,
            tax_type=TaxType(stored.tax_type),
            gst_rate=stored.gst_rate,
            shipping_charges=stored.shipping_charges,
        )

        assert stored.gst_rate == Decimal("5.1234")
        assert stored.grand_total == recomputed.grand_total

    def test_logs_creation(self, create_po, captured_logs):
        po = create_po().purchase_order

        created = [r for r in captured_logs() if r["message"] == "purchase_order_created"]
        assert len(created) == 1
        assert created[0]["po_number"] == po.po_number
        assert created[0]["grand_total"] == "210.00"


class TestCreateValidation:
    """Validation failures are raised before anything is persisted."""

    @pytest.mark.parametrize(
        "overrides,error_path",
        [
            ({"principal_id": None}, "principal_id"),
            ({"principal_id": "not-a-uuid"}, "principal_id"),
            ({"bill_to": {"name": "No branch"}}, "bill_to.branch_warehouse"),
            ({"ship_to": None}, "ship_to.branch_warehouse"),
            ({"ship_to": {"branch_warehouse": "   "}}, "ship_to.branch_warehouse"),
            ({"products": []}, "products"),
            ({"products": None}, "products"),
            ({"products": [{"quantity": -1}]}, "products[0].quantity"),
            ({"products": [{"quantity": 1}, {"unit_price": "-5"}]}, "products[1].unit_price"),
            ({"products": [{"discount_type": "bogus"}]}, "products[0].discount_type"),
            ({"gst_rate": 150}, "gst_rate"),
            ({"gst_rate": "-1"}, "gst_rate"),
            ({"tax_type": "VAT"}, "tax_type"),
            ({"additional_discount": {"type": "amount", "value": -10}}, "additional_discount.value"),
            ({"shipping_charges": {"type": "weight", "value": 1}}, "shipping_charges.type"),
            ({"to_emails": ["not-an-email"]}, "to_emails[0]"),
            ({"po_date": "24/03/2025"}, "po_date"),
            ({"gst_rate": "5.12345"}, "gst_rate"),
            ({"products": [{"gst_rate": "12.00001"}]}, "products[0].gst_rate"),
            ({"products": [{"unit_price": "1.0000000001"}]}, "products[0].unit_price"),
            ({"shipping_charges": {"type": "amount", "value": "0.0000000001"}}, "shipping_charges.value"),
        ],
    )
    def test_invalid_input(self, create_po, session, overrides, error_path):
        with pytest.raises(ValidationFailedError) as exc_info:
            create_po(**overrides)

        assert exc_info.value.code == "VALIDATION_FAILED"
        assert error_path in exc_info.value.errors
        assert _po_count(session) == 0

    def test_collects_every_error(self, create_po):
        with pytest.raises(ValidationFailedError) as exc_info:
            create_po(principal_id=None, bill_to={}, products=[])

        assert {"principal_id", "bill_to.branch_warehouse", "products"} <= set(exc_info.value.errors)

    def test_unknown_principal(self, create_po, session):
        with pytest.raises(PrincipalNotFoundError):
            create_po(principal_id=uuid4())

        assert _po_count(session) == 0


class TestDraftStageFallback:
    """The DRAFT stage is the only stage the engine creates on its own."""

    def test_creates_draft_when_registry_empty(self, po_service, apollo, session, test_actor_id):
        result = po_service.create_purchase_order(
            principal_id=apollo.id,
            bill_to={"branch_warehouse": "Main"},
            ship_to={"branch_warehouse": "Main"},
            products=[{"quantity": 1, "unit_price": 10}],
            actor_id=test_actor_id,
        )

        draft = result.purchase_order.current_stage
        assert draft.code == "DRAFT"
        assert draft.allowed_actions == frozenset({"edit", "approve", "cancel"})

        codes = session.execute(select(WorkflowStageModel.code)).scalars().all()
        assert codes == ["DRAFT"]

    def test_existing_draft_not_replaced(self, create_po, seeded_stages):
        po = create_po().purchase_order

        assert po.current_stage.id == seeded_stages["DRAFT"].id

    def test_logs_lazy_creation(self, po_service, apollo, session, test_actor_id, captured_logs):
        po_service.create_purchase_order(
            principal_id=apollo.id,
            bill_to={"branch_warehouse": "Main"},
            ship_to={"branch_warehouse": "Main"},
            products=[{"quantity": 1}],
            actor_id=test_actor_id,
        )

        lazy = [r for r in captured_logs() if r["message"] == "initial_stage_created_lazily"]
        assert [r["stage_code"] for r in lazy] == ["DRAFT"]
        assert StageRegistry(session).find_by_code("PENDING_APPROVAL") is None

    def test_no_fallback_when_workflow_disallows_it(
        self, session, deterministic_clock, procurement_config, notifier, apollo, test_actor_id,
    ):
        service = PurchaseOrderService(
            session,
            clock=deterministic_clock,
            config=procurement_config,
            notifier=notifier,
            workflow=replace(PURCHASE_ORDER_WORKFLOW, lazily_created_states=frozenset()),
        )

        with pytest.raises(StageNotFoundError) as exc_info:
            service.create_purchase_order(
                principal_id=apollo.id,
                bill_to={"branch_warehouse": "Main"},
                ship_to={"branch_warehouse": "Main"},
                products=[{"quantity": 1}],
                actor_id=test_actor_id,
            )

        assert exc_info.value.stage_code == "DRAFT"
        assert StageRegistry(session).find_by_code("DRAFT") is None
        assert _po_count(session) == 0
