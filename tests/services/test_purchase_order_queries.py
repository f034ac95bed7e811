"""
Tests for deletion, read operations and the order notification resend.
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from procurement_kernel.exceptions import (
    ForbiddenInStageError,
    NotificationDispatchError,
    PrincipalNotFoundError,
    PurchaseOrderNotDraftError,
    PurchaseOrderNotFoundError,
    ValidationFailedError,
)
from procurement_modules.purchase_orders.models import NotificationResult
from procurement_modules.purchase_orders.orm import (
    ProductLineModel,
    WorkflowHistoryEntryModel,
)


class TestDeletePurchaseOrder:

    def test_delete_draft(self, create_po, po_service, session, test_actor_id):
        po = create_po().purchase_order
        po_service.update_purchase_order(po.id, {"notes": "to be removed"}, test_actor_id)

        message = po_service.delete_purchase_order(po.id, test_actor_id)

        assert message == "Purchase order deleted successfully"
        with pytest.raises(PurchaseOrderNotFoundError):
            po_service.get_purchase_order(po.id)

    def test_delete_removes_lines_and_history(self, create_po, po_service, session, test_actor_id):
        po = create_po().purchase_order

        po_service.delete_purchase_order(po.id, test_actor_id)

        history = session.execute(
            select(func.count(WorkflowHistoryEntryModel.id))
            .where(WorkflowHistoryEntryModel.purchase_order_id == po.id)
        ).scalar_one()
        lines = session.execute(
            select(func.count(ProductLineModel.id))
            .where(ProductLineModel.purchase_order_id == po.id)
        ).scalar_one()
        assert history == 0
        assert lines == 0

    @pytest.mark.parametrize("steps,stage,status", [
        (1, "PENDING_APPROVAL", "pending_approval"),
        (2, "APPROVED_L1", "approved"),
        (4, "ORDERED", "ordered"),
    ])
    def test_non_draft_cannot_be_deleted(
        self, create_po, advance_po, po_service, test_actor_id, steps, stage, status,
    ):
        po = create_po().purchase_order
        advance_po(po.id, steps)

        with pytest.raises(PurchaseOrderNotDraftError) as exc_info:
            po_service.delete_purchase_order(po.id, test_actor_id)

        assert exc_info.value.code == "PURCHASE_ORDER_NOT_DRAFT"
        assert exc_info.value.stage_code == stage
        assert exc_info.value.status == status
        assert po_service.get_purchase_order(po.id).current_stage.code == stage

    def test_cancelled_cannot_be_deleted(self, create_po, advance_po, po_service, test_actor_id):
        po = create_po().purchase_order
        advance_po(po.id, 1)
        po_service.reject_purchase_order(po.id, test_actor_id, "Duplicate")

        with pytest.raises(PurchaseOrderNotDraftError):
            po_service.delete_purchase_order(po.id, test_actor_id)

    @pytest.mark.parametrize("po_id", ["not-a-uuid", uuid4()])
    def test_unknown_purchase_order(self, po_service, seeded_stages, test_actor_id, po_id):
        with pytest.raises(PurchaseOrderNotFoundError):
            po_service.delete_purchase_order(po_id, test_actor_id)


class TestReads:

    def test_get_purchase_order(self, create_po, po_service):
        po = create_po(terms="Net 30").purchase_order

        fetched = po_service.get_purchase_order(str(po.id))

        assert fetched.id == po.id
        assert fetched.terms == "Net 30"
        assert fetched.current_stage.name == "Draft"
        assert fetched.bill_to.name == "City Hospital"

    def test_get_unknown(self, po_service, seeded_stages):
        with pytest.raises(PurchaseOrderNotFoundError) as exc_info:
            po_service.get_purchase_order(uuid4())

        assert exc_info.value.code == "PURCHASE_ORDER_NOT_FOUND"

    def test_history_in_insertion_order(self, create_po, po_service, test_actor_id, deterministic_clock):
        po = create_po().purchase_order
        for note in ("first", "second", "third"):
            deterministic_clock.tick()
            po_service.update_purchase_order(po.id, {"notes": note}, test_actor_id)

        history = po_service.get_workflow_history(po.id)

        assert [e.seq for e in history] == [1, 2, 3, 4]
        assert [e.changes["notes"]["new"] for e in history[1:]] == ["first", "second", "third"]
        assert history[0].action_date < history[-1].action_date

    def test_history_of_unknown(self, po_service, seeded_stages):
        with pytest.raises(PurchaseOrderNotFoundError):
            po_service.get_workflow_history(uuid4())


class TestPoNumberQueries:

    def test_preview_does_not_consume(self, po_service, apollo, create_po):
        assert po_service.preview_next_po_number(apollo.id) == "MM-APO-240325/001"
        assert po_service.preview_next_po_number(str(apollo.id)) == "MM-APO-240325/001"

        assert create_po().purchase_order.po_number == "MM-APO-240325/001"
        assert po_service.preview_next_po_number(apollo.id) == "MM-APO-240325/002"

    def test_preview_other_day(self, po_service, apollo):
        assert po_service.preview_next_po_number(apollo.id, date(2025, 12, 31)) == "MM-APO-311225/001"

    def test_preview_invalid_principal(self, po_service):
        with pytest.raises(ValidationFailedError):
            po_service.preview_next_po_number("nope")
        with pytest.raises(PrincipalNotFoundError):
            po_service.preview_next_po_number(uuid4())

    def test_availability(self, po_service, create_po):
        po = create_po().purchase_order

        assert po_service.is_po_number_available(po.po_number) is False
        assert po_service.is_po_number_available(f"  {po.po_number}  ") is False
        assert po_service.is_po_number_available("MM-APO-240325/099") is True

    def test_availability_requires_number(self, po_service):
        with pytest.raises(ValidationFailedError):
            po_service.is_po_number_available("   ")


class TestResendOrderNotification:

    def test_resend_for_ordered(self, create_po, advance_po, po_service, notifier):
        po = create_po().purchase_order
        advance_po(po.id, 4)

        result = po_service.resend_order_notification(po.id)

        assert result == NotificationResult(success=True, message="Order notification sent")
        assert len(notifier.sent) == 2

    def test_resend_failure_raises(self, create_po, advance_po, po_service, notifier):
        po = create_po().purchase_order
        advance_po(po.id, 4)
        notifier.result = NotificationResult(success=False, message="Mailbox full")

        with pytest.raises(NotificationDispatchError) as exc_info:
            po_service.resend_order_notification(po.id)

        assert exc_info.value.reason == "Mailbox full"
        assert exc_info.value.po_number == po.po_number

    def test_resend_before_ordered_forbidden(self, create_po, advance_po, po_service, notifier):
        po = create_po().purchase_order
        advance_po(po.id, 3)

        with pytest.raises(ForbiddenInStageError) as exc_info:
            po_service.resend_order_notification(po.id)

        assert exc_info.value.action == "notify"
        assert notifier.sent == []
