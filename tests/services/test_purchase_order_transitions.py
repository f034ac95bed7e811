"""
Tests for the approval chain: submit, approve, reject.

Verifies:
- DRAFT -> PENDING_APPROVAL -> APPROVED_L1 -> APPROVED_FINAL -> ORDERED
- Rejection to CANCELLED from any stage that allows "reject"
- Stage gating and missing transitions raise distinct errors
- approved_by/approved_date are stamped once, on L1 -> Final
- The order notification fires once, on reaching ORDERED, and its
  failure is a warning rather than an error
"""

from uuid import uuid4

import pytest

from procurement_kernel.exceptions import (
    ForbiddenInStageError,
    InvalidTransitionError,
    PurchaseOrderNotFoundError,
    StageNotFoundError,
    ValidationFailedError,
)
from procurement_modules.purchase_orders.models import (
    HistoryAction,
    NotificationResult,
    POStatus,
)
from procurement_modules.purchase_orders.stages import StageRegistry


class TestSubmit:

    def test_draft_to_pending_approval(self, create_po, po_service, approver_id):
        po = create_po().purchase_order

        result = po_service.submit_purchase_order(po.id, approver_id, remarks="Please review")
        submitted = result.purchase_order

        assert result.message == "Purchase order submitted for approval"
        assert submitted.current_stage.code == "PENDING_APPROVAL"
        assert submitted.status is POStatus.PENDING_APPROVAL
        assert submitted.updated_by == approver_id
        entry = submitted.workflow_history[-1]
        assert entry.action is HistoryAction.SUBMITTED
        assert entry.stage_code == "PENDING_APPROVAL"
        assert entry.remarks == "Please review"

    def test_submit_twice_is_invalid(self, create_po, advance_po, po_service, approver_id):
        po = create_po().purchase_order
        advance_po(po.id, 1)

        with pytest.raises(InvalidTransitionError) as exc_info:
            po_service.submit_purchase_order(po.id, approver_id)

        assert exc_info.value.stage_code == "PENDING_APPROVAL"
        assert str(exc_info.value) == "Invalid stage for submission: PENDING_APPROVAL"

    def test_submit_from_ordered_forbidden(self, create_po, advance_po, po_service, approver_id):
        po = create_po().purchase_order
        advance_po(po.id, 4)

        with pytest.raises(ForbiddenInStageError) as exc_info:
            po_service.submit_purchase_order(po.id, approver_id)

        assert str(exc_info.value) == "Submission not allowed in current stage"

    def test_submit_needs_pending_stage(self, create_po, po_service, session, approver_id):
        po = create_po().purchase_order
        StageRegistry(session).find_by_code("PENDING_APPROVAL").is_active = False
        session.commit()

        with pytest.raises(StageNotFoundError) as exc_info:
            po_service.submit_purchase_order(po.id, approver_id)

        assert exc_info.value.stage_code == "PENDING_APPROVAL"
        assert po_service.get_purchase_order(po.id).current_stage.code == "DRAFT"


class TestApprove:

    def test_full_chain_reaches_ordered(self, create_po, advance_po, po_service, approver_id):
        po = create_po().purchase_order
        advance_po(po.id, 1)

        stages = []
        for _ in range(3):
            result = po_service.approve_purchase_order(po.id, approver_id)
            stages.append((result.purchase_order.current_stage.code, result.purchase_order.status))

        assert stages == [
            ("APPROVED_L1", POStatus.APPROVED),
            ("APPROVED_FINAL", POStatus.APPROVED),
            ("ORDERED", POStatus.ORDERED),
        ]
        assert result.message == "Purchase order approved successfully"
        assert result.purchase_order.is_terminal

    def test_history_of_full_chain(self, create_po, advance_po, po_service):
        po = create_po().purchase_order
        advance_po(po.id, 4)

        history = po_service.get_workflow_history(po.id)

        assert [e.seq for e in history] == [1, 2, 3, 4, 5]
        assert [e.action for e in history] == [
            HistoryAction.CREATED,
            HistoryAction.SUBMITTED,
            HistoryAction.APPROVED,
            HistoryAction.APPROVED,
            HistoryAction.APPROVED,
        ]
        assert [e.remarks for e in history[2:]] == [
            "Approved at Level 1 Approved",
            "Approved at Final Approval",
            "Approved at Ordered",
        ]

    def test_caller_remarks_kept(self, create_po, advance_po, po_service, approver_id):
        po = create_po().purchase_order
        advance_po(po.id, 1)

        result = po_service.approve_purchase_order(po.id, approver_id, remarks="Budget ok")

        assert result.purchase_order.workflow_history[-1].remarks == "Budget ok"

    def test_approval_stamped_once(self, create_po, advance_po, po_service, approver_id, deterministic_clock):
        po = create_po().purchase_order
        advance_po(po.id, 1)

        l1 = po_service.approve_purchase_order(po.id, approver_id).purchase_order
        assert l1.approved_by is None
        assert l1.approved_date is None

        deterministic_clock.advance(3600)
        stamped_at = deterministic_clock.now()
        final = po_service.approve_purchase_order(po.id, approver_id).purchase_order
        assert final.approved_by == approver_id
        assert final.approved_date == stamped_at

        deterministic_clock.advance(3600)
        other_approver = uuid4()
        ordered = po_service.approve_purchase_order(po.id, other_approver).purchase_order
        assert ordered.approved_by == approver_id
        assert ordered.approved_date == stamped_at
        assert ordered.updated_by == other_approver

    def test_approve_draft_is_invalid(self, create_po, po_service, approver_id):
        po = create_po().purchase_order

        with pytest.raises(InvalidTransitionError) as exc_info:
            po_service.approve_purchase_order(po.id, approver_id)

        assert str(exc_info.value) == "Invalid stage for approval: DRAFT"
        assert po_service.get_purchase_order(po.id).status is POStatus.DRAFT

    def test_approve_ordered_forbidden(self, create_po, advance_po, po_service, approver_id):
        po = create_po().purchase_order
        advance_po(po.id, 4)

        with pytest.raises(ForbiddenInStageError) as exc_info:
            po_service.approve_purchase_order(po.id, approver_id)

        assert str(exc_info.value) == "Approval not allowed in current stage"
        assert exc_info.value.stage_code == "ORDERED"

    def test_approve_cancelled_forbidden(self, create_po, advance_po, po_service, approver_id):
        po = create_po().purchase_order
        advance_po(po.id, 1)
        po_service.reject_purchase_order(po.id, approver_id, "Wrong supplier")

        with pytest.raises(ForbiddenInStageError):
            po_service.approve_purchase_order(po.id, approver_id)

    def test_inactive_next_stage(self, create_po, advance_po, po_service, session, approver_id):
        po = create_po().purchase_order
        advance_po(po.id, 1)
        StageRegistry(session).find_by_code("APPROVED_L1").is_active = False
        session.commit()

        with pytest.raises(StageNotFoundError) as exc_info:
            po_service.approve_purchase_order(po.id, approver_id)

        assert str(exc_info.value) == "Next stage not found: APPROVED_L1"
        reloaded = po_service.get_purchase_order(po.id)
        assert reloaded.current_stage.code == "PENDING_APPROVAL"
        assert len(reloaded.workflow_history) == 2

    def test_unknown_purchase_order(self, po_service, seeded_stages, approver_id):
        with pytest.raises(PurchaseOrderNotFoundError):
            po_service.approve_purchase_order(uuid4(), approver_id)

    def test_logs_transition(self, create_po, advance_po, po_service, approver_id, captured_logs):
        po = create_po().purchase_order
        advance_po(po.id, 1)

        po_service.approve_purchase_order(po.id, approver_id)

        records = [r for r in captured_logs() if r["message"] == "purchase_order_transitioned"]
        assert records[-1]["from_stage"] == "PENDING_APPROVAL"
        assert records[-1]["to_stage"] == "APPROVED_L1"
        assert records[-1]["po_id"] == str(po.id)


class TestOrderNotification:

    def test_not_sent_before_ordered(self, create_po, advance_po, notifier):
        po = create_po().purchase_order

        advance_po(po.id, 3)

        assert notifier.sent == []

    def test_sent_on_reaching_ordered(self, create_po, advance_po, po_service, approver_id, notifier):
        po = create_po().purchase_order
        advance_po(po.id, 3)

        result = po_service.approve_purchase_order(po.id, approver_id)

        assert result.warnings == ()
        assert len(notifier.sent) == 1
        sent = notifier.sent[0]
        assert sent.po_number == po.po_number
        assert sent.status is POStatus.ORDERED
        assert sent.to_emails == ("orders@apollo.example.com",)

    def test_notifier_exception_is_warning(self, create_po, advance_po, po_service, approver_id, notifier):
        po = create_po().purchase_order
        advance_po(po.id, 3)
        notifier.raise_error = ConnectionError("smtp unreachable")

        result = po_service.approve_purchase_order(po.id, approver_id)

        assert result.purchase_order.status is POStatus.ORDERED
        assert result.warnings == (
            f"Failed to send notification for {po.po_number}: smtp unreachable",
        )
        assert po_service.get_purchase_order(po.id).current_stage.code == "ORDERED"

    def test_failed_result_is_warning(self, create_po, advance_po, po_service, approver_id, notifier):
        po = create_po().purchase_order
        advance_po(po.id, 3)
        notifier.result = NotificationResult(success=False, message="No recipients")

        result = po_service.approve_purchase_order(po.id, approver_id)

        assert result.warnings == (f"Failed to send notification for {po.po_number}: No recipients",)
        assert result.purchase_order.status is POStatus.ORDERED

    def test_failure_logged(self, create_po, advance_po, po_service, approver_id, notifier, captured_logs):
        po = create_po().purchase_order
        advance_po(po.id, 3)
        notifier.raise_error = TimeoutError("timed out")

        po_service.approve_purchase_order(po.id, approver_id)

        failures = [r for r in captured_logs() if r["message"] == "order_notification_dispatch_failed"]
        assert len(failures) == 1
        assert failures[0]["level"] == "ERROR"
        assert failures[0]["po_number"] == po.po_number


class TestReject:

    @pytest.mark.parametrize("remarks", [None, "", "   "])
    def test_remarks_required(self, create_po, advance_po, po_service, approver_id, remarks):
        po = create_po().purchase_order
        advance_po(po.id, 1)

        with pytest.raises(ValidationFailedError) as exc_info:
            po_service.reject_purchase_order(po.id, approver_id, remarks)

        assert str(exc_info.value) == "Remarks required for rejection"
        assert exc_info.value.errors == {"remarks": "is required"}
        assert po_service.get_purchase_order(po.id).status is POStatus.PENDING_APPROVAL

    @pytest.mark.parametrize("steps,from_stage", [
        (1, "PENDING_APPROVAL"),
        (2, "APPROVED_L1"),
        (3, "APPROVED_FINAL"),
    ])
    def test_reject_to_cancelled(self, create_po, advance_po, po_service, approver_id, steps, from_stage):
        po = create_po().purchase_order
        advance_po(po.id, steps)

        result = po_service.reject_purchase_order(po.id, approver_id, "  Price too high ")
        rejected = result.purchase_order

        assert result.message == "Purchase order rejected"
        assert rejected.current_stage.code == "CANCELLED"
        assert rejected.status is POStatus.REJECTED
        assert rejected.is_terminal
        entry = rejected.workflow_history[-1]
        assert entry.action is HistoryAction.REJECTED
        assert entry.remarks == "  Price too high "
        assert rejected.workflow_history[-2].stage_code == from_stage

    def test_reject_keeps_approval_stamp(self, create_po, advance_po, po_service, approver_id):
        po = create_po().purchase_order
        stamped = advance_po(po.id, 3).purchase_order

        rejected = po_service.reject_purchase_order(po.id, uuid4(), "Cancelled by supplier").purchase_order

        assert rejected.approved_by == stamped.approved_by == approver_id
        assert rejected.approved_date == stamped.approved_date

    def test_reject_draft_forbidden(self, create_po, po_service, approver_id):
        po = create_po().purchase_order

        with pytest.raises(ForbiddenInStageError) as exc_info:
            po_service.reject_purchase_order(po.id, approver_id, "No")

        assert str(exc_info.value) == "Rejection not allowed in current stage"
        assert exc_info.value.action == "reject"

    def test_reject_terminal_forbidden(self, create_po, advance_po, po_service, approver_id):
        po = create_po().purchase_order
        advance_po(po.id, 4)

        with pytest.raises(ForbiddenInStageError):
            po_service.reject_purchase_order(po.id, approver_id, "Too late")

    def test_remarks_checked_before_lookup(self, po_service, approver_id):
        with pytest.raises(ValidationFailedError):
            po_service.reject_purchase_order(uuid4(), approver_id, "")

    def test_unknown_purchase_order(self, po_service, seeded_stages, approver_id):
        with pytest.raises(PurchaseOrderNotFoundError):
            po_service.reject_purchase_order(uuid4(), approver_id, "Duplicate order")
