"""
Purchase Order Workflows.

The approval state machine as an explicit transition table.  States are
workflow stage codes; every transition names the stage action that must be
allowed on the current stage, the resulting status, and the history action
it records.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from procurement_kernel.logging_config import get_logger
from procurement_modules.purchase_orders.models import (
    HistoryAction,
    POStatus,
    StageAction,
    StageCode,
)

logger = get_logger("modules.purchase_orders.workflows")

ANY_STATE = "*"


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    requires: StageAction
    history_action: HistoryAction
    stamps_approval: bool = False
    notifies: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    status_by_state: Mapping[str, POStatus] = field(default_factory=dict)
    # States the engine may create on first use instead of failing
    lazily_created_states: frozenset[str] = frozenset()

    def transition_for(self, from_state: str, action: str) -> Transition | None:
        """Exact-state transitions win over wildcard ones."""
        wildcard = None
        for t in self.transitions:
            if t.action != action:
                continue
            if t.from_state == from_state:
                return t
            if t.from_state == ANY_STATE and wildcard is None:
                wildcard = t
        return wildcard

    def status_for(self, state: str) -> POStatus:
        try:
            return self.status_by_state[state]
        except KeyError:
            raise KeyError(f"No status mapped for stage {state} in workflow {self.name}") from None


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order approval lifecycle",
    initial_state=StageCode.DRAFT.value,
    states=tuple(code.value for code in StageCode),
    transitions=(
        Transition(
            StageCode.DRAFT.value, StageCode.PENDING_APPROVAL.value,
            action="submit", requires=StageAction.APPROVE,
            history_action=HistoryAction.SUBMITTED,
        ),
        Transition(
            StageCode.PENDING_APPROVAL.value, StageCode.APPROVED_L1.value,
            action="approve", requires=StageAction.APPROVE,
            history_action=HistoryAction.APPROVED,
        ),
        Transition(
            StageCode.APPROVED_L1.value, StageCode.APPROVED_FINAL.value,
            action="approve", requires=StageAction.APPROVE,
            history_action=HistoryAction.APPROVED,
            stamps_approval=True,
        ),
        Transition(
            StageCode.APPROVED_FINAL.value, StageCode.ORDERED.value,
            action="approve", requires=StageAction.APPROVE,
            history_action=HistoryAction.APPROVED,
            notifies=True,
        ),
        Transition(
            ANY_STATE, StageCode.CANCELLED.value,
            action="reject", requires=StageAction.REJECT,
            history_action=HistoryAction.REJECTED,
        ),
    ),
    status_by_state=MappingProxyType({
        StageCode.DRAFT.value: POStatus.DRAFT,
        StageCode.PENDING_APPROVAL.value: POStatus.PENDING_APPROVAL,
        StageCode.APPROVED_L1.value: POStatus.APPROVED,
        StageCode.APPROVED_FINAL.value: POStatus.APPROVED,
        StageCode.ORDERED.value: POStatus.ORDERED,
        StageCode.CANCELLED.value: POStatus.REJECTED,
    }),
    lazily_created_states=frozenset({StageCode.DRAFT.value}),
)

logger.info(
    "purchase_order_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
        "initial_state": PURCHASE_ORDER_WORKFLOW.initial_state,
    },
)
