"""
Workflow Stage Registry.

Catalog of the named stages a purchase order moves through, each with its
allowed actions.  The state machine reads it; only the bootstrap step and
the DRAFT fallback write to it.

Usage:
    registry = StageRegistry(session)
    registry.seed(config.stages)
    registry.validate_workflow(PURCHASE_ORDER_WORKFLOW)
"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_config.schema import StageSeed
from procurement_kernel.exceptions import (
    DuplicateStageCodeError,
    StageNotFoundError,
    WorkflowConfigurationError,
)
from procurement_kernel.logging_config import get_logger
from procurement_modules.purchase_orders.models import StageAction, StageCode, WorkflowStage
from procurement_modules.purchase_orders.orm import WorkflowStageModel
from procurement_modules.purchase_orders.workflows import (
    ANY_STATE,
    PURCHASE_ORDER_WORKFLOW,
    Workflow,
)

logger = get_logger("modules.purchase_orders.stages")

# The only stage the engine may create on its own.
DRAFT_BOOTSTRAP_STAGE = StageSeed(
    code=StageCode.DRAFT.value,
    name="Draft",
    sequence=1,
    allowed_actions=(
        StageAction.EDIT.value,
        StageAction.APPROVE.value,
        StageAction.CANCEL.value,
    ),
    description="Purchase order being prepared",
)

# Built-in defaults for the stages a workflow may create lazily.
LAZY_STAGE_DEFAULTS: dict[str, StageSeed] = {DRAFT_BOOTSTRAP_STAGE.code: DRAFT_BOOTSTRAP_STAGE}


class StageRegistry:
    """
    Session-scoped access to workflow stages.

    Does NOT commit; the calling service owns the transaction.
    """

    def __init__(self, session: Session):
        self._session = session

    def find_by_code(self, code: str) -> WorkflowStageModel | None:
        return self._session.execute(
            select(WorkflowStageModel).where(WorkflowStageModel.code == code.upper())
        ).scalar_one_or_none()

    def get(self, code: str, reason: str = "Stage not found") -> WorkflowStageModel:
        """Return an active stage or raise StageNotFoundError."""
        stage = self.find_by_code(code)
        if stage is None or not stage.is_active:
            logger.warning(
                "workflow_stage_not_found",
                extra={"stage_code": code, "inactive": stage is not None},
            )
            raise StageNotFoundError(code, reason)
        return stage

    def create_stage(self, seed: StageSeed) -> WorkflowStageModel:
        if self.find_by_code(seed.code) is not None:
            raise DuplicateStageCodeError(seed.code)
        stage = WorkflowStageModel(
            code=seed.code,
            name=seed.name,
            description=seed.description,
            sequence=seed.sequence,
            allowed_actions=list(seed.allowed_actions),
            is_active=seed.is_active,
        )
        self._session.add(stage)
        self._session.flush()
        logger.info(
            "workflow_stage_created",
            extra={
                "stage_code": stage.code,
                "allowed_actions": list(seed.allowed_actions),
                "sequence": seed.sequence,
            },
        )
        return stage

    def ensure_initial_stage(self, workflow: Workflow = PURCHASE_ORDER_WORKFLOW) -> WorkflowStageModel:
        """
        Return the workflow's initial stage.  When the registry has none and
        the workflow lists the state as lazily created, create it from its
        built-in defaults; otherwise raise StageNotFoundError.
        """
        code = workflow.initial_state
        stage = self.find_by_code(code)
        if stage is not None:
            return stage
        seed = LAZY_STAGE_DEFAULTS.get(code) if code in workflow.lazily_created_states else None
        if seed is None:
            return self.get(code, "Initial stage not found")
        logger.warning(
            "initial_stage_created_lazily",
            extra={"stage_code": code, "allowed_actions": list(seed.allowed_actions)},
        )
        return self.create_stage(seed)

    def list_stages(self) -> list[WorkflowStage]:
        rows = self._session.execute(
            select(WorkflowStageModel).order_by(WorkflowStageModel.sequence, WorkflowStageModel.code)
        ).scalars()
        return [row.to_dto() for row in rows]

    def seed(self, stages: Sequence[StageSeed]) -> list[str]:
        """
        Create every seeded stage that does not exist yet.  Existing stages
        are left untouched.  Returns the codes created.
        """
        created = []
        for seed in stages:
            if self.find_by_code(seed.code) is None:
                self.create_stage(seed)
                created.append(seed.code)
        logger.info(
            "workflow_stages_seeded",
            extra={"created_codes": created, "requested": len(stages)},
        )
        return created

    def validate_workflow(self, workflow: Workflow = PURCHASE_ORDER_WORKFLOW) -> None:
        """
        Check the transition table against the registered stages.

        Raises:
            WorkflowConfigurationError: listing every problem found.
        """
        stages = {s.code: s for s in self.list_stages()}
        problems: list[str] = []

        for state in workflow.states:
            if state not in stages:
                problems.append(f"stage {state} is not registered")
            elif not stages[state].is_active:
                problems.append(f"stage {state} is inactive")
            if state not in workflow.status_by_state:
                problems.append(f"stage {state} has no status mapping")

        for state in sorted(workflow.lazily_created_states):
            if state not in LAZY_STAGE_DEFAULTS:
                problems.append(f"stage {state} has no built-in defaults for lazy creation")

        for t in workflow.transitions:
            if t.to_state not in workflow.states:
                problems.append(f"transition {t.action} targets unknown state {t.to_state}")
            if t.from_state == ANY_STATE:
                if not any(s.allows(t.requires) for s in stages.values()):
                    problems.append(f"no stage allows '{t.requires.value}' for {t.action}")
                continue
            source = stages.get(t.from_state)
            if source is not None and not source.allows(t.requires):
                problems.append(
                    f"stage {t.from_state} does not allow '{t.requires.value}' "
                    f"needed for {t.action} -> {t.to_state}"
                )

        if problems:
            logger.error(
                "workflow_validation_failed",
                extra={"workflow_name": workflow.name, "problems": problems},
            )
            raise WorkflowConfigurationError(workflow.name, problems)

        logger.info(
            "workflow_validated",
            extra={"workflow_name": workflow.name, "stage_count": len(stages)},
        )


def bootstrap_workflow(
    session: Session,
    stages: Sequence[StageSeed],
    workflow: Workflow = PURCHASE_ORDER_WORKFLOW,
) -> list[WorkflowStage]:
    """
    One-time setup: seed the configured stages and validate the transition
    table against them.  Does not commit.
    """
    registry = StageRegistry(session)
    registry.seed(stages)
    validate_workflow_against_stages(session, workflow)
    return registry.list_stages()


def validate_workflow_against_stages(
    session: Session,
    workflow: Workflow = PURCHASE_ORDER_WORKFLOW,
) -> None:
    """Startup check; raises WorkflowConfigurationError on any mismatch."""
    StageRegistry(session).validate_workflow(workflow)
