"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow engine (HTTP handlers, CLIs, batch jobs) decide what
to do with a failure by its kind, not by its message. Every exception here:

  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, transport-safe)
  3. Carries structured DATA as attributes (po_id, stage_code, ...)

Example:
    try:
        service.approve_purchase_order(po_id, actor_id)
    except ForbiddenInStageError as e:
        return {"error": e.code, "stage": e.stage_code, "action": e.action}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementError (base)
    |
    +-- NotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- StageNotFoundError
    |   +-- PrincipalNotFoundError
    |
    +-- ValidationFailedError
    |
    +-- ConflictError
    |   +-- DuplicatePoNumberError
    |   +-- DuplicateStageCodeError
    |   +-- PoNumberExhaustedError
    |   +-- OptimisticLockError
    |
    +-- ForbiddenInStageError
    |   +-- PurchaseOrderNotDraftError
    |
    +-- InvalidTransitionError
    |
    +-- DependencyFailureError
    |   +-- NotificationDispatchError
    |
    +-- WorkflowConfigurationError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Kind              | Code                        | When Raised
------------------|-----------------------------|---------------------------------
NotFound          | PURCHASE_ORDER_NOT_FOUND    | PO id doesn't exist
                  | STAGE_NOT_FOUND             | Stage code not in the registry
                  | PRINCIPAL_NOT_FOUND         | Principal id doesn't exist
------------------|-----------------------------|---------------------------------
ValidationFailed  | VALIDATION_FAILED           | Bad input (details in .errors)
------------------|-----------------------------|---------------------------------
Conflict          | DUPLICATE_PO_NUMBER         | poNumber already taken
                  | DUPLICATE_STAGE_CODE        | Stage code already registered
                  | PO_NUMBER_EXHAUSTED         | No free daily serial left to try
                  | OPTIMISTIC_LOCK_CONFLICT    | Concurrent modification
------------------|-----------------------------|---------------------------------
ForbiddenInStage  | FORBIDDEN_IN_STAGE          | Action not allowed by stage
                  | PURCHASE_ORDER_NOT_DRAFT    | Delete on a non-draft PO
------------------|-----------------------------|---------------------------------
InvalidTransition | INVALID_TRANSITION          | No next stage for approval
------------------|-----------------------------|---------------------------------
DependencyFailure | NOTIFICATION_DISPATCH_FAILED| Notifier failed (warning only)
------------------|-----------------------------|---------------------------------
Configuration     | WORKFLOW_CONFIGURATION_ERROR| Transition table vs registry
------------------|-----------------------------|---------------------------------
Immutability      | IMMUTABILITY_VIOLATION      | History row update/delete

Mapping a kind to a transport status (404, 400, 409, 403, 502) belongs to the
hosting layer, not to this package.
"""


class ProcurementError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_ERROR"


# Not found


class NotFoundError(ProcurementError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class PurchaseOrderNotFoundError(NotFoundError):
    """Purchase order with given ID was not found."""

    code: str = "PURCHASE_ORDER_NOT_FOUND"

    def __init__(self, po_id: str):
        self.po_id = po_id
        super().__init__(f"Purchase order not found: {po_id}")


class StageNotFoundError(NotFoundError):
    """Workflow stage with given code is not registered."""

    code: str = "STAGE_NOT_FOUND"

    def __init__(self, stage_code: str, reason: str = "Next stage not found"):
        self.stage_code = stage_code
        self.reason = reason
        super().__init__(f"{reason}: {stage_code}")


class PrincipalNotFoundError(NotFoundError):
    """Principal referenced by a purchase order does not exist."""

    code: str = "PRINCIPAL_NOT_FOUND"

    def __init__(self, principal_id: str):
        self.principal_id = principal_id
        super().__init__(f"Principal not found: {principal_id}")


# Validation


class ValidationFailedError(ProcurementError):
    """
    Input failed validation before anything was persisted.

    ``errors`` maps a field path (``billTo.branchWarehouse``,
    ``products[2].quantity``) to a human-readable problem.
    """

    code: str = "VALIDATION_FAILED"

    def __init__(self, message: str, errors: dict[str, str] | None = None):
        self.errors = dict(errors or {})
        super().__init__(message)


# Conflict


class ConflictError(ProcurementError):
    """Base exception for uniqueness and concurrency conflicts."""

    code: str = "CONFLICT"


class DuplicatePoNumberError(ConflictError):
    """A purchase order with this number already exists."""

    code: str = "DUPLICATE_PO_NUMBER"

    def __init__(self, po_number: str):
        self.po_number = po_number
        super().__init__(f"Purchase order number already exists: {po_number}")


class DuplicateStageCodeError(ConflictError):
    """A workflow stage with this code already exists."""

    code: str = "DUPLICATE_STAGE_CODE"

    def __init__(self, stage_code: str):
        self.stage_code = stage_code
        super().__init__(f"Workflow stage already exists: {stage_code}")


class PoNumberExhaustedError(ConflictError):
    """Every serial tried for the day was already taken by an explicit number."""

    code: str = "PO_NUMBER_EXHAUSTED"

    def __init__(self, principal_name: str, local_date: str, attempts: int):
        self.principal_name = principal_name
        self.local_date = local_date
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a free PO number for {principal_name} on {local_date} "
            f"after {attempts} attempts"
        )


class OptimisticLockError(ConflictError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Stage gating


class ForbiddenInStageError(ProcurementError):
    """The requested action is not in the current stage's allowed actions."""

    code: str = "FORBIDDEN_IN_STAGE"

    def __init__(self, po_id: str, stage_code: str, action: str, message: str | None = None):
        self.po_id = po_id
        self.stage_code = stage_code
        self.action = action
        super().__init__(
            message or f"Action '{action}' not allowed in current stage {stage_code}"
        )


class PurchaseOrderNotDraftError(ForbiddenInStageError):
    """Only draft purchase orders can be deleted."""

    code: str = "PURCHASE_ORDER_NOT_DRAFT"

    def __init__(self, po_id: str, stage_code: str, status: str):
        self.status = status
        super().__init__(
            po_id,
            stage_code,
            "delete",
            message="Only draft purchase orders can be deleted",
        )


class InvalidTransitionError(ProcurementError):
    """No transition is defined for this action from the current stage."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, po_id: str, stage_code: str, action: str):
        self.po_id = po_id
        self.stage_code = stage_code
        self.action = action
        super().__init__(f"Invalid stage for {action}: {stage_code}")


# Collaborators


class DependencyFailureError(ProcurementError):
    """Base exception for failures of external collaborators."""

    code: str = "DEPENDENCY_FAILURE"


class NotificationDispatchError(DependencyFailureError):
    """
    Order notification could not be delivered.

    Never propagates out of a committed transition; the service records it
    as a warning on the result instead.
    """

    code: str = "NOTIFICATION_DISPATCH_FAILED"

    def __init__(self, po_number: str, reason: str):
        self.po_number = po_number
        self.reason = reason
        super().__init__(f"Failed to send notification for {po_number}: {reason}")


# Configuration


class WorkflowConfigurationError(ProcurementError):
    """The transition table disagrees with the registered stages."""

    code: str = "WORKFLOW_CONFIGURATION_ERROR"

    def __init__(self, workflow_name: str, problems: list[str]):
        self.workflow_name = workflow_name
        self.problems = list(problems)
        super().__init__(
            f"Workflow '{workflow_name}' is inconsistent with the stage registry: "
            + "; ".join(self.problems)
        )


# Immutability


class ImmutabilityViolationError(ProcurementError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
