"""
Typed Exception Hierarchy for the Mentorship Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The workflow engine is driven by four kinds of actors acting concurrently on
the same project.  A UI has to tell "you may not do this" apart from "someone
else got there first, try again" and from "the payment provider is down".
Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has an HTTP_STATUS attribute (stable outward status)
  4. Exceptions carry structured DATA (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowError (base)
    |
    +-- IllegalTransitionError        state machine rejects (status, action)
    +-- InvalidStateError             sub-component precondition violated
    +-- ForbiddenError                actor role / ownership mismatch
    +-- NotFoundError
    |   +-- ProjectNotFoundError
    |   +-- IterationNotFoundError
    |   +-- EscrowNotFoundError
    +-- RevisionLimitExceededError    max_revisions policy cap hit
    +-- ConcurrentModificationError   optimistic version collision (retriable)
    +-- GatewayFailureError           payment call failed after retry
    +-- TransientGatewayError         single gateway attempt timed out / 5xx
    +-- ConfigurationError            workflow settings failed validation

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                     | Status | When Raised
-------------------------|--------|-------------------------------------------
ILLEGAL_TRANSITION       | 409    | (status, action) not in transition table
INVALID_STATE            | 409    | iteration / escrow precondition violated
FORBIDDEN                | 403    | role or ownership does not permit action
PROJECT_NOT_FOUND        | 404    | unknown project id
ITERATION_NOT_FOUND      | 404    | unknown iteration id
ESCROW_NOT_FOUND         | 404    | project has no escrow payment yet
REVISION_LIMIT_EXCEEDED  | 422    | revision requested at max_revisions
CONCURRENT_MODIFICATION  | 409    | version mismatch on save (retry)
GATEWAY_FAILURE          | 502    | payment provider failed / timed out
TRANSIENT_GATEWAY_ERROR  | 503    | internal: retried once by GatewayCaller
CONFIGURATION_ERROR      | 500    | invalid workflow configuration

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RETRY ONLY CONCURRENCY CONFLICTS (the coordinator does this for you):

    except ConcurrentModificationError:
        reload_and_retry()

2. RENDER SPECIFIC GUIDANCE FROM THE CODE:

    except WorkflowError as e:
        return describe_error(e)   # {"code", "status", "retriable", "guidance"}

3. ESCALATE WHEN THE REVISION CAP IS HIT (never loop another revision):

    except RevisionLimitExceededError as e:
        coordinator.open_dispute(actor, e.project_id, reason="revision cap")
"""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must define a `code` class attribute for machine-readable
    identification and an `http_status` for the outward status a caller
    renders.
    """

    code: str = "WORKFLOW_ERROR"
    http_status: int = 500
    retriable: bool = False


class IllegalTransitionError(WorkflowError):
    """The state machine has no transition for (current status, action)."""

    code: str = "ILLEGAL_TRANSITION"
    http_status: int = 409

    def __init__(self, current_status: str, action: str, target_status: str | None = None):
        self.current_status = current_status
        self.action = action
        self.target_status = target_status
        target = f" (to {target_status})" if target_status else ""
        super().__init__(
            f"Illegal transition: cannot '{action}'{target} from status '{current_status}'"
        )


class InvalidStateError(WorkflowError):
    """A component precondition on iteration or escrow state was violated."""

    code: str = "INVALID_STATE"
    http_status: int = 409

    def __init__(self, entity_type: str, entity_id: str, current_state: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.reason = reason
        super().__init__(
            f"{entity_type} {entity_id} in state '{current_state}': {reason}"
        )


class ForbiddenError(WorkflowError):
    """The actor's role or ownership does not allow the action."""

    code: str = "FORBIDDEN"
    http_status: int = 403

    def __init__(self, actor_id: str, actor_role: str, action: str, reason: str):
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.action = action
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} ({actor_role}) may not '{action}': {reason}"
        )


# Lookup errors


class NotFoundError(WorkflowError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"
    http_status: int = 404

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class ProjectNotFoundError(NotFoundError):
    """Project with given ID was not found."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__("Project", project_id)


class IterationNotFoundError(NotFoundError):
    """Iteration with given ID was not found on the project."""

    code: str = "ITERATION_NOT_FOUND"

    def __init__(self, iteration_id: str):
        self.iteration_id = iteration_id
        super().__init__("Iteration", iteration_id)


class EscrowNotFoundError(NotFoundError):
    """The project has no escrow payment."""

    code: str = "ESCROW_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__("EscrowPayment for project", project_id)


class RevisionLimitExceededError(WorkflowError):
    """
    A revision was requested while the project is at its revision cap.

    The project status is left unchanged.  The caller must escalate
    (open a dispute) or have an admin override the cap.
    """

    code: str = "REVISION_LIMIT_EXCEEDED"
    http_status: int = 422

    def __init__(self, project_id: str, current_count: int, max_revisions: int):
        self.project_id = project_id
        self.current_count = current_count
        self.max_revisions = max_revisions
        super().__init__(
            f"Project {project_id} has used {current_count} of "
            f"{max_revisions} revisions"
        )


class ConcurrentModificationError(WorkflowError):
    """Optimistic version check failed on save."""

    code: str = "CONCURRENT_MODIFICATION"
    http_status: int = 409
    retriable: bool = True

    def __init__(self, project_id: str, expected_version: int, actual_version: int | None = None):
        self.project_id = project_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification on project {project_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Gateway errors


class GatewayFailureError(WorkflowError):
    """
    A payment gateway call failed or timed out after retry.

    The composite action is rolled back; nothing was persisted.
    """

    code: str = "GATEWAY_FAILURE"
    http_status: int = 502

    def __init__(self, operation: str, reference: str, reason: str):
        self.operation = operation
        self.reference = reference
        self.reason = reason
        super().__init__(
            f"Payment gateway {operation} failed for reference {reference}: {reason}"
        )


class TransientGatewayError(WorkflowError):
    """A single gateway attempt failed in a way worth one retry."""

    code: str = "TRANSIENT_GATEWAY_ERROR"
    http_status: int = 503
    retriable: bool = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Transient gateway failure during {operation}: {reason}")


class ConfigurationError(WorkflowError):
    """Workflow configuration failed validation."""

    code: str = "CONFIGURATION_ERROR"
    http_status: int = 500

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")


# ---------------------------------------------------------------------------
# Outward mapping
# ---------------------------------------------------------------------------

ERROR_GUIDANCE: dict[str, str] = {
    IllegalTransitionError.code: "This action is not available at the project's current stage.",
    InvalidStateError.code: "The project changed since you loaded it. Refresh and review its state.",
    ForbiddenError.code: "You are not a participant allowed to perform this action.",
    NotFoundError.code: "The requested record does not exist.",
    ProjectNotFoundError.code: "The requested project does not exist.",
    IterationNotFoundError.code: "The requested submission does not exist.",
    EscrowNotFoundError.code: "This project has not been funded yet.",
    RevisionLimitExceededError.code: "The revision limit is reached. Contact support to escalate.",
    ConcurrentModificationError.code: "Another participant updated the project. Please retry.",
    GatewayFailureError.code: "The payment provider is unavailable. No changes were made; try again later.",
    TransientGatewayError.code: "The payment provider is temporarily unavailable.",
    ConfigurationError.code: "The service is misconfigured.",
}


def describe_error(exc: WorkflowError) -> dict[str, Any]:
    """Return the stable outward representation of a workflow error."""
    return {
        "code": exc.code,
        "status": exc.http_status,
        "retriable": exc.retriable,
        "message": str(exc),
        "guidance": ERROR_GUIDANCE.get(exc.code, ""),
    }
