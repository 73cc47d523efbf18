"""
Project domain types (``mentorship_kernel.domain.project``).

Responsibility
--------------
Pure value objects for the commissioned design project: the lifecycle
status enum, the actions that move it, the actor roles, and the single
transition table that says which role may perform which action from which
status and where it lands.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/`` or ``services/``.

Invariants enforced
-------------------
* PW-1: ``PROJECT_TRANSITIONS`` is the only source of legal moves.  It is
  keyed by (action, status, role) so permissions and transitions are
  audited in one place.  A (status, action) pair absent for every role is
  an illegal transition; present for some other role only, a forbidden one.
* PW-2: Cancellation is only reachable strictly before
  ``STUDENT_ASSIGNED``; afterwards the dispute path is the only exit.
* PW-3: Disputes are reachable from every non-terminal status strictly
  after ``CLAIMED``.
* PW-4: Terminal statuses (``PAID``, ``CANCELLED``) have no outgoing edges.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ActorRole(str, Enum):
    """Roles an actor can act under."""

    CLIENT = "client"
    MENTOR = "mentor"
    STUDENT = "student"
    ADMIN = "admin"
    # Automatic follow-up transitions performed inside a coordinator action
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Explicit identity of whoever performs a workflow action."""

    actor_id: UUID
    role: ActorRole


class ProjectType(str, Enum):
    CUSTOM_COMMISSION = "custom_commission"
    DESIGN_MODIFICATION = "design_modification"


class ProjectPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =========================================================================
# Project Status Lifecycle
# =========================================================================


class ProjectStatus(str, Enum):
    """Project lifecycle states."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    SCOPED = "scoped"
    PUBLISHED = "published"
    CLAIMED = "claimed"
    STUDENT_ASSIGNED = "student_assigned"
    IN_PROGRESS = "in_progress"
    UNDER_MENTOR_REVIEW = "under_mentor_review"
    REVISION_REQUESTED = "revision_requested"
    MENTOR_APPROVED = "mentor_approved"
    CLIENT_REVIEW = "client_review"
    CLIENT_REVISION_REQUESTED = "client_revision_requested"
    COMPLETED = "completed"
    PAID = "paid"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class ProjectAction(str, Enum):
    """Named actions that move a project between statuses."""

    SUBMIT = "submit"
    BEGIN_REVIEW = "begin_review"
    SCOPE = "scope"
    PUBLISH = "publish"
    CLAIM = "claim"
    RELEASE_CLAIM = "release_claim"
    ASSIGN_STUDENT = "assign_student"
    START_WORK = "start_work"
    SUBMIT_ITERATION = "submit_iteration"
    APPROVE_ITERATION = "approve_iteration"
    REQUEST_REVISION = "request_revision"
    ADVANCE_TO_CLIENT = "advance_to_client"
    RESUME_WORK = "resume_work"
    MARK_PAID = "mark_paid"
    OPEN_DISPUTE = "open_dispute"
    REINSTATE = "reinstate"
    REFUND_AND_CANCEL = "refund_and_cancel"
    CANCEL = "cancel"
    OVERRIDE_REVISION_LIMIT = "override_revision_limit"


TERMINAL_PROJECT_STATUSES: frozenset[ProjectStatus] = frozenset({
    ProjectStatus.PAID,
    ProjectStatus.CANCELLED,
})

# PW-2: everything strictly before STUDENT_ASSIGNED
CANCELLABLE_STATUSES: frozenset[ProjectStatus] = frozenset({
    ProjectStatus.DRAFT,
    ProjectStatus.SUBMITTED,
    ProjectStatus.UNDER_REVIEW,
    ProjectStatus.SCOPED,
    ProjectStatus.PUBLISHED,
    ProjectStatus.CLAIMED,
})

# PW-3: non-terminal and strictly after CLAIMED
DISPUTABLE_STATUSES: frozenset[ProjectStatus] = frozenset({
    ProjectStatus.STUDENT_ASSIGNED,
    ProjectStatus.IN_PROGRESS,
    ProjectStatus.UNDER_MENTOR_REVIEW,
    ProjectStatus.REVISION_REQUESTED,
    ProjectStatus.MENTOR_APPROVED,
    ProjectStatus.CLIENT_REVIEW,
    ProjectStatus.CLIENT_REVISION_REQUESTED,
    ProjectStatus.COMPLETED,
})

# Escrow release gates
MENTOR_APPROVAL_MILESTONE: frozenset[ProjectStatus] = frozenset({
    ProjectStatus.MENTOR_APPROVED,
    ProjectStatus.CLIENT_REVIEW,
    ProjectStatus.COMPLETED,
    ProjectStatus.PAID,
})

STUDENT_APPROVAL_MILESTONE: frozenset[ProjectStatus] = frozenset({
    ProjectStatus.COMPLETED,
    ProjectStatus.PAID,
})

# Statuses in which a reviewer decides on the pending iteration
REVIEW_STAGE_ROLES: dict[ProjectStatus, ActorRole] = {
    ProjectStatus.UNDER_MENTOR_REVIEW: ActorRole.MENTOR,
    ProjectStatus.CLIENT_REVIEW: ActorRole.CLIENT,
}


# Target used by REINSTATE: the project's single-slot pre-dispute status
RESTORE_PRE_DISPUTE = None

_S = ProjectStatus
_A = ProjectAction
_R = ActorRole

# Sentinel for self-loop rules (the override keeps the status)
_SAME = object()


def _rules(
    action: ProjectAction,
    from_statuses: tuple[ProjectStatus, ...] | frozenset[ProjectStatus],
    roles: tuple[ActorRole, ...],
    to_status: ProjectStatus | None,
) -> dict[tuple[ProjectAction, ProjectStatus, ActorRole], ProjectStatus | None]:
    return {
        (action, status, role): (status if to_status is _SAME else to_status)
        for status in from_statuses
        for role in roles
    }


PROJECT_TRANSITIONS: dict[
    tuple[ProjectAction, ProjectStatus, ActorRole], ProjectStatus | None
] = {
    **_rules(_A.SUBMIT, (_S.DRAFT,), (_R.CLIENT, _R.ADMIN), _S.SUBMITTED),
    **_rules(_A.BEGIN_REVIEW, (_S.SUBMITTED,), (_R.ADMIN,), _S.UNDER_REVIEW),
    **_rules(_A.SCOPE, (_S.UNDER_REVIEW,), (_R.ADMIN,), _S.SCOPED),
    **_rules(_A.PUBLISH, (_S.SCOPED,), (_R.ADMIN,), _S.PUBLISHED),
    **_rules(_A.CLAIM, (_S.PUBLISHED,), (_R.MENTOR,), _S.CLAIMED),
    **_rules(_A.RELEASE_CLAIM, (_S.CLAIMED,), (_R.MENTOR, _R.ADMIN), _S.PUBLISHED),
    **_rules(_A.ASSIGN_STUDENT, (_S.CLAIMED,), (_R.MENTOR, _R.ADMIN), _S.STUDENT_ASSIGNED),
    **_rules(_A.START_WORK, (_S.STUDENT_ASSIGNED,), (_R.STUDENT, _R.MENTOR), _S.IN_PROGRESS),
    # Student work goes to the mentor; mentor work goes straight to the client
    **_rules(_A.SUBMIT_ITERATION, (_S.IN_PROGRESS,), (_R.STUDENT,), _S.UNDER_MENTOR_REVIEW),
    **_rules(_A.SUBMIT_ITERATION, (_S.IN_PROGRESS,), (_R.MENTOR,), _S.CLIENT_REVIEW),
    **_rules(_A.APPROVE_ITERATION, (_S.UNDER_MENTOR_REVIEW,), (_R.MENTOR,), _S.MENTOR_APPROVED),
    **_rules(_A.APPROVE_ITERATION, (_S.CLIENT_REVIEW,), (_R.CLIENT,), _S.COMPLETED),
    **_rules(_A.REQUEST_REVISION, (_S.UNDER_MENTOR_REVIEW,), (_R.MENTOR,), _S.REVISION_REQUESTED),
    **_rules(_A.REQUEST_REVISION, (_S.CLIENT_REVIEW,), (_R.CLIENT,), _S.CLIENT_REVISION_REQUESTED),
    **_rules(_A.ADVANCE_TO_CLIENT, (_S.MENTOR_APPROVED,), (_R.SYSTEM,), _S.CLIENT_REVIEW),
    **_rules(
        _A.RESUME_WORK,
        (_S.REVISION_REQUESTED, _S.CLIENT_REVISION_REQUESTED),
        (_R.SYSTEM,),
        _S.IN_PROGRESS,
    ),
    **_rules(_A.MARK_PAID, (_S.COMPLETED,), (_R.ADMIN,), _S.PAID),
    **_rules(
        _A.OPEN_DISPUTE,
        DISPUTABLE_STATUSES,
        (_R.CLIENT, _R.MENTOR, _R.STUDENT, _R.ADMIN),
        _S.DISPUTED,
    ),
    **_rules(_A.REINSTATE, (_S.DISPUTED,), (_R.ADMIN,), RESTORE_PRE_DISPUTE),
    **_rules(_A.REFUND_AND_CANCEL, (_S.DISPUTED,), (_R.ADMIN,), _S.CANCELLED),
    **_rules(_A.CANCEL, CANCELLABLE_STATUSES, (_R.CLIENT, _R.ADMIN), _S.CANCELLED),
    **_rules(
        _A.OVERRIDE_REVISION_LIMIT,
        (_S.IN_PROGRESS, _S.UNDER_MENTOR_REVIEW, _S.CLIENT_REVIEW, _S.DISPUTED),
        (_R.ADMIN,),
        _SAME,
    ),
}


def is_known_transition(status: ProjectStatus, action: ProjectAction) -> bool:
    """True if any role may perform ``action`` from ``status``."""
    return any(
        key_action == action and key_status == status
        for key_action, key_status, _ in PROJECT_TRANSITIONS
    )


def roles_for(status: ProjectStatus, action: ProjectAction) -> frozenset[ActorRole]:
    """Roles permitted to perform ``action`` from ``status``."""
    return frozenset(
        role
        for key_action, key_status, role in PROJECT_TRANSITIONS
        if key_action == action and key_status == status
    )


def allowed_actions(status: ProjectStatus, role: ActorRole) -> frozenset[ProjectAction]:
    """Actions ``role`` may perform from ``status``."""
    return frozenset(
        key_action
        for key_action, key_status, key_role in PROJECT_TRANSITIONS
        if key_status == status and key_role == role
    )


# =========================================================================
# Project record
# =========================================================================


@dataclass(frozen=True)
class Project:
    """Immutable snapshot of a commissioned design project.

    ``current_revision_count`` only grows.  ``pre_dispute_status`` is a
    single slot: one level of dispute nesting is supported.
    """

    project_id: UUID
    project_number: str
    client_id: UUID
    title: str
    description: str
    project_type: ProjectType = ProjectType.CUSTOM_COMMISSION
    category: str = ""
    priority: ProjectPriority = ProjectPriority.MEDIUM
    requirements: str | None = None
    scope: str | None = None
    estimated_delivery_days: int = 0
    client_fee: Decimal = Decimal("0")
    mentor_fee: Decimal = Decimal("0")
    student_fee: Decimal = Decimal("0")
    currency: str = "KES"
    max_revisions: int = 3
    current_revision_count: int = 0
    mentor_deadline: datetime | None = None
    student_deadline: datetime | None = None
    mentor_id: UUID | None = None
    student_id: UUID | None = None
    status: ProjectStatus = ProjectStatus.DRAFT
    pre_dispute_status: ProjectStatus | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PROJECT_STATUSES

    def participant_id(self, role: ActorRole) -> UUID | None:
        """The id bound to ``role`` on this project (None for admin/system)."""
        if role == ActorRole.CLIENT:
            return self.client_id
        if role == ActorRole.MENTOR:
            return self.mentor_id
        if role == ActorRole.STUDENT:
            return self.student_id
        return None
