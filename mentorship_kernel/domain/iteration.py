"""
Iteration domain types (``mentorship_kernel.domain.iteration``).

An iteration is one submitted unit of work on a project.  Numbers are
1-based, strictly increasing per project and never reused.

Invariants enforced
-------------------
* IT-1: ``ITERATION_TRANSITIONS`` defines the only valid status changes.
* IT-2: At most one iteration per project is in an open status
  (``submitted`` or ``under_review``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from mentorship_kernel.domain.project import ActorRole


class IterationStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"
    SUPERSEDED = "superseded"


class ReviewDecision(str, Enum):
    """Decision a reviewer makes on an iteration under review."""

    APPROVE = "approve"
    REQUEST_REVISION = "request_revision"


ITERATION_TRANSITIONS: dict[IterationStatus, frozenset[IterationStatus]] = {
    IterationStatus.SUBMITTED: frozenset({IterationStatus.UNDER_REVIEW}),
    IterationStatus.UNDER_REVIEW: frozenset({
        IterationStatus.APPROVED,
        IterationStatus.REVISION_REQUESTED,
    }),
    IterationStatus.REVISION_REQUESTED: frozenset({IterationStatus.SUPERSEDED}),
    IterationStatus.APPROVED: frozenset(),
    IterationStatus.SUPERSEDED: frozenset(),
}

OPEN_ITERATION_STATUSES: frozenset[IterationStatus] = frozenset({
    IterationStatus.SUBMITTED,
    IterationStatus.UNDER_REVIEW,
})

SUBMITTER_ROLES: frozenset[ActorRole] = frozenset({ActorRole.STUDENT, ActorRole.MENTOR})


@dataclass(frozen=True)
class Iteration:
    """Immutable snapshot of one submitted revision."""

    iteration_id: UUID
    project_id: UUID
    iteration_number: int
    submitted_by_id: UUID
    submitted_by_role: ActorRole
    status: IterationStatus = IterationStatus.SUBMITTED
    notes: str | None = None
    submitted_at: datetime | None = None
    review_decision: ReviewDecision | None = None
    review_notes: str | None = None
    reviewed_by_id: UUID | None = None
    reviewed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ITERATION_STATUSES
