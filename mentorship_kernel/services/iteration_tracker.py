"""
IterationTracker -- submitted work revisions for a single project.

Responsibility:
    Numbers, opens, reviews and supersedes iterations.  Operates on the
    project's current tuple of iterations and returns a new tuple; it never
    persists anything, so a failed composite action leaves no trace.

Architecture position:
    Kernel > Services.  Depends only on the iteration domain types and a
    Clock.  The WorkflowCoordinator decides which reviewer role the
    project's current stage requires and passes it in.

Invariants enforced:
    IT-1 -- Status changes follow ITERATION_TRANSITIONS.
    IT-2 -- At most one open (submitted / under_review) iteration.
    IT-3 -- Iteration numbers are 1-based, strictly increasing, never reused.
    IT-4 -- Revision-requested iterations become superseded when the next
            iteration is submitted; they still count toward the revision cap.

Failure modes:
    - InvalidStateError: submit while an iteration is open; review of an
      iteration that is not under review.
    - IterationNotFoundError: unknown iteration id.
    - ForbiddenError: submitter or reviewer role not allowed.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from uuid import UUID, uuid4

from mentorship_kernel.domain.clock import Clock, SystemClock
from mentorship_kernel.domain.iteration import (
    ITERATION_TRANSITIONS,
    SUBMITTER_ROLES,
    Iteration,
    IterationStatus,
    ReviewDecision,
)
from mentorship_kernel.domain.project import ActorRole
from mentorship_kernel.exceptions import (
    ForbiddenError,
    InvalidStateError,
    IterationNotFoundError,
)
from mentorship_kernel.logging_config import get_logger

logger = get_logger("services.iteration_tracker")


@dataclass(frozen=True)
class IterationUpdate:
    """The iteration that changed plus the project's full updated tuple."""

    iteration: Iteration
    iterations: tuple[Iteration, ...]


def _transition(iteration: Iteration, target: IterationStatus) -> None:
    if target not in ITERATION_TRANSITIONS[iteration.status]:
        raise InvalidStateError(
            "Iteration",
            str(iteration.iteration_id),
            iteration.status.value,
            f"cannot move to '{target.value}'",
        )


def _replace_in(
    iterations: tuple[Iteration, ...], updated: Iteration
) -> tuple[Iteration, ...]:
    return tuple(
        updated if it.iteration_id == updated.iteration_id else it
        for it in iterations
    )


class IterationTracker:
    """Manages the iteration sub-protocol of one project."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def submit(
        self,
        project_id: UUID,
        iterations: tuple[Iteration, ...],
        actor_id: UUID,
        actor_role: ActorRole,
        notes: str | None = None,
    ) -> IterationUpdate:
        """Create the next iteration in ``submitted`` status.

        Preconditions:
            - No iteration is submitted or under review (IT-2).
            - ``actor_role`` is student or mentor.

        Postconditions:
            - New iteration numbered max(existing) + 1 (IT-3).
            - Every revision-requested iteration is superseded (IT-4).
        """
        if actor_role not in SUBMITTER_ROLES:
            raise ForbiddenError(
                str(actor_id), actor_role.value, "submit_iteration",
                "only the student or mentor submits work",
            )

        for existing in iterations:
            if existing.is_open:
                raise InvalidStateError(
                    "Iteration",
                    str(existing.iteration_id),
                    existing.status.value,
                    f"iteration {existing.iteration_number} is still awaiting review",
                )

        now = self._clock.now()
        carried: list[Iteration] = []
        for existing in iterations:
            if existing.status == IterationStatus.REVISION_REQUESTED:
                _transition(existing, IterationStatus.SUPERSEDED)
                existing = replace(existing, status=IterationStatus.SUPERSEDED)
            carried.append(existing)

        next_number = max((it.iteration_number for it in iterations), default=0) + 1
        iteration = Iteration(
            iteration_id=uuid4(),
            project_id=project_id,
            iteration_number=next_number,
            submitted_by_id=actor_id,
            submitted_by_role=actor_role,
            status=IterationStatus.SUBMITTED,
            notes=notes,
            submitted_at=now,
        )

        logger.info(
            "iteration_submitted",
            extra={
                "project_id": str(project_id),
                "iteration_number": next_number,
                "submitted_by_role": actor_role.value,
            },
        )
        return IterationUpdate(iteration=iteration, iterations=(*carried, iteration))

    def begin_review(
        self, iterations: tuple[Iteration, ...], iteration_id: UUID
    ) -> IterationUpdate:
        """Move a submitted iteration to ``under_review``."""
        iteration = self.get(iterations, iteration_id)
        _transition(iteration, IterationStatus.UNDER_REVIEW)
        updated = replace(iteration, status=IterationStatus.UNDER_REVIEW)
        return IterationUpdate(iteration=updated, iterations=_replace_in(iterations, updated))

    def review(
        self,
        iterations: tuple[Iteration, ...],
        iteration_id: UUID,
        reviewer_id: UUID,
        reviewer_role: ActorRole,
        decision: ReviewDecision,
        review_notes: str | None,
        required_role: ActorRole | None,
    ) -> IterationUpdate:
        """Record the reviewing party's decision.

        ``required_role`` is the role the project's current stage expects
        (mentor for student work, client for mentor-approved work); None
        means the stage accepts no reviewer at all.
        """
        iteration = self.get(iterations, iteration_id)

        if iteration.status != IterationStatus.UNDER_REVIEW:
            raise InvalidStateError(
                "Iteration",
                str(iteration_id),
                iteration.status.value,
                "only an iteration under review can be reviewed",
            )

        if required_role is None or reviewer_role != required_role:
            expected = required_role.value if required_role else "nobody"
            raise ForbiddenError(
                str(reviewer_id), reviewer_role.value, "review_iteration",
                f"this stage is reviewed by {expected}",
            )

        target = (
            IterationStatus.APPROVED
            if decision == ReviewDecision.APPROVE
            else IterationStatus.REVISION_REQUESTED
        )
        _transition(iteration, target)
        updated = replace(
            iteration,
            status=target,
            review_decision=decision,
            review_notes=review_notes,
            reviewed_by_id=reviewer_id,
            reviewed_at=self._clock.now(),
        )

        logger.info(
            "iteration_reviewed",
            extra={
                "project_id": str(iteration.project_id),
                "iteration_number": iteration.iteration_number,
                "decision": decision.value,
                "reviewer_role": reviewer_role.value,
            },
        )
        return IterationUpdate(iteration=updated, iterations=_replace_in(iterations, updated))

    @staticmethod
    def get(iterations: tuple[Iteration, ...], iteration_id: UUID) -> Iteration:
        for iteration in iterations:
            if iteration.iteration_id == iteration_id:
                return iteration
        raise IterationNotFoundError(str(iteration_id))

    @staticmethod
    def current_revision_count(iterations: tuple[Iteration, ...]) -> int:
        """Iterations that were sent back for revision, superseded or not."""
        return sum(
            1 for it in iterations
            if it.review_decision == ReviewDecision.REQUEST_REVISION
        )
