"""
ProjectStateMachine -- the single gate for project status changes.

Responsibility:
    Validates and applies one project transition: (status, action, role)
    against PROJECT_TRANSITIONS, actor ownership against the project's
    participants, the revision cap, the pre-dispute slot, and the lifecycle
    timestamps.  Returns a new Project; never persists.

Architecture position:
    Kernel > Services.  Pure apart from the injected Clock.  Called by the
    WorkflowCoordinator once per action, plus once per automatic follow-up
    (advance_to_client, resume_work) performed under the SYSTEM role.

Invariants enforced:
    PW-1 -- Only transitions in PROJECT_TRANSITIONS are applied.  Unknown
            (status, action) -> IllegalTransitionError; known but not for
            this role -> ForbiddenError.
    PW-5 -- current_revision_count only grows; request_revision at the cap
            raises RevisionLimitExceededError and leaves status unchanged.
    PW-6 -- pre_dispute_status is written on open_dispute and cleared on
            resolution.

Failure modes:
    - IllegalTransitionError, ForbiddenError, RevisionLimitExceededError.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from mentorship_kernel.domain.clock import Clock, SystemClock
from mentorship_kernel.domain.project import (
    PROJECT_TRANSITIONS,
    Actor,
    ActorRole,
    Project,
    ProjectAction,
    ProjectStatus,
    is_known_transition,
)
from mentorship_kernel.exceptions import (
    ForbiddenError,
    IllegalTransitionError,
    RevisionLimitExceededError,
)
from mentorship_kernel.logging_config import get_logger

logger = get_logger("services.project_state_machine")

# Roles whose identity must match the id bound on the project
_OWNED_ROLES = frozenset({ActorRole.CLIENT, ActorRole.MENTOR, ActorRole.STUDENT})

# Actions where an unbound mentor slot is being filled, not checked
_BINDS_MENTOR = frozenset({ProjectAction.CLAIM})


class ProjectStateMachine:
    """Applies project transitions."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def target_for(
        self, project: Project, action: ProjectAction, actor: Actor
    ) -> ProjectStatus:
        """Validate ``action`` for ``actor`` and return the resulting status.

        Raises without side effects; ``apply`` calls this first.
        """
        status = project.status
        if not is_known_transition(status, action):
            raise IllegalTransitionError(status.value, action.value)

        key = (action, status, actor.role)
        if key not in PROJECT_TRANSITIONS:
            raise ForbiddenError(
                str(actor.actor_id), actor.role.value, action.value,
                f"role not permitted from status '{status.value}'",
            )
        self._check_ownership(project, action, actor)

        if action == ProjectAction.REQUEST_REVISION:
            if project.current_revision_count >= project.max_revisions:
                raise RevisionLimitExceededError(
                    str(project.project_id),
                    project.current_revision_count,
                    project.max_revisions,
                )

        target = PROJECT_TRANSITIONS[key]
        if target is None:
            # Reinstate: back to the single-slot pre-dispute status
            if project.pre_dispute_status is None:
                raise IllegalTransitionError(status.value, action.value)
            target = project.pre_dispute_status
        return target

    def apply(
        self,
        project: Project,
        action: ProjectAction,
        actor: Actor,
        **changes: Any,
    ) -> Project:
        """Validate and apply one transition.

        ``changes`` are extra field updates that travel with the transition
        (e.g. ``student_id`` on assign_student); they are applied after the
        status bookkeeping.
        """
        target = self.target_for(project, action, actor)
        now = self._clock.now()

        updates: dict[str, Any] = {"status": target, "updated_at": now}
        if action == ProjectAction.OPEN_DISPUTE:
            updates["pre_dispute_status"] = project.status
        elif action in (ProjectAction.REINSTATE, ProjectAction.REFUND_AND_CANCEL):
            updates["pre_dispute_status"] = None
        elif action == ProjectAction.REQUEST_REVISION:
            updates["current_revision_count"] = project.current_revision_count + 1

        if target == ProjectStatus.COMPLETED and project.completed_at is None:
            updates["completed_at"] = now
        elif target == ProjectStatus.PAID:
            updates["paid_at"] = now
        elif target == ProjectStatus.CANCELLED:
            updates["cancelled_at"] = now

        updates.update(changes)
        updated = replace(project, **updates)

        logger.info(
            "project_transition",
            extra={
                "project_id": str(project.project_id),
                "action": action.value,
                "from_status": project.status.value,
                "to_status": target.value,
                "actor_role": actor.role.value,
            },
        )
        return updated

    @staticmethod
    def _check_ownership(project: Project, action: ProjectAction, actor: Actor) -> None:
        if actor.role not in _OWNED_ROLES:
            return
        bound = project.participant_id(actor.role)
        if bound is None and actor.role == ActorRole.MENTOR and action in _BINDS_MENTOR:
            return
        if bound != actor.actor_id:
            raise ForbiddenError(
                str(actor.actor_id), actor.role.value, action.value,
                f"not the {actor.role.value} on project {project.project_number}",
            )
