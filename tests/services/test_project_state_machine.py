"""
ProjectStateMachine tests.

Illegal pairs, role and ownership checks, the revision cap, the
pre-dispute slot and lifecycle timestamps.
"""

from dataclasses import replace
from uuid import uuid4

import pytest

from mentorship_kernel.domain.project import (
    Actor,
    ActorRole,
    Project,
    ProjectAction,
    ProjectStatus,
)
from mentorship_kernel.exceptions import (
    ForbiddenError,
    IllegalTransitionError,
    RevisionLimitExceededError,
)
from mentorship_kernel.services.project_state_machine import ProjectStateMachine


@pytest.fixture
def machine(clock):
    return ProjectStateMachine(clock)


@pytest.fixture
def project(client, mentor, student):
    return Project(
        project_id=uuid4(),
        project_number="MP-20260105-0001",
        client_id=client.actor_id,
        title="Logo refresh",
        description="",
        mentor_id=mentor.actor_id,
        student_id=student.actor_id,
        status=ProjectStatus.IN_PROGRESS,
    )


class TestValidation:
    def test_unknown_pair_is_illegal(self, machine, project, client):
        with pytest.raises(IllegalTransitionError) as exc_info:
            machine.apply(project, ProjectAction.PUBLISH, client)
        assert exc_info.value.current_status == "in_progress"
        assert exc_info.value.action == "publish"

    def test_known_pair_wrong_role_is_forbidden(self, machine, project, client):
        with pytest.raises(ForbiddenError):
            machine.apply(project, ProjectAction.SUBMIT_ITERATION, client)

    def test_other_student_is_forbidden(self, machine, project):
        stranger = Actor(uuid4(), ActorRole.STUDENT)
        with pytest.raises(ForbiddenError):
            machine.apply(project, ProjectAction.SUBMIT_ITERATION, stranger)

    def test_claim_binds_unset_mentor(self, machine, project):
        published = replace(project, status=ProjectStatus.PUBLISHED, mentor_id=None)
        newcomer = Actor(uuid4(), ActorRole.MENTOR)
        claimed = machine.apply(
            published, ProjectAction.CLAIM, newcomer, mentor_id=newcomer.actor_id
        )
        assert claimed.status == ProjectStatus.CLAIMED
        assert claimed.mentor_id == newcomer.actor_id

    def test_claim_by_other_mentor_when_preassigned(self, machine, project):
        published = replace(project, status=ProjectStatus.PUBLISHED)
        with pytest.raises(ForbiddenError):
            machine.apply(published, ProjectAction.CLAIM, Actor(uuid4(), ActorRole.MENTOR))

    def test_admin_needs_no_ownership(self, machine, project, admin):
        submitted = replace(project, status=ProjectStatus.SUBMITTED)
        assert machine.apply(submitted, ProjectAction.BEGIN_REVIEW, admin).status == (
            ProjectStatus.UNDER_REVIEW
        )

    def test_validation_has_no_side_effects(self, machine, project, client):
        with pytest.raises(IllegalTransitionError):
            machine.target_for(project, ProjectAction.MARK_PAID, client)
        assert project.status == ProjectStatus.IN_PROGRESS


class TestRevisionCap:
    def test_request_revision_increments_count(self, machine, project, mentor):
        review = replace(project, status=ProjectStatus.UNDER_MENTOR_REVIEW)
        revised = machine.apply(review, ProjectAction.REQUEST_REVISION, mentor)
        assert revised.status == ProjectStatus.REVISION_REQUESTED
        assert revised.current_revision_count == 1

    def test_at_cap_raises(self, machine, project, client):
        review = replace(
            project, status=ProjectStatus.CLIENT_REVIEW,
            max_revisions=2, current_revision_count=2,
        )
        with pytest.raises(RevisionLimitExceededError) as exc_info:
            machine.apply(review, ProjectAction.REQUEST_REVISION, client)
        assert exc_info.value.current_count == 2
        assert exc_info.value.max_revisions == 2

    def test_zero_cap_blocks_first_revision(self, machine, project, mentor):
        review = replace(project, status=ProjectStatus.UNDER_MENTOR_REVIEW, max_revisions=0)
        with pytest.raises(RevisionLimitExceededError):
            machine.apply(review, ProjectAction.REQUEST_REVISION, mentor)

    def test_override_keeps_status(self, machine, project, admin):
        raised = machine.apply(
            project, ProjectAction.OVERRIDE_REVISION_LIMIT, admin, max_revisions=5
        )
        assert raised.status == ProjectStatus.IN_PROGRESS
        assert raised.max_revisions == 5


class TestDisputeSlot:
    def test_open_dispute_records_pre_dispute_status(self, machine, project, student):
        disputed = machine.apply(project, ProjectAction.OPEN_DISPUTE, student)
        assert disputed.status == ProjectStatus.DISPUTED
        assert disputed.pre_dispute_status == ProjectStatus.IN_PROGRESS

    def test_reinstate_restores_and_clears(self, machine, project, student, admin):
        disputed = machine.apply(project, ProjectAction.OPEN_DISPUTE, student)
        restored = machine.apply(disputed, ProjectAction.REINSTATE, admin)
        assert restored.status == ProjectStatus.IN_PROGRESS
        assert restored.pre_dispute_status is None

    def test_refund_and_cancel(self, machine, project, student, admin, clock):
        disputed = machine.apply(project, ProjectAction.OPEN_DISPUTE, student)
        cancelled = machine.apply(disputed, ProjectAction.REFUND_AND_CANCEL, admin)
        assert cancelled.status == ProjectStatus.CANCELLED
        assert cancelled.pre_dispute_status is None
        assert cancelled.cancelled_at == clock.now()

    def test_reinstate_without_slot_is_illegal(self, machine, project, admin):
        broken = replace(project, status=ProjectStatus.DISPUTED, pre_dispute_status=None)
        with pytest.raises(IllegalTransitionError):
            machine.apply(broken, ProjectAction.REINSTATE, admin)


class TestTimestamps:
    def test_completed_and_paid(self, machine, project, client, admin, clock):
        review = replace(project, status=ProjectStatus.CLIENT_REVIEW)
        completed = machine.apply(review, ProjectAction.APPROVE_ITERATION, client)
        assert completed.completed_at == clock.now()

        clock.advance(60)
        paid = machine.apply(completed, ProjectAction.MARK_PAID, admin)
        assert paid.paid_at == clock.now()
        assert paid.completed_at == completed.completed_at
        assert paid.updated_at == clock.now()

    def test_transition_is_logged(self, machine, project, student, captured_logs):
        machine.apply(project, ProjectAction.OPEN_DISPUTE, student)
        logs = [r for r in captured_logs() if r["event"] == "project_transition"]
        assert logs[-1]["from_status"] == "in_progress"
        assert logs[-1]["to_status"] == "disputed"
