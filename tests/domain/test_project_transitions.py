"""
Project transition table tests.

The table keyed by (action, status, role) is the only source of legal
project moves.  These tests pin its shape: who may do what from where,
which statuses are cancellable or disputable, and that terminal statuses
are dead ends.
"""

import pytest

from mentorship_kernel.domain.project import (
    CANCELLABLE_STATUSES,
    DISPUTABLE_STATUSES,
    PROJECT_TRANSITIONS,
    REVIEW_STAGE_ROLES,
    TERMINAL_PROJECT_STATUSES,
    ActorRole,
    ProjectAction,
    ProjectStatus,
    allowed_actions,
    is_known_transition,
    roles_for,
)


class TestTransitionTable:
    """Shape of PROJECT_TRANSITIONS."""

    @pytest.mark.parametrize("status", sorted(TERMINAL_PROJECT_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_outgoing_edges(self, status):
        assert not any(key_status == status for _, key_status, _ in PROJECT_TRANSITIONS)

    def test_every_non_terminal_status_has_an_exit(self):
        for status in ProjectStatus:
            if status in TERMINAL_PROJECT_STATUSES:
                continue
            assert any(
                key_status == status for _, key_status, _ in PROJECT_TRANSITIONS
            ), f"{status.value} is a dead end"

    def test_student_iteration_goes_to_mentor_review(self):
        key = (ProjectAction.SUBMIT_ITERATION, ProjectStatus.IN_PROGRESS, ActorRole.STUDENT)
        assert PROJECT_TRANSITIONS[key] == ProjectStatus.UNDER_MENTOR_REVIEW

    def test_mentor_iteration_goes_to_client_review(self):
        key = (ProjectAction.SUBMIT_ITERATION, ProjectStatus.IN_PROGRESS, ActorRole.MENTOR)
        assert PROJECT_TRANSITIONS[key] == ProjectStatus.CLIENT_REVIEW

    def test_reinstate_target_is_resolved_at_runtime(self):
        key = (ProjectAction.REINSTATE, ProjectStatus.DISPUTED, ActorRole.ADMIN)
        assert PROJECT_TRANSITIONS[key] is None

    def test_override_keeps_status(self):
        for status in (ProjectStatus.IN_PROGRESS, ProjectStatus.CLIENT_REVIEW):
            key = (ProjectAction.OVERRIDE_REVISION_LIMIT, status, ActorRole.ADMIN)
            assert PROJECT_TRANSITIONS[key] == status

    def test_system_only_follow_ups(self):
        assert roles_for(ProjectStatus.MENTOR_APPROVED, ProjectAction.ADVANCE_TO_CLIENT) == {
            ActorRole.SYSTEM
        }
        assert roles_for(ProjectStatus.REVISION_REQUESTED, ProjectAction.RESUME_WORK) == {
            ActorRole.SYSTEM
        }

    def test_review_stage_roles(self):
        assert REVIEW_STAGE_ROLES[ProjectStatus.UNDER_MENTOR_REVIEW] == ActorRole.MENTOR
        assert REVIEW_STAGE_ROLES[ProjectStatus.CLIENT_REVIEW] == ActorRole.CLIENT


class TestCancellationAndDisputeWindows:
    """Cancel before staffing completes; dispute after it."""

    def test_cancellable_is_strictly_before_student_assigned(self):
        assert ProjectStatus.CLAIMED in CANCELLABLE_STATUSES
        assert ProjectStatus.STUDENT_ASSIGNED not in CANCELLABLE_STATUSES
        assert ProjectStatus.IN_PROGRESS not in CANCELLABLE_STATUSES

    def test_disputable_is_strictly_after_claimed(self):
        assert ProjectStatus.CLAIMED not in DISPUTABLE_STATUSES
        assert ProjectStatus.STUDENT_ASSIGNED in DISPUTABLE_STATUSES
        assert ProjectStatus.COMPLETED in DISPUTABLE_STATUSES

    def test_windows_do_not_overlap(self):
        assert not CANCELLABLE_STATUSES & DISPUTABLE_STATUSES

    def test_disputed_cannot_be_disputed_again(self):
        assert not is_known_transition(ProjectStatus.DISPUTED, ProjectAction.OPEN_DISPUTE)

    @pytest.mark.parametrize("role", [ActorRole.CLIENT, ActorRole.MENTOR, ActorRole.STUDENT, ActorRole.ADMIN])
    def test_any_participant_may_dispute(self, role):
        assert ProjectAction.OPEN_DISPUTE in allowed_actions(ProjectStatus.IN_PROGRESS, role)


class TestLookups:
    def test_unknown_pair(self):
        assert not is_known_transition(ProjectStatus.DRAFT, ProjectAction.PUBLISH)

    def test_known_pair_for_other_role(self):
        assert is_known_transition(ProjectStatus.PUBLISHED, ProjectAction.CLAIM)
        assert roles_for(ProjectStatus.PUBLISHED, ProjectAction.CLAIM) == {ActorRole.MENTOR}

    def test_allowed_actions_for_admin_in_disputed(self):
        assert allowed_actions(ProjectStatus.DISPUTED, ActorRole.ADMIN) == {
            ProjectAction.REINSTATE,
            ProjectAction.REFUND_AND_CANCEL,
            ProjectAction.OVERRIDE_REVISION_LIMIT,
        }
