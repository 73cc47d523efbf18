"""
WorkflowCoordinator -- the facade every actor action goes through.

Responsibility:
    Resolves one named actor action into its ordered effects on the
    ProjectStateMachine, IterationTracker and EscrowLedger, persists the
    result as one aggregate, and emits notification events afterwards.

Architecture position:
    Services layer, above ``mentorship_kernel``.  Owns the per-project lock
    registry, the version-conflict retry loop and the notification
    dispatcher.  The kernel services it calls are pure over immutable
    snapshots apart from gateway calls.

Invariants enforced:
    WC-1 -- Atomic actions: every effect is computed on an immutable working
            copy of the aggregate and becomes visible only through a single
            repository ``save``.  Any exception before the save (including
            GatewayFailureError) leaves the stored state untouched.
    WC-2 -- Serialized per project: the project's lock is held from load to
            save, including gateway calls made inside the action.
    WC-3 -- Version-conflict retry: ConcurrentModificationError restarts the
            whole action from a fresh load, up to ``retry.max_attempts``
            times with exponential backoff.  Gateway references are
            deterministic, so a re-run never moves money twice.
    WC-4 -- Notifications are emitted only after a successful save and never
            fail the action.

Failure modes:
    Every WorkflowError subclass propagates unchanged to the caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID, uuid4

from mentorship_config.schema import WorkflowConfig
from mentorship_kernel.domain.clock import Clock, SystemClock
from mentorship_kernel.domain.currency import CurrencyRegistry
from mentorship_kernel.domain.escrow import (
    DisputeOutcome,
    EscrowPayment,
    PaymentStatus,
    TransferShare,
    has_reached,
)
from mentorship_kernel.domain.gateway import PaymentGateway
from mentorship_kernel.domain.iteration import Iteration, ReviewDecision
from mentorship_kernel.domain.project import (
    REVIEW_STAGE_ROLES,
    Actor,
    ActorRole,
    Project,
    ProjectAction,
    ProjectPriority,
    ProjectStatus,
    ProjectType,
)
from mentorship_kernel.domain.records import (
    Dispute,
    DisputeStatus,
    ProjectAggregate,
)
from mentorship_kernel.exceptions import (
    ConcurrentModificationError,
    EscrowNotFoundError,
    ForbiddenError,
    IllegalTransitionError,
    InvalidStateError,
    WorkflowError,
)
from mentorship_kernel.logging_config import LogContext, get_logger
from mentorship_kernel.services.audit_trail import AuditTrace, AuditTrail
from mentorship_kernel.services.escrow_ledger import EscrowLedger
from mentorship_kernel.services.gateway_caller import GatewayCaller
from mentorship_kernel.services.iteration_tracker import IterationTracker
from mentorship_kernel.services.project_state_machine import ProjectStateMachine
from mentorship_services.locking import ProjectLockRegistry
from mentorship_services.notifications import (
    NotificationChannel,
    NotificationDispatcher,
    WorkflowEvent,
)
from mentorship_services.persistence import WorkflowRepository

logger = get_logger("services.workflow_coordinator")

# Identity used for automatic follow-up transitions
SYSTEM_ACTOR = Actor(actor_id=UUID(int=0), role=ActorRole.SYSTEM)

_REVIEW_STATUSES = frozenset(REVIEW_STAGE_ROLES)

# Payouts issued but not yet confirmed by the provider
_AWAITING_PAYOUT = frozenset({
    PaymentStatus.ESCROWED,
    PaymentStatus.MENTOR_RELEASED,
    PaymentStatus.STUDENT_RELEASED,
})
_PAYOUT_STAGES = frozenset({ProjectStatus.COMPLETED, ProjectStatus.PAID})


@dataclass(frozen=True)
class WorkflowSnapshot:
    """What a caller sees after an action: the committed aggregate state."""

    project: Project
    iterations: tuple[Iteration, ...]
    escrow: EscrowPayment | None
    disputes: tuple[Dispute, ...]
    version: int

    @classmethod
    def of(cls, aggregate: ProjectAggregate) -> WorkflowSnapshot:
        return cls(
            project=aggregate.project,
            iterations=aggregate.iterations,
            escrow=aggregate.escrow,
            disputes=aggregate.disputes,
            version=aggregate.version,
        )

    @property
    def project_id(self) -> UUID:
        return self.project.project_id

    @property
    def status(self) -> ProjectStatus:
        return self.project.status

    @property
    def latest_iteration(self) -> Iteration | None:
        if not self.iterations:
            return None
        return max(self.iterations, key=lambda it: it.iteration_number)


@dataclass
class _Outcome:
    aggregate: ProjectAggregate
    events: list[WorkflowEvent] = field(default_factory=list)


def _participants(project: Project) -> list[UUID]:
    return [pid for pid in (project.client_id, project.mentor_id, project.student_id) if pid]


class WorkflowCoordinator:
    """
    One public method per actor action.

    Every method takes an explicit ``Actor`` and returns a WorkflowSnapshot
    of the committed state, or raises a typed WorkflowError.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        gateway: PaymentGateway,
        notifications: NotificationChannel | None = None,
        clock: Clock | None = None,
        config: WorkflowConfig | None = None,
        locks: ProjectLockRegistry | None = None,
        recipient_for: Callable[[UUID], str] = str,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._repository = repository
        self._clock = clock or SystemClock()
        self._config = config or WorkflowConfig()
        self._locks = locks or ProjectLockRegistry()
        self._recipient_for = recipient_for
        self._sleep = sleep

        gateway_settings = self._config.gateway
        self._gateway = GatewayCaller(
            gateway,
            timeout_seconds=gateway_settings.timeout_seconds,
            transient_retries=gateway_settings.transient_retries,
        )
        self._machine = ProjectStateMachine(self._clock)
        self._tracker = IterationTracker(self._clock)
        self._ledger = EscrowLedger(self._gateway, self._clock)
        self._audit = AuditTrail(self._clock)
        self._dispatcher = NotificationDispatcher(notifications)

    # ==================================================================
    # Intake and scoping
    # ==================================================================

    def create_project(
        self,
        actor: Actor,
        title: str,
        description: str,
        project_type: ProjectType = ProjectType.CUSTOM_COMMISSION,
        category: str = "",
        priority: ProjectPriority = ProjectPriority.MEDIUM,
        requirements: str | None = None,
        estimated_delivery_days: int = 0,
        client_fee: Decimal = Decimal("0"),
        currency: str | None = None,
        client_id: UUID | None = None,
    ) -> WorkflowSnapshot:
        """Create a project in ``draft``.  Admins create on behalf of ``client_id``."""
        if actor.role == ActorRole.CLIENT:
            client_id = actor.actor_id
        elif actor.role != ActorRole.ADMIN:
            raise ForbiddenError(
                str(actor.actor_id), actor.role.value, "create_project",
                "only clients and admins create projects",
            )
        if client_id is None:
            raise InvalidStateError("Project", "new", "draft", "an admin must name the client")
        if not title or not title.strip():
            raise InvalidStateError("Project", "new", "draft", "title is required")
        if estimated_delivery_days < 0 or client_fee < 0:
            raise InvalidStateError(
                "Project", "new", "draft", "delivery days and fees must not be negative"
            )

        defaults = self._config.project_defaults
        try:
            currency = CurrencyRegistry.validate(currency or defaults.currency)
        except ValueError as exc:
            raise InvalidStateError("Project", "new", "draft", str(exc)) from exc

        now = self._clock.now()
        project = Project(
            project_id=uuid4(),
            project_number=self._repository.next_project_number(
                defaults.project_number_prefix, now
            ),
            client_id=client_id,
            title=title.strip(),
            description=description,
            project_type=project_type,
            category=category,
            priority=priority,
            requirements=requirements,
            estimated_delivery_days=estimated_delivery_days,
            client_fee=CurrencyRegistry.quantize(client_fee, currency),
            currency=currency,
            max_revisions=defaults.max_revisions,
            created_at=now,
            updated_at=now,
        )
        entry = self._audit.entry(
            project.project_id, actor, "create",
            new_value=project.status.value, project_number=project.project_number,
        )
        stored = self._repository.insert(
            ProjectAggregate(project=project, audit_entries=(entry,))
        )

        logger.info(
            "workflow_action_completed",
            extra={
                "project_id": str(project.project_id),
                "action": "create_project",
                "project_number": project.project_number,
            },
        )
        self._dispatcher.dispatch([
            self._event("project_created", project, project_number=project.project_number)
        ])
        return WorkflowSnapshot.of(stored)

    def submit_project(self, actor: Actor, project_id: UUID) -> WorkflowSnapshot:
        def compute(agg: ProjectAggregate) -> _Outcome:
            agg = self._transition(agg, ProjectAction.SUBMIT, actor)
            return _Outcome(agg, [self._event("project_submitted", agg.project)])

        return self._execute("submit_project", actor, project_id, compute)

    def begin_review(self, actor: Actor, project_id: UUID) -> WorkflowSnapshot:
        def compute(agg: ProjectAggregate) -> _Outcome:
            agg = self._transition(agg, ProjectAction.BEGIN_REVIEW, actor)
            return _Outcome(agg, [self._event("project_under_review", agg.project)])

        return self._execute("begin_review", actor, project_id, compute)

    def scope_project(
        self,
        actor: Actor,
        project_id: UUID,
        scope: str,
        client_fee: Decimal,
        mentor_fee: Decimal,
        student_fee: Decimal,
        estimated_delivery_days: int | None = None,
        max_revisions: int | None = None,
        mentor_id: UUID | None = None,
    ) -> WorkflowSnapshot:
        """Record scope and the three independently set fees."""
        if not scope or not scope.strip():
            raise InvalidStateError("Project", str(project_id), "under_review", "scope text is required")
        if min(client_fee, mentor_fee, student_fee) < 0:
            raise InvalidStateError("Project", str(project_id), "under_review", "fees must not be negative")
        if max_revisions is not None and max_revisions < 0:
            raise InvalidStateError("Project", str(project_id), "under_review", "max_revisions must not be negative")

        def compute(agg: ProjectAggregate) -> _Outcome:
            project = agg.project
            changes: dict[str, Any] = {
                "scope": scope.strip(),
                "client_fee": CurrencyRegistry.quantize(client_fee, project.currency),
                "mentor_fee": CurrencyRegistry.quantize(mentor_fee, project.currency),
                "student_fee": CurrencyRegistry.quantize(student_fee, project.currency),
            }
            if estimated_delivery_days is not None:
                changes["estimated_delivery_days"] = estimated_delivery_days
            if max_revisions is not None:
                changes["max_revisions"] = max_revisions
            if mentor_id is not None:
                changes["mentor_id"] = mentor_id
            agg = self._transition(agg, ProjectAction.SCOPE, actor, **changes)
            return _Outcome(agg, [self._event("project_scoped", agg.project)])

        return self._execute("scope_project", actor, project_id, compute)

    def publish_project(self, actor: Actor, project_id: UUID) -> WorkflowSnapshot:
        def compute(agg: ProjectAggregate) -> _Outcome:
            agg = self._transition(agg, ProjectAction.PUBLISH, actor)
            return _Outcome(agg, [self._event("project_published", agg.project)])

        return self._execute("publish_project", actor, project_id, compute)

    # ==================================================================
    # Staffing
    # ==================================================================

    def claim_project(
        self, actor: Actor, project_id: UUID, mentor_deadline: datetime | None = None
    ) -> WorkflowSnapshot:
        def compute(agg: ProjectAggregate) -> _Outcome:
            deadline = mentor_deadline or self._deadline(agg.project)
            agg = self._transition(
                agg, ProjectAction.CLAIM, actor,
                mentor_id=actor.actor_id, mentor_deadline=deadline,
            )
            return _Outcome(agg, [self._event("project_claimed", agg.project)])

        return self._execute("claim_project", actor, project_id, compute)

    def release_claim(self, actor: Actor, project_id: UUID) -> WorkflowSnapshot:
        def compute(agg: ProjectAggregate) -> _Outcome:
            released = agg.project.mentor_id
            agg = self._transition(
                agg, ProjectAction.RELEASE_CLAIM, actor,
                mentor_id=None, mentor_deadline=None,
            )
            return _Outcome(
                agg, [self._event("claim_released", agg.project, extra_recipients=[released])]
            )

        return self._execute("release_claim", actor, project_id, compute)

    def assign_student(
        self,
        actor: Actor,
        project_id: UUID,
        student_id: UUID,
        student_deadline: datetime | None = None,
    ) -> WorkflowSnapshot:
        def compute(agg: ProjectAggregate) -> _Outcome:
            deadline = student_deadline or self._deadline(agg.project)
            agg = self._transition(
                agg, ProjectAction.ASSIGN_STUDENT, actor,
                student_id=student_id, student_deadline=deadline,
            )
            return _Outcome(agg, [self._event("student_assigned", agg.project)])

        return self._execute("assign_student", actor, project_id, compute)

    def start_work(self, actor: Actor, project_id: UUID) -> WorkflowSnapshot:
        def compute(agg: ProjectAggregate) -> _Outcome:
            agg = self._transition(agg, ProjectAction.START_WORK, actor)
            return _Outcome(agg, [self._event("work_started", agg.project)])

        return self._execute("start_work", actor, project_id, compute)

    # ==================================================================
    # Funding
    # ==================================================================

    def fund_project(self, actor: Actor, project_id: UUID) -> WorkflowSnapshot:
        """Charge the client fee into escrow.

        Idempotent: once the escrow is beyond ``pending`` a repeated call
        returns the current state without contacting the gateway.
        """
        def compute(agg: ProjectAggregate) -> _Outcome:
            project = agg.project
            self._require_payer(project, actor, "fund_project")

            existing = agg.escrow
            if existing is not None and existing.status != PaymentStatus.PENDING:
                logger.info(
                    "fund_project_duplicate",
                    extra={"project_id": str(project_id), "escrow_status": existing.status.value},
                )
                return _Outcome(agg)

            if project.status not in self._config.project_defaults.fundable_statuses:
                raise IllegalTransitionError(project.status.value, "fund_project")

            payment = self._ledger.fund(
                project.project_id, project.client_fee, project.currency, existing
            )
            return self._escrow_changed(agg, actor, "fund", existing, payment)

        return self._execute("fund_project", actor, project_id, compute)

    def confirm_funding(self, actor: Actor, project_id: UUID) -> WorkflowSnapshot:
        """Re-poll a pending charge (provider webhook or operator).

        A charge that settles after the project was cancelled is refunded
        to the client in the same action.
        """
        def compute(agg: ProjectAggregate) -> _Outcome:
            self._require_payer(agg.project, actor, "confirm_funding", allow_system=True)
            existing = self._require_escrow(agg)
            payment = self._ledger.confirm_funding(existing)
            if (
                agg.project.status == ProjectStatus.CANCELLED
                and payment.status == PaymentStatus.ESCROWED
            ):
                agg = self._with_escrow(agg, actor, "confirm_funding", existing, payment)
                refunded = self._ledger.refund(
                    payment, payment.amount, self._recipient_for(agg.project.client_id)
                )
                return self._escrow_changed(agg, actor, "refund_escrow", payment, refunded)
            return self._escrow_changed(agg, actor, "confirm_funding", existing, payment)

        return self._execute("confirm_funding", actor, project_id, compute)

    # ==================================================================
    # Iterations and review
    # ==================================================================

    def submit_iteration(
        self, actor: Actor, project_id: UUID, notes: str | None = None
    ) -> WorkflowSnapshot:
        """Submit work; the project moves to the matching review stage."""
        def compute(agg: ProjectAggregate) -> _Outcome:
            # Open-iteration check first: a racing second submit sees InvalidState
            update = self._tracker.submit(
                project_id, agg.iterations, actor.actor_id, actor.role, notes
            )
            agg = replace(agg, iterations=update.iterations)
            agg = self._transition(
                agg, ProjectAction.SUBMIT_ITERATION, actor,
                iteration_number=update.iteration.iteration_number,
            )
            agg = self._open_for_review(agg, update.iteration.iteration_id)
            return _Outcome(agg, [
                self._event(
                    "iteration_submitted", agg.project,
                    iteration_number=update.iteration.iteration_number,
                    reviewer_role=REVIEW_STAGE_ROLES[agg.project.status].value,
                )
            ])

        return self._execute("submit_iteration", actor, project_id, compute)

    def review_iteration(
        self,
        actor: Actor,
        project_id: UUID,
        iteration_id: UUID,
        decision: ReviewDecision,
        review_notes: str | None = None,
    ) -> WorkflowSnapshot:
        """Approve or send back the iteration under review.

        Mentor approval forwards a delivery iteration to the client and
        leaves the escrow untouched.  Client approval completes the project
        and releases the mentor share, then the student share.  A revision
        request returns the project to ``in_progress``.
        """
        action = (
            ProjectAction.APPROVE_ITERATION
            if decision == ReviewDecision.APPROVE
            else ProjectAction.REQUEST_REVISION
        )

        def compute(agg: ProjectAggregate) -> _Outcome:
            # Stage, role and revision cap are checked before the iteration moves
            self._machine.target_for(agg.project, action, actor)
            required_role = REVIEW_STAGE_ROLES.get(agg.project.status)
            update = self._tracker.review(
                agg.iterations, iteration_id, actor.actor_id, actor.role,
                decision, review_notes, required_role,
            )
            agg = replace(agg, iterations=update.iterations)
            number = update.iteration.iteration_number

            if decision == ReviewDecision.REQUEST_REVISION:
                agg = self._transition(
                    agg, ProjectAction.REQUEST_REVISION, actor, iteration_number=number
                )
                revision_count = agg.project.current_revision_count
                if IterationTracker.current_revision_count(agg.iterations) != revision_count:
                    raise InvalidStateError(
                        "Project", str(agg.project_id), agg.project.status.value,
                        f"revision count {revision_count} disagrees with the iteration history",
                    )
                agg = self._transition(agg, ProjectAction.RESUME_WORK, SYSTEM_ACTOR)
                return _Outcome(agg, [
                    self._event(
                        "revision_requested", agg.project,
                        iteration_number=number, revision_count=revision_count,
                    )
                ])

            agg = self._transition(
                agg, ProjectAction.APPROVE_ITERATION, actor, iteration_number=number
            )
            if agg.project.status == ProjectStatus.MENTOR_APPROVED:
                return self._after_mentor_approval(agg, number)
            return self._after_client_approval(agg, number)

        return self._execute("review_iteration", actor, project_id, compute)

    def _after_mentor_approval(self, agg: ProjectAggregate, number: int) -> _Outcome:
        events = [self._event("iteration_approved", agg.project, iteration_number=number)]
        agg = self._transition(agg, ProjectAction.ADVANCE_TO_CLIENT, SYSTEM_ACTOR)
        # The mentor-approved work goes to the client as a delivery iteration
        delivery = self._tracker.submit(
            agg.project_id,
            agg.iterations,
            agg.project.mentor_id,
            ActorRole.MENTOR,
            notes=f"Mentor-approved delivery of iteration {number}",
        )
        agg = replace(agg, iterations=delivery.iterations)
        agg = self._open_for_review(agg, delivery.iteration.iteration_id)
        events.append(
            self._event(
                "client_review_requested", agg.project,
                iteration_number=delivery.iteration.iteration_number,
            )
        )
        return _Outcome(agg, events)

    def _after_client_approval(self, agg: ProjectAggregate, number: int) -> _Outcome:
        events = [self._event("project_completed", agg.project, iteration_number=number)]
        for share in (TransferShare.MENTOR, TransferShare.STUDENT):
            agg, released = self._release(agg, share)
            if released:
                events.append(self._event("escrow_released", agg.project, share=share.value))
        return _Outcome(agg, events)

    # ==================================================================
    # Payout settlement
    # ==================================================================

    def confirm_transfer(
        self, actor: Actor, project_id: UUID, share: TransferShare
    ) -> WorkflowSnapshot:
        """Record the provider's late confirmation of a payout."""
        def compute(agg: ProjectAggregate) -> _Outcome:
            self._require_operator(actor, "confirm_transfer")
            existing = self._require_escrow(agg)
            payment = self._ledger.confirm_transfer(existing, share)
            return self._escrow_changed(
                agg, actor, f"confirm_{share.value}_transfer", existing, payment
            )

        return self._execute("confirm_transfer", actor, project_id, compute)

    def mark_paid(self, actor: Actor, project_id: UUID) -> WorkflowSnapshot:
        """Close a completed project once its escrow has settled."""
        def compute(agg: ProjectAggregate) -> _Outcome:
            self._machine.target_for(agg.project, ProjectAction.MARK_PAID, actor)
            escrow = self._require_escrow(agg)
            if escrow.status != PaymentStatus.COMPLETED:
                raise InvalidStateError(
                    "EscrowPayment", str(escrow.payment_id), escrow.status.value,
                    "both payouts must be confirmed before the project is paid",
                )
            agg = self._transition(agg, ProjectAction.MARK_PAID, actor)
            return _Outcome(agg, [self._event("project_paid", agg.project)])

        return self._execute("mark_paid", actor, project_id, compute)

    # ==================================================================
    # Disputes, cancellation, overrides
    # ==================================================================

    def open_dispute(
        self, actor: Actor, project_id: UUID, reason: str, description: str = ""
    ) -> WorkflowSnapshot:
        """Freeze the project and its escrow until an admin resolves the dispute."""
        if not reason or not reason.strip():
            raise InvalidStateError("Dispute", "new", "open", "a reason is required")

        def compute(agg: ProjectAggregate) -> _Outcome:
            agg = self._transition(agg, ProjectAction.OPEN_DISPUTE, actor, reason=reason.strip())
            now = self._clock.now()
            dispute = Dispute(
                dispute_id=uuid4(),
                project_id=agg.project_id,
                raised_by_id=actor.actor_id,
                raised_by_role=actor.role,
                reason=reason.strip(),
                description=description,
                created_at=now,
            )
            agg = replace(agg, disputes=(*agg.disputes, dispute))

            escrow = agg.escrow
            if escrow is not None and not escrow.is_terminal:
                payment = self._ledger.open_dispute(escrow, dispute.reason)
                agg = self._with_escrow(agg, actor, "dispute_escrow", escrow, payment)

            return _Outcome(agg, [
                self._event("dispute_opened", agg.project, reason=dispute.reason)
            ])

        return self._execute("open_dispute", actor, project_id, compute)

    def resolve_dispute(
        self,
        actor: Actor,
        project_id: UUID,
        outcome: DisputeOutcome,
        resolution_notes: str | None = None,
    ) -> WorkflowSnapshot:
        """Reinstate the pre-dispute state, or refund the client and cancel."""
        def compute(agg: ProjectAggregate) -> _Outcome:
            action = (
                ProjectAction.REINSTATE
                if outcome == DisputeOutcome.REINSTATE
                else ProjectAction.REFUND_AND_CANCEL
            )
            project = agg.project
            changes: dict[str, Any] = {}
            if action == ProjectAction.REFUND_AND_CANCEL:
                changes["cancellation_reason"] = resolution_notes or "dispute refunded"
            agg = self._transition(agg, action, actor, **changes)

            escrow = agg.escrow
            if escrow is not None and escrow.status == PaymentStatus.DISPUTED:
                escrow_outcome = outcome
                if escrow.pre_dispute_status == PaymentStatus.PENDING:
                    # Nothing captured yet; a late settlement is refunded by confirm_funding
                    escrow_outcome = DisputeOutcome.REINSTATE
                payment = self._ledger.resolve_dispute(
                    escrow,
                    escrow_outcome,
                    refund_amount=EscrowLedger.refundable_amount(
                        escrow, project.mentor_fee, project.student_fee
                    ),
                    refund_recipient=self._recipient_for(project.client_id),
                )
                agg = self._with_escrow(
                    agg, actor, f"{escrow_outcome.value}_escrow", escrow, payment
                )

            now = self._clock.now()
            open_dispute = agg.open_dispute
            if open_dispute is not None:
                resolved = replace(
                    open_dispute,
                    status=DisputeStatus.RESOLVED,
                    resolution=outcome,
                    resolution_notes=resolution_notes,
                    resolved_by_id=actor.actor_id,
                    resolved_at=now,
                )
                agg = replace(agg, disputes=tuple(
                    resolved if d.dispute_id == resolved.dispute_id else d
                    for d in agg.disputes
                ))

            return _Outcome(agg, [
                self._event("dispute_resolved", agg.project, outcome=outcome.value)
            ])

        return self._execute("resolve_dispute", actor, project_id, compute)

    def cancel_project(
        self, actor: Actor, project_id: UUID, reason: str | None = None
    ) -> WorkflowSnapshot:
        """Cancel before a student is assigned; escrowed funds go back to the client.

        A charge still pending stays pending and is refunded by
        ``confirm_funding`` if it settles later.
        """
        def compute(agg: ProjectAggregate) -> _Outcome:
            agg = self._transition(
                agg, ProjectAction.CANCEL, actor, cancellation_reason=reason
            )
            escrow = agg.escrow
            if escrow is not None and escrow.status == PaymentStatus.ESCROWED:
                payment = self._ledger.refund(
                    escrow, escrow.amount, self._recipient_for(agg.project.client_id)
                )
                agg = self._with_escrow(agg, actor, "refund_escrow", escrow, payment)
            elif escrow is not None and escrow.status == PaymentStatus.PENDING:
                logger.info(
                    "escrow_refund_deferred",
                    extra={"project_id": str(project_id), "reference": escrow.charge_reference},
                )
            return _Outcome(agg, [self._event("project_cancelled", agg.project, reason=reason)])

        return self._execute("cancel_project", actor, project_id, compute)

    def override_revision_limit(
        self, actor: Actor, project_id: UUID, new_max_revisions: int
    ) -> WorkflowSnapshot:
        """Raise the revision cap; the only way past RevisionLimitExceeded."""
        def compute(agg: ProjectAggregate) -> _Outcome:
            project = agg.project
            if new_max_revisions <= project.max_revisions:
                raise InvalidStateError(
                    "Project", str(project.project_id), project.status.value,
                    f"new limit {new_max_revisions} must exceed current limit "
                    f"{project.max_revisions}",
                )
            agg = self._transition(
                agg, ProjectAction.OVERRIDE_REVISION_LIMIT, actor,
                max_revisions=new_max_revisions,
                previous_max_revisions=project.max_revisions,
            )
            return _Outcome(agg, [
                self._event("revision_limit_raised", agg.project, max_revisions=new_max_revisions)
            ])

        return self._execute("override_revision_limit", actor, project_id, compute)

    # ==================================================================
    # Reads
    # ==================================================================

    def get_snapshot(self, project_id: UUID) -> WorkflowSnapshot:
        return WorkflowSnapshot.of(self._repository.load(project_id))

    def get_audit_trail(self, project_id: UUID) -> AuditTrace:
        return AuditTrail.trace(self._repository.load(project_id))

    def close(self) -> None:
        """Release the gateway worker pool.  The coordinator is unusable afterwards."""
        self._gateway.close()

    def pending_payouts(self) -> list[WorkflowSnapshot]:
        """Completed projects whose payouts still wait on the provider.

        These need ``confirm_transfer`` from an operator; nothing retries
        them automatically.
        """
        return self._report(
            "pending_payouts",
            self._repository.list_by_escrow_status(_AWAITING_PAYOUT, _PAYOUT_STAGES),
        )

    def pending_charges(self) -> list[WorkflowSnapshot]:
        """Projects whose funding charge was never confirmed."""
        return self._report(
            "pending_charges",
            self._repository.list_by_escrow_status([PaymentStatus.PENDING]),
        )

    def _report(self, name: str, project_ids: list[UUID]) -> list[WorkflowSnapshot]:
        snapshots = [WorkflowSnapshot.of(self._repository.load(pid)) for pid in project_ids]
        logger.info(
            "escrow_report",
            extra={"report": name, "count": len(snapshots)},
        )
        return snapshots

    # ==================================================================
    # Internals
    # ==================================================================

    def _execute(
        self,
        action: str,
        actor: Actor,
        project_id: UUID,
        compute: Callable[[ProjectAggregate], _Outcome],
    ) -> WorkflowSnapshot:
        retry = self._config.retry
        with LogContext.bind(
            correlation_id=str(uuid4()),
            project_id=project_id,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            action=action,
        ):
            attempt = 1
            while True:
                try:
                    with self._locks.hold(project_id):
                        current = self._repository.load(project_id)
                        outcome = compute(current)
                        if outcome.aggregate is current:
                            saved = current
                        else:
                            saved = self._repository.save(outcome.aggregate)
                    break
                except ConcurrentModificationError as exc:
                    if attempt >= retry.max_attempts:
                        logger.warning(
                            "workflow_retries_exhausted",
                            extra={"attempts": attempt},
                            exc_info=exc,
                        )
                        raise
                    delay = retry.delay_for(attempt)
                    logger.info(
                        "workflow_retry",
                        extra={"attempt": attempt, "delay_seconds": delay},
                    )
                    self._sleep(delay)
                    attempt += 1
                except WorkflowError as exc:
                    logger.info("workflow_action_rejected", extra={"error_code": exc.code})
                    raise

            logger.info(
                "workflow_action_completed",
                extra={
                    "status": saved.project.status.value,
                    "version": saved.version,
                },
            )
            self._dispatcher.dispatch(outcome.events)
            return WorkflowSnapshot.of(saved)

    def _transition(
        self,
        agg: ProjectAggregate,
        action: ProjectAction,
        actor: Actor,
        **changes: Any,
    ) -> ProjectAggregate:
        """Apply one state-machine transition and append its audit line.

        Keyword arguments naming Project fields are applied to the project;
        anything else is recorded as audit metadata only.
        """
        project_fields = Project.__dataclass_fields__
        field_changes = {k: v for k, v in changes.items() if k in project_fields}
        metadata = {k: v for k, v in changes.items() if k not in project_fields}

        before = agg.project
        after = self._machine.apply(before, action, actor, **field_changes)
        entries = self._audit.record_transition(agg, before, after, actor, action.value, **metadata)
        return replace(agg, project=after, audit_entries=entries)

    def _open_for_review(self, agg: ProjectAggregate, iteration_id: UUID) -> ProjectAggregate:
        if agg.project.status not in _REVIEW_STATUSES:
            return agg
        update = self._tracker.begin_review(agg.iterations, iteration_id)
        return replace(agg, iterations=update.iterations)

    def _release(
        self, agg: ProjectAggregate, share: TransferShare
    ) -> tuple[ProjectAggregate, bool]:
        """Release one payout share if the escrow holds funds for it."""
        escrow = agg.escrow
        target = (
            PaymentStatus.MENTOR_RELEASED
            if share == TransferShare.MENTOR
            else PaymentStatus.STUDENT_RELEASED
        )
        if escrow is None or not has_reached(escrow.status, PaymentStatus.ESCROWED):
            logger.warning(
                "escrow_release_skipped",
                extra={
                    "project_id": str(agg.project_id),
                    "share": share.value,
                    "escrow_status": escrow.status.value if escrow else None,
                },
            )
            return agg, False
        if has_reached(escrow.status, target):
            return agg, False

        project = agg.project
        if share == TransferShare.MENTOR:
            payment = self._ledger.release_to_mentor(
                escrow, project.status, project.mentor_fee,
                self._recipient_for(project.mentor_id),
            )
        else:
            payment = self._ledger.release_to_student(
                escrow, project.status, project.student_fee,
                self._recipient_for(project.student_id),
            )
        agg = self._with_escrow(agg, SYSTEM_ACTOR, f"release_{share.value}_share", escrow, payment)
        return agg, True

    def _escrow_changed(
        self,
        agg: ProjectAggregate,
        actor: Actor,
        action: str,
        before: EscrowPayment | None,
        after: EscrowPayment,
    ) -> _Outcome:
        if after == before:
            return _Outcome(agg)
        agg = self._with_escrow(agg, actor, action, before, after)
        event = {
            PaymentStatus.PENDING: "escrow_pending",
            PaymentStatus.ESCROWED: "escrow_funded",
            PaymentStatus.COMPLETED: "escrow_completed",
            PaymentStatus.REFUNDED: "escrow_refunded",
        }.get(after.status, "escrow_updated")
        return _Outcome(agg, [self._event(event, agg.project, escrow_status=after.status.value)])

    def _with_escrow(
        self,
        agg: ProjectAggregate,
        actor: Actor,
        action: str,
        before: EscrowPayment | None,
        after: EscrowPayment,
    ) -> ProjectAggregate:
        entries = self._audit.record(
            agg.audit_entries,
            agg.project_id,
            actor,
            action,
            old_value=before.status.value if before else None,
            new_value=after.status.value,
            amount=after.amount,
            currency=after.currency,
        )
        return replace(agg, escrow=after, audit_entries=entries)

    @staticmethod
    def _require_escrow(agg: ProjectAggregate) -> EscrowPayment:
        if agg.escrow is None:
            raise EscrowNotFoundError(str(agg.project_id))
        return agg.escrow

    @staticmethod
    def _require_payer(
        project: Project, actor: Actor, action: str, allow_system: bool = False
    ) -> None:
        if actor.role == ActorRole.ADMIN or (allow_system and actor.role == ActorRole.SYSTEM):
            return
        if actor.role == ActorRole.CLIENT and actor.actor_id == project.client_id:
            return
        raise ForbiddenError(
            str(actor.actor_id), actor.role.value, action,
            "only the project's client or an admin handles funding",
        )

    @staticmethod
    def _require_operator(actor: Actor, action: str) -> None:
        if actor.role not in (ActorRole.ADMIN, ActorRole.SYSTEM):
            raise ForbiddenError(
                str(actor.actor_id), actor.role.value, action,
                "payout settlement is an operator action",
            )

    def _deadline(self, project: Project) -> datetime | None:
        if project.estimated_delivery_days <= 0:
            return None
        return self._clock.now() + timedelta(days=project.estimated_delivery_days)

    @staticmethod
    def _event(
        name: str,
        project: Project,
        extra_recipients: list[UUID | None] | None = None,
        **payload: Any,
    ) -> WorkflowEvent:
        recipients = _participants(project)
        for rid in extra_recipients or []:
            if rid is not None and rid not in recipients:
                recipients.append(rid)
        return WorkflowEvent(
            event_name=name,
            project_id=project.project_id,
            payload={
                "project_number": project.project_number,
                "status": project.status.value,
                "recipients": recipients,
                **payload,
            },
        )
