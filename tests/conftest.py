"""
Pytest configuration and shared fixtures for the mentorship workflow tests.

Everything runs in-process: the in-memory repository by default, SQLite for
the persistence tests, a scripted fake in place of the payment provider.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest

from mentorship_config.schema import RetryPolicy, WorkflowConfig
from mentorship_kernel.domain.clock import DeterministicClock
from mentorship_kernel.domain.gateway import GatewayOutcome, PendingReference
from mentorship_kernel.domain.iteration import ReviewDecision
from mentorship_kernel.domain.project import Actor, ActorRole, ProjectStatus
from mentorship_kernel.exceptions import TransientGatewayError
from mentorship_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
)
from mentorship_services.notifications import RecordingNotificationChannel
from mentorship_services.persistence import InMemoryWorkflowRepository
from mentorship_services.workflow_coordinator import WorkflowCoordinator


# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging once for the whole test session."""
    configure_logging(level=logging.DEBUG)


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Reset LogContext between tests to prevent cross-contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture mentorship_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.submit_project(...)
            logs = captured_logs()
            assert any(r["event"] == "project_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("mentorship_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# ---------------------------------------------------------------------------
# Payment provider fake
# ---------------------------------------------------------------------------


@dataclass
class FakePaymentGateway:
    """Scripted PaymentGateway.

    Charges and transfers are recorded once per idempotency reference, the
    way a real provider deduplicates; ``calls`` keeps every invocation.
    """

    confirm_outcome: GatewayOutcome = GatewayOutcome.SUCCEEDED
    transfer_outcome: GatewayOutcome = GatewayOutcome.SUCCEEDED
    transient_failures: int = 0
    charges: dict[str, Decimal] = field(default_factory=dict)
    transfers: dict[str, tuple[Decimal, str]] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def fail_transiently(self, times: int) -> None:
        self.transient_failures = times

    def _maybe_fail(self, operation: str) -> None:
        with self._lock:
            if self.transient_failures > 0:
                self.transient_failures -= 1
                raise TransientGatewayError(operation, "simulated 503")

    def charge(self, amount: Decimal, currency: str, reference: str) -> PendingReference:
        self.calls.append(("charge", reference))
        self._maybe_fail("charge")
        self.charges.setdefault(reference, amount)
        return PendingReference(reference=reference, authorization_url="https://pay.test/" + reference)

    def confirm_charge(self, reference: str) -> GatewayOutcome:
        self.calls.append(("confirm_charge", reference))
        self._maybe_fail("confirm_charge")
        return self.confirm_outcome

    def transfer(self, amount: Decimal, recipient: str, reference: str) -> GatewayOutcome:
        self.calls.append(("transfer", reference))
        self._maybe_fail("transfer")
        if self.transfer_outcome != GatewayOutcome.FAILED:
            self.transfers.setdefault(reference, (amount, recipient))
        return self.transfer_outcome

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


class FailingNotificationChannel:
    """Channel whose every emit raises."""

    def __init__(self) -> None:
        self.attempts = 0

    def emit(self, event_name, project_id, payload) -> None:
        self.attempts += 1
        raise ConnectionError("notification backend unavailable")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def notifier() -> RecordingNotificationChannel:
    return RecordingNotificationChannel()


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig(retry=RetryPolicy(max_attempts=3, base_delay_seconds=0.001))


@pytest.fixture
def coordinator(repository, gateway, notifier, clock, workflow_config):
    coordinator = WorkflowCoordinator(
        repository=repository,
        gateway=gateway,
        notifications=notifier,
        clock=clock,
        config=workflow_config,
        sleep=lambda seconds: None,
    )
    yield coordinator
    coordinator.close()


@pytest.fixture
def client() -> Actor:
    return Actor(uuid4(), ActorRole.CLIENT)


@pytest.fixture
def admin() -> Actor:
    return Actor(uuid4(), ActorRole.ADMIN)


@pytest.fixture
def mentor() -> Actor:
    return Actor(uuid4(), ActorRole.MENTOR)


@pytest.fixture
def student() -> Actor:
    return Actor(uuid4(), ActorRole.STUDENT)


# ---------------------------------------------------------------------------
# Project builder
# ---------------------------------------------------------------------------

CLIENT_FEE = Decimal("1000.00")
MENTOR_FEE = Decimal("300.00")
STUDENT_FEE = Decimal("500.00")


class ProjectDriver:
    """Walks a new project along the happy path up to a target status."""

    # Happy-path order; each status is reached by the step with the same index
    PATH = (
        ProjectStatus.DRAFT,
        ProjectStatus.SUBMITTED,
        ProjectStatus.UNDER_REVIEW,
        ProjectStatus.SCOPED,
        ProjectStatus.PUBLISHED,
        ProjectStatus.CLAIMED,
        ProjectStatus.STUDENT_ASSIGNED,
        ProjectStatus.IN_PROGRESS,
        ProjectStatus.UNDER_MENTOR_REVIEW,
        ProjectStatus.CLIENT_REVIEW,
        ProjectStatus.COMPLETED,
        ProjectStatus.PAID,
    )

    def __init__(self, coordinator, client, admin, mentor, student):
        self.coordinator = coordinator
        self.client = client
        self.admin = admin
        self.mentor = mentor
        self.student = student

    def create(self, **kwargs):
        kwargs.setdefault("title", "Logo refresh")
        kwargs.setdefault("description", "Refresh the brand mark")
        kwargs.setdefault("estimated_delivery_days", 14)
        kwargs.setdefault("client_fee", CLIENT_FEE)
        return self.coordinator.create_project(self.client, **kwargs)

    def drive_to(self, status: ProjectStatus, funded: bool = True, project_id: UUID | None = None):
        """Return the snapshot of a project driven to ``status``.

        Funding happens right after publishing when ``funded`` is set.
        """
        target = self.PATH.index(status)
        snapshot = (
            self.create() if project_id is None
            else self.coordinator.get_snapshot(project_id)
        )
        pid = snapshot.project_id
        c = self.coordinator

        while self.PATH.index(snapshot.status) < target:
            current = snapshot.status
            if current == ProjectStatus.DRAFT:
                snapshot = c.submit_project(self.client, pid)
            elif current == ProjectStatus.SUBMITTED:
                snapshot = c.begin_review(self.admin, pid)
            elif current == ProjectStatus.UNDER_REVIEW:
                snapshot = c.scope_project(
                    self.admin, pid, scope="Three concepts, two revisions",
                    client_fee=CLIENT_FEE, mentor_fee=MENTOR_FEE, student_fee=STUDENT_FEE,
                    estimated_delivery_days=14,
                )
            elif current == ProjectStatus.SCOPED:
                snapshot = c.publish_project(self.admin, pid)
                if funded:
                    snapshot = c.fund_project(self.client, pid)
            elif current == ProjectStatus.PUBLISHED:
                snapshot = c.claim_project(self.mentor, pid)
            elif current == ProjectStatus.CLAIMED:
                snapshot = c.assign_student(self.mentor, pid, self.student.actor_id)
            elif current == ProjectStatus.STUDENT_ASSIGNED:
                snapshot = c.start_work(self.student, pid)
            elif current == ProjectStatus.IN_PROGRESS:
                snapshot = c.submit_iteration(self.student, pid, notes="First concepts")
            elif current == ProjectStatus.UNDER_MENTOR_REVIEW:
                snapshot = c.review_iteration(
                    self.mentor, pid, snapshot.latest_iteration.iteration_id,
                    ReviewDecision.APPROVE,
                )
            elif current == ProjectStatus.CLIENT_REVIEW:
                snapshot = c.review_iteration(
                    self.client, pid, snapshot.latest_iteration.iteration_id,
                    ReviewDecision.APPROVE,
                )
            elif current == ProjectStatus.COMPLETED:
                snapshot = c.mark_paid(self.admin, pid)
            else:
                raise AssertionError(f"no happy-path step from {current.value}")
        return snapshot


@pytest.fixture
def driver(coordinator, client, admin, mentor, student) -> ProjectDriver:
    return ProjectDriver(coordinator, client, admin, mentor, student)
