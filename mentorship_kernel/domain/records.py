"""
Supporting records kept alongside a project: disputes, audit entries, and
the aggregate that the persistence layer reads and writes as one unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from mentorship_kernel.domain.escrow import DisputeOutcome, EscrowPayment
from mentorship_kernel.domain.iteration import Iteration, OPEN_ITERATION_STATUSES
from mentorship_kernel.domain.project import ActorRole, Project


class DisputeStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Dispute:
    """A dispute raised by a project participant."""

    dispute_id: UUID
    project_id: UUID
    raised_by_id: UUID
    raised_by_role: ActorRole
    reason: str
    description: str = ""
    status: DisputeStatus = DisputeStatus.OPEN
    resolution: DisputeOutcome | None = None
    resolution_notes: str | None = None
    resolved_by_id: UUID | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None


@dataclass(frozen=True)
class AuditEntry:
    """One line of a project's audit trail. Append-only."""

    entry_id: UUID
    project_id: UUID
    actor_id: UUID
    actor_role: ActorRole
    action: str
    old_value: str | None = None
    new_value: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True)
class ProjectAggregate:
    """
    Everything one workflow action may read or modify, persisted atomically.

    ``version`` is the optimistic concurrency token: the repository's save
    checks it against the stored value and increments it.
    """

    project: Project
    iterations: tuple[Iteration, ...] = ()
    escrow: EscrowPayment | None = None
    disputes: tuple[Dispute, ...] = ()
    audit_entries: tuple[AuditEntry, ...] = ()
    version: int = 0

    @property
    def project_id(self) -> UUID:
        return self.project.project_id

    @property
    def open_iteration(self) -> Iteration | None:
        for iteration in self.iterations:
            if iteration.status in OPEN_ITERATION_STATUSES:
                return iteration
        return None

    @property
    def open_dispute(self) -> Dispute | None:
        for dispute in self.disputes:
            if dispute.status == DisputeStatus.OPEN:
                return dispute
        return None
