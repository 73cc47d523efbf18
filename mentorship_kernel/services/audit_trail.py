"""
AuditTrail -- append-only record of who did what to a project.

Responsibility:
    Builds AuditEntry records for project transitions, escrow movements
    and dispute lifecycle events, and appends them to the aggregate's
    tuple.  Entries are persisted with the rest of the aggregate, so an
    action that fails leaves no audit line behind.

Architecture position:
    Kernel > Services.  Called by the WorkflowCoordinator.

Invariants enforced:
    AU-1 -- Append-only: entries are only ever added to the tuple.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from mentorship_kernel.domain.clock import Clock, SystemClock
from mentorship_kernel.domain.project import Actor, Project
from mentorship_kernel.domain.records import AuditEntry, ProjectAggregate


@dataclass(frozen=True)
class AuditTrace:
    """Audit entries of one project, oldest first."""

    project_id: UUID
    entries: tuple[AuditEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None

    def actions(self) -> list[str]:
        return [entry.action for entry in self.entries]


class AuditTrail:
    """Builds audit entries with the injected clock."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def entry(
        self,
        project_id: UUID,
        actor: Actor,
        action: str,
        old_value: str | None = None,
        new_value: str | None = None,
        **metadata: Any,
    ) -> AuditEntry:
        return AuditEntry(
            entry_id=uuid4(),
            project_id=project_id,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            action=action,
            old_value=old_value,
            new_value=new_value,
            metadata={k: _plain(v) for k, v in metadata.items()},
            created_at=self._clock.now(),
        )

    def record_transition(
        self,
        aggregate: ProjectAggregate,
        before: Project,
        after: Project,
        actor: Actor,
        action: str,
        **metadata: Any,
    ) -> tuple[AuditEntry, ...]:
        """Append a status-change entry; returns the new entry tuple."""
        entry = self.entry(
            after.project_id,
            actor,
            action,
            old_value=before.status.value,
            new_value=after.status.value,
            **metadata,
        )
        return (*aggregate.audit_entries, entry)

    def record(
        self,
        entries: tuple[AuditEntry, ...],
        project_id: UUID,
        actor: Actor,
        action: str,
        old_value: str | None = None,
        new_value: str | None = None,
        **metadata: Any,
    ) -> tuple[AuditEntry, ...]:
        return (*entries, self.entry(project_id, actor, action, old_value, new_value, **metadata))

    @staticmethod
    def trace(aggregate: ProjectAggregate) -> AuditTrace:
        return AuditTrace(project_id=aggregate.project_id, entries=aggregate.audit_entries)


def _plain(value: Any) -> Any:
    """Metadata is stored as JSON; keep it to JSON-native values."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "value"):
        return value.value
    return str(value)
