"""
Workflow persistence.

Responsibility:
    Loads and saves a whole ProjectAggregate (project, iterations, escrow,
    disputes, audit trail) as one unit.  ``save`` is an optimistic
    check-and-increment on the aggregate version: it succeeds only if the
    stored version still equals the version the caller loaded.

Implementations:
    - InMemoryWorkflowRepository: thread-safe dict store (tests, local runs).
    - SqlAlchemyWorkflowRepository: one transaction per save, version check
      via ``UPDATE ... WHERE id = :id AND version = :expected``.

Failure modes:
    - ProjectNotFoundError on load of an unknown id.
    - ConcurrentModificationError when the stored version moved on; nothing
      is written.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from mentorship_kernel.db.engine import session_scope
from mentorship_kernel.domain.escrow import PaymentStatus
from mentorship_kernel.domain.project import ProjectStatus
from mentorship_kernel.domain.records import ProjectAggregate
from mentorship_kernel.exceptions import ConcurrentModificationError, ProjectNotFoundError
from mentorship_kernel.logging_config import get_logger
from mentorship_kernel.models import (
    AuditEntryModel,
    DisputeModel,
    EscrowPaymentModel,
    IterationModel,
    ProjectModel,
)
from mentorship_kernel.services.sequence_service import (
    SequenceService,
    format_project_number,
    project_sequence_name,
)

logger = get_logger("services.persistence")


@runtime_checkable
class WorkflowRepository(Protocol):
    def load(self, project_id: UUID) -> ProjectAggregate:
        """Current aggregate with its version; ProjectNotFoundError if unknown."""
        ...

    def insert(self, aggregate: ProjectAggregate) -> ProjectAggregate:
        """Store a new aggregate; returns it at version 1."""
        ...

    def save(self, aggregate: ProjectAggregate) -> ProjectAggregate:
        """Write if the stored version equals ``aggregate.version``; returns version + 1."""
        ...

    def next_project_number(self, prefix: str, day: datetime) -> str:
        ...

    def list_by_status(self, status: ProjectStatus) -> list[UUID]:
        ...

    def list_by_escrow_status(
        self,
        escrow_statuses: Iterable[PaymentStatus],
        project_statuses: Iterable[ProjectStatus] | None = None,
    ) -> list[UUID]:
        """Projects whose escrow is in one of ``escrow_statuses``, optionally
        narrowed to the given project statuses."""
        ...


class InMemoryWorkflowRepository:
    """Reference implementation; aggregates are immutable so they are stored as-is."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._aggregates: dict[UUID, ProjectAggregate] = {}
        self._sequences: dict[str, int] = defaultdict(int)

    def load(self, project_id: UUID) -> ProjectAggregate:
        with self._lock:
            aggregate = self._aggregates.get(project_id)
        if aggregate is None:
            raise ProjectNotFoundError(str(project_id))
        return aggregate

    def insert(self, aggregate: ProjectAggregate) -> ProjectAggregate:
        stored = replace(aggregate, version=1)
        with self._lock:
            if aggregate.project_id in self._aggregates:
                raise ConcurrentModificationError(str(aggregate.project_id), 0, 1)
            self._aggregates[aggregate.project_id] = stored
        return stored

    def save(self, aggregate: ProjectAggregate) -> ProjectAggregate:
        with self._lock:
            current = self._aggregates.get(aggregate.project_id)
            if current is None:
                raise ProjectNotFoundError(str(aggregate.project_id))
            if current.version != aggregate.version:
                raise ConcurrentModificationError(
                    str(aggregate.project_id), aggregate.version, current.version
                )
            stored = replace(aggregate, version=aggregate.version + 1)
            self._aggregates[aggregate.project_id] = stored
        return stored

    def next_project_number(self, prefix: str, day: datetime) -> str:
        name = project_sequence_name(prefix, day)
        with self._lock:
            self._sequences[name] += 1
            value = self._sequences[name]
        return format_project_number(prefix, day, value)

    def list_by_status(self, status: ProjectStatus) -> list[UUID]:
        with self._lock:
            return [
                pid for pid, agg in self._aggregates.items()
                if agg.project.status == status
            ]

    def list_by_escrow_status(
        self,
        escrow_statuses: Iterable[PaymentStatus],
        project_statuses: Iterable[ProjectStatus] | None = None,
    ) -> list[UUID]:
        wanted = frozenset(escrow_statuses)
        stages = frozenset(project_statuses) if project_statuses is not None else None
        with self._lock:
            return [
                pid for pid, agg in self._aggregates.items()
                if agg.escrow is not None
                and agg.escrow.status in wanted
                and (stages is None or agg.project.status in stages)
            ]


class SqlAlchemyWorkflowRepository:
    """Aggregate repository over the mentorship_* tables."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._factory = session_factory

    def load(self, project_id: UUID) -> ProjectAggregate:
        with session_scope(self._factory) as session:
            return self._load(session, project_id)

    def insert(self, aggregate: ProjectAggregate) -> ProjectAggregate:
        with session_scope(self._factory) as session:
            session.add(ProjectModel.from_dto(aggregate.project, version=1))
            session.flush()
            self._write_children(session, aggregate, stored_audit_ids=set())
        logger.debug("aggregate_inserted", extra={"project_id": str(aggregate.project_id)})
        return replace(aggregate, version=1)

    def save(self, aggregate: ProjectAggregate) -> ProjectAggregate:
        project_id = aggregate.project_id
        expected = aggregate.version
        with session_scope(self._factory) as session:
            result = session.execute(
                update(ProjectModel)
                .where(ProjectModel.id == project_id, ProjectModel.version == expected)
                .values(version=expected + 1, **ProjectModel.column_values(aggregate.project))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                actual = session.execute(
                    select(ProjectModel.version).where(ProjectModel.id == project_id)
                ).scalar_one_or_none()
                if actual is None:
                    raise ProjectNotFoundError(str(project_id))
                raise ConcurrentModificationError(str(project_id), expected, actual)

            stored_audit_ids = set(
                session.execute(
                    select(AuditEntryModel.id).where(AuditEntryModel.project_id == project_id)
                ).scalars()
            )
            for model in (IterationModel, EscrowPaymentModel, DisputeModel):
                session.execute(delete(model).where(model.project_id == project_id))
            self._write_children(session, aggregate, stored_audit_ids)

        logger.debug(
            "aggregate_saved",
            extra={"project_id": str(project_id), "version": expected + 1},
        )
        return replace(aggregate, version=expected + 1)

    def next_project_number(self, prefix: str, day: datetime) -> str:
        with session_scope(self._factory) as session:
            return SequenceService(session).next_project_number(prefix, day)

    def list_by_status(self, status: ProjectStatus) -> list[UUID]:
        with session_scope(self._factory) as session:
            return list(
                session.execute(
                    select(ProjectModel.id)
                    .where(ProjectModel.status == status.value)
                    .order_by(ProjectModel.project_number)
                ).scalars()
            )

    def list_by_escrow_status(
        self,
        escrow_statuses: Iterable[PaymentStatus],
        project_statuses: Iterable[ProjectStatus] | None = None,
    ) -> list[UUID]:
        stmt = (
            select(ProjectModel.id)
            .join(EscrowPaymentModel, EscrowPaymentModel.project_id == ProjectModel.id)
            .where(EscrowPaymentModel.status.in_([s.value for s in escrow_statuses]))
        )
        if project_statuses is not None:
            stmt = stmt.where(ProjectModel.status.in_([s.value for s in project_statuses]))
        with session_scope(self._factory) as session:
            return list(session.execute(stmt.order_by(ProjectModel.project_number)).scalars())

    @staticmethod
    def _load(session: Session, project_id: UUID) -> ProjectAggregate:
        model = session.get(ProjectModel, project_id)
        if model is None:
            raise ProjectNotFoundError(str(project_id))

        iterations = session.execute(
            select(IterationModel)
            .where(IterationModel.project_id == project_id)
            .order_by(IterationModel.iteration_number)
        ).scalars()
        escrow = session.execute(
            select(EscrowPaymentModel).where(EscrowPaymentModel.project_id == project_id)
        ).scalar_one_or_none()
        disputes = session.execute(
            select(DisputeModel)
            .where(DisputeModel.project_id == project_id)
            .order_by(DisputeModel.created_at)
        ).scalars()
        audit = session.execute(
            select(AuditEntryModel)
            .where(AuditEntryModel.project_id == project_id)
            .order_by(AuditEntryModel.position)
        ).scalars()

        return ProjectAggregate(
            project=model.to_dto(),
            iterations=tuple(m.to_dto() for m in iterations),
            escrow=escrow.to_dto() if escrow is not None else None,
            disputes=tuple(m.to_dto() for m in disputes),
            audit_entries=tuple(m.to_dto() for m in audit),
            version=model.version,
        )

    @staticmethod
    def _write_children(
        session: Session, aggregate: ProjectAggregate, stored_audit_ids: set[UUID]
    ) -> None:
        session.add_all(IterationModel.from_dto(it) for it in aggregate.iterations)
        if aggregate.escrow is not None:
            session.add(EscrowPaymentModel.from_dto(aggregate.escrow))
        session.add_all(DisputeModel.from_dto(d) for d in aggregate.disputes)
        # Append-only: earlier lines are never rewritten
        session.add_all(
            AuditEntryModel.from_dto(entry, position)
            for position, entry in enumerate(aggregate.audit_entries)
            if entry.entry_id not in stored_audit_ids
        )
        session.flush()
