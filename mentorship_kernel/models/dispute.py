"""
Module: mentorship_kernel.models.dispute
Responsibility: ORM persistence for disputes and the project audit trail.

Invariants enforced:
    - Audit entries are append-only: the repository only ever inserts rows
      it has not stored before.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mentorship_kernel.db.base import Base, UUIDString
from mentorship_kernel.db.types import LongText, MediumText

if TYPE_CHECKING:
    from mentorship_kernel.domain.records import AuditEntry, Dispute


class DisputeModel(Base):
    """Persistent dispute; ``id`` is the domain dispute_id."""

    __tablename__ = "mentorship_disputes"

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("mentorship_projects.id"), nullable=False, index=True,
    )
    raised_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    raised_by_role: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[MediumText] = mapped_column(nullable=False)
    description: Mapped[LongText] = mapped_column(nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Dispute project={self.project_id} {self.status}>"

    def to_dto(self) -> Dispute:
        from mentorship_kernel.domain.escrow import DisputeOutcome
        from mentorship_kernel.domain.project import ActorRole
        from mentorship_kernel.domain.records import Dispute as DisputeDTO, DisputeStatus

        return DisputeDTO(
            dispute_id=self.id,
            project_id=self.project_id,
            raised_by_id=self.raised_by_id,
            raised_by_role=ActorRole(self.raised_by_role),
            reason=self.reason,
            description=self.description,
            status=DisputeStatus(self.status),
            resolution=DisputeOutcome(self.resolution) if self.resolution else None,
            resolution_notes=self.resolution_notes,
            resolved_by_id=self.resolved_by_id,
            created_at=self.created_at,
            resolved_at=self.resolved_at,
        )

    @classmethod
    def from_dto(cls, dto: Dispute) -> DisputeModel:
        return cls(
            id=dto.dispute_id,
            project_id=dto.project_id,
            raised_by_id=dto.raised_by_id,
            raised_by_role=dto.raised_by_role.value,
            reason=dto.reason,
            description=dto.description,
            status=dto.status.value,
            resolution=dto.resolution.value if dto.resolution else None,
            resolution_notes=dto.resolution_notes,
            resolved_by_id=dto.resolved_by_id,
            created_at=dto.created_at,
            resolved_at=dto.resolved_at,
        )


class AuditEntryModel(Base):
    """Persistent audit line. Append-only."""

    __tablename__ = "mentorship_audit_entries"

    __table_args__ = (
        Index("ix_mentorship_audit_project_created", "project_id", "created_at"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("mentorship_projects.id"), nullable=False,
    )
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[str | None] = mapped_column(String(100), nullable=True)
    new_value: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entry_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Insertion order within a project; timestamps can tie under a fixed clock
    position: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<AuditEntry project={self.project_id} {self.action}>"

    def to_dto(self) -> AuditEntry:
        from mentorship_kernel.domain.project import ActorRole
        from mentorship_kernel.domain.records import AuditEntry as AuditDTO

        return AuditDTO(
            entry_id=self.id,
            project_id=self.project_id,
            actor_id=self.actor_id,
            actor_role=ActorRole(self.actor_role),
            action=self.action,
            old_value=self.old_value,
            new_value=self.new_value,
            metadata=dict(self.entry_metadata or {}),
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: AuditEntry, position: int) -> AuditEntryModel:
        return cls(
            id=dto.entry_id,
            project_id=dto.project_id,
            actor_id=dto.actor_id,
            actor_role=dto.actor_role.value,
            action=dto.action,
            old_value=dto.old_value,
            new_value=dto.new_value,
            entry_metadata=dict(dto.metadata),
            created_at=dto.created_at,
            position=position,
        )
