"""
Module: mentorship_kernel.models.project
Responsibility: ORM persistence for projects.

Architecture position: Kernel > Models.  May import from db/ only (domain
    types are imported lazily inside to_dto/from_dto).

Invariants enforced:
    - ``version`` is the optimistic concurrency token.  The repository
      updates a project only with ``WHERE version = :expected`` and bumps it
      by one in the same statement.
    - ``project_number`` is unique.
    - DB check constraint limits status values.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mentorship_kernel.db.base import Base, UUIDString
from mentorship_kernel.db.types import Currency, LongText, MediumText, Money

if TYPE_CHECKING:
    from mentorship_kernel.domain.project import Project

_STATUS_VALUES = (
    "'draft', 'submitted', 'under_review', 'scoped', 'published', 'claimed', "
    "'student_assigned', 'in_progress', 'under_mentor_review', "
    "'revision_requested', 'mentor_approved', 'client_review', "
    "'client_revision_requested', 'completed', 'paid', 'disputed', 'cancelled'"
)


class ProjectModel(Base):
    """Persistent project row; ``id`` is the domain project_id."""

    __tablename__ = "mentorship_projects"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_mentorship_projects_valid_status",
        ),
        CheckConstraint(
            "current_revision_count >= 0",
            name="ck_mentorship_projects_revision_count",
        ),
        Index("ix_mentorship_projects_status", "status"),
        Index("ix_mentorship_projects_mentor", "mentor_id"),
        Index("ix_mentorship_projects_client", "client_id"),
    )

    project_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[MediumText] = mapped_column(nullable=False)
    description: Mapped[LongText] = mapped_column(nullable=False, default="")
    project_type: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_delivery_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    client_fee: Mapped[Money] = mapped_column(nullable=False)
    mentor_fee: Mapped[Money] = mapped_column(nullable=False)
    student_fee: Mapped[Money] = mapped_column(nullable=False)
    currency: Mapped[Currency] = mapped_column(nullable=False)
    max_revisions: Mapped[int] = mapped_column(Integer, nullable=False)
    current_revision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mentor_deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    student_deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    mentor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    student_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    pre_dispute_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Project {self.project_number} status={self.status} v{self.version}>"

    def to_dto(self) -> Project:
        """Convert ORM model to frozen domain DTO."""
        from mentorship_kernel.domain.project import (
            Project as ProjectDTO,
            ProjectPriority,
            ProjectStatus,
            ProjectType,
        )

        return ProjectDTO(
            project_id=self.id,
            project_number=self.project_number,
            client_id=self.client_id,
            title=self.title,
            description=self.description,
            project_type=ProjectType(self.project_type),
            category=self.category,
            priority=ProjectPriority(self.priority),
            requirements=self.requirements,
            scope=self.scope,
            estimated_delivery_days=self.estimated_delivery_days,
            client_fee=self.client_fee,
            mentor_fee=self.mentor_fee,
            student_fee=self.student_fee,
            currency=self.currency,
            max_revisions=self.max_revisions,
            current_revision_count=self.current_revision_count,
            mentor_deadline=self.mentor_deadline,
            student_deadline=self.student_deadline,
            mentor_id=self.mentor_id,
            student_id=self.student_id,
            status=ProjectStatus(self.status),
            pre_dispute_status=(
                ProjectStatus(self.pre_dispute_status) if self.pre_dispute_status else None
            ),
            created_at=self.created_at,
            updated_at=self.updated_at,
            completed_at=self.completed_at,
            paid_at=self.paid_at,
            cancelled_at=self.cancelled_at,
            cancellation_reason=self.cancellation_reason,
        )

    @staticmethod
    def column_values(dto: Project) -> dict:
        """Column -> value mapping for INSERT and versioned UPDATE."""
        return {
            "project_number": dto.project_number,
            "client_id": dto.client_id,
            "title": dto.title,
            "description": dto.description,
            "project_type": dto.project_type.value,
            "category": dto.category,
            "priority": dto.priority.value,
            "requirements": dto.requirements,
            "scope": dto.scope,
            "estimated_delivery_days": dto.estimated_delivery_days,
            "client_fee": dto.client_fee,
            "mentor_fee": dto.mentor_fee,
            "student_fee": dto.student_fee,
            "currency": dto.currency,
            "max_revisions": dto.max_revisions,
            "current_revision_count": dto.current_revision_count,
            "mentor_deadline": dto.mentor_deadline,
            "student_deadline": dto.student_deadline,
            "mentor_id": dto.mentor_id,
            "student_id": dto.student_id,
            "status": dto.status.value,
            "pre_dispute_status": dto.pre_dispute_status.value if dto.pre_dispute_status else None,
            "created_at": dto.created_at,
            "updated_at": dto.updated_at,
            "completed_at": dto.completed_at,
            "paid_at": dto.paid_at,
            "cancelled_at": dto.cancelled_at,
            "cancellation_reason": dto.cancellation_reason,
        }

    @classmethod
    def from_dto(cls, dto: Project, version: int = 0) -> ProjectModel:
        """Create ORM model from domain DTO."""
        return cls(id=dto.project_id, version=version, **cls.column_values(dto))
