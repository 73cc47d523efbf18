"""
Module: mentorship_kernel.models.iteration
Responsibility: ORM persistence for project iterations.

Invariants enforced:
    - UNIQUE(project_id, iteration_number): numbers are never reused.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mentorship_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from mentorship_kernel.domain.iteration import Iteration


class IterationModel(Base):
    """Persistent iteration; ``id`` is the domain iteration_id."""

    __tablename__ = "mentorship_iterations"

    __table_args__ = (
        UniqueConstraint(
            "project_id", "iteration_number",
            name="uq_mentorship_iterations_number",
        ),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("mentorship_projects.id"), nullable=False, index=True,
    )
    iteration_number: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    submitted_by_role: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    review_decision: Mapped[str | None] = mapped_column(String(30), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Iteration #{self.iteration_number} project={self.project_id} {self.status}>"

    def to_dto(self) -> Iteration:
        from mentorship_kernel.domain.iteration import (
            Iteration as IterationDTO,
            IterationStatus,
            ReviewDecision,
        )
        from mentorship_kernel.domain.project import ActorRole

        return IterationDTO(
            iteration_id=self.id,
            project_id=self.project_id,
            iteration_number=self.iteration_number,
            submitted_by_id=self.submitted_by_id,
            submitted_by_role=ActorRole(self.submitted_by_role),
            status=IterationStatus(self.status),
            notes=self.notes,
            submitted_at=self.submitted_at,
            review_decision=ReviewDecision(self.review_decision) if self.review_decision else None,
            review_notes=self.review_notes,
            reviewed_by_id=self.reviewed_by_id,
            reviewed_at=self.reviewed_at,
        )

    @classmethod
    def from_dto(cls, dto: Iteration) -> IterationModel:
        return cls(
            id=dto.iteration_id,
            project_id=dto.project_id,
            iteration_number=dto.iteration_number,
            submitted_by_id=dto.submitted_by_id,
            submitted_by_role=dto.submitted_by_role.value,
            status=dto.status.value,
            notes=dto.notes,
            submitted_at=dto.submitted_at,
            review_decision=dto.review_decision.value if dto.review_decision else None,
            review_notes=dto.review_notes,
            reviewed_by_id=dto.reviewed_by_id,
            reviewed_at=dto.reviewed_at,
        )
