"""
Module: mentorship_kernel.models.escrow
Responsibility: ORM persistence for escrow payments.

Invariants enforced:
    - One escrow payment per project (UNIQUE project_id).
    - Gateway references are unique so a provider webhook maps to exactly
      one payment.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mentorship_kernel.db.base import Base, UUIDString
from mentorship_kernel.db.types import Currency, Money

if TYPE_CHECKING:
    from mentorship_kernel.domain.escrow import EscrowPayment


class EscrowPaymentModel(Base):
    """Persistent escrow payment; ``id`` is the domain payment_id."""

    __tablename__ = "mentorship_escrow_payments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'escrowed', 'mentor_released', "
            "'student_released', 'completed', 'disputed', 'refunded')",
            name="ck_mentorship_escrow_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_mentorship_escrow_positive_amount"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("mentorship_projects.id"), nullable=False, unique=True,
    )
    amount: Mapped[Money] = mapped_column(nullable=False)
    currency: Mapped[Currency] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    pre_dispute_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    charge_reference: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    mentor_transfer_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True,
    )
    student_transfer_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True,
    )
    refund_reference: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    mentor_transfer_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    student_transfer_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escrowed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<EscrowPayment project={self.project_id} {self.status} {self.amount} {self.currency}>"

    def to_dto(self) -> EscrowPayment:
        from mentorship_kernel.domain.escrow import EscrowPayment as EscrowDTO, PaymentStatus

        return EscrowDTO(
            payment_id=self.id,
            project_id=self.project_id,
            amount=self.amount,
            currency=self.currency,
            status=PaymentStatus(self.status),
            pre_dispute_status=(
                PaymentStatus(self.pre_dispute_status) if self.pre_dispute_status else None
            ),
            charge_reference=self.charge_reference,
            mentor_transfer_reference=self.mentor_transfer_reference,
            student_transfer_reference=self.student_transfer_reference,
            refund_reference=self.refund_reference,
            mentor_transfer_confirmed=self.mentor_transfer_confirmed,
            student_transfer_confirmed=self.student_transfer_confirmed,
            dispute_reason=self.dispute_reason,
            created_at=self.created_at,
            escrowed_at=self.escrowed_at,
            completed_at=self.completed_at,
            refunded_at=self.refunded_at,
        )

    @classmethod
    def from_dto(cls, dto: EscrowPayment) -> EscrowPaymentModel:
        return cls(
            id=dto.payment_id,
            project_id=dto.project_id,
            amount=dto.amount,
            currency=dto.currency,
            status=dto.status.value,
            pre_dispute_status=dto.pre_dispute_status.value if dto.pre_dispute_status else None,
            charge_reference=dto.charge_reference,
            mentor_transfer_reference=dto.mentor_transfer_reference,
            student_transfer_reference=dto.student_transfer_reference,
            refund_reference=dto.refund_reference,
            mentor_transfer_confirmed=dto.mentor_transfer_confirmed,
            student_transfer_confirmed=dto.student_transfer_confirmed,
            dispute_reason=dto.dispute_reason,
            created_at=dto.created_at,
            escrowed_at=dto.escrowed_at,
            completed_at=dto.completed_at,
            refunded_at=dto.refunded_at,
        )
