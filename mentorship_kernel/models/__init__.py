"""ORM models for the mentorship workflow kernel."""

from mentorship_kernel.models.dispute import AuditEntryModel, DisputeModel
from mentorship_kernel.models.escrow import EscrowPaymentModel
from mentorship_kernel.models.iteration import IterationModel
from mentorship_kernel.models.project import ProjectModel

__all__ = [
    "AuditEntryModel",
    "DisputeModel",
    "EscrowPaymentModel",
    "IterationModel",
    "ProjectModel",
]
