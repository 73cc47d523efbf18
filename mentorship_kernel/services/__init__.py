"""Services for the mentorship workflow kernel (write side)."""

from mentorship_kernel.services.audit_trail import AuditTrace, AuditTrail
from mentorship_kernel.services.escrow_ledger import EscrowLedger, escrow_id_for
from mentorship_kernel.services.gateway_caller import GatewayCaller
from mentorship_kernel.services.iteration_tracker import IterationTracker, IterationUpdate
from mentorship_kernel.services.project_state_machine import ProjectStateMachine
from mentorship_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditTrace",
    "AuditTrail",
    "EscrowLedger",
    "GatewayCaller",
    "IterationTracker",
    "IterationUpdate",
    "ProjectStateMachine",
    "SequenceService",
    "escrow_id_for",
]
