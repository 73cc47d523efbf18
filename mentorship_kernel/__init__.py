"""
Mentorship Workflow Kernel

The multi-party engine behind commissioned design projects:
- Project state machine with an auditable (action, status, role) table
- Iteration / revision sub-protocol with a revision cap
- Escrow payment state machine with idempotent, retry-safe gateway calls
- Typed errors with stable outward codes
"""

__version__ = "0.1.0"
