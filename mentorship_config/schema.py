"""
WorkflowConfig schema.

Frozen dataclasses the YAML configuration set is parsed into.  The
coordinator and the gateway factory consume these; nothing else reads
configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mentorship_kernel.domain.project import ProjectStatus


@dataclass(frozen=True)
class RetryPolicy:
    """Retry of a whole coordinator action after a version conflict."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.01
    max_delay_seconds: float = 0.2

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff for the given 1-based attempt number."""
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


@dataclass(frozen=True)
class GatewaySettings:
    base_url: str = "https://api.paystack.co"
    timeout_seconds: float = 10.0
    transient_retries: int = 1
    callback_url: str | None = None


@dataclass(frozen=True)
class ProjectDefaults:
    max_revisions: int = 3
    currency: str = "KES"
    project_number_prefix: str = "MP"
    # Statuses in which the client may fund escrow
    fundable_statuses: frozenset[ProjectStatus] = frozenset({
        ProjectStatus.SCOPED,
        ProjectStatus.PUBLISHED,
        ProjectStatus.CLAIMED,
        ProjectStatus.STUDENT_ASSIGNED,
    })


@dataclass(frozen=True)
class WorkflowConfig:
    """The runtime configuration artifact."""

    config_id: str = "default"
    version: int = 1
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    project_defaults: ProjectDefaults = field(default_factory=ProjectDefaults)
