"""
Notification collaborator.

The coordinator announces committed state changes through a
NotificationChannel: ``emit(event_name, project_id, payload)``.  Emission
happens after the save; a failing channel is logged at WARNING and never
rolls back or fails the action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from mentorship_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class WorkflowEvent:
    """A committed change worth telling participants about."""

    event_name: str
    project_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class NotificationChannel(Protocol):
    def emit(self, event_name: str, project_id: UUID, payload: dict[str, Any]) -> None:
        ...


class LoggingNotificationChannel:
    """Writes events to the structured log; the default channel."""

    def emit(self, event_name: str, project_id: UUID, payload: dict[str, Any]) -> None:
        logger.info(
            "notification_emitted",
            extra={
                "event_name": event_name,
                "project_id": str(project_id),
                "recipients": [str(r) for r in payload.get("recipients", [])],
            },
        )


class RecordingNotificationChannel:
    """Keeps every event in memory (tests, local runs)."""

    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []

    def emit(self, event_name: str, project_id: UUID, payload: dict[str, Any]) -> None:
        self.events.append(WorkflowEvent(event_name, project_id, dict(payload)))

    def names(self, project_id: UUID | None = None) -> list[str]:
        return [
            e.event_name for e in self.events
            if project_id is None or e.project_id == project_id
        ]


class NotificationDispatcher:
    """Sends events to a channel, isolating its failures."""

    def __init__(self, channel: NotificationChannel | None = None):
        self._channel = channel or LoggingNotificationChannel()

    def dispatch(self, events: list[WorkflowEvent]) -> int:
        """Emit each event; returns how many were delivered."""
        delivered = 0
        for event in events:
            try:
                self._channel.emit(event.event_name, event.project_id, event.payload)
                delivered += 1
            except Exception:
                # Committed state is authoritative; delivery is best-effort
                logger.warning(
                    "notification_failed",
                    extra={"event_name": event.event_name, "project_id": str(event.project_id)},
                    exc_info=True,
                )
        return delivered
