"""Tests for the structured logging system (mentorship_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from mentorship_kernel.domain.escrow import PaymentStatus
from mentorship_kernel.domain.project import ActorRole, ProjectStatus
from mentorship_kernel.exceptions import RevisionLimitExceededError
from mentorship_kernel.logging_config import (
    WORKFLOW_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from mentorship_kernel.services.escrow_ledger import EscrowLedger
from mentorship_kernel.services.gateway_caller import GatewayCaller


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def stream():
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(StructuredFormatter())
    configure_logging(handler=handler, level=logging.DEBUG)
    return buffer


def _records(buffer: StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


class TestRecordShape:
    def test_event_name_and_envelope(self, stream):
        get_logger("services.project_state_machine").info("project_transition")

        (record,) = _records(stream)
        assert record["event"] == "project_transition"
        assert record["level"] == "INFO"
        assert record["logger"] == "mentorship_kernel.services.project_state_machine"
        assert "ts" in record
        assert "message" not in record

    def test_extras_are_flat(self, stream):
        get_logger("test").info(
            "escrow_status_changed", extra={"from_status": "escrowed", "to_status": "refunded"}
        )

        (record,) = _records(stream)
        assert record["from_status"] == "escrowed"
        assert record["to_status"] == "refunded"

    def test_money_ids_and_statuses_serialized(self, stream):
        reference = uuid4()
        get_logger("test").info(
            "escrow_snapshot",
            extra={
                "payment_id": reference,
                "amount": Decimal("1000.00"),
                "status": PaymentStatus.ESCROWED,
            },
        )

        (record,) = _records(stream)
        assert record["payment_id"] == str(reference)
        assert record["amount"] == "1000.00"
        assert record["status"] == "escrowed"

    def test_no_workflow_fields_outside_an_action(self, stream):
        get_logger("test").info("WORKFLOW_CONFIG_TRACE")

        (record,) = _records(stream)
        assert not set(WORKFLOW_FIELDS) & set(record)


class TestWorkflowFields:
    def test_bound_fields_on_every_record(self, stream):
        project_id = uuid4()
        with LogContext.bind(
            correlation_id="corr-1",
            project_id=project_id,
            actor_role=ActorRole.MENTOR,
            action="review_iteration",
        ):
            get_logger("test").info("iteration_reviewed")
            get_logger("test").info("escrow_release_skipped")

        records = _records(stream)
        assert len(records) == 2
        for record in records:
            assert record["correlation_id"] == "corr-1"
            assert record["project_id"] == str(project_id)
            assert record["actor_role"] == "mentor"
            assert record["action"] == "review_iteration"

    def test_project_id_from_extra_outside_an_action(self, stream, gateway, clock):
        ledger = EscrowLedger(GatewayCaller(gateway, timeout_seconds=2.0), clock)
        project_id = uuid4()

        ledger.fund(project_id, Decimal("1000.00"), "KES")

        changes = [r for r in _records(stream) if r["event"] == "escrow_status_changed"]
        assert changes
        assert all(r["project_id"] == str(project_id) for r in changes)
        assert all("correlation_id" not in r for r in changes)

    def test_bound_project_wins_over_extra(self, stream):
        bound = uuid4()
        with LogContext.bind(project_id=bound):
            get_logger("test").info("project_transition", extra={"project_id": "other"})

        (record,) = _records(stream)
        assert record["project_id"] == str(bound)

    def test_one_action_shares_a_correlation_id(self, stream, driver, client):
        snapshot = driver.drive_to(ProjectStatus.SCOPED)
        stream.truncate(0)
        stream.seek(0)

        driver.coordinator.publish_project(driver.admin, snapshot.project_id)
        driver.coordinator.fund_project(client, snapshot.project_id)

        records = _records(stream)
        funding = [r for r in records if r.get("action") == "fund_project"]
        publishing = [r for r in records if r.get("action") == "publish_project"]
        assert any(r["event"] == "escrow_status_changed" for r in funding)
        assert {r["project_id"] for r in funding} == {str(snapshot.project_id)}
        assert {r["actor_role"] for r in funding} == {"client"}
        assert len({r["correlation_id"] for r in funding}) == 1
        assert {r["correlation_id"] for r in funding} != {r["correlation_id"] for r in publishing}


class TestErrorRendering:
    def test_workflow_error_outward_fields(self, stream):
        try:
            raise RevisionLimitExceededError("prj-9", 3, 3)
        except RevisionLimitExceededError:
            get_logger("test").warning("workflow_action_rejected", exc_info=True)

        (record,) = _records(stream)
        error = record["error"]
        assert error["type"] == "RevisionLimitExceededError"
        assert error["code"] == "REVISION_LIMIT_EXCEEDED"
        assert error["status"] == 422
        assert error["retriable"] is False
        assert error["details"]["max_revisions"] == 3
        assert "traceback" in record

    def test_plain_exception_has_no_code(self, stream):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("notification_failed", exc_info=True)

        (record,) = _records(stream)
        assert record["error"] == {"type": "ValueError", "message": "boom"}


class TestLogContext:
    def test_values_stored_as_text(self):
        project_id = uuid4()
        LogContext.set(project_id=project_id, actor_role=ActorRole.ADMIN)
        assert LogContext.get_all() == {"project_id": str(project_id), "actor_role": "admin"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="iteration_id"):
            LogContext.set(iteration_id="it-1")
        assert LogContext.get_all() == {}

    def test_none_leaves_field_untouched(self):
        LogContext.set(action="claim_project")
        LogContext.set(action=None, actor_id="m-1")
        assert LogContext.get_all() == {"action": "claim_project", "actor_id": "m-1"}

    def test_bind_restores_previous(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", project_id="p-1"):
            assert LogContext.get_all() == {"correlation_id": "inner", "project_id": "p-1"}
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(action="mark_paid"):
                raise RuntimeError("save failed")
        assert LogContext.get_all() == {}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_idempotent(self, stream):
        other = logging.StreamHandler(StringIO())
        configure_logging(handler=other)
        assert logging.getLogger("mentorship_kernel").handlers[0].stream is stream

    def test_default_level_drops_debug(self):
        buffer = StringIO()
        configure_logging(stream=buffer)
        get_logger("test").debug("lock_wait")
        get_logger("test").info("project_transition")

        assert [r["event"] for r in _records(buffer)] == ["project_transition"]
