"""Notification hooks, audit recorder and JSON logging"""
import json
import logging

import pytest

from docflow.domain.models import audit_metadata
from docflow.domain.enums import AuditActionType, NotificationEventType
from docflow.domain.errors import AuditWriteError
from docflow.engine.audit_recorder import AuditRecorder
from docflow.services.notification_service import NotificationService
from docflow.utils.logger import JsonFormatter, correlation_id_var, set_correlation_id


class TestNotificationService:

    def test_hooks_called_in_order(self):
        calls = []
        service = NotificationService(hooks=[lambda e: calls.append(("first", e.event_type))])
        service.register_hook(lambda e: calls.append(("second", e.event_type)))

        event = service.notify("WFI-1", NotificationEventType.TASK_CREATED, task_id="TSK-1", actor_id="ceo")

        assert calls == [
            ("first", NotificationEventType.TASK_CREATED),
            ("second", NotificationEventType.TASK_CREATED),
        ]
        assert event.task_id == "TSK-1"

    def test_failing_hook_does_not_stop_others(self, caplog):
        received = []

        def broken(event):
            raise ConnectionError("websocket closed")

        service = NotificationService(hooks=[broken, received.append])
        service.notify("WFI-1", NotificationEventType.WORKFLOW_COMPLETED)

        assert len(received) == 1
        assert any("websocket closed" in r.getMessage() for r in caplog.records)

    def test_unregister(self):
        received = []
        service = NotificationService()
        service.register_hook(received.append)
        service.unregister_hook(received.append)
        service.unregister_hook(received.append)

        service.notify("WFI-1", NotificationEventType.TASK_APPROVED)

        assert received == []
        assert service.hooks == []


class TestAuditRecorder:

    def test_entries_carry_origin_and_sequence(self, audit_repo):
        recorder = AuditRecorder(audit_repo)
        set_correlation_id("req-42")

        first = recorder.build("WFI-1", AuditActionType.WORKFLOW_STARTED, "started")
        second = recorder.build(
            "WFI-1", AuditActionType.TASK_CREATED, "created",
            task_id="TSK-1", metadata=audit_metadata(step_order=1, assigned_to=None)
        )
        recorder.append(second)
        recorder.append(first)

        assert first.origin == "req-42"
        assert second.sequence > first.sequence
        assert second.metadata_value("step_order") == 1
        assert [e.action_type for e in recorder.history("WFI-1")] == [
            AuditActionType.WORKFLOW_STARTED,
            AuditActionType.TASK_CREATED,
        ]

    def test_sink_failure_is_wrapped(self, audit_repo, monkeypatch):
        recorder = AuditRecorder(audit_repo)

        def broken(entry):
            raise OSError("disk full")

        monkeypatch.setattr(audit_repo, "append", broken)
        entry = recorder.build("WFI-1", AuditActionType.WORKFLOW_STARTED, "started")

        with pytest.raises(AuditWriteError) as exc:
            recorder.append(entry)
        assert "disk full" in exc.value.message

    def test_history_limit(self, audit_repo):
        recorder = AuditRecorder(audit_repo)
        for n in range(5):
            recorder.append(recorder.build("WFI-1", AuditActionType.STEP_ADVANCED, f"step {n}"))

        assert len(recorder.history("WFI-1", limit=3)) == 3
        assert recorder.history("WFI-other") == []


def test_json_log_line_carries_context():
    token = correlation_id_var.set("corr-42")
    record = logging.getLogger("docflow.test").makeRecord(
        "docflow.test", logging.INFO, __file__, 1, "Task %s approved", ("TSK-1",), None,
        extra={"task_id": "TSK-1", "step_order": 2, "actor_id": "manager"}
    )

    line = json.loads(JsonFormatter().format(record))
    correlation_id_var.reset(token)

    assert line["message"] == "Task TSK-1 approved"
    assert line["level"] == "INFO"
    assert line["correlation_id"] == "corr-42"
    assert (line["task_id"], line["step_order"], line["actor_id"]) == ("TSK-1", 2, "manager")
    assert "args" not in line and "lineno" not in line
    assert line["timestamp"].endswith("Z")
