"""Bulk approve/reject tests"""
import pytest

from docflow.domain.enums import InstanceStatus, TaskStatus
from docflow.domain.errors import ValidationError

from tests.conftest import OTHER_COMPANY_ID, COMPANY_ID, actor, only_pending

MANAGER_ONLY = '<workflow><step order="1" roleName="Manager" roleLevel="60" action="review"/></workflow>'
CEO_ONLY = '<workflow><step order="1" roleName="CEO" roleLevel="100" action="sign"/></workflow>'


def test_partial_success(start, bulk, service):
    a = only_pending(service, start(xml=MANAGER_ONLY).instance_id)
    b = only_pending(service, start(xml=CEO_ONLY).instance_id)

    result = bulk.bulk_approve([a.task_id, b.task_id], actor("manager"), COMPANY_ID)

    assert result.total_tasks == 2
    assert result.successful_count == 1
    assert result.successful_task_ids == [a.task_id]
    assert result.errors == [f"task {b.task_id}: insufficient permissions: level 60 < required 100"]

    assert service.get_instance(a.instance_id).status == InstanceStatus.COMPLETED
    untouched = only_pending(service, b.instance_id)
    assert untouched.status == TaskStatus.PENDING


def test_bulk_reject(start, bulk, service):
    instances = [start(xml=MANAGER_ONLY) for _ in range(3)]
    task_ids = [only_pending(service, i.instance_id).task_id for i in instances]

    result = bulk.bulk_reject(task_ids, actor("director"), COMPANY_ID, "Budget frozen")

    assert result.successful_count == 3
    assert result.errors == []
    for instance in instances:
        assert service.get_instance(instance.instance_id).status == InstanceStatus.REJECTED
        task = service.list_tasks(instance.instance_id)[0]
        assert task.comment == "Budget frozen"


def test_unknown_task_is_reported(bulk):
    result = bulk.bulk_approve(["TSK-nope"], actor("ceo"), COMPANY_ID)
    assert result.successful_count == 0
    assert result.errors == ["task TSK-nope: task not found"]


def test_other_company_task_is_reported(start, bulk, service):
    task = only_pending(service, start(xml=MANAGER_ONLY).instance_id)

    result = bulk.bulk_approve([task.task_id], actor("outsider"), OTHER_COMPANY_ID)

    assert result.errors == [f"task {task.task_id}: task belongs to another company"]
    assert only_pending(service, task.instance_id).task_id == task.task_id


def test_already_decided_task_is_reported(start, engine, bulk, service):
    task = only_pending(service, start(xml=MANAGER_ONLY).instance_id)
    engine.approve(task.task_id, actor("manager"))

    result = bulk.bulk_approve([task.task_id], actor("manager"), COMPANY_ID)

    assert result.successful_count == 0
    assert result.errors == [f"task {task.task_id}: task is APPROVED, expected PENDING"]


def test_same_task_twice_in_batch(start, bulk, service):
    task = only_pending(service, start(xml=MANAGER_ONLY).instance_id)

    result = bulk.bulk_approve([task.task_id, task.task_id], actor("manager"), COMPANY_ID)

    assert result.successful_task_ids == [task.task_id]
    assert result.errors == [f"task {task.task_id}: task is APPROVED, expected PENDING"]


def test_engine_failure_does_not_stop_batch(start, engine, bulk, service, monkeypatch):
    first = only_pending(service, start(xml=MANAGER_ONLY).instance_id)
    second = only_pending(service, start(xml=MANAGER_ONLY).instance_id)
    original = engine.approve

    def flaky(task_id, *args, **kwargs):
        if task_id == first.task_id:
            raise RuntimeError("connection reset")
        return original(task_id, *args, **kwargs)

    monkeypatch.setattr(engine, "approve", flaky)

    result = bulk.bulk_approve([first.task_id, second.task_id], actor("manager"), COMPANY_ID)

    assert result.successful_task_ids == [second.task_id]
    assert result.errors == [f"task {first.task_id}: unexpected error: connection reset"]


def test_batch_size_limit(bulk):
    with pytest.raises(ValidationError):
        bulk.bulk_approve([f"TSK-{i}" for i in range(101)], actor("ceo"), COMPANY_ID)


def test_empty_batch(bulk):
    result = bulk.bulk_approve([], actor("ceo"), COMPANY_ID)
    assert result.total_tasks == 0
    assert result.successful_count == 0
