"""Tests for TaskService validation, ownership checks, auditing and statistics."""

import json

import pytest

from keepalive.logs.models import ExecutionLog
from keepalive.logs.service import LogService
from keepalive.storage.base import TaskFilter
from keepalive.storage.sqlite import SQLiteStorage
from keepalive.tasks.models import make_id
from keepalive.tasks.service import NOT_PERMITTED, TASK_NOT_FOUND, TaskService


def _keepalive_data(**kwargs) -> dict:
    data = {
        "name": "Ping API",
        "type": "keepalive",
        "schedule": "*/5 * * * *",
        "config": {"url": "https://example.com/health", "method": "GET"},
    }
    data.update(kwargs)
    return data


@pytest.fixture
def service(storage: SQLiteStorage, log_service: LogService) -> TaskService:
    return TaskService(storage, log_service)


# -- create_task -------------------------------------------------------------------


async def test_create_task(service: TaskService, log_service: LogService) -> None:
    result = await service.create_task(_keepalive_data(), "user1")

    assert result.success
    task = result.data
    assert task.created_by == "user1"
    assert task.enabled is True

    audit = (await log_service.get_audit_logs(user_id="user1")).data
    assert len(audit) == 1
    assert audit[0].details["action"] == "create_task"
    assert audit[0].details["resource_id"] == task.id


async def test_create_with_interval_rule_object(service: TaskService) -> None:
    schedule = {"type": "interval", "unit": "day", "interval": 1, "startDate": "2025-06-01T09:00:00Z"}
    result = await service.create_task(_keepalive_data(schedule=schedule), "user1")

    assert result.success
    assert json.loads(result.data.schedule) == schedule


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"name": "  "}, "Task name is required"),
        ({"type": "sms"}, "Unknown task type"),
        ({"schedule": "61 * * * *"}, "Invalid schedule"),
        ({"schedule": 5}, "schedule must be"),
        ({"config": {"url": "ftp://example.com"}}, "Invalid keepalive config"),
        ({"type": "notification"}, "Invalid notification config"),
    ],
)
async def test_create_rejects_invalid_input(
    service: TaskService, storage: SQLiteStorage, overrides, message
) -> None:
    result = await service.create_task(_keepalive_data(**overrides), "user1")

    assert result.success is False
    assert message in result.error
    assert (await storage.get_all_tasks()).data == []


# -- Ownership ---------------------------------------------------------------------


async def test_only_owner_may_mutate(service: TaskService) -> None:
    task = (await service.create_task(_keepalive_data(), "user1")).data

    assert (await service.update_task(task.id, {"name": "x"}, "user2")).error == NOT_PERMITTED
    assert (await service.delete_task(task.id, "user2")).error == NOT_PERMITTED
    assert (await service.toggle_task(task.id, "user2")).error == NOT_PERMITTED


async def test_missing_task(service: TaskService) -> None:
    assert (await service.update_task("ghost", {"name": "x"}, "user1")).error == TASK_NOT_FOUND
    assert (await service.delete_task("ghost", "user1")).error == TASK_NOT_FOUND
    assert (await service.toggle_task("ghost", "user1")).error == TASK_NOT_FOUND
    assert (await service.get_task("ghost")).error == TASK_NOT_FOUND


# -- update / toggle / delete ------------------------------------------------------


async def test_update_task(service: TaskService, log_service: LogService) -> None:
    task = (await service.create_task(_keepalive_data(), "user1")).data

    result = await service.update_task(
        task.id, {"name": "Renamed", "schedule": "0 * * * *", "created_by": "user2"}, "user1"
    )

    assert result.success
    assert result.data.name == "Renamed"
    assert result.data.schedule == "0 * * * *"
    assert result.data.created_by == "user1"
    actions = [e.details["action"] for e in (await log_service.get_audit_logs()).data]
    assert actions == ["update_task", "create_task"]


async def test_update_validates_against_current_type(service: TaskService) -> None:
    task = (await service.create_task(_keepalive_data(), "user1")).data
    result = await service.update_task(task.id, {"config": {"message": "hi"}}, "user1")
    assert result.success is False
    assert "Invalid keepalive config" in result.error


async def test_type_and_config_change_together(service: TaskService) -> None:
    task = (await service.create_task(_keepalive_data(), "user1")).data
    result = await service.update_task(
        task.id, {"type": "notification", "config": {"message": "hi"}}, "user1"
    )
    assert result.success
    assert result.data.type == "notification"


async def test_toggle_task(service: TaskService) -> None:
    task = (await service.create_task(_keepalive_data(), "user1")).data

    first = await service.toggle_task(task.id, "user1")
    second = await service.toggle_task(task.id, "user1")

    assert first.data.enabled is False
    assert second.data.enabled is True


async def test_delete_task(service: TaskService, log_service: LogService) -> None:
    task = (await service.create_task(_keepalive_data(), "user1")).data

    result = await service.delete_task(task.id, "user1")

    assert result.success and result.data is True
    assert (await service.get_task(task.id)).error == TASK_NOT_FOUND
    latest = (await log_service.get_audit_logs()).data[0]
    assert latest.details["action"] == "delete_task"


async def test_list_tasks(service: TaskService) -> None:
    await service.create_task(_keepalive_data(), "user1")
    await service.create_task(_keepalive_data(name="Other"), "user2")
    mine = (await service.list_tasks(TaskFilter(created_by="user1"))).data
    assert [t.name for t in mine] == ["Ping API"]


# -- Statistics --------------------------------------------------------------------


async def test_task_statistics(service: TaskService, storage: SQLiteStorage) -> None:
    for i, (status, ms) in enumerate([("success", 100), ("failure", None), ("success", 201)]):
        await storage.create_execution_log(
            ExecutionLog(
                id=make_id(),
                task_id="task1",
                status=status,
                response_time=ms,
                execution_time=f"2025-06-01T09:0{i}:00+00:00",
            )
        )

    stats = (await service.get_task_statistics("task1")).data

    assert stats.total_executions == 3
    assert stats.success_count == 2
    assert stats.failure_count == 1
    assert stats.average_response_time == 150
    assert stats.last_execution == "2025-06-01T09:02:00+00:00"


async def test_statistics_without_logs(service: TaskService) -> None:
    stats = (await service.get_task_statistics("task1")).data
    assert stats.total_executions == 0
    assert stats.average_response_time == 0
    assert stats.last_execution is None


async def test_average_rounds_half_up(service: TaskService, storage: SQLiteStorage) -> None:
    for i, ms in enumerate([2, 3]):
        await storage.create_execution_log(
            ExecutionLog(
                id=make_id(),
                task_id="task1",
                status="success",
                response_time=ms,
                execution_time=f"2025-06-01T09:0{i}:00+00:00",
            )
        )

    stats = (await service.get_task_statistics("task1")).data

    assert stats.average_response_time == 3
