from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from loguru import logger

from app.domain.models import AssignmentType, HandlingStrategy, TaskType, UrgencyLevel, WarehouseTask
from app.domain.state_machine import TaskStatus
from app.services.urgent_task_service import (
    LowestPriorityPreemptionPolicy,
    OldestStartPreemptionPolicy,
    UrgentTaskHandler,
)
from app.services.worker_assignment_service import WorkerAssignmentService

NOW = datetime(2026, 10, 18, 9, 30, tzinfo=UTC)


class FakeTaskStore:
    def __init__(self, active: list[WarehouseTask] | None = None) -> None:
        self.active = active or []
        self.saved: list[WarehouseTask] = []

    def find_active_tasks(self) -> list[WarehouseTask]:
        return list(self.active)

    def save(self, task: WarehouseTask) -> WarehouseTask:
        self.saved.append(task)
        return task


def _worker(worker_id: int, workload: int = 0, availability: str = "available") -> dict[str, Any]:
    return {
        "worker_id": worker_id,
        "name": f"w{worker_id}",
        "current_workload": workload,
        "availability": availability,
        "skills": [{"category": "picking", "level": 8, "score": 80}, {"category": "packing", "level": 8, "score": 80}],
    }


def _active(task_id: int, priority: int, worker_id: int, assigned_minutes_ago: int = 30, **fields: Any) -> WarehouseTask:
    return WarehouseTask(
        id=task_id,
        task_type=TaskType.OUTBOUND,
        status=fields.pop("status", TaskStatus.ASSIGNED),
        priority=priority,
        assigned_worker=worker_id,
        assigned_at=NOW - timedelta(minutes=assigned_minutes_ago),
        **fields,
    )


def _urgent(task_id: int = 100) -> WarehouseTask:
    return WarehouseTask(id=task_id, task_type=TaskType.OUTBOUND, priority=20)


def test_available_worker_gives_immediate_assignment() -> None:
    store = FakeTaskStore()
    handler = UrgentTaskHandler(WorkerAssignmentService(), store)
    task = _urgent()

    result = handler.handle_urgent_task(task, {"priority": 95}, workers=[_worker(1)], now=NOW)

    assert result.handling_strategy == HandlingStrategy.IMMEDIATE_ASSIGNMENT
    assert result.priority_assigned == 95
    assert result.assignment_result is not None
    assert result.assignment_result.worker_id == 1
    assert result.estimated_start_time == NOW + timedelta(minutes=15)
    assert task.priority == 95
    assert task.data["urgent"] is True
    assert task.data["inserted_at"] == NOW.isoformat()
    assert task.data["urgent_handling"]["handling_strategy"] == "immediate_assignment"
    assert store.saved == [task]


def test_short_delay_without_worker_goes_to_priority_queue() -> None:
    handler = UrgentTaskHandler(WorkerAssignmentService())
    level = UrgencyLevel(priority=100, max_delay_minutes=10, preempt_allowed=False)

    result = handler.handle_urgent_task(_urgent(), level, workers=[], now=NOW)

    assert result.handling_strategy == HandlingStrategy.PRIORITY_QUEUE
    assert result.assignment_result is None
    assert result.estimated_start_time == NOW + timedelta(minutes=10)


def test_long_delay_without_worker_goes_to_standard_queue() -> None:
    handler = UrgentTaskHandler(WorkerAssignmentService())
    level = UrgencyLevel(priority=85, max_delay_minutes=45, preempt_allowed=False)

    result = handler.handle_urgent_task(_urgent(), level, workers=[_worker(1, availability="busy")], now=NOW)

    assert result.handling_strategy == HandlingStrategy.STANDARD_QUEUE
    assert result.priority_assigned == 85
    assert result.estimated_start_time == NOW + timedelta(hours=1)


def test_malformed_urgency_uses_defaults() -> None:
    handler = UrgentTaskHandler(WorkerAssignmentService())
    task = _urgent()

    result = handler.handle_urgent_task(
        task,
        {"priority": "max", "max_delay_minutes": "soon", "preempt_allowed": "yes"},
        workers=[],
        now=NOW,
    )

    assert result.priority_assigned == 100
    assert task.data["max_delay_minutes"] == 60
    assert task.data["preempt_allowed"] is False
    assert result.handling_strategy == HandlingStrategy.STANDARD_QUEUE


def test_out_of_range_priority_is_clamped() -> None:
    handler = UrgentTaskHandler(WorkerAssignmentService())
    result = handler.handle_urgent_task(_urgent(), {"priority": 250}, workers=[], now=NOW)
    assert result.priority_assigned == 100


def test_preemption_displaces_lowest_priority_task() -> None:
    low = _active(1, priority=10, worker_id=7)
    mid = _active(2, priority=40, worker_id=8)
    higher = _active(3, priority=99, worker_id=9)
    store = FakeTaskStore([mid, low, higher])
    handler = UrgentTaskHandler(WorkerAssignmentService(), store)
    task = _urgent()

    result = handler.handle_urgent_task(
        task,
        {"priority": 90, "max_delay_minutes": 5, "preempt_allowed": True},
        workers=[_worker(7, workload=10), _worker(8, workload=10)],
        now=NOW,
    )

    assert result.handling_strategy == HandlingStrategy.IMMEDIATE_PREEMPTION
    assert result.estimated_start_time == NOW + timedelta(minutes=5)
    assignment = result.assignment_result
    assert assignment is not None
    assert assignment.assignment_type == AssignmentType.PREEMPTION
    assert assignment.worker_id == 7
    assert assignment.preempted_task_id == 1
    assert low.status == TaskStatus.PENDING
    assert low.assigned_worker is None
    assert low.data["preempted_by"] == 100
    assert mid.status == TaskStatus.ASSIGNED
    assert store.saved == [low, task]


def test_preemption_skips_tasks_of_incompatible_workers() -> None:
    victim = WarehouseTask(
        id=1,
        task_type=TaskType.COUNT,
        status=TaskStatus.IN_PROGRESS,
        priority=5,
        assigned_worker=3,
        assigned_at=NOW,
    )
    store = FakeTaskStore([victim])
    handler = UrgentTaskHandler(WorkerAssignmentService(), store)

    result = handler.handle_urgent_task(
        _urgent(),
        {"priority": 90, "max_delay_minutes": 30, "preempt_allowed": True},
        workers=[],
        now=NOW,
    )

    assert result.handling_strategy == HandlingStrategy.STANDARD_QUEUE
    assert victim.status == TaskStatus.IN_PROGRESS


def test_no_preemption_without_permission() -> None:
    low = _active(1, priority=10, worker_id=7)
    handler = UrgentTaskHandler(WorkerAssignmentService(), FakeTaskStore([low]))

    result = handler.handle_urgent_task(
        _urgent(),
        {"priority": 90, "max_delay_minutes": 30},
        workers=[_worker(7, workload=10)],
        now=NOW,
    )

    assert result.assignment_result is None
    assert low.status == TaskStatus.ASSIGNED


@pytest.mark.parametrize(
    ("policy", "expected"),
    [
        (LowestPriorityPreemptionPolicy(), 2),
        (OldestStartPreemptionPolicy(), 3),
    ],
)
def test_preemption_policies_choose_different_victims(policy: object, expected: int) -> None:
    candidates = [
        _active(1, priority=30, worker_id=1, assigned_minutes_ago=5),
        _active(2, priority=10, worker_id=2, assigned_minutes_ago=10),
        _active(3, priority=20, worker_id=3, assigned_minutes_ago=90),
    ]
    victim = policy.select_victim(_urgent(), candidates)  # type: ignore[attr-defined]
    assert victim is not None
    assert victim.id == expected


def test_lowest_priority_policy_prefers_most_recent_assignment_on_ties() -> None:
    candidates = [
        _active(1, priority=10, worker_id=1, assigned_minutes_ago=60),
        _active(2, priority=10, worker_id=2, assigned_minutes_ago=5),
    ]
    victim = LowestPriorityPreemptionPolicy().select_victim(_urgent(), candidates)
    assert victim is not None
    assert victim.id == 2
    assert LowestPriorityPreemptionPolicy().select_victim(_urgent(), []) is None


def test_urgent_insertion_is_logged_as_warning() -> None:
    records: list[tuple[str, str, dict[str, Any]]] = []
    sink_id = logger.add(
        lambda message: records.append(
            (message.record["level"].name, message.record["message"], message.record["extra"])
        ),
        level="WARNING",
    )
    try:
        UrgentTaskHandler(WorkerAssignmentService()).handle_urgent_task(
            _urgent(7), {"priority": 90, "max_delay_minutes": 10}, workers=[], now=NOW
        )
    finally:
        logger.remove(sink_id)

    assert len(records) == 1
    level, message, extra = records[0]
    assert (level, message) == ("WARNING", "urgent task inserted")
    assert extra["task_id"] == 7
    assert extra["urgency_level"] == {"priority": 90, "max_delay_minutes": 10, "preempt_allowed": False}
