from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from loguru import logger

from app.domain.models import TaskType, UrgencyLevel, WarehouseTask, clamp_priority
from app.domain.task_data import TaskSchedulingData
from app.infra.config import SchedulingConfig
from app.services.priority_service import TaskPriorityCalculator

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class FakeTaskStore:
    def __init__(self, tasks: list[WarehouseTask]) -> None:
        self.tasks = tasks
        self.saved: list[int | None] = []
        self.limits: list[int | None] = []

    def find_pending_tasks(self, limit: int | None = None) -> list[WarehouseTask]:
        self.limits.append(limit)
        return list(self.tasks)

    def save(self, task: WarehouseTask) -> WarehouseTask:
        self.saved.append(task.id)
        return task


def _deadline(delta: timedelta) -> str:
    return (NOW + delta).isoformat()


def test_neutral_task_uses_default_factor_scores() -> None:
    calculator = TaskPriorityCalculator()
    task = WarehouseTask(id=1, task_type=TaskType.INBOUND, priority=50)
    assert calculator.calculate_task_priority(task, now=NOW) == 74


def test_urgent_vip_quality_task_is_clamped_to_max() -> None:
    calculator = TaskPriorityCalculator()
    task = WarehouseTask(
        id=1,
        task_type=TaskType.QUALITY,
        priority=50,
        data={
            "urgent": True,
            "customer_tier": "VIP",
            "business_impact": "high",
            "deadline": _deadline(timedelta(minutes=30)),
        },
    )
    assert calculator.calculate_task_priority(task, now=NOW) == 100


def test_transfer_multiplier_and_mixed_factors() -> None:
    calculator = TaskPriorityCalculator()
    task = WarehouseTask(
        id=1,
        task_type=TaskType.TRANSFER,
        priority=10,
        data={
            "priority_flag": "high",
            "customer_tier": "premium",
            "business_impact": "low",
            "deadline": _deadline(timedelta(hours=3)),
        },
    )
    assert calculator.calculate_task_priority(task, now=NOW) == 13


def test_result_never_drops_below_minimum() -> None:
    calculator = TaskPriorityCalculator()
    task = WarehouseTask(id=1, task_type=TaskType.TRANSFER, priority=1)
    assert calculator.calculate_task_priority(task, now=NOW) == 1


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        (timedelta(minutes=-5), 1.0),
        (timedelta(minutes=45), 0.9),
        (timedelta(minutes=90), 0.7),
        (timedelta(hours=20), 0.5),
        (timedelta(days=3), 0.3),
    ],
)
def test_deadline_score_steps(offset: timedelta, expected: float) -> None:
    calculator = TaskPriorityCalculator()
    scheduling = TaskSchedulingData.from_data({"deadline": _deadline(offset)})
    assert calculator.deadline_score(scheduling, NOW) == expected


def test_unparseable_metadata_falls_back_to_defaults() -> None:
    calculator = TaskPriorityCalculator()
    scheduling = TaskSchedulingData.from_data(
        {"deadline": "next tuesday", "customer_tier": "gold", "business_impact": 3, "urgent": "yes"}
    )
    assert calculator.deadline_score(scheduling, NOW) == 0.5
    assert calculator.customer_tier_score(scheduling) == 0.4
    assert calculator.business_impact_score(scheduling) == 0.5
    assert calculator.urgency_score(scheduling, NOW) == 0.5


def test_factor_overrides_replace_weights_and_resource_score() -> None:
    calculator = TaskPriorityCalculator()
    task = WarehouseTask(id=1, task_type=TaskType.INBOUND, priority=50)
    factors = {
        "urgency": 0,
        "customer_tier": 0,
        "deadline_proximity": 0,
        "business_impact": 0,
        "resource_availability": 1.0,
        "resource_availability_score": 1.0,
    }
    assert calculator.calculate_task_priority(task, factors, now=NOW) == 100
    assert calculator.calculate_task_priority(task, {**factors, "resource_availability_score": 0.2}, now=NOW) == 60


def test_recalculate_priorities_reports_changes_and_distribution() -> None:
    tasks = [
        WarehouseTask(id=1, task_type=TaskType.INBOUND, priority=50),
        WarehouseTask(id=2, task_type=TaskType.COUNT, priority=20, data={"zone": "B"}),
        WarehouseTask(id=3, task_type=TaskType.TRANSFER, priority=1),
    ]
    store = FakeTaskStore(tasks)
    calculator = TaskPriorityCalculator(store, SchedulingConfig(pending_recalculation_limit=25))

    report = calculator.recalculate_priorities(now=NOW)

    assert store.limits == [25]
    assert report.trigger_reason == "manual"
    assert report.total_analyzed == 3
    assert report.updated_count == 2
    assert store.saved == [1, 2]
    assert [(item.task_id, item.old_priority, item.new_priority) for item in report.priority_changes] == [
        (1, 50, 74),
        (2, 20, 27),
    ]
    assert report.affected_assignments.reassignment_needed is True
    assert report.affected_assignments.affected_count == 2
    assert [item.task_id for item in report.affected_assignments.high_impact_changes] == [1]
    assert report.priority_distribution.model_dump() == {"low": 2, "medium": 0, "high": 1}
    assert report.recalculation_timestamp == NOW
    assert tasks[0].priority == 74


def test_recalculate_priorities_limited_to_affected_zones() -> None:
    tasks = [
        WarehouseTask(id=1, task_type=TaskType.INBOUND, priority=50),
        WarehouseTask(id=2, task_type=TaskType.COUNT, priority=20, data={"zone": "B"}),
    ]
    store = FakeTaskStore(tasks)
    calculator = TaskPriorityCalculator(store)

    report = calculator.recalculate_priorities({"trigger_reason": "zone_blocked", "affected_zones": ["B"]}, now=NOW)

    assert report.trigger_reason == "zone_blocked"
    assert report.total_analyzed == 1
    assert [item.task_id for item in report.priority_changes] == [2]
    assert report.affected_assignments.reassignment_needed is True
    assert report.affected_assignments.high_impact_changes == []
    assert tasks[0].priority == 50


def test_recalculate_priorities_logs_start_and_completion() -> None:
    messages: list[str] = []
    sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="INFO")
    try:
        TaskPriorityCalculator(FakeTaskStore([])).recalculate_priorities(now=NOW)
    finally:
        logger.remove(sink_id)
    assert messages == ["priority recalculation started", "priority recalculation completed"]


def test_recalculate_priorities_requires_a_store() -> None:
    with pytest.raises(RuntimeError):
        TaskPriorityCalculator().recalculate_priorities()


def test_recalculation_without_changes_needs_no_reassignment() -> None:
    tasks = [WarehouseTask(id=3, task_type=TaskType.TRANSFER, priority=1)]
    report = TaskPriorityCalculator(FakeTaskStore(tasks)).recalculate_priorities(now=NOW)
    assert report.updated_count == 0
    assert report.affected_assignments.reassignment_needed is False
    assert report.affected_assignments.affected_count == 0


def test_identical_inputs_give_identical_priority() -> None:
    calculator = TaskPriorityCalculator()
    data = {"customer_tier": "premium", "business_impact": "medium", "deadline": _deadline(timedelta(hours=5))}
    factors = {"urgency": 0.4, "resource_availability_score": 0.9}
    first = WarehouseTask(id=1, task_type=TaskType.OUTBOUND, priority=40, data=dict(data))
    second = WarehouseTask(id=1, task_type=TaskType.OUTBOUND, priority=40, data=dict(data))

    results = {calculator.calculate_task_priority(task, factors, now=NOW) for task in (first, second, first)}

    assert len(results) == 1
    assert first.priority == 40


HUGE = 1e308
WEIGHT_NAMES = ("urgency", "customer_tier", "deadline_proximity", "resource_availability", "business_impact")


@pytest.mark.parametrize(
    ("weights", "expected"),
    [
        (dict.fromkeys(WEIGHT_NAMES, HUGE), 100),
        (dict.fromkeys(WEIGHT_NAMES, -HUGE), 1),
        ({**dict.fromkeys(WEIGHT_NAMES, HUGE), "customer_tier": -HUGE}, 100),
        ({"urgency": HUGE, "customer_tier": -HUGE, "deadline_proximity": -HUGE}, 1),
        ({"urgency": -1e300}, 1),
    ],
)
def test_extreme_weights_keep_priority_in_range(weights: dict[str, float], expected: int) -> None:
    tasks = [WarehouseTask(id=1, task_type=TaskType.INBOUND, priority=50)]
    calculator = TaskPriorityCalculator(FakeTaskStore(tasks))

    assert calculator.calculate_task_priority(tasks[0], weights, now=NOW) == expected
    report = calculator.recalculate_priorities({"priority_factors": weights}, now=NOW)

    assert tasks[0].priority == expected
    assert all(1 <= change.new_priority <= 100 for change in report.priority_changes)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(float("inf"), 100), (float("-inf"), 1), (float("nan"), 1), (1e400, 100), (-7.6, 1), (42.4, 42)],
)
def test_clamp_priority_handles_non_finite_values(value: float, expected: int) -> None:
    assert clamp_priority(value) == expected
    assert UrgencyLevel.model_validate({"priority": value}).priority == expected
