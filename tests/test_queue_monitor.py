from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlmodel import Session, SQLModel, create_engine

from app.domain.models import BottleneckType, ImpactLevel, QueueHealth, TaskType, WarehouseTask, WorkerSkill
from app.domain.state_machine import TaskStatus
from app.infra.stores import SqlTaskStore, SqlWorkerSkillStore
from app.services.queue_monitor_service import SchedulingQueueMonitor

NOW = datetime(2026, 10, 18, 15, 0, tzinfo=UTC)


@pytest.fixture()
def session() -> Generator[Session, None, None]:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def _monitor(session: Session) -> SchedulingQueueMonitor:
    return SchedulingQueueMonitor(SqlTaskStore(session), SqlWorkerSkillStore(session))


def _add_task(
    session: Session,
    task_type: TaskType,
    *,
    status: TaskStatus = TaskStatus.PENDING,
    minutes_ago: int = 0,
    worker_id: int | None = None,
    data: dict[str, Any] | None = None,
) -> WarehouseTask:
    task = WarehouseTask(
        task_type=task_type,
        status=status,
        priority=50,
        assigned_worker=worker_id,
        data=data or {},
        created_at=NOW - timedelta(minutes=minutes_ago),
    )
    session.add(task)
    session.commit()
    return task


def _add_skill(session: Session, worker_id: int, category: str) -> None:
    session.add(WorkerSkill(worker_id=worker_id, worker_name=f"w{worker_id}", skill_category=category))
    session.commit()


@pytest.mark.parametrize(
    ("pending", "expected"),
    [
        (55, QueueHealth.CRITICAL),
        (50, QueueHealth.CRITICAL),
        (25, QueueHealth.WARNING),
        (20, QueueHealth.WARNING),
        (19, QueueHealth.HEALTHY),
        (10, QueueHealth.HEALTHY),
        (0, QueueHealth.HEALTHY),
    ],
)
def test_queue_health_thresholds(session: Session, pending: int, expected: QueueHealth) -> None:
    assert _monitor(session).classify_health(pending) == expected


def test_queue_status_counts_wait_times_and_skill_shortages(session: Session) -> None:
    _add_skill(session, 1, "picking")
    _add_skill(session, 1, "packing")
    _add_skill(session, 2, "receiving")
    for minutes in (10, 20, 30):
        _add_task(session, TaskType.OUTBOUND, minutes_ago=minutes)
    _add_task(session, TaskType.QUALITY, minutes_ago=40)
    _add_task(session, TaskType.INBOUND, status=TaskStatus.ASSIGNED, worker_id=1)
    _add_task(session, TaskType.COUNT, status=TaskStatus.IN_PROGRESS, worker_id=3)
    _add_task(session, TaskType.COUNT, status=TaskStatus.COMPLETED, worker_id=2)

    snapshot = _monitor(session).get_queue_status(now=NOW)

    assert snapshot.pending_count == 4
    assert snapshot.active_count == 2
    assert snapshot.queue_health == QueueHealth.HEALTHY
    assert snapshot.timestamp == NOW
    assert snapshot.worker_utilization.total_workers == 3
    assert snapshot.worker_utilization.active_workers == 2
    assert snapshot.worker_utilization.utilization_rate == pytest.approx(0.667)
    assert snapshot.worker_utilization.average_workload == pytest.approx(0.67)
    assert snapshot.average_wait_time.average_minutes == pytest.approx(25.0)
    assert snapshot.average_wait_time.median_minutes == pytest.approx(25.0)
    assert snapshot.average_wait_time.max_minutes == pytest.approx(40.0)
    assert [(item.type, item.impact) for item in snapshot.bottlenecks] == [
        (BottleneckType.SKILL_SHORTAGE, ImpactLevel.LOW),
        (BottleneckType.SKILL_SHORTAGE, ImpactLevel.LOW),
        (BottleneckType.SKILL_SHORTAGE, ImpactLevel.HIGH),
    ]
    assert "quality" in snapshot.bottlenecks[2].description


def test_zone_congestion_and_equipment_shortage(session: Session) -> None:
    for _ in range(12):
        _add_task(session, TaskType.TRANSFER, data={"zone": "Z1", "required_equipment": "forklift"})

    snapshot = _monitor(session).get_queue_status(now=NOW)

    kinds = {(item.type, item.impact) for item in snapshot.bottlenecks}
    assert kinds == {
        (BottleneckType.ZONE_CONGESTION, ImpactLevel.MEDIUM),
        (BottleneckType.EQUIPMENT_SHORTAGE, ImpactLevel.HIGH),
    }
    assert snapshot.worker_utilization.total_workers == 0


def test_equipment_operators_clear_equipment_shortage(session: Session) -> None:
    _add_skill(session, 4, "equipment")
    _add_task(session, TaskType.TRANSFER, data={"required_equipment": "forklift"})

    snapshot = _monitor(session).get_queue_status(now=NOW)

    assert all(item.type != BottleneckType.EQUIPMENT_SHORTAGE for item in snapshot.bottlenecks)


def test_high_workload_bottleneck(session: Session) -> None:
    _add_skill(session, 1, "counting")
    for _ in range(9):
        _add_task(session, TaskType.COUNT, status=TaskStatus.ASSIGNED, worker_id=1)

    snapshot = _monitor(session).get_queue_status(now=NOW)

    assert snapshot.active_count == 9
    assert [(item.type, item.impact) for item in snapshot.bottlenecks] == [
        (BottleneckType.HIGH_WORKLOAD, ImpactLevel.HIGH),
    ]


def test_empty_queue(session: Session) -> None:
    snapshot = _monitor(session).get_queue_status(now=NOW)
    assert snapshot.pending_count == 0
    assert snapshot.bottlenecks == []
    assert snapshot.average_wait_time.max_minutes == 0.0
    assert snapshot.worker_utilization.utilization_rate == 0.0
