from __future__ import annotations

from collections.abc import Sequence
from statistics import fmean

from app.domain.models import (
    TaskType,
    WarehouseTask,
    WorkerHistoricalPerformance,
    WorkerPerformance,
    as_utc,
)
from app.domain.state_machine import TaskStatus
from app.infra.config import SchedulingConfig
from app.infra.stores import TaskStore

FINISHED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.DISCREPANCY_FOUND})

# Reported for a worker with no finished task history.
BASELINE_PERFORMANCE = WorkerPerformance(
    worker_id=0,
    efficiency_score=0.85,
    quality_score=0.92,
    reliability_score=0.88,
    overall_performance=0.88,
    sample_size=0,
)
BASELINE_COMPLETION_RATE = 0.95
BASELINE_AVERAGE_MINUTES = 45.0
BASELINE_QUALITY = 0.92


def task_duration_minutes(task: WarehouseTask) -> float | None:
    if task.status != TaskStatus.COMPLETED or task.completed_at is None:
        return None
    started = task.started_at or task.assigned_at
    if started is None:
        return None
    minutes = (as_utc(task.completed_at) - as_utc(started)).total_seconds() / 60
    return minutes if minutes > 0 else None


def is_quality_issue(task: WarehouseTask) -> bool:
    if task.status == TaskStatus.DISCREPANCY_FOUND:
        return True
    return task.scheduling().notes.get("quality_failed") is True


class WorkerPerformanceAnalyzer:
    def __init__(self, task_store: TaskStore, config: SchedulingConfig | None = None) -> None:
        self._task_store = task_store
        self._config = config or SchedulingConfig()

    @staticmethod
    def _finished(tasks: Sequence[WarehouseTask]) -> list[WarehouseTask]:
        return [task for task in tasks if task.status in FINISHED_STATUSES]

    def _efficiency(self, durations: Sequence[float]) -> float:
        if not durations:
            return BASELINE_PERFORMANCE.efficiency_score
        return round(min(1.0, self._config.base_completion_minutes / fmean(durations)), 3)

    @staticmethod
    def _quality(finished: Sequence[WarehouseTask]) -> float:
        issues = sum(1 for task in finished if is_quality_issue(task))
        return round(1.0 - issues / len(finished), 3)

    @staticmethod
    def _reliability(finished: Sequence[WarehouseTask]) -> float:
        on_time = 0
        for task in finished:
            if task.status != TaskStatus.COMPLETED:
                continue
            deadline = task.scheduling().deadline
            if deadline is None or task.completed_at is None or as_utc(task.completed_at) <= deadline:
                on_time += 1
        return round(on_time / len(finished), 3)

    def analyze_worker_performance(self, worker_id: int) -> WorkerPerformance:
        finished = self._finished(self._task_store.find_by_worker(worker_id))
        if not finished:
            return BASELINE_PERFORMANCE.model_copy(update={"worker_id": worker_id})

        durations = [minutes for minutes in map(task_duration_minutes, finished) if minutes is not None]
        efficiency = self._efficiency(durations)
        quality = self._quality(finished)
        reliability = self._reliability(finished)
        return WorkerPerformance(
            worker_id=worker_id,
            efficiency_score=efficiency,
            quality_score=quality,
            reliability_score=reliability,
            overall_performance=round((efficiency + quality + reliability) / 3, 3),
            sample_size=len(finished),
        )

    def performance_score(self, worker_id: int) -> float | None:
        performance = self.analyze_worker_performance(worker_id)
        return performance.overall_performance if performance.sample_size else None

    def get_worker_historical_performance(
        self,
        worker_id: int,
        task_type: TaskType | str,
    ) -> WorkerHistoricalPerformance:
        task_type = TaskType(task_type)
        finished = self._finished(self._task_store.find_by_worker(worker_id, task_type))
        if not finished:
            return WorkerHistoricalPerformance(
                worker_id=worker_id,
                task_type=task_type,
                completion_rate=BASELINE_COMPLETION_RATE,
                average_time=BASELINE_AVERAGE_MINUTES,
                quality_score=BASELINE_QUALITY,
                sample_size=0,
            )

        completed = sum(1 for task in finished if task.status == TaskStatus.COMPLETED)
        durations = [minutes for minutes in map(task_duration_minutes, finished) if minutes is not None]
        return WorkerHistoricalPerformance(
            worker_id=worker_id,
            task_type=task_type,
            completion_rate=round(completed / len(finished), 3),
            average_time=max(0.1, round(fmean(durations), 1)) if durations else BASELINE_AVERAGE_MINUTES,
            quality_score=self._quality(finished),
            sample_size=len(finished),
        )
