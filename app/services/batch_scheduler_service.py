from __future__ import annotations

import time
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from app.domain.models import (
    Assignment,
    Recommendation,
    SchedulingRunReport,
    SchedulingStatistics,
    WarehouseTask,
    WorkerUtilization,
)
from app.infra.config import SchedulingConfig
from app.services.worker_assignment_service import (
    InMemoryWorkerSource,
    WorkerAssignmentService,
    WorkerSource,
)


class BatchTaskScheduler:
    def __init__(
        self,
        assignment_service: WorkerAssignmentService,
        config: SchedulingConfig | None = None,
    ) -> None:
        self._assignment = assignment_service
        self._config = config or assignment_service.config

    def worker_source(self, constraints: Mapping[str, Any]) -> WorkerSource:
        workers = constraints.get("workers")
        if isinstance(workers, list | tuple):
            return InMemoryWorkerSource(workers)
        return self._assignment.skill_store_source()

    def schedule_task_batch(
        self,
        pending_tasks: Iterable[Any] | None,
        constraints: Mapping[str, Any] | None = None,
    ) -> SchedulingRunReport:
        constraints = dict(constraints or {})
        entries = list(pending_tasks or ())
        log = logger.bind(task_count=len(entries))
        log.info("batch scheduling started")

        tasks = [entry for entry in entries if isinstance(entry, WarehouseTask)]
        unassigned: list[Any] = [entry for entry in entries if not isinstance(entry, WarehouseTask)]
        if not entries:
            log.info("batch scheduling completed with empty input")
            return SchedulingRunReport()

        # sorted() is stable so equal priorities keep input order
        ordered = sorted(tasks, key=lambda task: task.priority, reverse=True)
        source = self.worker_source(constraints) if ordered else None

        assignments: list[Assignment] = []
        started = time.perf_counter()
        for task in ordered:
            assignment = self._assignment.assign(task, source, constraints)
            if assignment is None:
                unassigned.append(task)
            else:
                assignments.append(assignment)
        processing_time_ms = (time.perf_counter() - started) * 1000

        statistics = self._statistics(entries, assignments, unassigned, processing_time_ms, source)
        report = SchedulingRunReport(
            assignments=assignments,
            unassigned=unassigned,
            statistics=statistics,
            recommendations=self._recommendations(statistics),
        )
        log.bind(
            assigned_count=statistics.assigned_count,
            unassigned_count=statistics.unassigned_count,
            processing_time_ms=round(processing_time_ms, 3),
        ).info("batch scheduling completed")
        return report

    def _statistics(
        self,
        entries: list[Any],
        assignments: list[Assignment],
        unassigned: list[Any],
        processing_time_ms: float,
        source: WorkerSource | None,
    ) -> SchedulingStatistics:
        total = len(entries)
        assigned = len(assignments)
        average = sum(item.match_score for item in assignments) / assigned if assigned else 0.0

        utilization: dict[int, WorkerUtilization] = {}
        if source is not None:
            for worker_id, count in Counter(item.worker_id for item in assignments).items():
                after = source.workload(worker_id)
                utilization[worker_id] = WorkerUtilization(
                    assigned_tasks=count,
                    workload_before=after - count,
                    workload_after=after,
                )

        return SchedulingStatistics(
            total_tasks=total,
            assigned_count=assigned,
            unassigned_count=len(unassigned),
            assignment_rate=round(assigned / total, 3) if total else 0.0,
            processing_time_ms=round(processing_time_ms, 3),
            average_match_score=round(average, 3),
            worker_utilization=utilization,
        )

    def _recommendations(self, statistics: SchedulingStatistics) -> list[Recommendation]:
        if statistics.unassigned_count == 0 or statistics.total_tasks == 0:
            return []
        ratio = statistics.unassigned_count / statistics.total_tasks
        if ratio > self._config.unassigned_rate_trigger:
            return [
                Recommendation(
                    type="increase_workers",
                    description=f"{statistics.unassigned_count} tasks could not be assigned; add available workers",
                    priority="high",
                ),
                Recommendation(
                    type="adjust_priorities",
                    description="rebalance task priorities so urgent work reaches the available workers first",
                    priority="medium",
                ),
            ]
        return [
            Recommendation(
                type="increase_workers",
                description=f"{statistics.unassigned_count} tasks are waiting for a free worker",
                priority="medium",
            )
        ]
