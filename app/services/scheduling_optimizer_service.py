from __future__ import annotations

import math
from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from statistics import fmean
from typing import Any

from pydantic import BaseModel

from app.domain.models import (
    AnalysisPeriod,
    EfficiencyScore,
    EquipmentUsage,
    ImpactLevel,
    OptimizationReport,
    OptimizationSuggestion,
    PerformanceTrends,
    PeriodSummary,
    ResourceUtilization,
    TaskType,
    TrendDirection,
    WarehouseTask,
    WeeklyComparison,
    WorkerResourceUsage,
    ZoneUsage,
    now_utc,
)
from app.domain.state_machine import TaskStatus
from app.infra.config import SchedulingConfig, coerce_int
from app.infra.stores import TaskStore
from app.services.queue_monitor_service import SchedulingQueueMonitor
from app.services.worker_performance_service import FINISHED_STATUSES, is_quality_issue, task_duration_minutes

DEFAULT_WINDOW_HOURS = 24


class _WindowMetrics(BaseModel):
    total: int
    completed: int
    finished: int
    completion_rate: float
    time_efficiency: float
    average_minutes: float
    error_rate: float

    @property
    def efficiency(self) -> float:
        return round(0.6 * self.completion_rate + 0.4 * self.time_efficiency, 3)


def _trend(current: float, previous: float, *, higher_is_better: bool, tolerance: float) -> TrendDirection:
    delta = current - previous
    if abs(delta) <= tolerance:
        return TrendDirection.STABLE
    improved = delta > 0 if higher_is_better else delta < 0
    return TrendDirection.IMPROVING if improved else TrendDirection.DECLINING


class SchedulingOptimizer:
    def __init__(
        self,
        task_store: TaskStore,
        queue_monitor: SchedulingQueueMonitor,
        config: SchedulingConfig | None = None,
    ) -> None:
        self._task_store = task_store
        self._queue_monitor = queue_monitor
        self._config = config or SchedulingConfig()

    @staticmethod
    def _window_hours(criteria: Mapping[str, Any]) -> int:
        time_range = criteria.get("time_range")
        hours = coerce_int(time_range.get("hours")) if isinstance(time_range, Mapping) else None
        return hours if hours is not None and hours > 0 else DEFAULT_WINDOW_HOURS

    @staticmethod
    def _filter(tasks: Sequence[WarehouseTask], criteria: Mapping[str, Any]) -> list[WarehouseTask]:
        task_types = criteria.get("task_types")
        zones = criteria.get("zones")
        selected = list(tasks)
        if isinstance(task_types, list) and task_types:
            wanted = {str(value) for value in task_types}
            selected = [task for task in selected if TaskType(task.task_type).value in wanted]
        if isinstance(zones, list) and zones:
            wanted_zones = {str(value) for value in zones}
            selected = [task for task in selected if task.zone() in wanted_zones]
        return selected

    def _metrics(self, tasks: Sequence[WarehouseTask]) -> _WindowMetrics:
        finished = [task for task in tasks if task.status in FINISHED_STATUSES]
        completed = [task for task in finished if task.status == TaskStatus.COMPLETED]
        durations = [minutes for minutes in map(task_duration_minutes, completed) if minutes is not None]
        average = fmean(durations) if durations else 0.0
        errors = sum(1 for task in finished if task.status == TaskStatus.FAILED or is_quality_issue(task))
        return _WindowMetrics(
            total=len(tasks),
            completed=len(completed),
            finished=len(finished),
            completion_rate=round(len(completed) / len(tasks), 3) if tasks else 0.0,
            time_efficiency=round(min(1.0, self._config.base_completion_minutes / average), 3) if average else 0.0,
            average_minutes=round(average, 1),
            error_rate=round(errors / len(finished), 3) if finished else 0.0,
        )

    def analyze_optimization(
        self,
        criteria: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> OptimizationReport:
        criteria = dict(criteria or {})
        end = now or now_utc()
        window = timedelta(hours=self._window_hours(criteria))
        start = end - window

        current_tasks = self._filter(self._task_store.find_created_between(start, end), criteria)
        previous_tasks = self._filter(self._task_store.find_created_between(start - window, start), criteria)
        current = self._metrics(current_tasks)
        previous = self._metrics(previous_tasks)
        workers = self._queue_monitor.worker_utilization()
        utilization = workers.utilization_rate

        overall = 0.4 * current.completion_rate + 0.3 * current.time_efficiency + 0.3 * utilization
        return OptimizationReport(
            efficiency_score=EfficiencyScore(
                overall=round(overall, 3),
                completion_rate=current.completion_rate,
                time_efficiency=current.time_efficiency,
                worker_utilization_score=round(utilization, 3),
            ),
            optimization_suggestions=self._suggestions(current, utilization),
            resource_utilization=self._resources(current_tasks, current, workers.total_workers, utilization, window),
            performance_trends=self._trends(current, previous, window),
            analysis_period=AnalysisPeriod(start=start, end=end, criteria=criteria),
        )

    @staticmethod
    def _suggestions(current: _WindowMetrics, utilization: float) -> list[OptimizationSuggestion]:
        suggestions: list[OptimizationSuggestion] = []
        if utilization < 0.6:
            suggestions.append(
                OptimizationSuggestion(
                    type="increase_tasks",
                    description="worker utilization is low; more tasks can be dispatched per worker",
                    priority=ImpactLevel.MEDIUM,
                    estimated_impact="+15% efficiency",
                )
            )
        if utilization > 0.9:
            suggestions.append(
                OptimizationSuggestion(
                    type="add_workers",
                    description="workers are close to saturation; add staff to the shift",
                    priority=ImpactLevel.HIGH,
                    estimated_impact="-20% wait_time",
                )
            )
        if current.finished and current.error_rate > 0.1:
            suggestions.append(
                OptimizationSuggestion(
                    type="review_failures",
                    description=f"{current.error_rate:.0%} of finished tasks failed or raised discrepancies",
                    priority=ImpactLevel.HIGH,
                    estimated_impact="-10% error_rate",
                )
            )
        if current.completed and current.time_efficiency < 0.7:
            suggestions.append(
                OptimizationSuggestion(
                    type="skill_training",
                    description=f"average completion time is {current.average_minutes} minutes",
                    priority=ImpactLevel.LOW,
                    estimated_impact="-10% completion_time",
                )
            )
        return suggestions

    def _resources(
        self,
        tasks: Sequence[WarehouseTask],
        current: _WindowMetrics,
        worker_count: int,
        utilization: float,
        window: timedelta,
    ) -> ResourceUtilization:
        open_load = sum(self._task_store.active_workload_by_worker().values())
        open_load += len(self._task_store.find_pending_tasks())
        recommended = max(worker_count, math.ceil(open_load / max(1, self._config.max_tasks_per_worker)))

        equipment = Counter(
            value
            for value in (task.scheduling().notes.get("required_equipment") for task in tasks)
            if isinstance(value, str) and value
        )
        equipment_rate = round(sum(equipment.values()) / len(tasks), 3) if tasks else 0.0

        hours = window.total_seconds() / 3600
        per_zone = Counter(task.zone() or "unassigned" for task in tasks)
        completed_per_zone = Counter(
            task.zone() or "unassigned" for task in tasks if task.status == TaskStatus.COMPLETED
        )
        zones = [
            ZoneUsage(
                zone=zone,
                utilization=round(count / len(tasks), 3),
                tasks_per_hour=round(completed_per_zone[zone] / hours, 2),
            )
            for zone, count in sorted(per_zone.items())
        ]
        return ResourceUtilization(
            workers=WorkerResourceUsage(
                utilization_rate=round(utilization, 3),
                efficiency_score=current.time_efficiency,
                recommended_count=recommended,
                current_count=worker_count,
            ),
            equipment=EquipmentUsage(
                utilization_rate=equipment_rate,
                bottleneck_equipment=equipment.most_common(1)[0][0] if equipment else None,
            ),
            zones=zones,
        )

    @staticmethod
    def _trends(current: _WindowMetrics, previous: _WindowMetrics, window: timedelta) -> PerformanceTrends:
        if previous.efficiency:
            change = (current.efficiency - previous.efficiency) / previous.efficiency * 100
        else:
            change = 100.0 if current.efficiency else 0.0
        return PerformanceTrends(
            efficiency_trend=_trend(current.efficiency, previous.efficiency, higher_is_better=True, tolerance=0.02),
            completion_time_trend=_trend(
                current.average_minutes, previous.average_minutes, higher_is_better=False, tolerance=1.0
            ),
            error_rate_trend=_trend(current.error_rate, previous.error_rate, higher_is_better=False, tolerance=0.01),
            weekly_comparison=WeeklyComparison(
                this_week=PeriodSummary(efficiency=current.efficiency, completion_time=current.average_minutes),
                last_week=PeriodSummary(efficiency=previous.efficiency, completion_time=previous.average_minutes),
                change_pct=f"{change:+.1f}%",
                window_hours=int(window.total_seconds() // 3600),
            ),
        )
