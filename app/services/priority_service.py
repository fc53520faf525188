from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any, ClassVar

from loguru import logger

from app.domain.models import (
    AffectedAssignments,
    PriorityChange,
    PriorityDistribution,
    PriorityRecalculationReport,
    TaskType,
    WarehouseTask,
    clamp_priority,
    now_utc,
)
from app.domain.task_data import BusinessImpact, CustomerTier, TaskSchedulingData
from app.infra.config import TASK_TYPE_PRIORITY_MULTIPLIERS, SchedulingConfig, coerce_float
from app.infra.stores import TaskStore


class TaskPriorityCalculator:
    _TIER_SCORES: ClassVar[dict[CustomerTier, float]] = {
        CustomerTier.VIP: 1.0,
        CustomerTier.PREMIUM: 0.8,
        CustomerTier.PLUS: 0.6,
        CustomerTier.STANDARD: 0.4,
    }
    _IMPACT_SCORES: ClassVar[dict[BusinessImpact, float]] = {
        BusinessImpact.HIGH: 1.0,
        BusinessImpact.MEDIUM: 0.5,
        BusinessImpact.LOW: 0.2,
    }
    _DEADLINE_STEPS: ClassVar[tuple[tuple[timedelta, float], ...]] = (
        (timedelta(hours=1), 0.9),
        (timedelta(hours=2), 0.7),
        (timedelta(hours=24), 0.5),
    )

    def __init__(self, task_store: TaskStore | None = None, config: SchedulingConfig | None = None) -> None:
        self._task_store = task_store
        self._config = config or SchedulingConfig()

    @staticmethod
    def _deadline_remaining(scheduling: TaskSchedulingData, now: datetime) -> timedelta | None:
        if scheduling.deadline is None:
            return None
        return scheduling.deadline - now

    def urgency_score(self, scheduling: TaskSchedulingData, now: datetime) -> float:
        remaining = self._deadline_remaining(scheduling, now)
        if scheduling.urgent or (remaining is not None and remaining <= timedelta(hours=1)):
            return 1.0
        if scheduling.priority_flag == "high":
            return 0.8
        return 0.5

    def customer_tier_score(self, scheduling: TaskSchedulingData) -> float:
        return self._TIER_SCORES[scheduling.customer_tier]

    def deadline_score(self, scheduling: TaskSchedulingData, now: datetime) -> float:
        remaining = self._deadline_remaining(scheduling, now)
        if remaining is None:
            return 0.5
        if remaining <= timedelta(0):
            return 1.0
        for limit, score in self._DEADLINE_STEPS:
            if remaining <= limit:
                return score
        return 0.3

    def business_impact_score(self, scheduling: TaskSchedulingData) -> float:
        if scheduling.business_impact is None:
            return 0.5
        return self._IMPACT_SCORES[scheduling.business_impact]

    def calculate_task_priority(
        self,
        task: WarehouseTask,
        factors: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> int:
        now = now or now_utc()
        weights = self._config.priority_weights.with_overrides(factors)
        scheduling = task.scheduling()
        resource_score = coerce_float((factors or {}).get("resource_availability_score"))
        if resource_score is None:
            resource_score = 0.5

        weighted = (
            self.urgency_score(scheduling, now) * weights.urgency
            + self.customer_tier_score(scheduling) * weights.customer_tier
            + self.deadline_score(scheduling, now) * weights.deadline_proximity
            + resource_score * weights.resource_availability
            + self.business_impact_score(scheduling) * weights.business_impact
        )
        multiplier = TASK_TYPE_PRIORITY_MULTIPLIERS.get(TaskType(task.task_type).value, 1.0)
        return clamp_priority(task.priority * multiplier * (1 + weighted))

    def _tasks_for_recalculation(self, affected_zones: Sequence[str]) -> list[WarehouseTask]:
        if self._task_store is None:
            raise RuntimeError("task store is required for priority recalculation")
        tasks = self._task_store.find_pending_tasks(self._config.pending_recalculation_limit)
        if not affected_zones:
            return tasks
        zones = set(affected_zones)
        return [task for task in tasks if task.zone() in zones]

    def _distribution(self, tasks: Sequence[WarehouseTask]) -> PriorityDistribution:
        distribution = PriorityDistribution()
        for task in tasks:
            if task.priority <= self._config.priority_low_max:
                distribution.low += 1
            elif task.priority < self._config.priority_high_min:
                distribution.medium += 1
            else:
                distribution.high += 1
        return distribution

    def recalculate_priorities(
        self,
        context: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> PriorityRecalculationReport:
        context = dict(context or {})
        trigger_reason = context.get("trigger_reason")
        if not isinstance(trigger_reason, str) or not trigger_reason:
            trigger_reason = "manual"
        factors = context.get("priority_factors")
        factors = factors if isinstance(factors, Mapping) else None
        zones = context.get("affected_zones")
        zones = [zone for zone in zones if isinstance(zone, str)] if isinstance(zones, list | tuple) else []

        log = logger.bind(trigger_reason=trigger_reason, affected_zones=zones)
        log.info("priority recalculation started")
        now = now or now_utc()
        tasks = self._tasks_for_recalculation(zones)

        changes: list[PriorityChange] = []
        for task in tasks:
            old_priority = task.priority
            new_priority = self.calculate_task_priority(task, factors, now)
            if new_priority == old_priority:
                continue
            task.set_priority(new_priority)
            self._task_store.save(task)
            changes.append(
                PriorityChange(
                    task_id=task.id,
                    old_priority=old_priority,
                    new_priority=new_priority,
                    change_delta=new_priority - old_priority,
                    task_type=TaskType(task.task_type).value,
                )
            )

        high_impact = [change for change in changes if abs(change.change_delta) > self._config.high_impact_delta]
        report = PriorityRecalculationReport(
            updated_count=len(changes),
            priority_changes=changes,
            affected_assignments=AffectedAssignments(
                reassignment_needed=bool(changes),
                affected_count=len(changes),
                high_impact_changes=high_impact,
            ),
            trigger_reason=trigger_reason,
            recalculation_timestamp=now,
            priority_distribution=self._distribution(tasks),
            total_analyzed=len(tasks),
        )
        log.bind(updated_count=report.updated_count, total_analyzed=report.total_analyzed).info(
            "priority recalculation completed"
        )
        return report
