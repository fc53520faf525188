from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any, Protocol

from loguru import logger

from app.domain.models import (
    Assignment,
    AssignmentType,
    HandlingStrategy,
    UrgencyLevel,
    UrgentTaskResult,
    WarehouseTask,
    WorkerAvailability,
    WorkerCandidate,
    as_utc,
    now_utc,
)
from app.domain.state_machine import TaskStatus, can_task_transition
from app.infra.stores import TaskStore
from app.services.skill_matcher import resolve_required_skills
from app.services.worker_assignment_service import (
    InMemoryWorkerSource,
    SkillStoreWorkerSource,
    WorkerAssignmentService,
    WorkerSource,
)

IMMEDIATE_START = timedelta(minutes=15)
PREEMPTION_START = timedelta(minutes=5)
STANDARD_QUEUE_START = timedelta(hours=1)
PRIORITY_QUEUE_MAX_DELAY = 15


def _timestamp(value: datetime | None) -> float:
    return as_utc(value).timestamp() if value is not None else 0.0


class PreemptionPolicy(Protocol):
    def select_victim(
        self,
        urgent_task: WarehouseTask,
        candidates: Sequence[WarehouseTask],
    ) -> WarehouseTask | None: ...


class LowestPriorityPreemptionPolicy:
    """Lowest priority first, then the most recently assigned, then the lowest id."""

    def select_victim(
        self,
        urgent_task: WarehouseTask,
        candidates: Sequence[WarehouseTask],
    ) -> WarehouseTask | None:
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda task: (task.priority, -_timestamp(task.assigned_at), task.id or 0),
        )


class OldestStartPreemptionPolicy:
    """Task that has been running longest first, then the lowest priority."""

    def select_victim(
        self,
        urgent_task: WarehouseTask,
        candidates: Sequence[WarehouseTask],
    ) -> WarehouseTask | None:
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda task: (_timestamp(task.started_at or task.assigned_at), task.priority, task.id or 0),
        )


class UrgentTaskHandler:
    def __init__(
        self,
        assignment_service: WorkerAssignmentService,
        task_store: TaskStore | None = None,
        preemption_policy: PreemptionPolicy | None = None,
    ) -> None:
        self._assignment = assignment_service
        self._task_store = task_store
        self._policy = preemption_policy or LowestPriorityPreemptionPolicy()

    @staticmethod
    def _urgency(urgency_level: UrgencyLevel | Mapping[str, Any] | None) -> UrgencyLevel:
        if isinstance(urgency_level, UrgencyLevel):
            return urgency_level
        return UrgencyLevel.model_validate(dict(urgency_level or {}))

    def _worker_source(self, workers: Iterable[Any] | None) -> WorkerSource | None:
        if workers is not None:
            return InMemoryWorkerSource(workers)
        if self._assignment.has_skill_store:
            return self._assignment.skill_store_source()
        return None

    def handle_urgent_task(
        self,
        task: WarehouseTask,
        urgency_level: UrgencyLevel | Mapping[str, Any] | None = None,
        workers: Iterable[Any] | None = None,
        now: datetime | None = None,
    ) -> UrgentTaskResult:
        level = self._urgency(urgency_level)
        now = now or now_utc()
        logger.bind(task_id=task.id, urgency_level=level.model_dump()).warning("urgent task inserted")

        task.set_priority(level.priority)
        task.merge_data(
            {
                "urgent": True,
                "max_delay_minutes": level.max_delay_minutes,
                "preempt_allowed": level.preempt_allowed,
                "inserted_at": now.isoformat(),
            }
        )

        source = self._worker_source(workers)
        assignment = self._assignment.assign(task, source, {"urgent": True}) if source is not None else None
        if assignment is None and level.preempt_allowed:
            assignment = self._preempt(task, source, now)

        strategy = self._strategy(level, assignment)
        task.merge_data(
            {
                "urgent_handling": {
                    "handled_at": now.isoformat(),
                    "handling_strategy": strategy.value,
                    "worker_id": assignment.worker_id if assignment is not None else None,
                }
            }
        )
        if self._task_store is not None:
            self._task_store.save(task)

        return UrgentTaskResult(
            task_id=task.id,
            priority_assigned=task.priority,
            assignment_result=assignment,
            estimated_start_time=now + self._start_delay(strategy, level),
            handling_strategy=strategy,
        )

    @staticmethod
    def _strategy(level: UrgencyLevel, assignment: Assignment | None) -> HandlingStrategy:
        if assignment is not None:
            if assignment.assignment_type == AssignmentType.PREEMPTION:
                return HandlingStrategy.IMMEDIATE_PREEMPTION
            return HandlingStrategy.IMMEDIATE_ASSIGNMENT
        if level.max_delay_minutes < PRIORITY_QUEUE_MAX_DELAY:
            return HandlingStrategy.PRIORITY_QUEUE
        return HandlingStrategy.STANDARD_QUEUE

    @staticmethod
    def _start_delay(strategy: HandlingStrategy, level: UrgencyLevel) -> timedelta:
        if strategy == HandlingStrategy.IMMEDIATE_PREEMPTION:
            return PREEMPTION_START
        if strategy == HandlingStrategy.IMMEDIATE_ASSIGNMENT:
            return IMMEDIATE_START
        if strategy == HandlingStrategy.PRIORITY_QUEUE:
            return timedelta(minutes=level.max_delay_minutes)
        return STANDARD_QUEUE_START

    def _worker_for(self, worker_id: int, source: WorkerSource | None) -> WorkerCandidate:
        if isinstance(source, InMemoryWorkerSource):
            for worker in source.workers:
                if worker.worker_id == worker_id:
                    return worker
        elif isinstance(source, SkillStoreWorkerSource):
            found = source.worker(worker_id)
            if found is not None:
                return found
        return WorkerCandidate(
            worker_id=worker_id,
            name=f"worker-{worker_id}",
            availability=WorkerAvailability.BUSY.value,
        )

    def _is_compatible(self, task: WarehouseTask, victim: WarehouseTask, source: WorkerSource | None) -> bool:
        if victim.id == task.id or victim.assigned_worker is None:
            return False
        if victim.priority >= task.priority:
            return False
        if not can_task_transition(victim.status, TaskStatus.PENDING):
            return False
        required = resolve_required_skills(task)
        if not required:
            return True
        worker = self._worker_for(victim.assigned_worker, source)
        if worker.skills:
            return {record.category for record in worker.skills}.issuperset(required)
        return victim.task_type == task.task_type

    def _preempt(self, task: WarehouseTask, source: WorkerSource | None, now: datetime) -> Assignment | None:
        if self._task_store is None:
            return None
        in_flight = [
            victim for victim in self._task_store.find_active_tasks() if self._is_compatible(task, victim, source)
        ]
        victim = self._policy.select_victim(task, in_flight)
        if victim is None:
            logger.bind(task_id=task.id, in_flight=len(in_flight)).info("no task eligible for preemption")
            return None

        worker_id = victim.assigned_worker
        worker = self._worker_for(worker_id, source)
        victim.status = TaskStatus.PENDING
        victim.assigned_worker = None
        victim.assigned_at = None
        victim.merge_data({"preempted_by": task.id, "preempted_at": now.isoformat()})
        self._task_store.save(victim)
        logger.bind(task_id=task.id, preempted_task_id=victim.id, worker_id=worker_id).info(
            "task preempted for urgent work"
        )

        required = resolve_required_skills(task)
        return Assignment(
            task_id=task.id,
            worker_id=worker.worker_id,
            worker_name=worker.name,
            match_score=self._assignment.calculate_task_worker_match(task, worker),
            assignment_time=now,
            estimated_completion=self._assignment.estimate_completion(required, worker),
            assignment_reason="preempted lower priority task",
            assignment_type=AssignmentType.PREEMPTION,
            preempted_task_id=victim.id,
        )
