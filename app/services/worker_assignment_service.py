from __future__ import annotations

from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any, ClassVar, Protocol

from loguru import logger

from app.domain.models import (
    Assignment,
    EstimatedCompletion,
    SkillAnalysis,
    WarehouseTask,
    WorkerAvailability,
    WorkerCandidate,
    WorkerSkill,
    as_utc,
    now_utc,
)
from app.infra.config import AssignmentWeights, SchedulingConfig, coerce_int
from app.infra.stores import TaskStore, WorkerSkillStore
from app.services.load_balancer import WorkerLoadBalancer
from app.services.skill_matcher import WorkerSkillMatcher, calculate_workload_score, resolve_required_skills

PerformanceLookup = Callable[[int], float | None]


class WorkerAssignmentError(Exception):
    pass


class WorkerSource(Protocol):
    includes_skill_analysis: bool

    def candidates(
        self,
        task: WarehouseTask,
        required_skills: Sequence[str],
        exclude_worker_ids: Collection[int],
    ) -> list[WorkerCandidate]: ...

    def record_assignment(self, worker_id: int) -> None: ...

    def workload(self, worker_id: int) -> int: ...


class InMemoryWorkerSource:
    """Explicit candidate pool; workloads rise as assignments are recorded."""

    includes_skill_analysis = False

    def __init__(self, workers: Iterable[Any] | None) -> None:
        self._workers: list[WorkerCandidate] = []
        for raw in workers or ():
            candidate = WorkerCandidate.coerce(raw)
            if candidate is not None:
                self._workers.append(candidate)

    @property
    def workers(self) -> list[WorkerCandidate]:
        return list(self._workers)

    def candidates(
        self,
        task: WarehouseTask,
        required_skills: Sequence[str],
        exclude_worker_ids: Collection[int],
    ) -> list[WorkerCandidate]:
        return [worker for worker in self._workers if worker.worker_id not in exclude_worker_ids]

    def record_assignment(self, worker_id: int) -> None:
        for index, worker in enumerate(self._workers):
            if worker.worker_id == worker_id:
                self._workers[index] = worker.model_copy(
                    update={"current_workload": worker.current_workload + 1}
                )
                return

    def workload(self, worker_id: int) -> int:
        for worker in self._workers:
            if worker.worker_id == worker_id:
                return worker.current_workload
        return 0


class SkillStoreWorkerSource:
    """Candidates built from active skill records.

    Workload is the worker's active task count plus whatever this source
    assigned during the current run.
    """

    includes_skill_analysis = True

    def __init__(
        self,
        skill_store: WorkerSkillStore,
        task_store: TaskStore | None = None,
        performance_lookup: PerformanceLookup | None = None,
    ) -> None:
        self._skill_store = skill_store
        self._task_store = task_store
        self._performance_lookup = performance_lookup
        self._base_workloads: dict[int, int] | None = None
        self._assigned: dict[int, int] = {}

    def workload(self, worker_id: int) -> int:
        if self._base_workloads is None:
            self._base_workloads = (
                self._task_store.active_workload_by_worker() if self._task_store is not None else {}
            )
        return self._base_workloads.get(worker_id, 0) + self._assigned.get(worker_id, 0)

    @staticmethod
    def _is_current(record: WorkerSkill, now: datetime) -> bool:
        return record.expires_at is None or as_utc(record.expires_at) > now

    def _candidate(self, worker_id: int, records: list[WorkerSkill]) -> WorkerCandidate:
        performance = self._performance_lookup(worker_id) if self._performance_lookup else None
        return WorkerCandidate(
            worker_id=worker_id,
            name=records[0].worker_name,
            current_workload=self.workload(worker_id),
            availability=WorkerAvailability.AVAILABLE.value,
            skills=records,
            location=next((record.location for record in records if record.location), None),
            performance_score=performance,
        )

    def candidates(
        self,
        task: WarehouseTask,
        required_skills: Sequence[str],
        exclude_worker_ids: Collection[int],
    ) -> list[WorkerCandidate]:
        if required_skills:
            records = self._skill_store.find_active_by_categories(required_skills, exclude_worker_ids)
        else:
            records = [
                record
                for worker_id in self._skill_store.list_active_worker_ids()
                if worker_id not in exclude_worker_ids
                for record in self._skill_store.find_active_by_worker(worker_id)
            ]
        now = now_utc()
        grouped: dict[int, list[WorkerSkill]] = {}
        for record in records:
            if record.worker_id in exclude_worker_ids or not self._is_current(record, now):
                continue
            grouped.setdefault(record.worker_id, []).append(record)
        return [self._candidate(worker_id, group) for worker_id, group in grouped.items()]

    def worker(self, worker_id: int) -> WorkerCandidate | None:
        now = now_utc()
        records = [
            record for record in self._skill_store.find_active_by_worker(worker_id) if self._is_current(record, now)
        ]
        if not records:
            return None
        return self._candidate(worker_id, records)

    def record_assignment(self, worker_id: int) -> None:
        self._assigned[worker_id] = self._assigned.get(worker_id, 0) + 1


class WorkerAssignmentService:
    _REASONS: ClassVar[dict[str, str]] = {
        "skill_match": "best skill match",
        "workload": "lowest workload",
        "location": "closest location",
        "performance": "best historical performance",
    }

    def __init__(
        self,
        config: SchedulingConfig | None = None,
        *,
        skill_matcher: WorkerSkillMatcher | None = None,
        load_balancer: WorkerLoadBalancer | None = None,
        skill_store: WorkerSkillStore | None = None,
        task_store: TaskStore | None = None,
        performance_lookup: PerformanceLookup | None = None,
    ) -> None:
        self._config = config or SchedulingConfig()
        self._skill_matcher = skill_matcher or WorkerSkillMatcher(self._config)
        self._load_balancer = load_balancer or WorkerLoadBalancer(self._config)
        self._skill_store = skill_store
        self._task_store = task_store
        self._performance_lookup = performance_lookup

    @property
    def config(self) -> SchedulingConfig:
        return self._config

    @property
    def has_skill_store(self) -> bool:
        return self._skill_store is not None

    def skill_store_source(self) -> SkillStoreWorkerSource:
        if self._skill_store is None:
            raise WorkerAssignmentError("worker skill store is not configured")
        return SkillStoreWorkerSource(self._skill_store, self._task_store, self._performance_lookup)

    def eligible_workers(
        self,
        candidates: Iterable[Any] | None,
        constraints: Mapping[str, Any] | None = None,
    ) -> list[WorkerCandidate]:
        return self._load_balancer.filter_eligible_workers(candidates, constraints)

    @staticmethod
    def _excluded_ids(options: Mapping[str, Any]) -> set[int]:
        raw = options.get("exclude_workers")
        if not isinstance(raw, list | tuple | set | frozenset):
            return set()
        return {value for value in (coerce_int(item) for item in raw) if value is not None}

    def assign(
        self,
        task: WarehouseTask,
        source: WorkerSource,
        options: Mapping[str, Any] | None = None,
    ) -> Assignment | None:
        opts = dict(options or {})
        required = resolve_required_skills(task)
        weights = self._config.assignment_weights.with_overrides(opts)
        candidates = source.candidates(task, required, self._excluded_ids(opts))
        eligible = self._load_balancer.filter_eligible_workers(candidates, opts)

        best: WorkerCandidate | None = None
        best_score = 0.0
        for worker in eligible:
            score = self.calculate_task_worker_match(task, worker, weights)
            if best is None or score > best_score:
                best = worker
                best_score = score
        if best is None:
            logger.bind(task_id=task.id, candidates=len(candidates)).debug("no eligible worker for task")
            return None

        source.record_assignment(best.worker_id)
        return self._build_assignment(
            task,
            best,
            best_score,
            weights,
            required,
            with_analysis=source.includes_skill_analysis,
        )

    def assign_task_to_optimal_worker(
        self,
        task: WarehouseTask,
        candidates: Iterable[Any] | None,
        constraints: Mapping[str, Any] | None = None,
    ) -> Assignment | None:
        return self.assign(task, InMemoryWorkerSource(candidates), constraints)

    def assign_worker_by_skill(
        self,
        task: WarehouseTask,
        options: Mapping[str, Any] | None = None,
    ) -> Assignment | None:
        if not resolve_required_skills(task):
            return None
        return self.assign(task, self.skill_store_source(), options)

    def _factors(
        self,
        task: WarehouseTask,
        worker: WorkerCandidate,
    ) -> dict[str, float]:
        required = resolve_required_skills(task)
        return {
            "skill_match": self._skill_matcher.calculate_skill_match(required, worker.skills),
            "workload": calculate_workload_score(worker.current_workload, self._config.workload_cap),
            "location": self._location_score(task.zone(), worker.location),
            "performance": (
                worker.performance_score
                if worker.performance_score is not None
                else self._config.default_performance_score
            ),
        }

    @staticmethod
    def _location_score(task_zone: str | None, worker_location: str | None) -> float:
        if not task_zone or not worker_location:
            return 0.5
        return 1.0 if task_zone == worker_location else 0.2

    def calculate_task_worker_match(
        self,
        task: WarehouseTask,
        worker: WorkerCandidate | Mapping[str, Any],
        weights: AssignmentWeights | None = None,
    ) -> float:
        candidate = WorkerCandidate.coerce(worker)
        if candidate is None:
            return 0.0
        weights = weights or self._config.assignment_weights
        factors = self._factors(task, candidate)
        priority_factor = min(1.0, max(0, task.priority) / 100)
        score = (
            factors["skill_match"] * weights.skill
            + factors["workload"] * weights.workload
            + factors["location"] * weights.location
            + factors["performance"] * weights.performance * (0.5 + 0.5 * priority_factor)
        )
        return round(max(0.0, min(1.0, score)), 3)

    def estimate_completion(
        self,
        required_skills: Sequence[str],
        worker: WorkerCandidate,
    ) -> EstimatedCompletion:
        level = self._skill_matcher.best_level(required_skills, worker.skills)
        minutes = int(round(self._config.base_completion_minutes / max(0.5, level / 10)))
        return EstimatedCompletion(
            estimated_minutes=minutes,
            completion_time=now_utc() + timedelta(minutes=minutes),
            confidence_level=self._config.completion_confidence,
        )

    def _build_assignment(
        self,
        task: WarehouseTask,
        worker: WorkerCandidate,
        score: float,
        weights: AssignmentWeights,
        required: list[str],
        *,
        with_analysis: bool,
    ) -> Assignment:
        factors = self._factors(task, worker)
        weighted = {
            "skill_match": factors["skill_match"] * weights.skill,
            "workload": factors["workload"] * weights.workload,
            "location": factors["location"] * weights.location,
            "performance": factors["performance"] * weights.performance,
        }
        dominant = max(weighted, key=lambda key: weighted[key])
        analysis = None
        if with_analysis:
            analysis = SkillAnalysis(
                required_skills=required,
                worker_skills=sorted({record.category for record in worker.skills}),
                match_details=self._skill_matcher.match_details(required, worker.skills),
            )
        return Assignment(
            task_id=task.id,
            worker_id=worker.worker_id,
            worker_name=worker.name,
            match_score=score,
            estimated_completion=self.estimate_completion(required, worker),
            assignment_reason=self._REASONS[dominant],
            assignment_factors={key: round(value, 3) for key, value in factors.items()},
            skill_analysis=analysis,
        )
