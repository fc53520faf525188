from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from app.api.deps import SchedulingService
from app.domain.models import (
    Assignment,
    AssignBySkillRequest,
    BatchScheduleRead,
    BatchScheduleRequest,
    OptimizationReport,
    PendingScheduleRequest,
    PriorityRecalculationReport,
    PriorityRecalculationRequest,
    QueueSnapshot,
    ReassignmentResult,
    ReassignRequest,
    TaskType,
    UrgentTaskRequest,
    UrgentTaskResult,
    WorkerHistoricalPerformance,
    WorkerPerformance,
)
from app.services.task_scheduling_service import ConflictError, NotFoundError

router = APIRouter()


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post("/batch", response_model=BatchScheduleRead)
def schedule_task_batch(payload: BatchScheduleRequest, service: SchedulingService) -> BatchScheduleRead:
    try:
        return service.schedule_task_batch(payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_error(exc)
        raise


@router.post("/run", response_model=BatchScheduleRead)
def schedule_pending_tasks(payload: PendingScheduleRequest, service: SchedulingService) -> BatchScheduleRead:
    try:
        return service.schedule_pending_tasks(payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_error(exc)
        raise


@router.post("/priorities/recalculate", response_model=PriorityRecalculationReport)
def recalculate_priorities(
    payload: PriorityRecalculationRequest,
    service: SchedulingService,
) -> PriorityRecalculationReport:
    return service.recalculate_priorities(payload)


@router.post("/tasks/{task_id}/assign-by-skill", response_model=Assignment | None)
def assign_worker_by_skill(
    task_id: int,
    payload: AssignBySkillRequest,
    service: SchedulingService,
) -> Assignment | None:
    try:
        return service.assign_worker_by_skill(task_id, payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_error(exc)
        raise


@router.post("/tasks/{task_id}/urgent", response_model=UrgentTaskResult)
def handle_urgent_task(task_id: int, payload: UrgentTaskRequest, service: SchedulingService) -> UrgentTaskResult:
    try:
        return service.handle_urgent_task(task_id, payload.to_urgency(), payload.workers)
    except (NotFoundError, ConflictError) as exc:
        _handle_error(exc)
        raise


@router.post("/reassign", response_model=ReassignmentResult)
def batch_reassign_tasks(payload: ReassignRequest, service: SchedulingService) -> ReassignmentResult:
    try:
        return service.batch_reassign_tasks(payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_error(exc)
        raise


@router.get("/queue", response_model=QueueSnapshot)
def get_queue_status(service: SchedulingService) -> QueueSnapshot:
    return service.get_queue_status()


@router.get("/optimization", response_model=OptimizationReport)
def analyze_optimization(
    service: SchedulingService,
    hours: int | None = Query(default=None, ge=1, le=24 * 90),
    task_types: list[TaskType] | None = Query(default=None),
    zones: list[str] | None = Query(default=None),
) -> OptimizationReport:
    criteria: dict[str, Any] = {}
    if hours is not None:
        criteria["time_range"] = {"hours": hours}
    if task_types:
        criteria["task_types"] = [item.value for item in task_types]
    if zones:
        criteria["zones"] = zones
    return service.analyze_optimization(criteria)


@router.get("/workers/{worker_id}/performance", response_model=WorkerPerformance)
def analyze_worker_performance(worker_id: int, service: SchedulingService) -> WorkerPerformance:
    return service.analyze_worker_performance(worker_id)


@router.get("/workers/{worker_id}/performance/{task_type}", response_model=WorkerHistoricalPerformance)
def get_worker_historical_performance(
    worker_id: int,
    task_type: TaskType,
    service: SchedulingService,
) -> WorkerHistoricalPerformance:
    return service.get_worker_historical_performance(worker_id, task_type)
