from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from app.api.deps import SchedulingService
from app.domain.models import TaskTransitionRequest, TaskType, WarehouseTaskCreate, WarehouseTaskRead
from app.domain.state_machine import TaskStatus
from app.services.task_scheduling_service import ConflictError, NotFoundError

router = APIRouter()


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post("", response_model=WarehouseTaskRead, status_code=status.HTTP_201_CREATED)
def create_task(payload: WarehouseTaskCreate, service: SchedulingService) -> WarehouseTaskRead:
    return WarehouseTaskRead.model_validate(service.create_task(payload))


@router.get("", response_model=list[WarehouseTaskRead])
def list_tasks(
    service: SchedulingService,
    status_filter: TaskStatus | None = Query(default=None, alias="status"),
    task_type: TaskType | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[WarehouseTaskRead]:
    rows = service.list_tasks(status=status_filter, task_type=task_type, limit=limit)
    return [WarehouseTaskRead.model_validate(item) for item in rows]


@router.get("/{task_id}", response_model=WarehouseTaskRead)
def get_task(task_id: int, service: SchedulingService) -> WarehouseTaskRead:
    try:
        row = service.get_task(task_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_error(exc)
        raise
    return WarehouseTaskRead.model_validate(row)


@router.post("/{task_id}/transition", response_model=WarehouseTaskRead)
def transition_task(
    task_id: int,
    payload: TaskTransitionRequest,
    service: SchedulingService,
) -> WarehouseTaskRead:
    try:
        row = service.transition_task(task_id, payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_error(exc)
        raise
    return WarehouseTaskRead.model_validate(row)
