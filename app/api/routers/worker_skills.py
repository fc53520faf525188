from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from app.api.deps import SchedulingService
from app.domain.models import WorkerSkillCreate, WorkerSkillRead
from app.services.task_scheduling_service import ConflictError

router = APIRouter()


@router.post("", response_model=WorkerSkillRead, status_code=status.HTTP_201_CREATED)
def create_worker_skill(payload: WorkerSkillCreate, service: SchedulingService) -> WorkerSkillRead:
    try:
        row = service.create_worker_skill(payload)
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return WorkerSkillRead.model_validate(row)


@router.get("", response_model=list[WorkerSkillRead])
def list_worker_skills(
    service: SchedulingService,
    worker_id: int | None = None,
    skill_category: str | None = None,
    active_only: bool = False,
) -> list[WorkerSkillRead]:
    rows = service.list_worker_skills(worker_id=worker_id, skill_category=skill_category, active_only=active_only)
    return [WorkerSkillRead.model_validate(item) for item in rows]
