from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from app.services.task_scheduling_service import TaskSchedulingService


def get_task_scheduling_service() -> TaskSchedulingService:
    return TaskSchedulingService()


SchedulingService = Annotated[TaskSchedulingService, Depends(get_task_scheduling_service)]
