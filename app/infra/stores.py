from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

from sqlalchemy import func
from sqlmodel import Session, col, select

from app.domain.models import TaskType, WarehouseTask, WorkerSkill, now_utc
from app.domain.state_machine import ACTIVE_STATUSES, TaskStatus


class TaskStore(Protocol):
    def find_pending_tasks(self, limit: int | None = None) -> list[WarehouseTask]: ...

    def find_by_id(self, task_id: int) -> WarehouseTask | None: ...

    def find_by_ids(self, task_ids: Sequence[int]) -> list[WarehouseTask]: ...

    def save(self, task: WarehouseTask) -> WarehouseTask: ...

    def count_by_status(self, status: TaskStatus) -> int: ...

    def get_task_statistics(self) -> dict[str, int]: ...

    def find_active_tasks(self) -> list[WarehouseTask]: ...

    def find_by_worker(self, worker_id: int, task_type: TaskType | None = None) -> list[WarehouseTask]: ...

    def find_created_between(self, start: datetime, end: datetime) -> list[WarehouseTask]: ...

    def active_workload_by_worker(self) -> dict[int, int]: ...


class WorkerSkillStore(Protocol):
    def find_active_by_category(
        self,
        category: str,
        exclude_worker_ids: Iterable[int] = (),
    ) -> list[WorkerSkill]: ...

    def find_active_by_categories(
        self,
        categories: Sequence[str],
        exclude_worker_ids: Iterable[int] = (),
    ) -> list[WorkerSkill]: ...

    def find_active_by_worker(self, worker_id: int) -> list[WorkerSkill]: ...

    def list_active_worker_ids(self) -> list[int]: ...


class SqlTaskStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_pending_tasks(self, limit: int | None = None) -> list[WarehouseTask]:
        statement = (
            select(WarehouseTask)
            .where(WarehouseTask.status == TaskStatus.PENDING)
            .order_by(col(WarehouseTask.priority).desc(), col(WarehouseTask.id))
        )
        if limit is not None:
            statement = statement.limit(limit)
        return list(self._session.exec(statement).all())

    def find_by_id(self, task_id: int) -> WarehouseTask | None:
        return self._session.get(WarehouseTask, task_id)

    def find_by_ids(self, task_ids: Sequence[int]) -> list[WarehouseTask]:
        if not task_ids:
            return []
        rows = self._session.exec(select(WarehouseTask).where(col(WarehouseTask.id).in_(list(task_ids)))).all()
        by_id = {row.id: row for row in rows}
        return [by_id[task_id] for task_id in task_ids if task_id in by_id]

    def save(self, task: WarehouseTask) -> WarehouseTask:
        task.updated_at = now_utc()
        self._session.add(task)
        self._session.flush()
        return task

    def count_by_status(self, status: TaskStatus) -> int:
        statement = select(func.count()).select_from(WarehouseTask).where(WarehouseTask.status == status)
        return int(self._session.exec(statement).one())

    def get_task_statistics(self) -> dict[str, int]:
        statement = select(WarehouseTask.status, func.count()).group_by(WarehouseTask.status)
        stats = {status.value: 0 for status in TaskStatus}
        for status, count in self._session.exec(statement).all():
            stats[TaskStatus(status).value] = int(count)
        return stats

    def find_active_tasks(self) -> list[WarehouseTask]:
        statement = select(WarehouseTask).where(col(WarehouseTask.status).in_(list(ACTIVE_STATUSES)))
        return list(self._session.exec(statement).all())

    def find_by_worker(self, worker_id: int, task_type: TaskType | None = None) -> list[WarehouseTask]:
        statement = select(WarehouseTask).where(WarehouseTask.assigned_worker == worker_id)
        if task_type is not None:
            statement = statement.where(WarehouseTask.task_type == task_type)
        return list(self._session.exec(statement.order_by(col(WarehouseTask.id))).all())

    def find_created_between(self, start: datetime, end: datetime) -> list[WarehouseTask]:
        statement = (
            select(WarehouseTask)
            .where(WarehouseTask.created_at >= start)
            .where(WarehouseTask.created_at < end)
            .order_by(col(WarehouseTask.id))
        )
        return list(self._session.exec(statement).all())

    def active_workload_by_worker(self) -> dict[int, int]:
        statement = (
            select(WarehouseTask.assigned_worker, func.count())
            .where(col(WarehouseTask.status).in_(list(ACTIVE_STATUSES)))
            .where(col(WarehouseTask.assigned_worker).is_not(None))
            .group_by(WarehouseTask.assigned_worker)
        )
        return {int(worker_id): int(count) for worker_id, count in self._session.exec(statement).all()}


class SqlWorkerSkillStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_active_by_category(
        self,
        category: str,
        exclude_worker_ids: Iterable[int] = (),
    ) -> list[WorkerSkill]:
        return self.find_active_by_categories([category], exclude_worker_ids)

    def find_active_by_categories(
        self,
        categories: Sequence[str],
        exclude_worker_ids: Iterable[int] = (),
    ) -> list[WorkerSkill]:
        if not categories:
            return []
        statement = (
            select(WorkerSkill)
            .where(WorkerSkill.is_active == True)  # noqa: E712
            .where(col(WorkerSkill.skill_category).in_(list(categories)))
        )
        excluded = list(exclude_worker_ids)
        if excluded:
            statement = statement.where(col(WorkerSkill.worker_id).not_in(excluded))
        return list(self._session.exec(statement.order_by(col(WorkerSkill.id))).all())

    def find_active_by_worker(self, worker_id: int) -> list[WorkerSkill]:
        statement = (
            select(WorkerSkill)
            .where(WorkerSkill.worker_id == worker_id)
            .where(WorkerSkill.is_active == True)  # noqa: E712
            .order_by(col(WorkerSkill.id))
        )
        return list(self._session.exec(statement).all())

    def list_active_worker_ids(self) -> list[int]:
        statement = (
            select(WorkerSkill.worker_id)
            .where(WorkerSkill.is_active == True)  # noqa: E712
            .distinct()
            .order_by(col(WorkerSkill.worker_id))
        )
        return [int(worker_id) for worker_id in self._session.exec(statement).all()]
