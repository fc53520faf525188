from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.models import (
    Assignment,
    AssignBySkillRequest,
    AssignmentType,
    BatchScheduleRead,
    BatchScheduleRequest,
    OptimizationReport,
    PendingScheduleRequest,
    PriorityRecalculationReport,
    PriorityRecalculationRequest,
    QueueSnapshot,
    ReassignmentResult,
    ReassignRequest,
    SchedulingRunReport,
    TaskTransitionRequest,
    TaskType,
    UrgencyLevel,
    UrgentTaskResult,
    WarehouseTask,
    WarehouseTaskCreate,
    WorkerHistoricalPerformance,
    WorkerPerformance,
    WorkerSkill,
    WorkerSkillCreate,
    now_utc,
)
from app.domain.state_machine import TaskStatus, can_task_transition
from app.domain.task_data import details_to_data, parse_task_details
from app.infra.config import SchedulingConfig, get_scheduling_config
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.infra.stores import SqlTaskStore, SqlWorkerSkillStore
from app.services.batch_scheduler_service import BatchTaskScheduler
from app.services.priority_service import TaskPriorityCalculator
from app.services.queue_monitor_service import SchedulingQueueMonitor
from app.services.scheduling_optimizer_service import SchedulingOptimizer
from app.services.urgent_task_service import STANDARD_QUEUE_START, PreemptionPolicy, UrgentTaskHandler
from app.services.worker_assignment_service import WorkerAssignmentService
from app.services.worker_performance_service import WorkerPerformanceAnalyzer


class SchedulingError(Exception):
    pass


class NotFoundError(SchedulingError):
    pass


class ConflictError(SchedulingError):
    pass


@dataclass
class _Engine:
    tasks: SqlTaskStore
    skills: SqlWorkerSkillStore
    performance: WorkerPerformanceAnalyzer
    assignment: WorkerAssignmentService
    priority: TaskPriorityCalculator
    batch: BatchTaskScheduler
    urgent: UrgentTaskHandler
    monitor: SchedulingQueueMonitor
    optimizer: SchedulingOptimizer


class TaskSchedulingService:
    def __init__(
        self,
        config: SchedulingConfig | None = None,
        preemption_policy: PreemptionPolicy | None = None,
    ) -> None:
        self._config = config or get_scheduling_config()
        self._preemption_policy = preemption_policy

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _engine(self, session: Session) -> _Engine:
        tasks = SqlTaskStore(session)
        skills = SqlWorkerSkillStore(session)
        performance = WorkerPerformanceAnalyzer(tasks, self._config)
        assignment = WorkerAssignmentService(
            self._config,
            skill_store=skills,
            task_store=tasks,
            performance_lookup=performance.performance_score,
        )
        monitor = SchedulingQueueMonitor(tasks, skills, self._config)
        return _Engine(
            tasks=tasks,
            skills=skills,
            performance=performance,
            assignment=assignment,
            priority=TaskPriorityCalculator(tasks, self._config),
            batch=BatchTaskScheduler(assignment, self._config),
            urgent=UrgentTaskHandler(assignment, tasks, self._preemption_policy),
            monitor=monitor,
            optimizer=SchedulingOptimizer(tasks, monitor, self._config),
        )

    @staticmethod
    def _get_task(session: Session, task_id: int) -> WarehouseTask:
        row = session.get(WarehouseTask, task_id)
        if row is None:
            raise NotFoundError("task not found")
        return row

    def _apply_assignment(self, session: Session, task: WarehouseTask, assignment: Assignment) -> None:
        if not can_task_transition(task.status, TaskStatus.ASSIGNED):
            raise ConflictError(f"illegal transition: {task.status} -> {TaskStatus.ASSIGNED}")
        task.status = TaskStatus.ASSIGNED
        task.assigned_worker = assignment.worker_id
        task.assigned_at = assignment.assignment_time
        task.updated_at = now_utc()
        session.add(task)
        event_bus.publish_dict(
            "task.assigned",
            {
                "task_id": task.id,
                "worker_id": assignment.worker_id,
                "match_score": assignment.match_score,
                "assignment_type": assignment.assignment_type.value,
                "preempted_task_id": assignment.preempted_task_id,
            },
            session=session,
        )

    def create_task(self, payload: WarehouseTaskCreate) -> WarehouseTask:
        data = dict(payload.data)
        if payload.details is not None:
            details = parse_task_details(payload.task_type.value, payload.details)
            data.update(details_to_data(details))
        with self._session() as session:
            row = WarehouseTask(
                task_type=payload.task_type,
                priority=payload.priority,
                data=data,
                location=payload.location,
                description=payload.description,
                notes=payload.notes,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.bind(task_id=row.id, task_type=row.task_type).info("task created")
            return row

    def get_task(self, task_id: int) -> WarehouseTask:
        with self._session() as session:
            return self._get_task(session, task_id)

    def list_tasks(
        self,
        status: TaskStatus | None = None,
        task_type: TaskType | None = None,
        limit: int = 100,
    ) -> list[WarehouseTask]:
        with self._session() as session:
            statement = select(WarehouseTask)
            if status is not None:
                statement = statement.where(WarehouseTask.status == status)
            if task_type is not None:
                statement = statement.where(WarehouseTask.task_type == task_type)
            statement = statement.order_by(col(WarehouseTask.priority).desc(), col(WarehouseTask.id)).limit(limit)
            return list(session.exec(statement).all())

    def transition_task(self, task_id: int, payload: TaskTransitionRequest) -> WarehouseTask:
        with self._session() as session:
            row = self._get_task(session, task_id)
            source = TaskStatus(row.status)
            target = payload.target_status
            if not can_task_transition(source, target):
                raise ConflictError(f"illegal transition: {source} -> {target}")
            if target == TaskStatus.ASSIGNED and row.assigned_worker is None:
                raise ConflictError("task has no assigned worker")

            now = now_utc()
            row.status = target
            if target == TaskStatus.PENDING:
                row.assigned_worker = None
                row.assigned_at = None
            elif target == TaskStatus.IN_PROGRESS and row.started_at is None:
                row.started_at = now
            elif target in {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.DISCREPANCY_FOUND}:
                row.completed_at = now
            if payload.note:
                row.notes = payload.note
            row.updated_at = now
            session.add(row)
            event_bus.publish_dict(
                "task.transitioned",
                {"task_id": row.id, "from": source.value, "to": target.value},
                session=session,
            )
            session.commit()
            session.refresh(row)
            return row

    def create_worker_skill(self, payload: WorkerSkillCreate) -> WorkerSkill:
        with self._session() as session:
            row = WorkerSkill(**payload.model_dump())
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("worker skill already exists") from exc
            session.refresh(row)
            return row

    def list_worker_skills(
        self,
        worker_id: int | None = None,
        skill_category: str | None = None,
        active_only: bool = False,
    ) -> list[WorkerSkill]:
        with self._session() as session:
            statement = select(WorkerSkill)
            if worker_id is not None:
                statement = statement.where(WorkerSkill.worker_id == worker_id)
            if skill_category is not None:
                statement = statement.where(WorkerSkill.skill_category == skill_category)
            if active_only:
                statement = statement.where(WorkerSkill.is_active == True)  # noqa: E712
            return list(session.exec(statement.order_by(col(WorkerSkill.worker_id), col(WorkerSkill.id))).all())

    @staticmethod
    def _batch_read(report: SchedulingRunReport) -> BatchScheduleRead:
        unassigned_ids: list[int] = []
        for entry in report.unassigned:
            if isinstance(entry, WarehouseTask) and entry.id is not None:
                unassigned_ids.append(entry.id)
            elif isinstance(entry, int) and not isinstance(entry, bool):
                unassigned_ids.append(entry)
        return BatchScheduleRead(
            assignments=report.assignments,
            unassigned_task_ids=unassigned_ids,
            statistics=report.statistics,
            recommendations=report.recommendations,
        )

    def _run_batch(
        self,
        session: Session,
        engine: _Engine,
        entries: list[Any],
        constraints: dict[str, Any],
        apply: bool,
    ) -> BatchScheduleRead:
        report = engine.batch.schedule_task_batch(entries, constraints)
        if apply:
            by_id = {entry.id: entry for entry in entries if isinstance(entry, WarehouseTask)}
            for assignment in report.assignments:
                self._apply_assignment(session, by_id[assignment.task_id], assignment)
            session.commit()
        return self._batch_read(report)

    def schedule_pending_tasks(self, payload: PendingScheduleRequest) -> BatchScheduleRead:
        with self._session() as session:
            engine = self._engine(session)
            pending: list[Any] = engine.tasks.find_pending_tasks(payload.limit)
            return self._run_batch(session, engine, pending, dict(payload.constraints), payload.apply)

    def schedule_task_batch(self, payload: BatchScheduleRequest) -> BatchScheduleRead:
        with self._session() as session:
            engine = self._engine(session)
            task_ids = list(dict.fromkeys(payload.task_ids))
            found = {task.id: task for task in engine.tasks.find_by_ids(task_ids)}
            # Unknown or non-pending ids stay raw so the scheduler reports them unassigned.
            entries: list[Any] = []
            for task_id in task_ids:
                task = found.get(task_id)
                entries.append(task if task is not None and task.status == TaskStatus.PENDING else task_id)
            return self._run_batch(session, engine, entries, dict(payload.constraints), payload.apply)

    def recalculate_priorities(self, payload: PriorityRecalculationRequest) -> PriorityRecalculationReport:
        with self._session() as session:
            engine = self._engine(session)
            report = engine.priority.recalculate_priorities(payload.model_dump())
            for change in report.priority_changes:
                event_bus.publish_dict(
                    "task.priority_changed",
                    {
                        "task_id": change.task_id,
                        "old_priority": change.old_priority,
                        "new_priority": change.new_priority,
                        "trigger_reason": report.trigger_reason,
                    },
                    session=session,
                )
            session.commit()
            return report

    def assign_worker_by_skill(self, task_id: int, payload: AssignBySkillRequest) -> Assignment | None:
        with self._session() as session:
            engine = self._engine(session)
            task = self._get_task(session, task_id)
            if payload.apply and task.status != TaskStatus.PENDING:
                raise ConflictError("only pending tasks can be assigned")
            assignment = engine.assignment.assign_worker_by_skill(task, payload.to_options())
            if assignment is not None and payload.apply:
                self._apply_assignment(session, task, assignment)
                session.commit()
            return assignment

    def handle_urgent_task(
        self,
        task_id: int,
        urgency_level: UrgencyLevel,
        workers: list[dict[str, Any]] | None = None,
    ) -> UrgentTaskResult:
        with self._session() as session:
            engine = self._engine(session)
            task = self._get_task(session, task_id)
            if task.status != TaskStatus.PENDING:
                raise ConflictError("only pending tasks can be escalated")
            result = engine.urgent.handle_urgent_task(task, urgency_level, workers)
            assignment = result.assignment_result
            if assignment is not None:
                self._apply_assignment(session, task, assignment)
                if assignment.assignment_type == AssignmentType.PREEMPTION:
                    event_bus.publish_dict(
                        "task.preempted",
                        {
                            "task_id": assignment.preempted_task_id,
                            "preempted_by": task.id,
                            "worker_id": assignment.worker_id,
                        },
                        session=session,
                    )
            session.commit()
            return result

    def get_queue_status(self) -> QueueSnapshot:
        with self._session() as session:
            return self._engine(session).monitor.get_queue_status()

    def analyze_optimization(self, criteria: dict[str, Any] | None = None) -> OptimizationReport:
        with self._session() as session:
            return self._engine(session).optimizer.analyze_optimization(criteria)

    def analyze_worker_performance(self, worker_id: int) -> WorkerPerformance:
        with self._session() as session:
            return self._engine(session).performance.analyze_worker_performance(worker_id)

    def get_worker_historical_performance(self, worker_id: int, task_type: TaskType) -> WorkerHistoricalPerformance:
        with self._session() as session:
            return self._engine(session).performance.get_worker_historical_performance(worker_id, task_type)

    def batch_reassign_tasks(self, payload: ReassignRequest) -> ReassignmentResult:
        with self._session() as session:
            engine = self._engine(session)
            constraints = dict(payload.constraints)
            source = engine.batch.worker_source(constraints)
            log = logger.bind(reason=payload.reason, task_count=len(payload.task_ids))
            log.info("batch reassignment started")

            new_assignments: list[Assignment] = []
            failed = 0
            for task in [engine.tasks.find_by_id(task_id) for task_id in payload.task_ids]:
                if task is None or (
                    task.status != TaskStatus.PENDING and not can_task_transition(task.status, TaskStatus.PENDING)
                ):
                    failed += 1
                    continue
                options = dict(constraints)
                previous_worker = task.assigned_worker
                if previous_worker is not None:
                    excluded = options.get("exclude_workers")
                    options["exclude_workers"] = [*(excluded if isinstance(excluded, list) else []), previous_worker]
                if task.status != TaskStatus.PENDING:
                    task.status = TaskStatus.PENDING
                    task.assigned_worker = None
                    task.assigned_at = None
                task.merge_data({"reassignment_reason": payload.reason})
                engine.tasks.save(task)

                assignment = engine.assignment.assign(task, source, options)
                if assignment is None:
                    failed += 1
                    continue
                self._apply_assignment(session, task, assignment)
                new_assignments.append(assignment)
            session.commit()

            delay = max((item.estimated_completion.estimated_minutes for item in new_assignments), default=0)
            if failed:
                delay = max(delay, int(STANDARD_QUEUE_START / timedelta(minutes=1)))
            log.bind(successful=len(new_assignments), failed=failed).info("batch reassignment completed")
            return ReassignmentResult(
                successful_reassignments=len(new_assignments),
                failed_reassignments=failed,
                new_assignments=new_assignments,
                estimated_delay=delay,
                reason=payload.reason,
            )
