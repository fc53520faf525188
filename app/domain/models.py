from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.domain.state_machine import TaskStatus
from app.domain.task_data import (
    CountDetails,
    OutboundDetails,
    TaskDetails,
    TaskSchedulingData,
    TransferDetails,
    parse_task_details,
)

PRIORITY_MIN = 1
PRIORITY_MAX = 100


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def clamp_priority(value: int | float) -> int:
    if math.isnan(value):
        return PRIORITY_MIN
    if math.isinf(value):
        return PRIORITY_MAX if value > 0 else PRIORITY_MIN
    return max(PRIORITY_MIN, min(PRIORITY_MAX, int(round(value))))


class TaskType(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    QUALITY = "quality"
    COUNT = "count"
    TRANSFER = "transfer"


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class WarehouseTask(SQLModel, table=True):
    __tablename__ = "warehouse_tasks"

    id: int | None = Field(default=None, primary_key=True)
    task_type: TaskType = Field(index=True)
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)
    priority: int = Field(default=PRIORITY_MIN, index=True)
    data: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    assigned_worker: int | None = Field(default=None, index=True)
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    location: str | None = Field(default=None, index=True)
    description: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)

    def set_priority(self, value: int | float) -> int:
        self.priority = clamp_priority(value)
        return self.priority

    def merge_data(self, updates: Mapping[str, Any]) -> None:
        # Reassign so the JSON column is flagged dirty.
        self.data = {**(self.data or {}), **updates}

    def scheduling(self) -> TaskSchedulingData:
        return TaskSchedulingData.from_data(self.data)

    def details(self) -> TaskDetails:
        return parse_task_details(TaskType(self.task_type).value, self.data)

    def zone(self) -> str | None:
        scheduling = self.scheduling()
        if scheduling.zone:
            return scheduling.zone
        details = self.details()
        if isinstance(details, OutboundDetails) and details.picking_zone:
            return details.picking_zone
        if isinstance(details, CountDetails) and details.zone_type:
            return details.zone_type
        if isinstance(details, TransferDetails) and details.from_location:
            return details.from_location
        return self.location


class WorkerSkill(SQLModel, table=True):
    __tablename__ = "worker_skills"
    __table_args__ = (
        UniqueConstraint("worker_id", "skill_category", name="uq_worker_skills_worker_category"),
    )

    id: int | None = Field(default=None, primary_key=True)
    worker_id: int = Field(index=True)
    worker_name: str
    skill_category: str = Field(index=True)
    skill_level: int = Field(default=1)
    skill_score: int = Field(default=0)
    certifications: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    certified_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool = Field(default=True, index=True)
    location: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)

    def to_record(self) -> SkillRecord:
        return SkillRecord(
            category=self.skill_category,
            level=self.skill_level,
            score=self.skill_score,
            certifications=dict(self.certifications or {}),
        )


class SkillRecord(BaseModel):
    category: str
    level: int = 1
    score: int = 0
    certifications: dict[str, Any] = PydanticField(default_factory=dict)

    @field_validator("level", mode="before")
    @classmethod
    def _clamp_level(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return 1
        return max(1, min(10, int(value)))

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return 0
        return max(0, min(100, int(value)))

    @field_validator("certifications", mode="before")
    @classmethod
    def _certification_map(cls, value: Any) -> dict[str, Any]:
        return dict(value) if isinstance(value, Mapping) else {}


class WorkerAvailability(StrEnum):
    AVAILABLE = "available"
    BUSY = "busy"


class WorkerCandidate(BaseModel):
    worker_id: int
    name: str = ""
    current_workload: int = 0
    availability: str | None = None
    skills: list[SkillRecord] = PydanticField(default_factory=list)
    location: str | None = None
    performance_score: float | None = None

    @field_validator("current_workload", mode="before")
    @classmethod
    def _lenient_workload(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            return 0
        return value

    @field_validator("availability", "location", mode="before")
    @classmethod
    def _lenient_text(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    @field_validator("name", mode="before")
    @classmethod
    def _lenient_name(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("performance_score", mode="before")
    @classmethod
    def _lenient_performance(cls, value: Any) -> float | None:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        return max(0.0, min(1.0, float(value)))

    @field_validator("skills", mode="before")
    @classmethod
    def _skill_records(cls, value: Any) -> list[Any]:
        if not isinstance(value, list | tuple):
            return []
        records: list[Any] = []
        for item in value:
            if isinstance(item, WorkerSkill):
                records.append(item.to_record())
            elif isinstance(item, SkillRecord | Mapping):
                records.append(item)
        return records

    @property
    def is_available(self) -> bool:
        return self.availability == WorkerAvailability.AVAILABLE

    @classmethod
    def coerce(cls, raw: Any) -> WorkerCandidate | None:
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, Mapping):
            return None
        try:
            return cls.model_validate(dict(raw))
        except ValidationError:
            return None


class AssignmentType(StrEnum):
    STANDARD = "standard"
    PREEMPTION = "preemption"


class EstimatedCompletion(BaseModel):
    estimated_minutes: int
    completion_time: datetime
    confidence_level: float


class SkillMatchDetail(BaseModel):
    category: str
    level: int
    score: int
    weight: float
    certification_bonus: float
    contribution: float


class SkillAnalysis(BaseModel):
    required_skills: list[str]
    worker_skills: list[str]
    match_details: list[SkillMatchDetail]


class Assignment(BaseModel):
    task_id: int | None
    worker_id: int
    worker_name: str
    match_score: float
    assignment_time: datetime = PydanticField(default_factory=now_utc)
    estimated_completion: EstimatedCompletion
    assignment_reason: str
    assignment_factors: dict[str, float] = PydanticField(default_factory=dict)
    assignment_type: AssignmentType = AssignmentType.STANDARD
    preempted_task_id: int | None = None
    skill_analysis: SkillAnalysis | None = None


class WorkerUtilization(BaseModel):
    assigned_tasks: int
    workload_before: int
    workload_after: int


class SchedulingStatistics(BaseModel):
    total_tasks: int = 0
    assigned_count: int = 0
    unassigned_count: int = 0
    assignment_rate: float = 0.0
    processing_time_ms: float = 0.0
    average_match_score: float = 0.0
    worker_utilization: dict[int, WorkerUtilization] = PydanticField(default_factory=dict)


class Recommendation(BaseModel):
    type: str
    description: str
    priority: str


class SchedulingRunReport(BaseModel):
    assignments: list[Assignment] = PydanticField(default_factory=list)
    unassigned: list[Any] = PydanticField(default_factory=list)
    statistics: SchedulingStatistics = PydanticField(default_factory=SchedulingStatistics)
    recommendations: list[Recommendation] = PydanticField(default_factory=list)


class PriorityChange(BaseModel):
    task_id: int | None
    old_priority: int
    new_priority: int
    change_delta: int
    task_type: str


class AffectedAssignments(BaseModel):
    reassignment_needed: bool = False
    affected_count: int = 0
    high_impact_changes: list[PriorityChange] = PydanticField(default_factory=list)


class PriorityDistribution(BaseModel):
    low: int = 0
    medium: int = 0
    high: int = 0


class PriorityRecalculationReport(BaseModel):
    updated_count: int
    priority_changes: list[PriorityChange]
    affected_assignments: AffectedAssignments
    trigger_reason: str
    recalculation_timestamp: datetime
    priority_distribution: PriorityDistribution
    total_analyzed: int


class UrgencyLevel(BaseModel):
    priority: int = PRIORITY_MAX
    max_delay_minutes: int = 60
    preempt_allowed: bool = False

    @field_validator("priority", mode="before")
    @classmethod
    def _lenient_priority(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return PRIORITY_MAX
        return clamp_priority(value)

    @field_validator("max_delay_minutes", mode="before")
    @classmethod
    def _lenient_delay(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            return 60
        return max(0, value)

    @field_validator("preempt_allowed", mode="before")
    @classmethod
    def _explicit_flag(cls, value: Any) -> bool:
        return value is True


class HandlingStrategy(StrEnum):
    IMMEDIATE_ASSIGNMENT = "immediate_assignment"
    IMMEDIATE_PREEMPTION = "immediate_preemption"
    PRIORITY_QUEUE = "priority_queue"
    STANDARD_QUEUE = "standard_queue"


class UrgentTaskResult(BaseModel):
    task_id: int | None
    priority_assigned: int
    assignment_result: Assignment | None
    estimated_start_time: datetime
    handling_strategy: HandlingStrategy


class QueueHealth(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class BottleneckType(StrEnum):
    SKILL_SHORTAGE = "skill_shortage"
    ZONE_CONGESTION = "zone_congestion"
    EQUIPMENT_SHORTAGE = "equipment_shortage"
    HIGH_WORKLOAD = "high_workload"


class ImpactLevel(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WorkerUtilizationSnapshot(BaseModel):
    total_workers: int
    active_workers: int
    utilization_rate: float
    average_workload: float


class WaitTimeSummary(BaseModel):
    average_minutes: float
    median_minutes: float
    max_minutes: float


class Bottleneck(BaseModel):
    type: BottleneckType
    description: str
    impact: ImpactLevel


class QueueSnapshot(BaseModel):
    pending_count: int
    active_count: int
    worker_utilization: WorkerUtilizationSnapshot
    average_wait_time: WaitTimeSummary
    bottlenecks: list[Bottleneck]
    queue_health: QueueHealth
    timestamp: datetime


class EfficiencyScore(BaseModel):
    overall: float
    completion_rate: float
    time_efficiency: float
    worker_utilization_score: float


class OptimizationSuggestion(BaseModel):
    type: str
    description: str
    priority: ImpactLevel
    estimated_impact: str


class WorkerResourceUsage(BaseModel):
    utilization_rate: float
    efficiency_score: float
    recommended_count: int
    current_count: int


class EquipmentUsage(BaseModel):
    utilization_rate: float
    bottleneck_equipment: str | None


class ZoneUsage(BaseModel):
    zone: str
    utilization: float
    tasks_per_hour: float


class ResourceUtilization(BaseModel):
    workers: WorkerResourceUsage
    equipment: EquipmentUsage
    zones: list[ZoneUsage]


class TrendDirection(StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class PeriodSummary(BaseModel):
    efficiency: float
    completion_time: float


class WeeklyComparison(BaseModel):
    """Current analysis window against the one before it.

    The ``this_week``/``last_week`` keys are kept for API compatibility; each
    period spans ``window_hours`` (24 unless the request sets ``time_range``).
    """

    this_week: PeriodSummary
    last_week: PeriodSummary
    change_pct: str
    window_hours: int


class PerformanceTrends(BaseModel):
    efficiency_trend: TrendDirection
    completion_time_trend: TrendDirection
    error_rate_trend: TrendDirection
    weekly_comparison: WeeklyComparison


class AnalysisPeriod(BaseModel):
    start: datetime
    end: datetime
    criteria: dict[str, Any]


class OptimizationReport(BaseModel):
    efficiency_score: EfficiencyScore
    optimization_suggestions: list[OptimizationSuggestion]
    resource_utilization: ResourceUtilization
    performance_trends: PerformanceTrends
    analysis_period: AnalysisPeriod


class WorkerPerformance(BaseModel):
    worker_id: int
    efficiency_score: float
    quality_score: float
    reliability_score: float
    overall_performance: float
    sample_size: int


class WorkerHistoricalPerformance(BaseModel):
    worker_id: int
    task_type: TaskType
    completion_rate: float
    average_time: float
    quality_score: float
    sample_size: int


class ReassignmentResult(BaseModel):
    successful_reassignments: int
    failed_reassignments: int
    new_assignments: list[Assignment]
    estimated_delay: int
    reason: str


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class WarehouseTaskCreate(BaseModel):
    task_type: TaskType
    priority: int = PydanticField(default=PRIORITY_MIN, ge=PRIORITY_MIN, le=PRIORITY_MAX)
    data: dict[str, Any] = PydanticField(default_factory=dict)
    details: dict[str, Any] | None = None
    location: str | None = None
    description: str | None = None
    notes: str | None = None


class WarehouseTaskRead(ORMReadModel):
    id: int
    task_type: TaskType
    status: TaskStatus
    priority: int
    data: dict[str, Any]
    assigned_worker: int | None
    assigned_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    location: str | None
    description: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class TaskTransitionRequest(BaseModel):
    target_status: TaskStatus
    note: str | None = None


class WorkerSkillCreate(BaseModel):
    worker_id: int
    worker_name: str
    skill_category: str
    skill_level: int = PydanticField(default=1, ge=1, le=10)
    skill_score: int = PydanticField(default=0, ge=0, le=100)
    certifications: dict[str, Any] = PydanticField(default_factory=dict)
    certified_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool = True
    location: str | None = None
    notes: str | None = None


class WorkerSkillRead(ORMReadModel):
    id: int
    worker_id: int
    worker_name: str
    skill_category: str
    skill_level: int
    skill_score: int
    certifications: dict[str, Any]
    certified_at: datetime | None
    expires_at: datetime | None
    is_active: bool
    location: str | None
    notes: str | None
    created_at: datetime


class BatchScheduleRequest(BaseModel):
    task_ids: list[int]
    constraints: dict[str, Any] = PydanticField(default_factory=dict)
    apply: bool = False


class PendingScheduleRequest(BaseModel):
    constraints: dict[str, Any] = PydanticField(default_factory=dict)
    limit: int = PydanticField(default=100, ge=1, le=1000)
    apply: bool = True


class BatchScheduleRead(BaseModel):
    assignments: list[Assignment]
    unassigned_task_ids: list[int]
    statistics: SchedulingStatistics
    recommendations: list[Recommendation]


class PriorityRecalculationRequest(BaseModel):
    trigger_reason: str = "manual"
    priority_factors: dict[str, Any] | None = None
    affected_zones: list[str] = PydanticField(default_factory=list)


class AssignBySkillRequest(BaseModel):
    exclude_workers: list[int] = PydanticField(default_factory=list)
    skill_weight: float | None = None
    workload_weight: float | None = None
    location_weight: float | None = None
    performance_weight: float | None = None
    apply: bool = False

    def to_options(self) -> dict[str, Any]:
        return self.model_dump(exclude={"apply"}, exclude_none=True)


class UrgentTaskRequest(UrgencyLevel):
    workers: list[dict[str, Any]] | None = None

    def to_urgency(self) -> UrgencyLevel:
        return UrgencyLevel.model_validate(self.model_dump(exclude={"workers"}))


class ReassignRequest(BaseModel):
    task_ids: list[int]
    reason: str
    constraints: dict[str, Any] = PydanticField(default_factory=dict)
