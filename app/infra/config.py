from __future__ import annotations

import math
import os
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_JSON = os.getenv("LOG_JSON", "0").strip().lower() in {"1", "true", "yes", "on"}

DEFAULT_SKILL_CATEGORY_WEIGHTS: dict[str, float] = {
    "picking": 1.0,
    "packing": 0.9,
    "receiving": 1.0,
    "quality": 1.2,
    "counting": 0.8,
    "equipment": 1.1,
    "hazardous": 1.5,
    "cold_storage": 1.3,
}

TASK_TYPE_SKILLS: dict[str, tuple[str, ...]] = {
    "inbound": ("receiving",),
    "outbound": ("picking", "packing"),
    "quality": ("quality",),
    "count": ("counting",),
    "transfer": (),
}

SPECIAL_REQUIREMENT_SKILLS: dict[str, str] = {
    "requires_quality_check": "quality",
    "hazardous": "hazardous",
    "cold_storage": "cold_storage",
}

TASK_TYPE_PRIORITY_MULTIPLIERS: dict[str, float] = {
    "quality": 1.2,
    "outbound": 1.1,
    "inbound": 1.0,
    "count": 0.9,
    "transfer": 0.8,
}


def coerce_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def coerce_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _env_float(name: str, default: float) -> float:
    parsed = coerce_float(os.getenv(name, "").strip() or None)
    return default if parsed is None else parsed


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class AssignmentWeights(BaseModel):
    skill: float = 0.5
    workload: float = 0.2
    location: float = 0.15
    performance: float = 0.15

    def with_overrides(self, options: Mapping[str, Any] | None) -> AssignmentWeights:
        if not options:
            return self
        updates: dict[str, float] = {}
        for field in type(self).model_fields:
            parsed = coerce_float(options.get(f"{field}_weight"))
            if parsed is not None:
                updates[field] = parsed
        return self.model_copy(update=updates) if updates else self


class PriorityWeights(BaseModel):
    urgency: float = 0.3
    customer_tier: float = 0.2
    deadline_proximity: float = 0.25
    resource_availability: float = 0.15
    business_impact: float = 0.1

    def with_overrides(self, factors: Mapping[str, Any] | None) -> PriorityWeights:
        if not factors:
            return self
        updates: dict[str, float] = {}
        for field in type(self).model_fields:
            parsed = coerce_float(factors.get(field))
            if parsed is not None:
                updates[field] = parsed
        return self.model_copy(update=updates) if updates else self


class QueueThresholds(BaseModel):
    warning: int = 20
    critical: int = 50


class SchedulingConfig(BaseModel):
    max_tasks_per_worker: int = 10
    workload_cap: int = 10
    assignment_weights: AssignmentWeights = PydanticField(default_factory=AssignmentWeights)
    priority_weights: PriorityWeights = PydanticField(default_factory=PriorityWeights)
    queue_thresholds: QueueThresholds = PydanticField(default_factory=QueueThresholds)
    skill_category_weights: dict[str, float] = PydanticField(
        default_factory=lambda: dict(DEFAULT_SKILL_CATEGORY_WEIGHTS)
    )
    certification_bonus: float = 0.15
    unconstrained_skill_score: float = 0.8
    default_performance_score: float = 0.7
    unassigned_rate_trigger: float = 0.3
    high_impact_delta: int = 20
    priority_low_max: int = 33
    priority_high_min: int = 67
    pending_recalculation_limit: int = 100
    base_completion_minutes: int = 60
    completion_confidence: float = 0.75
    zone_congestion_threshold: int = 10

    def resolve_max_tasks(self, constraints: Mapping[str, Any] | None) -> int:
        value = coerce_int((constraints or {}).get("max_tasks_per_worker"))
        if value is None or value <= 0:
            return self.max_tasks_per_worker
        return value


def load_scheduling_config() -> SchedulingConfig:
    return SchedulingConfig(
        max_tasks_per_worker=_env_int("WMS_MAX_TASKS_PER_WORKER", 10),
        assignment_weights=AssignmentWeights(
            skill=_env_float("WMS_SKILL_MATCH_WEIGHT", 0.5),
            workload=_env_float("WMS_WORKLOAD_WEIGHT", 0.2),
            location=_env_float("WMS_LOCATION_WEIGHT", 0.15),
            performance=_env_float("WMS_PERFORMANCE_WEIGHT", 0.15),
        ),
        priority_weights=PriorityWeights(
            urgency=_env_float("WMS_URGENCY_WEIGHT", 0.3),
            customer_tier=_env_float("WMS_CUSTOMER_TIER_WEIGHT", 0.2),
            deadline_proximity=_env_float("WMS_DEADLINE_WEIGHT", 0.25),
            resource_availability=_env_float("WMS_RESOURCE_WEIGHT", 0.15),
            business_impact=_env_float("WMS_BUSINESS_IMPACT_WEIGHT", 0.1),
        ),
        queue_thresholds=QueueThresholds(
            warning=_env_int("WMS_QUEUE_WARNING_THRESHOLD", 20),
            critical=_env_int("WMS_QUEUE_CRITICAL_THRESHOLD", 50),
        ),
        unassigned_rate_trigger=_env_float("WMS_UNASSIGNED_RATE_TRIGGER", 0.3),
        high_impact_delta=_env_int("WMS_HIGH_IMPACT_DELTA", 20),
    )


@lru_cache(maxsize=1)
def get_scheduling_config() -> SchedulingConfig:
    return load_scheduling_config()
