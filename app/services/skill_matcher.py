from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from app.domain.models import SkillMatchDetail, SkillRecord, TaskType, WarehouseTask, WorkerSkill
from app.infra.config import SPECIAL_REQUIREMENT_SKILLS, TASK_TYPE_SKILLS, SchedulingConfig

DEFAULT_WORKLOAD_CAP = 10


def calculate_workload_score(current_workload: Any, cap: int = DEFAULT_WORKLOAD_CAP) -> float:
    """Return ``1 - workload / cap``.

    Not clamped: a worker at or above the cap scores zero or less.
    """
    if isinstance(current_workload, bool) or not isinstance(current_workload, int | float):
        current_workload = 0
    if cap <= 0:
        cap = DEFAULT_WORKLOAD_CAP
    return 1.0 - float(current_workload) / float(cap)


def resolve_required_skills(task: WarehouseTask) -> list[str]:
    required = list(TASK_TYPE_SKILLS.get(TaskType(task.task_type).value, ()))
    scheduling = task.scheduling()
    for flag, category in SPECIAL_REQUIREMENT_SKILLS.items():
        if getattr(scheduling, flag):
            required.append(category)
    return list(dict.fromkeys(required))


def to_skill_records(worker_skills: Iterable[Any] | None) -> list[SkillRecord]:
    records: list[SkillRecord] = []
    for item in worker_skills or ():
        if isinstance(item, SkillRecord):
            records.append(item)
        elif isinstance(item, WorkerSkill):
            records.append(item.to_record())
        elif isinstance(item, Mapping) and isinstance(item.get("category"), str):
            records.append(SkillRecord.model_validate(dict(item)))
    return records


class WorkerSkillMatcher:
    def __init__(self, config: SchedulingConfig | None = None) -> None:
        self._config = config or SchedulingConfig()

    def category_weight(self, category: str) -> float:
        return float(self._config.skill_category_weights.get(category, 1.0))

    def best_records(
        self,
        required_skills: Sequence[str],
        worker_skills: Iterable[Any] | None,
    ) -> dict[str, SkillRecord]:
        by_category: dict[str, SkillRecord] = {}
        for record in to_skill_records(worker_skills):
            if record.category not in required_skills:
                continue
            current = by_category.get(record.category)
            if current is None or self._raw_contribution(record) > self._raw_contribution(current):
                by_category[record.category] = record
        return by_category

    def _raw_contribution(self, record: SkillRecord) -> float:
        bonus = self._config.certification_bonus if record.category in record.certifications else 0.0
        base = 0.5 * (record.level / 10) + 0.5 * (record.score / 100)
        return base * self.category_weight(record.category) + bonus

    def match_details(
        self,
        required_skills: Sequence[str],
        worker_skills: Iterable[Any] | None,
    ) -> list[SkillMatchDetail]:
        best = self.best_records(required_skills, worker_skills)
        details: list[SkillMatchDetail] = []
        for category in required_skills:
            record = best.get(category)
            if record is None:
                continue
            bonus = self._config.certification_bonus if category in record.certifications else 0.0
            details.append(
                SkillMatchDetail(
                    category=category,
                    level=record.level,
                    score=record.score,
                    weight=self.category_weight(category),
                    certification_bonus=bonus,
                    contribution=round(self._raw_contribution(record), 4),
                )
            )
        return details

    def calculate_skill_match(
        self,
        required_skills: Sequence[str],
        worker_skills: Iterable[Any] | None,
    ) -> float:
        required = list(dict.fromkeys(required_skills))
        if not required:
            return self._config.unconstrained_skill_score
        records = to_skill_records(worker_skills)
        if not records:
            return 0.0
        best = self.best_records(required, records)
        if not best:
            return 0.0
        total = sum(self._raw_contribution(record) for record in best.values())
        return max(0.0, min(1.0, total / len(required)))

    def best_level(self, required_skills: Sequence[str], worker_skills: Iterable[Any] | None) -> int:
        records = to_skill_records(worker_skills)
        if required_skills:
            records = [record for record in records if record.category in required_skills]
        if not records:
            return 1
        return max(record.level for record in records)
