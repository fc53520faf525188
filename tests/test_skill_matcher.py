from __future__ import annotations

import pytest

from app.domain.models import SkillRecord, TaskType, WarehouseTask, WorkerSkill
from app.infra.config import SchedulingConfig
from app.services.skill_matcher import (
    WorkerSkillMatcher,
    calculate_workload_score,
    resolve_required_skills,
    to_skill_records,
)


def _skill(category: str, level: int, score: int, **certifications: str) -> dict:
    return {"category": category, "level": level, "score": score, "certifications": certifications}


def test_no_required_skills_yields_unconstrained_score() -> None:
    matcher = WorkerSkillMatcher()
    assert matcher.calculate_skill_match([], [_skill("picking", 5, 50)]) == pytest.approx(0.8)
    assert matcher.calculate_skill_match([], []) == pytest.approx(0.8)


def test_missing_or_unrelated_skills_score_zero() -> None:
    matcher = WorkerSkillMatcher()
    assert matcher.calculate_skill_match(["picking"], []) == 0.0
    assert matcher.calculate_skill_match(["picking"], None) == 0.0
    assert matcher.calculate_skill_match(["picking"], [_skill("counting", 10, 100)]) == 0.0


def test_single_skill_contribution_uses_level_score_and_weight() -> None:
    matcher = WorkerSkillMatcher()
    assert matcher.calculate_skill_match(["picking"], [_skill("picking", 8, 90)]) == pytest.approx(0.85)
    # packing weighs 0.9
    assert matcher.calculate_skill_match(["packing"], [_skill("packing", 10, 100)]) == pytest.approx(0.9)


def test_partial_coverage_is_averaged_over_all_required_skills() -> None:
    matcher = WorkerSkillMatcher()
    score = matcher.calculate_skill_match(["picking", "packing"], [_skill("picking", 8, 90)])
    assert score == pytest.approx(0.425)


def test_certification_bonus_and_clamp_to_one() -> None:
    matcher = WorkerSkillMatcher()
    plain = matcher.calculate_skill_match(["counting"], [_skill("counting", 5, 50)])
    certified = matcher.calculate_skill_match(["counting"], [_skill("counting", 5, 50, counting="iso")])
    assert plain == pytest.approx(0.4)
    assert certified == pytest.approx(0.55)

    capped = matcher.calculate_skill_match(["quality"], [_skill("quality", 10, 100, quality="iso")])
    assert capped == 1.0


def test_best_record_per_category_wins() -> None:
    matcher = WorkerSkillMatcher()
    records = [_skill("picking", 2, 10), _skill("picking", 9, 80)]
    assert matcher.calculate_skill_match(["picking"], records) == pytest.approx(0.85)


def test_custom_category_weights_come_from_config() -> None:
    config = SchedulingConfig(skill_category_weights={"picking": 0.5})
    matcher = WorkerSkillMatcher(config)
    assert matcher.calculate_skill_match(["picking"], [_skill("picking", 10, 100)]) == pytest.approx(0.5)
    # unknown categories weigh 1.0
    assert matcher.category_weight("forklift") == 1.0


def test_match_details_report_each_covered_category() -> None:
    matcher = WorkerSkillMatcher()
    details = matcher.match_details(
        ["picking", "packing"],
        [_skill("picking", 6, 40, picking="cert-1"), _skill("receiving", 9, 90)],
    )
    assert [item.category for item in details] == ["picking"]
    assert details[0].certification_bonus == pytest.approx(0.15)
    assert details[0].contribution == pytest.approx(0.65)


def test_best_level_defaults_to_one() -> None:
    matcher = WorkerSkillMatcher()
    records = [_skill("picking", 7, 10), _skill("packing", 9, 10)]
    assert matcher.best_level(["picking"], records) == 7
    assert matcher.best_level(["quality"], records) == 1
    assert matcher.best_level([], records) == 9


def test_workload_score_is_linear_and_unclamped() -> None:
    assert calculate_workload_score(0) == 1.0
    assert calculate_workload_score(5) == pytest.approx(0.5)
    assert calculate_workload_score(10) == pytest.approx(0.0)
    assert calculate_workload_score(12) == pytest.approx(-0.2)


def test_workload_score_tolerates_bad_input() -> None:
    assert calculate_workload_score("busy") == 1.0
    assert calculate_workload_score(None) == 1.0
    assert calculate_workload_score(True) == 1.0
    assert calculate_workload_score(5, cap=0) == pytest.approx(0.5)


def test_required_skills_follow_task_type_and_flags() -> None:
    outbound = WarehouseTask(id=1, task_type=TaskType.OUTBOUND, data={"hazardous": True})
    transfer = WarehouseTask(id=2, task_type=TaskType.TRANSFER, data={"requires_quality_check": True})
    quality = WarehouseTask(id=3, task_type=TaskType.QUALITY, data={"requires_quality_check": True})
    counting = WarehouseTask(id=4, task_type=TaskType.COUNT, data={"cold_storage": "yes"})

    assert resolve_required_skills(outbound) == ["picking", "packing", "hazardous"]
    assert resolve_required_skills(transfer) == ["quality"]
    assert resolve_required_skills(quality) == ["quality"]
    assert resolve_required_skills(counting) == ["counting"]
    assert resolve_required_skills(WarehouseTask(id=5, task_type=TaskType.TRANSFER)) == []


def test_skill_records_accept_rows_models_and_mappings() -> None:
    row = WorkerSkill(worker_id=1, worker_name="Ana", skill_category="picking", skill_level=4, skill_score=70)
    records = to_skill_records(
        [
            row,
            SkillRecord(category="packing", level=3),
            {"category": "quality", "level": 42, "score": -5},
            {"level": 5},
            "picking",
        ]
    )
    assert [record.category for record in records] == ["picking", "packing", "quality"]
    assert records[2].level == 10
    assert records[2].score == 0
