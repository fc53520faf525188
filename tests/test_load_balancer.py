from __future__ import annotations

from app.domain.models import WorkerCandidate
from app.infra.config import SchedulingConfig
from app.services.load_balancer import WorkerLoadBalancer


def test_only_available_workers_under_the_cap_are_eligible() -> None:
    balancer = WorkerLoadBalancer()
    workers = [
        {"worker_id": 1, "current_workload": 3, "availability": "available"},
        {"worker_id": 2, "current_workload": 10, "availability": "available"},
        {"worker_id": 3, "current_workload": 0, "availability": "busy"},
        {"worker_id": 4, "current_workload": 9, "availability": "available"},
    ]
    eligible = balancer.filter_eligible_workers(workers)
    assert [worker.worker_id for worker in eligible] == [1, 4]


def test_constraint_overrides_configured_cap() -> None:
    balancer = WorkerLoadBalancer(SchedulingConfig(max_tasks_per_worker=10))
    workers = [
        {"worker_id": 1, "current_workload": 1, "availability": "available"},
        {"worker_id": 2, "current_workload": 2, "availability": "available"},
    ]
    eligible = balancer.filter_eligible_workers(workers, {"max_tasks_per_worker": 2})
    assert [worker.worker_id for worker in eligible] == [1]

    # non-positive or non-integer limits fall back to the configured cap
    assert len(balancer.filter_eligible_workers(workers, {"max_tasks_per_worker": 0})) == 2
    assert len(balancer.filter_eligible_workers(workers, {"max_tasks_per_worker": "2"})) == 2


def test_missing_fields_and_malformed_entries() -> None:
    balancer = WorkerLoadBalancer()
    workers = [
        {"worker_id": 1, "availability": "available"},
        {"worker_id": 2, "current_workload": "lots", "availability": "available"},
        {"worker_id": 3},
        {"current_workload": 0, "availability": "available"},
        "worker-5",
        None,
    ]
    eligible = balancer.filter_eligible_workers(workers)
    assert [worker.worker_id for worker in eligible] == [1, 2]
    assert all(worker.current_workload == 0 for worker in eligible)


def test_empty_and_candidate_inputs() -> None:
    balancer = WorkerLoadBalancer()
    assert balancer.filter_eligible_workers([]) == []
    assert balancer.filter_eligible_workers(None) == []

    candidate = WorkerCandidate(worker_id=9, availability="available", current_workload=2)
    assert balancer.filter_eligible_workers([candidate]) == [candidate]
