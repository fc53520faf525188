from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from app.domain.models import WorkerCandidate
from app.infra.config import SchedulingConfig


class WorkerLoadBalancer:
    def __init__(self, config: SchedulingConfig | None = None) -> None:
        self._config = config or SchedulingConfig()

    def filter_eligible_workers(
        self,
        candidates: Iterable[Any] | None,
        constraints: Mapping[str, Any] | None = None,
    ) -> list[WorkerCandidate]:
        max_tasks = self._config.resolve_max_tasks(constraints)
        eligible: list[WorkerCandidate] = []
        for raw in candidates or ():
            candidate = WorkerCandidate.coerce(raw)
            if candidate is None or not candidate.is_available:
                continue
            if candidate.current_workload >= max_tasks:
                continue
            eligible.append(candidate)
        return eligible
