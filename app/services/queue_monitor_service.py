from __future__ import annotations

import statistics
from collections import Counter
from datetime import datetime

from app.domain.models import (
    Bottleneck,
    BottleneckType,
    ImpactLevel,
    QueueHealth,
    QueueSnapshot,
    WaitTimeSummary,
    WarehouseTask,
    WorkerUtilizationSnapshot,
    as_utc,
    now_utc,
)
from app.domain.state_machine import TaskStatus
from app.infra.config import SchedulingConfig
from app.infra.stores import TaskStore, WorkerSkillStore
from app.services.skill_matcher import resolve_required_skills


class SchedulingQueueMonitor:
    def __init__(
        self,
        task_store: TaskStore,
        skill_store: WorkerSkillStore | None = None,
        config: SchedulingConfig | None = None,
    ) -> None:
        self._task_store = task_store
        self._skill_store = skill_store
        self._config = config or SchedulingConfig()

    def classify_health(self, pending_count: int) -> QueueHealth:
        thresholds = self._config.queue_thresholds
        if pending_count >= thresholds.critical:
            return QueueHealth.CRITICAL
        if pending_count >= thresholds.warning:
            return QueueHealth.WARNING
        return QueueHealth.HEALTHY

    def get_queue_status(self, now: datetime | None = None) -> QueueSnapshot:
        now = now or now_utc()
        counts = self._task_store.get_task_statistics()
        pending_count = counts.get(TaskStatus.PENDING.value, 0)
        active_count = counts.get(TaskStatus.ASSIGNED.value, 0) + counts.get(TaskStatus.IN_PROGRESS.value, 0)

        pending = self._task_store.find_pending_tasks()
        utilization = self.worker_utilization()
        return QueueSnapshot(
            pending_count=pending_count,
            active_count=active_count,
            worker_utilization=utilization,
            average_wait_time=self._wait_times(pending, now),
            bottlenecks=self._bottlenecks(pending, utilization),
            queue_health=self.classify_health(pending_count),
            timestamp=now,
        )

    def worker_utilization(self) -> WorkerUtilizationSnapshot:
        workloads = self._task_store.active_workload_by_worker()
        known = set(self._skill_store.list_active_worker_ids()) if self._skill_store is not None else set()
        workers = known | set(workloads)
        total = len(workers)
        if total == 0:
            return WorkerUtilizationSnapshot(
                total_workers=0,
                active_workers=0,
                utilization_rate=0.0,
                average_workload=0.0,
            )
        active = sum(1 for worker_id in workers if workloads.get(worker_id, 0) > 0)
        return WorkerUtilizationSnapshot(
            total_workers=total,
            active_workers=active,
            utilization_rate=round(active / total, 3),
            average_workload=round(sum(workloads.values()) / total, 2),
        )

    @staticmethod
    def _wait_times(pending: list[WarehouseTask], now: datetime) -> WaitTimeSummary:
        waits = [max(0.0, (now - as_utc(task.created_at)).total_seconds() / 60) for task in pending]
        if not waits:
            return WaitTimeSummary(average_minutes=0.0, median_minutes=0.0, max_minutes=0.0)
        return WaitTimeSummary(
            average_minutes=round(statistics.fmean(waits), 1),
            median_minutes=round(statistics.median(waits), 1),
            max_minutes=round(max(waits), 1),
        )

    def _bottlenecks(
        self,
        pending: list[WarehouseTask],
        utilization: WorkerUtilizationSnapshot,
    ) -> list[Bottleneck]:
        bottlenecks: list[Bottleneck] = []
        bottlenecks.extend(self._skill_shortages(pending))

        threshold = self._config.zone_congestion_threshold
        zones = Counter(zone for zone in (task.zone() for task in pending) if zone)
        for zone, count in sorted(zones.items()):
            if count < threshold:
                continue
            bottlenecks.append(
                Bottleneck(
                    type=BottleneckType.ZONE_CONGESTION,
                    description=f"{count} pending tasks queued in zone {zone}",
                    impact=ImpactLevel.HIGH if count >= threshold * 2 else ImpactLevel.MEDIUM,
                )
            )

        equipment_demand = sum(1 for task in pending if task.scheduling().notes.get("required_equipment"))
        if equipment_demand and self._skilled_workers("equipment") == 0:
            bottlenecks.append(
                Bottleneck(
                    type=BottleneckType.EQUIPMENT_SHORTAGE,
                    description=f"{equipment_demand} pending tasks need equipment operators and none are active",
                    impact=ImpactLevel.HIGH,
                )
            )

        cap = self._config.max_tasks_per_worker
        if utilization.total_workers and utilization.average_workload >= cap * 0.8:
            bottlenecks.append(
                Bottleneck(
                    type=BottleneckType.HIGH_WORKLOAD,
                    description=f"average workload {utilization.average_workload} is close to the cap of {cap}",
                    impact=ImpactLevel.HIGH,
                )
            )
        elif utilization.utilization_rate > 0.9:
            bottlenecks.append(
                Bottleneck(
                    type=BottleneckType.HIGH_WORKLOAD,
                    description=f"{utilization.active_workers} of {utilization.total_workers} workers are busy",
                    impact=ImpactLevel.MEDIUM,
                )
            )
        return bottlenecks

    def _skilled_workers(self, category: str) -> int:
        if self._skill_store is None:
            return 0
        return len({record.worker_id for record in self._skill_store.find_active_by_category(category)})

    def _skill_shortages(self, pending: list[WarehouseTask]) -> list[Bottleneck]:
        if self._skill_store is None:
            return []
        demand: Counter[str] = Counter()
        for task in pending:
            demand.update(resolve_required_skills(task))
        shortages: list[Bottleneck] = []
        for category, count in sorted(demand.items()):
            supply = self._skilled_workers(category)
            if supply == 0:
                impact = ImpactLevel.HIGH
            elif count > supply * self._config.max_tasks_per_worker:
                impact = ImpactLevel.MEDIUM
            elif count > supply * 2:
                impact = ImpactLevel.LOW
            else:
                continue
            shortages.append(
                Bottleneck(
                    type=BottleneckType.SKILL_SHORTAGE,
                    description=f"{count} pending tasks need {category} and {supply} workers hold that skill",
                    impact=impact,
                )
            )
        return shortages
