from __future__ import annotations

import asyncio
import os
import time
from uuid import uuid4

import httpx


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    last_status = "n/a"
    last_body = ""
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
            last_body = response.text
        except httpx.HTTPError as exc:
            last_status = "http_error"
            last_body = str(exc)
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}, detail={last_body}")


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    # (worker_id, skill_category) is unique, so each run registers a fresh worker.
    worker_id = int(uuid4().int % 1_000_000) + 1_000_000

    timeout = httpx.Timeout(20.0)
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        for category in ("picking", "packing"):
            skill_resp = await client.post(
                "/api/worker-skills",
                json={
                    "worker_id": worker_id,
                    "worker_name": f"smoke-{worker_id}",
                    "skill_category": category,
                    "skill_level": 7,
                    "skill_score": 80,
                },
            )
            _assert_status(skill_resp, 201)

        task_resp = await client.post(
            "/api/tasks",
            json={"task_type": "outbound", "priority": 60, "details": {"sales_order_id": f"SO-{worker_id}"}},
        )
        _assert_status(task_resp, 201)
        task_id = task_resp.json()["id"]

        batch_resp = await client.post(
            "/api/scheduling/batch",
            json={"task_ids": [task_id], "apply": True},
        )
        _assert_status(batch_resp, 200)
        assigned = {item["task_id"] for item in batch_resp.json()["assignments"]}
        if task_id not in assigned:
            raise RuntimeError(f"smoke task was not assigned: {batch_resp.json()}")

        for target in ("in_progress", "completed"):
            transition_resp = await client.post(f"/api/tasks/{task_id}/transition", json={"target_status": target})
            _assert_status(transition_resp, 200)

        queue_resp = await client.get("/api/scheduling/queue")
        _assert_status(queue_resp, 200)
        if queue_resp.json()["queue_health"] not in {"healthy", "warning", "critical"}:
            raise RuntimeError(f"unexpected queue snapshot: {queue_resp.json()}")

        worker = batch_resp.json()["assignments"][0]["worker_id"]
        performance_resp = await client.get(f"/api/scheduling/workers/{worker}/performance")
        _assert_status(performance_resp, 200)

    print("verify_smoke: healthz/readyz + skills + batch assignment + transitions + queue ok")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
