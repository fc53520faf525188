from __future__ import annotations

from fastapi import FastAPI, HTTPException

from app.api.routers import scheduling, tasks, worker_skills
from app.infra.db import check_db_ready
from app.infra.logging import setup_logging

setup_logging()

app = FastAPI(
    title="warehouse-ops",
    description="Warehouse task scheduling: skill matching, priorities, urgent insertion and queue health.",
    version="0.1.0",
)

app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
app.include_router(worker_skills.router, prefix="/api/worker-skills", tags=["worker-skills"])
app.include_router(scheduling.router, prefix="/api/scheduling", tags=["scheduling"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
