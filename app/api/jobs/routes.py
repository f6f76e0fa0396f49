"""
Job queue administration routes.

Endpoints:
  GET    /api/jobs/stats           — counts by status and open jobs by type
  GET    /api/jobs                 — list jobs (filter by status, type, agent)
  GET    /api/jobs/{job_id}        — single job
  POST   /api/jobs                 — enqueue a job manually
  POST   /api/jobs/{job_id}/retry  — re-enqueue a dead-lettered job
"""
from datetime import timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_engine
from app.api.jobs.schemas import JobCreate
from app.services.engine import Engine
from app.services.jobs.dispatcher import SOURCE_MANUAL

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("/stats")
def job_stats(engine: Engine = Depends(get_engine)):
    return engine.store.counts()


@router.get("")
def list_jobs(
    status: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    agent_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    engine: Engine = Depends(get_engine),
):
    try:
        jobs = engine.store.list_jobs(status=status, job_type=type, agent_id=agent_id, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"jobs": [j.to_dict() for j in jobs], "count": len(jobs)}


@router.get("/{job_id}")
def get_job(job_id: str, engine: Engine = Depends(get_engine)):
    job = engine.store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_dict()


@router.post("", status_code=201)
def enqueue_job(body: JobCreate, engine: Engine = Depends(get_engine)):
    scheduled_for = body.scheduled_for
    if scheduled_for is not None and scheduled_for.tzinfo is not None:
        scheduled_for = scheduled_for.astimezone(timezone.utc).replace(tzinfo=None)

    payload = {**body.payload, "source": SOURCE_MANUAL}
    try:
        job = engine.store.enqueue(
            body.type,
            agent_id=body.agent_id,
            payload=payload,
            scheduled_for=scheduled_for,
            max_attempts=body.max_attempts,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return job.to_dict()


@router.post("/{job_id}/retry", status_code=201)
def retry_job(job_id: str, engine: Engine = Depends(get_engine)):
    job = engine.store.retry_dead_letter(job_id)
    if job is None:
        raise HTTPException(status_code=409, detail="Only dead-lettered jobs can be retried")
    return job.to_dict()
