"""
Internal trigger routes for external cron callers.

Endpoints (Authorization: Bearer $CRON_SECRET when set):
  POST   /api/internal/tick          — claim and process one batch
  POST   /api/internal/run           — enqueue due agents, then process one batch
  POST   /api/internal/enqueue-due   — enqueue due agents only
  POST   /api/internal/buffer/fill   — top up content buffers
  POST   /api/internal/buffer/sweep  — delete consumed and expired buffer entries
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_engine, require_cron_secret
from app.services.engine import Engine
from app.services.jobs.errors import StoreUnavailableError

router = APIRouter(
    prefix="/api/internal",
    tags=["internal"],
    dependencies=[Depends(require_cron_secret)],
)


@router.post("/tick")
def tick(max_jobs: Optional[int] = Query(None, ge=1, le=100), engine: Engine = Depends(get_engine)):
    try:
        return engine.tick(max_jobs).to_dict()
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/run")
def run(max_jobs: Optional[int] = Query(None, ge=1, le=100), engine: Engine = Depends(get_engine)):
    try:
        return engine.run_cycle(max_jobs)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/enqueue-due")
def enqueue_due(engine: Engine = Depends(get_engine)):
    return engine.enqueue_due_agents()


@router.post("/buffer/fill")
def fill_buffer(max_agents: Optional[int] = Query(None, ge=1, le=500), engine: Engine = Depends(get_engine)):
    return engine.fill_buffer(max_agents).to_dict()


@router.post("/buffer/sweep")
def sweep_buffer(engine: Engine = Depends(get_engine)):
    return {"deleted": engine.sweep_expired_buffer()}
