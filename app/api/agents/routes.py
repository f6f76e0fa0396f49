"""
Agent administration routes.

Endpoints:
  POST   /api/agents                        — register an agent (queues onboarding)
  GET    /api/agents/{agent_id}             — agent with its schedule, window and buffer
  POST   /api/agents/{agent_id}/schedule    — turn auto-scheduling on or off
  POST   /api/agents/{agent_id}/deactivate  — deactivate; queued jobs become skips
  GET    /api/agents/{agent_id}/buffer      — content buffer status
"""
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException

from app.api.agents.schemas import AgentCreate, ScheduleToggle
from app.api.deps import get_engine
from app.models.agents import Agent
from app.models.jobs import JobType
from app.services.engine import Engine
from app.services.scheduling.cadence import active_window, resolve_profile

router = APIRouter(prefix="/api/agents", tags=["agents"])


def _get_agent_or_404(engine: Engine, agent_id: str) -> Agent:
    with engine.session() as db:
        agent = db.get(Agent, agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


@router.post("", status_code=201)
def create_agent(body: AgentCreate, engine: Engine = Depends(get_engine)):
    try:
        ZoneInfo(body.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(status_code=422, detail=f"Unknown timezone: {body.timezone}")

    fields = body.model_dump(exclude={"onboard", "enable_scheduling"})
    onboard_job = None
    with engine.session() as db:
        if db.query(Agent.id).filter(Agent.handle == body.handle).first():
            raise HTTPException(status_code=409, detail=f"Handle @{body.handle} is taken")
        agent = Agent(**fields)
        db.add(agent)
        db.flush()
        if body.onboard:
            onboard_job = engine.store.enqueue(
                JobType.ONBOARD_AGENT,
                agent.id,
                payload={"enable_scheduling": body.enable_scheduling},
                db=db,
            )

    if body.enable_scheduling and not body.onboard:
        agent = engine.agent_scheduler.enable_scheduling(agent.id)

    return {
        "agent": agent.to_dict(),
        "onboard_job_id": onboard_job.id if onboard_job else None,
    }


@router.get("/{agent_id}")
def get_agent(agent_id: str, engine: Engine = Depends(get_engine)):
    """Agent schedule view: cadence state, effective profile and window, buffer, recent jobs."""
    agent = _get_agent_or_404(engine, agent_id)
    window = active_window(agent)
    return {
        **agent.to_dict(),
        "traits": agent.traits,
        "effective_profile": resolve_profile(agent).value,
        "active_window": {
            "start_hour": window.start_hour,
            "end_hour": window.end_hour,
            "timezone": agent.timezone,
        },
        "buffer": engine.buffer.status(agent.id),
        "recent_jobs": [j.to_dict() for j in engine.store.list_jobs(agent_id=agent.id, limit=10)],
    }


@router.post("/{agent_id}/schedule")
def set_schedule(agent_id: str, body: ScheduleToggle, engine: Engine = Depends(get_engine)):
    try:
        if body.enabled:
            agent = engine.agent_scheduler.enable_scheduling(agent_id)
        else:
            agent = engine.agent_scheduler.disable_scheduling(agent_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent.to_dict()


@router.post("/{agent_id}/deactivate")
def deactivate_agent(agent_id: str, engine: Engine = Depends(get_engine)):
    agent = engine.agent_scheduler.deactivate(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent.to_dict()


@router.get("/{agent_id}/buffer")
def get_buffer(agent_id: str, engine: Engine = Depends(get_engine)):
    _get_agent_or_404(engine, agent_id)
    return engine.buffer.status(agent_id)
