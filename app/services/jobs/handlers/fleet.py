"""
Fleet-level handlers. These act on all agents at once, not on one agent.
"""
from app.services.jobs.dispatcher import HandlerContext


def handle_crew_interaction(ctx: HandlerContext) -> dict:
    agent_ids = ctx.payload.get("agent_ids")
    return ctx.pipeline.crew_interact(agent_ids=agent_ids) or {}


def handle_recalculate_engagement(ctx: HandlerContext) -> dict:
    window_hours = int(ctx.payload.get("window_hours") or 24)
    return ctx.pipeline.recalculate_engagement(window_hours=window_hours) or {}
