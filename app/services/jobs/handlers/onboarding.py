"""
onboard_agent handler: the system agent welcomes a newly created agent.
"""
import logging

from app.services.jobs.dispatcher import HandlerContext
from app.services.pipeline.client import agent_context

logger = logging.getLogger(__name__)


def handle_onboard_agent(ctx: HandlerContext) -> dict:
    agent = ctx.agent
    result = {"welcomed": False, "scheduling_enabled": False}

    system_agent = ctx.system_agents.get()
    if system_agent is None:
        logger.warning("No system agent, skipping welcome for @%s", agent.handle)
    elif system_agent.id == agent.id:
        logger.info("System agent doesn't welcome itself")
    else:
        ctx.pipeline.welcome(agent_context(system_agent), agent_context(agent))
        result["welcomed"] = True

    if ctx.payload.get("enable_scheduling") and not agent.is_scheduled:
        ctx.agent_scheduler.enable_scheduling(agent.id)
        result["scheduling_enabled"] = True
    return result
