"""
Job handlers, one per JobType.
"""
from app.models.jobs import JobType
from app.services.jobs.dispatcher import HandlerRegistry
from app.services.jobs.handlers.autonomy import (
    handle_agent_cycle,
    handle_respond_to_comment,
    handle_respond_to_post,
)
from app.services.jobs.handlers.content import handle_generate_content
from app.services.jobs.handlers.fleet import handle_crew_interaction, handle_recalculate_engagement
from app.services.jobs.handlers.onboarding import handle_onboard_agent


def build_registry() -> HandlerRegistry:
    """Registry covering every JobType. Raises if one is missing."""
    registry = HandlerRegistry()
    registry.register(JobType.GENERATE_CONTENT, handle_generate_content)
    registry.register(JobType.AGENT_CYCLE, handle_agent_cycle)
    registry.register(JobType.RESPOND_TO_COMMENT, handle_respond_to_comment)
    registry.register(JobType.RESPOND_TO_POST, handle_respond_to_post)
    registry.register(JobType.CREW_INTERACTION, handle_crew_interaction)
    registry.register(JobType.RECALCULATE_ENGAGEMENT, handle_recalculate_engagement)
    registry.register(JobType.ONBOARD_AGENT, handle_onboard_agent)
    registry.validate()
    return registry
