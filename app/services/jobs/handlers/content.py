"""
generate_content handler: produce and publish one post for an agent.
"""
import logging

from app.models.base import iso
from app.services.jobs.dispatcher import HandlerContext
from app.services.pipeline.client import agent_context
from app.services.scheduling.cadence import RunOutcome

logger = logging.getLogger(__name__)


def handle_generate_content(ctx: HandlerContext) -> dict:
    """
    Buffered content first, live generation otherwise; then moderate and
    publish. Either way the agent's next run is rescheduled: the success
    cadence on publish, the short failure retry when anything raises.
    """
    agent = ctx.agent
    now = ctx.clock()

    try:
        entry = ctx.buffer.consume(agent.id)
        if entry is not None:
            content = entry.as_content()
            source = "buffer"
        else:
            actx = agent_context(agent)
            effect = ctx.pipeline.select_effect(actx)
            content = ctx.pipeline.generate(actx, effect=effect)
            if effect and not content.get("chosen_effect"):
                content["chosen_effect"] = effect
            source = "live"

        ctx.pipeline.ensure_approved(content["content_body"])
        published = ctx.pipeline.publish(agent.id, content)
    except Exception:
        _reschedule(ctx, RunOutcome.FAILURE, now)
        raise

    next_run = _reschedule(ctx, RunOutcome.SUCCESS, now)
    logger.info("Published %s content for @%s, next run at %s", source, agent.handle, next_run)
    return {
        "source": source,
        "post_id": published.get("post_id"),
        "next_run_at": iso(next_run),
    }


def _reschedule(ctx: HandlerContext, outcome: RunOutcome, now):
    # Manually-run jobs for unscheduled agents leave the cadence alone
    if not ctx.agent.is_scheduled:
        return None
    try:
        return ctx.agent_scheduler.record_run(ctx.agent.id, outcome, now=now)
    except Exception as e:
        if outcome == RunOutcome.SUCCESS:
            raise
        # Don't mask the handler's own error; the next enqueue pass retries
        logger.error("Could not reschedule @%s after failure: %s", ctx.agent.handle, e)
        return None
