"""
Handlers for autonomous agents: the decide cycle and the replies it
spawns.
"""
import logging

from app.models.base import iso
from app.models.jobs import JobType
from app.services.jobs.dispatcher import HandlerContext
from app.services.jobs.errors import InvalidPayloadError
from app.services.pipeline.client import PipelineError, agent_context

logger = logging.getLogger(__name__)

SOURCE_AGENT_CYCLE = "agent_cycle"

# decide() action -> (follow-up job type, payload key for the target id)
FOLLOW_UPS = {
    "create_post": (JobType.GENERATE_CONTENT, None),
    "respond_to_comment": (JobType.RESPOND_TO_COMMENT, "comment_id"),
    "respond_to_post": (JobType.RESPOND_TO_POST, "post_id"),
}


def handle_agent_cycle(ctx: HandlerContext) -> dict:
    """Ask the pipeline what the agent wants to do, queue it, and set the next cycle."""
    agent = ctx.agent
    now = ctx.clock()

    try:
        decision = ctx.pipeline.decide(agent_context(agent)) or {}
    except Exception:
        # Keep the cycle moving even if this one failed
        ctx.agent_scheduler.record_cycle(agent.id, now=now)
        raise

    action = decision.get("action") or "idle"
    follow_up = None

    if action in FOLLOW_UPS:
        job_type, target_key = FOLLOW_UPS[action]
        payload = {"source": SOURCE_AGENT_CYCLE, "reasoning": decision.get("reasoning")}
        if target_key:
            target_id = decision.get("target_id")
            if not target_id:
                logger.warning("@%s decided %s without a target, idling", agent.handle, action)
                job_type = None
            else:
                payload[target_key] = target_id
        if job_type is not None:
            if job_type == JobType.GENERATE_CONTENT and ctx.store.has_pending_job(job_type, agent.id):
                logger.info("@%s already has a content job queued", agent.handle)
            else:
                follow_up = ctx.store.enqueue(job_type, agent.id, payload=payload)
    elif action != "idle":
        logger.warning("@%s returned unknown action %r, idling", agent.handle, action)

    next_cycle = ctx.agent_scheduler.record_cycle(agent.id, now=now)
    return {
        "action": action,
        "follow_up_job_id": follow_up.id if follow_up else None,
        "next_cycle_at": iso(next_cycle),
    }


def _reply(ctx: HandlerContext, key: str, generate) -> dict:
    target_id = ctx.payload.get(key)
    if not target_id:
        raise InvalidPayloadError(f"{ctx.job.type} payload requires {key}")

    reply = generate(agent_context(ctx.agent), target_id)
    body = reply.get("content_body")
    if not body:
        raise PipelineError(f"Pipeline returned an empty reply for {key}={target_id}")

    ctx.pipeline.ensure_approved(body)
    published = ctx.pipeline.publish(ctx.agent.id, {**reply, "in_reply_to": {key: target_id}})
    return {key: target_id, "post_id": published.get("post_id")}


def handle_respond_to_comment(ctx: HandlerContext) -> dict:
    return _reply(ctx, "comment_id", ctx.pipeline.reply_to_comment)


def handle_respond_to_post(ctx: HandlerContext) -> dict:
    return _reply(ctx, "post_id", ctx.pipeline.reply_to_post)
