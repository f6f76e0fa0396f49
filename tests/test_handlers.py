"""
Handler tests, run through the real dispatcher so agent loading and
gating are part of every case.
"""
from datetime import timedelta

import pytest

from app.models.buffer import BufferEntry, BufferStatus
from app.models.jobs import JobType
from app.services.jobs.errors import InvalidPayloadError, is_permanent
from app.services.pipeline.client import ModerationRejected, PipelineError


def run_job(engine, job_type, agent_id=None, payload=None):
    """Enqueue one job, claim it and execute it. Returns the DispatchResult."""
    job = engine.store.enqueue(job_type, agent_id, payload=payload)
    [claimed] = engine.store.claim(1)
    assert claimed.id == job.id
    return engine.dispatcher.execute(claimed)


class TestGenerateContent:
    def test_uses_buffered_content_first(self, engine, pipeline, make_agent, session_factory):
        agent = make_agent()
        engine.fill_buffer()
        generated = len(pipeline.calls_to("/v1/generate"))

        dispatched = run_job(engine, JobType.GENERATE_CONTENT, agent.id)

        assert dispatched.result["source"] == "buffer"
        assert dispatched.result["post_id"] == "post-1"
        assert len(pipeline.calls_to("/v1/generate")) == generated
        with session_factory() as db:
            [entry] = db.query(BufferEntry).all()
            assert entry.status == BufferStatus.CONSUMED.value

    def test_generates_live_when_buffer_empty(self, engine, pipeline, make_agent):
        agent = make_agent()
        pipeline.responses["/v1/effects/select"] = {"effect": {"name": "vhs"}}

        dispatched = run_job(engine, JobType.GENERATE_CONTENT, agent.id)

        assert dispatched.result["source"] == "live"
        [generate_body] = pipeline.calls_to("/v1/generate")
        assert generate_body["effect"] == {"name": "vhs"}
        assert generate_body["agent"]["handle"] == agent.handle
        [post] = pipeline.calls_to("/v1/posts")
        assert post["agent_id"] == agent.id
        assert post["content"]["chosen_effect"] == {"name": "vhs"}

    def test_moderation_rejection_is_permanent(self, engine, pipeline, make_agent, load_agent, clock):
        agent = make_agent()
        pipeline.responses["/v1/moderate"] = {"approved": False, "reason": "off-topic"}

        with pytest.raises(ModerationRejected) as exc_info:
            run_job(engine, JobType.GENERATE_CONTENT, agent.id)

        assert is_permanent(exc_info.value)
        assert load_agent(agent.id).next_run_at == clock() + timedelta(minutes=30)

    def test_empty_generation_is_transient(self, engine, pipeline, make_agent):
        agent = make_agent()
        pipeline.responses["/v1/generate"] = {"content_body": ""}

        with pytest.raises(PipelineError) as exc_info:
            run_job(engine, JobType.GENERATE_CONTENT, agent.id)
        assert not is_permanent(exc_info.value)

    def test_success_schedules_next_run(self, engine, make_agent, load_agent, clock):
        agent = make_agent()
        dispatched = run_job(engine, JobType.GENERATE_CONTENT, agent.id)

        saved = load_agent(agent.id)
        assert saved.next_run_at > clock()
        assert dispatched.result["next_run_at"] == saved.next_run_at.isoformat()


class TestAgentCycle:
    def test_create_post_queues_content(self, engine, pipeline, make_agent, load_agent, clock):
        agent = make_agent(agent_mode="autonomous", cycle_cooldown_minutes=90)
        pipeline.responses["/v1/agents/decide"] = {"action": "create_post", "reasoning": "bored"}

        dispatched = run_job(engine, JobType.AGENT_CYCLE, agent.id)

        follow_up = engine.store.get(dispatched.result["follow_up_job_id"])
        assert follow_up.type == JobType.GENERATE_CONTENT.value
        assert follow_up.payload == {"source": "agent_cycle", "reasoning": "bored"}
        assert load_agent(agent.id).next_cycle_at == clock() + timedelta(minutes=90)

    def test_create_post_not_duplicated(self, engine, pipeline, make_agent):
        agent = make_agent(agent_mode="autonomous")
        engine.store.enqueue(JobType.GENERATE_CONTENT, agent.id, scheduled_for=engine.clock() + timedelta(hours=1))
        pipeline.responses["/v1/agents/decide"] = {"action": "create_post"}

        dispatched = run_job(engine, JobType.AGENT_CYCLE, agent.id)

        assert dispatched.result["follow_up_job_id"] is None
        assert len(engine.store.list_jobs(job_type="generate_content")) == 1

    @pytest.mark.parametrize("action,job_type,key", [
        ("respond_to_comment", JobType.RESPOND_TO_COMMENT, "comment_id"),
        ("respond_to_post", JobType.RESPOND_TO_POST, "post_id"),
    ])
    def test_reply_actions_carry_target(self, engine, pipeline, make_agent, action, job_type, key):
        agent = make_agent(agent_mode="autonomous")
        pipeline.responses["/v1/agents/decide"] = {"action": action, "target_id": "t-42"}

        dispatched = run_job(engine, JobType.AGENT_CYCLE, agent.id)

        follow_up = engine.store.get(dispatched.result["follow_up_job_id"])
        assert follow_up.type == job_type.value
        assert follow_up.payload[key] == "t-42"

    @pytest.mark.parametrize("decision", [
        {"action": "idle"},
        {"action": "respond_to_post"},
        {"action": "dance"},
        {},
    ])
    def test_no_follow_up(self, engine, pipeline, make_agent, decision):
        agent = make_agent(agent_mode="autonomous")
        pipeline.responses["/v1/agents/decide"] = decision

        dispatched = run_job(engine, JobType.AGENT_CYCLE, agent.id)

        assert dispatched.result["follow_up_job_id"] is None
        assert len(engine.store.list_jobs(agent_id=agent.id)) == 1

    def test_failed_decision_still_moves_cycle(self, engine, pipeline, make_agent, load_agent, clock):
        agent = make_agent(agent_mode="autonomous")
        pipeline.fail("/v1/agents/decide", PipelineError("pipeline returned 503", status_code=503))

        with pytest.raises(PipelineError):
            run_job(engine, JobType.AGENT_CYCLE, agent.id)
        assert load_agent(agent.id).next_cycle_at == clock() + timedelta(minutes=60)


class TestReplies:
    def test_respond_to_comment(self, engine, pipeline, make_agent):
        agent = make_agent()

        dispatched = run_job(engine, JobType.RESPOND_TO_COMMENT, agent.id, payload={"comment_id": "c-1"})

        assert dispatched.result == {"comment_id": "c-1", "post_id": "post-1"}
        [reply] = pipeline.calls_to("/v1/replies/comment")
        assert reply["comment_id"] == "c-1"
        [post] = pipeline.calls_to("/v1/posts")
        assert post["content"]["in_reply_to"] == {"comment_id": "c-1"}
        assert pipeline.calls_to("/v1/moderate")

    def test_replies_run_for_unscheduled_agents(self, engine, make_agent):
        agent = make_agent(is_scheduled=False)
        dispatched = run_job(engine, JobType.RESPOND_TO_POST, agent.id, payload={"post_id": "p-1"})
        assert not dispatched.skipped

    def test_missing_target_is_permanent(self, engine, make_agent):
        agent = make_agent()
        with pytest.raises(InvalidPayloadError):
            run_job(engine, JobType.RESPOND_TO_POST, agent.id, payload={})

    def test_missing_target_dead_letters(self, engine, make_agent):
        agent = make_agent()
        job = engine.store.enqueue(JobType.RESPOND_TO_COMMENT, agent.id)
        assert engine.tick().dead_lettered == 1
        assert engine.store.get(job.id).attempts == 1

    def test_empty_reply_is_retried(self, engine, pipeline, make_agent):
        agent = make_agent()
        pipeline.responses["/v1/replies/post"] = {}
        with pytest.raises(PipelineError) as exc_info:
            run_job(engine, JobType.RESPOND_TO_POST, agent.id, payload={"post_id": "p-1"})
        assert not is_permanent(exc_info.value)


class TestOnboarding:
    def test_welcome_and_enable(self, engine, pipeline, make_agent, load_agent):
        rudo = make_agent(handle="rudo", is_system=True)
        newbie = make_agent(is_scheduled=False)

        dispatched = run_job(engine, JobType.ONBOARD_AGENT, newbie.id, payload={"enable_scheduling": True})

        assert dispatched.result == {"welcomed": True, "scheduling_enabled": True}
        [call] = pipeline.calls_to("/v1/agents/welcome")
        assert call["agent"]["id"] == rudo.id
        assert call["new_agent"]["id"] == newbie.id
        saved = load_agent(newbie.id)
        assert saved.is_scheduled is True
        assert saved.next_run_at is not None

    def test_no_system_agent(self, engine, pipeline, make_agent):
        newbie = make_agent(is_scheduled=False)
        dispatched = run_job(engine, JobType.ONBOARD_AGENT, newbie.id)
        assert dispatched.result == {"welcomed": False, "scheduling_enabled": False}
        assert pipeline.calls == []

    def test_system_agent_does_not_welcome_itself(self, engine, pipeline, make_agent):
        rudo = make_agent(handle="rudo", is_system=True)
        dispatched = run_job(engine, JobType.ONBOARD_AGENT, rudo.id)
        assert dispatched.result["welcomed"] is False
        assert pipeline.calls_to("/v1/agents/welcome") == []


class TestSystemAgentLookup:
    def test_found_lazily_and_remembered(self, session_factory, make_agent):
        from app.services.system_agent import SystemAgentLookup

        lookup = SystemAgentLookup("rudo", session_factory)
        assert lookup.get() is None

        rudo = make_agent(handle="rudo")
        assert lookup.get().id == rudo.id

        with session_factory() as db:
            from app.models import Agent

            db.query(Agent).filter(Agent.id == rudo.id).update({"is_active": False})
            db.commit()
        assert lookup.get().id == rudo.id

        lookup.reset()
        assert lookup.get() is None

    def test_instances_do_not_share_state(self, session_factory, make_agent):
        from app.services.system_agent import SystemAgentLookup

        make_agent(handle="rudo")
        first = SystemAgentLookup("rudo", session_factory)
        second = SystemAgentLookup("someone-else", session_factory)
        assert first.get() is not None
        assert second.get() is None
