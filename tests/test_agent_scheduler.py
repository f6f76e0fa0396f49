"""
Agent scheduling tests: the on/off switch, the due-agent enqueue pass and
persisting run outcomes.
"""
from datetime import timedelta

import pytest

from app.models.jobs import JobStatus, JobType
from app.services.scheduling.cadence import RunOutcome


@pytest.fixture
def scheduler(engine):
    return engine.agent_scheduler


class TestEnableDisable:
    def test_enable_sets_first_run_in_window(self, scheduler, engine, make_agent, clock):
        agent = make_agent(is_scheduled=False)

        enabled = scheduler.enable_scheduling(agent.id)

        assert enabled.is_scheduled is True
        assert enabled.next_run_at > clock()
        assert engine.cadence.in_window(enabled, enabled.next_run_at)
        assert enabled.next_cycle_at is None

    def test_enable_autonomous_agent_cycles_immediately(self, scheduler, make_agent, clock):
        agent = make_agent(is_scheduled=False, agent_mode="autonomous")
        assert scheduler.enable_scheduling(agent.id).next_cycle_at == clock()

    def test_enable_unknown_agent(self, scheduler):
        assert scheduler.enable_scheduling("nobody") is None

    def test_enable_deactivated_agent_refused(self, scheduler, make_agent, load_agent):
        agent = make_agent(is_scheduled=False, is_active=False)
        with pytest.raises(ValueError, match="deactivated"):
            scheduler.enable_scheduling(agent.id)
        assert load_agent(agent.id).is_scheduled is False

    def test_disable_clears_next_runs(self, scheduler, make_agent, clock):
        agent = make_agent(next_run_at=clock(), next_cycle_at=clock())
        disabled = scheduler.disable_scheduling(agent.id)
        assert disabled.is_scheduled is False
        assert disabled.next_run_at is None
        assert disabled.next_cycle_at is None

    def test_deactivate_takes_agent_off_schedule(self, scheduler, engine, make_agent, load_agent, clock):
        agent = make_agent(next_run_at=clock() - timedelta(minutes=1), next_cycle_at=clock())

        deactivated = scheduler.deactivate(agent.id)

        assert deactivated.is_active is False
        assert deactivated.deactivated_at == clock()
        stored = load_agent(agent.id)
        assert (stored.is_scheduled, stored.next_run_at, stored.next_cycle_at) == (False, None, None)
        assert engine.enqueue_due_agents()["content"] == 0
        with pytest.raises(ValueError, match="deactivated"):
            scheduler.enable_scheduling(agent.id)

    def test_deactivate_unknown_agent(self, scheduler):
        assert scheduler.deactivate("nobody") is None

    def test_disable_leaves_queued_jobs_to_be_skipped(self, scheduler, engine, make_agent, clock):
        agent = make_agent(next_run_at=clock() - timedelta(minutes=1))
        engine.enqueue_due_agents()
        scheduler.disable_scheduling(agent.id)

        result = engine.tick()

        [job] = engine.store.list_jobs(job_type="generate_content")
        assert job.status == JobStatus.SUCCEEDED.value
        assert result.skipped == 1


class TestEnqueueDue:
    def test_due_agents_get_a_content_job(self, scheduler, engine, make_agent, clock):
        due = make_agent(next_run_at=clock() - timedelta(minutes=5))
        make_agent(next_run_at=clock() + timedelta(hours=1))
        make_agent(next_run_at=None)

        summary = scheduler.enqueue_due_agents()

        assert summary == {"content": 1, "cycles": 0, "crew": 1, "skipped": 0}
        [job] = engine.store.list_jobs(job_type="generate_content")
        assert job.agent_id == due.id
        assert job.payload == {"source": "scheduler"}
        assert job.scheduled_for == clock()

    def test_exactly_now_is_due(self, scheduler, make_agent, clock):
        make_agent(next_run_at=clock())
        assert scheduler.enqueue_due_agents()["content"] == 1

    def test_open_job_prevents_duplicate(self, scheduler, engine, make_agent, clock):
        make_agent(next_run_at=clock() - timedelta(minutes=5))
        scheduler.enqueue_due_agents()

        summary = scheduler.enqueue_due_agents()

        assert summary["content"] == 0
        assert summary["skipped"] == 1
        assert len(engine.store.list_jobs(job_type="generate_content")) == 1

    def test_one_crew_job_per_pass(self, scheduler, engine, make_agent, clock):
        for _ in range(3):
            make_agent(next_run_at=clock() - timedelta(minutes=1))

        assert scheduler.enqueue_due_agents()["crew"] == 1
        assert len(engine.store.list_jobs(job_type="crew_interaction")) == 1

    def test_unscheduled_and_inactive_agents_ignored(self, scheduler, make_agent, clock):
        make_agent(is_scheduled=False, next_run_at=clock() - timedelta(hours=1))
        make_agent(is_active=False, next_run_at=clock() - timedelta(hours=1))
        assert scheduler.enqueue_due_agents() == {"content": 0, "cycles": 0, "crew": 0, "skipped": 0}

    def test_autonomous_agents_get_cycle_jobs(self, scheduler, engine, make_agent, clock):
        agent = make_agent(
            agent_mode="autonomous",
            next_cycle_at=clock() - timedelta(minutes=1),
            next_run_at=clock() - timedelta(minutes=1),
        )

        summary = scheduler.enqueue_due_agents()

        assert summary == {"content": 0, "cycles": 1, "crew": 0, "skipped": 0}
        [job] = engine.store.list_jobs(agent_id=agent.id)
        assert job.type == JobType.AGENT_CYCLE.value


class TestRecordOutcomes:
    def test_success_moves_next_run_forward(self, scheduler, engine, make_agent, load_agent, clock):
        agent = make_agent()
        next_run = scheduler.record_run(agent.id, RunOutcome.SUCCESS)

        saved = load_agent(agent.id)
        assert saved.next_run_at == next_run
        assert saved.last_run_at == clock()
        assert next_run > clock()
        assert engine.cadence.in_window(saved, next_run)

    def test_failure_retries_soon(self, scheduler, make_agent, load_agent, clock):
        agent = make_agent()
        next_run = scheduler.record_run(agent.id, "failure")

        assert next_run == clock() + timedelta(minutes=30)
        assert load_agent(agent.id).last_run_at is None

    def test_unknown_agent(self, scheduler):
        assert scheduler.record_run("nobody") is None
        assert scheduler.record_cycle("nobody") is None

    def test_record_cycle_uses_cooldown(self, scheduler, make_agent, load_agent, clock):
        agent = make_agent(agent_mode="autonomous", cycle_cooldown_minutes=45)
        assert scheduler.record_cycle(agent.id) == clock() + timedelta(minutes=45)
        assert load_agent(agent.id).last_run_at == clock()
