"""
Concurrent passes must never double up: claimers never receive the same
job, enqueue passes never queue an agent twice, and fill passes never
generate twice for one buffer slot.

Runs real threads against one SQLite file; each pass uses its own
session, as separate worker processes would.
"""
import threading
import time
from datetime import timedelta

from app.core.config import EngineSettings
from app.models.jobs import JobStatus, JobType
from app.services.jobs.store import JobStore


def _claim_concurrently(store, n_claimers, limit):
    barrier = threading.Barrier(n_claimers)
    results = [None] * n_claimers
    errors = []

    def worker(i):
        barrier.wait()
        try:
            results[i] = [job.id for job in store.claim(limit)]
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n_claimers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    assert not errors, errors
    return results


def _run_concurrently(fn, n_runners):
    barrier = threading.Barrier(n_runners)
    results = [None] * n_runners
    errors = []

    def runner(i):
        barrier.wait()
        try:
            results[i] = fn()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=runner, args=(i,)) for i in range(n_runners)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    assert not errors, errors
    return results


class TestConcurrentClaim:
    def test_two_claimers_split_three_jobs(self, session_factory, clock):
        store = JobStore(session_factory, EngineSettings(concurrency_limits={}), clock)
        ids = {store.enqueue(JobType.RECALCULATE_ENGAGEMENT).id for _ in range(3)}

        first, second = _claim_concurrently(store, 2, 5)

        assert not set(first) & set(second)
        assert set(first) | set(second) == ids

    def test_many_claimers_many_jobs(self, session_factory, clock):
        store = JobStore(session_factory, EngineSettings(concurrency_limits={}), clock)
        ids = {store.enqueue(JobType.RECALCULATE_ENGAGEMENT).id for _ in range(40)}

        results = _claim_concurrently(store, 6, 5)
        seen = [job_id for batch in results for job_id in batch]

        assert len(seen) == len(set(seen)), "a job was handed out twice"
        assert set(seen) <= ids
        for job_id in seen:
            assert store.get(job_id).status == JobStatus.IN_PROGRESS.value

    def test_cap_holds_across_claimers(self, session_factory, clock):
        store = JobStore(session_factory, EngineSettings(concurrency_limits={"crew_interaction": 2}), clock)
        for _ in range(6):
            store.enqueue(JobType.CREW_INTERACTION)

        results = _claim_concurrently(store, 4, 5)

        assert sum(len(batch) for batch in results) == 2
        assert len(store.list_jobs(status="in_progress")) == 2


class TestConcurrentEnqueueDue:
    def test_due_agent_is_queued_once(self, engine, make_agent, clock, monkeypatch):
        agent = make_agent(next_run_at=clock() - timedelta(minutes=1))
        store = engine.store
        has_pending_job = store.has_pending_job

        def slow_has_pending_job(*args, **kwargs):
            # Widen the gap between the open-job check and the insert
            time.sleep(0.2)
            return has_pending_job(*args, **kwargs)

        monkeypatch.setattr(store, "has_pending_job", slow_has_pending_job)

        summaries = _run_concurrently(engine.agent_scheduler.enqueue_due_agents, 2)

        assert sorted(s["content"] for s in summaries) == [0, 1]
        assert len(store.list_jobs(job_type="generate_content", agent_id=agent.id)) == 1
        assert len(store.list_jobs(job_type="crew_interaction")) == 1

    def test_many_passes_many_agents(self, engine, make_agent, clock):
        agents = [make_agent(next_run_at=clock()) for _ in range(5)]
        agents.append(make_agent(agent_mode="autonomous", next_cycle_at=clock()))

        summaries = _run_concurrently(engine.agent_scheduler.enqueue_due_agents, 4)

        assert sum(s["content"] for s in summaries) == 5
        assert sum(s["cycles"] for s in summaries) == 1
        for agent in agents:
            assert len(engine.store.list_jobs(agent_id=agent.id)) == 1


class TestConcurrentBufferFill:
    @staticmethod
    def _buffer(pipeline, session_factory, clock, cap):
        from app.services.buffer.manager import ContentBufferService

        return ContentBufferService(pipeline, session_factory, EngineSettings(buffer_max_per_agent=cap), clock)

    def test_second_pass_skips_agent_being_generated(self, pipeline, session_factory, clock, make_agent, monkeypatch):
        agent = make_agent()
        buffer = self._buffer(pipeline, session_factory, clock, cap=1)
        generating, release = threading.Event(), threading.Event()
        generate = pipeline.generate

        def blocking_generate(context, effect=None):
            generating.set()
            release.wait(10)
            return generate(context, effect)

        monkeypatch.setattr(pipeline, "generate", blocking_generate)

        first = []
        thread = threading.Thread(target=lambda: first.append(buffer.fill_buffer()))
        thread.start()
        try:
            assert generating.wait(10)
            second = buffer.fill_buffer()
        finally:
            release.set()
            thread.join(timeout=30)

        assert second.agents_considered == 0
        assert first[0].created == 1
        assert len(pipeline.calls_to("/v1/generate")) == 1
        assert buffer.ready_count(agent.id) == 1

    def test_cap_holds_across_passes(self, pipeline, session_factory, clock, make_agent):
        agents = [make_agent() for _ in range(3)]
        buffer = self._buffer(pipeline, session_factory, clock, cap=1)

        results = _run_concurrently(buffer.fill_buffer, 4)

        assert sum(r.created for r in results) == 3
        assert len(pipeline.calls_to("/v1/generate")) == 3
        for agent in agents:
            assert buffer.ready_count(agent.id) == 1
