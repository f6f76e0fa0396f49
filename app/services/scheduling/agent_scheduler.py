"""
Agent scheduling — turns agent cadences into queued jobs.

enable/disable flip an agent's auto-scheduling switch, enqueue_due_agents
is the per-minute pass that queues work for every agent whose next run has
arrived, and record_run persists the cadence scheduler's answer after each
content run.
"""
import logging
from datetime import datetime
from typing import Optional

from app.db_connection import get_db_session, lock_pass
from app.models.agents import Agent
from app.models.base import utc_now
from app.models.jobs import JobType
from app.services.scheduling.cadence import CadenceScheduler, RunOutcome

logger = logging.getLogger(__name__)

SOURCE_SCHEDULER = "scheduler"


class AgentScheduler:
    def __init__(self, store, cadence: CadenceScheduler, session_factory=None, clock=utc_now):
        self.store = store
        self.cadence = cadence
        self._session_factory = session_factory
        self._clock = clock

    def enable_scheduling(self, agent_id: str) -> Optional[Agent]:
        """Turn auto-scheduling on and compute the first run. None if the agent doesn't exist."""
        now = self._clock()
        with get_db_session(self._session_factory) as db:
            agent = db.query(Agent).filter(Agent.id == agent_id).with_for_update().first()
            if agent is None:
                return None
            if not agent.is_active:
                raise ValueError(f"Agent {agent.handle} is deactivated")
            agent.is_scheduled = True
            agent.next_run_at = self.cadence.next_run_at(agent, RunOutcome.SUCCESS, now=now)
            if agent.is_autonomous:
                agent.next_cycle_at = now
            agent.updated_at = now
        logger.info("Scheduling enabled for %s, first run at %s", agent.handle, agent.next_run_at)
        return agent

    def disable_scheduling(self, agent_id: str) -> Optional[Agent]:
        """
        Turn auto-scheduling off. Jobs already queued for the agent stay in
        the queue and are skipped when they come up.
        """
        with get_db_session(self._session_factory) as db:
            agent = db.query(Agent).filter(Agent.id == agent_id).with_for_update().first()
            if agent is None:
                return None
            agent.is_scheduled = False
            agent.next_run_at = None
            agent.next_cycle_at = None
            agent.updated_at = self._clock()
        logger.info("Scheduling disabled for %s", agent.handle)
        return agent

    def deactivate(self, agent_id: str) -> Optional[Agent]:
        """Deactivate an agent and take it off the schedule. Queued jobs become skips."""
        now = self._clock()
        with get_db_session(self._session_factory) as db:
            agent = db.query(Agent).filter(Agent.id == agent_id).with_for_update().first()
            if agent is None:
                return None
            agent.is_active = False
            agent.deactivated_at = now
            agent.is_scheduled = False
            agent.next_run_at = None
            agent.next_cycle_at = None
            agent.updated_at = now
        logger.info("Agent %s deactivated", agent.handle)
        return agent

    def enqueue_due_agents(self, now: Optional[datetime] = None) -> dict:
        """
        Queue a content job for every scheduled agent whose next run is due,
        and an agent_cycle job for every autonomous agent whose cycle is due.

        Agents that already have an open job of that type are skipped. One
        crew_interaction job rides along whenever content was queued.
        Concurrent passes run one at a time so an agent is never queued twice.
        """
        now = now or self._clock()
        summary = {"content": 0, "cycles": 0, "crew": 0, "skipped": 0}

        with get_db_session(self._session_factory) as db:
            lock_pass(db, "agents:enqueue_due")
            agents = (
                db.query(Agent)
                .filter(Agent.is_scheduled == True, Agent.is_active == True)  # noqa: E712
                .all()
            )
            for agent in agents:
                if agent.is_autonomous:
                    due, job_type, key = agent.next_cycle_at, JobType.AGENT_CYCLE, "cycles"
                else:
                    due, job_type, key = agent.next_run_at, JobType.GENERATE_CONTENT, "content"
                if due is None or due > now:
                    continue
                if self.store.has_pending_job(job_type, agent.id, db=db):
                    summary["skipped"] += 1
                    continue
                self.store.enqueue(job_type, agent.id, payload={"source": SOURCE_SCHEDULER}, scheduled_for=now, db=db)
                summary[key] += 1

            if summary["content"] and not self.store.has_pending_job(JobType.CREW_INTERACTION, None, db=db):
                self.store.enqueue(JobType.CREW_INTERACTION, payload={"source": SOURCE_SCHEDULER}, scheduled_for=now, db=db)
                summary["crew"] = 1

        if summary["content"] or summary["cycles"]:
            logger.info(
                "Enqueued %d content job(s), %d cycle job(s), %d crew job(s); %d agent(s) already queued",
                summary["content"], summary["cycles"], summary["crew"], summary["skipped"],
            )
        return summary

    def record_run(self, agent_id: str, outcome=RunOutcome.SUCCESS, now: Optional[datetime] = None) -> Optional[datetime]:
        """Persist the agent's next content run after a success or failure. Returns it."""
        now = now or self._clock()
        outcome = RunOutcome(outcome)
        with get_db_session(self._session_factory) as db:
            agent = db.query(Agent).filter(Agent.id == agent_id).with_for_update().first()
            if agent is None:
                return None
            next_run = self.cadence.next_run_at(agent, outcome, now=now)
            agent.next_run_at = next_run
            if outcome == RunOutcome.SUCCESS:
                agent.last_run_at = now
            agent.updated_at = now
        logger.info("Agent %s next run at %s (%s)", agent_id, next_run, outcome.value)
        return next_run

    def record_cycle(self, agent_id: str, now: Optional[datetime] = None) -> Optional[datetime]:
        """Push an autonomous agent's next cycle out by its cooldown."""
        now = now or self._clock()
        with get_db_session(self._session_factory) as db:
            agent = db.query(Agent).filter(Agent.id == agent_id).with_for_update().first()
            if agent is None:
                return None
            agent.next_cycle_at = self.cadence.next_cycle_at(agent, now=now)
            agent.last_run_at = now
            agent.updated_at = now
        return agent.next_cycle_at
