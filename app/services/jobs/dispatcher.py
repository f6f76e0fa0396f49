"""
Dispatcher — routes a claimed job to its handler.

Handlers are looked up in a HandlerRegistry keyed by JobType. The registry
is checked once at start-up so every JobType has a handler; a type without
one can't reach production silently.
"""
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from app.core.config import EngineSettings
from app.db_connection import get_db_session
from app.models.agents import Agent
from app.models.base import utc_now
from app.models.jobs import AGENT_SCOPED_TYPES, Job, JobType
from app.services.jobs.errors import JobSkipped, UnknownJobTypeError

logger = logging.getLogger(__name__)

# Jobs that only exist because the agent is on auto-schedule
SCHEDULE_GATED_TYPES = frozenset({JobType.GENERATE_CONTENT, JobType.AGENT_CYCLE})

# Admin-enqueued jobs run even when auto-scheduling is off
SOURCE_MANUAL = "manual"


@dataclass
class HandlerContext:
    """Everything a handler may touch. Handlers own all side effects."""
    job: Job
    agent: Optional[Agent]
    payload: Dict[str, Any]
    store: Any
    buffer: Any
    pipeline: Any
    cadence: Any
    agent_scheduler: Any
    system_agents: Any
    settings: EngineSettings
    session_factory: Any = None
    clock: Callable = utc_now
    rng: random.Random = field(default_factory=random.Random)


Handler = Callable[[HandlerContext], Optional[Dict[str, Any]]]


class HandlerRegistry:
    """Maps each JobType to exactly one handler."""

    def __init__(self):
        self._handlers: Dict[JobType, Handler] = {}

    def register(self, job_type: JobType, handler: Optional[Handler] = None):
        """Register a handler; usable directly or as a decorator."""
        job_type = JobType(job_type)

        def _add(fn: Handler) -> Handler:
            if job_type in self._handlers:
                raise ValueError(f"Handler for {job_type.value} already registered")
            self._handlers[job_type] = fn
            return fn

        if handler is not None:
            return _add(handler)
        return _add

    def get(self, job_type) -> Handler:
        try:
            return self._handlers[JobType(job_type)]
        except (ValueError, KeyError):
            raise UnknownJobTypeError(f"No handler for job type {job_type!r}")

    def missing(self) -> List[JobType]:
        return [jt for jt in JobType if jt not in self._handlers]

    def validate(self) -> None:
        missing = self.missing()
        if missing:
            raise RuntimeError(
                "Job types without a handler: " + ", ".join(jt.value for jt in missing)
            )

    def __contains__(self, job_type) -> bool:
        try:
            return JobType(job_type) in self._handlers
        except ValueError:
            return False


@dataclass
class DispatchResult:
    job_id: str
    job_type: str
    skipped: bool = False
    note: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    duration_ms: int = 0


class Dispatcher:
    def __init__(
        self,
        registry: HandlerRegistry,
        store,
        buffer,
        pipeline,
        cadence,
        agent_scheduler,
        system_agents,
        settings: EngineSettings,
        session_factory=None,
        clock=utc_now,
        rng: Optional[random.Random] = None,
    ):
        self.registry = registry
        self.store = store
        self.buffer = buffer
        self.pipeline = pipeline
        self.cadence = cadence
        self.agent_scheduler = agent_scheduler
        self.system_agents = system_agents
        self.settings = settings
        self._session_factory = session_factory
        self._clock = clock
        self.rng = rng or random.Random()

    def execute(self, job: Job) -> DispatchResult:
        """
        Run the job's handler.

        Returns a DispatchResult for successes and skips. Whatever the
        handler raises propagates to the caller, which records the failure.
        """
        start = time.time()
        handler = self.registry.get(job.type)
        job_type = JobType(job.type)
        payload = dict(job.payload or {})

        try:
            agent = self._load_agent(job, job_type, payload)
            context = HandlerContext(
                job=job,
                agent=agent,
                payload=payload,
                store=self.store,
                buffer=self.buffer,
                pipeline=self.pipeline,
                cadence=self.cadence,
                agent_scheduler=self.agent_scheduler,
                system_agents=self.system_agents,
                settings=self.settings,
                session_factory=self._session_factory,
                clock=self._clock,
                rng=self.rng,
            )
            result = handler(context)
        except JobSkipped as e:
            duration_ms = int((time.time() - start) * 1000)
            logger.info("Skipped %s job %s: %s", job.type, job.id, e)
            return DispatchResult(job.id, job.type, skipped=True, note=str(e), duration_ms=duration_ms)

        duration_ms = int((time.time() - start) * 1000)
        logger.info("Executed %s job %s in %dms", job.type, job.id, duration_ms)
        return DispatchResult(job.id, job.type, result=result, duration_ms=duration_ms)

    def _load_agent(self, job: Job, job_type: JobType, payload: Dict[str, Any]) -> Optional[Agent]:
        if not job.agent_id:
            if job_type in AGENT_SCOPED_TYPES:
                raise JobSkipped("job has no agent")
            return None

        with get_db_session(self._session_factory) as db:
            agent = db.get(Agent, job.agent_id)

        if job_type not in AGENT_SCOPED_TYPES:
            return agent
        if agent is None:
            raise JobSkipped(f"agent {job.agent_id} not found")
        if not agent.is_active:
            raise JobSkipped(f"agent {agent.handle} is deactivated")
        if (
            job_type in SCHEDULE_GATED_TYPES
            and not agent.is_scheduled
            and payload.get("source") != SOURCE_MANUAL
        ):
            raise JobSkipped(f"agent {agent.handle} is not scheduled")
        return agent
