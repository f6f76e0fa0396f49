"""
Engine — wires the job store, dispatcher, cadence scheduler and content
buffer together and registers the recurring passes with APScheduler.

All work goes through a single primitive: jobs in the database, claimed by
a polling tick. The other scheduled passes only enqueue work or do
housekeeping.
"""
import logging
import random
from typing import Optional

from app.core.config import EngineSettings, get_settings
from app.db_connection import get_db_session
from app.models.base import utc_now
from app.models.jobs import JobType
from app.services.buffer.manager import ContentBufferService, FillResult
from app.services.jobs.dispatcher import Dispatcher
from app.services.jobs.handlers import build_registry
from app.services.jobs.store import JobStore
from app.services.jobs.worker import JobWorker, ProcessResult
from app.services.pipeline.client import PipelineClient
from app.services.scheduling.agent_scheduler import AgentScheduler
from app.services.scheduling.cadence import CadenceScheduler
from app.services.system_agent import SystemAgentLookup

logger = logging.getLogger(__name__)


class Engine:
    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        session_factory=None,
        pipeline=None,
        rng: Optional[random.Random] = None,
        clock=utc_now,
        events=None,
        registry=None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.clock = clock
        self.events = events
        self.rng = rng or random.Random()

        self.store = JobStore(session_factory, self.settings, clock)
        self.cadence = CadenceScheduler(self.rng, retry_minutes=self.settings.cadence_retry_minutes)
        self.pipeline = pipeline or PipelineClient(settings=self.settings)
        self.buffer = ContentBufferService(self.pipeline, session_factory, self.settings, clock)
        self.agent_scheduler = AgentScheduler(self.store, self.cadence, session_factory, clock)
        self.system_agents = SystemAgentLookup(self.settings.system_agent_handle, session_factory)
        self.registry = registry or build_registry()
        self.dispatcher = Dispatcher(
            self.registry,
            store=self.store,
            buffer=self.buffer,
            pipeline=self.pipeline,
            cadence=self.cadence,
            agent_scheduler=self.agent_scheduler,
            system_agents=self.system_agents,
            settings=self.settings,
            session_factory=session_factory,
            clock=clock,
            rng=self.rng,
        )
        self.worker = JobWorker(self.store, self.dispatcher, self.settings, events=events, clock=clock)

    def session(self):
        """Transactional session scope on the engine's database."""
        return get_db_session(self.session_factory)

    # ------------------------------------------------------------------
    # Trigger surface
    # ------------------------------------------------------------------

    def tick(self, max_jobs: Optional[int] = None) -> ProcessResult:
        return self.worker.tick(max_jobs)

    def run_cycle(self, max_jobs: Optional[int] = None) -> dict:
        """Queue due agents, then process one batch. Used by the HTTP cron trigger."""
        enqueued = self.enqueue_due_agents()
        processed = self.tick(max_jobs)
        return {"enqueued": enqueued, "processed": processed.to_dict()}

    def enqueue_due_agents(self, now=None) -> dict:
        return self.agent_scheduler.enqueue_due_agents(now)

    def fill_buffer(self, max_agents: Optional[int] = None) -> FillResult:
        result = self.buffer.fill_buffer(max_agents)
        if self.events is not None:
            self.events.log_buffer_event("Buffer fill pass", details=result.to_dict())
        return result

    def sweep_expired_buffer(self) -> int:
        deleted = self.buffer.sweep_expired()
        if self.events is not None and deleted:
            self.events.log_buffer_event(f"Swept {deleted} buffer entries", details={"deleted": deleted})
        return deleted

    def release_stale_jobs(self) -> int:
        return self.store.release_stale()

    def prune_jobs(self) -> int:
        return self.store.prune()

    def enqueue_engagement_recalc(self):
        if self.store.has_pending_job(JobType.RECALCULATE_ENGAGEMENT, None):
            return None
        return self.store.enqueue(JobType.RECALCULATE_ENGAGEMENT, payload={"source": "scheduler", "window_hours": 24})


def _guarded(name: str, fn, events=None):
    """Wrap a scheduled pass so its failures are logged with context."""

    def run():
        try:
            return fn()
        except Exception as e:
            logger.exception("Scheduled pass %s failed: %s", name, e)
            if events is not None:
                events.log_error(f"Scheduled pass {name} failed", exception=e, context={"pass": name})
            return None

    run.__name__ = f"guarded_{name}"
    return run


def start_engine_scheduler(scheduler, engine: Engine):
    """Register the engine's recurring passes with an APScheduler scheduler."""
    settings = engine.settings
    events = engine.events

    scheduler.add_job(
        _guarded("tick", engine.worker.scheduled_tick, events),
        "interval",
        seconds=settings.tick_seconds,
        id="engine_tick",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        _guarded("enqueue_due_agents", engine.enqueue_due_agents, events),
        "interval",
        minutes=1,
        id="engine_enqueue_due",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        _guarded("fill_buffer", engine.fill_buffer, events),
        "cron",
        hour=settings.buffer_fill_hour_utc,
        minute=0,
        timezone="UTC",
        id="engine_buffer_fill",
        replace_existing=True,
    )
    scheduler.add_job(
        _guarded("sweep_expired_buffer", engine.sweep_expired_buffer, events),
        "interval",
        hours=1,
        id="engine_buffer_sweep",
        replace_existing=True,
    )
    scheduler.add_job(
        _guarded("release_stale_jobs", engine.release_stale_jobs, events),
        "interval",
        minutes=5,
        id="engine_release_stale",
        replace_existing=True,
    )
    scheduler.add_job(
        _guarded("recalculate_engagement", engine.enqueue_engagement_recalc, events),
        "interval",
        hours=1,
        id="engine_engagement_recalc",
        replace_existing=True,
    )
    scheduler.add_job(
        _guarded("prune_jobs", engine.prune_jobs, events),
        "interval",
        hours=24,
        id="engine_prune_jobs",
        replace_existing=True,
    )
    if events is not None:
        scheduler.add_job(
            _guarded("log_cleanup", lambda: events.cleanup_old_logs(settings.log_retention_days), events),
            "interval",
            hours=24,
            id="engine_log_cleanup",
            replace_existing=True,
        )

    print(f"⏰ Engine scheduler registered (tick every {settings.tick_seconds}s, "
          f"buffer fill daily at {settings.buffer_fill_hour_utc:02d}:00 UTC)", flush=True)
