"""
Main FastAPI application for the bot cadence engine.
"""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from apscheduler.schedulers.background import BackgroundScheduler

# Load environment variables from .env file before anything reads them
env_path = Path(__file__).resolve().parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from app.api.agents.routes import router as agents_router  # noqa: E402
from app.api.internal.routes import router as internal_router  # noqa: E402
from app.api.jobs.routes import router as jobs_router  # noqa: E402
from app.core.config import get_settings  # noqa: E402
from app.db_connection import init_db  # noqa: E402
from app.models.base import utc_now  # noqa: E402
from app.services.engine import Engine, start_engine_scheduler  # noqa: E402
from app.services.logging.service import DEPLOYMENT_ID, get_logging_service  # noqa: E402

app = FastAPI(
    title="Bot Cadence Engine API",
    description="""
    Job execution and scheduling engine for a fleet of autonomous bot agents.

    * Durable job queue with atomic claiming, retries and dead-lettering
    * Personality-driven posting cadence per agent
    * Pre-generated content buffer with expiry
    """,
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in os.environ.get("CORS_ORIGINS", "").split(",") if o],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(agents_router)
app.include_router(jobs_router)
app.include_router(internal_router)


@app.get("/health", tags=["system"])
def health_check():
    """Liveness plus the worker's pause state."""
    engine = getattr(app.state, "engine", None)
    paused_until = engine.worker.paused_until if engine is not None else None
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "deployment_id": DEPLOYMENT_ID,
        "worker_paused_until": paused_until.isoformat() if paused_until else None,
    }


@app.on_event("startup")
async def startup_event():
    """Run startup tasks."""
    settings = get_settings()

    # Persistent logging first, so everything after this is captured
    logging_service = get_logging_service()
    logging_service.install()
    logging_service.log_system_event(
        "startup",
        "Application starting",
        details={"python_version": sys.version, "port": os.getenv("PORT", "not set")},
    )

    print("🚀 Starting Bot Cadence Engine...", flush=True)
    print(f"📍 Python: {sys.version}", flush=True)
    print(f"📍 Deployment: {DEPLOYMENT_ID}", flush=True)
    print("📝 Documentation available at: /docs", flush=True)

    print("💾 Initializing database...", flush=True)
    try:
        init_db()
        print("✅ Database initialized", flush=True)
    except Exception as e:
        print(f"❌ Database init failed: {e}", flush=True)
        logging_service.log_error("Database init failed", exception=e)
        raise

    engine = Engine(settings=settings, events=logging_service)
    app.state.engine = engine

    # Jobs left in_progress by the previous deploy go back through the failure path
    print("🔄 Checking for stale in-progress jobs...", flush=True)
    released = engine.release_stale_jobs()
    if released:
        print(f"⚠️ Released {released} stale job(s) from previous run", flush=True)

    if settings.scheduler_enabled:
        scheduler = BackgroundScheduler(timezone="UTC")
        start_engine_scheduler(scheduler, engine)
        scheduler.start()
        app.state.scheduler = scheduler
        print("✅ Engine scheduler started", flush=True)
    else:
        print("⏸️ ENGINE_SCHEDULER_ENABLED is off; relying on /api/internal triggers", flush=True)

    print("🎉 Startup complete! App is ready.", flush=True)


@app.on_event("shutdown")
async def shutdown_event():
    """Run shutdown tasks."""
    print("👋 Shutting down Bot Cadence Engine...", flush=True)

    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=True)

    logging_service = get_logging_service()
    logging_service.log_system_event("shutdown", "Application shutting down")
    logging_service.shutdown()
