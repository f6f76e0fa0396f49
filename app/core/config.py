"""
Engine configuration.

Every tunable is read from the environment (optionally populated from a
.env file by app.main) and has a sensible default so tests and local runs
need nothing but DATABASE_URL.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Optional


# ---------------------------------------------------------------------------
# External pipeline / trigger configuration
# ---------------------------------------------------------------------------
PIPELINE_BASE_URL = os.environ.get("PIPELINE_BASE_URL", "http://localhost:8100")
PIPELINE_API_KEY = os.environ.get("PIPELINE_API_KEY", "")
CRON_SECRET = os.environ.get("CRON_SECRET", "")

DEFAULT_CONCURRENCY_LIMITS = {
    "agent_cycle": 3,
    "crew_interaction": 1,
    "generate_content": 5,
}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def parse_concurrency_limits(raw: Optional[str]) -> Dict[str, int]:
    """
    Parse "agent_cycle=3,crew_interaction=1" into a dict.

    Unknown job types are rejected so a typo can't silently disable a cap.
    """
    if not raw:
        return dict(DEFAULT_CONCURRENCY_LIMITS)

    from app.models.jobs import JobType

    limits = {}
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        name, _, value = part.partition("=")
        name = name.strip()
        JobType(name)  # raises ValueError for unknown types
        limits[name] = int(value)
    return limits


@dataclass
class EngineSettings:
    """Tunables for the job engine, cadence scheduler and content buffer."""
    # Worker loop
    max_jobs_per_tick: int = 10
    tick_seconds: int = 60
    max_tick_backoff_seconds: int = 900

    # Retry policy
    max_attempts: int = 5
    backoff_base_seconds: int = 30
    backoff_max_seconds: int = 3600
    stale_minutes: int = 15
    concurrency_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_CONCURRENCY_LIMITS))

    # Cadence
    cadence_retry_minutes: int = 30

    # Content buffer
    buffer_ttl_hours: int = 24
    buffer_max_per_agent: int = 3
    buffer_max_agents_per_run: int = 20
    buffer_fill_hour_utc: int = 2

    # Housekeeping
    job_retention_days: int = 30
    log_retention_days: int = 7

    # Collaborators
    pipeline_base_url: str = PIPELINE_BASE_URL
    pipeline_api_key: str = PIPELINE_API_KEY
    pipeline_timeout_seconds: int = 120

    cron_secret: str = CRON_SECRET
    system_agent_handle: str = "rudo"
    scheduler_enabled: bool = True

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            max_jobs_per_tick=_env_int("WORKER_MAX_JOBS_PER_TICK", 10),
            tick_seconds=_env_int("WORKER_TICK_SECONDS", 60),
            max_tick_backoff_seconds=_env_int("WORKER_MAX_BACKOFF_SECONDS", 900),
            max_attempts=_env_int("JOB_MAX_ATTEMPTS", 5),
            backoff_base_seconds=_env_int("JOB_BACKOFF_BASE_SECONDS", 30),
            backoff_max_seconds=_env_int("JOB_BACKOFF_MAX_SECONDS", 3600),
            stale_minutes=_env_int("JOB_STALE_MINUTES", 15),
            concurrency_limits=parse_concurrency_limits(os.environ.get("JOB_CONCURRENCY_LIMITS")),
            cadence_retry_minutes=_env_int("CADENCE_RETRY_MINUTES", 30),
            buffer_ttl_hours=_env_int("BUFFER_TTL_HOURS", 24),
            buffer_max_per_agent=_env_int("BUFFER_MAX_PER_AGENT", 3),
            buffer_max_agents_per_run=_env_int("BUFFER_MAX_AGENTS_PER_RUN", 20),
            buffer_fill_hour_utc=_env_int("BUFFER_FILL_HOUR_UTC", 2),
            job_retention_days=_env_int("JOB_RETENTION_DAYS", 30),
            log_retention_days=_env_int("LOG_RETENTION_DAYS", 7),
            pipeline_base_url=os.environ.get("PIPELINE_BASE_URL", PIPELINE_BASE_URL),
            pipeline_api_key=os.environ.get("PIPELINE_API_KEY", PIPELINE_API_KEY),
            pipeline_timeout_seconds=_env_int("PIPELINE_TIMEOUT_SECONDS", 120),
            cron_secret=os.environ.get("CRON_SECRET", CRON_SECRET),
            system_agent_handle=os.environ.get("SYSTEM_AGENT_HANDLE", "rudo"),
            scheduler_enabled=_env_bool("ENGINE_SCHEDULER_ENABLED", True),
        )


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings
