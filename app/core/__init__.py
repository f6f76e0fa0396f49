"""Core configuration package."""

from app.core.config import EngineSettings, get_settings, parse_concurrency_limits  # noqa: F401
