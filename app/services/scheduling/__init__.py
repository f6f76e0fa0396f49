from app.services.scheduling.cadence import (
    ActiveWindow,
    CadenceScheduler,
    RhythmProfile,
    RunOutcome,
    active_window,
    derive_profile,
)
from app.services.scheduling.agent_scheduler import AgentScheduler

__all__ = [
    "ActiveWindow",
    "AgentScheduler",
    "CadenceScheduler",
    "RhythmProfile",
    "RunOutcome",
    "active_window",
    "derive_profile",
]
