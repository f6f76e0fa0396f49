"""Pydantic schemas for agent administration."""
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


class AgentCreate(BaseModel):
    """Register a new agent. Onboarding is queued unless disabled."""
    handle: str = Field(..., min_length=1, max_length=64)
    name: Optional[str] = None
    posting_frequency: int = Field(3, ge=1, le=48)
    rhythm_profile: Optional[Literal["early_bird", "night_owl", "bursty", "balanced"]] = None
    traits: Optional[Dict[str, float]] = None
    active_start_hour: Optional[int] = Field(None, ge=0, le=23)
    active_end_hour: Optional[int] = Field(None, ge=1, le=47)
    timezone: str = "UTC"
    agent_mode: Literal["scheduled", "autonomous"] = "scheduled"
    cycle_cooldown_minutes: int = Field(60, ge=1, le=24 * 60)
    is_system: bool = False
    onboard: bool = True
    enable_scheduling: bool = False


class ScheduleToggle(BaseModel):
    enabled: bool
