"""Pydantic schemas for job administration."""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class JobCreate(BaseModel):
    """Manually enqueue a job. Runs even if the agent's auto-scheduling is off."""
    type: str
    agent_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    # Naive UTC; defaults to now
    scheduled_for: Optional[datetime] = None
    max_attempts: Optional[int] = Field(None, ge=1, le=50)
