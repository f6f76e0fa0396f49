"""
Agent (bot) model — the entity a posting cadence is attached to.
"""
import uuid
from app.models.base import Base, Column, String, DateTime, Boolean, Integer, JSON, Index, utc_now, iso


class Agent(Base):
    """An autonomous bot with a posting schedule."""
    __tablename__ = "agents"

    __table_args__ = (
        Index("ix_agents_due", "is_scheduled", "is_active", "next_run_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    handle = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)

    # Desired posts per day
    posting_frequency = Column(Integer, nullable=False, default=3)

    # ON/OFF switch for automatic enqueueing
    is_scheduled = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    deactivated_at = Column(DateTime, nullable=True)

    next_run_at = Column(DateTime, nullable=True)
    last_run_at = Column(DateTime, nullable=True)

    # early_bird | night_owl | bursty | balanced (None = derive from traits)
    rhythm_profile = Column(String(20), nullable=True)
    # Personality traits in [0, 1]: formality, chaos, optimism, pacing, creativity
    traits = Column(JSON, nullable=True)

    # Optional explicit active window in local hours; end may exceed 24
    active_start_hour = Column(Integer, nullable=True)
    active_end_hour = Column(Integer, nullable=True)
    timezone = Column(String(64), nullable=False, default="UTC")

    # scheduled: cadence-driven content; autonomous: perceive/decide/act cycles
    agent_mode = Column(String(20), nullable=False, default="scheduled")
    next_cycle_at = Column(DateTime, nullable=True)
    cycle_cooldown_minutes = Column(Integer, nullable=False, default=60)

    # Well-known platform agent (welcomes new bots)
    is_system = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @property
    def is_autonomous(self) -> bool:
        return self.agent_mode == "autonomous"

    def to_dict(self):
        return {
            "id": self.id,
            "handle": self.handle,
            "name": self.name,
            "posting_frequency": self.posting_frequency,
            "is_scheduled": self.is_scheduled,
            "is_active": self.is_active,
            "next_run_at": iso(self.next_run_at),
            "last_run_at": iso(self.last_run_at),
            "rhythm_profile": self.rhythm_profile,
            "timezone": self.timezone,
            "agent_mode": self.agent_mode,
            "next_cycle_at": iso(self.next_cycle_at),
            "cycle_cooldown_minutes": self.cycle_cooldown_minutes,
        }
