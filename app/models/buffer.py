"""
Content buffer model — pre-generated, not-yet-published content.
"""
import uuid
from enum import Enum
from app.models.base import Base, Column, String, DateTime, Text, JSON, Index, utc_now, iso


class BufferStatus(str, Enum):
    # Slot reserved by a fill pass while the pipeline generates its content
    GENERATING = "generating"
    READY = "ready"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class BufferEntry(Base):
    """A ready-to-publish content item held for one agent until it expires."""
    __tablename__ = "content_buffer"

    __table_args__ = (
        Index("ix_content_buffer_agent_status", "agent_id", "status", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_id = Column(String(36), nullable=False, index=True)

    content_type = Column(String(20), nullable=False, default="text")
    body = Column(Text, nullable=False)
    media_refs = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    effect = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default=BufferStatus.READY.value)
    expires_at = Column(DateTime, nullable=False, index=True)
    consumed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    def as_content(self) -> dict:
        """Same shape the generation pipeline returns."""
        return {
            "content_type": self.content_type,
            "content_body": self.body,
            "media_refs": list(self.media_refs or []),
            "tags": list(self.tags or []),
            "chosen_effect": self.effect,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "content_type": self.content_type,
            "body": self.body,
            "media_refs": self.media_refs or [],
            "tags": self.tags or [],
            "effect": self.effect,
            "status": self.status,
            "expires_at": iso(self.expires_at),
            "consumed_at": iso(self.consumed_at),
            "created_at": iso(self.created_at),
        }
