"""
Content Buffer — pre-generated posts held per agent until they expire.

Buffer health per agent:
  HEALTHY — ready entries at the per-agent cap
  LOW     — some ready entries, below the cap
  EMPTY   — nothing ready; the next content job generates live
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_

from app.core.config import EngineSettings, get_settings
from app.db_connection import get_db_session, lock_pass
from app.models.agents import Agent
from app.models.base import iso, utc_now
from app.models.buffer import BufferEntry, BufferStatus
from app.services.pipeline.client import agent_context

logger = logging.getLogger(__name__)

# A slot still generating after this long is treated as abandoned
RESERVATION_TTL = timedelta(minutes=15)


@dataclass
class FillResult:
    agents_considered: int = 0
    created: int = 0
    discarded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "agents_considered": self.agents_considered,
            "created": self.created,
            "discarded": self.discarded,
            "failed": self.failed,
            "errors": self.errors,
        }


class ContentBufferService:
    """Fills, hands out and sweeps pre-generated content."""

    def __init__(self, pipeline=None, session_factory=None, settings: Optional[EngineSettings] = None, clock=utc_now):
        self.pipeline = pipeline
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._clock = clock

    @property
    def cap(self) -> int:
        return self.settings.buffer_max_per_agent

    def _ready_query(self, db, now):
        return db.query(BufferEntry).filter(
            BufferEntry.status == BufferStatus.READY.value,
            BufferEntry.expires_at > now,
        )

    def ready_count(self, agent_id: str) -> int:
        now = self._clock()
        with get_db_session(self._session_factory) as db:
            return self._ready_query(db, now).filter(BufferEntry.agent_id == agent_id).count()

    # ------------------------------------------------------------------
    # Fill
    # ------------------------------------------------------------------

    def fill_buffer(self, max_agents: Optional[int] = None) -> FillResult:
        """
        Top up buffers for scheduled, active agents below the cap.

        One generation per agent per run. A failing agent is logged and
        skipped; it never aborts the pass.
        """
        max_agents = max_agents if max_agents is not None else self.settings.buffer_max_agents_per_run
        result = FillResult()
        if self.pipeline is None:
            raise RuntimeError("ContentBufferService.fill_buffer needs a pipeline client")

        reservations = self._reserve(max_agents)
        result.agents_considered = len(reservations)
        for agent, reservation_id in reservations:
            try:
                if self._fill_one(agent, reservation_id):
                    result.created += 1
                else:
                    result.discarded += 1
            except Exception as e:
                result.failed += 1
                result.errors.append(f"{agent.handle}: {e}")
                logger.warning("Buffer fill failed for agent %s: %s", agent.handle, e)

        logger.info(
            "Buffer fill: %d agent(s) considered, %d created, %d discarded, %d failed",
            result.agents_considered, result.created, result.discarded, result.failed,
        )
        return result

    def _reserve(self, max_agents: int) -> List[Tuple[Agent, str]]:
        """
        Pick the agents below the cap and hold one slot for each.

        Runs under the fill lock, so a concurrent pass sees these slots as
        taken and never generates for the same agent. Generation itself
        happens after the lock is released.
        """
        now = self._clock()
        with get_db_session(self._session_factory) as db:
            lock_pass(db, "buffer:fill")
            counts: Dict[str, int] = dict(
                db.query(BufferEntry.agent_id, func.count(BufferEntry.id))
                .filter(
                    BufferEntry.status.in_([BufferStatus.READY.value, BufferStatus.GENERATING.value]),
                    BufferEntry.expires_at > now,
                )
                .group_by(BufferEntry.agent_id)
                .all()
            )
            agents = (
                db.query(Agent)
                .filter(Agent.is_scheduled == True, Agent.is_active == True)  # noqa: E712
                .order_by(Agent.next_run_at.asc().nulls_last(), Agent.id.asc())
                .all()
            )
            needy = [a for a in agents if counts.get(a.id, 0) < self.cap][:max_agents]
            entries = []
            for agent in needy:
                entry = BufferEntry(
                    agent_id=agent.id,
                    body="",
                    status=BufferStatus.GENERATING.value,
                    expires_at=now + RESERVATION_TTL,
                    created_at=now,
                )
                db.add(entry)
                entries.append((agent, entry))
            db.flush()
            return [(agent, entry.id) for agent, entry in entries]

    def _fill_one(self, agent: Agent, reservation_id: str) -> bool:
        """Generate into a reserved slot. False if the reservation lapsed meanwhile."""
        try:
            content = self.pipeline.generate(agent_context(agent))
        except Exception:
            self._release(reservation_id)
            raise

        now = self._clock()
        with get_db_session(self._session_factory) as db:
            lock_pass(db, "buffer:fill")
            entry = (
                db.query(BufferEntry)
                .filter(BufferEntry.id == reservation_id, BufferEntry.status == BufferStatus.GENERATING.value)
                .with_for_update()
                .first()
            )
            if entry is None or entry.expires_at <= now:
                if entry is not None:
                    db.delete(entry)
                logger.info("Buffer reservation for %s lapsed, discarding generated content", agent.handle)
                return False
            entry.content_type = content.get("content_type") or "text"
            entry.body = content["content_body"]
            entry.media_refs = list(content.get("media_refs") or [])
            entry.tags = list(content.get("tags") or [])
            entry.effect = content.get("chosen_effect")
            entry.status = BufferStatus.READY.value
            entry.expires_at = now + timedelta(hours=self.settings.buffer_ttl_hours)
            entry.created_at = now
        return True

    def _release(self, reservation_id: str) -> None:
        with get_db_session(self._session_factory) as db:
            db.query(BufferEntry).filter(
                BufferEntry.id == reservation_id,
                BufferEntry.status == BufferStatus.GENERATING.value,
            ).delete(synchronize_session=False)

    # ------------------------------------------------------------------
    # Consume
    # ------------------------------------------------------------------

    def consume(self, agent_id: str) -> Optional[BufferEntry]:
        """
        Pop the oldest ready, unexpired entry for the agent, or None.

        Entries that outlived their TTL are marked expired on the way.
        """
        now = self._clock()
        with get_db_session(self._session_factory) as db:
            db.query(BufferEntry).filter(
                BufferEntry.agent_id == agent_id,
                BufferEntry.status == BufferStatus.READY.value,
                BufferEntry.expires_at <= now,
            ).update({BufferEntry.status: BufferStatus.EXPIRED.value}, synchronize_session=False)

            entry = (
                self._ready_query(db, now)
                .filter(BufferEntry.agent_id == agent_id)
                .order_by(BufferEntry.created_at.asc())
                .with_for_update(skip_locked=True)
                .first()
            )
            if entry is None:
                return None
            entry.status = BufferStatus.CONSUMED.value
            entry.consumed_at = now
        logger.info("Consumed buffered content %s for agent %s", entry.id, agent_id)
        return entry

    # ------------------------------------------------------------------
    # Sweep / status
    # ------------------------------------------------------------------

    def sweep_expired(self) -> int:
        """Delete consumed, expired and past-TTL entries, abandoned reservations included."""
        now = self._clock()
        with get_db_session(self._session_factory) as db:
            deleted = (
                db.query(BufferEntry)
                .filter(or_(
                    BufferEntry.status.in_([BufferStatus.CONSUMED.value, BufferStatus.EXPIRED.value]),
                    BufferEntry.expires_at <= now,
                ))
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info("Swept %d buffer entr%s", deleted, "y" if deleted == 1 else "ies")
        return deleted

    def status(self, agent_id: str) -> dict:
        now = self._clock()
        with get_db_session(self._session_factory) as db:
            ready = self._ready_query(db, now).filter(BufferEntry.agent_id == agent_id)
            count = ready.count()
            next_expiry = ready.with_entities(func.min(BufferEntry.expires_at)).scalar()

        if count == 0:
            health = "empty"
        elif count < self.cap:
            health = "low"
        else:
            health = "healthy"
        return {
            "agent_id": agent_id,
            "ready": count,
            "cap": self.cap,
            "health": health,
            "next_expiry": iso(next_expiry),
        }
