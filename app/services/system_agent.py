"""
Lookup for the platform's well-known system agent.
"""
import logging
from typing import Optional

from app.db_connection import get_db_session
from app.models.agents import Agent

logger = logging.getLogger(__name__)


class SystemAgentLookup:
    """
    Resolves the system agent by handle on first use and remembers it for
    the lifetime of this instance. Nothing is cached at module level, so a
    fresh lookup (new process, new test) always goes back to the database.
    """

    def __init__(self, handle: str, session_factory=None):
        self.handle = handle
        self._session_factory = session_factory
        self._agent: Optional[Agent] = None

    def get(self) -> Optional[Agent]:
        if self._agent is None:
            with get_db_session(self._session_factory) as db:
                self._agent = (
                    db.query(Agent)
                    .filter(Agent.handle == self.handle, Agent.is_active == True)  # noqa: E712
                    .first()
                )
            if self._agent is None:
                logger.warning("System agent @%s not found", self.handle)
        return self._agent

    def reset(self) -> None:
        self._agent = None
