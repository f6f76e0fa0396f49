"""
HTTP client for the content pipeline.

The engine does not generate, moderate, or publish anything itself. Those
are narrow JSON endpoints on the pipeline service; this client wraps them
and maps HTTP failures onto the job error taxonomy:

    timeout / connection error / 429 / 5xx  -> PipelineError (transient)
    any other 4xx                            -> PipelineError(permanent=True)
    moderation says no                       -> ModerationRejected (permanent)
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from app.core.config import EngineSettings, get_settings
from app.services.jobs.errors import JobError, PermanentJobError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429}


class PipelineError(JobError):
    """A pipeline call failed. Transient unless the response says otherwise."""

    def __init__(self, message: str, status_code: Optional[int] = None, permanent: bool = None):
        super().__init__(message, permanent=permanent)
        self.status_code = status_code


class ModerationRejected(PermanentJobError):
    """Generated content was rejected by moderation; retrying won't fix it."""


class PipelineClient:
    """
    Thin JSON-over-HTTP wrapper around the generation pipeline.

    Every call carries a timeout; nothing here retries. Retrying is the job
    queue's job.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        settings: Optional[EngineSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = settings or get_settings()
        self.base_url = (base_url or settings.pipeline_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.pipeline_api_key
        self.timeout = timeout or settings.pipeline_timeout_seconds
        self.session = session or requests.Session()

        if not self.api_key:
            logger.warning("PIPELINE_API_KEY not set, calling %s unauthenticated", self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, headers=self._headers(), json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise PipelineError(f"Pipeline timeout on {path}: {e}") from e
        except requests.RequestException as e:
            raise PipelineError(f"Pipeline unreachable on {path}: {e}") from e

        if response.status_code >= 400:
            detail = response.text[:500] if response.text else ""
            status = response.status_code
            permanent = status < 500 and status not in RETRYABLE_STATUS
            raise PipelineError(
                f"Pipeline {path} returned {status}: {detail}",
                status_code=status,
                permanent=permanent,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise PipelineError(f"Pipeline {path} returned invalid JSON: {e}") from e

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def generate(self, agent_context: Dict[str, Any], effect: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Generate one post. Returns {content_body, content_type, media_refs, tags, chosen_effect}."""
        body = {"agent": agent_context}
        if effect:
            body["effect"] = effect
        result = self._post("/v1/generate", body)
        if not result.get("content_body"):
            raise PipelineError("Pipeline generate returned no content_body")
        result.setdefault("content_type", "text")
        result.setdefault("media_refs", [])
        result.setdefault("tags", [])
        return result

    def select_effect(self, agent_context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        result = self._post("/v1/effects/select", {"agent": agent_context})
        return result.get("effect")

    def moderate(self, content_body: str) -> Dict[str, Any]:
        """Returns {approved, reason?}."""
        result = self._post("/v1/moderate", {"content": content_body})
        return {"approved": bool(result.get("approved")), "reason": result.get("reason")}

    def ensure_approved(self, content_body: str) -> None:
        verdict = self.moderate(content_body)
        if not verdict["approved"]:
            raise ModerationRejected(f"Moderation rejected content: {verdict.get('reason') or 'no reason given'}")

    def publish(self, agent_id: str, content: Dict[str, Any]) -> Dict[str, Any]:
        """Publish a post for the agent. Returns at least {post_id}."""
        return self._post("/v1/posts", {"agent_id": agent_id, "content": content})

    # ------------------------------------------------------------------
    # Replies and autonomous decisions
    # ------------------------------------------------------------------

    def reply_to_comment(self, agent_context: Dict[str, Any], comment_id: str) -> Dict[str, Any]:
        return self._post("/v1/replies/comment", {"agent": agent_context, "comment_id": comment_id})

    def reply_to_post(self, agent_context: Dict[str, Any], post_id: str) -> Dict[str, Any]:
        return self._post("/v1/replies/post", {"agent": agent_context, "post_id": post_id})

    def decide(self, agent_context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Perceive and decide for an autonomous agent.

        Returns {"action": "create_post" | "respond_to_comment" |
        "respond_to_post" | "idle", "target_id": ..., "reasoning": ...}.
        """
        return self._post("/v1/agents/decide", {"agent": agent_context})

    def welcome(self, system_agent_context: Dict[str, Any], new_agent_context: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(
            "/v1/agents/welcome",
            {"agent": system_agent_context, "new_agent": new_agent_context},
        )

    # ------------------------------------------------------------------
    # Fleet-level
    # ------------------------------------------------------------------

    def crew_interact(self, agent_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        return self._post("/v1/crew/interact", {"agent_ids": agent_ids or []})

    def recalculate_engagement(self, window_hours: int = 24) -> Dict[str, Any]:
        return self._post("/v1/engagement/recalculate", {"window_hours": window_hours})


def agent_context(agent) -> Dict[str, Any]:
    """The slice of an agent the pipeline needs to write in its voice."""
    return {
        "id": agent.id,
        "handle": agent.handle,
        "name": agent.name,
        "traits": agent.traits or {},
        "rhythm_profile": agent.rhythm_profile,
    }
