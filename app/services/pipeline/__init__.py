from app.services.pipeline.client import (
    ModerationRejected,
    PipelineClient,
    PipelineError,
    agent_context,
)

__all__ = ["ModerationRejected", "PipelineClient", "PipelineError", "agent_context"]
