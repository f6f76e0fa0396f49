"""Shared FastAPI dependencies for the engine API."""
import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from app.services.engine import Engine


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not started")
    return engine


def require_cron_secret(
    authorization: Optional[str] = Header(None),
    engine: Engine = Depends(get_engine),
) -> None:
    """Guard internal triggers with `Authorization: Bearer $CRON_SECRET` when a secret is set."""
    secret = engine.settings.cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
