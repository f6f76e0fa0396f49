"""
Shared SQLAlchemy base and common imports for all model modules.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, Text, Boolean, Integer, JSON, Float, Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp — every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(value):
    return value.isoformat() if value else None
