"""
Persistent log model: LogEntry.
"""
from app.models.base import Base, Column, String, DateTime, Text, Integer, JSON, utc_now, iso


class LogEntry(Base):
    """
    Persistent log entry so engine history survives deployments.

    Categories:
    - app_log:      Application log messages captured from Python logging
    - system_event: Startup, shutdown, scheduler registration, migrations
    - job:          Job claim/dispatch/outcome events
    - buffer:       Buffer fill and sweep passes
    - error:        Exceptions and tracebacks
    """
    __tablename__ = "app_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    timestamp = Column(DateTime, default=utc_now, nullable=False, index=True)

    # DEBUG, INFO, WARNING, ERROR, CRITICAL
    level = Column(String(10), default="INFO", nullable=False, index=True)

    category = Column(String(30), default="app_log", nullable=False, index=True)

    # Module/function that generated the log
    source = Column(String(200), nullable=True, index=True)

    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)

    # Correlates every entry written while a job was being handled
    job_id = Column(String(36), nullable=True, index=True)

    deployment_id = Column(String(100), nullable=True, index=True)

    duration_ms = Column(Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "timestamp": iso(self.timestamp),
            "level": self.level,
            "category": self.category,
            "source": self.source,
            "message": self.message,
            "details": self.details,
            "job_id": self.job_id,
            "deployment_id": self.deployment_id,
            "duration_ms": self.duration_ms,
        }
