"""Async share job model."""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from database import Base


class ShareJob(Base):
    """Queued share creation job."""

    __tablename__ = "share_jobs"

    job_id = Column(String, primary_key=True)
    schema_version = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default="queued", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
