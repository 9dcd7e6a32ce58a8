"""Idempotency index model."""

from sqlalchemy import Column, DateTime, Integer, String

from database import Base


class ShareIdempotency(Base):
    """Maps a hashed idempotency key to the share it produced. Inserted once, never updated."""

    __tablename__ = "share_idempotency"

    idempotency_hash = Column(String, primary_key=True)
    schema_version = Column(Integer, nullable=False, default=1)
    target_id = Column(String, nullable=False)
    content_hash = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
