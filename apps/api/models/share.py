"""Share metadata model."""

from sqlalchemy import Column, DateTime, Integer, String

from database import Base


class Share(Base):
    """Metadata row for an immutable shared snapshot; the payload lives in the blob store."""

    __tablename__ = "shares"

    share_id = Column(String, primary_key=True)
    schema_version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    content_hash = Column(String, nullable=False)
    payload_path = Column(String, nullable=False)
    owner_type = Column(String, nullable=True)
    owner_id = Column(String, nullable=True, index=True)
    owner_email = Column(String, nullable=True)
    idempotency_hash = Column(String, nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)
