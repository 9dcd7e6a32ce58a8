"""Global daily generation quota counter model."""

from sqlalchemy import Column, DateTime, Integer, String

from database import Base


class GenerationDailyQuota(Base):
    """One row per UTC day; count is bounded by daily_limit."""

    __tablename__ = "generation_daily_quota"

    date_key = Column(String, primary_key=True)
    schema_version = Column(Integer, nullable=False, default=1)
    count = Column(Integer, nullable=False, default=0)
    daily_limit = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
