"""Generation metadata model."""

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from database import Base


class Generation(Base):
    """Owner-scoped generated bundle; scene and music code live in the blob store."""

    __tablename__ = "generations"
    __table_args__ = (Index("ix_generations_owner", "owner_type", "owner_id", "created_at"),)

    generation_id = Column(String, primary_key=True)
    schema_version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    owner_type = Column(String, nullable=False)
    owner_id = Column(String, nullable=False)
    owner_email = Column(String, nullable=True)
    intention = Column(Text, nullable=False)
    duration_seconds = Column(Integer, nullable=False, default=60)
    background_theme = Column(String, nullable=False, default="spring")
    scene_time = Column(String, nullable=False, default="morning")
    thumbnail_data_url = Column(Text, nullable=True)
    scene_model = Column(String, nullable=True)
    music_model = Column(String, nullable=True)
    payload_path = Column(String, nullable=False)
