"""Video model: one generation job and its lifecycle record."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Video(Base):
    """Requested video; pending -> processing -> completed | failed."""

    __tablename__ = "videos"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    additional_details = Column(Text, nullable=True)
    model = Column(String, nullable=True)
    service = Column(String, nullable=False, default="SORA")
    video_type = Column(String, nullable=False, default="text-to-video")  # text-to-video, image-to-video
    aspect_ratio = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    start_frame_url = Column(String, nullable=True)
    end_frame_url = Column(String, nullable=True)
    credits_charged = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending", index=True)
    video_url = Column(String, nullable=True)
    task_id = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="videos")
