"""Embedded (iframe) session keyed by external location."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func
import uuid

from database import Base


class EmbedSession(Base):
    """Opaque session token hash; at most one live row per location."""

    __tablename__ = "embed_sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    location_id = Column(String, unique=True, nullable=False, index=True)
    token_hash = Column(String, unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
