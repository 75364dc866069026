"""CRM integration model holding the encrypted subaccount credential."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class CrmIntegration(Base):
    """Per-user CRM connection used for social publishing."""

    __tablename__ = "crm_integrations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=False)
    api_key_encrypted = Column(Text, nullable=False)
    location_id = Column(String, nullable=False, index=True)
    business_name = Column(String, nullable=True)
    business_email = Column(String, nullable=True)
    business_phone = Column(String, nullable=True)
    location_name = Column(String, nullable=True)
    location_email = Column(String, nullable=True)
    is_connected = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="crm_integration")
