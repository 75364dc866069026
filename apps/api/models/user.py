"""User model."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


AUTH_TYPE_PASSWORD = "password"
AUTH_TYPE_EMBEDDED = "embedded"


class User(Base):
    """Account holding a credit balance; direct (password) or embedded (iframe)."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_users_credits_balance_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    credits_balance = Column(Integer, nullable=False, default=0)
    location_id = Column(String, unique=True, nullable=True, index=True)
    auth_type = Column(String, nullable=False, default=AUTH_TYPE_PASSWORD)  # password, embedded
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    credit_history = relationship("CreditHistory", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    videos = relationship("Video", back_populates="user", cascade="all, delete-orphan")
    crm_integration = relationship(
        "CrmIntegration",
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )

    @property
    def has_placeholder_email(self) -> bool:
        return (self.email or "").endswith("@embedded.placeholder")
