"""CreditHistory model: append-only ledger entries."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CreditHistory(Base):
    """Immutable ledger entry written alongside every balance mutation."""

    __tablename__ = "credit_history"
    __table_args__ = (
        # One usage/refund per job and one purchase per transaction.
        UniqueConstraint("transaction_type", "reference_id", name="uq_credit_history_type_reference"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    transaction_type = Column(String, nullable=False)  # purchase, usage, refund, adjustment
    description = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    balance_after = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="credit_history")
