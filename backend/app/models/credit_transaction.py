from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


TRANSACTION_TYPES = ("purchase", "usage", "bonus", "refund", "adjustment")


class CreditTransaction(Base):
    """Append-only audit row; one per balance mutation."""

    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    type = Column(String, index=True, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reference_id = Column(String, index=True, nullable=True)
    reference_type = Column(String, nullable=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
