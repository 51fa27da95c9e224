from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.sql import func

from app.core.database import Base


PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")


class Purchase(Base):
    __tablename__ = "purchases"
    __table_args__ = (UniqueConstraint("transaction_id", name="uq_purchases_transaction_id"),)

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid4()))
    user_id = Column(String, index=True, nullable=False)
    credits_purchased = Column(Integer, nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, default="USD")
    payment_provider = Column(String, index=True, default="dodo")
    payment_status = Column(String, index=True, default="pending")
    transaction_id = Column(String, index=True, nullable=True)
    receipt_url = Column(String, nullable=True)
    purchase_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
