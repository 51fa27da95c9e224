from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from app.core.database import Base


class CreditPackage(Base):
    __tablename__ = "credit_packages"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    credits = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, default="USD")
    is_popular = Column(Boolean, default=False)
    is_active = Column(Boolean, index=True, default=True)
    sort_order = Column(Integer, default=0)
    dodo_product_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
