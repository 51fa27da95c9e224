from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class CreditsResponse(BaseModel):
    balance: int
    lifetime_credits: int


class TransactionHistoryItem(BaseModel):
    id: int
    amount: int
    type: str
    balance_after: int
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PurchaseHistoryItem(BaseModel):
    id: str
    credits_purchased: int
    amount_paid: Decimal
    currency: str
    payment_status: str
    created_at: datetime

    class Config:
        from_attributes = True


class CreditPackageResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    credits: int
    price: Decimal
    currency: str
    is_popular: bool = False
    sort_order: int = 0

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    items: List[TransactionHistoryItem]
    limit: int


class PurchaseListResponse(BaseModel):
    items: List[PurchaseHistoryItem]
    limit: int
