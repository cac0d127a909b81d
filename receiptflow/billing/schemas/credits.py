"""
Credit ledger schemas
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreditBalanceResponse(BaseModel):
    user_id: str
    credits: int


class CreditTransactionResponse(BaseModel):
    """Ledger entry"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    amount: int = Field(..., description="positive = credit, negative = debit")
    transaction_type: str
    description: Optional[str] = None
    receipt_id: Optional[str] = None
    created_at: datetime


class CreditTransactionList(BaseModel):
    credits: int
    transactions: List[CreditTransactionResponse] = Field(default_factory=list)


class CreditEvent(BaseModel):
    """Completed payment reported by the payment provider integration"""
    user_id: str
    amount: int = Field(..., gt=0)
    transaction_type: Literal["purchase", "refund", "bonus"] = "purchase"
    description: str = "Credit purchase"
    email: Optional[str] = None


class CreditAdjustRequest(BaseModel):
    """Administrative balance change"""
    user_id: str
    action: Literal["add", "subtract", "set"]
    amount: int = Field(..., ge=0)


class CreditAdjustResponse(BaseModel):
    success: bool = True
    user_id: str
    action: str
    amount: int
    old_credits: int
    new_credits: int
