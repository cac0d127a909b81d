"""
Credit balance and ledger models
"""
from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text

from receiptflow.database import Base
from receiptflow.processing.models.receipt import utcnow

PURCHASE = "purchase"
DEDUCTION = "deduction"
REFUND = "refund"
BONUS = "bonus"
ADJUSTMENT = "adjustment"

TRANSACTION_TYPES = (PURCHASE, DEDUCTION, REFUND, BONUS, ADJUSTMENT)


class ProfileModel(Base):
    """User profile holding the fast-read credit balance"""
    __tablename__ = "profiles"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_profiles_credits_non_negative"),)

    id = Column(String, primary_key=True)  # user id
    email = Column(String)
    credits = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class CreditTransactionModel(Base):
    """Append-only ledger entry (positive = credit, negative = debit)"""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    transaction_type = Column(String, nullable=False)
    description = Column(Text)
    receipt_id = Column(String, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
