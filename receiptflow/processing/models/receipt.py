"""
SQLAlchemy models for receipt persistence.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, Numeric, String, Text

from receiptflow.database import Base

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

PROCESSING_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReceiptModel(Base):
    """One uploaded document and its extracted fields."""
    __tablename__ = "receipts"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)

    # File reference (trusted from the uploader)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False, default=0)

    processing_status = Column(String, nullable=False, default=PENDING, index=True)
    processing_error = Column(Text)
    # Set by each claim; completion and failure must present it
    processing_token = Column(String)

    # Extracted fields (authoritative only when completed)
    merchant_name = Column(String)
    total_amount = Column(Numeric(12, 2))
    currency = Column(String(3))
    receipt_date = Column(String(10))  # YYYY-MM-DD
    category = Column(String)
    tax_amount = Column(Numeric(12, 2))
    payment_method = Column(String)
    confidence_score = Column(Float)
    raw_ocr_text = Column(Text)
    notes = Column(Text)

    # Variant attributes, persisted but not interpreted by the pipeline
    document_type = Column(String)
    document_fields = Column(JSON)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ReceiptLineItemModel(Base):
    """Line item breakdown of an invoice or itemised receipt."""
    __tablename__ = "receipt_line_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    receipt_id = Column(String, ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False, default=0)
    item_code = Column(String)
    tax_rate = Column(Numeric(5, 2))
