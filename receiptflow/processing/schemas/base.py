"""
Canonical Pydantic v2 models for the receipt pipeline.

The extractor output, the stored receipt and the API envelopes all live here.
Document-type specific attributes are a tagged union keyed by
``document_type``; the pipeline persists them as an opaque JSON bag.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Extracted data
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    line_number: int
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0.00")
    line_total: Decimal = Decimal("0.00")
    item_code: Optional[str] = None
    tax_rate: Optional[Decimal] = Field(default=None, description="Percentage, e.g. 21.00")


class _CommonDocumentFields(BaseModel):
    invoice_number: Optional[str] = None
    subtotal: Optional[Decimal] = None
    vendor_address: Optional[str] = None
    due_date: Optional[date] = None


class ReceiptDocumentFields(_CommonDocumentFields):
    """Plain receipts and bills."""
    document_type: Literal["receipt", "bill"] = "receipt"


class InvoiceDocumentFields(_CommonDocumentFields):
    document_type: Literal["invoice"] = "invoice"
    purchase_order_number: Optional[str] = None
    payment_reference: Optional[str] = None
    vendor_tax_id: Optional[str] = None


class MedicalInvoiceDocumentFields(_CommonDocumentFields):
    document_type: Literal["medical_invoice"] = "medical_invoice"
    patient_name: Optional[str] = None
    patient_dob: Optional[date] = None
    treatment_date: Optional[date] = None
    insurance_claim_number: Optional[str] = None
    diagnosis_codes: Optional[str] = None
    procedure_codes: Optional[str] = None
    provider_id: Optional[str] = None
    insurance_covered_amount: Optional[Decimal] = None
    patient_responsibility_amount: Optional[Decimal] = None


DocumentFields = Annotated[
    Union[ReceiptDocumentFields, InvoiceDocumentFields, MedicalInvoiceDocumentFields],
    Field(discriminator="document_type"),
]


class ExtractedReceipt(BaseModel):
    """Normalized extractor output."""
    merchant_name: str
    amount: Decimal = Field(..., description="Total incl. tax, 2-place precision")
    currency: str = Field(..., description="ISO 4217 code")
    receipt_date: Optional[date] = None
    category: str = "Other"
    tax_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    raw_text: str = ""
    document: DocumentFields = Field(default_factory=ReceiptDocumentFields)
    line_items: list[LineItem] = Field(default_factory=list)


class ProcessedReceiptData(ExtractedReceipt):
    """Extracted data as stored: confidence possibly capped, warnings attached."""
    validation_warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Stored receipt
# ---------------------------------------------------------------------------

class ReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    file_name: str
    file_path: str
    file_type: str
    file_size: int
    processing_status: str
    processing_error: Optional[str] = None
    merchant_name: Optional[str] = None
    total_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    receipt_date: Optional[str] = None
    category: Optional[str] = None
    tax_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    confidence_score: Optional[float] = None
    raw_ocr_text: Optional[str] = None
    notes: Optional[str] = None
    document_type: Optional[str] = None
    document_fields: Optional[dict] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# API request / response envelopes
# ---------------------------------------------------------------------------

class ReceiptCreateRequest(BaseModel):
    file_name: str
    file_path: str
    file_type: str = Field(..., description="Declared MIME type")
    file_size: int = Field(default=0, ge=0)


class ReceiptUpdateRequest(BaseModel):
    """User corrections to a completed receipt."""
    merchant_name: Optional[str] = None
    total_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    receipt_date: Optional[date] = None
    category: Optional[str] = None
    tax_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class ProcessResponse(BaseModel):
    success: bool = True
    receipt_id: str
    data: ProcessedReceiptData
    credits_remaining: int
    billed: bool = True
    processing_time_ms: int


class RetryResponse(BaseModel):
    success: bool = True
    receipt_id: str
    data: ProcessedReceiptData


class MarkFailedRequest(BaseModel):
    error: str = "Processing failed"


class BulkProcessRequest(BaseModel):
    receipt_ids: list[str]


class BulkItemData(BaseModel):
    merchant_name: str
    amount: Decimal
    currency: str
    receipt_date: Optional[date] = None
    category: str


class BulkItemResult(BaseModel):
    receipt_id: str
    success: bool
    data: Optional[BulkItemData] = None
    error: Optional[str] = None


class BulkSummary(BaseModel):
    total: int
    successful: int
    failed: int
    credits_used: int
    credits_remaining: int
    processing_time_ms: int


class BulkProcessResponse(BaseModel):
    success: bool = True
    summary: BulkSummary
    results: list[BulkItemResult] = Field(default_factory=list)


class StaleResetResponse(BaseModel):
    reset: int
    receipt_ids: list[str] = Field(default_factory=list)
