"""
Normalizes a raw extractor payload into an ``ExtractedReceipt``.

Model output is loosely typed: numbers arrive as strings, enums drift, dates
are sometimes free text. Required fields (merchant, amount, currency) raise
``ExtractionError``; everything else degrades to ``None`` or a default.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from receiptflow.errors import ExtractionError
from receiptflow.processing.schemas import (
    ExtractedReceipt,
    InvoiceDocumentFields,
    LineItem,
    MedicalInvoiceDocumentFields,
    ReceiptDocumentFields,
)

logger = logging.getLogger(__name__)

CATEGORIES = (
    "Food & Dining",
    "Transportation",
    "Shopping",
    "Office Supplies",
    "Travel",
    "Entertainment",
    "Utilities",
    "Healthcare",
    "Other",
)
PAYMENT_METHODS = ("Cash", "Credit Card", "Debit Card", "Bank Transfer", "Unknown")
DOCUMENT_TYPES = ("receipt", "invoice", "medical_invoice", "bill")
DEFAULT_CONFIDENCE = 0.5
INSURANCE_TOLERANCE = Decimal("0.02")

# Placeholder numbers the model tends to invent when none is printed
_SYNTHETIC_INVOICE_PATTERNS = [
    re.compile(r"^INV-\d{4}-\d{3}$", re.IGNORECASE),
    re.compile(r"^INVOICE-\d{4}-\d+$", re.IGNORECASE),
    re.compile(r"^[A-Z]{3}-\d{4}-\d{3}$", re.IGNORECASE),
    re.compile(r"^REC-\d{4}-\d{3}$", re.IGNORECASE),
]

_CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Scalar coercion helpers
# ---------------------------------------------------------------------------

def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _decimal(value: Any, places: Decimal = _CENT) -> Optional[Decimal]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    raw = str(value).strip()
    if "," in raw and "." in raw:  # thousands separators
        raw = raw.replace(",", "")
    try:
        number = Decimal(raw)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number.quantize(places, rounding=ROUND_HALF_UP)


def _date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    text = _text(value)
    if text is None:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.warning("Discarding unparseable date from extractor: %r", text)
        return None


def normalize_category(value: Any) -> str:
    text = _text(value)
    return text if text in CATEGORIES else "Other"


def normalize_payment_method(value: Any) -> Optional[str]:
    text = _text(value)
    if text is None:
        return None
    return text if text in PAYMENT_METHODS else "Unknown"


def normalize_confidence(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if score != score:  # NaN
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, score))


def normalize_invoice_number(value: Any) -> Optional[str]:
    text = _text(value)
    if text is None:
        return None
    for pattern in _SYNTHETIC_INVOICE_PATTERNS:
        if pattern.match(text):
            logger.warning("Dropping synthetic-looking invoice number %r", text)
            return None
    return text


def normalize_line_items(value: Any) -> list[LineItem]:
    if not isinstance(value, list):
        return []
    items: list[LineItem] = []
    for index, raw in enumerate(value, start=1):
        if not isinstance(raw, Mapping):
            continue
        description = _text(raw.get("description"))
        if description is None:
            continue
        quantity = _decimal(raw.get("quantity"), Decimal("0.001")) or Decimal("1")
        unit_price = _decimal(raw.get("unit_price")) or Decimal("0.00")
        line_total = _decimal(raw.get("line_total"))
        if line_total is None:
            line_total = (quantity * unit_price).quantize(_CENT, rounding=ROUND_HALF_UP)
        line_number = raw.get("line_number")
        items.append(
            LineItem(
                line_number=line_number if isinstance(line_number, int) else index,
                description=description,
                quantity=quantity,
                unit_price=unit_price,
                line_total=line_total,
                item_code=_text(raw.get("item_code")),
                tax_rate=_decimal(raw.get("tax_rate")),
            )
        )
    return items


# ---------------------------------------------------------------------------
# Document variants
# ---------------------------------------------------------------------------

def _correct_insurance(total: Decimal, doc: MedicalInvoiceDocumentFields) -> None:
    """Trust total and insurance-covered amount; derive what the patient owes."""
    covered = doc.insurance_covered_amount
    if covered is None:
        return
    patient_pays = doc.patient_responsibility_amount
    if patient_pays is None or abs(covered + patient_pays - total) > INSURANCE_TOLERANCE:
        corrected = total - covered
        logger.info(
            "Correcting patient responsibility to %s (total %s, insurance %s)",
            corrected, total, covered,
        )
        doc.patient_responsibility_amount = corrected
    if doc.patient_responsibility_amount < 0:
        doc.patient_responsibility_amount = Decimal("0.00")


def normalize_document(payload: Mapping[str, Any], total: Decimal):
    doc_type = _text(payload.get("document_type"))
    if doc_type not in DOCUMENT_TYPES:
        doc_type = "receipt"

    common = {
        "invoice_number": normalize_invoice_number(payload.get("invoice_number")),
        "subtotal": _decimal(payload.get("subtotal")),
        "vendor_address": _text(payload.get("vendor_address")),
        "due_date": _date(payload.get("due_date")),
    }

    if doc_type == "invoice":
        return InvoiceDocumentFields(
            **common,
            purchase_order_number=_text(payload.get("purchase_order_number")),
            payment_reference=_text(payload.get("payment_reference")),
            vendor_tax_id=_text(payload.get("vendor_tax_id")),
        )
    if doc_type == "medical_invoice":
        doc = MedicalInvoiceDocumentFields(
            **common,
            patient_name=_text(payload.get("patient_name")),
            patient_dob=_date(payload.get("patient_dob")),
            treatment_date=_date(payload.get("treatment_date")),
            insurance_claim_number=_text(payload.get("insurance_claim_number")),
            diagnosis_codes=_text(payload.get("diagnosis_codes")),
            procedure_codes=_text(payload.get("procedure_codes")),
            provider_id=_text(payload.get("provider_id")),
            insurance_covered_amount=_decimal(payload.get("insurance_covered_amount")),
            patient_responsibility_amount=_decimal(payload.get("patient_responsibility_amount")),
        )
        _correct_insurance(total, doc)
        return doc
    return ReceiptDocumentFields(document_type=doc_type, **common)


def normalize_extraction(payload: Any) -> ExtractedReceipt:
    """Turn a raw extractor mapping into an ``ExtractedReceipt``."""
    if isinstance(payload, ExtractedReceipt):
        return payload
    if not isinstance(payload, Mapping):
        raise ExtractionError(f"Extractor returned {type(payload).__name__}, expected an object")

    merchant_name = _text(payload.get("merchant_name"))
    amount = _decimal(payload.get("amount"))
    currency = _text(payload.get("currency"))
    if merchant_name is None or amount is None or currency is None:
        raise ExtractionError("Missing required fields in extracted data")

    return ExtractedReceipt(
        merchant_name=merchant_name,
        amount=amount,
        currency=currency.upper(),
        receipt_date=_date(payload.get("receipt_date")),
        category=normalize_category(payload.get("category")),
        tax_amount=_decimal(payload.get("tax_amount")),
        payment_method=normalize_payment_method(payload.get("payment_method")),
        confidence_score=normalize_confidence(payload.get("confidence_score")),
        raw_text=_text(payload.get("raw_text")) or "",
        document=normalize_document(payload, amount),
        line_items=normalize_line_items(payload.get("line_items")),
    )
