"""
Rule-based plausibility checks on extracted fields.

Every rule is pure and advisory: violations are returned as warning strings,
never raised. All rules run; nothing short-circuits.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from receiptflow.processing.schemas import ExtractedReceipt, MedicalInvoiceDocumentFields

SUPPORTED_CURRENCIES = frozenset({"USD", "EUR", "GBP", "CHF", "CAD", "AUD", "JPY", "CNY"})
UNUSUALLY_HIGH_AMOUNT = Decimal("1000000")
MAX_RECEIPT_AGE_YEARS = 10
EARLIEST_BIRTH_DATE = date(1900, 1, 1)


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:  # Feb 29 in a non-leap target year
        return day.replace(year=day.year - years, day=28)


# ---------------------------------------------------------------------------
# Individual rule checkers
# ---------------------------------------------------------------------------

def check_amount_positive(fields: ExtractedReceipt, today: date) -> list[str]:
    if fields.amount <= 0:
        return ["Amount must be positive"]
    return []


def check_amount_high(fields: ExtractedReceipt, today: date) -> list[str]:
    if fields.amount > UNUSUALLY_HIGH_AMOUNT:
        return ["Amount seems unusually high"]
    return []


def check_currency(fields: ExtractedReceipt, today: date) -> list[str]:
    if fields.currency not in SUPPORTED_CURRENCIES:
        return [f"Currency {fields.currency} may not be supported"]
    return []


def check_receipt_date(fields: ExtractedReceipt, today: date) -> list[str]:
    """Future dates and dates older than ten years are both flagged."""
    if fields.receipt_date is None:
        return []
    warnings = []
    if fields.receipt_date > today:
        warnings.append("Receipt date cannot be in the future")
    if fields.receipt_date < _years_before(today, MAX_RECEIPT_AGE_YEARS):
        warnings.append(f"Receipt date is more than {MAX_RECEIPT_AGE_YEARS} years old")
    return warnings


def check_medical_dates(fields: ExtractedReceipt, today: date) -> list[str]:
    doc = fields.document
    if not isinstance(doc, MedicalInvoiceDocumentFields):
        return []
    warnings = []
    if doc.patient_dob is not None and not (EARLIEST_BIRTH_DATE <= doc.patient_dob <= today):
        warnings.append("Patient date of birth is not plausible")
    if (
        doc.treatment_date is not None
        and fields.receipt_date is not None
        and doc.treatment_date > fields.receipt_date
    ):
        warnings.append("Treatment date is after the receipt date")
    return warnings


RULES: list[Callable[[ExtractedReceipt, date], list[str]]] = [
    check_amount_positive,
    check_amount_high,
    check_currency,
    check_receipt_date,
    check_medical_dates,
]


def validate(fields: ExtractedReceipt, today: Optional[date] = None) -> list[str]:
    """Run every rule and return the accumulated warnings (possibly empty)."""
    today = today or date.today()
    warnings: list[str] = []
    for rule in RULES:
        warnings.extend(rule(fields, today))
    return warnings


def apply_confidence_cap(confidence: float, warnings: list[str], cap: float = 0.6) -> float:
    """Cap the extractor's confidence when any warning exists."""
    if warnings:
        return min(confidence, cap)
    return confidence
