"""
Single-receipt processing: pending|failed -> processing -> completed|failed.

The ``processing`` state is committed before the extractor is called, so a
crash mid-extraction leaves a visibly stuck, retry-eligible row. Credits are
debited only after the extracted fields are stored, and a failed debit never
rolls the receipt back.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from receiptflow.billing.ledger import CreditLedger
from receiptflow.errors import (
    ExtractionError,
    ExtractionFailure,
    PaymentRequired,
    ReceiptConflict,
    ReceiptForbidden,
    ReceiptNotFound,
    StorageError,
)
from receiptflow.processing.models.receipt import COMPLETED, FAILED, PENDING, PROCESSING, ReceiptModel
from receiptflow.processing.pipeline.normalizer import normalize_extraction
from receiptflow.processing.pipeline.rate_limit import TokenBucket
from receiptflow.processing.pipeline.repository import ReceiptRepository
from receiptflow.processing.pipeline.validation import apply_confidence_cap, validate
from receiptflow.processing.schemas import ExtractedReceipt, ProcessedReceiptData, ProcessResponse

if TYPE_CHECKING:
    from receiptflow.integrations.extractor import Extractor
    from receiptflow.integrations.storage import Storage

logger = logging.getLogger(__name__)

CREDITS_PER_RECEIPT = 1


@dataclass
class ExtractionOutcome:
    fields: ExtractedReceipt
    confidence: float
    warnings: list[str] = field(default_factory=list)

    def to_data(self) -> ProcessedReceiptData:
        return ProcessedReceiptData.model_validate(
            {
                **self.fields.model_dump(),
                "confidence_score": self.confidence,
                "validation_warnings": self.warnings,
            }
        )


class ReceiptProcessor:
    def __init__(
        self,
        db: Session,
        extractor: "Extractor",
        storage: "Storage",
        ledger: Optional[CreditLedger] = None,
        *,
        url_ttl_seconds: int = 60,
        confidence_cap: float = 0.6,
        today: Callable[[], date] = date.today,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.extractor = extractor
        self.storage = storage
        self.receipts = ReceiptRepository(db)
        self.ledger = ledger or CreditLedger(db)
        self.url_ttl_seconds = url_ttl_seconds
        self.confidence_cap = confidence_cap
        self.today = today
        self.clock = clock

    # ── preconditions ────────────────────────────────────────────────────
    def load_owned(self, receipt_id: str, user_id: str) -> ReceiptModel:
        receipt = self.receipts.load(receipt_id)
        if receipt is None:
            logger.info("Receipt not found: %s", receipt_id)
            raise ReceiptNotFound("Receipt not found")
        if receipt.user_id != user_id:
            logger.info("User %s does not own receipt %s", user_id, receipt_id)
            raise ReceiptForbidden("Forbidden - you do not own this receipt")
        return receipt

    @staticmethod
    def check_processable(receipt: ReceiptModel) -> None:
        if receipt.processing_status == COMPLETED:
            raise ReceiptConflict("Receipt already processed")
        if receipt.processing_status == PROCESSING:
            raise ReceiptConflict("Receipt is already being processed")

    # ── shared steps ─────────────────────────────────────────────────────
    def mark_failed(self, receipt_id: str, message: str, claim_token: str) -> bool:
        """Fail the receipt unless the claim was reset and taken over meanwhile."""
        self.db.rollback()
        moved = self.receipts.transition(
            receipt_id,
            (PROCESSING,),
            FAILED,
            token=claim_token,
            processing_token=None,
            processing_error=message,
        )
        if moved:
            logger.info("Receipt %s -> failed: %s", receipt_id, message)
        else:
            logger.warning("Receipt %s was reclaimed; leaving its status alone (%s)", receipt_id, message)
        return moved

    def run_extraction(
        self,
        receipt: ReceiptModel,
        claim_token: str,
        url_ttl_seconds: Optional[int] = None,
        rate_limiter: Optional[TokenBucket] = None,
    ) -> ExtractionOutcome:
        """Fetch URL, extract, validate, store. The receipt must already be claimed.

        Any failure marks the receipt ``failed`` and raises ``ExtractionFailure``.
        Raises ``ReceiptConflict`` if the claim was reset and handed to another
        request before the results could be stored; nothing is written then.
        """
        ttl = url_ttl_seconds or self.url_ttl_seconds
        try:
            url = self.storage.get_readable_url(receipt.file_path, ttl)
            if rate_limiter is not None:
                rate_limiter.acquire()
            logger.info("Calling extractor for receipt %s", receipt.id)
            fields = normalize_extraction(self.extractor.extract(url))
        except (StorageError, ExtractionError) as exc:
            message = str(exc) or "Failed to extract receipt data"
            logger.warning("Extraction failed for receipt %s: %s", receipt.id, message)
            self.mark_failed(receipt.id, message, claim_token)
            raise ExtractionFailure(message) from exc
        except Exception as exc:
            logger.exception("Unexpected extractor error for receipt %s", receipt.id)
            message = str(exc) or "Unknown error during processing"
            self.mark_failed(receipt.id, message, claim_token)
            raise ExtractionFailure(message) from exc

        warnings = validate(fields, self.today())
        confidence = apply_confidence_cap(fields.confidence_score, warnings, self.confidence_cap)
        if warnings:
            logger.warning("Validation warnings for receipt %s: %s", receipt.id, warnings)

        try:
            stored = self.receipts.transition(
                receipt.id,
                (PROCESSING,),
                COMPLETED,
                token=claim_token,
                processing_token=None,
                merchant_name=fields.merchant_name,
                total_amount=fields.amount,
                currency=fields.currency,
                receipt_date=fields.receipt_date.isoformat() if fields.receipt_date else None,
                category=fields.category,
                tax_amount=fields.tax_amount,
                payment_method=fields.payment_method,
                confidence_score=confidence,
                raw_ocr_text=fields.raw_text,
                document_type=fields.document.document_type,
                document_fields=fields.document.model_dump(mode="json"),
                processing_error="; ".join(warnings) if warnings else None,
            )
        except SQLAlchemyError as exc:
            logger.exception("Failed to store extracted data for receipt %s", receipt.id)
            self.mark_failed(receipt.id, "Failed to update receipt with extracted data", claim_token)
            raise ExtractionFailure("Failed to update receipt with extracted data") from exc

        if not stored:
            logger.warning("Receipt %s was reset and reclaimed during extraction; discarding this result", receipt.id)
            raise ReceiptConflict("Receipt was reset while processing")

        self.receipts.replace_line_items(receipt.id, fields.line_items)
        logger.info("Receipt %s completed (confidence %.2f)", receipt.id, confidence)
        return ExtractionOutcome(fields=fields, confidence=confidence, warnings=warnings)

    def bill(self, receipt: ReceiptModel, user_id: str, reason: str) -> bool:
        """Debit one credit; a refusal here is a ledger anomaly, not a failure."""
        try:
            debited = self.ledger.try_debit(user_id, CREDITS_PER_RECEIPT, reason, receipt.id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Debit raised for user %s on receipt %s", user_id, receipt.id)
            debited = False
        if not debited:
            logger.error(
                "Ledger anomaly: receipt %s completed but debit for user %s failed; reconcile manually",
                receipt.id, user_id,
            )
        return debited

    # ── entry point ──────────────────────────────────────────────────────
    def process(self, receipt_id: str, user_id: str) -> ProcessResponse:
        started = self.clock()
        logger.info("Processing receipt %s for user %s", receipt_id, user_id)

        receipt = self.load_owned(receipt_id, user_id)
        self.check_processable(receipt)

        balance = self.ledger.get_balance(user_id)
        if balance < CREDITS_PER_RECEIPT:
            logger.info("Insufficient credits for user %s", user_id)
            raise PaymentRequired("Insufficient credits. Please purchase more credits to continue.")

        claim_token = self.receipts.claim(receipt.id, (PENDING, FAILED))
        if claim_token is None:
            raise ReceiptConflict("Receipt is already being processed")

        try:
            outcome = self.run_extraction(receipt, claim_token)
        except ExtractionFailure as exc:
            raise ExtractionFailure("Failed to process receipt", details=exc.error) from exc

        billed = self.bill(receipt, user_id, f"Receipt processing: {receipt.file_name}")
        elapsed_ms = int((self.clock() - started) * 1000)
        logger.info("Processed receipt %s in %dms", receipt_id, elapsed_ms)
        return ProcessResponse(
            receipt_id=receipt.id,
            data=outcome.to_data(),
            credits_remaining=self.ledger.get_balance(user_id),
            billed=billed,
            processing_time_ms=elapsed_ms,
        )
