"""
Re-entering receipts into extraction without billing, plus the manual
recovery tools for receipts stuck in ``processing``.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from receiptflow.errors import NotRetryable, ReceiptConflict
from receiptflow.processing.models.receipt import (
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    ReceiptModel,
    utcnow,
)
from receiptflow.processing.pipeline.state_machine import ReceiptProcessor
from receiptflow.processing.schemas import RetryResponse

logger = logging.getLogger(__name__)

STALE_PROCESSING_MESSAGE = "Processing timed out. Please click Retry to process again."


class RetryCoordinator:
    def __init__(
        self,
        processor: ReceiptProcessor,
        *,
        low_confidence_threshold: float = 0.7,
        url_ttl_seconds: int = 300,
    ):
        self.processor = processor
        self.receipts = processor.receipts
        self.low_confidence_threshold = low_confidence_threshold
        self.url_ttl_seconds = url_ttl_seconds

    def is_eligible(self, receipt: ReceiptModel) -> bool:
        status = receipt.processing_status
        if status in (PENDING, FAILED):
            return True
        return (
            status == COMPLETED
            and receipt.confidence_score is not None
            and receipt.confidence_score < self.low_confidence_threshold
        )

    def retry(self, receipt_id: str, user_id: str) -> RetryResponse:
        """Extract again; never touches the credit ledger."""
        logger.info("Retrying receipt %s for user %s", receipt_id, user_id)
        receipt = self.processor.load_owned(receipt_id, user_id)
        if not self.is_eligible(receipt):
            raise NotRetryable("Only pending, failed, or low confidence receipts can be retried")

        claim_token = self.receipts.claim(
            receipt.id,
            (PENDING, FAILED),
            low_confidence_below=self.low_confidence_threshold,
            processing_error=None,
        )
        if claim_token is None:
            raise ReceiptConflict("Receipt is already being processed")

        outcome = self.processor.run_extraction(receipt, claim_token, self.url_ttl_seconds)
        return RetryResponse(receipt_id=receipt.id, data=outcome.to_data())

    def force_reset(self, receipt_id: str, user_id: str, error: str = "Processing failed") -> ReceiptModel:
        """Mark a pending/processing/failed receipt as failed. Completed receipts are refused."""
        receipt = self.processor.load_owned(receipt_id, user_id)
        moved = self.receipts.transition(
            receipt.id, (PENDING, PROCESSING, FAILED), FAILED, processing_token=None, processing_error=error
        )
        if not moved:
            raise ReceiptConflict("Completed receipts cannot be marked as failed")
        logger.info("Receipt %s force-reset to failed: %s", receipt_id, error)
        return self.receipts.load(receipt.id)

    def reset_stale(self, older_than_seconds: int, now: Optional[datetime] = None) -> list[str]:
        """Fail every receipt left in ``processing`` longer than the ttl."""
        cutoff = (now or utcnow()) - timedelta(seconds=older_than_seconds)
        reset = []
        for receipt_id in self.receipts.stale_processing_ids(cutoff):
            if self.receipts.transition(
                receipt_id,
                (PROCESSING,),
                FAILED,
                updated_before=cutoff,
                processing_token=None,
                processing_error=STALE_PROCESSING_MESSAGE,
            ):
                reset.append(receipt_id)
        if reset:
            logger.warning("Reset %d stuck receipt(s) to failed", len(reset))
        return reset
