"""
Sequential batch processing with per-item failure isolation.

The balance is read once at the start and a local counter tracks spending,
so the batch never extracts more receipts than the opening snapshot pays
for. Items run strictly in input order; every extractor call first takes a
token from the rate limiter.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from receiptflow.errors import ExtractionFailure, ProcessingError, ReceiptConflict, ReceiptNotFound
from receiptflow.processing.models.receipt import FAILED, PENDING
from receiptflow.processing.pipeline.rate_limit import TokenBucket
from receiptflow.processing.pipeline.state_machine import CREDITS_PER_RECEIPT, ReceiptProcessor
from receiptflow.processing.schemas import (
    BulkItemData,
    BulkItemResult,
    BulkProcessResponse,
    BulkSummary,
)

logger = logging.getLogger(__name__)

INSUFFICIENT_CREDITS = "Insufficient credits"
BATCH_TIMEOUT = "Batch time budget exceeded"


class BulkProcessor:
    def __init__(
        self,
        processor: ReceiptProcessor,
        rate_limiter: Optional[TokenBucket] = None,
        *,
        item_budget_seconds: float = 30.0,
        timeout_buffer_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.processor = processor
        self.rate_limiter = rate_limiter
        self.item_budget_seconds = item_budget_seconds
        self.timeout_buffer_seconds = timeout_buffer_seconds
        self.clock = clock

    def _process_one(self, receipt_id: str, user_id: str) -> tuple[BulkItemData, bool]:
        receipts = self.processor.receipts
        receipt = receipts.load(receipt_id)
        if receipt is None or receipt.user_id != user_id:
            raise ReceiptNotFound("Receipt not found or access denied")
        self.processor.check_processable(receipt)
        claim_token = receipts.claim(receipt.id, (PENDING, FAILED))
        if claim_token is None:
            raise ReceiptConflict("Receipt is already being processed")

        outcome = self.processor.run_extraction(receipt, claim_token, rate_limiter=self.rate_limiter)
        billed = self.processor.bill(receipt, user_id, f"Bulk processing: {receipt.file_name}")
        fields = outcome.fields
        data = BulkItemData(
            merchant_name=fields.merchant_name,
            amount=fields.amount,
            currency=fields.currency,
            receipt_date=fields.receipt_date,
            category=fields.category,
        )
        return data, billed

    def process_bulk(self, receipt_ids: list[str], user_id: str) -> BulkProcessResponse:
        started = self.clock()
        deadline = started + self.item_budget_seconds * len(receipt_ids) + self.timeout_buffer_seconds
        ledger = self.processor.ledger

        initial_credits = ledger.get_balance(user_id)
        credits_used = 0
        funds_exhausted = False
        results: list[BulkItemResult] = []
        logger.info(
            "Bulk processing %d receipt(s) for user %s with %d credit(s)",
            len(receipt_ids), user_id, initial_credits,
        )

        for index, receipt_id in enumerate(receipt_ids, start=1):
            logger.info("Bulk item %d/%d: %s", index, len(receipt_ids), receipt_id)

            if self.clock() > deadline:
                results.append(BulkItemResult(receipt_id=receipt_id, success=False, error=BATCH_TIMEOUT))
                continue
            if funds_exhausted or initial_credits - credits_used < CREDITS_PER_RECEIPT:
                logger.info("Out of credits after %d receipt(s)", credits_used)
                results.append(BulkItemResult(receipt_id=receipt_id, success=False, error=INSUFFICIENT_CREDITS))
                continue

            try:
                data, billed = self._process_one(receipt_id, user_id)
            except ExtractionFailure as exc:
                results.append(BulkItemResult(receipt_id=receipt_id, success=False, error=exc.error))
                continue
            except ProcessingError as exc:
                logger.warning("Skipping receipt %s: %s", receipt_id, exc.error)
                results.append(BulkItemResult(receipt_id=receipt_id, success=False, error=exc.error))
                continue
            except Exception:
                logger.exception("Unexpected error for receipt %s", receipt_id)
                self.processor.db.rollback()
                results.append(BulkItemResult(receipt_id=receipt_id, success=False, error="Unexpected error"))
                continue

            if billed:
                credits_used += CREDITS_PER_RECEIPT
            else:
                # balance drained elsewhere since the snapshot
                funds_exhausted = True
            results.append(BulkItemResult(receipt_id=receipt_id, success=True, data=data))

        successful = sum(1 for r in results if r.success)
        elapsed_ms = int((self.clock() - started) * 1000)
        summary = BulkSummary(
            total=len(receipt_ids),
            successful=successful,
            failed=len(results) - successful,
            credits_used=credits_used,
            credits_remaining=ledger.get_balance(user_id),
            processing_time_ms=elapsed_ms,
        )
        logger.info(
            "Bulk processing done in %dms: %d ok, %d failed, %d credit(s) used",
            elapsed_ms, summary.successful, summary.failed, summary.credits_used,
        )
        return BulkProcessResponse(summary=summary, results=results)
