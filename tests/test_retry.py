"""
Retry never bills; manual recovery of stuck receipts.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from receiptflow.billing.models import CreditTransactionModel
from receiptflow.errors import (
    ExtractionError,
    ExtractionFailure,
    NotRetryable,
    ReceiptConflict,
    ReceiptForbidden,
    ReceiptNotFound,
)
from receiptflow.processing.models import COMPLETED, FAILED, PENDING, PROCESSING, ReceiptModel
from receiptflow.processing.pipeline import ReceiptProcessor, RetryCoordinator
from receiptflow.processing.pipeline.retry import STALE_PROCESSING_MESSAGE
from tests.helpers import OTHER_USER_ID, USER_ID, receipt_payload

TODAY = date(2026, 10, 19)
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def coordinator(db, extractor, storage):
    processor = ReceiptProcessor(db, extractor, storage, today=lambda: TODAY)
    return RetryCoordinator(processor, low_confidence_threshold=0.7, url_ttl_seconds=300)


def _transaction_count(db):
    return db.query(CreditTransactionModel).count()


class TestRetry:
    @pytest.mark.parametrize("status", [PENDING, FAILED])
    def test_pending_and_failed_are_retried_without_billing(self, db, coordinator, make_receipt, fund, status):
        fund(credits=2)
        before = _transaction_count(db)
        receipt_id = make_receipt(status=status, processing_error="Extractor timeout")

        result = coordinator.retry(receipt_id, USER_ID)

        assert result.success is True
        assert result.data.merchant_name == "Corner Cafe"
        row = db.get(ReceiptModel, receipt_id)
        assert row.processing_status == COMPLETED
        assert row.processing_error is None
        assert _transaction_count(db) == before

    def test_works_with_zero_credits(self, db, coordinator, make_receipt):
        receipt_id = make_receipt(status=FAILED)
        coordinator.retry(receipt_id, USER_ID)
        assert db.get(ReceiptModel, receipt_id).processing_status == COMPLETED
        assert _transaction_count(db) == 0

    def test_low_confidence_completed_receipt(self, db, coordinator, make_receipt, storage):
        receipt_id = make_receipt(
            status=COMPLETED, merchant_name="Blurry Mart", total_amount=4, currency="USD", confidence_score=0.4
        )
        coordinator.retry(receipt_id, USER_ID)
        row = db.get(ReceiptModel, receipt_id)
        assert row.merchant_name == "Corner Cafe"
        assert row.confidence_score == pytest.approx(0.95)
        assert storage.requests[-1] == (row.file_path, 300)

    def test_confident_completed_receipt_refused(self, db, coordinator, make_receipt, extractor):
        receipt_id = make_receipt(
            status=COMPLETED, merchant_name="Corner Cafe", total_amount=12, currency="EUR", confidence_score=0.9
        )
        with pytest.raises(NotRetryable) as info:
            coordinator.retry(receipt_id, USER_ID)
        assert info.value.status_code == 400
        assert extractor.calls == []

    def test_processing_receipt_refused(self, coordinator, make_receipt):
        receipt_id = make_receipt(status=PROCESSING)
        with pytest.raises(NotRetryable):
            coordinator.retry(receipt_id, USER_ID)

    def test_ownership(self, coordinator, make_receipt):
        receipt_id = make_receipt(user_id=OTHER_USER_ID, status=FAILED)
        with pytest.raises(ReceiptForbidden):
            coordinator.retry(receipt_id, USER_ID)
        with pytest.raises(ReceiptNotFound):
            coordinator.retry("missing", USER_ID)

    def test_extraction_failure_is_retryable(self, db, coordinator, make_receipt, extractor):
        receipt_id = make_receipt(status=FAILED)
        extractor.set_result(f"{USER_ID}/{receipt_id}.jpg", ExtractionError("No response from extractor"))

        with pytest.raises(ExtractionFailure) as info:
            coordinator.retry(receipt_id, USER_ID)

        assert info.value.to_dict() == {"error": "No response from extractor", "retryable": True}
        row = db.get(ReceiptModel, receipt_id)
        assert row.processing_status == FAILED
        assert row.processing_error == "No response from extractor"

    def test_warnings_reported(self, coordinator, make_receipt, extractor):
        receipt_id = make_receipt(status=FAILED)
        extractor.set_result(f"{USER_ID}/{receipt_id}.jpg", receipt_payload(currency="XYZ"))
        result = coordinator.retry(receipt_id, USER_ID)
        assert result.data.validation_warnings == ["Currency XYZ may not be supported"]
        assert result.data.confidence_score == pytest.approx(0.6)


class TestForceReset:
    @pytest.mark.parametrize("status", [PENDING, PROCESSING, FAILED])
    def test_marks_failed(self, coordinator, make_receipt, status):
        receipt_id = make_receipt(status=status)
        row = coordinator.force_reset(receipt_id, USER_ID, "Stuck in the extractor")
        assert row.processing_status == FAILED
        assert row.processing_error == "Stuck in the extractor"

    def test_completed_refused(self, db, coordinator, make_receipt):
        receipt_id = make_receipt(status=COMPLETED, merchant_name="A", total_amount=1, currency="USD")
        with pytest.raises(ReceiptConflict):
            coordinator.force_reset(receipt_id, USER_ID)
        assert db.get(ReceiptModel, receipt_id).processing_status == COMPLETED

    def test_reset_receipt_can_be_retried(self, db, coordinator, make_receipt):
        receipt_id = make_receipt(status=PROCESSING)
        coordinator.force_reset(receipt_id, USER_ID)
        coordinator.retry(receipt_id, USER_ID)
        assert db.get(ReceiptModel, receipt_id).processing_status == COMPLETED


class TestResetStale:
    def test_only_old_processing_rows_reset(self, db, coordinator, make_receipt):
        stale = make_receipt(status=PROCESSING, updated_at=NOW - timedelta(minutes=10))
        fresh = make_receipt(status=PROCESSING, updated_at=NOW - timedelta(seconds=30))
        old_pending = make_receipt(status=PENDING, updated_at=NOW - timedelta(days=2))

        reset = coordinator.reset_stale(120, now=NOW)

        assert reset == [stale]
        row = db.get(ReceiptModel, stale)
        assert row.processing_status == FAILED
        assert row.processing_error == STALE_PROCESSING_MESSAGE
        assert db.get(ReceiptModel, fresh).processing_status == PROCESSING
        assert db.get(ReceiptModel, old_pending).processing_status == PENDING

    def test_nothing_to_reset(self, coordinator):
        assert coordinator.reset_stale(120, now=NOW) == []
