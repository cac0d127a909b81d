"""
Bulk processing: per-item isolation, credit snapshot, pacing and the batch deadline.
"""
from datetime import date

import pytest

from receiptflow.billing.ledger import CreditLedger
from receiptflow.billing.models import CreditTransactionModel
from receiptflow.errors import ExtractionError
from receiptflow.processing.models import COMPLETED, FAILED, PENDING, PROCESSING, ReceiptModel
from receiptflow.processing.pipeline import BulkProcessor, ReceiptProcessor, TokenBucket
from receiptflow.processing.pipeline.bulk import BATCH_TIMEOUT, INSUFFICIENT_CREDITS
from tests.helpers import OTHER_USER_ID, USER_ID, FakeExtractor

TODAY = date(2026, 10, 19)


class RefusingLedger(CreditLedger):
    def try_debit(self, *args, **kwargs):
        return False


class SlowExtractor(FakeExtractor):
    """Advances the fake clock on every call instead of sleeping."""

    def __init__(self, clock, seconds_per_call):
        super().__init__()
        self.clock = clock
        self.seconds_per_call = seconds_per_call

    def extract(self, document_url):
        self.clock.now += self.seconds_per_call
        return super().extract(document_url)


@pytest.fixture()
def build_bulk(db, extractor, storage, fake_clock):
    def _build(ledger=None, extractor=extractor, limiter=None):
        processor = ReceiptProcessor(db, extractor, storage, ledger, today=lambda: TODAY, clock=fake_clock)
        return BulkProcessor(
            processor,
            limiter,
            item_budget_seconds=30,
            timeout_buffer_seconds=10,
            clock=fake_clock,
        )

    return _build


def _status(db, receipt_id):
    return db.get(ReceiptModel, receipt_id).processing_status


class TestCredits:
    def test_stops_when_snapshot_is_spent(self, db, build_bulk, make_receipt, fund, extractor):
        fund(credits=1)
        ids = [make_receipt() for _ in range(3)]

        response = build_bulk().process_bulk(ids, USER_ID)

        assert [r.success for r in response.results] == [True, False, False]
        assert [r.error for r in response.results[1:]] == [INSUFFICIENT_CREDITS, INSUFFICIENT_CREDITS]
        assert len(extractor.calls) == 1
        assert response.summary.credits_used == 1
        assert response.summary.credits_remaining == 0
        assert [_status(db, i) for i in ids] == [COMPLETED, PENDING, PENDING]

    def test_zero_credits_processes_nothing(self, build_bulk, make_receipt, extractor):
        ids = [make_receipt(), make_receipt()]
        response = build_bulk().process_bulk(ids, USER_ID)
        assert response.success is True
        assert response.summary.failed == 2
        assert {r.error for r in response.results} == {INSUFFICIENT_CREDITS}
        assert extractor.calls == []

    def test_refused_debit_stops_the_batch(self, db, build_bulk, make_receipt, fund, extractor):
        fund(credits=3)
        ids = [make_receipt() for _ in range(3)]

        response = build_bulk(ledger=RefusingLedger(db)).process_bulk(ids, USER_ID)

        assert response.results[0].success is True
        assert [r.error for r in response.results[1:]] == [INSUFFICIENT_CREDITS, INSUFFICIENT_CREDITS]
        assert response.summary.credits_used == 0
        assert len(extractor.calls) == 1


class TestIsolation:
    def test_one_failure_does_not_stop_the_rest(self, db, build_bulk, make_receipt, fund, extractor):
        fund(credits=5)
        ids = [make_receipt() for _ in range(5)]
        extractor.set_result(f"{USER_ID}/{ids[2]}.jpg", ExtractionError("Invalid JSON response from extractor"))

        response = build_bulk().process_bulk(ids, USER_ID)

        assert [r.success for r in response.results] == [True, True, False, True, True]
        assert response.results[2].error == "Invalid JSON response from extractor"
        assert response.summary.successful == 4
        assert response.summary.failed == 1
        assert response.summary.credits_used == 4
        assert response.summary.credits_remaining == 1
        assert _status(db, ids[2]) == FAILED
        deductions = (
            db.query(CreditTransactionModel)
            .filter(CreditTransactionModel.transaction_type == "deduction")
            .all()
        )
        assert sorted(d.receipt_id for d in deductions) == sorted(ids[:2] + ids[3:])

    def test_skips_ineligible_receipts(self, build_bulk, make_receipt, fund, extractor):
        fund(credits=5)
        done = make_receipt(status=COMPLETED, merchant_name="A", total_amount=1, currency="USD")
        busy = make_receipt(status=PROCESSING)
        foreign = make_receipt(user_id=OTHER_USER_ID)
        fresh = make_receipt()

        response = build_bulk().process_bulk([done, busy, foreign, "missing", fresh], USER_ID)

        errors = [r.error for r in response.results]
        assert errors == [
            "Receipt already processed",
            "Receipt is already being processed",
            "Receipt not found or access denied",
            "Receipt not found or access denied",
            None,
        ]
        assert response.summary.credits_used == 1
        assert len(extractor.calls) == 1

    def test_results_keep_input_order_and_carry_data(self, build_bulk, make_receipt, fund):
        fund(credits=2)
        ids = [make_receipt(), make_receipt()]
        response = build_bulk().process_bulk(ids, USER_ID)
        assert [r.receipt_id for r in response.results] == ids
        assert response.results[0].data.merchant_name == "Corner Cafe"
        assert response.results[0].data.currency == "EUR"


class TestPacing:
    def test_extractor_calls_are_spaced(self, build_bulk, make_receipt, fund, fake_clock):
        fund(credits=3)
        ids = [make_receipt() for _ in range(3)]
        limiter = TokenBucket(interval=1.0, clock=fake_clock, sleep=fake_clock.sleep)

        build_bulk(limiter=limiter).process_bulk(ids, USER_ID)

        assert fake_clock.sleeps == pytest.approx([1.0, 1.0])

    def test_deadline_marks_remaining_items(self, db, build_bulk, make_receipt, fund, fake_clock):
        fund(credits=3)
        ids = [make_receipt() for _ in range(3)]
        slow = SlowExtractor(fake_clock, seconds_per_call=60)

        # deadline = 3 * 30 + 10 = 100s; two 60s calls overrun it
        response = build_bulk(extractor=slow).process_bulk(ids, USER_ID)

        assert [r.success for r in response.results] == [True, True, False]
        assert response.results[2].error == BATCH_TIMEOUT
        assert _status(db, ids[2]) == PENDING
        assert response.summary.credits_used == 2
        assert response.summary.processing_time_ms == 120000
