"""
Receipt processing pipeline.

Orchestrates: claim -> readable URL -> extract -> normalize -> validate ->
store -> debit. ``ReceiptProcessor`` handles one receipt, ``RetryCoordinator``
re-runs extraction without billing, ``BulkProcessor`` drives many receipts in
order under one credit snapshot.
"""
from receiptflow.processing.pipeline.bulk import BulkProcessor  # noqa: F401
from receiptflow.processing.pipeline.rate_limit import TokenBucket  # noqa: F401
from receiptflow.processing.pipeline.retry import RetryCoordinator  # noqa: F401
from receiptflow.processing.pipeline.state_machine import ReceiptProcessor  # noqa: F401
