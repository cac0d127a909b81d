from receiptflow.processing.models.receipt import (  # noqa: F401
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    PROCESSING_STATUSES,
    ReceiptLineItemModel,
    ReceiptModel,
)
