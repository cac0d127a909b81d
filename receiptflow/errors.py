"""
Error taxonomy for the processing pipeline.

``ProcessingError`` subclasses are terminal outcomes for a single receipt.
They carry the HTTP-equivalent status so routers can surface them verbatim;
the bulk processor catches them per item and never lets one escape the loop.
"""
from __future__ import annotations

from typing import Optional


class ProcessingError(Exception):
    status_code: int = 500
    retryable: bool = False

    def __init__(self, error: str, details: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.details = details

    def to_dict(self) -> dict:
        body: dict = {"error": self.error}
        if self.details:
            body["details"] = self.details
        if self.retryable:
            body["retryable"] = True
        return body


class ReceiptNotFound(ProcessingError):
    status_code = 404


class ReceiptForbidden(ProcessingError):
    status_code = 403


class ReceiptConflict(ProcessingError):
    status_code = 409


class PaymentRequired(ProcessingError):
    status_code = 402


class NotRetryable(ProcessingError):
    status_code = 400


class ExtractionFailure(ProcessingError):
    """Extractor or storage failed; the receipt is already marked ``failed``."""

    status_code = 500
    retryable = True


# ---------------------------------------------------------------------------
# Collaborator errors (raised by integrations, converted at the receipt boundary)
# ---------------------------------------------------------------------------

class ExtractionError(Exception):
    """The vision extractor failed or returned unusable data."""


class StorageError(Exception):
    """A readable URL could not be produced for a stored file."""
