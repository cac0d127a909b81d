"""
FastAPI dependencies wiring the pipeline to its collaborators.

The extractor and storage are built once in the app lifespan and kept on
``app.state``; tests replace them through ``app.dependency_overrides``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from receiptflow.billing.ledger import CreditLedger
from receiptflow.config import settings
from receiptflow.database import get_db
from receiptflow.processing.pipeline import BulkProcessor, ReceiptProcessor, RetryCoordinator, TokenBucket


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Authentication happens upstream; the gateway forwards the user id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    if not settings.ADMIN_TOKEN or x_admin_token != settings.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Admin token required")


def require_webhook_secret(x_webhook_secret: Optional[str] = Header(default=None)) -> None:
    if not settings.WEBHOOK_SECRET or x_webhook_secret != settings.WEBHOOK_SECRET:
        raise HTTPException(status_code=403, detail="Invalid webhook secret")


def get_extractor(request: Request):
    return request.app.state.extractor


def get_storage(request: Request):
    return request.app.state.storage


def get_rate_limiter() -> TokenBucket:
    # One bucket per request; no limiter state is shared between requests
    return TokenBucket(interval=settings.BULK_REQUEST_INTERVAL_SECONDS)


def get_ledger(db: Session = Depends(get_db)) -> CreditLedger:
    return CreditLedger(db)


def get_processor(
    db: Session = Depends(get_db),
    extractor=Depends(get_extractor),
    storage=Depends(get_storage),
) -> ReceiptProcessor:
    return ReceiptProcessor(
        db,
        extractor,
        storage,
        url_ttl_seconds=settings.SIGNED_URL_TTL_SECONDS,
        confidence_cap=settings.VALIDATION_CONFIDENCE_CAP,
    )


def get_retry_coordinator(processor: ReceiptProcessor = Depends(get_processor)) -> RetryCoordinator:
    return RetryCoordinator(
        processor,
        low_confidence_threshold=settings.LOW_CONFIDENCE_THRESHOLD,
        url_ttl_seconds=settings.RETRY_SIGNED_URL_TTL_SECONDS,
    )


def get_bulk_processor(
    processor: ReceiptProcessor = Depends(get_processor),
    rate_limiter: TokenBucket = Depends(get_rate_limiter),
) -> BulkProcessor:
    return BulkProcessor(
        processor,
        rate_limiter,
        item_budget_seconds=settings.BULK_ITEM_BUDGET_SECONDS,
        timeout_buffer_seconds=settings.BULK_TIMEOUT_BUFFER_SECONDS,
    )
