"""
Receipt API endpoints.

POST   /api/receipts                    — register an uploaded file (pending)
POST   /api/receipts/upload             — store a file and register it (pending)
GET    /api/receipts                    — list own receipts
GET    /api/receipts/{id}               — get one receipt
PATCH  /api/receipts/{id}               — correct extracted fields
DELETE /api/receipts/{id}               — delete receipt
POST   /api/receipts/{id}/process       — extract + bill one credit
POST   /api/receipts/{id}/retry         — re-extract without billing
POST   /api/receipts/{id}/mark-failed   — force a stuck receipt to failed
POST   /api/receipts/process-bulk       — sequential batch processing
POST   /api/receipts/reset-stale        — fail receipts stuck in processing (admin)
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from receiptflow.config import settings
from receiptflow.database import get_db
from receiptflow.dependencies import (
    get_bulk_processor,
    get_current_user_id,
    get_processor,
    get_retry_coordinator,
    get_storage,
    require_admin,
)
from receiptflow.processing.models.receipt import COMPLETED, PENDING, ReceiptLineItemModel, ReceiptModel
from receiptflow.processing.pipeline import BulkProcessor, ReceiptProcessor, RetryCoordinator
from receiptflow.processing.schemas import (
    BulkProcessRequest,
    BulkProcessResponse,
    MarkFailedRequest,
    ProcessResponse,
    ReceiptCreateRequest,
    ReceiptOut,
    ReceiptUpdateRequest,
    RetryResponse,
    StaleResetResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_owned(db: Session, receipt_id: str, user_id: str) -> ReceiptModel:
    row = db.query(ReceiptModel).filter(ReceiptModel.id == receipt_id).first()
    if not row:
        raise HTTPException(status_code=404, detail="Receipt not found")
    if row.user_id != user_id:
        raise HTTPException(status_code=403, detail="Forbidden - you do not own this receipt")
    return row


# ── POST /api/receipts ───────────────────────────────────────────────────
@router.post("/receipts", response_model=ReceiptOut, status_code=201)
def create_receipt(
    req: ReceiptCreateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    record = ReceiptModel(
        id=str(uuid.uuid4()),
        user_id=user_id,
        file_name=req.file_name,
        file_path=req.file_path,
        file_type=req.file_type,
        file_size=req.file_size,
        processing_status=PENDING,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Registered receipt %s for user %s", record.id, user_id)
    return record


# ── POST /api/receipts/upload ────────────────────────────────────────────
@router.post("/receipts/upload", response_model=ReceiptOut, status_code=201)
def upload_receipt(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    storage=Depends(get_storage),
    db: Session = Depends(get_db),
):
    if file.content_type not in settings.ALLOWED_UPLOAD_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {file.content_type}")

    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="Uploaded file is too large")

    file_name = file.filename or "receipt"
    record = ReceiptModel(
        id=str(uuid.uuid4()),
        user_id=user_id,
        file_name=file_name,
        file_path=storage.save(user_id, file_name, content),
        file_type=file.content_type,
        file_size=len(content),
        processing_status=PENDING,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Uploaded receipt %s (%d bytes) for user %s", record.id, len(content), user_id)
    return record


# ── GET /api/receipts ────────────────────────────────────────────────────
@router.get("/receipts", response_model=list[ReceiptOut])
def list_receipts(
    status: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    query = db.query(ReceiptModel).filter(ReceiptModel.user_id == user_id)
    if status:
        query = query.filter(ReceiptModel.processing_status == status)
    rows = query.order_by(ReceiptModel.created_at.desc()).all()
    logger.info("Found %d receipts for user %s", len(rows), user_id)
    return rows


# ── GET /api/receipts/{receipt_id} ───────────────────────────────────────
@router.get("/receipts/{receipt_id}", response_model=ReceiptOut)
def get_receipt(
    receipt_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _get_owned(db, receipt_id, user_id)


# ── PATCH /api/receipts/{receipt_id} ─────────────────────────────────────
@router.patch("/receipts/{receipt_id}", response_model=ReceiptOut)
def update_receipt(
    receipt_id: str,
    req: ReceiptUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    row = _get_owned(db, receipt_id, user_id)
    if row.processing_status != COMPLETED:
        raise HTTPException(status_code=409, detail="Only completed receipts can be edited")

    changes = req.model_dump(exclude_unset=True)
    if changes.get("currency"):
        changes["currency"] = changes["currency"].upper()
    if changes.get("receipt_date"):
        changes["receipt_date"] = changes["receipt_date"].isoformat()
    for name in ("merchant_name", "total_amount", "currency"):
        if name in changes and changes[name] is None:
            raise HTTPException(status_code=400, detail=f"{name} cannot be cleared")

    for name, value in changes.items():
        setattr(row, name, value)
    db.commit()
    db.refresh(row)
    logger.info("Updated receipt %s fields: %s", receipt_id, sorted(changes))
    return row


# ── DELETE /api/receipts/{receipt_id} ────────────────────────────────────
@router.delete("/receipts/{receipt_id}")
def delete_receipt(
    receipt_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    row = _get_owned(db, receipt_id, user_id)
    removed = (
        db.query(ReceiptLineItemModel)
        .filter(ReceiptLineItemModel.receipt_id == receipt_id)
        .delete(synchronize_session=False)
    )
    db.delete(row)
    db.commit()
    logger.info("Deleted receipt %s and %d line items", receipt_id, removed)
    return {"message": "Receipt deleted successfully", "receipt_id": receipt_id}


# ── POST /api/receipts/process-bulk ──────────────────────────────────────
@router.post("/receipts/process-bulk", response_model=BulkProcessResponse)
def process_bulk(
    req: BulkProcessRequest,
    user_id: str = Depends(get_current_user_id),
    bulk: BulkProcessor = Depends(get_bulk_processor),
):
    if not req.receipt_ids:
        raise HTTPException(status_code=400, detail="receipt_ids must be a non-empty array")
    if len(req.receipt_ids) > settings.BULK_MAX_ITEMS:
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.BULK_MAX_ITEMS} receipts can be processed per request",
        )
    return bulk.process_bulk(req.receipt_ids, user_id)


# ── POST /api/receipts/reset-stale ───────────────────────────────────────
@router.post("/receipts/reset-stale", response_model=StaleResetResponse, dependencies=[Depends(require_admin)])
def reset_stale_receipts(coordinator: RetryCoordinator = Depends(get_retry_coordinator)):
    reset = coordinator.reset_stale(settings.STALE_PROCESSING_TTL_SECONDS)
    return StaleResetResponse(reset=len(reset), receipt_ids=reset)


# ── POST /api/receipts/{receipt_id}/process ──────────────────────────────
@router.post("/receipts/{receipt_id}/process", response_model=ProcessResponse)
def process_receipt(
    receipt_id: str,
    user_id: str = Depends(get_current_user_id),
    processor: ReceiptProcessor = Depends(get_processor),
):
    return processor.process(receipt_id, user_id)


# ── POST /api/receipts/{receipt_id}/retry ────────────────────────────────
@router.post("/receipts/{receipt_id}/retry", response_model=RetryResponse)
def retry_receipt(
    receipt_id: str,
    user_id: str = Depends(get_current_user_id),
    coordinator: RetryCoordinator = Depends(get_retry_coordinator),
):
    return coordinator.retry(receipt_id, user_id)


# ── POST /api/receipts/{receipt_id}/mark-failed ──────────────────────────
@router.post("/receipts/{receipt_id}/mark-failed", response_model=ReceiptOut)
def mark_failed(
    receipt_id: str,
    req: Optional[MarkFailedRequest] = None,
    user_id: str = Depends(get_current_user_id),
    coordinator: RetryCoordinator = Depends(get_retry_coordinator),
):
    req = req or MarkFailedRequest()
    return coordinator.force_reset(receipt_id, user_id, req.error)
