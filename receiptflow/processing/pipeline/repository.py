"""
Keyed persistence for receipts.

Status changes that guard a workflow step go through ``transition``: one
conditional ``UPDATE`` whose affected-row count says whether this caller won
the receipt. Two requests racing on the same id cannot both claim it.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from receiptflow.processing.models.receipt import (
    COMPLETED,
    PROCESSING,
    ReceiptLineItemModel,
    ReceiptModel,
    utcnow,
)
from receiptflow.processing.schemas import LineItem

logger = logging.getLogger(__name__)


class ReceiptRepository:
    def __init__(self, db: Session):
        self.db = db

    def load(self, receipt_id: str) -> Optional[ReceiptModel]:
        return self.db.get(ReceiptModel, receipt_id, populate_existing=True)

    def transition(
        self,
        receipt_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        *,
        low_confidence_below: Optional[float] = None,
        updated_before: Optional[datetime] = None,
        token: Optional[str] = None,
        **patch,
    ) -> bool:
        """Move to ``to_status`` only if the row is still in an allowed state.

        With ``token`` the row must also still carry that claim token, so a
        request whose claim was reset and handed to another request loses.
        """
        allowed = ReceiptModel.processing_status.in_(tuple(from_statuses))
        if low_confidence_below is not None:
            allowed = or_(
                allowed,
                and_(
                    ReceiptModel.processing_status == COMPLETED,
                    ReceiptModel.confidence_score < low_confidence_below,
                ),
            )
        if updated_before is not None:
            allowed = and_(allowed, ReceiptModel.updated_at < updated_before)
        if token is not None:
            allowed = and_(allowed, ReceiptModel.processing_token == token)
        result = self.db.execute(
            update(ReceiptModel)
            .where(ReceiptModel.id == receipt_id, allowed)
            .values(processing_status=to_status, updated_at=utcnow(), **patch)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        won = result.rowcount == 1
        if won:
            logger.info("Receipt %s -> %s", receipt_id, to_status)
        return won

    def claim(self, receipt_id: str, from_statuses: Iterable[str], **kwargs) -> Optional[str]:
        """Move to ``processing``; returns the new claim token, or None if another request won."""
        token = uuid.uuid4().hex
        if self.transition(receipt_id, from_statuses, PROCESSING, processing_token=token, **kwargs):
            return token
        return None

    def replace_line_items(self, receipt_id: str, items: list[LineItem]) -> None:
        """Swap the stored line items; failures are logged, never raised."""
        try:
            self.db.execute(delete(ReceiptLineItemModel).where(ReceiptLineItemModel.receipt_id == receipt_id))
            for item in items:
                self.db.add(ReceiptLineItemModel(receipt_id=receipt_id, **item.model_dump()))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to store line items for receipt %s", receipt_id)
            return
        if items:
            logger.info("Stored %d line items for receipt %s", len(items), receipt_id)

    def stale_processing_ids(self, cutoff: datetime) -> list[str]:
        return list(
            self.db.execute(
                select(ReceiptModel.id).where(
                    ReceiptModel.processing_status == PROCESSING,
                    ReceiptModel.updated_at < cutoff,
                )
            ).scalars()
        )
