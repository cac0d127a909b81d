"""
Credit API endpoints.

GET  /api/credits                — current balance
GET  /api/credits/transactions   — ledger, newest first
POST /api/credits/events         — payment provider reports purchased credits
POST /api/admin/credits          — administrative add / subtract / set
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from receiptflow.billing.ledger import CreditLedger
from receiptflow.billing.schemas import (
    CreditAdjustRequest,
    CreditAdjustResponse,
    CreditBalanceResponse,
    CreditEvent,
    CreditTransactionList,
    CreditTransactionResponse,
)
from receiptflow.dependencies import (
    get_current_user_id,
    get_ledger,
    require_admin,
    require_webhook_secret,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ── GET /api/credits ─────────────────────────────────────────────────────
@router.get("/credits", response_model=CreditBalanceResponse)
def get_balance(
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    return CreditBalanceResponse(user_id=user_id, credits=ledger.get_balance(user_id))


# ── GET /api/credits/transactions ────────────────────────────────────────
@router.get("/credits/transactions", response_model=CreditTransactionList)
def list_transactions(
    limit: int = Query(default=50, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    rows = ledger.list_transactions(user_id, limit)
    return CreditTransactionList(
        credits=ledger.get_balance(user_id),
        transactions=[CreditTransactionResponse.model_validate(r) for r in rows],
    )


# ── POST /api/credits/events ─────────────────────────────────────────────
@router.post(
    "/credits/events",
    response_model=CreditBalanceResponse,
    dependencies=[Depends(require_webhook_secret)],
)
def record_credit_event(event: CreditEvent, ledger: CreditLedger = Depends(get_ledger)):
    logger.info("Credit event: %s +%d for user %s", event.transaction_type, event.amount, event.user_id)
    balance = ledger.credit(
        event.user_id,
        event.amount,
        event.transaction_type,
        event.description,
        email=event.email,
    )
    return CreditBalanceResponse(user_id=event.user_id, credits=balance)


# ── POST /api/admin/credits ──────────────────────────────────────────────
@router.post(
    "/admin/credits",
    response_model=CreditAdjustResponse,
    dependencies=[Depends(require_admin)],
)
def adjust_credits(req: CreditAdjustRequest, ledger: CreditLedger = Depends(get_ledger)):
    old, new = ledger.adjust(req.user_id, req.action, req.amount)
    return CreditAdjustResponse(
        user_id=req.user_id,
        action=req.action,
        amount=req.amount,
        old_credits=old,
        new_credits=new,
    )
