"""
Credit ledger: the balance on ``profiles`` plus the append-only
``credit_transactions`` log.

Every mutation changes the balance and appends the matching transaction in
one commit. Debits are a single conditional ``UPDATE ... WHERE credits >= n``
checked by affected-row count, so concurrent debits cannot overdraw.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from receiptflow.billing.models.credit import (
    ADJUSTMENT,
    BONUS,
    DEDUCTION,
    PURCHASE,
    REFUND,
    CreditTransactionModel,
    ProfileModel,
)
from receiptflow.processing.models.receipt import utcnow

logger = logging.getLogger(__name__)

CREDIT_TYPES = (PURCHASE, REFUND, BONUS)
ADJUST_ACTIONS = ("add", "subtract", "set")
_CAS_ATTEMPTS = 5


class CreditLedger:
    def __init__(self, db: Session):
        self.db = db

    # ── reads ────────────────────────────────────────────────────────────
    def get_balance(self, user_id: str) -> int:
        credits = self.db.execute(
            select(ProfileModel.credits).where(ProfileModel.id == user_id)
        ).scalar_one_or_none()
        return credits or 0

    def list_transactions(self, user_id: str, limit: int = 50) -> list[CreditTransactionModel]:
        return (
            self.db.query(CreditTransactionModel)
            .filter(CreditTransactionModel.user_id == user_id)
            .order_by(CreditTransactionModel.id.desc())
            .limit(limit)
            .all()
        )

    def reconcile(self, user_id: str) -> tuple[int, int]:
        """Return ``(balance, sum of transactions)``; equal when the ledger is sound."""
        ledger_sum = self.db.execute(
            select(func.coalesce(func.sum(CreditTransactionModel.amount), 0)).where(
                CreditTransactionModel.user_id == user_id
            )
        ).scalar_one()
        return self.get_balance(user_id), int(ledger_sum)

    # ── writes ───────────────────────────────────────────────────────────
    def _append(
        self,
        user_id: str,
        amount: int,
        transaction_type: str,
        description: str,
        receipt_id: Optional[str] = None,
    ) -> None:
        self.db.add(
            CreditTransactionModel(
                user_id=user_id,
                amount=amount,
                transaction_type=transaction_type,
                description=description,
                receipt_id=receipt_id,
            )
        )

    def try_debit(
        self,
        user_id: str,
        amount: int = 1,
        reason: str = "Receipt processing",
        receipt_id: Optional[str] = None,
    ) -> bool:
        """Deduct ``amount`` if the balance covers it. Returns False without mutating otherwise."""
        if amount < 1:
            raise ValueError("debit amount must be positive")
        result = self.db.execute(
            update(ProfileModel)
            .where(ProfileModel.id == user_id, ProfileModel.credits >= amount)
            .values(credits=ProfileModel.credits - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.info("Debit of %d refused for user %s: insufficient credits", amount, user_id)
            return False
        self._append(user_id, -amount, DEDUCTION, reason, receipt_id)
        self.db.commit()
        logger.info("Debited %d credit(s) from user %s (receipt=%s)", amount, user_id, receipt_id)
        return True

    def credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: str = PURCHASE,
        reason: str = "Credit purchase",
        email: Optional[str] = None,
    ) -> int:
        """Add credits (creating the profile on first use); returns the new balance."""
        if amount < 1:
            raise ValueError("credit amount must be positive")
        if transaction_type not in CREDIT_TYPES:
            raise ValueError(f"unsupported credit type: {transaction_type}")

        values = {"credits": ProfileModel.credits + amount, "updated_at": utcnow()}
        if email:
            values["email"] = func.coalesce(ProfileModel.email, email)
        result = self.db.execute(
            update(ProfileModel)
            .where(ProfileModel.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.add(ProfileModel(id=user_id, email=email, credits=amount))
        self._append(user_id, amount, transaction_type, reason)
        try:
            self.db.commit()
        except IntegrityError:
            # profile was created concurrently; apply as an update instead
            self.db.rollback()
            return self.credit(user_id, amount, transaction_type, reason, email=email)
        balance = self.get_balance(user_id)
        logger.info("Credited %d (%s) to user %s, balance now %d", amount, transaction_type, user_id, balance)
        return balance

    def adjust(self, user_id: str, action: str, amount: int) -> tuple[int, int]:
        """Administrative add/subtract/set. Returns ``(old_balance, new_balance)``."""
        if action not in ADJUST_ACTIONS:
            raise ValueError(f"invalid action: {action}")
        if amount < 0:
            raise ValueError("amount must be >= 0")

        for _ in range(_CAS_ATTEMPTS):
            profile_exists = self.db.get(ProfileModel, user_id) is not None
            if not profile_exists:
                self.db.add(ProfileModel(id=user_id, credits=0))
                try:
                    self.db.commit()
                except IntegrityError:
                    self.db.rollback()
            old = self.get_balance(user_id)
            if action == "add":
                new = old + amount
            elif action == "subtract":
                new = max(0, old - amount)
            else:
                new = amount

            if new == old:
                return old, new

            result = self.db.execute(
                update(ProfileModel)
                .where(ProfileModel.id == user_id, ProfileModel.credits == old)
                .values(credits=new, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self._append(user_id, new - old, ADJUSTMENT, f"Admin {action} {amount}")
                self.db.commit()
                logger.info("Adjusted credits for user %s: %d -> %d", user_id, old, new)
                return old, new
            self.db.rollback()
            logger.warning("Balance changed during adjustment for user %s, retrying", user_id)

        raise RuntimeError(f"could not adjust credits for user {user_id}: balance kept changing")
