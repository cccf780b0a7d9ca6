"""Credit ledger — per-organization balance and usage charges.

Charges happen after the reply is stored. When a charge fails the
pipeline does not undo the reply; it writes a CreditDeductionFailure row
for reconciliation instead.

Pipelines for different conversations of one organization charge the
same balance row concurrently, so every balance change is a single
UPDATE computed in the database (balance = balance - :amount), guarded by
balance >= :amount for usage.
"""

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from engage.errors import InvalidInputError, LedgerError
from engage.models import CreditBalance, CreditDeductionFailure, CreditTransaction

log = logging.getLogger("engage.billing")

INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
NO_BALANCE = "NO_BALANCE"


class CreditLedger:
    def __init__(self, db: Session):
        self.db = db

    def _current_balance(self, organization_id: int) -> int | None:
        """Balance straight from the database; None when the org has no balance row."""
        return (
            self.db.query(CreditBalance.balance)
            .filter(CreditBalance.organization_id == organization_id)
            .scalar()
        )

    def balance(self, organization_id: int) -> int:
        return self._current_balance(organization_id) or 0

    def grant(self, organization_id: int, amount: int, description: str = "Credit grant") -> int:
        if amount <= 0:
            raise InvalidInputError("Grant amount must be positive")
        try:
            updated = (
                self.db.query(CreditBalance)
                .filter(CreditBalance.organization_id == organization_id)
                .update(
                    {CreditBalance.balance: CreditBalance.balance + amount},
                    synchronize_session="fetch",
                )
            )
            if not updated:
                self.db.add(CreditBalance(organization_id=organization_id, balance=amount, lifetime_used=0))
                self.db.flush()
            new_balance = self._current_balance(organization_id)
            self.db.add(CreditTransaction(
                organization_id=organization_id,
                type="grant",
                amount=amount,
                balance_after=new_balance,
                description=description,
            ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return new_balance

    def consume(self, organization_id: int, amount: int, description: str, metadata: dict | None = None) -> int:
        """Deduct usage. Returns the new balance; raises LedgerError if it can't."""
        if amount <= 0:
            return self.balance(organization_id)
        try:
            updated = (
                self.db.query(CreditBalance)
                .filter(
                    CreditBalance.organization_id == organization_id,
                    CreditBalance.balance >= amount,
                )
                .update(
                    {
                        CreditBalance.balance: CreditBalance.balance - amount,
                        CreditBalance.lifetime_used: func.coalesce(CreditBalance.lifetime_used, 0) + amount,
                    },
                    synchronize_session="fetch",
                )
            )
            if not updated:
                current = self._current_balance(organization_id)
                if current is None:
                    raise LedgerError(NO_BALANCE, f"Organization {organization_id} has no credit balance")
                raise LedgerError(
                    INSUFFICIENT_CREDITS,
                    f"Insufficient credits: need {amount}, have {current}",
                )
            new_balance = self._current_balance(organization_id)
            self.db.add(CreditTransaction(
                organization_id=organization_id,
                type="usage",
                amount=-amount,
                balance_after=new_balance,
                description=description,
                details=metadata,
            ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return new_balance

    def record_deduction_failure(
        self,
        organization_id: int,
        amount: int,
        error: Exception,
        *,
        model: str | None = None,
        reference_type: str | None = None,
        reference_id: int | None = None,
    ) -> CreditDeductionFailure:
        failure = CreditDeductionFailure(
            organization_id=organization_id,
            amount=amount,
            error_code=getattr(error, "code", None) or type(error).__name__,
            error_message=str(error)[:1000],
            model=model,
            reference_type=reference_type,
            reference_id=reference_id,
            resolved=False,
        )
        self.db.add(failure)
        self.db.commit()
        log.error(f"Credit deduction failed for org {organization_id} ({amount} credits): {error}")
        return failure

    def unresolved_failures(self, organization_id: int) -> list[CreditDeductionFailure]:
        return (
            self.db.query(CreditDeductionFailure)
            .filter(
                CreditDeductionFailure.organization_id == organization_id,
                CreditDeductionFailure.resolved.is_(False),
            )
            .order_by(CreditDeductionFailure.created_at, CreditDeductionFailure.id)
            .all()
        )
