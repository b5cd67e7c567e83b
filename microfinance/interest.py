"""
Interest Rate Revision Module

Admin-only change of a loan's flat interest rate. Total due and the
installment are recomputed from the principal; payments already made are
left alone, so the balance may shrink below zero after a downward revision.
That is shown as-is and never completes the loan.
"""

from decimal import ROUND_HALF_UP
from datetime import datetime, timezone
import logging

from .actors import Actor, require_admin
from .audit import AuditTrail, AuditAction, InterestRateSnapshot
from .errors import ConcurrentUpdate, DependencyError, InvalidAmount, InvalidTransition, NotFoundError
from .lifecycle import LoanStatus
from .loans import Loan, LoanManager, RATE_PLACES
from .logging_config import log_action
from .money import round_money, to_decimal
from .schedule import installment
from .valuation import value_from_rate

logger = logging.getLogger("microfinance.interest")


def _snapshot(loan: Loan) -> InterestRateSnapshot:
    return InterestRateSnapshot(
        interest_rate=loan.interest_rate,
        total_due=loan.total_due,
        loan_amount=loan.loan_amount,
        installment_amount=loan.installment_amount,
    )


class InterestRateReviser:
    """Revises interest rates on pending and disbursed loans"""

    def __init__(self, loan_manager: LoanManager, audit_trail: AuditTrail, max_retries: int = 3):
        self.loan_manager = loan_manager
        self.storage = loan_manager.storage
        self.audit_trail = audit_trail
        self.max_retries = max(1, max_retries)

    def revise_interest_rate(self, loan_id: str, new_rate, actor: Actor) -> Loan:
        """
        Set a new interest rate (percent) on a loan

        Raises:
            Forbidden: Actor is not an admin
            InvalidTransition: Loan is completed
            InvalidAmount: Rate is not a non-negative number
            DependencyError: Strict audit write failed; the old rate is kept
        """
        require_admin(actor, "revise interest rates")
        try:
            rate = to_decimal(new_rate)
        except ValueError:
            raise InvalidAmount(f"Interest rate {new_rate!r} is not a number")
        if rate < 0:
            raise InvalidAmount("Interest rate cannot be negative")

        for attempt in range(1, self.max_retries + 1):
            raw = self.storage.load(self.loan_manager.loans_table, loan_id)
            if not raw:
                raise NotFoundError(f"Loan {loan_id} not found")
            loan = Loan.from_dict(raw)
            if loan.status == LoanStatus.COMPLETED:
                raise InvalidTransition("Cannot revise the interest rate of a completed loan")

            before = _snapshot(loan)
            valuation = value_from_rate(loan.loan_amount, rate)
            now = datetime.now(timezone.utc)

            loan.interest_rate = rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
            loan.total_due = round_money(valuation.total_due)
            loan.installment_amount = installment(loan.total_due, loan.payment_count)
            loan.last_modified_by = actor.id
            loan.last_modified_by_name = actor.name
            loan.last_modified_at = now
            loan.updated_at = now

            expected = {
                "status": raw["status"],
                "total_paid": raw.get("total_paid", "0"),
                "total_due": raw["total_due"],
            }
            if self.storage.compare_and_swap(self.loan_manager.loans_table, loan.id, expected, loan.to_dict()):
                break

            log_action(
                logger, "warning", f"Loan changed during rate revision, retrying ({attempt}/{self.max_retries})",
                user_id=actor.id, action="revise_interest_rate", resource="loans", entity_id=loan_id
            )
        else:
            raise ConcurrentUpdate("The loan was updated by another request, please try again")

        try:
            self.audit_trail.record(
                actor, AuditAction.UPDATE_INTEREST_RATE, self.loan_manager.loans_table, loan.id,
                old_data=before,
                new_data=_snapshot(loan),
            )
        except DependencyError:
            # Strict audit mode only; put the old rate back
            self.storage.compare_and_swap(
                self.loan_manager.loans_table, loan.id,
                {"total_due": str(loan.total_due), "interest_rate": str(loan.interest_rate)}, raw
            )
            raise
        log_action(
            logger, "info", f"Interest rate revised to {loan.interest_rate}%",
            user_id=actor.id, action=AuditAction.UPDATE_INTEREST_RATE.value,
            resource="loans", entity_id=loan.id,
            extra={"old_rate": str(before.interest_rate), "new_rate": str(loan.interest_rate)}
        )
        return loan
