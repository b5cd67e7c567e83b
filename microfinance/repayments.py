"""
Repayment Module

Records repayments against disbursed loans and derives the repayment
progress figures shown on a loan's page.

A payment must cover at least one installment (the final payment may be the
smaller remaining balance) and may not exceed what is still owed. The loan
row is updated with a compare-and-swap on `total_paid` and `total_due`, so
two payments that read the same balance cannot both succeed; the loser
reloads, revalidates against the new balance and tries again.
"""

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
import logging
import uuid

from .actors import Actor
from .audit import AuditTrail, AuditAction, LoanBalanceSnapshot, PaymentSnapshot
from .clients import Client
from .errors import (
    BelowMinimumInstallment, ConcurrentUpdate, DependencyError, ExceedsOutstandingBalance,
    InvalidAmount, LoanNotActive, NotFoundError
)
from .lifecycle import LoanStatus, ensure_transition
from .loans import Loan, LoanManager, kobo_amount, parse_day
from .logging_config import log_action
from .money import ZERO, HUNDRED, round_money, to_decimal, format_money
from .schedule import next_due_date
from .storage import StorageInterface, StorageRecord, resolve_related

logger = logging.getLogger("microfinance.repayments")


@dataclass
class Repayment(StorageRecord):
    """A payment received against a loan; never edited or deleted"""
    loan_id: str
    amount: Decimal
    payment_date: date
    account_type: Optional[str] = None
    recorded_by: Optional[str] = None
    recorded_by_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Repayment":
        return cls(
            id=data["id"],
            created_at=cls.parse_datetime(data["created_at"]),
            updated_at=cls.parse_datetime(data["updated_at"]),
            loan_id=data["loan_id"],
            amount=Decimal(data["amount"]),
            payment_date=cls.parse_date(data["payment_date"]),
            account_type=data.get("account_type"),
            recorded_by=data.get("recorded_by"),
            recorded_by_name=data.get("recorded_by_name"),
        )


@dataclass
class PaymentOutcome:
    """Result of a recorded payment"""
    payment: Repayment
    loan: Loan
    completed: bool


@dataclass
class PaymentPreview:
    """What a candidate payment would do to a loan"""
    amount: Decimal
    balance_after: Decimal
    payments_reduced: int
    minimum_payment: Decimal
    error: Optional[str] = None

    @property
    def acceptable(self) -> bool:
        return self.error is None


@dataclass
class LoanSummary:
    """A loan with its client, repayments and progress figures"""
    loan: Loan
    client: Optional[Client]
    repayments: List[Repayment]
    balance: Decimal
    interest_amount: Decimal
    original_payment_count: int
    payments_made: int
    payments_remaining: int
    payments_saved: int
    time_saved: Optional[str]
    average_payment: Decimal
    paying_above_installment: bool
    progress_percent: Decimal

    @property
    def ahead_of_schedule(self) -> bool:
        return self.payments_saved > 0


def _periods_label(count: int, period: str) -> str:
    return f"{count} {period}{'' if count == 1 else 's'}"


def summarize(loan: Loan, repayments: List[Repayment], client: Optional[Client] = None) -> LoanSummary:
    """
    Derive repayment progress for a loan

    payments_remaining = ceil(balance / installment)
    payments_saved = original count - (made + remaining), when positive
    """
    installment = loan.installment_amount
    balance = loan.balance
    payments_made = len(repayments)
    original = loan.payment_count

    if balance > ZERO and installment > ZERO:
        remaining = int((balance / installment).to_integral_value(rounding=ROUND_CEILING))
    else:
        remaining = 0

    saved = max(0, original - (payments_made + remaining))
    average = loan.total_paid / payments_made if payments_made else ZERO

    if loan.total_due > ZERO:
        progress = min(HUNDRED, loan.total_paid / loan.total_due * HUNDRED)
    else:
        progress = ZERO

    return LoanSummary(
        loan=loan,
        client=client,
        repayments=repayments,
        balance=balance,
        interest_amount=loan.interest_amount,
        original_payment_count=original,
        payments_made=payments_made,
        payments_remaining=remaining,
        payments_saved=saved,
        time_saved=_periods_label(saved, loan.payment_plan.period_label) if saved else None,
        average_payment=round_money(average),
        paying_above_installment=payments_made > 0 and average > round_money(installment),
        progress_percent=progress.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
    )


class RepaymentRecorder:
    """
    Records payments and completes loans whose balance reaches zero
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        audit_trail: AuditTrail,
        max_retries: int = 3,
        advance_schedule: bool = True
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.audit_trail = audit_trail
        self.max_retries = max(1, max_retries)
        self.advance_schedule = advance_schedule
        self.repayments_table = "repayments"

    def _parse_amount(self, amount) -> Decimal:
        value = kobo_amount(amount, "Payment amount")
        if value <= ZERO:
            raise InvalidAmount("Payment amount must be greater than 0")
        return value

    def validate_payment(self, loan: Loan, amount) -> Decimal:
        """
        Check a payment against a loan, returning the parsed amount

        Raises:
            LoanNotActive: Loan is pending or completed
            InvalidAmount: Not a positive kobo amount
            BelowMinimumInstallment: Less than one installment
            ExceedsOutstandingBalance: More than the balance
        """
        if not loan.is_active:
            raise LoanNotActive(f"Cannot record a payment on a {loan.status.value} loan")

        value = self._parse_amount(amount)

        minimum = loan.minimum_payment
        if value < minimum:
            raise BelowMinimumInstallment(
                f"Payment must be at least the installment amount of {format_money(minimum)}"
            )
        if value > loan.balance:
            raise ExceedsOutstandingBalance(
                f"Payment exceeds outstanding balance of {format_money(max(loan.balance, ZERO))}"
            )
        return value

    def record_payment(
        self,
        loan_id: str,
        amount,
        actor: Actor,
        payment_date: Union[str, date, None] = None,
        account_type: Optional[str] = None
    ) -> PaymentOutcome:
        """
        Record a payment against a disbursed loan

        Args:
            loan_id: Loan being repaid
            amount: Payment amount in naira
            actor: Who is recording the payment
            payment_date: Date money was received (today if omitted)
            account_type: Free-text payment method or receiving account

        Returns:
            PaymentOutcome with the stored payment, updated loan and completion flag

        Raises:
            ConcurrentUpdate: The loan kept changing underneath every retry
            DependencyError: Storage failed, or the audit write failed in strict
                audit mode; the payment is reversed before this is raised
        """
        paid_on = parse_day(payment_date, "Payment date") if payment_date else date.today()

        for attempt in range(1, self.max_retries + 1):
            raw = self.storage.load(self.loan_manager.loans_table, loan_id)
            if not raw:
                raise NotFoundError(f"Loan {loan_id} not found")
            loan = Loan.from_dict(raw)
            value = self.validate_payment(loan, amount)

            before = LoanBalanceSnapshot(
                status=loan.status.value,
                total_paid=loan.total_paid,
                next_payment_date=loan.next_payment_date,
            )
            now = datetime.now(timezone.utc)
            completed = self._apply_payment(loan, value, actor, now)

            expected = {
                "total_paid": raw.get("total_paid", "0"),
                "total_due": raw["total_due"],
                "status": LoanStatus.DISBURSED.value,
            }
            if self.storage.compare_and_swap(self.loan_manager.loans_table, loan.id, expected, loan.to_dict()):
                break

            log_action(
                logger, "warning", f"Loan changed during payment, retrying ({attempt}/{self.max_retries})",
                user_id=actor.id, action="record_payment", resource="loans", entity_id=loan_id
            )
        else:
            raise ConcurrentUpdate(
                "The loan was updated by another payment, please review the balance and try again"
            )

        payment = Repayment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            amount=value,
            payment_date=paid_on,
            account_type=account_type,
            recorded_by=actor.id,
            recorded_by_name=actor.name,
        )
        try:
            self.storage.save(self.repayments_table, payment.id, payment.to_dict())
        except DependencyError:
            log_action(
                logger, "error", "Repayment insert failed after loan update, restoring loan",
                user_id=actor.id, action="record_payment", resource=self.repayments_table,
                entity_id=loan.id, extra={"amount": str(value)}, exc_info=True
            )
            self._restore_loan(loan, raw)
            raise

        action = AuditAction.COMPLETE_LOAN if completed else AuditAction.RECORD_PAYMENT
        after = PaymentSnapshot(
            loan_id=loan.id,
            amount=value,
            payment_date=paid_on,
            account_type=account_type,
            client_name=self._client_name(loan.client_id),
            total_paid=loan.total_paid,
            balance=loan.balance,
            completed=completed,
            next_payment_date=loan.next_payment_date,
        )
        try:
            self.audit_trail.record(actor, action, self.repayments_table, payment.id,
                                    old_data=before, new_data=after)
        except DependencyError:
            # Strict audit mode only
            log_action(
                logger, "error", "Audit write failed after payment, reversing payment",
                user_id=actor.id, action=action.value, resource=self.repayments_table,
                entity_id=loan.id, extra={"amount": str(value), "payment_id": payment.id}
            )
            self.storage.delete(self.repayments_table, payment.id)
            self._restore_loan(loan, raw)
            raise

        log_action(
            logger, "info", "Loan completed" if completed else "Payment recorded",
            user_id=actor.id, action=action.value, resource="loans", entity_id=loan.id,
            extra={"amount": str(value), "balance": str(loan.balance)}
        )
        return PaymentOutcome(payment=payment, loan=loan, completed=completed)

    def _apply_payment(self, loan: Loan, amount: Decimal, actor: Actor, now: datetime) -> bool:
        """Add the payment to the loan in place; True if it completed the loan"""
        loan.total_paid = loan.total_paid + amount
        loan.updated_at = now

        if loan.balance == ZERO:
            ensure_transition(loan.status, LoanStatus.COMPLETED)
            loan.status = LoanStatus.COMPLETED
            loan.completed_date = now
            loan.completed_by = actor.id
            loan.completed_by_name = actor.name
            loan.next_payment_date = None
            return True

        if self.advance_schedule and loan.next_payment_date:
            per_installment = round_money(loan.installment_amount)
            periods = 1
            if per_installment > ZERO:
                periods = max(1, int((amount / per_installment).to_integral_value(rounding=ROUND_FLOOR)))
            loan.next_payment_date = next_due_date(loan.next_payment_date, loan.payment_plan, periods)
        return False

    def _restore_loan(self, loan: Loan, raw: Dict[str, Any]) -> None:
        """Put back the loan row read before a payment, unless something else has moved it"""
        restored = self.storage.compare_and_swap(
            self.loan_manager.loans_table, loan.id,
            {"total_paid": str(loan.total_paid), "status": loan.status.value}, raw
        )
        if not restored:
            log_action(
                logger, "critical", "Loan changed before a failed payment could be reversed",
                action="record_payment", resource="loans", entity_id=loan.id,
                extra={"total_paid": str(loan.total_paid)}
            )

    def _client_name(self, client_id: str) -> Optional[str]:
        client = resolve_related(self.storage.load("clients", client_id))
        return client.get("full_name") if client else None

    def list_repayments(self, loan_id: str) -> List[Repayment]:
        """Repayments for a loan, newest first"""
        rows = self.storage.find(self.repayments_table, {"loan_id": loan_id},
                                 order_by="created_at", descending=True)
        return [Repayment.from_dict(row) for row in rows]

    def recent_repayments(self, limit: int = 10) -> List[Repayment]:
        rows = self.storage.find(self.repayments_table, {}, order_by="created_at",
                                 descending=True, limit=limit)
        return [Repayment.from_dict(row) for row in rows]

    def total_repaid(self) -> Decimal:
        return sum((Decimal(row["amount"]) for row in self.storage.load_all(self.repayments_table)), ZERO)

    def preview_payment(self, loan_id: str, amount) -> PaymentPreview:
        """
        Show the effect of a payment without recording it

        balance_after is floored at zero; payments_reduced counts the extra
        whole installments covered beyond the current one.
        """
        loan = self.loan_manager.get_loan(loan_id)
        try:
            value = to_decimal(amount)
        except ValueError:
            raise InvalidAmount(f"Payment amount {amount!r} is not a number")

        per_installment = round_money(loan.installment_amount)
        if value > per_installment and per_installment > ZERO:
            reduced = int(((value - per_installment) / per_installment).to_integral_value(rounding=ROUND_FLOOR))
        else:
            reduced = 0

        error = None
        try:
            self.validate_payment(loan, value)
        except (LoanNotActive, InvalidAmount, BelowMinimumInstallment, ExceedsOutstandingBalance) as e:
            error = e.message

        return PaymentPreview(
            amount=value,
            balance_after=max(ZERO, loan.balance - value),
            payments_reduced=reduced,
            minimum_payment=loan.minimum_payment,
            error=error,
        )

    def summarize_loan(self, loan_id: str) -> LoanSummary:
        """Loan, client, repayments (newest first) and progress figures"""
        view = self.loan_manager.get_loan_view(loan_id)
        return summarize(view.loan, self.list_repayments(loan_id), view.client)
