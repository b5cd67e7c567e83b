"""
Loan Module

Handles loan creation (valued from an interest amount or a rate),
disbursement and loan lookups. Repayments live in `repayments`, interest
revision in `interest`.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
import uuid

from .actors import Actor
from .audit import AuditTrail, AuditAction, LoanCreatedSnapshot, LoanStatusSnapshot
from .clients import Client
from .errors import DependencyError, InvalidAmount, InvalidTransition, MissingField, NotFoundError, ValidationError
from .lifecycle import LoanStatus, ensure_initial, ensure_transition
from .money import ZERO, CENT, MAX_AMOUNT, format_money, round_money, to_decimal
from .schedule import (
    Duration, PaymentPlan, parse_plan, loan_payment_count, installment
)
from .storage import StorageInterface, StorageRecord, resolve_related
from .valuation import value_loan, interest_from_totals

# Rates are stored as percentages to four places (10.0000 for 10%)
RATE_PLACES = Decimal("0.0001")

LOANS_TABLE = "loans"
CLIENTS_TABLE = "clients"


def kobo_amount(value, label: str) -> Decimal:
    """
    Parse a money amount, rejecting anything finer than one kobo

    Raises:
        InvalidAmount: Not a number, too large, or more than two decimal places
    """
    try:
        amount = to_decimal(value)
    except ValueError:
        raise InvalidAmount(f"{label} {value!r} is not a number")
    if not amount.is_finite():
        raise InvalidAmount(f"{label} {value!r} is not a number")
    if abs(amount) > MAX_AMOUNT:
        raise InvalidAmount(f"{label} cannot exceed {format_money(MAX_AMOUNT)}")
    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        raise InvalidAmount(f"{label} cannot have more than two decimal places")
    return amount


def parse_day(value: Union[str, date, None], label: str) -> date:
    if value is None or value == "":
        raise MissingField(f"{label} is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise MissingField(f"{label} must be a date (YYYY-MM-DD)")


@dataclass
class Loan(StorageRecord):
    """Flat-rate loan to a client"""
    client_id: str
    loan_amount: Decimal
    interest_rate: Decimal           # percentage
    total_due: Decimal
    installment_amount: Decimal      # unrounded total_due / payment count
    payment_plan: PaymentPlan
    duration_months: int
    status: LoanStatus
    duration_value: Optional[Decimal] = None
    duration_unit: Optional[str] = None
    repayment_start_date: Optional[date] = None
    total_paid: Decimal = ZERO
    next_payment_date: Optional[date] = None
    disbursed_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    disbursed_by: Optional[str] = None
    disbursed_by_name: Optional[str] = None
    completed_by: Optional[str] = None
    completed_by_name: Optional[str] = None
    last_modified_by: Optional[str] = None
    last_modified_by_name: Optional[str] = None
    last_modified_at: Optional[datetime] = None

    @property
    def balance(self) -> Decimal:
        """Outstanding balance; negative if a downward revision left the loan overpaid"""
        return self.total_due - self.total_paid

    @property
    def interest_amount(self) -> Decimal:
        return interest_from_totals(self.loan_amount, self.total_due)

    @property
    def payment_count(self) -> int:
        return loan_payment_count(
            self.payment_plan,
            duration_value=self.duration_value,
            duration_unit=self.duration_unit,
            duration_months=self.duration_months,
        )

    @property
    def minimum_payment(self) -> Decimal:
        """Installment in kobo; the final payment may be the smaller remaining balance"""
        return min(round_money(self.installment_amount), self.balance)

    @property
    def duration_label(self) -> str:
        if self.duration_value is not None and self.duration_unit:
            return str(Duration(self.duration_value, self.duration_unit))
        return f"{self.duration_months} months"

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.DISBURSED

    def status_snapshot(self) -> LoanStatusSnapshot:
        return LoanStatusSnapshot(
            status=self.status.value,
            disbursed_date=self.disbursed_date,
            disbursed_by_name=self.disbursed_by_name,
            next_payment_date=self.next_payment_date,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Loan":
        def get_decimal(name: str) -> Optional[Decimal]:
            value = data.get(name)
            return Decimal(value) if value is not None else None

        return cls(
            id=data["id"],
            created_at=cls.parse_datetime(data["created_at"]),
            updated_at=cls.parse_datetime(data["updated_at"]),
            client_id=data["client_id"],
            loan_amount=get_decimal("loan_amount"),
            interest_rate=get_decimal("interest_rate"),
            total_due=get_decimal("total_due"),
            installment_amount=get_decimal("installment_amount"),
            payment_plan=PaymentPlan(data["payment_plan"]),
            duration_months=data["duration_months"],
            status=LoanStatus(data["status"]),
            duration_value=get_decimal("duration_value"),
            duration_unit=data.get("duration_unit"),
            repayment_start_date=cls.parse_date(data.get("repayment_start_date")),
            total_paid=get_decimal("total_paid") or ZERO,
            next_payment_date=cls.parse_date(data.get("next_payment_date")),
            disbursed_date=cls.parse_datetime(data.get("disbursed_date")),
            completed_date=cls.parse_datetime(data.get("completed_date")),
            created_by=data.get("created_by"),
            created_by_name=data.get("created_by_name"),
            disbursed_by=data.get("disbursed_by"),
            disbursed_by_name=data.get("disbursed_by_name"),
            completed_by=data.get("completed_by"),
            completed_by_name=data.get("completed_by_name"),
            last_modified_by=data.get("last_modified_by"),
            last_modified_by_name=data.get("last_modified_by_name"),
            last_modified_at=cls.parse_datetime(data.get("last_modified_at")),
        )


@dataclass
class LoanView:
    """A loan joined to its client"""
    loan: Loan
    client: Optional[Client]

    @property
    def client_name(self) -> Optional[str]:
        return self.client.full_name if self.client else None


class LoanManager:
    """
    Manages loans from creation through disbursement
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loans_table = LOANS_TABLE
        self.clients_table = CLIENTS_TABLE

    def create_loan(
        self,
        actor: Actor,
        client_id: str,
        loan_amount,
        payment_plan: Union[str, PaymentPlan],
        duration_value,
        duration_unit: str,
        repayment_start_date: Union[str, date],
        interest_amount=None,
        interest_rate=None,
        disburse: bool = False
    ) -> Loan:
        """
        Create a loan, optionally disbursing it immediately

        Args:
            actor: Who is creating the loan
            client_id: Borrower
            loan_amount: Principal
            payment_plan: daily, weekly or monthly
            duration_value: Positive duration, e.g. 3
            duration_unit: days, weeks or months
            repayment_start_date: First due date once disbursed
            interest_amount: Flat interest charge (give this or interest_rate)
            interest_rate: Interest percentage (give this or interest_amount)
            disburse: Release funds now, creating the loan as disbursed

        Returns:
            Created Loan
        """
        if not client_id:
            raise MissingField("Client is required")
        if not self.storage.exists(self.clients_table, client_id):
            raise NotFoundError(f"Client {client_id} not found")

        principal = kobo_amount(loan_amount, "Loan amount")
        valuation = value_loan(principal, interest_amount=interest_amount, rate=interest_rate)
        plan = parse_plan(payment_plan)
        duration = Duration(duration_value, duration_unit)
        start_date = parse_day(repayment_start_date, "Repayment start date")

        total_due = round_money(valuation.total_due)
        count = loan_payment_count(plan, duration_value=duration.value, duration_unit=duration.unit.value)
        per_installment = installment(total_due, count)
        if round_money(per_installment) <= ZERO:
            raise InvalidAmount(
                f"Installment of {format_money(total_due)} over {count} payments is less than {format_money(CENT)}"
            )
        status = LoanStatus.DISBURSED if disburse else LoanStatus.PENDING
        ensure_initial(status)

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            client_id=client_id,
            loan_amount=principal,
            interest_rate=valuation.rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP),
            total_due=total_due,
            installment_amount=per_installment,
            payment_plan=plan,
            duration_months=duration.months,
            status=status,
            duration_value=duration.value,
            duration_unit=duration.unit.value,
            repayment_start_date=start_date,
            created_by=actor.id,
            created_by_name=actor.name,
        )
        if disburse:
            self._mark_disbursed(loan, actor, now)

        self.storage.save(self.loans_table, loan.id, loan.to_dict())

        action = AuditAction.CREATE_AND_DISBURSE_LOAN if disburse else AuditAction.CREATE_LOAN
        try:
            self.audit_trail.record(
                actor, action, self.loans_table, loan.id,
                new_data=LoanCreatedSnapshot(
                    client_id=client_id,
                    loan_amount=loan.loan_amount,
                    interest_amount=loan.interest_amount,
                    interest_rate=loan.interest_rate,
                    total_due=loan.total_due,
                    installment_amount=loan.installment_amount,
                    payment_count=count,
                    payment_plan=plan.value,
                    duration=str(duration),
                    status=status.value,
                    repayment_start_date=start_date,
                )
            )
        except DependencyError:
            # Strict audit mode only
            self.storage.delete(self.loans_table, loan.id)
            raise
        return loan

    def disburse_loan(self, loan_id: str, actor: Actor) -> Loan:
        """
        Release funds for a pending loan

        Raises:
            NotFoundError: Unknown loan
            InvalidTransition: Loan is not pending
            DependencyError: Strict audit write failed; the loan is left pending
        """
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFoundError(f"Loan {loan_id} not found")
        loan = Loan.from_dict(data)
        ensure_transition(loan.status, LoanStatus.DISBURSED)
        before = loan.status_snapshot()

        now = datetime.now(timezone.utc)
        self._mark_disbursed(loan, actor, now)
        loan.updated_at = now

        swapped = self.storage.compare_and_swap(
            self.loans_table, loan.id,
            {"status": LoanStatus.PENDING.value, "total_due": data["total_due"]},
            loan.to_dict()
        )
        if not swapped:
            current = self.get_loan(loan_id)
            raise InvalidTransition(
                f"Cannot move a {current.status.value} loan to {LoanStatus.DISBURSED.value}"
            )

        try:
            self.audit_trail.record(
                actor, AuditAction.DISBURSE_LOAN, self.loans_table, loan.id,
                old_data=before,
                new_data=loan.status_snapshot(),
            )
        except DependencyError:
            self.storage.compare_and_swap(
                self.loans_table, loan.id,
                {"status": LoanStatus.DISBURSED.value, "total_paid": str(loan.total_paid)}, data
            )
            raise
        return loan

    def _mark_disbursed(self, loan: Loan, actor: Actor, when: datetime) -> None:
        loan.status = LoanStatus.DISBURSED
        loan.disbursed_date = when
        loan.disbursed_by = actor.id
        loan.disbursed_by_name = actor.name
        if loan.next_payment_date is None:
            loan.next_payment_date = loan.repayment_start_date

    def get_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFoundError(f"Loan {loan_id} not found")
        return Loan.from_dict(data)

    def get_loan_view(self, loan_id: str) -> LoanView:
        return self._view(self.get_loan(loan_id))

    def list_loans(
        self,
        status: Optional[Union[str, LoanStatus]] = None,
        client_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[LoanView]:
        """Loans newest first, optionally filtered by status and client"""
        filters: Dict[str, Any] = {}
        if status is not None:
            try:
                filters["status"] = LoanStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown loan status '{status}'")
        if client_id:
            filters["client_id"] = client_id
        rows = self.storage.find(self.loans_table, filters, order_by="created_at",
                                 descending=True, limit=limit)
        return [self._view(Loan.from_dict(row)) for row in rows]

    def active_loans(self) -> List[Loan]:
        rows = self.storage.find(self.loans_table, {"status": LoanStatus.DISBURSED.value},
                                 order_by="created_at")
        return [Loan.from_dict(row) for row in rows]

    def all_loans(self) -> List[Loan]:
        return [Loan.from_dict(row) for row in self.storage.load_all(self.loans_table)]

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _view(self, loan: Loan) -> LoanView:
        related = resolve_related(self.storage.load(self.clients_table, loan.client_id))
        return LoanView(loan=loan, client=Client.from_dict(related) if related else None)
