"""
Payment Alert Module

Classifies disbursed loans by how close their next payment is. Nothing is
cached: every call re-derives the buckets from current loan data.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .lifecycle import LoanStatus
from .loans import Loan, LoanManager
from .money import round_money

DEFAULT_WINDOW_DAYS = 3


class AlertStatus(Enum):
    OVERDUE = "overdue"
    DUE_TODAY = "due-today"
    DUE_SOON = "due-soon"
    NONE = "none"


# Display order across a list of alerts
ALERT_ORDER = {
    AlertStatus.OVERDUE: 0,
    AlertStatus.DUE_TODAY: 1,
    AlertStatus.DUE_SOON: 2,
}


@dataclass(frozen=True)
class Classification:
    status: AlertStatus
    days_until_due: Optional[int] = None


@dataclass
class PaymentAlert:
    """A loan whose next payment is overdue, due today or due soon"""
    loan_id: str
    client_id: str
    client_name: Optional[str]
    status: AlertStatus
    days_until_due: int
    next_payment_date: date
    installment_amount: Decimal
    balance_remaining: Decimal

    @property
    def days_overdue(self) -> int:
        return max(0, -self.days_until_due)


def classify(loan: Loan, today: date, window_days: int = DEFAULT_WINDOW_DAYS) -> Classification:
    """
    Bucket a loan by days until its next payment

    < 0 overdue, 0 due-today, 1..window due-soon; anything later, and any
    loan that is not disbursed or has no due date, is NONE.
    """
    if loan.status != LoanStatus.DISBURSED or loan.next_payment_date is None:
        return Classification(AlertStatus.NONE)

    days = (loan.next_payment_date - today).days
    if days < 0:
        return Classification(AlertStatus.OVERDUE, days)
    if days == 0:
        return Classification(AlertStatus.DUE_TODAY, 0)
    if days <= window_days:
        return Classification(AlertStatus.DUE_SOON, days)
    return Classification(AlertStatus.NONE, days)


def sort_alerts(alerts: List[PaymentAlert]) -> List[PaymentAlert]:
    """Overdue, then due today, then due soon; ties keep their input order"""
    return sorted(alerts, key=lambda alert: ALERT_ORDER[alert.status])


def count_alerts(alerts: List[PaymentAlert]) -> Dict[str, int]:
    """Number of alerts in each bucket, zero for empty buckets"""
    counts = {status.value: 0 for status in ALERT_ORDER}
    for alert in alerts:
        counts[alert.status.value] += 1
    return counts


class AlertClassifier:
    """Builds the payment alert list from disbursed loans"""

    def __init__(self, loan_manager: LoanManager, window_days: int = DEFAULT_WINDOW_DAYS):
        self.loan_manager = loan_manager
        self.window_days = window_days

    def list_alerts(self, today: Optional[date] = None) -> List[PaymentAlert]:
        today = today or date.today()
        alerts = []
        for view in self.loan_manager.list_loans(status=LoanStatus.DISBURSED):
            loan = view.loan
            result = classify(loan, today, self.window_days)
            if result.status == AlertStatus.NONE:
                continue
            alerts.append(PaymentAlert(
                loan_id=loan.id,
                client_id=loan.client_id,
                client_name=view.client_name,
                status=result.status,
                days_until_due=result.days_until_due,
                next_payment_date=loan.next_payment_date,
                installment_amount=round_money(loan.installment_amount),
                balance_remaining=loan.balance,
            ))
        return sort_alerts(alerts)

    def alert_counts(self, today: Optional[date] = None) -> Dict[str, int]:
        return count_alerts(self.list_alerts(today))
