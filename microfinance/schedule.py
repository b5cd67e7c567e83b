"""
Repayment Schedule Module

Converts a loan's duration and payment plan into a payment count and a
per-installment amount, and rolls due dates forward by one plan period.

Durations are converted to days with a 30-day month. Loans created before
flexible durations existed only carry `duration_months`; those use the
months-based table in `legacy_payment_count`.
"""

from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from datetime import date, timedelta
from dataclasses import dataclass
from typing import Optional, Union
from enum import Enum
import calendar

from .errors import MalformedDuration, ValidationError
from .money import to_decimal

DAYS_PER_WEEK = 7
DAYS_PER_MONTH = 30
WEEKS_PER_MONTH = Decimal("4.33")


class PaymentPlan(Enum):
    """Repayment cadence"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def period_label(self) -> str:
        return {"daily": "day", "weekly": "week", "monthly": "month"}[self.value]


class DurationUnit(Enum):
    """Unit of a loan duration"""
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def parse_plan(plan: Union[str, PaymentPlan]) -> PaymentPlan:
    if isinstance(plan, PaymentPlan):
        return plan
    try:
        return PaymentPlan(plan)
    except ValueError:
        raise ValidationError(f"Unknown payment plan '{plan}' (expected daily, weekly or monthly)")


def parse_unit(unit: Union[str, DurationUnit]) -> DurationUnit:
    if isinstance(unit, DurationUnit):
        return unit
    try:
        return DurationUnit(unit)
    except ValueError:
        raise MalformedDuration(f"Unknown duration unit '{unit}' (expected days, weeks or months)")


@dataclass(frozen=True)
class Duration:
    """A loan duration such as 3 months or 10 weeks"""
    value: Decimal
    unit: DurationUnit

    def __post_init__(self):
        try:
            value = to_decimal(self.value)
        except ValueError:
            raise MalformedDuration(f"Duration value {self.value!r} is not a number")
        if value <= 0:
            raise MalformedDuration("Duration must be greater than 0")
        object.__setattr__(self, "value", value)
        object.__setattr__(self, "unit", parse_unit(self.unit))

    @property
    def days(self) -> Decimal:
        """Duration in days (30-day months)"""
        if self.unit == DurationUnit.DAYS:
            return self.value
        if self.unit == DurationUnit.WEEKS:
            return self.value * DAYS_PER_WEEK
        return self.value * DAYS_PER_MONTH

    @property
    def months(self) -> int:
        """Whole months, rounded up, kept for schedules that predate flexible durations"""
        if self.unit == DurationUnit.MONTHS:
            return max(1, _ceil(self.value))
        return max(1, _ceil(self.days / DAYS_PER_MONTH))

    def __str__(self) -> str:
        return f"{self.value.normalize():f} {self.unit.value}"


def payment_count(duration_value, duration_unit, plan) -> int:
    """
    Number of installments for a duration and payment plan.

    daily -> days, weekly -> ceil(days / 7), monthly -> ceil(days / 30)

    Raises:
        MalformedDuration: If the duration is not positive or yields no payments
    """
    duration = Duration(duration_value, duration_unit)
    plan = parse_plan(plan)
    days = duration.days

    if plan == PaymentPlan.DAILY:
        count = int(days.to_integral_value(rounding=ROUND_HALF_UP))
    elif plan == PaymentPlan.WEEKLY:
        count = _ceil(days / DAYS_PER_WEEK)
    else:
        count = _ceil(days / DAYS_PER_MONTH)

    if count < 1:
        raise MalformedDuration(f"A duration of {duration} yields no {plan.value} payments")
    return count


def legacy_payment_count(duration_months, plan) -> int:
    """
    Payment count for loans that only store `duration_months`.

    daily -> months * 30, weekly -> ceil(months * 4.33), monthly -> months
    """
    try:
        months = to_decimal(duration_months)
    except ValueError:
        raise MalformedDuration(f"duration_months {duration_months!r} is not a number")
    if months <= 0:
        raise MalformedDuration("duration_months must be greater than 0")

    plan = parse_plan(plan)
    if plan == PaymentPlan.DAILY:
        count = _ceil(months * DAYS_PER_MONTH)
    elif plan == PaymentPlan.WEEKLY:
        count = _ceil(months * WEEKS_PER_MONTH)
    else:
        count = _ceil(months)
    return count


def loan_payment_count(
    plan,
    duration_value=None,
    duration_unit=None,
    duration_months: Optional[int] = None
) -> int:
    """Payment count using the flexible duration when present, legacy months otherwise"""
    if duration_value is not None and duration_unit:
        return payment_count(duration_value, duration_unit, plan)
    if duration_months is None:
        raise MalformedDuration("Loan has neither a duration nor duration_months")
    return legacy_payment_count(duration_months, plan)


def installment(total_due, count: int) -> Decimal:
    """Per-installment amount; plain division, rounding is a display concern"""
    if count < 1:
        raise MalformedDuration("Payment count must be at least 1")
    return to_decimal(total_due) / Decimal(count)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_due_date(current: date, plan, periods: int = 1) -> date:
    """Roll a due date forward by whole plan periods"""
    plan = parse_plan(plan)
    if plan == PaymentPlan.DAILY:
        return current + timedelta(days=periods)
    if plan == PaymentPlan.WEEKLY:
        return current + timedelta(days=DAYS_PER_WEEK * periods)
    return add_months(current, periods)
