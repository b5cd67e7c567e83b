"""
Loan Valuation Module

Flat-rate loan valuation: principal plus a single interest charge.

A loan is entered either with an interest amount or with a rate; the other
is derived. The stored form is the rate (a percentage) and `total_due`.
Afterwards interest is always recomputed as `total_due - loan_amount`. The
stored rate is rounded to four places, so backing interest out of the rate
alone is lossy in the last digits; that loss is accepted and not corrected.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidAmount, MissingField, ValidationError
from .money import ZERO, HUNDRED, MAX_AMOUNT, format_money, to_decimal


@dataclass(frozen=True)
class LoanValuation:
    """Rate, interest and total due for a principal"""
    principal: Decimal
    rate: Decimal             # percentage, e.g. 10 for 10%
    interest_amount: Decimal
    total_due: Decimal


def _principal(principal) -> Decimal:
    try:
        value = to_decimal(principal)
    except ValueError:
        raise InvalidAmount(f"Loan amount {principal!r} is not a number")
    if value <= ZERO:
        raise InvalidAmount("Loan amount must be greater than 0")
    return value


def _valued(principal: Decimal, rate: Decimal, interest: Decimal) -> LoanValuation:
    total_due = principal + interest
    if total_due > MAX_AMOUNT:
        raise InvalidAmount(f"Total due cannot exceed {format_money(MAX_AMOUNT)}")
    return LoanValuation(principal, rate, interest, total_due)


def value_from_interest_amount(principal, interest_amount) -> LoanValuation:
    """rate = interest / principal * 100, total_due = principal + interest"""
    principal = _principal(principal)
    try:
        interest = to_decimal(interest_amount)
    except ValueError:
        raise InvalidAmount(f"Interest amount {interest_amount!r} is not a number")
    if interest < ZERO:
        raise InvalidAmount("Interest amount cannot be negative")

    rate = (interest / principal) * HUNDRED if principal > ZERO else ZERO
    return _valued(principal, rate, interest)


def value_from_rate(principal, rate) -> LoanValuation:
    """interest = principal * rate / 100, total_due = principal + interest"""
    principal = _principal(principal)
    try:
        rate = to_decimal(rate)
    except ValueError:
        raise InvalidAmount(f"Interest rate {rate!r} is not a number")
    if rate < ZERO:
        raise InvalidAmount("Interest rate cannot be negative")

    interest = principal * rate / HUNDRED
    return _valued(principal, rate, interest)


def value_loan(principal, interest_amount=None, rate=None) -> LoanValuation:
    """Value a loan from whichever of interest amount or rate was supplied"""
    if interest_amount is not None and rate is not None:
        raise ValidationError("Supply either an interest amount or a rate, not both")
    if interest_amount is not None:
        return value_from_interest_amount(principal, interest_amount)
    if rate is not None:
        return value_from_rate(principal, rate)
    raise MissingField("An interest amount or an interest rate is required")


def interest_from_totals(loan_amount, total_due) -> Decimal:
    """Interest as stored: total_due - loan_amount"""
    return to_decimal(total_due) - to_decimal(loan_amount)


def interest_from_snapshot(total_due, rate, loan_amount: Optional[Decimal] = None) -> Decimal:
    """
    Interest amount behind a {interest_rate, total_due} snapshot.

    Exact when the principal was captured with the snapshot. Older snapshots
    only hold the rate and total, so the principal is backed out as
    total_due / (1 + rate/100), which is an approximation.
    """
    total_due = to_decimal(total_due)
    if loan_amount is not None:
        return total_due - to_decimal(loan_amount)
    fraction = to_decimal(rate) / HUNDRED
    return total_due / (Decimal(1) + fraction) * fraction
