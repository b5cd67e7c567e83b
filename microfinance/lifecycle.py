"""
Loan Lifecycle Module

pending -> disbursed -> completed

A loan starts pending, or disbursed when funds are released at creation.
Completion happens only when a repayment clears the balance. Nothing leaves
`completed`, and a disbursed loan never returns to pending.
"""

from enum import Enum
from typing import Dict, FrozenSet

from .errors import InvalidTransition


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"        # Created, funds not yet released
    DISBURSED = "disbursed"    # Funds released, repayments open
    COMPLETED = "completed"    # Fully repaid (terminal)


ALLOWED_TRANSITIONS: Dict[LoanStatus, FrozenSet[LoanStatus]] = {
    LoanStatus.PENDING: frozenset({LoanStatus.DISBURSED}),
    LoanStatus.DISBURSED: frozenset({LoanStatus.COMPLETED}),
    LoanStatus.COMPLETED: frozenset(),
}

INITIAL_STATES = frozenset({LoanStatus.PENDING, LoanStatus.DISBURSED})


def can_transition(current: LoanStatus, target: LoanStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: LoanStatus, target: LoanStatus) -> None:
    """Raise InvalidTransition unless current -> target is a lifecycle edge"""
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move a {current.value} loan to {target.value}"
        )


def ensure_initial(status: LoanStatus) -> None:
    if status not in INITIAL_STATES:
        raise InvalidTransition(f"A loan cannot be created as {status.value}")
