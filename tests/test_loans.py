"""
Test suite for loan creation, disbursement and the lifecycle state machine
"""

import pytest
from decimal import Decimal
from datetime import date

from microfinance.audit import AuditAction
from microfinance.errors import (
    DependencyError, InvalidAmount, InvalidTransition, MalformedDuration, MissingField, NotFoundError,
    ValidationError
)
from microfinance.lifecycle import LoanStatus, can_transition, ensure_transition, ensure_initial
from microfinance.loans import LoanManager
from microfinance.schedule import PaymentPlan


class TestLifecycle:
    """Test the pending -> disbursed -> completed state machine"""

    def test_allowed_edges(self):
        assert can_transition(LoanStatus.PENDING, LoanStatus.DISBURSED)
        assert can_transition(LoanStatus.DISBURSED, LoanStatus.COMPLETED)

    def test_no_regression_or_skip(self):
        assert not can_transition(LoanStatus.DISBURSED, LoanStatus.PENDING)
        assert not can_transition(LoanStatus.PENDING, LoanStatus.COMPLETED)

    def test_completed_is_terminal(self):
        for status in LoanStatus:
            with pytest.raises(InvalidTransition):
                ensure_transition(LoanStatus.COMPLETED, status)

    def test_cannot_start_completed(self):
        with pytest.raises(InvalidTransition):
            ensure_initial(LoanStatus.COMPLETED)


class TestCreateLoan:
    """Test loan creation and valuation"""

    def test_create_disbursed(self, make_loan, borrower):
        """100,000 + 10,000 over 3 months monthly, disbursed at once"""
        loan = make_loan()

        assert loan.client_id == borrower.id
        assert loan.status == LoanStatus.DISBURSED
        assert loan.loan_amount == Decimal("100000")
        assert loan.interest_rate == Decimal("10.0000")
        assert loan.total_due == Decimal("110000.00")
        assert loan.payment_count == 3
        assert loan.installment_amount == Decimal("110000") / 3
        assert loan.total_paid == Decimal("0")
        assert loan.disbursed_date is not None
        assert loan.disbursed_by_name == "Musa Bello"
        assert loan.next_payment_date == date(2024, 2, 1)
        assert loan.duration_months == 3
        assert loan.duration_label == "3 months"

    def test_create_pending(self, make_loan):
        loan = make_loan(disburse=False)

        assert loan.status == LoanStatus.PENDING
        assert loan.disbursed_date is None
        assert loan.next_payment_date is None
        assert loan.repayment_start_date == date(2024, 2, 1)

    def test_create_from_rate(self, make_loan):
        loan = make_loan(interest_amount=None, interest_rate="15", loan_amount="40000")
        assert loan.total_due == Decimal("46000.00")
        assert loan.interest_amount == Decimal("6000.00")

    def test_interest_is_total_due_minus_principal(self, make_loan):
        """A non-terminating rate is stored rounded; interest still comes from the totals"""
        loan = make_loan(loan_amount="30000", interest_amount="10000")
        assert loan.interest_rate == Decimal("33.3333")
        assert loan.interest_amount == Decimal("10000")

    def test_weekly_loan_in_weeks(self, make_loan):
        loan = make_loan(payment_plan="weekly", duration_value=10, duration_unit="weeks",
                         loan_amount="50000", interest_amount="5000")
        assert loan.payment_plan == PaymentPlan.WEEKLY
        assert loan.payment_count == 10
        assert loan.installment_amount == Decimal("5500")
        assert loan.duration_months == 3

    def test_persisted_and_reloaded(self, make_loan, loan_manager):
        loan = make_loan()
        reloaded = loan_manager.get_loan(loan.id)
        assert reloaded.total_due == loan.total_due
        assert reloaded.installment_amount == loan.installment_amount
        assert reloaded.status == LoanStatus.DISBURSED
        assert reloaded.repayment_start_date == date(2024, 2, 1)

    def test_unknown_client(self, make_loan):
        with pytest.raises(NotFoundError):
            make_loan(client_id="no-such-client")

    def test_sub_kobo_principal_rejected(self, make_loan):
        with pytest.raises(InvalidAmount):
            make_loan(loan_amount="1000.001")

    @pytest.mark.parametrize("overrides", [
        {"loan_amount": "100000000000000000000000000000"},
        {"loan_amount": "1e30"},
        {"interest_amount": "1e30"},
        {"interest_amount": None, "interest_rate": "1e30"},
    ])
    def test_oversized_amounts_rejected(self, make_loan, storage, overrides):
        with pytest.raises(InvalidAmount):
            make_loan(**overrides)
        assert storage.count("loans") == 0

    def test_installment_below_one_kobo_rejected(self, make_loan):
        """1 naira over 365 daily payments is 0.0027 a day"""
        with pytest.raises(InvalidAmount):
            make_loan(loan_amount="1", interest_amount="0", payment_plan="daily",
                      duration_value=365, duration_unit="days")

    def test_bad_duration_rejected(self, make_loan):
        with pytest.raises(MalformedDuration):
            make_loan(duration_value=0)

    def test_missing_start_date_rejected(self, make_loan):
        with pytest.raises(MissingField):
            make_loan(repayment_start_date=None)

    def test_audit_entry_for_create_and_disburse(self, make_loan, audit_trail):
        loan = make_loan()
        entries = audit_trail.entries_for_record("loans", loan.id)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == AuditAction.CREATE_AND_DISBURSE_LOAN
        assert entry.old_data is None
        assert entry.new_data["loan_amount"] == "100000"
        assert entry.new_data["interest_amount"] == "10000.00"
        assert entry.new_data["duration"] == "3 months"
        assert entry.new_data["status"] == "disbursed"

    def test_audit_entry_for_pending_create(self, make_loan, audit_trail):
        loan = make_loan(disburse=False)
        entries = audit_trail.entries_for_record("loans", loan.id)
        assert [e.action for e in entries] == [AuditAction.CREATE_LOAN]


class TestDisburseLoan:
    """Test the explicit disbursement action"""

    def test_disburse_pending(self, make_loan, loan_manager, admin, audit_trail):
        loan = make_loan(disburse=False)
        disbursed = loan_manager.disburse_loan(loan.id, admin)

        assert disbursed.status == LoanStatus.DISBURSED
        assert disbursed.disbursed_by == admin.id
        assert disbursed.disbursed_by_name == admin.name
        assert disbursed.next_payment_date == date(2024, 2, 1)
        assert loan_manager.get_loan(loan.id).status == LoanStatus.DISBURSED

        entries = audit_trail.entries_for_record("loans", loan.id)
        assert entries[-1].action == AuditAction.DISBURSE_LOAN
        assert entries[-1].old_data["status"] == "pending"
        assert entries[-1].new_data["status"] == "disbursed"

    def test_disburse_twice_rejected(self, make_loan, loan_manager, admin):
        loan = make_loan()
        with pytest.raises(InvalidTransition):
            loan_manager.disburse_loan(loan.id, admin)

    def test_disburse_unknown_loan(self, loan_manager, admin):
        with pytest.raises(NotFoundError):
            loan_manager.disburse_loan("missing", admin)


class TestListLoans:
    """Test loan listing with client joins"""

    def test_filter_by_status(self, make_loan, loan_manager):
        pending = make_loan(disburse=False)
        active = make_loan()

        views = loan_manager.list_loans(status="pending")
        assert [v.loan.id for v in views] == [pending.id]
        assert [v.loan.id for v in loan_manager.list_loans(status=LoanStatus.DISBURSED)] == [active.id]

    def test_joined_client_name(self, make_loan, loan_manager):
        make_loan()
        view = loan_manager.list_loans()[0]
        assert view.client_name == "Chioma Eze"

    def test_filter_by_client_and_limit(self, make_loan, loan_manager, borrower):
        for _ in range(3):
            make_loan()
        assert len(loan_manager.list_loans(client_id=borrower.id)) == 3
        assert len(loan_manager.list_loans(limit=2)) == 2
        assert loan_manager.list_loans(client_id="someone-else") == []

    def test_unknown_status_rejected(self, loan_manager):
        with pytest.raises(ValidationError):
            loan_manager.list_loans(status="defaulted")


class TestStrictAudit:
    """Test that loan writes the audit log refused are undone"""

    def test_unaudited_loan_is_not_kept(self, storage, strict_audit, break_audit_log, borrower, manager):
        loans = LoanManager(storage, strict_audit)
        break_audit_log()

        with pytest.raises(DependencyError):
            loans.create_loan(manager, client_id=borrower.id, loan_amount="100000",
                              interest_amount="10000", payment_plan="monthly",
                              duration_value=3, duration_unit="months",
                              repayment_start_date=date(2024, 2, 1))
        assert storage.count("loans") == 0

    def test_unaudited_disbursement_is_undone(self, storage, strict_audit, break_audit_log,
                                              make_loan, admin):
        loan = make_loan(disburse=False)
        loans = LoanManager(storage, strict_audit)
        break_audit_log()

        with pytest.raises(DependencyError):
            loans.disburse_loan(loan.id, admin)

        reloaded = loans.get_loan(loan.id)
        assert reloaded.status == LoanStatus.PENDING
        assert reloaded.disbursed_by is None
        assert reloaded.next_payment_date is None
