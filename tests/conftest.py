"""
Shared fixtures: an in-memory loan system with an admin, a manager and one
registered client.
"""

import pytest
from datetime import date

from microfinance.actors import Actor, Role
from microfinance.alerts import AlertClassifier
from microfinance.audit import AuditTrail
from microfinance.clients import ClientManager
from microfinance.errors import DependencyError
from microfinance.interest import InterestRateReviser
from microfinance.loans import LoanManager
from microfinance.repayments import RepaymentRecorder
from microfinance.storage import InMemoryStorage


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def admin():
    return Actor(id="user-admin", name="Ada Obi", role=Role.ADMIN)


@pytest.fixture
def manager():
    return Actor(id="user-manager", name="Musa Bello", role=Role.MANAGER)


@pytest.fixture
def client_manager(storage, audit_trail):
    return ClientManager(storage, audit_trail)


@pytest.fixture
def loan_manager(storage, audit_trail):
    return LoanManager(storage, audit_trail)


@pytest.fixture
def recorder(storage, loan_manager, audit_trail):
    return RepaymentRecorder(storage, loan_manager, audit_trail)


@pytest.fixture
def reviser(loan_manager, audit_trail):
    return InterestRateReviser(loan_manager, audit_trail)


@pytest.fixture
def alert_classifier(loan_manager):
    return AlertClassifier(loan_manager)


@pytest.fixture
def borrower(client_manager, manager):
    return client_manager.create_client(
        manager,
        full_name="Chioma Eze",
        phone_number="08031234567",
        address="12 Market Road, Onitsha",
        id_card="NIN-12345678901",
    )


@pytest.fixture
def make_loan(loan_manager, manager, borrower):
    """Factory for loans on the borrower; defaults to the 100k/10k/3-month case"""
    def _make_loan(**overrides):
        params = dict(
            client_id=borrower.id,
            loan_amount="100000",
            interest_amount="10000",
            payment_plan="monthly",
            duration_value=3,
            duration_unit="months",
            repayment_start_date=date(2024, 2, 1),
            disburse=True,
        )
        params.update(overrides)
        actor = params.pop("actor", manager)
        return loan_manager.create_loan(actor, **params)
    return _make_loan


@pytest.fixture
def strict_audit(storage):
    return AuditTrail(storage, mode="strict")


@pytest.fixture
def break_audit_log(storage, monkeypatch):
    """Call to make every later write to the audit table fail"""
    def _break():
        original_save = storage.save

        def save(table, record_id, data):
            if table == "audit_logs":
                raise DependencyError(cause=RuntimeError("disk full"))
            return original_save(table, record_id, data)

        monkeypatch.setattr(storage, "save", save)
    return _break
