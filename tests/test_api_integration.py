"""
Integration tests for the Microfinance Loan API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from datetime import timedelta
from fastapi.testclient import TestClient

from microfinance.actors import Role
from microfinance.api import create_app
from microfinance.api.auth import MicrofinanceSystem, issue_token, set_system
from microfinance.config import MicrofinanceConfig


def _system(**overrides):
    values = dict(database_url="memory://", auth_enabled=False, paystack_secret_key="")
    values.update(overrides)
    return MicrofinanceSystem(MicrofinanceConfig(**values))


@pytest.fixture
def system():
    test_system = _system()
    set_system(test_system)
    yield test_system
    set_system(None)
    test_system.close()


@pytest.fixture
def client(system):
    """Test client with auth disabled; every request acts as an admin"""
    return TestClient(create_app())


@pytest.fixture
def client_id(client):
    r = client.post("/clients", json={
        "full_name": "Chioma Eze",
        "phone_number": "08031234567",
        "address": "12 Market Road, Onitsha",
        "id_card": "NIN-12345678901",
    })
    assert r.status_code == 201
    return r.json()["client_id"]


def _create_loan(client, client_id, **overrides):
    payload = {
        "client_id": client_id,
        "loan_amount": "100000",
        "interest_amount": "10000",
        "payment_plan": "monthly",
        "duration_value": "3",
        "duration_unit": "months",
        "repayment_start_date": "2024-02-01",
        "disburse": True,
    }
    payload.update(overrides)
    r = client.post("/loans", json=payload)
    assert r.status_code == 201, r.text
    return r.json()["loan_id"]


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "loans" in r.json()["endpoints"]

    def test_me_without_auth(self, client):
        r = client.get("/me")
        assert r.json() == {"id": "test_user", "name": "Test User", "role": "admin"}


class TestClientFlow:
    """End-to-end client management"""

    def test_create_and_get(self, client, client_id):
        r = client.get(f"/clients/{client_id}")
        assert r.status_code == 200
        data = r.json()
        assert data["client"]["full_name"] == "Chioma Eze"
        assert data["client"]["created_by_name"] == "Test User"
        assert data["loans"] == []

    def test_missing_field(self, client):
        r = client.post("/clients", json={
            "full_name": "Chioma Eze", "phone_number": "", "address": "x", "id_card": "y"
        })
        assert r.status_code == 400
        assert r.json()["code"] == "missing_field"

    def test_update(self, client, client_id):
        r = client.patch(f"/clients/{client_id}", json={"phone_number": "08039998888"})
        assert r.status_code == 200
        assert r.json()["client"]["phone_number"] == "08039998888"

        audit = client.get("/audit", params={"action": "UPDATE_CLIENT"}).json()
        assert audit["count"] == 1
        assert audit["entries"][0]["new_data"]["changes"][0]["new_value"] == "08039998888"

    def test_list(self, client, client_id):
        r = client.get("/clients")
        assert r.json()["count"] == 1

    def test_unknown_client(self, client):
        r = client.get("/clients/missing")
        assert r.status_code == 404
        assert r.json()["code"] == "not_found"

    def test_verify_account_without_verifier(self, client):
        r = client.post("/clients/verify-account",
                        json={"account_number": "0123456789", "bank_name": "gtbank"})
        assert r.status_code == 502
        assert r.json()["code"] == "dependency_error"


class TestLoanFlow:
    """End-to-end loan lifecycle"""

    def test_create_pending_then_disburse(self, client, client_id):
        loan_id = _create_loan(client, client_id, disburse=False)

        r = client.get("/loans", params={"status": "pending"})
        assert [loan["id"] for loan in r.json()["loans"]] == [loan_id]
        assert r.json()["loans"][0]["client_name"] == "Chioma Eze"

        r = client.post(f"/loans/{loan_id}/disburse")
        assert r.status_code == 200
        loan = r.json()["loan"]
        assert loan["status"] == "disbursed"
        assert loan["next_payment_date"] == "2024-02-01"

        r = client.post(f"/loans/{loan_id}/disburse")
        assert r.status_code == 409
        assert r.json()["code"] == "invalid_transition"

    def test_loan_figures(self, client, client_id):
        loan_id = _create_loan(client, client_id)
        data = client.get(f"/loans/{loan_id}").json()

        assert data["loan"]["total_due"] == "110000.00"
        assert data["loan"]["installment_display"] == "36666.67"
        assert data["loan"]["payment_count"] == 3
        assert data["balance"] == "110000.00"
        assert data["payments_remaining"] == 3

    def test_invalid_status_filter(self, client):
        r = client.get("/loans", params={"status": "written-off"})
        assert r.status_code == 400

    def test_revise_interest_rate(self, client, client_id):
        loan_id = _create_loan(client, client_id)
        r = client.put(f"/loans/{loan_id}/interest-rate", json={"interest_rate": "20"})
        assert r.status_code == 200
        assert r.json()["loan"]["total_due"] == "120000.00"

        entries = client.get("/audit", params={"action": "UPDATE_INTEREST_RATE"}).json()["entries"]
        assert entries[0]["interest_change"] == {
            "old_interest": "10000.00", "new_interest": "20000.00", "delta": "10000.00"
        }


class TestRepaymentFlow:
    """End-to-end repayments to completion"""

    def test_pay_to_completion(self, client, client_id):
        loan_id = _create_loan(client, client_id)

        for amount in ["36666.67", "36666.67"]:
            r = client.post("/repayments", json={"loan_id": loan_id, "amount": amount})
            assert r.status_code == 201
            assert not r.json()["completed"]

        r = client.post("/repayments", json={
            "loan_id": loan_id, "amount": "36666.66", "payment_date": "2024-04-01",
            "account_type": "bank transfer"
        })
        data = r.json()
        assert data["completed"]
        assert data["loan"]["status"] == "completed"
        assert data["loan"]["balance"] == "0.00"
        assert data["message"] == "Loan fully repaid"

        r = client.get(f"/loans/{loan_id}/repayments")
        assert r.json()["count"] == 3

    @pytest.mark.parametrize("amount,code", [
        ("100", "below_minimum_installment"),
        ("200000", "exceeds_outstanding_balance"),
        ("-5", "invalid_amount"),
    ])
    def test_rejected_payments(self, client, client_id, amount, code):
        loan_id = _create_loan(client, client_id)
        r = client.post("/repayments", json={"loan_id": loan_id, "amount": amount})
        assert r.status_code == 400
        assert r.json()["code"] == code

    def test_payment_on_pending_loan(self, client, client_id):
        loan_id = _create_loan(client, client_id, disburse=False)
        r = client.post("/repayments", json={"loan_id": loan_id, "amount": "36666.67"})
        assert r.status_code == 409
        assert r.json()["code"] == "loan_not_active"

    def test_preview(self, client, client_id):
        loan_id = _create_loan(client, client_id)
        r = client.get("/repayments/preview", params={"loan_id": loan_id, "amount": "73333.34"})
        data = r.json()
        assert data["balance_after"] == "36666.66"
        assert data["payments_reduced"] == 1
        assert data["acceptable"]


class TestDashboard:
    """Alerts, reports and the audit log"""

    def test_alerts(self, client, client_id):
        overdue = _create_loan(client, client_id, repayment_start_date="2024-03-01")
        soon = _create_loan(client, client_id, repayment_start_date="2024-03-12")

        r = client.get("/alerts", params={"today": "2024-03-10"})
        data = r.json()
        assert [a["loan_id"] for a in data["alerts"]] == [overdue, soon]
        assert data["alerts"][0]["status"] == "overdue"
        assert data["counts"] == {"overdue": 1, "due-today": 0, "due-soon": 1}

    def test_summary(self, client, client_id):
        loan_id = _create_loan(client, client_id)
        client.post("/repayments", json={"loan_id": loan_id, "amount": "36666.67"})

        data = client.get("/reports/summary").json()
        assert data["totals"]["total_disbursed"] == "100000.00"
        assert data["totals"]["total_repaid"] == "36666.67"
        assert data["totals"]["pending_amount"] == "73333.33"
        assert [loan["id"] for loan in data["recent_loans"]] == [loan_id]

    def test_csv_report(self, client, client_id):
        _create_loan(client, client_id)
        r = client.get("/reports/loans", params={"format": "csv"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert r.text.splitlines()[0].startswith("loan_id,client_name")

    def test_unknown_report_format(self, client):
        r = client.get("/reports/loans", params={"format": "xml"})
        assert r.status_code == 400

    def test_audit_chain(self, client, client_id):
        _create_loan(client, client_id)
        data = client.get("/audit/verify").json()
        assert data["valid"]
        assert data["total_entries"] == 2

    def test_unknown_audit_action(self, client):
        r = client.get("/audit", params={"action": "DELETE_LOAN"})
        assert r.status_code == 400


class TestAuthentication:
    """Bearer token handling with auth enabled"""

    @pytest.fixture
    def secured(self):
        test_system = _system(auth_enabled=True, jwt_secret="test-secret")
        set_system(test_system)
        yield test_system, TestClient(create_app())
        set_system(None)
        test_system.close()

    def test_missing_token(self, secured):
        _, client = secured
        r = client.get("/loans")
        assert r.status_code == 401
        assert r.json()["code"] == "not_authenticated"

    def test_bad_token(self, secured):
        _, client = secured
        r = client.get("/loans", headers={"Authorization": "Bearer not-a-jwt"})
        assert r.status_code == 401

    def test_expired_token(self, secured):
        system, client = secured
        token = issue_token("user-1", system.settings, expires_in=timedelta(seconds=-5))
        r = client.get("/loans", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Token expired"

    def test_profile_resolves_actor(self, secured):
        system, client = secured
        system.user_directory.save_profile("user-1", "Ada Obi", Role.ADMIN)
        token = issue_token("user-1", system.settings, email="ada@example.com")

        r = client.get("/me", headers={"Authorization": f"Bearer {token}"})
        assert r.json() == {"id": "user-1", "name": "Ada Obi", "role": "admin"}

    def test_unknown_user_is_a_manager(self, secured):
        system, client = secured
        token = issue_token("user-2", system.settings)
        headers = {"Authorization": f"Bearer {token}"}

        assert client.get("/me", headers=headers).json()["name"] == "Unknown User"
        r = client.get("/audit", headers=headers)
        assert r.status_code == 403
        assert r.json()["code"] == "forbidden"
