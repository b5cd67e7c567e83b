"""
Pydantic schemas for API requests, and response builders
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..alerts import PaymentAlert
from ..audit import AuditEntry, AuditAction, interest_change
from ..clients import Client
from ..loans import Loan, LoanView
from ..money import round_money
from ..repayments import LoanSummary, PaymentOutcome, PaymentPreview, Repayment


# Client schemas
class CreateClientRequest(BaseModel):
    full_name: str
    phone_number: str
    address: str
    id_card: str = Field(..., description="Identity document number")
    account_number: Optional[str] = Field(None, description="10-digit NUBAN")
    bank_name: Optional[str] = Field(None, description="Bank key, e.g. gtbank")
    account_name: Optional[str] = None
    guarantor_name: Optional[str] = None
    guarantor_phone: Optional[str] = None
    guarantor_address: Optional[str] = None


class UpdateClientRequest(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    id_card: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    guarantor_name: Optional[str] = None
    guarantor_phone: Optional[str] = None
    guarantor_address: Optional[str] = None


class VerifyAccountRequest(BaseModel):
    account_number: str
    bank_name: str


# Loan schemas
class CreateLoanRequest(BaseModel):
    client_id: str
    loan_amount: str = Field(..., description="Principal as a decimal string")
    interest_amount: Optional[str] = Field(None, description="Flat interest; give this or interest_rate")
    interest_rate: Optional[str] = Field(None, description="Interest percent; give this or interest_amount")
    payment_plan: str = Field(..., description="daily, weekly or monthly")
    duration_value: str
    duration_unit: str = Field(..., description="days, weeks or months")
    repayment_start_date: str = Field(..., description="ISO date of the first installment")
    disburse: bool = False


class ReviseInterestRequest(BaseModel):
    interest_rate: str = Field(..., description="New interest percent")


# Repayment schemas
class RecordPaymentRequest(BaseModel):
    loan_id: str
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: Optional[str] = None  # ISO date string
    account_type: Optional[str] = None


# Response builders

def client_response(client: Client) -> Dict[str, Any]:
    data = client.to_dict()
    data["has_bank_account"] = client.has_bank_account
    data["has_guarantor"] = client.has_guarantor
    return data


def loan_response(loan: Loan, client_name: Optional[str] = None) -> Dict[str, Any]:
    data = loan.to_dict()
    data.update({
        "balance": str(loan.balance),
        "interest_amount": str(loan.interest_amount),
        "installment_display": str(round_money(loan.installment_amount)),
        "payment_count": loan.payment_count,
        "duration": loan.duration_label,
    })
    if client_name is not None:
        data["client_name"] = client_name
    return data


def loan_view_response(view: LoanView) -> Dict[str, Any]:
    return loan_response(view.loan, view.client_name or "")


def repayment_response(payment: Repayment) -> Dict[str, Any]:
    return payment.to_dict()


def outcome_response(outcome: PaymentOutcome) -> Dict[str, Any]:
    return {
        "payment": repayment_response(outcome.payment),
        "loan": loan_response(outcome.loan),
        "completed": outcome.completed,
        "message": "Loan fully repaid" if outcome.completed else "Payment recorded successfully",
    }


def preview_response(preview: PaymentPreview) -> Dict[str, Any]:
    return {
        "amount": str(preview.amount),
        "balance_after": str(preview.balance_after),
        "payments_reduced": preview.payments_reduced,
        "minimum_payment": str(preview.minimum_payment),
        "acceptable": preview.acceptable,
        "error": preview.error,
    }


def summary_response(summary: LoanSummary) -> Dict[str, Any]:
    return {
        "loan": loan_response(summary.loan),
        "client": client_response(summary.client) if summary.client else None,
        "repayments": [repayment_response(p) for p in summary.repayments],
        "balance": str(summary.balance),
        "interest_amount": str(summary.interest_amount),
        "original_payment_count": summary.original_payment_count,
        "payments_made": summary.payments_made,
        "payments_remaining": summary.payments_remaining,
        "payments_saved": summary.payments_saved,
        "ahead_of_schedule": summary.ahead_of_schedule,
        "time_saved": summary.time_saved,
        "average_payment": str(summary.average_payment),
        "paying_above_installment": summary.paying_above_installment,
        "progress_percent": str(summary.progress_percent),
    }


def alert_response(alert: PaymentAlert) -> Dict[str, Any]:
    return {
        "loan_id": alert.loan_id,
        "client_id": alert.client_id,
        "client_name": alert.client_name,
        "status": alert.status.value,
        "days_until_due": alert.days_until_due,
        "next_payment_date": alert.next_payment_date.isoformat(),
        "installment_amount": str(alert.installment_amount),
        "balance_remaining": str(alert.balance_remaining),
    }


def audit_entry_response(entry: AuditEntry) -> Dict[str, Any]:
    data = entry.to_dict()
    if entry.action == AuditAction.UPDATE_INTEREST_RATE:
        data["interest_change"] = {k: str(v) for k, v in interest_change(entry).items()}
    return data
