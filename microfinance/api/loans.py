"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .auth import MicrofinanceSystem, get_system, get_actor
from .schemas import (
    CreateLoanRequest, ReviseInterestRequest, loan_response, loan_view_response,
    repayment_response, summary_response
)
from ..actors import Actor


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Create a loan, disbursing it immediately if requested"""
    loan = system.loan_manager.create_loan(
        actor,
        client_id=request.client_id,
        loan_amount=request.loan_amount,
        payment_plan=request.payment_plan,
        duration_value=request.duration_value,
        duration_unit=request.duration_unit,
        repayment_start_date=request.repayment_start_date,
        interest_amount=request.interest_amount,
        interest_rate=request.interest_rate,
        disburse=request.disburse,
    )
    return {
        "loan_id": loan.id,
        "loan": loan_response(loan),
        "message": "Loan created and disbursed" if request.disburse else "Loan created successfully"
    }


@router.get("")
async def list_loans(
    status: Optional[str] = None,
    client_id: Optional[str] = None,
    limit: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """List loans, newest first"""
    views = system.loan_manager.list_loans(status=status, client_id=client_id, limit=limit)
    return {"loans": [loan_view_response(v) for v in views], "count": len(views)}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Get a loan with its client, repayments and repayment progress"""
    return summary_response(system.repayment_recorder.summarize_loan(loan_id))


@router.post("/{loan_id}/disburse")
async def disburse_loan(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Release funds for a pending loan"""
    loan = system.loan_manager.disburse_loan(loan_id, actor)
    return {"loan": loan_response(loan), "message": "Loan disbursed successfully"}


@router.put("/{loan_id}/interest-rate")
async def revise_interest_rate(
    loan_id: str,
    request: ReviseInterestRequest,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Revise a loan's interest rate (admin only)"""
    loan = system.interest_reviser.revise_interest_rate(loan_id, request.interest_rate, actor)
    return {"loan": loan_response(loan), "message": "Interest rate updated successfully"}


@router.get("/{loan_id}/repayments")
async def list_loan_repayments(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Repayments for a loan, newest first"""
    system.loan_manager.get_loan(loan_id)
    payments = system.repayment_recorder.list_repayments(loan_id)
    return {"repayments": [repayment_response(p) for p in payments], "count": len(payments)}
