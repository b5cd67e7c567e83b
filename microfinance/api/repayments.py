"""
Repayment endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import MicrofinanceSystem, get_system, get_actor
from .schemas import RecordPaymentRequest, outcome_response, preview_response, repayment_response
from ..actors import Actor


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_payment(
    request: RecordPaymentRequest,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Record a repayment against a disbursed loan"""
    outcome = system.repayment_recorder.record_payment(
        request.loan_id,
        request.amount,
        actor,
        payment_date=request.payment_date,
        account_type=request.account_type,
    )
    return outcome_response(outcome)


@router.get("")
async def recent_repayments(
    limit: int = 10,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Most recent repayments across all loans"""
    payments = system.repayment_recorder.recent_repayments(limit=limit)
    return {"repayments": [repayment_response(p) for p in payments], "count": len(payments)}


@router.get("/preview")
async def preview_payment(
    loan_id: str,
    amount: str,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Show what a payment would do without recording it"""
    return preview_response(system.repayment_recorder.preview_payment(loan_id, amount))
