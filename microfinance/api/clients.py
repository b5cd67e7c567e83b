"""
Client endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .auth import MicrofinanceSystem, get_system, get_actor
from .schemas import (
    CreateClientRequest, UpdateClientRequest, VerifyAccountRequest, client_response
)
from ..actors import Actor
from ..errors import DependencyError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_client(
    request: CreateClientRequest,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Register a new client"""
    client = system.client_manager.create_client(actor, **request.model_dump())
    return {
        "client_id": client.id,
        "client": client_response(client),
        "message": "Client created successfully"
    }


@router.get("")
async def list_clients(
    order_by: str = "created_at",
    limit: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """List clients, newest first or by name"""
    clients = system.client_manager.list_clients(order_by=order_by, limit=limit)
    return {"clients": [client_response(c) for c in clients], "count": len(clients)}


@router.post("/verify-account")
async def verify_account(
    request: VerifyAccountRequest,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Resolve the registered name of a bank account"""
    if not system.verifier:
        raise DependencyError("Account verification is not configured")
    account = system.verifier.resolve_account(request.account_number, request.bank_name)
    return {
        "account_name": account.account_name,
        "account_number": account.account_number,
        "bank_name": account.bank_name,
    }


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Get a client with their loans"""
    client = system.client_manager.get_client(client_id)
    loans = system.loan_manager.list_loans(client_id=client_id)
    return {
        "client": client_response(client),
        "loans": [
            {"id": v.loan.id, "status": v.loan.status.value, "loan_amount": str(v.loan.loan_amount),
             "total_due": str(v.loan.total_due), "total_paid": str(v.loan.total_paid)}
            for v in loans
        ],
    }


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    request: UpdateClientRequest,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Edit a client's contact, banking or guarantor details"""
    client = system.client_manager.update_client(
        actor, client_id, **request.model_dump(exclude_unset=True)
    )
    return {"client": client_response(client), "message": "Client updated successfully"}
