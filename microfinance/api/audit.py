"""
Audit log endpoints (admin only)
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .auth import MicrofinanceSystem, get_system, get_actor
from .schemas import audit_entry_response
from ..actors import Actor, require_admin
from ..audit import AuditAction
from ..errors import ValidationError


router = APIRouter()


@router.get("")
async def list_audit_entries(
    action: Optional[str] = None,
    limit: Optional[int] = 100,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Audit entries, newest first"""
    try:
        action_filter = AuditAction(action) if action else None
    except ValueError:
        raise ValidationError(f"Unknown audit action '{action}'")
    entries = system.audit_trail.list_entries(actor, action=action_filter, limit=limit)
    return {"entries": [audit_entry_response(e) for e in entries], "count": len(entries)}


@router.get("/verify")
async def verify_audit_chain(
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Check the audit hash chain for tampering"""
    require_admin(actor, "verify the audit log")
    return system.audit_trail.verify_integrity()
