"""
Payment alert endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends

from .auth import MicrofinanceSystem, get_system, get_actor
from .schemas import alert_response
from ..actors import Actor
from ..alerts import count_alerts


router = APIRouter()


@router.get("")
async def list_alerts(
    today: Optional[date] = None,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Overdue, due-today and due-soon loans, most urgent first"""
    alerts = system.alert_classifier.list_alerts(today)
    return {"alerts": [alert_response(a) for a in alerts], "counts": count_alerts(alerts)}
