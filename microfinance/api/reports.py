"""
Reporting endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from .auth import MicrofinanceSystem, get_system, get_actor
from .schemas import loan_view_response
from ..storage import to_storable
from ..actors import Actor
from ..errors import ValidationError
from ..reporting import ReportFormat


router = APIRouter()


@router.get("/summary")
async def portfolio_summary(
    today: Optional[date] = None,
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Dashboard statistics and the most recent loans"""
    engine = system.reporting_engine
    result = to_storable(engine.export_report(engine.portfolio_summary(today), ReportFormat.DICT))
    result["recent_loans"] = [loan_view_response(v) for v in engine.recent_loans()]
    return result


@router.get("/loans")
async def loan_portfolio(
    status: Optional[str] = None,
    format: str = "dict",
    actor: Actor = Depends(get_actor),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Per-loan portfolio report as dict, JSON or CSV"""
    try:
        report_format = ReportFormat(format)
    except ValueError:
        raise ValidationError(f"Unsupported export format: {format}")

    engine = system.reporting_engine
    exported = engine.export_report(engine.loan_portfolio_report(status=status), report_format)
    if report_format == ReportFormat.CSV:
        return PlainTextResponse(exported, media_type="text/csv")
    if report_format == ReportFormat.JSON:
        return PlainTextResponse(exported, media_type="application/json")
    return to_storable(exported)
