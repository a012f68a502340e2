"""
Accounting period and closing endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_ledger_system
from .schemas import (
    CreatePeriodRequest, MonthlyPeriodRequest, PeriodActionRequest,
    closing_to_dict, entry_to_dict, period_to_dict
)
from ..periods import PeriodStatus, PeriodType
from ..system import LedgerSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_period(
    request: CreatePeriodRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    period = system.create_period(
        request.name, request.start_date, request.end_date, PeriodType(request.period_type.lower())
    )
    return period_to_dict(period)


@router.post("/monthly")
async def get_or_create_monthly_period(
    request: MonthlyPeriodRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    return period_to_dict(system.get_or_create_monthly_period(request.year, request.month))


@router.get("")
async def list_periods(
    status: Optional[str] = None,
    year: Optional[int] = None,
    period_type: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Accounting periods in chronological order"""
    periods = system.get_accounting_periods(
        status=PeriodStatus(status.lower()) if status else None,
        year=year,
        period_type=PeriodType(period_type.lower()) if period_type else None
    )
    return {"periods": [period_to_dict(p) for p in periods]}


@router.get("/resolve")
async def resolve_period(on: date, system: LedgerSystem = Depends(get_ledger_system)):
    """The period covering a date"""
    period = system.resolve_period(on)
    if not period:
        raise HTTPException(status_code=404, detail="No accounting period covers this date")
    return period_to_dict(period)


@router.get("/{period_id}")
async def get_period(period_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    return period_to_dict(system.get_period(period_id))


@router.post("/{period_id}/initiate-close")
async def initiate_close(
    period_id: str,
    request: Optional[PeriodActionRequest] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """OPEN -> CLOSING"""
    user_id = request.user_id if request else None
    return period_to_dict(system.initiate_close(period_id, user_id))


@router.post("/{period_id}/complete-close")
async def complete_close(
    period_id: str,
    request: Optional[PeriodActionRequest] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Post the closing entry; CLOSING -> CLOSED"""
    user_id = request.user_id if request else None
    closing = system.complete_close(period_id, user_id)
    return {
        "period": period_to_dict(system.get_period(period_id)),
        "closing": closing_to_dict(closing)
    }


@router.post("/{period_id}/abort-close")
async def abort_close(
    period_id: str,
    request: Optional[PeriodActionRequest] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """CLOSING -> OPEN"""
    user_id = request.user_id if request else None
    reason = request.reason if request else None
    return period_to_dict(system.abort_close(period_id, user_id, reason))


@router.get("/{period_id}/closing")
async def get_closing(period_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    closing = system.get_closing(period_id)
    if not closing:
        raise HTTPException(status_code=404, detail="Period has not been closed")
    return closing_to_dict(closing)


@router.get("/{period_id}/closing-entries")
async def get_closing_entries(period_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    return {"entries": [entry_to_dict(e) for e in system.get_closing_entries(period_id)]}


@router.get("/{period_id}/opening-balances")
async def get_opening_balances(period_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Permanent-account balances carried into the period"""
    return {"balances": [b.to_dict() for b in system.get_opening_balances(period_id)]}
