"""
Financial statement endpoints
"""

from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from .deps import get_ledger_system
from ..errors import InvalidPeriodError
from ..statements import ReportRange
from ..system import LedgerSystem


router = APIRouter()


def _report_range(
    range_type: str,
    year: Optional[int],
    month: Optional[int],
    quarter: Optional[int],
    start_date: Optional[date],
    end_date: Optional[date],
    as_of: Optional[date]
) -> ReportRange:
    """Build a report range from query parameters"""
    range_type = range_type.lower()
    if range_type == "month" and year and month:
        return ReportRange.month(year, month)
    if range_type == "quarter" and year and quarter:
        return ReportRange.quarter(year, quarter)
    if range_type == "ytd":
        return ReportRange.year_to_date(as_of or date.today())
    if range_type == "custom" and start_date and end_date:
        return ReportRange.custom(start_date, end_date)
    raise InvalidPeriodError(
        f"Range '{range_type}' is missing parameters or unsupported; "
        "use month (year, month), quarter (year, quarter), ytd (as_of) or custom (start_date, end_date)",
        range_type=range_type
    )


@router.get("/trial-balance")
async def trial_balance(as_of: Optional[date] = None, system: LedgerSystem = Depends(get_ledger_system)):
    return system.get_trial_balance(as_of or date.today()).to_dict()


@router.get("/income-statement")
async def income_statement(
    range_type: str = Query("custom", alias="range"),
    year: Optional[int] = None,
    month: Optional[int] = None,
    quarter: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    as_of: Optional[date] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    period = _report_range(range_type, year, month, quarter, start_date, end_date, as_of)
    return system.get_income_statement(period).to_dict()


@router.get("/balance-sheet")
async def balance_sheet(as_of: Optional[date] = None, system: LedgerSystem = Depends(get_ledger_system)):
    return system.get_balance_sheet(as_of or date.today()).to_dict()


@router.get("/cash-flow")
async def cash_flow(
    range_type: str = Query("custom", alias="range"),
    year: Optional[int] = None,
    month: Optional[int] = None,
    quarter: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    as_of: Optional[date] = None,
    cash_account: Optional[List[str]] = Query(None),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Cash flow over a range; ``cash_account`` overrides the configured cash accounts"""
    period = _report_range(range_type, year, month, quarter, start_date, end_date, as_of)
    return system.get_cash_flow(period, cash_account).to_dict()


@router.get("/account-balances")
async def account_balances(
    currency_id: Optional[str] = None,
    as_of: Optional[date] = None,
    report_currency: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Balances of every account, optionally translated into a reporting currency"""
    return {"balances": system.get_account_balances(currency_id, as_of, report_currency)}
