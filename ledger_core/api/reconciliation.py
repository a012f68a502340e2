"""
Bank reconciliation endpoints
"""

from fastapi import APIRouter, Depends

from .deps import get_ledger_system
from .schemas import ReconcileRequest, parse_amount
from ..system import LedgerSystem


router = APIRouter()


@router.post("")
async def reconcile(
    request: ReconcileRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Match bank statement lines against the bank account's journal lines"""
    result = system.reconcile(
        bank_account_code=request.bank_account_code,
        statement_lines=[line.to_statement_line() for line in request.statement_lines],
        statement_balance=parse_amount(request.statement_balance),
        start_date=request.start_date,
        end_date=request.end_date
    )
    return result.to_dict()
