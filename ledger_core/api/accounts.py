"""
Chart of accounts endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_ledger_system
from .schemas import (
    CreateAccountRequest, OpeningBalanceRequest, UpdateAccountRequest,
    account_to_dict, entry_to_dict, parse_amount, posted_line_to_dict
)
from ..accounts import AccountType
from ..ledger import EntrySide
from ..system import LedgerSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_account(
    request: CreateAccountRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a new account"""
    account = system.create_account(
        code=request.code,
        name=request.name,
        account_type=AccountType(request.account_type.lower()) if request.account_type else None,
        parent_code=request.parent_code,
        currency_id=request.currency_id,
        description=request.description
    )
    return account_to_dict(account)


@router.get("")
async def list_accounts(
    account_type: Optional[str] = None,
    active: Optional[bool] = None,
    parent_code: Optional[str] = None,
    search: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List accounts with optional filters"""
    accounts = system.list_accounts(
        account_type=AccountType(account_type.lower()) if account_type else None,
        is_active=active,
        parent_code=parent_code,
        search=search
    )
    return {"accounts": [account_to_dict(a) for a in accounts]}


@router.post("/opening-balances", status_code=status.HTTP_201_CREATED)
async def post_opening_balance(
    request: OpeningBalanceRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Post an account's opening balance against retained earnings"""
    entry = system.post_opening_balance(
        account_code=request.account_code,
        amount=parse_amount(request.amount),
        balance_side=EntrySide(request.balance_side.lower()),
        transaction_date=request.transaction_date,
        currency_id=request.currency_id,
        created_by=request.created_by
    )
    return entry_to_dict(entry)


@router.get("/{code}")
async def get_account(code: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Get account details"""
    account = system.get_account(code)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    result = account_to_dict(account)
    result["resolved_type"] = system.resolve_type(code).value
    return result


@router.patch("/{code}")
async def update_account(
    code: str,
    request: UpdateAccountRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Update name, description or parent"""
    changes = {"name": request.name, "description": request.description}
    if "parent_code" in request.model_fields_set:
        changes["parent_code"] = request.parent_code
    return account_to_dict(system.update_account(code, **changes))


@router.post("/{code}/deactivate")
async def deactivate_account(code: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Hide an account from new postings"""
    return account_to_dict(system.deactivate_account(code))


@router.post("/{code}/reactivate")
async def reactivate_account(code: str, system: LedgerSystem = Depends(get_ledger_system)):
    return account_to_dict(system.reactivate_account(code))


@router.get("/{code}/children")
async def get_children(code: str, system: LedgerSystem = Depends(get_ledger_system)):
    return {"accounts": [account_to_dict(a) for a in system.get_children(code)]}


@router.get("/{code}/balance")
async def get_balance(
    code: str,
    as_of: Optional[date] = None,
    currency_id: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Account balance as of a date (default today)"""
    return system.get_balance(code, as_of or date.today(), currency_id).to_dict()


@router.get("/{code}/movements")
async def get_movements(
    code: str,
    start_date: date,
    end_date: date,
    currency_id: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Lines posted to an account within a date range"""
    lines = system.get_movements(code, start_date, end_date, currency_id)
    return {"movements": [posted_line_to_dict(line) for line in lines]}
