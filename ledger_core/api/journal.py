"""
Journal entry endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, status

from .deps import get_ledger_system
from .schemas import (
    PostEntryRequest, ReverseEntryRequest, entry_to_dict, journal_page_to_dict
)
from ..ledger import EntrySide, JournalFilter
from ..system import LedgerSystem


router = APIRouter()


@router.post("/entries", status_code=status.HTTP_201_CREATED)
async def post_entry(
    request: PostEntryRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Validate and post a balanced journal entry"""
    base_currency = system.config.base_currency
    entry = system.post(
        transaction_date=request.transaction_date,
        description=request.description,
        lines=[line.to_line(base_currency) for line in request.lines],
        source_type=request.source_type,
        source_id=request.source_id,
        created_by=request.created_by
    )
    return entry_to_dict(entry)


@router.get("/entries")
async def get_journal(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    account_code: Optional[str] = None,
    source_type: Optional[str] = None,
    search: Optional[str] = None,
    side: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """General journal, newest first"""
    filters = JournalFilter(
        start_date=start_date,
        end_date=end_date,
        account_code=account_code,
        source_type=source_type,
        search=search,
        side=EntrySide(side.lower()) if side else None
    )
    return journal_page_to_dict(system.get_journal(filters, page, limit))


@router.get("/entries/{entry_id}")
async def get_entry(entry_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    entry = system.ledger.require_entry(entry_id)
    return entry_to_dict(entry)


@router.post("/entries/{entry_id}/reverse", status_code=status.HTTP_201_CREATED)
async def reverse_entry(
    entry_id: str,
    request: ReverseEntryRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Post the mirror image of an entry into an open period"""
    reversal = system.reverse(entry_id, request.reversal_date, request.description, request.created_by)
    return entry_to_dict(reversal)
