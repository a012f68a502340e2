"""
Currency and exchange rate endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_ledger_system
from .schemas import (
    CreateCurrencyRequest, ExchangeRateRequest, UpdateCurrencyRequest,
    currency_to_dict, parse_amount, rate_to_dict
)
from ..currency import Money, to_fixed_string
from ..system import LedgerSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_currency(
    request: CreateCurrencyRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    currency = system.create_currency(request.code, request.name, request.symbol, request.precision)
    return currency_to_dict(currency)


@router.get("")
async def list_currencies(
    active_only: bool = False,
    system: LedgerSystem = Depends(get_ledger_system)
):
    return {"currencies": [currency_to_dict(c) for c in system.list_currencies(active_only)]}


@router.post("/rates", status_code=status.HTTP_201_CREATED)
async def set_rate(
    request: ExchangeRateRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record an exchange rate effective from a date"""
    rate = system.set_rate(
        request.from_currency,
        request.to_currency,
        parse_amount(request.rate),
        request.effective_date
    )
    return rate_to_dict(rate)


@router.get("/rates/{from_currency}/{to_currency}")
async def get_rate(
    from_currency: str,
    to_currency: str,
    as_of: Optional[date] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Latest rate effective on or before a date"""
    rate = system.get_rate(from_currency, to_currency, as_of)
    if not rate:
        raise HTTPException(status_code=404, detail="Exchange rate not found")
    return rate_to_dict(rate)


@router.get("/convert")
async def convert(
    amount: str,
    from_currency: str,
    to_currency: str,
    as_of: Optional[date] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Translate an amount for display; never affects postings"""
    converted = system.convert(Money(parse_amount(amount), from_currency.upper()), to_currency, as_of)
    return {"amount": to_fixed_string(converted.amount), "currency": converted.currency}


@router.patch("/{code}")
async def update_currency(
    code: str,
    request: UpdateCurrencyRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    currency = system.update_currency(
        code, name=request.name, symbol=request.symbol, is_active=request.is_active
    )
    return currency_to_dict(currency)
