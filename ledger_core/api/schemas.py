"""
Pydantic schemas for API requests, and serializers for responses

Monetary values cross the API boundary as decimal strings only.
"""

import datetime as dt
from decimal import Decimal
from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..accounts import Account
from ..closing import PeriodClosing
from ..currency import Currency, ExchangeRate, decimal_from_string, to_fixed_string
from ..ledger import JournalEntry, JournalLine, JournalPage, PostedLine
from ..periods import AccountingPeriod
from ..reconciliation import StatementLine


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    return decimal_from_string(value) if value is not None else None


# Account schemas
class CreateAccountRequest(BaseModel):
    code: str
    name: str
    account_type: Optional[str] = None  # inherited from the root ancestor when omitted
    parent_code: Optional[str] = None
    currency_id: Optional[str] = None
    description: str = ""


class UpdateAccountRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    parent_code: Optional[str] = None  # explicit null moves the account to the root


class OpeningBalanceRequest(BaseModel):
    account_code: str
    amount: str = Field(..., description="Decimal amount as string")
    balance_side: str = Field(..., description="debit or credit")
    transaction_date: date
    currency_id: Optional[str] = None
    created_by: Optional[str] = None


# Currency schemas
class CreateCurrencyRequest(BaseModel):
    code: str
    name: str
    symbol: str = ""
    precision: int = 2


class UpdateCurrencyRequest(BaseModel):
    name: Optional[str] = None
    symbol: Optional[str] = None
    is_active: Optional[bool] = None


class ExchangeRateRequest(BaseModel):
    from_currency: str
    to_currency: str
    rate: str = Field(..., description="Decimal rate as string")
    effective_date: date


# Journal schemas
class JournalLineModel(BaseModel):
    account_code: str
    side: str = Field(..., description="debit or credit")
    amount: str = Field(..., description="Decimal amount as string")
    currency_id: Optional[str] = None
    memo: str = ""

    def to_line(self, default_currency: str) -> JournalLine:
        return JournalLine(
            account_code=self.account_code,
            side=self.side,
            amount=decimal_from_string(self.amount),
            currency_id=self.currency_id or default_currency,
            memo=self.memo
        )


class PostEntryRequest(BaseModel):
    transaction_date: date
    description: str
    lines: List[JournalLineModel]
    source_type: str = "manual"
    source_id: Optional[str] = None
    created_by: Optional[str] = None


class ReverseEntryRequest(BaseModel):
    reversal_date: date
    description: Optional[str] = None
    created_by: Optional[str] = None


# Period schemas
class CreatePeriodRequest(BaseModel):
    name: str
    start_date: date
    end_date: date
    period_type: str = "custom"


class MonthlyPeriodRequest(BaseModel):
    year: int
    month: int


class PeriodActionRequest(BaseModel):
    user_id: Optional[str] = None
    reason: Optional[str] = None


# Reconciliation schemas
class StatementLineModel(BaseModel):
    date: dt.date
    amount: str = Field(..., description="Positive for deposits, negative for withdrawals")
    description: str = ""
    reference: Optional[str] = None

    def to_statement_line(self) -> StatementLine:
        return StatementLine(
            date=self.date,
            amount=decimal_from_string(self.amount),
            description=self.description,
            reference=self.reference
        )


class ReconcileRequest(BaseModel):
    bank_account_code: str
    statement_lines: List[StatementLineModel]
    statement_balance: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


# Response serializers
def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "code": account.code,
        "name": account.name,
        "account_type": account.account_type.value,
        "parent_code": account.parent_code,
        "currency_id": account.currency_id,
        "is_active": account.is_active,
        "description": account.description,
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat()
    }


def currency_to_dict(currency: Currency) -> Dict[str, Any]:
    return {
        "code": currency.code,
        "name": currency.name,
        "symbol": currency.symbol,
        "precision": currency.precision,
        "is_active": currency.is_active
    }


def rate_to_dict(rate: ExchangeRate) -> Dict[str, Any]:
    return {
        "from_currency": rate.from_currency,
        "to_currency": rate.to_currency,
        "rate": str(rate.rate),
        "effective_date": rate.effective_date.isoformat()
    }


def entry_to_dict(entry: JournalEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "transaction_date": entry.transaction_date.isoformat(),
        "description": entry.description,
        "source_type": entry.source_type,
        "source_id": entry.source_id,
        "created_by": entry.created_by,
        "period_id": entry.period_id,
        "posted_at": entry.posted_at.isoformat() if entry.posted_at else None,
        "reversed_by": entry.reversed_by,
        "reverses": entry.reverses,
        "lines": [
            {
                "account_code": line.account_code,
                "side": line.side.value,
                "amount": to_fixed_string(line.amount),
                "currency_id": line.currency_id,
                "memo": line.memo
            }
            for line in entry.lines
        ]
    }


def journal_page_to_dict(page: JournalPage) -> Dict[str, Any]:
    return {
        "entries": [entry_to_dict(e) for e in page.entries],
        "page": page.page,
        "limit": page.limit,
        "total": page.total,
        "total_pages": page.total_pages
    }


def posted_line_to_dict(line: PostedLine) -> Dict[str, Any]:
    return {
        "entry_id": line.entry_id,
        "line_no": line.line_no,
        "transaction_date": line.transaction_date.isoformat(),
        "account_code": line.account_code,
        "side": line.side.value,
        "amount": to_fixed_string(line.amount),
        "currency_id": line.currency_id,
        "memo": line.memo,
        "source_type": line.source_type
    }


def period_to_dict(period: AccountingPeriod) -> Dict[str, Any]:
    return {
        "id": period.id,
        "name": period.name,
        "start_date": period.start_date.isoformat(),
        "end_date": period.end_date.isoformat(),
        "status": period.status.value,
        "period_type": period.period_type.value,
        "closed_at": period.closed_at.isoformat() if period.closed_at else None,
        "closed_by": period.closed_by
    }


def closing_to_dict(closing: PeriodClosing) -> Dict[str, Any]:
    return {
        "period_id": closing.period_id,
        "closing_entry_id": closing.closing_entry_id,
        "net_income": closing.net_income,
        "closed_by": closing.closed_by,
        "closed_at": closing.closed_at.isoformat() if closing.closed_at else None
    }
