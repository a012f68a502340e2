"""
Ledger Error Taxonomy

Three categories of failure:

- validation errors: the caller's request is malformed and can be fixed by
  the caller; never retried automatically
- state-conflict errors: the request is well formed but invalid given the
  current state of periods or entries; the caller decides whether to retry
- integrity errors: the ledger itself disagrees with its invariants; these
  are fatal, logged, and surfaced to an operator

All errors subclass ValueError so callers that only know about ValueError
keep working, and all of them serialize to a structured dict through
``to_dict()``.
"""

from decimal import Decimal
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


INTEGRITY_MESSAGE = "ledger integrity check failed"


def _plain(value: Any) -> Any:
    """Convert Decimals, dates and enums into JSON-friendly values"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class LedgerError(ValueError):
    """Base class for every error raised by the ledger engine."""

    category = "ledger"
    kind = "ledger_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind,
            "category": self.category,
            "message": self.message,
            "details": _plain(self.details),
        }


# Validation errors

class LedgerValidationError(LedgerError):
    """Invalid input; always fixable by the caller."""

    category = "validation"
    kind = "validation_error"


class UnbalancedEntryError(LedgerValidationError):
    kind = "unbalanced_entry"

    def __init__(self, currency: str, debit_total: Decimal, credit_total: Decimal):
        super().__init__(
            f"Journal entry not balanced for {currency}: "
            f"debits={debit_total}, credits={credit_total}",
            currency=currency,
            debit_total=debit_total,
            credit_total=credit_total,
        )
        self.currency = currency
        self.debit_total = debit_total
        self.credit_total = credit_total


class InvalidEntryError(LedgerValidationError):
    kind = "invalid_entry"


class InvalidAmountError(LedgerValidationError):
    kind = "invalid_amount"


class DuplicateAccountError(LedgerValidationError):
    kind = "duplicate_account"

    def __init__(self, code: str):
        super().__init__(f"Account {code} already exists", account_code=code)


class InvalidParentError(LedgerValidationError):
    kind = "invalid_parent"


class AccountNotFoundError(LedgerValidationError):
    kind = "account_not_found"

    def __init__(self, code: str):
        super().__init__(f"Account {code} not found", account_code=code)


class InactiveAccountError(LedgerValidationError):
    kind = "inactive_account"

    def __init__(self, code: str):
        super().__init__(f"Account {code} is inactive", account_code=code)


class CurrencyMismatchError(LedgerValidationError):
    kind = "currency_mismatch"


class UnknownCurrencyError(LedgerValidationError):
    kind = "unknown_currency"

    def __init__(self, code: str, reason: str = "not found"):
        super().__init__(f"Currency {code} {reason}", currency=code)


class DuplicateCurrencyError(LedgerValidationError):
    kind = "duplicate_currency"

    def __init__(self, code: str):
        super().__init__(f"Currency {code} already exists", currency=code)


class ExchangeRateError(LedgerValidationError):
    kind = "exchange_rate_error"


class InvalidPeriodError(LedgerValidationError):
    kind = "invalid_period"


class PeriodOverlapError(LedgerValidationError):
    kind = "period_overlap"


class PeriodNotFoundError(LedgerValidationError):
    kind = "period_not_found"

    def __init__(self, period_id: str):
        super().__init__(f"Accounting period {period_id} not found", period_id=period_id)


class EntryNotFoundError(LedgerValidationError):
    kind = "entry_not_found"

    def __init__(self, entry_id: str):
        super().__init__(f"Journal entry {entry_id} not found", entry_id=entry_id)


# State-conflict errors

class LedgerStateError(LedgerError):
    """Request is structurally invalid given the current ledger state."""

    category = "state_conflict"
    kind = "state_conflict"


class NoOpenPeriodError(LedgerStateError):
    kind = "no_open_period"

    def __init__(self, transaction_date: date):
        super().__init__(
            f"No accounting period covers {transaction_date.isoformat()}",
            transaction_date=transaction_date,
        )


class PeriodClosedError(LedgerStateError):
    kind = "period_closed"

    def __init__(self, period_id: str, transaction_date: Optional[date] = None):
        super().__init__(
            f"Accounting period {period_id} is closed",
            period_id=period_id,
            transaction_date=transaction_date,
        )


class PeriodLockedError(LedgerStateError):
    """The period is being closed; retry once the close completes or aborts."""

    kind = "period_locked"

    def __init__(self, period_id: str, transaction_date: Optional[date] = None):
        super().__init__(
            f"Accounting period {period_id} is locked for closing",
            period_id=period_id,
            transaction_date=transaction_date,
        )


class PeriodNotOpenError(LedgerStateError):
    kind = "period_not_open"

    def __init__(self, period_id: str, status: str):
        super().__init__(
            f"Accounting period {period_id} is {status}, expected open",
            period_id=period_id,
            status=status,
        )


class PeriodNotClosingError(LedgerStateError):
    kind = "period_not_closing"

    def __init__(self, period_id: str, status: str):
        super().__init__(
            f"Accounting period {period_id} is {status}, expected closing",
            period_id=period_id,
            status=status,
        )


class EarlierPeriodOpenError(LedgerStateError):
    kind = "earlier_period_open"

    def __init__(self, period_id: str, earlier_period_ids: List[str]):
        super().__init__(
            f"Cannot close period {period_id} while earlier periods are not closed: "
            f"{', '.join(earlier_period_ids)}",
            period_id=period_id,
            earlier_period_ids=earlier_period_ids,
        )


class AlreadyReversedError(LedgerStateError):
    kind = "already_reversed"

    def __init__(self, entry_id: str, reversed_by: str):
        super().__init__(
            f"Journal entry {entry_id} was already reversed by {reversed_by}",
            entry_id=entry_id,
            reversed_by=reversed_by,
        )


class AccountInUseError(LedgerStateError):
    kind = "account_in_use"

    def __init__(self, code: str, balances: Dict[str, Decimal]):
        super().__init__(
            f"Account {code} has a non-zero balance and cannot be deactivated",
            account_code=code,
            balances=balances,
        )


# Integrity errors

class LedgerIntegrityError(LedgerError):
    """
    The ledger violates one of its own invariants. Never auto-corrected;
    the message stays generic and the details carry what an operator needs.
    """

    category = "integrity"
    kind = "integrity_error"

    def __init__(self, **details: Any):
        super().__init__(INTEGRITY_MESSAGE, **details)


class UnbalancedPeriodError(LedgerIntegrityError):
    kind = "unbalanced_period"


class TrialBalanceMismatchError(LedgerIntegrityError):
    kind = "trial_balance_mismatch"


class AccountingEquationError(LedgerIntegrityError):
    kind = "accounting_equation_violated"


class CashFlowMismatchError(LedgerIntegrityError):
    kind = "cash_flow_mismatch"
