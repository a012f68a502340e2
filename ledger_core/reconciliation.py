"""
Bank Reconciliation Checker

Matches externally supplied bank statement lines against journal lines
posted to a bank account. Read-only: differences are resolved by posting
ordinary adjustment entries through the ledger.

Sign convention: statement amounts are positive for deposits and negative
for withdrawals; ledger debits to the bank account count as positive.
"""

import logging
from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .balances import BalanceAggregator
from .accounts import ChartOfAccounts
from .currency import to_decimal, to_fixed_string
from .ledger import GeneralLedger, PostedLine
from .logging_config import log_action
from .errors import InvalidPeriodError


logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass
class StatementLine:
    """One line of an external bank statement"""
    date: date
    amount: Decimal
    description: str = ""
    reference: Optional[str] = None

    def __post_init__(self):
        self.amount = to_decimal(self.amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'amount': to_fixed_string(self.amount),
            'description': self.description,
            'reference': self.reference
        }


def _ledger_line_dict(line: PostedLine) -> Dict[str, Any]:
    return {
        'entry_id': line.entry_id,
        'line_no': line.line_no,
        'transaction_date': line.transaction_date.isoformat(),
        'amount': to_fixed_string(line.signed_amount),
        'currency_id': line.currency_id,
        'memo': line.memo,
        'source_type': line.source_type
    }


@dataclass
class ReconciliationMatch:
    statement_line: StatementLine
    ledger_line: PostedLine
    date_difference: int
    amount_difference: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'statement_line': self.statement_line.to_dict(),
            'ledger_line': _ledger_line_dict(self.ledger_line),
            'date_difference': self.date_difference,
            'amount_difference': to_fixed_string(self.amount_difference)
        }


@dataclass
class ReconciliationResult:
    bank_account_code: str
    currency_id: str
    start_date: Optional[date]
    end_date: Optional[date]
    matched: List[ReconciliationMatch] = field(default_factory=list)
    unmatched_ledger: List[PostedLine] = field(default_factory=list)
    unmatched_statement: List[StatementLine] = field(default_factory=list)
    book_balance: Decimal = ZERO
    statement_balance: Optional[Decimal] = None

    @property
    def difference(self) -> Optional[Decimal]:
        """Statement closing balance minus book balance, when a statement balance was given"""
        if self.statement_balance is None:
            return None
        return self.statement_balance - self.book_balance

    @property
    def is_reconciled(self) -> bool:
        return (
            not self.unmatched_ledger
            and not self.unmatched_statement
            and self.difference in (None, ZERO)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bank_account_code': self.bank_account_code,
            'currency_id': self.currency_id,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'matched': [m.to_dict() for m in self.matched],
            'unmatched_ledger': [_ledger_line_dict(l) for l in self.unmatched_ledger],
            'unmatched_statement': [s.to_dict() for s in self.unmatched_statement],
            'book_balance': to_fixed_string(self.book_balance),
            'statement_balance': to_fixed_string(self.statement_balance) if self.statement_balance is not None else None,
            'difference': to_fixed_string(self.difference) if self.difference is not None else None,
            'is_reconciled': self.is_reconciled
        }


class ReconciliationChecker:
    """
    Greedy statement-to-ledger matcher
    """

    def __init__(
        self,
        ledger: GeneralLedger,
        aggregator: BalanceAggregator,
        chart: ChartOfAccounts,
        date_tolerance_days: int = 3,
        amount_tolerance: Decimal = ZERO,
        base_currency: str = "USD"
    ):
        self.ledger = ledger
        self.aggregator = aggregator
        self.chart = chart
        self.date_tolerance_days = date_tolerance_days
        self.amount_tolerance = Decimal(str(amount_tolerance))
        self.base_currency = base_currency

    def reconcile(
        self,
        bank_account_code: str,
        statement_lines: Sequence[StatementLine],
        statement_balance: Optional[Decimal] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        currency_id: Optional[str] = None
    ) -> ReconciliationResult:
        """
        Match statement lines to ledger lines on the bank account

        Ledger lines are taken from the statement's date range (the earliest
        to the latest statement line unless given explicitly), widened by
        the date tolerance on both sides for matching. Only unmatched ledger
        lines inside the range itself are reported. Statement lines are
        matched in date order; each takes the unmatched ledger line with the
        same amount (within tolerance) that is closest in date, then closest
        in amount.

        Args:
            bank_account_code: Ledger account the bank statement belongs to
            statement_lines: External statement lines
            statement_balance: Optional statement closing balance
            start_date: Optional explicit range start
            end_date: Optional explicit range end
            currency_id: Currency to reconcile; defaults to the account's
                pinned currency or the base currency

        Raises:
            AccountNotFoundError: If the bank account does not exist
            InvalidPeriodError: If the range is inverted
        """
        account = self.chart.require_account(bank_account_code)
        currency_id = (currency_id or account.currency_id or self.base_currency).upper()
        statement_lines = list(statement_lines)

        dates = [line.date for line in statement_lines]
        start_date = start_date or (min(dates) if dates else None)
        end_date = end_date or (max(dates) if dates else None)
        if start_date and end_date and start_date > end_date:
            raise InvalidPeriodError(
                f"Reconciliation range start {start_date.isoformat()} is after end {end_date.isoformat()}",
                start_date=start_date,
                end_date=end_date
            )

        result = ReconciliationResult(
            bank_account_code=account.code,
            currency_id=currency_id,
            start_date=start_date,
            end_date=end_date,
            statement_balance=to_decimal(statement_balance, "statement_balance") if statement_balance is not None else None
        )

        ledger_lines: List[PostedLine] = []
        if start_date and end_date:
            # Candidates reach past the range by the date tolerance so lines
            # at either edge can still pair
            window = timedelta(days=self.date_tolerance_days)
            ledger_lines = self.ledger.get_movements(
                account.code, start_date - window, end_date + window, currency_id
            )
            balance_date = end_date
        else:
            balance_date = date.max
        result.book_balance = self.aggregator.get_balance(account.code, balance_date, currency_id).raw_net

        unmatched = list(ledger_lines)
        ordered = sorted(enumerate(statement_lines), key=lambda pair: (pair[1].date, pair[0]))
        for _, statement_line in ordered:
            best = self._best_candidate(statement_line, unmatched)
            if best is None:
                result.unmatched_statement.append(statement_line)
                continue
            unmatched.remove(best)
            result.matched.append(ReconciliationMatch(
                statement_line=statement_line,
                ledger_line=best,
                date_difference=abs((best.transaction_date - statement_line.date).days),
                amount_difference=statement_line.amount - best.signed_amount
            ))
        result.unmatched_ledger = [
            line for line in unmatched
            if start_date <= line.transaction_date <= end_date
        ]

        log_action(
            logger, "info", "Reconciliation checked",
            action="reconciliation.check",
            resource=account.code,
            extra={
                "matched": len(result.matched),
                "unmatched_ledger": len(result.unmatched_ledger),
                "unmatched_statement": len(result.unmatched_statement),
                "difference": str(result.difference) if result.difference is not None else None
            }
        )
        return result

    def _best_candidate(self, statement_line: StatementLine, candidates: List[PostedLine]) -> Optional[PostedLine]:
        window = timedelta(days=self.date_tolerance_days)
        best = None
        best_key = None
        for position, line in enumerate(candidates):
            amount_gap = abs(statement_line.amount - line.signed_amount)
            if amount_gap > self.amount_tolerance:
                continue
            date_gap = abs(line.transaction_date - statement_line.date)
            if date_gap > window:
                continue
            key = (date_gap, amount_gap, position)
            if best_key is None or key < best_key:
                best, best_key = line, key
        return best
