"""
Financial Statement Generators

Trial balance, income statement, balance sheet and cash flow statement,
computed on demand from the balance aggregator and the chart of accounts.
Every statement is reported per currency; nothing is converted.

Generators never paper over an integrity violation. A trial balance whose
columns disagree, a balance sheet that breaks the accounting equation, or a
cash flow that does not reconcile to the cash balances raises a
LedgerIntegrityError, which is logged and audited first.
"""

import calendar
import logging
from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .accounts import AccountType, ChartOfAccounts, is_nominal, normal_balance
from .audit import AuditTrail, AuditEventType
from .balances import BalanceAggregator
from .currency import to_fixed_string
from .ledger import GeneralLedger, SourceType
from .logging_config import log_action
from .errors import (
    AccountingEquationError, CashFlowMismatchError, InvalidPeriodError,
    LedgerIntegrityError, TrialBalanceMismatchError
)


logger = logging.getLogger(__name__)

ZERO = Decimal('0')

CASH_FLOW_BUCKETS = ("operating", "investing", "financing")


def _amounts(values: Dict[str, Decimal]) -> Dict[str, str]:
    return {currency: to_fixed_string(amount) for currency, amount in sorted(values.items())}


def _add(totals: Dict[str, Decimal], currency_id: str, amount: Decimal) -> None:
    totals[currency_id] = totals.get(currency_id, ZERO) + amount


@dataclass(frozen=True)
class ReportRange:
    """Inclusive date range a statement covers"""
    start_date: date
    end_date: date
    label: str = ""

    def __post_init__(self):
        if self.start_date > self.end_date:
            raise InvalidPeriodError(
                f"Report range start {self.start_date.isoformat()} is after end {self.end_date.isoformat()}",
                start_date=self.start_date,
                end_date=self.end_date
            )

    @classmethod
    def month(cls, year: int, month: int) -> 'ReportRange':
        last_day = calendar.monthrange(year, month)[1]
        return cls(date(year, month, 1), date(year, month, last_day), f"{year}-{month:02d}")

    @classmethod
    def quarter(cls, year: int, quarter: int) -> 'ReportRange':
        if not 1 <= quarter <= 4:
            raise InvalidPeriodError(f"Invalid quarter {quarter}", year=year, quarter=quarter)
        first_month = 3 * (quarter - 1) + 1
        last_month = first_month + 2
        last_day = calendar.monthrange(year, last_month)[1]
        return cls(date(year, first_month, 1), date(year, last_month, last_day), f"{year}-Q{quarter}")

    @classmethod
    def year_to_date(cls, as_of: date) -> 'ReportRange':
        return cls(date(as_of.year, 1, 1), as_of, f"{as_of.year}-YTD")

    @classmethod
    def custom(cls, start_date: date, end_date: date) -> 'ReportRange':
        return cls(start_date, end_date, f"{start_date.isoformat()}..{end_date.isoformat()}")

    def to_dict(self) -> Dict[str, str]:
        return {
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'label': self.label
        }


@dataclass
class StatementLine:
    account_code: str
    name: str
    account_type: AccountType
    currency_id: str
    amount: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {
            'account_code': self.account_code,
            'name': self.name,
            'account_type': self.account_type.value,
            'currency_id': self.currency_id,
            'amount': to_fixed_string(self.amount)
        }


@dataclass
class TrialBalanceRow:
    account_code: str
    name: str
    account_type: AccountType
    currency_id: str
    debit: Decimal
    credit: Decimal
    is_active: bool = True

    def to_dict(self) -> Dict:
        return {
            'account_code': self.account_code,
            'name': self.name,
            'account_type': self.account_type.value,
            'currency_id': self.currency_id,
            'debit': to_fixed_string(self.debit),
            'credit': to_fixed_string(self.credit),
            'is_active': self.is_active
        }


@dataclass
class TrialBalance:
    as_of_date: date
    rows: List[TrialBalanceRow]
    total_debits: Dict[str, Decimal]
    total_credits: Dict[str, Decimal]

    @property
    def is_balanced(self) -> bool:
        currencies = set(self.total_debits) | set(self.total_credits)
        return all(self.total_debits.get(c, ZERO) == self.total_credits.get(c, ZERO) for c in currencies)

    def to_dict(self) -> Dict:
        return {
            'as_of_date': self.as_of_date.isoformat(),
            'rows': [row.to_dict() for row in self.rows],
            'total_debits': _amounts(self.total_debits),
            'total_credits': _amounts(self.total_credits),
            'is_balanced': self.is_balanced
        }


@dataclass
class IncomeStatement:
    period: ReportRange
    revenue: List[StatementLine]
    expenses: List[StatementLine]
    total_revenue: Dict[str, Decimal]
    total_expenses: Dict[str, Decimal]

    @property
    def net_income(self) -> Dict[str, Decimal]:
        currencies = set(self.total_revenue) | set(self.total_expenses)
        return {
            c: self.total_revenue.get(c, ZERO) - self.total_expenses.get(c, ZERO)
            for c in sorted(currencies)
        }

    def to_dict(self) -> Dict:
        return {
            'period': self.period.to_dict(),
            'revenue': [line.to_dict() for line in self.revenue],
            'expenses': [line.to_dict() for line in self.expenses],
            'total_revenue': _amounts(self.total_revenue),
            'total_expenses': _amounts(self.total_expenses),
            'net_income': _amounts(self.net_income)
        }


@dataclass
class BalanceSheet:
    as_of_date: date
    assets: List[StatementLine]
    liabilities: List[StatementLine]
    equity: List[StatementLine]
    current_earnings: Dict[str, Decimal]

    @staticmethod
    def _total(lines: List[StatementLine]) -> Dict[str, Decimal]:
        totals: Dict[str, Decimal] = {}
        for line in lines:
            _add(totals, line.currency_id, line.amount)
        return totals

    @property
    def total_assets(self) -> Dict[str, Decimal]:
        return self._total(self.assets)

    @property
    def total_liabilities(self) -> Dict[str, Decimal]:
        return self._total(self.liabilities)

    @property
    def total_equity(self) -> Dict[str, Decimal]:
        """Equity accounts plus earnings not yet closed"""
        totals = self._total(self.equity)
        for currency_id, amount in self.current_earnings.items():
            _add(totals, currency_id, amount)
        return totals

    def currencies(self) -> List[str]:
        return sorted(set(self.total_assets) | set(self.total_liabilities) | set(self.total_equity))

    def to_dict(self) -> Dict:
        return {
            'as_of_date': self.as_of_date.isoformat(),
            'assets': [line.to_dict() for line in self.assets],
            'liabilities': [line.to_dict() for line in self.liabilities],
            'equity': [line.to_dict() for line in self.equity],
            'current_earnings': _amounts(self.current_earnings),
            'total_assets': _amounts(self.total_assets),
            'total_liabilities': _amounts(self.total_liabilities),
            'total_equity': _amounts(self.total_equity)
        }


@dataclass
class CashFlowItem:
    bucket: str
    source_type: str
    currency_id: str
    amount: Decimal
    entry_count: int = 0

    def to_dict(self) -> Dict:
        return {
            'bucket': self.bucket,
            'source_type': self.source_type,
            'currency_id': self.currency_id,
            'amount': to_fixed_string(self.amount),
            'entry_count': self.entry_count
        }


@dataclass
class CashFlowStatement:
    period: ReportRange
    cash_accounts: List[str]
    items: List[CashFlowItem]
    beginning_cash: Dict[str, Decimal]
    ending_cash: Dict[str, Decimal]

    def net_by_bucket(self) -> Dict[str, Dict[str, Decimal]]:
        result: Dict[str, Dict[str, Decimal]] = {bucket: {} for bucket in CASH_FLOW_BUCKETS}
        for item in self.items:
            _add(result.setdefault(item.bucket, {}), item.currency_id, item.amount)
        return result

    @property
    def net_change(self) -> Dict[str, Decimal]:
        totals: Dict[str, Decimal] = {}
        for item in self.items:
            _add(totals, item.currency_id, item.amount)
        return totals

    def to_dict(self) -> Dict:
        return {
            'period': self.period.to_dict(),
            'cash_accounts': self.cash_accounts,
            'activities': {
                bucket: [item.to_dict() for item in self.items if item.bucket == bucket]
                for bucket in self.net_by_bucket()
            },
            'net_by_bucket': {bucket: _amounts(totals) for bucket, totals in self.net_by_bucket().items()},
            'net_change': _amounts(self.net_change),
            'beginning_cash': _amounts(self.beginning_cash),
            'ending_cash': _amounts(self.ending_cash)
        }


class StatementGenerator:
    """
    Builds financial statements from folded journal balances
    """

    def __init__(
        self,
        aggregator: BalanceAggregator,
        chart: ChartOfAccounts,
        ledger: GeneralLedger,
        audit_trail: AuditTrail,
        cash_account_codes: Optional[Iterable[str]] = None,
        cash_flow_mapping: Optional[Dict[str, str]] = None,
        cash_flow_default_bucket: str = "operating"
    ):
        self.aggregator = aggregator
        self.chart = chart
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.cash_account_codes = list(cash_account_codes or [])
        self.cash_flow_mapping = dict(cash_flow_mapping or {})
        self.cash_flow_default_bucket = cash_flow_default_bucket

    def _integrity_failure(self, error: LedgerIntegrityError, report: str) -> None:
        log_action(logger, "critical", f"{error.message}: {report}",
                   action=f"report.{report}", extra=error.to_dict())
        self.audit_trail.log_event(
            event_type=AuditEventType.INTEGRITY_CHECK_FAILED,
            entity_type="report",
            entity_id=report,
            metadata=error.to_dict()
        )
        raise error

    def trial_balance(self, as_of_date: date) -> TrialBalance:
        """
        Every account with a non-zero balance as of a date, in debit and
        credit columns per currency. Deactivated accounts that still carry a
        balance are listed and flagged so the columns stay complete.

        Raises:
            TrialBalanceMismatchError: If a currency's columns disagree
        """
        types = self.chart.resolve_types()
        accounts = {a.code: a for a in self.chart.list_accounts()}

        rows = []
        total_debits: Dict[str, Decimal] = {}
        total_credits: Dict[str, Decimal] = {}
        for (code, currency_id), (debit_total, credit_total) in sorted(self.aggregator.all_balances(as_of_date).items()):
            net = debit_total - credit_total
            if net == 0:
                continue
            account = accounts.get(code)
            row = TrialBalanceRow(
                account_code=code,
                name=account.name if account else code,
                account_type=types.get(code, AccountType.ASSET),
                currency_id=currency_id,
                debit=net if net > 0 else ZERO,
                credit=-net if net < 0 else ZERO,
                is_active=account.is_active if account else False
            )
            rows.append(row)
            _add(total_debits, currency_id, row.debit)
            _add(total_credits, currency_id, row.credit)

        statement = TrialBalance(as_of_date, rows, total_debits, total_credits)
        for currency_id in sorted(set(total_debits) | set(total_credits)):
            if total_debits.get(currency_id, ZERO) != total_credits.get(currency_id, ZERO):
                self._integrity_failure(TrialBalanceMismatchError(
                    as_of_date=as_of_date,
                    currency=currency_id,
                    total_debits=total_debits.get(currency_id, ZERO),
                    total_credits=total_credits.get(currency_id, ZERO),
                    accounts=[r.account_code for r in rows if r.currency_id == currency_id]
                ), "trial_balance")
        return statement

    def income_statement(self, period: ReportRange) -> IncomeStatement:
        """
        Revenue and expense activity within a range. Closing entries are
        left out so a closed period still reports its own activity.
        """
        types = self.chart.resolve_types()
        names = {a.code: a.name for a in self.chart.list_accounts()}
        activity = self.aggregator.activity(
            period.start_date, period.end_date,
            exclude_source_types=[SourceType.CLOSING.value]
        )

        revenue, expenses = [], []
        total_revenue: Dict[str, Decimal] = {}
        total_expenses: Dict[str, Decimal] = {}
        for (code, currency_id), (debit_total, credit_total) in sorted(activity.items()):
            account_type = types.get(code)
            if account_type is None or not is_nominal(account_type):
                continue
            amount = normal_balance(account_type, debit_total, credit_total)
            if amount == 0:
                continue
            line = StatementLine(code, names.get(code, code), account_type, currency_id, amount)
            if account_type == AccountType.REVENUE:
                revenue.append(line)
                _add(total_revenue, currency_id, amount)
            else:
                expenses.append(line)
                _add(total_expenses, currency_id, amount)

        return IncomeStatement(period, revenue, expenses, total_revenue, total_expenses)

    def balance_sheet(self, as_of_date: date) -> BalanceSheet:
        """
        Asset, liability and equity balances as of a date. Revenue and
        expense balances not yet closed appear as current earnings.

        Raises:
            AccountingEquationError: If assets != liabilities + equity in any currency
        """
        types = self.chart.resolve_types()
        names = {a.code: a.name for a in self.chart.list_accounts()}
        sections: Dict[AccountType, List[StatementLine]] = {
            AccountType.ASSET: [], AccountType.LIABILITY: [], AccountType.EQUITY: []
        }
        current_earnings: Dict[str, Decimal] = {}

        for (code, currency_id), (debit_total, credit_total) in sorted(self.aggregator.all_balances(as_of_date).items()):
            account_type = types.get(code)
            if account_type is None:
                continue
            if is_nominal(account_type):
                # Revenue credits add to earnings, expense debits subtract
                _add(current_earnings, currency_id, credit_total - debit_total)
                continue
            amount = normal_balance(account_type, debit_total, credit_total)
            if amount != 0:
                sections[account_type].append(
                    StatementLine(code, names.get(code, code), account_type, currency_id, amount)
                )

        sheet = BalanceSheet(
            as_of_date=as_of_date,
            assets=sections[AccountType.ASSET],
            liabilities=sections[AccountType.LIABILITY],
            equity=sections[AccountType.EQUITY],
            current_earnings={c: a for c, a in current_earnings.items() if a != 0}
        )

        for currency_id in sheet.currencies():
            assets = sheet.total_assets.get(currency_id, ZERO)
            liabilities = sheet.total_liabilities.get(currency_id, ZERO)
            equity = sheet.total_equity.get(currency_id, ZERO)
            if assets != liabilities + equity:
                self._integrity_failure(AccountingEquationError(
                    as_of_date=as_of_date,
                    currency=currency_id,
                    total_assets=assets,
                    total_liabilities=liabilities,
                    total_equity=equity,
                    difference=assets - liabilities - equity
                ), "balance_sheet")
        return sheet

    def _cash_codes(self, cash_account_codes: Optional[Iterable[str]]) -> List[str]:
        """Designated cash accounts and all of their sub-accounts"""
        codes: List[str] = []
        for code in (cash_account_codes if cash_account_codes is not None else self.cash_account_codes):
            if not self.chart.get_account(code):
                logger.warning("Designated cash account %s does not exist", code)
                continue
            for descendant in self.chart.get_descendant_codes(code):
                if descendant not in codes:
                    codes.append(descendant)
        return sorted(codes)

    def _cash_balances(self, codes: List[str], as_of_date: date) -> Dict[str, Decimal]:
        balances: Dict[str, Decimal] = {}
        for (code, currency_id), (debit_total, credit_total) in self.aggregator.all_balances(as_of_date).items():
            if code in codes:
                _add(balances, currency_id, debit_total - credit_total)
        return balances

    def bucket_for(self, source_type: str) -> str:
        return self.cash_flow_mapping.get(source_type, self.cash_flow_default_bucket)

    def cash_flow(
        self,
        period: ReportRange,
        cash_account_codes: Optional[Iterable[str]] = None
    ) -> CashFlowStatement:
        """
        Net cash movement per entry within a range, bucketed by source type

        Transfers between two cash accounts net to zero and are left out.
        A reversal is bucketed like the entry it reverses.

        Raises:
            CashFlowMismatchError: If beginning cash plus net change does not
                equal ending cash in any currency
        """
        codes = self._cash_codes(cash_account_codes)

        per_entry: Dict[str, Dict[str, Decimal]] = {}
        source_types: Dict[str, str] = {}
        for code in codes:
            for line in self.ledger.iter_lines(account_code=code, start_date=period.start_date, end_date=period.end_date):
                _add(per_entry.setdefault(line.entry_id, {}), line.currency_id, line.signed_amount)
                source_types[line.entry_id] = line.source_type

        grouped: Dict[tuple, CashFlowItem] = {}
        for entry_id, nets in per_entry.items():
            source_type = source_types[entry_id]
            if source_type == SourceType.REVERSAL.value:
                source_type = self._reversed_source_type(entry_id) or source_type
            bucket = self.bucket_for(source_type)
            for currency_id, amount in nets.items():
                if amount == 0:
                    continue
                key = (bucket, source_type, currency_id)
                if key not in grouped:
                    grouped[key] = CashFlowItem(bucket, source_type, currency_id, ZERO)
                grouped[key].amount += amount
                grouped[key].entry_count += 1

        statement = CashFlowStatement(
            period=period,
            cash_accounts=codes,
            items=[grouped[key] for key in sorted(grouped)],
            beginning_cash=self._cash_balances(codes, period.start_date - timedelta(days=1)),
            ending_cash=self._cash_balances(codes, period.end_date)
        )

        net_change = statement.net_change
        for currency_id in sorted(set(statement.beginning_cash) | set(statement.ending_cash) | set(net_change)):
            beginning = statement.beginning_cash.get(currency_id, ZERO)
            ending = statement.ending_cash.get(currency_id, ZERO)
            change = net_change.get(currency_id, ZERO)
            if beginning + change != ending:
                self._integrity_failure(CashFlowMismatchError(
                    period=period.to_dict(),
                    currency=currency_id,
                    beginning_cash=beginning,
                    net_change=change,
                    ending_cash=ending,
                    cash_accounts=codes
                ), "cash_flow")
        return statement

    def _reversed_source_type(self, entry_id: str) -> Optional[str]:
        entry = self.ledger.get_entry(entry_id)
        if entry and entry.reverses:
            original = self.ledger.get_entry(entry.reverses)
            if original:
                return original.source_type
        return None
