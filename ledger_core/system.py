"""
Ledger System

Wires storage, audit trail, currencies, chart of accounts, periods,
journal, balances, closing, statements and reconciliation together and
exposes the outbound operations used by reporting and API layers.
"""

import logging
from decimal import Decimal
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Union

from .config import LedgerConfig, get_config
from .logging_config import setup_logging
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .currency import Currency, CurrencyRegistry, ExchangeRate, Money, to_fixed_string
from .accounts import Account, AccountType, ChartOfAccounts
from .periods import AccountingPeriod, PeriodManager, PeriodStatus, PeriodType
from .ledger import (
    EntrySide, GeneralLedger, JournalEntry, JournalFilter, JournalLine,
    JournalPage, PostedLine, SourceType
)
from .balances import AccountBalance, BalanceAggregator
from .closing import PeriodClosing, PeriodClosingService
from .statements import (
    BalanceSheet, CashFlowStatement, IncomeStatement, ReportRange,
    StatementGenerator, TrialBalance
)
from .reconciliation import ReconciliationChecker, ReconciliationResult, StatementLine
from .errors import LedgerValidationError


logger = logging.getLogger(__name__)


class LedgerSystem:
    """General ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        configure_logging: bool = False
    ):
        self.config = config or get_config()
        if configure_logging:
            setup_logging(
                level=self.config.log_level,
                log_format=self.config.log_format,
                log_file=self.config.log_file
            )

        # Initialize storage
        self.storage = storage or create_storage(self.config.database_url)

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage)
        self.currencies = CurrencyRegistry(self.storage, self.audit_trail, self.config.base_currency)
        self.currencies.ensure_currency(self.config.base_currency)

        self.chart = ChartOfAccounts(
            self.storage, self.currencies, self.audit_trail,
            require_zero_balance_to_deactivate=self.config.require_zero_balance_to_deactivate
        )
        self.periods = PeriodManager(self.storage, self.audit_trail)
        self.ledger = GeneralLedger(
            self.storage, self.chart, self.periods, self.currencies, self.audit_trail,
            batch_size=self.config.storage_batch_size
        )
        self.balances = BalanceAggregator(
            self.ledger, self.chart, self.config.base_currency,
            max_cache_size=self.config.balance_cache_size
        )
        self.chart.attach_balance_reader(self.balances.current_net_balances)

        self.closing = PeriodClosingService(
            self.storage, self.periods, self.ledger, self.balances, self.chart,
            self.audit_trail, retained_earnings_account=self.config.retained_earnings_account
        )
        self.statements = StatementGenerator(
            self.balances, self.chart, self.ledger, self.audit_trail,
            cash_account_codes=self.config.cash_account_codes,
            cash_flow_mapping=self.config.cash_flow_mapping,
            cash_flow_default_bucket=self.config.cash_flow_default_bucket
        )
        self.reconciliation = ReconciliationChecker(
            self.ledger, self.balances, self.chart,
            date_tolerance_days=self.config.reconciliation_date_tolerance_days,
            amount_tolerance=Decimal(self.config.reconciliation_amount_tolerance),
            base_currency=self.config.base_currency
        )

        logger.info("Ledger system initialized", extra={"extra": {"storage": type(self.storage).__name__}})

    # Chart of accounts

    def create_account(
        self,
        code: str,
        name: str,
        account_type: Optional[AccountType] = None,
        parent_code: Optional[str] = None,
        currency_id: Optional[str] = None,
        description: str = ""
    ) -> Account:
        return self.chart.create_account(code, name, account_type, parent_code, currency_id, description)

    def update_account(self, code: str, **changes) -> Account:
        return self.chart.update_account(code, **changes)

    def deactivate_account(self, code: str) -> Account:
        return self.chart.deactivate_account(code)

    def reactivate_account(self, code: str) -> Account:
        return self.chart.reactivate_account(code)

    def get_account(self, code: str) -> Optional[Account]:
        return self.chart.get_account(code)

    def list_accounts(self, **filters) -> List[Account]:
        return self.chart.list_accounts(**filters)

    def get_children(self, code: str) -> List[Account]:
        return self.chart.get_children(code)

    def resolve_type(self, code: str) -> AccountType:
        return self.chart.resolve_type(code)

    # Currencies

    def create_currency(self, code: str, name: str, symbol: str = "", precision: int = 2) -> Currency:
        return self.currencies.create_currency(code, name, symbol, precision)

    def update_currency(self, code: str, **changes) -> Currency:
        return self.currencies.update_currency(code, **changes)

    def deactivate_currency(self, code: str) -> Currency:
        return self.currencies.deactivate_currency(code)

    def list_currencies(self, active_only: bool = False) -> List[Currency]:
        return self.currencies.list_currencies(active_only)

    def set_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Union[Decimal, str],
        effective_date: date
    ) -> ExchangeRate:
        return self.currencies.set_rate(from_currency, to_currency, rate, effective_date)

    def get_rate(self, from_currency: str, to_currency: str, as_of: Optional[date] = None) -> Optional[ExchangeRate]:
        return self.currencies.get_rate(from_currency, to_currency, as_of)

    def convert(self, money: Money, to_currency: str, as_of: Optional[date] = None) -> Money:
        return self.currencies.convert(money, to_currency, as_of)

    # Journal

    def post(
        self,
        transaction_date: date,
        description: str,
        lines: Iterable[Union[JournalLine, Dict[str, Any]]],
        source_type: Union[SourceType, str] = SourceType.MANUAL,
        source_id: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> JournalEntry:
        lines = [line if isinstance(line, JournalLine) else JournalLine(**line) for line in lines]
        return self.ledger.post(transaction_date, description, lines, source_type, source_id, created_by)

    def reverse(
        self,
        entry_id: str,
        reversal_date: date,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> JournalEntry:
        return self.ledger.reverse(entry_id, reversal_date, description, created_by)

    def get_entry(self, entry_id: str) -> Optional[JournalEntry]:
        return self.ledger.get_entry(entry_id)

    def post_opening_balance(
        self,
        account_code: str,
        amount: Union[Decimal, str],
        balance_side: EntrySide,
        transaction_date: date,
        currency_id: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> JournalEntry:
        """
        Record an account's opening balance against retained earnings

        ``balance_side`` is the side the balance sits on (DEBIT for a normal
        asset balance); retained earnings takes the opposite side.
        """
        account = self.chart.require_account(account_code)
        retained = self.config.retained_earnings_account
        if account.code == retained:
            raise LedgerValidationError(
                "Opening balances cannot be posted to the retained earnings account itself",
                account_code=account.code
            )
        balance_side = EntrySide(balance_side)
        currency_id = currency_id or account.currency_id or self.config.base_currency
        return self.ledger.post(
            transaction_date,
            f"Opening balance for {account.code} - {account.name}",
            [
                JournalLine(account.code, balance_side, amount, currency_id, "Opening balance"),
                JournalLine(retained, balance_side.opposite(), amount, currency_id, f"Opening balance {account.code}")
            ],
            SourceType.OPENING_BALANCE,
            source_id=account.code,
            created_by=created_by
        )

    def get_journal(
        self,
        filters: Optional[JournalFilter] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> JournalPage:
        return self.ledger.get_journal(filters, page, limit or self.config.journal_page_size)

    def get_movements(
        self,
        account_code: str,
        start_date: date,
        end_date: date,
        currency_id: Optional[str] = None
    ) -> List[PostedLine]:
        return self.balances.get_movements(account_code, start_date, end_date, currency_id)

    # Balances

    def get_balance(self, account_code: str, as_of_date: date, currency_id: Optional[str] = None) -> AccountBalance:
        return self.balances.get_balance(account_code, as_of_date, currency_id)

    def get_balances(
        self,
        account_codes: Iterable[str],
        as_of_date: date,
        currency_id: Optional[str] = None
    ) -> Dict[str, AccountBalance]:
        return self.balances.get_balances(account_codes, as_of_date, currency_id)

    def get_account_balances(
        self,
        currency_id: Optional[str] = None,
        as_of_date: Optional[date] = None,
        report_currency: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Balance of every account, per currency, as of a date (default today)

        With ``report_currency`` each balance also carries its translation at
        the rate effective on the as-of date. Translation is for display only.
        """
        as_of_date = as_of_date or date.today()
        types = self.chart.resolve_types()
        accounts = {a.code: a for a in self.chart.list_accounts()}
        folded = self.balances.all_balances(as_of_date)

        result = []
        for code, account in accounts.items():
            currencies = sorted(c for (a, c) in folded if a == code)
            if not currencies:
                currencies = [account.currency_id or self.config.base_currency]
            for currency in currencies:
                if currency_id and currency.upper() != currency_id.upper():
                    continue
                debit_total, credit_total = folded.get((code, currency), (Decimal('0'), Decimal('0')))
                balance = AccountBalance(code, as_of_date, currency, types[code], debit_total, credit_total)
                row = balance.to_dict()
                row['name'] = account.name
                row['is_active'] = account.is_active
                if report_currency:
                    converted = self.currencies.convert(Money(balance.net_balance, currency), report_currency, as_of_date)
                    row['report_currency'] = converted.currency
                    row['report_amount'] = to_fixed_string(converted.amount)
                result.append(row)
        return result

    # Periods

    def create_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        period_type: PeriodType = PeriodType.CUSTOM
    ) -> AccountingPeriod:
        return self.periods.create_period(name, start_date, end_date, period_type)

    def get_or_create_monthly_period(self, year: int, month: int) -> AccountingPeriod:
        return self.periods.get_or_create_monthly_period(year, month)

    def get_accounting_periods(
        self,
        status: Optional[PeriodStatus] = None,
        year: Optional[int] = None,
        period_type: Optional[PeriodType] = None
    ) -> List[AccountingPeriod]:
        return self.periods.list_periods(status, year, period_type)

    def get_period(self, period_id: str) -> AccountingPeriod:
        return self.periods.require_period(period_id)

    def resolve_period(self, day: date) -> Optional[AccountingPeriod]:
        return self.periods.resolve_period(day)

    def initiate_close(self, period_id: str, user_id: Optional[str] = None) -> AccountingPeriod:
        return self.closing.initiate_close(period_id, user_id)

    def abort_close(self, period_id: str, user_id: Optional[str] = None, reason: Optional[str] = None) -> AccountingPeriod:
        return self.closing.abort_close(period_id, user_id, reason)

    def complete_close(self, period_id: str, user_id: Optional[str] = None) -> PeriodClosing:
        return self.closing.complete_close(period_id, user_id)

    def get_closing(self, period_id: str) -> Optional[PeriodClosing]:
        return self.closing.get_closing(period_id)

    def get_closing_entries(self, period_id: str) -> List[JournalEntry]:
        return self.closing.get_closing_entries(period_id)

    def get_opening_balances(self, period_id: str) -> List[AccountBalance]:
        return self.closing.get_opening_balances(period_id)

    # Statements

    def get_trial_balance(self, as_of_date: date) -> TrialBalance:
        return self.statements.trial_balance(as_of_date)

    def get_income_statement(self, period: ReportRange) -> IncomeStatement:
        return self.statements.income_statement(period)

    def get_balance_sheet(self, as_of_date: date) -> BalanceSheet:
        return self.statements.balance_sheet(as_of_date)

    def get_cash_flow(self, period: ReportRange, cash_account_codes: Optional[Iterable[str]] = None) -> CashFlowStatement:
        return self.statements.cash_flow(period, cash_account_codes)

    # Reconciliation

    def reconcile(
        self,
        bank_account_code: str,
        statement_lines: Iterable[StatementLine],
        statement_balance: Optional[Decimal] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> ReconciliationResult:
        return self.reconciliation.reconcile(
            bank_account_code, list(statement_lines), statement_balance, start_date, end_date
        )

    def verify_audit_trail(self) -> Dict[str, Any]:
        return self.audit_trail.verify_integrity()

    def close(self) -> None:
        self.storage.close()
