"""
Test suite for financial statements

Tests the trial balance, income statement, balance sheet and cash flow
statement, plus the integrity checks each generator runs.
"""

import pytest
from decimal import Decimal
from datetime import date

from ledger_core.config import LedgerConfig
from ledger_core.storage import InMemoryStorage
from ledger_core.system import LedgerSystem
from ledger_core.accounts import AccountType
from ledger_core.audit import AuditEventType
from ledger_core.ledger import EntrySide, JournalLine, SourceType
from ledger_core.statements import ReportRange
from ledger_core.errors import (
    AccountingEquationError, CashFlowMismatchError, InvalidPeriodError,
    PeriodClosedError, TrialBalanceMismatchError
)


JANUARY = ReportRange.month(2024, 1)


@pytest.fixture
def system():
    config = LedgerConfig(database_url="memory://", cash_account_codes=["1000"])
    system = LedgerSystem(config=config, storage=InMemoryStorage())
    system.create_account("1000", "Cash", AccountType.ASSET)
    system.create_account("1010", "Operating Bank", parent_code="1000")
    system.create_account("1500", "Equipment", AccountType.ASSET)
    system.create_account("2000", "Loans Payable", AccountType.LIABILITY)
    system.create_account("3000", "Retained Earnings", AccountType.EQUITY)
    system.create_account("4000", "Fees", AccountType.REVENUE)
    system.create_account("5000", "Expenses", AccountType.EXPENSE)
    system.get_or_create_monthly_period(2024, 1)
    system.get_or_create_monthly_period(2024, 2)
    return system


def post(system, day, debit, credit, amount, source_type=SourceType.MANUAL, currency="USD"):
    return system.post(day, "Test", [
        JournalLine(debit, EntrySide.DEBIT, Decimal(amount), currency),
        JournalLine(credit, EntrySide.CREDIT, Decimal(amount), currency),
    ], source_type=source_type)


class TestReportRange:
    """Test report range constructors"""

    def test_month(self):
        february = ReportRange.month(2024, 2)
        assert february.start_date == date(2024, 2, 1)
        assert february.end_date == date(2024, 2, 29)

    def test_quarter(self):
        q4 = ReportRange.quarter(2024, 4)
        assert (q4.start_date, q4.end_date) == (date(2024, 10, 1), date(2024, 12, 31))
        assert q4.label == "2024-Q4"

    def test_invalid_quarter(self):
        with pytest.raises(InvalidPeriodError):
            ReportRange.quarter(2024, 5)

    def test_year_to_date(self):
        ytd = ReportRange.year_to_date(date(2024, 5, 17))
        assert ytd.start_date == date(2024, 1, 1)
        assert ytd.end_date == date(2024, 5, 17)

    def test_inverted_custom_range(self):
        with pytest.raises(InvalidPeriodError):
            ReportRange.custom(date(2024, 2, 1), date(2024, 1, 1))


class TestTrialBalance:
    """Test trial balance generation"""

    def test_single_fee_payment(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00", SourceType.FEE_PAYMENT)

        trial = system.get_trial_balance(date(2024, 1, 31))
        rows = {row.account_code: row for row in trial.rows}
        assert rows["1000"].debit == Decimal("500.00")
        assert rows["1000"].credit == Decimal("0")
        assert rows["4000"].credit == Decimal("500.00")
        assert trial.total_debits == {"USD": Decimal("500.00")}
        assert trial.total_credits == {"USD": Decimal("500.00")}
        assert trial.is_balanced

    def test_zero_balances_omitted(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "50.00")
        post(system, date(2024, 1, 6), "4000", "1000", "50.00")
        assert system.get_trial_balance(date(2024, 1, 31)).rows == []

    def test_columns_kept_per_currency(self, system):
        system.create_currency("EUR", "Euro")
        post(system, date(2024, 1, 5), "1000", "4000", "500.00")
        post(system, date(2024, 1, 5), "1000", "4000", "80.00", currency="EUR")

        trial = system.get_trial_balance(date(2024, 1, 31))
        assert trial.total_debits == {"USD": Decimal("500.00"), "EUR": Decimal("80.00")}
        assert trial.to_dict()["total_credits"] == {"EUR": "80.00", "USD": "500.00"}

    def test_inactive_account_with_balance_is_flagged(self, system):
        post(system, date(2024, 1, 5), "5000", "1000", "20.00")
        system.deactivate_account("5000")

        rows = {row.account_code: row for row in system.get_trial_balance(date(2024, 1, 31)).rows}
        assert rows["5000"].is_active is False
        assert rows["1000"].is_active is True

    def test_mismatch_raises_and_audits(self, system, monkeypatch):
        monkeypatch.setattr(system.balances, "all_balances", lambda as_of_date: {
            ("1000", "USD"): (Decimal("500.00"), Decimal("0")),
            ("4000", "USD"): (Decimal("0"), Decimal("499.00")),
        })

        with pytest.raises(TrialBalanceMismatchError) as exc_info:
            system.get_trial_balance(date(2024, 1, 31))

        error = exc_info.value
        assert error.message == "ledger integrity check failed"
        assert error.details["currency"] == "USD"
        events = system.audit_trail.get_events_by_type(AuditEventType.INTEGRITY_CHECK_FAILED)
        assert len(events) == 1
        assert events[0].entity_id == "trial_balance"


class TestIncomeStatement:
    """Test income statement generation"""

    def test_revenue_for_period(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00", SourceType.FEE_PAYMENT)

        statement = system.get_income_statement(JANUARY)
        assert [line.account_code for line in statement.revenue] == ["4000"]
        assert statement.total_revenue == {"USD": Decimal("500.00")}
        assert statement.expenses == []
        assert statement.net_income == {"USD": Decimal("500.00")}

    def test_net_income_after_expenses(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00")
        post(system, date(2024, 1, 9), "5000", "1000", "120.00")
        post(system, date(2024, 2, 3), "5000", "1000", "999.00")

        statement = system.get_income_statement(JANUARY)
        assert statement.total_expenses == {"USD": Decimal("120.00")}
        assert statement.net_income == {"USD": Decimal("380.00")}
        assert statement.to_dict()["net_income"] == {"USD": "380.00"}

    def test_closed_period_still_reports_activity(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00")
        january = system.resolve_period(date(2024, 1, 15))
        system.initiate_close(january.id)
        system.complete_close(january.id)

        assert system.get_income_statement(JANUARY).net_income == {"USD": Decimal("500.00")}


class TestPeriodCloseScenario:
    """Fee payment through close, end to end"""

    def test_close_moves_revenue_to_retained_earnings(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00", SourceType.FEE_PAYMENT)
        january = system.resolve_period(date(2024, 1, 5))

        system.initiate_close(january.id, user_id="controller")
        closing = system.complete_close(january.id, user_id="controller")

        entry = system.get_entry(closing.closing_entry_id)
        assert entry.source_type == SourceType.CLOSING.value
        assert entry.transaction_date == date(2024, 1, 31)
        lines = {(line.account_code, line.side): line.amount for line in entry.lines}
        assert lines[("4000", EntrySide.DEBIT)] == Decimal("500.00")
        assert lines[("3000", EntrySide.CREDIT)] == Decimal("500.00")

        assert system.get_balance("4000", date(2024, 1, 31)).net_balance == Decimal("0")
        assert system.get_balance("3000", date(2024, 1, 31)).net_balance == Decimal("500.00")

        with pytest.raises(PeriodClosedError):
            post(system, date(2024, 1, 20), "1000", "4000", "10.00")


class TestBalanceSheet:
    """Test balance sheet generation"""

    def test_equation_holds_with_current_earnings(self, system):
        post(system, date(2024, 1, 2), "1000", "2000", "1000.00")
        post(system, date(2024, 1, 5), "1000", "4000", "500.00")
        post(system, date(2024, 1, 9), "5000", "1000", "200.00")

        sheet = system.get_balance_sheet(date(2024, 1, 31))
        assert sheet.total_assets == {"USD": Decimal("1300.00")}
        assert sheet.total_liabilities == {"USD": Decimal("1000.00")}
        assert sheet.current_earnings == {"USD": Decimal("300.00")}
        assert sheet.total_equity == {"USD": Decimal("300.00")}

    def test_earnings_move_into_equity_after_close(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00")
        january = system.resolve_period(date(2024, 1, 5))
        system.initiate_close(january.id)
        system.complete_close(january.id)

        sheet = system.get_balance_sheet(date(2024, 1, 31))
        assert sheet.current_earnings == {}
        assert [line.account_code for line in sheet.equity] == ["3000"]
        assert sheet.total_equity == sheet.total_assets

    def test_equation_violation_raises(self, system, monkeypatch):
        monkeypatch.setattr(system.balances, "all_balances", lambda as_of_date: {
            ("1000", "USD"): (Decimal("100.00"), Decimal("0")),
            ("2000", "USD"): (Decimal("0"), Decimal("90.00")),
        })

        with pytest.raises(AccountingEquationError) as exc_info:
            system.get_balance_sheet(date(2024, 1, 31))
        assert exc_info.value.details["difference"] == Decimal("10.00")


class TestCashFlow:
    """Test cash flow statement generation"""

    def test_buckets_by_source_type(self, system):
        post(system, date(2024, 1, 3), "1010", "2000", "1000.00", "loan_drawdown")
        post(system, date(2024, 1, 5), "1000", "4000", "500.00", SourceType.FEE_PAYMENT)
        post(system, date(2024, 1, 8), "1500", "1010", "300.00", SourceType.ASSET_PURCHASE)
        post(system, date(2024, 1, 9), "5000", "1000", "50.00", SourceType.EXPENSE)

        statement = system.get_cash_flow(JANUARY)
        assert statement.cash_accounts == ["1000", "1010"]

        buckets = statement.net_by_bucket()
        assert buckets["operating"] == {"USD": Decimal("1450.00")}
        assert buckets["investing"] == {"USD": Decimal("-300.00")}
        assert buckets["financing"] == {}
        assert statement.beginning_cash == {}
        assert statement.ending_cash == {"USD": Decimal("1150.00")}

    def test_mapped_financing_bucket(self, system):
        system.statements.cash_flow_mapping["loan_drawdown"] = "financing"
        post(system, date(2024, 1, 3), "1010", "2000", "1000.00", "loan_drawdown")

        statement = system.get_cash_flow(JANUARY)
        assert statement.net_by_bucket()["financing"] == {"USD": Decimal("1000.00")}

    def test_transfer_between_cash_accounts_nets_out(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00", SourceType.FEE_PAYMENT)
        post(system, date(2024, 1, 6), "1010", "1000", "200.00", "transfer")

        statement = system.get_cash_flow(JANUARY)
        assert [item.source_type for item in statement.items] == ["fee_payment"]
        assert statement.net_change == {"USD": Decimal("500.00")}

    def test_reversal_bucketed_like_original(self, system):
        entry = post(system, date(2024, 1, 8), "1500", "1000", "300.00", SourceType.ASSET_PURCHASE)
        system.reverse(entry.id, date(2024, 1, 10))

        statement = system.get_cash_flow(JANUARY)
        assert statement.net_by_bucket()["investing"] == {"USD": Decimal("0")}
        assert {item.source_type for item in statement.items} == {"asset_purchase"}

    def test_beginning_cash_from_prior_activity(self, system):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00")
        post(system, date(2024, 2, 5), "5000", "1000", "80.00", SourceType.EXPENSE)

        statement = system.get_cash_flow(ReportRange.month(2024, 2))
        assert statement.beginning_cash == {"USD": Decimal("500.00")}
        assert statement.ending_cash == {"USD": Decimal("420.00")}
        assert statement.net_change == {"USD": Decimal("-80.00")}

    def test_explicit_cash_accounts(self, system):
        post(system, date(2024, 1, 5), "1010", "4000", "75.00")
        statement = system.get_cash_flow(JANUARY, cash_account_codes=["1010"])
        assert statement.cash_accounts == ["1010"]
        assert statement.ending_cash == {"USD": Decimal("75.00")}

    def test_mismatch_raises(self, system, monkeypatch):
        post(system, date(2024, 1, 5), "1000", "4000", "500.00")
        monkeypatch.setattr(system.balances, "all_balances", lambda as_of_date: {
            ("1000", "USD"): (Decimal("450.00"), Decimal("0")),
        })

        with pytest.raises(CashFlowMismatchError):
            system.get_cash_flow(JANUARY)
        events = system.audit_trail.get_events_by_type(AuditEventType.INTEGRITY_CHECK_FAILED)
        assert events[-1].entity_id == "cash_flow"
