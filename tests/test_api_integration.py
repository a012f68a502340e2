"""
Integration tests for the General Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from ledger_core.api import create_app
from ledger_core.config import LedgerConfig
from ledger_core.storage import InMemoryStorage
from ledger_core.system import LedgerSystem


@pytest.fixture
def system():
    """Ledger system on in-memory storage"""
    config = LedgerConfig(database_url="memory://", cash_account_codes=["1000"])
    return LedgerSystem(config=config, storage=InMemoryStorage())


@pytest.fixture
def client(system):
    """Test client bound to the test ledger system"""
    return TestClient(create_app(system))


@pytest.fixture
def chart(client):
    """Minimal chart of accounts and an open January 2024"""
    for payload in [
        {"code": "1000", "name": "Cash", "account_type": "asset"},
        {"code": "2000", "name": "Loans Payable", "account_type": "liability"},
        {"code": "3000", "name": "Retained Earnings", "account_type": "equity"},
        {"code": "4000", "name": "Fees", "account_type": "revenue"},
        {"code": "5000", "name": "Expenses", "account_type": "expense"},
    ]:
        assert client.post("/accounts", json=payload).status_code == 201
    r = client.post("/periods/monthly", json={"year": 2024, "month": 1})
    assert r.status_code == 200
    return r.json()


def fee_payment(amount="500.00", transaction_date="2024-01-05"):
    return {
        "transaction_date": transaction_date,
        "description": "Tuition fee",
        "source_type": "fee_payment",
        "lines": [
            {"account_code": "1000", "side": "debit", "amount": amount},
            {"account_code": "4000", "side": "credit", "amount": amount},
        ]
    }


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "General Ledger API"
        assert "journal" in data["endpoints"]


class TestAccountEndpoints:
    """Chart of accounts over HTTP"""

    def test_create_and_get_sub_account(self, client, chart):
        r = client.post("/accounts", json={"code": "1010", "name": "Bank", "parent_code": "1000"})
        assert r.status_code == 201

        r = client.get("/accounts/1010")
        assert r.status_code == 200
        assert r.json()["resolved_type"] == "asset"

        r = client.get("/accounts/1000/children")
        assert [a["code"] for a in r.json()["accounts"]] == ["1010"]

    def test_duplicate_account(self, client, chart):
        r = client.post("/accounts", json={"code": "1000", "name": "Cash", "account_type": "asset"})
        assert r.status_code == 400
        assert r.json()["error"] == "duplicate_account"

    def test_unknown_account_type(self, client):
        r = client.post("/accounts", json={"code": "9000", "name": "Odd", "account_type": "bogus"})
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_request"

    def test_missing_account(self, client):
        assert client.get("/accounts/9999").status_code == 404

    def test_list_by_type(self, client, chart):
        r = client.get("/accounts", params={"account_type": "revenue"})
        assert [a["code"] for a in r.json()["accounts"]] == ["4000"]

    def test_balance_and_movements(self, client, chart):
        client.post("/journal/entries", json=fee_payment())

        r = client.get("/accounts/1000/balance", params={"as_of": "2024-01-31"})
        assert r.status_code == 200
        assert r.json()["net_balance"] == "500.00"

        r = client.get("/accounts/1000/movements", params={"start_date": "2024-01-01", "end_date": "2024-01-31"})
        movements = r.json()["movements"]
        assert len(movements) == 1
        assert movements[0]["side"] == "debit"


class TestJournalEndpoints:
    """Posting and reversing entries over HTTP"""

    def test_post_entry(self, client, chart):
        r = client.post("/journal/entries", json=fee_payment())
        assert r.status_code == 201
        data = r.json()
        assert data["source_type"] == "fee_payment"
        assert data["period_id"] == chart["id"]
        assert data["lines"][0]["currency_id"] == "USD"

        r = client.get(f"/journal/entries/{data['id']}")
        assert r.status_code == 200

    def test_unbalanced_entry(self, client, chart):
        payload = fee_payment()
        payload["lines"][1]["amount"] = "499.00"
        r = client.post("/journal/entries", json=payload)
        assert r.status_code == 400
        assert r.json()["error"] == "unbalanced_entry"
        assert r.json()["category"] == "validation"

    def test_no_open_period(self, client, chart):
        r = client.post("/journal/entries", json=fee_payment(transaction_date="2024-03-05"))
        assert r.status_code == 409
        assert r.json()["error"] == "no_open_period"

    def test_missing_entry(self, client):
        r = client.get("/journal/entries/missing")
        assert r.status_code == 404
        assert r.json()["error"] == "entry_not_found"
        assert r.json()["details"]["entry_id"] == "missing"

    @pytest.mark.parametrize("amount", ["1e2", "NaN", "Infinity", "5O0", "1,234", "$500"])
    def test_malformed_amount_rejected(self, client, chart, amount):
        r = client.post("/journal/entries", json=fee_payment(amount))
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_amount"
        assert client.get("/journal/entries").json()["total"] == 0

    def test_malformed_statement_amount_rejected(self, client, chart):
        r = client.post("/reconciliation", json={
            "bank_account_code": "1000",
            "statement_lines": [{"date": "2024-01-06", "amount": "5e2"}]
        })
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_amount"

    def test_reverse_entry(self, client, chart):
        entry_id = client.post("/journal/entries", json=fee_payment()).json()["id"]

        r = client.post(f"/journal/entries/{entry_id}/reverse", json={"reversal_date": "2024-01-10"})
        assert r.status_code == 201
        assert r.json()["reverses"] == entry_id

        r = client.post(f"/journal/entries/{entry_id}/reverse", json={"reversal_date": "2024-01-11"})
        assert r.status_code == 409
        assert r.json()["error"] == "already_reversed"

    def test_journal_listing(self, client, chart):
        client.post("/journal/entries", json=fee_payment("100.00", "2024-01-03"))
        client.post("/journal/entries", json=fee_payment("200.00", "2024-01-04"))

        r = client.get("/journal/entries", params={"account_code": "4000", "limit": 1})
        data = r.json()
        assert data["total"] == 2
        assert data["total_pages"] == 2
        assert len(data["entries"]) == 1


class TestPeriodCloseFlow:
    """Closing a period end to end"""

    def test_close_period(self, client, chart):
        client.post("/journal/entries", json=fee_payment())
        period_id = chart["id"]

        r = client.post(f"/periods/{period_id}/initiate-close", json={"user_id": "controller"})
        assert r.status_code == 200
        assert r.json()["status"] == "closing"

        r = client.post("/journal/entries", json=fee_payment("10.00", "2024-01-20"))
        assert r.status_code == 409
        assert r.json()["error"] == "period_locked"

        r = client.post(f"/periods/{period_id}/complete-close")
        assert r.status_code == 200
        data = r.json()
        assert data["period"]["status"] == "closed"
        assert data["closing"]["net_income"] == {"USD": "500.00"}

        r = client.get(f"/periods/{period_id}/closing-entries")
        lines = r.json()["entries"][0]["lines"]
        assert {(line["account_code"], line["side"]) for line in lines} == {("4000", "debit"), ("3000", "credit")}

        r = client.post("/journal/entries", json=fee_payment("10.00", "2024-01-20"))
        assert r.status_code == 409
        assert r.json()["error"] == "period_closed"

    def test_abort_close(self, client, chart):
        period_id = chart["id"]
        client.post(f"/periods/{period_id}/initiate-close")

        r = client.post(f"/periods/{period_id}/abort-close", json={"reason": "late invoice"})
        assert r.status_code == 200
        assert r.json()["status"] == "open"

    def test_complete_without_initiate(self, client, chart):
        r = client.post(f"/periods/{chart['id']}/complete-close")
        assert r.status_code == 409
        assert r.json()["error"] == "period_not_closing"

    def test_overlapping_period(self, client, chart):
        r = client.post("/periods", json={"name": "Mid", "start_date": "2024-01-15", "end_date": "2024-02-15"})
        assert r.status_code == 400
        assert r.json()["error"] == "period_overlap"

    def test_resolve_and_missing_period(self, client, chart):
        assert client.get("/periods/resolve", params={"on": "2024-01-31"}).json()["id"] == chart["id"]
        assert client.get("/periods/resolve", params={"on": "2025-01-01"}).status_code == 404
        assert client.get("/periods/missing").status_code == 404


class TestReportEndpoints:
    """Financial statements over HTTP"""

    def test_trial_balance(self, client, chart):
        client.post("/journal/entries", json=fee_payment())
        r = client.get("/reports/trial-balance", params={"as_of": "2024-01-31"})
        assert r.status_code == 200
        data = r.json()
        assert data["is_balanced"]
        assert data["total_debits"] == {"USD": "500.00"}

    def test_income_statement_for_month(self, client, chart):
        client.post("/journal/entries", json=fee_payment())
        r = client.get("/reports/income-statement", params={"range": "month", "year": 2024, "month": 1})
        assert r.status_code == 200
        assert r.json()["net_income"] == {"USD": "500.00"}

    def test_income_statement_missing_range(self, client):
        r = client.get("/reports/income-statement", params={"range": "month"})
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_period"

    def test_balance_sheet(self, client, chart):
        client.post("/journal/entries", json=fee_payment())
        r = client.get("/reports/balance-sheet", params={"as_of": "2024-01-31"})
        data = r.json()
        assert data["total_assets"] == {"USD": "500.00"}
        assert data["current_earnings"] == {"USD": "500.00"}

    def test_cash_flow(self, client, chart):
        client.post("/journal/entries", json=fee_payment())
        r = client.get("/reports/cash-flow", params={
            "range": "custom", "start_date": "2024-01-01", "end_date": "2024-01-31"
        })
        data = r.json()
        assert data["net_by_bucket"]["operating"] == {"USD": "500.00"}
        assert data["ending_cash"] == {"USD": "500.00"}


class TestReconciliationAndAdmin:
    """Reconciliation and audit endpoints"""

    def test_reconcile(self, client, chart):
        client.post("/journal/entries", json=fee_payment())
        r = client.post("/reconciliation", json={
            "bank_account_code": "1000",
            "statement_lines": [
                {"date": "2024-01-06", "amount": "500.00", "description": "Deposit"},
                {"date": "2024-01-31", "amount": "-1.50", "description": "Bank fee"},
            ],
            "statement_balance": "498.50"
        })
        assert r.status_code == 200
        data = r.json()
        assert len(data["matched"]) == 1
        assert data["unmatched_statement"][0]["amount"] == "-1.50"
        assert data["difference"] == "-1.50"
        assert data["is_reconciled"] is False

    def test_audit_verify_and_history(self, client, chart):
        entry_id = client.post("/journal/entries", json=fee_payment()).json()["id"]

        r = client.get("/admin/audit/verify")
        assert r.status_code == 200
        assert r.json()["valid"] is True

        r = client.get(f"/admin/audit/journal_entry/{entry_id}")
        assert [e["event_type"] for e in r.json()["events"]] == ["journal_entry_posted"]
