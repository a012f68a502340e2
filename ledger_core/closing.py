"""
Period Closing Protocol

OPEN --initiate_close--> CLOSING --complete_close--> CLOSED
CLOSING --abort_close--> OPEN

Completing a close posts one closing entry that moves every revenue and
expense movement of the period into the retained-earnings account, then
marks the period CLOSED. Both writes commit together. Status transitions
and the closing computation all run under the period's lock.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging
import uuid

from .accounts import AccountType, ChartOfAccounts, is_nominal
from .audit import AuditTrail, AuditEventType
from .balances import AccountBalance, BalanceAggregator
from .currency import to_fixed_string
from .ledger import EntrySide, GeneralLedger, JournalEntry, JournalLine, SourceType
from .periods import AccountingPeriod, PeriodManager, PeriodStatus
from .storage import StorageInterface, StorageRecord
from .logging_config import log_action
from .errors import (
    CurrencyMismatchError, EarlierPeriodOpenError, LedgerError,
    LedgerValidationError, PeriodNotClosingError, PeriodNotOpenError,
    UnbalancedEntryError, UnbalancedPeriodError
)


logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass
class PeriodClosing(StorageRecord):
    """Record of a completed close; ``id`` is the period id"""
    period_id: str
    closing_entry_id: Optional[str]
    net_income: Dict[str, str] = field(default_factory=dict)
    closed_by: Optional[str] = None
    closed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'PeriodClosing':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            period_id=data['period_id'],
            closing_entry_id=data.get('closing_entry_id'),
            net_income=data.get('net_income') or {},
            closed_by=data.get('closed_by'),
            closed_at=StorageRecord.parse_timestamp(data.get('closed_at'))
        )


class PeriodClosingService:
    """
    Drives accounting periods through the closing state machine
    """

    def __init__(
        self,
        storage: StorageInterface,
        periods: PeriodManager,
        ledger: GeneralLedger,
        aggregator: BalanceAggregator,
        chart: ChartOfAccounts,
        audit_trail: AuditTrail,
        retained_earnings_account: str = "3000"
    ):
        self.storage = storage
        self.periods = periods
        self.ledger = ledger
        self.aggregator = aggregator
        self.chart = chart
        self.audit_trail = audit_trail
        self.retained_earnings_account = retained_earnings_account
        self.table_name = "period_closings"

    def initiate_close(self, period_id: str, user_id: Optional[str] = None) -> AccountingPeriod:
        """
        Move an OPEN period to CLOSING, blocking new postings into it

        Raises:
            PeriodNotFoundError: If the period does not exist
            PeriodNotOpenError: Unless the period is OPEN
            EarlierPeriodOpenError: If an earlier period is not yet CLOSED
        """
        with self.periods.lock(period_id), self.storage.atomic():
            period = self.periods.require_period(period_id)
            if period.status != PeriodStatus.OPEN:
                raise PeriodNotOpenError(period.id, period.status.value)

            earlier = self.periods.earlier_unclosed(period)
            if earlier:
                raise EarlierPeriodOpenError(period.id, [p.id for p in earlier])

            period.status = PeriodStatus.CLOSING
            period.updated_at = datetime.now(timezone.utc)
            self.periods.save_period(period)

        self.audit_trail.log_event(
            event_type=AuditEventType.PERIOD_CLOSE_INITIATED,
            entity_type="accounting_period",
            entity_id=period.id,
            metadata={"name": period.name},
            user_id=user_id
        )
        log_action(logger, "info", "Period close initiated",
                   user_id=user_id, action="period.close.initiate", resource=period.id)
        return period

    def abort_close(
        self,
        period_id: str,
        user_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> AccountingPeriod:
        """
        Return a CLOSING period to OPEN

        Raises:
            PeriodNotClosingError: Unless the period is CLOSING
        """
        with self.periods.lock(period_id), self.storage.atomic():
            period = self.periods.require_period(period_id)
            if period.status != PeriodStatus.CLOSING:
                raise PeriodNotClosingError(period.id, period.status.value)

            period.status = PeriodStatus.OPEN
            period.updated_at = datetime.now(timezone.utc)
            self.periods.save_period(period)

        self.audit_trail.log_event(
            event_type=AuditEventType.PERIOD_CLOSE_ABORTED,
            entity_type="accounting_period",
            entity_id=period.id,
            metadata={"reason": reason},
            user_id=user_id
        )
        log_action(logger, "info", "Period close aborted",
                   user_id=user_id, action="period.close.abort", resource=period.id,
                   extra={"reason": reason} if reason else None)
        return period

    def complete_close(self, period_id: str, user_id: Optional[str] = None) -> PeriodClosing:
        """
        Post the closing entry and mark a CLOSING period CLOSED

        Net income per currency is total revenue (credit-normal) minus total
        expenses (debit-normal) posted within the period. On any failure the
        period stays CLOSING for inspection.

        Raises:
            PeriodNotClosingError: Unless the period is CLOSING
            UnbalancedPeriodError: If the computed closing entry does not balance
        """
        with self.periods.lock(period_id):
            period = None
            try:
                # Status, activity fold and closing writes share one write transaction
                with self.storage.atomic():
                    period = self.periods.require_period(period_id)
                    if period.status != PeriodStatus.CLOSING:
                        raise PeriodNotClosingError(period.id, period.status.value)

                    entry, net_income = self._build_closing_entry(period, user_id)

                    now = datetime.now(timezone.utc)
                    closing = PeriodClosing(
                        id=period.id,
                        created_at=now,
                        updated_at=now,
                        period_id=period.id,
                        closing_entry_id=entry.id if entry else None,
                        net_income={currency: to_fixed_string(amount) for currency, amount in net_income.items()},
                        closed_by=user_id,
                        closed_at=now
                    )

                    if entry:
                        self.ledger.post_into_closing_period(entry, period.id)

                    period.status = PeriodStatus.CLOSED
                    period.closed_at = now
                    period.closed_by = user_id
                    period.updated_at = now
                    self.periods.save_period(period)
                    self.storage.save(self.table_name, closing.id, closing.to_dict())
            except LedgerError as e:
                if period is not None and period.status == PeriodStatus.CLOSING:
                    self._record_failure(period, e, user_id)
                raise

        if entry:
            self.ledger.announce(entry)
        self.audit_trail.log_event(
            event_type=AuditEventType.PERIOD_CLOSE_COMPLETED,
            entity_type="accounting_period",
            entity_id=period.id,
            metadata={
                "closing_entry_id": closing.closing_entry_id,
                "net_income": closing.net_income
            },
            user_id=user_id
        )
        log_action(logger, "info", "Period closed",
                   user_id=user_id, action="period.close.complete", resource=period.id,
                   extra={"closing_entry_id": closing.closing_entry_id, "net_income": closing.net_income})
        return closing

    def _build_closing_entry(self, period: AccountingPeriod, user_id: Optional[str]):
        """
        Returns (entry or None, net income per currency). The entry is None
        when the period has no revenue or expense activity.
        """
        retained = self.chart.require_account(self.retained_earnings_account)
        retained_type = self.chart.resolve_type(retained.code)
        if retained_type != AccountType.EQUITY:
            raise LedgerValidationError(
                f"Retained earnings account {retained.code} must be an equity account",
                account_code=retained.code,
                account_type=retained_type
            )

        types = self.chart.resolve_types()
        names = {a.code: a.name for a in self.chart.list_accounts()}
        activity = self.aggregator.activity(period.start_date, period.end_date)

        lines = self._build_closing_lines(activity, types, names)
        net_income: Dict[str, Decimal] = {}
        for line in lines:
            # Closing a credit balance debits the account, and vice versa
            net_income.setdefault(line.currency_id, ZERO)
            net_income[line.currency_id] += line.amount if line.is_debit else -line.amount

        for currency_id, amount in sorted(net_income.items()):
            if amount == 0:
                continue
            if retained.currency_id and retained.currency_id != currency_id:
                raise CurrencyMismatchError(
                    f"Retained earnings account {retained.code} only accepts {retained.currency_id}, "
                    f"closing requires {currency_id}",
                    account_code=retained.code,
                    account_currency=retained.currency_id,
                    line_currency=currency_id
                )
            lines.append(JournalLine(
                account_code=retained.code,
                side=EntrySide.CREDIT if amount > 0 else EntrySide.DEBIT,
                amount=abs(amount),
                currency_id=currency_id,
                memo="Net income to retained earnings"
            ))

        if not lines:
            return None, net_income

        now = datetime.now(timezone.utc)
        entry = JournalEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_date=period.end_date,
            description=f"Closing entry for {period.name}",
            source_type=SourceType.CLOSING.value,
            lines=lines,
            source_id=period.id,
            created_by=user_id
        )

        try:
            entry.validate_balance()
        except UnbalancedEntryError as e:
            raise UnbalancedPeriodError(
                period_id=period.id,
                currency=e.currency,
                debit_total=e.debit_total,
                credit_total=e.credit_total,
                accounts=sorted(entry.get_affected_accounts())
            )
        return entry, net_income

    def _build_closing_lines(self, activity, types: Dict[str, AccountType], names: Dict[str, str]) -> List[JournalLine]:
        """One line per nominal account and currency, zeroing its period movement"""
        lines = []
        for (code, currency_id), (debit_total, credit_total) in sorted(activity.items()):
            if code not in types or not is_nominal(types[code]):
                continue
            net = debit_total - credit_total
            if net == 0:
                continue
            lines.append(JournalLine(
                account_code=code,
                side=EntrySide.CREDIT if net > 0 else EntrySide.DEBIT,
                amount=abs(net),
                currency_id=currency_id,
                memo=f"Close {code} - {names.get(code, code)}"
            ))
        return lines

    def _record_failure(self, period: AccountingPeriod, error: LedgerError, user_id: Optional[str]) -> None:
        level = "critical" if error.category == "integrity" else "error"
        log_action(logger, level, f"Period close failed: {error.message}",
                   user_id=user_id, action="period.close.complete", resource=period.id,
                   extra=error.to_dict())
        self.audit_trail.log_event(
            event_type=AuditEventType.PERIOD_CLOSE_FAILED,
            entity_type="accounting_period",
            entity_id=period.id,
            metadata=error.to_dict(),
            user_id=user_id
        )

    def get_closing(self, period_id: str) -> Optional[PeriodClosing]:
        data = self.storage.load(self.table_name, period_id)
        return PeriodClosing.from_dict(data) if data else None

    def get_closing_entries(self, period_id: str) -> List[JournalEntry]:
        """Closing journal entries posted into a period"""
        self.periods.require_period(period_id)
        return self.ledger.get_entries_by_source(SourceType.CLOSING, period_id=period_id)

    def get_opening_balances(self, period_id: str) -> List[AccountBalance]:
        """
        Permanent-account balances carried into a period: every asset,
        liability and equity balance as of the day before it starts
        """
        period = self.periods.require_period(period_id)
        as_of = self.periods.day_before(period)
        types = self.chart.resolve_types()

        balances = []
        for (code, currency_id), (debit_total, credit_total) in sorted(self.aggregator.all_balances(as_of).items()):
            account_type = types.get(code)
            if account_type is None or is_nominal(account_type) or debit_total == credit_total:
                continue
            balances.append(AccountBalance(code, as_of, currency_id, account_type, debit_total, credit_total))
        return balances
