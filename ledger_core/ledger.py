"""
Double-Entry Journal Posting Engine

The only writer of ledger facts. Every journal entry must balance per
currency (debits = credits, exactly) before it is written, and every entry
lands in the accounting period covering its transaction date. Entries are
immutable once posted; corrections are made by posting a reversing entry.

Entries are stored as whole documents in ``journal_entries`` and their
lines are denormalized into ``journal_lines`` so balance folds can stream
one account's history without loading entries.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union
from enum import Enum
import logging
import math
import threading
import uuid

from .accounts import ChartOfAccounts
from .audit import AuditTrail, AuditEventType
from .currency import CurrencyRegistry, fraction_digits, to_decimal
from .periods import PeriodManager, PeriodStatus
from .storage import StorageInterface, StorageRecord
from .logging_config import log_action
from .errors import (
    AlreadyReversedError, CurrencyMismatchError, EntryNotFoundError,
    InactiveAccountError, InvalidAmountError, InvalidEntryError,
    NoOpenPeriodError, PeriodClosedError, PeriodLockedError,
    UnbalancedEntryError
)


logger = logging.getLogger(__name__)


class EntrySide(Enum):
    """Side of a journal line"""
    DEBIT = "debit"
    CREDIT = "credit"

    def opposite(self) -> 'EntrySide':
        return EntrySide.CREDIT if self == EntrySide.DEBIT else EntrySide.DEBIT


class SourceType(str, Enum):
    """
    Origin of a journal entry. Collaborators may post any non-empty source
    type string; these are the ones the engine knows by name.
    """
    FEE_PAYMENT = "fee_payment"
    EXPENSE = "expense"
    ASSET_PURCHASE = "asset_purchase"
    PAYROLL = "payroll"
    MANUAL = "manual"
    OPENING_BALANCE = "opening_balance"
    CLOSING = "closing"
    REVERSAL = "reversal"


def _source_value(source_type: Union[SourceType, str]) -> str:
    return source_type.value if isinstance(source_type, Enum) else str(source_type)


def _as_date(value: Union[date, datetime, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


@dataclass
class JournalLine:
    """
    One debit or credit against one account, in one currency.
    Amounts are always positive; the side carries the direction.
    """
    account_code: str
    side: EntrySide
    amount: Decimal
    currency_id: str
    memo: str = ""

    def __post_init__(self):
        if not isinstance(self.side, EntrySide):
            self.side = EntrySide(str(self.side).lower())
        self.amount = to_decimal(self.amount)
        self.currency_id = self.currency_id.upper()

    @property
    def is_debit(self) -> bool:
        return self.side == EntrySide.DEBIT

    @property
    def signed_amount(self) -> Decimal:
        """Debits positive, credits negative"""
        return self.amount if self.is_debit else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_code': self.account_code,
            'side': self.side.value,
            'amount': str(self.amount),
            'currency_id': self.currency_id,
            'memo': self.memo
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalLine':
        return cls(
            account_code=data['account_code'],
            side=EntrySide(data['side']),
            amount=Decimal(data['amount']),
            currency_id=data['currency_id'],
            memo=data.get('memo') or ""
        )


@dataclass
class PostedLine:
    """A journal line as stored, with the entry context needed for folds"""
    entry_id: str
    line_no: int
    account_code: str
    side: EntrySide
    amount: Decimal
    currency_id: str
    memo: str
    transaction_date: date
    source_type: str
    period_id: str
    posted_at: datetime

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.side == EntrySide.DEBIT else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': f"{self.entry_id}:{self.line_no}",
            'entry_id': self.entry_id,
            'line_no': self.line_no,
            'account_code': self.account_code,
            'side': self.side.value,
            'amount': str(self.amount),
            'currency_id': self.currency_id,
            'memo': self.memo,
            'transaction_date': self.transaction_date.isoformat(),
            'source_type': self.source_type,
            'period_id': self.period_id,
            'posted_at': self.posted_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PostedLine':
        return cls(
            entry_id=data['entry_id'],
            line_no=data['line_no'],
            account_code=data['account_code'],
            side=EntrySide(data['side']),
            amount=Decimal(data['amount']),
            currency_id=data['currency_id'],
            memo=data.get('memo') or "",
            transaction_date=date.fromisoformat(data['transaction_date']),
            source_type=data['source_type'],
            period_id=data['period_id'],
            posted_at=datetime.fromisoformat(data['posted_at'])
        )


@dataclass
class JournalEntry(StorageRecord):
    """
    Balanced set of journal lines recording one business event
    Immutable once posted; only ``reversed_by`` is ever set afterwards
    """
    transaction_date: date
    description: str
    source_type: str
    lines: List[JournalLine]
    source_id: Optional[str] = None
    created_by: Optional[str] = None
    period_id: Optional[str] = None
    posted_at: Optional[datetime] = None
    reversed_by: Optional[str] = None  # ID of reversing journal entry
    reverses: Optional[str] = None     # ID of original entry being reversed

    def totals_by_currency(self) -> Dict[str, Tuple[Decimal, Decimal]]:
        """(debit_total, credit_total) per currency"""
        totals: Dict[str, List[Decimal]] = {}
        for line in self.lines:
            pair = totals.setdefault(line.currency_id, [Decimal('0'), Decimal('0')])
            if line.is_debit:
                pair[0] += line.amount
            else:
                pair[1] += line.amount
        return {currency: (pair[0], pair[1]) for currency, pair in totals.items()}

    def validate_balance(self) -> None:
        """
        Validate that total debits equal total credits for each currency
        This is the fundamental rule of double-entry bookkeeping
        """
        for currency, (debit_total, credit_total) in sorted(self.totals_by_currency().items()):
            if debit_total != credit_total:
                raise UnbalancedEntryError(currency, debit_total, credit_total)

    def get_affected_accounts(self) -> Set[str]:
        """Get set of account codes affected by this entry"""
        return {line.account_code for line in self.lines}

    def get_currencies(self) -> Set[str]:
        """Get all currencies used in this journal entry"""
        return {line.currency_id for line in self.lines}

    def posted_lines(self) -> List[PostedLine]:
        return [
            PostedLine(
                entry_id=self.id,
                line_no=line_no,
                account_code=line.account_code,
                side=line.side,
                amount=line.amount,
                currency_id=line.currency_id,
                memo=line.memo,
                transaction_date=self.transaction_date,
                source_type=self.source_type,
                period_id=self.period_id,
                posted_at=self.posted_at
            )
            for line_no, line in enumerate(self.lines, start=1)
        ]

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['lines'] = [line.to_dict() for line in self.lines]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalEntry':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_date=date.fromisoformat(data['transaction_date']),
            description=data['description'],
            source_type=data['source_type'],
            lines=[JournalLine.from_dict(line) for line in data['lines']],
            source_id=data.get('source_id'),
            created_by=data.get('created_by'),
            period_id=data.get('period_id'),
            posted_at=StorageRecord.parse_timestamp(data.get('posted_at')),
            reversed_by=data.get('reversed_by'),
            reverses=data.get('reverses')
        )


@dataclass
class JournalFilter:
    """Filters for the general journal query"""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    account_code: Optional[str] = None
    source_type: Optional[str] = None
    search: Optional[str] = None
    side: Optional[EntrySide] = None

    def matches(self, entry: JournalEntry) -> bool:
        if self.start_date and entry.transaction_date < self.start_date:
            return False
        if self.end_date and entry.transaction_date > self.end_date:
            return False
        if self.source_type and entry.source_type != _source_value(self.source_type):
            return False

        lines = entry.lines
        if self.account_code:
            lines = [line for line in lines if line.account_code == self.account_code]
            if not lines:
                return False
        if self.side:
            side = EntrySide(self.side)
            if not any(line.side == side for line in lines):
                return False

        if self.search:
            needle = self.search.lower()
            haystack = [entry.description, entry.source_id or "", entry.id]
            haystack.extend(line.memo for line in entry.lines)
            if not any(needle in text.lower() for text in haystack):
                return False
        return True


@dataclass
class JournalPage:
    entries: List[JournalEntry]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class GeneralLedger:
    """
    General ledger that validates and records journal entries
    Balances are derived from journal lines, never stored separately
    """

    def __init__(
        self,
        storage: StorageInterface,
        chart: ChartOfAccounts,
        periods: PeriodManager,
        currencies: CurrencyRegistry,
        audit_trail: AuditTrail,
        batch_size: int = 500
    ):
        self.storage = storage
        self.chart = chart
        self.periods = periods
        self.currencies = currencies
        self.audit_trail = audit_trail
        self.batch_size = batch_size
        self.table_name = "journal_entries"
        self.lines_table = "journal_lines"
        self._listeners: List[Callable[[JournalEntry], None]] = []
        self._reversal_lock = threading.Lock()

    def add_listener(self, listener: Callable[[JournalEntry], None]) -> None:
        """Called with every entry after it has been durably written"""
        self._listeners.append(listener)

    def post(
        self,
        transaction_date: date,
        description: str,
        lines: List[JournalLine],
        source_type: Union[SourceType, str] = SourceType.MANUAL,
        source_id: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> JournalEntry:
        """
        Validate and durably record a journal entry

        Validation runs in order: lines and accounts, amounts and currencies,
        per-currency balance, then period resolution. Nothing is written
        unless every step passes.

        Args:
            transaction_date: Logical date of the business event
            description: Human-readable description
            lines: At least two journal lines
            source_type: Originating collaborator (fee_payment, expense, ...)
            source_id: Reference into the originating collaborator
            created_by: User who initiated the posting

        Returns:
            Posted JournalEntry

        Raises:
            InvalidEntryError, AccountNotFoundError, InactiveAccountError,
            InvalidAmountError, UnknownCurrencyError, CurrencyMismatchError,
            UnbalancedEntryError: On invalid input
            NoOpenPeriodError, PeriodClosedError, PeriodLockedError: If the
                transaction date does not resolve to an OPEN period
        """
        source = _source_value(source_type)
        if source in (SourceType.CLOSING.value, SourceType.REVERSAL.value):
            raise InvalidEntryError(
                f"Source type {source} is reserved for the ledger itself",
                source_type=source
            )

        entry = self.prepare_entry(transaction_date, description, lines, source, source_id, created_by)
        period = self._resolve_period(entry.transaction_date)

        with self.periods.lock(period.id):
            with self.storage.atomic():
                # The status read shares the write transaction with the entry
                self._check_postable(period.id, entry.transaction_date)
                entry.period_id = period.id
                self.write_entry(entry)

        self.announce(entry)
        return entry

    def prepare_entry(
        self,
        transaction_date: date,
        description: str,
        lines: Iterable[JournalLine],
        source_type: str,
        source_id: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> JournalEntry:
        """Build a validated, not yet written, journal entry"""
        lines = [line if isinstance(line, JournalLine) else JournalLine(**line) for line in lines]
        if not source_type:
            raise InvalidEntryError("Journal entry requires a source type")

        self._validate_lines(lines)

        now = datetime.now(timezone.utc)
        entry = JournalEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_date=_as_date(transaction_date),
            description=description or "",
            source_type=source_type,
            lines=lines,
            source_id=source_id,
            created_by=created_by
        )
        entry.validate_balance()
        return entry

    def _validate_lines(self, lines: List[JournalLine]) -> None:
        if len(lines) < 2:
            raise InvalidEntryError(
                f"Journal entry requires at least 2 lines, got {len(lines)}",
                line_count=len(lines)
            )

        precisions: Dict[str, int] = {}
        for line_no, line in enumerate(lines, start=1):
            account = self.chart.require_account(line.account_code)
            if not account.is_active:
                raise InactiveAccountError(account.code)

            if not line.amount.is_finite():
                raise InvalidAmountError(
                    f"Line {line_no} amount must be finite, got {line.amount}",
                    line_no=line_no,
                    amount=str(line.amount)
                )
            if line.amount <= 0:
                raise InvalidAmountError(
                    f"Line {line_no} amount must be positive, got {line.amount}",
                    line_no=line_no,
                    amount=line.amount
                )

            if line.currency_id not in precisions:
                precisions[line.currency_id] = self.currencies.require_active(line.currency_id).precision
            if fraction_digits(line.amount) > precisions[line.currency_id]:
                raise InvalidAmountError(
                    f"Line {line_no} amount {line.amount} exceeds {line.currency_id} precision "
                    f"of {precisions[line.currency_id]} fraction digits",
                    line_no=line_no,
                    amount=line.amount,
                    currency=line.currency_id,
                    precision=precisions[line.currency_id]
                )

            if account.currency_id and account.currency_id != line.currency_id:
                raise CurrencyMismatchError(
                    f"Account {account.code} only accepts {account.currency_id}, "
                    f"line {line_no} is in {line.currency_id}",
                    account_code=account.code,
                    account_currency=account.currency_id,
                    line_currency=line.currency_id
                )

    def _resolve_period(self, transaction_date: date):
        period = self.periods.resolve_period(transaction_date)
        if not period:
            raise NoOpenPeriodError(transaction_date)
        return period

    def _check_postable(
        self,
        period_id: str,
        transaction_date: date,
        allow_closing: bool = False
    ) -> None:
        """Re-read the period status; callers hold its lock and an open write transaction"""
        period = self.periods.require_period(period_id)
        if period.status == PeriodStatus.CLOSED:
            raise PeriodClosedError(period.id, transaction_date)
        if period.status == PeriodStatus.CLOSING and not allow_closing:
            raise PeriodLockedError(period.id, transaction_date)

    def write_entry(self, entry: JournalEntry) -> None:
        """
        Persist an entry and its lines. Callers wrap this in
        ``storage.atomic()`` together with any other writes of the same unit.
        """
        entry.posted_at = datetime.now(timezone.utc)
        entry.updated_at = entry.posted_at
        self._save_entry(entry)
        for posted in entry.posted_lines():
            record = posted.to_dict()
            self.storage.save(self.lines_table, record['id'], record)

    def announce(self, entry: JournalEntry) -> None:
        """Audit, log and notify listeners once an entry has committed"""
        self.audit_trail.log_event(
            event_type=AuditEventType.JOURNAL_ENTRY_POSTED,
            entity_type="journal_entry",
            entity_id=entry.id,
            metadata={
                "transaction_date": entry.transaction_date,
                "source_type": entry.source_type,
                "source_id": entry.source_id,
                "period_id": entry.period_id,
                "line_count": len(entry.lines),
                "accounts": sorted(entry.get_affected_accounts()),
                "currencies": sorted(entry.get_currencies())
            },
            user_id=entry.created_by
        )
        log_action(
            logger, "info", "Journal entry posted",
            user_id=entry.created_by,
            action="journal.post",
            resource=entry.id,
            extra={
                "source_type": entry.source_type,
                "transaction_date": entry.transaction_date.isoformat(),
                "period_id": entry.period_id
            }
        )
        for listener in self._listeners:
            listener(entry)

    def post_into_closing_period(self, entry: JournalEntry, period_id: str) -> None:
        """
        Write an entry into a period that is being closed. Only the closing
        protocol uses this, while holding the period lock and inside its own
        transaction.
        """
        self._check_postable(period_id, entry.transaction_date, allow_closing=True)
        entry.period_id = period_id
        self.write_entry(entry)

    def reverse(
        self,
        entry_id: str,
        reversal_date: date,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> JournalEntry:
        """
        Reverse a posted journal entry by posting its mirror image

        The reversing entry swaps every line's side and is dated into an
        open period. The original gains a ``reversed_by`` back-reference in
        the same transaction.

        Raises:
            EntryNotFoundError: If the entry does not exist
            AlreadyReversedError: If the entry was already reversed
            InvalidEntryError: If the entry is a closing entry
        """
        with self._reversal_lock:
            original = self.require_entry(entry_id)

            if original.source_type == SourceType.CLOSING.value:
                raise InvalidEntryError(
                    f"Closing entry {entry_id} cannot be reversed",
                    entry_id=entry_id
                )
            if original.reversed_by:
                raise AlreadyReversedError(entry_id, original.reversed_by)

            mirrored = [
                JournalLine(
                    account_code=line.account_code,
                    side=line.side.opposite(),
                    amount=line.amount,
                    currency_id=line.currency_id,
                    memo=f"REVERSAL: {line.memo}" if line.memo else "REVERSAL"
                )
                for line in original.lines
            ]
            reversal = self.prepare_entry(
                reversal_date,
                description or f"REVERSAL: {original.description}",
                mirrored,
                SourceType.REVERSAL.value,
                source_id=original.id,
                created_by=created_by
            )
            reversal.reverses = original.id

            period = self._resolve_period(reversal.transaction_date)
            with self.periods.lock(period.id):
                with self.storage.atomic():
                    # Status and reversed_by are re-read inside the write transaction
                    self._check_postable(period.id, reversal.transaction_date)
                    original = self.require_entry(entry_id)
                    if original.reversed_by:
                        raise AlreadyReversedError(entry_id, original.reversed_by)
                    reversal.period_id = period.id
                    self.write_entry(reversal)
                    original.reversed_by = reversal.id
                    original.updated_at = reversal.posted_at
                    self._save_entry(original)

        self.announce(reversal)
        self.audit_trail.log_event(
            event_type=AuditEventType.JOURNAL_ENTRY_REVERSED,
            entity_type="journal_entry",
            entity_id=original.id,
            metadata={
                "reversing_entry_id": reversal.id,
                "reversal_date": reversal.transaction_date
            },
            user_id=created_by
        )
        return reversal

    def get_entry(self, entry_id: str) -> Optional[JournalEntry]:
        """Get a journal entry by ID"""
        data = self.storage.load(self.table_name, entry_id)
        return JournalEntry.from_dict(data) if data else None

    def require_entry(self, entry_id: str) -> JournalEntry:
        entry = self.get_entry(entry_id)
        if not entry:
            raise EntryNotFoundError(entry_id)
        return entry

    def iter_entries(self, filters: Optional[Dict[str, Any]] = None) -> Iterator[JournalEntry]:
        """Stream entries matching equality filters in posting order"""
        for data in self.storage.iter_records(self.table_name, filters, self.batch_size):
            yield JournalEntry.from_dict(data)

    def iter_lines(
        self,
        account_code: Optional[str] = None,
        currency_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        exclude_source_types: Iterable[str] = ()
    ) -> Iterator[PostedLine]:
        """
        Stream posted lines in batches. Dates are inclusive and compare on
        transaction date only.
        """
        filters = {}
        if account_code is not None:
            filters['account_code'] = account_code
        if currency_id is not None:
            filters['currency_id'] = currency_id.upper()
        excluded = {_source_value(s) for s in exclude_source_types}
        start = start_date.isoformat() if start_date else None
        end = end_date.isoformat() if end_date else None

        for data in self.storage.iter_records(self.lines_table, filters or None, self.batch_size):
            # ISO dates order lexicographically
            if start and data['transaction_date'] < start:
                continue
            if end and data['transaction_date'] > end:
                continue
            if data['source_type'] in excluded:
                continue
            yield PostedLine.from_dict(data)

    def get_movements(
        self,
        account_code: str,
        start_date: date,
        end_date: date,
        currency_id: Optional[str] = None
    ) -> List[PostedLine]:
        """
        Lines posted to an account within [start_date, end_date], ordered by
        transaction date and then posting order
        """
        self.chart.require_account(account_code)
        lines = list(self.iter_lines(account_code, currency_id, start_date, end_date))
        lines.sort(key=lambda l: (l.transaction_date, l.posted_at, l.entry_id, l.line_no))
        return lines

    def get_journal(
        self,
        filters: Optional[JournalFilter] = None,
        page: int = 1,
        limit: int = 50
    ) -> JournalPage:
        """
        General journal query, newest first

        Args:
            filters: Optional JournalFilter
            page: 1-based page number
            limit: Page size
        """
        filters = filters or JournalFilter()
        page = max(page, 1)
        limit = max(limit, 1)

        equality = {}
        if filters.source_type:
            equality['source_type'] = _source_value(filters.source_type)

        matched = [entry for entry in self.iter_entries(equality or None) if filters.matches(entry)]
        matched.sort(key=lambda e: (e.transaction_date, e.posted_at or e.created_at), reverse=True)

        start = (page - 1) * limit
        return JournalPage(
            entries=matched[start:start + limit],
            page=page,
            limit=limit,
            total=len(matched)
        )

    def get_entries_by_source(
        self,
        source_type: Union[SourceType, str],
        period_id: Optional[str] = None
    ) -> List[JournalEntry]:
        filters = {'source_type': _source_value(source_type)}
        if period_id is not None:
            filters['period_id'] = period_id
        return list(self.iter_entries(filters))

    def _save_entry(self, entry: JournalEntry) -> None:
        """Save journal entry to storage"""
        self.storage.save(self.table_name, entry.id, entry.to_dict())
