"""
Accounting Period Module

Owns the set of non-overlapping accounting periods and their status.
Transaction dates are resolved to periods explicitly by date range; there
is no global "current period".

Each period has its own lock. Posting into a period and changing that
period's status both run under it, so a status transition can never slip
in between a post's status check and its write.
"""

import calendar
import logging
import threading
import uuid
from datetime import date, datetime, timedelta, timezone
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import InvalidPeriodError, PeriodNotFoundError, PeriodOverlapError


logger = logging.getLogger(__name__)


class PeriodStatus(Enum):
    """Accounting period lifecycle"""
    OPEN = "open"          # Accepts postings
    CLOSING = "closing"    # Close in progress; postings are rejected
    CLOSED = "closed"      # Permanently locked


class PeriodType(Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    CUSTOM = "custom"


@dataclass
class AccountingPeriod(StorageRecord):
    """Date range [start_date, end_date] with a status"""
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus = PeriodStatus.OPEN
    period_type: PeriodType = PeriodType.CUSTOM
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def overlaps(self, start_date: date, end_date: date) -> bool:
        return self.start_date <= end_date and start_date <= self.end_date

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @classmethod
    def from_dict(cls, data: Dict) -> 'AccountingPeriod':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            start_date=date.fromisoformat(data['start_date']),
            end_date=date.fromisoformat(data['end_date']),
            status=PeriodStatus(data['status']),
            period_type=PeriodType(data.get('period_type', PeriodType.CUSTOM.value)),
            closed_at=StorageRecord.parse_timestamp(data.get('closed_at')),
            closed_by=data.get('closed_by')
        )


class PeriodManager:
    """
    Creates, resolves and transitions accounting periods
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "accounting_periods"
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._create_lock = threading.Lock()

    def lock(self, period_id: str) -> threading.RLock:
        """The lock serializing postings and status changes for one period"""
        with self._locks_guard:
            if period_id not in self._locks:
                self._locks[period_id] = threading.RLock()
            return self._locks[period_id]

    def create_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        period_type: PeriodType = PeriodType.CUSTOM
    ) -> AccountingPeriod:
        """
        Create a new OPEN accounting period

        Raises:
            InvalidPeriodError: If start_date is after end_date
            PeriodOverlapError: If the range overlaps an existing period
        """
        if start_date > end_date:
            raise InvalidPeriodError(
                f"Period start {start_date.isoformat()} is after end {end_date.isoformat()}",
                start_date=start_date,
                end_date=end_date
            )
        period_type = PeriodType(period_type)

        with self._create_lock:
            overlapping = [p for p in self.list_periods() if p.overlaps(start_date, end_date)]
            if overlapping:
                raise PeriodOverlapError(
                    f"Period {start_date.isoformat()}..{end_date.isoformat()} overlaps "
                    f"{', '.join(p.name for p in overlapping)}",
                    start_date=start_date,
                    end_date=end_date,
                    overlapping_period_ids=[p.id for p in overlapping]
                )

            now = datetime.now(timezone.utc)
            period = AccountingPeriod(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                name=name or f"{start_date.isoformat()} - {end_date.isoformat()}",
                start_date=start_date,
                end_date=end_date,
                period_type=period_type
            )
            self.save_period(period)

        self.audit_trail.log_event(
            event_type=AuditEventType.PERIOD_CREATED,
            entity_type="accounting_period",
            entity_id=period.id,
            metadata={
                "name": period.name,
                "start_date": start_date,
                "end_date": end_date,
                "period_type": period_type
            }
        )
        logger.info(
            "Accounting period created",
            extra={"extra": {"period_id": period.id, "start_date": str(start_date), "end_date": str(end_date)}}
        )
        return period

    def get_or_create_monthly_period(self, year: int, month: int) -> AccountingPeriod:
        """Return the period spanning exactly the given month, creating it if needed"""
        if not 1 <= month <= 12:
            raise InvalidPeriodError(f"Invalid month {month}", year=year, month=month)

        start_date = date(year, month, 1)
        end_date = date(year, month, calendar.monthrange(year, month)[1])

        for period in self.list_periods():
            if period.start_date == start_date and period.end_date == end_date:
                return period

        return self.create_period(
            name=f"{calendar.month_name[month]} {year}",
            start_date=start_date,
            end_date=end_date,
            period_type=PeriodType.MONTHLY
        )

    def get_period(self, period_id: str) -> Optional[AccountingPeriod]:
        data = self.storage.load(self.table_name, period_id)
        return AccountingPeriod.from_dict(data) if data else None

    def require_period(self, period_id: str) -> AccountingPeriod:
        period = self.get_period(period_id)
        if not period:
            raise PeriodNotFoundError(period_id)
        return period

    def list_periods(
        self,
        status: Optional[PeriodStatus] = None,
        year: Optional[int] = None,
        period_type: Optional[PeriodType] = None
    ) -> List[AccountingPeriod]:
        """
        List periods in chronological order

        Args:
            status: Only periods with this status
            year: Only periods that overlap this calendar year
            period_type: Only periods of this type
        """
        filters = {}
        if status is not None:
            filters['status'] = PeriodStatus(status).value
        if period_type is not None:
            filters['period_type'] = PeriodType(period_type).value

        periods = [AccountingPeriod.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if year is not None:
            periods = [p for p in periods if p.overlaps(date(year, 1, 1), date(year, 12, 31))]
        return sorted(periods, key=lambda p: p.start_date)

    def resolve_period(self, day: date) -> Optional[AccountingPeriod]:
        """The period whose range covers the given date, if any"""
        for period in self.list_periods():
            if period.contains(day):
                return period
        return None

    def earlier_unclosed(self, period: AccountingPeriod) -> List[AccountingPeriod]:
        """Chronologically earlier periods that are still OPEN or CLOSING"""
        return [
            p for p in self.list_periods()
            if p.end_date < period.start_date and p.status != PeriodStatus.CLOSED
        ]

    def previous_period(self, period: AccountingPeriod) -> Optional[AccountingPeriod]:
        """The latest period ending before this one starts"""
        earlier = [p for p in self.list_periods() if p.end_date < period.start_date]
        return earlier[-1] if earlier else None

    def day_before(self, period: AccountingPeriod) -> date:
        return period.start_date - timedelta(days=1)

    def save_period(self, period: AccountingPeriod) -> None:
        self.storage.save(self.table_name, period.id, period.to_dict())
