"""
Balance Aggregator

Read-side folds over posted journal lines. Balances are deterministic
functions of logical transaction time: "as of" means
``transaction_date <= as_of_date`` regardless of when lines were written.

A cache keyed by (account, as_of_date, currency) sits in front of the
fold. It holds at most ``max_cache_size`` balances, evicting the least
recently used. Every committed posting invalidates the affected accounts'
entries dated on or after the posting's transaction date.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple
import logging
import threading

from .accounts import AccountType, ChartOfAccounts, normal_balance
from .currency import to_fixed_string
from .ledger import EntrySide, GeneralLedger, JournalEntry, PostedLine


logger = logging.getLogger(__name__)

ZERO = Decimal('0')

CacheKey = Tuple[str, date, str]


@dataclass(frozen=True)
class AccountBalance:
    """Derived balance of one account in one currency"""
    account_code: str
    as_of_date: date
    currency_id: str
    account_type: AccountType
    debit_total: Decimal
    credit_total: Decimal

    @property
    def net_balance(self) -> Decimal:
        """Balance signed by the account type's normal side"""
        return normal_balance(self.account_type, self.debit_total, self.credit_total)

    @property
    def raw_net(self) -> Decimal:
        """Debits minus credits regardless of account type"""
        return self.debit_total - self.credit_total

    def to_dict(self) -> Dict[str, str]:
        return {
            'account_code': self.account_code,
            'as_of_date': self.as_of_date.isoformat(),
            'currency_id': self.currency_id,
            'account_type': self.account_type.value,
            'debit_total': to_fixed_string(self.debit_total),
            'credit_total': to_fixed_string(self.credit_total),
            'net_balance': to_fixed_string(self.net_balance)
        }


@dataclass(frozen=True)
class Movement:
    """Debit and credit totals of one account in one currency over a range"""
    account_code: str
    currency_id: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def raw_net(self) -> Decimal:
        return self.debit_total - self.credit_total


def fold_lines(lines: Iterable[PostedLine]) -> Dict[Tuple[str, str], Tuple[Decimal, Decimal]]:
    """
    Sum debits and credits per (account, currency). The result does not
    depend on the order lines arrive in.
    """
    totals: Dict[Tuple[str, str], List[Decimal]] = {}
    for line in lines:
        pair = totals.setdefault((line.account_code, line.currency_id), [ZERO, ZERO])
        if line.side == EntrySide.DEBIT:
            pair[0] += line.amount
        else:
            pair[1] += line.amount
    return {key: (pair[0], pair[1]) for key, pair in totals.items()}


class BalanceAggregator:
    """
    Computes account balances and movements from the journal
    """

    def __init__(
        self,
        ledger: GeneralLedger,
        chart: ChartOfAccounts,
        base_currency: str = "USD",
        max_cache_size: int = 10000
    ):
        self.ledger = ledger
        self.chart = chart
        self.base_currency = base_currency
        self.max_cache_size = max_cache_size
        self._cache: "OrderedDict[CacheKey, AccountBalance]" = OrderedDict()
        self._cache_lock = threading.Lock()
        self._generation = 0
        ledger.add_listener(self.invalidate_for_entry)

    def invalidate_for_entry(self, entry: JournalEntry) -> None:
        """Drop cached balances an entry may have changed"""
        accounts = entry.get_affected_accounts()
        with self._cache_lock:
            self._generation += 1
            stale = [
                key for key in self._cache
                if key[0] in accounts and key[1] >= entry.transaction_date
            ]
            for key in stale:
                del self._cache[key]
        if stale:
            logger.debug("Invalidated %d cached balances after entry %s", len(stale), entry.id)

    def invalidate_all(self) -> None:
        with self._cache_lock:
            self._generation += 1
            self._cache.clear()

    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def _remember(self, key: CacheKey, balance: AccountBalance) -> None:
        # Caller holds _cache_lock
        self._cache[key] = balance
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_cache_size:
            self._cache.popitem(last=False)

    def _default_currency(self, account_code: str) -> str:
        account = self.chart.require_account(account_code)
        return account.currency_id or self.base_currency

    def get_balance(
        self,
        account_code: str,
        as_of_date: date,
        currency_id: Optional[str] = None
    ) -> AccountBalance:
        """
        Balance of one account in one currency as of a date (inclusive)

        Args:
            account_code: Account to fold
            as_of_date: Include lines with transaction_date <= as_of_date
            currency_id: Currency to fold; defaults to the account's pinned
                currency or the base currency
        """
        currency_id = (currency_id or self._default_currency(account_code)).upper()
        key = (account_code, as_of_date, currency_id)

        with self._cache_lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
            generation = self._generation
        if cached is not None:
            return cached

        account_type = self.chart.resolve_type(account_code)
        folded = fold_lines(self.ledger.iter_lines(
            account_code=account_code,
            currency_id=currency_id,
            end_date=as_of_date
        ))
        debit_total, credit_total = folded.get((account_code, currency_id), (ZERO, ZERO))
        balance = AccountBalance(
            account_code=account_code,
            as_of_date=as_of_date,
            currency_id=currency_id,
            account_type=account_type,
            debit_total=debit_total,
            credit_total=credit_total
        )

        with self._cache_lock:
            # A posting that committed while folding makes this result suspect
            if generation == self._generation:
                self._remember(key, balance)
        return balance

    def get_balances(
        self,
        account_codes: Iterable[str],
        as_of_date: date,
        currency_id: Optional[str] = None
    ) -> Dict[str, AccountBalance]:
        """Batch form of get_balance"""
        return {
            code: self.get_balance(code, as_of_date, currency_id)
            for code in account_codes
        }

    def get_balances_by_currency(self, account_code: str, as_of_date: date) -> Dict[str, AccountBalance]:
        """Balance of an account in every currency it has lines in"""
        account_type = self.chart.resolve_type(account_code)
        with self._cache_lock:
            generation = self._generation
        folded = fold_lines(self.ledger.iter_lines(account_code=account_code, end_date=as_of_date))

        balances = {}
        for (code, currency_id), (debit_total, credit_total) in folded.items():
            balances[currency_id] = AccountBalance(
                code, as_of_date, currency_id, account_type, debit_total, credit_total
            )

        with self._cache_lock:
            if generation == self._generation:
                for currency_id, balance in balances.items():
                    self._remember((account_code, as_of_date, currency_id), balance)
        return dict(sorted(balances.items()))

    def current_net_balances(self, account_code: str) -> Dict[str, Decimal]:
        """Net balance per currency over the whole history"""
        return {
            currency_id: balance.net_balance
            for currency_id, balance in self.get_balances_by_currency(account_code, date.max).items()
        }

    def get_movements(
        self,
        account_code: str,
        start_date: date,
        end_date: date,
        currency_id: Optional[str] = None
    ) -> List[PostedLine]:
        """Ordered lines posted to an account within [start_date, end_date]"""
        return self.ledger.get_movements(account_code, start_date, end_date, currency_id)

    def all_balances(self, as_of_date: date) -> Dict[Tuple[str, str], Tuple[Decimal, Decimal]]:
        """(debit_total, credit_total) for every (account, currency) as of a date"""
        return fold_lines(self.ledger.iter_lines(end_date=as_of_date))

    def activity(
        self,
        start_date: date,
        end_date: date,
        exclude_source_types: Iterable[str] = ()
    ) -> Dict[Tuple[str, str], Tuple[Decimal, Decimal]]:
        """(debit_total, credit_total) for every (account, currency) within a range"""
        return fold_lines(self.ledger.iter_lines(
            start_date=start_date,
            end_date=end_date,
            exclude_source_types=exclude_source_types
        ))

    def get_net_movement(
        self,
        account_code: str,
        start_date: date,
        end_date: date,
        currency_id: Optional[str] = None,
        exclude_source_types: Iterable[str] = ()
    ) -> Movement:
        """Total debits and credits posted to an account within a range"""
        currency_id = (currency_id or self._default_currency(account_code)).upper()
        folded = fold_lines(self.ledger.iter_lines(
            account_code=account_code,
            currency_id=currency_id,
            start_date=start_date,
            end_date=end_date,
            exclude_source_types=exclude_source_types
        ))
        debit_total, credit_total = folded.get((account_code, currency_id), (ZERO, ZERO))
        return Movement(account_code, currency_id, debit_total, credit_total)
